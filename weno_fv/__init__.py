"""
weno_fv: high-order WENO upwind-fit face reconstruction on unstructured,
domain-decomposed finite-volume meshes.

Usage:
    >>> from weno_fv import GeometryCache, WENOUpwindFit, box_mesh
    >>> mesh = box_mesh(cells=(16, 16, 1))
    >>> geometry = GeometryCache("constant/weno_geometry", polynomial_order=2).load_or_build(mesh)
    >>> scheme = WENOUpwindFit(mesh, geometry, face_flux, limiting_factor=1.0)
    >>> face_values = scheme.interpolate(cell_values)
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("weno-fv")  # Matches the name in pyproject.toml
except PackageNotFoundError:
    # package is not installed
    __version__ = "0.0.0-dev"

from .alg.numerical import GeometryCache, StencilBuilder, WENOGeometry, WENOUpwindFit  # noqa: E402
from .config import StencilConfig, WENOConfig, load_weno_config, parse_scheme_entry  # noqa: E402
from .factory import available_schemes, create_interpolation_scheme, register_scheme  # noqa: E402
from .geometry import Patch, PolyMesh, box_mesh, decompose, slab_partition  # noqa: E402
from .parallel import (  # noqa: E402
    HaloExchange,
    InProcessGroup,
    MPICommunicator,
    SerialCommunicator,
    run_partitioned,
)
from .utils.exceptions import (  # noqa: E402
    ConfigurationError,
    DimensionalityError,
    DimensionMismatchError,
    GeometryNotBuiltError,
    SingularStencilError,
    StencilConstructionError,
    WENOError,
)
from .utils.logging import configure_logging, get_logger  # noqa: E402

__all__ = [
    "ConfigurationError",
    "DimensionMismatchError",
    "DimensionalityError",
    "GeometryCache",
    "GeometryNotBuiltError",
    "HaloExchange",
    "InProcessGroup",
    "MPICommunicator",
    "Patch",
    "PolyMesh",
    "SerialCommunicator",
    "SingularStencilError",
    "StencilBuilder",
    "StencilConfig",
    "StencilConstructionError",
    "WENOConfig",
    "WENOError",
    "WENOGeometry",
    "WENOUpwindFit",
    "__version__",
    "available_schemes",
    "box_mesh",
    "configure_logging",
    "create_interpolation_scheme",
    "decompose",
    "get_logger",
    "load_weno_config",
    "parse_scheme_entry",
    "register_scheme",
    "run_partitioned",
    "slab_partition",
]
