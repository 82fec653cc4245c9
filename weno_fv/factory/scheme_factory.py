"""
Name-based creation of face interpolation schemes.

A scheme entry names the scheme, the flux field and the scheme parameters::

    >>> from weno_fv.factory import create_interpolation_scheme
    >>> scheme = create_interpolation_scheme(mesh, "WENOUpwindFit phi 2 1", {"phi": flux})
    >>> face_values = scheme.interpolate(cell_values)

Schemes register themselves with :func:`register_scheme`; the geometry they
need comes from an explicit :class:`GeometryCache` that the caller may share
between schemes of the same order.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, TextIO

import numpy as np

from weno_fv.alg.numerical.weno_components.geometry_cache import GeometryCache
from weno_fv.alg.numerical.weno_upwind_fit import WENOUpwindFit
from weno_fv.config.core import WENOConfig
from weno_fv.config.io import parse_scheme_entry
from weno_fv.utils.exceptions import ConfigurationError
from weno_fv.utils.logging import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from weno_fv.geometry.poly_mesh import PolyMesh
    from weno_fv.parallel.communicator import Communicator

logger = get_logger(__name__)

_SCHEMES: dict[str, type] = {}


def register_scheme(name: str):
    """Class decorator adding a scheme to the registry under ``name``."""

    def decorator(cls):
        _SCHEMES[name] = cls
        return cls

    return decorator


def available_schemes() -> list[str]:
    return sorted(_SCHEMES)


register_scheme(WENOUpwindFit.name)(WENOUpwindFit)


def create_interpolation_scheme(
    mesh: PolyMesh,
    entry: str | TextIO | WENOConfig,
    fluxes: Mapping[str, NDArray] | NDArray | None = None,
    comm: Communicator | None = None,
    config: WENOConfig | None = None,
    cache: GeometryCache | None = None,
):
    """
    Create a registered interpolation scheme from a scheme entry.

    Args:
        mesh: Local mesh partition
        entry: Scheme entry text/stream (``"WENOUpwindFit phi 2 1"``) or a WENOConfig
        fluxes: Face-flux fields by name, or the flux array itself for entries
            without a flux name; None builds the scheme without a flux
        comm: Partition communicator
        config: Base settings (stencil, cache, logging) for text entries; the
            logging settings of a given configuration are applied
        cache: Geometry cache to use; created from the configuration if omitted

    Returns:
        The scheme instance

    Raises:
        ConfigurationError: Unknown scheme, missing flux field, or a cache of
            another polynomial order
    """
    if isinstance(entry, WENOConfig):
        weno_config = entry
    else:
        overrides = {}
        if config is not None:
            overrides = {"stencil": config.stencil, "cache": config.cache, "logging": config.logging}
        weno_config = parse_scheme_entry(entry, **overrides)

    # bare text entries leave the current logging setup alone
    if isinstance(entry, WENOConfig) or config is not None:
        weno_config.logging.apply()

    scheme_cls = _SCHEMES.get(weno_config.scheme)
    if scheme_cls is None:
        raise ConfigurationError(
            parameter_name="scheme",
            provided_value=weno_config.scheme,
            component="scheme_factory",
            reason=f"unknown scheme; available: {', '.join(available_schemes())}",
        )

    flux = _select_flux(weno_config.flux_name, fluxes)

    if cache is None:
        cache = GeometryCache.from_config(weno_config, comm)
    elif cache.polynomial_order != weno_config.polynomial_order:
        raise ConfigurationError(
            parameter_name="cache",
            provided_value=f"order {cache.polynomial_order}",
            component="scheme_factory",
            reason=f"scheme requests polynomial order {weno_config.polynomial_order}",
        )

    geometry = cache.geometry if cache.is_bound else cache.load_or_build(mesh, weno_config.stencil)
    logger.debug(f"Creating {weno_config.scheme} (order {weno_config.polynomial_order}, flux {weno_config.flux_name})")

    if flux is None:
        return scheme_cls.without_flux(mesh, geometry, comm=comm)
    return scheme_cls(mesh, geometry, flux, limiting_factor=weno_config.limiting_factor, comm=comm)


def _select_flux(flux_name: str | None, fluxes) -> NDArray | None:
    if flux_name is None:
        if isinstance(fluxes, Mapping):
            raise ConfigurationError(
                parameter_name="fluxes",
                provided_value=sorted(fluxes),
                component="scheme_factory",
                reason="entry names no flux field; pass the flux array itself",
            )
        return None if fluxes is None else np.asarray(fluxes, dtype=float)

    if not isinstance(fluxes, Mapping) or flux_name not in fluxes:
        available = sorted(fluxes) if isinstance(fluxes, Mapping) else []
        raise ConfigurationError(
            parameter_name="flux_name",
            provided_value=flux_name,
            component="scheme_factory",
            reason=f"flux field not found; available: {available}",
        )
    return np.asarray(fluxes[flux_name], dtype=float)
