"""
Core scheme configuration classes.

Configurations specify HOW faces are reconstructed (polynomial order, limiter
strength, stencil growth limits, geometry caching), not WHAT is reconstructed
(the mesh and the fields are supplied by the caller).
"""

from __future__ import annotations

import warnings
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

if TYPE_CHECKING:
    from pathlib import Path

DEFAULT_CACHE_DIRECTORY = "constant/weno_geometry"


class StencilConfig(BaseModel):
    """
    Configuration for stencil construction and least-squares assembly.

    Attributes
    ----------
    initial_layers : int
        Face-adjacency layers of the initial central stencil (default: 1)
    max_extension_layers : int
        Additional layers a stencil may grow by before construction fails (default: 4)
    size_factor : float
        Minimum stencil size is ``ceil(size_factor * n_basis) + 1`` (default: 1.5)
    max_size_factor : float
        Central stencils are truncated to ``ceil(max_size_factor * n_basis) + 1`` (default: 2.0)
    sectorial : bool
        Build directionally biased sectorial stencils next to the central one (default: True)
    singular_tolerance : float
        Smallest admissible ratio of smallest to largest singular value (default: 1e-10)
    dimension_tolerance : float
        Reference-space extent below which a direction counts as inactive (default: 1e-8)
    """

    initial_layers: int = Field(default=1, ge=1)
    max_extension_layers: int = Field(default=4, ge=0)
    size_factor: float = Field(default=1.5, gt=1.0)
    max_size_factor: float = Field(default=2.0, gt=1.0)
    sectorial: bool = True
    singular_tolerance: float = Field(default=1e-10, gt=0, lt=1)
    dimension_tolerance: float = Field(default=1e-8, gt=0)

    @model_validator(mode="after")
    def validate_size_factors(self) -> StencilConfig:
        """Validate that the truncation size never falls below the minimum size."""
        if self.max_size_factor < self.size_factor:
            raise ValueError("max_size_factor must be >= size_factor")
        return self

    @property
    def max_layers(self) -> int:
        """Total number of face-adjacency layers a stencil may span."""
        return self.initial_layers + self.max_extension_layers


class CacheConfig(BaseModel):
    """
    Configuration for the on-disk geometry cache.

    Attributes
    ----------
    enabled : bool
        Read and write cached geometry (default: True)
    directory : str | None
        Cache root directory (default: ``./constant/weno_geometry``)
    """

    enabled: bool = True
    directory: str | None = None

    def resolved_directory(self) -> str:
        return self.directory if self.directory is not None else DEFAULT_CACHE_DIRECTORY


class LoggingConfig(BaseModel):
    """
    Configuration for logging.

    Attributes
    ----------
    level : Literal["DEBUG", "INFO", "WARNING", "ERROR"]
        Logging level (default: INFO)
    log_to_file : bool
        Also write log records to a file (default: False)
    log_file_path : str | None
        Log file location (default: timestamped file under ./logs)
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_to_file: bool = False
    log_file_path: str | None = None

    def apply(self) -> None:
        """Configure the weno_fv loggers with these settings."""
        from weno_fv.utils.logging import configure_logging

        configure_logging(level=self.level, log_to_file=self.log_to_file, log_file_path=self.log_file_path)


class WENOConfig(BaseModel):
    """
    Unified configuration of a WENO face-reconstruction scheme.

    Attributes
    ----------
    scheme : str
        Registered scheme name (default: WENOUpwindFit)
    flux_name : str | None
        Name of the face-flux field selecting the upwind side; None when the
        flux is passed explicitly (default: phi)
    polynomial_order : int
        Degree of the reconstruction polynomial
    limiting_factor : float
        Limiter strength in [0, 1]; 0 leaves the high-order values unlimited,
        1 applies the limiter at full strength
    stencil : StencilConfig
    cache : CacheConfig
    logging : LoggingConfig

    Examples
    --------
    >>> config = WENOConfig(polynomial_order=2, limiting_factor=1.0)
    >>> config.to_yaml("system/weno.yaml")
    """

    scheme: str = "WENOUpwindFit"
    flux_name: str | None = "phi"
    polynomial_order: int = Field(ge=0)
    limiting_factor: float = Field(default=1.0, ge=0.0, le=1.0)
    stencil: StencilConfig = Field(default_factory=StencilConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("limiting_factor")
    @classmethod
    def warn_non_binary_limiting_factor(cls, value: float) -> float:
        """The limiter is meant as an on/off switch; intermediate values only blend."""
        if value not in (0.0, 1.0):
            warnings.warn(
                f"limiting_factor={value} is neither 0 nor 1; the result blends limited and unlimited values",
                UserWarning,
                stacklevel=2,
            )
        return value

    def to_yaml(self, path: str | Path) -> None:
        """
        Save configuration to YAML file.

        Parameters
        ----------
        path : str | Path
            Output file path
        """
        from .io import save_weno_config

        save_weno_config(self, path)

    @classmethod
    def from_yaml(cls, path: str | Path) -> WENOConfig:
        """
        Load configuration from YAML file.

        Parameters
        ----------
        path : str | Path
            Path to YAML configuration file

        Returns
        -------
        WENOConfig
            Validated scheme configuration
        """
        from .io import load_weno_config

        return load_weno_config(path)
