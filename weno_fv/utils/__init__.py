"""Shared utilities: exceptions, logging and file I/O."""

from __future__ import annotations

from .exceptions import (
    ConfigurationError,
    DimensionalityError,
    DimensionMismatchError,
    GeometryNotBuiltError,
    SingularStencilError,
    StencilConstructionError,
    WENOError,
)
from .logging import configure_logging, get_logger

__all__ = [
    "ConfigurationError",
    "DimensionMismatchError",
    "DimensionalityError",
    "GeometryNotBuiltError",
    "SingularStencilError",
    "StencilConstructionError",
    "WENOError",
    "configure_logging",
    "get_logger",
]
