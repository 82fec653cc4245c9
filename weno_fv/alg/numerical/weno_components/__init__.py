"""
Building blocks of the WENO upwind-fit scheme.

- stencil_builder: stencil growth, sectors, halo completion, operator assembly
- least_squares: design matrices and SVD pseudoinverses
- geometry_cache: immutable geometry bundle and its HDF5 cache
"""

from __future__ import annotations

from .geometry_cache import FORMAT_VERSION, GeometryCache, HaloCell, WENOGeometry, config_digest
from .least_squares import LeastSquaresFit, design_matrix, fit_stencil, stencil_dims
from .stencil_builder import StencilBuilder

__all__ = [
    "FORMAT_VERSION",
    "GeometryCache",
    "HaloCell",
    "LeastSquaresFit",
    "StencilBuilder",
    "WENOGeometry",
    "config_digest",
    "design_matrix",
    "fit_stencil",
    "stencil_dims",
]
