"""
Numerical reconstruction schemes.

``WENOUpwindFit`` evaluates limited high-order face corrections from the
stencil geometry produced by ``weno_components``.
"""

from __future__ import annotations

from .weno_components import GeometryCache, StencilBuilder, WENOGeometry
from .weno_upwind_fit import WENOUpwindFit

__all__ = [
    "GeometryCache",
    "StencilBuilder",
    "WENOGeometry",
    "WENOUpwindFit",
]
