"""
Reconstruction algorithms of weno_fv.

- numerical: WENO upwind-fit reconstruction and its stencil preprocessing
"""

from __future__ import annotations

from . import numerical

__all__ = ["numerical"]
