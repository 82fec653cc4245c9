"""File I/O helpers: HDF5 persistence of stencil geometry and VTK stencil export."""

from __future__ import annotations

from .hdf5_utils import HDF5_AVAILABLE, get_hdf5_info, load_arrays, read_attributes, save_arrays

__all__ = [
    "HDF5_AVAILABLE",
    "get_hdf5_info",
    "load_arrays",
    "read_attributes",
    "save_arrays",
]
