"""
HDF5 utilities for weno_fv geometry persistence.

Stencil geometry (stencil member ids, reference-space moments, Jacobians,
least-squares operators, oscillation matrices, halo maps) is stored as a flat
collection of named NumPy datasets plus scalar attributes. HDF5 is used because:
- NumPy arrays of any rank round-trip without conversion
- datasets can be compressed
- scalar metadata lives next to the arrays as attributes

Examples:
    Save a set of arrays:
        >>> from weno_fv.utils.io.hdf5_utils import save_arrays
        >>> save_arrays({"stencil_ptr": ptr}, {"order": 2}, "geometry.h5")

    Load them back:
        >>> from weno_fv.utils.io.hdf5_utils import load_arrays
        >>> arrays, attrs = load_arrays("geometry.h5")
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

# Optional dependency with graceful fallback
try:
    import h5py

    HDF5_AVAILABLE = True
except ImportError:
    HDF5_AVAILABLE = False


def _check_hdf5_available() -> None:
    """Check if h5py is available, raise helpful error if not."""
    if not HDF5_AVAILABLE:
        raise ImportError("h5py is required for HDF5 support. Install with: pip install h5py")


def save_arrays(
    arrays: dict[str, NDArray],
    attributes: dict[str, Any],
    filename: str | Path,
    *,
    group: str = "geometry",
    compression: str | None = "gzip",
    compression_opts: int = 4,
) -> None:
    """
    Atomically save named arrays and scalar attributes to an HDF5 file.

    The file is first written under a temporary name in the destination
    directory and then moved into place with ``os.replace``, so a concurrent
    reader sees either the old file or the complete new one.

    Args:
        arrays: Mapping of dataset name to array
        attributes: Scalar metadata stored as file attributes
        filename: Output HDF5 file path
        group: Name of the group holding the datasets
        compression: Compression algorithm ('gzip', 'lzf', None)
        compression_opts: Compression level (1-9 for gzip)

    Raises:
        ImportError: If h5py not installed
    """
    _check_hdf5_available()

    filepath = Path(filename)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{filepath.name}.", suffix=".tmp", dir=filepath.parent)
    os.close(fd)

    try:
        with h5py.File(tmp_name, "w") as f:
            data_group = f.create_group(group)
            for name, value in arrays.items():
                value = np.asarray(value)
                # Compression filters need chunked, non-empty datasets
                if compression is not None and value.size > 0 and value.ndim > 0:
                    data_group.create_dataset(
                        name,
                        data=value,
                        compression=compression,
                        compression_opts=compression_opts if compression == "gzip" else None,
                    )
                else:
                    data_group.create_dataset(name, data=value)

            for key, value in attributes.items():
                if value is None:
                    f.attrs[key] = "None"
                elif isinstance(value, (str, int, float, bool, np.integer, np.floating)):
                    f.attrs[key] = value
                else:
                    f.attrs[key] = str(value)

            f.attrs["package"] = "weno_fv"

        os.replace(tmp_name, filepath)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def load_arrays(
    filename: str | Path,
    *,
    group: str = "geometry",
) -> tuple[dict[str, NDArray], dict[str, Any]]:
    """
    Load named arrays and attributes written by :func:`save_arrays`.

    Args:
        filename: HDF5 file path to load
        group: Name of the group holding the datasets

    Returns:
        Tuple of (arrays, attributes)

    Raises:
        ImportError: If h5py not installed
        FileNotFoundError: If file doesn't exist
        KeyError: If the file has no such group
    """
    _check_hdf5_available()

    filepath = Path(filename)
    if not filepath.exists():
        raise FileNotFoundError(f"HDF5 file not found: {filepath}")

    with h5py.File(filepath, "r") as f:
        attributes = {}
        for key, value in f.attrs.items():
            attributes[key] = None if isinstance(value, str) and value == "None" else value
        data_group = f[group]
        arrays = {name: data_group[name][()] for name in data_group}

    return arrays, attributes


def read_attributes(filename: str | Path) -> dict[str, Any]:
    """Read only the file-level attributes of an HDF5 file."""
    _check_hdf5_available()

    filepath = Path(filename)
    if not filepath.exists():
        raise FileNotFoundError(f"HDF5 file not found: {filepath}")

    with h5py.File(filepath, "r") as f:
        return dict(f.attrs.items())


def get_hdf5_info(filename: str | Path) -> dict[str, Any]:
    """
    Get information about an HDF5 file without loading the arrays.

    Args:
        filename: HDF5 file path

    Returns:
        Dictionary with the file attributes, dataset shapes and dtypes,
        and the file size in bytes

    Example:
        >>> info = get_hdf5_info('processor0of1.h5')
        >>> print(info["datasets"]["geometry/member_gids"])
    """
    _check_hdf5_available()

    filepath = Path(filename)
    if not filepath.exists():
        raise FileNotFoundError(f"HDF5 file not found: {filepath}")

    info: dict[str, Any] = {"datasets": {}}

    with h5py.File(filepath, "r") as f:
        info["attributes"] = dict(f.attrs.items())

        def _visit(name, obj):
            if isinstance(obj, h5py.Dataset):
                info["datasets"][name] = {"shape": obj.shape, "dtype": str(obj.dtype)}

        f.visititems(_visit)

    info["file_size_bytes"] = filepath.stat().st_size
    return info
