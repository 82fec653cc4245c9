"""
Unit tests for weno_fv/alg/numerical/weno_components/geometry_cache.py
"""

import pytest

import numpy as np

from weno_fv.alg.numerical.weno_components import FORMAT_VERSION, GeometryCache, StencilBuilder, WENOGeometry
from weno_fv.config import StencilConfig, WENOConfig
from weno_fv.geometry import box_mesh, decompose, slab_partition
from weno_fv.parallel import SerialCommunicator, run_partitioned
from weno_fv.utils.exceptions import GeometryNotBuiltError, WENOError


class _CountingCommunicator(SerialCommunicator):
    def __init__(self):
        self.barriers = 0

    def barrier(self):
        self.barriers += 1


def _assert_same_geometry(a, b):
    arrays_a, attrs_a = a.to_arrays()
    arrays_b, attrs_b = b.to_arrays()
    assert attrs_a == attrs_b
    assert arrays_a.keys() == arrays_b.keys()
    for name in arrays_a:
        np.testing.assert_array_equal(arrays_a[name], arrays_b[name], err_msg=name)


class TestWENOGeometry:
    """Test the immutable geometry bundle."""

    def test_arrays_read_only(self, quad_mesh):
        geometry = StencilBuilder(quad_mesh, 1).build()
        with pytest.raises(ValueError):
            geometry.member_gids[0] = 99

    def test_array_round_trip(self, quad_mesh):
        geometry = StencilBuilder(quad_mesh, 2).build()
        arrays, attrs = geometry.to_arrays()
        assert attrs["format_version"] == FORMAT_VERSION
        _assert_same_geometry(WENOGeometry.from_arrays(arrays, attrs), geometry)

    def test_operator_shape(self, quad_mesh):
        geometry = StencilBuilder(quad_mesh, 2).build()
        for s in range(geometry.n_stencils):
            assert geometry.operator(s).shape == (geometry.n_basis, geometry.stencil_size(s) - 1)

    def test_build_is_deterministic(self, prism_mesh):
        _assert_same_geometry(StencilBuilder(prism_mesh, 2).build(), StencilBuilder(prism_mesh, 2).build())


class TestGeometryCache:
    """Test binding, persistence and cache misses."""

    def test_unbound_access(self, tmp_path):
        cache = GeometryCache(tmp_path, polynomial_order=1)
        assert not cache.is_bound
        with pytest.raises(GeometryNotBuiltError):
            _ = cache.geometry

    def test_bind_once(self, tmp_path, quad_mesh):
        cache = GeometryCache(tmp_path, polynomial_order=1)
        geometry = cache.load_or_build(quad_mesh)
        assert cache.is_bound
        assert cache.geometry is geometry
        with pytest.raises(WENOError, match="already bound"):
            cache.bind(geometry)

    def test_write_then_hit(self, tmp_path, quad_mesh):
        built = GeometryCache(tmp_path, polynomial_order=2).load_or_build(quad_mesh)

        cache = GeometryCache(tmp_path, polynomial_order=2)
        path = cache.cache_path(quad_mesh)
        assert path.exists()
        assert path.name == "processor0of1.h5"

        loaded = cache.read_list(quad_mesh, StencilConfig())
        assert loaded is not None
        _assert_same_geometry(loaded, built)

    def test_miss_on_config_change(self, tmp_path, quad_mesh):
        GeometryCache(tmp_path, polynomial_order=1).load_or_build(quad_mesh)
        cache = GeometryCache(tmp_path, polynomial_order=1)
        assert cache.read_list(quad_mesh, StencilConfig(size_factor=2.0)) is None

    def test_miss_on_mesh_change(self, tmp_path, quad_mesh, regular_quad_mesh):
        GeometryCache(tmp_path, polynomial_order=1).load_or_build(quad_mesh)
        cache = GeometryCache(tmp_path, polynomial_order=1)
        assert cache.cache_path(quad_mesh) != cache.cache_path(regular_quad_mesh)
        assert cache.read_list(regular_quad_mesh, StencilConfig()) is None

    def test_order_selects_directory(self, tmp_path, quad_mesh):
        first = GeometryCache(tmp_path, polynomial_order=1).cache_path(quad_mesh)
        second = GeometryCache(tmp_path, polynomial_order=2).cache_path(quad_mesh)
        assert first.parent != second.parent

    def test_corrupt_file_is_a_miss(self, tmp_path, quad_mesh):
        cache = GeometryCache(tmp_path, polynomial_order=1)
        path = cache.cache_path(quad_mesh)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"not an hdf5 file")

        assert cache.read_list(quad_mesh, StencilConfig()) is None
        geometry = cache.load_or_build(quad_mesh)
        assert geometry.n_cells == quad_mesh.n_cells
        assert cache.read_list(quad_mesh, StencilConfig()) is not None

    def test_disabled_cache_writes_nothing(self, tmp_path, quad_mesh):
        cache = GeometryCache(tmp_path, polynomial_order=1, enabled=False)
        cache.load_or_build(quad_mesh)
        assert not cache.cache_path(quad_mesh).exists()

    def test_from_config(self, tmp_path):
        config = WENOConfig(polynomial_order=3, cache={"directory": str(tmp_path), "enabled": False})
        cache = GeometryCache.from_config(config)
        assert cache.polynomial_order == 3
        assert cache.directory == tmp_path
        assert not cache.enabled

    def test_draw_stencils(self, tmp_path, quad_mesh):
        pytest.importorskip("meshio")
        cache = GeometryCache(tmp_path, polynomial_order=1, enabled=False)
        cache.load_or_build(quad_mesh)
        path = cache.draw_stencils(tmp_path / "stencils.vtu")
        assert path.exists()

    def test_barrier_after_write(self, tmp_path, quad_mesh):
        comm = _CountingCommunicator()
        GeometryCache(tmp_path, polynomial_order=1, comm=comm).load_or_build(quad_mesh)
        assert comm.barriers == 1

        hit = _CountingCommunicator()
        GeometryCache(tmp_path, polynomial_order=1, comm=hit).load_or_build(quad_mesh)
        assert hit.barriers == 0

    def test_partition_files_complete_on_return(self, tmp_path):
        mesh = box_mesh(cells=(6, 4, 1))
        parts = decompose(mesh, slab_partition(mesh, 2))

        paths = [GeometryCache(tmp_path, polynomial_order=1).cache_path(part) for part in parts]

        def work(comm):
            GeometryCache(tmp_path, polynomial_order=1, comm=comm).load_or_build(parts[comm.rank])
            return all(path.exists() for path in paths)

        assert run_partitioned(work, 2) == [True, True]
