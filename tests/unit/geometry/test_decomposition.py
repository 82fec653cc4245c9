"""
Unit tests for weno_fv/geometry/decomposition.py
"""

import pytest

import numpy as np

from weno_fv.geometry import box_mesh, decompose, slab_partition
from weno_fv.utils.exceptions import ConfigurationError, DimensionMismatchError


class TestSlabPartition:
    def test_balanced(self):
        mesh = box_mesh(cells=(7, 3, 1))
        ranks = slab_partition(mesh, 3)
        counts = np.bincount(ranks)
        assert counts.max() - counts.min() <= 3
        assert counts.sum() == mesh.n_cells

    def test_slabs_ordered_along_axis(self):
        mesh = box_mesh(cells=(6, 2, 1))
        ranks = slab_partition(mesh, 3, axis=0)
        x = mesh.cell_centres[:, 0]
        for r in range(2):
            assert x[ranks == r].max() < x[ranks == r + 1].min()

    def test_invalid_part_count(self):
        mesh = box_mesh(cells=(2, 2, 1))
        with pytest.raises(ConfigurationError):
            slab_partition(mesh, 5)


class TestDecompose:
    """Test splitting a mesh into partitions with processor patches."""

    @pytest.fixture
    def parts(self, periodic_mesh):
        return decompose(periodic_mesh, slab_partition(periodic_mesh, 3))

    def test_cells_preserved(self, periodic_mesh, parts):
        gids = np.concatenate([p.cell_global_ids for p in parts])
        np.testing.assert_array_equal(np.sort(gids), np.arange(periodic_mesh.n_cells))
        for rank, part in enumerate(parts):
            assert part.rank == rank
            assert part.n_ranks == 3
            assert np.all(np.diff(part.cell_global_ids) > 0)

    def test_geometry_preserved(self, periodic_mesh, parts):
        for part in parts:
            for cell, gid in enumerate(part.cell_global_ids):
                np.testing.assert_allclose(part.cell_centres[cell], periodic_mesh.cell_centres[gid], atol=1e-13)
                np.testing.assert_allclose(part.cell_volumes[cell], periodic_mesh.cell_volumes[gid], rtol=1e-12)

    def test_face_counts(self, periodic_mesh, parts):
        processor = sum(p.size for part in parts for p in part.patches if p.name.startswith("procBoundary"))
        internal = sum(part.n_internal_faces for part in parts)
        assert internal + processor // 2 == periodic_mesh.n_internal_faces

        periodic = sum(p.size for part in parts for p in part.patches if p.name.startswith("periodic"))
        assert periodic == len(list(periodic_mesh.coupled_faces()))

    def test_processor_patches(self, parts):
        owners = {int(g): part.rank for part in parts for g in part.cell_global_ids}
        for part in parts:
            for _, _, face, gid, translation in part.coupled_faces():
                patch = part.patches[part.face_patch_index[face]]
                assert owners[gid] == patch.neighbour_rank
                if patch.name.startswith("procBoundary"):
                    assert patch.neighbour_rank != part.rank
                    np.testing.assert_array_equal(translation, 0.0)

    def test_processor_faces_point_outwards(self, parts):
        for part in parts:
            for _, _, face, _, _ in part.coupled_faces():
                cell = part.owner[face]
                d = part.face_centres[face] - part.cell_centres[cell]
                assert np.dot(d, part.face_areas[face]) > 0

    def test_wrong_shape(self, periodic_mesh):
        with pytest.raises(DimensionMismatchError):
            decompose(periodic_mesh, np.zeros(3, dtype=int))

    def test_only_single_partition_meshes(self, parts):
        with pytest.raises(ConfigurationError):
            decompose(parts[0], np.zeros(parts[0].n_cells, dtype=int))
