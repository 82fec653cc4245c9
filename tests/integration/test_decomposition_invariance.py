"""
Integration tests: decomposed reconstruction matches the serial one.

Stencils, limiter extrema and upwind selection are all defined on data that
does not depend on the partitioning, so every face value computed on a
decomposed mesh must equal the serial value up to round-off.
"""

import pytest

import numpy as np

from weno_fv.alg.numerical import GeometryCache, WENOUpwindFit
from weno_fv.config import StencilConfig
from weno_fv.geometry import box_mesh, decompose, slab_partition
from weno_fv.parallel import run_partitioned

VELOCITY = np.array([1.0, -0.6, 0.2])


def _field(mesh):
    x, y = mesh.cell_centres[:, 0], mesh.cell_centres[:, 1]
    return np.where(x + 0.3 * y < 0.55, 1.0, 0.0) + 0.2 * np.sin(3.0 * x) * y


def _face_keys(mesh):
    return [tuple(np.round(c, 8)) for c in mesh.face_centres]


def _reconstruct(mesh, order, vf, limiting_factor, comm=None):
    cache = GeometryCache(polynomial_order=order, comm=comm, enabled=False)
    geometry = cache.load_or_build(mesh, StencilConfig())
    scheme = WENOUpwindFit(mesh, geometry, mesh.face_areas @ VELOCITY, limiting_factor, comm=comm)
    return scheme.interpolate(vf), scheme.correction(vf)


@pytest.mark.parametrize("periodic", [(), ("x",)])
@pytest.mark.parametrize("n_parts", [2, 3])
@pytest.mark.parametrize(("order", "limiting_factor"), [(1, 1.0), (2, 1.0), (2, 0.0)])
def test_matches_serial(periodic, n_parts, order, limiting_factor):
    """Face values on every partition equal the serial face values."""
    mesh = box_mesh(cells=(9, 6, 1), periodic=periodic, perturbation=0.15, seed=21)
    vf = _field(mesh)

    serial_values, serial_corrections = _reconstruct(mesh, order, vf, limiting_factor)
    serial = {}
    for key, value, corr in zip(_face_keys(mesh), serial_values, serial_corrections):
        serial.setdefault(key, []).append((value, corr))

    parts = decompose(mesh, slab_partition(mesh, n_parts))

    def work(comm):
        part = parts[comm.rank]
        return _reconstruct(part, order, vf[part.cell_global_ids], limiting_factor, comm)

    results = run_partitioned(work, n_parts)

    n_checked = 0
    for part, (values, corrections) in zip(parts, results):
        for key, value, corr in zip(_face_keys(part), values, corrections):
            candidates = serial[key]
            assert any(
                np.isclose(value, v, rtol=1e-9, atol=1e-12) and np.isclose(corr, c, rtol=1e-9, atol=1e-12)
                for v, c in candidates
            ), key
            n_checked += 1

    assert n_checked >= mesh.n_faces


def test_three_dimensional_partitions():
    """Hexahedral mesh split into slabs along y."""
    mesh = box_mesh(cells=(4, 6, 3), perturbation=0.1, seed=8)
    vf = _field(mesh)
    serial_values, _ = _reconstruct(mesh, 1, vf, 1.0)
    serial = dict(zip(_face_keys(mesh), serial_values))

    parts = decompose(mesh, slab_partition(mesh, 2, axis=1))
    results = run_partitioned(
        lambda comm: _reconstruct(parts[comm.rank], 1, vf[parts[comm.rank].cell_global_ids], 1.0, comm)[0], 2
    )

    for part, values in zip(parts, results):
        expected = np.array([serial[key] for key in _face_keys(part)])
        np.testing.assert_allclose(values, expected, rtol=1e-9, atol=1e-12)


@pytest.mark.parametrize("periodic", [(), ("x",)])
@pytest.mark.parametrize("order", [1, 2])
def test_zero_flux_on_partition_boundary(periodic, order):
    """Flow parallel to the cut: the faces between slabs carry zero flux."""
    mesh = box_mesh(cells=(6, 4, 1), periodic=periodic)
    vf = 3.0 * mesh.cell_centres[:, 0]
    velocity = np.array([0.0, 1.0, 0.0])

    def interpolate(part, comm=None):
        geometry = GeometryCache(polynomial_order=order, comm=comm, enabled=False).load_or_build(part)
        scheme = WENOUpwindFit(part, geometry, part.face_areas @ velocity, comm=comm)
        return scheme.interpolate(vf[part.cell_global_ids])

    serial = dict(zip(_face_keys(mesh), interpolate(mesh)))

    parts = decompose(mesh, slab_partition(mesh, 2))
    results = run_partitioned(lambda comm: interpolate(parts[comm.rank], comm), 2)

    for part, values in zip(parts, results):
        expected = np.array([serial[key] for key in _face_keys(part)])
        np.testing.assert_allclose(values, expected, rtol=1e-12, atol=1e-14)

    # the face at x = 0.5 takes the value of its left cell on both ranks
    cut = [i for i, c in enumerate(parts[1].face_centres) if np.isclose(c[0], 0.5)]
    assert cut
    np.testing.assert_allclose(results[1][cut], 1.25)
