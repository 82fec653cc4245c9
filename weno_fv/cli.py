"""
Command-line interface for weno_fv.

Precomputes stencil geometry for generated box meshes and inspects cache files.
"""

import sys
import time

import click


@click.group()
@click.version_option(package_name="weno-fv", prog_name="weno-fv")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Logging level",
)
@click.option("--debug", is_flag=True, help="Development logging (DEBUG with source locations)")
def main(log_level, debug):
    """
    weno-fv: high-order WENO face reconstruction on unstructured meshes.

    Stencil geometry is expensive to build and is cached per mesh and
    polynomial order; these tools build and inspect that cache.
    """
    from weno_fv.utils.logging import configure_development_logging, configure_logging

    if debug:
        configure_development_logging()
    else:
        configure_logging(level=log_level.upper())


@main.command()
@click.option("--cells", nargs=3, type=int, default=(8, 8, 1), show_default=True, help="Cells per direction")
@click.option("--order", "-p", type=int, required=True, help="Polynomial order")
@click.option("--prisms", is_flag=True, help="Split every hexahedron into two triangular prisms")
@click.option("--periodic", multiple=True, type=click.Choice(["x", "y", "z"]), help="Periodic direction (repeatable)")
@click.option("--partitions", "-n", type=int, default=1, show_default=True, help="Number of slab partitions")
@click.option("--cache-dir", type=click.Path(file_okay=False), default=None, help="Cache directory")
def precompute(cells, order, prisms, periodic, partitions, cache_dir):
    """
    Build (or load) the stencil geometry of a box mesh.

    Examples:
        weno-fv precompute --cells 16 16 1 --order 2
        weno-fv precompute --cells 8 8 8 -p 1 --periodic x --partitions 4
    """
    from weno_fv.alg.numerical.weno_components.geometry_cache import GeometryCache
    from weno_fv.config.core import StencilConfig
    from weno_fv.geometry import box_mesh, decompose, slab_partition
    from weno_fv.parallel import SerialCommunicator, run_partitioned
    from weno_fv.utils.exceptions import WENOError
    from weno_fv.utils.logging import get_logger, log_performance_metric

    logger = get_logger("weno_fv.cli")
    start = time.time()

    try:
        mesh = box_mesh(cells=tuple(cells), periodic=tuple(periodic), prisms=prisms)
        config = StencilConfig()

        def build(part, comm):
            cache = GeometryCache(cache_dir, polynomial_order=order, comm=comm)
            geometry = cache.load_or_build(part, config)
            sizes = [geometry.stencil_size(geometry.central_stencil(t)) for t in range(geometry.n_cells)]
            return {
                "rank": geometry.rank,
                "cells": geometry.n_cells,
                "targets": geometry.n_targets,
                "stencils": geometry.n_stencils,
                "mean_size": sum(sizes) / max(len(sizes), 1),
                "halo": len(geometry.halo_gids),
                "path": cache.cache_path(part),
            }

        if partitions > 1:
            parts = decompose(mesh, slab_partition(mesh, partitions))
            stats = run_partitioned(lambda comm: build(parts[comm.rank], comm), partitions)
        else:
            stats = [build(mesh, SerialCommunicator())]

    except WENOError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    log_performance_metric(
        logger, "precompute", time.time() - start, {"cells": mesh.n_cells, "order": order, "partitions": partitions}
    )
    click.echo(f"Mesh: {mesh.n_cells} cells, order {order}, {partitions} partition(s)")
    for s in stats:
        click.echo(
            f"  rank {s['rank']}: {s['cells']} cells, {s['targets']} targets, {s['stencils']} stencils, "
            f"mean central size {s['mean_size']:.1f}, {s['halo']} halo cells -> {s['path']}"
        )


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def inspect(path):
    """
    Print attributes and datasets of a geometry cache file.

    Examples:
        weno-fv inspect constant/weno_geometry/3f2a.../processor0of1.h5
    """
    from weno_fv.utils.io import get_hdf5_info

    try:
        info = get_hdf5_info(path)
    except (ImportError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"{path} ({info['file_size_bytes']} bytes)")
    click.echo("Attributes:")
    for key, value in sorted(info["attributes"].items()):
        click.echo(f"  {key}: {value}")
    click.echo("Datasets:")
    for name, meta in sorted(info["datasets"].items()):
        click.echo(f"  {name}: shape {meta['shape']}, {meta['dtype']}")


if __name__ == "__main__":
    main()
