"""
Particle Checkpoint Files

Two formats, one particle per record:

    ASCII:  x_0 ... x_{D-1}  v_0 ... v_{D-1}  q  m   (tab separated, %.17g)
    binary: the same 2D+2 values as little-endian float64, no header

%.17g round-trips every float64 exactly, so both formats restore a store
bit for bit.
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)


def _records(store):
    _, x, v, q, m = store.as_arrays()
    return np.column_stack([x, v, q, m])


def save_particles(store, fname, binary=False):
    """
    Write every particle of a store to a file.

    Args:
        store: ParticleStore
        fname: Output file name
        binary: Write float64 records instead of text

    Returns:
        n_particles: Number of records written
    """
    records = _records(store)
    if binary:
        records.astype("<f8").tofile(fname)
    else:
        np.savetxt(fname, records, fmt="%.17g", delimiter="\t")

    logger.info("Saved %d particles to %s", records.shape[0], fname)
    return records.shape[0]


def read_particles(fname, dim, binary=False):
    """
    Read particle records.

    Args:
        fname: Input file name
        dim: Spatial dimension D
        binary: File holds float64 records

    Returns:
        x, v, q, m: Arrays [n, D], [n, D], [n], [n]
    """
    width = 2 * dim + 2
    if binary:
        data = np.fromfile(fname, dtype="<f8")
        if data.size % width:
            raise ValueError(
                f"{fname}: {data.size} values is not a whole number of "
                f"{width}-value particle records"
            )
        data = data.reshape(-1, width)
    else:
        with open(fname) as f:
            has_data = any(line.strip() for line in f)
        data = np.loadtxt(fname, ndmin=2) if has_data else np.empty((0, width))
        if data.shape[1] != width:
            raise ValueError(
                f"{fname}: rows have {data.shape[1]} columns, expected {width} "
                f"for {dim}D particles"
            )

    return (data[:, :dim], data[:, dim:2 * dim],
            data[:, 2 * dim].copy(), data[:, 2 * dim + 1].copy())


def load_particles(engine, fname, binary=False):
    """
    Read a checkpoint and add its particles to an engine.

    Each particle is located from scratch; particles outside the mesh are
    dropped.

    Args:
        engine: PopulationEngine
        fname: Input file name
        binary: File holds float64 records

    Returns:
        n_added: Number of particles stored
    """
    x, v, q, m = read_particles(fname, engine.localizer.dim, binary=binary)
    n_added = engine.add_particles(x, v, q, m)
    logger.info("Loaded %d of %d particles from %s", n_added, len(q), fname)
    return n_added
