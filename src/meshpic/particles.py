"""
Per-Cell Particle Storage

Each mesh cell owns a CellParticles block holding its particles in
Structure-of-Arrays layout (positions, velocities, charges, masses in
separate contiguous arrays), so the relocation kernels can scan a cell's
positions without touching anything else.

Particles have no identity beyond their slot. Removal swaps the last
particle into the freed slot, so slot order is not stable across removals.
"""

from typing import NamedTuple

import numpy as np

from .errors import ContractViolation

# Initial slots per cell; blocks double when full
DEFAULT_CELL_CAPACITY = 4


class Particle(NamedTuple):
    """
    A simulation particle as an immutable value.

    Attributes:
        x: Position, tuple of D floats
        v: Velocity, tuple of D floats
        q: Charge
        m: Mass
    """
    x: tuple
    v: tuple
    q: float
    m: float

    @classmethod
    def create(cls, x, v, q, m):
        """Build a Particle from any array-likes."""
        x = tuple(float(c) for c in np.atleast_1d(x))
        v = tuple(float(c) for c in np.atleast_1d(v))
        return cls(x, v, float(q), float(m))


class CellParticles:
    """
    Growable SoA block of the particles in one cell.

    Attributes:
        dim: Spatial dimension D
        x: Positions [capacity, D] (rows [:n] are live)
        v: Velocities [capacity, D]
        q: Charges [capacity]
        m: Masses [capacity]
        n: Number of live particles
    """

    __slots__ = ("dim", "x", "v", "q", "m", "n")

    def __init__(self, dim, capacity=DEFAULT_CELL_CAPACITY):
        self.dim = dim
        self.n = 0
        self.x = np.zeros((capacity, dim), dtype=np.float64)
        self.v = np.zeros((capacity, dim), dtype=np.float64)
        self.q = np.zeros(capacity, dtype=np.float64)
        self.m = np.zeros(capacity, dtype=np.float64)

    @property
    def capacity(self):
        return self.q.shape[0]

    def _reserve(self, n_needed):
        if n_needed <= self.capacity:
            return
        capacity = max(2 * self.capacity, n_needed, DEFAULT_CELL_CAPACITY)

        x = np.zeros((capacity, self.dim), dtype=np.float64)
        v = np.zeros((capacity, self.dim), dtype=np.float64)
        q = np.zeros(capacity, dtype=np.float64)
        m = np.zeros(capacity, dtype=np.float64)
        x[:self.n] = self.x[:self.n]
        v[:self.n] = self.v[:self.n]
        q[:self.n] = self.q[:self.n]
        m[:self.n] = self.m[:self.n]
        self.x, self.v, self.q, self.m = x, v, q, m

    def append(self, x, v, q, m):
        """Append one particle; returns its slot."""
        self._reserve(self.n + 1)
        slot = self.n
        self.x[slot] = x
        self.v[slot] = v
        self.q[slot] = q
        self.m[slot] = m
        self.n += 1
        return slot

    def extend(self, xs, vs, qs, ms):
        """
        Append many particles.

        Args:
            xs: Positions [k, D]
            vs: Velocities [k, D]
            qs: Charges, scalar or [k]
            ms: Masses, scalar or [k]
        """
        xs = np.asarray(xs, dtype=np.float64).reshape(-1, self.dim)
        k = xs.shape[0]
        self._reserve(self.n + k)
        end = self.n + k
        self.x[self.n:end] = xs
        self.v[self.n:end] = np.asarray(vs, dtype=np.float64).reshape(k, self.dim)
        self.q[self.n:end] = qs
        self.m[self.n:end] = ms
        self.n = end

    def particle(self, slot):
        """Copy of the particle in a slot."""
        self._check_slot(slot)
        return Particle(tuple(self.x[slot].tolist()), tuple(self.v[slot].tolist()),
                        float(self.q[slot]), float(self.m[slot]))

    def take(self, slots):
        """
        Copies of the particles in the given slots.

        Returns:
            x, v, q, m: Arrays with one row per slot
        """
        slots = np.asarray(slots, dtype=np.int64)
        return (self.x[slots].copy(), self.v[slots].copy(),
                self.q[slots].copy(), self.m[slots].copy())

    def swap_remove(self, slot):
        """
        Remove a particle in O(1) by moving the last particle into its slot.

        Args:
            slot: Slot to free

        Returns:
            particle: The removed Particle
        """
        removed = self.particle(slot)
        last = self.n - 1
        if slot != last:
            self.x[slot] = self.x[last]
            self.v[slot] = self.v[last]
            self.q[slot] = self.q[last]
            self.m[slot] = self.m[last]
        self.n = last
        return removed

    def remove_slots(self, slots):
        """
        Remove several particles, highest slot first.

        Going in descending order keeps swap-remove correct: every particle
        moved into a freed slot comes from above all remaining marked slots.

        Args:
            slots: Distinct slot indices collected before any removal
        """
        for slot in sorted(slots, reverse=True):
            self.swap_remove(int(slot))

    def _check_slot(self, slot):
        if not 0 <= slot < self.n:
            raise ContractViolation(f"Slot {slot} out of range [0, {self.n})")

    def __len__(self):
        return self.n

    def __iter__(self):
        for slot in range(self.n):
            yield self.particle(slot)

    def __repr__(self):
        """String representation."""
        return f"CellParticles(n={self.n}, capacity={self.capacity}, dim={self.dim})"


class ParticleStore:
    """
    All particles of a population, grouped by the cell that contains them.

    Every live particle belongs to exactly one cell block. Between update
    passes its position lies inside that cell.

    Attributes:
        n_cells: Number of mesh cells
        dim: Spatial dimension D
    """

    def __init__(self, n_cells, dim, capacity=DEFAULT_CELL_CAPACITY):
        """
        Args:
            n_cells: Number of mesh cells
            dim: Spatial dimension
            capacity: Initial slots per cell
        """
        self.n_cells = n_cells
        self.dim = dim
        self._cells = [CellParticles(dim, capacity) for _ in range(n_cells)]

    def _check_cell(self, cell_id):
        if not 0 <= cell_id < self.n_cells:
            raise ContractViolation(
                f"Cell id {cell_id} out of range [0, {self.n_cells})"
            )

    def cell(self, cell_id):
        """The CellParticles block of a cell."""
        self._check_cell(cell_id)
        return self._cells[cell_id]

    def insert(self, cell_id, particle):
        """
        Store a particle in a cell.

        Args:
            cell_id: Cell the particle's position lies in
            particle: Particle (or anything with x, v, q, m)

        Returns:
            slot: Slot the particle landed in
        """
        self._check_cell(cell_id)
        x = np.asarray(particle.x, dtype=np.float64)
        if x.shape != (self.dim,):
            raise ContractViolation(
                f"Particle position has shape {x.shape}, expected ({self.dim},)"
            )
        return self._cells[cell_id].append(x, particle.v, particle.q, particle.m)

    def insert_many(self, cell_id, xs, vs, q, m):
        """
        Store many particles in one cell.

        Args:
            cell_id: Destination cell
            xs: Positions [k, D]
            vs: Velocities [k, D]
            q: Charge, scalar or [k]
            m: Mass, scalar or [k]
        """
        self._check_cell(cell_id)
        self._cells[cell_id].extend(xs, vs, q, m)

    def remove_and_compact(self, cell_id, slot):
        """
        Remove one particle in O(1); the cell's last particle takes its slot.

        Args:
            cell_id: Cell index
            slot: Slot to remove

        Returns:
            particle: The removed Particle
        """
        return self.cell(cell_id).swap_remove(slot)

    def particles(self, cell_id):
        """Copies of all particles in a cell."""
        return list(self.cell(cell_id))

    def __iter__(self):
        """Yield (cell_id, Particle) for every stored particle."""
        for cell_id, block in enumerate(self._cells):
            for particle in block:
                yield cell_id, particle

    def __len__(self):
        return self.count_total()

    def counts_per_cell(self):
        """Number of particles in each cell [n_cells]."""
        return np.array([block.n for block in self._cells], dtype=np.int64)

    def count_total(self):
        """Number of stored particles."""
        return sum(block.n for block in self._cells)

    def count_positive(self):
        """Number of positively charged particles."""
        return sum(int(np.count_nonzero(block.q[:block.n] > 0)) for block in self._cells)

    def count_negative(self):
        """Number of negatively charged particles."""
        return sum(int(np.count_nonzero(block.q[:block.n] < 0)) for block in self._cells)

    def total_charge(self):
        """Sum of all particle charges, accumulated in cell order."""
        total = 0.0
        for block in self._cells:
            total += float(np.sum(block.q[:block.n]))
        return total

    def as_arrays(self):
        """
        Flatten the store for diagnostics and checkpoints.

        Returns:
            cell_ids: Cell of every particle [N]
            x: Positions [N, D]
            v: Velocities [N, D]
            q: Charges [N]
            m: Masses [N]
        """
        counts = self.counts_per_cell()
        n_total = int(counts.sum())
        x = np.empty((n_total, self.dim))
        v = np.empty((n_total, self.dim))
        q = np.empty(n_total)
        m = np.empty(n_total)

        start = 0
        for block in self._cells:
            end = start + block.n
            x[start:end] = block.x[:block.n]
            v[start:end] = block.v[:block.n]
            q[start:end] = block.q[:block.n]
            m[start:end] = block.m[:block.n]
            start = end

        cell_ids = np.repeat(np.arange(self.n_cells), counts)
        return cell_ids, x, v, q, m

    def clear(self):
        """Drop every particle (keeps the allocated blocks)."""
        for block in self._cells:
            block.n = 0

    def __repr__(self):
        """String representation."""
        return (f"ParticleStore(n_cells={self.n_cells}, dim={self.dim}, "
                f"n_particles={self.count_total()})")

    def summary(self):
        """Print summary statistics."""
        counts = self.counts_per_cell()
        print(f"\nParticle Store Summary:")
        print(f"  Total particles:    {int(counts.sum())}")
        print(f"  Positive / negative: {self.count_positive()} / {self.count_negative()}")
        print(f"  Total charge:       {self.total_charge():.6e}")
        if self.n_cells:
            print(f"  Per cell (min/mean/max): {counts.min()} / "
                  f"{counts.mean():.2f} / {counts.max()}")
