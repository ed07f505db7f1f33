"""
Population Update Engine

Keeps the per-cell particle population consistent after the pusher has
moved the particles. One update(dt) pass:

1. relocates every particle starting from the cell it is stored in
   (read-only scan, optionally on a thread pool),
2. resets the collected charge of every boundary object,
3. merges the results sequentially in cell order: particles that left
   their cell are copied out, boundary exits deposit their charge on the
   matching object (or count as exterior loss), removals are applied
   highest slot first and the movers are appended to their new cells,
4. settles the object charges and, with a circuit attached, updates the
   floating potentials.

All writes happen from step 2 on, so the result does not depend on the
number of worker threads, and a scan that raises leaves the store and the
objects as they were.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import NamedTuple

import numpy as np

from .constants import DEFAULT_MAX_RELOCATION_STEPS
from .errors import ConfigurationError, ContractViolation
from .localization.builder import LocalizerBuilder
from .localization.locator import BOUNDARY, CELL, Locator
from .particles import ParticleStore

logger = logging.getLogger(__name__)


class EngineState(Enum):
    """Phase of an update pass."""
    IDLE = "idle"
    RELOCATING = "relocating"
    COMPACTING = "compacting"
    CHARGE_SETTLED = "charge_settled"


class UpdateReport(NamedTuple):
    """
    Outcome of one update pass.

    Attributes:
        n_moved: Particles that changed cell and stayed in the domain
        n_absorbed: Particles absorbed by a boundary object
        n_lost: Particles lost through untracked boundaries
        charge_absorbed: Total charge deposited on objects
        charge_lost: Total charge lost through untracked boundaries
        crossings: Facets crossed by all relocation walks
        n_particles: Particles stored after the pass
    """
    n_moved: int
    n_absorbed: int
    n_lost: int
    charge_absorbed: float
    charge_lost: float
    crossings: int
    n_particles: int

    @property
    def mean_crossings(self):
        """Facet crossings per particle walked."""
        n_walked = self.n_particles + self.n_absorbed + self.n_lost
        return self.crossings / n_walked if n_walked else 0.0


class _CellScan(NamedTuple):
    # Relocation result of one cell, restricted to the particles that left it
    slots: np.ndarray
    kinds: np.ndarray
    targets: np.ndarray
    crossings: int


class PopulationEngine:
    """
    Owns the particle store, the boundary objects and the optional circuit.

    Usage:
        localizer = LocalizerBuilder(mesh).build()
        engine = PopulationEngine(localizer, objects=[BoundaryObject(2)])
        engine.add_particles(xs, vs, q=-e, m=m_e)
        for step in range(n_steps):
            push(engine.store, dt)          # external pusher moves positions
            report = engine.update(dt)

    Attributes:
        localizer: Read-only localization tables
        locator: Walk and point location over the localizer
        store: ParticleStore
        objects: Boundary objects in the order given
        circuit: CapacitanceCircuit or None
        fast: Use the first-crossed-facet walk
        workers: Threads for the relocation scan
        state: Current EngineState
    """

    def __init__(self, localizer, objects=(), circuit=None, fast=True,
                 max_steps=DEFAULT_MAX_RELOCATION_STEPS, workers=1):
        """
        Args:
            localizer: Localizer of the mesh
            objects: BoundaryObjects, each tied to a mesh boundary id
            circuit: CapacitanceCircuit over (a subset of) the objects
            fast: Relocate with the first-crossed-facet walk
            max_steps: Facet-crossing cap per walk
            workers: Number of scan threads (1 = run inline)

        Raises:
            ConfigurationError: On duplicate object ids, an object id that is
                not a boundary id of the mesh, or circuit objects that are
                not among the engine's objects
        """
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")

        self.localizer = localizer
        self.locator = Locator(localizer, max_steps=max_steps)
        self.store = ParticleStore(localizer.n_cells, localizer.dim)
        self.fast = bool(fast)
        self.workers = int(workers)
        self.state = EngineState.IDLE

        self.objects = list(objects)
        self._object_index = {}
        mesh_ids = set(localizer.boundary_ids.tolist())
        for i, obj in enumerate(self.objects):
            if obj.boundary_id in self._object_index:
                raise ConfigurationError(
                    f"Duplicate boundary object id {obj.boundary_id}"
                )
            if obj.boundary_id not in mesh_ids:
                raise ConfigurationError(
                    f"Object {obj.name} has boundary id {obj.boundary_id}, "
                    f"mesh boundary ids are {sorted(mesh_ids)}"
                )
            self._object_index[obj.boundary_id] = i

        if circuit is not None:
            for obj in circuit.objects:
                if self._object_index.get(obj.boundary_id) is None or \
                        self.objects[self._object_index[obj.boundary_id]] is not obj:
                    raise ConfigurationError(
                        f"Circuit object {obj.name} is not one of the engine's objects"
                    )
        self.circuit = circuit

        self.n_dropped = 0

    @classmethod
    def from_mesh(cls, mesh, **kwargs):
        """Build the localizer of a SimplexMesh and an engine over it."""
        return cls(LocalizerBuilder(mesh).build(), **kwargs)

    # ==================== POPULATION ====================

    def object(self, boundary_id):
        """The BoundaryObject with the given boundary id."""
        try:
            return self.objects[self._object_index[boundary_id]]
        except KeyError:
            raise KeyError(f"No boundary object with id {boundary_id}") from None

    def add_particle(self, particle):
        """
        Locate a particle and store it.

        Args:
            particle: Particle (or anything with x, v, q, m)

        Returns:
            cell_id: The containing cell, or None if the particle is outside
                the mesh (it is then dropped)
        """
        self._check_idle("add_particle")
        cell_id = self.locator.locate(particle.x)
        if cell_id is None:
            self.n_dropped += 1
            return None
        self.store.insert(cell_id, particle)
        return cell_id

    def add_particles(self, xs, vs, q, m):
        """
        Locate and store many particles.

        Args:
            xs: Positions [n, D]
            vs: Velocities [n, D]
            q: Charge, scalar or [n]
            m: Mass, scalar or [n]

        Returns:
            n_added: Number of particles stored (points outside are dropped)
        """
        self._check_idle("add_particles")
        dim = self.localizer.dim
        xs = np.asarray(xs, dtype=np.float64).reshape(-1, dim)
        n = xs.shape[0]
        vs = np.asarray(vs, dtype=np.float64).reshape(n, dim)
        q = np.broadcast_to(np.asarray(q, dtype=np.float64), (n,))
        m = np.broadcast_to(np.asarray(m, dtype=np.float64), (n,))

        cell_ids = self.locator.locate_many(xs)
        inside = cell_ids >= 0
        n_dropped = int(n - np.count_nonzero(inside))

        idx = np.nonzero(inside)[0]
        self._insert_grouped(cell_ids[idx], xs[idx], vs[idx], q[idx], m[idx])

        self.n_dropped += n_dropped
        if n_dropped:
            logger.info("Added %d particles, dropped %d outside the mesh",
                        n - n_dropped, n_dropped)
        else:
            logger.info("Added %d particles", n)
        return n - n_dropped

    def _insert_grouped(self, cell_ids, xs, vs, q, m):
        # Stable sort keeps the incoming order within each destination cell
        if len(cell_ids) == 0:
            return
        order = np.argsort(cell_ids, kind="stable")
        cell_ids = cell_ids[order]
        starts = np.flatnonzero(np.r_[True, cell_ids[1:] != cell_ids[:-1]])
        ends = np.r_[starts[1:], len(cell_ids)]
        for start, end in zip(starts, ends):
            sel = order[start:end]
            self.store.insert_many(int(cell_ids[start]), xs[sel], vs[sel], q[sel], m[sel])

    def count_total(self):
        """Number of particles in the domain."""
        return self.store.count_total()

    def count_positive(self):
        """Number of positively charged particles."""
        return self.store.count_positive()

    def count_negative(self):
        """Number of negatively charged particles."""
        return self.store.count_negative()

    # ==================== UPDATE ====================

    def _check_idle(self, operation):
        if self.state is not EngineState.IDLE:
            raise ContractViolation(
                f"{operation}() called while an update pass is {self.state.value}"
            )

    def _scan_cell(self, cell_id):
        block = self.store.cell(cell_id)
        if block.n == 0:
            return None
        kinds, targets, crossings = self.locator.relocate_block(
            block.x[:block.n], cell_id, fast=self.fast
        )
        left = np.nonzero((kinds != CELL) | (targets != cell_id))[0]
        return _CellScan(left, kinds[left], targets[left], crossings)

    def _scan(self):
        cell_ids = range(self.store.n_cells)
        if self.workers == 1:
            return [self._scan_cell(c) for c in cell_ids]
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            return list(executor.map(self._scan_cell, cell_ids))

    def update(self, dt):
        """
        Bring the population back in line with the particle positions.

        Args:
            dt: Timestep of the move that preceded this pass [s]

        Returns:
            report: UpdateReport

        Raises:
            ValueError: If dt <= 0
            ContractViolation: If called while a pass is already running, or
                a stored particle has a non-finite position
            RelocationError: If a particle outran the walk cap
        """
        if dt <= 0:
            raise ValueError(f"dt must be positive, got {dt}")
        self._check_idle("update")

        try:
            self.state = EngineState.RELOCATING
            scans = self._scan()
            for obj in self.objects:
                obj.reset()

            self.state = EngineState.COMPACTING
            report = self._merge(scans)

            for obj in self.objects:
                obj.settle(dt)
            if self.circuit is not None:
                self.circuit.update_potentials()
            self.state = EngineState.CHARGE_SETTLED
        finally:
            self.state = EngineState.IDLE

        logger.debug(
            "update: moved=%d absorbed=%d lost=%d crossings=%d particles=%d",
            report.n_moved, report.n_absorbed, report.n_lost,
            report.crossings, report.n_particles,
        )
        return report

    def _merge(self, scans):
        n_moved = n_absorbed = n_lost = 0
        charge_absorbed = charge_lost = 0.0
        crossings = 0

        pending_cells = []
        pending = ([], [], [], [])

        for cell_id, scan in enumerate(scans):
            if scan is None:
                continue
            crossings += scan.crossings
            if len(scan.slots) == 0:
                continue

            block = self.store.cell(cell_id)
            x, v, q, m = block.take(scan.slots)

            for p in range(len(scan.slots)):
                if scan.kinds[p] != BOUNDARY:
                    continue
                index = self._object_index.get(int(scan.targets[p]))
                if index is None:
                    n_lost += 1
                    charge_lost += q[p]
                else:
                    self.objects[index].deposit(q[p])
                    n_absorbed += 1
                    charge_absorbed += q[p]

            block.remove_slots(scan.slots)

            stay = scan.kinds == CELL
            if np.any(stay):
                n_moved += int(np.count_nonzero(stay))
                pending_cells.append(scan.targets[stay])
                for buf, arr in zip(pending, (x, v, q, m)):
                    buf.append(arr[stay])

        if pending_cells:
            self._insert_grouped(
                np.concatenate(pending_cells),
                *(np.concatenate(buf) for buf in pending),
            )

        return UpdateReport(
            n_moved=n_moved,
            n_absorbed=n_absorbed,
            n_lost=n_lost,
            charge_absorbed=float(charge_absorbed),
            charge_lost=float(charge_lost),
            crossings=int(crossings),
            n_particles=self.store.count_total(),
        )

    def __repr__(self):
        """String representation."""
        return (f"PopulationEngine(n_cells={self.localizer.n_cells}, "
                f"n_particles={self.count_total()}, n_objects={len(self.objects)}, "
                f"fast={self.fast}, workers={self.workers})")
