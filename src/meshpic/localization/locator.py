"""
Point Location and Relocation over the Localizer Tables

relocate() is the per-particle hot path: starting from the particle's
current cell it evaluates the facet planes and hops across the facet the
point lies beyond, until the point is inside a cell or the walk leaves the
mesh through a tagged boundary.

A facet counts as crossed when the point's distance to it is positive, or
zero on a boundary facet (a point exactly on the domain edge has left).
Because both sides of an interior facet see exactly opposite distances, a
point on an interior facet belongs to whichever side the walk arrives from.
A point touching the closed boundary only through a vertex or edge of its
cell has left as well: the cells sharing a vertex with the final cell are
checked for a boundary facet through the point.

Walks are explicit loops capped at max_steps; reaching the cap raises
RelocationError. A non-finite position raises ContractViolation.
"""

from typing import NamedTuple, Optional, Union

import numpy as np
from numba import njit, prange

from ..constants import DEFAULT_MAX_RELOCATION_STEPS, LOCATE_TOLERANCE
from ..errors import ContractViolation, RelocationError

# Kernel result kinds
CELL = 0
BOUNDARY = 1
EXHAUSTED = 2
INVALID = 3


class BoundaryExit(NamedTuple):
    """The walk left the mesh through the boundary with this id."""
    boundary_id: int


Location = Union[int, BoundaryExit]


# ==================== NUMBA KERNELS ====================


@njit(nogil=True)
def facet_distance(plane_coeffs, cell_id, facet, x):
    """
    Signed distance from point x to one facet plane.

    Args:
        plane_coeffs: Localizer plane coefficients [n_cells, D+1, D+1]
        cell_id: Cell index
        facet: Local facet index
        x: Point [D]

    Returns:
        distance: offset + n . x (positive = outside)
    """
    d = plane_coeffs[cell_id, facet, 0]
    for j in range(x.shape[0]):
        d += plane_coeffs[cell_id, facet, j + 1] * x[j]
    return d


@njit(nogil=True)
def cell_boundary_contact(x, cell_id, plane_coeffs, facet_boundary, tol):
    """
    Lowest boundary id of a facet of cell_id that x lies on.

    Returns:
        boundary_id: 0 unless x is in the closed cell (every distance
            <= tol) and on one of its boundary facets (distance == tol)
    """
    contact = 0
    for i in range(plane_coeffs.shape[1]):
        d = facet_distance(plane_coeffs, cell_id, i, x)
        if d > tol:
            return 0
        bnd = facet_boundary[cell_id, i]
        if d == tol and bnd > 0 and (contact == 0 or bnd < contact):
            contact = bnd
    return contact


@njit(nogil=True)
def boundary_contact(x, cell_id, plane_coeffs, facet_boundary,
                     neighbor_offsets, neighbor_cells, tol):
    """
    Lowest boundary id touched by x around cell_id.

    Checks cell_id and every cell sharing a vertex with it. All cells whose
    closure holds x share a vertex, so the answer does not depend on which
    of them the walk stopped in.

    Returns:
        boundary_id: 0 if x touches no boundary facet
    """
    contact = cell_boundary_contact(x, cell_id, plane_coeffs, facet_boundary, tol)
    for k in range(neighbor_offsets[cell_id], neighbor_offsets[cell_id + 1]):
        bnd = cell_boundary_contact(x, neighbor_cells[k], plane_coeffs,
                                    facet_boundary, tol)
        if bnd > 0 and (contact == 0 or bnd < contact):
            contact = bnd
    return contact


@njit(nogil=True)
def relocate_exact_kernel(x, cell_id, plane_coeffs, facet_adjacent,
                          facet_boundary, neighbor_offsets, neighbor_cells,
                          max_steps):
    """
    Walk towards x, always across the facet with the largest distance.

    Ties go to the lowest facet index. A point left on the closed boundary
    (on a boundary facet, or on an interior facet through a boundary vertex
    or edge) exits through the lowest boundary id it touches.

    Returns:
        kind: CELL, BOUNDARY, EXHAUSTED or INVALID
        value: Cell id (CELL, EXHAUSTED, INVALID) or boundary id (BOUNDARY)
        crossings: Number of facets crossed
    """
    n_facets = plane_coeffs.shape[1]

    for step in range(max_steps):
        best = -1
        best_d = 0.0
        touching = False
        for i in range(n_facets):
            d = facet_distance(plane_coeffs, cell_id, i, x)
            if not np.isfinite(d):
                return INVALID, cell_id, step
            if d > 0.0 or (d == 0.0 and facet_boundary[cell_id, i] > 0):
                if best < 0 or d > best_d:
                    best = i
                    best_d = d
            elif d == 0.0:
                touching = True

        if best < 0:
            if touching:
                bnd = boundary_contact(x, cell_id, plane_coeffs, facet_boundary,
                                       neighbor_offsets, neighbor_cells, 0.0)
                if bnd > 0:
                    return BOUNDARY, bnd, step + 1
            return CELL, cell_id, step

        if facet_boundary[cell_id, best] > 0:
            if best_d == 0.0:
                bnd = boundary_contact(x, cell_id, plane_coeffs, facet_boundary,
                                       neighbor_offsets, neighbor_cells, 0.0)
                return BOUNDARY, bnd, step + 1
            return BOUNDARY, facet_boundary[cell_id, best], step + 1

        cell_id = facet_adjacent[cell_id, best]

    return EXHAUSTED, cell_id, max_steps


@njit(nogil=True)
def relocate_fast_kernel(x, cell_id, plane_coeffs, facet_adjacent,
                         facet_boundary, neighbor_offsets, neighbor_cells,
                         max_steps):
    """
    Walk towards x across the first crossed facet found.

    Skips evaluating the remaining facets once one is crossed. Only a point
    strictly inside a cell is settled this way: boundary exits, points on a
    facet and walks reaching the cap are redone with the exact walk from
    the starting cell, so both walks report the same location.

    Returns:
        kind, value, crossings: As relocate_exact_kernel
    """
    n_facets = plane_coeffs.shape[1]
    start = cell_id

    for step in range(max_steps):
        hop = -1
        touching = False
        for i in range(n_facets):
            d = facet_distance(plane_coeffs, cell_id, i, x)
            if not np.isfinite(d):
                return INVALID, cell_id, step
            if d > 0.0 or (d == 0.0 and facet_boundary[cell_id, i] > 0):
                hop = i
                break
            if d == 0.0:
                touching = True

        if hop < 0 and not touching:
            return CELL, cell_id, step

        if hop < 0 or facet_boundary[cell_id, hop] > 0:
            break

        cell_id = facet_adjacent[cell_id, hop]

    return relocate_exact_kernel(x, start, plane_coeffs, facet_adjacent,
                                 facet_boundary, neighbor_offsets, neighbor_cells,
                                 max_steps)


@njit(nogil=True)
def relocate_block_kernel(x, cell_id, plane_coeffs, facet_adjacent,
                          facet_boundary, neighbor_offsets, neighbor_cells,
                          max_steps, fast, kinds, targets):
    """
    Relocate every particle of one cell.

    Only reads the tables and positions; results go to kinds/targets.

    Args:
        x: Particle positions of the cell [n, D]
        cell_id: The cell all particles start in
        plane_coeffs, facet_adjacent, facet_boundary: Localizer tables
        neighbor_offsets, neighbor_cells: Vertex-sharing cells (CSR)
        max_steps: Walk cap
        fast: Use the first-crossed-facet walk
        kinds: Output result kinds [n]
        targets: Output cell or boundary ids [n]

    Returns:
        crossings: Total facet crossings of the block
    """
    crossings = 0
    for p in range(x.shape[0]):
        if fast:
            kind, value, hops = relocate_fast_kernel(
                x[p], cell_id, plane_coeffs, facet_adjacent, facet_boundary,
                neighbor_offsets, neighbor_cells, max_steps
            )
        else:
            kind, value, hops = relocate_exact_kernel(
                x[p], cell_id, plane_coeffs, facet_adjacent, facet_boundary,
                neighbor_offsets, neighbor_cells, max_steps
            )
        kinds[p] = kind
        targets[p] = value
        crossings += hops
    return crossings


@njit(nogil=True)
def locate_kernel(x, plane_coeffs, facet_boundary, neighbor_offsets,
                  neighbor_cells, tol):
    """
    Find the first cell containing x by testing every cell.

    Returns:
        cell_id: Lowest containing cell id, -1 if x is outside the mesh or
            on its boundary
    """
    n_cells = plane_coeffs.shape[0]
    n_facets = plane_coeffs.shape[1]

    for c in range(n_cells):
        inside = True
        for i in range(n_facets):
            if facet_distance(plane_coeffs, c, i, x) > tol:
                inside = False
                break
        if inside:
            if boundary_contact(x, c, plane_coeffs, facet_boundary,
                                neighbor_offsets, neighbor_cells, tol) > 0:
                return -1
            return c

    return -1


@njit(parallel=True)
def locate_many_kernel(xs, plane_coeffs, facet_boundary, neighbor_offsets,
                       neighbor_cells, tol, out):
    """Locate every row of xs (parallel over points)."""
    for p in prange(xs.shape[0]):
        out[p] = locate_kernel(xs[p], plane_coeffs, facet_boundary,
                               neighbor_offsets, neighbor_cells, tol)


# ==================== PYTHON INTERFACE ====================


class Locator:
    """
    Point location over a Localizer.

    Attributes:
        localizer: The read-only tables walked
        max_steps: Cap on facet crossings per walk
        tolerance: Facet-distance slack for locate()
    """

    def __init__(self, localizer, max_steps=DEFAULT_MAX_RELOCATION_STEPS,
                 tolerance=LOCATE_TOLERANCE):
        if max_steps < 1:
            raise ValueError(f"max_steps must be at least 1, got {max_steps}")
        self.localizer = localizer
        self.max_steps = int(max_steps)
        self.tolerance = float(tolerance)

    def _point(self, point):
        x = np.ascontiguousarray(point, dtype=np.float64).reshape(-1)
        if x.shape[0] != self.localizer.dim:
            raise ContractViolation(
                f"Point has {x.shape[0]} coordinates, mesh is {self.localizer.dim}D"
            )
        if not np.all(np.isfinite(x)):
            raise ContractViolation(f"Point {x.tolist()} has non-finite coordinates")
        return x

    def _check_cell(self, cell_id):
        if not 0 <= cell_id < self.localizer.n_cells:
            raise ContractViolation(
                f"Cell id {cell_id} out of range [0, {self.localizer.n_cells})"
            )

    def _location(self, kind, value, x):
        if kind == CELL:
            return int(value)
        if kind == BOUNDARY:
            return BoundaryExit(int(value))
        if kind == INVALID:
            raise ContractViolation(
                f"Point {x.tolist()} in cell {int(value)} has non-finite coordinates"
            )
        raise RelocationError(int(value), x, self.max_steps)

    def locate(self, point) -> Optional[int]:
        """
        Find the cell containing an arbitrary point.

        Tests every cell, so meant for setup and injection, not the hot path.

        Args:
            point: Coordinates, shape (D,)

        Returns:
            cell_id: Lowest-id containing cell, or None outside the mesh or
                on its boundary

        Raises:
            ContractViolation: On a wrong dimension or non-finite coordinates
        """
        loc = self.localizer
        cell_id = locate_kernel(self._point(point), loc.plane_coeffs,
                                loc.facet_boundary, loc.neighbor_offsets,
                                loc.neighbor_cells, self.tolerance)
        return None if cell_id < 0 else int(cell_id)

    def locate_many(self, points):
        """
        Locate many points at once.

        Args:
            points: Coordinates, shape (n, D)

        Returns:
            cell_ids: Int array (n,), -1 for points outside the mesh

        Raises:
            ContractViolation: If any point has non-finite coordinates
        """
        loc = self.localizer
        xs = np.ascontiguousarray(points, dtype=np.float64).reshape(-1, loc.dim)
        bad = np.nonzero(~np.all(np.isfinite(xs), axis=1))[0]
        if len(bad):
            raise ContractViolation(
                f"Point {bad[0]} ({xs[bad[0]].tolist()}) has non-finite coordinates"
            )
        out = np.empty(xs.shape[0], dtype=np.int64)
        if xs.shape[0]:
            locate_many_kernel(xs, loc.plane_coeffs, loc.facet_boundary,
                               loc.neighbor_offsets, loc.neighbor_cells,
                               self.tolerance, out)
        return out

    def relocate_counted(self, point, cell_id, fast=False):
        """
        Relocate a point and report how many facets the walk crossed.

        Args:
            point: Coordinates, shape (D,)
            cell_id: Cell the point was last known to be in
            fast: Use the first-crossed-facet walk

        Returns:
            location: Cell id (int) or BoundaryExit
            crossings: Facets crossed

        Raises:
            ContractViolation: If cell_id is out of range or the point is
                not finite
            RelocationError: If the walk exceeds max_steps
        """
        self._check_cell(cell_id)
        x = self._point(point)
        loc = self.localizer
        kernel = relocate_fast_kernel if fast else relocate_exact_kernel
        kind, value, crossings = kernel(x, cell_id, loc.plane_coeffs,
                                        loc.facet_adjacent, loc.facet_boundary,
                                        loc.neighbor_offsets, loc.neighbor_cells,
                                        self.max_steps)
        return self._location(kind, value, x), int(crossings)

    def relocate(self, point, cell_id) -> Location:
        """
        Find the cell containing a point that was in cell_id before moving.

        Returns cell_id itself when the point has not left it. Otherwise
        hops across the facet the point is furthest beyond.

        Args:
            point: Coordinates, shape (D,)
            cell_id: Starting cell

        Returns:
            location: Cell id (int) or BoundaryExit(boundary_id)
        """
        return self.relocate_counted(point, cell_id, fast=False)[0]

    def relocate_fast(self, point, cell_id) -> Location:
        """
        Like relocate(), hopping across the first crossed facet found.

        Reports the same location as relocate() for the same start cell.
        """
        return self.relocate_counted(point, cell_id, fast=True)[0]

    def relocate_block(self, x, cell_id, fast=True):
        """
        Relocate all particles of one cell.

        Args:
            x: Positions of the particles currently stored in cell_id [n, D]
            cell_id: Their cell
            fast: Use the first-crossed-facet walk

        Returns:
            kinds: CELL or BOUNDARY per particle [n]
            targets: Destination cell id or boundary id per particle [n]
            crossings: Total facet crossings

        Raises:
            ContractViolation: If a position is not finite
            RelocationError: If any walk exceeds max_steps
        """
        loc = self.localizer
        n = x.shape[0]
        kinds = np.empty(n, dtype=np.int64)
        targets = np.empty(n, dtype=np.int64)
        crossings = relocate_block_kernel(
            x, cell_id, loc.plane_coeffs, loc.facet_adjacent, loc.facet_boundary,
            loc.neighbor_offsets, loc.neighbor_cells, self.max_steps, fast,
            kinds, targets,
        )

        invalid = np.nonzero(kinds == INVALID)[0]
        if len(invalid):
            p = invalid[0]
            raise ContractViolation(
                f"Particle in slot {p} of cell {cell_id} has non-finite position "
                f"{x[p].tolist()}"
            )

        exhausted = np.nonzero(kinds == EXHAUSTED)[0]
        if len(exhausted):
            p = exhausted[0]
            raise RelocationError(int(targets[p]), x[p].copy(), self.max_steps)

        return kinds, targets, int(crossings)
