"""
Localizer Precomputation

Builds, once per mesh, the per-cell tables the relocation walk reads on
every particle move:

    plane_coeffs[c, i]   = [offset, n_0, ..., n_{D-1}]
                           distance(x) = offset + n . x = n . (x - m_i)
                           positive = outside cell c across facet i
    facet_adjacent[c, i] = cell on the other side of facet i, -1 on a boundary
    facet_boundary[c, i] = boundary id of facet i (> 0), 0 for interior facets
    neighbor_cells       = cells sharing a vertex with c (CSR, neighbor_offsets)

Facet i of a cell is the facet opposite local vertex i. Each facet plane is
computed once and stored with opposite signs in its two cells, so the two
sides always disagree exactly on which side a point is.
"""

import logging

import numpy as np

from ..constants import DEGENERATE_VOLUME_TOL, NO_BOUNDARY
from ..errors import MeshTopologyError

logger = logging.getLogger(__name__)


class Localizer:
    """
    Read-only localization tables of a mesh.

    Attributes:
        dim: Geometric dimension D
        n_cells: Number of cells
        plane_coeffs: Facet plane coefficients [n_cells, D+1, D+1]
        facet_adjacent: Neighbor cell across each facet, -1 on boundaries [n_cells, D+1]
        facet_boundary: Boundary id of each facet, 0 if interior [n_cells, D+1]
        vertex_coords: Vertex coordinates of every cell [n_cells, D+1, D]
        neighbor_offsets: CSR offsets into neighbor_cells [n_cells + 1]
        neighbor_cells: Vertex-sharing cells of every cell, concatenated
        boundary_ids: Sorted boundary ids present in the tables
    """

    def __init__(self, plane_coeffs, facet_adjacent, facet_boundary,
                 cell_neighbors, vertex_coords):
        self.plane_coeffs = np.ascontiguousarray(plane_coeffs, dtype=np.float64)
        self.facet_adjacent = np.ascontiguousarray(facet_adjacent, dtype=np.int64)
        self.facet_boundary = np.ascontiguousarray(facet_boundary, dtype=np.int64)
        self.vertex_coords = np.ascontiguousarray(vertex_coords, dtype=np.float64)
        cell_neighbors = [np.asarray(nb, dtype=np.int64) for nb in cell_neighbors]
        counts = [len(nb) for nb in cell_neighbors]
        self.neighbor_offsets = np.concatenate(([0], np.cumsum(counts))).astype(np.int64)
        self.neighbor_cells = np.concatenate(cell_neighbors + [np.empty(0, dtype=np.int64)])

        self.n_cells = self.plane_coeffs.shape[0]
        self.dim = self.plane_coeffs.shape[2] - 1

        ids = np.unique(self.facet_boundary)
        self.boundary_ids = ids[ids != NO_BOUNDARY]

        for table in (self.plane_coeffs, self.facet_adjacent,
                      self.facet_boundary, self.vertex_coords,
                      self.neighbor_offsets, self.neighbor_cells):
            table.flags.writeable = False

    def neighbors(self, cell_id):
        """Cells sharing any vertex with cell_id (sorted, self excluded)."""
        start, stop = self.neighbor_offsets[cell_id], self.neighbor_offsets[cell_id + 1]
        return self.neighbor_cells[start:stop]

    def vertex_coordinates(self, cell_id):
        """Vertex coordinates of a cell [D+1, D]."""
        return self.vertex_coords[cell_id]

    def facet_distances(self, cell_id, point):
        """
        Signed distances from a point to every facet plane of a cell.

        Args:
            cell_id: Cell index
            point: Coordinates, shape (D,)

        Returns:
            distances: Array (D+1,), all negative for a point strictly inside
        """
        coeffs = self.plane_coeffs[cell_id]
        return coeffs[:, 0] + coeffs[:, 1:] @ np.asarray(point, dtype=np.float64)

    def save(self, fname):
        """
        Write the tables to a text file, one line per cell.

        Boundary facets are written as 'bnd:<id>' in the adjacency list.

        Args:
            fname: Output file name
        """
        with open(fname, "w") as f:
            for cell_id in range(self.n_cells):
                fields = [f"Cell {cell_id}", "Vertex coordinates:"]
                fields += [f"{c:g}" for c in self.vertex_coords[cell_id].ravel()]
                fields.append("Neighbors:")
                for adjacent, bnd in zip(self.facet_adjacent[cell_id],
                                         self.facet_boundary[cell_id]):
                    fields.append(f"bnd:{bnd}" if bnd != NO_BOUNDARY else f"{adjacent}")
                fields.append("Plane coeffs.:")
                fields += [f"{c:.17g}" for c in self.plane_coeffs[cell_id].ravel()]
                f.write("\t".join(fields) + "\n")

        logger.info("Localizer tables saved to %s", fname)

    def __repr__(self):
        """String representation."""
        return (f"Localizer(dim={self.dim}, n_cells={self.n_cells}, "
                f"boundary_ids={self.boundary_ids.tolist()})")


class LocalizerBuilder:
    """
    Validates a SimplexMesh and precomputes its Localizer.

    Usage:
        mesh = rectangle_mesh(16, 16)
        mesh.mark_boundary(2, where=lambda m: np.hypot(*(m - 0.5).T) < 0.2)
        localizer = LocalizerBuilder(mesh).build()
    """

    def __init__(self, mesh, degenerate_tol=DEGENERATE_VOLUME_TOL):
        """
        Args:
            mesh: SimplexMesh with boundary markers on all exterior facets
            degenerate_tol: Relative volume below which cells are rejected
        """
        self.mesh = mesh
        self.degenerate_tol = degenerate_tol

    def validate(self):
        """
        Check that the mesh can be localized.

        Raises:
            MeshTopologyError: On a facet shared by zero or more than two
                cells, a degenerate cell, or an exterior facet without a
                boundary id. The message names the offending facet/cell.
        """
        mesh = self.mesh

        bad = np.nonzero((mesh.facet_num_cells < 1) | (mesh.facet_num_cells > 2))[0]
        if len(bad):
            facet = bad[0]
            owners = np.nonzero((mesh.cell_facets == facet).any(axis=1))[0]
            raise MeshTopologyError(
                f"Facet {facet} (vertices {mesh.facets[facet].tolist()}) is shared "
                f"by {mesh.facet_num_cells[facet]} cells {owners.tolist()}; "
                f"every facet must belong to one or two cells"
            )

        degenerate = mesh.degenerate_cells(self.degenerate_tol)
        if len(degenerate):
            cell = degenerate[0]
            raise MeshTopologyError(
                f"Cell {cell} (vertices {mesh.cells[cell].tolist()}) is degenerate "
                f"(volume {mesh.cell_volumes[cell]:.3e})"
            )

        exterior = mesh.exterior_facets()
        untagged = exterior[mesh.facet_markers[exterior] <= NO_BOUNDARY]
        if len(untagged):
            facet = untagged[0]
            raise MeshTopologyError(
                f"Exterior facet {facet} of cell {mesh.facet_cells[facet, 0]} "
                f"(midpoint {mesh.facet_midpoints[facet].tolist()}) has no boundary id; "
                f"{len(untagged)} exterior facets are untagged"
            )

    def build(self):
        """
        Precompute the localization tables.

        Returns:
            localizer: Localizer

        Raises:
            MeshTopologyError: See validate()
        """
        self.validate()
        mesh = self.mesh
        cell_ids = np.arange(mesh.n_cells)

        # One plane per facet, oriented out of facet_cells[:, 0]
        normals = mesh.facet_normals()
        offsets = -np.einsum("ij,ij->i", normals, mesh.facet_midpoints)
        facet_planes = np.column_stack([offsets, normals])

        cf = mesh.cell_facets
        owner = mesh.facet_cells[cf, 0] == cell_ids[:, None]
        sign = np.where(owner, 1.0, -1.0)
        plane_coeffs = facet_planes[cf] * sign[:, :, None]

        adjacent_cells = mesh.facet_cells[cf]
        facet_adjacent = np.where(owner, adjacent_cells[:, :, 1], adjacent_cells[:, :, 0])
        facet_boundary = np.where(facet_adjacent < 0, mesh.facet_markers[cf], NO_BOUNDARY)

        cell_neighbors = [mesh.cell_neighbors(c) for c in cell_ids]

        localizer = Localizer(
            plane_coeffs,
            facet_adjacent,
            facet_boundary,
            cell_neighbors,
            mesh.vertices[mesh.cells],
        )

        logger.info(
            "Localizer built: %d cells, %d boundary facets, boundary ids %s",
            localizer.n_cells,
            int(np.count_nonzero(facet_boundary)),
            localizer.boundary_ids.tolist(),
        )
        return localizer
