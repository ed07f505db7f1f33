"""
Unstructured Simplex Mesh for Particle Localization

Wraps a conforming simplex mesh (intervals in 1D, triangles in 2D,
tetrahedra in 3D) given as vertex coordinates and cell connectivity, and
derives the topology the particle core needs:
- facets (facet i of a cell is the facet opposite local vertex i)
- facet -> adjacent cells, vertex -> cells
- cell volumes, barycentric gradients and outward facet normals
- boundary markers on exterior facets

Mesh file parsing is left to the caller; the generators at the bottom of
this module build structured and Delaunay meshes for tests and demos.
"""

import logging
from itertools import permutations
from math import factorial

import numpy as np
from scipy.spatial import Delaunay

from .constants import EXTERIOR_BOUNDARY_ID, NO_BOUNDARY
from .errors import ConfigurationError, MeshTopologyError

logger = logging.getLogger(__name__)


class SimplexMesh:
    """
    Conforming simplex mesh with derived facet topology.

    Attributes:
        dim: Geometric (and topological) dimension D
        vertices: Vertex coordinates [n_vertices, D]
        cells: Cell connectivity [n_cells, D+1]
        facets: Sorted vertex ids of each facet [n_facets, D]
        cell_facets: Global facet id of local facet i of each cell [n_cells, D+1]
        facet_num_cells: Number of cells sharing each facet [n_facets]
        facet_cells: First two cells sharing each facet, -1 if absent [n_facets, 2]
        facet_markers: Boundary id of each facet, 0 for unmarked [n_facets]
        cell_volumes: Cell volumes (length/area/volume) [n_cells]
    """

    def __init__(self, vertices, cells, facet_markers=None):
        """
        Build the mesh topology.

        Args:
            vertices: Vertex coordinates, shape (n_vertices, D) or (n_vertices,) for 1D
            cells: Vertex ids of each cell, shape (n_cells, D+1)
            facet_markers: Optional boundary ids per facet (in the order of
                           self.facets). Usually set with mark_boundary().

        Raises:
            MeshTopologyError: If the arrays are inconsistent
        """
        vertices = np.asarray(vertices, dtype=np.float64)
        if vertices.ndim == 1:
            vertices = vertices[:, None]
        cells = np.asarray(cells, dtype=np.int64)

        dim = vertices.shape[1]
        if dim not in (1, 2, 3):
            raise MeshTopologyError(f"Unsupported geometric dimension {dim}")
        if cells.ndim != 2 or cells.shape[1] != dim + 1:
            raise MeshTopologyError(
                f"Cells must have shape (n_cells, {dim + 1}) for a {dim}D "
                f"simplex mesh, got {cells.shape}"
            )
        if cells.size and (cells.min() < 0 or cells.max() >= len(vertices)):
            raise MeshTopologyError("Cell connectivity refers to unknown vertices")

        self.dim = dim
        self.vertices = vertices
        self.cells = cells
        self.n_vertices = len(vertices)
        self.n_cells = len(cells)

        self._build_facets()
        self._build_vertex_cells()

        coords = self.vertices[self.cells]
        edges = coords[:, 1:, :] - coords[:, :1, :]
        self._edge_matrices = edges
        self.cell_volumes = np.abs(np.linalg.det(edges)) / factorial(dim)
        self._gradients = None

        if facet_markers is None:
            self.facet_markers = np.full(self.n_facets, NO_BOUNDARY, dtype=np.int64)
        else:
            facet_markers = np.asarray(facet_markers, dtype=np.int64)
            if facet_markers.shape != (self.n_facets,):
                raise MeshTopologyError(
                    f"Expected {self.n_facets} facet markers, got {facet_markers.shape}"
                )
            self.facet_markers = facet_markers.copy()

    # ==================== TOPOLOGY ====================

    def _build_facets(self):
        n_local = self.dim + 1
        local = np.array([[j for j in range(n_local) if j != i] for i in range(n_local)])

        facet_vertices = np.sort(self.cells[:, local], axis=2).reshape(-1, self.dim)
        facets, inverse, counts = np.unique(
            facet_vertices, axis=0, return_inverse=True, return_counts=True
        )
        inverse = inverse.reshape(-1)

        self.facets = facets
        self.n_facets = len(facets)
        self.cell_facets = inverse.reshape(self.n_cells, n_local)
        self.facet_num_cells = counts

        # Group the flat (cell, local facet) slots by facet id
        order = np.argsort(inverse, kind="stable")
        starts = np.searchsorted(inverse[order], np.arange(self.n_facets))
        slot_cells = order // n_local

        self.facet_cells = np.full((self.n_facets, 2), -1, dtype=np.int64)
        self.facet_cells[:, 0] = slot_cells[starts]
        shared = counts >= 2
        self.facet_cells[shared, 1] = slot_cells[starts[shared] + 1]

        # (cell, local index) of the first cell of each facet
        self._facet_first_slot = order[starts]

    def _build_vertex_cells(self):
        flat = self.cells.reshape(-1)
        order = np.argsort(flat, kind="stable")
        self._vertex_cell_index = order // (self.dim + 1)
        counts = np.bincount(flat, minlength=self.n_vertices)
        self._vertex_cell_offsets = np.concatenate(([0], np.cumsum(counts)))

    def vertex_cells(self, vertex_id):
        """
        Cells that contain a vertex.

        Args:
            vertex_id: Vertex index

        Returns:
            cell_ids: Array of cell indices (ascending)
        """
        start = self._vertex_cell_offsets[vertex_id]
        stop = self._vertex_cell_offsets[vertex_id + 1]
        return self._vertex_cell_index[start:stop]

    def cell_neighbors(self, cell_id):
        """Cells sharing at least one vertex with cell_id (sorted, self excluded)."""
        candidates = np.concatenate([self.vertex_cells(v) for v in self.cells[cell_id]])
        neighbors = np.unique(candidates)
        return neighbors[neighbors != cell_id]

    def exterior_facets(self):
        """Indices of facets with exactly one adjacent cell."""
        return np.nonzero(self.facet_num_cells == 1)[0]

    # ==================== GEOMETRY ====================

    @property
    def facet_midpoints(self):
        """Midpoint (vertex average) of every facet [n_facets, D]."""
        return self.vertices[self.facets].mean(axis=1)

    @property
    def cell_centroids(self):
        """Centroid of every cell [n_cells, D]."""
        return self.vertices[self.cells].mean(axis=1)

    def degenerate_cells(self, rel_tol):
        """
        Cells whose volume is negligible compared to the mesh extent.

        Args:
            rel_tol: Tolerance relative to (bounding box diagonal)^D

        Returns:
            cell_ids: Indices of degenerate cells
        """
        lo, hi = self.bounding_box()
        scale = np.linalg.norm(hi - lo) ** self.dim
        return np.nonzero(self.cell_volumes <= rel_tol * scale)[0]

    def barycentric_gradients(self):
        """
        Gradients of the barycentric coordinates of every cell.

        lambda_i is affine, 1 at vertex i and 0 on the opposite facet, so
        -grad(lambda_i) points out through facet i and |grad(lambda_i)| is
        the inverse height of vertex i above that facet.

        Returns:
            gradients: Array [n_cells, D+1, D]
        """
        if self._gradients is None:
            # x - v0 = T^T lam[1:]  =>  lam[1:] = inv(T^T) (x - v0)
            inv_t = np.linalg.inv(np.transpose(self._edge_matrices, (0, 2, 1)))
            gradients = np.empty((self.n_cells, self.dim + 1, self.dim))
            gradients[:, 1:, :] = inv_t
            gradients[:, 0, :] = -inv_t.sum(axis=1)
            self._gradients = gradients
        return self._gradients

    def barycentric(self, cell_id, point):
        """
        Barycentric coordinates of a point with respect to a cell.

        Args:
            cell_id: Cell index
            point: Cartesian coordinates, shape (D,)

        Returns:
            lam: Barycentric coordinates, shape (D+1,), summing to 1
        """
        gradients = self.barycentric_gradients()[cell_id]
        v0 = self.vertices[self.cells[cell_id, 0]]
        lam = np.empty(self.dim + 1)
        lam[1:] = gradients[1:] @ (np.asarray(point, dtype=np.float64) - v0)
        lam[0] = 1.0 - lam[1:].sum()
        return lam

    def contains(self, cell_id, point, tol=1e-12):
        """Whether the point lies in the closed cell (up to tol in barycentric coordinates)."""
        return bool(np.all(self.barycentric(cell_id, point) >= -tol))

    def cell_outward_normals(self):
        """Unit outward normal of local facet i of every cell [n_cells, D+1, D]."""
        gradients = self.barycentric_gradients()
        norms = np.linalg.norm(gradients, axis=2, keepdims=True)
        return -gradients / norms

    def facet_normals(self):
        """
        Unit normal of every facet, oriented out of facet_cells[:, 0].

        Returns:
            normals: Array [n_facets, D]
        """
        slots = self._facet_first_slot
        cell_ids = slots // (self.dim + 1)
        local = slots % (self.dim + 1)
        return self.cell_outward_normals()[cell_ids, local]

    def cell_heights(self):
        """Smallest vertex-to-opposite-facet height of every cell [n_cells]."""
        gradients = self.barycentric_gradients()
        return 1.0 / np.linalg.norm(gradients, axis=2).max(axis=1)

    def cell_inradii(self):
        """Inscribed sphere radius of every cell [n_cells]."""
        gradients = self.barycentric_gradients()
        return 1.0 / np.linalg.norm(gradients, axis=2).sum(axis=1)

    def bounding_box(self):
        """Lower and upper corner of the vertex cloud."""
        return self.vertices.min(axis=0), self.vertices.max(axis=0)

    # ==================== BOUNDARY MARKERS ====================

    def mark_boundary(self, boundary_id, where=None):
        """
        Tag exterior facets with a boundary id.

        Args:
            boundary_id: Positive boundary id (exterior edge or object surface)
            where: Optional callable mapping facet midpoints [k, D] to a
                   boolean mask [k]. All exterior facets when None.

        Returns:
            n_marked: Number of facets tagged

        Raises:
            ConfigurationError: If boundary_id is not positive
        """
        if boundary_id <= NO_BOUNDARY:
            raise ConfigurationError(
                f"Boundary ids must be positive, got {boundary_id}"
            )

        exterior = self.exterior_facets()
        if where is not None:
            mask = np.asarray(where(self.facet_midpoints[exterior]), dtype=bool)
            exterior = exterior[mask]

        self.facet_markers[exterior] = boundary_id
        logger.debug("Marked %d exterior facets with boundary id %d",
                     len(exterior), boundary_id)
        return len(exterior)

    def boundary_ids(self):
        """Sorted set of boundary ids present on the mesh."""
        ids = np.unique(self.facet_markers)
        return ids[ids != NO_BOUNDARY]

    @classmethod
    def from_points(cls, points, boundary_id=EXTERIOR_BOUNDARY_ID):
        """
        Delaunay mesh of a point cloud.

        Args:
            points: Point coordinates, shape (n, D) or (n,) for 1D
            boundary_id: Id given to all exterior facets (None to skip marking)

        Returns:
            mesh: SimplexMesh over the convex hull of the points
        """
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1 or points.shape[1] == 1:
            xs = np.unique(points.reshape(-1))
            cells = np.column_stack([np.arange(len(xs) - 1), np.arange(1, len(xs))])
            mesh = cls(xs, cells)
        else:
            tri = Delaunay(points)
            mesh = cls(tri.points, tri.simplices)

        if boundary_id is not None:
            mesh.mark_boundary(boundary_id)
        return mesh

    def __repr__(self):
        """String representation."""
        return (f"SimplexMesh(dim={self.dim}, n_vertices={self.n_vertices}, "
                f"n_cells={self.n_cells}, n_facets={self.n_facets})")


# ==================== MESH GENERATORS ====================

def interval_mesh(n_cells, x_min=0.0, x_max=1.0, boundary_id=EXTERIOR_BOUNDARY_ID):
    """
    Uniform 1D mesh.

    Args:
        n_cells: Number of intervals
        x_min: Left end
        x_max: Right end
        boundary_id: Id given to both end points (None to skip marking)

    Returns:
        mesh: SimplexMesh
    """
    vertices = np.linspace(x_min, x_max, n_cells + 1)
    cells = np.column_stack([np.arange(n_cells), np.arange(1, n_cells + 1)])
    mesh = SimplexMesh(vertices, cells)
    if boundary_id is not None:
        mesh.mark_boundary(boundary_id)
    return mesh


def rectangle_mesh(nx, ny, lower=(0.0, 0.0), upper=(1.0, 1.0),
                   boundary_id=EXTERIOR_BOUNDARY_ID):
    """
    Structured triangle mesh of a rectangle.

    Each of the nx*ny squares is split along its (0,0)-(1,1) diagonal.

    Args:
        nx, ny: Number of squares along x and y
        lower: Lower-left corner
        upper: Upper-right corner
        boundary_id: Id given to all exterior edges (None to skip marking)

    Returns:
        mesh: SimplexMesh with 2*nx*ny triangles
    """
    xs = np.linspace(lower[0], upper[0], nx + 1)
    ys = np.linspace(lower[1], upper[1], ny + 1)
    X, Y = np.meshgrid(xs, ys)
    vertices = np.column_stack([X.ravel(), Y.ravel()])

    i, j = np.meshgrid(np.arange(nx), np.arange(ny))
    i = i.ravel()
    j = j.ravel()
    v00 = j * (nx + 1) + i
    v10 = v00 + 1
    v01 = v00 + nx + 1
    v11 = v01 + 1

    lower_tri = np.column_stack([v00, v10, v11])
    upper_tri = np.column_stack([v00, v11, v01])
    cells = np.vstack([lower_tri, upper_tri])

    mesh = SimplexMesh(vertices, cells)
    if boundary_id is not None:
        mesh.mark_boundary(boundary_id)
    return mesh


def box_mesh(nx, ny, nz, lower=(0.0, 0.0, 0.0), upper=(1.0, 1.0, 1.0),
             boundary_id=EXTERIOR_BOUNDARY_ID):
    """
    Structured tetrahedral mesh of a box (Kuhn subdivision).

    Every cube is split into 6 tetrahedra along its main diagonal, one per
    ordering of the axes; neighboring cubes share their face triangulations.

    Args:
        nx, ny, nz: Number of cubes along each axis
        lower: Lower corner
        upper: Upper corner
        boundary_id: Id given to all exterior faces (None to skip marking)

    Returns:
        mesh: SimplexMesh with 6*nx*ny*nz tetrahedra
    """
    xs = np.linspace(lower[0], upper[0], nx + 1)
    ys = np.linspace(lower[1], upper[1], ny + 1)
    zs = np.linspace(lower[2], upper[2], nz + 1)
    X, Y, Z = np.meshgrid(xs, ys, zs, indexing="ij")
    vertices = np.column_stack([X.ravel(), Y.ravel(), Z.ravel()])

    def vid(i, j, k):
        return (i * (ny + 1) + j) * (nz + 1) + k

    i, j, k = np.meshgrid(np.arange(nx), np.arange(ny), np.arange(nz), indexing="ij")
    corner = np.stack([i.ravel(), j.ravel(), k.ravel()])

    cells = []
    for perm in permutations(range(3)):
        path = [corner.copy()]
        step = corner.copy()
        for axis in perm:
            step = step.copy()
            step[axis] += 1
            path.append(step)
        cells.append(np.column_stack([vid(*p) for p in path]))
    cells = np.vstack(cells)

    mesh = SimplexMesh(vertices, cells)
    if boundary_id is not None:
        mesh.mark_boundary(boundary_id)
    return mesh


def check_cell_crossing(dt, max_speed, mesh):
    """
    Check that particles cross at most about one cell per timestep.

    The relocation walk is cheap when particles move less than a cell height
    per step; its hop count grows linearly with max_speed * dt / h_min.

    Args:
        dt: Timestep
        max_speed: Largest particle speed expected
        mesh: SimplexMesh

    Returns:
        is_safe: True if max_speed * dt <= h_min
        h_min: Smallest cell height
        ratio: max_speed * dt / h_min (expected facet hops per step)
    """
    h_min = float(mesh.cell_heights().min())
    ratio = max_speed * dt / h_min
    is_safe = ratio <= 1.0

    if not is_safe:
        logger.warning(
            "Particles may cross %.1f cells per step (dt=%g, v_max=%g, h_min=%g)",
            ratio, dt, max_speed, h_min,
        )

    return is_safe, h_min, ratio
