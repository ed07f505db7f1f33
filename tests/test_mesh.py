"""
Unit tests for the simplex mesh
"""

import numpy as np
import pytest

from meshpic.errors import ConfigurationError, MeshTopologyError
from meshpic.mesh import (
    SimplexMesh,
    check_cell_crossing,
    interval_mesh,
    rectangle_mesh,
)


class TestTopology:
    """Facet and vertex connectivity."""

    def test_interval_counts(self, unit_interval):
        """A 1D mesh of n cells has n+1 point facets, two on the boundary."""
        assert unit_interval.dim == 1
        assert unit_interval.n_cells == 10
        assert unit_interval.n_facets == 11
        np.testing.assert_array_equal(unit_interval.exterior_facets(), [0, 10])

    def test_rectangle_counts(self, unit_square):
        """8x8 squares: 128 triangles, 208 edges, 32 of them exterior."""
        assert unit_square.n_cells == 128
        assert unit_square.n_vertices == 81
        assert unit_square.n_facets == 208
        assert len(unit_square.exterior_facets()) == 32

    def test_box_counts(self, unit_cube):
        """Kuhn subdivision is conforming: each facet has one or two cells."""
        assert unit_cube.n_cells == 6 * 27
        assert set(np.unique(unit_cube.facet_num_cells)) == {1, 2}
        assert len(unit_cube.exterior_facets()) == 6 * 9 * 2

    def test_facet_is_opposite_local_vertex(self, unit_square):
        """Local facet i does not contain local vertex i."""
        for c in range(unit_square.n_cells):
            for i in range(3):
                facet = unit_square.facets[unit_square.cell_facets[c, i]]
                assert unit_square.cells[c, i] not in facet

    def test_facet_cells_consistent(self, unit_square):
        """facet_cells lists exactly the cells that own a facet."""
        mesh = unit_square
        for f in range(mesh.n_facets):
            owners = np.nonzero((mesh.cell_facets == f).any(axis=1))[0]
            listed = mesh.facet_cells[f][mesh.facet_cells[f] >= 0]
            np.testing.assert_array_equal(np.sort(listed), owners)

    def test_vertex_cells(self, unit_interval):
        """Interior vertices of an interval mesh touch two cells."""
        np.testing.assert_array_equal(unit_interval.vertex_cells(0), [0])
        np.testing.assert_array_equal(unit_interval.vertex_cells(4), [3, 4])

    def test_cell_neighbors(self, unit_interval, unit_square):
        """Neighbors share any vertex, exclude the cell itself and are sorted."""
        np.testing.assert_array_equal(unit_interval.cell_neighbors(5), [4, 6])
        np.testing.assert_array_equal(unit_interval.cell_neighbors(0), [1])

        neighbors = unit_square.cell_neighbors(0)
        assert 0 not in neighbors
        assert np.all(np.diff(neighbors) > 0)
        # The other half of the same square shares an edge
        assert 64 in neighbors

    def test_bad_connectivity_rejected(self):
        """Cells with the wrong number of vertices are rejected."""
        with pytest.raises(MeshTopologyError):
            SimplexMesh([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]], [[0, 1]])

        with pytest.raises(MeshTopologyError):
            SimplexMesh([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]], [[0, 1, 5]])


class TestGeometry:
    """Volumes, barycentric coordinates and normals."""

    @pytest.mark.parametrize("mesh_fixture", ["unit_interval", "unit_square", "unit_cube"])
    def test_volumes_sum_to_domain(self, mesh_fixture, request):
        """Cell volumes tile the unit interval / square / cube."""
        mesh = request.getfixturevalue(mesh_fixture)
        np.testing.assert_allclose(mesh.cell_volumes.sum(), 1.0, rtol=1e-12)
        assert np.all(mesh.cell_volumes > 0)

    def test_barycentric_centroid(self, unit_cube):
        """The centroid has equal barycentric coordinates."""
        centroid = unit_cube.cell_centroids[17]
        lam = unit_cube.barycentric(17, centroid)
        np.testing.assert_allclose(lam, np.full(4, 0.25), atol=1e-12)

    def test_barycentric_vertices(self, unit_square):
        """Vertex i of a cell has lambda = e_i."""
        coords = unit_square.vertices[unit_square.cells[5]]
        for i in range(3):
            np.testing.assert_allclose(unit_square.barycentric(5, coords[i]),
                                       np.eye(3)[i], atol=1e-12)

    def test_contains(self, unit_square):
        """contains() agrees with the centroid and a far point."""
        assert unit_square.contains(3, unit_square.cell_centroids[3])
        assert not unit_square.contains(3, [5.0, 5.0])

    def test_outward_normal_of_first_triangle(self, unit_square):
        """Cell 0 is (0,0),(h,0),(h,h); its bottom edge faces -y."""
        normals = unit_square.cell_outward_normals()
        np.testing.assert_allclose(normals[0, 2], [0.0, -1.0], atol=1e-12)
        np.testing.assert_allclose(normals[0, 0], [1.0, 0.0], atol=1e-12)
        s = np.sqrt(0.5)
        np.testing.assert_allclose(normals[0, 1], [-s, s], atol=1e-12)

    def test_normals_point_away_from_opposite_vertex(self, delaunay_square):
        """n_i . (v_i - m_i) < 0 for every cell and facet."""
        mesh = delaunay_square
        normals = mesh.cell_outward_normals()
        coords = mesh.vertices[mesh.cells]
        midpoints = mesh.facet_midpoints[mesh.cell_facets]
        dots = np.einsum("cid,cid->ci", normals, coords - midpoints)
        assert np.all(dots < 0)
        np.testing.assert_allclose(np.linalg.norm(normals, axis=2), 1.0)

    def test_heights_and_inradii(self, unit_square):
        """Right isosceles triangle with legs h."""
        h = 1.0 / 8
        np.testing.assert_allclose(unit_square.cell_heights(), h / np.sqrt(2))
        np.testing.assert_allclose(unit_square.cell_inradii(), h * (2 - np.sqrt(2)) / 2)

    def test_degenerate_cell_detected(self):
        """Collinear vertices give a zero-volume cell."""
        mesh = SimplexMesh([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0], [0.0, 1.0]],
                           [[0, 1, 2], [0, 1, 3]])
        np.testing.assert_array_equal(mesh.degenerate_cells(1e-14), [0])


class TestBoundaryMarkers:
    """Tagging exterior facets."""

    def test_generators_tag_exterior(self, unit_square):
        """Generated meshes tag every exterior facet with id 1."""
        exterior = unit_square.exterior_facets()
        assert np.all(unit_square.facet_markers[exterior] == 1)
        interior = np.setdiff1d(np.arange(unit_square.n_facets), exterior)
        assert np.all(unit_square.facet_markers[interior] == 0)

    def test_mark_with_predicate(self, electrode_square):
        """Only facets whose midpoint satisfies the predicate are retagged."""
        np.testing.assert_array_equal(electrode_square.boundary_ids(), [1, 2, 3])
        assert np.count_nonzero(electrode_square.facet_markers == 2) == 8
        assert np.count_nonzero(electrode_square.facet_markers == 3) == 8
        assert np.count_nonzero(electrode_square.facet_markers == 1) == 16

    def test_mark_returns_count(self):
        mesh = rectangle_mesh(4, 4, boundary_id=None)
        assert mesh.mark_boundary(5, where=lambda m: m[:, 1] < 1e-12) == 4
        np.testing.assert_array_equal(mesh.boundary_ids(), [5])

    def test_nonpositive_id_rejected(self, unit_square):
        with pytest.raises(ConfigurationError):
            unit_square.mark_boundary(0)

    def test_untagged_generator(self):
        mesh = interval_mesh(4, boundary_id=None)
        assert len(mesh.boundary_ids()) == 0


class TestGenerators:
    """Structured and Delaunay mesh construction."""

    def test_interval_bounds(self):
        mesh = interval_mesh(5, x_min=-2.0, x_max=3.0)
        lo, hi = mesh.bounding_box()
        np.testing.assert_allclose([lo[0], hi[0]], [-2.0, 3.0])
        np.testing.assert_allclose(mesh.cell_volumes, 1.0)

    def test_rectangle_bounds(self):
        mesh = rectangle_mesh(3, 2, lower=(1.0, -1.0), upper=(4.0, 1.0))
        assert mesh.n_cells == 12
        np.testing.assert_allclose(mesh.cell_volumes.sum(), 6.0)

    def test_from_points_2d(self, delaunay_square):
        """Delaunay mesh covers the convex hull of the points."""
        np.testing.assert_allclose(delaunay_square.cell_volumes.sum(), 1.0, rtol=1e-12)
        np.testing.assert_array_equal(delaunay_square.boundary_ids(), [1])

    def test_from_points_1d(self):
        """1D point clouds are sorted into intervals."""
        mesh = SimplexMesh.from_points(np.array([0.5, 0.0, 1.0, 0.25]))
        assert mesh.n_cells == 3
        np.testing.assert_allclose(mesh.cell_volumes, [0.25, 0.25, 0.5])


class TestCellCrossing:
    """Timestep guard."""

    def test_safe_timestep(self, unit_interval):
        is_safe, h_min, ratio = check_cell_crossing(0.01, 1.0, unit_interval)
        assert is_safe
        assert h_min == pytest.approx(0.1)
        assert ratio == pytest.approx(0.1)

    def test_unsafe_timestep(self, unit_interval):
        is_safe, _, ratio = check_cell_crossing(1.0, 1.0, unit_interval)
        assert not is_safe
        assert ratio == pytest.approx(10.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
