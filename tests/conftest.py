"""Pytest fixtures for meshpic tests."""

import numpy as np
import pytest

from meshpic.localization import LocalizerBuilder
from meshpic.mesh import SimplexMesh, box_mesh, interval_mesh, rectangle_mesh


def pytest_configure(config):
    config.addinivalue_line("markers", "performance: throughput gates (slow)")


@pytest.fixture
def unit_interval():
    """Ten-cell mesh of [0, 1], both ends tagged 1."""
    return interval_mesh(10)


@pytest.fixture
def unit_square():
    """8x8 structured triangle mesh of the unit square, edges tagged 1."""
    return rectangle_mesh(8, 8)


@pytest.fixture
def unit_cube():
    """3x3x3 Kuhn tetrahedral mesh of the unit cube, faces tagged 1."""
    return box_mesh(3, 3, 3)


@pytest.fixture
def delaunay_square():
    """Delaunay mesh of the unit square corners plus random interior points."""
    rng = np.random.default_rng(1234)
    corners = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])
    interior = 0.05 + 0.9 * rng.random((60, 2))
    return SimplexMesh.from_points(np.vstack([corners, interior]))


@pytest.fixture
def electrode_square():
    """
    Unit square with the left edge tagged 2, the right edge tagged 3 and
    the top and bottom edges tagged 1 (exterior).
    """
    mesh = rectangle_mesh(8, 8)
    mesh.mark_boundary(2, where=lambda m: m[:, 0] < 1e-12)
    mesh.mark_boundary(3, where=lambda m: m[:, 0] > 1.0 - 1e-12)
    return mesh


@pytest.fixture
def square_localizer(unit_square):
    return LocalizerBuilder(unit_square).build()


@pytest.fixture
def electrode_localizer(electrode_square):
    return LocalizerBuilder(electrode_square).build()
