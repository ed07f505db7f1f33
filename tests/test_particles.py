"""
Unit tests for per-cell particle storage
"""

import numpy as np
import pytest

from meshpic.errors import ContractViolation
from meshpic.particles import CellParticles, Particle, ParticleStore


def make_particle(i, dim=2):
    """Particle whose fields all encode i."""
    return Particle.create(np.full(dim, 0.1 * i), np.full(dim, float(i)), q=float(i), m=1.0)


class TestParticle:
    """Immutable particle values."""

    def test_create_from_arrays(self):
        p = Particle.create(np.array([0.1, 0.2]), [1, 2], q=-1, m=2)
        assert p.x == (0.1, 0.2)
        assert p.v == (1.0, 2.0)
        assert p.q == -1.0
        assert isinstance(p.m, float)

    def test_immutable(self):
        p = make_particle(1)
        with pytest.raises(AttributeError):
            p.q = 5.0


class TestCellParticles:
    """SoA block of one cell."""

    def test_initialization(self):
        block = CellParticles(dim=3, capacity=8)
        assert len(block) == 0
        assert block.capacity == 8
        assert block.x.shape == (8, 3)

    def test_growth_preserves_particles(self):
        """Appending beyond capacity doubles the arrays and keeps the data."""
        block = CellParticles(dim=2, capacity=2)
        for i in range(5):
            block.append(*make_particle(i))

        assert len(block) == 5
        assert block.capacity >= 5
        for i in range(5):
            assert block.particle(i) == make_particle(i)

    def test_extend(self):
        block = CellParticles(dim=2)
        xs = np.random.rand(10, 2)
        vs = np.random.rand(10, 2)
        block.extend(xs, vs, -1.0, 2.0)

        assert len(block) == 10
        np.testing.assert_array_equal(block.x[:10], xs)
        np.testing.assert_array_equal(block.v[:10], vs)
        assert np.all(block.q[:10] == -1.0)
        assert np.all(block.m[:10] == 2.0)

    def test_swap_remove_middle(self):
        """Removing the middle of three particles moves the last into its slot."""
        block = CellParticles(dim=2)
        a, b, c = make_particle(1), make_particle(2), make_particle(3)
        for p in (a, b, c):
            block.append(*p)

        removed = block.swap_remove(1)

        assert removed == b
        assert len(block) == 2
        assert block.particle(0) == a
        assert block.particle(1) == c

    def test_swap_remove_last(self):
        block = CellParticles(dim=2)
        block.append(*make_particle(1))
        block.append(*make_particle(2))

        assert block.swap_remove(1) == make_particle(2)
        assert list(block) == [make_particle(1)]

    def test_swap_remove_bad_slot(self):
        block = CellParticles(dim=2)
        block.append(*make_particle(1))
        with pytest.raises(ContractViolation):
            block.swap_remove(1)
        with pytest.raises(ContractViolation):
            block.swap_remove(-1)

    def test_remove_slots_keeps_the_rest(self):
        """Removing a set of slots in one go leaves exactly the others."""
        block = CellParticles(dim=2)
        for i in range(10):
            block.append(*make_particle(i))

        block.remove_slots([7, 0, 3, 9])

        remaining = sorted(p.q for p in block)
        assert remaining == [1.0, 2.0, 4.0, 5.0, 6.0, 8.0]

    def test_take_copies(self):
        block = CellParticles(dim=2)
        for i in range(4):
            block.append(*make_particle(i))

        x, v, q, m = block.take([1, 3])
        np.testing.assert_array_equal(q, [1.0, 3.0])
        x[0] = 99.0
        assert block.x[1, 0] == pytest.approx(0.1)


class TestParticleStore:
    """All cells of a population."""

    def test_insert_and_iterate(self):
        store = ParticleStore(n_cells=4, dim=2)
        store.insert(2, make_particle(1))
        store.insert(0, make_particle(2))
        store.insert(2, make_particle(3))

        assert len(store) == 3
        assert list(store) == [(0, make_particle(2)),
                               (2, make_particle(1)),
                               (2, make_particle(3))]
        np.testing.assert_array_equal(store.counts_per_cell(), [1, 0, 2, 0])

    def test_stored_copy_not_alias(self):
        """Mutating the source array does not reach the store."""
        store = ParticleStore(n_cells=1, dim=2)
        x = np.array([0.3, 0.4])
        store.insert_many(0, x[None, :], np.zeros((1, 2)), 1.0, 1.0)
        x[0] = -5.0
        assert store.particles(0)[0].x == (0.3, 0.4)

    def test_remove_and_compact(self):
        """The three-particle middle removal through the store."""
        store = ParticleStore(n_cells=3, dim=2)
        a, b, c = make_particle(1), make_particle(2), make_particle(3)
        for p in (a, b, c):
            store.insert(1, p)

        assert store.remove_and_compact(1, 1) == b
        assert store.particles(1) == [a, c]

    def test_charge_counts(self):
        store = ParticleStore(n_cells=2, dim=1)
        store.insert_many(0, [[0.1], [0.2], [0.3]], np.zeros((3, 1)), [-1.0, 1.0, -1.0], 1.0)
        store.insert_many(1, [[0.6]], np.zeros((1, 1)), 2.0, 1.0)

        assert store.count_total() == 4
        assert store.count_negative() == 2
        assert store.count_positive() == 2
        assert store.total_charge() == pytest.approx(1.0)

    def test_as_arrays(self):
        store = ParticleStore(n_cells=3, dim=2)
        store.insert(2, make_particle(1))
        store.insert(0, make_particle(2))

        cell_ids, x, v, q, m = store.as_arrays()
        np.testing.assert_array_equal(cell_ids, [0, 2])
        np.testing.assert_array_equal(q, [2.0, 1.0])
        assert x.shape == (2, 2)

    def test_out_of_range_cell(self):
        """Cell ids never wrap around like negative indices."""
        store = ParticleStore(n_cells=3, dim=2)
        with pytest.raises(ContractViolation):
            store.insert(3, make_particle(1))
        with pytest.raises(ContractViolation):
            store.insert(-1, make_particle(1))
        with pytest.raises(ContractViolation):
            store.cell(7)

    def test_wrong_dimension(self):
        store = ParticleStore(n_cells=1, dim=3)
        with pytest.raises(ContractViolation):
            store.insert(0, make_particle(1, dim=2))

    def test_clear(self):
        store = ParticleStore(n_cells=2, dim=2)
        store.insert(1, make_particle(1))
        store.clear()
        assert store.count_total() == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
