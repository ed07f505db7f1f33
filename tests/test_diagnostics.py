"""
Tests for diagnostic module.
"""

import csv
from types import SimpleNamespace

import numpy as np
import pytest

from meshpic.diagnostics import (
    ObjectHistory,
    check_charge_conservation,
    min_plasma_period,
    speed_statistics,
    welford_speed_statistics,
)
from meshpic.constants import e, m_e, plasma_frequency
from meshpic.objects import BoundaryObject
from meshpic.particles import ParticleStore
from meshpic.population import PopulationEngine


class TestSpeedStatistics:
    """Welford running mean and standard deviation."""

    def test_matches_numpy(self):
        rng = np.random.default_rng(5)
        v = rng.normal(size=(1000, 3))
        q = np.where(rng.random(1000) < 0.4, -1.0, 1.0)

        mean_neg, std_neg, mean_pos, std_pos = welford_speed_statistics(v, q, len(q))

        speed = np.linalg.norm(v, axis=1)
        np.testing.assert_allclose(mean_neg, speed[q < 0].mean(), rtol=1e-12)
        np.testing.assert_allclose(std_neg, speed[q < 0].std(ddof=1), rtol=1e-10)
        np.testing.assert_allclose(mean_pos, speed[q > 0].mean(), rtol=1e-12)
        np.testing.assert_allclose(std_pos, speed[q > 0].std(ddof=1), rtol=1e-10)

    def test_store(self):
        store = ParticleStore(n_cells=2, dim=2)
        store.insert_many(0, [[0.1, 0.1], [0.2, 0.2]], [[3.0, 4.0], [0.0, 1.0]], -1.0, 1.0)
        store.insert_many(1, [[0.7, 0.7]], [[0.0, 2.0]], 1.0, 1.0)

        mean_neg, std_neg, mean_pos, std_pos = speed_statistics(store)

        assert mean_neg == pytest.approx(3.0)
        assert std_neg == pytest.approx(np.sqrt(8.0))
        assert mean_pos == pytest.approx(2.0)
        assert std_pos == 0.0

    def test_empty(self):
        assert speed_statistics(ParticleStore(n_cells=1, dim=2)) == (0.0, 0.0, 0.0, 0.0)


class TestChargeConservation:

    def test_conserved(self):
        report = SimpleNamespace(charge_absorbed=-2.0, charge_lost=0.5)
        error, ok = check_charge_conservation(1.0, 2.5, report)
        assert ok
        assert error == pytest.approx(0.0)

    def test_violated(self):
        report = SimpleNamespace(charge_absorbed=0.0, charge_lost=0.0)
        error, ok = check_charge_conservation(1.0, 0.0, report)
        assert not ok
        assert error == pytest.approx(1.0)


class TestPlasmaPeriod:

    def test_electrons_dominate(self):
        """The electron period is the shortest."""
        n = 1e15
        T = min_plasma_period([-e, e], [m_e, 1836 * m_e], [n, n])
        assert T == pytest.approx(2 * np.pi / plasma_frequency(n))

    def test_normalized_units(self):
        T = min_plasma_period(1.0, 1.0, 1.0, epsilon=1.0)
        assert T == pytest.approx(2 * np.pi)

    def test_invalid(self):
        with pytest.raises(ValueError):
            min_plasma_period([0.0], [1.0], [1.0])
        with pytest.raises(ValueError):
            min_plasma_period([1.0, 1.0], [1.0], [1.0])


class TestObjectHistory:
    """Time series of population and object state."""

    @pytest.fixture
    def history(self, electrode_localizer):
        objects = [BoundaryObject(2), BoundaryObject(3)]
        engine = PopulationEngine(electrode_localizer, objects=objects)
        engine.add_particles([[0.02, 0.5], [0.5, 0.5]], [[-1.0, 0.0], [0.0, 0.0]],
                             [-1.0, 1.0], 1.0)

        history = ObjectHistory(n_steps=4, output_interval=2, objects=objects)
        for step in range(5):
            block_moves = [engine.store.cell(c) for c in range(engine.store.n_cells)]
            for block in block_moves:
                block.x[:block.n] += block.v[:block.n] * 0.01
            report = engine.update(0.01)
            if step % 2 == 0:
                history.record(step, step * 0.01, engine, report)
        return history

    def test_record(self, history):
        assert history.output_idx == 3
        np.testing.assert_array_equal(history.step[:3], [0, 2, 4])
        np.testing.assert_array_equal(history.n_particles[:3], [2, 1, 1])
        np.testing.assert_allclose(history.charge[:3, 0], [0.0, -1.0, -1.0])

    def test_record_overflow_ignored(self, history):
        history.record(10, 0.1, SimpleNamespace(), None)
        assert history.output_idx == 3

    def test_save_csv(self, history, tmp_path):
        fname = tmp_path / "history.csv"
        history.save_csv(fname)

        with open(fname, newline="") as f:
            rows = list(csv.reader(f))
        assert rows[0][:3] == ["step", "time", "n_particles"]
        assert "charge_2" in rows[0] and "potential_3" in rows[0]
        assert len(rows) == 4
        assert float(rows[2][rows[0].index("charge_2")]) == -1.0

    def test_plot(self, history, tmp_path):
        matplotlib = pytest.importorskip("matplotlib")
        matplotlib.use("Agg")
        fname = tmp_path / "history.png"
        fig = history.plot(show=False, save_filename=fname)
        assert fname.exists()
        assert len(fig.axes) == 4

    def test_summary(self, history, capsys):
        history.summary()
        out = capsys.readouterr().out
        assert "OBJECT HISTORY SUMMARY" in out
        assert "Object 2" in out


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
