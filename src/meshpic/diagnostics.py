"""
Diagnostic utilities for the particle population and boundary objects.

- Speed statistics per charge sign (running mean / standard deviation)
- Charge conservation check across update passes
- Plasma-period timestep guard
- Time history of particle counts and object charge, current, potential
  with CSV export and plots
"""

import csv
import logging

import numpy as np
from numba import njit

from .constants import eps0

logger = logging.getLogger(__name__)


@njit
def welford_speed_statistics(v, q, n):
    """
    Running mean and standard deviation of particle speed.

    Uses Welford's update so the result is stable for large populations.

    Args:
        v: Velocities (n_particles, D)
        q: Charges (n_particles,)
        n: Number of particles to include

    Returns:
        mean_neg, std_neg: Speed statistics of negative particles
        mean_pos, std_pos: Speed statistics of positive particles
    """
    count_neg = 0
    mean_neg = 0.0
    m2_neg = 0.0
    count_pos = 0
    mean_pos = 0.0
    m2_pos = 0.0

    for i in range(n):
        speed_sq = 0.0
        for j in range(v.shape[1]):
            speed_sq += v[i, j] * v[i, j]
        speed = np.sqrt(speed_sq)

        if q[i] < 0:
            count_neg += 1
            delta = speed - mean_neg
            mean_neg += delta / count_neg
            m2_neg += delta * (speed - mean_neg)
        elif q[i] > 0:
            count_pos += 1
            delta = speed - mean_pos
            mean_pos += delta / count_pos
            m2_pos += delta * (speed - mean_pos)

    std_neg = np.sqrt(m2_neg / (count_neg - 1)) if count_neg > 1 else 0.0
    std_pos = np.sqrt(m2_pos / (count_pos - 1)) if count_pos > 1 else 0.0

    return mean_neg, std_neg, mean_pos, std_pos


def speed_statistics(store):
    """
    Speed statistics of a ParticleStore.

    Args:
        store: ParticleStore

    Returns:
        mean_neg, std_neg, mean_pos, std_pos: Sample mean and standard
            deviation of the speed of negative and positive particles
            (0.0 where a sign has fewer than one / two particles)
    """
    _, _, v, q, _ = store.as_arrays()
    return welford_speed_statistics(v, q, len(q))


def check_charge_conservation(charge_before, charge_after, report, rtol=1e-12):
    """
    Check that an update pass neither created nor destroyed charge.

    charge_before = charge_after + charge_absorbed + charge_lost

    Args:
        charge_before: Total particle charge before the pass
        charge_after: Total particle charge after the pass
        report: UpdateReport of the pass
        rtol: Relative tolerance (summation order changes the roundoff)

    Returns:
        error: Absolute mismatch
        is_conserved: True if the mismatch is within tolerance
    """
    expected = charge_after + report.charge_absorbed + report.charge_lost
    error = abs(charge_before - expected)
    scale = max(abs(charge_before), abs(charge_after),
                abs(report.charge_absorbed) + abs(report.charge_lost))
    is_conserved = error <= rtol * scale

    return error, is_conserved


def min_plasma_period(charges, masses, densities, epsilon=eps0):
    """
    Shortest plasma period of a set of species.

    T_p = 2*pi*sqrt(epsilon * m / (q^2 * n)), the timestep should resolve
    the smallest of them.

    Args:
        charges: Species charges [C]
        masses: Species masses [kg]
        densities: Species number densities [m^-3]
        epsilon: Permittivity (pass 1.0 for normalized units)

    Returns:
        T_min: Smallest plasma period [s]
    """
    q = np.atleast_1d(np.asarray(charges, dtype=np.float64))
    m = np.atleast_1d(np.asarray(masses, dtype=np.float64))
    n = np.atleast_1d(np.asarray(densities, dtype=np.float64))
    if not (q.shape == m.shape == n.shape):
        raise ValueError("charges, masses and densities must have the same length")
    if np.any(q == 0) or np.any(n <= 0):
        raise ValueError("Species need nonzero charge and positive density")

    periods = 2.0 * np.pi * np.sqrt(epsilon * m / (q**2 * n))
    return float(np.min(periods))


class ObjectHistory:
    """
    Tracks the population and boundary objects over time.

    Usage:
        history = ObjectHistory(n_steps=1000, output_interval=10, objects=engine.objects)
        for step in range(n_steps):
            report = engine.update(dt)
            if step % output_interval == 0:
                history.record(step, step * dt, engine, report)
        history.save_csv('objects.csv')
        history.plot()
    """

    def __init__(self, n_steps: int, output_interval: int, objects=()):
        """
        Args:
            n_steps: Total number of simulation steps
            output_interval: Record every N steps
            objects: BoundaryObjects to follow
        """
        if output_interval < 1:
            raise ValueError(f"output_interval must be at least 1, got {output_interval}")

        self.n_outputs = n_steps // output_interval + 1
        self.output_idx = 0
        self.object_ids = [obj.boundary_id for obj in objects]
        n_obj = len(self.object_ids)

        # Time series data
        self.time = np.zeros(self.n_outputs)
        self.step = np.zeros(self.n_outputs, dtype=np.int64)
        self.n_particles = np.zeros(self.n_outputs, dtype=np.int64)
        self.n_positive = np.zeros(self.n_outputs, dtype=np.int64)
        self.n_negative = np.zeros(self.n_outputs, dtype=np.int64)
        self.n_absorbed = np.zeros(self.n_outputs, dtype=np.int64)
        self.n_lost = np.zeros(self.n_outputs, dtype=np.int64)
        self.mean_crossings = np.zeros(self.n_outputs)

        # Per object
        self.charge = np.zeros((self.n_outputs, n_obj))
        self.current = np.zeros((self.n_outputs, n_obj))
        self.potential = np.zeros((self.n_outputs, n_obj))

    def record(self, step, time, engine, report=None):
        """
        Record the current state.

        Args:
            step: Current simulation step
            time: Current simulation time [s]
            engine: PopulationEngine
            report: UpdateReport of the last pass (optional)
        """
        if self.output_idx >= self.n_outputs:
            return

        idx = self.output_idx
        self.time[idx] = time
        self.step[idx] = step
        self.n_particles[idx] = engine.count_total()
        self.n_positive[idx] = engine.count_positive()
        self.n_negative[idx] = engine.count_negative()

        if report is not None:
            self.n_absorbed[idx] = report.n_absorbed
            self.n_lost[idx] = report.n_lost
            self.mean_crossings[idx] = report.mean_crossings

        for k, boundary_id in enumerate(self.object_ids):
            obj = engine.object(boundary_id)
            self.charge[idx, k] = obj.charge
            self.current[idx, k] = obj.current
            self.potential[idx, k] = obj.potential

        self.output_idx += 1

    def save_csv(self, filename: str):
        """
        Save the history to a CSV file.

        Args:
            filename: Output CSV filename
        """
        with open(filename, 'w', newline='') as f:
            writer = csv.writer(f)

            header = ['step', 'time', 'n_particles', 'n_positive', 'n_negative',
                      'n_absorbed', 'n_lost', 'mean_crossings']
            for boundary_id in self.object_ids:
                header += [f'charge_{boundary_id}', f'current_{boundary_id}',
                           f'potential_{boundary_id}']
            writer.writerow(header)

            for i in range(self.output_idx):
                row = [
                    self.step[i],
                    repr(float(self.time[i])),
                    self.n_particles[i],
                    self.n_positive[i],
                    self.n_negative[i],
                    self.n_absorbed[i],
                    self.n_lost[i],
                    repr(float(self.mean_crossings[i])),
                ]
                for k in range(len(self.object_ids)):
                    row += [repr(float(self.charge[i, k])),
                            repr(float(self.current[i, k])),
                            repr(float(self.potential[i, k]))]
                writer.writerow(row)

        logger.info("History saved to %s", filename)

    def plot(self, show=True, save_filename=None):
        """
        Plot particle counts and object charge, current and potential.

        Args:
            show: Display plots interactively
            save_filename: Save figure to file (optional)

        Returns:
            fig: The matplotlib Figure
        """
        import matplotlib.pyplot as plt

        fig, axes = plt.subplots(2, 2, figsize=(12, 9))
        n = self.output_idx
        t = self.time[:n]

        # Plot 1: Particle counts
        ax = axes[0, 0]
        ax.plot(t, self.n_particles[:n], 'k-', linewidth=2, label='Total')
        ax.plot(t, self.n_negative[:n], 'b-', linewidth=1.5, label='Negative')
        ax.plot(t, self.n_positive[:n], 'r-', linewidth=1.5, label='Positive')
        ax.set_xlabel('Time', fontsize=12)
        ax.set_ylabel('Particles', fontsize=12)
        ax.set_title('Particle Population', fontsize=14, fontweight='bold')
        ax.legend(fontsize=10)
        ax.grid(True, alpha=0.3)

        # Plots 2-4: Per-object quantities
        panels = [
            (axes[0, 1], self.charge, 'Charge', 'Object Charge'),
            (axes[1, 0], self.current, 'Current', 'Object Current'),
            (axes[1, 1], self.potential, 'Potential', 'Object Potential'),
        ]
        for ax, data, ylabel, title in panels:
            for k, boundary_id in enumerate(self.object_ids):
                ax.plot(t, data[:n, k], linewidth=2, label=f'Object {boundary_id}')
            ax.set_xlabel('Time', fontsize=12)
            ax.set_ylabel(ylabel, fontsize=12)
            ax.set_title(title, fontsize=14, fontweight='bold')
            if self.object_ids:
                ax.legend(fontsize=10)
            ax.grid(True, alpha=0.3)

        plt.tight_layout()

        if save_filename:
            plt.savefig(save_filename, dpi=300, bbox_inches='tight')
            logger.info("Plot saved to %s", save_filename)

        if show:
            plt.show()

        return fig

    def summary(self):
        """
        Print summary statistics.
        """
        print("\n" + "="*70)
        print("OBJECT HISTORY SUMMARY")
        print("="*70)

        idx = self.output_idx - 1 if self.output_idx > 0 else 0

        print(f"\nFinal State:")
        print(f"  Particles: {self.n_particles[idx]:,} "
              f"({self.n_negative[idx]:,} negative, {self.n_positive[idx]:,} positive)")
        print(f"  Mean facet crossings: {self.mean_crossings[idx]:.3f}")

        for k, boundary_id in enumerate(self.object_ids):
            print(f"\n  Object {boundary_id}:")
            print(f"    Charge:    {self.charge[idx, k]:.6e}")
            print(f"    Current:   {self.current[idx, k]:.6e}")
            print(f"    Potential: {self.potential[idx, k]:.6e}")

        if self.output_idx > 0:
            print(f"\nTotals over recorded steps:")
            print(f"  Absorbed: {int(np.sum(self.n_absorbed[:self.output_idx])):,}")
            print(f"  Lost:     {int(np.sum(self.n_lost[:self.output_idx])):,}")

        print("="*70 + "\n")
