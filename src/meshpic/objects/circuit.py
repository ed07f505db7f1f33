"""
Capacitance Circuit

Maps the charges of the floating boundary objects to their potentials
through a precomputed inverse capacitance matrix:

    phi = C^-1 q

The matrix comes from the field solver (one Laplace solve per object) and
is checked once on construction: square with one row per floating object,
finite, symmetric and positive definite.
"""

import logging

import numpy as np
import scipy.linalg

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

# Relative tolerance of the symmetry check
DEFAULT_SYMMETRY_RTOL = 1e-10


class CapacitanceCircuit:
    """
    Inverse-capacitance coupling of floating boundary objects.

    Row i of the matrix belongs to the i-th floating object in the order
    the objects were given. Fixed-potential objects may be passed too; they
    are left alone.

    Usage:
        objects = [BoundaryObject(2), BoundaryObject(3)]
        circuit = CapacitanceCircuit(objects, [[1.0, 0.2], [0.2, 1.0]])
        circuit.update_potentials()
    """

    def __init__(self, objects, inverse_capacitance, rtol=DEFAULT_SYMMETRY_RTOL):
        """
        Args:
            objects: BoundaryObjects (floating ones are coupled)
            inverse_capacitance: Matrix [N, N], N floating objects
            rtol: Relative tolerance for the symmetry check

        Raises:
            ConfigurationError: On duplicate ids, wrong shape, non-finite,
                non-symmetric or non positive definite matrix
        """
        objects = list(objects)
        ids = [obj.boundary_id for obj in objects]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate boundary object ids {duplicates}")

        self.objects = objects
        self.floating = [obj for obj in objects if obj.floating]
        n = len(self.floating)

        matrix = np.array(inverse_capacitance, dtype=np.float64)
        if matrix.ndim != 2 or matrix.shape != (n, n):
            raise ConfigurationError(
                f"Inverse capacitance has shape {matrix.shape}, expected ({n}, {n}) "
                f"for {n} floating objects"
            )
        if not np.all(np.isfinite(matrix)):
            raise ConfigurationError("Inverse capacitance contains non-finite entries")

        self._check_symmetric(matrix, rtol)
        self._check_positive_definite(matrix)

        matrix.flags.writeable = False
        self.inverse_capacitance = matrix

        logger.info("Capacitance circuit with %d floating objects %s",
                    n, [obj.boundary_id for obj in self.floating])

    @classmethod
    def from_capacitance(cls, objects, capacitance, rtol=DEFAULT_SYMMETRY_RTOL):
        """
        Build a circuit from the capacitance matrix itself.

        Args:
            objects: BoundaryObjects
            capacitance: Capacitance matrix [N, N]

        Returns:
            circuit: CapacitanceCircuit with inverse_capacitance = C^-1
        """
        capacitance = np.array(capacitance, dtype=np.float64)
        if capacitance.ndim != 2 or capacitance.shape[0] != capacitance.shape[1]:
            raise ConfigurationError(
                f"Capacitance matrix must be square, got shape {capacitance.shape}"
            )
        try:
            inverse = scipy.linalg.inv(capacitance)
        except (np.linalg.LinAlgError, ValueError) as err:
            raise ConfigurationError(f"Capacitance matrix is singular: {err}") from err

        # inv() of a symmetric matrix is symmetric up to roundoff
        if np.allclose(capacitance, capacitance.T, rtol=rtol, atol=0.0):
            inverse = 0.5 * (inverse + inverse.T)
        return cls(objects, inverse, rtol=rtol)

    def _check_symmetric(self, matrix, rtol):
        scale = np.max(np.abs(matrix)) if matrix.size else 0.0
        diff = np.abs(matrix - matrix.T)
        if np.any(diff > rtol * scale):
            i, j = np.unravel_index(np.argmax(diff), diff.shape)
            a, b = sorted((int(i), int(j)))
            raise ConfigurationError(
                f"Inverse capacitance is not symmetric between objects "
                f"{self.floating[a].boundary_id} and {self.floating[b].boundary_id} "
                f"({matrix[a, b]:.6e} != {matrix[b, a]:.6e})"
            )

    def _check_positive_definite(self, matrix):
        if matrix.size == 0:
            return
        try:
            scipy.linalg.cholesky(matrix, lower=True)
            return
        except np.linalg.LinAlgError:
            pass

        # Find the first leading minor that fails
        for k in range(1, matrix.shape[0] + 1):
            try:
                scipy.linalg.cholesky(matrix[:k, :k], lower=True)
            except np.linalg.LinAlgError:
                obj = self.floating[k - 1]
                raise ConfigurationError(
                    f"Inverse capacitance is not positive definite: leading minor "
                    f"{k} fails at object {obj.boundary_id} ({obj.name})"
                ) from None
        raise ConfigurationError("Inverse capacitance is not positive definite")

    @property
    def n_objects(self):
        """Number of coupled (floating) objects."""
        return len(self.floating)

    def charges(self):
        """Charges of the floating objects [N]."""
        return np.array([obj.charge for obj in self.floating], dtype=np.float64)

    def potentials(self, charges):
        """
        Potentials produced by the given object charges.

        Args:
            charges: Charges [N] in floating-object order

        Returns:
            phi: Potentials [N]
        """
        charges = np.asarray(charges, dtype=np.float64)
        if charges.shape != (self.n_objects,):
            raise ValueError(
                f"Expected {self.n_objects} charges, got shape {charges.shape}"
            )
        return self.inverse_capacitance @ charges

    def update_potentials(self):
        """
        Recompute and store the potential of every floating object.

        Returns:
            phi: New potentials [N]
        """
        phi = self.potentials(self.charges())
        for obj, value in zip(self.floating, phi):
            obj.set_potential(value)
        return phi

    def __repr__(self):
        """String representation."""
        return f"CapacitanceCircuit(n_objects={self.n_objects})"
