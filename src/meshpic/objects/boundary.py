"""
Boundary Objects

A BoundaryObject is a tagged part of the mesh boundary (a probe, a
spacecraft hull, a grid) that absorbs the particles hitting it. During an
update pass the charge of absorbed particles collects in `current`; at the
end of the pass settle(dt) adds it to the persistent `charge` and turns it
into an actual current.
"""

from ..constants import NO_BOUNDARY
from ..errors import ConfigurationError


class BoundaryObject:
    """
    Charge-collecting boundary object.

    Attributes:
        boundary_id: Mesh boundary marker of the object's facets (> 0)
        charge: Accumulated charge [C]
        current: Charge collected this pass, current [A] after settle()
        potential: Object potential [V]
        floating: True if the potential follows the charge through a circuit
        name: Label used in logs and diagnostics
    """

    def __init__(self, boundary_id, charge=0.0, potential=0.0, floating=True, name=None):
        """
        Args:
            boundary_id: Positive mesh boundary id
            charge: Initial charge [C]
            potential: Initial potential [V]
            floating: Floating (circuit-driven) or fixed potential
            name: Optional label, defaults to 'object-<id>'

        Raises:
            ConfigurationError: If boundary_id is not positive
        """
        if int(boundary_id) <= NO_BOUNDARY:
            raise ConfigurationError(
                f"Boundary object id must be positive, got {boundary_id}"
            )
        self.boundary_id = int(boundary_id)
        self.charge = float(charge)
        self.current = 0.0
        self.potential = float(potential)
        self.floating = bool(floating)
        self.name = name if name is not None else f"object-{self.boundary_id}"

    def reset(self):
        """Zero the collected charge before a new pass."""
        self.current = 0.0

    def deposit(self, q):
        """Collect the charge of an absorbed particle."""
        self.current += q

    def settle(self, dt):
        """
        Close a pass: add the collected charge and convert it to a current.

        Args:
            dt: Timestep of the pass [s]
        """
        if dt <= 0:
            raise ValueError(f"dt must be positive, got {dt}")
        self.charge += self.current
        self.current /= dt

    def set_potential(self, value):
        """Set the potential (fixed-bias objects, or a circuit update)."""
        self.potential = float(value)

    def __repr__(self):
        """String representation."""
        kind = "floating" if self.floating else "fixed"
        return (f"BoundaryObject(id={self.boundary_id}, {kind}, "
                f"charge={self.charge:.6e}, potential={self.potential:.6e})")
