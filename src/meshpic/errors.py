"""
Exceptions raised by meshpic.

Two families exist. Configuration errors are raised while building the
localizer, the objects or the circuit and mean the setup itself is wrong.
Contract violations are raised during a run and mean a caller handed the
core something it promised never to (an out-of-range cell, a timestep so
large that a particle outran the relocation walk).
"""


class MeshpicError(Exception):
    """Base class for all meshpic errors."""


class ConfigurationError(MeshpicError, ValueError):
    """Invalid setup: mesh, boundary tags, objects or capacitance input."""


class MeshTopologyError(ConfigurationError):
    """Malformed mesh adjacency, untagged boundary facet or degenerate cell."""


class ContractViolation(MeshpicError, RuntimeError):
    """A caller broke an invariant of the population core."""


class RelocationError(ContractViolation):
    """
    A relocation walk hit its step cap.

    Attributes:
        cell_id: Cell where the walk was when it gave up
        point: The point being relocated
        max_steps: The cap that was exceeded
    """

    def __init__(self, cell_id, point, max_steps):
        self.cell_id = cell_id
        self.point = point
        self.max_steps = max_steps
        super().__init__(
            f"Relocation of point {list(point)} did not terminate within "
            f"{max_steps} facet crossings (last cell {cell_id}); "
            f"the timestep is too large for the mesh or the position is corrupt"
        )
