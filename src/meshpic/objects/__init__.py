"""
Boundary Objects and Their Circuit

Components:
- boundary: charge-collecting boundary objects (floating or biased)
- circuit: inverse-capacitance coupling of the floating objects
"""

from .boundary import BoundaryObject
from .circuit import CapacitanceCircuit

__all__ = [
    "BoundaryObject",
    "CapacitanceCircuit",
]
