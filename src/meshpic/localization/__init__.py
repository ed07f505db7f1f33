"""
Mesh-Local Particle Localization

Components:
- builder: per-cell facet adjacency and facet-plane tables (built once)
- locator: point location and the relocation walk (numba kernels)
"""

from .builder import Localizer, LocalizerBuilder
from .locator import (
    BOUNDARY,
    CELL,
    BoundaryExit,
    Location,
    Locator,
    relocate_exact_kernel,
    relocate_fast_kernel,
)

__all__ = [
    # Builder
    "Localizer",
    "LocalizerBuilder",
    # Locator
    "Locator",
    "BoundaryExit",
    "Location",
    "CELL",
    "BOUNDARY",
    "relocate_exact_kernel",
    "relocate_fast_kernel",
]
