"""
meshpic: Particle Population Core for PIC on Unstructured Simplex Meshes

Localizes particles on interval, triangle and tetrahedral meshes, keeps the
per-cell particle population consistent as particles cross cells and leave
the domain, and tracks the charge and potential of floating boundary
objects through an inverse capacitance matrix.

Version: 0.1.0
"""

__version__ = "0.1.0"

from .constants import *
from .errors import (
    ConfigurationError,
    ContractViolation,
    MeshpicError,
    MeshTopologyError,
    RelocationError,
)
from .mesh import SimplexMesh, interval_mesh, rectangle_mesh, box_mesh
from .localization import BoundaryExit, Localizer, LocalizerBuilder, Locator
from .particles import Particle, CellParticles, ParticleStore
from .objects import BoundaryObject, CapacitanceCircuit
from .population import EngineState, PopulationEngine, UpdateReport
from .io import save_particles, load_particles
from .logging_config import setup_logging

__all__ = [
    "SimplexMesh",
    "interval_mesh",
    "rectangle_mesh",
    "box_mesh",
    "Localizer",
    "LocalizerBuilder",
    "Locator",
    "BoundaryExit",
    "Particle",
    "CellParticles",
    "ParticleStore",
    "BoundaryObject",
    "CapacitanceCircuit",
    "EngineState",
    "PopulationEngine",
    "UpdateReport",
    "save_particles",
    "load_particles",
    "setup_logging",
    "MeshpicError",
    "ConfigurationError",
    "MeshTopologyError",
    "ContractViolation",
    "RelocationError",
]
