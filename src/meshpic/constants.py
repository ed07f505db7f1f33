"""
Physical Constants and Localization Defaults

All units in SI unless otherwise noted. Simulations running in normalized
units simply pass normalized charges and masses; the localization defaults
below are dimensionless.
"""

import numpy as np

# ==================== FUNDAMENTAL CONSTANTS ====================

e = 1.602176634e-19  # Elementary charge [C]
m_e = 9.1093837015e-31  # Electron mass [kg]
m_p = 1.67262192369e-27  # Proton mass [kg]
eps0 = 8.8541878128e-12  # Vacuum permittivity [F/m]
kB = 1.380649e-23  # Boltzmann constant [J/K]
AMU = 1.66053906660e-27  # Atomic mass unit [kg]
eV = e  # 1 eV in Joules [J]

# ==================== LOCALIZATION DEFAULTS ====================

# Hard cap on facet hops in a single relocation walk. A particle that needs
# more hops than this moved much further than one cell per timestep.
DEFAULT_MAX_RELOCATION_STEPS = 1000

# Slack on facet distances when locating a point from scratch (setup only).
LOCATE_TOLERANCE = 0.0

# Cells with |volume| below this (relative to the mesh bounding box) are
# rejected as degenerate.
DEGENERATE_VOLUME_TOL = 1e-14

# Boundary id conventionally used for the exterior edge of the domain.
EXTERIOR_BOUNDARY_ID = 1

# Interior facets carry boundary id 0; valid boundary ids are positive.
NO_BOUNDARY = 0

# ==================== PLASMA PARAMETERS ====================

def plasma_frequency(n, q=-e, m=m_e, epsilon=eps0):
    """
    Plasma frequency of a species.

    omega_p = sqrt(n * q^2 / (epsilon * m))

    Args:
        n: Number density [m^-3]
        q: Particle charge [C] (default: electron)
        m: Particle mass [kg] (default: electron)
        epsilon: Permittivity (default: vacuum, pass 1.0 for normalized units)

    Returns:
        omega_p: Plasma frequency [rad/s]
    """
    return np.sqrt(n * q**2 / (epsilon * m))


def debye_length(n_e, T_e):
    """
    Electron Debye length.

    Args:
        n_e: Electron density [m^-3]
        T_e: Electron temperature [eV]

    Returns:
        lambda_D: Debye length [m]
    """
    T_e_J = T_e * eV
    return np.sqrt(eps0 * T_e_J / (n_e * e**2))
