"""mass_spring
License: BSD 3-Clause License
Copyright (C) 2024, New York University

Copyright note valid unless otherwise stated in individual files.
All rights reserved.

Chain of nx/2 unit masses linked by unit springs, with walls at both ends.
The state is [positions; velocities] and the first nu masses are actuated.
"""

import numpy as np
import scipy.linalg as scl

from .errors import InvalidDimensionError


def mass_spring_system(Ts, nx, nu):
    """Discrete time dynamics x+ = A x + B u + b sampled with period Ts.

    Returns (A, B, b, x0).
    """
    if nx <= 0 or nx % 2 != 0:
        raise InvalidDimensionError("nx must be a positive even number, got %d" % nx)
    n_masses = nx // 2
    if nu < 1 or nu > n_masses:
        raise InvalidDimensionError(
            "nu must be in [1, %d] for %d masses, got %d" % (n_masses, n_masses, nu)
        )

    T = -2.0 * np.eye(n_masses) + np.eye(n_masses, k=1) + np.eye(n_masses, k=-1)
    Ac = np.zeros((nx, nx))
    Ac[:n_masses, n_masses:] = np.eye(n_masses)
    Ac[n_masses:, :n_masses] = T
    Bc = np.zeros((nx, nu))
    Bc[n_masses : n_masses + nu, :] = np.eye(nu)

    A = scl.expm(Ts * Ac)
    # exact zero order hold, Ac is invertible since T is
    B = np.linalg.solve(Ac, (A - np.eye(nx)) @ Bc)
    b = np.zeros(nx)

    if nx == 4:
        x0 = np.array([5.0, 10.0, 15.0, 20.0])
    else:
        x0 = np.ones(nx)
    return A, B, b, x0
