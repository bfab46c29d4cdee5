"""utils
License: BSD 3-Clause License
Copyright (C) 2024, New York University

Copyright note valid unless otherwise stated in individual files.
All rights reserved.
"""

import numpy as np
import scipy.linalg as scl

LINE_WIDTH = 100


def pp(s):
    return np.format_float_scientific(s, exp_digits=2, precision=4)


def raiseIfNan(A, error=None):
    if error is None:
        error = scl.LinAlgError("NaN in array")
    if np.any(np.isnan(A)) or np.any(np.isinf(A)) or np.any(abs(np.asarray(A)) > 1e30):
        raise error


def max_abs(vectors):
    """Largest absolute entry over a list of (possibly empty) arrays."""
    out = 0.0
    for v in vectors:
        if v.size > 0:
            out = max(out, float(np.max(np.abs(v))))
    return out
