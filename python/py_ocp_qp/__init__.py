#!/usr/bin/env python

"""py_ocp_qp Stage-wise QPs of optimal control, eq-dof reduction and an interior point solver."""

__copyright__ = "Copyright (c) 2024, New York University."
__license__ = "BSD-3-Clause"
__version__ = "1.0"
__status__ = "Development"

import numpy as np

from .dim import OcpQpDim  # noqa: F401
from .errors import (  # noqa: F401
    InvalidDimensionError,
    InvalidInputError,
    OcpQpError,
    PreconditionError,
    SizeMismatchError,
)
from .full_qp import ocp_qp_sol_to_vector, ocp_qp_to_full_qp, vector_to_ocp_qp_sol  # noqa: F401
from .ipm import IpmMode, IpmStatus, OcpQpIpmArg, OcpQpIpmSolver, OcpQpIpmWs  # noqa: F401
from .mass_spring import mass_spring_system  # noqa: F401
from .qp import OcpQp  # noqa: F401
from .reduce_eq_dof import (  # noqa: F401
    OcpQpReduceEqDofArg,
    OcpQpReduceEqDofWs,
    reduce_eq_dof,
    restore_eq_dof,
)
from .res import OcpQpRes, compute_obj, compute_res  # noqa: F401
from .sol import OcpQpSol  # noqa: F401


class CallbackLogger:
    """Per-iteration recorder, appended to OcpQpIpmSolver.callbacks."""

    def __init__(self, verbose=False):
        self.verbose = verbose
        self.convergence_data = {}

    def __call__(self, solver):
        def safe_append(key, value):
            if key not in self.convergence_data:
                self.convergence_data[key] = []
            self.convergence_data[key].append(value)

        if isinstance(solver, OcpQpIpmSolver):
            res_max = solver.get_res().get_max()
            safe_append("iter", solver.iter)
            safe_append("alpha_prim", solver.alpha_prim)
            safe_append("alpha_dual", solver.alpha_dual)
            safe_append("mu", solver.mu)
            safe_append("res_stat", res_max[0])
            safe_append("res_eq", res_max[1])
            safe_append("res_ineq", res_max[2])
            safe_append("res_comp", res_max[3])
            safe_append("obj", solver.obj)
            if self.verbose:
                print("iter %d: mu = %.4e, obj = %.4e" % (solver.iter, solver.mu, solver.obj))
        else:
            raise NotImplementedError("CallbackLogger is implemented for OcpQpIpmSolver.")


def plotConvergence(data, show=True):
    import matplotlib.pyplot as plt

    keys = [
        key
        for key, values in data.items()
        if key != "iter" and len(np.asarray(values, dtype="object").shape) == 1
    ]
    fig, axs = plt.subplots(len(keys), 1, sharex="col", figsize=(12, 2.5 * len(keys)), squeeze=False)

    for i, key in enumerate(keys):
        ax = axs[i, 0]
        ax.plot(data["iter"] if "iter" in data else range(len(data[key])), data[key])
        ax.set_title(key)
        if key == "mu" or key.startswith("res_"):
            ax.set_yscale("log")
    axs[-1, 0].set_xlabel("iter")
    plt.tight_layout()

    if show:
        plt.show()

    return fig
