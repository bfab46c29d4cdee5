"""mass_spring

License: BSD 3-Clause License
Copyright (C) 2024, New York University

Copyright note valid unless otherwise stated in individual files.
All rights reserved.
"""

import time

import matplotlib.pyplot as plt
import numpy as np
import py_ocp_qp
from py_ocp_qp.utils import LINE_WIDTH

# # # # # # # # # # # # # # #
###     MASS SPRING QP    ###
# # # # # # # # # # # # # # #

nx = 8  # number of states, nx/2 masses
nu = 3  # number of actuated masses
N = 8  # horizon
Ts = 0.5  # sampling time
nrep = 100  # repetitions for timing

A, B, b, _ = py_ocp_qp.mass_spring_system(Ts, nx, nu)
x0 = np.zeros(nx)
x0[0] = 2.5
x0[1] = 2.5

nx_ = [nx] * (N + 1)
nu_ = [nu] * N + [0]
nbu = list(nu_)
nbx = [nx] + [nx // 2] * N
ng = [0] * (N + 1)
nsbx = [0] + [nx // 2] * N
nsbu = [0] * (N + 1)
nsg = [0] * (N + 1)

dim = py_ocp_qp.OcpQpDim(N)
dim.set_all(nx_, nu_, nbx, nbu, ng, nsbx, nsbu, nsg)
# x0 is pinned through equality flagged box rows
dim.set_nbxe(0, nx)
dim.print_dim()

qp = py_ocp_qp.OcpQp(dim)
for i in range(N):
    qp.set("A", A, i)
    qp.set("B", B, i)
    qp.set("b", b, i)
    qp.set("R", 2.0 * np.eye(nu), i)
    qp.set("idxbu", np.arange(nu), i)
    qp.set("lbu", -0.5 * np.ones(nu), i)
    qp.set("ubu", 0.5 * np.ones(nu), i)
qp.set("idxbx", np.arange(nx), 0)
qp.set("lbx", x0, 0)
qp.set("ubx", x0, 0)
qp.set_idxbxe(0, np.arange(nx))
for i in range(1, N + 1):
    ns = nx // 2
    qp.set("idxbx", np.arange(ns), i)
    qp.set("lbx", -np.ones(ns), i)
    qp.set("ubx", np.ones(ns), i)
    # l1 penalty on the violation of the position bounds
    qp.set("idxs", nbu[i] + np.arange(ns), i)
    qp.set("Zl", np.zeros(ns), i)
    qp.set("Zu", np.zeros(ns), i)
    qp.set("zl", 1e2 * np.ones(ns), i)
    qp.set("zu", 1e2 * np.ones(ns), i)
    qp.set("lls", np.zeros(ns), i)
    qp.set("lus", np.zeros(ns), i)

# # # # # # # # # # # # # # #
###    REDUCE EQ DOF      ###
# # # # # # # # # # # # # # #

dim_red = py_ocp_qp.OcpQpDim(N)
dim.reduce_eq_dof(dim_red)
qp_red = py_ocp_qp.OcpQp(dim_red)
red_arg = py_ocp_qp.OcpQpReduceEqDofArg()
red_arg.set_alias_unchanged(1)
red_ws = py_ocp_qp.OcpQpReduceEqDofWs(dim)

t0 = time.time()
for _ in range(nrep):
    py_ocp_qp.reduce_eq_dof(qp, qp_red, red_arg, red_ws)
time_red = (time.time() - t0) / nrep

# # # # # # # # # # # # # # #
###        SOLVE          ###
# # # # # # # # # # # # # # #

arg = py_ocp_qp.OcpQpIpmArg(dim_red, "speed")
arg.set_mu0(1e2)
arg.set_iter_max(30)
arg.set_alpha_min(1e-8)
arg.set_tol_stat(1e-6)
arg.set_tol_eq(1e-8)
arg.set_tol_ineq(1e-8)
arg.set_tol_comp(1e-8)
arg.set_reg_prim(1e-12)
arg.set_ric_alg(0)
arg.set_comp_res_exit(1)

solver = py_ocp_qp.OcpQpIpmSolver(dim_red, arg)
solver.with_callbacks = True
logger = py_ocp_qp.CallbackLogger()
solver.callbacks.append(logger)

qp_sol_red = py_ocp_qp.OcpQpSol(dim_red)
status = solver.solve(qp_red, qp_sol_red)
solver.with_callbacks = False
solver.callbacks = []

t0 = time.time()
for _ in range(nrep):
    solver.solve(qp_red, qp_sol_red)
time_ipm = (time.time() - t0) / nrep

qp_sol = py_ocp_qp.OcpQpSol(dim)
t0 = time.time()
for _ in range(nrep):
    py_ocp_qp.restore_eq_dof(qp, qp_sol_red, qp_sol, red_arg, red_ws)
time_res = (time.time() - t0) / nrep

# # # # # # # # # # # # # # #
###        RESULTS        ###
# # # # # # # # # # # # # # #

print(" SOLUTION ".center(LINE_WIDTH, "-"))
qp_sol.print_sol()

print(" RESIDUALS ".center(LINE_WIDTH, "-"))
res = py_ocp_qp.compute_res(qp, qp_sol, py_ocp_qp.OcpQpRes(dim))
print("max res stat, eq, ineq, comp:", res.get_max())

print(" STATISTICS ".center(LINE_WIDTH, "-"))
solver.print_stat()
print("status:", py_ocp_qp.IpmStatus(status).name)
print("iterations:", solver.get("iter"))
print("objective:", solver.get("obj"))
print("reduce time: %.3e s, ipm time: %.3e s, restore time: %.3e s" % (time_red, time_ipm, time_res))

xs = np.array([qp_sol.get("x", i) for i in range(N + 1)])
us = np.array([qp_sol.get("u", i) for i in range(N)])
time_lin = np.arange(N + 1) * Ts

fig, axs = plt.subplots(2, sharex="col")
axs[0].plot(time_lin, xs[:, : nx // 2])
axs[0].set_title("positions")
axs[1].step(time_lin[:-1], us, where="post")
axs[1].set_title("inputs")
fig.suptitle("Mass spring trajectory")

py_ocp_qp.plotConvergence(logger.convergence_data)
