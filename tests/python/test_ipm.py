"""
License: BSD 3-Clause License
Copyright (C) 2024, New York University

Copyright note valid unless otherwise stated in individual files.
All rights reserved.

This file checks the interior point solver on the mass-spring benchmark and on
small problems with a known solution.
"""

import os
import pathlib

import numpy as np
import pytest

python_path = pathlib.Path(__file__).absolute().parent.parent.parent / "python"
os.sys.path.insert(1, str(python_path))

from problems import (  # noqa: E402
    MASS_SPRING_IPM_OPTIONS,
    create_ipm_arg,
    create_lq_problem,
    create_mass_spring_problem,
    lq_riccati_reference,
    solve_with_reduction,
)
from py_ocp_qp import (  # noqa: E402
    CallbackLogger,
    InvalidInputError,
    IpmMode,
    IpmStatus,
    OcpQp,
    OcpQpDim,
    OcpQpIpmArg,
    OcpQpIpmSolver,
    OcpQpRes,
    OcpQpSol,
    PreconditionError,
    SizeMismatchError,
    compute_res,
    plotConvergence,
)
from py_ocp_qp.ipm import FLOAT_FIELDS, INT_FIELDS, STAT_COLUMNS  # noqa: E402

LINE_WIDTH = 100


def test_mass_spring_end_to_end():
    print(" TEST IPM MASS SPRING ".center(LINE_WIDTH, "-"))
    dim, qp, x0 = create_mass_spring_problem(N=8, nx=8, nu=3)
    status, solver, qp_sol, _, _ = solve_with_reduction(dim, qp, **MASS_SPRING_IPM_OPTIONS)
    print("status", status.name, "iter", solver.get("iter"))
    assert status == IpmStatus.SUCCESS, "Test failed"
    assert solver.get("status") == 0, "Test failed"
    assert solver.get("iter") <= 30, "Test failed"
    assert solver.get("max_res_stat") <= 1e-6, "Test failed"
    assert solver.get("max_res_eq") <= 1e-8, "Test failed"
    assert solver.get("max_res_ineq") <= 1e-8, "Test failed"
    assert solver.get("max_res_comp") <= 1e-8, "Test failed"

    for i in range(dim.N):
        u = qp_sol.get("u", i)
        assert np.all(u >= -0.5 - 1e-8) and np.all(u <= 0.5 + 1e-8), "Test failed"
    # l1 softened state bounds: the positions start at 2.5 and cannot reach the box at once
    assert np.max(qp_sol.get("us", 1)) > 1e-3, "Test failed"

    stat = solver.get("stat")
    assert stat.shape == (solver.get("iter") + 1, solver.get("stat_m")), "Test failed"
    assert solver.get("stat_m") == len(STAT_COLUMNS), "Test failed"
    assert np.isclose(stat[-1, 5], solver.get("mu")), "Test failed"
    assert solver.get("time_ext") >= 0.0, "Test failed"
    solver.print_stat()


def test_slack_sign():
    print(" TEST IPM SLACKS ".center(LINE_WIDTH, "-"))
    dim, qp, _ = create_mass_spring_problem()
    status, _, qp_sol, _, _ = solve_with_reduction(dim, qp, **MASS_SPRING_IPM_OPTIONS)
    assert status == IpmStatus.SUCCESS, "Test failed"
    for i in range(dim.N + 1):
        assert np.all(qp_sol.get("ls", i) >= -1e-8), "Test failed"
        assert np.all(qp_sol.get("us", i) >= -1e-8), "Test failed"
        assert np.all(qp_sol.t[i] >= 0.0), "Test failed"
        assert np.all(qp_sol.lam[i] >= 0.0), "Test failed"


def test_repeated_solve_is_deterministic():
    dim, qp, _ = create_mass_spring_problem()
    _, _, sol1, _, _ = solve_with_reduction(dim, qp, **MASS_SPRING_IPM_OPTIONS)
    _, _, sol2, _, _ = solve_with_reduction(dim, qp, **MASS_SPRING_IPM_OPTIONS)
    for a, b in zip(sol1.ux, sol2.ux):
        assert np.array_equal(a, b), "Test failed"
    for a, b in zip(sol1.pi, sol2.pi):
        assert np.array_equal(a, b), "Test failed"


def test_same_solver_resolves():
    dim, qp, _ = create_mass_spring_problem(pinned=False)
    solver = OcpQpIpmSolver(dim, create_ipm_arg(dim, **MASS_SPRING_IPM_OPTIONS))
    sol1, sol2 = OcpQpSol(dim), OcpQpSol(dim)
    assert solver.solve(qp, sol1) == IpmStatus.SUCCESS, "Test failed"
    it = solver.get("iter")
    assert solver.solve(qp, sol2) == IpmStatus.SUCCESS, "Test failed"
    assert solver.get("iter") == it, "Test failed"
    for a, b in zip(sol1.ux, sol2.ux):
        assert np.array_equal(a, b), "Test failed"


def test_riccati_variants_agree():
    print(" TEST IPM RIC_ALG ".center(LINE_WIDTH, "-"))
    dim, qp, _ = create_mass_spring_problem()
    options = dict(MASS_SPRING_IPM_OPTIONS)
    options["ric_alg"] = 0
    status0, _, sol0, _, _ = solve_with_reduction(dim, qp, **options)
    options["ric_alg"] = 1
    status1, _, sol1, _, _ = solve_with_reduction(dim, qp, **options)
    assert status0 == status1 == IpmStatus.SUCCESS, "Test failed"
    for i in range(dim.N + 1):
        assert np.allclose(sol0.get("x", i), sol1.get("x", i), atol=1e-6), "Test failed"
        assert np.allclose(sol0.get("u", i), sol1.get("u", i), atol=1e-6), "Test failed"


def test_condensed_hessian_stays_psd():
    print(" TEST IPM CONDENSED HESSIAN ".center(LINE_WIDTH, "-"))
    dim, qp, _ = create_mass_spring_problem()
    min_eigs = []

    def check_hessians(solver):
        for H in solver.ws.H:
            if H.size == 0:
                continue
            eigs = np.linalg.eigvalsh(0.5 * (H + H.T))
            min_eigs.append(eigs[0] / max(1.0, np.max(np.abs(H))))

    for ric_alg in (0, 1):
        options = dict(MASS_SPRING_IPM_OPTIONS, ric_alg=ric_alg)
        status, _, _, _, _ = solve_with_reduction(dim, qp, callbacks=[check_hessians], **options)
        assert status == IpmStatus.SUCCESS, "Test failed"
    print("smallest scaled eigenvalue", min(min_eigs))
    assert min(min_eigs) >= -1e-12, "Test failed"


def test_reduced_matches_unreduced():
    print(" TEST IPM REDUCED VS FULL ".center(LINE_WIDTH, "-"))
    dim, qp, x0 = create_mass_spring_problem()
    status, _, sol_red, _, _ = solve_with_reduction(dim, qp, **MASS_SPRING_IPM_OPTIONS)
    assert status == IpmStatus.SUCCESS, "Test failed"

    options = dict(MASS_SPRING_IPM_OPTIONS)
    options["iter_max"] = 100
    solver = OcpQpIpmSolver(dim, create_ipm_arg(dim, "robust", **options))
    sol_full = OcpQpSol(dim)
    assert solver.solve(qp, sol_full) == IpmStatus.SUCCESS, "Test failed"
    assert np.allclose(sol_full.get("x", 0), x0, atol=1e-7), "Test failed"
    for i in range(dim.N + 1):
        assert np.allclose(sol_full.get("x", i), sol_red.get("x", i), atol=1e-5), "Test failed"
        assert np.allclose(sol_full.get("u", i), sol_red.get("u", i), atol=1e-5), "Test failed"


def test_lq_matches_dynamic_programming():
    print(" TEST IPM LQ ".center(LINE_WIDTH, "-"))
    dim, qp, x0 = create_lq_problem()
    xs, us = lq_riccati_reference(dim, qp, x0)
    for ric_alg in (0, 1):
        status, _, qp_sol, _, _ = solve_with_reduction(dim, qp, ric_alg=ric_alg)
        assert status == IpmStatus.SUCCESS, "Test failed"
        for i in range(dim.N):
            assert np.allclose(qp_sol.get("u", i), us[i], atol=1e-6), "Test failed"
        for i in range(dim.N + 1):
            assert np.allclose(qp_sol.get("x", i), xs[i], atol=1e-6), "Test failed"


def test_masked_bound_is_ignored():
    print(" TEST IPM MASKED BOUND ".center(LINE_WIDTH, "-"))
    dim, qp_ref, _ = create_mass_spring_problem()
    _, qp, _ = create_mass_spring_problem()
    for i in range(dim.N):
        qp_ref.set("lbu", -np.inf * np.ones(3), i)
        # an infeasible lower bound, switched off by its mask
        qp.set("lbu", 1e3 * np.ones(3), i)
        qp.set("lbu_mask", np.zeros(3), i)
    status_ref, _, sol_ref, _, _ = solve_with_reduction(dim, qp_ref, **MASS_SPRING_IPM_OPTIONS)
    status, _, sol, _, _ = solve_with_reduction(dim, qp, **MASS_SPRING_IPM_OPTIONS)
    assert status_ref == status == IpmStatus.SUCCESS, "Test failed"
    for i in range(dim.N + 1):
        assert np.allclose(sol.get("u", i), sol_ref.get("u", i), atol=1e-8), "Test failed"
        assert np.all(sol.get("lam_lbu", i) == 0.0), "Test failed"


def test_single_stage_horizon():
    print(" TEST IPM N=0 ".center(LINE_WIDTH, "-"))
    dim = OcpQpDim(0)
    dim.set_all([2], [0], [2], [0], [0], [0], [0], [0])
    qp = OcpQp(dim)
    qp.set("Q", np.eye(2), 0)
    qp.set("q", [-1.0, -2.0], 0)
    qp.set("idxbx", [0, 1], 0)
    qp.set("lbx", [-np.inf, -np.inf], 0)
    qp.set("ubx", [0.5, 0.5], 0)
    solver = OcpQpIpmSolver(dim, OcpQpIpmArg(dim, "robust"))
    qp_sol = OcpQpSol(dim)
    assert solver.solve(qp, qp_sol) == IpmStatus.SUCCESS, "Test failed"
    assert np.allclose(qp_sol.get("x", 0), [0.5, 0.5], atol=1e-5), "Test failed"
    assert np.allclose(qp_sol.get("lam_ubx", 0), [0.5, 1.5], atol=1e-5), "Test failed"

    # fully pinned single stage: nothing is left to solve
    dim = OcpQpDim(0)
    dim.set_all([2], [0], [2], [0], [0], [0], [0], [0])
    dim.set_nbxe(0, 2)
    qp = OcpQp(dim)
    qp.set("Q", np.eye(2), 0)
    qp.set("idxbx", [0, 1], 0)
    qp.set("lbx", [1.0, -1.0], 0)
    qp.set("ubx", [1.0, -1.0], 0)
    qp.set_idxbxe(0, [0, 1])
    status, solver, qp_sol, _, _ = solve_with_reduction(dim, qp)
    assert status == IpmStatus.SUCCESS, "Test failed"
    assert solver.get("iter") == 0, "Test failed"
    assert np.array_equal(qp_sol.get("x", 0), [1.0, -1.0]), "Test failed"
    assert np.allclose(qp_sol.get("lam_lbx", 0), [1.0, 0.0]), "Test failed"
    assert np.allclose(qp_sol.get("lam_ubx", 0), [0.0, 1.0]), "Test failed"


def test_max_iter_iterate_is_extractable():
    print(" TEST IPM MAX_ITER ".center(LINE_WIDTH, "-"))
    dim, qp, _ = create_mass_spring_problem()
    options = dict(MASS_SPRING_IPM_OPTIONS)
    options["iter_max"] = 2
    status, solver, qp_sol, _, _ = solve_with_reduction(dim, qp, **options)
    assert status == IpmStatus.MAX_ITER, "Test failed"
    assert solver.get("iter") == 2, "Test failed"
    sol = qp_sol.get_all()
    for key in ("u", "x", "pi", "lam_lb", "lam_ub"):
        assert all(np.all(np.isfinite(v)) for v in sol[key]), "Test failed"
    assert solver.get("stat").shape[0] == 3, "Test failed"


def test_min_step_status():
    dim, qp, _ = create_mass_spring_problem(soft=False)
    # the hard state box cannot be reached from x0 in one step
    status, _, _, _, _ = solve_with_reduction(
        dim, qp, **dict(MASS_SPRING_IPM_OPTIONS, alpha_min=0.5)
    )
    assert status == IpmStatus.MIN_STEP, "Test failed"


def test_presets():
    print(" TEST IPM PRESETS ".center(LINE_WIDTH, "-"))
    dim, _, _ = create_mass_spring_problem(N=3)
    for mode in IpmMode:
        arg = OcpQpIpmArg(dim, mode.value)
        for field in FLOAT_FIELDS + INT_FIELDS:
            assert getattr(arg, field) is not None, "Test failed"
        assert arg.stat_max == arg.iter_max, "Test failed"
    assert OcpQpIpmArg(dim, "robust").iter_max > OcpQpIpmArg(dim, "speed").iter_max, (
        "Test failed"
    )
    assert OcpQpIpmArg(dim, "speed_abs").abs_form == 1, "Test failed"

    arg = OcpQpIpmArg(dim, "balance")
    arg.set_tol_stat(1e-4)
    arg.set_iter_max(7)
    assert arg.tol_stat == 1e-4, "Test failed"
    assert arg.iter_max == arg.stat_max == 7, "Test failed"
    arg.set_default("speed")
    assert arg.tol_stat == 1e-6, "Test failed"
    # every option has a named setter
    for field in FLOAT_FIELDS + INT_FIELDS:
        assert callable(getattr(arg, "set_" + field, None)), "Test failed"
    arg.set_abs_form(1)
    assert arg.abs_form == 1, "Test failed"

    with pytest.raises(InvalidInputError):
        OcpQpIpmArg(dim, "fast")
    with pytest.raises(InvalidInputError):
        arg.set("ric_alg", 2)
    with pytest.raises(InvalidInputError):
        arg.set_abs_form(2)
    with pytest.raises(InvalidInputError):
        arg.set("tol_eq", -1.0)
    with pytest.raises(InvalidInputError):
        arg.set("foo", 1)


def test_speed_abs_mode():
    dim, qp, _ = create_mass_spring_problem()
    status, solver, _, _, _ = solve_with_reduction(dim, qp, "speed_abs", iter_max=30)
    assert status == IpmStatus.SUCCESS, "Test failed"
    assert solver.get("mu") <= 1e-8, "Test failed"


def test_warm_start():
    dim, qp, _ = create_mass_spring_problem(pinned=False)
    cold = OcpQpIpmSolver(dim, create_ipm_arg(dim, **MASS_SPRING_IPM_OPTIONS))
    qp_sol = OcpQpSol(dim)
    assert cold.solve(qp, qp_sol) == IpmStatus.SUCCESS, "Test failed"
    warm = OcpQpIpmSolver(
        dim, create_ipm_arg(dim, **dict(MASS_SPRING_IPM_OPTIONS, warm_start=2))
    )
    x_cold = [qp_sol.get("x", i) for i in range(dim.N + 1)]
    assert warm.solve(qp, qp_sol) == IpmStatus.SUCCESS, "Test failed"
    for i in range(dim.N + 1):
        assert np.allclose(qp_sol.get("x", i), x_cold[i], atol=1e-6), "Test failed"


def test_solver_errors():
    dim, qp, _ = create_mass_spring_problem(N=3)
    other_dim, other_qp, _ = create_mass_spring_problem(N=4)
    with pytest.raises(SizeMismatchError):
        OcpQpIpmSolver(dim, OcpQpIpmArg(other_dim))
    solver = OcpQpIpmSolver(dim, OcpQpIpmArg(dim))
    with pytest.raises(SizeMismatchError):
        solver.solve(other_qp, OcpQpSol(dim))
    with pytest.raises(SizeMismatchError):
        compute_res(qp, OcpQpSol(other_dim), OcpQpRes(dim))
    with pytest.raises(PreconditionError):
        OcpQpSol(dim).get("x", 0)
    with pytest.raises(InvalidInputError):
        solver.get("foo")


def test_solver_memory():
    dim, qp, _ = create_mass_spring_problem(pinned=False)
    arg = create_ipm_arg(dim, **MASS_SPRING_IPM_OPTIONS)
    mem = np.zeros(OcpQpIpmSolver.memsize(dim, arg), dtype=np.uint8)
    solver = OcpQpIpmSolver(dim, arg, memory=mem)
    assert np.shares_memory(solver.ws.H[0], mem), "Test failed"
    assert np.shares_memory(solver.get_res().res_max, mem), "Test failed"
    assert solver.solve(qp, OcpQpSol(dim)) == IpmStatus.SUCCESS, "Test failed"


def test_residual_extraction():
    dim, qp, _ = create_mass_spring_problem()
    _, solver, _, _, qp_sol_red = solve_with_reduction(dim, qp, **MASS_SPRING_IPM_OPTIONS)
    res = solver.get_res().get_all()
    assert len(res["res_b"]) == dim.N, "Test failed"
    assert len(res["res_r"]) == dim.N + 1, "Test failed"
    assert res["res_q"][0].size == 0, "Test failed"
    assert max(np.max(np.abs(v)) for v in res["res_r"] if v.size > 0) <= 1e-6, "Test failed"
    sol = qp_sol_red.get_all()
    assert sorted(sol) == sorted(
        ["u", "x", "ls", "us", "pi", "lam_lb", "lam_ub", "lam_lg", "lam_ug", "lam_ls", "lam_us"]
    ), "Test failed"


def test_callback_logger_and_plot():
    print(" TEST IPM CALLBACKS ".center(LINE_WIDTH, "-"))
    import matplotlib

    matplotlib.use("Agg")

    dim, qp, _ = create_mass_spring_problem(pinned=False)
    solver = OcpQpIpmSolver(dim, create_ipm_arg(dim, **MASS_SPRING_IPM_OPTIONS))
    logger = CallbackLogger()
    solver.callbacks.append(logger)
    solver.with_callbacks = True
    assert solver.solve(qp, OcpQpSol(dim)) == IpmStatus.SUCCESS, "Test failed"
    data = logger.convergence_data
    assert data["iter"] == list(range(solver.get("iter") + 1)), "Test failed"
    assert len(data["mu"]) == len(data["obj"]) == len(data["iter"]), "Test failed"
    assert data["mu"][-1] == solver.get("mu"), "Test failed"

    fig = plotConvergence(data, show=False)
    assert len(fig.axes) == len(data) - 1, "Test failed"

    with pytest.raises(NotImplementedError):
        logger(object())
