"""ipm
License: BSD 3-Clause License
Copyright (C) 2024, New York University

Copyright note valid unless otherwise stated in individual files.
All rights reserved.

Primal-dual interior point method for the OCP-QP, Mehrotra predictor-corrector
with the Newton system solved stage-wise by a Riccati recursion.
"""

import time
from enum import Enum, IntEnum

import numpy as np
import scipy.linalg as scl

from .errors import InvalidInputError, SizeMismatchError
from .memory import memsize_of, place
from .res import OcpQpRes, compute_obj, compute_res, inequality_values
from .riccati import RiccatiRecursion
from .utils import pp, raiseIfNan

STAT_COLUMNS = (
    "alpha_aff",
    "mu_aff",
    "sigma",
    "alpha_prim",
    "alpha_dual",
    "mu",
    "res_stat",
    "res_eq",
    "res_ineq",
    "res_comp",
    "obj",
    "time",
)

# interior margin of the cold start
THR0 = 0.1
# fraction to the boundary
TAU = 0.995
# centering when the predictor is switched off
SIGMA_NO_PRED = 0.1
WARM_START_FLOOR = 1e-8


class IpmStatus(IntEnum):
    SUCCESS = 0
    MAX_ITER = 1
    MIN_STEP = 2
    NAN_SOL = 3


class IpmMode(Enum):
    SPEED_ABS = "speed_abs"
    SPEED = "speed"
    BALANCE = "balance"
    ROBUST = "robust"


MODE_PRESETS = {
    IpmMode.SPEED_ABS: dict(
        mu0=1e1, alpha_min=1e-12, tol_stat=1e0, tol_eq=1e-8, tol_ineq=1e-8, tol_comp=1e-8,
        reg_prim=1e-15, iter_max=15, warm_start=0, pred_corr=1, ric_alg=0,
        comp_res_exit=0, split_step=1, abs_form=1,
    ),
    IpmMode.SPEED: dict(
        mu0=1e1, alpha_min=1e-12, tol_stat=1e-6, tol_eq=1e-8, tol_ineq=1e-8, tol_comp=1e-8,
        reg_prim=1e-15, iter_max=15, warm_start=0, pred_corr=1, ric_alg=0,
        comp_res_exit=1, split_step=1, abs_form=0,
    ),
    IpmMode.BALANCE: dict(
        mu0=1e1, alpha_min=1e-12, tol_stat=1e-6, tol_eq=1e-8, tol_ineq=1e-8, tol_comp=1e-8,
        reg_prim=1e-15, iter_max=30, warm_start=0, pred_corr=1, ric_alg=0,
        comp_res_exit=1, split_step=0, abs_form=0,
    ),
    IpmMode.ROBUST: dict(
        mu0=1e2, alpha_min=1e-12, tol_stat=1e-6, tol_eq=1e-8, tol_ineq=1e-8, tol_comp=1e-8,
        reg_prim=1e-15, iter_max=100, warm_start=0, pred_corr=1, ric_alg=0,
        comp_res_exit=1, split_step=0, abs_form=0,
    ),
}  # fmt: skip

FLOAT_FIELDS = ("mu0", "alpha_min", "tol_stat", "tol_eq", "tol_ineq", "tol_comp", "reg_prim")
INT_FIELDS = ("iter_max", "warm_start", "pred_corr", "ric_alg", "comp_res_exit", "split_step", "abs_form")


class OcpQpIpmArg:
    def __init__(self, dim, mode="speed"):
        self.dim = dim
        self.set_default(mode)

    def set_default(self, mode):
        try:
            mode = IpmMode(mode)
        except ValueError:
            raise InvalidInputError(
                "unknown mode %s, expected one of %s" % (mode, [m.value for m in IpmMode])
            ) from None
        self.mode = mode
        for field, value in MODE_PRESETS[mode].items():
            setattr(self, field, value)
        self.stat_max = self.iter_max

    def set(self, field, value):
        if field in FLOAT_FIELDS:
            value = float(value)
            if field == "reg_prim":
                if value < 0.0:
                    raise InvalidInputError("reg_prim must be non-negative")
            elif not value > 0.0:
                raise InvalidInputError("%s must be positive, got %s" % (field, value))
        elif field in INT_FIELDS:
            value = int(value)
            allowed = {
                "warm_start": (0, 1, 2),
                "ric_alg": (0, 1),
                "pred_corr": (0, 1),
                "comp_res_exit": (0, 1),
                "split_step": (0, 1),
                "abs_form": (0, 1),
            }
            if field == "iter_max":
                if value < 0:
                    raise InvalidInputError("iter_max must be non-negative")
                self.stat_max = value
            elif value not in allowed[field]:
                raise InvalidInputError("%s must be one of %s" % (field, allowed[field]))
        else:
            raise InvalidInputError("unknown ipm option %s" % field)
        setattr(self, field, value)

    def set_mu0(self, value):
        self.set("mu0", value)

    def set_iter_max(self, value):
        self.set("iter_max", value)

    def set_alpha_min(self, value):
        self.set("alpha_min", value)

    def set_tol_stat(self, value):
        self.set("tol_stat", value)

    def set_tol_eq(self, value):
        self.set("tol_eq", value)

    def set_tol_ineq(self, value):
        self.set("tol_ineq", value)

    def set_tol_comp(self, value):
        self.set("tol_comp", value)

    def set_reg_prim(self, value):
        self.set("reg_prim", value)

    def set_warm_start(self, value):
        self.set("warm_start", value)

    def set_pred_corr(self, value):
        self.set("pred_corr", value)

    def set_ric_alg(self, value):
        self.set("ric_alg", value)

    def set_comp_res_exit(self, value):
        self.set("comp_res_exit", value)

    def set_split_step(self, value):
        self.set("split_step", value)

    def set_abs_form(self, value):
        self.set("abs_form", value)


class OcpQpIpmWs:
    """Step, factorization and statistics storage of the solver."""

    def __init__(self, dim, stat_max, memory=None):
        self.dim = dim
        self.stat_max = stat_max
        place(self, memory, dim, stat_max)

    @staticmethod
    def memsize(dim, stat_max):
        return memsize_of(OcpQpIpmWs, dim, stat_max)

    def _carve(self, arena, dim, stat_max):
        stages = range(dim.N + 1)
        nv = [dim.nv(i) for i in stages]
        ns = [int(dim.ns[i]) for i in stages]
        nd = [dim.nd(i) for i in stages]
        self.H = [arena.floats(nv[i], nv[i]) for i in stages]
        self.g = [arena.floats(nv[i]) for i in stages]
        self.Ct = [arena.floats(nv[i], dim.nc(i)) for i in stages]
        self.W = [arena.floats(nd[i]) for i in stages]
        self.rhs_m = [arena.floats(nd[i]) for i in stages]
        # eliminated slack blocks: diagonal and right-hand side of ls, us
        self.Dls = [arena.floats(2 * ns[i]) for i in stages]
        self.gls = [arena.floats(2 * ns[i]) for i in stages]
        self.dux = [arena.floats(nv[i] + 2 * ns[i]) for i in stages]
        self.dpi = [arena.floats(int(dim.nx[i + 1])) for i in range(dim.N)]
        self.dlam = [arena.floats(nd[i]) for i in stages]
        self.dt = [arena.floats(nd[i]) for i in stages]
        self.dlam_aff = [arena.floats(nd[i]) for i in stages]
        self.dt_aff = [arena.floats(nd[i]) for i in stages]
        self.stat = arena.floats(stat_max + 1, len(STAT_COLUMNS))
        self.ric = RiccatiRecursion(dim, arena)
        mem = arena.raw(OcpQpRes.memsize(dim))
        if mem is not None:
            self.res = OcpQpRes(dim, memory=mem)


class OcpQpIpmSolver:
    def __init__(self, dim, arg, memory=None):
        if not dim.same_shape(arg.dim):
            raise SizeMismatchError("ipm arguments were created for different dimensions")
        dim.freeze()
        self.dim = dim
        self.arg = arg
        self.ws = OcpQpIpmWs(dim, arg.stat_max, memory=memory)
        self.with_callbacks = False
        self.callbacks = []
        self.status = IpmStatus.MAX_ITER
        self.iter = 0
        self.obj = 0.0
        self.time_ext = 0.0
        self._reset_step_info()

    @staticmethod
    def memsize(dim, arg):
        return OcpQpIpmWs.memsize(dim, arg.stat_max)

    def _reset_step_info(self):
        self.alpha_aff = np.nan
        self.mu_aff = np.nan
        self.sigma = np.nan
        self.alpha_prim = np.nan
        self.alpha_dual = np.nan
        self.mu = np.nan

    ## Iterate initialization
    def _init_iterate(self, qp, qp_sol):
        arg, dim = self.arg, self.dim
        for i in range(dim.N + 1):
            nv, ns = dim.nv(i), int(dim.ns[i])
            sl = dim.d_slices(i)
            d, mask = qp.d[i], qp.d_mask[i]
            ux, lam, t = qp_sol.ux[i], qp_sol.lam[i], qp_sol.t[i]
            if arg.warm_start == 0:
                ux[:] = 0.0
                # move bounded variables inside their box, or to its middle if narrow
                idx = qp.idxb[i]
                lo, up = d[sl["lb"]], d[sl["ub"]]
                has_lo, has_up = mask[sl["lb"]] > 0, mask[sl["ub"]] > 0
                vals = np.zeros(idx.size)
                vals = np.where(has_lo, np.maximum(vals, lo + THR0), vals)
                vals = np.where(has_up, np.minimum(vals, up - THR0), vals)
                narrow = has_lo & has_up & (up - lo < 2 * THR0)
                vals = np.where(narrow, 0.5 * (lo + up), vals)
                ux[idx] = vals
                ux[nv : nv + ns] = d[sl["ls"]] + THR0
                ux[nv + ns :] = d[sl["us"]] + THR0
            if arg.warm_start < 2:
                t[:] = np.maximum(inequality_values(qp, i, ux), THR0)
                lam[:] = arg.mu0 / t
            else:
                t[:] = np.maximum(t, WARM_START_FLOOR)
                lam[:] = np.maximum(lam, WARM_START_FLOOR)
            t[mask == 0] = 1.0
            lam[mask == 0] = 0.0
        if arg.warm_start == 0:
            for i in range(dim.N):
                qp_sol.pi[i][:] = 0.0

    def _setup_constraints(self, qp):
        """Dense transposed constraint matrix [E_b, D'; C'] of every stage."""
        for i in range(self.dim.N + 1):
            nb = int(self.dim.nb[i])
            Ct = self.ws.Ct[i]
            Ct[:, :] = 0.0
            Ct[qp.idxb[i], np.arange(nb)] = 1.0
            Ct[:, nb:] = qp.DCt[i]

    ## Newton step
    def _condense(self, qp, qp_sol, factorize):
        """Eliminate lam, t and the slacks; build H (if factorize) and g per stage."""
        dim, ws, res = self.dim, self.ws, self.ws.res
        for i in range(dim.N + 1):
            nv, ns = dim.nv(i), int(dim.ns[i])
            sl = dim.d_slices(i)
            mask, lam, t = qp.d_mask[i], qp_sol.lam[i], qp_sol.t[i]
            W = ws.W[i]
            W[:] = mask * lam / t
            rho = mask * (ws.rhs_m[i] / t + W * res.res_d[i])
            W_lo, W_up = W[sl["lo"]], W[sl["up"]]
            w = W_lo + W_up
            v = rho[sl["lo"]] - rho[sl["up"]]
            if ns > 0:
                k = qp.idxs[i]
                Z = qp.Z[i]
                Dl = Z[:ns] + W_lo[k] + W[sl["ls"]]
                Du = Z[ns:] + W_up[k] + W[sl["us"]]
                gl = res.res_g[i][nv : nv + ns] + rho[sl["lo"]][k] + rho[sl["ls"]]
                gu = res.res_g[i][nv + ns :] + rho[sl["up"]][k] + rho[sl["us"]]
                # w - w^2 / D written without cancellation
                w[k] = W_lo[k] * (Z[:ns] + W[sl["ls"]]) / Dl + W_up[k] * (Z[ns:] + W[sl["us"]]) / Du
                v[k] = (
                    rho[sl["lo"]][k] * (Z[:ns] + W[sl["ls"]]) / Dl
                    - W_lo[k] * (res.res_g[i][nv : nv + ns] + rho[sl["ls"]]) / Dl
                    - rho[sl["up"]][k] * (Z[ns:] + W[sl["us"]]) / Du
                    + W_up[k] * (res.res_g[i][nv + ns :] + rho[sl["us"]]) / Du
                )
                ws.Dls[i][:ns], ws.Dls[i][ns:] = Dl, Du
                ws.gls[i][:ns], ws.gls[i][ns:] = gl, gu
            Ct = ws.Ct[i]
            if factorize:
                H = ws.H[i]
                H[:, :] = qp.RSQrq[i][:nv] + (Ct * w) @ Ct.T
                H[np.diag_indices(nv)] += self.arg.reg_prim
            ws.g[i][:] = res.res_g[i][:nv] + Ct @ v

    def _expand(self, qp, qp_sol):
        """Recover the slack, t and lam components of the step from dux."""
        dim, ws, res = self.dim, self.ws, self.ws.res
        for i in range(dim.N + 1):
            nv, ns = dim.nv(i), int(dim.ns[i])
            sl = dim.d_slices(i)
            mask, lam, t, W = qp.d_mask[i], qp_sol.lam[i], qp_sol.t[i], ws.W[i]
            dux = ws.dux[i]
            dc = ws.Ct[i].T @ dux[:nv]
            ds_lo = np.zeros(dc.size)
            ds_up = np.zeros(dc.size)
            if ns > 0:
                k = qp.idxs[i]
                W_lo, W_up = W[sl["lo"]], W[sl["up"]]
                Dl, Du = ws.Dls[i][:ns], ws.Dls[i][ns:]
                gl, gu = ws.gls[i][:ns], ws.gls[i][ns:]
                dux[nv : nv + ns] = -(gl + W_lo[k] * dc[k]) / Dl
                dux[nv + ns :] = -(gu - W_up[k] * dc[k]) / Du
                ds_lo[k] = dux[nv : nv + ns]
                ds_up[k] = dux[nv + ns :]
            lin = np.concatenate([dc + ds_lo, -dc + ds_up, dux[nv : nv + ns], dux[nv + ns :]])
            ws.dt[i][:] = (lin + res.res_d[i]) * mask
            ws.dlam[i][:] = -(ws.rhs_m[i] + lam * ws.dt[i]) / t * mask

    def _direction(self, qp, qp_sol, factorize):
        ws, dim = self.ws, self.dim
        self._condense(qp, qp_sol, factorize)
        BAt = [qp.BAbt[i][: dim.nv(i)] for i in range(dim.N)]
        if factorize:
            ws.ric.factorize(ws.H, BAt, self.arg.ric_alg)
        ws.ric.solve(ws.g, ws.res.res_b, BAt, ws.dux, ws.dpi)
        self._expand(qp, qp_sol)
        raiseIfNan(np.concatenate([np.concatenate([dl, dt]) for dl, dt in zip(ws.dlam, ws.dt)]))

    def _max_step(self, qp, values, steps):
        alpha = 1.0
        for mask, v, dv in zip(qp.d_mask, values, steps):
            neg = (dv < 0) & (mask > 0)
            if np.any(neg):
                alpha = min(alpha, float(np.min(-v[neg] / dv[neg])))
        return alpha

    def _mu_after(self, qp, qp_sol, alpha_prim, alpha_dual):
        total, n = 0.0, 0.0
        for i in range(self.dim.N + 1):
            mask = qp.d_mask[i]
            lam = qp_sol.lam[i] + alpha_dual * self.ws.dlam[i]
            t = qp_sol.t[i] + alpha_prim * self.ws.dt[i]
            total += float(np.sum(mask * lam * t))
            n += float(np.sum(mask))
        return total / n if n > 0 else 0.0

    def _set_rhs_m(self, qp, shift, corrector=False):
        ws = self.ws
        for i in range(self.dim.N + 1):
            rhs = ws.res.res_m[i] - shift
            if corrector:
                rhs = rhs + ws.dt_aff[i] * ws.dlam_aff[i]
            ws.rhs_m[i][:] = rhs * qp.d_mask[i]

    def _step(self, qp, qp_sol):
        """One predictor-corrector iteration; returns the primal and dual step lengths."""
        arg, ws = self.arg, self.ws
        mu = ws.res.res_mu
        if arg.pred_corr:
            self._set_rhs_m(qp, 0.0)
            self._direction(qp, qp_sol, factorize=True)
            self.alpha_aff = min(
                self._max_step(qp, qp_sol.t, ws.dt), self._max_step(qp, qp_sol.lam, ws.dlam)
            )
            self.mu_aff = self._mu_after(qp, qp_sol, self.alpha_aff, self.alpha_aff)
            self.sigma = min(1.0, (self.mu_aff / mu) ** 3) if mu > 0 else 0.0
            for i in range(self.dim.N + 1):
                ws.dt_aff[i][:] = ws.dt[i]
                ws.dlam_aff[i][:] = ws.dlam[i]
            self._set_rhs_m(qp, self.sigma * mu, corrector=True)
            self._direction(qp, qp_sol, factorize=False)
        else:
            self.sigma = SIGMA_NO_PRED
            self._set_rhs_m(qp, self.sigma * mu)
            self._direction(qp, qp_sol, factorize=True)

        alpha_prim = min(1.0, TAU * self._max_step(qp, qp_sol.t, ws.dt))
        alpha_dual = min(1.0, TAU * self._max_step(qp, qp_sol.lam, ws.dlam))
        if not arg.split_step:
            alpha_prim = alpha_dual = min(alpha_prim, alpha_dual)
        return alpha_prim, alpha_dual

    def _update(self, qp_sol, alpha_prim, alpha_dual):
        ws = self.ws
        for i in range(self.dim.N + 1):
            qp_sol.ux[i] += alpha_prim * ws.dux[i]
            qp_sol.t[i] += alpha_prim * ws.dt[i]
            qp_sol.lam[i] += alpha_dual * ws.dlam[i]
        for i in range(self.dim.N):
            qp_sol.pi[i] += alpha_dual * ws.dpi[i]

    ## Convergence and statistics
    def _converged(self):
        arg, res = self.arg, self.ws.res
        if arg.abs_form:
            return (
                res.res_mu <= arg.tol_comp
                and res.res_max[0] <= arg.tol_stat
                and res.res_max[1] <= arg.tol_eq
            )
        return (
            res.res_max[0] <= arg.tol_stat
            and res.res_max[1] <= arg.tol_eq
            and res.res_max[2] <= arg.tol_ineq
            and res.res_max[3] <= arg.tol_comp
        )

    def _record(self, it):
        self.mu = self.ws.res.res_mu
        if it > self.ws.stat_max:
            return
        row = self.ws.stat[it]
        row[:5] = [self.alpha_aff, self.mu_aff, self.sigma, self.alpha_prim, self.alpha_dual]
        row[5] = self.mu
        row[6:10] = self.ws.res.res_max
        row[10] = self.obj
        row[11] = time.time() - self._t_start

    def _print_header(self):
        print(
            "{: >5} {: >11} {: >11} {: >11} {: >11} {: >11} {: >11} {: >11} {: >11}".format(
                *["iter", "alpha_prim", "alpha_dual", "mu", "res_stat", "res_eq", "res_ineq", "res_comp", "obj"]
            )
        )  # fmt: skip

    def _print_iter(self, it):
        alphas = ["-", "-"] if it == 0 else [pp(self.alpha_prim), pp(self.alpha_dual)]
        res_max = self.ws.res.res_max
        print(
            "{: >5} {: >11} {: >11} {: >11} {: >11} {: >11} {: >11} {: >11} {: >11}".format(
                *[it] + alphas + [pp(self.mu)] + [pp(r) for r in res_max] + [pp(self.obj)]
            )
        )

    def _end_of_iteration(self, qp, qp_sol, it):
        self.obj = compute_obj(qp, qp_sol)
        self._record(it)
        if self.with_callbacks:
            self._print_iter(it)
        for callback in self.callbacks:
            callback(self)

    ## Solve
    def solve(self, qp, qp_sol):
        """Run the ipm on qp, starting from (and writing into) qp_sol."""
        dim, arg, ws = self.dim, self.arg, self.ws
        if not (dim.same_shape(qp.dim) and dim.same_shape(qp_sol.dim)):
            raise SizeMismatchError("qp or solution does not match the solver dimensions")
        self._t_start = time.time()
        self._reset_step_info()
        ws.stat[:, :] = np.nan
        self.iter = 0
        self.status = IpmStatus.MAX_ITER

        self._setup_constraints(qp)
        self._init_iterate(qp, qp_sol)
        qp_sol.valid = True
        compute_res(qp, qp_sol, ws.res)
        if self.with_callbacks:
            self._print_header()
        self._end_of_iteration(qp, qp_sol, 0)

        try:
            for it in range(arg.iter_max):
                if self._converged():
                    self.status = IpmStatus.SUCCESS
                    break
                alpha_prim, alpha_dual = self._step(qp, qp_sol)
                if min(alpha_prim, alpha_dual) < arg.alpha_min:
                    self.status = IpmStatus.MIN_STEP
                    break
                self.alpha_prim, self.alpha_dual = alpha_prim, alpha_dual
                self._update(qp_sol, alpha_prim, alpha_dual)
                self.iter = it + 1
                if self.iter < arg.iter_max or arg.comp_res_exit:
                    compute_res(qp, qp_sol, ws.res)
                raiseIfNan(ws.res.res_max)
                self._end_of_iteration(qp, qp_sol, self.iter)
            else:
                if self._converged():
                    self.status = IpmStatus.SUCCESS
        except scl.LinAlgError:
            self.status = IpmStatus.NAN_SOL

        self.time_ext = time.time() - self._t_start
        if self.with_callbacks:
            print("status: %s, iterations: %d" % (self.status.name, self.iter))
        return self.status

    def get(self, field):
        res_max = self.ws.res.res_max
        if field == "status":
            return int(self.status)
        if field == "iter":
            return self.iter
        if field == "max_res_stat":
            return float(res_max[0])
        if field == "max_res_eq":
            return float(res_max[1])
        if field == "max_res_ineq":
            return float(res_max[2])
        if field == "max_res_comp":
            return float(res_max[3])
        if field == "obj":
            return self.obj
        if field == "stat":
            return self.ws.stat[: min(self.iter, self.ws.stat_max) + 1].copy()
        if field == "stat_m":
            return len(STAT_COLUMNS)
        if field == "time_ext":
            return self.time_ext
        if field == "mu":
            return float(self.ws.res.res_mu)
        raise InvalidInputError("unknown solver field %s" % field)

    def get_res(self):
        """Residuals of the returned iterate."""
        return self.ws.res

    def print_stat(self):
        print(" ".join("{: >11}".format(c) for c in ("iter",) + STAT_COLUMNS))
        for it, row in enumerate(self.get("stat")):
            print("{: >11} ".format(it) + " ".join("{: >11}".format(pp(v)) for v in row))
