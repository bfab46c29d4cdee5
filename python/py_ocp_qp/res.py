"""res
License: BSD 3-Clause License
Copyright (C) 2024, New York University

Copyright note valid unless otherwise stated in individual files.
All rights reserved.
"""

import numpy as np

from .errors import InvalidInputError, SizeMismatchError
from .memory import memsize_of, place
from .utils import max_abs

RES_D_FIELDS = ("lb", "ub", "lg", "ug", "ls", "us")


class OcpQpRes:
    """KKT residuals of an iterate.

    res_g  stationarity, laid out as [u; x; ls; us]
    res_b  dynamics
    res_d  inequalities (constraint expression minus its slack t)
    res_m  complementarity lam * t
    """

    def __init__(self, dim, memory=None):
        dim.freeze()
        self.dim = dim
        place(self, memory, dim)
        self.res_mu = 0.0

    @staticmethod
    def memsize(dim):
        return memsize_of(OcpQpRes, dim)

    def _carve(self, arena, dim):
        stages = range(dim.N + 1)
        self.res_g = [arena.floats(dim.nv(i) + 2 * int(dim.ns[i])) for i in stages]
        self.res_b = [arena.floats(int(dim.nx[i + 1])) for i in range(dim.N)]
        self.res_d = [arena.floats(dim.nd(i)) for i in stages]
        self.res_m = [arena.floats(dim.nd(i)) for i in stages]
        self.res_max = arena.floats(4)

    def get(self, field, stage):
        dim = self.dim
        if not 0 <= stage <= dim.N:
            raise InvalidInputError("stage %d out of range [0, %d]" % (stage, dim.N))
        nu, nv, ns = int(dim.nu[stage]), dim.nv(stage), int(dim.ns[stage])
        if field == "res_r":
            return self.res_g[stage][:nu].copy()
        if field == "res_q":
            return self.res_g[stage][nu:nv].copy()
        if field == "res_ls":
            return self.res_g[stage][nv : nv + ns].copy()
        if field == "res_us":
            return self.res_g[stage][nv + ns :].copy()
        if field == "res_b":
            if stage >= dim.N:
                raise InvalidInputError("res_b is defined for stages 0..N-1")
            return self.res_b[stage].copy()
        kind, _, name = field.rpartition("_")
        if kind in ("res_d", "res_m") and name in RES_D_FIELDS:
            return getattr(self, kind)[stage][dim.d_slices(stage)[name]].copy()
        raise InvalidInputError("unknown residual field %s" % field)

    def get_all(self):
        out = {}
        fields = ["res_r", "res_q", "res_ls", "res_us", "res_b"]
        fields += ["res_d_" + f for f in RES_D_FIELDS] + ["res_m_" + f for f in RES_D_FIELDS]
        for field in fields:
            stages = range(self.dim.N) if field == "res_b" else range(self.dim.N + 1)
            out[field] = [self.get(field, i) for i in stages]
        return out

    def get_max(self):
        """(stat, eq, ineq, comp) maxima of the last computed residuals."""
        return tuple(float(v) for v in self.res_max)


def constraint_values(qp, stage, v):
    """Box rows then general rows of stage `stage` evaluated at v = [u; x]."""
    return np.concatenate([v[qp.idxb[stage]], qp.DCt[stage].T @ v])


def slack_rows(qp, stage, slack):
    """Scatter per-slack values onto the nb + ng constraint rows."""
    out = np.zeros(qp.dim.nc(stage))
    out[qp.idxs[stage]] = slack
    return out


def inequality_values(qp, stage, ux):
    """Constraint expressions in the bound layout, non-negative at feasible points."""
    dim = qp.dim
    nv, ns = dim.nv(stage), int(dim.ns[stage])
    sl = dim.d_slices(stage)
    v, ls, us = ux[:nv], ux[nv : nv + ns], ux[nv + ns :]
    c = constraint_values(qp, stage, v)
    d = qp.d[stage]
    return np.concatenate(
        [
            c + slack_rows(qp, stage, ls) - d[sl["lo"]],
            d[sl["up"]] - c + slack_rows(qp, stage, us),
            ls - d[sl["ls"]],
            us - d[sl["us"]],
        ]
    )


def compute_res(qp, qp_sol, res):
    """Evaluate the KKT residuals of `qp_sol` for `qp` into `res`."""
    dim = qp.dim
    if not (dim.same_shape(qp_sol.dim) and dim.same_shape(res.dim)):
        raise SizeMismatchError("qp, solution and residuals have different dimensions")
    n_active = 0.0
    sum_m = 0.0
    for i in range(dim.N + 1):
        nu, nv, ns, nb = int(dim.nu[i]), dim.nv(i), int(dim.ns[i]), int(dim.nb[i])
        sl = dim.d_slices(i)
        ux = qp_sol.ux[i]
        v, ls, us = ux[:nv], ux[nv : nv + ns], ux[nv + ns :]
        mask = qp.d_mask[i]
        lam = qp_sol.lam[i] * mask
        t = qp_sol.t[i]
        idxs = qp.idxs[i]

        lam_lo, lam_up = lam[sl["lo"]], lam[sl["up"]]
        diff = lam_lo - lam_up
        g = qp.RSQrq[i][:nv] @ v + qp.rq[i]
        g[qp.idxb[i]] -= diff[:nb]
        g -= qp.DCt[i] @ diff[nb:]
        if i < dim.N:
            g -= qp.BAbt[i][:nv] @ qp_sol.pi[i]
        if i > 0:
            g[nu:] += qp_sol.pi[i - 1]
        res.res_g[i][:nv] = g
        Z, z = qp.Z[i], qp.z[i]
        res.res_g[i][nv : nv + ns] = Z[:ns] * ls + z[:ns] - lam_lo[idxs] - lam[sl["ls"]]
        res.res_g[i][nv + ns :] = Z[ns:] * us + z[ns:] - lam_up[idxs] - lam[sl["us"]]

        if i < dim.N:
            nu1, nv1 = int(dim.nu[i + 1]), dim.nv(i + 1)
            res.res_b[i][:] = qp.BAbt[i][:nv].T @ v + qp.b[i] - qp_sol.ux[i + 1][nu1:nv1]

        res.res_d[i][:] = (inequality_values(qp, i, ux) - t) * mask
        res.res_m[i][:] = lam * t
        n_active += float(np.sum(mask))
        sum_m += float(np.sum(res.res_m[i]))

    res.res_max[0] = max_abs(res.res_g)
    res.res_max[1] = max_abs(res.res_b)
    res.res_max[2] = max_abs(res.res_d)
    res.res_max[3] = max_abs(res.res_m)
    res.res_mu = sum_m / n_active if n_active > 0 else 0.0
    return res


def compute_obj(qp, qp_sol):
    dim = qp.dim
    obj = 0.0
    for i in range(dim.N + 1):
        nv, ns = dim.nv(i), int(dim.ns[i])
        ux = qp_sol.ux[i]
        v, s = ux[:nv], ux[nv:]
        obj += 0.5 * v @ qp.RSQrq[i][:nv] @ v + qp.rq[i] @ v
        if ns > 0:
            obj += 0.5 * s @ (qp.Z[i] * s) + qp.z[i] @ s
    return float(obj)
