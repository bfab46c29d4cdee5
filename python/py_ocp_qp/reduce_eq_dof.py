"""reduce_eq_dof
License: BSD 3-Clause License
Copyright (C) 2024, New York University

Copyright note valid unless otherwise stated in individual files.
All rights reserved.

Elimination of a fully pinned initial state. With lbx[0] == ubx[0] == x0 on
every state of stage 0 the variable x[0] is fixed: it is substituted into the
stage 0 cost, dynamics and general constraints, the qp is solved over the
remaining variables and the full primal-dual solution is rebuilt afterwards.
"""

import numpy as np

from .dim import OcpQpDim
from .errors import InvalidInputError, PreconditionError, SizeMismatchError
from .memory import memsize_of, place
from .qp import STAGE_FIELDS

ARG_FIELDS = ("alias_unchanged", "comp_prim_sol", "comp_dual_sol_eq", "comp_dual_sol_ineq")


class OcpQpReduceEqDofArg:
    def __init__(self):
        self.set_default()

    def set_default(self):
        # alias_unchanged: reduced stages 1..N share storage with the source qp,
        # which must then stay untouched until restore_eq_dof has run
        self.alias_unchanged = 0
        self.comp_prim_sol = 1
        self.comp_dual_sol_eq = 1
        self.comp_dual_sol_ineq = 1

    def set(self, field, value):
        if field not in ARG_FIELDS:
            raise InvalidInputError("unknown reduce_eq_dof option %s" % field)
        setattr(self, field, int(bool(value)))

    def set_alias_unchanged(self, value):
        self.set("alias_unchanged", value)

    def set_comp_prim_sol(self, value):
        self.set("comp_prim_sol", value)

    def set_comp_dual_sol_eq(self, value):
        self.set("comp_dual_sol_eq", value)

    def set_comp_dual_sol_ineq(self, value):
        self.set("comp_dual_sol_ineq", value)


class OcpQpReduceEqDofWs:
    """Working storage of the reducer, sized once from the full dimensions."""

    def __init__(self, dim, memory=None):
        if not dim.populated:
            raise PreconditionError("dimensions must be populated")
        place(self, memory, dim)
        self.dim = dim
        dim.reduce_eq_dof(self.dim_red)
        dim.freeze()
        self.dim_red.freeze()
        self.pinned = bool(dim.nbxe[0] > 0)

    @staticmethod
    def memsize(dim):
        return memsize_of(OcpQpReduceEqDofWs, dim)

    def _carve(self, arena, dim):
        nx0, ng0 = int(dim.nx[0]), int(dim.ng[0])
        self.x0 = arena.floats(nx0)
        # stage 0 state component fixed by each pinned box row
        self.pinned_rows = arena.ints(nx0)
        # source row of every constraint row kept at stage 0
        self.row_map = arena.ints(int(dim.nbu[0]) + ng0)
        mem = arena.raw(OcpQpDim.memsize(dim.N))
        if mem is not None:
            self.dim_red = OcpQpDim(dim.N, memory=mem)


def _check_pair(qp, qp_red, ws):
    if not ws.dim.same_shape(qp.dim):
        raise SizeMismatchError("workspace was sized for different dimensions")
    if not qp_red.dim.same_shape(ws.dim_red):
        raise SizeMismatchError(
            "destination dimensions were not produced by reducing the source dimensions"
        )


def _find_x0(qp, ws):
    """Collect the pinned initial state from the equality rows of stage 0."""
    dim = qp.dim
    nu, nx = int(dim.nu[0]), int(dim.nx[0])
    sl = dim.d_slices(0)
    lo, up = qp.d[0][sl["lo"]], qp.d[0][sl["up"]]
    mlo, mup = qp.d_mask[0][sl["lo"]], qp.d_mask[0][sl["up"]]
    rows = qp.idxe[0]
    comps = qp.idxb[0][rows] - nu
    if np.any(comps < 0) or np.any(comps >= nx):
        raise PreconditionError(
            "an equality row of stage 0 bounds an input, set the state rows with set_idxbxe"
        )
    if np.unique(comps).size != nx:
        raise PreconditionError(
            "equality rows of stage 0 cover %d of the %d states, set them with set_idxbxe"
            % (np.unique(comps).size, nx)
        )
    if np.any(mlo[rows] == 0) or np.any(mup[rows] == 0):
        raise PreconditionError("an equality row of stage 0 has a masked bound")
    if np.any(lo[rows] != up[rows]):
        raise PreconditionError("an equality row of stage 0 has lower bound != upper bound")
    ws.x0[comps] = lo[rows]
    ws.pinned_rows[comps] = rows


def _copy_stage(qp, qp_red, i):
    for f in STAGE_FIELDS:
        if f == "BAbt" and i == qp.dim.N:
            continue
        getattr(qp_red, f)[i][...] = getattr(qp, f)[i]


def reduce_eq_dof(qp, qp_red, arg, ws):
    """Fill qp_red with qp once the pinned x[0] has been substituted."""
    _check_pair(qp, qp_red, ws)
    dim = qp.dim
    N = dim.N
    first = 1 if ws.pinned else 0
    if ws.pinned:
        _find_x0(qp, ws)
    qp_red._own_views()
    for i in range(first, N + 1):
        if arg.alias_unchanged:
            qp_red._alias_stage(qp, i)
        else:
            _copy_stage(qp, qp_red, i)
    qp_red._bind_views()
    if not ws.pinned:
        return qp_red

    x0 = ws.x0
    nu, nv = int(dim.nu[0]), dim.nv(0)
    nbu, nb, ng = int(dim.nbu[0]), int(dim.nb[0]), int(dim.ng[0])

    if N > 0:
        BAbt, BAbt_red = qp.BAbt[0], qp_red.BAbt[0]
        BAbt_red[:nu] = BAbt[:nu]
        BAbt_red[nu] = BAbt[nv] + BAbt[nu:nv].T @ x0

    RSQrq, RSQrq_red = qp.RSQrq[0], qp_red.RSQrq[0]
    RSQrq_red[:nu, :nu] = RSQrq[:nu, :nu]
    RSQrq_red[nu, :nu] = RSQrq[nv, :nu] + RSQrq[:nu, nu:nv] @ x0

    DCt = qp.DCt[0]
    qp_red.DCt[0][:] = DCt[:nu]
    Cx0 = DCt[nu:nv].T @ x0

    # state box rows disappear, input box rows and general rows are kept
    ws.row_map[:nbu] = np.arange(nbu)
    ws.row_map[nbu:] = np.arange(nb, nb + ng)
    rows = ws.row_map
    sl, sl_red = dim.d_slices(0), qp_red.dim.d_slices(0)
    for d_src, d_dst in ((qp.d[0], qp_red.d[0]), (qp.d_mask[0], qp_red.d_mask[0])):
        for side in ("lo", "up"):
            d_dst[sl_red[side]] = d_src[sl[side]][rows]
        for side in ("ls", "us"):
            d_dst[sl_red[side]] = d_src[sl[side]]
    qp_red.d[0][sl_red["lg"]] -= Cx0
    qp_red.d[0][sl_red["ug"]] -= Cx0
    qp_red.idxb[0][:] = qp.idxb[0][:nbu]

    idxs = qp.idxs[0]
    qp_red.idxs[0][:] = np.where(idxs >= nb, idxs - (nb - nbu), idxs)
    qp_red.Z[0][:] = qp.Z[0]
    qp_red.z[0][:] = qp.z[0]
    return qp_red


def restore_eq_dof(qp, qp_sol_red, qp_sol, arg, ws):
    """Rebuild the solution of qp from the solution of its reduced qp."""
    dim = qp.dim
    if not ws.dim.same_shape(dim):
        raise SizeMismatchError("workspace was sized for different dimensions")
    if not (qp_sol.dim.same_shape(dim) and qp_sol_red.dim.same_shape(ws.dim_red)):
        raise SizeMismatchError("solutions do not match the full and reduced dimensions")
    if not qp_sol_red.valid:
        raise PreconditionError("the reduced solution has not been computed")
    N = dim.N

    for i in range(1 if ws.pinned else 0, N + 1):
        if arg.comp_prim_sol:
            qp_sol.ux[i][:] = qp_sol_red.ux[i]
        else:
            qp_sol.ux[i][:] = 0.0
        if arg.comp_dual_sol_ineq:
            qp_sol.lam[i][:] = qp_sol_red.lam[i]
            qp_sol.t[i][:] = qp_sol_red.t[i]
        else:
            qp_sol.lam[i][:] = 0.0
            qp_sol.t[i][:] = 0.0
    for i in range(N):
        if arg.comp_dual_sol_eq:
            qp_sol.pi[i][:] = qp_sol_red.pi[i]
        else:
            qp_sol.pi[i][:] = 0.0

    if ws.pinned:
        _restore_stage0(qp, qp_sol_red, qp_sol, arg, ws)
    qp_sol.valid = True
    return qp_sol


def _restore_stage0(qp, qp_sol_red, qp_sol, arg, ws):
    dim = qp.dim
    x0 = ws.x0
    nu, nv = int(dim.nu[0]), dim.nv(0)
    sl, sl_red = dim.d_slices(0), ws.dim_red.d_slices(0)
    ux, ux_red = qp_sol.ux[0], qp_sol_red.ux[0]

    if arg.comp_prim_sol:
        ux[:nu] = ux_red[:nu]
        ux[nu:nv] = x0
        ux[nv:] = ux_red[nu:]
    else:
        ux[:] = 0.0

    lam, t = qp_sol.lam[0], qp_sol.t[0]
    lam_red, t_red = qp_sol_red.lam[0], qp_sol_red.t[0]
    lam[:] = 0.0
    t[:] = 0.0
    rows = ws.row_map
    if arg.comp_dual_sol_ineq:
        for side in ("lo", "up"):
            lam[sl[side]][rows] = lam_red[sl_red[side]]
            t[sl[side]][rows] = t_red[sl_red[side]]
        for side in ("ls", "us"):
            lam[sl[side]] = lam_red[sl_red[side]]
            t[sl[side]] = t_red[sl_red[side]]

    if arg.comp_dual_sol_eq:
        # stationarity of x[0] gives the multiplier of its pinned rows
        RSQrq, DCt = qp.RSQrq[0], qp.DCt[0]
        lam_g = lam_red[sl_red["lg"]] - lam_red[sl_red["ug"]]
        m = RSQrq[nu:nv, :nu] @ ux_red[:nu] + RSQrq[nu:nv, nu:nv] @ x0 + RSQrq[nv, nu:nv]
        if dim.N > 0:
            m -= qp.BAbt[0][nu:nv] @ qp_sol_red.pi[0]
        m -= DCt[nu:nv] @ lam_g
        pinned = ws.pinned_rows
        lam[sl["lb"]][pinned] = np.maximum(m, 0.0)
        lam[sl["ub"]][pinned] = np.maximum(-m, 0.0)
