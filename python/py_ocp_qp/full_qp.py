"""full_qp
License: BSD 3-Clause License
Copyright (C) 2024, New York University

Copyright note valid unless otherwise stated in individual files.
All rights reserved.

Stacks an OCP-QP into one sparse QP

    min_z 1/2 z' P z + q' z
    s.t.  A z = b
          l <= C z <= u

with z = [u0; x0; ls0; us0; u1; x1; ...], the layout of OcpQpSol.ux, so that
general purpose solvers (OSQP, ProxQP) can be used as a reference.
"""

import numpy as np
from scipy import sparse


def stage_offsets(dim):
    """Start of every stage inside the stacked variable, plus the total size."""
    sizes = [dim.nv(i) + 2 * int(dim.ns[i]) for i in range(dim.N + 1)]
    return np.concatenate([[0], np.cumsum(sizes)]).astype(int)


def ocp_qp_to_full_qp(qp, inf=np.inf):
    """Return (P, q, A, b, C, l, u); P, A and C are CSC matrices.

    Masked bounds become -inf / +inf, with `inf` as magnitude, and rows
    whose bounds are all masked are left out.
    """
    dim = qp.dim
    offsets = stage_offsets(dim)
    n = int(offsets[-1])

    P = sparse.lil_matrix((n, n))
    q = np.zeros(n)
    for i in range(dim.N + 1):
        nv, ns = dim.nv(i), int(dim.ns[i])
        o = offsets[i]
        if nv > 0:
            P[o : o + nv, o : o + nv] = qp.RSQrq[i][:nv]
        q[o : o + nv] = qp.rq[i]
        if ns > 0:
            P[o + nv : o + nv + 2 * ns, o + nv : o + nv + 2 * ns] = np.diag(qp.Z[i])
            q[o + nv : o + nv + 2 * ns] = qp.z[i]

    n_eq = int(np.sum(dim.nx[1:]))
    A = sparse.lil_matrix((n_eq, n))
    b = np.zeros(n_eq)
    row = 0
    for i in range(dim.N):
        nv, nx1, nu1 = dim.nv(i), int(dim.nx[i + 1]), int(dim.nu[i + 1])
        o, o1 = offsets[i], offsets[i + 1]
        if nx1 == 0:
            continue
        if nv > 0:
            A[row : row + nx1, o : o + nv] = qp.BAbt[i][:nv].T
        A[row : row + nx1, o1 + nu1 : o1 + nu1 + nx1] = -np.eye(nx1)
        b[row : row + nx1] = -qp.b[i]
        row += nx1

    C_rows, l, u = [], [], []

    def add_row(coeffs, lower, upper):
        C_rows.append(coeffs)
        l.append(lower)
        u.append(upper)

    for i in range(dim.N + 1):
        nv, ns, nb = dim.nv(i), int(dim.ns[i]), int(dim.nb[i])
        o = offsets[i]
        sl = dim.d_slices(i)
        d, mask = qp.d[i], qp.d_mask[i]
        lo, up = d[sl["lo"]], d[sl["up"]]
        has_lo, has_up = mask[sl["lo"]] > 0, mask[sl["up"]] > 0
        slack_of = {int(k): j for j, k in enumerate(qp.idxs[i])}
        for k in range(dim.nc(i)):
            coeffs = np.zeros(n)
            if k < nb:
                coeffs[o + qp.idxb[i][k]] = 1.0
            else:
                coeffs[o : o + nv] = qp.DCt[i][:, k - nb]
            if k not in slack_of:
                if has_lo[k] or has_up[k]:
                    add_row(coeffs, lo[k] if has_lo[k] else -inf, up[k] if has_up[k] else inf)
                continue
            j = slack_of[k]
            if has_lo[k]:
                c_lo = coeffs.copy()
                c_lo[o + nv + j] = 1.0
                add_row(c_lo, lo[k], inf)
            if has_up[k]:
                c_up = coeffs.copy()
                c_up[o + nv + ns + j] = -1.0
                add_row(c_up, -inf, up[k])
        for side, shift in (("ls", 0), ("us", ns)):
            for j in range(ns):
                if mask[sl[side]][j] > 0:
                    coeffs = np.zeros(n)
                    coeffs[o + nv + shift + j] = 1.0
                    add_row(coeffs, d[sl[side]][j], inf)

    if C_rows:
        C = sparse.csc_matrix(np.vstack(C_rows))
    else:
        C = sparse.csc_matrix((0, n))
    return (
        sparse.csc_matrix(P),
        q,
        sparse.csc_matrix(A),
        b,
        C,
        np.array(l, dtype=float),
        np.array(u, dtype=float),
    )


def ocp_qp_sol_to_vector(qp_sol):
    """Stack the primal part of a solution in the layout of ocp_qp_to_full_qp."""
    return np.concatenate(qp_sol.ux)


def vector_to_ocp_qp_sol(z, qp_sol):
    """Scatter a stacked primal vector back into the ux blocks of qp_sol."""
    offsets = stage_offsets(qp_sol.dim)
    for i, ux in enumerate(qp_sol.ux):
        ux[:] = z[offsets[i] : offsets[i + 1]]
    return qp_sol
