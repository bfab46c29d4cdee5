"""riccati
License: BSD 3-Clause License
Copyright (C) 2024, New York University

Copyright note valid unless otherwise stated in individual files.
All rights reserved.

Backward/forward Riccati recursion for the condensed Newton system

    min  sum_i 1/2 dux' H[i] dux + g[i]' dux
    s.t. dx[i+1] = BAt[i]' dux[i] + bb[i]

with multipliers dpi[i] = -(P[i+1] dx[i+1] + p[i+1]).
"""

import eigenpy
import numpy as np
import scipy.linalg as scl

from .utils import raiseIfNan


class RiccatiRecursion:
    """Factorization storage carved from the solver workspace.

    ric_alg = 0 uses the classical recursion with an LLT of the input block,
    ric_alg = 1 the square-root recursion carrying a Cholesky factor L of P.
    """

    def __init__(self, dim, arena):
        self.dim = dim
        stages = range(dim.N + 1)
        self.P = [arena.floats(int(dim.nx[i]), int(dim.nx[i])) for i in stages]
        self.p = [arena.floats(int(dim.nx[i])) for i in stages]
        self.L = [arena.floats(int(dim.nx[i]), int(dim.nx[i])) for i in stages]
        # Luu and Lxu (square-root) or K (classical), stacked as nv x nu
        self.Lu = [arena.floats(dim.nv(i), int(dim.nu[i])) for i in stages]
        self.k = [arena.floats(int(dim.nu[i])) for i in stages]
        self.llt = [None] * (dim.N + 1)
        self.P0_llt = None
        self.ric_alg = 0

    def factorize(self, H, BAt, ric_alg=0):
        self.ric_alg = ric_alg
        if ric_alg == 0:
            self._factorize_classical(H, BAt)
        else:
            self._factorize_square_root(H, BAt)

    def _factorize_classical(self, H, BAt):
        dim = self.dim
        N = dim.N
        nu = int(dim.nu[N])
        self.P[N][:, :] = H[N][nu:, nu:]
        for i in range(N - 1, -1, -1):
            nu, nx = int(dim.nu[i]), int(dim.nx[i])
            M = H[i] + BAt[i] @ self.P[i + 1] @ BAt[i].T
            if nu > 0:
                Q_llt = eigenpy.LLT(np.ascontiguousarray(M[:nu, :nu]))
                self.llt[i] = Q_llt
                if nx > 0:
                    self.Lu[i][nu:, :] = Q_llt.solve(np.ascontiguousarray(M[:nu, nu:])).T
                self.P[i][:, :] = M[nu:, nu:] - M[nu:, :nu] @ self.Lu[i][nu:, :].T
            else:
                self.P[i][:, :] = M[nu:, nu:]
            self.P[i][:, :] = 0.5 * (self.P[i] + self.P[i].T)
            raiseIfNan(self.P[i])
        if dim.nx[0] > 0:
            self.P0_llt = eigenpy.LLT(np.ascontiguousarray(self.P[0]))

    def _factorize_square_root(self, H, BAt):
        dim = self.dim
        N = dim.N
        nu = int(dim.nu[N])
        if dim.nx[N] > 0:
            self.L[N][:, :] = scl.cholesky(H[N][nu:, nu:], lower=True)
        for i in range(N - 1, -1, -1):
            nu, nv = int(dim.nu[i]), dim.nv(i)
            if nv == 0:
                continue
            BAtL = BAt[i] @ self.L[i + 1]
            M = H[i] + BAtL @ BAtL.T
            Lm = scl.cholesky(M, lower=True)
            self.Lu[i][:, :] = Lm[:, :nu]
            self.L[i][:, :] = Lm[nu:, nu:]
            raiseIfNan(Lm)

    def _P(self, i, x):
        if self.ric_alg == 0:
            return self.P[i] @ x
        return self.L[i] @ (self.L[i].T @ x)

    def solve(self, g, bb, BAt, dux, dpi):
        """Vector pass for the right-hand side (g, bb); writes the step into dux, dpi."""
        dim = self.dim
        N = dim.N
        self.p[N][:] = g[N][int(dim.nu[N]) :]
        for i in range(N - 1, -1, -1):
            nu = int(dim.nu[i])
            m = g[i] + BAt[i] @ (self._P(i + 1, bb[i]) + self.p[i + 1])
            if nu > 0:
                if self.ric_alg == 0:
                    self.k[i][:] = self.llt[i].solve(m[:nu])
                    self.p[i][:] = m[nu:] - self.Lu[i][nu:, :] @ m[:nu]
                else:
                    self.k[i][:] = scl.solve_triangular(self.Lu[i][:nu], m[:nu], lower=True)
                    self.p[i][:] = m[nu:] - self.Lu[i][nu:, :] @ self.k[i]
            else:
                self.p[i][:] = m[nu:]

        nx0 = int(dim.nx[0])
        x = np.zeros(nx0)
        if nx0 > 0:
            if self.ric_alg == 0:
                x = -self.P0_llt.solve(self.p[0])
            else:
                x = -scl.cho_solve((self.L[0], True), self.p[0])
        for i in range(N + 1):
            nu, nv = int(dim.nu[i]), dim.nv(i)
            if nu > 0:
                if self.ric_alg == 0:
                    u = -(self.Lu[i][nu:, :].T @ x) - self.k[i]
                else:
                    rhs = self.Lu[i][nu:, :].T @ x + self.k[i]
                    u = -scl.solve_triangular(self.Lu[i][:nu], rhs, lower=True, trans="T")
            else:
                u = np.zeros(0)
            dux[i][:nu] = u
            dux[i][nu:nv] = x
            if i < N:
                x = BAt[i].T @ dux[i][:nv] + bb[i]
                dpi[i][:] = -(self._P(i + 1, x) + self.p[i + 1])
        raiseIfNan(np.concatenate([v[: dim.nv(i)] for i, v in enumerate(dux)]))
