"""sol
License: BSD 3-Clause License
Copyright (C) 2024, New York University

Copyright note valid unless otherwise stated in individual files.
All rights reserved.
"""

import numpy as np

from .errors import InvalidInputError, PreconditionError
from .memory import memsize_of, place

PRIMAL_FIELDS = ("u", "x", "sl", "su")
DUAL_FIELDS = ("lb", "lbu", "lbx", "ub", "ubu", "ubx", "lg", "ug", "ls", "us")
GET_ALL_FIELDS = ("u", "x", "ls", "us", "pi", "lam_lb", "lam_ub", "lam_lg", "lam_ug", "lam_ls", "lam_us")


class OcpQpSol:
    """Primal-dual iterate of an OCP-QP.

    Per stage ux = [u; x; ls; us], pi is the multiplier of the dynamics leaving
    the stage, lam and t follow the bound layout [lb, lg, ub, ug, ls, us].
    """

    def __init__(self, dim, memory=None):
        dim.freeze()
        self.dim = dim
        place(self, memory, dim)
        self.valid = False

    @staticmethod
    def memsize(dim):
        return memsize_of(OcpQpSol, dim)

    def _carve(self, arena, dim):
        stages = range(dim.N + 1)
        self.ux = [arena.floats(dim.nv(i) + 2 * int(dim.ns[i])) for i in stages]
        self.pi = [arena.floats(int(dim.nx[i + 1])) for i in range(dim.N)]
        self.lam = [arena.floats(dim.nd(i)) for i in stages]
        self.t = [arena.floats(dim.nd(i)) for i in stages]

    def _slice(self, field, stage):
        dim = self.dim
        nu, nv, ns = int(dim.nu[stage]), dim.nv(stage), int(dim.ns[stage])
        if field == "u":
            return self.ux[stage], slice(0, nu)
        if field == "x":
            return self.ux[stage], slice(nu, nv)
        if field in ("sl", "ls"):
            return self.ux[stage], slice(nv, nv + ns)
        if field in ("su", "us"):
            return self.ux[stage], slice(nv + ns, nv + 2 * ns)
        if field == "pi":
            if stage >= dim.N:
                raise InvalidInputError("pi is defined for stages 0..N-1")
            return self.pi[stage], slice(None)
        kind, _, name = field.partition("_")
        if kind in ("lam", "t") and name in DUAL_FIELDS:
            return getattr(self, kind)[stage], dim.d_slices(stage)[name]
        raise InvalidInputError("unknown solution field %s" % field)

    def _check_stage(self, stage):
        if not 0 <= stage <= self.dim.N:
            raise InvalidInputError("stage %d out of range [0, %d]" % (stage, self.dim.N))

    def get(self, field, stage):
        if not self.valid:
            raise PreconditionError("no solve or restore has written this solution yet")
        self._check_stage(stage)
        vec, sl = self._slice(field, stage)
        return vec[sl].copy()

    def set(self, field, value, stage):
        """Write part of the iterate, e.g. to warm start the solver."""
        self._check_stage(stage)
        vec, sl = self._slice(field, stage)
        value = np.asarray(value, dtype=np.float64).reshape(-1)
        if value.size != vec[sl].size:
            raise InvalidInputError(
                "%s[%d] has %d entries, expected %d" % (field, stage, value.size, vec[sl].size)
            )
        vec[sl] = value

    def get_all(self):
        """Copy every per-stage vector out, each sized to its stage."""
        if not self.valid:
            raise PreconditionError("no solve or restore has written this solution yet")
        out = {}
        for field in GET_ALL_FIELDS:
            stages = range(self.dim.N) if field == "pi" else range(self.dim.N + 1)
            out[field] = [self.get(field, i) for i in stages]
        return out

    def copy_from(self, other):
        for i in range(self.dim.N + 1):
            self.ux[i][:] = other.ux[i]
            self.lam[i][:] = other.lam[i]
            self.t[i][:] = other.t[i]
        for i in range(self.dim.N):
            self.pi[i][:] = other.pi[i]
        self.valid = other.valid

    def print_sol(self):
        sol = self.get_all()
        for field in GET_ALL_FIELDS:
            print(field)
            for i, v in enumerate(sol[field]):
                print("{: >4}".format(i), v)
