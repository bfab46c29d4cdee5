"""dim
License: BSD 3-Clause License
Copyright (C) 2024, New York University

Copyright note valid unless otherwise stated in individual files.
All rights reserved.
"""

import numpy as np

from .errors import InvalidDimensionError, PreconditionError, SizeMismatchError
from .memory import memsize_of, place

# counts given by the user, in set_all order
BASE_FIELDS = ("nx", "nu", "nbx", "nbu", "ng", "nsbx", "nsbu", "nsg")
# counts derived from the base ones
DERIVED_FIELDS = ("nb", "ns")
ALL_FIELDS = BASE_FIELDS + DERIVED_FIELDS + ("nbxe",)


class OcpQpDim:
    """Per-stage sizes of an OCP-QP with stages 0..N."""

    def __init__(self, N, memory=None):
        N = int(N)
        if N < 0:
            raise InvalidDimensionError("horizon N must be non-negative, got %d" % N)
        self.N = N
        place(self, memory, N)
        self.populated = False
        self.frozen = False

    @staticmethod
    def memsize(N):
        if int(N) < 0:
            raise InvalidDimensionError("horizon N must be non-negative, got %d" % N)
        return memsize_of(OcpQpDim, int(N))

    def _carve(self, arena, N):
        for field in ALL_FIELDS:
            setattr(self, field, arena.ints(N + 1))

    def _check_stage(self, stage):
        if not 0 <= stage <= self.N:
            raise InvalidDimensionError(
                "stage %d out of range [0, %d]" % (stage, self.N)
            )

    def _check_mutable(self):
        if self.frozen:
            raise InvalidDimensionError(
                "dimensions are in use by a qp, solution or solver and cannot change"
            )

    def freeze(self):
        """Lock the sizes; called by every object laid out from them."""
        self.frozen = True

    def _check_counts(self, c):
        """Validate a dict of full-horizon count arrays before anything is written."""
        for field in BASE_FIELDS + ("nbxe",):
            if np.any(c[field] < 0):
                raise InvalidDimensionError("negative count in %s" % field)
        if c["nu"][self.N] != 0:
            raise InvalidDimensionError(
                "terminal stage must have nu = 0, got %d" % c["nu"][self.N]
            )
        pairs = (
            ("nbu", "nu"),
            ("nbx", "nx"),
            ("nsbu", "nbu"),
            ("nsbx", "nbx"),
            ("nsg", "ng"),
            ("nbxe", "nbx"),
        )
        for small, big in pairs:
            bad = np.nonzero(c[small] > c[big])[0]
            if bad.size > 0:
                i = bad[0]
                raise InvalidDimensionError(
                    "%s[%d] = %d exceeds %s[%d] = %d"
                    % (small, i, c[small][i], big, i, c[big][i])
                )

    def _as_counts(self, name, values):
        arr = np.asarray(values)
        if arr.ndim == 0:
            raise InvalidDimensionError("%s must be a per-stage sequence" % name)
        if arr.shape != (self.N + 1,):
            raise InvalidDimensionError(
                "%s has %d entries, expected N+1 = %d" % (name, arr.size, self.N + 1)
            )
        if arr.size > 0 and not np.all(np.equal(np.mod(arr, 1), 0)):
            raise InvalidDimensionError("%s must hold integer counts" % name)
        return arr.astype(np.int64)

    def set_all(self, nx, nu, nbx, nbu, ng, nsbx, nsbu, nsg):
        self._check_mutable()
        values = (nx, nu, nbx, nbu, ng, nsbx, nsbu, nsg)
        c = {f: self._as_counts(f, v) for f, v in zip(BASE_FIELDS, values)}
        c["nbxe"] = np.zeros(self.N + 1, dtype=np.int64)
        self._check_counts(c)
        for field in BASE_FIELDS + ("nbxe",):
            getattr(self, field)[:] = c[field]
        self._update_derived()
        self.populated = True

    def set(self, field, value, stage):
        self._check_mutable()
        if field in DERIVED_FIELDS:
            raise InvalidDimensionError("%s is derived and cannot be set" % field)
        if field not in BASE_FIELDS and field != "nbxe":
            raise InvalidDimensionError("unknown dimension field %s" % field)
        self._check_stage(stage)
        c = {f: getattr(self, f).copy() for f in BASE_FIELDS + ("nbxe",)}
        c[field][stage] = int(value)
        self._check_counts(c)
        getattr(self, field)[stage] = int(value)
        self._update_derived()
        self.populated = True

    def set_nbxe(self, stage, n):
        """Number of state box rows of `stage` that are equalities."""
        self.set("nbxe", n, stage)

    def get(self, field, stage=None):
        if field not in ALL_FIELDS:
            raise InvalidDimensionError("unknown dimension field %s" % field)
        if stage is None:
            return getattr(self, field).copy()
        self._check_stage(stage)
        return int(getattr(self, field)[stage])

    def _update_derived(self):
        self.nb[:] = self.nbu + self.nbx
        self.ns[:] = self.nsbx + self.nsbu + self.nsg

    def nv(self, stage):
        return int(self.nu[stage] + self.nx[stage])

    def nc(self, stage):
        return int(self.nb[stage] + self.ng[stage])

    def num_variables(self):
        return int(np.sum(self.nu) + np.sum(self.nx) + 2 * np.sum(self.ns))

    def same_shape(self, other):
        if self.N != other.N:
            return False
        return all(np.array_equal(getattr(self, f), getattr(other, f)) for f in ALL_FIELDS)

    def d_slices(self, stage):
        """Slices into the bound-sized vectors (d, d_mask, lam, t, res_d, res_m).

        Layout: [lb (nb), lg (ng), ub (nb), ug (ng), ls (ns), us (ns)].
        """
        nb, ng, ns, nbu = (
            int(self.nb[stage]),
            int(self.ng[stage]),
            int(self.ns[stage]),
            int(self.nbu[stage]),
        )
        nc = nb + ng
        return {
            "lo": slice(0, nc),
            "up": slice(nc, 2 * nc),
            "lb": slice(0, nb),
            "lbu": slice(0, nbu),
            "lbx": slice(nbu, nb),
            "lg": slice(nb, nc),
            "ub": slice(nc, nc + nb),
            "ubu": slice(nc, nc + nbu),
            "ubx": slice(nc + nbu, nc + nb),
            "ug": slice(nc + nb, 2 * nc),
            "ls": slice(2 * nc, 2 * nc + ns),
            "us": slice(2 * nc + ns, 2 * nc + 2 * ns),
        }

    def nd(self, stage):
        return 2 * self.nc(stage) + 2 * int(self.ns[stage])

    def reduce_eq_dof(self, dim_red):
        """Write into `dim_red` the sizes left once a pinned x[0] is eliminated."""
        if not self.populated:
            raise PreconditionError("dimensions are not populated")
        if dim_red.N != self.N:
            raise SizeMismatchError(
                "reduced dimensions have N = %d, expected %d" % (dim_red.N, self.N)
            )
        dim_red._check_mutable()
        nbxe0, nx0 = int(self.nbxe[0]), int(self.nx[0])
        if 0 < nbxe0 < nx0:
            raise PreconditionError(
                "only %d of the %d initial states are pinned, reduction needs all of them"
                % (nbxe0, nx0)
            )
        if nbxe0 > 0 and self.nsbx[0] > 0:
            raise PreconditionError(
                "pinned initial state has %d softened state bounds" % self.nsbx[0]
            )
        for field in ALL_FIELDS:
            getattr(dim_red, field)[:] = getattr(self, field)
        if nbxe0 > 0:
            for field in ("nx", "nbx", "nsbx", "nbxe"):
                getattr(dim_red, field)[0] = 0
            dim_red._update_derived()
        dim_red.populated = True
        return dim_red

    def print_dim(self):
        print("N = %d" % self.N)
        for field in ALL_FIELDS:
            print("{: >5}".format(field), " ".join("{: >3}".format(v) for v in getattr(self, field)))
