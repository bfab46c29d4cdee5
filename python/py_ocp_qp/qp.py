"""qp
License: BSD 3-Clause License
Copyright (C) 2024, New York University

Copyright note valid unless otherwise stated in individual files.
All rights reserved.

Stage-wise storage of the OCP-QP

    min  sum_i 1/2 [u; x]' [[R, S], [S', Q]] [u; x] + [r; q]' [u; x]
                 + 1/2 ls' Zl ls + zl' ls + 1/2 us' Zu us + zu' us
    s.t. x[i+1] = A x[i] + B u[i] + b
         lb <= [u; x][idxb] + ls_b,       [u; x][idxb] - us_b <= ub
         lg <= D u + C x + ls_g,           D u + C x - us_g <= ug
         ls >= lls,  us >= lus

Per stage the data is packed as BAbt = [B'; A'; b'], RSQrq = [[R, S], [S', Q]; [r', q']]
and DCt = [D'; C']. Bounds live in d = [lb, lg, ub, ug, lls, lus] with a 0/1 mask
of the same layout; a masked bound is ignored by the solver.
"""

import numpy as np

from .errors import InvalidInputError, PreconditionError
from .memory import memsize_of, place

# per-stage attributes that may be re-pointed when a reduced qp aliases its source
STAGE_FIELDS = ("BAbt", "RSQrq", "DCt", "Z", "z", "d", "d_mask", "idxb", "idxs", "idxe")

BOUND_FIELDS = {
    "lbx": "lbx",
    "ubx": "ubx",
    "lbu": "lbu",
    "ubu": "ubu",
    "lg": "lg",
    "ug": "ug",
    "lls": "ls",
    "lus": "us",
}
MASK_FIELDS = {name + "_mask": sl for name, sl in BOUND_FIELDS.items()}


def _dynamics_shapes(dim, i):
    nx, nu, nx1 = int(dim.nx[i]), int(dim.nu[i]), int(dim.nx[i + 1])
    return {"A": (nx1, nx), "B": (nx1, nu), "b": (nx1,)}


def _stage_shapes(dim, i):
    nx, nu, ng, ns = int(dim.nx[i]), int(dim.nu[i]), int(dim.ng[i]), int(dim.ns[i])
    nbx, nbu = int(dim.nbx[i]), int(dim.nbu[i])
    shapes = {
        "Q": (nx, nx),
        "S": (nu, nx),
        "R": (nu, nu),
        "q": (nx,),
        "r": (nu,),
        "idxbx": (nbx,),
        "lbx": (nbx,),
        "ubx": (nbx,),
        "idxbu": (nbu,),
        "lbu": (nbu,),
        "ubu": (nbu,),
        "C": (ng, nx),
        "D": (ng, nu),
        "lg": (ng,),
        "ug": (ng,),
        "Zl": (ns,),
        "Zu": (ns,),
        "zl": (ns,),
        "zu": (ns,),
        "idxs": (ns,),
        "lls": (ns,),
        "lus": (ns,),
        "idxbxe": (int(dim.nbxe[i]),),
    }
    for name, sl in MASK_FIELDS.items():
        shapes[name] = shapes[name[: -len("_mask")]]
    return shapes


INDEX_FIELDS = ("idxbx", "idxbu", "idxs", "idxbxe")
DYNAMICS_FIELDS = ("A", "B", "b")
SET_ALL_ORDER = (
    "A", "B", "b", "Q", "S", "R", "q", "r",
    "idxbx", "lbx", "ubx", "idxbu", "lbu", "ubu",
    "C", "D", "lg", "ug",
    "Zl", "Zu", "zl", "zu", "idxs", "lls", "lus",
)  # fmt: skip


class OcpQp:
    def __init__(self, dim, memory=None):
        if not dim.populated:
            raise PreconditionError("dimensions must be populated before building a qp")
        dim.freeze()
        self.dim = dim
        place(self, memory, dim)
        for i in range(dim.N + 1):
            self.d_mask[i][:] = 1.0
        self._own = {f: list(getattr(self, f)) for f in STAGE_FIELDS}
        self._bind_views()

    @staticmethod
    def memsize(dim):
        return memsize_of(OcpQp, dim)

    def _carve(self, arena, dim):
        N = dim.N
        stages = range(N + 1)
        self.BAbt = [arena.floats(dim.nv(i) + 1, int(dim.nx[i + 1])) for i in range(N)]
        self.RSQrq = [arena.floats(dim.nv(i) + 1, dim.nv(i)) for i in stages]
        self.DCt = [arena.floats(dim.nv(i), int(dim.ng[i])) for i in stages]
        self.Z = [arena.floats(2 * int(dim.ns[i])) for i in stages]
        self.z = [arena.floats(2 * int(dim.ns[i])) for i in stages]
        self.d = [arena.floats(dim.nd(i)) for i in stages]
        self.d_mask = [arena.floats(dim.nd(i)) for i in stages]
        self.idxb = [arena.ints(int(dim.nb[i])) for i in stages]
        self.idxs = [arena.ints(int(dim.ns[i])) for i in stages]
        self.idxe = [arena.ints(int(dim.nbxe[i])) for i in stages]

    def _bind_views(self):
        """Refresh the row views b[i] and rq[i] after the packed blocks moved."""
        dim = self.dim
        self.b = [self.BAbt[i][dim.nv(i)] for i in range(dim.N)]
        self.rq = [self.RSQrq[i][dim.nv(i)] for i in range(dim.N + 1)]

    def _own_views(self):
        for f in STAGE_FIELDS:
            getattr(self, f)[:] = self._own[f]
        self._bind_views()

    def _alias_stage(self, src, i):
        for f in STAGE_FIELDS:
            if f == "BAbt" and i == self.dim.N:
                continue
            getattr(self, f)[i] = getattr(src, f)[i]

    def is_aliased(self):
        return any(
            a is not b for f in STAGE_FIELDS for a, b in zip(getattr(self, f), self._own[f])
        )

    ## Validation
    def _check_stage(self, field, stage):
        last = self.dim.N - 1 if field in DYNAMICS_FIELDS else self.dim.N
        if not isinstance(stage, (int, np.integer)) or not 0 <= stage <= last:
            raise InvalidInputError("stage %s out of range [0, %d] for %s" % (stage, last, field))

    def _shape(self, field, stage):
        if field in DYNAMICS_FIELDS:
            return _dynamics_shapes(self.dim, stage)[field]
        shapes = _stage_shapes(self.dim, stage)
        if field not in shapes:
            raise InvalidInputError("unknown qp field %s" % field)
        return shapes[field]

    def _convert(self, field, value, stage):
        """Validated copy of `value` for `field` at `stage`; nothing is written."""
        if field not in DYNAMICS_FIELDS and field not in _stage_shapes(self.dim, 0):
            raise InvalidInputError("unknown qp field %s" % field)
        self._check_stage(field, stage)
        shape = self._shape(field, stage)
        if field in INDEX_FIELDS:
            arr = np.asarray(value).reshape(-1) if np.size(value) > 0 else np.zeros(0)
            if arr.shape != shape:
                raise InvalidInputError(
                    "%s[%d] has %d entries, expected %d" % (field, stage, arr.size, shape[0])
                )
            if arr.size > 0 and not np.all(np.equal(np.mod(arr, 1), 0)):
                raise InvalidInputError("%s[%d] must hold integer indices" % (field, stage))
            arr = arr.astype(np.int64)
            self._check_index_set(field, arr, stage)
            return arr
        arr = np.array(value, dtype=np.float64)
        if field.endswith("_mask"):
            arr = arr.reshape(-1) if arr.size > 0 else np.zeros(0)
            if arr.shape != shape:
                raise InvalidInputError(
                    "%s[%d] has %d entries, expected %d" % (field, stage, arr.size, shape[0])
                )
            return (arr != 0).astype(np.float64)
        if len(shape) == 1:
            if arr.size != shape[0] or (arr.ndim > 1 and max(arr.shape) != arr.size):
                raise InvalidInputError(
                    "%s[%d] has shape %s, expected %s" % (field, stage, arr.shape, shape)
                )
            arr = arr.reshape(shape)
        elif arr.shape != shape and not (arr.size == 0 and 0 in shape):
            raise InvalidInputError(
                "%s[%d] has shape %s, expected %s" % (field, stage, arr.shape, shape)
            )
        else:
            arr = arr.reshape(shape)
        if np.any(np.isnan(arr)):
            raise InvalidInputError("%s[%d] contains NaN" % (field, stage))
        if field not in BOUND_FIELDS and np.any(np.isinf(arr)):
            raise InvalidInputError("%s[%d] contains inf" % (field, stage))
        return arr

    def _check_index_set(self, field, idx, stage):
        dim = self.dim
        bound = {
            "idxbx": int(dim.nx[stage]),
            "idxbu": int(dim.nu[stage]),
            "idxs": dim.nc(stage),
            "idxbxe": int(dim.nbx[stage]),
        }[field]
        if np.any(idx < 0) or np.any(idx >= bound):
            raise InvalidInputError(
                "%s[%d] has an index outside [0, %d)" % (field, stage, bound)
            )
        if np.unique(idx).size != idx.size:
            raise InvalidInputError("%s[%d] has duplicate indices" % (field, stage))
        if field == "idxs":
            nbu, nb = int(dim.nbu[stage]), int(dim.nb[stage])
            counts = (
                ("nsbu", int(np.sum(idx < nbu)), int(dim.nsbu[stage])),
                ("nsbx", int(np.sum((idx >= nbu) & (idx < nb))), int(dim.nsbx[stage])),
                ("nsg", int(np.sum(idx >= nb)), int(dim.nsg[stage])),
            )
            for name, got, expected in counts:
                if got != expected:
                    raise InvalidInputError(
                        "idxs[%d] softens %d rows of %s kind, dimensions declare %d"
                        % (stage, got, name[2:], expected)
                    )

    ## Writing
    def _write(self, field, arr, stage):
        dim = self.dim
        nu, nv, ns, nbu = int(dim.nu[stage]), dim.nv(stage), int(dim.ns[stage]), int(dim.nbu[stage])
        if field == "A":
            self.BAbt[stage][nu:nv, :] = arr.T
        elif field == "B":
            self.BAbt[stage][:nu, :] = arr.T
        elif field == "b":
            self.BAbt[stage][nv, :] = arr
        elif field == "Q":
            self.RSQrq[stage][nu:nv, nu:nv] = arr
        elif field == "S":
            self.RSQrq[stage][:nu, nu:nv] = arr
            self.RSQrq[stage][nu:nv, :nu] = arr.T
        elif field == "R":
            self.RSQrq[stage][:nu, :nu] = arr
        elif field == "q":
            self.RSQrq[stage][nv, nu:nv] = arr
        elif field == "r":
            self.RSQrq[stage][nv, :nu] = arr
        elif field == "C":
            self.DCt[stage][nu:nv, :] = arr.T
        elif field == "D":
            self.DCt[stage][:nu, :] = arr.T
        elif field == "idxbu":
            self.idxb[stage][:nbu] = arr
        elif field == "idxbx":
            self.idxb[stage][nbu:] = nu + arr
        elif field == "idxs":
            self.idxs[stage][:] = arr
        elif field == "idxbxe":
            self.idxe[stage][:] = nbu + arr
        elif field in ("Zl", "Zu"):
            self.Z[stage][(0 if field == "Zl" else ns) :][:ns] = arr
        elif field in ("zl", "zu"):
            self.z[stage][(0 if field == "zl" else ns) :][:ns] = arr
        elif field in BOUND_FIELDS:
            sl = dim.d_slices(stage)[BOUND_FIELDS[field]]
            inf = np.isinf(arr)
            self.d[stage][sl] = np.where(inf, 0.0, arr)
            self.d_mask[stage][sl] = np.where(inf, 0.0, 1.0)
        elif field in MASK_FIELDS:
            self.d_mask[stage][dim.d_slices(stage)[MASK_FIELDS[field]]] = arr

    def set(self, field, value, stage):
        """Overwrite one field of one stage; the packed storage is updated in place.

        Infinite bounds are stored as 0 with their mask cleared.
        """
        arr = self._convert(field, value, stage)
        self._write(field, arr, stage)

    def set_idxbxe(self, stage, idxbxe):
        self.set("idxbxe", idxbxe, stage)

    def set_all(self, A, B, b, Q, S, R, q, r, idxbx, lbx, ubx, idxbu, lbu, ubu, C, D,
                lg, ug, Zl, Zu, zl, zu, idxs, lls, lus):  # fmt: skip
        """Populate every stage at once; each argument is a per-stage list.

        A, B and b have N entries, everything else N+1. All entries are validated
        before the first write, so a rejected call leaves the qp untouched.
        """
        values = dict(zip(SET_ALL_ORDER, (A, B, b, Q, S, R, q, r, idxbx, lbx, ubx, idxbu,
                                          lbu, ubu, C, D, lg, ug, Zl, Zu, zl, zu, idxs, lls, lus)))  # fmt: skip
        N = self.dim.N
        pending = []
        for field in SET_ALL_ORDER:
            per_stage = values[field]
            expected = N if field in DYNAMICS_FIELDS else N + 1
            if per_stage is None:
                for i in range(expected):
                    if int(np.prod(self._shape(field, i))) > 0:
                        raise InvalidInputError("%s is missing for stage %d" % (field, i))
                continue
            if len(per_stage) != expected:
                raise InvalidInputError(
                    "%s has %d stages, expected %d" % (field, len(per_stage), expected)
                )
            for i, value in enumerate(per_stage):
                pending.append((field, self._convert(field, value, i), i))
        for i in range(N + 1):
            self.d_mask[i][:] = 1.0
        for field, arr, i in pending:
            self._write(field, arr, i)

    def get(self, field, stage):
        self._check_stage(field, stage)
        shape = self._shape(field, stage)
        dim = self.dim
        nu, nv, ns, nbu = int(dim.nu[stage]), dim.nv(stage), int(dim.ns[stage]), int(dim.nbu[stage])
        if field == "A":
            out = self.BAbt[stage][nu:nv, :].T
        elif field == "B":
            out = self.BAbt[stage][:nu, :].T
        elif field == "b":
            out = self.BAbt[stage][nv, :]
        elif field == "Q":
            out = self.RSQrq[stage][nu:nv, nu:nv]
        elif field == "S":
            out = self.RSQrq[stage][:nu, nu:nv]
        elif field == "R":
            out = self.RSQrq[stage][:nu, :nu]
        elif field == "q":
            out = self.RSQrq[stage][nv, nu:nv]
        elif field == "r":
            out = self.RSQrq[stage][nv, :nu]
        elif field == "C":
            out = self.DCt[stage][nu:nv, :].T
        elif field == "D":
            out = self.DCt[stage][:nu, :].T
        elif field == "idxbu":
            out = self.idxb[stage][:nbu]
        elif field == "idxbx":
            out = self.idxb[stage][nbu:] - nu
        elif field == "idxs":
            out = self.idxs[stage]
        elif field == "idxbxe":
            out = self.idxe[stage] - nbu
        elif field in ("Zl", "Zu"):
            out = self.Z[stage][(0 if field == "Zl" else ns) :][:ns]
        elif field in ("zl", "zu"):
            out = self.z[stage][(0 if field == "zl" else ns) :][:ns]
        elif field in BOUND_FIELDS:
            out = self.d[stage][dim.d_slices(stage)[BOUND_FIELDS[field]]]
        else:
            out = self.d_mask[stage][dim.d_slices(stage)[MASK_FIELDS[field]]]
        return np.array(out).reshape(shape)

    def print_qp(self):
        for i in range(self.dim.N + 1):
            print((" stage %d " % i).center(40, "-"))
            fields = ("A", "B", "b") if i < self.dim.N else ()
            for field in fields + ("Q", "S", "R", "q", "r", "idxbu", "lbu", "ubu", "idxbx",
                                   "lbx", "ubx", "C", "D", "lg", "ug", "idxs", "Zl", "Zu",
                                   "zl", "zu", "lls", "lus"):  # fmt: skip
                value = self.get(field, i)
                if value.size > 0:
                    print(field, "=\n", value)
