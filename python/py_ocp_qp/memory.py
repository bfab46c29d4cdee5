"""memory
License: BSD 3-Clause License
Copyright (C) 2024, New York University

Copyright note valid unless otherwise stated in individual files.
All rights reserved.

Every structural object (dimensions, qp, solution, workspaces) keeps its
numeric data in one contiguous block. The block is carved by the same routine
that sizes it, so the size only depends on the shape of the object.
"""

import numpy as np

from .errors import InvalidInputError, SizeMismatchError

ITEM_SIZE = 8


class Arena:
    """Sequential allocator over a flat byte buffer.

    Without a buffer the arena only counts bytes (sizing pass) and every
    request returns None.
    """

    def __init__(self, buffer=None):
        self.buffer = buffer
        self.offset = 0

    @classmethod
    def sizing(cls):
        return cls(None)

    @classmethod
    def allocate(cls, nbytes, memory=None):
        if memory is None:
            buffer = np.zeros(nbytes, dtype=np.uint8)
        else:
            if isinstance(memory, np.ndarray):
                if not memory.flags.c_contiguous:
                    raise InvalidInputError("external memory must be contiguous")
                buffer = memory.reshape(-1).view(np.uint8)
            else:
                buffer = np.frombuffer(memory, dtype=np.uint8)
            if not buffer.flags.writeable:
                raise InvalidInputError("external memory must be writeable")
            if buffer.size < nbytes:
                raise SizeMismatchError(
                    "external memory holds %d bytes, %d required" % (buffer.size, nbytes)
                )
            buffer = buffer[:nbytes]
            buffer[:] = 0
        return cls(buffer)

    @property
    def nbytes(self):
        return self.offset

    def _take(self, shape, dtype):
        n = int(np.prod(shape, dtype=np.int64)) if len(shape) > 0 else 1
        start = self.offset
        self.offset += ITEM_SIZE * n
        if self.buffer is None:
            return None
        return self.buffer[start : self.offset].view(dtype).reshape(shape)

    def floats(self, *shape):
        return self._take(shape, np.float64)

    def ints(self, *shape):
        return self._take(shape, np.int64)

    def raw(self, nbytes):
        # nested objects get their own sub-block, kept 8-byte aligned
        nbytes = ITEM_SIZE * ((nbytes + ITEM_SIZE - 1) // ITEM_SIZE)
        start = self.offset
        self.offset += nbytes
        if self.buffer is None:
            return None
        return self.buffer[start : self.offset]

    def check_full(self):
        if self.buffer is not None and self.offset != self.buffer.size:
            raise SizeMismatchError(
                "layout used %d bytes out of %d" % (self.offset, self.buffer.size)
            )


def memsize_of(cls, *shape):
    """Run the carving routine of `cls` in sizing mode and return the byte count."""
    arena = Arena.sizing()
    obj = cls.__new__(cls)
    obj._carve(arena, *shape)
    return arena.nbytes


def place(obj, memory, *shape):
    """Allocate (or adopt) the block of `obj` and carve its views into it."""
    nbytes = memsize_of(type(obj), *shape)
    arena = Arena.allocate(nbytes, memory)
    obj._carve(arena, *shape)
    arena.check_full()
    obj.memory = arena.buffer
    return obj
