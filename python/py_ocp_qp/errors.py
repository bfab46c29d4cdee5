"""errors
License: BSD 3-Clause License
Copyright (C) 2024, New York University

Copyright note valid unless otherwise stated in individual files.
All rights reserved.
"""


class OcpQpError(Exception):
    pass


class InvalidDimensionError(OcpQpError, ValueError):
    """Malformed or inconsistent stage counts."""


class InvalidInputError(OcpQpError, ValueError):
    """Array length, index set or option value rejected while populating an object."""


class SizeMismatchError(OcpQpError, ValueError):
    """Two objects were not built from matching dimensions."""


class PreconditionError(OcpQpError, RuntimeError):
    """The object is not in a state that allows the requested operation."""
