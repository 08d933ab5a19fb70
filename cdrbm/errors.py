"""Exceptions raised by cdrbm.

Structural problems (wrong shapes, invalid hyperparameters) are always detected before any parameter is touched.
Numerical problems (saturated sigmoids, log(0)) are *not* detected; non-finite values simply propagate.
"""


class DimensionMismatchError(ValueError):
    """An input batch or parameter tensor does not match the declared visible/hidden sizes."""


class InvalidParameterError(ValueError):
    """A hyperparameter or option is outside its valid range, e.g. a non-positive learning rate."""


class MissingInputError(RuntimeError):
    """A quantity needs the stored input batch, but none was ever supplied."""


class DTypeMismatchError(TypeError):
    """A tensor is not float64. Parameters and inputs are kept in double precision throughout."""
