"""Errors raised by torch-estimator.

Every failure of the estimator is a local computation fault raised synchronously by the
call that triggers it. Two kinds are distinguished so that callers can choose to recover
(e.g. drop a bad observation) rather than abort:

- :class:`InvalidArgument`: a matrix or vector does not have the expected shape.
- :class:`NumericalError`: the innovation covariance cannot be inverted.

When one of them is raised, the estimator is left untouched.
"""


class EstimatorError(RuntimeError):
    """Base class of all the errors raised by torch-estimator."""


class InvalidArgument(EstimatorError, ValueError):
    """Shapes of the given matrices/vectors disagree with the estimator dimensions."""


class NumericalError(EstimatorError, ArithmeticError):
    """Singular (or non positive-definite) matrix met during a computation."""
