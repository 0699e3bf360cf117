"""
Exceptions and warnings for pdlnm

Invalid configurations raise immediately; numerical problems in model fitting
are reported as warnings so that diagnostics can be inspected.
"""


class InvalidArgument(ValueError):
    """Shape mismatch or out-of-range lag, knot, threshold or partition."""


class NumericalNonConvergence(RuntimeError):
    """Penalized fitting or smoothing parameter selection did not converge."""


class ConvergenceWarning(UserWarning):
    """Emitted when a fit finishes without converging."""


class SingularMatrixWarning(UserWarning):
    """Emitted for rank-deficient design, penalty or penalized systems."""
