"""Exception types."""

from __future__ import annotations


class Error(RuntimeError):
    """Base class for errors."""


class NotFactorizedError(Error):
    """Error raised when querying a factorization which has not been computed."""


class LinAlgError(Error):
    """Error raised when a matrix operation raises a linear algebra error."""


class NotPositiveDefiniteError(LinAlgError):
    """Error raised when a matrix is found not to be positive definite."""


class RankDeficientError(LinAlgError):
    """Error raised when solving with a factorization of less than full rank."""


class NearSingularError(LinAlgError):
    """Error raised when a factorized matrix is too ill-conditioned to solve with.

    The factorization itself remains valid and may still be queried.
    """

    def __init__(self, condition: float) -> None:
        self.condition = condition
        super().__init__(
            f"Matrix singular or near-singular with condition number {condition:.4e}."
        )
