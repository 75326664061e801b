"""Rank-revealing Cholesky factorization with complete (diagonal) pivoting."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
import scipy.linalg as sla

from symfact.errors import (
    NotFactorizedError,
    NotPositiveDefiniteError,
    RankDeficientError,
)
from symfact.matrices import symmetric_array
from symfact.utils import check_condition, check_index, check_out, pivot_condition

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from symfact.types import MatrixLike


logger = logging.getLogger(__name__)


def _swap(array: NDArray, i: int, j: int, axis: int = 0) -> None:
    """Swap two rows (`axis=0`) or columns (`axis=1`) of an array in place."""
    if axis == 0:
        array[[i, j]] = array[[j, i]]
    else:
        array[:, [i, j]] = array[:, [j, i]]


def _factorize_pivoted(
    array: NDArray,
    upper: NDArray,
    pivots: NDArray,
    max_rank: int,
    tol: float,
) -> tuple[int, float | None]:
    """Compute pivoted Cholesky factorization writing factor and pivots in place.

    At each step the remaining diagonal entry of the Schur complement with largest
    value is selected as the pivot, with the corresponding rows and columns of
    `array` symmetrically permuted to bring it to the current position. The diagonal
    of the Schur complement is maintained by subtracting the squared entries of each
    newly computed row of the factor.

    Args:
        array: Symmetric 2D array to factorize. Overwritten by its permutation.
        upper: Zero 2D array to write upper triangular factor to.
        pivots: 1D integer array initialised to `arange(size)`, updated in place
            with the applied permutation.
        max_rank: Maximum number of pivots to take.
        tol: Pivots with value less than or equal to `tol` are treated as zero.

    Returns:
        Tuple of number of pivots taken and `None` if factorization succeeded,
        otherwise the value of a non-finite pivot or of a pivot indicating the matrix
        is indefinite.
    """
    size = array.shape[0]
    residual = array.diagonal().copy()
    for k in range(max_rank):
        j = k + int(np.argmax(residual[k:]))
        pivot = residual[j]
        if not np.isfinite(pivot) or pivot < -tol:
            return k, pivot
        if pivot <= tol:
            return k, None
        if j != k:
            _swap(array, k, j, axis=0)
            _swap(array, k, j, axis=1)
            _swap(upper[:k], k, j, axis=1)
            _swap(residual, k, j)
            _swap(pivots, k, j)
        upper[k, k] = diagonal = np.sqrt(pivot)
        if k < size - 1:
            upper[k, k + 1 :] = (
                array[k, k + 1 :] - upper[:k, k] @ upper[:k, k + 1 :]
            ) / diagonal
            residual[k + 1 :] -= upper[k, k + 1 :] ** 2
    return max_rank, None


class PivotedCholesky:
    """Rank-revealing Cholesky factorization of a positive semi-definite matrix.

    Computes an upper triangular factor `upper` and a permutation `pivots` such that

        matrix[pivots][:, pivots] ≈ upper.T @ upper

    with diagonal pivoting choosing the largest remaining diagonal entry at each
    step. Elimination stops when the largest remaining pivot falls below a
    tolerance, with the number of steps taken giving the numerical rank of the
    matrix; rows of the factor beyond the rank are zero.
    """

    def __init__(
        self,
        matrix: MatrixLike | None = None,
        max_rank: int = -1,
        tol: float | None = None,
    ) -> None:
        """
        Args:
            matrix: Optional symmetric positive semi-definite matrix to factorize on
                initialisation, either an object implementing the
                :py:class:`symfact.types.Symmetric` protocol or a 2D array of
                which only the upper triangle is used.
            max_rank: Maximum number of pivots to take when factorizing `matrix`.
            tol: Tolerance below which remaining pivots are treated as zero when
                factorizing `matrix`.

        Raises:
            NotPositiveDefiniteError: If `matrix` is specified and is found to be
                indefinite or contains non-finite values.
        """
        self.reset()
        if matrix is not None and not self.factorize(matrix, max_rank, tol):
            msg = (
                "Pivoted Cholesky factorization failed: matrix is not positive "
                "semi-definite."
            )
            raise NotPositiveDefiniteError(msg)

    def __str__(self) -> str:
        if self.is_empty:
            return "(empty)"
        return f"(size={self.symmetric_dim}, rank={self._rank})"

    def __repr__(self) -> str:
        return type(self).__name__ + str(self)

    @property
    def is_empty(self) -> bool:
        """Whether the factorization has not been computed."""
        return self._upper is None

    def reset(self) -> None:
        """Discard factorization, returning to the empty state."""
        self._upper = None
        self._pivots = None
        self._inverse_pivots = None
        self._rank = 0
        self._cond = np.inf

    def _check_factorized(self) -> None:
        if self._upper is None:
            msg = "Pivoted Cholesky factorization has not been computed."
            raise NotFactorizedError(msg)

    @property
    def symmetric_dim(self) -> int:
        """Number of rows / columns of factorized matrix."""
        self._check_factorized()
        return self._upper.shape[0]

    @property
    def shape(self) -> tuple[int, int]:
        """Shape of factorized matrix."""
        return (self.symmetric_dim, self.symmetric_dim)

    @property
    def rank(self) -> int:
        """Number of pivots taken, equal to the numerical rank if not limited."""
        self._check_factorized()
        return self._rank

    @property
    def cond(self) -> float:
        """Estimate of condition number from the ratio of leading `rank` pivots."""
        self._check_factorized()
        return self._cond

    @property
    def raw_u(self) -> NDArray:
        """Read-only view of upper triangular factor of permuted matrix."""
        self._check_factorized()
        view = self._upper.view()
        view.flags.writeable = False
        return view

    def factorize(
        self, matrix: MatrixLike, max_rank: int = -1, tol: float | None = None
    ) -> bool:
        """Compute pivoted Cholesky factorization of a positive semi-definite matrix.

        Args:
            matrix: Symmetric matrix to factorize, either an object implementing the
                :py:class:`symfact.types.Symmetric` protocol or a 2D array of which
                only the upper triangle is used.
            max_rank: Maximum number of pivots to take. Negative values or values
                greater than or equal to the matrix size place no limit.
            tol: Tolerance below which remaining pivots are treated as zero. If
                `None` or negative `size * eps * max(diagonal(matrix))` is used.

        Returns:
            Whether the factorization succeeded. Rank deficiency is not a failure;
            `False` is returned, with the instance left empty, only if the matrix
            is found to be indefinite or contains non-finite values.
        """
        array = symmetric_array(matrix)
        size = array.shape[0]
        if size == 0:
            msg = "Cannot factorize a matrix with zero dimension."
            raise ValueError(msg)
        if not np.all(np.isfinite(array)):
            logger.debug("Pivoted Cholesky factorization failed: non-finite entries.")
            self.reset()
            return False
        if max_rank < 0 or max_rank > size:
            max_rank = size
        if tol is None or tol < 0:
            tol = size * np.finfo(np.float64).eps * max(array.diagonal().max(), 0.0)
        upper = np.zeros((size, size))
        pivots = np.arange(size)
        rank, failed_pivot = _factorize_pivoted(array, upper, pivots, max_rank, tol)
        if failed_pivot is not None:
            logger.debug(
                "Pivoted Cholesky factorization failed: pivot %d has value %.3e.",
                rank,
                failed_pivot,
            )
            self.reset()
            return False
        if rank < size:
            logger.debug(
                "Pivoted Cholesky factorization stopped at rank %d of %d.", rank, size
            )
        self._upper = upper
        self._pivots = pivots
        self._inverse_pivots = np.argsort(pivots)
        self._rank = rank
        self._cond = pivot_condition(upper.diagonal()[:rank])
        return True

    def column_pivots(self, out: NDArray | None = None) -> NDArray:
        """Permutation applied to rows and columns of the factorized matrix.

        Args:
            out: Optional integer array to write pivots to, of shape `(size,)`.

        Returns:
            1D integer array `pivots` with `matrix[pivots][:, pivots]` the matrix
            factorized without further pivoting.
        """
        self._check_factorized()
        if out is None:
            return self._pivots.copy()
        out = check_out(out, self._pivots.shape)
        out[...] = self._pivots
        return out

    def upper(self, out: NDArray | None = None) -> NDArray:
        """Upper triangular factor of the permuted matrix.

        Args:
            out: Optional array to write factor to, of shape `(size, size)`.

        Returns:
            Upper triangular factor `upper` as a 2D array with rows beyond
            :py:attr:`rank` equal to zero.
        """
        self._check_factorized()
        out = check_out(out, self._upper.shape)
        out[...] = self._upper
        return out

    def at(self, i: int, j: int) -> float:
        """Element of (approximately) factorized matrix at row `i` and column `j`."""
        self._check_factorized()
        size = self._upper.shape[0]
        check_index(i, size)
        check_index(j, size)
        i, j = self._inverse_pivots[i], self._inverse_pivots[j]
        k = min(i, j) + 1
        return float(self._upper[:k, i] @ self._upper[:k, j])

    def to_sym(self, out: NDArray | None = None) -> NDArray:
        """Reconstruct (approximately) factorized matrix in original ordering.

        Args:
            out: Optional array to write matrix to, of shape `(size, size)`.

        Returns:
            Symmetric 2D array equal to `matrix` up to the truncation error of any
            early termination.
        """
        self._check_factorized()
        out = check_out(out, self._upper.shape)
        product = self._upper.T @ self._upper
        product = np.triu(product) + np.triu(product, 1).T
        inverse = self._inverse_pivots
        out[...] = product[inverse][:, inverse]
        return out

    def log_det(self) -> float:
        """Logarithm of determinant, `-inf` if factorization is rank deficient."""
        self._check_factorized()
        if self._rank < self._upper.shape[0]:
            return -np.inf
        return 2 * float(np.log(self._upper.diagonal()).sum())

    def det(self) -> float:
        """Determinant, zero if factorization is rank deficient."""
        self._check_factorized()
        if self._rank < self._upper.shape[0]:
            return 0.0
        return float(np.prod(self._upper.diagonal()) ** 2)

    def _solve(self, b: ArrayLike, ndim: int, out: NDArray | None) -> NDArray:
        self._check_factorized()
        size = self._upper.shape[0]
        b = np.asarray(b, dtype=np.float64)
        if b.ndim != ndim or b.shape[0] != size:
            msg = (
                f"Right-hand side of shape {b.shape} incompatible with factorized "
                f"matrix of shape {(size, size)}."
            )
            raise ValueError(msg)
        out = check_out(out, b.shape)
        if self._rank < size:
            msg = (
                f"Cannot solve with factorization of rank {self._rank} < {size}."
            )
            raise RankDeficientError(msg)
        check_condition(self._cond)
        intermediate = sla.solve_triangular(
            self._upper, b[self._pivots], trans="T", lower=False, check_finite=False
        )
        solution = np.empty_like(b)
        solution[self._pivots] = sla.solve_triangular(
            self._upper, intermediate, lower=False, check_finite=False
        )
        out[...] = solution
        return out

    def solve(self, b: ArrayLike, out: NDArray | None = None) -> NDArray:
        """Solve the linear system `matrix @ x = b` for a matrix right-hand side.

        Args:
            b: 2D array of shape `(size, num_rhs)`.
            out: Optional array to write solution to, of the same shape as `b`. May
                be `b` itself.

        Returns:
            Solution `x` as a 2D array.

        Raises:
            RankDeficientError: If the factorization has rank less than `size`.
            NearSingularError: If the condition number estimate of the factorized
                matrix exceeds :py:data:`symfact.utils.CONDITION_TOLERANCE`.
        """
        return self._solve(b, 2, out)

    def solve_vec(self, b: ArrayLike, out: NDArray | None = None) -> NDArray:
        """Solve the linear system `matrix @ x = b` for a vector right-hand side.

        Args:
            b: 1D array of shape `(size,)`.
            out: Optional array to write solution to, of shape `(size,)`. May be `b`
                itself.

        Returns:
            Solution `x` as a 1D array.

        Raises:
            RankDeficientError: If the factorization has rank less than `size`.
            NearSingularError: If the condition number estimate of the factorized
                matrix exceeds :py:data:`symfact.utils.CONDITION_TOLERANCE`.
        """
        return self._solve(b, 1, out)
