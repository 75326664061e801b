"""Cholesky factorization of dense symmetric positive definite matrices.

The factorization `matrix = upper.T @ upper` is computed once and can then be used to
solve linear systems, compute the inverse and (log-)determinant of the matrix, and be
updated in place to reflect rank-one changes, extension by a row / column and scaling
of the factorized matrix without recomputing the factorization from scratch.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
import scipy.linalg as sla

from symfact.errors import NotFactorizedError, NotPositiveDefiniteError
from symfact.matrices import TriangularMatrix, symmetric_array
from symfact.utils import check_condition, check_index, check_out, pivot_condition

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from symfact.types import MatrixLike


logger = logging.getLogger(__name__)


def _factorize_upper(array: NDArray, upper: NDArray) -> tuple[int, float] | None:
    """Compute upper triangular Cholesky factor of `array` writing it to `upper`.

    Rows of the factor are computed in order using inner products with the previously
    computed rows, only the upper triangle of `array` is read and `upper` is assumed
    to be zero below the diagonal.

    Returns:
        `None` if factorization succeeded otherwise a tuple of the index and value of
        the first non-positive or non-finite pivot encountered.
    """
    size = array.shape[0]
    for j in range(size):
        column = upper[:j, j]
        pivot = array[j, j] - column @ column
        if not (np.isfinite(pivot) and pivot > 0):
            return j, pivot
        upper[j, j] = diagonal = np.sqrt(pivot)
        if j < size - 1:
            upper[j, j + 1 :] = (
                array[j, j + 1 :] - column @ upper[:j, j + 1 :]
            ) / diagonal
    return None


def _rank_one_update(upper: NDArray, vector: NDArray) -> None:
    """Update `upper` in place so that `upper.T @ upper` is increased by `vector` outer
    product with itself, using a sequence of Givens rotations. Overwrites `vector`."""
    size = upper.shape[0]
    for i in range(size):
        radius = np.hypot(upper[i, i], vector[i])
        cos, sin = upper[i, i] / radius, vector[i] / radius
        upper[i, i] = radius
        row = upper[i, i + 1 :].copy()
        upper[i, i + 1 :] = cos * row + sin * vector[i + 1 :]
        vector[i + 1 :] = cos * vector[i + 1 :] - sin * row


def _rank_one_downdate(upper: NDArray, solved: NDArray, rho: float) -> None:
    """Downdate `upper` in place given `solved = inv(upper.T) @ vector`.

    Givens rotations annihilating the elements of `solved` against `rho` from the
    last element backwards are applied to the rows of `upper` and an extra row
    initialised to zero. After all rotations the extra row equals `vector` and
    `upper.T @ upper` has been decreased by `vector` outer product with itself.
    Requires `rho = sqrt(1 - solved @ solved) > 0`.
    """
    size = upper.shape[0]
    extra_row = np.zeros(size)
    for i in range(size - 1, -1, -1):
        radius = np.hypot(rho, solved[i])
        cos, sin = rho / radius, solved[i] / radius
        rho = radius
        row = upper[i, i:].copy()
        upper[i, i:] = cos * row - sin * extra_row[i:]
        extra_row[i:] = sin * row + cos * extra_row[i:]


class Cholesky:
    """Cholesky factorization of a symmetric positive definite matrix.

    The factorization is represented by an upper triangular matrix `upper` with
    positive diagonal such that

        matrix = upper.T @ upper

    An instance is empty until a call to :py:meth:`factorize` succeeds, with all
    queries on an empty instance raising :py:exc:`symfact.errors.NotFactorizedError`.
    Along with the factor an estimate of the condition number of the factorized
    matrix is stored, computed as a by-product of the factorization (see
    :py:func:`symfact.utils.pivot_condition`), which is used to reject solves
    with near-singular matrices.
    """

    def __init__(self, matrix: MatrixLike | None = None) -> None:
        """
        Args:
            matrix: Optional symmetric positive definite matrix to factorize on
                initialisation, either an object implementing the
                :py:class:`symfact.types.Symmetric` protocol or a 2D array of
                which only the upper triangle is used.

        Raises:
            NotPositiveDefiniteError: If `matrix` is specified and is not
                (numerically) positive definite.
        """
        self._upper = None
        self._cond = np.inf
        if matrix is not None and not self.factorize(matrix):
            msg = "Cholesky factorization failed: matrix is not positive definite."
            raise NotPositiveDefiniteError(msg)

    def __str__(self) -> str:
        if self.is_empty:
            return "(empty)"
        return f"(size={self.symmetric_dim}, cond={self._cond:.3g})"

    def __repr__(self) -> str:
        return type(self).__name__ + str(self)

    @property
    def is_empty(self) -> bool:
        """Whether the factorization has not been computed."""
        return self._upper is None

    def reset(self) -> None:
        """Discard factorization, returning to the empty state."""
        self._upper = None
        self._cond = np.inf

    def _check_factorized(self) -> None:
        if self._upper is None:
            msg = "Cholesky factorization has not been computed."
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
    def cond(self) -> float:
        """Estimate of condition number of factorized matrix.

        Ratio of largest to smallest pivot of the elimination. This is a lower bound
        on the 2-norm condition number and is only indicative of its magnitude.
        """
        self._check_factorized()
        return self._cond

    @property
    def factor(self) -> TriangularMatrix:
        """Upper triangular factor as a `TriangularMatrix` object."""
        self._check_factorized()
        return TriangularMatrix(self._upper.copy(), lower=False, make_triangular=False)

    def factorize(self, matrix: MatrixLike) -> bool:
        """Compute Cholesky factorization of a symmetric positive definite matrix.

        Any previously held factorization is replaced, with the storage for the
        factor reused if it has the required size.

        Args:
            matrix: Symmetric matrix to factorize, either an object implementing the
                :py:class:`symfact.types.Symmetric` protocol or a 2D array of which
                only the upper triangle is used.

        Returns:
            Whether the factorization succeeded. If `False` the matrix is not
            (numerically) positive definite and the instance is left empty.
        """
        array = symmetric_array(matrix)
        size = array.shape[0]
        if size == 0:
            msg = "Cannot factorize a matrix with zero dimension."
            raise ValueError(msg)
        if self._upper is not None and self._upper.shape == (size, size):
            upper = self._upper
            upper.fill(0.0)
        else:
            upper = np.zeros((size, size))
        failure = _factorize_upper(array, upper)
        if failure is not None:
            logger.debug(
                "Cholesky factorization failed: pivot %d has value %.3e.", *failure
            )
            self.reset()
            return False
        self._upper = upper
        self._cond = pivot_condition(upper.diagonal())
        return True

    def at(self, i: int, j: int) -> float:
        """Element of factorized matrix at row `i` and column `j`.

        Computed from the factor without forming the full matrix.
        """
        self._check_factorized()
        size = self._upper.shape[0]
        check_index(i, size)
        check_index(j, size)
        k = min(i, j) + 1
        return float(self._upper[:k, i] @ self._upper[:k, j])

    def upper(self, out: NDArray | None = None) -> NDArray:
        """Upper triangular factor `upper` with `matrix = upper.T @ upper`.

        Args:
            out: Optional array to write factor to, of shape `(size, size)`.

        Returns:
            Upper triangular factor as a 2D array.
        """
        self._check_factorized()
        out = check_out(out, self._upper.shape)
        out[...] = self._upper
        return out

    def lower(self, out: NDArray | None = None) -> NDArray:
        """Lower triangular factor `lower` with `matrix = lower @ lower.T`.

        Args:
            out: Optional array to write factor to, of shape `(size, size)`.

        Returns:
            Lower triangular factor as a 2D array.
        """
        self._check_factorized()
        out = check_out(out, self._upper.shape)
        out[...] = self._upper.T
        return out

    def to_sym(self, out: NDArray | None = None) -> NDArray:
        """Reconstruct factorized matrix as `upper.T @ upper`.

        Args:
            out: Optional array to write matrix to, of shape `(size, size)`.

        Returns:
            Factorized symmetric matrix as a 2D array.
        """
        self._check_factorized()
        out = check_out(out, self._upper.shape)
        product = self._upper.T @ self._upper
        out[...] = np.triu(product) + np.triu(product, 1).T
        return out

    def log_det(self) -> float:
        """Logarithm of determinant of factorized matrix."""
        self._check_factorized()
        return 2 * float(np.log(self._upper.diagonal()).sum())

    def det(self) -> float:
        """Determinant of factorized matrix.

        May overflow or underflow for large matrices, in which case
        :py:meth:`log_det` should be used instead.
        """
        self._check_factorized()
        return float(np.prod(self._upper.diagonal()) ** 2)

    def _solve(self, rhs: NDArray) -> NDArray:
        intermediate = sla.solve_triangular(
            self._upper, rhs, trans="T", lower=False, check_finite=False
        )
        return sla.solve_triangular(
            self._upper, intermediate, lower=False, check_finite=False
        )

    def solve(self, b: ArrayLike, out: NDArray | None = None) -> NDArray:
        """Solve the linear system `matrix @ x = b` for a matrix right-hand side.

        Args:
            b: 2D array of shape `(size, num_rhs)`.
            out: Optional array to write solution to, of the same shape as `b`. May
                be `b` itself.

        Returns:
            Solution `x` as a 2D array.

        Raises:
            NearSingularError: If the condition number estimate of the factorized
                matrix exceeds :py:data:`symfact.utils.CONDITION_TOLERANCE`.
        """
        self._check_factorized()
        b = np.asarray(b, dtype=np.float64)
        if b.ndim != 2 or b.shape[0] != self._upper.shape[0]:
            msg = (
                f"Right-hand side of shape {b.shape} incompatible with factorized "
                f"matrix of shape {self.shape}."
            )
            raise ValueError(msg)
        out = check_out(out, b.shape)
        check_condition(self._cond)
        out[...] = self._solve(b)
        return out

    def solve_vec(self, b: ArrayLike, out: NDArray | None = None) -> NDArray:
        """Solve the linear system `matrix @ x = b` for a vector right-hand side.

        Args:
            b: 1D array of shape `(size,)`.
            out: Optional array to write solution to, of shape `(size,)`. May be `b`
                itself.

        Returns:
            Solution `x` as a 1D array.

        Raises:
            NearSingularError: If the condition number estimate of the factorized
                matrix exceeds :py:data:`symfact.utils.CONDITION_TOLERANCE`.
        """
        self._check_factorized()
        b = np.asarray(b, dtype=np.float64)
        if b.shape != (self._upper.shape[0],):
            msg = (
                f"Right-hand side of shape {b.shape} incompatible with factorized "
                f"matrix of shape {self.shape}."
            )
            raise ValueError(msg)
        out = check_out(out, b.shape)
        check_condition(self._cond)
        out[...] = self._solve(b)
        return out

    def solve_chol(self, other: Cholesky, out: NDArray | None = None) -> NDArray:
        """Solve `matrix @ x = other_matrix` with right-hand side given by its factor.

        The right-hand side matrix `other_matrix = other_upper.T @ other_upper` is
        never explicitly formed.

        Args:
            other: Cholesky factorization of right-hand side matrix, of the same size
                as the factorized matrix.
            out: Optional array to write solution to, of shape `(size, size)`.

        Returns:
            Solution `x` as a 2D array.

        Raises:
            NearSingularError: If the condition number estimate of the factorized
                matrix exceeds :py:data:`symfact.utils.CONDITION_TOLERANCE`.
        """
        self._check_factorized()
        other._check_factorized()
        if other.shape != self.shape:
            msg = (
                f"Factorization of shape {other.shape} incompatible with factorized "
                f"matrix of shape {self.shape}."
            )
            raise ValueError(msg)
        out = check_out(out, self.shape)
        check_condition(self._cond)
        intermediate = sla.solve_triangular(
            self._upper, other._upper.T, trans="T", lower=False, check_finite=False
        )
        intermediate = intermediate @ other._upper
        out[...] = sla.solve_triangular(
            self._upper, intermediate, lower=False, check_finite=False
        )
        return out

    def inverse(self, out: NDArray | None = None) -> NDArray:
        """Inverse of factorized matrix.

        Only the upper triangle of the inverse is computed, the lower triangle being
        filled by symmetry.

        Args:
            out: Optional array to write inverse to, of shape `(size, size)`.

        Returns:
            Inverse matrix as a 2D array.

        Raises:
            NearSingularError: If the condition number estimate of the factorized
                matrix exceeds :py:data:`symfact.utils.CONDITION_TOLERANCE`.
        """
        self._check_factorized()
        size = self._upper.shape[0]
        out = check_out(out, (size, size))
        check_condition(self._cond)
        inv_upper = sla.solve_triangular(
            self._upper, np.identity(size), lower=False, check_finite=False
        )
        inverse = np.zeros((size, size))
        for i in range(size):
            inverse[i, i:] = inv_upper[i:, i:] @ inv_upper[i, i:]
        out[...] = inverse + np.triu(inverse, 1).T
        return out

    def _copy_from(self, orig: Cholesky) -> None:
        if orig is self:
            return
        if self._upper is not None and self._upper.shape == orig._upper.shape:
            self._upper[...] = orig._upper
        else:
            self._upper = orig._upper.copy()
        self._cond = orig._cond

    def clone(self, orig: Cholesky) -> None:
        """Set this factorization to a copy of another factorization.

        Args:
            orig: Factorization to copy. Must not be empty.
        """
        orig._check_factorized()
        self._copy_from(orig)

    def scale(self, f: float, orig: Cholesky) -> None:
        """Set this factorization to that of `f * orig_matrix`.

        The factor of `orig` is scaled by `sqrt(f)`, which leaves the condition
        number estimate unchanged.

        Args:
            f: Strictly positive scale factor.
            orig: Factorization of matrix to scale. May be this instance.
        """
        orig._check_factorized()
        if not f > 0:
            msg = f"Scale factor must be positive, got {f}."
            raise ValueError(msg)
        self._copy_from(orig)
        self._upper *= np.sqrt(f)

    def extend_vec_sym(self, orig: Cholesky, row: ArrayLike) -> bool:
        """Set this factorization to that of `orig_matrix` extended by a row / column.

        The extended matrix is

            [[orig_matrix, row[:-1, None]],
             [row[None, :-1], row[-1]]]

        with the factor of the extended matrix computed from the factor of `orig` by
        solving a single triangular system.

        Args:
            orig: Factorization of matrix to extend. May be this instance.
            row: 1D array of length `orig.symmetric_dim + 1` containing the new last
                row / column of the extended matrix.

        Returns:
            Whether the extended matrix is positive definite. If `False`, which is
            also the case when `row` has non-finite values, this instance is left
            unchanged.
        """
        orig._check_factorized()
        size = orig._upper.shape[0] + 1
        row = np.asarray(row, dtype=np.float64)
        if row.shape != (size,):
            msg = f"Row of shape {row.shape} incompatible with extended size {size}."
            raise ValueError(msg)
        if not np.all(np.isfinite(row)):
            logger.debug("Extension rejected: row has non-finite entries.")
            return False
        new_column = sla.solve_triangular(
            orig._upper, row[:-1], trans="T", lower=False, check_finite=False
        )
        pivot = row[-1] - new_column @ new_column
        if not pivot > 0:
            logger.debug(
                "Extension rejected: new pivot %.3e is not positive.", pivot
            )
            return False
        extended = np.zeros((size, size))
        extended[:-1, :-1] = orig._upper
        extended[:-1, -1] = new_column
        extended[-1, -1] = np.sqrt(pivot)
        self._upper = extended
        self._cond = pivot_condition(extended.diagonal())
        return True

    def sym_rank_one(self, orig: Cholesky, alpha: float, x: ArrayLike) -> bool:
        """Set this factorization to that of `orig_matrix + alpha * outer(x, x)`.

        For `alpha > 0` (an update) the factor is modified by a sequence of Givens
        rotations and the update always succeeds. For `alpha < 0` (a downdate) the
        result may not be positive definite, which is detected before any change is
        made. Only vectors of length `size` are used as workspace.

        Args:
            orig: Factorization of matrix to update. May be this instance.
            alpha: Scalar coefficient of rank-one term.
            x: 1D array of length `orig.symmetric_dim` defining rank-one term.

        Returns:
            Whether the updated matrix is positive definite. If `False`, which is
            also the case when `alpha` or `x` has non-finite values, this instance
            is left unchanged.
        """
        orig._check_factorized()
        size = orig._upper.shape[0]
        x = np.asarray(x, dtype=np.float64)
        if x.shape != (size,):
            msg = f"Vector of shape {x.shape} incompatible with size {size}."
            raise ValueError(msg)
        if not (np.isfinite(alpha) and np.all(np.isfinite(x))):
            logger.debug("Rank-one change rejected: non-finite coefficient or vector.")
            return False
        if alpha == 0:
            self._copy_from(orig)
            return True
        if alpha > 0:
            self._copy_from(orig)
            _rank_one_update(self._upper, np.sqrt(alpha) * x)
        else:
            solved = sla.solve_triangular(
                orig._upper,
                np.sqrt(-alpha) * x,
                trans="T",
                lower=False,
                check_finite=False,
            )
            norm = np.linalg.norm(solved)
            if not norm < 1:
                logger.debug(
                    "Downdate rejected: updated matrix not positive definite "
                    "(norm of solved vector %.3e).",
                    norm,
                )
                return False
            self._copy_from(orig)
            _rank_one_downdate(self._upper, solved, np.sqrt((1 + norm) * (1 - norm)))
        self._cond = pivot_condition(self._upper.diagonal())
        return True
