"""Cholesky factorization of symmetric positive definite band matrices."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
import scipy.linalg as sla

from symfact.errors import NotFactorizedError, NotPositiveDefiniteError
from symfact.matrices import SymmetricBandMatrix, symmetric_band_array
from symfact.utils import check_condition, check_index, check_out, pivot_condition

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from symfact.types import SymmetricBanded


logger = logging.getLogger(__name__)


def _factorize_upper_band(band: NDArray) -> tuple[int, float] | None:
    """Overwrite upper band storage of a matrix with that of its Cholesky factor.

    Both `band` and the factor use the LAPACK upper band layout

        band[bandwidth + i - j, j] == upper[i, j]

    with the factor having the same bandwidth as the matrix. Each column of the
    factor is computed from the preceding columns within the band only.

    Returns:
        `None` if factorization succeeded otherwise a tuple of the index and value of
        the first non-positive or non-finite pivot encountered.
    """
    bandwidth, size = band.shape[0] - 1, band.shape[1]
    for j in range(size):
        start = max(0, j - bandwidth)
        column = band[bandwidth + start - j : bandwidth, j]
        pivot = band[bandwidth, j] - column @ column
        if not (np.isfinite(pivot) and pivot > 0):
            return j, pivot
        band[bandwidth, j] = diagonal = np.sqrt(pivot)
        for c in range(j + 1, min(j + bandwidth + 1, size)):
            # Rows of factor with non-zero entries in both column j and column c
            start = max(0, c - bandwidth)
            overlap = (
                band[bandwidth + start - j : bandwidth, j]
                @ band[bandwidth + start - c : bandwidth + j - c, c]
            )
            row = bandwidth + j - c
            band[row, c] = (band[row, c] - overlap) / diagonal
    return None


class BandCholesky:
    """Cholesky factorization of a symmetric positive definite band matrix.

    The upper triangular factor `upper` with `matrix = upper.T @ upper` has the same
    bandwidth as the factorized matrix and is stored compactly in the LAPACK upper
    band layout, so that both factorization and solves cost time linear in the
    matrix size for a fixed bandwidth.
    """

    def __init__(self, matrix: SymmetricBanded | None = None) -> None:
        """
        Args:
            matrix: Optional symmetric band matrix to factorize on initialisation,
                implementing the :py:class:`symfact.types.SymmetricBanded` protocol.

        Raises:
            NotPositiveDefiniteError: If `matrix` is specified and is not
                (numerically) positive definite.
        """
        self._band = None
        self._cond = np.inf
        if matrix is not None and not self.factorize(matrix):
            msg = "Cholesky factorization failed: matrix is not positive definite."
            raise NotPositiveDefiniteError(msg)

    def __str__(self) -> str:
        if self.is_empty:
            return "(empty)"
        return f"(size={self.symmetric_dim}, bandwidth={self.bandwidth})"

    def __repr__(self) -> str:
        return type(self).__name__ + str(self)

    @property
    def is_empty(self) -> bool:
        """Whether the factorization has not been computed."""
        return self._band is None

    def reset(self) -> None:
        """Discard factorization, returning to the empty state."""
        self._band = None
        self._cond = np.inf

    def _check_factorized(self) -> None:
        if self._band is None:
            msg = "Band Cholesky factorization has not been computed."
            raise NotFactorizedError(msg)

    @property
    def symmetric_dim(self) -> int:
        """Number of rows / columns of factorized matrix."""
        self._check_factorized()
        return self._band.shape[1]

    @property
    def shape(self) -> tuple[int, int]:
        """Shape of factorized matrix."""
        return (self.symmetric_dim, self.symmetric_dim)

    @property
    def bandwidth(self) -> int:
        """Number of non-zero super-diagonals of factorized matrix and factor."""
        self._check_factorized()
        return self._band.shape[0] - 1

    @property
    def cond(self) -> float:
        """Estimate of condition number of factorized matrix.

        See :py:attr:`symfact.cholesky.Cholesky.cond`.
        """
        self._check_factorized()
        return self._cond

    @property
    def band_factor(self) -> NDArray:
        """Read-only view of factor in upper band layout."""
        self._check_factorized()
        view = self._band.view()
        view.flags.writeable = False
        return view

    def factorize(self, matrix: SymmetricBanded) -> bool:
        """Compute Cholesky factorization of a symmetric positive definite band matrix.

        Args:
            matrix: Matrix to factorize, implementing the
                :py:class:`symfact.types.SymmetricBanded` protocol.

        Returns:
            Whether the factorization succeeded. If `False` the matrix is not
            (numerically) positive definite and the instance is left empty.
        """
        band = symmetric_band_array(matrix)
        if band.shape[1] == 0:
            msg = "Cannot factorize a matrix with zero dimension."
            raise ValueError(msg)
        failure = _factorize_upper_band(band)
        if failure is not None:
            logger.debug(
                "Band Cholesky factorization failed: pivot %d has value %.3e.", *failure
            )
            self.reset()
            return False
        self._band = band
        self._cond = pivot_condition(band[-1])
        return True

    def at(self, i: int, j: int) -> float:
        """Element of factorized matrix at row `i` and column `j`.

        Computed from the banded factor, with elements outside the band equal to zero.
        """
        self._check_factorized()
        bandwidth, size = self._band.shape[0] - 1, self._band.shape[1]
        check_index(i, size)
        check_index(j, size)
        i, j = min(i, j), max(i, j)
        if j - i > bandwidth:
            return 0.0
        start = max(0, j - bandwidth)
        return float(
            self._band[bandwidth + start - i : bandwidth + 1, i]
            @ self._band[bandwidth + start - j : bandwidth + i - j + 1, j]
        )

    def upper(self, out: NDArray | None = None) -> NDArray:
        """Upper triangular factor `upper` with `matrix = upper.T @ upper`.

        Args:
            out: Optional array to write factor to, of shape `(size, size)`.

        Returns:
            Upper triangular factor as a dense 2D array.
        """
        self._check_factorized()
        bandwidth, size = self._band.shape[0] - 1, self._band.shape[1]
        out = check_out(out, (size, size))
        out.fill(0.0)
        for d in range(min(bandwidth + 1, size)):
            out[np.arange(size - d), np.arange(d, size)] = self._band[bandwidth - d, d:]
        return out

    def lower(self, out: NDArray | None = None) -> NDArray:
        """Lower triangular factor `lower` with `matrix = lower @ lower.T`.

        Args:
            out: Optional array to write factor to, of shape `(size, size)`.

        Returns:
            Lower triangular factor as a dense 2D array.
        """
        upper = self.upper()
        out = check_out(out, upper.shape)
        out[...] = upper.T
        return out

    def to_sym(self, out: NDArray | None = None) -> NDArray:
        """Reconstruct factorized matrix as a dense 2D array.

        Args:
            out: Optional array to write matrix to, of shape `(size, size)`.

        Returns:
            Factorized symmetric band matrix as a dense 2D array.
        """
        self._check_factorized()
        bandwidth, size = self._band.shape[0] - 1, self._band.shape[1]
        out = check_out(out, (size, size))
        out.fill(0.0)
        for j in range(size):
            for i in range(max(0, j - bandwidth), j + 1):
                out[i, j] = out[j, i] = self.at(i, j)
        return out

    def to_band_matrix(self) -> SymmetricBandMatrix:
        """Reconstruct factorized matrix as a symmetric band matrix object."""
        self._check_factorized()
        bandwidth, size = self._band.shape[0] - 1, self._band.shape[1]
        band = np.zeros_like(self._band)
        for j in range(size):
            for i in range(max(0, j - bandwidth), j + 1):
                band[bandwidth + i - j, j] = self.at(i, j)
        return SymmetricBandMatrix(band)

    def log_det(self) -> float:
        """Logarithm of determinant of factorized matrix."""
        self._check_factorized()
        return 2 * float(np.log(self._band[-1]).sum())

    def det(self) -> float:
        """Determinant of factorized matrix."""
        self._check_factorized()
        return float(np.prod(self._band[-1]) ** 2)

    def _solve(self, b: ArrayLike, ndim: int, out: NDArray | None) -> NDArray:
        self._check_factorized()
        size = self._band.shape[1]
        b = np.asarray(b, dtype=np.float64)
        if b.ndim != ndim or b.shape[0] != size:
            msg = (
                f"Right-hand side of shape {b.shape} incompatible with factorized "
                f"matrix of shape {(size, size)}."
            )
            raise ValueError(msg)
        out = check_out(out, b.shape)
        check_condition(self._cond)
        out[...] = sla.cho_solve_banded((self._band, False), b, check_finite=False)
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
            NearSingularError: If the condition number estimate of the factorized
                matrix exceeds :py:data:`symfact.utils.CONDITION_TOLERANCE`.
        """
        return self._solve(b, 1, out)
