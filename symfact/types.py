"""Type aliases and structural protocols."""

from __future__ import annotations

from typing import Protocol, Union, runtime_checkable

from numpy.typing import ArrayLike, NDArray


@runtime_checkable
class Symmetric(Protocol):
    """Read access to a symmetric matrix.

    Only elements `(i, j)` with `i <= j` are required to be meaningful, the
    remaining elements being implied by symmetry.
    """

    @property
    def symmetric_dim(self) -> int:
        """Number of rows / columns of the matrix."""

    def at(self, i: int, j: int) -> float:
        """Element of matrix at row `i` and column `j`."""


@runtime_checkable
class SymmetricBanded(Symmetric, Protocol):
    """Read access to a symmetric matrix with non-zeros only within a band."""

    @property
    def bandwidth(self) -> int:
        """Number of non-zero super-diagonals (equal to number of sub-diagonals)."""


@runtime_checkable
class Factorization(Protocol):
    """Operations common to all factorizations of symmetric matrices."""

    def factorize(self, a: Symmetric | ArrayLike) -> bool:
        """Factorize matrix, returning whether the factorization succeeded."""

    @property
    def symmetric_dim(self) -> int:
        """Dimension of factorized matrix."""

    def at(self, i: int, j: int) -> float:
        """Element of factorized matrix reconstructed from the factor."""

    def det(self) -> float:
        """Determinant of factorized matrix."""

    def log_det(self) -> float:
        """Logarithm of determinant of factorized matrix."""

    def solve(self, b: ArrayLike, out: NDArray | None = None) -> NDArray:
        """Solve linear system with matrix right-hand side."""

    def solve_vec(self, b: ArrayLike, out: NDArray | None = None) -> NDArray:
        """Solve linear system with vector right-hand side."""

    def to_sym(self, out: NDArray | None = None) -> NDArray:
        """Reconstruct full factorized matrix."""


MatrixLike = Union[ArrayLike, Symmetric]
