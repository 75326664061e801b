"""Structured symmetric matrix classes consumed by the factorizations.

The factorization classes only require read access to the elements of a symmetric
matrix (see :py:class:`symfact.types.Symmetric`). The classes here provide that
access for dense and banded storage, along with the triangular matrix type used to
expose computed factors.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

import numpy as np

from symfact.errors import LinAlgError
from symfact.types import Symmetric, SymmetricBanded
from symfact.utils import check_index

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from symfact.types import MatrixLike


def _square_array(array: ArrayLike) -> NDArray:
    array = np.asarray(array, dtype=np.float64)
    if array.ndim != 2 or array.shape[0] != array.shape[1]:
        msg = f"{array.shape} is not a valid shape for a symmetric matrix."
        raise ValueError(msg)
    return array


class SymmetricMatrix(abc.ABC):
    """Base class for square matrices which are equal to their transpose.

    Implements the :py:class:`symfact.types.Symmetric` protocol. The full dense
    array is constructed on first access and cached as a read-only array.
    """

    def __init__(self, size: int) -> None:
        self._size = size
        self._array = None

    def __array__(self, dtype=None, copy=None) -> NDArray:  # noqa: ANN001
        if dtype is None:
            return self.array
        return self.array.astype(dtype)

    @property
    def symmetric_dim(self) -> int:
        """Number of rows / columns of matrix."""
        return self._size

    @property
    def shape(self) -> tuple[int, int]:
        """Shape of matrix as a tuple `(num_rows, num_columns)`."""
        return (self._size, self._size)

    @property
    def array(self) -> NDArray:
        """Full dense representation of matrix as a read-only 2D array."""
        if self._array is None:
            self._array = self._construct_array()
            self._array.flags.writeable = False
        return self._array

    @abc.abstractmethod
    def _construct_array(self) -> NDArray:
        """Construct full dense representation of matrix as a 2D array."""

    @property
    def diagonal(self) -> NDArray:
        """Diagonal of matrix as a 1D array."""
        return self.array.diagonal()

    def at(self, i: int, j: int) -> float:
        """Element of matrix at row `i` and column `j`."""
        check_index(i, self._size)
        check_index(j, self._size)
        return float(self.array[i, j])

    def __str__(self) -> str:
        return f"(shape={self.shape})"

    def __repr__(self) -> str:
        return type(self).__name__ + str(self)


class DenseSymmetricMatrix(SymmetricMatrix):
    """Symmetric matrix specified by a dense 2D array."""

    def __init__(self, array: ArrayLike, *, lower: bool = False) -> None:
        """
        Args:
            array: 2D square array specifying matrix entries. Only the elements in
                the upper triangle (or lower triangle if `lower == True`) are used,
                with the remaining elements set by symmetry.
            lower: Whether to take the matrix entries from the lower triangle of
                `array` rather than the upper triangle.
        """
        array = _square_array(array)
        if not np.all(np.isfinite(array)):
            msg = "Array is not finite."
            raise LinAlgError(msg)
        super().__init__(array.shape[0])
        triangle = np.tril(array) if lower else np.triu(array)
        off_diagonal = np.tril(array, -1) if lower else np.triu(array, 1)
        self._dense = triangle + off_diagonal.T

    def _construct_array(self) -> NDArray:
        return self._dense


class SymmetricBandMatrix(SymmetricMatrix):
    """Symmetric matrix with non-zero entries only within a band about the diagonal.

    The upper band is stored compactly in the LAPACK upper band layout, that is as a
    2D array `band` of shape `(bandwidth + 1, size)` with

        band[bandwidth + i - j, j] == matrix[i, j]

    for `max(0, j - bandwidth) <= i <= j`. Entries of `band` not corresponding to an
    element of the matrix are ignored.
    """

    def __init__(self, band: ArrayLike) -> None:
        """
        Args:
            band: 2D array of shape `(bandwidth + 1, size)` containing upper band of
                matrix in LAPACK upper band layout.
        """
        band = np.array(band, dtype=np.float64)
        if band.ndim != 2 or band.shape[0] == 0:
            msg = "Band storage must be a non-empty two-dimensional array."
            raise ValueError(msg)
        bandwidth, size = band.shape[0] - 1, band.shape[1]
        # Zero unused top-left triangle of band storage
        for d in range(1, bandwidth + 1):
            band[bandwidth - d, :d] = 0.0
        if not np.all(np.isfinite(band)):
            msg = "Array is not finite."
            raise LinAlgError(msg)
        super().__init__(size)
        band.flags.writeable = False
        self._band = band
        self._bandwidth = bandwidth

    @classmethod
    def from_array(cls, array: ArrayLike, bandwidth: int) -> SymmetricBandMatrix:
        """Construct from the upper triangle of a dense 2D array.

        Args:
            array: 2D square array. Only elements in upper triangle within
                `bandwidth` of the diagonal are used.
            bandwidth: Number of non-zero super-diagonals.

        Returns:
            Symmetric band matrix.
        """
        array = _square_array(array)
        if bandwidth < 0:
            msg = f"Bandwidth must be non-negative, got {bandwidth}."
            raise ValueError(msg)
        size = array.shape[0]
        band = np.zeros((bandwidth + 1, size))
        for d in range(min(bandwidth + 1, size)):
            band[bandwidth - d, d:] = np.diagonal(array, d)
        return cls(band)

    @property
    def bandwidth(self) -> int:
        """Number of non-zero super-diagonals."""
        return self._bandwidth

    @property
    def band(self) -> NDArray:
        """Read-only compact upper band storage."""
        return self._band

    def at(self, i: int, j: int) -> float:
        check_index(i, self._size)
        check_index(j, self._size)
        i, j = min(i, j), max(i, j)
        if j - i > self._bandwidth:
            return 0.0
        return float(self._band[self._bandwidth + i - j, j])

    @property
    def diagonal(self) -> NDArray:
        return self._band[self._bandwidth]

    def _construct_array(self) -> NDArray:
        array = np.zeros(self.shape)
        size = self._size
        for d in range(min(self._bandwidth + 1, size)):
            super_diagonal = self._band[self._bandwidth - d, d:]
            array[np.arange(size - d), np.arange(d, size)] = super_diagonal
            array[np.arange(d, size), np.arange(size - d)] = super_diagonal
        return array

    def __str__(self) -> str:
        return f"(shape={self.shape}, bandwidth={self.bandwidth})"


class SymmetricBandView(SymmetricMatrix):
    """Band view of a generic symmetric matrix.

    Exposes a symmetric matrix (or the upper triangle of a 2D array) as a symmetric
    band matrix, with all elements further than `bandwidth` from the diagonal read
    as zero. The underlying matrix is not copied.
    """

    def __init__(self, matrix: MatrixLike, bandwidth: int) -> None:
        """
        Args:
            matrix: Symmetric matrix to view. Either an object implementing the
                :py:class:`symfact.types.Symmetric` protocol or a 2D array.
            bandwidth: Number of super-diagonals within the view.
        """
        matrix = as_symmetric(matrix)
        if bandwidth < 0:
            msg = f"Bandwidth must be non-negative, got {bandwidth}."
            raise ValueError(msg)
        super().__init__(matrix.symmetric_dim)
        self._matrix = matrix
        self._bandwidth = bandwidth

    @property
    def bandwidth(self) -> int:
        """Number of non-zero super-diagonals."""
        return self._bandwidth

    def at(self, i: int, j: int) -> float:
        check_index(i, self._size)
        check_index(j, self._size)
        i, j = min(i, j), max(i, j)
        if j - i > self._bandwidth:
            return 0.0
        return float(self._matrix.at(i, j))

    def _construct_array(self) -> NDArray:
        return SymmetricBandMatrix(symmetric_band_array(self)).array.copy()

    def __str__(self) -> str:
        return f"(shape={self.shape}, bandwidth={self.bandwidth})"


class TriangularMatrix:
    """Matrix with non-zero values only in lower or upper triangle elements."""

    def __init__(
        self,
        array: NDArray,
        *,
        lower: bool = True,
        make_triangular: bool = True,
    ) -> None:
        """
        Args:
            array: 2D array containing lower / upper triangular element values of
                matrix. Any values above (below) diagonal are ignored for lower (upper)
                triangular matrices i.e. when `lower == True` (`lower == False`).
            lower: Whether the matrix is lower-triangular (`True`) or upper-triangular
                (`False`).
            make_triangular: Whether to ensure `array` is triangular by explicitly
                zeroing entries in upper triangle if `lower == True` and in lower
                triangle if `lower == False`.
        """
        array = np.asarray(array, dtype=np.float64)
        if array.ndim != 2 or array.shape[0] != array.shape[1]:
            msg = f"{array.shape} is not a valid shape for a triangular matrix."
            raise ValueError(msg)
        if make_triangular:
            array = np.tril(array) if lower else np.triu(array)
        array.flags.writeable = False
        self._array = array
        self._lower = lower

    def __array__(self, dtype=None, copy=None) -> NDArray:  # noqa: ANN001
        if dtype is None:
            return self._array
        return self._array.astype(dtype)

    @property
    def array(self) -> NDArray:
        """Read-only 2D array of matrix elements."""
        return self._array

    @property
    def shape(self) -> tuple[int, int]:
        return self._array.shape

    @property
    def lower(self) -> bool:
        return self._lower

    @property
    def diagonal(self) -> NDArray:
        return self._array.diagonal()

    def __str__(self) -> str:
        return f"(shape={self.shape}, lower={self.lower})"

    def __repr__(self) -> str:
        return type(self).__name__ + str(self)


def as_symmetric(matrix: MatrixLike) -> Symmetric:
    """Return `matrix` if it implements the `Symmetric` protocol else wrap as dense.

    Args:
        matrix: Object implementing :py:class:`symfact.types.Symmetric` or a 2D
            array of which only the upper triangle is used.

    Returns:
        Object implementing :py:class:`symfact.types.Symmetric`.
    """
    if isinstance(matrix, Symmetric):
        return matrix
    return DenseSymmetricMatrix(matrix)


def symmetric_array(matrix: MatrixLike) -> NDArray:
    """Read a symmetric matrix into a new writeable dense 2D array.

    Args:
        matrix: Object implementing :py:class:`symfact.types.Symmetric` or a 2D
            array of which only the upper triangle is used.

    Returns:
        Full symmetric 2D array.
    """
    if isinstance(matrix, SymmetricMatrix):
        return np.array(matrix.array, dtype=np.float64)
    if not isinstance(matrix, Symmetric):
        # Non-finite values are left for the factorizations to reject
        array = _square_array(matrix)
        return np.triu(array) + np.triu(array, 1).T
    size = matrix.symmetric_dim
    array = np.empty((size, size))
    for i in range(size):
        for j in range(i, size):
            array[i, j] = array[j, i] = matrix.at(i, j)
    return array


def symmetric_band_array(matrix: SymmetricBanded) -> NDArray:
    """Read a symmetric band matrix into a new writeable upper band layout array.

    Args:
        matrix: Object implementing :py:class:`symfact.types.SymmetricBanded`.

    Returns:
        2D array of shape `(matrix.bandwidth + 1, matrix.symmetric_dim)` in LAPACK
        upper band layout.
    """
    if not isinstance(matrix, SymmetricBanded):
        msg = f"{matrix!r} does not provide symmetric band matrix access."
        raise TypeError(msg)
    if isinstance(matrix, SymmetricBandMatrix):
        return np.array(matrix.band)
    size, bandwidth = matrix.symmetric_dim, matrix.bandwidth
    band = np.zeros((bandwidth + 1, size))
    for j in range(size):
        for i in range(max(0, j - bandwidth), j + 1):
            band[bandwidth + i - j, j] = matrix.at(i, j)
    return band
