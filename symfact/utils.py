"""Utility functions and constants shared by the factorization classes."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from symfact.errors import NearSingularError

if TYPE_CHECKING:
    from numpy.typing import NDArray


CONDITION_TOLERANCE: float = 1e16
"""Condition number estimate above which solves are rejected as near-singular."""


def pivot_condition(diagonal: NDArray) -> float:
    """Estimate condition number of a matrix from the diagonal of a triangular factor.

    For a factorization `matrix = factor.T @ factor` the squared diagonal entries of
    `factor` are the pivots of the elimination and all lie between the smallest and
    largest eigenvalue of `matrix`. The ratio of the largest to the smallest pivot is
    therefore a lower bound on the 2-norm condition number which grows with the true
    ill-conditioning of the matrix. It is an order-of-magnitude estimate only.

    Args:
        diagonal: 1D array of (positive) diagonal entries of triangular factor.

    Returns:
        Estimated condition number, `inf` if any diagonal entry is zero.
    """
    if diagonal.size == 0:
        return 1.0
    abs_diagonal = np.abs(diagonal)
    min_abs = abs_diagonal.min()
    if min_abs == 0:
        return np.inf
    return float((abs_diagonal.max() / min_abs) ** 2)


def check_condition(cond: float) -> None:
    """Raise `NearSingularError` if condition estimate exceeds `CONDITION_TOLERANCE`."""
    if not cond <= CONDITION_TOLERANCE:
        raise NearSingularError(cond)


def check_out(out: NDArray | None, shape: tuple[int, ...]) -> NDArray:
    """Check (or allocate) a destination array.

    Args:
        out: Destination array or `None` to allocate a new zero-filled array.
        shape: Required shape of destination.

    Returns:
        `out` if not `None` otherwise a newly allocated array.

    Raises:
        ValueError: If `out` is not `None` and has a shape different from `shape`.
    """
    if out is None:
        return np.zeros(shape)
    if out.shape != shape:
        msg = f"Destination array has shape {out.shape}, expected {shape}."
        raise ValueError(msg)
    return out


def check_index(i: int, size: int) -> None:
    """Raise `IndexError` if `i` is not a valid index in to a dimension `size`."""
    if not 0 <= i < size:
        msg = f"Index {i} out of range for dimension {size}."
        raise IndexError(msg)
