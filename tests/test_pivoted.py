import logging

import numpy as np
import numpy.linalg as nla
import numpy.testing as npt
import pytest

from symfact import matrices
from symfact.cholesky import Cholesky
from symfact.errors import (
    NotFactorizedError,
    NotPositiveDefiniteError,
    RankDeficientError,
)
from symfact.pivoted import PivotedCholesky

SEED = 1839204713
SIZES = {1, 3, 10}
RANK_FRACTIONS = {0.3, 0.7}
ATOL = 1e-10
RTOL = 1e-10


@pytest.fixture
def rng():
    return np.random.default_rng(SEED)


@pytest.fixture(params=SIZES)
def size(request):
    return request.param


@pytest.fixture(params=RANK_FRACTIONS)
def rank(size, request):
    return max(1, int(request.param * size))


@pytest.fixture
def semi_definite_array(rng, size, rank):
    # Sum of `rank` rank-one terms
    vectors = rng.standard_normal((size, rank))
    return vectors @ vectors.T


@pytest.fixture
def definite_array(rng, size):
    factor = rng.standard_normal((size, size))
    return factor @ factor.T + np.identity(size)


def _reconstruct_permuted(chol):
    upper = chol.upper()
    return upper.T @ upper


class TestPivotedCholeskyDefinite:
    @pytest.fixture
    def chol(self, definite_array):
        chol = PivotedCholesky()
        assert chol.factorize(definite_array)
        return chol

    def test_full_rank(self, chol, size):
        assert chol.rank == size
        assert chol.symmetric_dim == size

    def test_permuted_reconstruction(self, chol, definite_array):
        pivots = chol.column_pivots()
        npt.assert_allclose(
            _reconstruct_permuted(chol),
            definite_array[pivots][:, pivots],
            rtol=RTOL,
            atol=ATOL,
        )

    def test_to_sym(self, chol, definite_array):
        to_sym = chol.to_sym()
        npt.assert_array_equal(to_sym, to_sym.T)
        npt.assert_allclose(to_sym, definite_array, rtol=RTOL, atol=ATOL)

    def test_at(self, chol, definite_array, size):
        for i in range(size):
            for j in range(size):
                assert chol.at(i, j) == pytest.approx(
                    definite_array[i, j], rel=RTOL, abs=ATOL
                )

    def test_pivots_are_permutation(self, chol, size):
        npt.assert_array_equal(np.sort(chol.column_pivots()), np.arange(size))

    def test_pivots_decreasing(self, chol):
        diagonal = chol.upper().diagonal()
        assert np.all(np.diff(diagonal) <= 1e-12 * diagonal[0])

    def test_column_pivots_out(self, chol, size):
        out = np.empty(size, dtype=int)
        assert chol.column_pivots(out=out) is out
        npt.assert_array_equal(out, chol.column_pivots())
        with pytest.raises(ValueError, match="Destination array has shape"):
            chol.column_pivots(out=np.empty(size + 1, dtype=int))

    def test_raw_u_read_only(self, chol):
        npt.assert_array_equal(chol.raw_u, chol.upper())
        with pytest.raises(ValueError, match="read-only"):
            chol.raw_u[0, 0] = 1.0

    def test_det(self, chol, definite_array):
        npt.assert_allclose(chol.det(), nla.det(definite_array), rtol=RTOL)
        npt.assert_allclose(
            chol.log_det(), nla.slogdet(definite_array)[1], rtol=RTOL
        )

    def test_cond_matches_definition(self, chol):
        diagonal = chol.upper().diagonal()
        npt.assert_allclose(chol.cond, (diagonal.max() / diagonal.min()) ** 2)

    def test_solve(self, chol, definite_array, rng, size):
        rhs = rng.standard_normal((size, 2))
        solution = chol.solve(rhs)
        npt.assert_allclose(definite_array @ solution, rhs, rtol=RTOL, atol=ATOL)

    def test_solve_vec_matches_dense(self, chol, definite_array, rng, size):
        rhs = rng.standard_normal(size)
        npt.assert_allclose(
            chol.solve_vec(rhs), Cholesky(definite_array).solve_vec(rhs), rtol=1e-8
        )

    def test_solve_out_aliases_rhs(self, chol, rng, size):
        rhs = rng.standard_normal(size)
        expected = chol.solve_vec(rhs)
        chol.solve_vec(rhs, out=rhs)
        npt.assert_allclose(rhs, expected)

    def test_symmetric_matrix_input(self, chol, definite_array):
        other = PivotedCholesky()
        assert other.factorize(matrices.DenseSymmetricMatrix(definite_array))
        npt.assert_array_equal(other.upper(), chol.upper())
        npt.assert_array_equal(other.column_pivots(), chol.column_pivots())


class TestPivotedCholeskySemiDefinite:
    def test_rank_detected(self, semi_definite_array, rank, size):
        chol = PivotedCholesky()
        tol = 1e-10 * np.abs(semi_definite_array).max()
        assert chol.factorize(semi_definite_array, tol=tol)
        assert chol.rank == rank
        npt.assert_array_equal(chol.upper()[rank:], 0.0)
        npt.assert_allclose(
            chol.to_sym(), semi_definite_array, rtol=1e-8, atol=1e-8
        )

    def test_rank_detected_default_tolerance(self):
        vectors = np.array([[1.0, 0.0], [2.0, 0.0], [2.0, 0.0], [0.0, 3.0]])
        array = vectors @ vectors.T
        chol = PivotedCholesky()
        assert chol.factorize(array)
        assert chol.rank == 2
        npt.assert_array_equal(chol.column_pivots()[:2], [3, 1])
        npt.assert_allclose(chol.to_sym(), array, atol=1e-14)

    def test_max_rank_truncates(self, semi_definite_array, rank):
        chol = PivotedCholesky()
        max_rank = rank - 1
        tol = 1e-10 * np.abs(semi_definite_array).max()
        assert chol.factorize(semi_definite_array, max_rank=max_rank, tol=tol)
        assert chol.rank == max_rank
        if semi_definite_array.any():
            assert not np.allclose(chol.to_sym(), semi_definite_array)

    @pytest.mark.parametrize("max_rank", [-1, -5])
    def test_negative_max_rank_unlimited(self, definite_array, size, max_rank):
        chol = PivotedCholesky()
        assert chol.factorize(definite_array, max_rank=max_rank)
        assert chol.rank == size

    def test_max_rank_above_size_unlimited(self, definite_array, size):
        chol = PivotedCholesky()
        assert chol.factorize(definite_array, max_rank=size + 5)
        assert chol.rank == size

    def test_zero_matrix(self, size):
        chol = PivotedCholesky()
        assert chol.factorize(np.zeros((size, size)))
        assert chol.rank == 0
        assert chol.det() == 0.0
        assert chol.log_det() == -np.inf
        npt.assert_array_equal(chol.to_sym(), 0.0)

    def test_rank_deficient_det(self):
        chol = PivotedCholesky()
        assert chol.factorize(np.ones((3, 3)))
        assert chol.rank == 1
        assert chol.det() == 0.0
        assert chol.log_det() == -np.inf

    def test_rank_deficient_solve_raises(self):
        chol = PivotedCholesky()
        assert chol.factorize(np.ones((3, 3)))
        with pytest.raises(RankDeficientError):
            chol.solve_vec(np.ones(3))
        with pytest.raises(RankDeficientError):
            chol.solve(np.ones((3, 1)))

    def test_early_termination_logged(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="symfact.pivoted"):
            PivotedCholesky().factorize(np.ones((3, 3)))
        assert "rank 1 of 3" in caplog.text


class TestPivotedCholeskyFailures:
    def test_negative_definite(self):
        chol = PivotedCholesky()
        assert not chol.factorize(-np.identity(3))
        assert chol.is_empty

    def test_indefinite(self):
        chol = PivotedCholesky()
        assert not chol.factorize(np.array([[1.0, 2.0], [2.0, 1.0]]))
        assert chol.is_empty

    def test_nan(self):
        chol = PivotedCholesky()
        assert not chol.factorize(np.array([[np.nan, 0.0], [0.0, 1.0]]))
        assert chol.is_empty

    @pytest.mark.parametrize(
        "array",
        [
            [[np.inf, 0.0], [0.0, 1.0]],
            [[1.0, np.inf], [np.inf, 1.0]],
            [[1.0, 0.0], [0.0, -np.inf]],
            [[4.0, 0.0, -np.inf], [0.0, 1.0, 0.0], [-np.inf, 0.0, 0.0]],
        ],
    )
    @pytest.mark.parametrize("max_rank", [-1, 1])
    def test_infinite_input_fails(self, array, max_rank):
        chol = PivotedCholesky()
        assert not chol.factorize(np.array(array), max_rank=max_rank)
        assert chol.is_empty

    def test_constructor_raises_not_positive_definite(self):
        with pytest.raises(NotPositiveDefiniteError):
            PivotedCholesky(-np.identity(3))
        with pytest.raises(NotPositiveDefiniteError):
            PivotedCholesky(np.array([[np.inf, 0.0], [0.0, 1.0]]))

    def test_invalid_input(self):
        with pytest.raises(ValueError, match="not a valid shape"):
            PivotedCholesky().factorize(np.ones((2, 3)))
        with pytest.raises(ValueError, match="zero dimension"):
            PivotedCholesky().factorize(np.zeros((0, 0)))

    def test_empty_queries(self):
        chol = PivotedCholesky()
        assert chol.is_empty
        for query in (
            lambda: chol.rank,
            lambda: chol.raw_u,
            lambda: chol.symmetric_dim,
            lambda: chol.at(0, 0),
            chol.column_pivots,
            chol.upper,
            chol.det,
            lambda: chol.solve_vec(np.ones(1)),
        ):
            with pytest.raises(NotFactorizedError):
                query()

    def test_reset(self):
        chol = PivotedCholesky()
        assert chol.factorize(np.identity(2))
        chol.reset()
        assert chol.is_empty
        assert isinstance(repr(chol), str)


class TestPivotedCholeskyConstructor:
    def test_matches_factorize(self, definite_array):
        chol = PivotedCholesky(definite_array)
        other = PivotedCholesky()
        assert other.factorize(definite_array)
        assert not chol.is_empty
        npt.assert_array_equal(chol.upper(), other.upper())
        npt.assert_array_equal(chol.column_pivots(), other.column_pivots())

    def test_max_rank_and_tol(self, semi_definite_array, rank):
        tol = 1e-10 * np.abs(semi_definite_array).max()
        assert PivotedCholesky(semi_definite_array, tol=tol).rank == rank
        assert PivotedCholesky(semi_definite_array, rank - 1, tol).rank == rank - 1

    def test_rank_deficient_succeeds(self):
        chol = PivotedCholesky(np.ones((3, 3)))
        assert chol.rank == 1

    def test_no_matrix_is_empty(self):
        assert PivotedCholesky().is_empty
