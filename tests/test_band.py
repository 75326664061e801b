import numpy as np
import numpy.linalg as nla
import numpy.testing as npt
import pytest

from symfact import matrices
from symfact.band import BandCholesky
from symfact.cholesky import Cholesky
from symfact.errors import (
    NearSingularError,
    NotFactorizedError,
    NotPositiveDefiniteError,
)

SEED = 8871920455
SIZES = {1, 4, 12}
BANDWIDTHS = {0, 1, 3}
NUM_RHS = 2
ATOL = 1e-10
RTOL = 1e-10


class _BandAccessor:
    def __init__(self, array, bandwidth):
        self.array = array
        self.bandwidth = bandwidth

    @property
    def symmetric_dim(self):
        return self.array.shape[0]

    def at(self, i, j):
        return self.array[min(i, j), max(i, j)]


@pytest.fixture
def rng():
    return np.random.default_rng(SEED)


@pytest.fixture(params=SIZES)
def size(request):
    return request.param


@pytest.fixture(params=BANDWIDTHS)
def bandwidth(request):
    return request.param


@pytest.fixture
def array(rng, size, bandwidth):
    # Diagonally dominant band matrix is positive definite
    array = rng.standard_normal((size, size))
    array = np.triu(np.tril(array + array.T, bandwidth), -bandwidth)
    return array + np.diag(np.abs(array).sum(1) + 1)


@pytest.fixture(params=("band", "view"))
def band_matrix(array, bandwidth, request):
    if request.param == "band":
        return matrices.SymmetricBandMatrix.from_array(array, bandwidth)
    return matrices.SymmetricBandView(array, bandwidth)


@pytest.fixture
def band_chol(band_matrix):
    return BandCholesky(band_matrix)


@pytest.fixture
def dense_chol(array):
    return Cholesky(array)


class TestBandCholesky:
    def test_factor_matches_dense(self, band_chol, dense_chol):
        npt.assert_allclose(
            band_chol.upper(), dense_chol.upper(), rtol=RTOL, atol=ATOL
        )

    def test_factor_band_structure(self, band_chol, bandwidth, size):
        upper = band_chol.upper()
        npt.assert_array_equal(upper, np.triu(np.tril(upper, bandwidth)))
        assert band_chol.band_factor.shape == (bandwidth + 1, size)

    def test_band_factor_read_only(self, band_chol):
        with pytest.raises(ValueError, match="read-only"):
            band_chol.band_factor[-1, 0] = 1.0

    def test_lower(self, band_chol):
        npt.assert_array_equal(band_chol.lower(), band_chol.upper().T)

    def test_reconstruction(self, band_chol, array):
        npt.assert_allclose(band_chol.to_sym(), array, rtol=RTOL, atol=ATOL)

    def test_to_band_matrix(self, band_chol, array, bandwidth):
        reconstructed = band_chol.to_band_matrix()
        assert reconstructed.bandwidth == bandwidth
        npt.assert_allclose(reconstructed.array, array, rtol=RTOL, atol=ATOL)

    def test_at(self, band_chol, dense_chol, size):
        for i in range(size):
            for j in range(size):
                assert band_chol.at(i, j) == pytest.approx(
                    dense_chol.at(i, j), rel=RTOL, abs=ATOL
                )

    def test_at_out_of_range(self, band_chol, size):
        with pytest.raises(IndexError):
            band_chol.at(0, size)

    def test_dims(self, band_chol, size, bandwidth):
        assert band_chol.symmetric_dim == size
        assert band_chol.shape == (size, size)
        assert band_chol.bandwidth == bandwidth

    def test_det(self, band_chol, dense_chol, array):
        npt.assert_allclose(band_chol.det(), dense_chol.det(), rtol=RTOL)
        npt.assert_allclose(band_chol.log_det(), nla.slogdet(array)[1], rtol=RTOL)

    def test_cond_matches_dense(self, band_chol, dense_chol):
        npt.assert_allclose(band_chol.cond, dense_chol.cond, rtol=RTOL)

    def test_solve(self, band_chol, dense_chol, rng, size):
        rhs = rng.standard_normal((size, NUM_RHS))
        npt.assert_allclose(
            band_chol.solve(rhs), dense_chol.solve(rhs), rtol=1e-8, atol=ATOL
        )

    def test_solve_vec(self, band_chol, array, rng, size):
        rhs = rng.standard_normal(size)
        npt.assert_allclose(array @ band_chol.solve_vec(rhs), rhs, atol=ATOL)

    def test_solve_out_aliases_rhs(self, band_chol, rng, size):
        rhs = rng.standard_normal((size, NUM_RHS))
        expected = band_chol.solve(rhs)
        assert band_chol.solve(rhs, out=rhs) is rhs
        npt.assert_allclose(rhs, expected)

    def test_solve_invalid_shapes(self, band_chol, size):
        with pytest.raises(ValueError, match="incompatible"):
            band_chol.solve(np.ones(size))
        with pytest.raises(ValueError, match="incompatible"):
            band_chol.solve_vec(np.ones(size + 1))
        with pytest.raises(ValueError, match="Destination array has shape"):
            band_chol.solve_vec(np.ones(size), out=np.empty(size + 1))

    def test_to_string(self, band_chol):
        assert isinstance(str(band_chol), str)
        assert isinstance(repr(BandCholesky()), str)


class TestBandCholeskyFailures:
    def test_not_positive_definite(self):
        band = matrices.SymmetricBandMatrix.from_array(
            np.array([[1.0, 2.0, 0.0], [2.0, 1.0, 0.5], [0.0, 0.5, 1.0]]), 1
        )
        chol = BandCholesky()
        assert not chol.factorize(band)
        assert chol.is_empty
        with pytest.raises(NotPositiveDefiniteError):
            BandCholesky(band)

    def test_failure_resets(self):
        chol = BandCholesky(matrices.SymmetricBandMatrix(np.ones((1, 3))))
        assert not chol.factorize(matrices.SymmetricBandMatrix(-np.ones((1, 3))))
        assert chol.is_empty

    def test_infinite_entry_fails(self):
        array = np.identity(3)
        array[1, 2] = np.inf
        chol = BandCholesky()
        assert not chol.factorize(_BandAccessor(array, 1))
        assert chol.is_empty

    def test_requires_band_access(self):
        with pytest.raises(TypeError, match="symmetric band matrix access"):
            BandCholesky(np.identity(3))

    def test_near_singular(self):
        chol = BandCholesky(matrices.SymmetricBandMatrix(np.array([[1.0, 1e-20]])))
        with pytest.raises(NearSingularError):
            chol.solve_vec(np.ones(2))

    def test_empty_queries(self):
        chol = BandCholesky()
        for query in (
            lambda: chol.symmetric_dim,
            lambda: chol.bandwidth,
            lambda: chol.band_factor,
            lambda: chol.at(0, 0),
            chol.det,
            chol.to_sym,
            lambda: chol.solve(np.ones((1, 1))),
        ):
            with pytest.raises(NotFactorizedError):
                query()

    def test_reset(self):
        chol = BandCholesky(
            matrices.SymmetricBandMatrix(np.array([[0.0, 1, 1], [4, 4, 4]]))
        )
        chol.reset()
        assert chol.is_empty
