"""
Basic tests for pdlnm functionality

This module contains tests to validate the core functionality of the pdlnm package:
lag utilities, basis functions, OneBasis and CrossBasis.
"""

import pytest
import numpy as np

from pdlnm.utils import mklag, seqlag, lag_matrix, equalknots, logknots
from pdlnm.basis_functions import (
    BasisFamily, LinearBasis, PolynomialBasis, PSplineBasis, ThresholdBasis,
)
from pdlnm.basis import OneBasis, CrossBasis
from pdlnm.exceptions import InvalidArgument
from pdlnm.splines import bs_basis, ns_basis, ps_basis


SERIES = np.array([10, 12, 9, 15, 11, 13, 10, 14, 12, 11], dtype=float)


class TestUtils:
    """Test utility functions."""

    def test_mklag_single_positive(self):
        """Test mklag with single positive value."""
        result = mklag(5)
        expected = np.array([0, 5])
        np.testing.assert_array_equal(result, expected)

    def test_mklag_two_values(self):
        """Test mklag with two values."""
        result = mklag([2, 8])
        expected = np.array([2, 8])
        np.testing.assert_array_equal(result, expected)

    def test_mklag_invalid_order(self):
        """Test mklag with invalid order (min > max)."""
        with pytest.raises(InvalidArgument):
            mklag([8, 2])

    def test_mklag_negative(self):
        with pytest.raises(InvalidArgument):
            mklag([-1, 3])

    def test_mklag_non_integer(self):
        with pytest.raises(ValueError):
            mklag(2.5)

    def test_seqlag_basic(self):
        """Test seqlag basic functionality."""
        result = seqlag([0, 5])
        expected = np.array([0, 1, 2, 3, 4, 5])
        np.testing.assert_array_equal(result, expected)

    def test_seqlag_with_step(self):
        """Test seqlag with custom step size."""
        result = seqlag([0, 2], by=0.5)
        expected = np.array([0.0, 0.5, 1.0, 1.5, 2.0])
        np.testing.assert_array_almost_equal(result, expected)

    def test_seqlag_fractional_step_stops_at_max(self):
        result = seqlag([0, 25], by=0.2)
        assert len(result) == 126
        assert result[-1] == pytest.approx(25.0)

    def test_lag_matrix_values(self):
        Q, L = lag_matrix(SERIES, 3)

        assert Q.shape == (10, 4)
        np.testing.assert_array_equal(Q[5], [13, 11, 15, 9])
        np.testing.assert_array_equal(L[5], [0, 1, 2, 3])

        # Missing history before the start of the series
        assert np.isnan(Q[0, 1:]).all()
        assert np.isnan(Q[2, 3])
        assert not np.isnan(Q[3]).any()

    def test_lag_matrix_definition(self):
        Q, _ = lag_matrix(SERIES, 3)
        for i in range(len(SERIES)):
            for j in range(4):
                if i - j >= 0:
                    assert Q[i, j] == SERIES[i - j]

    def test_lag_matrix_invalid_maxlag(self):
        with pytest.raises(InvalidArgument):
            lag_matrix(SERIES, -1)
        with pytest.raises(InvalidArgument):
            lag_matrix(SERIES, 10)

    def test_equalknots(self):
        np.testing.assert_allclose(equalknots([0, 30], nk=2), [10, 20])

    def test_logknots(self):
        knots = logknots(25, nk=3)
        expected = np.exp((1 + np.log(25)) / 4 * np.arange(1, 4) - 1)
        np.testing.assert_allclose(knots, expected)
        assert np.all(np.diff(np.log(knots)) > 0)


class TestBasisFunctions:
    """Test basis function implementations."""

    def test_family_resolution(self):
        assert BasisFamily.resolve('ps') is BasisFamily.PS
        with pytest.raises(InvalidArgument):
            BasisFamily.resolve('cubic')

    def test_linear_basis(self):
        """Test linear basis function."""
        x = np.array([1, 2, 3, 4, 5])
        basis = LinearBasis()
        result = basis(x)

        expected = x.reshape(-1, 1)
        np.testing.assert_array_equal(result, expected)

    def test_linear_basis_with_intercept(self):
        """Test linear basis with intercept."""
        x = np.array([1, 2, 3, 4, 5])
        basis = LinearBasis(intercept=True)
        result = basis(x)

        expected = np.column_stack([np.ones(5), x])
        np.testing.assert_array_equal(result, expected)

    def test_polynomial_basis(self):
        """Test polynomial basis function."""
        x = np.array([1, 2, 3, 4, 5])
        basis = PolynomialBasis(degree=2)
        result = basis(x)

        # Should have 2 columns for degree 2 (x^1, x^2)
        assert result.shape == (5, 2)

        # Values should be scaled versions of x and x^2
        scale = np.max(np.abs(x))
        np.testing.assert_array_almost_equal(result[:, 0], x / scale)
        np.testing.assert_array_almost_equal(result[:, 1], (x / scale) ** 2)

    def test_missing_values_kept_as_rows(self):
        result = LinearBasis()(np.array([1.0, np.nan, 3.0]))
        assert result.shape == (3, 1)
        assert np.isnan(result[1, 0])

    def test_double_threshold_basis(self):
        x = np.array([10.0, 17.0, 19.0, 21.0, 25.0])
        result = ThresholdBasis(thr_value=[17, 21])(x)

        # Lower hinge below 17, higher hinge above 21, flat in between
        np.testing.assert_array_equal(result[:, 0], [7, 0, 0, 0, 0])
        np.testing.assert_array_equal(result[:, 1], [0, 0, 0, 0, 4])

    def test_pspline_partition_of_unity(self):
        x = np.linspace(0, 25, 51)
        basis, attrs = ps_basis(x, df=10, intercept=True)

        assert basis.shape == (51, 10)
        np.testing.assert_allclose(basis.sum(axis=1), 1.0)
        np.testing.assert_allclose(np.diff(attrs['knots']), 25 / 7)

    def test_pspline_without_intercept_keeps_df(self):
        basis, _ = ps_basis(np.linspace(0, 1, 30), df=10, intercept=False)
        assert basis.shape == (30, 10)

    def test_frozen_pspline_reproduces_basis(self):
        func = PSplineBasis(df=6)
        x = np.linspace(-5, 30, 40)
        original = func(x)
        np.testing.assert_allclose(func.frozen()(x), original)

    def test_natural_spline_is_linear_beyond_boundary(self):
        x = np.linspace(0, 10, 50)
        _, attrs = ns_basis(x, df=4)
        outside, _ = ns_basis(np.array([11.0, 12.0, 13.0]), knots=attrs['knots'],
                              boundary_knots=attrs['boundary_knots'])
        np.testing.assert_allclose(np.diff(outside, n=2, axis=0), 0, atol=1e-10)

    def test_bspline_dimension(self):
        basis, attrs = bs_basis(np.linspace(0, 30, 100), knots=[10, 20], degree=2)
        assert basis.shape == (100, 4)
        assert attrs['boundary_knots'] == (0.0, 30.0)

    def test_knots_outside_range(self):
        with pytest.raises(InvalidArgument):
            bs_basis(np.linspace(0, 1, 10), knots=[2.0])


class TestOneBasis:
    """Test OneBasis class."""

    def test_onebasis_linear(self):
        """Test OneBasis with linear function."""
        x = np.array([1, 2, 3, 4, 5])
        basis = OneBasis(x, fun='lin')

        assert basis.shape == (5, 1)
        np.testing.assert_array_equal(basis.basis, x.reshape(-1, 1))

    def test_onebasis_polynomial(self):
        """Test OneBasis with polynomial function."""
        x = np.array([1, 2, 3, 4, 5])
        basis = OneBasis(x, fun='poly', degree=2)

        assert basis.shape == (5, 2)
        assert basis.fun == 'poly'
        assert basis.family is BasisFamily.POLY
        assert 'degree' in basis.attributes

    def test_onebasis_range(self):
        """Test OneBasis range calculation."""
        x = np.array([1, 5, 3, 2, 4])
        basis = OneBasis(x, fun='lin')

        assert basis.range == (1, 5)

    def test_evaluate_matches_construction(self):
        x = np.linspace(-3, 29, 60)
        basis = OneBasis(x, fun='bs', degree=2, knots=equalknots(x, nk=2))
        np.testing.assert_allclose(basis.evaluate(x), basis.basis)

    def test_evaluate_keeps_polynomial_scale(self):
        basis = OneBasis(np.arange(4), fun='poly', degree=1, intercept=True)
        np.testing.assert_allclose(basis.evaluate([6.0]), [[1.0, 2.0]])

    def test_too_many_columns(self):
        with pytest.raises(InvalidArgument):
            OneBasis(np.arange(4), fun='ps', df=10)

    def test_threshold_outside_domain(self):
        with pytest.raises(InvalidArgument):
            OneBasis(np.linspace(0, 10, 20), fun='thr', thr_value=[5, 12])

    def test_unknown_function(self):
        with pytest.raises(InvalidArgument):
            OneBasis(np.arange(10), fun='strata')

    def test_penalized_flag(self):
        assert OneBasis(np.linspace(0, 1, 20), fun='ps', df=5).penalized
        assert not OneBasis(np.linspace(0, 1, 20), fun='ns', df=3).penalized


class TestCrossBasis:
    """Test CrossBasis class."""

    def test_crossbasis_basic(self):
        """Test basic CrossBasis functionality."""
        x = np.array([1, 2, 3, 4, 5])
        basis = CrossBasis(x, lag=3,
                           argvar={'fun': 'lin'},
                           arglag={'fun': 'lin'})

        # 5 observations, lag range [0,3]; the lag basis has an intercept
        assert basis.shape == (5, 2)
        assert basis.lag.tolist() == [0, 3]
        assert basis.colnames == ['v1.l1', 'v1.l2']

    def test_crossbasis_df(self):
        """Test CrossBasis degrees of freedom calculation."""
        x = np.array([1, 2, 3, 4, 5])
        basis = CrossBasis(x, lag=2,
                           argvar={'fun': 'poly', 'degree': 2},
                           arglag={'fun': 'poly', 'degree': 1})

        assert basis.df == (2, 2)
        assert basis.shape[1] == 4

    def test_incomplete_history_rows_are_missing(self):
        basis = CrossBasis(SERIES, lag=3, argvar={'fun': 'lin'}, arglag={'fun': 'lin'})
        assert np.isnan(basis.basis[:3]).all()
        assert not np.isnan(basis.basis[3:]).any()
        np.testing.assert_array_equal(basis.complete_rows, np.arange(10) >= 3)

    def test_end_to_end_row(self):
        basis = CrossBasis(SERIES, lag=3,
                           argvar={'fun': 'lin'},
                           arglag={'fun': 'poly', 'degree': 1, 'intercept': True})

        # Q row 5 = [13, 11, 15, 9]; lag basis [1, lag / 3]
        np.testing.assert_allclose(basis.basis[5], [48.0, 68.0 / 3])

    def test_linear_in_exposure(self):
        kwargs = dict(lag=3, argvar={'fun': 'lin'}, arglag={'fun': 'poly', 'degree': 2})
        single = CrossBasis(SERIES, **kwargs)
        doubled = CrossBasis(2 * SERIES, **kwargs)
        np.testing.assert_allclose(doubled.basis[3:], 2 * single.basis[3:])

    def test_convolution_formula(self):
        Q = np.array([[1.0, 4.0, 2.0],
                      [3.0, 5.0, 7.0],
                      [6.0, 8.0, 9.0]])
        basis = CrossBasis(Q, argvar={'fun': 'ns', 'df': 2}, arglag={'fun': 'poly', 'degree': 2})

        n_var, n_lag = basis.df
        expected = np.zeros((3, n_var * n_lag))
        for i in range(3):
            for j in range(3):
                bvar = basis.basisvar.evaluate([Q[i, j]])[0]
                blag = basis.basislag.evaluate([j])[0]
                for v in range(n_var):
                    for l in range(n_lag):
                        expected[i, v * n_lag + l] += bvar[v] * blag[l]

        np.testing.assert_allclose(basis.basis, expected)

    def test_matrix_input_with_lagmat(self):
        Q, L = lag_matrix(SERIES, 3)
        from_matrix = CrossBasis(Q, lagmat=L, argvar={'fun': 'lin'}, arglag={'fun': 'lin'})
        from_series = CrossBasis(SERIES, lag=3, argvar={'fun': 'lin'}, arglag={'fun': 'lin'})
        np.testing.assert_allclose(from_matrix.basis, from_series.basis)
        assert from_matrix.lag.tolist() == [0, 3]

    def test_matrix_with_wrong_width(self):
        with pytest.raises(InvalidArgument):
            CrossBasis(np.ones((5, 3)), lag=4)

    def test_default_lag_basis(self):
        x = np.linspace(0, 30, 200)
        basis = CrossBasis(x, lag=25, argvar={'fun': 'lin'})
        assert basis.basislag.fun == 'ns'
        # Three log-spaced knots and an intercept
        assert basis.df == (1, 5)

    def test_series_requires_lag(self):
        with pytest.raises(InvalidArgument):
            CrossBasis(SERIES)


if __name__ == '__main__':
    pytest.main([__file__])
