"""
Tests for cross-predictions
"""

import pytest
import numpy as np
import pandas as pd
from types import SimpleNamespace

from pdlnm.basis import CrossBasis, OneBasis
from pdlnm.exceptions import InvalidArgument
from pdlnm.prediction import CrossPred, crosspred
from pdlnm.utils import equalknots


@pytest.fixture
def temperature():
    rng = np.random.default_rng(11)
    return 14 + 6 * np.sin(np.arange(400) / 58) + rng.normal(0, 2, 400)


@pytest.fixture
def cb(temperature):
    return CrossBasis(temperature, lag=10,
                      argvar={'fun': 'bs', 'degree': 2, 'knots': equalknots(temperature, nk=2)},
                      arglag={'fun': 'ns', 'df': 3})


@pytest.fixture
def fitted(cb):
    rng = np.random.default_rng(5)
    n_coef = cb.shape[1]
    coef = rng.normal(0, 0.05, n_coef)
    A = rng.normal(0, 0.01, (n_coef, n_coef))
    return coef, A @ A.T + 1e-4 * np.eye(n_coef)


class TestCentering:

    def test_zero_at_reference_for_every_lag(self, cb, fitted):
        coef, vcov = fitted
        pred = crosspred(cb, coef=coef, vcov=vcov, model_link='log',
                         at=[8.0, 12.0, 16.0, 20.0], cen=16.0, bylag=0.5)

        row = list(pred.predvar).index(16.0)
        np.testing.assert_allclose(pred.matfit[row], 0.0, atol=1e-12)
        np.testing.assert_allclose(pred.matse[row], 0.0, atol=1e-12)
        assert pred.allfit[row] == pytest.approx(0.0, abs=1e-12)
        np.testing.assert_allclose(pred.matRRfit[row], 1.0)

    def test_default_centering_warns(self, cb, fitted):
        coef, vcov = fitted
        with pytest.warns(UserWarning, match="centering value"):
            pred = crosspred(cb, coef=coef, vcov=vcov, at=[10.0, 15.0])
        assert pred.cen == pytest.approx(sum(cb.range) / 2)

    def test_threshold_basis_not_centered(self, temperature):
        cb = CrossBasis(temperature, lag=5,
                        argvar={'fun': 'thr', 'thr_value': [12, 16]},
                        arglag={'fun': 'poly', 'degree': 1})
        n_coef = cb.shape[1]
        pred = crosspred(cb, coef=np.ones(n_coef), vcov=np.eye(n_coef), at=[10.0, 14.0, 18.0])

        assert pred.cen is None
        # Flat region between the thresholds
        np.testing.assert_allclose(pred.allfit[1], 0.0)


class TestPredictionValues:

    def test_lag_specific_matches_direct_evaluation(self, cb, fitted):
        coef, vcov = fitted
        pred = crosspred(cb, coef=coef, vcov=vcov, at=[5.0, 18.0], cen=14.0)

        n_var, n_lag = cb.df
        B = coef.reshape(n_var, n_lag)
        var_row = cb.basisvar.evaluate([18.0])[0] - cb.basisvar.evaluate([14.0])[0]
        for j, lag in enumerate(pred.predlag):
            lag_row = cb.basislag.evaluate([lag])[0]
            assert pred.matfit[1, j] == pytest.approx(var_row @ B @ lag_row)

    def test_overall_is_sum_over_lags(self, cb, fitted):
        coef, vcov = fitted
        pred = crosspred(cb, coef=coef, vcov=vcov, at=np.arange(0, 30, 3.0), cen=14.0, cumul=True)

        assert pred.matfit.shape == (10, 11)
        np.testing.assert_allclose(pred.allfit, pred.matfit.sum(axis=1))
        np.testing.assert_allclose(pred.cumfit[:, -1], pred.allfit)
        np.testing.assert_allclose(pred.cumfit[:, 0], pred.matfit[:, 0])

    def test_fine_grid(self, cb, fitted):
        coef, vcov = fitted
        pred = crosspred(cb, coef=coef, vcov=vcov, by=0.2, bylag=0.2, cen=14.0)

        assert len(pred.predlag) == 51
        assert pred.predvar[0] == pytest.approx(cb.range[0])
        np.testing.assert_allclose(np.diff(pred.predvar), 0.2)
        assert pred.matfit.shape == (len(pred.predvar), 51)

    def test_confidence_intervals(self, cb, fitted):
        coef, vcov = fitted
        pred = crosspred(cb, coef=coef, vcov=vcov, at=[10.0, 20.0], cen=14.0,
                         model_link='log', ci_level=0.9)

        z = 1.6448536269514722
        np.testing.assert_allclose(pred.allRRlow, np.exp(pred.allfit - z * pred.allse))
        np.testing.assert_allclose(pred.allRRhigh, np.exp(pred.allfit + z * pred.allse))

    def test_lag_subperiod(self, cb, fitted):
        coef, vcov = fitted
        pred = crosspred(cb, coef=coef, vcov=vcov, at=[20.0], cen=14.0, lag=[2, 5])
        assert pred.matfit.shape == (1, 4)

        with pytest.raises(InvalidArgument):
            crosspred(cb, coef=coef, vcov=vcov, at=[20.0], cen=14.0, lag=[2, 5], cumul=True)
        with pytest.raises(InvalidArgument):
            crosspred(cb, coef=coef, vcov=vcov, at=[20.0], cen=14.0, lag=[0, 12])


class TestModelInput:

    def test_model_with_crossbasis_terms(self, cb, fitted):
        coef, vcov = fitted
        model = SimpleNamespace(cb_coef=coef, cb_vcov=vcov, model_link='log')

        from_model = crosspred(cb, model, at=[10.0, 20.0], cen=14.0)
        direct = crosspred(cb, coef=coef, vcov=vcov, at=[10.0, 20.0], cen=14.0)

        assert from_model.model_link == 'log'
        np.testing.assert_allclose(from_model.matfit, direct.matfit)
        assert hasattr(from_model, 'matRRfit')

    def test_labelled_parameters(self, cb, fitted):
        coef, vcov = fitted
        names = ['const'] + cb.colnames + ['trend']
        params = pd.Series(np.concatenate([[3.0], coef, [0.1]]), index=names)
        full_vcov = np.eye(len(names))
        full_vcov[1:-1, 1:-1] = vcov
        model = SimpleNamespace(params=params, cov_params=lambda: full_vcov)

        pred = crosspred(cb, model, at=[20.0], cen=14.0, model_link='log')
        direct = crosspred(cb, coef=coef, vcov=vcov, at=[20.0], cen=14.0)
        np.testing.assert_allclose(pred.matfit, direct.matfit)

    def test_prefixed_labelled_parameters(self, cb, fitted):
        coef, vcov = fitted
        names = ['const'] + [f"cb.{name}" for name in cb.colnames] + ['trend']
        params = pd.Series(np.concatenate([[3.0], coef, [0.1]]), index=names)
        full_vcov = np.eye(len(names))
        full_vcov[1:-1, 1:-1] = vcov
        model = SimpleNamespace(params=params, cov_params=lambda: full_vcov)

        pred = crosspred(cb, model, at=[20.0], cen=14.0, model_link='log')
        np.testing.assert_allclose(pred.coefficients, coef)
        np.testing.assert_allclose(pred.vcov, vcov)

    def test_labelled_parameters_without_basis_terms(self, cb, fitted):
        coef, _ = fitted
        names = ['const'] + [f"x{i}" for i in range(len(coef))]
        params = pd.Series(np.concatenate([[3.0], coef]), index=names)
        model = SimpleNamespace(params=params, cov_params=lambda: np.eye(len(names)))

        with pytest.raises(InvalidArgument, match='basis terms'):
            crosspred(cb, model, at=[20.0], cen=14.0)

    def test_missing_coefficients(self, cb):
        with pytest.raises(InvalidArgument):
            CrossPred(cb, at=[10.0], cen=14.0)

    def test_marginal_basis_mismatch(self, cb, fitted):
        coef, vcov = fitted
        cb.basislag = OneBasis(np.arange(11), fun='ns', df=4)
        with pytest.raises(InvalidArgument, match='prediction matrix'):
            crosspred(cb, coef=coef, vcov=vcov, at=[20.0], cen=14.0)

    def test_too_few_coefficients(self, cb):
        with pytest.raises(InvalidArgument):
            crosspred(cb, coef=np.zeros(2), vcov=np.eye(2), at=[10.0], cen=14.0)


class TestOutputs:

    def test_to_frame(self, cb, fitted):
        coef, vcov = fitted
        pred = crosspred(cb, coef=coef, vcov=vcov, at=[10.0, 20.0], cen=14.0, model_link='log')
        frame = pred.to_frame()

        assert len(frame) == 2 * 11
        assert list(frame.columns) == ['exposure', 'lag', 'fit', 'se', 'low', 'high',
                                       'RR', 'RR_low', 'RR_high']
        np.testing.assert_allclose(frame['fit'], pred.matfit.ravel())
        assert frame['exposure'].iloc[11] == 20.0
        assert frame['lag'].iloc[11] == 0.0

    def test_onebasis_prediction(self):
        basis = OneBasis(np.linspace(0, 10, 50), fun='lin')
        pred = crosspred(basis, coef=[0.5], vcov=[[0.01]], at=[2.0, 4.0], cen=2.0)

        np.testing.assert_allclose(pred.allfit, [0.0, 1.0])
        assert pred.matfit.shape == (2, 1)

    def test_summary(self, cb, fitted):
        coef, vcov = fitted
        pred = crosspred(cb, coef=coef, vcov=vcov, at=[10.0], cen=14.0)
        assert "Centered at: 14.0" in pred.summary()
