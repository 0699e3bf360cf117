"""
Tests for the analysis workflow and data loading
"""

import dataclasses

import pytest
import numpy as np

from pdlnm.analysis import AnalysisConfig, STRATEGIES, lag_penalties, run_analysis
from pdlnm.data import load_dataset, load_timeseries, london
from pdlnm.exceptions import InvalidArgument


SMALL = AnalysisConfig(
    lag=7,
    at=tuple(float(t) for t in range(0, 21)),
    time_df=4,
    var_nk=2,
    lag_nk=2,
    grid_var_nk=(1, 2),
    grid_lag_nk=(1, 2),
    gam_k=5,
    ridge_partition=(3, 2),
    thresholds=(8.0, 16.0),
    cen=12.0,
)


class TestAnalysisConfig:

    def test_defaults(self):
        config = AnalysisConfig()
        assert config.lag == 25
        assert config.cen == 20.0
        assert config.at[0] == -3.0 and config.at[-1] == 29.0
        assert config.time_df == 140
        assert config.ridge_partition == (6, 4)
        assert config.grid_var_nk == tuple(range(1, 9))

    def test_frozen(self):
        config = AnalysisConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.lag = 10

    def test_partition_must_match_dimension(self):
        with pytest.raises(InvalidArgument):
            AnalysisConfig(gam_k=8)

    def test_lag_penalties(self):
        Slag1, Slag2 = lag_penalties(AnalysisConfig())
        assert Slag1.shape == (10, 10)
        np.testing.assert_array_equal(np.diag(Slag2), [0] * 6 + [1] * 4)


class TestRunAnalysis:

    @pytest.fixture(scope='class')
    def results(self, daily_series):
        return run_analysis(daily_series, SMALL)

    def test_all_strategies(self, results):
        assert list(results) == list(STRATEGIES)
        for name, result in results.items():
            assert result.name == name
            assert result.pred3d.matfit.shape == (21, 8)

    def test_centered_predictions(self, results):
        row = list(results['glm_apriori'].pred3d.predvar).index(12.0)
        for name in ('glm_apriori', 'glm_aic', 'gam_default', 'gam_doubly_varying'):
            np.testing.assert_allclose(results[name].pred3d.matRRfit[row], 1.0)

    def test_threshold_model(self, results):
        result = results['gam_threshold']
        assert result.pred3d.cen is None
        assert result.crossbasis.df == (2, 5)
        assert result.crossbasis.penalty_names == ['lag.add1', 'lag.add2']

        # No association between the thresholds
        inside = [list(result.pred3d.predvar).index(t) for t in (9.0, 12.0, 15.0)]
        np.testing.assert_allclose(result.pred3d.allfit[inside], 0.0, atol=1e-12)

    def test_diagnostics(self, results):
        assert results['glm_apriori'].sp is None
        assert results['glm_aic'].grid.best in {(1, 1), (2, 1), (1, 2), (2, 2)}

        for name in ('gam_default', 'gam_doubly_varying', 'gam_threshold'):
            result = results[name]
            assert len(result.sp) == len(result.crossbasis.penalty_names)
            assert 0 < result.edf <= result.crossbasis.shape[1] + 1e-8
            assert set(result.diagnostics()) == {'name', 'converged', 'sp', 'edf'}

    def test_unknown_strategy(self, daily_series):
        with pytest.raises(InvalidArgument):
            run_analysis(daily_series, SMALL, strategies=['gam_reml'])

    def test_missing_column(self, daily_series):
        with pytest.raises(InvalidArgument):
            run_analysis(daily_series.drop(columns='tmean'), SMALL, strategies=['glm_apriori'])


class TestData:

    def test_load_timeseries(self, tmp_path, daily_series):
        path = tmp_path / 'series.csv'
        daily_series.drop(columns='time').to_csv(path)

        data = load_timeseries(path)
        assert list(data['time']) == list(range(1, len(daily_series) + 1))
        assert 'Unnamed: 0' not in data.columns
        np.testing.assert_allclose(data['tmean'], daily_series['tmean'])
        assert str(data['date'].dtype).startswith('datetime64')

    def test_missing_columns(self, tmp_path, daily_series):
        path = tmp_path / 'series.csv'
        daily_series.drop(columns='death').to_csv(path, index=False)
        with pytest.raises(InvalidArgument, match='death'):
            load_timeseries(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            london(tmp_path / 'london.csv')

    def test_unknown_dataset(self):
        with pytest.raises(InvalidArgument):
            load_dataset('chicago')
