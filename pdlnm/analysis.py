"""
Temperature-mortality analysis workflow for pdlnm

Fits the five model strategies compared in Gasparrini, Scheipl, Armstrong &
Kenward (2017) on a daily time series of mean temperature and deaths:

1. GLM with knots specified a priori
2. GLM with knots selected by quasi-AIC
3. Penalized model with default penalties on both dimensions
4. Penalized model with a doubly varying penalty on the lag
5. Unpenalized double-threshold exposure-response with the doubly varying
   lag penalty

All models adjust for a natural spline of time and day of week.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

from .basis import CrossBasis, OneBasis
from .exceptions import InvalidArgument
from .glm_integration import DLNMGLMInterface, fit_dlnm_model, seasonal_covariates
from .model_selection import KnotsGridResult, apriori_crossbasis, knots_grid_search
from .penalized import PenalizedCrossBasis, PenalizedDLNM
from .penalties import doubly_varying_lag_penalties
from .prediction import CrossPred, crosspred
from .utils import lag_matrix


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Settings shared by all model strategies.

    Attributes:
        lag: Maximum lag (days)
        cen: Reference temperature of the relative risks
        at: Temperatures of the 3-D prediction grid
        by, bylag: Steps of the fine prediction grid
        time_df: Degrees of freedom of the spline of time
        var_degree: Degree of the exposure B-spline in the GLMs
        var_nk, lag_nk: Knots of the a priori GLM
        grid_var_nk, grid_lag_nk: Candidate knots of the QAIC search
        gam_k: Basis dimension of each margin of the penalized models
        ridge_partition: Unpenalized/ridge-penalized split of the lag coefficients
        thresholds: Thresholds of the double-threshold exposure-response
        selection_method: Smoothing parameter criterion ('gcv' or 'ubre')
    """

    exposure_col: str = 'tmean'
    outcome_col: str = 'death'
    time_col: str = 'time'
    dow_col: str = 'dow'
    lag: int = 25
    cen: float = 20.0
    at: Tuple[float, ...] = tuple(float(t) for t in range(-3, 30))
    by: float = 0.2
    bylag: float = 0.2
    time_df: int = 140
    var_degree: int = 2
    var_nk: int = 2
    lag_nk: int = 3
    grid_var_nk: Tuple[int, ...] = tuple(range(1, 9))
    grid_lag_nk: Tuple[int, ...] = tuple(range(1, 9))
    gam_k: int = 10
    ridge_partition: Tuple[int, int] = (6, 4)
    thresholds: Tuple[float, float] = (17.0, 21.0)
    selection_method: str = 'gcv'

    def __post_init__(self):
        if sum(self.ridge_partition) != self.gam_k:
            raise InvalidArgument(
                f"ridge_partition {self.ridge_partition} must sum to gam_k={self.gam_k}"
            )
        if self.lag < 2:
            raise InvalidArgument("lag must be >= 2")


@dataclass(frozen=True)
class ModelResult:
    """
    One fitted strategy with its predictions.

    Attributes:
        name: Strategy name
        crossbasis: Cross-basis (penalized or not) used in the fit
        model: DLNMGLMInterface or PenalizedDLNM
        pred3d: Predictions on the integer temperature grid
        predsl: Predictions on the fine temperature and lag grid
        grid: QAIC grid search result, for the selected-knots GLM
    """

    name: str
    crossbasis: CrossBasis
    model: Any
    pred3d: CrossPred
    predsl: CrossPred
    grid: Optional[KnotsGridResult] = field(default=None)

    @property
    def converged(self) -> bool:
        if isinstance(self.model, DLNMGLMInterface):
            return bool(self.model.fitted_model.converged)
        return bool(self.model.converged)

    @property
    def sp(self) -> Optional[np.ndarray]:
        return getattr(self.model, 'sp', None)

    @property
    def edf(self) -> float:
        """Effective degrees of freedom of the cross-basis term."""
        if isinstance(self.model, DLNMGLMInterface):
            return float(self.crossbasis.shape[1])
        return self.model.edf_cb

    def diagnostics(self) -> Dict[str, Any]:
        return {'name': self.name, 'converged': self.converged, 'sp': self.sp, 'edf': self.edf}


def _columns(data: pd.DataFrame, config: AnalysisConfig) -> Tuple[np.ndarray, np.ndarray, pd.DataFrame]:
    for col in (config.exposure_col, config.outcome_col):
        if col not in data.columns:
            raise InvalidArgument(f"column '{col}' not found")

    x = data[config.exposure_col].to_numpy(dtype=float)
    y = data[config.outcome_col].to_numpy(dtype=float)
    covariates = seasonal_covariates(data, time_df=config.time_df,
                                     time_col=config.time_col, dow_col=config.dow_col)
    return x, y, covariates


def _predict(name: str, cb: CrossBasis, model: Any, config: AnalysisConfig,
             cen: Optional[float], grid: Optional[KnotsGridResult] = None) -> ModelResult:
    pred3d = crosspred(cb, model, at=np.asarray(config.at), cen=cen)
    predsl = crosspred(cb, model, by=config.by, bylag=config.bylag, cen=cen)
    return ModelResult(name, cb, model, pred3d, predsl, grid)


def fit_glm_apriori(data: pd.DataFrame, config: AnalysisConfig = AnalysisConfig()) -> ModelResult:
    """GLM with equally spaced temperature knots and log-spaced lag knots."""
    x, y, covariates = _columns(data, config)

    cb = apriori_crossbasis(x, config.lag, config.var_nk, config.lag_nk, var_degree=config.var_degree)
    model = fit_dlnm_model(cb, y, family='quasipoisson', other_vars=covariates)

    return _predict('glm_apriori', cb, model, config, config.cen)


def fit_glm_aic(data: pd.DataFrame, config: AnalysisConfig = AnalysisConfig()) -> ModelResult:
    """GLM with the numbers of knots selected by the quasi-AIC grid search."""
    x, y, covariates = _columns(data, config)

    grid = knots_grid_search(x, y, config.lag, other_vars=covariates,
                             var_nk=config.grid_var_nk, lag_nk=config.grid_lag_nk,
                             var_degree=config.var_degree)
    var_nk, lag_nk = grid.best

    cb = apriori_crossbasis(x, config.lag, var_nk, lag_nk, var_degree=config.var_degree)
    model = fit_dlnm_model(cb, y, family='quasipoisson', other_vars=covariates)

    return _predict('glm_aic', cb, model, config, config.cen, grid=grid)


def lag_penalties(config: AnalysisConfig) -> Sequence[np.ndarray]:
    """Doubly varying lag penalties on the P-spline lag basis of the penalized models."""
    C = OneBasis(np.arange(config.lag + 1), fun='ps', df=config.gam_k, intercept=True).basis
    return doubly_varying_lag_penalties(C, config.ridge_partition)


def _fit_penalized(name: str, data: pd.DataFrame, config: AnalysisConfig,
                   argvar: Dict[str, Any], cen: Optional[float], **penalty_args) -> ModelResult:
    x, y, covariates = _columns(data, config)
    Q, L = lag_matrix(x, config.lag)

    cb = PenalizedCrossBasis(
        Q, lagmat=L,
        argvar=argvar,
        arglag={'fun': 'ps', 'df': config.gam_k, 'intercept': True},
        **penalty_args
    )
    model = PenalizedDLNM(cb, selection_method=config.selection_method)
    model.fit(y, X_extra=covariates.to_numpy(dtype=float), family='quasipoisson')

    return _predict(name, cb, model, config, cen)


def fit_gam_default(data: pd.DataFrame, config: AnalysisConfig = AnalysisConfig()) -> ModelResult:
    """Penalized model with the default difference penalties on both dimensions."""
    return _fit_penalized('gam_default', data, config,
                          argvar={'fun': 'ps', 'df': config.gam_k},
                          cen=config.cen)


def fit_gam_doubly_varying(data: pd.DataFrame, config: AnalysisConfig = AnalysisConfig()) -> ModelResult:
    """Default exposure penalty; lag penalized by the doubly varying penalties only."""
    return _fit_penalized('gam_doubly_varying', data, config,
                          argvar={'fun': 'ps', 'df': config.gam_k},
                          cen=config.cen,
                          fx=(False, True), add_slag=lag_penalties(config))


def fit_gam_threshold(data: pd.DataFrame, config: AnalysisConfig = AnalysisConfig()) -> ModelResult:
    """Unpenalized double-threshold exposure-response with the doubly varying lag penalties."""
    return _fit_penalized('gam_threshold', data, config,
                          argvar={'fun': 'thr', 'thr_value': list(config.thresholds)},
                          cen=None,
                          fx=(False, True), add_slag=lag_penalties(config))


STRATEGIES = {
    'glm_apriori': fit_glm_apriori,
    'glm_aic': fit_glm_aic,
    'gam_default': fit_gam_default,
    'gam_doubly_varying': fit_gam_doubly_varying,
    'gam_threshold': fit_gam_threshold,
}


def run_analysis(data: pd.DataFrame,
                 config: AnalysisConfig = AnalysisConfig(),
                 strategies: Optional[Sequence[str]] = None) -> Dict[str, ModelResult]:
    """
    Fit the requested strategies (all by default) in order.

    Parameters:
    -----------
    data : pd.DataFrame
        Daily time series with exposure, outcome, time and day-of-week columns
    config : AnalysisConfig
        Analysis settings
    strategies : sequence of str, optional
        Subset of STRATEGIES to run

    Returns:
    --------
    dict
        Strategy name to ModelResult, in the requested order
    """
    if strategies is None:
        strategies = list(STRATEGIES)

    unknown = [s for s in strategies if s not in STRATEGIES]
    if unknown:
        raise InvalidArgument(f"Unknown strategies {unknown}. Available: {list(STRATEGIES)}")

    return {name: STRATEGIES[name](data, config) for name in strategies}
