"""
Model selection for pdlnm

Quasi-AIC for quasi-Poisson DLNMs and the grid search over the number of
knots of the exposure-response and lag-response bases.
"""

import numpy as np
import pandas as pd
from scipy import stats
from typing import Any, Iterable, Optional, Union

from .basis import CrossBasis
from .exceptions import InvalidArgument
from .glm_integration import DLNMGLMInterface, fit_dlnm_model
from .utils import equalknots, logknots


def qaic(model: Any) -> float:
    """
    Quasi-likelihood Akaike information criterion.

    QAIC = -2 * sum(log Poisson pmf(y | mu)) + 2 * k * phi, where k is the
    number of estimated coefficients and phi the Pearson dispersion.

    Parameters
    ----------
    model : DLNMGLMInterface or statsmodels GLMResults
        Fitted quasi-Poisson model

    Returns
    -------
    float
        QAIC value (lower is better)
    """
    results = model.fitted_model if isinstance(model, DLNMGLMInterface) else model

    y = np.asarray(results.model.endog, dtype=float)
    mu = np.asarray(results.fittedvalues, dtype=float)
    k = len(np.asarray(results.params))
    phi = float(results.scale)

    # dpois on non-integer counts is -inf in R; the counts here are integers
    loglik = np.sum(stats.poisson.logpmf(np.round(y), mu))

    return float(-2 * loglik + 2 * k * phi)


class KnotsGridResult:
    """
    Result of a knots grid search.

    Attributes
    ----------
    table : pd.DataFrame
        One row per grid cell with columns var_nk, lag_nk and qaic, in
        evaluation order
    best : tuple
        (var_nk, lag_nk) with the lowest QAIC; ties resolve to the first
        cell in evaluation order
    best_qaic : float
        QAIC of the best cell
    """

    def __init__(self, table: pd.DataFrame):
        self.table = table
        best_row = table.loc[table['qaic'].idxmin()]
        self.best = (int(best_row['var_nk']), int(best_row['lag_nk']))
        self.best_qaic = float(best_row['qaic'])

    def __repr__(self) -> str:
        return f"KnotsGridResult(best={self.best}, qaic={self.best_qaic:.3f}, cells={len(self.table)})"


def apriori_crossbasis(x: np.ndarray, lag: int, var_nk: int, lag_nk: int,
                       var_degree: int = 2) -> CrossBasis:
    """
    Cross-basis with a quadratic B-spline on equally spaced exposure knots and
    a natural spline on log-spaced lag knots.
    """
    var_knots = equalknots(x, nk=var_nk)
    lag_knots = logknots(lag, nk=lag_nk)
    return CrossBasis(
        x, lag=lag,
        argvar={'fun': 'bs', 'degree': var_degree, 'knots': var_knots},
        arglag={'knots': lag_knots},
    )


def knots_grid_search(x: np.ndarray,
                      y: np.ndarray,
                      lag: int,
                      other_vars: Optional[Union[np.ndarray, pd.DataFrame]] = None,
                      var_nk: Iterable[int] = range(1, 9),
                      lag_nk: Iterable[int] = range(1, 9),
                      var_degree: int = 2) -> KnotsGridResult:
    """
    Select the number of knots by minimizing the quasi-AIC.

    Every (var_nk, lag_nk) cell is fitted independently with a quasi-Poisson
    GLM; cells are evaluated with var_nk varying fastest.

    Parameters:
    -----------
    x : array-like
        Exposure series
    y : array-like
        Count outcome
    lag : int
        Maximum lag
    other_vars : array-like or DataFrame, optional
        Confounder covariates shared by every cell
    var_nk, lag_nk : iterable of int, default 1..8
        Candidate numbers of knots of each dimension
    var_degree : int, default 2
        Degree of the exposure-response B-spline

    Returns:
    --------
    KnotsGridResult
        Per-cell QAIC table and the arg-min cell
    """
    var_nk = list(var_nk)
    lag_nk = list(lag_nk)
    if not var_nk or not lag_nk:
        raise InvalidArgument("grid ranges must not be empty")

    rows = []
    for j in lag_nk:
        for i in var_nk:
            cb = apriori_crossbasis(x, lag, i, j, var_degree=var_degree)
            model = fit_dlnm_model(cb, y, family='quasipoisson', other_vars=other_vars)
            rows.append({'var_nk': i, 'lag_nk': j, 'qaic': qaic(model)})

    return KnotsGridResult(pd.DataFrame(rows))
