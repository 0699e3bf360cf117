"""
Prediction classes for pdlnm

This module contains classes for making predictions from distributed lag models,
including lag-specific, overall cumulative, and incremental cumulative predictions.
"""

import numpy as np
import pandas as pd
from scipy import stats
from typing import Union, Optional, List, Any, Tuple
import warnings

from .basis import OneBasis, CrossBasis
from .basis_functions import BasisFamily
from .exceptions import InvalidArgument
from .model_utils import validate_model_compatibility
from .utils import mklag, seqlag


class CrossPred:
    """
    Cross-prediction class for distributed lag models.

    This class generates predictions from distributed lag models, including
    lag-specific effects, overall cumulative effects, and confidence intervals.
    Both marginal bases are re-evaluated at the prediction points with the
    configuration resolved when the basis was built, and the exposure basis
    row at ``cen`` is subtracted, so the prediction at ``cen`` is exactly 0
    on the link scale.

    Parameters
    ----------
    basis : OneBasis or CrossBasis
        Basis object used in model fitting
    model : fitted model object, optional
        statsmodels GLM results, DLNMGLMInterface or PenalizedDLNM
    coef : array-like, optional
        Model coefficients (if model not provided)
    vcov : array-like, optional
        Variance-covariance matrix (if model not provided)
    model_link : str, optional
        Link function name
    at : array-like, optional
        Values at which to make predictions
    from_val : float, optional
        Starting value for prediction range
    to_val : float, optional
        Ending value for prediction range
    by : float, optional
        Step size for prediction range
    lag : array-like, optional
        Lag sub-period for predictions
    bylag : float, default=1.0
        Step size for lag dimension
    cen : float, optional
        Centering value. Defaults to none for 'thr' and 'lin' exposure bases
        and to the mid-range of the exposure otherwise
    ci_level : float, default=0.95
        Confidence interval level
    cumul : bool, default=False
        Whether to compute incremental cumulative effects

    Attributes
    ----------
    predvar : np.ndarray
        Prediction values for exposure dimension
    predlag : np.ndarray
        Lag values of the lag-specific predictions
    coefficients : np.ndarray
        Cross-basis coefficients
    vcov : np.ndarray
        Cross-basis variance-covariance matrix
    matfit, matse : np.ndarray
        Lag-specific effect estimates and standard errors (predvar x predlag)
    allfit, allse : np.ndarray
        Overall cumulative effect estimates and standard errors
    cumfit, cumse : np.ndarray
        Incremental cumulative effects over integer lags (if cumul)
    """

    def __init__(self,
                 basis: Union[OneBasis, CrossBasis],
                 model: Optional[Any] = None,
                 coef: Optional[np.ndarray] = None,
                 vcov: Optional[np.ndarray] = None,
                 model_link: Optional[str] = None,
                 at: Optional[np.ndarray] = None,
                 from_val: Optional[float] = None,
                 to_val: Optional[float] = None,
                 by: Optional[float] = None,
                 lag: Optional[Union[int, List, Tuple]] = None,
                 bylag: float = 1.0,
                 cen: Optional[float] = None,
                 ci_level: float = 0.95,
                 cumul: bool = False):

        self.basis_type = self._determine_basis_type(basis)
        self.basis = basis

        self.orig_lag = basis.lag if self.basis_type == 'cb' else np.array([0, 0])

        if lag is None:
            self.lag = self.orig_lag.copy()
        else:
            self.lag = mklag(lag)
            if self.lag[0] < self.orig_lag[0] or self.lag[1] > self.orig_lag[1]:
                raise InvalidArgument(
                    f"lag sub-period {self.lag.tolist()} outside the basis lag range {self.orig_lag.tolist()}"
                )

        if not np.array_equal(self.lag, self.orig_lag) and cumul:
            raise InvalidArgument("Cumulative prediction not allowed for lag sub-period")

        if bylag <= 0:
            raise InvalidArgument("bylag must be positive")

        if model is None and (coef is None or vcov is None):
            raise InvalidArgument("Either 'model' or both 'coef' and 'vcov' must be provided")

        if not (0 < ci_level < 1):
            raise InvalidArgument("ci_level must be between 0 and 1")

        basis_ncol = basis.shape[1]

        if model is not None:
            model_info = validate_model_compatibility(model, basis_ncol, "basis")
            coef, vcov = self._select_basis_terms(model, model_info['coef'], model_info['vcov'])
            self.model_link = model_link or model_info['link']
            self.model_class = model_info['class']
        else:
            coef = np.asarray(coef, dtype=float)
            vcov = np.asarray(vcov, dtype=float)
            self.model_link = model_link
            self.model_class = 'Unknown'

        if len(coef) < basis_ncol:
            raise InvalidArgument(f"Coefficients length ({len(coef)}) < basis columns ({basis_ncol})")

        if vcov.shape[0] < basis_ncol or vcov.shape[1] < basis_ncol:
            raise InvalidArgument(f"Variance-covariance matrix shape {vcov.shape} too small for basis")

        self.coefficients = coef[:basis_ncol]
        self.vcov = vcov[:basis_ncol, :basis_ncol]

        self.bylag = bylag
        self.ci_level = ci_level
        self.cumul = cumul

        self.predvar, self.cen = self._setup_predictions(at, from_val, to_val, by, cen)

        self._generate_predictions()

    def _determine_basis_type(self, basis) -> str:
        """Determine the type of basis object."""
        if isinstance(basis, CrossBasis):
            return 'cb'
        elif isinstance(basis, OneBasis):
            return 'one'
        else:
            raise InvalidArgument("basis must be OneBasis or CrossBasis")

    def _select_basis_terms(self, model, coef: np.ndarray, vcov: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Locate the basis terms among the model coefficients."""
        if getattr(model, 'cb_coef', None) is not None:
            return coef, vcov

        # statsmodels results fitted on a DataFrame carry column labels
        params = getattr(model, 'params', None)
        if not isinstance(params, pd.Series):
            return coef, vcov

        colnames = list(self.basis.colnames)
        # DLNMGLMInterface labels the cross-basis columns with a "cb." prefix
        for names in (colnames, [f"cb.{name}" for name in colnames]):
            if set(names) <= set(params.index):
                idx = [params.index.get_loc(name) for name in names]
                return coef[idx], vcov[np.ix_(idx, idx)]

        raise InvalidArgument(
            f"model parameters {list(params.index)} do not include the basis terms "
            f"{colnames[:3]}...; pass coef and vcov explicitly"
        )

    def _marginal_var(self) -> OneBasis:
        return self.basis.basisvar if self.basis_type == 'cb' else self.basis

    def _setup_predictions(self, at, from_val, to_val, by, cen) -> Tuple[np.ndarray, Optional[float]]:
        """Setup prediction values and centering."""

        range_vals = self.basis.range

        if at is not None:
            predvar = np.sort(np.unique(np.asarray(at, dtype=float)))
        elif from_val is not None or to_val is not None or by is not None:
            start = from_val if from_val is not None else range_vals[0]
            end = to_val if to_val is not None else range_vals[1]
            step = by if by is not None else (end - start) / 50
            if step <= 0:
                raise InvalidArgument("by must be positive")
            n_steps = int(np.floor((end - start) / step + 1e-10))
            predvar = start + step * np.arange(n_steps + 1)
        else:
            predvar = np.linspace(range_vals[0], range_vals[1], 51)

        if cen is None:
            family = self._marginal_var().family
            if family not in (BasisFamily.THR, BasisFamily.LIN):
                cen = (range_vals[0] + range_vals[1]) / 2
                warnings.warn(
                    f"centering value unspecified. Automatically set to {cen:g}"
                )

        return predvar, cen

    def _var_matrix(self, predvar: np.ndarray) -> np.ndarray:
        """Exposure basis at the prediction values, centered at cen."""
        var_basis = self._marginal_var().evaluate(predvar)
        if self.cen is not None:
            var_basis = var_basis - self._marginal_var().evaluate([self.cen])
        return var_basis

    def _generate_predictions(self):
        """Generate all predictions."""

        self.predlag = seqlag(self.lag, self.bylag)
        var_basis = self._var_matrix(self.predvar)
        n_var = len(self.predvar)

        if self.basis_type == 'cb':
            lag_basis = self.basis.basislag.evaluate(self.predlag)
            n_lag = len(self.predlag)

            # Row (x, l) is Bvar(x) (x) Blag(l), matching the cross-basis column order
            Xpred = np.einsum('iv,jl->ijvl', var_basis, lag_basis).reshape(n_var * n_lag, -1)
            self._check_design(Xpred)

            self.matfit, self.matse = self._linear_map(Xpred)
            self.matfit = self.matfit.reshape(n_var, n_lag)
            self.matse = self.matse.reshape(n_var, n_lag)
        else:
            self.predlag = np.array([0.0])
            self.matfit, self.matse = self._linear_map(var_basis)
            self.matfit = self.matfit.reshape(n_var, 1)
            self.matse = self.matse.reshape(n_var, 1)

        self.predvar_names = [f"{v:g}" for v in self.predvar]
        self.lag_names = [f"lag{l:g}" for l in self.predlag]

        self._generate_overall_predictions(var_basis)

        self._generate_confidence_intervals()

    def _check_design(self, X: np.ndarray):
        if X.shape[1] != len(self.coefficients):
            raise InvalidArgument(
                f"prediction matrix has {X.shape[1]} columns but the basis has "
                f"{len(self.coefficients)} coefficients"
            )

    def _linear_map(self, X: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        fit = np.matmul(X, self.coefficients)
        var = np.sum(np.matmul(X, self.vcov) * X, axis=1)
        return fit, np.sqrt(np.maximum(0, var))

    def _generate_overall_predictions(self, var_basis: np.ndarray):
        """Generate overall cumulative predictions over integer lags."""

        if self.basis_type != 'cb':
            self.allfit = self.matfit[:, 0].copy()
            self.allse = self.matse[:, 0].copy()
            return

        n_var = len(self.predvar)
        predlag_int = seqlag(self.lag)
        lag_basis = self.basis.basislag.evaluate(predlag_int)

        if self.cumul:
            cum_lag = np.cumsum(lag_basis, axis=0)
            self.cumfit = np.zeros((n_var, len(predlag_int)))
            self.cumse = np.zeros((n_var, len(predlag_int)))
            for i in range(len(predlag_int)):
                Xcum = np.kron(var_basis, cum_lag[i:i + 1, :])
                self.cumfit[:, i], self.cumse[:, i] = self._linear_map(Xcum)

        Xall = np.kron(var_basis, lag_basis.sum(axis=0, keepdims=True))
        self._check_design(Xall)
        self.allfit, self.allse = self._linear_map(Xall)

    def _generate_confidence_intervals(self):
        """Generate confidence intervals for all predictions."""

        self.z_score = stats.norm.ppf(1 - (1 - self.ci_level) / 2)
        z_score = self.z_score

        self.matlow = self.matfit - z_score * self.matse
        self.mathigh = self.matfit + z_score * self.matse

        self.alllow = self.allfit - z_score * self.allse
        self.allhigh = self.allfit + z_score * self.allse

        if self.cumul:
            self.cumlow = self.cumfit - z_score * self.cumse
            self.cumhigh = self.cumfit + z_score * self.cumse

        # Relative risks / odds ratios for log and logit links
        if self.model_link in ('log', 'logit'):
            self.matRRfit = np.exp(self.matfit)
            self.matRRlow = np.exp(self.matlow)
            self.matRRhigh = np.exp(self.mathigh)

            self.allRRfit = np.exp(self.allfit)
            self.allRRlow = np.exp(self.alllow)
            self.allRRhigh = np.exp(self.allhigh)

            if self.cumul:
                self.cumRRfit = np.exp(self.cumfit)
                self.cumRRlow = np.exp(self.cumlow)
                self.cumRRhigh = np.exp(self.cumhigh)

    def to_frame(self) -> pd.DataFrame:
        """
        Lag-specific predictions as a long-format DataFrame.

        Returns
        -------
        pd.DataFrame
            Columns exposure, lag, fit, se, low, high, plus RR, RR_low and
            RR_high for log and logit links
        """
        n_var, n_lag = self.matfit.shape
        frame = pd.DataFrame({
            'exposure': np.repeat(self.predvar, n_lag),
            'lag': np.tile(self.predlag, n_var),
            'fit': self.matfit.ravel(),
            'se': self.matse.ravel(),
            'low': self.matlow.ravel(),
            'high': self.mathigh.ravel(),
        })

        if self.model_link in ('log', 'logit'):
            frame['RR'] = self.matRRfit.ravel()
            frame['RR_low'] = self.matRRlow.ravel()
            frame['RR_high'] = self.matRRhigh.ravel()

        return frame

    def summary(self) -> str:
        """
        Return a summary of the CrossPred object.

        Returns
        -------
        str
            Summary string
        """
        summary_lines = [
            "CrossPred object",
            f"Basis type: {self.basis_type}",
            f"Model class: {self.model_class}",
            f"Link function: {self.model_link or 'identity'}",
            f"Prediction values: {len(self.predvar)} points",
            f"Lag range: [{self.lag[0]}, {self.lag[1]}], by {self.bylag:g}",
            f"Confidence level: {self.ci_level:.0%}",
        ]

        if self.cen is not None:
            summary_lines.append(f"Centered at: {self.cen}")

        if self.cumul:
            summary_lines.append("Includes cumulative effects")

        return "\n".join(summary_lines)

    def __repr__(self) -> str:
        return f"CrossPred(basis_type='{self.basis_type}', predvar={len(self.predvar)}, lag={self.lag.tolist()})"

    def __str__(self) -> str:
        return self.summary()


def crosspred(basis: Union[OneBasis, CrossBasis],
              model: Optional[Any] = None,
              coef: Optional[np.ndarray] = None,
              vcov: Optional[np.ndarray] = None,
              at: Optional[np.ndarray] = None,
              from_val: Optional[float] = None,
              to_val: Optional[float] = None,
              by: Optional[float] = None,
              lag: Optional[Union[int, List, Tuple]] = None,
              bylag: float = 1.0,
              cen: Optional[float] = None,
              ci_level: float = 0.95,
              cumul: bool = False,
              model_link: Optional[str] = None) -> CrossPred:
    """
    Create cross-predictions from distributed lag models.

    Parameters
    ----------
    basis : OneBasis or CrossBasis
        The basis object used in model fitting
    model : fitted model object, optional
        statsmodels GLM results, DLNMGLMInterface or PenalizedDLNM
    coef, vcov : array-like, optional
        Basis coefficients and their covariance, used when model is None
    at : array-like, optional
        Specific values at which to make predictions
    from_val, to_val, by : float, optional
        Prediction range and step
    lag : int, list, or tuple, optional
        Lag sub-period for predictions
    bylag : float, default=1.0
        Step size for lag dimension
    cen : float, optional
        Centering value for predictions
    ci_level : float, default=0.95
        Confidence interval level
    cumul : bool, default=False
        Whether to compute cumulative effects
    model_link : str, optional
        Link function, required for relative risks when only coef/vcov
        are given

    Returns
    -------
    crosspred : CrossPred
        Cross-prediction object with fitted values, standard errors,
        and confidence intervals

    Examples
    --------
    >>> from pdlnm import CrossBasis, crosspred, fit_dlnm_model
    >>> cb = CrossBasis(temp, lag=25, argvar={'fun': 'bs', 'degree': 2})
    >>> model = fit_dlnm_model(cb, deaths)
    >>> pred = crosspred(cb, model, by=0.2, bylag=0.2, cen=20)
    >>> print(pred.summary())
    """

    return CrossPred(
        basis=basis,
        model=model,
        coef=coef,
        vcov=vcov,
        model_link=model_link,
        at=at,
        from_val=from_val,
        to_val=to_val,
        by=by,
        lag=lag,
        bylag=bylag,
        cen=cen,
        ci_level=ci_level,
        cumul=cumul,
    )
