"""
GLM integration for pdlnm

This module provides interfaces between CrossBasis matrices and statsmodels GLMs,
enabling proper fitting and coefficient extraction for DLNM analysis, and the
seasonality covariates used alongside the cross-basis in time series models.
"""

import numpy as np
import pandas as pd
import statsmodels.api as sm
import statsmodels.genmod.families as families
from typing import Optional, Tuple, Union
import warnings

from .basis import CrossBasis
from .exceptions import InvalidArgument, SingularMatrixWarning
from .splines import ns_basis


class DLNMGLMInterface:
    """
    Interface between CrossBasis and statsmodels GLMs.

    The design matrix is [intercept, cross-basis, other covariates]. Rows with
    an incomplete exposure history or missing values are excluded before
    fitting. Quasi-Poisson models are fitted as Poisson GLMs with the scale
    estimated by the Pearson chi-squared statistic.

    Parameters
    ----------
    crossbasis : CrossBasis
        The cross-basis matrix object
    """

    _FAMILIES = {
        'poisson': ('log', families.Poisson),
        'quasipoisson': ('log', families.Poisson),
        'gaussian': ('identity', families.Gaussian),
    }

    def __init__(self, crossbasis: CrossBasis):
        self.crossbasis = crossbasis
        self.model = None
        self.fitted_model = None
        self.family = None
        self.model_link = None
        self.cb_coef = None
        self.cb_vcov = None

    def fit_statsmodels(self,
                        y: np.ndarray,
                        family: str = 'quasipoisson',
                        other_vars: Optional[Union[np.ndarray, pd.DataFrame]] = None,
                        offset: Optional[np.ndarray] = None,
                        **kwargs):
        """
        Fit GLM using statsmodels with cross-basis matrix.

        Parameters
        ----------
        y : array-like
            Response variable (e.g., mortality counts)
        family : str, default='quasipoisson'
            GLM family: 'poisson', 'quasipoisson' or 'gaussian'
        other_vars : array-like or DataFrame, optional
            Additional covariates (e.g., seasonality, day of week)
        offset : array-like, optional
            Offset term (e.g., log population)
        **kwargs
            Additional arguments passed to GLM

        Returns
        -------
        fitted_model : statsmodels GLMResults
            Fitted GLM results
        """
        if family not in self._FAMILIES:
            raise InvalidArgument(f"Unknown family: {family}. Choose from {list(self._FAMILIES)}")

        y = np.asarray(y, dtype=float).ravel()
        cb_matrix = np.asarray(self.crossbasis.basis)
        if len(y) != cb_matrix.shape[0]:
            raise InvalidArgument(
                f"y has {len(y)} values but the cross-basis has {cb_matrix.shape[0]} rows"
            )

        cb_frame = pd.DataFrame(cb_matrix, columns=[f"cb.{name}" for name in self.crossbasis.colnames])
        frames = [cb_frame]

        if other_vars is not None:
            if isinstance(other_vars, pd.DataFrame):
                other = other_vars.reset_index(drop=True).astype(float)
            else:
                other = np.asarray(other_vars, dtype=float)
                if other.ndim == 1:
                    other = other.reshape(-1, 1)
                other = pd.DataFrame(other, columns=[f"x{i + 1}" for i in range(other.shape[1])])
            if len(other) != len(y):
                raise InvalidArgument("other_vars must have one row per observation")
            frames.append(other)

        X = sm.add_constant(pd.concat(frames, axis=1), has_constant='add')

        # Exclude rows with missing values, as na.exclude does
        nan_mask = X.isna().any(axis=1).to_numpy() | np.isnan(y)
        X_clean = X.loc[~nan_mask]
        y_clean = y[~nan_mask]
        if offset is not None:
            offset = np.asarray(offset, dtype=float)[~nan_mask]

        self.excluded_observations = nan_mask
        self.n_excluded = int(nan_mask.sum())

        rank = np.linalg.matrix_rank(X_clean.to_numpy())
        if rank < X_clean.shape[1]:
            warnings.warn(
                f"design matrix is rank deficient (rank {rank} of {X_clean.shape[1]})",
                SingularMatrixWarning
            )

        link, family_class = self._FAMILIES[family]
        self.model = sm.GLM(y_clean, X_clean, family=family_class(), offset=offset, **kwargs)

        # Quasi-Poisson: dispersion from the Pearson statistic, as in R
        if family == 'quasipoisson':
            fitted_model = self.model.fit(scale='X2')
        else:
            fitted_model = self.model.fit()

        self.family = family
        self.model_link = link
        self.fitted_model = fitted_model
        self.dispersion = float(fitted_model.scale)

        self._extract_cb_coefficients(fitted_model, cb_matrix.shape[1])

        return fitted_model

    def _extract_cb_coefficients(self, fitted_model, n_cb_terms: int):
        """Extract cross-basis coefficients and variance-covariance matrix."""
        # Skip intercept (first coefficient)
        cb_index = slice(1, 1 + n_cb_terms)
        self.cb_coef = np.asarray(fitted_model.params)[cb_index]
        self.cb_vcov = np.asarray(fitted_model.cov_params())[cb_index, cb_index]

    def get_crossbasis_coefficients(self) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
        """
        Extract cross-basis coefficients and variance-covariance matrix.

        Returns
        -------
        coef : np.ndarray or None
            Cross-basis coefficients
        vcov : np.ndarray or None
            Cross-basis variance-covariance matrix
        """
        return self.cb_coef, self.cb_vcov

    @property
    def y(self) -> np.ndarray:
        """Response of the rows used in fitting."""
        return np.asarray(self.fitted_model.model.endog)

    @property
    def fitted_values(self) -> np.ndarray:
        """Fitted means of the rows used in fitting."""
        return np.asarray(self.fitted_model.fittedvalues)

    def predict(self, newdata: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Make predictions using the fitted model.

        Parameters
        ----------
        newdata : array-like, optional
            New design matrix without the intercept column. If None, returns
            the fitted values.

        Returns
        -------
        predictions : np.ndarray
            Model predictions on the response scale
        """
        if self.fitted_model is None:
            raise InvalidArgument("No model has been fitted yet")

        if newdata is None:
            return self.fitted_values

        newdata = sm.add_constant(np.asarray(newdata, dtype=float), has_constant='add')
        return np.asarray(self.fitted_model.predict(newdata))

    def summary(self) -> str:
        """Return a summary of the fitted model."""
        if self.fitted_model is None:
            return "No model fitted yet"

        return str(self.fitted_model.summary())


def seasonal_covariates(data: pd.DataFrame,
                        time_df: int = 140,
                        time_col: str = 'time',
                        dow_col: Optional[str] = 'dow') -> pd.DataFrame:
    """
    Seasonality and day-of-week covariates for time series models.

    Parameters:
    -----------
    data : pd.DataFrame
        Time series with a time index column and, optionally, day of week
    time_df : int, default 140
        Degrees of freedom of the natural spline of time
        (10 per year for 14 years of daily data)
    time_col : str, default 'time'
        Column holding the time index
    dow_col : str or None, default 'dow'
        Column holding the day of week; None to skip the indicators

    Returns:
    --------
    pd.DataFrame
        Natural spline columns ns1..nsK followed by treatment-coded
        day-of-week indicators (first level as reference)
    """
    if time_col not in data.columns:
        raise InvalidArgument(f"column '{time_col}' not found")

    time = data[time_col].to_numpy(dtype=float)
    spline, _ = ns_basis(time, df=time_df)
    covariates = pd.DataFrame(spline, columns=[f"ns{i + 1}" for i in range(spline.shape[1])],
                              index=data.index)

    if dow_col is not None:
        if dow_col not in data.columns:
            raise InvalidArgument(f"column '{dow_col}' not found")
        dow = pd.get_dummies(data[dow_col].astype('category'), prefix='dow',
                             drop_first=True, dtype=float)
        covariates = pd.concat([covariates, dow], axis=1)

    return covariates


def fit_dlnm_model(crossbasis: CrossBasis,
                   y: np.ndarray,
                   family: str = 'quasipoisson',
                   other_vars: Optional[Union[np.ndarray, pd.DataFrame]] = None,
                   **kwargs) -> DLNMGLMInterface:
    """
    Convenience function to fit a DLNM model.

    Parameters
    ----------
    crossbasis : CrossBasis
        The cross-basis matrix
    y : array-like
        Response variable
    family : str, default='quasipoisson'
        GLM family
    other_vars : array-like or DataFrame, optional
        Additional covariates
    **kwargs
        Additional arguments passed to the GLM

    Returns
    -------
    dlnm_interface : DLNMGLMInterface
        Fitted DLNM interface object
    """
    interface = DLNMGLMInterface(crossbasis)
    interface.fit_statsmodels(y, family=family, other_vars=other_vars, **kwargs)
    return interface
