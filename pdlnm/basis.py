"""
Core basis classes for pdlnm

This module contains the main OneBasis and CrossBasis classes that form the foundation
of the distributed lag non-linear modeling framework.
"""

import numpy as np
from typing import Union, Optional, Dict, Any, List, Tuple

from .basis_functions import BasisFamily, BASIS_CLASSES
from .exceptions import InvalidArgument
from .utils import mklag, seqlag, lag_matrix, logknots


class OneBasis:
    """
    One-dimensional basis function class.

    This class creates one-dimensional basis matrices for use in distributed
    lag models. The basis family is resolved once at construction and the
    resolved configuration is kept so the identical basis can be evaluated
    on new values (see ``evaluate``).

    Parameters
    ----------
    x : array-like
        Domain vector for basis transformation
    fun : str or BasisFamily, default='ns'
        Basis function type. Can be:
        - 'lin': Linear basis
        - 'poly': Polynomial basis
        - 'bs': B-spline basis
        - 'ns': Natural spline basis
        - 'ps': P-spline basis
        - 'thr': Threshold basis
    **kwargs
        Additional arguments passed to the basis function

    Attributes
    ----------
    x : np.ndarray
        Original input vector
    family : BasisFamily
        Basis family used
    basis : np.ndarray
        Generated basis matrix
    range : tuple
        Range of input values (min, max)
    attributes : dict
        Basis function attributes and parameters

    Raises
    ------
    InvalidArgument
        If the basis has more columns than distinct domain values, or if
        knots or thresholds lie outside the domain range
    """

    def __init__(self, x: Union[np.ndarray, List],
                 fun: Union[str, BasisFamily] = 'ns', **kwargs):
        self.x = np.asarray(x, dtype=float).ravel()
        self.family = BasisFamily.resolve(fun)
        self.fun = self.family.value

        x_clean = self.x[~np.isnan(self.x)]
        if len(x_clean) == 0:
            raise InvalidArgument("No valid (non-NaN) values in x")
        self.range = (float(np.min(x_clean)), float(np.max(x_clean)))

        self._check_positions(kwargs)

        self._basis_func = BASIS_CLASSES[self.family](**kwargs)
        self.basis = self._basis_func(self.x)
        self.attributes = self._basis_func.get_attributes()
        self.attributes['range'] = self.range

        n_distinct = len(np.unique(x_clean))
        if self.basis.shape[1] > n_distinct:
            raise InvalidArgument(
                f"{self.fun} basis has {self.basis.shape[1]} columns but the domain "
                f"has only {n_distinct} distinct values"
            )

        self._set_names()

    def _check_positions(self, kwargs: Dict[str, Any]):
        """Reject knots or thresholds outside the domain range."""
        positions = None
        if self.family in (BasisFamily.BS, BasisFamily.NS):
            if kwargs.get('boundary_knots') is None:
                positions = kwargs.get('knots')
        elif self.family is BasisFamily.THR:
            positions = kwargs.get('thr_value')

        if positions is None:
            return

        positions = np.atleast_1d(np.asarray(positions, dtype=float))
        low, high = self.range
        if np.any(positions < low) or np.any(positions > high):
            raise InvalidArgument(
                f"positions {positions.tolist()} lie outside the domain range ({low}, {high})"
            )

    @property
    def penalized(self) -> bool:
        """Whether the family carries a default difference penalty."""
        return self._basis_func.penalized

    def evaluate(self, x: Union[np.ndarray, List, float]) -> np.ndarray:
        """
        Evaluate the same basis (same knots, boundaries and scale) on new values.

        Parameters
        ----------
        x : array-like
            New values

        Returns
        -------
        np.ndarray
            Basis matrix with one row per value
        """
        return self._basis_func.frozen()(np.atleast_1d(x))

    def _set_names(self):
        """Set column names for the basis matrix."""
        self.colnames = [f"b{i+1}" for i in range(self.basis.shape[1])]

    def __array__(self, dtype=None, copy=None) -> np.ndarray:
        """Return the basis matrix when converted to array."""
        if dtype is not None:
            return self.basis.astype(dtype)
        return self.basis

    def __getitem__(self, key):
        return self.basis[key]

    @property
    def shape(self) -> Tuple[int, int]:
        """Return the shape of the basis matrix."""
        return self.basis.shape

    def summary(self) -> str:
        """
        Return a summary of the OneBasis object.

        Returns
        -------
        str
            Summary string
        """
        summary_lines = [
            f"OneBasis with {self.shape[1]} basis function(s)",
            f"Function: {self.fun}",
            f"Range: ({self.range[0]:.3f}, {self.range[1]:.3f})",
            f"Dimensions: {self.shape[0]} x {self.shape[1]}"
        ]

        if 'degree' in self.attributes:
            summary_lines.append(f"Degree: {self.attributes['degree']}")
        if 'knots' in self.attributes and len(self.attributes['knots']) > 0:
            summary_lines.append(f"Knots: {len(self.attributes['knots'])}")

        return "\n".join(summary_lines)

    def __repr__(self) -> str:
        return f"OneBasis(fun='{self.fun}', shape={self.shape})"

    def __str__(self) -> str:
        return self.summary()


class CrossBasis:
    """
    Cross-basis class for distributed lag models.

    This class creates cross-basis matrices by combining exposure-response and
    lag-response basis functions. For each observation i and each pair of
    exposure-basis column v and lag-basis column l, the cross-basis value is

        sum_j Bvar(Q[i, j])[v] * Blag(L[i, j])[l]

    where Q holds the lagged exposures and L the matching lag values. Columns
    are ordered with the exposure-basis index varying slower (v1.l1, v1.l2,
    ..., v2.l1, ...).

    Parameters
    ----------
    x : array-like
        Input data. Can be:
        - Vector: treated as time series and lagged internally
        - Matrix: treated as lagged exposure matrix Q
    lag : int, list, or tuple, optional
        Lag specification. If x is a vector, required. If x is a matrix,
        defaults to [0, ncol(x)-1] and must match the number of columns.
    argvar : dict, optional
        Arguments for the exposure-response basis function
    arglag : dict, optional
        Arguments for the lag-response basis function
    lagmat : array-like, optional
        Lag-index matrix L matching a matrix x. Defaults to the lag
        sequence repeated on every row.

    Attributes
    ----------
    x : np.ndarray
        Lagged exposure matrix Q
    lag : np.ndarray
        Lag range [min_lag, max_lag]
    basis : np.ndarray
        Cross-basis matrix (NaN rows where exposure history is incomplete)
    basisvar, basislag : OneBasis
        Marginal bases for the exposure and lag dimensions
    df : tuple
        Degrees of freedom for (exposure, lag) dimensions
    range : tuple
        Range of exposure values
    """

    def __init__(self,
                 x: Union[np.ndarray, List],
                 lag: Optional[Union[int, List, Tuple]] = None,
                 argvar: Optional[Dict[str, Any]] = None,
                 arglag: Optional[Dict[str, Any]] = None,
                 lagmat: Optional[np.ndarray] = None):

        x = np.asarray(x, dtype=float)

        if x.ndim == 1:
            if lag is None:
                raise InvalidArgument("lag is required when x is a time series")
            if lagmat is not None:
                raise InvalidArgument("lagmat is only accepted with a lagged exposure matrix")
            self.lag = mklag(lag)
            Q, L = lag_matrix(x, int(self.lag[1]))
            self.x = Q[:, self.lag[0]:]
            self.lagmat = L[:, self.lag[0]:]
        elif x.ndim == 2:
            if lagmat is not None:
                lagmat = np.asarray(lagmat, dtype=float)
                if lagmat.shape != x.shape:
                    raise InvalidArgument(
                        f"lagmat shape {lagmat.shape} does not match x shape {x.shape}"
                    )
                if lag is None:
                    lag = [np.nanmin(lagmat), np.nanmax(lagmat)]
            if lag is None:
                lag = [0, x.shape[1] - 1]
            self.lag = mklag(lag)

            expected_cols = int(np.diff(self.lag)[0] + 1)
            if lagmat is None and x.shape[1] != expected_cols:
                raise InvalidArgument(
                    f"x has {x.shape[1]} columns but lag range requires {expected_cols}"
                )
            self.x = x
            self.lagmat = lagmat if lagmat is not None else np.tile(seqlag(self.lag), (x.shape[0], 1))
        else:
            raise InvalidArgument(f"x must be a vector or a matrix, got {x.ndim} dimensions")

        self.argvar = dict(argvar or {})
        self.arglag = self._default_arglag(dict(arglag or {}))

        self._create_cross_basis()

        self.range = self.basisvar.range
        self._set_names()

    def _default_arglag(self, arglag: Dict[str, Any]) -> Dict[str, Any]:
        """Natural splines with log-spaced knots and an intercept by default."""
        if 'fun' not in arglag:
            if np.diff(self.lag)[0] == 0:
                raise InvalidArgument("arglag must be specified for a single-lag cross-basis")
            arglag['fun'] = 'ns'
            if 'knots' not in arglag and 'df' not in arglag:
                if np.diff(self.lag)[0] > 1:
                    arglag['knots'] = logknots(self.lag, nk=min(3, int(np.diff(self.lag)[0]) - 1))
                else:
                    arglag['fun'] = 'lin'

        if 'intercept' not in arglag:
            arglag['intercept'] = True

        return arglag

    def _create_cross_basis(self):
        """Create the cross-basis matrix as a row-wise lag convolution."""
        argvar = dict(self.argvar)
        arglag = dict(self.arglag)

        # Exposure basis over all lagged values, lag basis over the lag domain
        self.basisvar = OneBasis(self.x.ravel(), **argvar)
        self.basislag = OneBasis(np.unique(self.lagmat[~np.isnan(self.lagmat)]), **arglag)

        n_obs, n_lags = self.x.shape
        n_var_basis = self.basisvar.shape[1]
        n_lag_basis = self.basislag.shape[1]
        self.df = (n_var_basis, n_lag_basis)

        var_values = self.basisvar.basis.reshape(n_obs, n_lags, n_var_basis)
        lag_values = self.basislag.evaluate(self.lagmat.ravel()).reshape(n_obs, n_lags, n_lag_basis)

        # cb[i, v, l] = sum_j var_values[i, j, v] * lag_values[i, j, l]
        cb = np.einsum('ijv,ijl->ivl', var_values, lag_values)
        self.basis = cb.reshape(n_obs, n_var_basis * n_lag_basis)

        # Incomplete exposure history leaves the whole row undefined
        incomplete = np.isnan(self.x).any(axis=1) | np.isnan(self.lagmat).any(axis=1)
        self.basis[incomplete, :] = np.nan

    def _set_names(self):
        """Set column names for the cross-basis matrix."""
        n_var, n_lag = self.df
        self.colnames = [f"v{v+1}.l{l+1}" for v in range(n_var) for l in range(n_lag)]

    def __array__(self, dtype=None, copy=None) -> np.ndarray:
        """Return the cross-basis matrix when converted to array."""
        if dtype is not None:
            return self.basis.astype(dtype)
        return self.basis

    def __getitem__(self, key):
        return self.basis[key]

    @property
    def shape(self) -> Tuple[int, int]:
        """Return the shape of the cross-basis matrix."""
        return self.basis.shape

    @property
    def complete_rows(self) -> np.ndarray:
        """Boolean mask of rows with a complete exposure history."""
        return ~np.isnan(self.basis).any(axis=1)

    def summary(self) -> str:
        """
        Return a summary of the CrossBasis object.

        Returns
        -------
        str
            Summary string
        """
        summary_lines = [
            f"CrossBasis with {self.shape[1]} basis function(s)",
            f"Lag range: [{self.lag[0]}, {self.lag[1]}]",
            f"Dimensions: {self.shape[0]} x {self.shape[1]}",
            f"DF: var={self.df[0]}, lag={self.df[1]}",
            f"Range: ({self.range[0]:.3f}, {self.range[1]:.3f})",
            f"Var function: {self.basisvar.fun}",
            f"Lag function: {self.basislag.fun}",
        ]

        return "\n".join(summary_lines)

    def __repr__(self) -> str:
        return f"CrossBasis(lag={self.lag.tolist()}, df={self.df}, shape={self.shape})"

    def __str__(self) -> str:
        return self.summary()
