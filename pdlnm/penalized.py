"""
Penalized DLNM framework for pdlnm

Implements penalized distributed lag non-linear models with smoothing
penalties for both exposure-response and lag-response dimensions,
following the methodology of Gasparrini, Scheipl, Armstrong & Kenward (2017).
"""

import numpy as np
from scipy import linalg, optimize
from scipy.special import xlogy
from typing import Optional, Union, Dict, Tuple, Any, List, Sequence
import warnings

from .basis import CrossBasis
from .exceptions import (
    InvalidArgument, NumericalNonConvergence,
    ConvergenceWarning, SingularMatrixWarning,
)
from .penalties import check_penalty, expand_penalty, pspline_penalty


class PenalizedCrossBasis(CrossBasis):
    """
    Penalized cross-basis for smooth DLNM models

    Extends CrossBasis with an ordered list of penalty matrices in the
    cross-basis coefficient space. By default both dimensions use P-spline
    bases with 10 columns and a second-order difference penalty.

    Parameters:
    -----------
    x, lag, argvar, arglag, lagmat :
        As in CrossBasis. argvar and arglag default to
        {'fun': 'ps', 'df': 10}
    fx : tuple of bool, default (False, False)
        Drop the default penalty of the (exposure, lag) dimension
    add_svar : list of array-like, optional
        Additional penalties on the exposure basis coefficients
    add_slag : list of array-like, optional
        Additional penalties on the lag basis coefficients
    """

    def __init__(self, x, lag=None,
                 argvar: Optional[Dict[str, Any]] = None,
                 arglag: Optional[Dict[str, Any]] = None,
                 lagmat: Optional[np.ndarray] = None,
                 fx: Tuple[bool, bool] = (False, False),
                 add_svar: Optional[Sequence[np.ndarray]] = None,
                 add_slag: Optional[Sequence[np.ndarray]] = None):

        argvar = dict(argvar or {'fun': 'ps', 'df': 10})
        arglag = dict(arglag or {'fun': 'ps', 'df': 10})

        super().__init__(x, lag, argvar, arglag, lagmat=lagmat)

        if len(fx) != 2:
            raise InvalidArgument("fx must have one flag per dimension")
        self.fx = tuple(bool(f) for f in fx)

        self._create_penalty_matrices(list(add_svar or []), list(add_slag or []))

        self.penalized = True

    def _create_penalty_matrices(self, add_svar: List[np.ndarray], add_slag: List[np.ndarray]):
        """Create the ordered list of full-size penalty matrices"""

        n_var, n_lag = self.df
        self.penalties = []
        self.penalty_names = []

        if not self.fx[0] and self.basisvar.penalized:
            S = pspline_penalty(n_var, order=self.basisvar.attributes['diff'],
                                intercept=self.basisvar.attributes['intercept'])
            self._add_penalty('var', expand_penalty(S, n_var, n_lag, margin='var'))

        for i, S in enumerate(add_svar, start=1):
            check_penalty(S)
            self._add_penalty(f'var.add{i}', expand_penalty(S, n_var, n_lag, margin='var'))

        if not self.fx[1] and self.basislag.penalized:
            S = pspline_penalty(n_lag, order=self.basislag.attributes['diff'],
                                intercept=self.basislag.attributes['intercept'])
            self._add_penalty('lag', expand_penalty(S, n_var, n_lag, margin='lag'))

        for i, S in enumerate(add_slag, start=1):
            check_penalty(S)
            self._add_penalty(f'lag.add{i}', expand_penalty(S, n_var, n_lag, margin='lag'))

    def _add_penalty(self, name: str, S: np.ndarray):
        self.penalty_names.append(name)
        self.penalties.append(S)

    def get_penalty_matrix(self, sp: Optional[Sequence[float]] = None) -> np.ndarray:
        """Weighted sum of the penalties (unit weights by default)"""
        n_coef = self.shape[1]
        if sp is None:
            sp = np.ones(len(self.penalties))
        if len(sp) != len(self.penalties):
            raise InvalidArgument(f"expected {len(self.penalties)} smoothing parameters, got {len(sp)}")

        total = np.zeros((n_coef, n_coef))
        for weight, S in zip(sp, self.penalties):
            total += weight * S
        return total

    def summary(self) -> str:
        lines = [super().summary(), f"Penalties: {', '.join(self.penalty_names) or 'none'}"]
        return "\n".join(lines)


class PenalizedDLNM:
    """
    Penalized DLNM model with automatic smoothing parameter selection

    Fits the cross-basis plus an intercept and unpenalized covariates by
    penalized iteratively re-weighted least squares, with one smoothing
    parameter per penalty of the basis. Smoothing parameters are selected
    by minimizing GCV or UBRE on the log scale.

    Parameters:
    -----------
    basis : PenalizedCrossBasis
        Penalized cross-basis object
    selection_method : str, default 'gcv'
        Smoothing parameter criterion: 'gcv' or 'ubre'
    optimizer : str, default 'nelder-mead'
        'nelder-mead', 'bfgs' or 'l-bfgs-b'
    """

    _FAMILIES = {'gaussian': 'identity', 'poisson': 'log', 'quasipoisson': 'log'}
    _LOG_SP_BOUNDS = (-15.0, 15.0)

    def __init__(self, basis: PenalizedCrossBasis,
                 selection_method: str = 'gcv',
                 optimizer: str = 'nelder-mead'):

        if selection_method not in ('gcv', 'ubre'):
            raise InvalidArgument("selection_method must be 'gcv' or 'ubre'")
        if optimizer not in ('nelder-mead', 'bfgs', 'l-bfgs-b'):
            raise InvalidArgument("optimizer must be 'nelder-mead', 'bfgs' or 'l-bfgs-b'")

        self.basis = basis
        self.selection_method = selection_method
        self.optimizer = optimizer

        # Model results
        self.coefficients = None
        self.fitted_values = None
        self.vcov = None
        self.sp = None
        self.converged = False

        self.selection_results = {}

    def fit(self, y: np.ndarray,
            X_extra: Optional[np.ndarray] = None,
            family: str = 'quasipoisson',
            initial_sp: Optional[Sequence[float]] = None,
            sp: Optional[Sequence[float]] = None,
            max_iter: int = 100,
            tol: float = 1e-8,
            sp_max_iter: int = 500,
            strict: bool = False) -> 'PenalizedDLNM':
        """
        Fit penalized DLNM model

        Parameters:
        -----------
        y : array-like
            Response vector (counts for Poisson families)
        X_extra : array-like, optional
            Additional unpenalized covariates (an intercept is always added)
        family : str, default 'quasipoisson'
            'gaussian', 'poisson' or 'quasipoisson'
        initial_sp : sequence, optional
            Starting smoothing parameters, one per penalty
        sp : sequence, optional
            Fixed smoothing parameters, one per penalty; skips selection
        max_iter : int, default 100
            Maximum PIRLS iterations
        tol : float, default 1e-8
            Relative convergence tolerance on the penalized deviance
        sp_max_iter : int, default 500
            Maximum iterations of the smoothing parameter search
        strict : bool, default False
            Raise NumericalNonConvergence instead of warning

        Returns:
        --------
        self : PenalizedDLNM
            Fitted model object
        """
        if family not in self._FAMILIES:
            raise InvalidArgument(f"Unknown family: {family}. Choose from {list(self._FAMILIES)}")

        y = np.asarray(y, dtype=float).ravel()
        X_basis = np.asarray(self.basis.basis)
        if len(y) != X_basis.shape[0]:
            raise InvalidArgument(f"y has {len(y)} values but the basis has {X_basis.shape[0]} rows")

        if X_extra is not None:
            X_extra = np.asarray(X_extra, dtype=float)
            if X_extra.ndim == 1:
                X_extra = X_extra.reshape(-1, 1)
            if X_extra.shape[0] != len(y):
                raise InvalidArgument("X_extra must have one row per observation")
            X_full = np.column_stack([X_basis, np.ones(len(y)), X_extra])
        else:
            X_full = np.column_stack([X_basis, np.ones(len(y))])

        # Drop rows with incomplete exposure history or missing values
        complete = ~np.isnan(X_full).any(axis=1) & ~np.isnan(y)
        self.complete_rows = complete
        self.X = X_full[complete]
        self.y = y[complete]
        self.family = family
        self.model_link = self._FAMILIES[family]
        self.max_iter = max_iter
        self.tol = tol

        if family != 'gaussian' and np.any(self.y < 0):
            raise InvalidArgument("Poisson families require non-negative responses")

        self.n_cb = X_basis.shape[1]
        n_coef = self.X.shape[1]

        rank = np.linalg.matrix_rank(self.X)
        if rank < n_coef:
            warnings.warn(
                f"design matrix is rank deficient (rank {rank} of {n_coef}); "
                "penalized estimation proceeds", SingularMatrixWarning
            )

        self.penalties = self._scaled_penalties(n_coef)
        self._beta = None

        if self.penalties and sp is not None:
            if len(sp) != len(self.penalties):
                raise InvalidArgument(
                    f"expected {len(self.penalties)} smoothing parameters, got {len(sp)}"
                )
            self.sp = np.asarray(sp, dtype=float)
            self.selection_results = {'converged': True, 'method': 'fixed'}
        elif self.penalties:
            if initial_sp is None:
                initial_sp = np.ones(len(self.penalties))
            if len(initial_sp) != len(self.penalties):
                raise InvalidArgument(
                    f"expected {len(self.penalties)} initial smoothing parameters, got {len(initial_sp)}"
                )
            self.sp = self._select_smoothing_parameters(np.asarray(initial_sp, dtype=float), sp_max_iter)
        else:
            self.sp = np.array([])
            self.selection_results = {'converged': True, 'method': None}

        self._fit_with_fixed_penalties(self.sp)

        self.converged = bool(self.pirls_converged and self.selection_results['converged'])
        if not self.converged:
            if strict:
                self.check_convergence()
            warnings.warn(
                f"penalized fit did not converge (PIRLS: {self.pirls_converged}, "
                f"smoothing parameters: {self.selection_results['converged']}); sp={self.sp}",
                ConvergenceWarning
            )

        return self

    def _scaled_penalties(self, n_coef: int) -> List[np.ndarray]:
        """Embed penalties in the full coefficient space, scaled to the design"""
        X_cb = self.X[:, :self.n_cb]
        ma_xx = np.linalg.norm(X_cb, ord=np.inf) ** 2
        self.penalty_scale = []

        scaled = []
        for S in self.basis.penalties:
            norm_s = np.linalg.norm(S, ord=1)
            scale = ma_xx / norm_s if norm_s > 0 else 1.0
            full = np.zeros((n_coef, n_coef))
            full[:self.n_cb, :self.n_cb] = S * scale
            scaled.append(full)
            self.penalty_scale.append(scale)

        return scaled

    def _total_penalty(self, sp: np.ndarray) -> np.ndarray:
        n_coef = self.X.shape[1]
        total = np.zeros((n_coef, n_coef))
        for weight, S in zip(sp, self.penalties):
            total += weight * S
        return total

    def _linkinv(self, eta: np.ndarray) -> np.ndarray:
        if self.model_link == 'log':
            return np.exp(np.clip(eta, -700, 700))
        return eta

    def _deviance(self, mu: np.ndarray) -> float:
        if self.model_link == 'log':
            return float(2 * np.sum(xlogy(self.y, self.y) - xlogy(self.y, mu) - (self.y - mu)))
        return float(np.sum((self.y - mu) ** 2))

    def _solve(self, A: np.ndarray, rhs: np.ndarray) -> np.ndarray:
        try:
            return linalg.cho_solve(linalg.cho_factor(A), rhs)
        except linalg.LinAlgError:
            warnings.warn("penalized system is singular; using least squares", SingularMatrixWarning)
            return linalg.lstsq(A, rhs)[0]

    def _pirls(self, S_total: np.ndarray) -> Dict[str, Any]:
        """Penalized iteratively re-weighted least squares for fixed penalties"""
        X, y = self.X, self.y

        if self._beta is not None:
            beta = self._beta
            eta = X @ beta
        else:
            beta = None
            eta = np.log(y + 0.1) if self.model_link == 'log' else y.copy()
        mu = self._linkinv(eta)

        pen_dev = np.inf
        converged = False

        for iteration in range(1, self.max_iter + 1):
            if self.model_link == 'log':
                w = mu
                z = eta + (y - mu) / mu
            else:
                w = np.ones_like(y)
                z = y

            XtW = X.T * w
            beta_new = self._solve(XtW @ X + S_total, XtW @ z)

            eta_new = X @ beta_new
            mu_new = self._linkinv(eta_new)
            pen_dev_new = self._deviance(mu_new) + beta_new @ S_total @ beta_new

            # Step halving when the penalized deviance increases
            n_halving = 0
            while beta is not None and pen_dev_new > pen_dev and n_halving < 25:
                beta_new = (beta_new + beta) / 2
                eta_new = X @ beta_new
                mu_new = self._linkinv(eta_new)
                pen_dev_new = self._deviance(mu_new) + beta_new @ S_total @ beta_new
                n_halving += 1

            change = abs(pen_dev_new - pen_dev)
            beta, eta, mu = beta_new, eta_new, mu_new

            if change < self.tol * (abs(pen_dev_new) + 0.1):
                pen_dev = pen_dev_new
                converged = True
                break
            pen_dev = pen_dev_new

        w = mu if self.model_link == 'log' else np.ones_like(y)
        XtWX = (X.T * w) @ X

        self._beta = beta

        return {
            'beta': beta,
            'mu': mu,
            'XtWX': XtWX,
            'deviance': self._deviance(mu),
            'converged': converged,
            'iterations': iteration,
        }

    def _influence(self, XtWX: np.ndarray, S_total: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Inverse penalized information and the influence matrix F = A^-1 X'WX"""
        A = XtWX + S_total
        try:
            A_inv = linalg.cho_solve(linalg.cho_factor(A), np.eye(A.shape[0]))
        except linalg.LinAlgError:
            warnings.warn("penalized system is singular; using pseudo-inverse", SingularMatrixWarning)
            A_inv = linalg.pinv(A)
        return A_inv, A_inv @ XtWX

    def _compute_selection_criterion(self, log_sp: np.ndarray) -> float:
        """Compute GCV or UBRE score for the given log smoothing parameters"""
        log_sp = np.clip(log_sp, *self._LOG_SP_BOUNDS)
        S_total = self._total_penalty(np.exp(log_sp))

        fit = self._pirls(S_total)
        _, F = self._influence(fit['XtWX'], S_total)
        edf = np.trace(F)

        n = len(self.y)
        if edf >= n:
            return np.inf

        if self.selection_method == 'gcv':
            return n * fit['deviance'] / (n - edf) ** 2

        # UBRE with unit scale
        return fit['deviance'] / n - 1 + 2 * edf / n

    def _select_smoothing_parameters(self, initial_sp: np.ndarray, max_iter: int) -> np.ndarray:
        """Select optimal smoothing parameters"""

        log_initial = np.log(initial_sp)
        bounds = [self._LOG_SP_BOUNDS] * len(log_initial)

        if self.optimizer == 'nelder-mead':
            result = optimize.minimize(
                self._compute_selection_criterion, log_initial, method='Nelder-Mead',
                bounds=bounds, options={'maxiter': max_iter, 'xatol': 1e-3, 'fatol': 1e-6}
            )
        elif self.optimizer == 'bfgs':
            result = optimize.minimize(
                self._compute_selection_criterion, log_initial, method='BFGS',
                options={'maxiter': max_iter, 'eps': 1e-4}
            )
        else:
            result = optimize.minimize(
                self._compute_selection_criterion, log_initial, method='L-BFGS-B',
                bounds=bounds, options={'maxiter': max_iter, 'eps': 1e-4}
            )

        optimal_log_sp = np.clip(result.x, *self._LOG_SP_BOUNDS)
        optimal_sp = np.exp(optimal_log_sp)

        self.selection_results = {
            'initial_sp': initial_sp,
            'optimal_sp': optimal_sp,
            'criterion': float(result.fun),
            'converged': bool(result.success),
            'message': str(result.message),
            'method': self.selection_method,
            'at_bound': bool(np.any(np.isclose(np.abs(optimal_log_sp), self._LOG_SP_BOUNDS[1]))),
        }

        return optimal_sp

    def _fit_with_fixed_penalties(self, sp: np.ndarray):
        """Fit model with fixed smoothing parameters"""

        S_total = self._total_penalty(sp)
        fit = self._pirls(S_total)
        A_inv, F = self._influence(fit['XtWX'], S_total)

        n = len(self.y)
        self.coefficients = fit['beta']
        self.fitted_values = fit['mu']
        self.deviance = fit['deviance']
        self.pirls_converged = fit['converged']
        self.iterations = fit['iterations']

        edf_per_coef = np.diag(F)
        self.edf = float(np.sum(edf_per_coef))
        self.edf_cb = float(np.sum(edf_per_coef[:self.n_cb]))

        if self.family == 'poisson':
            self.scale = 1.0
        elif self.family == 'quasipoisson':
            pearson = np.sum((self.y - self.fitted_values) ** 2 / self.fitted_values)
            self.scale = float(pearson / (n - self.edf))
        else:
            self.scale = float(self.deviance / (n - self.edf))

        # Bayesian posterior covariance
        self.vcov = A_inv * self.scale
        self.cb_coef = self.coefficients[:self.n_cb]
        self.cb_vcov = self.vcov[:self.n_cb, :self.n_cb]

    def check_convergence(self):
        """Raise NumericalNonConvergence if the fit did not converge"""
        if not (self.pirls_converged and self.selection_results.get('converged', False)):
            raise NumericalNonConvergence(
                f"penalized fit did not converge after {self.iterations} PIRLS iterations; "
                f"smoothing parameters {self.sp}, "
                f"search: {self.selection_results.get('message', 'n/a')}"
            )

    @property
    def params(self) -> np.ndarray:
        return self.coefficients

    def cov_params(self) -> np.ndarray:
        return self.vcov

    def predict(self, X_new: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Linear predictor with standard errors

        Parameters:
        -----------
        X_new : array-like
            New design matrix with the columns of the fitted model

        Returns:
        --------
        tuple
            - predictions: Linear predictor values
            - std_errors: Standard errors of predictions
        """

        if self.coefficients is None:
            raise InvalidArgument("Model has not been fitted")

        X_new = np.asarray(X_new)
        predictions = X_new @ self.coefficients

        pred_var = np.sum((X_new @ self.vcov) * X_new, axis=1)
        std_errors = np.sqrt(np.maximum(0, pred_var))

        return predictions, std_errors

    def get_smoothing_info(self) -> Dict:
        """Smoothing parameters, effective degrees of freedom and convergence"""

        if self.coefficients is None:
            raise InvalidArgument("Model has not been fitted")

        return {
            'penalties': list(self.basis.penalty_names),
            'sp': self.sp,
            'edf_total': self.edf,
            'edf_cb': self.edf_cb,
            'scale': self.scale,
            'selection_method': self.selection_method,
            'converged': self.converged,
        }

    def summary(self) -> Dict:
        """Return model summary"""

        if self.coefficients is None:
            raise InvalidArgument("Model has not been fitted")

        return {
            'n_observations': len(self.y),
            'n_parameters': len(self.coefficients),
            'deviance': self.deviance,
            'family': self.family,
            'smoothing_info': self.get_smoothing_info(),
            'selection_results': self.selection_results,
        }


def penalized_dlnm(x: np.ndarray, lag: Union[int, List, Tuple],
                   y: np.ndarray,
                   argvar: Optional[Dict] = None,
                   arglag: Optional[Dict] = None,
                   X_extra: Optional[np.ndarray] = None,
                   family: str = 'quasipoisson',
                   selection_method: str = 'gcv',
                   **kwargs) -> PenalizedDLNM:
    """
    Convenience function for fitting penalized DLNM

    Parameters:
    -----------
    x : array-like
        Exposure series or lagged exposure matrix
    lag : int or sequence
        Lag structure
    y : array-like
        Response variable
    argvar, arglag : dict, optional
        Arguments for the exposure and lag bases
    X_extra : array-like, optional
        Unpenalized covariates
    family : str, default 'quasipoisson'
        Response family
    selection_method : str, default 'gcv'
        Smoothing parameter selection method
    **kwargs
        Passed to PenalizedCrossBasis (fx, add_svar, add_slag, lagmat)

    Returns:
    --------
    PenalizedDLNM
        Fitted penalized DLNM model
    """

    basis = PenalizedCrossBasis(x, lag, argvar, arglag, **kwargs)

    model = PenalizedDLNM(basis, selection_method=selection_method)
    model.fit(y, X_extra=X_extra, family=family)

    return model
