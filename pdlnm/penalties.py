"""
Penalty matrices for penalized DLNMs

Builds quadratic penalties in basis-coefficient space, including the doubly
varying penalty on the lag dimension of Gasparrini, Scheipl, Armstrong &
Kenward (2017): a difference penalty whose weight grows quadratically with
the lag, and a ridge penalty on a trailing block of lag coefficients.
All shapes are checked explicitly.
"""

import warnings
import numpy as np
from scipy import linalg
from typing import List, Tuple

from .exceptions import InvalidArgument, SingularMatrixWarning


def difference_matrix(n: int, order: int = 2) -> np.ndarray:
    """
    Finite-difference operator of the given order.

    Parameters:
    -----------
    n : int
        Number of columns (points being differenced)
    order : int, default 2
        Difference order

    Returns:
    --------
    np.ndarray
        (n - order) x n matrix; for order 2 row i is [.., 1, -2, 1, ..]
        at columns i, i+1, i+2
    """
    if order < 1:
        raise InvalidArgument(f"difference order must be >= 1, got {order}")
    if n <= order:
        raise InvalidArgument(f"difference of order {order} needs more than {order} points, got {n}")

    return np.diff(np.eye(n), n=order, axis=0)


def varying_weights(maxlag: int) -> np.ndarray:
    """
    Diagonal weights i^2, i = 0..maxlag-2, for the second-order lag difference.

    The curvature penalty grows quadratically with the lag.
    """
    if maxlag < 2:
        raise InvalidArgument(f"maxlag must be >= 2 for a second-order difference, got {maxlag}")

    return np.diag(np.arange(maxlag - 1, dtype=float) ** 2)


def lag_smoothness_penalty(C: np.ndarray) -> np.ndarray:
    """
    Varying difference penalty on the lag-response (Slag1 = C' D' P D C).

    Parameters:
    -----------
    C : array-like
        (maxlag+1) x k lag basis evaluated at lags 0..maxlag

    Returns:
    --------
    np.ndarray
        k x k symmetric positive semi-definite penalty
    """
    C = np.asarray(C, dtype=float)
    if C.ndim != 2:
        raise InvalidArgument(f"C must be a matrix, got shape {C.shape}")

    n_lags, k = C.shape
    maxlag = n_lags - 1

    D = difference_matrix(n_lags, order=2)
    P = varying_weights(maxlag)
    if D.shape != (maxlag - 1, maxlag + 1) or P.shape != (maxlag - 1, maxlag - 1):
        raise InvalidArgument(
            f"difference matrix {D.shape} and weights {P.shape} do not match maxlag={maxlag}"
        )

    DC = np.matmul(D, C)
    S = np.matmul(DC.T, np.matmul(P, DC))
    if S.shape != (k, k):
        raise InvalidArgument(f"penalty has shape {S.shape}, expected ({k}, {k})")

    # Remove round-off asymmetry
    return (S + S.T) / 2


def ridge_penalty(a: int, b: int) -> np.ndarray:
    """
    Ridge penalty on the trailing block of coefficients (Slag2).

    Parameters:
    -----------
    a : int
        Number of leading unpenalized coefficients
    b : int
        Number of trailing penalized coefficients

    Returns:
    --------
    np.ndarray
        (a+b) x (a+b) diagonal matrix with a zeros followed by b ones
    """
    if a < 0 or b < 0:
        raise InvalidArgument(f"partition sizes must be non-negative, got ({a}, {b})")

    return np.diag(np.repeat([0.0, 1.0], [a, b]))


def doubly_varying_lag_penalties(C: np.ndarray,
                                 partition: Tuple[int, int]) -> List[np.ndarray]:
    """
    Ordered list [Slag1, Slag2] of doubly varying penalties for the lag dimension.

    Parameters:
    -----------
    C : array-like
        (maxlag+1) x k lag basis evaluated at lags 0..maxlag
    partition : tuple
        (a, b) sizes of the unpenalized and ridge-penalized coefficient blocks

    Returns:
    --------
    list
        [Slag1, Slag2]; each entry receives its own smoothing parameter

    Raises:
    -------
    InvalidArgument
        If a + b differs from the number of columns of C, or maxlag < 2
    """
    C = np.asarray(C, dtype=float)
    a, b = partition
    k = C.shape[1]
    if a + b != k:
        raise InvalidArgument(f"partition {tuple(partition)} does not sum to the basis dimension {k}")
    if C.shape[0] < 3:
        raise InvalidArgument(f"maxlag must be >= 2, got {C.shape[0] - 1}")

    return [lag_smoothness_penalty(C), ridge_penalty(a, b)]


def pspline_penalty(n_basis: int, order: int = 2, intercept: bool = True) -> np.ndarray:
    """
    Default P-spline difference penalty D'D in coefficient space.

    When the basis dropped its first column (no intercept), the penalty is
    built on the full set of B-splines and the first row and column removed.
    """
    n_full = n_basis + (0 if intercept else 1)
    D = difference_matrix(n_full, order=order)
    S = D.T @ D

    if not intercept:
        S = S[1:, 1:]

    return S


def expand_penalty(S: np.ndarray, dim_var: int, dim_lag: int,
                   margin: str = 'lag') -> np.ndarray:
    """
    Embed a marginal penalty in the cross-basis coefficient space.

    The cross-basis has the exposure index varying slower, so a lag
    penalty becomes I_var (x) S and an exposure penalty S (x) I_lag.

    Parameters:
    -----------
    S : array-like
        Marginal penalty matrix
    dim_var : int
        Number of exposure basis columns
    dim_lag : int
        Number of lag basis columns
    margin : str, default 'lag'
        'lag' or 'var'
    """
    S = np.asarray(S, dtype=float)

    if margin == 'lag':
        if S.shape != (dim_lag, dim_lag):
            raise InvalidArgument(f"lag penalty must be {dim_lag}x{dim_lag}, got {S.shape}")
        return np.kron(np.eye(dim_var), S)
    elif margin == 'var':
        if S.shape != (dim_var, dim_var):
            raise InvalidArgument(f"exposure penalty must be {dim_var}x{dim_var}, got {S.shape}")
        return np.kron(S, np.eye(dim_lag))
    else:
        raise InvalidArgument("margin must be 'lag' or 'var'")


def check_penalty(S: np.ndarray, tol: float = 1e-9) -> np.ndarray:
    """
    Verify that a penalty is square, symmetric and positive semi-definite.

    Tolerances are relative to the largest absolute entry. An all-zero
    penalty is accepted with a SingularMatrixWarning.

    Returns:
    --------
    np.ndarray
        The eigenvalues of S
    """
    S = np.asarray(S, dtype=float)
    if S.ndim != 2 or S.shape[0] != S.shape[1]:
        raise InvalidArgument(f"penalty must be a square matrix, got shape {S.shape}")

    scale = max(np.max(np.abs(S)), 1.0) if S.size else 1.0
    if np.max(np.abs(S - S.T), initial=0.0) > tol * scale:
        raise InvalidArgument("penalty matrix is not symmetric")

    eigenvalues = linalg.eigvalsh(S)
    if np.min(eigenvalues, initial=0.0) < -tol * scale:
        raise InvalidArgument(
            f"penalty matrix is not positive semi-definite (min eigenvalue {np.min(eigenvalues):.3g})"
        )

    if not np.any(S):
        warnings.warn("penalty matrix is identically zero", SingularMatrixWarning)

    return eigenvalues
