"""
Utility functions for pdlnm

This module contains core utility functions that support the main DLNM functionality,
including lag parameter validation, sequence generation, lagged exposure matrices
and knot placement.
"""

import numpy as np
from typing import Union, List, Tuple, Optional

from .exceptions import InvalidArgument


def mklag(lag: Union[int, List[int], Tuple[int, ...], np.ndarray]) -> np.ndarray:
    """
    Validate and standardize lag specifications for distributed lag models.

    This function takes a lag parameter and converts it to a standardized
    2-element array [min_lag, max_lag].

    Parameters
    ----------
    lag : int, list, tuple, or ndarray
        Lag specification. Can be:
        - Single integer: converted to [0, lag]
        - Two integers: [min_lag, max_lag]

    Returns
    -------
    np.ndarray
        Two-element integer array [min_lag, max_lag]

    Raises
    ------
    InvalidArgument
        If lag specification is invalid, negative or min_lag > max_lag

    Examples
    --------
    >>> mklag(5)
    array([0, 5])

    >>> mklag([2, 8])
    array([2, 8])
    """
    lag = np.asarray(lag)

    if lag.size == 0:
        raise InvalidArgument("lag cannot be empty")

    if lag.size == 1:
        lag_array = np.array([0, lag.item()])
    elif lag.size == 2:
        lag_array = lag.flatten()
    else:
        raise InvalidArgument("lag must have 1 or 2 elements")

    if np.any(lag_array != np.round(lag_array)):
        raise InvalidArgument(f"lag values must be integers, got {lag_array.tolist()}")
    lag_array = lag_array.astype(int)

    if lag_array[0] < 0:
        raise InvalidArgument(f"lag values must be non-negative, got {lag_array.tolist()}")
    if lag_array[0] > lag_array[1]:
        raise InvalidArgument(f"min_lag ({lag_array[0]}) must be <= max_lag ({lag_array[1]})")

    return lag_array


def seqlag(lag: Union[np.ndarray, List[int], Tuple[int, ...]],
           by: float = 1.0) -> np.ndarray:
    """
    Create sequences of lag values.

    Parameters
    ----------
    lag : array-like
        Two-element array [min_lag, max_lag]
    by : float, default=1.0
        Step size for sequence

    Returns
    -------
    np.ndarray
        Sequence from lag[0] to lag[1] with step size 'by'

    Examples
    --------
    >>> seqlag([0, 5])
    array([0., 1., 2., 3., 4., 5.])

    >>> seqlag([0, 2], by=0.5)
    array([0. , 0.5, 1. , 1.5, 2. ])
    """
    lag = np.asarray(lag)
    if lag.size != 2:
        raise InvalidArgument("lag must have exactly 2 elements")
    if by <= 0:
        raise InvalidArgument("by must be positive")

    # Count steps explicitly so float steps do not overshoot the upper lag
    n_steps = int(np.floor((lag[1] - lag[0]) / by + 1e-9))
    return lag[0] + by * np.arange(n_steps + 1, dtype=float)


def lag_matrix(series: Union[np.ndarray, List[float]],
               maxlag: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Build the lagged exposure matrix and its lag-index companion.

    Parameters
    ----------
    series : array-like
        Exposure time series, one value per time unit
    maxlag : int
        Maximum lag (non-negative, smaller than the series length)

    Returns
    -------
    tuple
        - Q: (n, maxlag+1) matrix with Q[i, j] = series[i-j], NaN when i-j < 0
        - L: (n, maxlag+1) matrix with L[i, j] = j

    Raises
    ------
    InvalidArgument
        If maxlag < 0 or maxlag >= len(series)

    Examples
    --------
    >>> Q, L = lag_matrix([1, 2, 3], 1)
    >>> Q
    array([[ 1., nan],
           [ 2.,  1.],
           [ 3.,  2.]])
    """
    series = np.asarray(series, dtype=float)
    if series.ndim != 1:
        raise InvalidArgument(f"series must be one-dimensional, got shape {series.shape}")

    n_obs = len(series)
    if int(maxlag) != maxlag:
        raise InvalidArgument(f"maxlag must be an integer, got {maxlag}")
    maxlag = int(maxlag)
    if maxlag < 0 or maxlag >= n_obs:
        raise InvalidArgument(
            f"maxlag must satisfy 0 <= maxlag < n ({n_obs}), got {maxlag}"
        )

    Q = np.full((n_obs, maxlag + 1), np.nan)
    for j in range(maxlag + 1):
        # Column j holds the exposure shifted j steps back in time
        Q[j:, j] = series[:n_obs - j]

    L = np.tile(np.arange(maxlag + 1, dtype=float), (n_obs, 1))

    return Q, L


def equalknots(x: np.ndarray,
               nk: Optional[int] = None,
               fun: str = "ns",
               df: int = 1,
               degree: int = 3,
               intercept: bool = False) -> np.ndarray:
    """
    Place knots at equally-spaced values along the range of x.

    Parameters
    ----------
    x : array-like
        Input vector
    nk : int, optional
        Number of knots. If None, derived from fun, df, degree and intercept
    fun : str, default="ns"
        Basis function type used to derive nk from df
    df : int, default=1
        Degrees of freedom
    degree : int, default=3
        Spline degree
    intercept : bool, default=False
        Whether the basis includes an intercept

    Returns
    -------
    np.ndarray
        Interior knot positions

    Examples
    --------
    >>> equalknots([0, 30], nk=2)
    array([10., 20.])
    """
    x = np.asarray(x, dtype=float)
    x_clean = x[~np.isnan(x)]

    if len(x_clean) == 0:
        raise InvalidArgument("No valid (non-NaN) values in x")

    if nk is None:
        if fun == "ns":
            nk = df - 1 - int(intercept)
        elif fun in ("bs", "ps"):
            nk = df - degree - int(intercept)
        elif fun == "thr":
            nk = df - int(intercept)
        else:
            raise InvalidArgument(f"Unknown function type: {fun}")

    if nk < 1:
        raise InvalidArgument("choice of arguments defines no knots")

    x_range = (np.min(x_clean), np.max(x_clean))
    if x_range[0] == x_range[1]:
        raise InvalidArgument("range of x must be > 0")

    return np.linspace(x_range[0], x_range[1], nk + 2)[1:-1]


def logknots(x: Union[int, List[int], np.ndarray],
             nk: Optional[int] = None,
             fun: str = "ns",
             df: Optional[int] = None,
             degree: int = 3,
             intercept: bool = True) -> np.ndarray:
    """
    Place knots at log-spaced values of the lag range.

    This function creates interior knots for spline functions using log-spaced positions,
    which is particularly useful for lag-response relationships where effects decay
    exponentially with time.

    Parameters
    ----------
    x : int, list, or array
        Lag range. If single value, interpreted as [0, x]. If length 2, interpreted as range.
    nk : int, optional
        Number of knots. If None, calculated based on fun, df, degree, intercept.
    fun : str, default="ns"
        Basis function type ("ns", "bs", "ps")
    df : int, optional
        Degrees of freedom
    degree : int, default=3
        Degree of polynomial (for B-splines)
    intercept : bool, default=True
        Whether intercept is included

    Returns
    -------
    np.ndarray
        Log-spaced interior knot positions

    Examples
    --------
    >>> logknots(21, nk=3)
    array([1.01119306, 2.77947331, 7.63995648])
    """
    x = np.asarray(x, dtype=float).flatten()

    if len(x) < 3:
        lag_range = mklag(x)
    else:
        lag_range = np.array([np.min(x), np.max(x)])

    if np.diff(lag_range)[0] == 0:
        raise InvalidArgument("range must be > 0")

    if nk is None:
        if df is None:
            nk = 1
        elif fun == "ns":
            nk = df - 1 - int(intercept)
        elif fun in ("bs", "ps"):
            nk = df - degree - int(intercept)
        else:
            raise InvalidArgument(f"Unknown function type: {fun}")

    if nk < 1:
        raise InvalidArgument("choice of arguments defines no knots")

    # Knots at equally-spaced log-values: range[0] + exp((1+log(diff))/(nk+1)*seq(nk) - 1)
    range_start = lag_range[0]
    range_diff = np.diff(lag_range)[0]
    log_factor = (1 + np.log(range_diff)) / (nk + 1)

    return range_start + np.exp(log_factor * np.arange(1, nk + 1) - 1)
