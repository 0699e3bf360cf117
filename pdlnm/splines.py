"""
Spline bases for pdlnm

B-spline, natural cubic spline and P-spline bases built on scipy's BSpline.
Each function returns the basis matrix together with the resolved attributes
(knots, boundary knots) needed to evaluate the identical basis on new values.
"""

import numpy as np
from scipy.interpolate import BSpline
from typing import Optional, Tuple, Dict

from .exceptions import InvalidArgument


def _bspline_design(x: np.ndarray, knots: np.ndarray, degree: int,
                    extrapolate: bool = True) -> np.ndarray:
    """Evaluate every B-spline of the knot sequence at x, one column each."""
    n_basis = len(knots) - degree - 1
    spline = BSpline(knots, np.eye(n_basis), degree, extrapolate=extrapolate)
    return spline(x).reshape(len(x), n_basis)


def _boundary(x_clean: np.ndarray,
              boundary_knots: Optional[Tuple[float, float]]) -> Tuple[float, float]:
    if boundary_knots is None:
        if len(x_clean) == 0:
            raise InvalidArgument("No valid (non-NaN) values in x")
        xl, xr = float(np.min(x_clean)), float(np.max(x_clean))
    else:
        xl, xr = (float(b) for b in boundary_knots)

    if not xl < xr:
        raise InvalidArgument(f"boundary knots must span a positive range, got ({xl}, {xr})")

    return xl, xr


def _interior_knots(x_clean: np.ndarray, n_internal: int,
                    knots: Optional[np.ndarray],
                    xl: float, xr: float) -> np.ndarray:
    if knots is None:
        if n_internal < 0:
            raise InvalidArgument("df too small for the requested degree and intercept")
        if n_internal == 0:
            return np.array([])
        # Interior knots at equally spaced quantiles
        quantiles = np.linspace(0, 1, n_internal + 2)[1:-1]
        return np.quantile(x_clean, quantiles)

    internal_knots = np.sort(np.asarray(knots, dtype=float).ravel())
    if np.any(internal_knots < xl) or np.any(internal_knots > xr):
        raise InvalidArgument(
            f"knots {internal_knots.tolist()} lie outside the range ({xl}, {xr})"
        )
    return internal_knots


def bs_basis(x: np.ndarray,
             df: Optional[int] = None,
             knots: Optional[np.ndarray] = None,
             degree: int = 3,
             intercept: bool = False,
             boundary_knots: Optional[Tuple[float, float]] = None) -> Tuple[np.ndarray, Dict]:
    """
    B-spline basis

    Parameters:
    -----------
    x : array-like
        Predictor variable values (NaN allowed, kept as NaN rows)
    df : int, optional
        Degrees of freedom. If None, derived from knots
    knots : array-like, optional
        Internal knot locations. If None, placed at quantiles
    degree : int, default 3
        Degree of the piecewise polynomial
    intercept : bool, default False
        Whether to include intercept column
    boundary_knots : tuple, optional
        Boundary knots (min, max). If None, uses range of x

    Returns:
    --------
    tuple
        - basis: B-spline basis matrix
        - attributes: Dictionary with basis information

    Values beyond the boundary knots are extrapolated with the polynomial
    piece of the adjacent interval.
    """
    x = np.asarray(x, dtype=float).ravel()
    valid = ~np.isnan(x)
    x_clean = x[valid]

    if degree < 1:
        raise InvalidArgument(f"degree must be >= 1, got {degree}")

    xl, xr = _boundary(x_clean, boundary_knots)

    if knots is None:
        if df is None:
            df = degree + int(intercept)
        n_internal = df - degree - int(intercept)
    else:
        n_internal = None
    internal_knots = _interior_knots(x_clean, n_internal, knots, xl, xr)

    all_knots = np.concatenate([
        np.repeat(xl, degree + 1),
        internal_knots,
        np.repeat(xr, degree + 1),
    ])
    n_basis = len(all_knots) - degree - 1

    basis = np.full((len(x), n_basis), np.nan)
    basis[valid] = _bspline_design(x_clean, all_knots, degree)

    if not intercept:
        basis = basis[:, 1:]

    attributes = {
        'fun': 'bs',
        'degree': degree,
        'knots': internal_knots,
        'boundary_knots': (xl, xr),
        'intercept': intercept,
        'df': basis.shape[1],
    }

    return basis, attributes


def ns_basis(x: np.ndarray,
             df: Optional[int] = None,
             knots: Optional[np.ndarray] = None,
             intercept: bool = False,
             boundary_knots: Optional[Tuple[float, float]] = None) -> Tuple[np.ndarray, Dict]:
    """
    Natural cubic spline basis

    Natural splines are cubic splines constrained to have zero second
    derivative at the boundary knots, hence linear beyond them.

    Parameters:
    -----------
    x : array-like
        Predictor variable values
    df : int, optional
        Degrees of freedom. If None, derived from knots
    knots : array-like, optional
        Internal knot locations
    intercept : bool, default False
        Whether to include intercept column
    boundary_knots : tuple, optional
        Boundary knots (min, max)

    Returns:
    --------
    tuple
        - basis: Natural spline basis matrix
        - attributes: Dictionary with basis information
    """
    x = np.asarray(x, dtype=float).ravel()
    valid = ~np.isnan(x)
    x_clean = x[valid]

    xl, xr = _boundary(x_clean, boundary_knots)

    if knots is None:
        if df is None:
            df = 1 + int(intercept)
        n_internal = df - 1 - int(intercept)
    else:
        n_internal = None
    internal_knots = _interior_knots(x_clean, n_internal, knots, xl, xr)

    all_knots = np.concatenate([np.repeat(xl, 4), internal_knots, np.repeat(xr, 4)])
    n_basis = len(all_knots) - 4
    spline = BSpline(all_knots, np.eye(n_basis), 3)

    # Evaluate inside the boundary, then extend linearly outside it
    x_inside = np.clip(x_clean, xl, xr)
    design = spline(x_inside).reshape(len(x_clean), n_basis)
    slopes = spline.derivative(1)(np.array([xl, xr]))
    below = x_clean < xl
    above = x_clean > xr
    design[below] += (x_clean[below] - xl)[:, None] * slopes[0]
    design[above] += (x_clean[above] - xr)[:, None] * slopes[1]

    # Second derivatives at the boundaries define the natural constraints
    const = spline.derivative(2)(np.array([xl, xr]))

    if not intercept:
        design = design[:, 1:]
        const = const[:, 1:]

    q_matrix, _ = np.linalg.qr(const.T, mode='complete')
    design = (design @ q_matrix)[:, 2:]

    basis = np.full((len(x), design.shape[1]), np.nan)
    basis[valid] = design

    attributes = {
        'fun': 'ns',
        'knots': internal_knots,
        'boundary_knots': (xl, xr),
        'intercept': intercept,
        'df': basis.shape[1],
    }

    return basis, attributes


def ps_basis(x: np.ndarray,
             df: int = 10,
             knots: Optional[np.ndarray] = None,
             degree: int = 3,
             intercept: bool = False) -> Tuple[np.ndarray, Dict]:
    """
    P-spline basis: B-splines on equally spaced knots.

    Parameters:
    -----------
    x : array-like
        Predictor variable values
    df : int, default 10
        Number of basis columns (after intercept handling)
    knots : array-like, optional
        Full knot sequence, including the knots beyond the range of x.
        If None, equally spaced knots are generated so that ``degree``
        knots fall on each side of the range.
    degree : int, default 3
        Degree of the B-splines
    intercept : bool, default False
        Whether to keep the first B-spline column

    Returns:
    --------
    tuple
        - basis: P-spline basis matrix, zero outside the knot span
        - attributes: Dictionary with the full knot sequence
    """
    x = np.asarray(x, dtype=float).ravel()
    valid = ~np.isnan(x)
    x_clean = x[valid]

    if knots is None:
        n_basis = df + (0 if intercept else 1)
        if n_basis < degree + 1:
            raise InvalidArgument(
                f"df={df} too small for a P-spline of degree {degree} "
                f"(intercept={intercept})"
            )
        xl, xr = _boundary(x_clean, None)
        n_inner = n_basis - degree + 1
        step = (xr - xl) / (n_inner - 1)
        # Inner knots hit the range ends exactly so both ends stay evaluable
        all_knots = np.concatenate([
            xl - step * np.arange(degree, 0, -1),
            np.linspace(xl, xr, n_inner),
            xr + step * np.arange(1, degree + 1),
        ])
    else:
        all_knots = np.sort(np.asarray(knots, dtype=float).ravel())
        if len(all_knots) < 2 * degree + 2:
            raise InvalidArgument(f"P-spline of degree {degree} needs at least {2 * degree + 2} knots")

    design = _bspline_design(x_clean, all_knots, degree, extrapolate=False)
    design = np.where(np.isnan(design), 0.0, design)

    basis = np.full((len(x), design.shape[1]), np.nan)
    basis[valid] = design

    if not intercept:
        basis = basis[:, 1:]

    attributes = {
        'fun': 'ps',
        'degree': degree,
        'knots': all_knots,
        'intercept': intercept,
        'df': basis.shape[1],
    }

    return basis, attributes
