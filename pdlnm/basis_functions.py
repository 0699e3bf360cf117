"""
Basis function implementations for pdlnm

This module contains the basis families available to OneBasis: linear,
polynomial, B-spline, natural spline, P-spline and threshold functions.
Families are identified by the BasisFamily enum and resolved once when a
basis is constructed.
"""

import numpy as np
from enum import Enum
from sklearn.preprocessing import PolynomialFeatures
from typing import Union, Optional, Tuple, Any, Dict

from .exceptions import InvalidArgument
from .splines import bs_basis, ns_basis, ps_basis


class BasisFamily(str, Enum):
    """Available basis families."""

    LIN = 'lin'
    POLY = 'poly'
    BS = 'bs'
    NS = 'ns'
    PS = 'ps'
    THR = 'thr'

    @classmethod
    def resolve(cls, fun: Union[str, 'BasisFamily']) -> 'BasisFamily':
        try:
            return cls(fun)
        except ValueError:
            raise InvalidArgument(
                f"Unknown function '{fun}'. Available: {[f.value for f in cls]}"
            ) from None


class BaseBasisFunction:
    """
    Base class for all basis functions.

    Subclasses implement ``_transform`` on the non-missing values; missing
    values are returned as NaN rows. After the first evaluation,
    ``resolved_params`` holds the arguments that reproduce the identical
    basis (knots, boundaries, scale) on new values.
    """

    family: BasisFamily = None
    penalized: bool = False

    def __init__(self, **kwargs):
        self.params = kwargs
        self.attributes = {}
        self.resolved_params = None

    def __call__(self, x: np.ndarray) -> np.ndarray:
        """
        Generate basis matrix from input vector.

        Parameters
        ----------
        x : array-like
            Input vector

        Returns
        -------
        np.ndarray
            Basis matrix with one row per input value
        """
        x = np.asarray(x, dtype=float).ravel()
        valid = ~np.isnan(x)

        if not np.any(valid):
            raise InvalidArgument("No valid (non-NaN) values in x")

        values = self._transform(x[valid])
        basis = np.full((len(x), values.shape[1]), np.nan)
        basis[valid] = values

        if self.resolved_params is None:
            self.resolved_params = self._resolve()

        return basis

    def _transform(self, x: np.ndarray) -> np.ndarray:
        raise NotImplementedError("Subclasses must implement _transform")

    def _resolve(self) -> Dict[str, Any]:
        return dict(self.params)

    def frozen(self) -> 'BaseBasisFunction':
        """Return a basis function fixed to the configuration resolved so far."""
        if self.resolved_params is None:
            raise InvalidArgument("basis function has not been evaluated yet")
        clone = type(self)(**self.resolved_params)
        clone.resolved_params = dict(self.resolved_params)
        return clone

    def get_attributes(self) -> Dict[str, Any]:
        """Return basis function attributes."""
        return self.attributes.copy()


class LinearBasis(BaseBasisFunction):
    """
    Linear basis function.

    Parameters
    ----------
    intercept : bool, default=False
        Whether to include an intercept column
    """

    family = BasisFamily.LIN

    def __init__(self, intercept: bool = False):
        super().__init__(intercept=intercept)
        self.intercept = intercept
        self.attributes['fun'] = 'lin'
        self.attributes['intercept'] = intercept

    def _transform(self, x: np.ndarray) -> np.ndarray:
        if self.intercept:
            return np.column_stack([np.ones(len(x)), x])
        return x.reshape(-1, 1)


class PolynomialBasis(BaseBasisFunction):
    """
    Polynomial basis function.

    Parameters
    ----------
    degree : int, default=1
        Polynomial degree
    scale : float, optional
        Scaling factor. If None, uses max(abs(x)) of the first evaluation
    intercept : bool, default=False
        Whether to include an intercept column
    """

    family = BasisFamily.POLY

    def __init__(self, degree: int = 1, scale: Optional[float] = None,
                 intercept: bool = False):
        super().__init__(degree=degree, scale=scale, intercept=intercept)
        if degree < 1:
            raise InvalidArgument(f"degree must be >= 1, got {degree}")
        self.degree = degree
        self.scale = scale
        self.intercept = intercept
        self.attributes['fun'] = 'poly'
        self.attributes['degree'] = degree
        self.attributes['intercept'] = intercept

    def _transform(self, x: np.ndarray) -> np.ndarray:
        if self.scale is None:
            scale = np.max(np.abs(x))
            self.scale = scale if scale != 0 else 1.0

        self.attributes['scale'] = self.scale

        poly_features = PolynomialFeatures(
            degree=self.degree,
            include_bias=self.intercept,
        )
        return poly_features.fit_transform((x / self.scale).reshape(-1, 1))

    def _resolve(self) -> Dict[str, Any]:
        return {'degree': self.degree, 'scale': self.scale, 'intercept': self.intercept}


class BSplineBasis(BaseBasisFunction):
    """
    B-spline basis function (polynomial spline).

    Parameters
    ----------
    df : int, optional
        Degrees of freedom, used when knots are not given
    degree : int, default=3
        B-spline degree
    knots : array-like, optional
        Interior knot positions. If None, uses quantiles
    intercept : bool, default=False
        Whether to include an intercept column
    boundary_knots : tuple, optional
        Boundary knots. If None, the range of x
    """

    family = BasisFamily.BS

    def __init__(self, df: Optional[int] = None, degree: int = 3,
                 knots: Optional[np.ndarray] = None,
                 intercept: bool = False,
                 boundary_knots: Optional[Tuple[float, float]] = None):
        super().__init__(df=df, degree=degree, knots=knots,
                         intercept=intercept, boundary_knots=boundary_knots)
        self.df = df
        self.degree = degree
        self.knots = knots
        self.intercept = intercept
        self.boundary_knots = boundary_knots
        self.attributes['fun'] = 'bs'
        self.attributes['degree'] = degree
        self.attributes['intercept'] = intercept

    def _transform(self, x: np.ndarray) -> np.ndarray:
        basis_matrix, attrs = bs_basis(
            x,
            df=self.df,
            knots=self.knots,
            degree=self.degree,
            intercept=self.intercept,
            boundary_knots=self.boundary_knots,
        )
        self.attributes.update(attrs)
        return basis_matrix

    def _resolve(self) -> Dict[str, Any]:
        return {
            'degree': self.degree,
            'knots': self.attributes['knots'],
            'intercept': self.intercept,
            'boundary_knots': self.attributes['boundary_knots'],
        }


class NaturalSplineBasis(BaseBasisFunction):
    """
    Natural cubic spline basis function.

    Parameters
    ----------
    df : int, optional
        Degrees of freedom, used when knots are not given
    knots : array-like, optional
        Interior knot positions. If None, uses quantiles
    intercept : bool, default=False
        Whether to include an intercept column
    boundary_knots : tuple, optional
        Boundary knots. If None, the range of x
    """

    family = BasisFamily.NS

    def __init__(self, df: Optional[int] = None,
                 knots: Optional[np.ndarray] = None,
                 intercept: bool = False,
                 boundary_knots: Optional[Tuple[float, float]] = None):
        super().__init__(df=df, knots=knots, intercept=intercept,
                         boundary_knots=boundary_knots)
        self.df = df
        self.knots = knots
        self.intercept = intercept
        self.boundary_knots = boundary_knots
        self.attributes['fun'] = 'ns'
        self.attributes['intercept'] = intercept

    def _transform(self, x: np.ndarray) -> np.ndarray:
        basis_matrix, attrs = ns_basis(
            x,
            df=self.df,
            knots=self.knots,
            intercept=self.intercept,
            boundary_knots=self.boundary_knots,
        )
        self.attributes.update(attrs)
        return basis_matrix

    def _resolve(self) -> Dict[str, Any]:
        return {
            'knots': self.attributes['knots'],
            'intercept': self.intercept,
            'boundary_knots': self.attributes['boundary_knots'],
        }


class PSplineBasis(BaseBasisFunction):
    """
    P-spline basis: cubic B-splines on equally spaced knots, meant to be
    combined with a difference penalty on the coefficients.

    Parameters
    ----------
    df : int, default=10
        Number of basis columns
    degree : int, default=3
        B-spline degree
    knots : array-like, optional
        Full knot sequence. If None, equally spaced over the range of x
    intercept : bool, default=False
        Whether to keep the first B-spline column
    diff : int, default=2
        Order of the difference penalty associated with the basis
    """

    family = BasisFamily.PS
    penalized = True

    def __init__(self, df: int = 10, degree: int = 3,
                 knots: Optional[np.ndarray] = None,
                 intercept: bool = False, diff: int = 2):
        super().__init__(df=df, degree=degree, knots=knots,
                         intercept=intercept, diff=diff)
        self.df = df
        self.degree = degree
        self.knots = knots
        self.intercept = intercept
        self.diff = diff
        self.attributes['fun'] = 'ps'
        self.attributes['degree'] = degree
        self.attributes['intercept'] = intercept
        self.attributes['diff'] = diff

    def _transform(self, x: np.ndarray) -> np.ndarray:
        basis_matrix, attrs = ps_basis(
            x,
            df=self.df,
            knots=self.knots,
            degree=self.degree,
            intercept=self.intercept,
        )
        self.attributes.update(attrs)
        return basis_matrix

    def _resolve(self) -> Dict[str, Any]:
        return {
            'df': self.df,
            'degree': self.degree,
            'knots': self.attributes['knots'],
            'intercept': self.intercept,
            'diff': self.diff,
        }


class ThresholdBasis(BaseBasisFunction):
    """
    Threshold/hockey-stick basis function.

    Parameters
    ----------
    thr_value : float or array-like, optional
        Threshold value(s). If None, uses median
    side : str, optional
        Threshold side: 'h' (higher), 'l' (lower), 'd' (double).
        Defaults to 'd' with two thresholds and 'h' otherwise.
    intercept : bool, default=False
        Whether to include an intercept column
    """

    family = BasisFamily.THR

    def __init__(self, thr_value: Optional[Union[float, np.ndarray]] = None,
                 side: Optional[str] = None, intercept: bool = False):
        super().__init__(thr_value=thr_value, side=side, intercept=intercept)
        self.thr_value = thr_value
        self.side = side
        self.intercept = intercept
        self.attributes['fun'] = 'thr'
        self.attributes['intercept'] = intercept

    def _transform(self, x: np.ndarray) -> np.ndarray:
        if self.thr_value is None:
            self.thr_value = float(np.median(x))

        thr = np.sort(np.atleast_1d(np.asarray(self.thr_value, dtype=float)))

        side = self.side
        if side is None:
            side = 'd' if len(thr) == 2 else 'h'
        self.side = side

        if side == 'h':
            basis_cols = [np.maximum(x - t, 0) for t in thr]
        elif side == 'l':
            basis_cols = [np.maximum(t - x, 0) for t in thr]
        elif side == 'd':
            if len(thr) > 2:
                raise InvalidArgument("side 'd' accepts one or two threshold values")
            # Lower hinge below the first threshold, higher hinge above the last
            basis_cols = [np.maximum(thr[0] - x, 0), np.maximum(x - thr[-1], 0)]
        else:
            raise InvalidArgument(f"Invalid side '{side}'. Must be 'h', 'l', or 'd'")

        self.attributes['thr.value'] = thr
        self.attributes['side'] = side

        basis = np.column_stack(basis_cols)
        if self.intercept:
            basis = np.column_stack([np.ones(len(x)), basis])

        return basis

    def _resolve(self) -> Dict[str, Any]:
        return {
            'thr_value': self.attributes['thr.value'],
            'side': self.side,
            'intercept': self.intercept,
        }


BASIS_CLASSES = {
    BasisFamily.LIN: LinearBasis,
    BasisFamily.POLY: PolynomialBasis,
    BasisFamily.BS: BSplineBasis,
    BasisFamily.NS: NaturalSplineBasis,
    BasisFamily.PS: PSplineBasis,
    BasisFamily.THR: ThresholdBasis,
}
