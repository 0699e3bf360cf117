"""
pdlnm: Penalized Distributed Lag Non-Linear Models in Python

A Python implementation of distributed lag non-linear models (DLNMs) with
the penalized framework of Gasparrini, Scheipl, Armstrong & Kenward (2017)
for modeling exposure-lag-response associations in time series studies.

This package provides:
- Lagged exposure matrices and one-dimensional basis functions
- Cross-basis matrices for the exposure and lag dimensions
- Penalty matrices, including the doubly varying lag penalty
- GLM fitting with statsmodels and penalized quasi-Poisson fitting
- Quasi-AIC knot selection
- Lag-specific and cumulative predictions with relative risks

Main classes:
- OneBasis: One-dimensional basis functions
- CrossBasis: Cross-basis matrices for distributed lag models
- PenalizedCrossBasis / PenalizedDLNM: Penalized cross-basis and its fitter
- CrossPred: Prediction results and inference

Based on the R dlnm package by Antonio Gasparrini.
"""

__version__ = "0.2.0"
__author__ = "Python DLNM Contributors"

# Core classes
from .basis import OneBasis, CrossBasis
from .prediction import CrossPred, crosspred

# GLM integration and model fitting
from .glm_integration import DLNMGLMInterface, fit_dlnm_model, seasonal_covariates
from .model_selection import qaic, knots_grid_search, KnotsGridResult

# Utility functions
from .utils import mklag, seqlag, lag_matrix, equalknots, logknots

# Basis function implementations
from .basis_functions import (
    BasisFamily,
    LinearBasis,
    PolynomialBasis,
    BSplineBasis,
    NaturalSplineBasis,
    PSplineBasis,
    ThresholdBasis,
)

# Penalty matrices
from .penalties import (
    difference_matrix,
    varying_weights,
    lag_smoothness_penalty,
    ridge_penalty,
    doubly_varying_lag_penalties,
    pspline_penalty,
    expand_penalty,
    check_penalty,
)

# Penalized DLNM framework
from .penalized import (
    PenalizedCrossBasis,
    PenalizedDLNM,
    penalized_dlnm,
)

# Errors and warnings
from .exceptions import (
    InvalidArgument,
    NumericalNonConvergence,
    ConvergenceWarning,
    SingularMatrixWarning,
)

# Analysis workflow
from .analysis import AnalysisConfig, ModelResult, run_analysis

# Data
from . import data

__all__ = [
    "OneBasis",
    "CrossBasis",
    "CrossPred",
    "crosspred",
    "DLNMGLMInterface",
    "fit_dlnm_model",
    "seasonal_covariates",
    "qaic",
    "knots_grid_search",
    "KnotsGridResult",
    "mklag",
    "seqlag",
    "lag_matrix",
    "equalknots",
    "logknots",
    "BasisFamily",
    "LinearBasis",
    "PolynomialBasis",
    "BSplineBasis",
    "NaturalSplineBasis",
    "PSplineBasis",
    "ThresholdBasis",
    "difference_matrix",
    "varying_weights",
    "lag_smoothness_penalty",
    "ridge_penalty",
    "doubly_varying_lag_penalties",
    "pspline_penalty",
    "expand_penalty",
    "check_penalty",
    "PenalizedCrossBasis",
    "PenalizedDLNM",
    "penalized_dlnm",
    "InvalidArgument",
    "NumericalNonConvergence",
    "ConvergenceWarning",
    "SingularMatrixWarning",
    "AnalysisConfig",
    "ModelResult",
    "run_analysis",
    "data",
]
