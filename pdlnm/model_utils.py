"""
Model integration utilities for pdlnm

This module provides utilities for extracting coefficients, variance-covariance matrices,
and link functions from the fitted models accepted by crosspred: statsmodels GLM
results, DLNMGLMInterface and PenalizedDLNM.
"""

import numpy as np
from typing import Any, Optional, Dict
import warnings

from .exceptions import InvalidArgument


def getcoef(model: Any, model_class: Optional[str] = None) -> np.ndarray:
    """
    Extract coefficients from various model types.

    Cross-basis specific coefficients (``cb_coef``) take precedence over the
    full coefficient vector.

    Parameters
    ----------
    model : fitted model object
        Fitted statistical model
    model_class : str, optional
        Model class name for error messages

    Returns
    -------
    np.ndarray
        Model coefficients

    Raises
    ------
    AttributeError
        If coefficients cannot be extracted from the model
    """
    if model_class is None:
        model_class = type(model).__name__

    coef_attrs = ['cb_coef', 'params', 'coefficients', 'coef_']

    for attr in coef_attrs:
        coef = getattr(model, attr, None)
        if coef is not None and not callable(coef):
            return np.asarray(coef, dtype=float)

    raise AttributeError(
        f"Cannot extract coefficients from model of type {model_class}. "
        f"Supported attributes are: {coef_attrs}"
    )


def getvcov(model: Any, model_class: Optional[str] = None) -> np.ndarray:
    """
    Extract variance-covariance matrix from various model types.

    Parameters
    ----------
    model : fitted model object
        Fitted statistical model
    model_class : str, optional
        Model class name for error messages

    Returns
    -------
    np.ndarray
        Variance-covariance matrix

    Raises
    ------
    AttributeError
        If variance-covariance matrix cannot be extracted from the model
    """
    if model_class is None:
        model_class = type(model).__name__

    vcov_attrs = ['cb_vcov', 'vcov', 'cov_params']

    for attr in vcov_attrs:
        vcov = getattr(model, attr, None)
        if vcov is None:
            continue
        if callable(vcov):
            vcov = vcov()
        return np.asarray(vcov, dtype=float)

    # Fall back to a diagonal matrix from standard errors
    se = getattr(model, 'bse', None)
    if se is not None:
        warnings.warn(
            "Full variance-covariance matrix not available. "
            "Creating diagonal matrix from standard errors."
        )
        return np.diag(np.asarray(se, dtype=float) ** 2)

    raise AttributeError(
        f"Cannot extract variance-covariance matrix from model of type {model_class}. "
        f"Tried attributes: {vcov_attrs} and 'bse'"
    )


def getlink(model: Any,
            model_link: Optional[str] = None) -> Optional[str]:
    """
    Identify the link function of a fitted model.

    Parameters
    ----------
    model : fitted model object
        Fitted statistical model
    model_link : str, optional
        User-specified link function (takes precedence)

    Returns
    -------
    str or None
        'identity', 'log', 'logit', ... or None if not determined
    """
    if model_link is not None:
        return model_link

    # Our own model wrappers record the link directly
    link = getattr(model, 'model_link', None)
    if isinstance(link, str):
        return link

    # statsmodels results expose model.family.link
    family = getattr(getattr(model, 'model', model), 'family', None)
    if family is not None and hasattr(family, 'link'):
        link_name = type(family.link).__name__.lower()
        for name in ('identity', 'logit', 'log'):
            if link_name.startswith(name):
                return name

    return None


def validate_model_compatibility(model: Any,
                                 basis_ncol: int,
                                 basis_name: str = "basis") -> Dict[str, Any]:
    """
    Validate that a model is compatible with a basis matrix and extract key information.

    Parameters
    ----------
    model : fitted model object
        Fitted statistical model
    basis_ncol : int
        Number of columns in the basis matrix
    basis_name : str, default="basis"
        Name of the basis for error messages

    Returns
    -------
    dict
        Dictionary containing model information:
        - 'coef': model coefficients
        - 'vcov': variance-covariance matrix
        - 'link': link function
        - 'class': model class name

    Raises
    ------
    InvalidArgument
        If the model is not compatible with the basis matrix
    """
    model_class = type(model).__name__

    try:
        coef = getcoef(model, model_class)
        vcov = getvcov(model, model_class)
    except AttributeError as e:
        raise InvalidArgument(
            f"Model of type {model_class} is not compatible with {basis_name}: {e}"
        ) from e

    link = getlink(model)

    if len(coef) < basis_ncol:
        raise InvalidArgument(
            f"Model has {len(coef)} coefficients but {basis_name} has {basis_ncol} columns. "
            f"Model may not include all {basis_name} terms."
        )

    if vcov.shape[0] < basis_ncol or vcov.shape[1] < basis_ncol:
        raise InvalidArgument(
            f"Variance-covariance matrix has shape {vcov.shape} but needs at least "
            f"({basis_ncol}, {basis_ncol}) for {basis_name}."
        )

    return {
        'coef': coef,
        'vcov': vcov,
        'link': link,
        'class': model_class
    }
