from __future__ import annotations

"""Distances between recipient and donor predictive means.

All metrics take ``rec`` (n_rec, k) and ``don`` (n_don, k) arrays, where k is
the number of columns in the group, and return an (n_rec, n_don) matrix.
Weights scale each of the k dimensions; None means uniform weights.

- manhattan:   sum_c w_c |a_c - b_c|
- euclidian:   sqrt(sum_c w_c (a_c - b_c)^2)
- mahalanobis: (a - b)' W^1/2 S^-1 W^1/2 (a - b), S the ridge-regularized
               covariance of the donor predictive means
- residual:    as mahalanobis, with S the covariance of the donor residuals,
               standard deviations floored at eps and correlations clipped
               to +-min(maxcor, 1 - eps)
"""

import warnings
from typing import Optional

import numpy as np
from scipy.spatial.distance import cdist

from .exceptions import DomainError
from .validation import DISTANCE_METRICS


def _as_2d(x: np.ndarray) -> np.ndarray:
    x = np.asarray(x, dtype=float)
    if x.ndim == 1:
        x = x[:, None]
    return x


def regularized_covariance(values: np.ndarray, ridge: float) -> np.ndarray:
    """Covariance of the rows of ``values`` plus ``ridge * diag``."""
    values = _as_2d(values)
    k = values.shape[1]
    if values.shape[0] > 1:
        S = np.atleast_2d(np.cov(values, rowvar=False))
    else:
        S = np.zeros((k, k))
    S = S + np.diag(np.diag(S)) * ridge
    # constant dimensions would leave S singular
    flat = np.diag(S) <= 0
    if flat.any():
        S = S + np.diag(flat.astype(float)) * ridge
    return S


def residual_covariance(residuals: np.ndarray, eps: float, maxcor: float) -> np.ndarray:
    """Covariance of donor residuals with floored sd and clipped correlations."""
    residuals = _as_2d(residuals)
    k = residuals.shape[1]
    if residuals.shape[0] > 1:
        sd = residuals.std(axis=0, ddof=1)
    else:
        sd = np.zeros(k)
    sd = np.maximum(np.nan_to_num(sd, nan=0.0), eps)

    if k == 1 or residuals.shape[0] < 3:
        C = np.eye(k)
    else:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=RuntimeWarning)
            C = np.nan_to_num(np.corrcoef(residuals, rowvar=False), nan=0.0)
        bound = min(maxcor, 1.0 - eps)
        C = np.clip(C, -bound, bound)
        np.fill_diagonal(C, 1.0)
    return C * np.outer(sd, sd)


def _quadratic_form(rec: np.ndarray, don: np.ndarray, VI: np.ndarray) -> np.ndarray:
    diff = rec[:, None, :] - don[None, :, :]
    out = np.einsum("ijk,kl,ijl->ij", diff, VI, diff)
    return np.maximum(out, 0.0)


def pairwise_distances(
    rec: np.ndarray,
    don: np.ndarray,
    metric: str = "euclidian",
    weights: Optional[np.ndarray] = None,
    *,
    ridge: float = 1e-5,
    eps: float = 1e-4,
    maxcor: float = 0.99,
    residuals: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Distance matrix between recipient rows and donor rows.

    ``residuals`` (n_don, k) is required for the residual metric.
    """
    rec = _as_2d(rec)
    don = _as_2d(don)
    k = rec.shape[1]
    if don.shape[1] != k:
        raise ValueError(f"Recipients have {k} dimensions but donors have {don.shape[1]}.")

    w = np.ones(k) if weights is None else np.asarray(weights, dtype=float)
    if w.shape != (k,):
        raise ValueError(f"Weights have shape {w.shape}, expected ({k},).")

    if metric == "manhattan":
        return cdist(rec, don, "cityblock", w=w)
    if metric == "euclidian":
        return cdist(rec, don, "euclidean", w=w)

    if metric == "mahalanobis":
        S = regularized_covariance(don, ridge)
    elif metric == "residual":
        if residuals is None:
            raise ValueError("The residual metric needs the donor residuals.")
        S = residual_covariance(residuals, eps, maxcor)
    else:
        raise DomainError(f"Unknown distance metric '{metric}'. It has to be one of {DISTANCE_METRICS}.")

    VI = np.linalg.pinv(S)
    sw = np.sqrt(w)
    VI = sw[:, None] * VI * sw[None, :]
    return _quadratic_form(rec, don, VI)


def rank_donors(distances: np.ndarray) -> np.ndarray:
    """Donor positions per recipient, nearest first; ties keep row order."""
    return np.argsort(np.atleast_2d(distances), axis=1, kind="stable")
