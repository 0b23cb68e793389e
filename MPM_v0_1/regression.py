from __future__ import annotations

"""Linear-model helpers for predictive mean matching.

Reference:
    Van Buuren, S. (2018). Flexible Imputation of Missing Data.
    Second Edition. Chapman & Hall/CRC. Algorithm 3.1 (Bayesian linear
    regression) and Section 3.4 (predictive mean matching).
"""

import warnings
from dataclasses import dataclass

import numpy as np


@dataclass
class RidgeDraw:
    """Result of one Bayesian ridge draw.

    beta_hat is the ridge estimate, beta_dot a draw from its posterior and
    sigma_dot the matching residual standard deviation draw.
    """
    beta_hat: np.ndarray
    beta_dot: np.ndarray
    sigma_dot: float

    def predict(self, X: np.ndarray, *, draw: bool = False) -> np.ndarray:
        X_aug = np.column_stack([np.ones(X.shape[0]), X])
        return X_aug @ (self.beta_dot if draw else self.beta_hat)


def bayesian_ridge_draw(
    X_train: np.ndarray,
    y_train: np.ndarray,
    rng: np.random.Generator,
    ridge: float = 1e-5,
) -> RidgeDraw:
    """Bayesian linear regression with parameter draw.

    1. beta_hat = (X'X + diag(X'X) * ridge)^(-1) X'y
    2. sigma_dot^2 = rss / chi2(df)
    3. beta_dot = beta_hat + sigma_dot * chol(V) z

    An intercept column is prepended to ``X_train``.
    """
    n, p = X_train.shape
    X_aug = np.column_stack([np.ones(n), X_train])
    p_aug = p + 1

    S = X_aug.T @ X_aug
    penalty = np.diag(np.diag(S)) * ridge
    try:
        V = np.linalg.inv(S + penalty)
    except np.linalg.LinAlgError:
        V = np.linalg.inv(S + np.eye(p_aug) * 0.01)

    beta_hat = V @ X_aug.T @ y_train

    residuals = y_train - X_aug @ beta_hat
    df = max(n - p_aug, 1)
    rss = float(np.sum(residuals ** 2))
    sigma_dot = float(np.sqrt(rss / rng.chisquare(df)))

    try:
        V_sqrt = np.linalg.cholesky((V + V.T) / 2)
    except np.linalg.LinAlgError:
        # V is not positive definite, use SVD
        U, s, _ = np.linalg.svd(V)
        V_sqrt = U @ np.diag(np.sqrt(np.maximum(s, 0)))

    z = rng.standard_normal(p_aug)
    beta_dot = beta_hat + sigma_dot * V_sqrt @ z
    return RidgeDraw(beta_hat=beta_hat, beta_dot=beta_dot, sigma_dot=sigma_dot)


def remove_lindep(
    X: np.ndarray,
    y: np.ndarray,
    eps: float = 1e-4,
    maxcor: float = 0.99,
) -> np.ndarray:
    """Return a boolean mask of predictors to keep.

    Drops near-constant predictors (variance < eps), predictors whose absolute
    correlation with ``y`` exceeds ``maxcor``, and then, one at a time, the
    predictor loading most on the smallest eigenvector of the predictor
    correlation matrix while the eigenvalue ratio is below ``eps``.
    """
    n, p = X.shape
    keep = np.ones(p, dtype=bool)
    if p == 0:
        return keep
    if n < 2 or np.var(y) < eps:
        return np.zeros(p, dtype=bool)

    keep &= np.var(X, axis=0) >= eps
    if not keep.any():
        return keep

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        idx = np.flatnonzero(keep)
        cors = np.array([np.corrcoef(X[:, j], y)[0, 1] for j in idx])
        cors = np.nan_to_num(cors, nan=0.0)
        keep[idx[np.abs(cors) > maxcor]] = False

        while keep.sum() > 1:
            idx = np.flatnonzero(keep)
            R = np.nan_to_num(np.corrcoef(X[:, idx], rowvar=False), nan=0.0)
            eigval, eigvec = np.linalg.eigh(R)
            if eigval[-1] <= 0 or eigval[0] / eigval[-1] >= eps:
                break
            worst = int(np.argmax(np.abs(eigvec[:, 0])))
            keep[idx[worst]] = False

    return keep
