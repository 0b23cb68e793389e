# mice.py
# -*- coding: utf-8 -*-
"""
MICE (Multiple Imputation by Chained Equations) engine producing a
``MidsContainer`` with m completed imputations, and the predictive-mean
source used by post-matching.

Reference:
    Van Buuren, S. & Groothuis-Oudshoorn, K. (2011).
    mice: Multivariate Imputation by Chained Equations in R.
    Journal of Statistical Software, 45(3), 1-67.
    doi:10.18637/jss.v045.i03

Methods:
    - pmm:     predictive mean matching (Type I: beta_hat for observed rows,
               beta_dot for missing rows), donors drawn from the observed values
    - norm:    Bayesian linear regression draw plus noise
    - logreg:  logistic regression for binary categorical columns
    - polyreg: multinomial logistic regression for categorical columns
"""

from __future__ import annotations

import logging
import warnings
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.linear_model import LogisticRegression
from sklearn.preprocessing import LabelEncoder

from .analysis import expand_factors, predictor_columns
from .container import MidsContainer, assign_column
from .regression import bayesian_ridge_draw, remove_lindep
from .utils import SeedLike, spawn_generators
from .validation import MatchingOptions, validate_pred_matrix

log = logging.getLogger(__name__)

SUPPORTED_METHODS = ("", "pmm", "norm", "logreg", "polyreg")


def _pmm_match(
    yhat_obs: np.ndarray,
    yhat_mis: np.ndarray,
    y_obs: np.ndarray,
    donors: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """
    Predictive Mean Matching core.

    For every missing row, draw one of the ``donors`` observed rows whose
    predicted values are closest and return its observed value.
    """
    n_mis = len(yhat_mis)
    d = min(donors, len(yhat_obs))
    y_imp = np.empty(n_mis, dtype=float)

    for i in range(n_mis):
        distances = np.abs(yhat_obs - yhat_mis[i])
        donor_indices = np.argsort(distances, kind="stable")[:d]
        y_imp[i] = y_obs[rng.choice(donor_indices)]

    return y_imp


def default_method(series: pd.Series) -> str:
    if not series.isna().any():
        return ""
    if isinstance(series.dtype, pd.CategoricalDtype):
        return "logreg" if len(series.cat.categories) <= 2 else "polyreg"
    if pd.api.types.is_numeric_dtype(series.dtype):
        return "pmm"
    return "polyreg"


class MICEEngine:
    """
    Chained-equations imputation engine.

    - continuous (and 0/1 indicator) columns: pmm or norm
    - categorical columns: logreg / polyreg with probability sampling
    - one independent random stream per chain, spawned from ``seed``
    """

    def __init__(
        self,
        m: int = 5,
        max_iter: int = 5,               # mice default maxit=5
        method: Optional[Union[Sequence[str], Dict[str, str]]] = None,
        predictor_matrix: Optional[np.ndarray] = None,
        donors: int = 5,                 # mice default donor pool size
        ridge: float = 1e-5,
        eps: float = 1e-4,
        maxcor: float = 0.99,
        seed: SeedLike = None,
    ):
        """
        Args:
            m: number of completed imputations
            max_iter: number of chained iterations per imputation
            method: per-column methods, as a list or a {column name: method} dict.
                Columns without missing values are never imputed.
            predictor_matrix: (p, p) matrix in {0, 1, 2}; row j marks the
                predictors of column j. Default: all other columns.
            donors: pmm donor pool size
            ridge: ridge penalty of the Bayesian regression draw
            eps, maxcor: thresholds for removing linearly dependent predictors
            seed: int, SeedSequence or Generator
        """
        if int(m) < 1:
            raise ValueError(f"m has to be at least 1, got {m}.")
        if int(max_iter) < 1:
            raise ValueError(f"max_iter has to be at least 1, got {max_iter}.")
        self.m = int(m)
        self.max_iter = int(max_iter)
        self.method = method
        self.predictor_matrix = predictor_matrix
        self.donors = int(donors)
        self.ridge = float(ridge)
        self.eps = float(eps)
        self.maxcor = float(maxcor)
        self.seed = seed

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def _resolve_methods(self, data: pd.DataFrame) -> List[str]:
        defaults = [default_method(data[c]) for c in data.columns]
        if self.method is None:
            return defaults

        if isinstance(self.method, dict):
            unknown = [c for c in self.method if c not in data.columns]
            if unknown:
                raise KeyError(f"Columns {unknown} in 'method' not found in data.")
            methods = [self.method.get(c, d) for c, d in zip(data.columns, defaults)]
        else:
            methods = list(self.method)
            if len(methods) != data.shape[1]:
                raise ValueError(f"'method' has {len(methods)} entries, expected {data.shape[1]}.")

        for c, meth in zip(data.columns, methods):
            if meth not in SUPPORTED_METHODS:
                raise ValueError(f"Unknown imputation method '{meth}' for column '{c}'. Use one of {SUPPORTED_METHODS}.")
            if meth in ("logreg", "polyreg") and pd.api.types.is_numeric_dtype(data[c].dtype):
                raise ValueError(f"Method '{meth}' needs a categorical column, but '{c}' is numeric.")
            if meth in ("pmm", "norm") and not pd.api.types.is_numeric_dtype(data[c].dtype):
                raise ValueError(f"Method '{meth}' needs a numeric column, but '{c}' is {data[c].dtype}.")

        # never impute complete columns
        return [meth if data[c].isna().any() else "" for c, meth in zip(data.columns, methods)]

    def _resolve_predictors(self, data: pd.DataFrame, methods: List[str]) -> np.ndarray:
        p = data.shape[1]
        if self.predictor_matrix is None:
            pred = np.ones((p, p), dtype=int) - np.eye(p, dtype=int)
        else:
            pred = validate_pred_matrix(self.predictor_matrix, p).copy()
        for j, meth in enumerate(methods):
            if meth == "":
                pred[j, :] = 0
        return pred

    # ------------------------------------------------------------------
    # One chain
    # ------------------------------------------------------------------
    def _initial_fill(self, data: pd.DataFrame, where: np.ndarray, methods: List[str], rng: np.random.Generator) -> pd.DataFrame:
        """Random draw from the observed values of every imputed column."""
        current = data.copy()
        for j, meth in enumerate(methods):
            if meth == "":
                continue
            col = data.iloc[:, j]
            observed = col.dropna().to_numpy(dtype=object)
            rows = np.flatnonzero(where[:, j])
            if len(observed) == 0:
                raise ValueError(f"Column '{data.columns[j]}' has no observed values to impute from.")
            assign_column(current, j, rows, rng.choice(observed, size=len(rows)))
        return current

    def _impute_column(
        self,
        current: pd.DataFrame,
        data: pd.DataFrame,
        j: int,
        meth: str,
        pred: np.ndarray,
        where: np.ndarray,
        rng: np.random.Generator,
    ) -> np.ndarray:
        X_df = expand_factors(current.iloc[:, predictor_columns(pred, j)])
        # predictors that are never imputed may still hold NaNs
        X_df = X_df.loc[:, X_df.notna().all(axis=0)]
        X = X_df.to_numpy(dtype=float)

        ry = data.iloc[:, j].notna().to_numpy()
        wy = where[:, j]
        X_obs, X_mis = X[ry], X[wy]

        if meth in ("pmm", "norm"):
            y_obs = pd.to_numeric(data.iloc[:, j][ry], errors="coerce").to_numpy(dtype=float)
            keep = remove_lindep(X_obs, y_obs, eps=self.eps, maxcor=self.maxcor)
            draw = bayesian_ridge_draw(X_obs[:, keep], y_obs, rng, ridge=self.ridge)
            yhat_mis = draw.predict(X_mis[:, keep], draw=True)
            if meth == "norm":
                return yhat_mis + rng.standard_normal(len(yhat_mis)) * draw.sigma_dot
            yhat_obs = draw.predict(X_obs[:, keep])
            return _pmm_match(yhat_obs, yhat_mis, y_obs, self.donors, rng)

        # logreg / polyreg
        y_obs = data.iloc[:, j][ry].to_numpy(dtype=object)
        encoder = LabelEncoder()
        codes = encoder.fit_transform(y_obs.astype(str))
        labels = {str(v): v for v in y_obs}

        if len(encoder.classes_) == 1:
            # only one observed class, nothing to fit
            return np.full(len(X_mis), labels[encoder.classes_[0]], dtype=object)
        if X_obs.shape[1] == 0:
            freq = np.bincount(codes) / len(codes)
            drawn = rng.choice(len(encoder.classes_), size=len(X_mis), p=freq)
            return np.array([labels[c] for c in encoder.inverse_transform(drawn)], dtype=object)

        model = LogisticRegression(solver="lbfgs", max_iter=2000)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            model.fit(X_obs, codes)
        proba = model.predict_proba(X_mis)
        drawn = np.array([rng.choice(model.classes_, p=p_row) for p_row in proba], dtype=int)
        return np.array([labels[c] for c in encoder.inverse_transform(drawn)], dtype=object)

    def _run_chain(
        self,
        data: pd.DataFrame,
        where: np.ndarray,
        methods: List[str],
        pred: np.ndarray,
        visit: List[int],
        rng: np.random.Generator,
    ) -> Tuple[pd.DataFrame, Dict[int, List[float]]]:
        current = self._initial_fill(data, where, methods, rng)
        means: Dict[int, List[float]] = {j: [] for j in visit}

        for it in range(self.max_iter):
            for j in visit:
                values = self._impute_column(current, data, j, methods[j], pred, where, rng)
                assign_column(current, j, np.flatnonzero(where[:, j]), values)
                if methods[j] in ("pmm", "norm"):
                    means[j].append(float(np.mean(values)) if len(values) else float("nan"))
        return current, means

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def fit(self, data: pd.DataFrame) -> MidsContainer:
        """
        Run m chains and collect the imputations.

        Args:
            data: DataFrame with NaNs to impute; categorical columns should use
                the pandas category dtype

        Returns:
            MidsContainer with data, where, imp, predictor matrix, methods,
            visit sequence and per-iteration chain means
        """
        data = data.copy()
        where = data.isna().to_numpy()
        methods = self._resolve_methods(data)
        pred = self._resolve_predictors(data, methods)

        # visit columns by ascending missing count
        nmis = where.sum(axis=0)
        visit = sorted((j for j, meth in enumerate(methods) if meth != ""), key=lambda j: (nmis[j], j))

        imp: Dict[int, np.ndarray] = {}
        for j in visit:
            dtype = object if methods[j] in ("logreg", "polyreg") else float
            imp[j] = np.empty((int(nmis[j]), self.m), dtype=dtype)
        chain_means = {j: np.full((self.max_iter, self.m), np.nan) for j in visit}

        for k, rng in enumerate(spawn_generators(self.seed, self.m)):
            current, means = self._run_chain(data, where, methods, pred, visit, rng)
            for j in visit:
                imp[j][:, k] = current.iloc[:, j].to_numpy()[where[:, j]]
                if means[j]:
                    chain_means[j][:, k] = means[j]
            log.debug("MICE chain %d/%d done", k + 1, self.m)

        return MidsContainer(
            data=data,
            where=where,
            imp=imp,
            predictor_matrix=pred,
            method=methods,
            visit_sequence=visit,
            m=self.m,
            seed=self.seed,
            iterations=self.max_iter,
            chain_means=chain_means,
        )


# ============================================================
# Predictive means for post-matching
# ============================================================

def predictive_means(
    frame: pd.DataFrame,
    container: MidsContainer,
    group: Sequence[int],
    donor_rows: np.ndarray,
    recipient_rows: np.ndarray,
    options: MatchingOptions,
    rng: np.random.Generator,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Predicted values of every column in ``group`` on one completed data set.

    For each column a Bayesian ridge model is fit on the donor rows; donors
    get ``beta_hat`` predictions, recipients ``beta_dot`` predictions.

    Args:
        frame: the completed data set of the current imputation
        container: the imputation container (for predictor sets)
        group: column positions
        donor_rows, recipient_rows: row positions (eligible for every column)
        options: ridge / eps / maxcor
        rng: random source of this imputation

    Returns:
        yhat_don (n_don, k), yhat_rec (n_rec, k), residuals of donors (n_don, k)
    """
    k = len(group)
    yhat_don = np.empty((len(donor_rows), k))
    yhat_rec = np.empty((len(recipient_rows), k))
    resid = np.empty((len(donor_rows), k))

    for c, j in enumerate(group):
        X = expand_factors(frame.iloc[:, predictor_columns(container.predictor_matrix, j)]).to_numpy(dtype=float)
        y = pd.to_numeric(frame.iloc[:, j], errors="coerce").to_numpy(dtype=float)
        X_obs, X_mis = X[donor_rows], X[recipient_rows]
        y_obs = y[donor_rows]

        keep = remove_lindep(X_obs, y_obs, eps=options.eps, maxcor=options.maxcor)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=RuntimeWarning)
            draw = bayesian_ridge_draw(X_obs[:, keep], y_obs, rng, ridge=options.ridge)

        yhat_don[:, c] = draw.predict(X_obs[:, keep])
        yhat_rec[:, c] = draw.predict(X_mis[:, keep], draw=True)
        resid[:, c] = y_obs - yhat_don[:, c]

    return yhat_don, yhat_rec, resid
