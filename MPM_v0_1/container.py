from __future__ import annotations

"""Imputation container.

A ``MidsContainer`` is the in-memory result of a chained-equations run with
``m`` completed imputations. Column references are 0-based positions in
``data.columns``.

Layout
------
- ``data``: the incomplete data (NaN marks unobserved cells)
- ``where``: bool (n, p), True for cells that were imputed
- ``imp``: ``{j: array (where[:, j].sum(), m)}``, rows in ascending row order
- ``predictor_matrix``: int (p, p) in {0, 1, 2}; row j lists predictors of j
- ``method``: imputation method per column ("" for not imputed)
- ``visit_sequence``: columns in the order they were visited
"""

import copy
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import numpy as np
import pandas as pd


@dataclass
class MidsContainer:
    data: pd.DataFrame
    where: np.ndarray
    imp: Dict[int, np.ndarray]
    predictor_matrix: np.ndarray
    method: List[str]
    visit_sequence: List[int]
    m: int
    seed: object = None
    iterations: int = 0
    chain_means: Dict[int, np.ndarray] = field(default_factory=dict)

    def __post_init__(self):
        self.where = np.asarray(self.where, dtype=bool)
        self.predictor_matrix = np.asarray(self.predictor_matrix)
        self.method = list(self.method)
        self.visit_sequence = [int(j) for j in self.visit_sequence]

        n, p = self.data.shape
        if self.where.shape != (n, p):
            raise ValueError(f"'where' has shape {self.where.shape}, expected {(n, p)}.")
        if self.predictor_matrix.shape != (p, p):
            raise ValueError(
                f"'predictor_matrix' has shape {self.predictor_matrix.shape}, expected {(p, p)}."
            )
        if len(self.method) != p:
            raise ValueError(f"'method' has {len(self.method)} entries, expected {p}.")

    # ------------------------------------------------------------------
    # Shape helpers
    # ------------------------------------------------------------------
    @property
    def n_rows(self) -> int:
        return int(self.data.shape[0])

    @property
    def n_cols(self) -> int:
        return int(self.data.shape[1])

    @property
    def columns(self) -> List[str]:
        return [str(c) for c in self.data.columns]

    def observed(self) -> np.ndarray:
        """Boolean (n, p) matrix of observed cells."""
        return self.data.notna().to_numpy()

    def nmis(self) -> pd.Series:
        return self.data.isna().sum()

    # ------------------------------------------------------------------
    # Completed data
    # ------------------------------------------------------------------
    def complete(self, k: int = 0, *, only_unobserved: bool = False) -> pd.DataFrame:
        """Return the k-th completed data set.

        Target cells of every column with imputations are overwritten with
        ``imp[j][:, k]``. With ``only_unobserved=True`` cells that are targets
        but already observed keep their observed value.
        """
        if not 0 <= int(k) < self.m:
            raise IndexError(f"Imputation index {k} out of range for m={self.m}.")

        out = self.data.copy()
        r = self.observed()
        for j, values in self.imp.items():
            wy = self.where[:, j]
            if not wy.any():
                continue
            fill = wy & ~r[:, j] if only_unobserved else wy
            col_vals = np.asarray(values)[:, k]
            keep = fill[wy]
            rows = np.flatnonzero(fill)
            assign_column(out, j, rows, col_vals[keep])
        return out

    def copy(self) -> "MidsContainer":
        return copy.deepcopy(self)


def assign_column(df: pd.DataFrame, j: int, rows: np.ndarray, values: np.ndarray) -> None:
    """Assign values into column position j with dtype safety."""
    if len(rows) == 0:
        return
    col = df.columns[j]
    dtype = df[col].dtype

    if isinstance(dtype, pd.CategoricalDtype):
        # values must already be valid categories
        df.loc[df.index[rows], col] = np.asarray(values, dtype=object)
    elif pd.api.types.is_integer_dtype(dtype) or str(dtype) == "Int64":
        df[col] = df[col].astype("float64")
        df.iloc[rows, j] = np.asarray(values, dtype=float)
    elif pd.api.types.is_numeric_dtype(dtype):
        df.iloc[rows, j] = np.asarray(values, dtype=float)
    else:
        df.loc[df.index[rows], col] = np.asarray(values, dtype=object)


@dataclass(frozen=True)
class BinarizeParams:
    """Parameters of a dummy transform, needed to invert it.

    Attributes:
        src_data: the source frame before binarization
        n_src_cols: number of source columns
        n_pad_cols: number of columns after binarization
        src_factor_cols: source positions of the binarized factors
        dummy_cols: per factor, positions of its indicator columns
        src_names: source column names
        pad_names: column names after binarization
        src_levels: per factor, its level names
    """
    src_data: pd.DataFrame
    n_src_cols: int
    n_pad_cols: int
    src_factor_cols: Tuple[int, ...]
    dummy_cols: Tuple[Tuple[int, ...], ...]
    src_names: Tuple[str, ...]
    pad_names: Tuple[str, ...]
    src_levels: Tuple[Tuple[str, ...], ...]
