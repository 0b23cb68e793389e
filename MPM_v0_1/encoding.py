from __future__ import annotations

"""Dummy transform of multi-level factors and its inverse.

``binarize`` replaces each selected factor column, in place, by one indicator
column per level and expands the predictor matrix to match. ``factorize``
takes an imputation container of the binarized data and rebuilds the source
factors from their indicator groups.

Indicator columns are named ``"<column>.<level>"``.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from .container import BinarizeParams, MidsContainer
from .exceptions import ConsistencyError, DomainError
from .validation import validate_binarize_cols, validate_binarize_params, validate_pred_matrix

log = logging.getLogger(__name__)


@dataclass
class FactorizedResult:
    """Source-column view of an imputation container.

    Not a full container: it only holds what is needed to analyse the
    reconstructed factors.
    """
    data: pd.DataFrame
    nmis: pd.Series
    where: pd.DataFrame
    imp: Dict[int, np.ndarray]


def binarize(
    data: pd.DataFrame,
    cols: Any = None,
    pred_matrix: Optional[np.ndarray] = None,
) -> Tuple[pd.DataFrame, np.ndarray, BinarizeParams]:
    """Replace multi-level factors by indicator columns.

    Args:
        data: source frame; factors use the pandas category dtype
        cols: factor columns (names or positions); default all categorical
            columns with more than two levels
        pred_matrix: (p, p) predictor matrix of the source columns; default
            all ones off the diagonal

    Returns:
        (binarized data, expanded predictor matrix, parameters for factorize)
    """
    src = data.copy()
    n_src = src.shape[1]
    src_names = [str(c) for c in src.columns]

    if cols is None:
        cols = [
            j for j in range(n_src)
            if isinstance(src.iloc[:, j].dtype, pd.CategoricalDtype) and len(src.iloc[:, j].cat.categories) > 2
        ]
        if not cols:
            raise DomainError("Data contains no categorical columns with more than two levels.")
    else:
        cols = validate_binarize_cols(src, cols)
    factor_cols = sorted(cols)

    if pred_matrix is None:
        pred = np.ones((n_src, n_src), dtype=int) - np.eye(n_src, dtype=int)
    else:
        pred = validate_pred_matrix(pred_matrix, n_src)

    parts: List[pd.DataFrame] = []
    pad_src: List[int] = []
    dummy_cols: List[Tuple[int, ...]] = []
    src_levels: List[Tuple[str, ...]] = []

    for j in range(n_src):
        col = src.iloc[:, j]
        if j in factor_cols:
            block = pd.get_dummies(col, prefix=src_names[j], prefix_sep=".", dtype=float)
            block.loc[col.isna().to_numpy(), :] = np.nan
            start = len(pad_src)
            dummy_cols.append(tuple(range(start, start + block.shape[1])))
            src_levels.append(tuple(str(lv) for lv in col.cat.categories))
        else:
            block = src.iloc[:, [j]].copy()
            block.columns = [src_names[j]]
        parts.append(block)
        pad_src.extend([j] * block.shape[1])

    pad = pd.concat(parts, axis=1)
    pad.columns = [str(c) for c in pad.columns]
    if pad.columns.duplicated().any():
        dupes = pad.columns[pad.columns.duplicated()].tolist()
        raise ConsistencyError(f"Binarized column names are not unique: {dupes}.")

    # indicators of one factor inherit pred[j, j] == 0, so they never predict each other
    pad_pred = pred[np.ix_(pad_src, pad_src)]

    params = BinarizeParams(
        src_data=src,
        n_src_cols=n_src,
        n_pad_cols=pad.shape[1],
        src_factor_cols=tuple(factor_cols),
        dummy_cols=tuple(dummy_cols),
        src_names=tuple(src_names),
        pad_names=tuple(pad.columns),
        src_levels=tuple(src_levels),
    )
    return pad, pad_pred, params


def _decode_block(block: np.ndarray, categories: pd.Index, ordered: bool) -> pd.Categorical:
    """Level of the largest indicator per row; rows with NaN stay missing."""
    na = np.isnan(block).any(axis=1)
    codes = np.where(na, -1, np.argmax(np.nan_to_num(block, nan=-np.inf), axis=1))
    return pd.Categorical.from_codes(codes, categories=categories, ordered=ordered)


def factorize(container: MidsContainer, params: BinarizeParams) -> FactorizedResult:
    """Rebuild the source factors of a binarized imputation container.

    Imputed indicator rows that are not exactly one-hot (e.g. recipients that
    were never post-matched) decode to a missing value.
    """
    validate_binarize_params(container, params)

    src = params.src_data
    factor_of = dict(zip(params.src_factor_cols, params.dummy_cols))

    # source column -> positions in the binarized frame
    pad_positions: List[Tuple[int, ...]] = []
    pos = 0
    for j in range(params.n_src_cols):
        width = len(factor_of[j]) if j in factor_of else 1
        pad_positions.append(tuple(range(pos, pos + width)))
        pos += width

    columns: Dict[Any, Any] = {}
    where = np.zeros((container.n_rows, params.n_src_cols), dtype=bool)
    imp: Dict[int, np.ndarray] = {}

    for j, name in enumerate(src.columns):
        positions = pad_positions[j]
        if j in factor_of:
            dtype = src.iloc[:, j].dtype
            block = container.data.iloc[:, list(positions)].to_numpy(dtype=float)
            columns[name] = _decode_block(block, dtype.categories, dtype.ordered)

            target = container.where[:, list(positions)]
            if not (target == target[:, [0]]).all():
                raise ConsistencyError(f"Dummy columns of factor '{name}' do not share one missing data pattern.")
            where[:, j] = target[:, 0]

            if all(p in container.imp for p in positions) and where[:, j].any():
                stacked = np.stack([np.asarray(container.imp[p], dtype=float) for p in positions], axis=-1)
                codes = np.argmax(stacked, axis=-1)
                decoded = np.asarray(dtype.categories, dtype=object)[codes]
                # rows without exactly one 1 name no level
                one_hot = np.isin(stacked, (0.0, 1.0)).all(axis=-1) & (stacked.sum(axis=-1) == 1)
                if not one_hot.all():
                    log.warning(
                        "factor '%s': %d imputed value(s) are not one-hot and are left missing",
                        name, int((~one_hot).sum()),
                    )
                    decoded[~one_hot] = np.nan
                imp[j] = decoded
        else:
            p = positions[0]
            columns[name] = container.data.iloc[:, p].to_numpy()
            where[:, j] = container.where[:, p]
            if p in container.imp:
                imp[j] = np.asarray(container.imp[p]).copy()

    data = pd.DataFrame(columns, index=container.data.index)
    # restore source dtypes of the non-factor columns
    for j, name in enumerate(src.columns):
        if j not in factor_of:
            data[name] = data[name].astype(container.data.iloc[:, pad_positions[j][0]].dtype)

    return FactorizedResult(
        data=data,
        nmis=data.isna().sum(),
        where=pd.DataFrame(where, columns=src.columns, index=container.data.index),
        imp=imp,
    )
