from __future__ import annotations

"""Input checks shared by all post-matching entry points.

Every check is eager and side-effect-free: it either returns a canonical,
0-based, integer-indexed version of its argument or raises one of the
exceptions in :mod:`MPM_v0_1.exceptions`.

Heterogeneous inputs are normalized exactly once here:

- a bare group / weight vector / match variable is promoted to a one-element
  collection;
- column names and positions are turned into a tagged reference
  (``ByName`` / ``ByIndex``) and resolved immediately to a column position.

Nothing downstream of this module accepts column names.
"""

import logging
import numbers
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .container import BinarizeParams, MidsContainer
from .exceptions import (
    ConsistencyError,
    DataCoverageError,
    DomainError,
    SchemaError,
)

log = logging.getLogger(__name__)

MATCHABLE_METHODS = ("pmm", "norm")
DISTANCE_METRICS = ("manhattan", "euclidian", "mahalanobis", "residual")
SELECTION_POLICIES = (0, 1, 2)

Group = Tuple[int, ...]


# ---------------------------------------------------------------------
# Column references
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ByName:
    name: str


@dataclass(frozen=True)
class ByIndex:
    index: int


ColumnRef = Union[ByName, ByIndex]


def _is_number(x: Any) -> bool:
    return isinstance(x, numbers.Real) and not isinstance(x, (bool, np.bool_))


def _is_scalar_ref(x: Any) -> bool:
    return isinstance(x, str) or _is_number(x)


def _is_sequence(x: Any) -> bool:
    return isinstance(x, (list, tuple, np.ndarray, pd.Index, pd.Series))


def _as_list(x: Any) -> List[Any]:
    if isinstance(x, (np.ndarray, pd.Index, pd.Series)):
        return list(np.asarray(x).tolist())
    return list(x)


def group_label(group: Sequence[Any]) -> str:
    """Render a column tuple for error messages, e.g. ``(3, 4, 5)``."""
    return "(" + ", ".join(str(c) for c in group) + ")"


def to_column_ref(value: Any, argname: str) -> ColumnRef:
    """Tag a single column name or position."""
    if isinstance(value, str):
        return ByName(value)
    if isinstance(value, (bool, np.bool_)):
        raise SchemaError(f"Argument '{argname}' contains a boolean where a column name or index was expected.")
    if isinstance(value, numbers.Integral):
        return ByIndex(int(value))
    if isinstance(value, numbers.Real):
        if not np.isfinite(value):
            raise DomainError(f"Argument '{argname}' contains a NaN or infinite column number.")
        if float(value) != int(value):
            raise DomainError(f"Argument '{argname}' contains a non-integral column number ({value}).")
        return ByIndex(int(value))
    raise SchemaError(
        f"Argument '{argname}' contains an element of invalid type {type(value).__name__}."
    )


def resolve_column(ref: ColumnRef, columns: Sequence[str], argname: str) -> int:
    """Turn a tagged reference into a 0-based column position."""
    if isinstance(ref, ByName):
        if ref.name not in columns:
            raise DomainError(f"Argument '{argname}' contains an unknown column name '{ref.name}'.")
        return list(columns).index(ref.name)
    if not 0 <= ref.index < len(columns):
        raise DomainError(
            f"Argument '{argname}' contains an out-of-bounds column index {ref.index} "
            f"(data has {len(columns)} columns)."
        )
    return ref.index


# ---------------------------------------------------------------------
# Column groups
# ---------------------------------------------------------------------

def find_groups(container: MidsContainer) -> List[Group]:
    """Propose column groups from columns with identical target patterns.

    Only visited columns with a matchable method and at least one target
    cell are considered; groups need at least two columns.
    """
    buckets: Dict[bytes, List[int]] = {}
    for j in container.visit_sequence:
        if container.method[j] not in MATCHABLE_METHODS:
            continue
        wy = container.where[:, j]
        if not wy.any():
            continue
        buckets.setdefault(wy.tobytes(), []).append(j)

    groups = [tuple(sorted(cols)) for cols in buckets.values() if len(cols) > 1]
    groups.sort()
    log.debug("find_groups proposed %d group(s): %s", len(groups), groups)
    return groups


def _normalize_groups(groups: Any) -> List[List[Any]]:
    if _is_scalar_ref(groups):
        return [[groups]]
    if not _is_sequence(groups):
        raise SchemaError(
            f"Argument 'groups' has to be a column reference, a group or a list of groups, "
            f"got {type(groups).__name__}."
        )
    items = _as_list(groups)
    if len(items) == 0:
        raise SchemaError("Argument 'groups' is empty.")
    if all(_is_scalar_ref(x) for x in items):
        return [items]
    if any(_is_scalar_ref(x) for x in items):
        raise SchemaError("Argument 'groups' mixes bare column references with nested groups.")
    return items


def _check_group(container: MidsContainer, raw: Any) -> Group:
    if not _is_sequence(raw):
        raise SchemaError(f"Argument 'groups' contains a non-sequence element {raw!r}.")
    items = _as_list(raw)
    label = group_label(items)
    if len(items) == 0:
        raise SchemaError("Argument 'groups' contains an empty group.")
    if not all(_is_scalar_ref(x) for x in items):
        raise SchemaError(f"Column group {label} is not a flat collection of column names or indices.")

    is_name = [isinstance(x, str) for x in items]
    if any(is_name) and not all(is_name):
        raise SchemaError(f"Column group {label} mixes column names and column indices.")

    refs = [to_column_ref(x, "groups") for x in items]
    if len(set(refs)) != len(refs):
        raise ConsistencyError(f"Column group {label} contains duplicate columns.")

    group = tuple(resolve_column(ref, container.columns, "groups") for ref in refs)
    label = group_label(group)

    not_visited = [j for j in group if j not in container.visit_sequence]
    if not_visited:
        raise ConsistencyError(
            f"Column group {label} contains column(s) {not_visited} that are not in the visit sequence."
        )

    bad_methods = {j: container.method[j] for j in group if container.method[j] not in MATCHABLE_METHODS}
    if bad_methods:
        raise ConsistencyError(
            f"Column group {label} contains column(s) with invalid imputation method {bad_methods}; "
            f"the method has to be one of {MATCHABLE_METHODS}."
        )

    if len(group) > 1:
        target = container.where[:, list(group)]
        blockwise = target.all(axis=1) | (~target).all(axis=1)
        if not blockwise.all():
            rows = np.flatnonzero(~blockwise)
            raise ConsistencyError(
                f"Column group {label} is not blockwise missing: rows {rows[:10].tolist()} "
                f"are targets in some but not all of its columns."
            )

    return group


def validate_groups(container: MidsContainer, groups: Any = None) -> List[Group]:
    """Validate ``groups`` and return it as a list of 0-based column tuples.

    Args:
        container: the imputation container the groups refer to
        groups: a single column, a single group, a list of groups, or None.
            Groups hold either column names or column positions.

    Returns:
        list of integer tuples, each in the caller's original order

    Raises:
        DataCoverageError: groups is None and no candidate group exists
        SchemaError / DomainError / ConsistencyError: see module docstring
    """
    if groups is None:
        found = find_groups(container)
        if len(found) == 0:
            raise DataCoverageError(
                "There are no column groups with identical missing data patterns and valid imputation methods."
            )
        return found

    checked = [_check_group(container, raw) for raw in _normalize_groups(groups)]

    seen: Dict[int, Group] = {}
    for group in checked:
        for j in group:
            if j in seen:
                raise ConsistencyError(
                    f"Column {j} appears in both column group {group_label(seen[j])} "
                    f"and column group {group_label(group)}."
                )
            seen[j] = group
    return checked


# ---------------------------------------------------------------------
# Weights
# ---------------------------------------------------------------------

def _check_weight_vector(weights: Any, group: Group) -> Optional[np.ndarray]:
    label = group_label(group)
    if weights is None:
        return None

    if _is_number(weights):
        arr = np.array([weights], dtype=float)
    elif _is_sequence(weights):
        items = _as_list(weights)
        if not all(_is_number(w) for w in items):
            raise SchemaError(f"Weights for column group {label} contain a non-numeric element.")
        arr = np.asarray(items, dtype=float)
    else:
        raise SchemaError(f"Weights for column group {label} are not numeric.")

    # 0 and 1 stand for "no weights"
    if arr.size == 1 and arr[0] in (0.0, 1.0):
        return None

    if arr.size != len(group):
        raise ConsistencyError(
            f"Weights for column group {label} have length {arr.size}, expected {len(group)}."
        )
    if not np.isfinite(arr).all():
        raise DomainError(f"Weights for column group {label} contain a NaN or infinite element.")
    if not (arr > 0).all():
        raise DomainError(f"Weights for column group {label} contain a non-positive element.")
    return arr


def validate_weights(weights: Any, groups: Sequence[Group]) -> List[Optional[np.ndarray]]:
    """Validate per-group dimension weights.

    With a single group, a scalar or a flat numeric vector is taken as the
    weights of that group. Otherwise the sequence is read as one entry per
    group, where an entry of None, 0 or 1 means uniform weighting.
    """
    if weights is None:
        return [None] * len(groups)

    if _is_number(weights):
        per_group = [weights]
    elif _is_sequence(weights):
        items = _as_list(weights)
        if len(groups) == 1 and len(items) > 0 and all(_is_number(w) for w in items):
            per_group = [items]
        else:
            per_group = items
    else:
        raise SchemaError(f"Argument 'weights' is neither numeric nor a sequence, got {type(weights).__name__}.")

    if len(per_group) != len(groups):
        raise ConsistencyError(
            f"The arguments 'weights' and 'groups' have different lengths ({len(per_group)} vs {len(groups)})."
        )
    return [_check_weight_vector(w, g) for w, g in zip(per_group, groups)]


# ---------------------------------------------------------------------
# Match variables
# ---------------------------------------------------------------------

def _is_discrete(series: pd.Series) -> bool:
    dtype = series.dtype
    return (
        isinstance(dtype, pd.CategoricalDtype)
        or pd.api.types.is_integer_dtype(dtype)
        or pd.api.types.is_bool_dtype(dtype)
    )


def validate_match_vars(container: MidsContainer, groups: Sequence[Group], match_vars: Any) -> List[Optional[int]]:
    """Validate the external matching variable of every group.

    Entries of None or "" mean "no restriction" for that group.
    """
    if match_vars is None:
        return [None] * len(groups)

    if _is_scalar_ref(match_vars):
        items = [match_vars]
    elif _is_sequence(match_vars):
        items = _as_list(match_vars)
    else:
        raise SchemaError(
            f"Argument 'match_vars' is neither a column reference nor a sequence, got {type(match_vars).__name__}."
        )

    if len(items) != len(groups):
        raise ConsistencyError(
            f"Argument 'match_vars' has to be of the same length as argument 'groups' "
            f"({len(items)} vs {len(groups)})."
        )

    out: List[Optional[int]] = []
    for group, value in zip(groups, items):
        label = group_label(group)
        if value is None or (isinstance(value, str) and value == ""):
            out.append(None)
            continue
        if not _is_scalar_ref(value):
            raise SchemaError(f"Match variable of column group {label} is not a single column reference.")

        j = resolve_column(to_column_ref(value, "match_vars"), container.columns, "match_vars")
        if j in group:
            raise ConsistencyError(f"Match variable {j} is a member of its own column group {label}.")

        col = container.data.iloc[:, j]
        if not _is_discrete(col):
            raise SchemaError(
                f"Match variable {j} of column group {label} has dtype {col.dtype}; "
                f"it has to be categorical, integer or boolean."
            )
        if col.isna().any():
            raise DomainError(f"Match variable {j} of column group {label} contains missing values.")
        out.append(j)
    return out


# ---------------------------------------------------------------------
# Matching options
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class MatchingOptions:
    """Numeric and categorical options of the matching pass.

    - distance_metric: one of DISTANCE_METRICS
    - donors: size of the nearest-donor pool (>= 1)
    - selection_policy: 0 nearest, 1 uniform random, 2 inverse-distance random
    - ridge: ridge penalty in (0, 1]
    - eps: numerical floor (> 0)
    - maxcor: maximal absolute correlation (> 0)
    """
    distance_metric: str = "euclidian"
    donors: int = 5
    selection_policy: int = 1
    ridge: float = 1e-5
    eps: float = 1e-4
    maxcor: float = 0.99


def _check_integral(value: Any, argname: str) -> int:
    if not _is_number(value):
        raise SchemaError(f"Argument '{argname}' is not a single number.")
    if not np.isfinite(value):
        raise DomainError(f"Argument '{argname}' is either NaN or infinite.")
    if float(value) != int(value):
        raise DomainError(f"Argument '{argname}' is not an integer.")
    return int(value)


def _check_positive(value: Any, argname: str) -> float:
    if not _is_number(value):
        raise SchemaError(f"Argument '{argname}' is not a single number.")
    if not np.isfinite(value):
        raise DomainError(f"Argument '{argname}' is either NaN or infinite.")
    if value <= 0:
        raise DomainError(f"Argument '{argname}' has to be bigger than 0, got {value}.")
    return float(value)


def validate_n_jobs(n_jobs: Any) -> int:
    """Number of worker threads over completed imputations (>= 1)."""
    n_jobs = _check_integral(n_jobs, "n_jobs")
    if n_jobs < 1:
        raise DomainError(f"Argument 'n_jobs' is smaller than 1, got {n_jobs}.")
    return n_jobs


def validate_options(options: Union[MatchingOptions, Mapping[str, Any], None] = None) -> MatchingOptions:
    """Validate matching options and return a normalized ``MatchingOptions``."""
    if options is None:
        options = {}
    if isinstance(options, MatchingOptions):
        raw = {f.name: getattr(options, f.name) for f in fields(MatchingOptions)}
    elif isinstance(options, Mapping):
        known = {f.name for f in fields(MatchingOptions)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise SchemaError(f"Unknown matching option(s) {unknown}; valid options are {sorted(known)}.")
        raw = {f.name: f.default for f in fields(MatchingOptions)}
        raw.update(options)
    else:
        raise SchemaError(f"Matching options have to be a mapping, got {type(options).__name__}.")

    donors = _check_integral(raw["donors"], "donors")
    if donors < 1:
        raise DomainError(f"Argument 'donors' is smaller than 1, got {donors}.")

    metric = raw["distance_metric"]
    if not isinstance(metric, str):
        raise SchemaError("Argument 'distance_metric' is not a character string.")
    if metric not in DISTANCE_METRICS:
        raise DomainError(
            f"Argument 'distance_metric' is invalid ('{metric}'). It has to be one of {DISTANCE_METRICS}."
        )

    policy = _check_integral(raw["selection_policy"], "selection_policy")
    if policy not in SELECTION_POLICIES:
        raise DomainError(f"Argument 'selection_policy' is not one of {SELECTION_POLICIES}, got {policy}.")

    ridge = _check_positive(raw["ridge"], "ridge")
    if ridge > 1:
        raise DomainError(f"Argument 'ridge' is bigger than 1, got {ridge}.")
    eps = _check_positive(raw["eps"], "eps")
    maxcor = _check_positive(raw["maxcor"], "maxcor")

    return MatchingOptions(
        distance_metric=metric,
        donors=donors,
        selection_policy=policy,
        ridge=ridge,
        eps=eps,
        maxcor=maxcor,
    )


# ---------------------------------------------------------------------
# Dummy transform inputs
# ---------------------------------------------------------------------

def validate_binarize_cols(data: pd.DataFrame, cols: Any) -> List[int]:
    """Validate the factor columns to binarize; returns 0-based positions."""
    items = [cols] if _is_scalar_ref(cols) else cols
    if not _is_sequence(items):
        raise SchemaError("Argument 'cols' is neither a column reference nor a sequence.")
    items = _as_list(items)
    if len(items) == 0:
        raise SchemaError("Argument 'cols' is empty.")

    is_name = [isinstance(x, str) for x in items]
    if any(is_name) and not all(is_name):
        raise SchemaError("Argument 'cols' mixes column names and column indices.")

    columns = [str(c) for c in data.columns]
    refs = [to_column_ref(x, "cols") for x in items]
    if len(set(refs)) != len(refs):
        raise ConsistencyError("Argument 'cols' contains duplicates.")
    positions = [resolve_column(ref, columns, "cols") for ref in refs]

    for j in positions:
        dtype = data.iloc[:, j].dtype
        if not isinstance(dtype, pd.CategoricalDtype):
            raise SchemaError(f"Column {columns[j]!r} in argument 'cols' is not categorical.")
        if len(dtype.categories) <= 2:
            raise DomainError(f"Column {columns[j]!r} in argument 'cols' is not a non-binary factor.")
    return positions


def validate_pred_matrix(pred_matrix: Any, n: int) -> np.ndarray:
    """Validate a predictor matrix for ``n`` columns."""
    if isinstance(pred_matrix, pd.DataFrame):
        pred_matrix = pred_matrix.to_numpy()
    if not isinstance(pred_matrix, np.ndarray) or pred_matrix.ndim != 2:
        raise SchemaError("Argument 'pred_matrix' has to be a two-dimensional array.")
    if pred_matrix.shape != (n, n):
        raise ConsistencyError(f"Predictor matrix has shape {pred_matrix.shape}, expected {(n, n)}.")
    if not np.isin(pred_matrix, (0, 1, 2)).all():
        raise DomainError("Predictor matrix contains values other than 0, 1 and 2.")
    if not (np.diag(pred_matrix) == 0).all():
        raise DomainError("Diagonal elements of the predictor matrix have to be zero.")
    return pred_matrix.astype(int)


def _is_int_tuple(values: Any) -> bool:
    return isinstance(values, tuple) and all(
        isinstance(v, numbers.Integral) and not isinstance(v, (bool, np.bool_)) for v in values
    )


def _is_str_tuple(values: Any) -> bool:
    return isinstance(values, tuple) and all(isinstance(v, str) for v in values)


def validate_binarize_params(container: MidsContainer, params: BinarizeParams) -> None:
    """Check that ``params`` is well formed and describes ``container``."""
    if not isinstance(params, BinarizeParams):
        raise SchemaError(f"Argument 'params' has to be a BinarizeParams record, got {type(params).__name__}.")

    # field types
    if not isinstance(params.src_data, pd.DataFrame):
        raise SchemaError("Field 'src_data' has to be a data frame.")
    for name in ("n_src_cols", "n_pad_cols"):
        value = getattr(params, name)
        if not isinstance(value, numbers.Integral) or isinstance(value, (bool, np.bool_)):
            raise SchemaError(f"Field '{name}' is not an integer.")
    if params.n_src_cols < 2:
        raise DomainError("Field 'n_src_cols' has to be bigger than one.")
    if not _is_int_tuple(params.src_factor_cols) or any(j < 0 for j in params.src_factor_cols):
        raise SchemaError("Field 'src_factor_cols' has to be a tuple of non-negative integers.")
    if not isinstance(params.dummy_cols, tuple) or not all(_is_int_tuple(t) for t in params.dummy_cols):
        raise SchemaError("Field 'dummy_cols' has to be a tuple of integer tuples.")
    if any(j < 0 for t in params.dummy_cols for j in t):
        raise SchemaError("Field 'dummy_cols' contains negative column indices.")
    if not isinstance(params.src_levels, tuple) or not all(_is_str_tuple(t) for t in params.src_levels):
        raise SchemaError("Field 'src_levels' has to be a tuple of string tuples.")
    if not _is_str_tuple(params.src_names) or not _is_str_tuple(params.pad_names):
        raise SchemaError("Fields 'src_names' and 'pad_names' have to be tuples of strings.")

    # internal consistency
    if any(j >= params.n_src_cols for j in params.src_factor_cols):
        raise ConsistencyError("Field 'src_factor_cols' contains an out-of-bounds value.")
    if len(params.src_factor_cols) != len(params.dummy_cols):
        raise ConsistencyError("Fields 'src_factor_cols' and 'dummy_cols' are not of the same length.")
    if len(params.dummy_cols) != len(params.src_levels) or any(
        len(d) != len(lv) for d, lv in zip(params.dummy_cols, params.src_levels)
    ):
        raise ConsistencyError("Fields 'dummy_cols' and 'src_levels' are not consistent with each other.")
    if len(params.src_names) != params.n_src_cols:
        raise ConsistencyError("Field 'src_names' does not have 'n_src_cols' entries.")
    if params.src_data.shape[1] != params.n_src_cols:
        raise ConsistencyError("Field 'src_data' does not have 'n_src_cols' columns.")
    if tuple(str(c) for c in params.src_data.columns) != params.src_names:
        raise ConsistencyError("Field 'src_data' does not have the column names in 'src_names'.")
    expected_pad = params.n_src_cols + sum(len(d) - 1 for d in params.dummy_cols)
    if params.n_pad_cols != expected_pad:
        raise ConsistencyError(f"Field 'n_pad_cols' is {params.n_pad_cols}, expected {expected_pad}.")
    for j, levels in zip(params.src_factor_cols, params.src_levels):
        col = params.src_data.iloc[:, j]
        if not isinstance(col.dtype, pd.CategoricalDtype) or tuple(str(c) for c in col.cat.categories) != levels:
            raise ConsistencyError(
                f"Fields 'src_factor_cols', 'src_levels' and 'src_data' are not consistent for column {j}."
            )

    # consistency with the container
    if params.n_pad_cols != container.n_cols or params.pad_names != tuple(container.columns):
        raise ConsistencyError("Binarize parameters are not consistent with the data of the container.")
    if any(j >= params.n_pad_cols for t in params.dummy_cols for j in t):
        raise ConsistencyError("Field 'dummy_cols' contains an out-of-bounds value.")

    for tuple_ in params.dummy_cols:
        block = container.data.iloc[:, list(tuple_)].apply(pd.to_numeric, errors="coerce").to_numpy(dtype=float)
        observed = ~np.isnan(block)
        if not np.isin(block[observed], (0.0, 1.0)).all():
            raise ConsistencyError(f"Dummy columns {group_label(tuple_)} contain values other than 0 and 1.")
        any_obs = observed.any(axis=1)
        sums = np.where(observed, block, 0.0).sum(axis=1)
        if not (sums[any_obs] == 1).all():
            raise ConsistencyError(f"Dummy columns {group_label(tuple_)} are not in proper binarized format.")
