from __future__ import annotations

"""Completeness and partition analysis of column groups.

When collecting predictive means for a group we can only use rows whose
designated predictors are completely observed (or imputed) for *every* column
of the group. Intersecting those predictor sets column by column may leave no
donors or no recipients, so this is checked before any matching work starts.

When a group is matched against an external variable, every value that the
variable takes on recipient rows must also be taken on donor rows; otherwise
there is nothing to match against. The resulting partitions are returned so
that the matching pass can reuse them.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .container import MidsContainer
from .exceptions import DataCoverageError, StateError
from .validation import Group, group_label

log = logging.getLogger(__name__)

# value -> (recipient rows, donor rows)
Partition = Dict[Any, Tuple[np.ndarray, np.ndarray]]


@dataclass
class GroupEligibility:
    group: Group
    complete_R: np.ndarray
    complete_W: np.ndarray
    match_var: Optional[int] = None
    partition: Optional[Partition] = None

    @property
    def donor_rows(self) -> np.ndarray:
        return np.flatnonzero(self.complete_R)

    @property
    def recipient_rows(self) -> np.ndarray:
        return np.flatnonzero(self.complete_W)

    def blocks(self) -> Iterator[Tuple[Any, np.ndarray, np.ndarray]]:
        """Yield ``(value, recipient rows, donor rows)`` per partition cell.

        Without a match variable the whole group is a single cell with value None.
        """
        if self.partition is None:
            yield None, self.recipient_rows, self.donor_rows
            return
        for value, (rec, don) in self.partition.items():
            if len(rec) > 0:
                yield value, rec, don


def expand_factors(x: pd.DataFrame) -> pd.DataFrame:
    """Return a float design frame with categorical columns as indicators.

    Categorical (and object) columns are replaced by one indicator per level
    except the first. Rows where the source value is missing are NaN in all of
    its indicators, so completeness is preserved.
    """
    parts: List[pd.DataFrame] = []
    for col in x.columns:
        s = x[col]
        if isinstance(s.dtype, pd.CategoricalDtype) or s.dtype == object:
            n_levels = len(s.cat.categories) if isinstance(s.dtype, pd.CategoricalDtype) else s.nunique()
            d = pd.get_dummies(s, prefix=str(col), drop_first=n_levels > 1, dtype=float)
            d.loc[s.isna().to_numpy(), :] = np.nan
            parts.append(d)
        else:
            num = pd.to_numeric(s, errors="coerce").astype("float64")
            parts.append(num.to_frame(str(col)))
    if not parts:
        return pd.DataFrame(index=x.index)
    return pd.concat(parts, axis=1)


def working_frame(container: MidsContainer) -> pd.DataFrame:
    """Observed data with unobserved target cells filled from imputation 0."""
    return container.complete(0, only_unobserved=True)


def predictor_columns(pred_matrix: np.ndarray, j: int) -> List[int]:
    """Positions of the columns that predict column j."""
    return np.flatnonzero(np.asarray(pred_matrix)[j] == 1).tolist()


def build_partition(
    values: np.ndarray,
    complete_R: np.ndarray,
    complete_W: np.ndarray,
    group: Group,
    match_var: int,
) -> Partition:
    """Split eligible rows by the value of the match variable.

    Raises:
        DataCoverageError: a value occurs among recipients but not among donors
    """
    values = np.asarray(values, dtype=object)
    rec_values = pd.unique(values[complete_W])
    don_values = set(pd.unique(values[complete_R]).tolist())

    uncovered = [v for v in rec_values.tolist() if v not in don_values]
    if uncovered:
        raise DataCoverageError(
            f"Column group {group_label(group)} has to be matched against the values in column {match_var}, "
            f"but recipient value(s) {uncovered} have no matching donor rows in that column."
        )

    partition: Partition = {}
    for value in pd.unique(values[complete_W | complete_R]).tolist():
        hit = values == value
        partition[value] = (np.flatnonzero(hit & complete_W), np.flatnonzero(hit & complete_R))
    return partition


def analyze_group(
    container: MidsContainer,
    frame: pd.DataFrame,
    group: Group,
    match_var: Optional[int] = None,
) -> GroupEligibility:
    """Eligibility masks (and partition) of a single validated group."""
    label = group_label(group)
    r = container.observed()
    n = container.n_rows

    complete_R = np.ones(n, dtype=bool)
    complete_W = np.ones(n, dtype=bool)

    for j in group:
        x = expand_factors(frame.iloc[:, predictor_columns(container.predictor_matrix, j)])
        complete_x = x.notna().all(axis=1).to_numpy()

        complete_R &= complete_x & r[:, j]
        complete_W &= complete_x & container.where[:, j]

        if not complete_W.any() or not complete_R.any():
            raise DataCoverageError(
                f"There are either no common donors or no common recipients in column group {label} "
                f"(after adding the predictors of column {j})."
            )

    partition = None
    if match_var is not None:
        values = frame.iloc[:, match_var].to_numpy(dtype=object)
        partition = build_partition(values, complete_R, complete_W, group, match_var)
    elif len(group) == 1 and container.method[group[0]] == "pmm":
        raise StateError(
            f"Column group {label} has a single column with imputation method 'pmm' "
            f"and no external column to match against."
        )

    log.debug(
        "group %s: %d donor row(s), %d recipient row(s), %s partition cell(s)",
        label, int(complete_R.sum()), int(complete_W.sum()),
        "no" if partition is None else len(partition),
    )
    return GroupEligibility(
        group=group,
        complete_R=complete_R,
        complete_W=complete_W,
        match_var=match_var,
        partition=partition,
    )


def analyze_groups(
    container: MidsContainer,
    groups: Sequence[Group],
    match_vars: Optional[Sequence[Optional[int]]] = None,
) -> List[GroupEligibility]:
    """Run :func:`analyze_group` on every group, sharing one working frame."""
    if match_vars is None:
        match_vars = [None] * len(groups)
    frame = working_frame(container)
    return [analyze_group(container, frame, g, mv) for g, mv in zip(groups, match_vars)]
