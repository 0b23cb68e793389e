from __future__ import annotations

"""Donor selection from the nearest-donor pool.

Policies
--------
0: the nearest donor
1: a donor drawn uniformly from the ``donors`` nearest
2: a donor drawn from the ``donors`` nearest with probability proportional
   to 1 / (distance + eps)
"""

import numpy as np

from .distance import rank_donors
from .exceptions import DomainError
from .validation import SELECTION_POLICIES


def inverse_distance_probabilities(distances: np.ndarray, eps: float = 1e-4) -> np.ndarray:
    """Row-normalized 1 / (d + eps) weights."""
    w = 1.0 / (np.asarray(distances, dtype=float) + eps)
    return w / w.sum(axis=1, keepdims=True)


def select_donors(
    distances: np.ndarray,
    donors: int,
    policy: int,
    rng: np.random.Generator,
    eps: float = 1e-4,
) -> np.ndarray:
    """Pick one donor position per recipient row of ``distances``.

    Args:
        distances: (n_rec, n_don) distance matrix
        donors: pool size, capped at n_don
        policy: one of SELECTION_POLICIES
        rng: random source for policies 1 and 2
        eps: offset of the inverse-distance weights

    Returns:
        int array (n_rec,) of column positions into ``distances``
    """
    distances = np.atleast_2d(distances)
    n_rec, n_don = distances.shape
    if n_don == 0:
        raise ValueError("Cannot select donors from an empty donor pool.")
    if policy not in SELECTION_POLICIES:
        raise DomainError(f"Unknown selection policy {policy}. It has to be one of {SELECTION_POLICIES}.")

    d = min(int(donors), n_don)
    pool = rank_donors(distances)[:, :d]
    rows = np.arange(n_rec)

    if policy == 0 or d == 1:
        return pool[:, 0]

    if policy == 1:
        pick = rng.integers(0, d, size=n_rec)
        return pool[rows, pick]

    probs = inverse_distance_probabilities(np.take_along_axis(distances, pool, axis=1), eps)
    u = rng.random(n_rec)[:, None]
    pick = np.minimum((u > np.cumsum(probs, axis=1)).sum(axis=1), d - 1)
    return pool[rows, pick]
