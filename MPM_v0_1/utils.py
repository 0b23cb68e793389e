# utils.py - Utility functions for MPM
# MPM v0.1

from __future__ import annotations

from typing import List, Union

import numpy as np

SeedLike = Union[None, int, np.random.SeedSequence, np.random.Generator]


def make_seed_sequence(seed: SeedLike = None) -> np.random.SeedSequence:
    """
    Turn an int, SeedSequence or Generator into a SeedSequence.

    None draws fresh OS entropy, so results are only reproducible for an
    explicit seed.
    """
    if isinstance(seed, np.random.SeedSequence):
        return seed
    if isinstance(seed, np.random.Generator):
        return np.random.SeedSequence(int(seed.integers(0, 2**63 - 1)))
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, (int, np.integer))):
        raise TypeError(f"seed has to be None, an int, a SeedSequence or a Generator, got {type(seed).__name__}.")
    return np.random.SeedSequence(seed)


def spawn_generators(seed: SeedLike, n: int) -> List[np.random.Generator]:
    """
    Independent child generators, one per completed imputation.
    """
    return [np.random.default_rng(child) for child in make_seed_sequence(seed).spawn(n)]
