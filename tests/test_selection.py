"""Tests for donor selection policies."""

import numpy as np
import pytest

from MPM_v0_1.exceptions import DomainError
from MPM_v0_1.selection import inverse_distance_probabilities, select_donors


@pytest.fixture
def distances():
    # nearest donors per row: row 0 -> 2, 0; row 1 -> 1, 3
    return np.array([
        [0.2, 5.0, 0.1, 9.0],
        [7.0, 0.3, 8.0, 0.4],
    ])


def test_nearest_policy(distances):
    rng = np.random.default_rng(0)
    np.testing.assert_array_equal(select_donors(distances, 3, 0, rng), [2, 1])


def test_single_donor_pool_is_nearest(distances):
    rng = np.random.default_rng(0)
    for policy in (1, 2):
        np.testing.assert_array_equal(select_donors(distances, 1, policy, rng), [2, 1])


@pytest.mark.parametrize("policy", [1, 2])
def test_random_policies_stay_in_pool(distances, policy):
    rng = np.random.default_rng(1)
    big = np.tile(distances, (200, 1))
    picks = select_donors(big, 2, policy, rng)
    assert set(picks[::2].tolist()) <= {0, 2}
    assert set(picks[1::2].tolist()) <= {1, 3}


def test_uniform_policy_uses_whole_pool(distances):
    rng = np.random.default_rng(2)
    picks = select_donors(np.repeat(distances[:1], 400, axis=0), 2, 1, rng)
    counts = np.bincount(picks, minlength=4)
    assert counts[0] > 100 and counts[2] > 100


def test_inverse_distance_prefers_close_donors():
    rng = np.random.default_rng(3)
    d = np.repeat(np.array([[0.0, 100.0]]), 500, axis=0)
    picks = select_donors(d, 2, 2, rng)
    assert (picks == 0).mean() > 0.99


def test_pool_is_capped_at_available_donors(distances):
    rng = np.random.default_rng(4)
    picks = select_donors(distances, 50, 1, rng)
    assert picks.shape == (2,)
    assert ((picks >= 0) & (picks < 4)).all()


def test_same_generator_state_gives_same_picks(distances):
    a = select_donors(distances, 3, 2, np.random.default_rng(9))
    b = select_donors(distances, 3, 2, np.random.default_rng(9))
    np.testing.assert_array_equal(a, b)


def test_inverse_distance_probabilities():
    p = inverse_distance_probabilities(np.array([[1.0, 3.0], [0.0, 0.0]]), eps=1e-4)
    np.testing.assert_allclose(p.sum(axis=1), [1.0, 1.0])
    assert p[0, 0] > p[0, 1]
    np.testing.assert_allclose(p[1], [0.5, 0.5])


def test_empty_pool():
    with pytest.raises(ValueError):
        select_donors(np.empty((1, 0)), 5, 1, np.random.default_rng(0))


def test_unknown_policy(distances):
    with pytest.raises(DomainError):
        select_donors(distances, 2, 3, np.random.default_rng(0))
