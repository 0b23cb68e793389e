"""Tests for the Bayesian ridge draw and predictor pruning."""

import numpy as np

from MPM_v0_1.regression import bayesian_ridge_draw, remove_lindep


def test_ridge_draw_recovers_coefficients():
    rng = np.random.default_rng(0)
    x = rng.normal(size=(500, 1))
    y = 1.0 + 2.0 * x[:, 0] + rng.normal(scale=0.05, size=500)
    draw = bayesian_ridge_draw(x, y, rng)
    np.testing.assert_allclose(draw.beta_hat, [1.0, 2.0], atol=0.05)
    np.testing.assert_allclose(draw.beta_dot, [1.0, 2.0], atol=0.1)
    assert 0.0 < draw.sigma_dot < 0.2


def test_predict_adds_intercept():
    rng = np.random.default_rng(1)
    x = rng.normal(size=(50, 2))
    y = x @ np.array([1.0, -1.0]) + 3.0
    draw = bayesian_ridge_draw(x, y, rng)
    np.testing.assert_allclose(draw.predict(x[:3]), y[:3], atol=1e-3)
    assert draw.predict(x[:3], draw=True).shape == (3,)


def test_draw_without_predictors():
    rng = np.random.default_rng(2)
    y = rng.normal(loc=4.0, size=100)
    draw = bayesian_ridge_draw(np.empty((100, 0)), y, rng)
    assert draw.beta_hat.shape == (1,)
    assert abs(draw.beta_hat[0] - y.mean()) < 1e-3


class TestRemoveLindep:

    def test_constant_predictor_is_dropped(self):
        rng = np.random.default_rng(3)
        X = np.column_stack([rng.normal(size=40), np.ones(40)])
        y = X[:, 0] + rng.normal(size=40)
        np.testing.assert_array_equal(remove_lindep(X, y), [True, False])

    def test_predictor_equal_to_target_is_dropped(self):
        rng = np.random.default_rng(4)
        z = rng.normal(size=40)
        X = np.column_stack([z, rng.normal(size=40)])
        np.testing.assert_array_equal(remove_lindep(X, z), [False, True])

    def test_collinear_pair_keeps_one(self):
        rng = np.random.default_rng(5)
        x = rng.normal(size=60)
        z = rng.normal(size=60)
        X = np.column_stack([x, x, z])
        y = 0.5 * x + z + rng.normal(size=60)
        keep = remove_lindep(X, y)
        assert keep[2]
        assert keep[:2].sum() == 1

    def test_constant_target_keeps_nothing(self):
        X = np.random.default_rng(6).normal(size=(20, 3))
        assert not remove_lindep(X, np.ones(20)).any()

    def test_no_predictors(self):
        assert remove_lindep(np.empty((10, 0)), np.arange(10.0)).shape == (0,)
