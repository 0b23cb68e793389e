"""Tests for the chained-equations engine and predictive means."""

import numpy as np
import pandas as pd
import pytest

from MPM_v0_1.container import MidsContainer
from MPM_v0_1.mice import MICEEngine, _pmm_match, default_method, predictive_means
from MPM_v0_1.validation import MatchingOptions


@pytest.fixture(scope="module")
def fitted():
    rng = np.random.RandomState(11)
    n = 60
    x1 = rng.randn(n)
    x2 = x1 + rng.randn(n) * 0.3
    color = np.where(x1 < -0.4, "red", np.where(x1 < 0.4, "green", "blue"))
    df = pd.DataFrame({
        "x1": x1,
        "x2": x2,
        "color": pd.Categorical(color, categories=["red", "green", "blue"]),
    })
    df.loc[:9, "x2"] = np.nan
    df.loc[50:, "color"] = np.nan
    df.loc[[20, 21, 22, 23, 24], "x2"] = np.nan
    return df, MICEEngine(m=2, max_iter=3, seed=123).fit(df)


class TestMICEEngine:

    def test_container_layout(self, fitted):
        df, mids = fitted
        assert isinstance(mids, MidsContainer)
        assert mids.m == 2
        assert mids.method == ["", "pmm", "polyreg"]
        np.testing.assert_array_equal(mids.where, df.isna().to_numpy())
        assert mids.imp[1].shape == (15, 2)
        assert mids.imp[2].shape == (10, 2)
        assert 0 not in mids.imp

    def test_visit_by_missing_count(self, fitted):
        _, mids = fitted
        assert mids.visit_sequence == [2, 1]

    def test_complete_columns_do_not_get_predictors(self, fitted):
        _, mids = fitted
        assert (mids.predictor_matrix[0] == 0).all()

    def test_imputations_are_valid(self, fitted):
        df, mids = fitted
        assert not np.isnan(mids.imp[1].astype(float)).any()
        # pmm only donates observed values
        assert set(mids.imp[1].ravel().tolist()) <= set(df["x2"].dropna().tolist())
        assert set(mids.imp[2].ravel().tolist()) <= {"red", "green", "blue"}

    def test_observed_data_untouched(self, fitted):
        df, mids = fitted
        pd.testing.assert_frame_equal(mids.data, df)

    def test_chain_means(self, fitted):
        _, mids = fitted
        assert mids.chain_means[1].shape == (3, 2)
        assert np.isfinite(mids.chain_means[1]).all()

    def test_same_seed_same_imputations(self, fitted):
        df, mids = fitted
        again = MICEEngine(m=2, max_iter=3, seed=123).fit(df)
        np.testing.assert_array_equal(again.imp[1], mids.imp[1])
        np.testing.assert_array_equal(again.imp[2], mids.imp[2])

    def test_complete(self, fitted):
        _, mids = fitted
        completed = mids.complete(1)
        assert completed.notna().all().all()
        np.testing.assert_array_equal(completed["x2"].to_numpy()[:10], mids.imp[1][:10, 1].astype(float))

    def test_norm_method(self, fitted):
        df, _ = fitted
        mids = MICEEngine(m=1, max_iter=2, method={"x2": "norm"}, seed=1).fit(df)
        assert mids.method[1] == "norm"
        assert np.isfinite(mids.imp[1].astype(float)).all()


class TestMethodResolution:

    def test_defaults(self):
        assert default_method(pd.Series([1.0, np.nan])) == "pmm"
        assert default_method(pd.Series([1.0, 2.0])) == ""
        assert default_method(pd.Series(pd.Categorical(["a", None]))) == "logreg"
        assert default_method(pd.Series(pd.Categorical(["a", "b", "c", None]))) == "polyreg"

    def test_unknown_method(self, fitted):
        df, _ = fitted
        with pytest.raises(ValueError):
            MICEEngine(method=["", "cart", "polyreg"]).fit(df)

    def test_method_length(self, fitted):
        df, _ = fitted
        with pytest.raises(ValueError):
            MICEEngine(method=["", "pmm"]).fit(df)

    def test_method_dtype_mismatch(self, fitted):
        df, _ = fitted
        with pytest.raises(ValueError):
            MICEEngine(method={"color": "pmm"}).fit(df)

    def test_unknown_column(self, fitted):
        df, _ = fitted
        with pytest.raises(KeyError):
            MICEEngine(method={"nope": "pmm"}).fit(df)

    @pytest.mark.parametrize("kwargs", [{"m": 0}, {"max_iter": 0}])
    def test_invalid_counts(self, kwargs):
        with pytest.raises(ValueError):
            MICEEngine(**kwargs)


def test_pmm_match_draws_from_nearest():
    rng = np.random.default_rng(0)
    yhat_obs = np.array([0.0, 1.0, 2.0, 10.0])
    y_obs = np.array([100.0, 101.0, 102.0, 110.0])
    out = _pmm_match(yhat_obs, np.array([9.5, 0.1]), y_obs, donors=1, rng=rng)
    np.testing.assert_array_equal(out, [110.0, 100.0])


def test_predictive_means_shapes(container, group):
    frame = container.complete(0, only_unobserved=True)
    don = np.arange(6)
    rec = np.arange(6, 10)
    yhat_don, yhat_rec, resid = predictive_means(
        frame, container, group, don, rec, MatchingOptions(), np.random.default_rng(0)
    )
    assert yhat_don.shape == (6, 3)
    assert yhat_rec.shape == (4, 3)
    y = container.data.iloc[:6, 1:4].to_numpy()
    np.testing.assert_allclose(resid, y - yhat_don)
