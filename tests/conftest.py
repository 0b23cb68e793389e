"""Shared fixtures: a small hand-built imputation container and a toy frame.

Container layout (10 rows, m=3):

    0 x       float, fully observed
    1 f.a  \
    2 f.b   > dummies of one three-level factor, rows 6..9 imputed
    3 f.c  /
    4 region  int, fully observed

Donors in region 1 carry levels a, a, b; donors in region 2 carry c, c, b.
The raw imputations are deliberately not one-hot.
"""

import numpy as np
import pandas as pd
import pytest

from MPM_v0_1.container import MidsContainer

GROUP = (1, 2, 3)


def _container_data() -> pd.DataFrame:
    nan = np.nan
    return pd.DataFrame({
        "x": [0.1, 0.5, 0.9, 1.3, 1.7, 2.1, 0.2, 1.5, 0.8, 2.0],
        "f.a": [1.0, 1.0, 0.0, 0.0, 0.0, 0.0, nan, nan, nan, nan],
        "f.b": [0.0, 0.0, 1.0, 0.0, 0.0, 1.0, nan, nan, nan, nan],
        "f.c": [0.0, 0.0, 0.0, 1.0, 1.0, 0.0, nan, nan, nan, nan],
        "region": [1, 1, 1, 2, 2, 2, 1, 2, 1, 2],
    })


@pytest.fixture
def container() -> MidsContainer:
    data = _container_data()
    m = 3
    where = data.isna().to_numpy()

    pred = np.zeros((5, 5), dtype=int)
    for j in GROUP:
        pred[j, 0] = 1
        pred[j, 4] = 1

    imp = {
        1: np.zeros((4, m)),
        2: np.ones((4, m)),
        3: np.ones((4, m)),
    }
    return MidsContainer(
        data=data,
        where=where,
        imp=imp,
        predictor_matrix=pred,
        method=["", "pmm", "pmm", "pmm", ""],
        visit_sequence=[1, 2, 3],
        m=m,
        seed=0,
        iterations=5,
    )


@pytest.fixture
def group():
    return GROUP


@pytest.fixture(scope="module")
def toy_frame() -> pd.DataFrame:
    """80 rows: two continuous columns, a three-level factor and a region code."""
    rng = np.random.RandomState(7)
    n = 80
    x1 = rng.randn(n)
    region = rng.choice([1, 2], size=n)
    x2 = 0.6 * x1 + 0.4 * region + rng.randn(n) * 0.5
    score = x1 + rng.randn(n) * 0.5
    color = np.where(score < -0.4, "red", np.where(score < 0.4, "green", "blue"))

    df = pd.DataFrame({
        "x1": x1,
        "x2": x2,
        "color": pd.Categorical(color, categories=["red", "green", "blue"]),
        "region": region.astype(int),
    })
    df.loc[rng.rand(n) < 0.2, "color"] = np.nan
    df.loc[rng.rand(n) < 0.1, "x2"] = np.nan
    return df
