import numpy as np
import pandas as pd
import pytest

from main import (
    ModelingError, category_universe, class_distribution_table, clean_data, encode_table,
    rebalance_training, stratified_split,
)
from conftest import make_stroke_frame


@pytest.fixture
def train_rows(stroke_clean):
    X = encode_table(stroke_clean, category_universe(stroke_clean))
    return X, stroke_clean["stroke"]


def test_minority_doubled_majority_untouched(train_rows):
    X, y = train_rows
    Xb, yb = rebalance_training(X, y)

    assert (yb == 0).sum() == (y == 0).sum()
    assert (yb == 1).sum() == 2 * (y == 1).sum()
    assert list(Xb.columns) == list(X.columns)
    assert len(Xb) == len(yb)
    # real rows come first and are unchanged
    pd.testing.assert_frame_equal(Xb.iloc[:len(X)].reset_index(drop=True), X.reset_index(drop=True),
                                  check_dtype=False)


def test_synthetic_rows_stay_inside_minority_range(train_rows):
    X, y = train_rows
    Xb, yb = rebalance_training(X, y)
    synth = Xb.iloc[len(X):]
    real_min = X[y.to_numpy() == 1]
    assert (synth["age"] >= real_min["age"].min() - 1e-9).all()
    assert (synth["age"] <= real_min["age"].max() + 1e-9).all()


def test_zero_dup_size_is_identity(train_rows):
    X, y = train_rows
    Xb, yb = rebalance_training(X, y, dup_size=0)
    pd.testing.assert_frame_equal(Xb, X)
    assert yb.tolist() == y.tolist()


def test_negative_dup_size_rejected(train_rows):
    X, y = train_rows
    with pytest.raises(ValueError):
        rebalance_training(X, y, dup_size=-1)


def test_too_few_minority_rows(train_rows):
    X, y = train_rows
    y = pd.Series(0, index=X.index)
    y.iloc[:4] = 1
    with pytest.raises(ModelingError, match="minority"):
        rebalance_training(X, y)


def test_single_class_rejected(train_rows):
    X, _ = train_rows
    with pytest.raises(ModelingError):
        rebalance_training(X, np.zeros(len(X), dtype=int))


def test_hundred_row_scenario_balances_training_only():
    df, _ = clean_data(make_stroke_frame(n=100, n_yes=10, seed=3, bmi_missing=4))
    X = encode_table(df, category_universe(df))
    split = stratified_split(df["stroke"])
    ytr = df.loc[split.train, "stroke"]
    n_no, n_yes = int((ytr == 0).sum()), int((ytr == 1).sum())

    Xb, yb = rebalance_training(X.loc[split.train], ytr)
    dist = class_distribution_table(yb, "after").set_index("label")

    assert dist.loc["no", "n"] == n_no
    assert dist.loc["yes", "n"] == 2 * n_yes
    assert len(split.test) == 25


def test_dup_size_sets_minority_total(train_rows):
    X, y = train_rows
    n_min = int((y == 1).sum())
    Xb, yb = rebalance_training(X, y, dup_size=3)
    assert (yb == 1).sum() == 4 * n_min
    assert len(Xb) - len(X) == 3 * n_min
