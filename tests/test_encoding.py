import numpy as np
import pandas as pd
import pytest

from main import CATEGORICAL_COLS, build_scaler, category_universe, encode_table, scale_table


def test_encoding_is_schema_stable_across_partitions(stroke_clean):
    cats = category_universe(stroke_clean)
    train = stroke_clean.iloc[:200]
    test = stroke_clean.iloc[200:]
    test = test[test["work_type"] != "children"]

    a = encode_table(train, cats)
    b = encode_table(test, cats)
    assert list(a.columns) == list(b.columns)
    assert (b["work_type_children"] == 0).all()


def test_column_order_is_numeric_then_categories(stroke_clean):
    cats = category_universe(stroke_clean)
    enc = encode_table(stroke_clean, cats)
    assert list(enc.columns[:5]) == ["age", "avg_glucose_level", "bmi", "hypertension", "heart_disease"]
    assert "gender_Female" in enc.columns and "gender_Male" in enc.columns
    assert len(enc) == len(stroke_clean)
    assert enc.index.equals(stroke_clean.index)


def test_indicators_mutually_exclusive_within_field(stroke_clean):
    cats = category_universe(stroke_clean)
    enc = encode_table(stroke_clean, cats)
    for col in CATEGORICAL_COLS:
        block = enc[[f"{col}_{v}" for v in cats[col]]]
        assert (block.sum(axis=1) == 1).all()


def test_unseen_category_encodes_to_zeros(stroke_clean):
    cats = category_universe(stroke_clean)
    odd = stroke_clean.iloc[:3].copy()
    odd["gender"] = "Other"
    enc = encode_table(odd, cats)
    assert (enc[["gender_Female", "gender_Male"]].sum(axis=1) == 0).all()


def test_minmax_uses_train_statistics(stroke_clean):
    enc = encode_table(stroke_clean, category_universe(stroke_clean))
    train, test = enc.iloc[:200], enc.iloc[200:]
    tr, te = scale_table(train, test, "minmax")

    assert tr["age"].min() == pytest.approx(0.0)
    assert tr["age"].max() == pytest.approx(1.0)
    lo, hi = train["age"].min(), train["age"].max()
    expected = (test["age"] - lo) / (hi - lo)
    np.testing.assert_allclose(te["age"].to_numpy(), expected.to_numpy())
    assert list(te.columns) == list(test.columns)
    # indicator columns pass through untouched
    pd.testing.assert_series_equal(te["gender_Male"], test["gender_Male"], check_dtype=False)


def test_zscore_uses_train_statistics(stroke_clean):
    enc = encode_table(stroke_clean, category_universe(stroke_clean))
    train, test = enc.iloc[:200], enc.iloc[200:]
    tr, te = scale_table(train, test, "zscore")

    assert tr["avg_glucose_level"].mean() == pytest.approx(0.0, abs=1e-9)
    mu, sd = train["bmi"].mean(), train["bmi"].std(ddof=0)
    np.testing.assert_allclose(te["bmi"].to_numpy(), ((test["bmi"] - mu) / sd).to_numpy())


def test_unknown_scaling_rejected():
    with pytest.raises(ValueError, match="Unknown scaling"):
        build_scaler("robust", ["age"])
