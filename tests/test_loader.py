import numpy as np
import pandas as pd
import pytest

from main import (
    DataQualityError, clean_data, fit_bmi_median, impute_bmi, load_csv, save_cleaning_report,
)


def test_clean_imputes_bmi_with_observed_median(stroke_raw):
    observed = pd.to_numeric(stroke_raw["bmi"], errors="coerce")
    was_missing = observed.isna()
    df, summary = clean_data(stroke_raw)

    assert df["bmi"].isna().sum() == 0
    assert summary["bmi_missing"] == int(was_missing.sum()) == 12
    assert summary["bmi_median"] == pytest.approx(float(observed.dropna().median()))
    assert (df.loc[was_missing, "bmi"] == summary["bmi_median"]).all()
    assert "id" not in df.columns


def test_clean_keeps_row_count_and_binary_outcome(stroke_raw):
    df, summary = clean_data(stroke_raw)
    assert len(df) == len(stroke_raw)
    assert set(df["stroke"].unique()) == {0, 1}
    assert summary["stroke_yes"] + summary["stroke_no"] == len(df)


def test_clean_without_impute_leaves_missing_bmi(stroke_raw):
    df, summary = clean_data(stroke_raw, impute=False)
    assert df["bmi"].isna().sum() == 12
    assert "bmi_median" not in summary


def test_given_median_is_used(stroke_raw):
    df, summary = clean_data(stroke_raw, bmi_median=99.0)
    assert summary["bmi_median"] == 99.0
    assert (df["bmi"] == 99.0).sum() == 12


def test_fit_and_impute_separately(stroke_raw):
    df, _ = clean_data(stroke_raw, impute=False)
    train = df.iloc[:200]
    med = fit_bmi_median(train)
    assert med == pytest.approx(float(train["bmi"].dropna().median()))
    out = impute_bmi(df, med)
    assert out["bmi"].isna().sum() == 0
    assert df["bmi"].isna().sum() == 12  # input not mutated


def test_missing_required_column_raises(stroke_raw):
    with pytest.raises(DataQualityError, match="smoking_status"):
        clean_data(stroke_raw.drop(columns=["smoking_status"]))


def test_outcome_outside_binary_raises(stroke_raw):
    bad = stroke_raw.copy()
    bad.loc[5, "stroke"] = 2
    with pytest.raises(DataQualityError, match=r"row\(s\) \[5\]"):
        clean_data(bad)


def test_yes_no_outcome_is_factorized(stroke_raw):
    df = stroke_raw.copy()
    df["stroke"] = df["stroke"].map({0: "no", 1: "Yes"})
    out, _ = clean_data(df)
    assert out["stroke"].tolist() == stroke_raw["stroke"].tolist()


def test_non_numeric_value_reports_column(stroke_raw):
    bad = stroke_raw.copy()
    bad["avg_glucose_level"] = bad["avg_glucose_level"].astype(object)
    bad.loc[7, "avg_glucose_level"] = "high"
    with pytest.raises(DataQualityError, match="avg_glucose_level"):
        clean_data(bad)


def test_unknown_bmi_text_is_not_treated_as_missing(stroke_raw):
    bad = stroke_raw.copy()
    bad.loc[3, "bmi"] = "unknown"
    with pytest.raises(DataQualityError, match="bmi"):
        clean_data(bad)


def test_missing_categorical_raises(stroke_raw):
    bad = stroke_raw.copy()
    bad.loc[1, "work_type"] = np.nan
    with pytest.raises(DataQualityError, match="work_type"):
        clean_data(bad)


def test_load_csv_reads_sentinel_and_drops_id(tmp_path, stroke_raw):
    path = tmp_path / "stroke.csv"
    stroke_raw.to_csv(path, index=False)
    df = load_csv(str(path))
    assert "id" not in df.columns
    assert df["bmi"].isna().sum() == 12
    assert df["bmi"].dtype.kind == "f"


def test_load_csv_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_csv(str(tmp_path / "nope.csv"))


def test_cleaning_report_written(tmp_path, monkeypatch, stroke_raw):
    monkeypatch.chdir(tmp_path)
    _, summary = clean_data(stroke_raw)
    save_cleaning_report(summary)
    text = (tmp_path / "reports" / "cleaning_report.txt").read_text(encoding="utf-8")
    assert "Data Cleaning Summary" in text
    assert f"{summary['bmi_median']:.2f}" in text
