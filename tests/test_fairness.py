import numpy as np
import pytest

from main import fairness_comparison_table, fairness_table

Y      = [1, 1, 0, 0, 1, 1, 0, 0, 0]
PROBA  = [0.9, 0.8, 0.1, 0.6, 0.7, 0.2, 0.3, 0.1, 0.9]
GROUPS = ["Male", "Male", "Male", "Male", "Female", "Female", "Female", "Female", "Female"]


def test_rates_and_ratios_against_privileged_group():
    tbl = fairness_table(Y, PROBA, GROUPS, privileged="Male").set_index("group")

    assert tbl.loc["Male", "TPR"] == pytest.approx(1.0)
    assert tbl.loc["Male", "FPR"] == pytest.approx(0.5)
    assert tbl.loc["Female", "TPR"] == pytest.approx(0.5)
    assert tbl.loc["Female", "FPR"] == pytest.approx(1 / 3)
    assert tbl.loc["Female", "PPV"] == pytest.approx(0.5)
    assert tbl.loc["Female", "TPR_ratio"] == pytest.approx(0.5)
    assert tbl.loc["Female", "FPR_ratio"] == pytest.approx(2 / 3)
    assert tbl.loc["Male", "TPR_ratio"] == pytest.approx(1.0)
    assert tbl.loc["Female", "n"] == 5


def test_empty_subgroup_is_undefined_not_error():
    tbl = fairness_table(Y, PROBA, GROUPS, privileged="Male",
                         categories=["Female", "Male", "Other"]).set_index("group")
    assert tbl.loc["Other", "n"] == 0
    assert np.isnan(tbl.loc["Other", "TPR"])
    assert np.isnan(tbl.loc["Other", "TPR_ratio"])


def test_missing_privileged_group_gives_undefined_ratios():
    tbl = fairness_table(Y, PROBA, GROUPS, privileged="Other")
    assert tbl["TPR_ratio"].isna().all()
    assert tbl["TPR"].notna().all()


def test_zero_privileged_rate_gives_undefined_ratio():
    tbl = fairness_table([1, 1, 1, 0], [0.1, 0.2, 0.9, 0.1], ["Male", "Male", "Female", "Female"],
                         privileged="Male").set_index("group")
    assert tbl.loc["Male", "TPR"] == 0.0
    assert np.isnan(tbl.loc["Female", "TPR_ratio"])


def test_no_flag_column_without_cutoff():
    tbl = fairness_table(Y, PROBA, GROUPS, privileged="Male", flag_ratio=None)
    assert "flagged" not in tbl.columns


def test_flag_column_with_configured_cutoff():
    tbl = fairness_table(Y, PROBA, GROUPS, privileged="Male", flag_ratio=0.8).set_index("group")
    assert bool(tbl.loc["Female", "flagged"]) is True
    assert bool(tbl.loc["Male", "flagged"]) is False


def test_comparison_table_stacks_stages():
    before = fairness_table(Y, PROBA, GROUPS, privileged="Male")
    after = fairness_table(Y, [0.9] * len(Y), GROUPS, privileged="Male")
    comp = fairness_comparison_table(before, after)
    assert comp["stage"].tolist() == ["before SMOTE"] * 2 + ["after SMOTE"] * 2
