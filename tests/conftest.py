import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest


def make_stroke_frame(n: int = 300, n_yes: int = 60, seed: int = 0, bmi_missing: int = 12) -> pd.DataFrame:
    """Synthetic rows shaped like the healthcare stroke CSV (BMI sentinel included)."""
    rng = np.random.default_rng(seed)
    stroke = np.array([1] * n_yes + [0] * (n - n_yes))
    rng.shuffle(stroke)
    yes = stroke == 1

    age = np.where(yes, rng.normal(68, 10, n), rng.normal(45, 18, n)).clip(1, 90).round(0)
    glucose = np.where(yes, rng.normal(140, 45, n), rng.normal(100, 30, n)).clip(55, 270).round(2)
    bmi = rng.normal(28, 6, n).clip(12, 60).round(1).astype(object)
    bmi[rng.choice(n, size=bmi_missing, replace=False)] = "N/A"

    df = pd.DataFrame({
        "id": np.arange(1000, 1000 + n),
        "gender": rng.choice(["Male", "Female"], n),
        "age": age,
        "hypertension": (rng.random(n) < np.where(yes, 0.3, 0.08)).astype(int),
        "heart_disease": (rng.random(n) < np.where(yes, 0.2, 0.05)).astype(int),
        "ever_married": rng.choice(["Yes", "No"], n, p=[0.65, 0.35]),
        "work_type": rng.choice(["Private", "Self-employed", "Govt_job", "children"], n),
        "Residence_type": rng.choice(["Urban", "Rural"], n),
        "avg_glucose_level": glucose,
        "bmi": bmi,
        "smoking_status": rng.choice(["never smoked", "formerly smoked", "smokes", "Unknown"], n),
        "stroke": stroke,
    })
    return df


@pytest.fixture
def stroke_raw():
    return make_stroke_frame()


@pytest.fixture
def stroke_clean(stroke_raw):
    from main import clean_data
    df, _ = clean_data(stroke_raw)
    return df


class FixedProba:
    """Stand-in classifier returning preset positive-class probabilities."""
    classes_ = np.array([0, 1])

    def __init__(self, p):
        self.p = np.asarray(p, dtype=float)

    def predict_proba(self, X):
        return np.column_stack([1 - self.p, self.p])


@pytest.fixture
def fixed_proba():
    return FixedProba
