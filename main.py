"""
================= Stroke Prediction & Fairness Audit =====================

Loads the healthcare stroke dataset, cleans it (BMI "N/A" -> median),
one-hot encodes the categorical fields and trains three classic models
(Decision Tree, SVM, KNN) with stratified 5-fold CV scored by ROC AUC.
Holdout evaluation reports AUC, accuracy, sensitivity and specificity at a
0.5 threshold. The fairness audit compares subgroup TPR/FPR/PPV against a
privileged group, then the training partition is rebalanced with SMOTE, the
audited model is retrained and the audit is repeated.

Outputs: figures (reports/figures), CSV tables (reports/, exports/), fitted
pipelines (artifacts/), a cleaning report and a short model card.

Palette: blue = no stroke (0), coral = stroke (1).
===========================================================================
"""


import os
import sys
import platform
import warnings
from typing import NamedTuple
warnings.filterwarnings("ignore", category=UserWarning)

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from matplotlib.ticker import FuncFormatter
from matplotlib import image as mpimg  # for figure sizes in manifest

from sklearn.model_selection import train_test_split, StratifiedKFold, GridSearchCV
from sklearn.compose import ColumnTransformer
from sklearn.preprocessing import OneHotEncoder, MinMaxScaler, StandardScaler
from sklearn.pipeline import Pipeline
from sklearn.tree import DecisionTreeClassifier
from sklearn.svm import SVC
from sklearn.calibration import CalibratedClassifierCV
from sklearn.neighbors import KNeighborsClassifier
from sklearn.metrics import roc_auc_score, roc_curve, recall_score, make_scorer
from imblearn.over_sampling import SMOTE

# -------------------- Configuration ----------------------------------------
DATA_PATH    = "healthcare-dataset-stroke-data.csv"
TARGET       = "stroke"
OUTPUT_DIR   = "reports/figures"
RANDOM_SEED  = 42
TRAIN_FRACTION = 0.75
CV_FOLDS     = 5
N_JOBS       = -1
DECISION_THRESHOLD = 0.5
BMI_SENTINEL = "N/A"
SHOW_WINDOWS = False                    # True to pop up figure windows

CATEGORICAL_COLS = ["gender", "ever_married", "work_type", "Residence_type", "smoking_status"]
NUMERIC_COLS     = ["age", "avg_glucose_level", "bmi"]       # rescaled for SVM / KNN
FLAG_COLS        = ["hypertension", "heart_disease"]         # 0/1, left as is
REQUIRED_COLS    = ["gender", "age", "hypertension", "heart_disease", "ever_married",
                    "work_type", "Residence_type", "avg_glucose_level", "bmi",
                    "smoking_status", TARGET]

PROTECTED_ATTRIBUTE = "gender"
PRIVILEGED_GROUP    = "Male"
AUDIT_MODEL         = "Decision Tree"   # family retrained on the SMOTE set
FAIRNESS_FLAG_RATIO = None              # e.g. 0.8; None = report numbers only
FAIRNESS_FLAG_METRICS = ["TPR_ratio", "PPV_ratio", "accuracy_ratio"]

SMOTE_K        = 5
SMOTE_DUP_SIZE = 1                      # 1 -> minority class doubled
# ----------------------------------------------------------------------------

# ------------------ Palette (color-vision friendly) ------------------------
COLOR_NO   = "#3B5BA5"  # deep blue  — "No stroke"
COLOR_YES  = "#E45756"  # coral      — "Stroke"
LINE_MED   = "#FFB000"  # gold       — median
ACCENT     = "#D97706"  # amber — parity line
MODEL_COLORS = {"Decision Tree": "#3B5BA5", "SVM": "#8E6AC8", "KNN": "#06A77D"}
# ----------------------------------------------------------------------------

sns.set_theme(
    style="whitegrid",
    rc={
        "axes.titlesize": 13,
        "axes.labelsize": 11,
        "axes.titlepad": 10,
        "legend.frameon": False,
        "figure.dpi": 110,
        "axes.facecolor": "white",
        "grid.color": "#EEF2F5",
        "grid.linewidth": 0.8,
        "font.family": "DejaVu Sans",
    }
)

# ---------------------- Formatters -----------------------------------------
PCT = FuncFormatter(lambda v, _: f"{v*100:.0f}%")  # [0,1] → "xx%"
def _fmt_thousands(x, _):
    try:
        return f"{int(x):,}"
    except Exception:
        return str(x)
FMT_THOUSANDS = FuncFormatter(_fmt_thousands)

def fmt_metric(v, digits: int = 4) -> str:
    """NaN metrics are undefined, not zero."""
    try:
        v = float(v)
    except (TypeError, ValueError):
        return "undefined"
    return f"{v:.{digits}f}" if np.isfinite(v) else "undefined"

# ================================ Errors ===================================

class DataQualityError(ValueError):
    """Input table is unusable: missing column, bad outcome, non-numeric value."""

class ModelingError(RuntimeError):
    """A model family could not be trained (degenerate fold, failed fit)."""

# ============================== Small helpers ==============================

def make_output_folder() -> None:
    os.makedirs(OUTPUT_DIR, exist_ok=True)

def new_fig(figsize=(7, 4)):
    return plt.subplots(figsize=figsize, constrained_layout=True)

def save_and_show(fig: plt.Figure, filename: str) -> None:
    os.makedirs(OUTPUT_DIR, exist_ok=True)
    out = os.path.join(OUTPUT_DIR, filename)
    fig.savefig(out, dpi=150, bbox_inches="tight")
    if SHOW_WINDOWS:
        plt.show()
    plt.close(fig)
    print(f"[SAVE] {out}")

def save_table(df: pd.DataFrame, path: str, index: bool = False) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    df.to_csv(path, index=index)
    print(f"[SAVE] {path}")

def _slug(name: str) -> str:
    return name.lower().replace(" + ", "_").replace(" ", "_")

def save_run_environment():
    os.makedirs("reports", exist_ok=True)
    path = os.path.join("reports", "run_environment.txt")
    import sklearn, imblearn, pandas, numpy, matplotlib, seaborn, joblib
    with open(path, "w", encoding="utf-8") as f:
        f.write("=== Run Environment ===\n")
        f.write(f"Python           : {sys.version.split()[0]} ({platform.system()})\n")
        f.write(f"numpy            : {numpy.__version__}\n")
        f.write(f"pandas           : {pandas.__version__}\n")
        f.write(f"scikit-learn     : {sklearn.__version__}\n")
        f.write(f"imbalanced-learn : {imblearn.__version__}\n")
        f.write(f"matplotlib       : {matplotlib.__version__}\n")
        f.write(f"seaborn          : {seaborn.__version__}\n")
        f.write(f"joblib           : {joblib.__version__}\n")
    print(f"[SAVE] Environment -> {path}")

def write_min_requirements():
    os.makedirs("reports", exist_ok=True)
    import sklearn, imblearn, pandas, numpy, matplotlib, seaborn, joblib
    with open("reports/requirements_min.txt", "w", encoding="utf-8") as f:
        f.write(f"numpy=={numpy.__version__}\n")
        f.write(f"pandas=={pandas.__version__}\n")
        f.write(f"scikit-learn=={sklearn.__version__}\n")
        f.write(f"imbalanced-learn=={imblearn.__version__}\n")
        f.write(f"matplotlib=={matplotlib.__version__}\n")
        f.write(f"seaborn=={seaborn.__version__}\n")
        f.write(f"joblib=={joblib.__version__}\n")
    print("[SAVE] Minimal requirements -> reports/requirements_min.txt")

# -------- Figures index + manifest, and key numbers -------------------

# (filename prefix, section heading) in page order; first match wins
FIGURE_SECTIONS = [
    ("stroke_counts", "Cohort"),
    ("glucose_", "Cohort"),
    ("smoking_", "Cohort"),
    ("age_", "Cohort"),
    ("roc_", "Model performance"),
    ("cm_", "Model performance"),
    ("performance_", "Model performance"),
    ("class_balance", "Rebalancing & fairness"),
    ("fairness_", "Rebalancing & fairness"),
]

def figure_section(fname: str) -> str:
    return next((sec for prefix, sec in FIGURE_SECTIONS if fname.startswith(prefix)), "Other")

def _read_captions(cap_path: str) -> dict:
    """figure_captions.txt lines are 'file.png: caption'."""
    caps = {}
    if not os.path.exists(cap_path):
        return caps
    with open(cap_path, "r", encoding="utf-8") as f:
        for ln in f:
            name, sep, text = ln.rstrip("\n").partition(": ")
            if sep and name.endswith(".png"):
                caps[name] = text
    return caps

def figures_manifest(fig_dir: str = OUTPUT_DIR) -> pd.DataFrame:
    captions = _read_captions(os.path.join("reports", "figure_captions.txt"))
    order = {sec: i for i, sec in enumerate(dict.fromkeys(sec for _, sec in FIGURE_SECTIONS))}
    rows = []
    for fname in sorted(f for f in os.listdir(fig_dir) if f.lower().endswith(".png")):
        fpath = os.path.join(fig_dir, fname)
        try:
            h, w = mpimg.imread(fpath).shape[:2]
        except (OSError, ValueError):
            h, w = None, None
        rows.append({"section": figure_section(fname), "filename": fname,
                     "caption": captions.get(fname, ""), "width_px": w, "height_px": h,
                     "size_kb": round(os.path.getsize(fpath) / 1024, 1)})
    man = pd.DataFrame(rows, columns=["section", "filename", "caption", "width_px", "height_px", "size_kb"])
    rank = man["section"].map(order).fillna(len(order))
    return man.assign(_rank=rank).sort_values(["_rank", "filename"]).drop(columns="_rank").reset_index(drop=True)

def build_figures_index():
    """reports/figures/manifest.csv + index.html, one block per report section."""
    os.makedirs(OUTPUT_DIR, exist_ok=True)
    man = figures_manifest(OUTPUT_DIR)
    save_table(man, os.path.join(OUTPUT_DIR, "manifest.csv"))

    html = ["<!doctype html><meta charset='utf-8'>",
            "<title>Stroke study figures</title>",
            "<style>body{font-family:'DejaVu Sans',sans-serif;max-width:1000px;margin:20px auto;}"
            "figure{margin:12px 0 24px;} img{max-width:100%;} figcaption{color:#374151;font-size:14px;}"
            "h2{border-bottom:2px solid #3B5BA5;padding-bottom:4px;}</style>",
            f"<h1>Stroke study: {len(man)} figures</h1>"]
    for section, block in man.groupby("section", sort=False):
        html.append(f"<h2>{section}</h2>")
        for _, r in block.iterrows():
            cap = r["caption"] or r["filename"]
            html.append(f"<figure><img src='{r['filename']}' alt='{cap}'>"
                        f"<figcaption><b>{r['filename']}</b>: {r['caption']}</figcaption></figure>")
    path = os.path.join(OUTPUT_DIR, "index.html")
    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(html))
    print(f"[SAVE] Index page -> {path}")

# ============================ Load & Clean data ============================

def load_csv(path: str = DATA_PATH) -> pd.DataFrame:
    path_abs = os.path.abspath(path)
    if not os.path.exists(path):
        print("\n[ERROR] Can’t find the dataset.")
        print(f"Looked for: {path_abs}")
        print(f"➡ Put '{os.path.basename(path)}' next to this script or change DATA_PATH.")
        raise FileNotFoundError(path_abs)
    df = pd.read_csv(path, na_values=[BMI_SENTINEL])
    if "id" in df.columns:
        df = df.drop(columns=["id"])
    return df

def _first_rows(mask: pd.Series, n: int = 5) -> list:
    return mask.index[mask.to_numpy()][:n].tolist()

def factorize_outcome(s: pd.Series) -> pd.Series:
    """Map the outcome to 0/1; accepts 0/1 (any numeric form) and no/yes."""
    key = s.map(lambda v: str(v).strip().lower())
    codes = key.map({"0": 0, "1": 1, "0.0": 0, "1.0": 1, "no": 0, "yes": 1})
    bad = codes.isna()
    if bad.any():
        raise DataQualityError(
            f"Outcome column '{TARGET}' has values outside {{0, 1}} at row(s) "
            f"{_first_rows(bad)}: {list(s[bad].head(5))}"
        )
    return codes.astype(int)

def _to_numeric_strict(s: pd.Series, col: str) -> pd.Series:
    num = pd.to_numeric(s, errors="coerce")
    bad = num.isna() & s.notna()
    if bad.any():
        raise DataQualityError(
            f"Non-numeric value(s) in column '{col}' at row(s) {_first_rows(bad)}: {list(s[bad].head(5))}"
        )
    return num

def fit_bmi_median(df: pd.DataFrame) -> float:
    observed = pd.to_numeric(df["bmi"], errors="coerce").dropna()
    if observed.empty:
        raise DataQualityError("Column 'bmi' has no observed values to take a median from.")
    return float(observed.median())

def impute_bmi(df: pd.DataFrame, bmi_median: float) -> pd.DataFrame:
    out = df.copy()
    out["bmi"] = out["bmi"].fillna(bmi_median)
    return out

def clean_data(df: pd.DataFrame, bmi_median: float | None = None, impute: bool = True):
    """
    Minimal, explainable cleaning:
      - Check required columns are present
      - Outcome -> 0/1 (error on anything else)
      - BMI sentinel "N/A" -> NaN, numeric fields parsed strictly
      - Categorical fields stripped to str; no missing values allowed
      - BMI imputed with bmi_median (or the median of observed BMI)
    Returns: (clean_df, summary_dict)
    """
    missing_cols = [c for c in REQUIRED_COLS if c not in df.columns]
    if missing_cols:
        raise DataQualityError(f"Missing required column(s): {missing_cols}")

    summary = {}
    out = df.drop(columns=["id"], errors="ignore").copy()
    summary["rows"] = int(len(out))

    out[TARGET] = factorize_outcome(out[TARGET])

    bmi = out["bmi"].mask(out["bmi"].astype(str).str.strip() == BMI_SENTINEL)
    summary["bmi_missing"] = int(bmi.isna().sum())
    out["bmi"] = _to_numeric_strict(bmi, "bmi")

    for c in NUMERIC_COLS + FLAG_COLS:
        if c == "bmi":
            continue
        na = out[c].isna()
        if na.any():
            raise DataQualityError(f"Missing value(s) in column '{c}' at row(s) {_first_rows(na)}")
        out[c] = _to_numeric_strict(out[c], c)

    for c in CATEGORICAL_COLS:
        na = out[c].isna()
        if na.any():
            raise DataQualityError(f"Missing value(s) in column '{c}' at row(s) {_first_rows(na)}")
        out[c] = out[c].astype(str).str.strip()

    if impute:
        med = fit_bmi_median(out) if bmi_median is None else float(bmi_median)
        out = impute_bmi(out, med)
        summary["bmi_median"] = med

    summary["stroke_yes"] = int(out[TARGET].sum())
    summary["stroke_no"]  = int((out[TARGET] == 0).sum())
    return out, summary

def save_cleaning_report(summary: dict):
    os.makedirs("reports", exist_ok=True)
    path = os.path.join("reports", "cleaning_report.txt")
    med = summary.get("bmi_median")
    lines = [
        "=== Data Cleaning Summary ===\n",
        f"Rows                      : {summary.get('rows', 0):,}\n",
        f"BMI missing ('{BMI_SENTINEL}')     : {summary.get('bmi_missing', 0):,}\n",
        f"BMI median used           : {fmt_metric(med, 2)}\n",
        f"BMI median fit on         : {summary.get('bmi_median_source', 'full table')}\n",
        f"Stroke = yes              : {summary.get('stroke_yes', 0):,}\n",
        f"Stroke = no               : {summary.get('stroke_no', 0):,}\n",
    ]
    with open(path, "w", encoding="utf-8") as f:
        f.writelines(lines)
    print(f"[SAVE] Cleaning summary -> {path}")

# ================================ Encoding =================================

SCALERS = {"minmax": MinMaxScaler, "zscore": StandardScaler}

def category_universe(df: pd.DataFrame, cols=None) -> dict:
    cols = CATEGORICAL_COLS if cols is None else cols
    return {c: sorted(df[c].astype(str).unique().tolist()) for c in cols}

def encode_table(df: pd.DataFrame, categories: dict, numeric_cols=None) -> pd.DataFrame:
    """
    Numeric columns first, then one indicator column per category value
    (e.g. gender_Female, gender_Male). The column set depends only on
    `categories`, so train and test tables always line up.
    """
    numeric_cols = NUMERIC_COLS + FLAG_COLS if numeric_cols is None else numeric_cols
    cat_cols = list(categories)
    ohe = OneHotEncoder(categories=[categories[c] for c in cat_cols],
                        handle_unknown="ignore", sparse_output=False, dtype=int)
    dummies = ohe.fit_transform(df[cat_cols].astype(str))
    onehot = pd.DataFrame(dummies, columns=ohe.get_feature_names_out(cat_cols), index=df.index)
    return pd.concat([df[numeric_cols].astype(float), onehot], axis=1)

def build_scaler(method: str, cols) -> ColumnTransformer:
    if method not in SCALERS:
        raise ValueError(f"Unknown scaling '{method}'; expected one of {sorted(SCALERS)}")
    return ColumnTransformer([("scaler", SCALERS[method](), list(cols))],
                             remainder="passthrough", verbose_feature_names_out=False)

def scale_table(train: pd.DataFrame, test: pd.DataFrame, method: str, cols=None):
    """Fit min-max / z-score statistics on `train` only, apply them to both."""
    cols = [c for c in (NUMERIC_COLS if cols is None else cols) if c in train.columns]
    ct = build_scaler(method, cols)
    tr = ct.fit_transform(train)
    names = ct.get_feature_names_out()
    tr = pd.DataFrame(tr, columns=names, index=train.index)[list(train.columns)]
    te = pd.DataFrame(ct.transform(test), columns=names, index=test.index)[list(test.columns)]
    return tr, te

# ================================ Splitting ================================

class Split(NamedTuple):
    train: pd.Index
    test: pd.Index

def stratified_split(y: pd.Series, train_fraction: float = TRAIN_FRACTION, seed: int = RANDOM_SEED) -> Split:
    if not 0.0 < train_fraction < 1.0:
        raise ValueError(f"train_fraction must be in (0, 1), got {train_fraction}")
    tr, te = train_test_split(np.asarray(y.index), train_size=train_fraction,
                              random_state=seed, stratify=np.asarray(y))
    return Split(pd.Index(tr), pd.Index(te))

def split_report(y: pd.Series, split: Split) -> pd.DataFrame:
    rows = []
    for name, idx in [("full", y.index), ("train", split.train), ("test", split.test)]:
        part = y.loc[idx]
        rows.append({"partition": name, "n": int(len(part)),
                     "no": int((part == 0).sum()), "yes": int((part == 1).sum()),
                     "yes_rate": float(part.mean()) if len(part) else np.nan})
    return pd.DataFrame(rows)

# ================================ Modeling =================================

MODEL_FAMILIES = {
    "Decision Tree": {
        "estimator": lambda seed: DecisionTreeClassifier(min_samples_leaf=5, random_state=seed),
        "scaling": None,
        "grid": {"clf__ccp_alpha": [0.0, 0.001, 0.01]},
    },
    "SVM": {
        # Platt-scaled probabilities from held-out decision scores (sigmoid, 3 inner folds)
        "estimator": lambda seed: CalibratedClassifierCV(SVC(kernel="rbf", random_state=seed),
                                                         method="sigmoid", cv=3, ensemble=False),
        "scaling": "zscore",
        "grid": {"clf__estimator__C": [1.0], "clf__estimator__gamma": [0.1]},
    },
    "KNN": {
        "estimator": lambda seed: KNeighborsClassifier(),
        "scaling": "minmax",
        "grid": {"clf__n_neighbors": [5, 7, 9]},
    },
}

CV_SCORING = {
    "roc_auc": "roc_auc",
    "sensitivity": make_scorer(recall_score, pos_label=1, zero_division=0),
    "specificity": make_scorer(recall_score, pos_label=0, zero_division=0),
}

def build_pipe(family: str, X: pd.DataFrame, seed: int = RANDOM_SEED) -> Pipeline:
    cfg = MODEL_FAMILIES[family]
    steps = []
    if cfg["scaling"]:
        scale_cols = [c for c in NUMERIC_COLS if c in X.columns]
        steps.append(("prep", build_scaler(cfg["scaling"], scale_cols)))
    steps.append(("clf", cfg["estimator"](seed)))
    return Pipeline(steps)

def check_folds(y: np.ndarray, cv: StratifiedKFold, family: str) -> None:
    """Every fold needs both classes on each side, or its ROC is undefined."""
    try:
        folds = list(cv.split(np.zeros((len(y), 1)), y))
    except ValueError as e:
        raise ModelingError(f"{family}: cannot build {cv.get_n_splits()} folds — {e}") from e
    for i, (tr, va) in enumerate(folds, start=1):
        if np.unique(y[tr]).size < 2 or np.unique(y[va]).size < 2:
            raise ModelingError(f"{family}: CV fold {i} is missing an outcome class; ROC is undefined.")

def train_model(family: str, X: pd.DataFrame, y, cv_folds: int = CV_FOLDS,
                seed: int = RANDOM_SEED, n_jobs=N_JOBS):
    """
    Grid search under stratified k-fold CV, refit on all rows with the
    setting of best mean fold AUC. Returns (fitted pipeline, cv summary dict).
    """
    if family not in MODEL_FAMILIES:
        raise KeyError(f"Unknown model family '{family}'. Known: {list(MODEL_FAMILIES)}")
    y = np.asarray(y).astype(int)
    cv = StratifiedKFold(n_splits=cv_folds, shuffle=True, random_state=seed)
    check_folds(y, cv, family)

    search = GridSearchCV(build_pipe(family, X, seed), MODEL_FAMILIES[family]["grid"],
                          cv=cv, scoring=CV_SCORING, refit="roc_auc",
                          n_jobs=n_jobs, error_score="raise")
    try:
        search.fit(X, y)
    except ValueError as e:
        raise ModelingError(f"{family}: fit failed — {e}") from e

    res = search.cv_results_
    best = search.best_index_
    per_fold = lambda m: [float(res[f"split{i}_test_{m}"][best]) for i in range(cv_folds)]
    summary = {
        "model": family,
        "best_params": {k.split("__")[-1]: v for k, v in search.best_params_.items()},
        "cv_auc_mean": float(res["mean_test_roc_auc"][best]),
        "cv_auc_std": float(res["std_test_roc_auc"][best]),
        "cv_sens_mean": float(res["mean_test_sensitivity"][best]),
        "cv_spec_mean": float(res["mean_test_specificity"][best]),
        "fold_auc": per_fold("roc_auc"),
        "fold_sensitivity": per_fold("sensitivity"),
        "fold_specificity": per_fold("specificity"),
    }
    print(f"\n[CV] {family} — {cv_folds}-fold, best {summary['best_params']}")
    print(f"  AUC : {summary['cv_auc_mean']:.3f} ± {summary['cv_auc_std']:.3f}")
    print(f"  Sens: {summary['cv_sens_mean']:.3f}")
    print(f"  Spec: {summary['cv_spec_mean']:.3f}")
    return search.best_estimator_, summary

FOLD_KEYS = {"fold_auc": "auc", "fold_sensitivity": "sensitivity", "fold_specificity": "specificity"}

def cv_grid_table(summaries: list) -> pd.DataFrame:
    """One row per trained model; per-fold AUC / sensitivity / specificity flattened to foldN_<metric>."""
    rows = []
    for s in summaries:
        row = {k: v for k, v in s.items() if k != "best_params" and k not in FOLD_KEYS}
        row["best_params"] = str(s["best_params"])
        for key, metric in FOLD_KEYS.items():
            for i, v in enumerate(s.get(key, []), start=1):
                row[f"fold{i}_{metric}"] = v
        rows.append(row)
    return pd.DataFrame(rows)

# =============================== Evaluation ================================

def _safe_rate(num, den): return float(num/den) if den > 0 else np.nan

def confusion_counts(y_true, y_hat):
    """(TN, FP, FN, TP) with positive class = stroke (1)."""
    y_true = np.asarray(y_true).astype(int)
    y_hat  = np.asarray(y_hat).astype(int)
    tp = int(((y_hat == 1) & (y_true == 1)).sum())
    tn = int(((y_hat == 0) & (y_true == 0)).sum())
    fp = int(((y_hat == 1) & (y_true == 0)).sum())
    fn = int(((y_hat == 0) & (y_true == 1)).sum())
    return tn, fp, fn, tp

def positive_proba(model, X) -> np.ndarray:
    classes = list(model.classes_)
    return model.predict_proba(X)[:, classes.index(1)]

def safe_auc(y_true, y_prob) -> float:
    y_true = np.asarray(y_true).astype(int)
    if np.unique(y_true).size < 2:
        return np.nan
    return float(roc_auc_score(y_true, y_prob))

def evaluate_model(model, X, y, name: str, thr: float = DECISION_THRESHOLD) -> dict:
    y = np.asarray(y).astype(int)
    y_prob = positive_proba(model, X)
    y_hat = (y_prob >= thr).astype(int)
    tn, fp, fn, tp = confusion_counts(y, y_hat)
    return {
        "model": name, "threshold": float(thr),
        "AUC": safe_auc(y, y_prob),
        "accuracy": _safe_rate(tp + tn, len(y)),
        "sensitivity": _safe_rate(tp, tp + fn),
        "specificity": _safe_rate(tn, tn + fp),
        "TN": tn, "FP": fp, "FN": fn, "TP": tp,
    }

def metrics_table(results: list) -> pd.DataFrame:
    names = [r["model"] for r in results]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ValueError(f"Duplicate model names in results: {dupes}")
    cols = ["model", "AUC", "accuracy", "sensitivity", "specificity", "TN", "FP", "FN", "TP", "threshold"]
    return pd.DataFrame(results, columns=cols)

def print_metrics(res: dict) -> None:
    print(f"\n[EVAL] {res['model']} (holdout)")
    print(f"ROC AUC    : {fmt_metric(res['AUC'])}")
    print(f"Accuracy   : {fmt_metric(res['accuracy'])}")
    print(f"Sensitivity: {fmt_metric(res['sensitivity'])}")
    print(f"Specificity: {fmt_metric(res['specificity'])}")

def nice_confusion(res: dict, fname: str):
    cm = np.array([[res["TN"], res["FP"]], [res["FN"], res["TP"]]])
    df_cm = pd.DataFrame(cm,
                         index=["True: No stroke", "True: Stroke"],
                         columns=["Pred: No stroke", "Pred: Stroke"])
    fig, ax = new_fig(figsize=(6, 5))
    sns.heatmap(df_cm, annot=True, fmt="d", cmap="Purples", cbar=False, ax=ax)
    ax.set_title(f"Confusion matrix — {res['model']} @ {res['threshold']:.2f}")
    ax.text(0.0, -0.25,
            "Rows = actual, Columns = predicted. FN = missed stroke, FP = false alarm.",
            transform=ax.transAxes, ha="left", va="top", fontsize=9, color="#374151")
    save_and_show(fig, fname)
    print(f"[EXPLAIN] {res['model']}: TN={res['TN']:,}, FP={res['FP']:,}, FN={res['FN']:,}, TP={res['TP']:,}")

def roc_plot(y_true, y_prob, name: str, fname: str):
    if np.unique(np.asarray(y_true)).size < 2:
        print(f"[WARN] ROC for {name} skipped: test set has a single class.")
        return
    fpr, tpr, _ = roc_curve(y_true, y_prob)
    auc = roc_auc_score(y_true, y_prob)
    fig, ax = new_fig(figsize=(6, 5))
    ax.plot(fpr, tpr, color=MODEL_COLORS.get(name, COLOR_NO), label=f"{name} (AUC={auc:.3f})")
    ax.plot([0, 1], [0, 1], linestyle="--", color="#9CA3AF")
    ax.set_xlabel("False positive rate"); ax.set_ylabel("True positive rate")
    ax.set_title(f"ROC curve — {name}"); ax.legend()
    save_and_show(fig, fname)

def performance_plot(metrics: pd.DataFrame, fname: str = "performance_comparison.png"):
    long = metrics.melt(id_vars="model", value_vars=["AUC", "accuracy", "sensitivity", "specificity"],
                        var_name="metric", value_name="value")
    fig, ax = new_fig(figsize=(8, 4.5))
    sns.barplot(data=long, x="metric", y="value", hue="model", ax=ax)
    ax.set_ylim(0, 1); ax.yaxis.set_major_formatter(PCT)
    ax.set_title("Holdout performance by model"); ax.set_xlabel(""); ax.set_ylabel("")
    ax.legend(title="", loc="lower right")
    save_and_show(fig, fname)

# ===== Fairness & error-balance audit =====

def fairness_table(y_true, y_prob, groups, privileged: str = PRIVILEGED_GROUP,
                   thr: float = DECISION_THRESHOLD, categories=None,
                   flag_ratio: float | None = FAIRNESS_FLAG_RATIO) -> pd.DataFrame:
    """
    Per-group: size, prevalence, flagged rate, TPR, FPR, PPV, accuracy, plus
    each metric divided by the privileged group's. Empty groups and a missing
    privileged group give NaN (undefined), never an error.
    """
    df = pd.DataFrame({
        "y": np.asarray(y_true).astype(int),
        "p": np.asarray(y_prob, dtype=float),
        "g": pd.Series(groups).astype(str).to_numpy(),
    })
    df["yhat"] = (df["p"] >= thr).astype(int)
    order = list(categories) if categories is not None else sorted(df["g"].unique())

    rows = []
    for g in order:
        sub = df[df["g"] == g]
        y = sub["y"].to_numpy(); yhat = sub["yhat"].to_numpy()
        tn, fp, fn, tp = confusion_counts(y, yhat)
        rows.append({
            "group": g,
            "n": int(len(sub)),
            "prevalence": _safe_rate(y.sum(), len(sub)),
            "flagged_rate": _safe_rate(yhat.sum(), len(sub)),
            "TPR": _safe_rate(tp, tp + fn),
            "FPR": _safe_rate(fp, fp + tn),
            "PPV": _safe_rate(tp, tp + fp),
            "accuracy": _safe_rate(tp + tn, len(sub)),
        })
    out = pd.DataFrame(rows, columns=["group", "n", "prevalence", "flagged_rate",
                                      "TPR", "FPR", "PPV", "accuracy"])

    priv = out[out["group"] == str(privileged)]
    if priv.empty:
        print(f"[WARN] Privileged group '{privileged}' not present; fairness ratios are undefined.")
    for m in ["TPR", "FPR", "PPV", "accuracy"]:
        base = float(priv[m].iloc[0]) if not priv.empty else np.nan
        out[f"{m}_ratio"] = out[m] / base if np.isfinite(base) and base > 0 else np.nan
    if flag_ratio is not None:
        ratios = out[[c for c in FAIRNESS_FLAG_METRICS if c in out.columns]]
        out["flagged"] = (ratios < flag_ratio).any(axis=1) & (out["group"] != str(privileged))
    return out

def print_fairness(tbl: pd.DataFrame, title: str, privileged: str = PRIVILEGED_GROUP):
    print(f"\n[FAIR] {title} (reference: {privileged})")
    for _, r in tbl.iterrows():
        print(f"  {r['group']:<10} n={r['n']:<5} TPR={fmt_metric(r['TPR'], 3)} "
              f"TPR ratio={fmt_metric(r['TPR_ratio'], 3)} PPV ratio={fmt_metric(r['PPV_ratio'], 3)}")

def fairness_comparison_table(before: pd.DataFrame, after: pd.DataFrame) -> pd.DataFrame:
    return pd.concat([before.assign(stage="before SMOTE"), after.assign(stage="after SMOTE")],
                     ignore_index=True)

def fairness_plot(comparison: pd.DataFrame, attribute: str, privileged: str = PRIVILEGED_GROUP,
                  fname: str = "fairness_tpr_ratio.png"):
    data = comparison.dropna(subset=["TPR_ratio"])
    if data.empty:
        print("[WARN] Fairness chart skipped: every TPR ratio is undefined.")
        return
    fig, ax = new_fig(figsize=(7.2, 4.2))
    sns.barplot(data=data, x="group", y="TPR_ratio", hue="stage",
                palette={"before SMOTE": COLOR_NO, "after SMOTE": COLOR_YES}, ax=ax)
    ax.axhline(1.0, linestyle="--", color=ACCENT, label="Parity")
    ax.set_title(f"TPR ratio by {attribute} (vs {privileged})")
    ax.set_xlabel(attribute); ax.set_ylabel("TPR ratio")
    ax.legend(title="")
    save_and_show(fig, fname)

# ============================== Rebalancing ================================

def rebalance_training(X: pd.DataFrame, y, minority_label: int | None = None,
                       k_neighbors: int = SMOTE_K, dup_size: int = SMOTE_DUP_SIZE,
                       seed: int = RANDOM_SEED):
    """
    SMOTE on the training partition only. The minority class grows to
    n_min * (1 + dup_size) rows in total: seed rows are drawn at random with
    replacement, so a given real row may seed several synthetic rows or none.
    Majority rows are untouched. Returns (X_res, y_res).
    """
    if dup_size < 0:
        raise ValueError(f"dup_size must be >= 0, got {dup_size}")
    y = pd.Series(np.asarray(y).astype(int), index=X.index, name=TARGET)
    counts = y.value_counts()
    if counts.size < 2:
        raise ModelingError("Rebalancing needs both outcome classes in the training partition.")
    if minority_label is None:
        minority_label = int(counts.idxmin())
    n_min = int(counts.get(minority_label, 0))
    if dup_size == 0:
        return X.copy(), y.copy()
    if n_min <= k_neighbors:
        raise ModelingError(f"SMOTE needs more than {k_neighbors} minority rows, found {n_min}.")

    smote = SMOTE(sampling_strategy={minority_label: n_min * (1 + dup_size)},
                  k_neighbors=k_neighbors, random_state=seed)
    X_res, y_res = smote.fit_resample(X, y)
    X_res = pd.DataFrame(X_res, columns=X.columns)
    y_res = pd.Series(np.asarray(y_res).astype(int), name=TARGET)
    print(f"[SMOTE] minority {minority_label}: {n_min:,} -> {int((y_res == minority_label).sum()):,} "
          f"(k={k_neighbors}, dup_size={dup_size})")
    return X_res, y_res

# ============================ Plot source tables ===========================

def glucose_by_outcome_table(df: pd.DataFrame) -> pd.DataFrame:
    g = df.groupby(TARGET)["avg_glucose_level"]
    out = pd.DataFrame({
        "n": g.size(), "min": g.min(), "q1": g.quantile(0.25), "median": g.median(),
        "q3": g.quantile(0.75), "max": g.max(), "mean": g.mean(),
    })
    return out.rename_axis(TARGET).reset_index()

def smoking_outcome_table(df: pd.DataFrame) -> pd.DataFrame:
    """Share of stroke = no/yes within each smoking status (rows sum to 1)."""
    ct = pd.crosstab(df["smoking_status"], df[TARGET]).reindex(columns=[0, 1], fill_value=0)
    n = ct.sum(axis=1)
    out = pd.DataFrame({"smoking_status": ct.index, "n": n.to_numpy(),
                        "no": (ct[0] / n).to_numpy(), "yes": (ct[1] / n).to_numpy()})
    return out.reset_index(drop=True)

def age_by_outcome_table(df: pd.DataFrame, bin_width: int = 10) -> pd.DataFrame:
    top = int(np.ceil(max(float(df["age"].max()), 1.0) / bin_width) * bin_width)
    bins = list(range(0, top + bin_width, bin_width))
    binned = pd.cut(df["age"], bins=bins, right=False)
    ct = pd.crosstab(binned, df[TARGET]).reindex(columns=[0, 1], fill_value=0)
    out = pd.DataFrame({"age_bin": ct.index.astype(str), "no": ct[0].to_numpy(), "yes": ct[1].to_numpy()})
    return out

def class_distribution_table(y, stage: str = "all") -> pd.DataFrame:
    y = pd.Series(np.asarray(y).astype(int))
    counts = y.value_counts().reindex([0, 1], fill_value=0)
    total = int(counts.sum())
    return pd.DataFrame({"stage": stage, "label": ["no", "yes"], "n": counts.to_numpy(),
                         "share": counts.to_numpy() / total if total else np.nan})

# ================================ EDA ======================================

def make_eda_charts(df: pd.DataFrame) -> None:
    make_output_folder()
    plt.close("all")
    print("\n[EDA] Columns:", list(df.columns))
    labels = df[TARGET].map({0: "No", 1: "Yes"})

    # 1) Outcome balance (counts + %)
    dist = class_distribution_table(df[TARGET])
    save_table(dist, "reports/class_distribution.csv")
    fig, ax = new_fig(figsize=(6.2, 4))
    sns.barplot(data=dist, x="label", y="n", hue="label",
                palette={"no": COLOR_NO, "yes": COLOR_YES}, dodge=False, ax=ax)
    leg = ax.get_legend()
    if leg is not None:
        leg.remove()
    ax.set_title("Patients by stroke outcome")
    ax.set_xlabel("Stroke"); ax.set_ylabel("Number of patients")
    ax.yaxis.set_major_formatter(FMT_THOUSANDS)
    for i, (v, s) in enumerate(zip(dist["n"], dist["share"])):
        ax.text(i, v, f"{v:,}\n({s:.1%})", ha="center", va="bottom", fontsize=9)
    ax.margins(y=0.10)
    save_and_show(fig, "stroke_counts.png")
    print(f"[EDA] Stroke: {int(dist['n'].iloc[1]):,} of {int(dist['n'].sum()):,} = {dist['share'].iloc[1]:.1%}")

    # 2) Glucose by outcome (boxplot)
    save_table(glucose_by_outcome_table(df), "reports/glucose_by_outcome.csv")
    fig, ax = new_fig(figsize=(6.2, 4.5))
    sns.boxplot(x=labels, y=df["avg_glucose_level"], hue=labels,
                palette={"No": COLOR_NO, "Yes": COLOR_YES}, ax=ax)
    leg = ax.get_legend()
    if leg is not None:
        leg.remove()
    ax.set_title("Average glucose level by stroke outcome")
    ax.set_xlabel("Stroke"); ax.set_ylabel("Average glucose level (mg/dL)")
    save_and_show(fig, "glucose_by_outcome_box.png")

    # 3) Smoking status — proportional bars
    smoke = smoking_outcome_table(df)
    save_table(smoke, "reports/smoking_outcome_share.csv")
    fig, ax = new_fig(figsize=(7.5, 4.2))
    ax.bar(smoke["smoking_status"], smoke["no"], color=COLOR_NO, label="No stroke")
    ax.bar(smoke["smoking_status"], smoke["yes"], bottom=smoke["no"], color=COLOR_YES, label="Stroke")
    ax.set_title("Stroke share by smoking status")
    ax.set_xlabel("Smoking status"); ax.set_ylabel("Share of patients")
    ax.yaxis.set_major_formatter(PCT)
    for i, (r, n) in enumerate(zip(smoke["yes"], smoke["n"])):
        ax.text(i, 1.0, f"{r*100:.1f}%  |  {n:,}", ha="center", va="bottom", fontsize=9, color="#374151")
    ax.legend(loc="lower right")
    save_and_show(fig, "smoking_stroke_share.png")

    # 4) Age histogram by outcome
    save_table(age_by_outcome_table(df), "reports/age_by_outcome.csv")
    fig, ax = new_fig()
    sns.histplot(x=df["age"], hue=labels, bins=30, stat="density", common_norm=False,
                 palette={"No": COLOR_NO, "Yes": COLOR_YES}, ax=ax)
    med = float(df["age"].median())
    ax.axvline(med, linestyle="--", linewidth=2, color=LINE_MED)
    ax.set_title(f"Age distribution by stroke outcome (median {med:.0f})")
    ax.set_xlabel("Age"); ax.set_ylabel("Density")
    save_and_show(fig, "age_by_outcome_hist.png")

def class_balance_plot(dist: pd.DataFrame, fname: str = "class_balance_smote.png"):
    fig, ax = new_fig(figsize=(6.8, 4))
    sns.barplot(data=dist, x="stage", y="n", hue="label",
                palette={"no": COLOR_NO, "yes": COLOR_YES}, ax=ax)
    ax.set_title("Training class balance before/after SMOTE")
    ax.set_xlabel(""); ax.set_ylabel("Rows"); ax.yaxis.set_major_formatter(FMT_THOUSANDS)
    ax.legend(title="Stroke")
    save_and_show(fig, fname)

# ================================ Reports ==================================

def write_figure_captions(audit_model: str = AUDIT_MODEL, attribute: str = PROTECTED_ATTRIBUTE):
    os.makedirs("reports", exist_ok=True)
    path = os.path.join("reports", "figure_captions.txt")
    captions = {
        "stroke_counts.png": "Class balance: strokes are a small minority of patients.",
        "glucose_by_outcome_box.png": "Average glucose is higher and more spread among stroke patients.",
        "smoking_stroke_share.png": "Share of strokes within each smoking status (labels: rate | patients).",
        "age_by_outcome_hist.png": "Stroke patients are concentrated at older ages; dashed line = median age.",
        "performance_comparison.png": "Holdout AUC, accuracy, sensitivity and specificity per model.",
        "class_balance_smote.png": "Training rows per class before and after SMOTE; test set untouched.",
        "fairness_tpr_ratio.png": f"TPR by {attribute} relative to the reference group, before vs after SMOTE; 1.0 = parity.",
    }
    for fam in MODEL_FAMILIES:
        s = _slug(fam)
        captions[f"cm_{s}.png"] = f"Confusion matrix — {fam} at threshold {DECISION_THRESHOLD:.2f}."
        captions[f"roc_{s}.png"] = f"ROC — {fam}; diagonal is random."
    bal = f"{audit_model} + SMOTE"
    captions[f"cm_{_slug(bal)}.png"] = f"Confusion matrix — {bal}: audited model retrained on the rebalanced partition."
    with open(path, "w", encoding="utf-8") as f:
        f.write("=== Figure Captions ===\n")
        for k, v in captions.items():
            f.write(f"{k}: {v}\n")
    print(f"[SAVE] Figure captions -> {path}")

def build_key_numbers(df: pd.DataFrame, results: dict):
    """Save key summary numbers (data + model) to reports/key_numbers.csv."""
    total = len(df)
    yes = int(df[TARGET].sum())
    row = {
        "total_patients": total,
        "stroke_yes": yes,
        "stroke_rate": yes / total if total else np.nan,
        "median_age": float(df["age"].median()),
        "median_glucose_no": float(df.loc[df[TARGET] == 0, "avg_glucose_level"].median()),
        "median_glucose_yes": float(df.loc[df[TARGET] == 1, "avg_glucose_level"].median()),
        "bmi_median_used": results.get("bmi_median", np.nan),
    }
    for _, r in results["metrics"].iterrows():
        s = _slug(r["model"])
        for m in ["AUC", "accuracy", "sensitivity", "specificity"]:
            row[f"{m.lower()}_{s}"] = r[m]
    out = pd.DataFrame([row])
    save_table(out, os.path.join("reports", "key_numbers.csv"))

def write_model_card(df: pd.DataFrame, results: dict):
    os.makedirs("reports", exist_ok=True)
    total = len(df); yes = int(df[TARGET].sum())
    prev = yes / total if total else float("nan")
    audit = results.get("audit_model")
    cfg = results.get("config", {})
    frac = cfg.get("train_fraction", TRAIN_FRACTION)
    flag_ratio = cfg.get("flag_ratio")

    lines = []
    lines.append("# Model Card: Stroke Prediction\n")
    lines.append("**Date:** autogenerated\n")
    lines.append("## 1. Intended Use\nExploratory study of stroke risk from demographic and clinical fields. Not a clinical decision tool.\n")
    lines.append("## 2. Data\n")
    lines.append(f"- Patients: **{total:,}**; stroke prevalence: **{prev:.1%}**\n")
    lines.append(f"- BMI '{BMI_SENTINEL}' imputed with the training-partition median ({fmt_metric(results.get('bmi_median'), 2)}).\n")
    lines.append(f"## 3. Training/Validation\nStratified {frac:.0%}/{1 - frac:.0%} split (seed {cfg.get('seed', RANDOM_SEED)}); "
                 f"{cfg.get('cv_folds', CV_FOLDS)}-fold stratified CV optimizing ROC AUC. "
                 f"Families: {', '.join(MODEL_FAMILIES)}.\n")
    lines.append("## 4. Performance (holdout)\n")
    for _, r in results["metrics"].iterrows():
        lines.append(f"- **{r['model']}**: AUC {fmt_metric(r['AUC'], 3)}, accuracy {fmt_metric(r['accuracy'], 3)}, "
                     f"sensitivity {fmt_metric(r['sensitivity'], 3)}, specificity {fmt_metric(r['specificity'], 3)}\n")
    lines.append(f"## 5. Fairness\nAudit over `{cfg.get('protected_attribute', PROTECTED_ATTRIBUTE)}` against "
                 f"`{cfg.get('privileged', PRIVILEGED_GROUP)}` for {audit}, before and after SMOTE "
                 f"(k={cfg.get('smote_k', SMOTE_K)}, dup_size={cfg.get('dup_size', SMOTE_DUP_SIZE)}; "
                 "see `reports/fairness/`).\n")
    if flag_ratio is None:
        lines.append("Ratios are reported, not acted on; a reviewer decides whether a disparity needs remediation.\n")
    else:
        comp = results["fairness_comparison"]
        hit = comp.loc[comp["flagged"].astype(bool), ["stage", "group"]] if "flagged" in comp.columns else comp.iloc[:0]
        names = ", ".join(f"{g} ({s})" for s, g in hit.itertuples(index=False)) or "none"
        lines.append(f"Subgroups with a TPR/PPV/accuracy ratio below {flag_ratio:.2f}: {names}.\n")
    lines.append("## 6. Risk & Limitations\n- Strong class imbalance; sensitivity at 0.5 is low.  \n"
                 "- Small subgroups make ratios unstable or undefined.  \n- Associations are not causal.\n")

    path = os.path.join("reports", "model_card.md")
    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines))
    print(f"[SAVE] {path}")

# ================================ Pipeline =================================

def run_models(df: pd.DataFrame, split: Split, cv_folds: int = CV_FOLDS, n_jobs=N_JOBS,
               audit_model: str = AUDIT_MODEL, seed: int = RANDOM_SEED,
               protected_attribute: str = PROTECTED_ATTRIBUTE, privileged: str = PRIVILEGED_GROUP,
               flag_ratio: float | None = FAIRNESS_FLAG_RATIO,
               smote_k: int = SMOTE_K, dup_size: int = SMOTE_DUP_SIZE) -> dict:
    categories = category_universe(df)
    X = encode_table(df, categories)
    y = df[TARGET].astype(int)
    Xtr, Xte = X.loc[split.train], X.loc[split.test]
    ytr, yte = y.loc[split.train], y.loc[split.test].to_numpy()

    models, cv_summaries, results, probs = {}, [], [], {}
    for family in MODEL_FAMILIES:
        try:
            model, summ = train_model(family, Xtr, ytr, cv_folds=cv_folds, seed=seed, n_jobs=n_jobs)
        except ModelingError as e:
            print(f"[WARN] {e}")
            continue
        models[family] = model
        cv_summaries.append(summ)
        res = evaluate_model(model, Xte, yte, family)
        results.append(res)
        probs[family] = positive_proba(model, Xte)
        print_metrics(res)
        nice_confusion(res, f"cm_{_slug(family)}.png")
        roc_plot(yte, probs[family], family, f"roc_{_slug(family)}.png")
    if not models:
        raise ModelingError("No model family could be trained.")

    # Fairness audit on the untouched test partition
    if audit_model not in models:
        fallback = next(iter(models))
        print(f"[WARN] Audit model '{audit_model}' unavailable; auditing {fallback} instead.")
        audit_model = fallback
    groups = df.loc[split.test, protected_attribute]
    levels = category_universe(df, [protected_attribute])[protected_attribute]
    audit_kw = dict(privileged=privileged, categories=levels, flag_ratio=flag_ratio)
    fair_stub = f"reports/fairness/{_slug(audit_model)}_{protected_attribute}"
    before = fairness_table(yte, probs[audit_model], groups, **audit_kw)
    print_fairness(before, f"{audit_model} — before SMOTE", privileged)
    save_table(before, f"{fair_stub}_before.csv")

    # Rebalance the training partition, retrain and re-audit
    after, balance = None, class_distribution_table(ytr, "train (before)")
    bal_name = f"{audit_model} + SMOTE"
    try:
        Xbal, ybal = rebalance_training(Xtr, ytr, k_neighbors=smote_k, dup_size=dup_size, seed=seed)
        model_bal, summ_bal = train_model(audit_model, Xbal, ybal, cv_folds=cv_folds, seed=seed, n_jobs=n_jobs)
    except ModelingError as e:
        print(f"[WARN] Rebalanced retrain skipped: {e}")
    else:
        balance = pd.concat([balance, class_distribution_table(ybal, "train (after SMOTE)")],
                            ignore_index=True)
        class_balance_plot(balance)
        summ_bal["model"] = bal_name
        cv_summaries.append(summ_bal)
        models[bal_name] = model_bal
        res_bal = evaluate_model(model_bal, Xte, yte, bal_name)
        results.append(res_bal)
        probs[bal_name] = positive_proba(model_bal, Xte)
        print_metrics(res_bal)
        nice_confusion(res_bal, f"cm_{_slug(bal_name)}.png")

        after = fairness_table(yte, probs[bal_name], groups, **audit_kw)
        print_fairness(after, f"{bal_name} — after SMOTE", privileged)
        save_table(after, f"{fair_stub}_after.csv")
    save_table(balance, "exports/class_balance.csv")

    comparison = before.assign(stage="before SMOTE") if after is None else fairness_comparison_table(before, after)
    save_table(comparison, "reports/fairness/fairness_comparison.csv")
    fairness_plot(comparison, protected_attribute, privileged)

    # Metrics + exports
    metrics = metrics_table(results)
    save_table(metrics, "exports/model_metrics.csv")
    save_table(cv_grid_table(cv_summaries), "exports/cv_results.csv")
    performance_plot(metrics)
    holdout = pd.DataFrame({"y_true": yte, protected_attribute: groups.to_numpy()}, index=split.test)
    for name, p in probs.items():
        holdout[f"proba_{_slug(name)}"] = p
    save_table(holdout, "exports/holdout_predictions.csv")

    try:
        from joblib import dump
        os.makedirs("artifacts", exist_ok=True)
        for name, model in models.items():
            path = f"artifacts/{_slug(name)}_pipeline.joblib"
            dump(model, path)
            print(f"[SAVE] {path}")
    except OSError as e:
        print("[WARN] Could not save joblib artifacts:", e)

    return {
        "metrics": metrics,
        "cv": cv_summaries,
        "fairness_before": before,
        "fairness_after": after,
        "fairness_comparison": comparison,
        "class_balance": balance,
        "audit_model": audit_model,
        "models": models,
    }

def run_pipeline(raw: pd.DataFrame, cv_folds: int = CV_FOLDS, n_jobs=N_JOBS,
                 make_charts: bool = True, train_fraction: float = TRAIN_FRACTION,
                 seed: int = RANDOM_SEED, audit_model: str = AUDIT_MODEL,
                 protected_attribute: str = PROTECTED_ATTRIBUTE, privileged: str = PRIVILEGED_GROUP,
                 flag_ratio: float | None = FAIRNESS_FLAG_RATIO,
                 smote_k: int = SMOTE_K, dup_size: int = SMOTE_DUP_SIZE) -> dict:
    """
    clean -> split -> train-fit BMI median -> EDA -> models -> fairness ->
    SMOTE retrain + re-audit -> reports. Keyword arguments override the
    Configuration block for this run only.
    """
    make_output_folder()
    df, clean_summary = clean_data(raw, impute=False)
    if protected_attribute not in df.columns:
        raise DataQualityError(f"Protected attribute '{protected_attribute}' is not a column of the table.")
    split = stratified_split(df[TARGET], train_fraction=train_fraction, seed=seed)
    save_table(split_report(df[TARGET], split), "reports/split_summary.csv")

    # Median from the training rows only, applied to both partitions
    bmi_median = fit_bmi_median(df.loc[split.train])
    df = impute_bmi(df, bmi_median)
    clean_summary["bmi_median"] = bmi_median
    clean_summary["bmi_median_source"] = "training partition"
    print("\n=== Cleaning summary ===")
    for k, v in clean_summary.items():
        print(f"{k:>20}: {v}")
    save_cleaning_report(clean_summary)

    if make_charts:
        make_eda_charts(df)
        write_figure_captions(audit_model, protected_attribute)
    results = run_models(df, split, cv_folds=cv_folds, n_jobs=n_jobs, audit_model=audit_model, seed=seed,
                         protected_attribute=protected_attribute, privileged=privileged,
                         flag_ratio=flag_ratio, smote_k=smote_k, dup_size=dup_size)
    results["bmi_median"] = bmi_median
    results["split"] = split
    results["config"] = {
        "train_fraction": train_fraction, "seed": seed, "cv_folds": cv_folds,
        "protected_attribute": protected_attribute, "privileged": privileged,
        "flag_ratio": flag_ratio, "smote_k": smote_k, "dup_size": dup_size,
    }

    build_figures_index()
    build_key_numbers(df, results)
    write_model_card(df, results)
    return results

# ================================ Main =====================================

def main() -> None:
    make_output_folder()
    raw = load_csv()
    save_run_environment()
    write_min_requirements()
    print("Raw shape:", raw.shape)
    print("\n[Preview] First 5 rows:\n", raw.head())

    run_pipeline(raw)
    print("\nAll done. Figures saved in:", OUTPUT_DIR)

if __name__ == "__main__":
    main()
