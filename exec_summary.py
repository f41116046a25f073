# exec_summary.py
# Writes a plain-English summary of the stroke run to reports/executive_summary.md
# - Reads the CSVs main.py exports (metrics, CV results, fairness comparison)
# - Proper Markdown tables; undefined metrics stay "undefined", never 0

from __future__ import annotations

import os
from typing import Optional, List

import numpy as np
import pandas as pd

EXPORTS = "exports"
REPORTS = "reports"
OUT_MD = os.path.join(REPORTS, "executive_summary.md")
METRICS_CSV = os.path.join(EXPORTS, "model_metrics.csv")
CV_CSV = os.path.join(EXPORTS, "cv_results.csv")
HOLDOUT_CSV = os.path.join(EXPORTS, "holdout_predictions.csv")
FAIRNESS_CSV = os.path.join(REPORTS, "fairness", "fairness_comparison.csv")

# ---- configuration
RATIO_COLS = ["TPR_ratio", "FPR_ratio", "PPV_ratio", "accuracy_ratio"]

# ------------ helpers

def ensure_dirs():
    os.makedirs(REPORTS, exist_ok=True)

def read_csv_safe(path: str) -> Optional[pd.DataFrame]:
    if not os.path.exists(path):
        return None
    try:
        return pd.read_csv(path)
    except pd.errors.EmptyDataError:
        return None

def fmt_pct(x, d: int = 1) -> str:
    try: x = float(x)
    except (TypeError, ValueError): return "undefined"
    if not np.isfinite(x): return "undefined"
    return f"{100.0 * x:.{d}f}%"

def fmt_float(x, d: int = 3) -> str:
    try: x = float(x)
    except (TypeError, ValueError): return "undefined"
    if not np.isfinite(x): return "undefined"
    return f"{x:.{d}f}"

def df_to_md_table(df: pd.DataFrame) -> str:
    """Render a DataFrame as a GitHub-style Markdown table."""
    cols = list(df.columns)
    header = "| " + " | ".join(str(c) for c in cols) + " |"
    sep = "| " + " | ".join(["---"] * len(cols)) + " |"
    rows = ["| " + " | ".join(str(df.iloc[i, j]) for j in range(len(cols))) + " |"
            for i in range(len(df))]
    return "\n".join([header, sep] + rows)

def best_model(metrics: pd.DataFrame) -> Optional[pd.Series]:
    auc = pd.to_numeric(metrics["AUC"], errors="coerce")
    if auc.notna().sum() == 0:
        return None
    return metrics.loc[auc.idxmax()]

def flagged_groups(fair: pd.DataFrame, stage: str) -> List[str]:
    """Groups main.py marked in the `flagged` column, with the ratios that are below 1."""
    sub = fair[(fair["stage"] == stage) & fair["flagged"].astype(str).str.lower().isin(["true", "1"])]
    cols = [c for c in ["TPR_ratio", "PPV_ratio", "accuracy_ratio"] if c in sub.columns]
    out = []
    for _, r in sub.iterrows():
        low = [c.replace("_ratio", "") for c in cols if np.isfinite(r[c]) and r[c] < 1.0]
        out.append(f"**{r['group']}** ({', '.join(low)})" if low else f"**{r['group']}**")
    return out

# ------------ sections

def metrics_section(metrics: pd.DataFrame) -> List[str]:
    lines = ["## Model comparison (holdout)"]
    show = metrics[["model", "AUC", "accuracy", "sensitivity", "specificity"]].copy()
    show["AUC"] = show["AUC"].apply(fmt_float)
    for c in ["accuracy", "sensitivity", "specificity"]:
        show[c] = show[c].apply(fmt_pct)
    lines.append(df_to_md_table(show))
    lines.append("")
    best = best_model(metrics)
    if best is not None:
        lines.append(f"- Best by **AUC**: {best['model']}: AUC **{fmt_float(best['AUC'])}**, "
                     f"sensitivity **{fmt_pct(best['sensitivity'])}** at threshold "
                     f"**{fmt_float(best.get('threshold', 0.5), 2)}**.")
    else:
        lines.append("- AUC is undefined for every model (single-class test set).")
    lines.append("")
    return lines

def cv_section(cv: pd.DataFrame) -> List[str]:
    lines = ["## Cross-validation (training partition)"]
    show = pd.DataFrame({
        "model": cv["model"],
        "best params": cv["best_params"],
        "AUC mean ± sd": [f"{fmt_float(m)} ± {fmt_float(s)}" for m, s in zip(cv["cv_auc_mean"], cv["cv_auc_std"])],
        "sensitivity": cv["cv_sens_mean"].apply(fmt_pct),
        "specificity": cv["cv_spec_mean"].apply(fmt_pct),
    })
    lines.append(df_to_md_table(show))
    lines.append("")
    return lines

def fairness_section(fair: pd.DataFrame) -> List[str]:
    lines = ["## Fairness (ratios vs the reference group)"]
    cols = ["stage", "group", "n"] + [c for c in RATIO_COLS if c in fair.columns]
    show = fair[cols].copy()
    for c in RATIO_COLS:
        if c in show.columns:
            show[c] = show[c].apply(fmt_float)
    lines.append(df_to_md_table(show))
    lines.append("")
    lines.append("_A ratio of 1.0 means parity with the reference group; values well below 1 "
                 "(above 1 for FPR) point to a disadvantaged subgroup. Empty groups are undefined._")
    lines.append("")
    # `flagged` is only written when main.py runs with FAIRNESS_FLAG_RATIO set
    if "flagged" in fair.columns:
        for stage in fair["stage"].unique():
            hit = flagged_groups(fair, stage)
            lines.append(f"- Flagged ({stage}): {', '.join(hit) if hit else 'none'}")
        lines.append("")
    return lines

# ------------ main

def build_summary() -> str:
    metrics = read_csv_safe(METRICS_CSV)
    if metrics is None or metrics.empty:
        return f"# Executive Summary\n\n*No metrics file found at `{METRICS_CSV}`. Run main.py first.*\n"

    lines: List[str] = ["# Executive Summary\n"]

    holdout = read_csv_safe(HOLDOUT_CSV)
    if holdout is not None and "y_true" in holdout.columns and len(holdout):
        y = pd.to_numeric(holdout["y_true"], errors="coerce")
        lines.append("## Data")
        lines.append(f"- Test patients: **{len(holdout):,}**; stroke rate **{fmt_pct(y.mean())}**.")
        lines.append("")

    lines.extend(metrics_section(metrics))

    cv = read_csv_safe(CV_CSV)
    if cv is not None and not cv.empty:
        lines.extend(cv_section(cv))

    fair = read_csv_safe(FAIRNESS_CSV)
    if fair is not None and not fair.empty:
        lines.extend(fairness_section(fair))
    else:
        lines.append("*No fairness comparison found.*\n")

    return "\n".join(lines).strip() + "\n"


if __name__ == "__main__":
    md = build_summary()
    ensure_dirs()
    with open(OUT_MD, "w", encoding="utf-8") as f:
        f.write(md)
    print(f"[SAVE] {OUT_MD}")
