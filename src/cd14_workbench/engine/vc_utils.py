from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Union
import re

import numpy as np
import pandas as pd

from cd14_workbench.errors import MissingFactorError


def validate_dataframe(df: pd.DataFrame, response_col: str, factor_cols: Sequence[str]) -> pd.DataFrame:
    """
    Returns a sanitized copy of df:
      - coerces response to numeric
      - drops rows with a missing response or factor level
      - casts factor cols to category (string-categories)

    Raises KeyError for missing columns and MissingFactorError when a factor
    is left with fewer than 2 levels.
    """
    if response_col not in df.columns:
        raise KeyError(f"Response column '{response_col}' missing from dataframe.")
    for col in factor_cols:
        if col not in df.columns:
            raise KeyError(f"Factor column '{col}' missing from dataframe.")

    df2 = df.copy()
    df2[response_col] = pd.to_numeric(df2[response_col], errors="coerce")
    df2 = df2.dropna(subset=[response_col] + list(factor_cols))

    for col in factor_cols:
        df2[col] = df2[col].astype(str).astype("category")
        n_levels = int(df2[col].nunique())
        if n_levels < 2:
            raise MissingFactorError(col, n_levels)

    return df2


def design_diagnostics(df: pd.DataFrame, factor_cols: Sequence[str]) -> Dict[str, Any]:
    factor_cols = list(factor_cols)
    level_counts = {f: int(df[f].nunique()) for f in factor_cols}
    expected_cells = int(np.prod(list(level_counts.values()))) if level_counts else 0
    reps_per_cell = df.groupby(factor_cols, observed=True).size()
    actual_cells = int(len(reps_per_cell))
    rep_min = float(reps_per_cell.min()) if actual_cells > 0 else 0.0
    rep_mean = float(reps_per_cell.mean()) if actual_cells > 0 else 0.0
    rep_max = float(reps_per_cell.max()) if actual_cells > 0 else 0.0
    rep_std = float(reps_per_cell.std()) if actual_cells > 1 else 0.0
    missing_cells_pct = float((1 - actual_cells / expected_cells) * 100) if expected_cells > 0 else 0.0

    return {
        "n_obs": int(len(df)),
        "level_counts": level_counts,
        "replicate_dist": {"min": rep_min, "mean": rep_mean, "max": rep_max, "std": rep_std},
        "expected_cells": expected_cells,
        "actual_cells": actual_cells,
        "missing_cells_pct": missing_cells_pct,
    }


def clean_anova_index(anova: pd.DataFrame) -> pd.DataFrame:
    """Removes the C(Q("...")) wrapper from ANOVA index names for display."""
    clean_df = anova.copy()
    new_index = []
    for idx in clean_df.index:
        name = str(idx)
        clean_name = re.sub(r'C\(Q\("([^"]+)"\)\)', r"\1", name)
        clean_name = re.sub(r"C\(Q\('([^']+)'\)\)", r"\1", clean_name)
        new_index.append(clean_name)
    clean_df.index = new_index
    return clean_df


def build_anova_rows(anova: pd.DataFrame, ANOVATableRow) -> List[Any]:
    rows = []
    for term, r in anova.iterrows():
        df_val = float(r["df"])
        ss = float(r.get("sum_sq", 0.0))
        ms = ss / df_val if df_val > 0 else float("nan")
        f = r.get("F", None)
        p = r.get("PR(>F)", None)
        rows.append(
            ANOVATableRow(
                str(term),
                df_val,
                ss,
                ms,
                None if pd.isna(f) else float(f),
                None if pd.isna(p) else float(p),
            )
        )
    return rows


def shapiro_safe(resid: Union[pd.Series, np.ndarray]) -> Optional[float]:
    """Shapiro-Wilk p-value of the residuals, or None when it is undefined."""
    from scipy.stats import shapiro

    arr = np.asarray(resid, dtype=float)
    arr = arr[~np.isnan(arr)]
    if arr.size < 3 or np.ptp(arr) == 0:
        return None
    if arr.size > 5000:
        rng = np.random.default_rng(0)
        arr = rng.choice(arr, 5000, replace=False)
    return float(shapiro(arr)[1])
