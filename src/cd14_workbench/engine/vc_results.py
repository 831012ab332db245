# vc_results.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from cd14_workbench.errors import ModelFitError

RESIDUAL = "Residual"


def interpret_shares(shares: Dict[str, float]) -> str:
    """One-line reading of which source dominates."""
    if not shares:
        return "No variance components available."
    top = max(shares, key=shares.get)
    if top == RESIDUAL:
        return f"Unexplained (residual) variation dominates ({shares[top]:.1%})."
    return f"'{top}' is the largest source of variation ({shares[top]:.1%})."


def build_decomposition(
    vc_map: Dict[str, float],
    factor_cols: Sequence[str],
    response_col: str,
    warnings: List[str],
    diag: Optional[Dict[str, Any]],
    anova_rows: List[Any],
    VarianceComponentRow,
    VarianceDecomposition,
):
    """
    Turns fitted variances into per-source rows whose shares sum to 1.

    ``vc_map`` holds one variance per factor plus the residual variance under
    the ``Residual`` key.
    """
    sources = list(factor_cols) + [RESIDUAL]
    variances = {s: float(vc_map.get(s, 0.0)) for s in sources}

    bad = [s for s, v in variances.items() if not np.isfinite(v) or v < 0]
    if bad:
        raise ModelFitError(f"Variance estimate(s) for {bad} are not finite and non-negative: {variances}")

    total = float(sum(variances.values()))
    if not total > 0:
        raise ModelFitError(
            f"Total variance of '{response_col}' is zero; the fit is singular and no shares can be formed."
        )

    rows: List[Any] = []
    for s in sources:
        v = variances[s]
        rows.append(VarianceComponentRow(s, v, float(np.sqrt(v)), v / total))

    shares = {r.source: r.share for r in rows}
    return VarianceDecomposition(
        response_col=response_col,
        factor_cols=list(factor_cols),
        var_components=rows,
        total_variance=total,
        anova_table=anova_rows,
        diagnostics=dict(diag or {}),
        warnings=warnings,
        interpretation=interpret_shares(shares),
    )
