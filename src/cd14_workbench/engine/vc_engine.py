# vc_engine.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from warnings import catch_warnings, simplefilter

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from statsmodels.stats.anova import anova_lm

from cd14_workbench.errors import ModelFitError
from cd14_workbench.utils.logger import get_logger
from .vc_results import RESIDUAL, build_decomposition
from .vc_utils import (
    validate_dataframe,
    design_diagnostics,
    clean_anova_index,
    build_anova_rows,
    shapiro_safe,
)

logger = get_logger(__name__)

# Optimizers tried in order; MixedLM can be finicky on small designs.
OPTIMIZERS = [
    ("lbfgs", dict(maxiter=2000, disp=False)),
    ("powell", dict(maxiter=4000, disp=False)),
    ("cg", dict(maxiter=4000, disp=False)),
    ("nm", dict(maxiter=6000, disp=False)),
]


# =========================
# Dataclasses / result types
# =========================

@dataclass
class ANOVATableRow:
    term: str
    df: float
    ss: float
    ms: float
    f: Optional[float]
    p: Optional[float]


@dataclass
class VarianceComponentRow:
    source: str
    var_comp: float
    std_dev: float
    share: float


@dataclass
class VarianceDecomposition:
    response_col: str
    factor_cols: List[str]
    var_components: List[VarianceComponentRow]
    total_variance: float
    anova_table: List[ANOVATableRow]
    diagnostics: Dict[str, Any]
    warnings: List[str]
    interpretation: str

    @property
    def shares(self) -> Dict[str, float]:
        return {r.source: r.share for r in self.var_components}

    def share_of(self, source: str) -> float:
        return self.shares[source]

    def to_frame(self) -> pd.DataFrame:
        """Single row, one column per factor plus Residual, holding each share."""
        return pd.DataFrame([self.shares], columns=list(self.factor_cols) + [RESIDUAL])


# =========================
# Public API
# =========================

def estimate_variance_components(
    df: pd.DataFrame,
    response_col: str = "CD14",
    factor_cols: Sequence[str] = ("flow_date", "line_id"),
    reml: bool = True,
) -> VarianceDecomposition:
    """
    Fits independent random intercepts for each factor and returns the share
    of total variance attributable to each factor and to the residual.

    Model:
      y = mu + u_1[level_1] + u_2[level_2] + e
      u_j ~ N(0, sigma_j^2 I), e ~ N(0, sigma_e^2 I)

    Raises:
        KeyError: a named column is missing.
        MissingFactorError: a factor has fewer than 2 levels.
        ModelFitError: no optimizer produced a converged, finite fit.
    """
    warnings: List[str] = []
    factors = list(factor_cols)
    y = response_col
    df2 = validate_dataframe(df, y, factors)

    diag: Dict[str, Any] = {"platform": "mixed_random_intercepts", "reml": bool(reml)}
    diag["design"] = design_diagnostics(df2, factors)

    if diag["design"]["replicate_dist"]["max"] <= 1:
        warnings.append(
            "Every factor combination is observed at most once; residual and "
            "interaction variance cannot be separated."
        )

    vc_formula: Dict[str, str] = {f: f"0 + C(Q('{f}'))" for f in factors}
    df_fit = df2.assign(dummy_group=1)
    model = smf.mixedlm(f'Q("{y}") ~ 1', df_fit, vc_formula=vc_formula, groups="dummy_group")

    fit_res = None
    fit_errors: List[str] = []

    for method, kw in OPTIMIZERS:
        with catch_warnings(record=True) as caught:
            simplefilter("always")
            try:
                res = model.fit(reml=reml, method=method, **kw)
            except (ValueError, np.linalg.LinAlgError) as e:
                fit_errors.append(f"{method}: {e}")
                continue

        values = np.append(np.asarray(res.vcomp, dtype=float), float(res.scale))
        if not np.all(np.isfinite(values)):
            fit_errors.append(f"{method}: non-finite variance estimates {values.tolist()}")
            continue
        if not getattr(res, "converged", True):
            fit_errors.append(f"{method}: optimizer did not converge")
            continue

        fit_res = res
        diag["optimizer"] = method
        diag["converged"] = True
        diag["llf"] = float(res.llf)
        for w in caught:
            msg = f"{method}: {w.message}"
            if msg not in warnings:
                warnings.append(msg)
        break

    if fit_res is None:
        logger.error(f"MixedLM fit of '{y}' on {factors} failed: {fit_errors}")
        raise ModelFitError(
            f"Mixed model for '{y}' ~ random intercepts {factors} failed with all optimizers: "
            + "; ".join(fit_errors)
        )

    # vcomp is fitted on the sqrt scale, so it is never negative
    vc_map: Dict[str, float] = {RESIDUAL: float(fit_res.scale)}
    names = list(fit_res.model.exog_vc.names)
    for name, value in zip(names, np.asarray(fit_res.vcomp, dtype=float)):
        vc_map[name] = float(value)

    diag["grand_mean"] = float(fit_res.fe_params.iloc[0])
    diag["residual_normality_pvalue"] = shapiro_safe(fit_res.resid)

    anova_rows = _reference_anova(df2, y, factors, warnings)

    result = build_decomposition(
        vc_map, factors, y, warnings, diag, anova_rows,
        VarianceComponentRow, VarianceDecomposition,
    )
    logger.info(
        f"Variance decomposition of {y} (n={diag['design']['n_obs']}, {diag['optimizer']}): "
        + ", ".join(f"{k}={v:.1%}" for k, v in result.shares.items())
    )
    return result


def _reference_anova(df: pd.DataFrame, y: str, factors: List[str], warnings: List[str]) -> List[ANOVATableRow]:
    """Type II fixed-effects ANOVA; for reference only, not used for estimation."""
    formula = f'Q("{y}") ~ ' + " + ".join(f'C(Q("{f}"))' for f in factors)
    model = smf.ols(formula, data=df).fit()
    if model.df_resid <= 0:
        warnings.append("Reference ANOVA skipped: no residual degrees of freedom.")
        return []
    with catch_warnings():
        simplefilter("ignore")
        anova = anova_lm(model, typ=2)
    return build_anova_rows(clean_anova_index(anova), ANOVATableRow)
