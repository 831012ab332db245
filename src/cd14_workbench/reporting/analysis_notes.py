from cd14_workbench.engine.vc_engine import VarianceDecomposition
from cd14_workbench.engine.vc_results import RESIDUAL


def get_variation_impact_analysis(result: VarianceDecomposition, line_col: str = "line_id",
                                  date_col: str = "flow_date") -> list:
    """Returns a list of (type, message) tuples for the impact analysis."""
    impacts = []
    shares = result.shares

    pct_line = 100.0 * shares.get(line_col, 0.0)
    pct_date = 100.0 * shares.get(date_col, 0.0)
    pct_resid = 100.0 * shares.get(RESIDUAL, 0.0)

    # A. Biological vs batch variation
    if pct_line > pct_date:
        impacts.append(("success",
                        f"Most Impactful Factor: Line-to-line variation ({pct_line:.1f}%) exceeds "
                        f"day-to-day variation ({pct_date:.1f}%). Differences in {result.response_col} "
                        "are driven more by cell line than by measurement date."
                        ))
    else:
        impacts.append(("error",
                        f"Most Impactful Factor: Measurement date ({pct_date:.1f}%) accounts for at least as much "
                        f"variation as cell line ({pct_line:.1f}%). Batch effects may mask line differences."
                        ))

    # B. Unexplained share
    if pct_resid > max(pct_line, pct_date):
        impacts.append(("info",
                        f"- Residual variation is the largest component ({pct_resid:.1f}%). "
                        "Neither factor explains most of the spread."
                        ))

    for w in result.warnings:
        impacts.append(("info", f"- {w}"))

    return impacts
