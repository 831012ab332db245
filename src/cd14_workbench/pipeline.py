# pipeline.py

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import pandas as pd

from cd14_workbench.config import AnalysisConfig
from cd14_workbench.data.assembly import build_intensity_table, pivot_wide, summarize_counts
from cd14_workbench.data.filters import keep_replicated_lines, remove_samples
from cd14_workbench.data.loader import load_inputs
from cd14_workbench.engine.pca import PCAResult, run_pca, top_scores
from cd14_workbench.engine.vc_engine import VarianceDecomposition, estimate_variance_components
from cd14_workbench.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class AnalysisResult:
    config: AnalysisConfig
    intensities: pd.DataFrame
    wide: pd.DataFrame
    pca: PCAResult
    filtered: pd.DataFrame
    replicated: pd.DataFrame
    decomposition_all: VarianceDecomposition
    decomposition_replicated: VarianceDecomposition
    outputs: Dict[str, Path] = field(default_factory=dict)

    def results_table(self) -> pd.DataFrame:
        """One row per fitted subset, one column per variance source."""
        table = pd.concat(
            [self.decomposition_all.to_frame(), self.decomposition_replicated.to_frame()],
            ignore_index=True,
        )
        table.index = ["all_samples", "replicated_lines"]
        table.index.name = "subset"
        return table


def run_analysis(
    config: Optional[AnalysisConfig] = None,
    measurements: Optional[pd.DataFrame] = None,
    line_meta: Optional[pd.DataFrame] = None,
) -> AnalysisResult:
    """
    Runs the full pipeline: assemble, PCA, outlier removal, replication
    filter, then the variance decomposition on both subsets.

    Tables passed in directly take precedence over the configured files.
    """
    config = config or AnalysisConfig()

    if measurements is None or line_meta is None:
        loaded_flow, loaded_meta = load_inputs(config)
        measurements = loaded_flow if measurements is None else measurements
        line_meta = loaded_meta if line_meta is None else line_meta

    intensities = build_intensity_table(
        measurements,
        line_meta,
        config.channel_map,
        donor_aliases=config.donor_aliases,
        skip_unmapped=config.skip_unmapped_channels,
    )
    wide = pivot_wide(intensities, config.proteins)
    logger.info(f"Wide intensity table: {summarize_counts(wide)}")

    pca = run_pca(wide, config.proteins)
    extreme = top_scores(pca, "PC1", n=5)
    logger.info(f"Largest |PC1| samples: {extreme['sample_id'].tolist()}")

    filtered = remove_samples(wide, config.outlier_sample_ids)
    replicated = keep_replicated_lines(filtered)

    factors = list(config.factor_cols)
    logger.info(f"Fitting variance components on all {len(filtered)} samples")
    dec_all = estimate_variance_components(filtered, config.response_col, factors)
    logger.info(f"Fitting variance components on {len(replicated)} samples of replicated lines")
    dec_rep = estimate_variance_components(replicated, config.response_col, factors)

    result = AnalysisResult(config, intensities, wide, pca, filtered, replicated, dec_all, dec_rep)

    if config.output_dir is not None:
        write_outputs(result, Path(config.output_dir))

    return result


def write_outputs(result: AnalysisResult, output_dir: Path) -> Dict[str, Path]:
    """Writes the results table, the two diagnostic figures and the PDF report."""
    from cd14_workbench.plotting import intensity_figure, pca_figure, save_figure
    from cd14_workbench.reporting.pdf_report import save_pdf_report

    output_dir.mkdir(parents=True, exist_ok=True)
    cfg = result.config

    table_path = output_dir / "variance_components.csv"
    result.results_table().to_csv(table_path, encoding='utf-8')
    result.outputs["table"] = table_path

    result.outputs["pca"] = save_figure(
        pca_figure(result.pca, cfg.outlier_sample_ids), output_dir / "pca_scores.png"
    )
    result.outputs["intensity"] = save_figure(
        intensity_figure(result.filtered, cfg.response_col, result.decomposition_all),
        output_dir / f"{cfg.response_col}_by_line_and_date.png",
    )

    report_path = output_dir / "variance_report.pdf"
    save_pdf_report(result, str(report_path))
    result.outputs["report"] = report_path

    for name, path in result.outputs.items():
        logger.info(f"Wrote {name}: {path}")
    return result.outputs
