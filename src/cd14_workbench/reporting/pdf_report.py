import os
import tempfile

from fpdf import FPDF

from cd14_workbench.engine.vc_engine import VarianceDecomposition
from cd14_workbench.pipeline import AnalysisResult
from cd14_workbench.plotting import intensity_figure, pca_figure
from cd14_workbench.reporting.analysis_notes import get_variation_impact_analysis


class _Report(FPDF):
    def header(self):
        self.set_font('Helvetica', 'B', 15)
        self.cell(0, 10, 'CD14 Variance Components Report', border=0, new_x="LMARGIN", new_y="NEXT", align='C')
        self.ln(5)

    def footer(self):
        self.set_y(-15)
        self.set_font('Helvetica', 'I', 8)
        self.cell(0, 10, f'Page {self.page_no()}', border=0, align='C')


def _heading(pdf: FPDF, text: str):
    pdf.set_font("Helvetica", 'B', 12)
    pdf.cell(0, 10, text, border=0, new_x="LMARGIN", new_y="NEXT")


def _decomposition_section(pdf: FPDF, title: str, dec: VarianceDecomposition, n_samples: int):
    _heading(pdf, title)
    pdf.set_font("Helvetica", size=9)
    design = dec.diagnostics.get("design", {})
    levels = ", ".join(f"{k}: {v}" for k, v in design.get("level_counts", {}).items())
    pdf.multi_cell(0, 5, f"Samples: {n_samples}. Levels: {levels}. Optimizer: {dec.diagnostics.get('optimizer')}.",
                   new_x="LMARGIN", new_y="NEXT")
    pdf.ln(2)

    cols = ["Source", "Var Comp", "Std Dev", "% of Total"]
    col_widths = [60, 35, 35, 35]
    pdf.set_font("Helvetica", 'B', 8)
    for i, h in enumerate(cols):
        pdf.cell(col_widths[i], 7, h, border=1, align='C')
    pdf.ln()

    pdf.set_font("Helvetica", size=8)
    for r in dec.var_components:
        pdf.cell(col_widths[0], 6, r.source, border=1)
        pdf.cell(col_widths[1], 6, f"{r.var_comp:.4g}", border=1, align='R')
        pdf.cell(col_widths[2], 6, f"{r.std_dev:.4g}", border=1, align='R')
        pdf.cell(col_widths[3], 6, f"{100.0 * r.share:.1f}", border=1, align='R')
        pdf.ln()
    pdf.ln(3)

    pdf.set_font("Helvetica", size=9)
    for type_, msg in get_variation_impact_analysis(dec):
        if type_ == 'success':
            pdf.set_text_color(0, 100, 0)
        elif type_ == 'error':
            pdf.set_text_color(150, 0, 0)
        else:
            pdf.set_text_color(0, 0, 0)
        pdf.multi_cell(0, 5, msg, new_x="LMARGIN", new_y="NEXT")
        pdf.ln(1)
    pdf.set_text_color(0, 0, 0)
    pdf.ln(5)


def create_pdf_report(result: AnalysisResult) -> bytes:
    pdf = _Report()
    pdf.add_page()

    _decomposition_section(pdf, "All samples (outliers removed)", result.decomposition_all, len(result.filtered))
    _decomposition_section(pdf, "Replicated lines only", result.decomposition_replicated, len(result.replicated))

    excluded = ", ".join(result.config.outlier_sample_ids) or "none"
    pdf.set_font("Helvetica", size=9)
    pdf.multi_cell(0, 5, f"Excluded samples: {excluded}", new_x="LMARGIN", new_y="NEXT")

    pdf.add_page()
    _heading(pdf, "Charts")

    with tempfile.TemporaryDirectory() as tmpdir:
        path_pca = _saved_chart(result, "pca")
        if path_pca is None:
            path_pca = os.path.join(tmpdir, "pca_chart.png")
            fig_pca = pca_figure(result.pca, result.config.outlier_sample_ids)
            fig_pca.savefig(path_pca, bbox_inches='tight', dpi=100)
        pdf.image(str(path_pca), x=10, w=150)
        pdf.ln(5)

        path_int = _saved_chart(result, "intensity")
        if path_int is None:
            path_int = os.path.join(tmpdir, "intensity_chart.png")
            fig_int = intensity_figure(result.filtered, result.config.response_col, result.decomposition_all)
            fig_int.savefig(path_int, bbox_inches='tight', dpi=100)
        pdf.add_page()
        pdf.image(str(path_int), x=10, w=190)

    return bytes(pdf.output())


def _saved_chart(result: AnalysisResult, key: str):
    """Path of a chart PNG already written by the pipeline, if any."""
    path = result.outputs.get(key)
    if path is not None and os.path.exists(path):
        return path
    return None


def save_pdf_report(result: AnalysisResult, output_path: str):
    """Generates and saves the PDF report to a file."""
    pdf_bytes = create_pdf_report(result)
    with open(output_path, "wb") as f:
        f.write(pdf_bytes)
