from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

import matplotlib.pyplot as plt
import matplotlib.transforms as mtransforms
import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from cd14_workbench.engine.pca import PCAResult
from cd14_workbench.engine.vc_engine import VarianceDecomposition


def get_pca_chart(result: PCAResult, ax: plt.Axes, highlight_ids: Iterable[str] = (), id_col: str = "sample_id"):
    """Generates the PC1/PC2 score scatter on the given Axes, labelling ``highlight_ids``."""
    ax.clear()
    scores = result.scores
    ev = result.explained_variance_ratio

    x_pc = "PC1"
    y_pc = "PC2" if "PC2" in scores.columns else "PC1"
    highlight = set(str(s) for s in highlight_ids)
    is_hl = scores[id_col].astype(str).isin(highlight) if id_col in scores.columns else pd.Series(False, index=scores.index)

    ax.scatter(scores.loc[~is_hl, x_pc], scores.loc[~is_hl, y_pc], s=40, alpha=0.8,
               edgecolors='black', zorder=3, label='Samples')
    if is_hl.any():
        ax.scatter(scores.loc[is_hl, x_pc], scores.loc[is_hl, y_pc], s=60, color='red',
                   edgecolors='black', zorder=4, label='Excluded')
        for _, row in scores.loc[is_hl].iterrows():
            ax.annotate(str(row[id_col]), (row[x_pc], row[y_pc]), xytext=(4, 4),
                        textcoords='offset points', fontsize=8, color='red')

    ax.axhline(0, color='gray', linewidth=0.8, linestyle=':', zorder=1)
    ax.axvline(0, color='gray', linewidth=0.8, linestyle=':', zorder=1)
    ax.set_xlabel(f"{x_pc} ({ev[x_pc]:.1%})")
    ax.set_ylabel(f"{y_pc} ({ev[y_pc]:.1%})")
    ax.set_title(f"PCA of {', '.join(result.protein_cols)} (centered, scaled)")
    ax.grid(True, linestyle=':', alpha=0.5, zorder=1)
    ax.legend(loc='best', fontsize=8)


def get_intensity_chart(
    df: pd.DataFrame,
    ax: plt.Axes,
    response_col: str = "CD14",
    line_col: str = "line_id",
    date_col: str = "flow_date",
    decomposition: Optional[VarianceDecomposition] = None,
):
    """
    Generates the intensity-by-group chart on the given Axes.

    One x position per line, one point per sample coloured by measurement
    date. With a decomposition, +/- 3 total SD limits are drawn around the
    grand mean.
    """
    ax.clear()
    df_sorted = df.sort_values(by=[line_col, date_col])
    lines = df_sorted[line_col].astype(str).drop_duplicates().reset_index(drop=True)
    x_pos = pd.Series(lines.index, index=lines.values)

    dates = sorted(df_sorted[date_col].astype(str).unique())
    cmap = plt.get_cmap('tab20', max(len(dates), 1))
    for i, d in enumerate(dates):
        sub = df_sorted[df_sorted[date_col].astype(str) == d]
        ax.scatter(sub[line_col].astype(str).map(x_pos), sub[response_col], s=40, alpha=0.8,
                   color=cmap(i), edgecolors='black', zorder=3, label=d)

    grand_mean = df_sorted[response_col].mean()
    ax.axhline(grand_mean, color='green', linewidth=1.5, label='Mean', zorder=2)

    trans_annot = mtransforms.blended_transform_factory(ax.transAxes, ax.transData)
    ax.text(1.01, grand_mean, f"Grand Mean = {grand_mean:.2f}", transform=trans_annot,
            color='green', va='center', ha='left', fontsize=9, fontweight='bold')

    if decomposition is not None:
        sigma_total = float(np.sqrt(decomposition.total_variance))
        ucl = grand_mean + 3 * sigma_total
        lcl = grand_mean - 3 * sigma_total
        ax.axhline(ucl, color='red', linestyle='--', linewidth=1.5, zorder=2)
        ax.axhline(lcl, color='red', linestyle='--', linewidth=1.5, zorder=2)
        ax.text(1.01, ucl, f"+3SD = {ucl:.2f}", transform=trans_annot,
                color='red', va='center', ha='left', fontsize=9, fontweight='bold')
        ax.text(1.01, lcl, f"-3SD = {lcl:.2f}", transform=trans_annot,
                color='red', va='center', ha='left', fontsize=9, fontweight='bold')

    ax.set_ylabel(response_col)
    ax.set_title(f"{response_col} intensity by {line_col} and {date_col}")
    ax.set_xticks(list(x_pos.values))
    ax.set_xticklabels([str(v).replace('(', '').replace(')', '') for v in x_pos.index], rotation=90, fontsize=8)
    ax.set_xlim(-0.5, len(lines) - 0.5)
    ax.grid(True, axis='y', linestyle=':', alpha=0.5, zorder=1)

    for i in range(len(lines) - 1):
        ax.axvline(x=i + 0.5, color='gray', linestyle='--', linewidth=0.5, alpha=0.5)

    if len(dates) <= 20:
        ax.legend(title=date_col, loc='upper left', bbox_to_anchor=(1.15, 1.0), fontsize=7)
    ax.figure.subplots_adjust(bottom=0.3, right=0.75)


def pca_figure(result: PCAResult, highlight_ids: Sequence[str] = ()) -> Figure:
    fig = Figure(figsize=(7, 6), dpi=100)
    get_pca_chart(result, fig.add_subplot(), highlight_ids)
    return fig


def intensity_figure(df: pd.DataFrame, response_col: str = "CD14",
                     decomposition: Optional[VarianceDecomposition] = None) -> Figure:
    fig = Figure(figsize=(11, 6), dpi=100)
    get_intensity_chart(df, fig.add_subplot(), response_col=response_col, decomposition=decomposition)
    return fig


def save_figure(fig: Figure, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, bbox_inches='tight', dpi=100)
    return path
