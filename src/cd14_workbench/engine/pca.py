# pca.py

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

from cd14_workbench.data.assembly import WIDE_ID_COLS, protein_columns
from cd14_workbench.errors import DegenerateInputError
from cd14_workbench.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class PCAResult:
    scores: pd.DataFrame
    loadings: pd.DataFrame
    explained_variance_ratio: pd.Series
    protein_cols: List[str]

    @property
    def components(self) -> List[str]:
        return list(self.loadings.columns)


def run_pca(
    wide: pd.DataFrame,
    protein_cols: Sequence[str],
    n_components: Optional[int] = None,
) -> PCAResult:
    """
    Centered and scaled PCA over the named protein columns.

    Each column is shifted to mean 0 and divided by its standard deviation
    before decomposition, so markers with large raw intensities do not
    dominate. Identifier columns are carried into ``scores`` untouched.

    Raises DegenerateInputError when fewer than two complete samples remain
    or when a protein column is constant (it cannot be scaled to unit
    variance).
    """
    cols = protein_columns(wide, protein_cols)
    id_cols = [c for c in WIDE_ID_COLS if c in wide.columns]

    complete = wide.dropna(subset=cols)
    n_dropped = len(wide) - len(complete)
    if n_dropped:
        logger.warning(f"PCA: dropped {n_dropped} sample(s) with missing intensities in {cols}")

    n = len(complete)
    if n < 2:
        raise DegenerateInputError(f"PCA input: {n} complete sample(s); at least 2 are needed.")

    X = complete[cols].to_numpy(dtype=float)
    sd = X.std(axis=0, ddof=1)
    constant = [c for c, s in zip(cols, sd) if not s > 0]
    if constant:
        raise DegenerateInputError(
            f"PCA input: column(s) {constant} have zero variance across {n} samples "
            "and cannot be scaled to unit variance."
        )

    X_scaled = StandardScaler().fit_transform(X)

    k = n_components if n_components is not None else min(len(cols), n)
    pca = PCA(n_components=k)
    scores = pca.fit_transform(X_scaled)
    pcs = [f"PC{i + 1}" for i in range(scores.shape[1])]

    scores_df = pd.DataFrame(scores, columns=pcs)
    for i, c in enumerate(id_cols):
        scores_df.insert(i, c, complete[c].to_numpy())

    loadings = pd.DataFrame(pca.components_.T, index=cols, columns=pcs)
    explained = pd.Series(pca.explained_variance_ratio_, index=pcs, name="explained_variance_ratio")

    logger.info(
        "PCA explained variance: "
        + ", ".join(f"{pc}={v:.1%}" for pc, v in explained.items())
    )
    return PCAResult(scores_df, loadings, explained, cols)


def top_scores(result: PCAResult, component: str = "PC1", n: int = 5) -> pd.DataFrame:
    """Samples with the largest absolute score on ``component``, for review."""
    order = np.argsort(-np.abs(result.scores[component].to_numpy()))
    return result.scores.iloc[order[:n]].reset_index(drop=True)
