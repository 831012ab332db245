# tests/test_filters_pca.py

import logging

import pytest
import numpy as np
import pandas as pd

from cd14_workbench.data.filters import keep_replicated_lines, remove_samples
from cd14_workbench.engine.pca import run_pca, top_scores
from cd14_workbench.errors import DegenerateInputError

PROTEINS = ["CD14", "CD16", "CD206"]


def make_wide(n_lines: int = 6, dates_per_line=None, seed: int = 1) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    dates_per_line = dates_per_line or [2] * n_lines
    rows = []
    for i, n_dates in enumerate(dates_per_line):
        for j in range(n_dates):
            line = f"L{i}"
            date = f"2020-01-{j + 1:02d}"
            rows.append({
                "sample_id": f"{line}_{date}",
                "line_id": line,
                "genotype_id": f"G{i}",
                "donor": f"d{i}",
                "flow_date": date,
                "CD14": rng.normal(5000, 800),
                "CD16": rng.normal(300, 40),
                "CD206": rng.normal(1200, 150),
            })
    return pd.DataFrame(rows)


# =========================
# Outlier removal
# =========================

def test_remove_samples_drops_only_matches():
    wide = make_wide()
    out = remove_samples(wide, ["L0_2020-01-01", "L3_2020-01-02", "not-a-sample"])
    assert len(out) == len(wide) - 2
    assert "L0_2020-01-01" not in set(out["sample_id"])


def test_remove_samples_with_unknown_ids_is_noop():
    wide = make_wide()
    out = remove_samples(wide, ["nope", "also-nope"])
    pd.testing.assert_frame_equal(out, wide)


def test_remove_samples_logs_unknown_ids(caplog):
    with caplog.at_level(logging.WARNING):
        remove_samples(make_wide(), ["nope"])
    assert "not present" in caplog.text
    assert "nope" in caplog.text


def test_remove_samples_does_not_mutate_input():
    wide = make_wide()
    before = wide.copy()
    remove_samples(wide, ["L0_2020-01-01"])
    pd.testing.assert_frame_equal(wide, before)


# =========================
# Replication filter
# =========================

def test_keep_replicated_lines():
    wide = make_wide(dates_per_line=[1, 2, 3, 1])
    out = keep_replicated_lines(wide)
    assert sorted(out["line_id"].unique()) == ["L1", "L2"]
    assert len(out) == 5
    assert (out.groupby("line_id").size() > 1).all()


# =========================
# PCA
# =========================

def test_pca_scores_are_centered_and_ratios_sum_to_one():
    wide = make_wide(n_lines=10)
    res = run_pca(wide, PROTEINS)

    assert res.components == ["PC1", "PC2", "PC3"]
    assert res.explained_variance_ratio.sum() == pytest.approx(1.0)
    assert np.allclose(res.scores[["PC1", "PC2", "PC3"]].mean(), 0.0, atol=1e-9)
    assert res.scores["sample_id"].tolist() == wide["sample_id"].tolist()
    assert list(res.loadings.index) == PROTEINS


def test_pca_is_scale_invariant_per_column():
    """Scaling a marker's raw intensities must not change the decomposition."""
    wide = make_wide(n_lines=10)
    scaled = wide.copy()
    scaled["CD14"] = scaled["CD14"] * 1000.0

    a = run_pca(wide, PROTEINS)
    b = run_pca(scaled, PROTEINS)
    np.testing.assert_allclose(a.explained_variance_ratio.values, b.explained_variance_ratio.values)


def test_pca_on_identical_rows_is_degenerate():
    wide = pd.DataFrame([
        {"sample_id": "A_2020-01-01", "line_id": "A", "flow_date": "2020-01-01", "CD14": 5.0, "CD16": 3.0, "CD206": 1.0},
        {"sample_id": "A_2020-01-02", "line_id": "A", "flow_date": "2020-01-02", "CD14": 5.0, "CD16": 3.0, "CD206": 1.0},
    ])
    with pytest.raises(DegenerateInputError, match="zero variance"):
        run_pca(wide, PROTEINS)


def test_pca_requires_two_complete_samples():
    wide = make_wide(n_lines=1, dates_per_line=[2])
    wide.loc[1, "CD16"] = np.nan
    with pytest.raises(DegenerateInputError):
        run_pca(wide, PROTEINS)


def test_pca_uses_named_columns_only():
    wide = make_wide(n_lines=8)
    res = run_pca(wide, ["CD14", "CD206"])
    assert list(res.loadings.index) == ["CD14", "CD206"]
    with pytest.raises(KeyError):
        run_pca(wide, ["CD14", "CD64"])


def test_top_scores_orders_by_absolute_score():
    res = run_pca(make_wide(n_lines=10), PROTEINS)
    top = top_scores(res, "PC1", n=3)
    vals = top["PC1"].abs().tolist()
    assert vals == sorted(vals, reverse=True)
    assert len(top) == 3
