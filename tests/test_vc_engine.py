# tests/test_vc_engine.py

import pytest
import pandas as pd
import numpy as np
from itertools import product
from types import SimpleNamespace

from statsmodels.regression.mixed_linear_model import MixedLM

from cd14_workbench.engine.vc_engine import (
    VarianceComponentRow,
    VarianceDecomposition,
    estimate_variance_components,
)
from cd14_workbench.engine.vc_results import build_decomposition
from cd14_workbench.errors import MissingFactorError, ModelFitError

# =========================
# Synthetic Data Generator
# =========================

def generate_synthetic_intensity_data(
    factors: dict,
    sigmas: dict,
    n_reps: int = 1,
    seed: int = 42,
) -> pd.DataFrame:
    """
    Generates a crossed data set from known random-intercept variances.
    ``sigmas`` holds one standard deviation per factor plus "Residual".
    """
    rng = np.random.default_rng(seed)

    effects = {
        name: dict(zip(levels, rng.normal(0, sigmas[name], size=len(levels))))
        for name, levels in factors.items()
    }

    records = []
    for cell in product(*factors.values()):
        record = dict(zip(factors.keys(), cell))
        shift = sum(effects[name][record[name]] for name in factors)
        for _ in range(n_reps):
            records.append({**record, "CD14": 50.0 + shift + rng.normal(0, sigmas["Residual"])})

    return pd.DataFrame(records)


FACTORS = {
    "flow_date": [f"2020-01-{d:02d}" for d in range(1, 9)],
    "line_id": [f"L{i}" for i in range(12)],
}

# =========================
# Tests
# =========================

def test_shares_sum_to_one():
    df = generate_synthetic_intensity_data(
        FACTORS, {"flow_date": 1.0, "line_id": 2.0, "Residual": 0.7}
    )
    result = estimate_variance_components(df, "CD14", ["flow_date", "line_id"])

    assert abs(sum(result.shares.values()) - 1.0) < 1e-9
    assert [r.source for r in result.var_components] == ["flow_date", "line_id", "Residual"]
    assert all(r.share >= 0 for r in result.var_components)
    assert result.total_variance == pytest.approx(sum(r.var_comp for r in result.var_components))


def test_zero_variance_factor_gets_near_zero_share():
    """
    Dates share one mean; all spread comes from lines and noise, so the
    date component should be close to 0.
    """
    df = generate_synthetic_intensity_data(
        FACTORS, {"flow_date": 0.0, "line_id": 2.0, "Residual": 1.0}, n_reps=2, seed=7
    )
    result = estimate_variance_components(df, "CD14", ["flow_date", "line_id"])

    assert result.share_of("flow_date") < 0.05
    assert 0.5 < result.share_of("line_id") < 0.95


def test_dominant_factor_is_recovered():
    df = generate_synthetic_intensity_data(
        FACTORS, {"flow_date": 3.0, "line_id": 0.5, "Residual": 0.5}, n_reps=2, seed=3
    )
    result = estimate_variance_components(df, "CD14", ["flow_date", "line_id"])
    assert result.share_of("flow_date") > result.share_of("line_id")
    assert "flow_date" in result.interpretation


def test_to_frame_is_single_row():
    df = generate_synthetic_intensity_data(
        FACTORS, {"flow_date": 1.0, "line_id": 2.0, "Residual": 0.7}
    )
    frame = estimate_variance_components(df).to_frame()
    assert frame.shape == (1, 3)
    assert list(frame.columns) == ["flow_date", "line_id", "Residual"]
    assert frame.iloc[0].sum() == pytest.approx(1.0, abs=1e-9)


def test_diagnostics_describe_the_fit():
    df = generate_synthetic_intensity_data(
        FACTORS, {"flow_date": 1.0, "line_id": 2.0, "Residual": 0.7}
    )
    result = estimate_variance_components(df)
    diag = result.diagnostics

    assert diag["converged"] is True
    assert diag["optimizer"] in {"lbfgs", "powell", "cg", "nm"}
    assert diag["design"]["level_counts"] == {"flow_date": 8, "line_id": 12}
    assert diag["design"]["n_obs"] == 96
    assert np.isfinite(diag["grand_mean"])
    assert [row.term for row in result.anova_table][:2] == ["flow_date", "line_id"]


def test_single_level_factor_raises_missing_factor():
    df = generate_synthetic_intensity_data(
        {"flow_date": ["2020-01-01"], "line_id": [f"L{i}" for i in range(6)]},
        {"flow_date": 1.0, "line_id": 2.0, "Residual": 0.5},
        n_reps=2,
    )
    with pytest.raises(MissingFactorError, match="flow_date"):
        estimate_variance_components(df)


def test_missing_column_raises_key_error():
    df = generate_synthetic_intensity_data(
        FACTORS, {"flow_date": 1.0, "line_id": 2.0, "Residual": 0.7}
    )
    with pytest.raises(KeyError):
        estimate_variance_components(df.drop(columns=["line_id"]))
    with pytest.raises(KeyError):
        estimate_variance_components(df, response_col="CD16")


def test_solver_failure_raises_model_fit_error(monkeypatch):
    df = generate_synthetic_intensity_data(
        FACTORS, {"flow_date": 1.0, "line_id": 2.0, "Residual": 0.7}
    )

    def failing_fit(self, *args, **kwargs):
        raise np.linalg.LinAlgError("Singular matrix")

    monkeypatch.setattr(MixedLM, "fit", failing_fit)
    with pytest.raises(ModelFitError, match="Singular matrix"):
        estimate_variance_components(df)


def test_unconverged_fits_raise_model_fit_error(monkeypatch):
    df = generate_synthetic_intensity_data(
        FACTORS, {"flow_date": 1.0, "line_id": 2.0, "Residual": 0.7}
    )

    def unconverged_fit(self, *args, **kwargs):
        return SimpleNamespace(vcomp=np.array([1.0, 1.0]), scale=1.0, converged=False, llf=0.0)

    monkeypatch.setattr(MixedLM, "fit", unconverged_fit)
    with pytest.raises(ModelFitError, match="did not converge") as excinfo:
        estimate_variance_components(df)
    for method in ("lbfgs", "powell", "cg", "nm"):
        assert f"{method}: optimizer did not converge" in str(excinfo.value)


def test_non_finite_estimates_raise_model_fit_error(monkeypatch):
    df = generate_synthetic_intensity_data(
        FACTORS, {"flow_date": 1.0, "line_id": 2.0, "Residual": 0.7}
    )

    def nan_fit(self, *args, **kwargs):
        return SimpleNamespace(vcomp=np.array([np.nan, 1.0]), scale=1.0, converged=True, llf=0.0)

    monkeypatch.setattr(MixedLM, "fit", nan_fit)
    with pytest.raises(ModelFitError, match="non-finite variance estimates") as excinfo:
        estimate_variance_components(df)
    assert str(excinfo.value).count("non-finite") == 4


def test_zero_total_variance_is_a_fit_error():
    with pytest.raises(ModelFitError, match="singular"):
        build_decomposition(
            {"flow_date": 0.0, "line_id": 0.0, "Residual": 0.0},
            ["flow_date", "line_id"], "CD14", [], {}, [],
            VarianceComponentRow, VarianceDecomposition,
        )


def test_build_decomposition_normalizes_shares():
    dec = build_decomposition(
        {"flow_date": 1.0, "line_id": 3.0, "Residual": 6.0},
        ["flow_date", "line_id"], "CD14", [], {}, [],
        VarianceComponentRow, VarianceDecomposition,
    )
    assert dec.shares == pytest.approx({"flow_date": 0.1, "line_id": 0.3, "Residual": 0.6})
    assert dec.var_components[1].std_dev == pytest.approx(np.sqrt(3.0))


def test_build_decomposition_rejects_negative_variance():
    with pytest.raises(ModelFitError, match="non-negative"):
        build_decomposition(
            {"flow_date": -0.5, "line_id": 3.0, "Residual": 6.0},
            ["flow_date", "line_id"], "CD14", [], {}, [],
            VarianceComponentRow, VarianceDecomposition,
        )
