# assembly.py

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence

import pandas as pd
from pandas.api.types import is_datetime64_any_dtype

from cd14_workbench.errors import ShapeError, UnmappedChannelError
from cd14_workbench.utils.logger import get_logger

logger = get_logger(__name__)

SAMPLE_KEY = ["line_id", "flow_date"]
WIDE_ID_COLS = ["sample_id", "line_id", "genotype_id", "donor", "flow_date"]


# =========================
# Channel -> protein
# =========================

def map_channel(channel: str, channel_map: Mapping[str, str]) -> str:
    """Returns the protein measured on ``channel``."""
    try:
        return channel_map[channel]
    except KeyError:
        raise UnmappedChannelError([channel], channel_map.keys()) from None


def attach_proteins(
    measurements: pd.DataFrame,
    channel_map: Mapping[str, str],
    skip_unmapped: bool = False,
) -> pd.DataFrame:
    """
    Adds a ``protein`` column by joining on the channel name.

    Unknown channels raise UnmappedChannelError unless ``skip_unmapped`` is
    set, in which case those rows are dropped and the drop is logged.
    """
    df = measurements.copy()
    proteins = df["channel"].map(dict(channel_map))
    unmapped = proteins.isna()

    if unmapped.any():
        unknown = df.loc[unmapped, "channel"].unique()
        if not skip_unmapped:
            raise UnmappedChannelError(unknown, channel_map.keys())
        logger.warning(
            f"Dropping {int(unmapped.sum())} measurement row(s) on unmapped channel(s) "
            f"{sorted(str(c) for c in unknown)}"
        )

    df["protein"] = proteins
    return df.loc[~unmapped].reset_index(drop=True)


# =========================
# Donor aliases
# =========================

def normalize_donors(df: pd.DataFrame, aliases: Mapping[str, str], donor_col: str = "donor") -> pd.DataFrame:
    """Rewrites aliased donor ids to their canonical id. Idempotent."""
    out = df.copy()
    if aliases:
        out[donor_col] = out[donor_col].map(lambda d: aliases.get(d, d))
    return out


# =========================
# Long table
# =========================

def build_intensity_table(
    measurements: pd.DataFrame,
    line_meta: pd.DataFrame,
    channel_map: Mapping[str, str],
    donor_aliases: Optional[Mapping[str, str]] = None,
    skip_unmapped: bool = False,
) -> pd.DataFrame:
    """
    Joins measurements with proteins and line metadata.

    Returns one row per (line, date, protein) with columns
    line_id, genotype_id, donor, flow_date, protein, purity, intensity.
    """
    df = attach_proteins(measurements, channel_map, skip_unmapped=skip_unmapped)
    df = normalize_donors(df, donor_aliases or {})

    lines = line_meta[["line_id", "donor", "genotype_id"]].drop_duplicates()

    unmatched = sorted(set(df["donor"].dropna()) - set(lines["donor"].dropna()))
    if unmatched:
        n_rows = int(df["donor"].isin(unmatched).sum())
        logger.warning(f"Metadata join: {n_rows} measurement row(s) from donor(s) {unmatched} have no line metadata")

    df = df.merge(lines, on="donor", how="inner")
    df["intensity"] = df["mean1"] - df["mean2"]

    cols = ["line_id", "genotype_id", "donor", "flow_date", "protein", "purity", "intensity"]
    logger.info(f"Assembled {len(df)} intensity records over {df['line_id'].nunique()} lines")
    return df[cols].reset_index(drop=True)


# =========================
# Long <-> wide
# =========================

def format_dates(dates: pd.Series) -> pd.Series:
    if is_datetime64_any_dtype(dates):
        return dates.dt.strftime("%Y-%m-%d")
    return dates.astype(str)


def make_sample_ids(df: pd.DataFrame) -> pd.Series:
    return df["line_id"].astype(str) + "_" + format_dates(df["flow_date"])


def _ordered_proteins(present: Sequence[str], proteins: Optional[Sequence[str]]) -> List[str]:
    if proteins is None:
        return sorted(present)
    ordered = [p for p in proteins if p in present]
    return ordered + sorted(p for p in present if p not in ordered)


def pivot_wide(long_df: pd.DataFrame, proteins: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """
    Pivots intensity records to one row per sample, one column per protein.

    Raises ShapeError if any (line_id, flow_date, protein) key repeats.
    """
    keys = SAMPLE_KEY + ["protein"]
    dup = long_df.duplicated(subset=keys, keep=False)
    if dup.any():
        offending = long_df.loc[dup, keys].drop_duplicates()
        examples = [tuple(r) for r in offending.head(5).itertuples(index=False)]
        raise ShapeError(
            f"Pivot to wide form: {len(offending)} (line_id, flow_date, protein) key(s) "
            f"occur more than once, e.g. {examples}"
        )

    wide = long_df.pivot(index=SAMPLE_KEY, columns="protein", values="intensity").reset_index()
    wide.columns.name = None

    id_cols = [c for c in ("genotype_id", "donor") if c in long_df.columns]
    if id_cols:
        ids = long_df[SAMPLE_KEY + id_cols].drop_duplicates(subset=SAMPLE_KEY)
        wide = wide.merge(ids, on=SAMPLE_KEY, how="left")

    wide.insert(0, "sample_id", make_sample_ids(wide))

    protein_cols = _ordered_proteins([c for c in wide.columns if c not in WIDE_ID_COLS], proteins)
    cols = [c for c in WIDE_ID_COLS if c in wide.columns] + protein_cols
    return wide[cols].sort_values(SAMPLE_KEY).reset_index(drop=True)


def wide_to_long(wide: pd.DataFrame, proteins: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Inverse of pivot_wide: one row per (sample, protein)."""
    if proteins is None:
        proteins = [c for c in wide.columns if c not in WIDE_ID_COLS]
    id_vars = [c for c in WIDE_ID_COLS if c in wide.columns and c != "sample_id"]
    return wide.melt(id_vars=id_vars, value_vars=list(proteins), var_name="protein", value_name="intensity")


def protein_columns(wide: pd.DataFrame, proteins: Sequence[str]) -> List[str]:
    """Named protein columns present in ``wide``; raises KeyError for missing ones."""
    missing = [p for p in proteins if p not in wide.columns]
    if missing:
        raise KeyError(f"Protein column(s) {missing} missing from wide intensity table.")
    return list(proteins)


def summarize_counts(df: pd.DataFrame) -> Dict[str, int]:
    return {
        "n_samples": int(len(df)),
        "n_lines": int(df["line_id"].nunique()),
        "n_dates": int(df["flow_date"].nunique()),
    }
