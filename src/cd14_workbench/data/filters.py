from typing import Iterable

import pandas as pd

from cd14_workbench.utils.logger import get_logger

logger = get_logger(__name__)


def remove_samples(df: pd.DataFrame, sample_ids: Iterable[str], id_col: str = "sample_id") -> pd.DataFrame:
    """
    Removes the listed samples.

    Args:
        df: Sample-wide intensity table.
        sample_ids: Samples chosen for exclusion by inspecting the PCA scatter.
        id_col: Column holding the sample identifier.

    Returns:
        A copy of ``df`` without the matching rows. Ids that match nothing
        leave the table unchanged.
    """
    ids = list(dict.fromkeys(str(s) for s in sample_ids))
    present = df[id_col].astype(str)

    not_found = sorted(set(ids) - set(present))
    if not_found:
        logger.warning(f"Outlier removal: sample id(s) {not_found} not present in the data")

    mask = present.isin(ids)
    logger.info(f"Removed {int(mask.sum())} outlier sample(s); {int((~mask).sum())} remain")
    return df.loc[~mask].reset_index(drop=True)


def keep_replicated_lines(df: pd.DataFrame, line_col: str = "line_id") -> pd.DataFrame:
    """Keeps rows of lines measured more than once."""
    counts = df.groupby(line_col, observed=True)[line_col].transform("size")
    out = df.loc[counts > 1].reset_index(drop=True)
    logger.info(
        f"Replicated lines: {out[line_col].nunique()} of {df[line_col].nunique()} lines, {len(out)} samples"
    )
    return out
