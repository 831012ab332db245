from pathlib import Path
from typing import Iterable, Tuple, Union

import pandas as pd

from cd14_workbench.config import AnalysisConfig
from cd14_workbench.utils.logger import get_logger

logger = get_logger(__name__)

FLOW_COLUMNS = ("donor", "channel", "flow_date", "mean1", "mean2", "purity")
LINE_META_COLUMNS = ("line_id", "donor", "genotype_id")


def read_table(path: Union[str, Path]) -> pd.DataFrame:
    """
    Reads a pre-processed table from disk.

    Args:
        path: A ``.csv`` file or a pandas pickle (``.pkl`` / ``.pickle``).

    Returns:
        The loaded DataFrame.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input table not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        df = pd.read_csv(path)
    elif suffix in {".pkl", ".pickle"}:
        df = pd.read_pickle(path)
    else:
        raise ValueError(f"Unsupported table format '{suffix}' for {path}.")

    logger.info(f"Loaded {path.name}: {df.shape[0]} rows x {df.shape[1]} columns")
    return df


def check_columns(df: pd.DataFrame, required: Iterable[str], table: str) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise KeyError(f"{table} table is missing column(s) {missing}.")


def load_flow_data(path: Union[str, Path]) -> pd.DataFrame:
    df = read_table(path)
    check_columns(df, FLOW_COLUMNS, "Flow cytometry")
    return df


def load_line_metadata(path: Union[str, Path]) -> pd.DataFrame:
    df = read_table(path)
    check_columns(df, LINE_META_COLUMNS, "Line metadata")
    return df


def load_inputs(config: AnalysisConfig) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Loads (measurements, line metadata) from the configured data directory."""
    return load_flow_data(config.flow_path), load_line_metadata(config.line_meta_path)
