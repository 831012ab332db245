# config.py

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

# =========================
# Study constants
# =========================

DATA_DIR = Path("data")
FLOW_FILE = "flow_processed.csv"
LINE_META_FILE = "line_metadata.csv"

# Instrument channel -> surface marker
CHANNEL_PROTEIN_MAP: Dict[str, str] = {
    "APC-A": "CD14",
    "PE-A": "CD16",
    "FITC-A": "CD206",
}

# fpdj and nibo are the same donor; nibo is the canonical id
DONOR_ALIASES: Dict[str, str] = {
    "fpdj": "nibo",
}

# Picked by eye from the PC1/PC2 scatter of the full data set
OUTLIER_SAMPLE_IDS: Tuple[str, ...] = (
    "HPSI0114i-bezi_3_2017-05-19",
    "HPSI0613i-qolg_3_2017-08-02",
)

RESPONSE_COL = "CD14"
FACTOR_COLS: Tuple[str, ...] = ("flow_date", "line_id")


@dataclass
class AnalysisConfig:
    data_dir: Union[str, Path] = DATA_DIR
    flow_file: str = FLOW_FILE
    line_meta_file: str = LINE_META_FILE
    channel_map: Dict[str, str] = field(default_factory=lambda: dict(CHANNEL_PROTEIN_MAP))
    donor_aliases: Dict[str, str] = field(default_factory=lambda: dict(DONOR_ALIASES))
    outlier_sample_ids: List[str] = field(default_factory=lambda: list(OUTLIER_SAMPLE_IDS))
    response_col: str = RESPONSE_COL
    factor_cols: List[str] = field(default_factory=lambda: list(FACTOR_COLS))
    skip_unmapped_channels: bool = False
    output_dir: Optional[Union[str, Path]] = None

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        if self.output_dir is not None:
            self.output_dir = Path(self.output_dir)

        if not self.channel_map:
            raise ValueError("channel_map must map at least one channel to a protein.")

        proteins = list(self.channel_map.values())
        if len(set(proteins)) != len(proteins):
            raise ValueError("channel_map must map each channel to a distinct protein.")

        if self.response_col not in proteins:
            raise ValueError(
                f"response_col '{self.response_col}' is not one of the mapped proteins {proteins}."
            )

        if len(self.factor_cols) != 2:
            raise ValueError("Exactly two grouping factors are supported.")

        for alias, canonical in self.donor_aliases.items():
            target = self.donor_aliases.get(canonical, canonical)
            if target != canonical:
                raise ValueError(
                    f"Donor alias chain '{alias}' -> '{canonical}' -> '{target}'; "
                    "alias targets must be canonical ids."
                )

    @property
    def proteins(self) -> List[str]:
        return list(self.channel_map.values())

    @property
    def flow_path(self) -> Path:
        return Path(self.data_dir) / self.flow_file

    @property
    def line_meta_path(self) -> Path:
        return Path(self.data_dir) / self.line_meta_file
