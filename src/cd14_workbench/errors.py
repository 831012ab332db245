# errors.py

from __future__ import annotations

from typing import Iterable, List


class VarianceWorkbenchError(Exception):
    """Base exception for the CD14 variance pipeline."""
    pass


class UnmappedChannelError(VarianceWorkbenchError, KeyError):
    """Raised when a measurement channel has no protein mapping."""

    def __init__(self, channels: Iterable[str], known: Iterable[str] = ()):
        self.channels: List[str] = sorted({str(c) for c in channels})
        self.known: List[str] = sorted(str(k) for k in known)
        msg = f"Channel join: no protein mapping for channel(s) {self.channels}."
        if self.known:
            msg += f" Known channels: {self.known}."
        super().__init__(msg)

    def __str__(self) -> str:
        # KeyError would repr() the message
        return str(self.args[0])


class ShapeError(VarianceWorkbenchError, ValueError):
    """Raised when a long-to-wide pivot finds duplicate (sample, protein) keys."""
    pass


class ModelFitError(VarianceWorkbenchError, RuntimeError):
    """Raised when the mixed model cannot be fitted."""
    pass


class MissingFactorError(VarianceWorkbenchError, ValueError):
    """Raised when a grouping factor has fewer than 2 distinct levels."""

    def __init__(self, factor: str, n_levels: int):
        self.factor = factor
        self.n_levels = n_levels
        super().__init__(
            f"Grouping factor '{factor}' has {n_levels} distinct level(s); "
            "at least 2 are needed to attribute variance to it."
        )


class DegenerateInputError(VarianceWorkbenchError, ValueError):
    """Raised when PCA input has no variance to decompose."""
    pass
