from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import numpy as np


# -------------------------------
# Channel addressing
# -------------------------------

@dataclass(frozen=True, order=True)
class GroupId:
    """One sector of one chamber: the unit of response averaging."""
    chamber: int
    sector: int


@dataclass(frozen=True, order=True)
class ChannelId:
    """One readout pad. Ordering is chamber, sector, padrow, pad."""
    chamber: int
    sector: int
    padrow: int
    pad: int

    @property
    def group(self) -> GroupId:
        return GroupId(self.chamber, self.sector)

    def __str__(self):
        return f"chamber {self.chamber}, sector {self.sector}, padrow {self.padrow}, pad {self.pad}"


# -------------------------------
# Cluster events
# -------------------------------

@dataclass(frozen=True)
class ClusterEvent:
    """Single krypton decay cluster. Chamber and sector come from the enclosing batch."""
    charge: float
    max_adc: float
    time_slice: int
    n_pixels: int
    n_time_slices: int
    n_pads: int
    padrow: int
    pad: int


_BATCH_COLUMNS = ("charge", "max_adc", "time_slice", "n_pixels",
                  "n_time_slices", "n_pads", "padrow", "pad")


@dataclass
class ClusterBatch:
    """Columnar block of clusters recorded in one chamber sector."""
    chamber: int
    chamber_name: str
    sector: int
    charge: np.ndarray
    max_adc: np.ndarray
    time_slice: np.ndarray
    n_pixels: np.ndarray
    n_time_slices: np.ndarray
    n_pads: np.ndarray
    padrow: np.ndarray
    pad: np.ndarray
    source: Optional[str] = None

    def __post_init__(self):
        lengths = {len(getattr(self, c)) for c in _BATCH_COLUMNS}
        if len(lengths) > 1:
            raise ValueError(f"ClusterBatch columns differ in length: {sorted(lengths)}")

    def __len__(self):
        return len(self.charge)

    @property
    def group(self) -> GroupId:
        return GroupId(self.chamber, self.sector)

    @classmethod
    def from_events(cls, chamber: int, chamber_name: str, sector: int,
                    events: list[ClusterEvent], source: Optional[str] = None) -> "ClusterBatch":
        columns = {c: np.array([getattr(ev, c) for ev in events]) for c in _BATCH_COLUMNS}
        for c in ("charge", "max_adc"):
            columns[c] = columns[c].astype(float)
        for c in _BATCH_COLUMNS[2:]:
            columns[c] = columns[c].astype(np.int64)
        return cls(chamber=chamber, chamber_name=chamber_name, sector=sector,
                   source=source, **columns)

    def subset(self, mask: np.ndarray) -> "ClusterBatch":
        """Return a new batch holding only rows where mask is True."""
        columns = {c: getattr(self, c)[mask] for c in _BATCH_COLUMNS}
        return ClusterBatch(chamber=self.chamber, chamber_name=self.chamber_name,
                            sector=self.sector, source=self.source, **columns)


# -------------------------------
# Estimation and gain results
# -------------------------------

class ResponseStatus(str, Enum):
    OK = "ok"
    INSUFFICIENT_DATA = "insufficient_data"
    DEGENERATE_SPECTRUM = "degenerate_spectrum"
    FIT_FAILED = "fit_failed"


@dataclass(frozen=True)
class ResponseEstimate:
    """Peak or edge location of one channel spectrum (value is None when undefined)."""
    value: Optional[float]
    status: ResponseStatus
    peak: float = 0.0
    peak_count: float = 0.0
    fit_range: tuple[float, float] = (0.0, 0.0)
    entries: int = 0
    fit_result: Any = field(default=None, compare=False, repr=False)

    @property
    def is_defined(self) -> bool:
        return self.value is not None


@dataclass(frozen=True)
class ChannelGain:
    """Final gain record of one channel."""
    channel: ChannelId
    gain: float
    raw_gain: float
    response: Optional[float]
    group_average: Optional[float]
    prior_gain: float = 1.0
    status: ResponseStatus = ResponseStatus.OK

    @property
    def is_valid(self) -> bool:
        return self.gain != -1.0


class CalibrationPhase(Enum):
    IDLE = 0
    ACCUMULATING = 1
    ESTIMATING = 2
    AVERAGING = 3
    GAIN_COMPUTING = 4
    DONE = 5


@dataclass(frozen=True)
class CutLog:
    """Per-cut bookkeeping for one batch or a whole run."""
    n_total: int = 0
    n_passed: int = 0
    rejected: dict[str, int] = field(default_factory=dict)

    def merge(self, other: "CutLog") -> "CutLog":
        rejected = dict(self.rejected)
        for name, n in other.rejected.items():
            rejected[name] = rejected.get(name, 0) + n
        return CutLog(self.n_total + other.n_total, self.n_passed + other.n_passed, rejected)

    def __str__(self):
        parts = ", ".join(f"{name}: {n}" for name, n in self.rejected.items())
        return f"CutLog(total={self.n_total}, passed={self.n_passed}, rejected=[{parts}])"
