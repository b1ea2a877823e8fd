"""Per-channel charge spectra and per-sector QA spectra."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

import numpy as np

from .datatypes import ChannelId, GroupId


@dataclass
class ChargeHistogram:
    """
    Fixed-binning charge spectrum on [0, max_charge).

    Bin layout never changes after creation; only counts grow. Charges
    outside the range still count as entries (under/overflow) but fill no bin.
    """
    n_bins: int
    max_charge: float
    counts: np.ndarray = field(init=False, repr=False)
    entries: int = field(default=0, init=False)

    def __post_init__(self):
        if self.n_bins <= 0 or self.max_charge <= 0:
            raise ValueError(f"Invalid histogram layout: n_bins={self.n_bins}, max_charge={self.max_charge}")
        self.counts = np.zeros(self.n_bins, dtype=np.int64)

    @property
    def bin_width(self) -> float:
        return self.max_charge / self.n_bins

    @property
    def edges(self) -> np.ndarray:
        return np.linspace(0.0, self.max_charge, self.n_bins + 1)

    @property
    def centers(self) -> np.ndarray:
        edges = self.edges
        return 0.5 * (edges[1:] + edges[:-1])

    def find_bin(self, charge: float) -> Optional[int]:
        """Bin index containing charge, None if out of range."""
        if not (0.0 <= charge < self.max_charge):
            return None
        return min(int(charge / self.bin_width), self.n_bins - 1)

    def fill(self, charge: float) -> None:
        self.entries += 1
        idx = self.find_bin(charge)
        if idx is not None:
            self.counts[idx] += 1

    def fill_many(self, charges: np.ndarray) -> None:
        charges = np.asarray(charges, dtype=float)
        self.entries += len(charges)
        in_range = charges[(charges >= 0.0) & (charges < self.max_charge)]
        idx = np.minimum((in_range / self.bin_width).astype(np.int64), self.n_bins - 1)
        np.add.at(self.counts, idx, 1)

    def view(self) -> "ChargeHistogram":
        """Read-only copy sharing nothing writable with the store."""
        copy = ChargeHistogram(self.n_bins, self.max_charge)
        copy.counts = self.counts.copy()
        copy.counts.setflags(write=False)
        copy.entries = self.entries
        return copy


class ChannelSpectrumStore:
    """
    Owns one ChargeHistogram per channel.

    Histograms are created lazily; their range comes from ``range_for``,
    which maps a channel to the upper edge of its spectrum.
    """

    def __init__(self, n_bins: int, range_for: Callable[[ChannelId], float]):
        self.n_bins = n_bins
        self._range_for = range_for
        self._histograms: dict[ChannelId, ChargeHistogram] = {}

    def _histogram(self, channel: ChannelId) -> ChargeHistogram:
        hist = self._histograms.get(channel)
        if hist is None:
            hist = ChargeHistogram(self.n_bins, self._range_for(channel))
            self._histograms[channel] = hist
        return hist

    def accumulate(self, channel: ChannelId, charge: float) -> None:
        self._histogram(channel).fill(charge)

    def accumulate_many(self, channel: ChannelId, charges: np.ndarray) -> None:
        if len(charges):
            self._histogram(channel).fill_many(charges)

    def entry_count(self, channel: ChannelId) -> int:
        hist = self._histograms.get(channel)
        return hist.entries if hist is not None else 0

    def histogram_of(self, channel: ChannelId) -> Optional[ChargeHistogram]:
        hist = self._histograms.get(channel)
        return hist.view() if hist is not None else None

    def channels(self) -> list[ChannelId]:
        return sorted(self._histograms)

    def __contains__(self, channel: ChannelId) -> bool:
        return channel in self._histograms

    def __len__(self):
        return len(self._histograms)

    def __iter__(self) -> Iterator[ChannelId]:
        return iter(self.channels())


@dataclass
class SectorSpectra:
    """QA spectra of one sector: before and after the cluster cuts."""
    no_cuts: ChargeHistogram
    all_cuts: ChargeHistogram

    @classmethod
    def create(cls, n_bins: int, max_charge: float) -> "SectorSpectra":
        return cls(ChargeHistogram(n_bins, max_charge), ChargeHistogram(n_bins, max_charge))


class SectorSpectraStore:
    def __init__(self, n_bins: int, range_for: Callable[[GroupId], float]):
        self.n_bins = n_bins
        self._range_for = range_for
        self._spectra: dict[GroupId, SectorSpectra] = {}

    def get(self, group: GroupId) -> SectorSpectra:
        spectra = self._spectra.get(group)
        if spectra is None:
            spectra = SectorSpectra.create(self.n_bins, self._range_for(group))
            self._spectra[group] = spectra
        return spectra

    def items(self):
        return sorted(self._spectra.items())

    def __len__(self):
        return len(self._spectra)
