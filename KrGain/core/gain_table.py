from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterator, Optional

import numpy as np
import pandas as pd

from .datatypes import ChannelGain, ChannelId, GroupId


@dataclass
class GainTable:
    """Final per-channel gains, iterated in ChannelId order."""
    records: dict[ChannelId, ChannelGain] = field(default_factory=dict)

    def __post_init__(self):
        self.records = dict(sorted(self.records.items()))

    @classmethod
    def from_records(cls, records) -> "GainTable":
        return cls({r.channel: r for r in records})

    def __getitem__(self, channel: ChannelId) -> float:
        return self.records[channel].gain

    def __contains__(self, channel: ChannelId) -> bool:
        return channel in self.records

    def __iter__(self) -> Iterator[ChannelId]:
        return iter(self.records)

    def __len__(self):
        return len(self.records)

    def get(self, channel: ChannelId, default: Optional[float] = None) -> Optional[float]:
        record = self.records.get(channel)
        return record.gain if record is not None else default

    def gains(self) -> dict[ChannelId, float]:
        return {ch: r.gain for ch, r in self.records.items()}

    def groups(self) -> list[GroupId]:
        return sorted({ch.group for ch in self.records})

    def in_group(self, group: GroupId) -> list[ChannelGain]:
        return [r for ch, r in self.records.items() if ch.group == group]

    @property
    def n_valid(self) -> int:
        return sum(1 for r in self.records.values() if r.is_valid)

    def to_dataframe(self) -> pd.DataFrame:
        """
        One row per channel.

        Columns: chamber, sector, padrow, pad, response, group_average,
        prior_gain, raw_gain, gain, status
        """
        rows = [{
            'chamber': ch.chamber,
            'sector': ch.sector,
            'padrow': ch.padrow,
            'pad': ch.pad,
            'response': r.response if r.response is not None else np.nan,
            'group_average': r.group_average if r.group_average is not None else np.nan,
            'prior_gain': r.prior_gain,
            'raw_gain': r.raw_gain,
            'gain': r.gain,
            'status': r.status.value,
        } for ch, r in self.records.items()]
        columns = ['chamber', 'sector', 'padrow', 'pad', 'response', 'group_average',
                   'prior_gain', 'raw_gain', 'gain', 'status']
        return pd.DataFrame(rows, columns=columns)
