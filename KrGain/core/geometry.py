"""
Flat detector layout: chambers, sectors, padrows and pad counts.

Only what the calibration needs is modelled: which channels exist, how
chambers are named, and the gain previously applied to each channel.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable, Iterator, Mapping, Optional, Union

from .datatypes import ChannelId
from .config import load_config


@dataclass(frozen=True)
class ChamberLayout:
    name: str
    chamber_id: int
    # sector id -> number of pads per padrow (padrow ids start at 1)
    sectors: dict[int, tuple[int, ...]]


@dataclass(frozen=True)
class DetectorGeometry:
    chambers: tuple[ChamberLayout, ...]
    prior_gains: Mapping[ChannelId, float] = field(default_factory=dict)

    def __post_init__(self):
        names = [c.name for c in self.chambers]
        ids = [c.chamber_id for c in self.chambers]
        if len(set(names)) != len(names) or len(set(ids)) != len(ids):
            raise ValueError(f"Chamber names and ids must be unique: {list(zip(names, ids))}")

    # --- lookups ---

    def _chamber(self, chamber: Union[int, str]) -> ChamberLayout:
        for layout in self.chambers:
            if chamber in (layout.chamber_id, layout.name):
                return layout
        raise KeyError(f"Unknown chamber: {chamber!r}")

    def chamber_id(self, name: str) -> int:
        return self._chamber(name).chamber_id

    def chamber_name(self, chamber_id: int) -> str:
        return self._chamber(chamber_id).name

    def has_chamber(self, chamber: Union[int, str]) -> bool:
        return any(chamber in (c.chamber_id, c.name) for c in self.chambers)

    def sectors(self, chamber: Union[int, str]) -> list[int]:
        return sorted(self._chamber(chamber).sectors)

    def padrows(self, chamber: Union[int, str], sector: int) -> list[int]:
        n_padrows = len(self._chamber(chamber).sectors[sector])
        return list(range(1, n_padrows + 1))

    def pads(self, chamber: Union[int, str], sector: int, padrow: int) -> list[int]:
        rows = self._chamber(chamber).sectors[sector]
        if not 1 <= padrow <= len(rows):
            raise KeyError(f"Padrow {padrow} not in sector {sector} of chamber {chamber!r}")
        return list(range(1, rows[padrow - 1] + 1))

    def iter_channels(self, chambers: Optional[Iterable[str]] = None) -> Iterator[ChannelId]:
        """Yield every channel in total order, optionally restricted to named chambers."""
        selected = set(chambers) if chambers else None
        for layout in sorted(self.chambers, key=lambda c: c.chamber_id):
            if selected is not None and layout.name not in selected:
                continue
            for sector in sorted(layout.sectors):
                for padrow, n_pads in enumerate(layout.sectors[sector], start=1):
                    for pad in range(1, n_pads + 1):
                        yield ChannelId(layout.chamber_id, sector, padrow, pad)

    def __contains__(self, channel: ChannelId) -> bool:
        try:
            return 1 <= channel.pad <= len(self.pads(channel.chamber, channel.sector, channel.padrow))
        except KeyError:
            return False

    # --- previously applied gains ---

    def prior_gain(self, channel: ChannelId) -> float:
        return self.prior_gains.get(channel, 1.0)

    def with_prior_gains(self, table: Mapping[ChannelId, float]) -> "DetectorGeometry":
        return replace(self, prior_gains=dict(table))


def _parse_sector(rows) -> tuple[int, ...]:
    if isinstance(rows, Mapping):
        return (int(rows["pads"]),) * int(rows["padrows"])
    return tuple(int(n) for n in rows)


def geometry_from_dict(layout: Mapping) -> DetectorGeometry:
    """
    Build a geometry from a mapping such as::

        chambers:
          VTPC1:
            id: 1
            sectors:
              1: {padrows: 24, pads: 192}
              2: [192, 192, 190]

    A sector is either ``{padrows, pads}`` (uniform rows) or a list of pad
    counts, one entry per padrow.
    """
    chambers = []
    for name, entry in layout["chambers"].items():
        sectors = {int(s): _parse_sector(rows) for s, rows in entry["sectors"].items()}
        chambers.append(ChamberLayout(name=str(name), chamber_id=int(entry["id"]), sectors=sectors))
    return DetectorGeometry(chambers=tuple(chambers))


def load_geometry(config_path: Union[str, Path]) -> DetectorGeometry:
    """Read the ``geometry:`` section of a YAML file."""
    config = load_config(config_path)
    if "geometry" not in config:
        raise ValueError(f"No 'geometry' section in {config_path}")
    return geometry_from_dict(config["geometry"])
