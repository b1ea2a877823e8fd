"""
Krypton calibration pass.

Drives one batch of clusters through the fixed stage sequence:

    IDLE → ACCUMULATING → ESTIMATING → AVERAGING → GAIN_COMPUTING → DONE

1. accumulate: cluster cuts, fill channel spectra (and sector QA spectra)
2. estimate: response value of every channel
3. average: mean response per sector group
4. compute_gains: channel gains against their group average

Each stage needs the previous one completed; later stages read state the
earlier ones finished writing. Calling a stage out of order raises ValueError.
"""

from concurrent.futures import ThreadPoolExecutor
from functools import partial, reduce
from threading import Event
from typing import Iterable, Optional

import numpy as np

from KrGain.core.accumulators import GroupAccumulator
from KrGain.core.config import CalibrationConfig
from KrGain.core.cuts import apply_cluster_cuts, build_cluster_cuts
from KrGain.core.datatypes import (CalibrationPhase, ChannelId, ClusterBatch, ClusterEvent,
                                   CutLog, GroupId, ResponseEstimate)
from KrGain.core.gain_table import GainTable
from KrGain.core.geometry import DetectorGeometry
from KrGain.core.histograms import ChannelSpectrumStore, SectorSpectraStore
from KrGain.workflows.gain_calculation import compute_channel_gain, summarize_statuses
from KrGain.workflows.response_estimation import make_estimator


class CalibrationCancelled(RuntimeError):
    """Raised between channels when the cancel event is set."""


class CalibrationPass:
    """
    One calibration run over a finite cluster sample.

    Args:
        config: Cuts, binning and fit options
        geometry: Channel layout and previously applied gains
        update_mode: Scale charges by the prior gains and compose the new
            gain with them
        verbose: Print stage summaries
    """

    def __init__(self, config: CalibrationConfig, geometry: DetectorGeometry,
                 update_mode: bool = False, verbose: bool = True):
        self.config = config
        self.geometry = geometry
        self.update_mode = update_mode
        self.verbose = verbose

        self.phase = CalibrationPhase.IDLE
        self.estimator = make_estimator(config)
        self.cuts = build_cluster_cuts(config)
        self.spectra = ChannelSpectrumStore(config.histogram_bins, self._channel_range)
        self.sector_spectra = SectorSpectraStore(2 * config.histogram_bins, self._group_range)
        self.accumulator = GroupAccumulator()
        self.cut_log = CutLog()
        self.n_skipped = 0
        self.estimates: dict[ChannelId, ResponseEstimate] = {}
        self.table: Optional[GainTable] = None

        unknown = [c for c in config.chambers if not geometry.has_chamber(c)]
        if unknown:
            raise ValueError(f"Chambers {unknown} are not part of the detector geometry")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _threshold(self, group: GroupId) -> float:
        return self.config.peak_search_threshold(self.geometry.chamber_name(group.chamber), group.sector)

    def _group_range(self, group: GroupId) -> float:
        return self.config.histogram_max(self.geometry.chamber_name(group.chamber), group.sector)

    def _channel_range(self, channel: ChannelId) -> float:
        return self._group_range(channel.group)

    def _require(self, *phases: CalibrationPhase) -> None:
        if self.phase not in phases:
            expected = " or ".join(p.name for p in phases)
            raise ValueError(f"Calibration pass is in phase {self.phase.name}, expected {expected}")

    def _selected(self, chamber_name: str) -> bool:
        return not self.config.chambers or chamber_name in self.config.chambers

    def _log(self, msg: str) -> None:
        if self.verbose:
            print(msg)

    def channels(self) -> list[ChannelId]:
        """Every channel to calibrate, in total order."""
        return list(self.geometry.iter_channels(self.config.chambers or None))

    # ------------------------------------------------------------------
    # Stage 1: accumulation
    # ------------------------------------------------------------------

    def accumulate_batch(self, batch: ClusterBatch) -> None:
        self._require(CalibrationPhase.IDLE, CalibrationPhase.ACCUMULATING)
        self.phase = CalibrationPhase.ACCUMULATING

        if not self._selected(batch.chamber_name) or len(batch) == 0:
            self.n_skipped += len(batch)
            return

        sector_qa = self.sector_spectra.get(batch.group)
        sector_qa.no_cuts.fill_many(batch.charge)

        mask, log = apply_cluster_cuts(batch, self.cuts)
        self.cut_log = self.cut_log.merge(log)
        passed = batch.subset(mask)
        if len(passed) == 0:
            return

        rows = np.stack([passed.padrow, passed.pad], axis=1)
        keys, inverse = np.unique(rows, axis=0, return_inverse=True)
        inverse = inverse.reshape(-1)
        for k, (padrow, pad) in enumerate(keys):
            channel = ChannelId(batch.chamber, batch.sector, int(padrow), int(pad))
            charges = passed.charge[inverse == k].astype(float)
            if channel not in self.geometry:
                self.n_skipped += len(charges)
                continue
            if self.update_mode:
                charges = charges * self.geometry.prior_gain(channel)
            self.spectra.accumulate_many(channel, charges)
            sector_qa.all_cuts.fill_many(charges)

    def accumulate_event(self, chamber_name: str, sector: int, event: ClusterEvent) -> None:
        """Feed a single cluster recorded in the named chamber sector."""
        chamber = self.geometry.chamber_id(chamber_name)
        self.accumulate_batch(ClusterBatch.from_events(chamber, chamber_name, sector, [event]))

    def accumulate(self, batches: Iterable[ClusterBatch]) -> "CalibrationPass":
        self._require(CalibrationPhase.IDLE, CalibrationPhase.ACCUMULATING)
        self.phase = CalibrationPhase.ACCUMULATING
        for batch in batches:
            self.accumulate_batch(batch)

        self._log(f"  → Clusters: {self.cut_log.n_total} read, {self.cut_log.n_passed} passed cuts, "
                  f"{self.n_skipped} skipped")
        for name, n in self.cut_log.rejected.items():
            self._log(f"      rejected by {name}: {n}")
        return self

    # ------------------------------------------------------------------
    # Stage 2: estimation
    # ------------------------------------------------------------------

    def _estimate_channel(self, channel: ChannelId, cancel: Optional[Event]) -> ResponseEstimate:
        if cancel is not None and cancel.is_set():
            raise CalibrationCancelled(f"Cancelled before {channel}")
        return self.estimator.estimate(self.spectra.histogram_of(channel), self._threshold(channel.group))

    def estimate(self, cancel: Optional[Event] = None,
                 max_workers: Optional[int] = None) -> "CalibrationPass":
        """
        Estimate the response of every channel.

        Args:
            cancel: Checked before each channel; raises CalibrationCancelled when set
            max_workers: Fan channels out over a thread pool when > 1

        Raises:
            CalibrationCancelled: the phase is left unchanged and estimate can be rerun
        """
        self._require(CalibrationPhase.IDLE, CalibrationPhase.ACCUMULATING)

        channels = self.channels()
        work = partial(self._estimate_channel, cancel=cancel)
        if max_workers is not None and max_workers > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                results = list(executor.map(work, channels))
        else:
            results = [work(ch) for ch in channels]

        self.estimates = dict(zip(channels, results))
        self.phase = CalibrationPhase.ESTIMATING

        summary = summarize_statuses(self.estimates.values())
        self._log(f"  → Responses ({self.estimator.name}): " +
                  ", ".join(f"{k}={v}" for k, v in summary.items()))
        return self

    # ------------------------------------------------------------------
    # Stage 3: group averages
    # ------------------------------------------------------------------

    def average(self) -> "CalibrationPass":
        self._require(CalibrationPhase.ESTIMATING)
        for channel, est in self.estimates.items():
            if est.is_defined:
                self.accumulator.add_value(channel.group, est.value)
        self.phase = CalibrationPhase.AVERAGING

        for group in self.accumulator.groups():
            name = self.geometry.chamber_name(group.chamber)
            self._log(f"  → {name} sector {group.sector}: average response "
                      f"{self.accumulator.average(group):.2f} ({self.accumulator.count(group)} channels)")
        return self

    # ------------------------------------------------------------------
    # Stage 4: gains
    # ------------------------------------------------------------------

    def compute_gains(self) -> "CalibrationPass":
        self._require(CalibrationPhase.AVERAGING)
        self.phase = CalibrationPhase.GAIN_COMPUTING

        records = [compute_channel_gain(channel, est,
                                        group_average=self.accumulator.average(channel.group),
                                        config=self.config,
                                        prior_gain=self.geometry.prior_gain(channel),
                                        update_mode=self.update_mode)
                   for channel, est in self.estimates.items()]
        self.table = GainTable.from_records(records)
        self.phase = CalibrationPhase.DONE

        if len(self.accumulator) == 0:
            print("  ⚠ No channel produced a usable response. "
                  "Are the calibrated chambers listed in the configuration and present in the input?")
        self._log(f"  → Gains: {self.table.n_valid} / {len(self.table)} channels valid")
        return self

    # ------------------------------------------------------------------
    # Full pass
    # ------------------------------------------------------------------

    def run(self, batches: Iterable[ClusterBatch],
            cancel: Optional[Event] = None,
            max_workers: Optional[int] = None) -> GainTable:
        stages = [
            partial(CalibrationPass.accumulate, batches=batches),
            partial(CalibrationPass.estimate, cancel=cancel, max_workers=max_workers),
            CalibrationPass.average,
            CalibrationPass.compute_gains,
        ]
        return reduce(lambda p, stage: stage(p), stages, self).table


def run_calibration_pass(batches: Iterable[ClusterBatch],
                         config: CalibrationConfig,
                         geometry: DetectorGeometry,
                         update_mode: bool = False,
                         verbose: bool = False,
                         **kwargs) -> GainTable:
    """Convenience wrapper: build a fresh pass and run it to completion."""
    return CalibrationPass(config, geometry, update_mode=update_mode, verbose=verbose).run(batches, **kwargs)
