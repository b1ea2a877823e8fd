# KrGain/core/cuts.py
import numpy as np
from typing import Callable, List, Tuple

from .config import CalibrationConfig
from .datatypes import ClusterBatch, ClusterEvent, CutLog

CutFn = Callable[[ClusterBatch], np.ndarray]

# -------------------------------
# Cut factories
# -------------------------------
def make_positive_charge_cut() -> CutFn:
    """Reject clusters with no charge."""
    def cut_fn(batch):
        return batch.charge > 0
    return cut_fn


def make_range_cut(column: str, vmin: float, vmax: float) -> CutFn:
    """Accept vmin <= column <= vmax."""
    def cut_fn(batch):
        values = getattr(batch, column)
        return (values >= vmin) & (values <= vmax)
    return cut_fn


def make_min_cut(column: str, vmin: float) -> CutFn:
    def cut_fn(batch):
        return getattr(batch, column) >= vmin
    return cut_fn


def make_signal_strength_cut(charge_cut: float, max_adc_cut: float) -> CutFn:
    """Accept if either the cluster charge or its max ADC is large enough."""
    def cut_fn(batch):
        return (batch.charge >= charge_cut) | (batch.max_adc >= max_adc_cut)
    return cut_fn


def build_cluster_cuts(config: CalibrationConfig) -> List[Tuple[str, CutFn]]:
    """Cluster quality cuts in the order they are applied."""
    return [
        ("charge", make_positive_charge_cut()),
        ("n_pads", make_range_cut("n_pads", config.min_pads, config.max_pads)),
        ("n_time_slices", make_range_cut("n_time_slices", config.min_time_slices, config.max_time_slices)),
        ("time_slice", make_min_cut("time_slice", config.min_time_slice_number)),
        ("signal_strength", make_signal_strength_cut(config.charge_cut, config.max_adc_cut)),
    ]

# -------------------------------
# Cut application and logging
# -------------------------------

def apply_cluster_cuts(batch: ClusterBatch,
                       cuts: List[Tuple[str, CutFn]]) -> Tuple[np.ndarray, CutLog]:
    """
    Evaluate cuts on a batch in order.

    A cluster is attributed to the first cut it fails, so rejection counts
    add up to the number of rejected clusters.

    Returns:
        (mask of passing clusters, CutLog)
    """
    passed = np.ones(len(batch), dtype=bool)
    rejected = {}
    for name, cut_fn in cuts:
        ok = np.asarray(cut_fn(batch), dtype=bool)
        rejected[name] = int((passed & ~ok).sum())
        passed &= ok
    return passed, CutLog(n_total=len(batch), n_passed=int(passed.sum()), rejected=rejected)


def event_passes_cuts(event: ClusterEvent, config: CalibrationConfig) -> bool:
    """Single-event form of the cluster cuts."""
    batch = ClusterBatch.from_events(0, "", 0, [event])
    mask, _ = apply_cluster_cuts(batch, build_cluster_cuts(config))
    return bool(mask[0])
