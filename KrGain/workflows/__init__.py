"""
KrGain workflows module.

Per-channel steps of the calibration: response estimation from a charge
spectrum and gain normalisation against the sector average.
"""

from .response_estimation import (
    find_peak,
    half_max_window,
    search_peak,
    make_estimator,
    PeakFitEstimator,
    EdgeFitEstimator,
)
from .gain_calculation import (
    raw_gain,
    clip_gain,
    compute_gain,
    compute_channel_gain,
)

__all__ = [
    'find_peak',
    'half_max_window',
    'search_peak',
    'make_estimator',
    'PeakFitEstimator',
    'EdgeFitEstimator',
    'raw_gain',
    'clip_gain',
    'compute_gain',
    'compute_channel_gain',
]
