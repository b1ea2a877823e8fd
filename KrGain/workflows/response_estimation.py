"""
Channel response estimation.

Turns one channel charge spectrum into a single response value:
1. find_peak: highest bin above the peak-search threshold
2. half_max_window: bins where the spectrum drops below half the peak height
3. PeakFitEstimator: Gaussian mean inside the half-maximum window
4. EdgeFitEstimator: Fermi edge location between the peak and the spectrum end

The estimator is picked once per run with make_estimator().
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from lmfit.minimizer import MinimizerException

from KrGain.core.config import CalibrationConfig, GAUSSIAN, FERMI, HALF_MAX_FRACTION
from KrGain.core.datatypes import ResponseEstimate, ResponseStatus
from KrGain.core.fitting import fit_gaussian_window, fit_fermi_edge
from KrGain.core.histograms import ChargeHistogram


# ============================================================================
# PEAK SEARCH
# ============================================================================

@dataclass(frozen=True)
class PeakSearch:
    index: int
    peak: float
    peak_count: float
    lower: float
    upper: float
    x_max: float

    @property
    def is_degenerate(self) -> bool:
        return self.peak_count <= 0


def _last_bin(histogram: ChargeHistogram) -> int:
    # The two top bins are left out of the peak search; the edge fit ends at this bin
    return histogram.n_bins - 2


def find_peak(histogram: ChargeHistogram, threshold: float) -> Tuple[int, float, float]:
    """
    Locate the highest bin whose center is at or above threshold.

    Returns:
        (bin index, bin center, bin count); (0, 0.0, 0.0) if no bin qualifies
    """
    centers = histogram.centers
    counts = histogram.counts
    index, peak, peak_count = 0, 0.0, 0.0
    for i in range(_last_bin(histogram)):
        if centers[i] < threshold:
            continue
        if counts[i] > peak_count:
            index, peak, peak_count = i, float(centers[i]), float(counts[i])
    return index, peak, peak_count


def half_max_window(histogram: ChargeHistogram, index: int, peak_count: float) -> Tuple[float, float]:
    """
    Walk outwards from the peak bin to the first bins below half the peak height.

    A side where the spectrum never drops below half maximum keeps a bound of 0.
    """
    centers = histogram.centers
    counts = histogram.counts
    cut = HALF_MAX_FRACTION * peak_count

    lower = 0.0
    for i in range(index, -1, -1):
        if counts[i] < cut:
            lower = float(centers[i])
            break

    upper = 0.0
    for i in range(index, _last_bin(histogram) + 1):
        if counts[i] < cut:
            upper = float(centers[i])
            break

    return lower, upper


def search_peak(histogram: ChargeHistogram, threshold: float) -> PeakSearch:
    index, peak, peak_count = find_peak(histogram, threshold)
    lower, upper = half_max_window(histogram, index, peak_count)
    x_max = float(histogram.centers[_last_bin(histogram)])
    return PeakSearch(index, peak, peak_count, lower, upper, x_max)


# ============================================================================
# ESTIMATORS
# ============================================================================

class ResponseEstimator:
    """Common entry checks; subclasses implement _fit()."""
    name = ""

    def __init__(self, min_entries: int):
        self.min_entries = min_entries

    def estimate(self, histogram: Optional[ChargeHistogram], threshold: float) -> ResponseEstimate:
        entries = histogram.entries if histogram is not None else 0
        if histogram is None or entries < self.min_entries:
            return ResponseEstimate(value=None, status=ResponseStatus.INSUFFICIENT_DATA, entries=entries)

        search = search_peak(histogram, threshold)
        if search.is_degenerate:
            return ResponseEstimate(value=None, status=ResponseStatus.DEGENERATE_SPECTRUM,
                                    entries=entries)

        fit_range = self._fit_range(search)
        try:
            value, result = self._fit(histogram, search)
        except (ValueError, RuntimeError, TypeError, np.linalg.LinAlgError, MinimizerException):
            value, result = None, None

        # An unconverged fit (evaluation limit reached) is kept when its location lands in the fit range
        if result is None or not _within(value, fit_range):
            # Unfitted peak center stands in for a failed fit
            return ResponseEstimate(value=search.peak, status=ResponseStatus.FIT_FAILED,
                                    peak=search.peak, peak_count=search.peak_count,
                                    fit_range=fit_range, entries=entries, fit_result=result)

        return ResponseEstimate(value=value, status=ResponseStatus.OK,
                                peak=search.peak, peak_count=search.peak_count,
                                fit_range=fit_range, entries=entries, fit_result=result)

    def _fit_range(self, search: PeakSearch) -> Tuple[float, float]:
        raise NotImplementedError

    def _fit(self, histogram: ChargeHistogram, search: PeakSearch):
        raise NotImplementedError


class PeakFitEstimator(ResponseEstimator):
    """Gaussian mean of the peak inside its half-maximum window."""
    name = GAUSSIAN

    def _fit_range(self, search):
        return (search.lower, search.upper)

    def _fit(self, histogram, search):
        result = fit_gaussian_window(histogram.centers, histogram.counts, self._fit_range(search))
        return float(result.params['center'].value), result


class EdgeFitEstimator(ResponseEstimator):
    """Fermi edge location between the peak and the end of the spectrum."""
    name = FERMI

    def _fit_range(self, search):
        return (search.peak, search.x_max)

    def _fit(self, histogram, search):
        result = fit_fermi_edge(histogram.centers, histogram.counts,
                                peak=search.peak, peak_count=search.peak_count, x_max=search.x_max)
        return float(result.params['location'].value), result


def _within(value: Optional[float], fit_range: Tuple[float, float]) -> bool:
    if value is None or not np.isfinite(value):
        return False
    return fit_range[0] <= value <= fit_range[1]


def make_estimator(config: CalibrationConfig) -> ResponseEstimator:
    estimators = {GAUSSIAN: PeakFitEstimator, FERMI: EdgeFitEstimator}
    return estimators[config.fit_function](config.min_histogram_entries)
