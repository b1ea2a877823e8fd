"""
Tests for channel response estimation.
"""

import numpy as np
import pytest
from scipy.special import expit

from KrGain.core.config import CalibrationConfig
from KrGain.core.datatypes import ResponseStatus
from KrGain.core.histograms import ChargeHistogram
from KrGain.workflows.response_estimation import (EdgeFitEstimator, PeakFitEstimator,
                                                  find_peak, half_max_window, make_estimator,
                                                  search_peak)


def _histogram(counts, max_charge=100.0):
    hist = ChargeHistogram(n_bins=len(counts), max_charge=max_charge)
    hist.counts = np.asarray(counts, dtype=np.int64)
    hist.entries = int(hist.counts.sum())
    return hist


def _spectrum(charges, n_bins=100, max_charge=6000.0):
    hist = ChargeHistogram(n_bins=n_bins, max_charge=max_charge)
    hist.fill_many(np.asarray(charges, dtype=float))
    return hist


# ---------------------------------------------------------------------------
# Peak search
# ---------------------------------------------------------------------------

def test_find_peak_and_half_max_window():
    hist = _histogram([0, 1, 4, 10, 8, 6, 2, 0, 0, 0])

    index, peak, peak_count = find_peak(hist, threshold=0.0)
    assert (index, peak, peak_count) == (3, pytest.approx(35.0), 10.0)
    assert half_max_window(hist, index, peak_count) == (pytest.approx(25.0), pytest.approx(65.0))


def test_find_peak_respects_threshold():
    hist = _histogram([0, 50, 0, 0, 0, 7, 3, 0, 0, 0])
    index, peak, peak_count = find_peak(hist, threshold=40.0)
    assert index == 5
    assert peak_count == 7.0


def test_find_peak_ignores_top_bins():
    hist = _histogram([0, 0, 0, 0, 3, 0, 0, 0, 5, 50])
    index, _, peak_count = find_peak(hist, threshold=0.0)
    assert index == 4
    assert peak_count == 3.0


def test_find_peak_keeps_first_of_equal_bins():
    hist = _histogram([0, 0, 6, 6, 6, 0, 0, 0, 0, 0])
    assert find_peak(hist, threshold=0.0)[0] == 2


def test_half_max_window_without_drop_keeps_zero_bounds():
    hist = _histogram([6, 7, 8, 10, 9, 9, 9, 9, 9, 9])
    index, _, peak_count = find_peak(hist, threshold=0.0)
    assert half_max_window(hist, index, peak_count) == (0.0, 0.0)


def test_search_peak_degenerate_when_nothing_above_threshold():
    hist = _histogram([0, 9, 9, 0, 0, 0, 0, 0, 0, 0])
    search = search_peak(hist, threshold=50.0)
    assert search.is_degenerate
    assert search.x_max == pytest.approx(85.0)


# ---------------------------------------------------------------------------
# Estimators
# ---------------------------------------------------------------------------

def test_gaussian_estimator_recovers_peak(gaussian_charges):
    hist = _spectrum(gaussian_charges(3000.0, sigma=200.0))

    est = PeakFitEstimator(min_entries=100).estimate(hist, threshold=1500.0)

    assert est.status == ResponseStatus.OK
    assert est.value == pytest.approx(3000.0, abs=15.0)
    assert est.fit_range[0] < est.value < est.fit_range[1]
    assert est.entries == hist.entries


def test_gaussian_estimator_ignores_low_charge_noise():
    charges = np.concatenate([np.full(180, 1000.0), np.full(20, 3000.0)])
    hist = _spectrum(charges)

    est = PeakFitEstimator(min_entries=100).estimate(hist, threshold=1500.0)

    # Narrow three-bin peak: the fitted centre is used even if lmfit runs out of evaluations
    assert est.status == ResponseStatus.OK
    assert est.fit_result is not None
    assert est.peak == pytest.approx(3030.0)
    assert est.fit_range == (pytest.approx(2970.0), pytest.approx(3090.0))
    assert abs(est.value - 3000.0) <= 100.0


def test_fermi_estimator_recovers_edge():
    hist = ChargeHistogram(n_bins=100, max_charge=6000.0)
    centers = hist.centers[hist.centers >= 1500.0]
    counts = np.round(1000 * centers / 4000 * expit(-(centers - 4000.0) / 80.0)).astype(int)
    hist.fill_many(np.repeat(centers, counts))

    est = EdgeFitEstimator(min_entries=100).estimate(hist, threshold=1500.0)

    assert est.status == ResponseStatus.OK
    assert est.value == pytest.approx(4000.0, abs=100.0)
    assert est.fit_range == (est.peak, pytest.approx(5910.0))


def test_insufficient_entries():
    hist = _spectrum(np.full(50, 3000.0))
    estimator = PeakFitEstimator(min_entries=200)

    est = estimator.estimate(hist, threshold=1500.0)
    assert est.status == ResponseStatus.INSUFFICIENT_DATA
    assert est.value is None
    assert est.entries == 50

    assert estimator.estimate(None, threshold=1500.0).status == ResponseStatus.INSUFFICIENT_DATA


def test_degenerate_spectrum_has_no_response():
    hist = _spectrum(np.full(500, 1000.0))
    est = PeakFitEstimator(min_entries=100).estimate(hist, threshold=1500.0)
    assert est.status == ResponseStatus.DEGENERATE_SPECTRUM
    assert not est.is_defined


def test_failed_fit_falls_back_to_peak():
    # Rising spectrum: no half-maximum drop above the peak, empty fit window
    hist = ChargeHistogram(n_bins=100, max_charge=6000.0)
    idx = np.arange(25, 100)
    hist.fill_many(np.repeat(hist.centers[idx], 10 * idx))

    est = PeakFitEstimator(min_entries=100).estimate(hist, threshold=1500.0)

    assert est.status == ResponseStatus.FIT_FAILED
    assert est.value == pytest.approx(est.peak)
    assert est.peak == pytest.approx(hist.centers[97])


def test_make_estimator():
    assert isinstance(make_estimator(CalibrationConfig(fit_function="Gaussian")), PeakFitEstimator)
    estimator = make_estimator(CalibrationConfig(fit_function="Fermi", min_histogram_entries=42))
    assert isinstance(estimator, EdgeFitEstimator)
    assert estimator.min_entries == 42
