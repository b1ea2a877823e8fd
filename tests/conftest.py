"""
Shared pytest fixtures for all test modules.

Everything is synthetic: a small two-chamber geometry and cluster batches
whose charges follow a known spectrum shape.
"""

import numpy as np
import pytest

from KrGain.core.config import CalibrationConfig
from KrGain.core.datatypes import ClusterBatch
from KrGain.core.geometry import ChamberLayout, DetectorGeometry


def _gaussian_charges(mean, sigma=200.0, height=40, step=5.0):
    """Charges on a fine grid, repeated so their density follows a Gaussian."""
    grid = np.arange(mean - 5 * sigma, mean + 5 * sigma, step)
    counts = np.round(height * np.exp(-0.5 * ((grid - mean) / sigma) ** 2)).astype(int)
    return np.repeat(grid, counts)


def _make_batch(geometry, chamber_name, sector, channel_charges, **columns):
    """
    Cluster batch for one sector from {(padrow, pad): charges}.

    Non-charge columns default to values passing the default cuts and can
    be overridden with scalars.
    """
    defaults = dict(max_adc=100.0, time_slice=10, n_pixels=4, n_time_slices=3, n_pads=2)
    defaults.update(columns)

    charge, padrow, pad = [], [], []
    for (row, p), values in sorted(channel_charges.items()):
        values = np.atleast_1d(np.asarray(values, dtype=float))
        charge.append(values)
        padrow.append(np.full(len(values), row, dtype=np.int64))
        pad.append(np.full(len(values), p, dtype=np.int64))
    charge = np.concatenate(charge) if charge else np.zeros(0)
    n = len(charge)

    return ClusterBatch(
        chamber=geometry.chamber_id(chamber_name),
        chamber_name=chamber_name,
        sector=sector,
        charge=charge,
        max_adc=np.full(n, defaults["max_adc"], dtype=float),
        time_slice=np.full(n, defaults["time_slice"], dtype=np.int64),
        n_pixels=np.full(n, defaults["n_pixels"], dtype=np.int64),
        n_time_slices=np.full(n, defaults["n_time_slices"], dtype=np.int64),
        n_pads=np.full(n, defaults["n_pads"], dtype=np.int64),
        padrow=np.concatenate(padrow) if padrow else np.zeros(0, dtype=np.int64),
        pad=np.concatenate(pad) if pad else np.zeros(0, dtype=np.int64),
    )


@pytest.fixture
def geometry():
    """VTPC1: sector 1 (2 padrows x 4 pads), sector 2 (1 x 3); VTPC2: sector 1 (1 x 2)."""
    return DetectorGeometry(chambers=(
        ChamberLayout(name="VTPC1", chamber_id=1, sectors={1: (4, 4), 2: (3,)}),
        ChamberLayout(name="VTPC2", chamber_id=2, sectors={1: (2,)}),
    ))


@pytest.fixture
def config():
    """Spectra on [0, 6000) ADC in 60 ADC bins, peak search above 1500 ADC."""
    return CalibrationConfig(
        histogram_bins=100,
        histogram_padding=4.0,
        min_adc_peak_search=1500.0,
        min_adc_peak_search_upstream=1500.0,
        min_histogram_entries=100,
        chambers=("VTPC1", "VTPC2"),
    )


@pytest.fixture
def gaussian_charges():
    return _gaussian_charges


@pytest.fixture
def make_batch(geometry):
    def factory(chamber_name, sector, channel_charges, **columns):
        return _make_batch(geometry, chamber_name, sector, channel_charges, **columns)
    return factory


@pytest.fixture
def sector_responses():
    """Krypton peak position of every VTPC1 sector 1 channel."""
    return {
        (1, 1): 2800.0, (1, 2): 2900.0, (1, 3): 3000.0, (1, 4): 3100.0,
        (2, 1): 3200.0, (2, 2): 3000.0, (2, 3): 2950.0, (2, 4): 3050.0,
    }


@pytest.fixture
def krypton_batches(make_batch, gaussian_charges, sector_responses):
    """One batch per padrow of VTPC1 sector 1 with a clean krypton peak per pad."""
    batches = []
    for row in (1, 2):
        charges = {key: gaussian_charges(mean) for key, mean in sector_responses.items() if key[0] == row}
        batches.append(make_batch("VTPC1", 1, charges))
    return batches
