"""
Tests for gain normalisation and clipping.
"""

import math

import pytest

from KrGain.core.config import CalibrationConfig, INVALID_GAIN
from KrGain.core.datatypes import ChannelId, ResponseEstimate, ResponseStatus
from KrGain.workflows.gain_calculation import (clip_gain, compute_channel_gain, compute_gain,
                                               raw_gain, summarize_statuses)


@pytest.fixture
def gain_config():
    return CalibrationConfig(min_acceptable_gain=0.5, max_acceptable_gain=2.0)


def test_raw_gain():
    assert raw_gain(2500.0, 3000.0) == pytest.approx(1.2)
    assert raw_gain(2500.0, 3000.0, prior_gain=1.1) == pytest.approx(1.2)
    assert raw_gain(2500.0, 3000.0, prior_gain=1.1, update_mode=True) == pytest.approx(1.32)


@pytest.mark.parametrize("response, average", [(None, 3000.0), (3000.0, None), (0.0, 3000.0)])
def test_raw_gain_undefined(response, average):
    assert math.isnan(raw_gain(response, average))


def test_out_of_range_gain_is_invalid(gain_config):
    assert compute_gain(1000.0, 3100.0, gain_config) == INVALID_GAIN
    assert compute_gain(3100.0, 1000.0, gain_config) == INVALID_GAIN


def test_in_range_gain_passes_through(gain_config):
    assert compute_gain(1000.0, 1020.0, gain_config) == pytest.approx(1.02)


def test_clip_bounds_are_exclusive():
    assert clip_gain(0.5, 0.5, 2.0) == INVALID_GAIN
    assert clip_gain(2.0, 0.5, 2.0) == INVALID_GAIN
    assert clip_gain(0.5001, 0.5, 2.0) == pytest.approx(0.5001)
    assert clip_gain(math.nan, 0.5, 2.0) == INVALID_GAIN
    assert clip_gain(math.inf, 0.5, 2.0) == INVALID_GAIN


def test_compute_channel_gain_record(gain_config):
    channel = ChannelId(1, 1, 2, 3)
    est = ResponseEstimate(value=2500.0, status=ResponseStatus.OK)

    record = compute_channel_gain(channel, est, 3000.0, gain_config, prior_gain=1.1, update_mode=True)
    assert record.channel == channel
    assert record.gain == pytest.approx(1.32)
    assert record.prior_gain == 1.1
    assert record.is_valid

    normal = compute_channel_gain(channel, est, 3000.0, gain_config, prior_gain=1.1)
    assert normal.gain == pytest.approx(1.2)
    assert normal.prior_gain == 1.0


def test_compute_channel_gain_without_response(gain_config):
    est = ResponseEstimate(value=None, status=ResponseStatus.INSUFFICIENT_DATA)
    record = compute_channel_gain(ChannelId(1, 1, 1, 1), est, 3000.0, gain_config)

    assert record.gain == INVALID_GAIN
    assert math.isnan(record.raw_gain)
    assert record.status == ResponseStatus.INSUFFICIENT_DATA
    assert not record.is_valid


def test_summarize_statuses():
    estimates = [ResponseEstimate(1.0, ResponseStatus.OK),
                 ResponseEstimate(2.0, ResponseStatus.OK),
                 ResponseEstimate(None, ResponseStatus.INSUFFICIENT_DATA)]
    summary = summarize_statuses(estimates)
    assert summary == {"ok": 2, "insufficient_data": 1, "degenerate_spectrum": 0, "fit_failed": 0}
