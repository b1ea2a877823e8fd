"""
Gain normalisation.

gain = group average / channel response, optionally multiplied by the gain
already applied to the channel (update mode). Values that are not finite or
fall outside the acceptance window become INVALID_GAIN.
"""

import math
from typing import Optional

from KrGain.core.config import CalibrationConfig, INVALID_GAIN
from KrGain.core.datatypes import ChannelGain, ChannelId, ResponseEstimate, ResponseStatus


def raw_gain(response: Optional[float],
             group_average: Optional[float],
             prior_gain: float = 1.0,
             update_mode: bool = False) -> float:
    """
    Unclipped gain. Undefined inputs and a zero response give NaN.
    """
    if response is None or group_average is None or response == 0:
        return math.nan
    gain = group_average / response
    return prior_gain * gain if update_mode else gain


def clip_gain(gain: float, min_gain: float, max_gain: float) -> float:
    """Return gain if finite and strictly inside (min_gain, max_gain), else INVALID_GAIN."""
    if not math.isfinite(gain):
        return INVALID_GAIN
    if gain <= min_gain or gain >= max_gain:
        return INVALID_GAIN
    return gain


def compute_gain(response: Optional[float],
                 group_average: Optional[float],
                 config: CalibrationConfig,
                 prior_gain: float = 1.0,
                 update_mode: bool = False) -> float:
    gain = raw_gain(response, group_average, prior_gain, update_mode)
    return clip_gain(gain, config.min_acceptable_gain, config.max_acceptable_gain)


def compute_channel_gain(channel: ChannelId,
                         estimate: ResponseEstimate,
                         group_average: Optional[float],
                         config: CalibrationConfig,
                         prior_gain: float = 1.0,
                         update_mode: bool = False) -> ChannelGain:
    """Full gain record for one channel, keeping the inputs for the result table."""
    raw = raw_gain(estimate.value, group_average, prior_gain, update_mode)
    return ChannelGain(channel=channel,
                       gain=clip_gain(raw, config.min_acceptable_gain, config.max_acceptable_gain),
                       raw_gain=raw,
                       response=estimate.value,
                       group_average=group_average,
                       prior_gain=prior_gain if update_mode else 1.0,
                       status=estimate.status)


def summarize_statuses(estimates) -> dict[str, int]:
    """Number of estimates per ResponseStatus value."""
    summary = {status.value: 0 for status in ResponseStatus}
    for est in estimates:
        summary[est.status.value] += 1
    return summary
