"""
KrGain pipelines module.

CalibrationPass runs the stage sequence on cluster batches;
krypton_calibration adds file input, gain output and plots around it.
"""

from .calibration_pass import (
    CalibrationPass,
    CalibrationCancelled,
    run_calibration_pass,
)
from .krypton_calibration import krypton_calibration

__all__ = [
    'CalibrationPass',
    'CalibrationCancelled',
    'run_calibration_pass',
    'krypton_calibration',
]
