from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Union

import yaml

# -------------------------------
# Estimator selection
# -------------------------------
GAUSSIAN = "Gaussian"
FERMI = "Fermi"
FIT_FUNCTIONS = (GAUSSIAN, FERMI)

# Sentinel written for channels excluded from charge weighting
INVALID_GAIN = -1.0

# -------------------------------
# Fermi edge fit parameters
# -------------------------------
FERMI_RATE_INIT = 0.01
FERMI_RATE_BOUNDS = (0.0001, 1.0)

# Fraction of the peak height bounding the Gaussian fit window
HALF_MAX_FRACTION = 0.5


@dataclass(frozen=True)
class CalibrationConfig:
    """Cuts, binning and fit options of one krypton calibration run."""
    fit_function: str = GAUSSIAN             # "Gaussian" (peak mean) or "Fermi" (upper edge)
    min_acceptable_gain: float = 0.5         # gains at or below are written as INVALID_GAIN
    max_acceptable_gain: float = 2.0         # gains at or above are written as INVALID_GAIN
    min_histogram_entries: int = 100         # channels with fewer entries get no response
    histogram_bins: int = 100                # bins per channel spectrum
    histogram_padding: float = 4.0           # spectrum range = peak-search threshold * padding
    min_pads: int = 1                        # cluster size cuts (pads)
    max_pads: int = 10
    min_time_slice_number: int = 0           # earliest accepted time slice
    min_time_slices: int = 1                 # cluster size cuts (time slices)
    max_time_slices: int = 20
    max_adc_cut: float = 0.0                 # (ADC) pass if max ADC >= this ...
    charge_cut: float = 0.0                  # (ADC) ... or if charge >= this
    min_adc_peak_search: float = 1500.0      # (ADC) lowest bin centre considered a peak
    min_adc_peak_search_upstream: float = 1500.0  # (ADC) same, upstream sectors of upstream_chamber
    upstream_chamber: str = "VTPC1"
    upstream_sectors: tuple[int, ...] = (1, 4)
    chambers: tuple[str, ...] = ()           # chambers to calibrate (empty = all in geometry)

    def __post_init__(self):
        if self.fit_function not in FIT_FUNCTIONS:
            raise ValueError(f"fit_function must be one of {FIT_FUNCTIONS}, got {self.fit_function!r}")
        if self.min_acceptable_gain >= self.max_acceptable_gain:
            raise ValueError(f"min_acceptable_gain ({self.min_acceptable_gain}) must be "
                             f"below max_acceptable_gain ({self.max_acceptable_gain})")
        if self.histogram_bins < 3:
            raise ValueError(f"histogram_bins must be at least 3, got {self.histogram_bins}")
        if self.histogram_padding <= 0:
            raise ValueError(f"histogram_padding must be positive, got {self.histogram_padding}")
        if self.min_pads > self.max_pads:
            raise ValueError(f"min_pads ({self.min_pads}) exceeds max_pads ({self.max_pads})")
        if self.min_time_slices > self.max_time_slices:
            raise ValueError(f"min_time_slices ({self.min_time_slices}) exceeds "
                             f"max_time_slices ({self.max_time_slices})")

    def peak_search_threshold(self, chamber_name: str, sector: int) -> float:
        """Lowest charge accepted as a peak for the given chamber sector."""
        if chamber_name == self.upstream_chamber and sector in self.upstream_sectors:
            return self.min_adc_peak_search_upstream
        return self.min_adc_peak_search

    def histogram_max(self, chamber_name: str, sector: int) -> float:
        return self.peak_search_threshold(chamber_name, sector) * self.histogram_padding


# Option names of the legacy text config format
_LEGACY_KEYS = {
    "fitFunction": "fit_function",
    "minAcceptableGain": "min_acceptable_gain",
    "maxAcceptableGain": "max_acceptable_gain",
    "minHistogramEntries": "min_histogram_entries",
    "histogramBins": "histogram_bins",
    "histogramPadding": "histogram_padding",
    "minPads": "min_pads",
    "maxPads": "max_pads",
    "minTimeSliceNumber": "min_time_slice_number",
    "minTimeSlices": "min_time_slices",
    "maxTimeSlices": "max_time_slices",
    "maxADCCut": "max_adc_cut",
    "chargeCut": "charge_cut",
    "minADCPeakSearch": "min_adc_peak_search",
    "vtpc1UpstreamSectorsMinADCPeakSearch": "min_adc_peak_search_upstream",
    "tpcList": "chambers",
}


def config_from_dict(options: dict) -> CalibrationConfig:
    """
    Build a CalibrationConfig from a plain mapping.

    Accepts snake_case field names or the camelCase names of the legacy
    text config. Unknown keys raise ValueError.
    """
    known = {f.name for f in fields(CalibrationConfig)}
    kwargs = {}
    for key, value in (options or {}).items():
        name = _LEGACY_KEYS.get(key, key)
        if name not in known:
            raise ValueError(f"Unknown calibration option: {key!r}")
        if name in ("chambers", "upstream_sectors"):
            value = (value,) if isinstance(value, (str, int)) else tuple(value)
        kwargs[name] = value
    return CalibrationConfig(**kwargs)


def load_config(config_path: Union[str, Path]) -> dict:
    """Load YAML configuration file."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    with open(config_path, 'r') as f:
        return yaml.safe_load(f) or {}


def load_calibration_config(config_path: Union[str, Path],
                            overrides: Optional[dict] = None) -> CalibrationConfig:
    """Read the ``calibration:`` section of a YAML file into a CalibrationConfig."""
    options = dict(load_config(config_path).get("calibration", {}))
    if overrides:
        options.update(overrides)
    return config_from_dict(options)
