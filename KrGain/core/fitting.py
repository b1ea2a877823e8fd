from typing import Tuple
import numpy as np # type: ignore
import lmfit
from lmfit.model import ModelResult
from lmfit.models import GaussianModel # type: ignore
from scipy.special import expit

from .config import FERMI_RATE_INIT, FERMI_RATE_BOUNDS


def fermi_edge(x, amplitude, rate, location):
    """Falling edge A / (1 + exp(k (x - x0)))."""
    return amplitude * expit(-rate * (x - location))


def _select_window(x: np.ndarray, y: np.ndarray,
                   x_min: float, x_max: float) -> Tuple[np.ndarray, np.ndarray]:
    mask = (x >= x_min) & (x <= x_max)
    return x[mask], y[mask].astype(float)


def fit_gaussian_window(centers: np.ndarray,
                        counts: np.ndarray,
                        fit_range: Tuple[float, float]) -> ModelResult:
    """
    Fit a Gaussian (center, sigma, amplitude free) to histogram bins inside fit_range.

    Args:
        centers: Bin centers
        counts: Bin contents
        fit_range: (min, max) inclusive window on bin centers

    Returns:
        lmfit ModelResult; the fitted mean is ``params['center']``

    Raises:
        ValueError: fewer bins in the window than free parameters
    """
    x, y = _select_window(centers, counts, *fit_range)
    if len(x) < 3:
        raise ValueError(f"Only {len(x)} bins in fit range {fit_range}")

    model = GaussianModel()
    params = model.guess(y, x=x)
    return model.fit(y, params, x=x)


def fit_fermi_edge(centers: np.ndarray,
                   counts: np.ndarray,
                   peak: float,
                   peak_count: float,
                   x_max: float) -> ModelResult:
    """
    Fit the upper edge of a spectrum between the peak and x_max.

    The amplitude is fixed to the peak height; the decay rate is bounded to
    FERMI_RATE_BOUNDS and the edge location starts at the peak.

    Returns:
        lmfit ModelResult; the edge location is ``params['location']``
    """
    x, y = _select_window(centers, counts, peak, x_max)
    if len(x) < 2:
        raise ValueError(f"Only {len(x)} bins between peak {peak} and {x_max}")

    model = lmfit.Model(fermi_edge)
    params = model.make_params(amplitude=peak_count, rate=FERMI_RATE_INIT, location=peak)
    params['amplitude'].set(vary=False)
    params['rate'].set(min=FERMI_RATE_BOUNDS[0], max=FERMI_RATE_BOUNDS[1])
    return model.fit(y, params, x=x)
