"""
KrGain - pad-by-pad gain calibration of TPC readout channels from krypton decay clusters.
"""

__version__ = "0.1.0"
