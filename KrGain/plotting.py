import matplotlib.pyplot as plt # type: ignore
import numpy as np
from typing import Optional

from KrGain.core.datatypes import ChannelId, GroupId, ResponseEstimate, ResponseStatus
from KrGain.core.gain_table import GainTable
from KrGain.core.geometry import DetectorGeometry
from KrGain.core.histograms import ChargeHistogram, SectorSpectra

# --------------------------------
# Channel spectrum with fit
# --------------------------------

def plot_channel_spectrum(histogram: ChargeHistogram,
                          estimate: ResponseEstimate,
                          channel: Optional[ChannelId] = None,
                          ax=None):
    """
    Plot a channel charge spectrum with its response fit.

    Returns:
        fig, ax: Matplotlib figure and axes objects
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=(10, 6))
    else:
        fig = ax.get_figure()

    ax.stairs(histogram.counts, histogram.edges, color='g', fill=True, alpha=0.6, label="Data")
    ax.set_xlabel("Cluster Charge [ADC]")
    ax.set_ylabel("Entries")
    title = "Krypton decay cluster charges"
    if channel is not None:
        title += f", {channel}"
    ax.set_title(title)
    ax.grid(True, alpha=0.3)

    if estimate.fit_result is not None and estimate.status == ResponseStatus.OK:
        x = np.linspace(estimate.fit_range[0], estimate.fit_range[1], 300)
        ax.plot(x, estimate.fit_result.eval(x=x), 'r-', linewidth=2, label="Fit")
    if estimate.is_defined:
        ax.axvline(estimate.value, color='darkred', ls='--',
                   label=f"Response: {estimate.value:.1f} ({estimate.status.value})")
        ax.legend()
    else:
        ax.text(0.5, 0.9, f"No response ({estimate.status.value})",
                ha='center', va='center', transform=ax.transAxes)

    return fig, ax

# --------------------------------
# Sector gain summaries
# --------------------------------

def _sector_gain_grid(table: GainTable, geometry: DetectorGeometry, group: GroupId) -> np.ndarray:
    padrows = geometry.padrows(group.chamber, group.sector)
    max_pads = max(len(geometry.pads(group.chamber, group.sector, r)) for r in padrows)
    grid = np.full((len(padrows), max_pads), np.nan)
    for record in table.in_group(group):
        if record.is_valid:
            grid[record.channel.padrow - 1, record.channel.pad - 1] = record.gain
    return grid


def plot_sector_gain_map(table: GainTable, geometry: DetectorGeometry, group: GroupId,
                         vmin: float = 0.6, vmax: float = 1.4, ax=None):
    """Pad × padrow map of valid gains; invalid channels are left blank."""
    if ax is None:
        fig, ax = plt.subplots(figsize=(12, 5))
    else:
        fig = ax.get_figure()

    grid = _sector_gain_grid(table, geometry, group)
    extent = (0.5, grid.shape[1] + 0.5, 0.5, grid.shape[0] + 0.5)
    im = ax.imshow(grid, origin='lower', aspect='auto', extent=extent,
                   vmin=vmin, vmax=vmax, cmap='viridis')
    fig.colorbar(im, ax=ax, label="Gain")
    name = geometry.chamber_name(group.chamber)
    ax.set(title=f"Pad Gains, {name} Sector {group.sector}", xlabel="Pad", ylabel="Padrow")
    return fig, ax


def plot_gains_vs_pad(table: GainTable, geometry: DetectorGeometry, group: GroupId,
                      ylim: tuple = (0.5, 1.5), ax=None):
    """Gain against pad number, coloured by padrow."""
    if ax is None:
        fig, ax = plt.subplots(figsize=(10, 6))
    else:
        fig = ax.get_figure()

    records = table.in_group(group)
    pads = np.array([r.channel.pad for r in records])
    padrows = np.array([r.channel.padrow for r in records])
    gains = np.array([r.gain for r in records])

    sc = ax.scatter(pads, gains, c=padrows, s=6, cmap='viridis')
    fig.colorbar(sc, ax=ax, label="Padrow Id")
    name = geometry.chamber_name(group.chamber)
    ax.set(title=f"{name} Sector {group.sector} Gains Vs. Pad", xlabel="Pad Id", ylabel="Gain", ylim=ylim)
    ax.grid(True, alpha=0.3)
    return fig, ax


def plot_gain_distribution(table: GainTable, geometry: DetectorGeometry, group: GroupId,
                           nbins: int = 200, bin_cuts: tuple = (0.5, 1.5), ax=None):
    if ax is None:
        fig, ax = plt.subplots(figsize=(10, 6))
    else:
        fig = ax.get_figure()

    gains = np.array([r.gain for r in table.in_group(group) if r.is_valid])
    name = geometry.chamber_name(group.chamber)
    ax.set(title=f"{name} Sector {group.sector} Gains", xlabel="Gain", ylabel="Entries")
    if len(gains) == 0:
        ax.text(0.5, 0.5, "No valid gains", ha='center', va='center', transform=ax.transAxes)
        return fig, ax

    ax.hist(gains, bins=nbins, range=bin_cuts, color='blue', alpha=0.6)
    ax.grid(True, alpha=0.3)
    return fig, ax

# --------------------------------
# Sector QA spectra
# --------------------------------

def plot_sector_spectra(spectra: SectorSpectra, title: str = ""):
    """Sector charge spectrum before (left) and after (right) the cluster cuts."""
    fig, axes = plt.subplots(1, 2, figsize=(14, 5))
    for ax, hist, label in zip(axes, (spectra.no_cuts, spectra.all_cuts), ("No cuts", "All cuts applied")):
        ax.stairs(hist.counts, hist.edges, color='b')
        ax.set(title=f"{title} Krypton Cluster Charges ({label})",
               xlabel="Cluster Charge [ADC]", ylabel="Entries")
        ax.set_yscale('log')
        ax.grid(True, alpha=0.3)
    fig.tight_layout()
    return fig, axes
