"""
Krypton pad-gain calibration pipeline.

Loads cluster files, runs one CalibrationPass and writes:
- <prefix>-KryptonAnalysis-KryptonPadGains.xml   gains for reconstruction
- <prefix>-KryptonAnalysis-results.csv           per-channel responses and gains
- <prefix>-KryptonAnalysis-plots/                optional diagnostic plots
"""

from pathlib import Path
from threading import Event
from typing import Optional, Sequence, Union

from KrGain.core.config import CalibrationConfig
from KrGain.core.dataIO import (iter_cluster_batches, load_gains_xml, output_paths,
                                save_figure, store_gain_results, write_gains_xml)
from KrGain.core.geometry import DetectorGeometry
from KrGain.pipelines.calibration_pass import CalibrationPass

PathLike = Union[str, Path]


def _banner(title: str) -> None:
    print("\n" + "=" * 60)
    print(title.upper())
    print("=" * 60)


def save_diagnostic_plots(calib: CalibrationPass, plots_dir: Path,
                          max_channel_plots: int = 20) -> None:
    """Sector gain summaries, sector QA spectra and a sample of channel fits."""
    from KrGain import plotting

    geometry = calib.geometry
    for group in calib.table.groups():
        tag = f"{geometry.chamber_name(group.chamber)}_sector{group.sector}"
        fig, _ = plotting.plot_sector_gain_map(calib.table, geometry, group)
        save_figure(fig, plots_dir / f"{tag}_gain_map.png")
        fig, _ = plotting.plot_gains_vs_pad(calib.table, geometry, group)
        save_figure(fig, plots_dir / f"{tag}_gains_vs_pad.png")
        fig, _ = plotting.plot_gain_distribution(calib.table, geometry, group)
        save_figure(fig, plots_dir / f"{tag}_gain_distribution.png")

    for group, spectra in calib.sector_spectra.items():
        name = geometry.chamber_name(group.chamber)
        fig, _ = plotting.plot_sector_spectra(spectra, title=f"{name} Sector {group.sector}")
        save_figure(fig, plots_dir / f"{name}_sector{group.sector}_spectra.png")

    plotted = 0
    for channel, est in calib.estimates.items():
        if plotted >= max_channel_plots:
            break
        hist = calib.spectra.histogram_of(channel)
        if hist is None or hist.entries == 0:
            continue
        fig, _ = plotting.plot_channel_spectrum(hist, est, channel)
        tag = f"{geometry.chamber_name(channel.chamber)}_s{channel.sector}_r{channel.padrow}_p{channel.pad}"
        save_figure(fig, plots_dir / "channels" / f"{tag}.png")
        plotted += 1


def krypton_calibration(input_files: Sequence[PathLike],
                        config: CalibrationConfig,
                        geometry: DetectorGeometry,
                        output_prefix: PathLike,
                        previous_gains: Optional[PathLike] = None,
                        flag_plot: bool = False,
                        max_workers: Optional[int] = None,
                        cancel: Optional[Event] = None) -> CalibrationPass:
    """
    Run the full krypton calibration and write its outputs.

    Args:
        input_files: Cluster files (.csv or .npz)
        config: Calibration options
        geometry: Detector layout
        output_prefix: Prefix of all output files
        previous_gains: Gain XML already applied to the data; enables update mode
        flag_plot: Also save diagnostic plots
        max_workers: Thread pool size for the estimation stage
        cancel: Event checked between channels during estimation

    Returns:
        The finished CalibrationPass (gain table in ``.table``)
    """
    _banner("Krypton pad gain calibration")
    print(f"  Input files: {len(input_files)}, fit function: {config.fit_function}, "
          f"update gains: {previous_gains is not None}")

    update_mode = previous_gains is not None
    if update_mode:
        prior = load_gains_xml(previous_gains, geometry)
        print(f"  → Loaded {len(prior)} previous gains from {previous_gains}")
        geometry = geometry.with_prior_gains(prior)

    calib = CalibrationPass(config, geometry, update_mode=update_mode)

    _banner("Accumulating cluster spectra")
    calib.accumulate(iter_cluster_batches(list(input_files), geometry))

    _banner("Estimating channel responses")
    calib.estimate(cancel=cancel, max_workers=max_workers)

    _banner("Computing pad gains")
    calib.average()
    calib.compute_gains()

    paths = output_paths(output_prefix)
    write_gains_xml(calib.table, geometry, paths["gains_xml"])
    store_gain_results(calib.table, paths["results_csv"])

    if flag_plot:
        print("\nGenerating diagnostic plots...")
        save_diagnostic_plots(calib, paths["plots_dir"])

    return calib
