#!/usr/bin/env python3
"""
Run krypton calibration - derive pad-by-pad gains from krypton cluster files.

The YAML config holds a ``calibration:`` section (cuts, binning, fit
function) and a ``geometry:`` section (chambers, sectors, pads per padrow).

Usage:
    # First calibration
    python -m KrGain.scripts.run_calibration -o run42 -c configs/krypton_calibration.yaml -i clusters/*.csv

    # Refine gains already applied to the data
    python -m KrGain.scripts.run_calibration -o run42_iter2 -c configs/krypton_calibration.yaml \\
        -u run42-KryptonAnalysis-KryptonPadGains.xml -i clusters/*.csv
"""

import argparse
from pathlib import Path

from KrGain.core.config import load_calibration_config
from KrGain.core.geometry import load_geometry
from KrGain.pipelines.krypton_calibration import krypton_calibration


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Derive krypton pad gains',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('-o', '--output', required=True, dest='output_prefix',
                        help='Output prefix')
    parser.add_argument('-c', '--config', type=Path, default=Path('config.yaml'),
                        help='Path to YAML config file')
    parser.add_argument('-u', '--updateGains', type=Path, default=None, dest='previous_gains',
                        help='Pad gain XML already applied to the input data (update mode)')
    parser.add_argument('-i', '--inputFiles', nargs='+', type=Path, required=True, dest='input_files',
                        help='Cluster files (.csv or .npz)')
    parser.add_argument('--fit-function', choices=['Gaussian', 'Fermi'], default=None,
                        help='Override the fit function from the config')
    parser.add_argument('--workers', type=int, default=None,
                        help='Threads for the estimation stage')
    parser.add_argument('--plots', action='store_true',
                        help='Save diagnostic plots')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    print(f"Loading configuration from {args.config}")
    overrides = {'fit_function': args.fit_function} if args.fit_function else None
    config = load_calibration_config(args.config, overrides=overrides)
    geometry = load_geometry(args.config)

    calib = krypton_calibration(args.input_files, config, geometry,
                                output_prefix=args.output_prefix,
                                previous_gains=args.previous_gains,
                                flag_plot=args.plots,
                                max_workers=args.workers)

    print(f"\nDone: {calib.table.n_valid} / {len(calib.table)} valid pad gains.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
