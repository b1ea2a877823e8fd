import numpy as np # type: ignore
import pandas as pd
from pathlib import Path
from typing import Iterator, Sequence, Union
from xml.etree import ElementTree as ET

from .datatypes import ChannelId, ClusterBatch
from .gain_table import GainTable
from .geometry import DetectorGeometry

PathLike = Union[str, Path]

CLUSTER_COLUMNS = ("chamber", "sector", "padrow", "pad", "charge", "max_adc",
                   "time_slice", "n_pixels", "n_time_slices", "n_pads")

# -------------------------------------
# --- Cluster files                 ---
# -------------------------------------

def _read_cluster_table(path: Path) -> pd.DataFrame:
    """Read a .csv (pandas) or .npz (numpy) cluster table."""
    if path.suffix == ".csv":
        df = pd.read_csv(path)
    elif path.suffix == ".npz":
        with np.load(path, allow_pickle=False) as data:
            df = pd.DataFrame({key: data[key] for key in data.files})
    else:
        raise ValueError(f"Unsupported cluster file format: {path.suffix}")

    missing = [c for c in CLUSTER_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"{path.name} is missing columns {missing}")
    return df


def load_cluster_file(path: PathLike, geometry: DetectorGeometry) -> list[ClusterBatch]:
    """
    Load one cluster file and split it into per-sector batches.

    The ``chamber`` column holds chamber names (e.g. "VTPC1") or numeric ids.

    Raises:
        FileNotFoundError: path does not exist
        ValueError: unsupported format, missing columns or unknown chamber
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Cluster file not found: {path}")

    df = _read_cluster_table(path)
    batches = []
    for (chamber, sector), rows in df.groupby(["chamber", "sector"], sort=True):
        chamber = chamber.item() if hasattr(chamber, "item") else chamber
        if not geometry.has_chamber(chamber):
            raise ValueError(f"{path.name}: chamber {chamber!r} not in detector geometry")
        chamber_id = geometry.chamber_id(chamber) if isinstance(chamber, str) else int(chamber)
        batches.append(ClusterBatch(
            chamber=chamber_id,
            chamber_name=geometry.chamber_name(chamber_id),
            sector=int(sector),
            charge=rows["charge"].to_numpy(dtype=float),
            max_adc=rows["max_adc"].to_numpy(dtype=float),
            time_slice=rows["time_slice"].to_numpy(dtype=np.int64),
            n_pixels=rows["n_pixels"].to_numpy(dtype=np.int64),
            n_time_slices=rows["n_time_slices"].to_numpy(dtype=np.int64),
            n_pads=rows["n_pads"].to_numpy(dtype=np.int64),
            padrow=rows["padrow"].to_numpy(dtype=np.int64),
            pad=rows["pad"].to_numpy(dtype=np.int64),
            source=str(path),
        ))
    return batches


def iter_cluster_batches(paths: Sequence[PathLike],
                         geometry: DetectorGeometry,
                         verbose: bool = True) -> Iterator[ClusterBatch]:
    """
    Yield cluster batches from many files.

    Unreadable or malformed files are skipped with a warning.
    """
    n_files = len(paths)
    previous = None
    for i, path in enumerate(paths, 1):
        progress = round(100 * (i - 1) / n_files)
        if verbose and progress % 5 == 0 and progress != previous:
            print(f"  → Processing file {i} / {n_files} ({progress}% complete)")
        previous = progress

        try:
            batches = load_cluster_file(path, geometry)
        except (OSError, ValueError, KeyError) as e:
            print(f"  ⚠ Skipping {path}: {e}")
            continue
        yield from batches


def store_clusters(df: pd.DataFrame, path: PathLike) -> None:
    """Write a cluster table as .csv or .npz depending on the suffix."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix == ".csv":
        df.to_csv(path, index=False)
    elif path.suffix == ".npz":
        # npz files are read with allow_pickle=False: store chamber names as fixed-width strings
        columns = {}
        for c in df.columns:
            numeric = pd.api.types.is_numeric_dtype(df[c])
            columns[c] = df[c].to_numpy() if numeric else df[c].to_numpy(dtype=str)
        np.savez(path, **columns)
    else:
        raise ValueError(f"Unsupported cluster file format: {path.suffix}")

# -------------------------------------
# --- Gain XML                      ---
# -------------------------------------

_SCHEMA_LOCATION = "[SCHEMAPATH]/TPCPadGain_DataFormat.xsd"
_XSI = "http://www.w3.org/2001/XMLSchema-instance"


def write_gains_xml(table: GainTable, geometry: DetectorGeometry, path: PathLike) -> Path:
    """
    Write gains in the PadByPadGain layout::

        <PadByPadGain>
          <TPC name="VTPC1">
            <Sector id="1">
              <Padrow id="1">
                <PadGains> 1.02 0.98 -1 ... </PadGains>

    Every chamber present in the table is written with all of its
    geometry channels; channels missing from the table get -1.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    ET.register_namespace("xsi", _XSI)
    root = ET.Element("PadByPadGain", {f"{{{_XSI}}}noNamespaceSchemaLocation": _SCHEMA_LOCATION})
    chambers = sorted({ch.chamber for ch in table})
    for chamber in chambers:
        tpc = ET.SubElement(root, "TPC", name=geometry.chamber_name(chamber))
        for sector in geometry.sectors(chamber):
            sector_elem = ET.SubElement(tpc, "Sector", id=str(sector))
            for padrow in geometry.padrows(chamber, sector):
                padrow_elem = ET.SubElement(sector_elem, "Padrow", id=str(padrow))
                gains = [table.get(ChannelId(chamber, sector, padrow, pad), -1.0)
                         for pad in geometry.pads(chamber, sector, padrow)]
                ET.SubElement(padrow_elem, "PadGains").text = " " + " ".join(f"{g:.8g}" for g in gains) + " "

    tree = ET.ElementTree(root)
    ET.indent(tree, space="  ")
    tree.write(path, encoding="utf-8", xml_declaration=True)
    print(f"  → Pad gains written to {path}")
    return path


def load_gains_xml(path: PathLike, geometry: DetectorGeometry) -> dict[ChannelId, float]:
    """
    Read a PadByPadGain file into a ChannelId → gain table.

    Invalid entries (-1 or any non-positive value) mean "no correction" and
    are returned as 1.0.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Gain file not found: {path}")

    table = {}
    root = ET.parse(path).getroot()
    for tpc in root.findall("TPC"):
        chamber = geometry.chamber_id(tpc.get("name"))
        for sector_elem in tpc.findall("Sector"):
            sector = int(sector_elem.get("id"))
            for padrow_elem in sector_elem.findall("Padrow"):
                padrow = int(padrow_elem.get("id"))
                text = padrow_elem.findtext("PadGains", default="")
                for pad, value in enumerate(text.split(), start=1):
                    gain = float(value)
                    table[ChannelId(chamber, sector, padrow, pad)] = gain if gain > 0 else 1.0
    return table

# -------------------------------------
# --- Result tables and figures     ---
# -------------------------------------

def store_gain_results(table: GainTable, path: PathLike) -> Path:
    """
    Store per-channel responses and gains as CSV.

    Non-finite raw gains are stored as 0.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df = table.to_dataframe()
    df["raw_gain"] = df["raw_gain"].where(np.isfinite(df["raw_gain"]), 0.0)
    df.to_csv(path, index=False)
    print(f"  → Saved: {path}")
    return path


def load_gain_results(path: PathLike) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Result table not found: {path}")
    return pd.read_csv(path)


def save_figure(fig, filename: PathLike, dpi: int = 150) -> None:
    """
    Save matplotlib figure to disk.

    Args:
        fig: Matplotlib figure
        filename: Output path
        dpi: Resolution for raster formats
    """
    import matplotlib.pyplot as plt

    filename = Path(filename)
    filename.parent.mkdir(parents=True, exist_ok=True)

    fig.savefig(filename, dpi=dpi, bbox_inches='tight')
    plt.close(fig)
    print(f"  → Saved: {filename}")


def output_paths(output_prefix: PathLike) -> dict[str, Path]:
    """Output file names of one calibration run."""
    prefix = Path(f"{output_prefix}-KryptonAnalysis")
    return {
        "gains_xml": Path(f"{prefix}-KryptonPadGains.xml"),
        "results_csv": Path(f"{prefix}-results.csv"),
        "plots_dir": Path(f"{prefix}-plots"),
    }
