"""
Tests for cluster file loading and gain output.
"""

import math

import numpy as np
import pandas as pd
import pytest

from KrGain.core.dataIO import (iter_cluster_batches, load_cluster_file, load_gain_results,
                                load_gains_xml, output_paths, store_clusters,
                                store_gain_results, write_gains_xml)
from KrGain.core.datatypes import ChannelGain, ChannelId, ResponseStatus
from KrGain.core.gain_table import GainTable


def _cluster_frame(chamber="VTPC1"):
    return pd.DataFrame({
        "chamber": [chamber, chamber, chamber, "VTPC2"],
        "sector": [1, 1, 2, 1],
        "padrow": [1, 2, 1, 1],
        "pad": [1, 3, 2, 2],
        "charge": [3000.0, 2900.0, 3100.0, 2500.0],
        "max_adc": [100.0, 90.0, 80.0, 70.0],
        "time_slice": [10, 11, 12, 13],
        "n_pixels": [4, 4, 4, 4],
        "n_time_slices": [3, 3, 3, 3],
        "n_pads": [2, 2, 2, 2],
    })


def _table(records):
    return GainTable.from_records(
        ChannelGain(channel=ch, gain=g, raw_gain=g, response=3000.0, group_average=3000.0)
        for ch, g in records.items())


@pytest.mark.parametrize("suffix", [".csv", ".npz"])
def test_load_cluster_file_splits_by_sector(tmp_path, geometry, suffix):
    path = tmp_path / f"clusters{suffix}"
    store_clusters(_cluster_frame(), path)

    batches = load_cluster_file(path, geometry)

    assert [(b.chamber_name, b.sector, len(b)) for b in batches] == [
        ("VTPC1", 1, 2), ("VTPC1", 2, 1), ("VTPC2", 1, 1)]
    first = batches[0]
    assert first.chamber == 1
    np.testing.assert_allclose(first.charge, [3000.0, 2900.0])
    np.testing.assert_array_equal(first.pad, [1, 3])
    assert first.source == str(path)


def test_load_cluster_file_numeric_chamber_ids(tmp_path, geometry):
    df = _cluster_frame()
    df["chamber"] = [1, 1, 1, 2]
    path = tmp_path / "clusters.csv"
    store_clusters(df, path)

    batches = load_cluster_file(path, geometry)
    assert [b.chamber_name for b in batches] == ["VTPC1", "VTPC1", "VTPC2"]


def test_load_cluster_file_errors(tmp_path, geometry):
    with pytest.raises(FileNotFoundError):
        load_cluster_file(tmp_path / "missing.csv", geometry)

    bad = tmp_path / "bad.csv"
    _cluster_frame().drop(columns=["max_adc"]).to_csv(bad, index=False)
    with pytest.raises(ValueError, match="missing columns"):
        load_cluster_file(bad, geometry)

    unknown = tmp_path / "unknown.csv"
    store_clusters(_cluster_frame(chamber="MTPCL"), unknown)
    with pytest.raises(ValueError, match="not in detector geometry"):
        load_cluster_file(unknown, geometry)


def test_iter_cluster_batches_skips_bad_files(tmp_path, geometry, capsys):
    good = tmp_path / "good.csv"
    store_clusters(_cluster_frame(), good)
    bad = tmp_path / "bad.txt"
    bad.write_text("not a cluster file")

    batches = list(iter_cluster_batches([bad, good, tmp_path / "missing.csv"], geometry))

    assert len(batches) == 3
    out = capsys.readouterr().out
    assert "Skipping" in out
    assert "bad.txt" in out
    assert "missing.csv" in out


def test_gains_xml_round_trip(tmp_path, geometry):
    gains = {
        ChannelId(1, 1, 1, 1): 1.0234567,
        ChannelId(1, 1, 1, 2): -1.0,
        ChannelId(1, 1, 2, 4): 0.95,
        ChannelId(1, 2, 1, 3): 1.1,
    }
    path = write_gains_xml(_table(gains), geometry, tmp_path / "gains.xml")

    loaded = load_gains_xml(path, geometry)

    # every VTPC1 channel is written, VTPC2 is absent from the table
    assert len(loaded) == 11
    assert loaded[ChannelId(1, 1, 1, 1)] == pytest.approx(1.0234567, rel=1e-7)
    assert loaded[ChannelId(1, 1, 2, 4)] == pytest.approx(0.95)
    assert loaded[ChannelId(1, 2, 1, 3)] == pytest.approx(1.1)
    # invalid and unmeasured channels read back as "no correction"
    assert loaded[ChannelId(1, 1, 1, 2)] == 1.0
    assert loaded[ChannelId(1, 1, 1, 3)] == 1.0
    assert ChannelId(2, 1, 1, 1) not in loaded


def test_gains_xml_layout(tmp_path, geometry):
    from xml.etree import ElementTree as ET

    path = write_gains_xml(_table({ChannelId(1, 2, 1, 2): 1.5}), geometry, tmp_path / "gains.xml")
    root = ET.parse(path).getroot()

    assert root.tag == "PadByPadGain"
    assert [t.get("name") for t in root.findall("TPC")] == ["VTPC1"]
    sector2 = root.find("TPC/Sector[@id='2']")
    assert sector2.find("Padrow[@id='1']/PadGains").text.split() == ["-1", "1.5", "-1"]


def test_gain_results_csv(tmp_path):
    records = [
        ChannelGain(channel=ChannelId(1, 1, 1, 1), gain=1.05, raw_gain=1.05,
                    response=2857.0, group_average=3000.0),
        ChannelGain(channel=ChannelId(1, 1, 1, 2), gain=-1.0, raw_gain=math.nan,
                    response=None, group_average=3000.0,
                    status=ResponseStatus.INSUFFICIENT_DATA),
        ChannelGain(channel=ChannelId(1, 1, 1, 3), gain=-1.0, raw_gain=math.inf,
                    response=0.0, group_average=3000.0),
    ]
    path = store_gain_results(GainTable.from_records(records), tmp_path / "results.csv")

    df = load_gain_results(path)
    assert list(df["gain"]) == [1.05, -1.0, -1.0]
    assert list(df["raw_gain"]) == [1.05, 0.0, 0.0]
    assert df["status"].iloc[1] == "insufficient_data"
    assert np.isnan(df["response"].iloc[1])


def test_output_paths():
    paths = output_paths("out/run42")
    assert str(paths["gains_xml"]) == "out/run42-KryptonAnalysis-KryptonPadGains.xml"
    assert str(paths["results_csv"]) == "out/run42-KryptonAnalysis-results.csv"
    assert str(paths["plots_dir"]) == "out/run42-KryptonAnalysis-plots"
