import csv
import math

import numpy as np
import pytest

from sft_aupr import _trim_impl, amplitude_threshold, loud_frames
from sft_bdocx import _build_impl, heading_level, outline
from sft_ffoil import (
    POLAR_HEADER_LINES,
    AnalysisResult,
    XfoilError,
    XfoilIoError,
    XfoilJob,
    aoa_sequence,
    parse_polar,
    polar_file,
    result_at,
    run_xfoil,
)
from sft_makwei import entropy_weights, min_max_norm, normalize, probability_norm
from sft_nccsv import _extract_impl, hours_to_timestamp, nearest_index, series_stats
from sft_verbu import bump_dev, bump_pyproject, next_version, parse_extensions
from sft_vlc import Interval, _split_impl as vlc_split, bucket_for, parse_duration, parse_intervals
from sft_yldt import _split_impl as yolo_split, build_data_yaml, split_stems


# --- vlc ---------------------------------------------------------------------

def test_parse_duration():
    assert parse_duration("01:02:03") == 3723
    assert parse_duration("length 12:34") == 754
    assert parse_duration("n/a") is None


def test_intervals_are_left_open():
    intervals = parse_intervals("0:60, 60:300")
    assert intervals == [Interval(0, 60), Interval(60, 300)]
    assert bucket_for(60, intervals) == "0-60"
    assert bucket_for(61, intervals) == "60-300"
    assert bucket_for(0, intervals) == "other"
    with pytest.raises(AssertionError):
        parse_intervals("0-60")


def test_split_writes_one_csv_per_bucket(tmp_path):
    src = tmp_path / "videos.csv"
    src.write_text("title,length\na,00:30\nb,01:00:00\nc,??\nd,02:00\n", encoding="utf-8")
    result, metrics = vlc_split(str(src), str(tmp_path / "out"), "0:60,60:600")
    assert result == {"counts": {"0-60": 1, "60-600": 1, "other": 1}, "invalid": ["??"]}
    with open(tmp_path / "out" / "60-600.csv", newline="", encoding="utf-8") as f:
        assert list(csv.reader(f)) == [["title", "length"], ["d", "02:00"]]
    assert metrics["rows"] == 3


# --- verbu -------------------------------------------------------------------

def test_bump_dev():
    assert bump_dev(None) == "dev0"
    assert bump_dev("dev4") == "dev5"
    assert bump_dev("rc1") == "dev0"


@pytest.mark.parametrize("current, level, release, expected", [
    ("1.2.3", 0, False, "1.2.3-dev0"),
    ("1.2.3-dev4", 0, False, "1.2.3-dev5"),
    ("1.2.3-dev4", 1, False, "1.2.4-dev0"),
    ("1.2.3", 2, False, "1.3.0-dev0"),
    ("1.2.3-dev4", 0, True, "1.2.3"),
    ("1.2.3+build.7", 3, True, "2.0.0"),
])
def test_next_version(current, level, release, expected):
    assert next_version(current, level, release) == expected


def test_bump_pyproject_keeps_formatting(tmp_path):
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text('[project]\nname = "demo"  # keep me\nversion = "0.1.0"\n', encoding="utf-8")
    assert bump_pyproject(pyproject, level=1) == ("0.1.0", "0.1.1-dev0")
    text = pyproject.read_text(encoding="utf-8")
    assert 'version = "0.1.1-dev0"' in text
    assert "# keep me" in text


def test_parse_extensions():
    assert parse_extensions("rs, .toml,,py") == ["rs", "toml", "py"]


# --- yldt --------------------------------------------------------------------

def test_split_stems_is_deterministic():
    stems = [f"img{i}" for i in range(10)]
    train, val = split_stems(stems, 0.8)
    assert len(train) == 8 and len(val) == 2
    assert set(train) | set(val) == set(stems)
    assert split_stems(list(reversed(stems)), 0.8) == (train, val)
    assert split_stems(stems, 0.8, no_validation=True)[1] == []


def test_build_data_yaml(tmp_path):
    data = build_data_yaml(tmp_path, ["cat", "dog"], no_validation=True)
    assert data == {"train": str(tmp_path / "train" / "images"), "val": "", "nc": 2, "names": ["cat", "dog"]}


def test_yolo_split_copies_pairs(tmp_path):
    import yaml

    images, labels, out = tmp_path / "images", tmp_path / "labels", tmp_path / "out"
    images.mkdir()
    labels.mkdir()
    for stem in ("a", "b", "c"):
        (images / f"{stem}.JPG").write_bytes(b"img")
    for stem in ("a", "b"):
        (labels / f"{stem}.txt").write_text("0 0.5 0.5 0.1 0.1\n")
    classes = tmp_path / "classes.txt"
    classes.write_text("cat\n\ndog\n", encoding="utf-8")

    result, metrics = yolo_split(str(images), str(labels), str(out), str(classes), train_ratio=0.5)
    assert result["train"] == 1 and result["val"] == 1
    assert result["missing_labels"] == ["c"]
    assert metrics["status"] == "partial"
    copied = list((out / "train" / "images").iterdir()) + list((out / "val" / "images").iterdir())
    assert sorted(p.name for p in copied) == ["a.JPG", "b.JPG"]
    data = yaml.safe_load((out / "data.yaml").read_text(encoding="utf-8"))
    assert data["nc"] == 2 and data["names"] == ["cat", "dog"]


# --- nccsv -------------------------------------------------------------------

def test_nearest_index_and_timestamp():
    assert nearest_index([10.0, 20.0, 30.0], 22.0) == 1
    assert hours_to_timestamp(24) == "1900-01-02 00:00:00"


def test_series_stats_ignores_nan():
    stats = series_stats([1.0, float("nan"), 3.0])
    assert stats == {"total": 3, "finite": 2, "mean": 2.0, "std": 1.0, "min": 1.0, "max": 3.0}
    assert series_stats([float("nan")]) == {"total": 1, "finite": 0}


def test_extract_point_series(tmp_path):
    import netCDF4

    path = tmp_path / "sample.nc"
    with netCDF4.Dataset(path, "w") as ds:
        ds.createDimension("time", 2)
        ds.createDimension("lat", 2)
        ds.createDimension("lon", 2)
        ds.createVariable("time", "f8", ("time",))[:] = [48, 24]
        ds.createVariable("lat", "f8", ("lat",))[:] = [10.0, 20.0]
        ds.createVariable("lon", "f8", ("lon",))[:] = [100.0, 110.0]
        ds.createVariable("u10", "f8", ("time", "lat", "lon"))[:] = np.arange(8, dtype="f8").reshape(2, 2, 2)

    out = tmp_path / "out.csv"
    errors, metrics = _extract_impl(str(path), str(out), lat=19.0, lon=101.0, variable="u10")
    assert errors == []
    assert metrics["grid_index"] == [1, 0]
    assert out.read_text(encoding="utf-8").splitlines() == [
        "timestamp,u10",
        "1900-01-02 00:00:00,6.00",
        "1900-01-03 00:00:00,2.00",
    ]


# --- ffoil -------------------------------------------------------------------

def test_xfoil_commands(tmp_path):
    job = XfoilJob(xfoil_path="xfoil", naca="2412", reynolds=100000, polar=tmp_path / "p.dat", mode=("alpha", 5.0))
    assert job.commands() == [
        "plop", "G", "", "naca 2412", "oper", "v 100000",
        "pacc", str(tmp_path / "p.dat"), "", "a 5.0", "", "quit",
    ]
    assert XfoilJob(dat_file="foil.dat", mode=("aseq", (0, 4, 1))).commands()[3:7] == ["load foil.dat", "", "oper", "aseq 0 4 1"]
    with pytest.raises(XfoilError):
        XfoilJob().commands()


def test_aoa_sequence_covers_range():
    assert aoa_sequence(0.0, 1.0, 0.5) == [0.0, 0.5, 1.0]
    with pytest.raises(AssertionError):
        aoa_sequence(0.0, 1.0, 0.0)


def test_parse_polar_and_lookup(tmp_path):
    header = "\n".join(f"header {i}" for i in range(POLAR_HEADER_LINES))
    text = header + "\n   2.000   0.5000   0.0100   0.0050  -0.0500   0.6   0.9\n\n"
    table = parse_polar(text)
    assert table["alpha"] == [2.0] and table["CL"] == [0.5]
    hit = result_at(table, 2.001)
    assert hit.valid and math.isclose(hit.ld, 50.0)
    assert not result_at(table, 3.0).valid
    assert polar_file(tmp_path, "0012", 2.0).name == "0012_2.00.dat"


def test_zero_drag_gives_zero_ratio():
    assert AnalysisResult.from_coefficients(1.0, 0.4, 0.0).ld == 0.0


def test_missing_xfoil_binary(tmp_path):
    job = XfoilJob(xfoil_path=str(tmp_path / "no-xfoil"), naca="0012")
    with pytest.raises(XfoilIoError):
        run_xfoil(job)


def test_existing_polar_skips_run(tmp_path):
    polar = tmp_path / "p.dat"
    polar.write_text("")
    assert run_xfoil(XfoilJob(xfoil_path=str(tmp_path / "no-xfoil"), naca="0012", polar=polar)) is False


# --- makwei ------------------------------------------------------------------

def test_normalizers():
    assert np.allclose(probability_norm([1, 3]), [0.25, 0.75])
    assert np.allclose(min_max_norm([1, 2, 3], reverse=True), [1.0, 0.5, 0.0])
    assert np.allclose(normalize([2, 4], "scale"), [0.5, 1.0])
    assert np.allclose(normalize([1, 3], "zscore"), [-1.0, 1.0])
    with pytest.raises(AssertionError):
        normalize([1], "bogus")


def test_entropy_weights_ignore_constant_indicator():
    weights = entropy_weights([[1, 2, 3], [5, 5, 5]], negative=(False, False))
    assert np.allclose(weights, [1.0, 0.0])
    assert np.allclose(entropy_weights([[1], [2]], negative=(False, True)), [0.5, 0.5])


# --- aupr --------------------------------------------------------------------

def test_loud_frames():
    assert amplitude_threshold(-60) == 32
    mask = loud_frames([[0, 0], [100, -5], [-40, 0]], 32)
    assert mask.tolist() == [False, True, True]


def test_trim_drops_quiet_frames(tmp_path):
    import soundfile as sf

    src = tmp_path / "in.wav"
    samples = np.array([0, 5000, 3, -6000, 0], dtype=np.int16)
    sf.write(src, samples, 8000, subtype="PCM_16")
    out = tmp_path / "out.wav"
    _, metrics = _trim_impl(str(src), str(out))
    kept, rate = sf.read(out, dtype="int16")
    assert rate == 8000
    assert kept.tolist() == [5000, -6000]
    assert metrics["frames_in"] == 5 and metrics["frames_out"] == 2


# --- bdocx -------------------------------------------------------------------

def test_heading_levels():
    assert heading_level("1 Introduction") == 1
    assert heading_level("2. Method") == 1
    assert heading_level("2.1 Data") == 2
    assert heading_level("2.1.3 Cleaning") == 3
    assert heading_level("Plain text.") == 0
    assert outline(["1 A", "", "body"]) == [(1, "1 A"), (0, "body")]


def test_build_docx(tmp_path):
    from docx import Document

    src = tmp_path / "paper.txt"
    src.write_text("1 Intro\nSome text\n1.1 Scope\n", encoding="utf-8")
    out = tmp_path / "paper.docx"
    headings, metrics = _build_impl(str(src), str(out))
    assert headings == [(1, "1 Intro"), (2, "1.1 Scope")]
    doc = Document(str(out))
    assert [(p.style.name, p.text) for p in doc.paragraphs] == [
        ("Heading 1", "1 Intro"), ("Normal", "Some text"), ("Heading 2", "1.1 Scope"),
    ]
    assert metrics["headings"] == 2


# --- fof ---------------------------------------------------------------------

def test_filter_airfoils(tmp_path):
    from sft_fof import _filter_impl

    src = tmp_path / "foils.csv"
    src.write_text(
        "naca_code,cl_at_best_aoa,cd_at_best_aoa\n"
        "0012,1.0,0.05\n"
        "2412,0.1,0.01\n"
        "4415,1.0,0.2\n"
        "0006,0.5,0.15\n",
        encoding="utf-8",
    )
    out = tmp_path / "kept.csv"
    message, metrics = _filter_impl(str(src), str(out))
    assert out.read_text(encoding="utf-8").splitlines() == [
        "naca_code,cl_at_best_aoa,cd_at_best_aoa", "0012,1.0,0.05",
    ]
    assert metrics["rows_out"] == 1
    assert message.startswith("Filtering completed successfully! 1/4")
