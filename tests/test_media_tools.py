import sys
from pathlib import Path

import httpx
import pytest
from PIL import Image

import sft_arep
import sft_vmd
from sft_arep import ffmpeg_command, plan_outputs
from sft_cdd import _download, file_name_for, read_urls
from sft_pdfp import _extract_impl as pdf_extract, image_name
from sft_pls import _check_diff_impl, _extract_impl as pls_extract, _small_impl, default_output, free_destination, image_properties, is_grayscale
from sft_pps import _classify_impl, parse_ratio, ratio_folder, remove_empty_dirs
from sft_recmd import _run_impl, collect_directories
from sft_vmd import concat_command, concat_list


def _image(path, size=(8, 8), color=(128, 128, 128), mode="RGB"):
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new(mode, size, color).save(path)
    return path


# --- arep --------------------------------------------------------------------

def test_ffmpeg_command_and_mirrored_outputs(tmp_path):
    src = tmp_path / "in"
    (src / "album").mkdir(parents=True)
    (src / "album" / "track.flac").write_bytes(b"")
    (src / "intro.wav").write_bytes(b"")
    plan = plan_outputs(src, tmp_path / "out", ".mp3")
    assert [(s.name, d.relative_to(tmp_path / "out").as_posix()) for s, d in plan] == [
        ("track.flac", "album/track.mp3"), ("intro.wav", "intro.mp3"),
    ]
    assert ffmpeg_command(src / "intro.wav", tmp_path / "o.mp3", 192, 44100) == [
        "ffmpeg", "-i", str(src / "intro.wav"), "-vn", "-b:a", "192k", "-ar", "44100", str(tmp_path / "o.mp3"), "-y",
    ]


def test_resample_reports_failures(tmp_path, monkeypatch):
    src = tmp_path / "in"
    src.mkdir()
    (src / "good.wav").write_bytes(b"")
    (src / "bad.wav").write_bytes(b"")
    monkeypatch.setattr(sft_arep, "_encode_one", lambda s, d, b, r: s.name == "good.wav")
    result, metrics = sft_arep._resample_impl(str(src), str(tmp_path / "out"))
    assert [s for s, _ in result["converted"]] == [str(src / "good.wav")]
    assert [s for s, _ in result["failed"]] == [str(src / "bad.wav")]
    assert metrics["status"] == "partial"


# --- vmd ---------------------------------------------------------------------

def test_concat_helpers(tmp_path):
    assert concat_list([tmp_path / "a.mp4"]) == f"file '{tmp_path / 'a.mp4'}'\n"
    assert concat_command("list.txt", "out.mp4") == [
        "ffmpeg", "-f", "concat", "-safe", "0", "-i", "list.txt", "-c", "copy", "out.mp4", "-y",
    ]
    assert concat_command("list.txt", "out.mp4", use_nvenc=True)[7:11] == ["-c:v", "h264_nvenc", "-c:a", "copy"]


def test_merge_keeps_only_short_videos(tmp_path, monkeypatch):
    clips = tmp_path / "clips"
    clips.mkdir()
    for name in ("a.mp4", "b.MKV", "c.avi", "notes.txt"):
        (clips / name).write_bytes(b"")
    durations = {"a.mp4": 3.0, "b.MKV": 40.0, "c.avi": None}
    calls = []

    class Done:
        returncode = 0
        stderr = ""

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(sft_vmd, "probe_duration", lambda p: durations[p.name])
    monkeypatch.setattr(sft_vmd.subprocess, "run", lambda cmd, **kw: calls.append(cmd) or Done())
    merged, metrics = sft_vmd._merge_impl(str(clips), max_duration=15, output="out.mp4")
    assert merged == [str(clips / "a.mp4")]
    assert (tmp_path / "video_list.txt").read_text(encoding="utf-8") == f"file '{(clips / 'a.mp4').resolve()}'\n"
    assert calls == [concat_command("video_list.txt", "out.mp4")]
    assert metrics["videos"] == 3


def test_merge_without_short_videos(tmp_path, monkeypatch):
    (tmp_path / "a.mp4").write_bytes(b"")
    monkeypatch.setattr(sft_vmd, "probe_duration", lambda p: 100.0)
    with pytest.raises(AssertionError, match="less than 15"):
        sft_vmd._merge_impl(str(tmp_path), max_duration=15)


# --- recmd -------------------------------------------------------------------

def test_collect_directories_excludes_subtrees(tmp_path):
    for d in ("a/inner", "node_modules/pkg", "b"):
        (tmp_path / d).mkdir(parents=True)
    (tmp_path / "file.txt").write_text("")
    assert [p.name for p in collect_directories(tmp_path)] == ["a", "b", "node_modules"]
    names = [p.relative_to(tmp_path).as_posix() for p in collect_directories(tmp_path, True, "node_")]
    assert names == ["a", "a/inner", "b"]


def test_run_in_every_directory(tmp_path):
    (tmp_path / "one").mkdir()
    (tmp_path / "two").mkdir()
    command = [sys.executable, "-c", "open('marker', 'w').close()"]
    failures, metrics = _run_impl(command, cwd=str(tmp_path))
    assert failures == []
    assert (tmp_path / "one" / "marker").exists() and (tmp_path / "two" / "marker").exists()
    assert metrics["directories"] == 2


def test_missing_command_is_reported(tmp_path):
    (tmp_path / "one").mkdir()
    failures, metrics = _run_impl([str(tmp_path / "no-such-program")], cwd=str(tmp_path))
    assert failures == [(str(tmp_path / "one"), 127)]
    assert metrics["status"] == "partial"


# --- cdd ---------------------------------------------------------------------

def test_file_name_for():
    assert file_name_for("https://example.com/files/report.pdf") == "report.pdf"
    assert file_name_for("https://example.com/files/") == "downloaded_file"


def test_read_urls_skips_blank(tmp_path):
    src = tmp_path / "links.csv"
    src.write_text("url,note\nhttps://a/x.txt,1\n,2\n  https://b/y.txt ,3\n", encoding="utf-8")
    assert read_urls(str(src), "url") == ["https://a/x.txt", "https://b/y.txt"]
    with pytest.raises(AssertionError):
        read_urls(str(src), "link")


def test_download_streams_body(tmp_path):
    def handler(request):
        if request.url.path.endswith("missing.bin"):
            return httpx.Response(404)
        return httpx.Response(200, content=b"payload")

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        target = _download(client, "https://example.com/data.bin", tmp_path)
        assert target.read_bytes() == b"payload"
        with pytest.raises(httpx.HTTPStatusError):
            _download(client, "https://example.com/missing.bin", tmp_path)


# --- pdfp --------------------------------------------------------------------

def test_image_name():
    assert image_name(3, 0, ".jpg") == "3-0.jpg"


def test_extract_pdf_images(tmp_path):
    pdf = tmp_path / "doc.pdf"
    Image.new("RGB", (20, 10), (200, 10, 10)).save(pdf)
    written, metrics = pdf_extract(str(pdf), str(tmp_path / "out"), "png")
    assert written == [str(tmp_path / "out" / "1-0.png")]
    with Image.open(written[0]) as img:
        assert img.size == (20, 10)
    assert metrics["pages"] == 1


# --- pls ---------------------------------------------------------------------

def test_image_classification(tmp_path):
    gray = _image(tmp_path / "gray.png")
    red = _image(tmp_path / "red.png", color=(255, 0, 0))
    clear = _image(tmp_path / "clear.png", color=(1, 2, 3, 0), mode="RGBA")
    stored_gray = _image(tmp_path / "l.png", color=10, mode="L")
    assert is_grayscale(gray, 0.02) and not is_grayscale(red, 0.02)
    assert image_properties(clear) == (False, True)
    assert image_properties(stored_gray) == (True, False)
    margin, _ = _check_diff_impl(str(red), 0.02)
    assert margin > 0


def test_extract_moves_to_sibling_directory(tmp_path):
    pics = tmp_path / "pics"
    _image(pics / "gray.png")
    _image(pics / "sub" / "shade.PNG")
    _image(pics / "red.png", color=(255, 0, 0))
    moved, metrics = pls_extract(str(pics), "gsc")
    out = default_output(pics, "gsc")
    assert out == tmp_path / "pics-gsc"
    assert sorted(Path(m) for m in moved) == [Path("gray.png"), Path("sub") / "shade.PNG"]
    assert sorted(p.name for p in out.iterdir()) == ["gray.png", "shade.PNG"]
    assert (pics / "red.png").exists()
    assert metrics["scanned"] == 3


def test_small_and_free_destination(tmp_path):
    pics = tmp_path / "pics"
    _image(pics / "tiny.png")
    out = tmp_path / "small"
    _image(out / "tiny.png")
    assert free_destination(pics / "tiny.png", out).name == "tiny_1.png"
    moved, _ = _small_impl(str(pics), str(out), size_mb=1)
    assert moved == ["tiny.png"]
    assert (out / "tiny_1.png").exists()


# --- pps ---------------------------------------------------------------------

def test_ratio_helpers():
    assert parse_ratio("0:1") == (0.0, 1.0)
    assert parse_ratio("1.5:") == (1.5, float("inf"))
    ratios = [(0.0, 1.0), (1.0, 8.0)]
    assert ratio_folder(0.5, ratios) == "aspect_0_1"
    assert ratio_folder(1.0, ratios) == "aspect_1_8"
    assert ratio_folder(8.0, ratios) == "other"


def test_classify_by_aspect(tmp_path):
    src = tmp_path / "in"
    _image(src / "wide.png", size=(100, 50))
    _image(src / "nested" / "tall.png", size=(50, 100))
    _image(src / "banner.png", size=(1000, 100))
    (src / "readme.txt").write_text("")
    result, metrics = _classify_impl(str(src), str(tmp_path / "out"), move=True, clean=True, threads=2)
    out = (tmp_path / "out").resolve()
    assert result["counts"] == {"aspect_0_1": 1, "aspect_1_8": 1, "other": 1}
    assert (out / "aspect_0_1" / "nested" / "tall.png").exists()
    assert (out / "other" / "banner.png").exists()
    assert not (src / "nested").exists()
    assert metrics["images"] == 3
    with pytest.raises(AssertionError, match="already exists"):
        _classify_impl(str(src), str(tmp_path / "out"))


def test_remove_empty_dirs(tmp_path):
    (tmp_path / "a" / "b").mkdir(parents=True)
    (tmp_path / "c").mkdir()
    (tmp_path / "c" / "keep").write_text("")
    removed = remove_empty_dirs(tmp_path)
    assert removed == [str(tmp_path / "a" / "b"), str(tmp_path / "a")]
