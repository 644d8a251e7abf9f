from pathlib import Path

import pandas as pd
import pytest

import sft_avd
import sft_xect
from sft_adconv import _convert_impl, detect_timestamp, to_long
from sft_avd import already_downloaded, downloader_options, pause_seconds, read_rows, remove_numeric_dirs
from sft_mf import _merge_impl as merge_folders, candidates, merge_into, similarity, strip_brackets, uid
from sft_pam import _audit_impl, _eradicate_impl, _merge_impl as merge_media, merge_target, should_copy
from sft_startups import _list_impl as list_startups, _remove_impl, capitalize_first, create_script, find_shortcut, shortcut_name
from sft_thernam import DOC_TYPES, _rename_impl as copy_documents, list_files, new_filename
from sft_xect import GarbroError, find_archives, split_for_conversion, tool


# --- mf ----------------------------------------------------------------------

def test_name_helpers():
    assert strip_brackets("Song [HD] (live)") == "Song  "
    assert strip_brackets("Track (2021)") == "Track (2021)"
    assert uid("artist 1234567 extra") == 1234567
    assert uid("short 12345") is None


def test_similarity_and_candidates():
    assert similarity("Artist (live)", "Artist") > 0.8
    assert similarity("abc 1234567", "totally different 1234567") == 1.0
    options = candidates("Artist (live)", ["Other", "Artist", "Artiste"], 0.6)
    assert [name for name, _ in options][0] == "Artist"
    assert "Other" not in [name for name, _ in options]
    assert all(score >= 60 for _, score in options)


def test_merge_into_never_overwrites(tmp_path):
    src, dst = tmp_path / "src", tmp_path / "dst"
    (src / "disc").mkdir(parents=True)
    (dst / "disc").mkdir(parents=True)
    (src / "a.txt").write_text("new")
    (src / "disc" / "b.txt").write_text("new")
    (src / "disc" / "c.txt").write_text("new")
    (dst / "disc" / "b.txt").write_text("old")
    assert merge_into(src, dst) == (2, 1)
    assert (dst / "a.txt").read_text() == "new"
    assert (dst / "disc" / "b.txt").read_text() == "old"
    assert (src / "disc" / "b.txt").exists()


def test_merge_folders_unattended(tmp_path):
    src, dst = tmp_path / "src", tmp_path / "dst"
    (src / "Artist (live)").mkdir(parents=True)
    (src / "Brand New").mkdir()
    (dst / "Artist").mkdir(parents=True)
    (src / "Artist (live)" / "one.mp3").write_text("")
    (src / "Brand New" / "two.mp3").write_text("")
    report, metrics = merge_folders(str(src), str(dst), create=True, yes=True)
    assert [(r["source"], r["target"]) for r in report] == [("Artist (live)", "Artist"), ("Brand New", "Brand New")]
    assert (dst / "Artist" / "one.mp3").exists()
    assert (dst / "Brand New" / "two.mp3").exists()
    assert not (src / "Artist (live)").exists()
    assert metrics["status"] == "success"


# --- pam ---------------------------------------------------------------------

def test_audit_flags_sparse_folders(tmp_path):
    (tmp_path / "few").mkdir()
    (tmp_path / "many").mkdir()
    for i in range(2):
        (tmp_path / "few" / f"{i}.jpg").write_bytes(b"")
    (tmp_path / "few" / "upper.JPG").write_bytes(b"")
    for i in range(5):
        (tmp_path / "many" / f"{i}.mp4").write_bytes(b"")
    flagged, _ = _audit_impl(str(tmp_path), min_count=5)
    assert flagged == [(str(tmp_path / "few"), 2)]


def test_eradicate_removes_non_media(tmp_path):
    artist = tmp_path / "lib1" / "name_42"
    artist.mkdir(parents=True)
    (artist / "keep.png").write_bytes(b"")
    (artist / "junk.txt").write_text("")
    removed, metrics = _eradicate_impl([str(tmp_path / "lib*")])
    assert removed == [str(artist / "junk.txt")]
    assert (artist / "keep.png").exists() and not (artist / "junk.txt").exists()
    assert metrics["directories"] == 1


def test_merge_target_and_should_copy(tmp_path):
    out = tmp_path / "out"
    (out / "renamed_42").mkdir(parents=True)
    photo = tmp_path / "lib" / "name_42" / "p.jpg"
    photo.parent.mkdir(parents=True)
    photo.write_bytes(b"12345")
    assert merge_target(photo, out) == out / "renamed_42"
    assert merge_target(tmp_path / "lib" / "other_7" / "q.jpg", out) == out / "other_7"
    assert should_copy(photo, out / "renamed_42")
    (out / "renamed_42" / "p.jpg").write_bytes(b"12345")
    assert not should_copy(photo, out / "renamed_42")


def test_merge_media_copies_into_existing_folder(tmp_path):
    out = tmp_path / "out"
    (out / "old_42").mkdir(parents=True)
    lib = tmp_path / "lib" / "new_42"
    lib.mkdir(parents=True)
    (lib / "a.jpg").write_bytes(b"abc")
    (lib / "b.doc").write_bytes(b"abc")
    result, _ = merge_media([str(tmp_path / "lib")], str(out), cut=True)
    assert result == {"processed": 1, "skipped": 0}
    assert (out / "old_42" / "a.jpg").read_bytes() == b"abc"
    assert not (lib / "a.jpg").exists()


# --- adconv ------------------------------------------------------------------

def test_detect_timestamp():
    assert detect_timestamp(["Timestamp", "v"]) == "Timestamp"
    assert detect_timestamp(["time", "v"]) is None


def test_to_long_multiple_is_row_major():
    df = pd.DataFrame({"timestamp": ["t0", "t1"], "a": ["1", "2"], "b": ["3", "4"]})
    out = to_long(df, "timestamp", ["a", "b"], "multiple")
    assert out.values.tolist() == [["a", "t0", "1"], ["b", "t0", "3"], ["a", "t1", "2"], ["b", "t1", "4"]]
    assert list(out.columns) == ["item_id", "timestamp", "target"]


def test_to_long_single_groups_rows():
    df = pd.DataFrame({"ts": ["t0", "t1", "t2"], "v": ["1", "2", "3"]})
    out = to_long(df, "ts", ["v"], "single", group_size=2)
    assert out.values.tolist() == [["0", "t0", "1"], ["0", "t1", "2"], ["1", "t2", "3"]]
    with pytest.raises(AssertionError):
        to_long(df, "ts", ["ts"], "single")


def test_convert_csv(tmp_path):
    src = tmp_path / "wide.csv"
    src.write_text("timestamp,a,b\n2024-01-01,1,2\n", encoding="utf-8")
    out = tmp_path / "long.csv"
    records, metrics = _convert_impl(str(src), str(out), "timestamp", ["a", "b"], "multiple")
    assert records == 1 and metrics["rows_written"] == 2
    assert out.read_text(encoding="utf-8").splitlines() == [
        "item_id,timestamp,target", "a,2024-01-01,1", "b,2024-01-01,2",
    ]


# --- thernam -----------------------------------------------------------------

def test_new_filename():
    assert new_filename(1, "2020123", "张三", "任务书", Path("draft.pdf")) == "1-2020123张三[任务书].pdf"


def test_copy_documents_keeps_type_numbering(tmp_path):
    src = tmp_path / "in"
    src.mkdir()
    (src / "a.docx").write_text("a")
    (src / "b.pdf").write_text("b")
    files = list_files(src)
    choices = {DOC_TYPES[0]: files[0], "教师中期检查表": files[1]}
    written, metrics = copy_documents(str(src), str(tmp_path / "out"), "42", "李四", choices)
    assert [Path(p).name for p in written] == ["1-42李四[任务书].docx", "6-42李四[教师中期检查表].pdf"]
    assert metrics["copied"] == 2
    (tmp_path / "empty").mkdir()
    with pytest.raises(AssertionError, match="No files found"):
        list_files(tmp_path / "empty")


# --- avd ---------------------------------------------------------------------

def test_download_helpers(tmp_path):
    assert pause_seconds(5) == 2
    assert 4 <= pause_seconds(9) <= 6
    assert downloader_options("wd", {"audio_only": True, "skip_sub": True, "video_only": False}) == [
        "--work-dir", "wd", "--audio-only", "--skip-subtitle",
    ]
    (tmp_path / "Title.mp4").write_bytes(b"")
    assert already_downloaded(tmp_path, "Title")
    assert not already_downloaded(tmp_path, "Other")
    (tmp_path / "12345").mkdir()
    (tmp_path / "keep").mkdir()
    assert remove_numeric_dirs(tmp_path) == [str(tmp_path / "12345")]


def test_read_rows_skips_bad_files(tmp_path):
    good = tmp_path / "good.csv"
    good.write_text("url,title\nhttps://v/1,One\n", encoding="utf-8")
    bad = tmp_path / "bad.csv"
    bad.write_text("link,name\nx,y\n", encoding="utf-8")
    assert read_rows([str(good), str(bad), str(tmp_path / "gone.csv")], "url", "title") == [("https://v/1", "One")]


def test_download_range(tmp_path, monkeypatch):
    rows = [("u0", "done"), ("u1", "ok"), ("u2", "broken"), ("u3", "later")]
    (tmp_path / "done").mkdir()
    called = []
    monkeypatch.setattr(sft_avd, "_run_downloader", lambda options, url: called.append(url) or url != "u2")
    monkeypatch.setattr(sft_avd.time, "sleep", lambda s: None)
    result, metrics = sft_avd._download_impl(rows, 0, 3, work_dir=str(tmp_path))
    assert called == ["u1", "u2"]
    assert result["downloaded"] == 1 and result["failed"] == ["u2"]
    assert metrics["skipped"] == 1 and metrics["status"] == "partial"


# --- xect --------------------------------------------------------------------

def test_garbro_helpers(tmp_path):
    assert tool("/opt/garbro", "console_cmd") == str(Path("/opt/garbro") / "GARbro.Console.exe")
    raw, ready = split_for_conversion([Path("a.tlg"), Path("b.png"), Path("c.jpeg")])
    assert raw == [Path("a.tlg")] and ready == [Path("b.png"), Path("c.jpeg")]
    (tmp_path / "d").mkdir()
    (tmp_path / "d" / "x.dpak").write_bytes(b"")
    (tmp_path / "y.arc").write_bytes(b"")
    assert find_archives([tmp_path], "dpak") == [tmp_path / "d" / "x.dpak"]


def test_all_extracts_then_converts(tmp_path, monkeypatch):
    game = tmp_path / "game"
    game.mkdir()
    (game / "data.dpak").write_bytes(b"")
    out = tmp_path / "out"
    commands = []

    def fake_run(cmd, cwd, verbose, failure):
        commands.append(cmd[1])
        if cmd[1] == "-x":
            (cwd / "bg.tlg").write_bytes(b"")
            (cwd / "cg.png").write_bytes(b"png")
        else:
            (cwd / "bg.png").write_bytes(b"converted")

    monkeypatch.setattr(sft_xect, "_run", fake_run)
    result, _ = sft_xect._all_impl("/opt/garbro", [str(game)], "dpak", str(out))
    assert result == {"archives": 1, "converted": 1, "copied": 1}
    assert commands == ["-x", "-t"]
    assert sorted(p.name for p in out.iterdir()) == ["bg.png", "cg.png"]


def test_missing_garbro_binary(tmp_path):
    pic = tmp_path / "a.tlg"
    pic.write_bytes(b"")
    with pytest.raises(GarbroError):
        sft_xect._ic_impl(str(tmp_path / "nowhere"), [str(pic)])


# --- startups ----------------------------------------------------------------

def test_shortcut_naming():
    assert capitalize_first("sync") == "Sync"
    assert capitalize_first("") == ""
    assert shortcut_name(Path("C:/Tools/backup.exe"), None) == "Backup"
    assert shortcut_name(Path("C:/Tools/backup.exe"), "nightly") == "Nightly"


def test_create_script_quotes_paths():
    script = create_script(Path("C:/Startup/It's.lnk"), Path("C:/Tools/a.exe"), Path("C:/Tools"))
    assert "CreateShortcut('" in script
    assert "It''s.lnk'" in script
    assert script.endswith("$s.Save()")


def test_list_find_and_remove(tmp_path, monkeypatch):
    monkeypatch.setenv("APPDATA", str(tmp_path))
    folder = tmp_path / "Microsoft" / "Windows" / "Start Menu" / "Programs" / "Startup"
    folder.mkdir(parents=True)
    (folder / "Sync.lnk").write_bytes(b"")
    (folder / "desktop.ini").write_text("")
    names, _ = list_startups()
    assert names == ["Sync"]
    assert find_shortcut(folder, "sync") == folder / "Sync.lnk"
    assert _remove_impl("sync")[0] is True
    assert _remove_impl("sync")[0] is False
