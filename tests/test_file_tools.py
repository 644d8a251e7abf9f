import json

import pytest

from sft_cpr import _sync_impl, matching_pairs
from sft_mpr import _renumber_impl, image_references, rewrite_references
from sft_pmov import _bucket_impl, next_target, plan_buckets
from sft_reduce import CollisionError, _flatten_impl, next_free_name, resolve_collision
from sft_renm import _rename_impl, _restore_impl, plan_renames
from sft_rpl import _replace_impl
from sft_sufk import find_unpaired
from sft_sz import _list_impl, human_size


def test_find_unpaired_matches_extension_case_insensitively(tmp_path):
    for name in ("a.pdf", "b.PDF", "c.pdf", "c.txt", "d.doc"):
        (tmp_path / name).write_text("x")
    assert [p.name for p in find_unpaired(tmp_path, "pdf", "txt")] == ["a.pdf", "b.PDF"]


def test_human_size():
    assert human_size(512) == "512 B"
    assert human_size(2048) == "2.00 KiB"
    assert human_size(5 * 1024 ** 3) == "5.00 GiB"


def test_list_sorts_largest_first(tmp_path):
    (tmp_path / "small.bin").write_bytes(b"x" * 10)
    big = tmp_path / "big"
    big.mkdir()
    (big / "inner.bin").write_bytes(b"x" * 100)
    rows, metrics = _list_impl(str(tmp_path))
    assert [r["size"] for r in rows] == [100, 10]
    assert rows[0]["is_dir"]
    assert metrics["total_bytes"] == 110


def test_sync_copies_reference_content_over_matches(tmp_path):
    target, reference = tmp_path / "t", tmp_path / "r"
    (target / "sub").mkdir(parents=True)
    (reference / "sub").mkdir(parents=True)
    (target / "sub" / "f.txt").write_text("old")
    (target / "only-target.txt").write_text("keep")
    (reference / "sub" / "f.txt").write_text("new")
    (reference / "only-ref.txt").write_text("ignored")
    assert len(matching_pairs(target, reference)) == 1
    _, metrics = _sync_impl(str(target), str(reference), progress=False)
    assert (target / "sub" / "f.txt").read_text() == "new"
    assert (target / "only-target.txt").read_text() == "keep"
    assert not (target / "only-ref.txt").exists()
    assert metrics["copied"] == 1


def test_rename_then_restore(tmp_path, monkeypatch):
    work = tmp_path / "files"
    work.mkdir()
    for name in ("b.jpg", "a.png", "c"):
        (work / name).write_text(name)
    map_file = tmp_path / "map.json"

    assert [new.name for _, new in plan_renames(work)] == ["1.png", "2.jpg", "3"]
    mapping, _ = _rename_impl(str(work), str(map_file))
    assert mapping == {"a.png": "1.png", "b.jpg": "2.jpg", "c": "3"}
    assert json.loads(map_file.read_text(encoding="utf-8")) == mapping
    assert (work / "2.jpg").read_text() == "b.jpg"

    missing, _ = _restore_impl(str(work), str(map_file))
    assert missing == []
    assert sorted(p.name for p in work.iterdir()) == ["a.png", "b.jpg", "c"]


def test_rename_refuses_to_clobber(tmp_path):
    (tmp_path / "a.txt").write_text("a")
    (tmp_path / "b.txt").write_text("b")
    (tmp_path / "2").write_text("existing")
    with pytest.raises(AssertionError):
        _rename_impl(str(tmp_path), str(tmp_path / "map.json"), ignore_extension=True)


def test_next_free_name(tmp_path):
    (tmp_path / "f.txt").write_text("")
    (tmp_path / "f_1.txt").write_text("")
    assert next_free_name(tmp_path / "f.txt").name == "f_2.txt"


def test_resolve_collision_strategies(tmp_path):
    src = tmp_path / "src.txt"
    dest = tmp_path / "dest.txt"
    src.write_text("s")
    assert resolve_collision(src, dest, "halt") == dest
    dest.write_text("d")
    assert resolve_collision(src, dest, "auto").name == "dest_1.txt"
    with pytest.raises(CollisionError):
        resolve_collision(src, dest, "halt")
    assert resolve_collision(src, dest, "override") == dest
    assert not dest.exists()


def test_flatten_moves_children_up_and_cleans(tmp_path):
    (tmp_path / "a").mkdir()
    (tmp_path / "b").mkdir()
    (tmp_path / "a" / "x.txt").write_text("1")
    (tmp_path / "b" / "x.txt").write_text("2")
    _, metrics = _flatten_impl(str(tmp_path), str(tmp_path), depth=1, strategy="auto")
    names = sorted(p.name for p in tmp_path.iterdir())
    assert names == ["x.txt", "x_1.txt"]
    assert metrics["moved"] == 2
    assert metrics["removed_dirs"] == 2


def test_replace_turns_directories_into_files(tmp_path):
    d = tmp_path / "project.d"
    d.mkdir()
    (d / "inner.txt").write_text("x")
    messages, metrics = _replace_impl([str(d), str(tmp_path / "missing")])
    assert (tmp_path / "project").is_file()
    assert not d.exists()
    assert metrics["converted"] == 1
    assert metrics["failed"] == 1
    assert any("not a valid directory" in m for m in messages)


def test_next_target_and_plan_buckets(tmp_path):
    target = tmp_path / "archive"
    assert next_target(target).name == "1th"
    (target / "3th").mkdir(parents=True)
    (target / "notes").mkdir()
    assert next_target(target).name == "4th"

    dirs = []
    for name, count in (("a_1", 2), ("b_2", 2), ("c_3", 1)):
        d = tmp_path / "src" / name
        d.mkdir(parents=True)
        for i in range(count):
            (d / f"{i}.jpg").write_text("")
        dirs.append(d)
    assert [[d.name for d in b] for b in plan_buckets(dirs, 3)] == [["a_1", "b_2"], ["c_3"]]


def test_bucket_moves_uid_directories(tmp_path):
    src = tmp_path / "src"
    for name in ("a_1", "b_2", "plain"):
        (src / name).mkdir(parents=True)
        (src / name / "f").write_text("")
    report, metrics = _bucket_impl(str(src), str(tmp_path / "dst"), min_bucket_size=1)
    assert [moved for _, moved in report] == [1, 1]
    assert (tmp_path / "dst" / "1th" / "a_1").is_dir()
    assert (tmp_path / "dst" / "2th" / "b_2").is_dir()
    assert (src / "plain").is_dir()
    assert metrics["detected"] == 2


def test_image_reference_rewrite():
    md = "![one](images/a.png) text ![](images/b.jpg) ![ext](http://x/y.png)"
    assert image_references(md) == ["images/a.png", "images/b.jpg", "http://x/y.png"]
    out = rewrite_references(md, {"images/a.png": "images/1.png"})
    assert out == "![one](images/1.png) text ![](images/b.jpg) ![ext](http://x/y.png)"


def test_renumber_directory(tmp_path):
    doc = tmp_path / "doc1"
    (doc / "images").mkdir(parents=True)
    (doc / "images" / "shot.png").write_bytes(b"a")
    (doc / "images" / "1.png").write_bytes(b"taken")
    (doc / "notes.md").write_text("![a](images/shot.png)\n![b](images/gone.png)\n", encoding="utf-8")
    (tmp_path / "broken").mkdir()

    results, metrics = _renumber_impl(str(tmp_path), start=1)
    by_dir = {r["dir"]: r for r in results}
    ok = by_dir[str(doc)]
    assert ok["ok"]
    assert ok["missing"] == [str(doc / "images" / "gone.png")]
    assert (doc / "images" / "2.png").read_bytes() == b"a"
    assert "![a](images/2.png)" in (doc / "notes.md").read_text(encoding="utf-8")
    assert by_dir[str(tmp_path / "broken")]["error"] == "No .md file found"
    assert metrics["failed"] == 1
