from pathlib import Path

from sft_am import _collect_impl, last_segment
from sft_onize import _merge_impl, file_number
from sft_rstrip import _strip_impl, truncate_lines
from sft_wprune import prune_text


def test_last_segment():
    assert last_segment("a//b//c", "//") == "c"
    assert last_segment("abc", "//") is None
    assert last_segment("abc//", "//") == ""


def test_collect_joins_segments_and_reports_skips(tmp_path):
    (tmp_path / "1.txt").write_text("intro\n最终概述：one", encoding="utf-8")
    (tmp_path / "2.txt").write_text("no marker here", encoding="utf-8")
    (tmp_path / "3.txt").write_text("最终概述：", encoding="utf-8")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "4.txt").write_text("x最终概述：two", encoding="utf-8")
    out = tmp_path / "summary.out"
    skipped, metrics = _collect_impl(str(tmp_path), output=str(out))
    assert out.read_text(encoding="utf-8") == "one;two"
    assert metrics["collected"] == 2
    assert len(skipped) == 2


def test_file_number_orders_numerically():
    assert file_number("chapter10.txt") == 10
    assert file_number("readme.txt") == 0


def test_merge_uses_numeric_order_and_skips_output(tmp_path):
    for name, body in (("10.txt", "ten"), ("2.txt", "two"), ("1.txt", "one")):
        (tmp_path / name).write_text(body, encoding="utf-8")
    out = tmp_path / "output.txt"
    out.write_text("stale", encoding="utf-8")
    _merge_impl(str(out), str(tmp_path))
    assert out.read_text(encoding="utf-8") == "one\ntwo\nten\n"


def test_truncate_stops_at_first_delimiter():
    lines = ["keep", "half // drop", "never"]
    assert truncate_lines(lines, "//") == ["keep", "half "]
    assert truncate_lines(["a", "b"], "//") == ["a", "b"]


def test_strip_writes_only_matching_extension(tmp_path):
    src = tmp_path / "in"
    src.mkdir()
    (src / "a.txt").write_text("x\ny // z\nw\n", encoding="utf-8")
    (src / "b.md").write_text("untouched", encoding="utf-8")
    out = tmp_path / "out"
    processed, _ = _strip_impl(str(src), "txt", str(out), "//")
    assert [Path(p).name for p in processed] == ["a.txt"]
    assert (out / "a.txt").read_text(encoding="utf-8") == "x\ny \n"
    assert not (out / "b.md").exists()


def test_prune_removes_selected_marks():
    text = "# Title\n## Sub\n- **bold** item"
    assert prune_text(text, headings=True) == "Title\nSub\n- **bold** item"
    assert prune_text(text, stars=True, hyphens=True) == "# Title\n## Sub\nbold item"
    assert prune_text(text) == text
