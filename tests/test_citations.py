from sft_ciklen import strip_citations
from sft_corda import reorder_citations
from sft_hive import _count_impl, _format_stats


def test_count_orders_by_frequency(tmp_path):
    doc = tmp_path / "paper.typ"
    doc.write_text("a #cite(x) b #cite(y) c #cite(y) #cite(z)#cite(y)", encoding="utf-8")
    stats, metrics = _count_impl(str(doc))
    assert list(stats.items())[0] == ("y", 3)
    assert stats == {"y": 3, "x": 1, "z": 1}
    assert metrics["total_citations"] == 5
    assert _format_stats({"y": 3}).splitlines() == ["Statistics for citations:", "y: 3"]


def test_strip_keeps_marker_after_deng():
    text = "张三等#cite(a)发现，见#cite(b)。"
    cleaned, removed = strip_citations(text)
    assert cleaned == "张三等#cite(a)发现，见。"
    assert removed == 1


def test_strip_marker_at_start_of_text():
    cleaned, removed = strip_citations("#cite(a) opening")
    assert cleaned == " opening"
    assert removed == 1


def test_reorder_sorts_adjacent_block_by_first_appearance():
    text = "#cite(<b>) then #cite(<a>). Later #cite(<a>)#cite(<b>) and #cite(<c>)#cite(<b>)"
    out, unique, blocks = reorder_citations(text)
    assert out == "#cite(<b>) then #cite(<a>). Later #cite(<b>)#cite(<a>) and #cite(<b>)#cite(<c>)"
    assert unique == 3
    assert blocks == 4


def test_reorder_leaves_separated_markers_alone():
    text = "#cite(<z>) x #cite(<a>)"
    out, _, blocks = reorder_citations(text)
    assert out == text
    assert blocks == 2
