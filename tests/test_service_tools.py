import json
import subprocess
import zipfile

import httpx
import pytest

import sft_ag
import sft_bpdf
from sft_ag import format_models, load_config, parse_stream_line, pick_model, resolve_settings, save_model
from sft_bpdf import chunked, collect_pdfs
from sft_facm import (
    ModEntry,
    _export_impl,
    _import_impl,
    _install_impl,
    _move_impl,
    latest_versions,
    mod_entries,
    outdated,
    package_folder,
    read_mod_list,
)


# --- ag ----------------------------------------------------------------------

def test_config_file_round_trip(tmp_path):
    path = tmp_path / "cli" / "config.toml"
    assert load_config(str(path)) == {}
    assert path.exists()
    path.write_text('api_key = "k"  # secret\n', encoding="utf-8")
    save_model(str(path), "gpt-4o")
    assert load_config(str(path)) == {"api_key": "k", "model": "gpt-4o"}
    assert "# secret" in path.read_text(encoding="utf-8")


def test_settings_precedence(monkeypatch):
    config = {"api_key": "file-key", "model": "file-model"}
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_HOST", raising=False)
    monkeypatch.setenv("OPENAI_MODEL", "env-model")
    settings = resolve_settings(config, host="http://local/v1")
    assert settings == {"api_key": "file-key", "api_host": "http://local/v1", "model": "env-model"}
    assert resolve_settings(config, model="flag-model")["model"] == "flag-model"
    monkeypatch.delenv("OPENAI_MODEL")
    assert resolve_settings({})["api_host"] == "https://api.openai.com/v1"


def test_parse_stream_line():
    chunk = {"choices": [{"delta": {"content": "Hel"}}, {"delta": {"content": "lo"}}]}
    assert parse_stream_line("data: " + json.dumps(chunk)) == "Hello"
    assert parse_stream_line("data: [DONE]") == ""
    assert parse_stream_line(": keep-alive") == ""
    assert parse_stream_line('data: {"choices": [{"delta": {"role": "assistant"}}]}') == ""


def test_pick_model_and_format():
    models = [
        {"id": "new", "owned_by": "org", "created": 1704067200},
        {"id": "old", "owned_by": "system", "created": 0},
    ]
    assert pick_model("1", models) == "old"
    assert pick_model("my-model", models) == "my-model"
    with pytest.raises(AssertionError):
        pick_model("5", models)
    lines = format_models(models).splitlines()
    assert lines[0].split() == ["Index", "ID", "Owned", "By", "Created"]
    assert lines[1].split() == ["0", "new", "org", "2024-01-01"]


def _mock_client(handler):
    def factory(settings):
        return httpx.Client(base_url=settings["api_host"], transport=httpx.MockTransport(handler))
    return factory


def test_models_sorted_and_pinned(tmp_path, monkeypatch):
    def handler(request):
        assert request.url.path == "/v1/models"
        return httpx.Response(200, json={"data": [{"id": "a", "created": 1}, {"id": "b", "created": 5}]})

    monkeypatch.setattr(sft_ag, "_client", _mock_client(handler))
    settings = {"api_key": "k", "api_host": "https://api.test/v1", "model": None}
    models, metrics = sft_ag._models_impl(settings)
    assert [m["id"] for m in models] == ["b", "a"]
    config = tmp_path / "config.toml"
    model, _ = sft_ag._pin_impl(settings, "1", str(config))
    assert model == "a"
    assert load_config(str(config))["model"] == "a"


def test_chat_streams_deltas(monkeypatch):
    sent = {}

    def handler(request):
        sent.update(json.loads(request.content))
        body = "".join(
            f"data: {json.dumps({'choices': [{'delta': {'content': piece}}]})}\n\n" for piece in ("Hi", " there")
        ) + "data: [DONE]\n\n"
        return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

    monkeypatch.setattr(sft_ag, "_client", _mock_client(handler))
    settings = {"api_key": "k", "api_host": "https://api.test/v1", "model": "m"}
    text, metrics = sft_ag._chat_impl(settings, "hello", max_tokens=10)
    assert text == "Hi there"
    assert sent["stream"] is True and sent["messages"] == [{"role": "user", "content": "hello"}]
    assert metrics["chars"] == 8


def test_chat_requires_model():
    with pytest.raises(AssertionError, match="Model is required"):
        sft_ag._chat_impl({"api_key": "k", "api_host": "https://api.test", "model": None}, "hi")


# --- facm --------------------------------------------------------------------

def _mods(tmp_path, *names):
    mods = tmp_path / "mods"
    mods.mkdir(exist_ok=True)
    for name in names:
        (mods / name).write_bytes(b"zip")
    return mods


def test_mod_entries_and_latest(tmp_path):
    mods = _mods(tmp_path, "helmod_1.2.10.zip", "helmod_1.2.9.zip", "flib_0.1.0.zip", "notes.zip")
    entries = mod_entries(mods)
    assert sorted((e.name, e.version) for e in entries) == [
        ("flib", "0.1.0"), ("helmod", "1.2.10"), ("helmod", "1.2.9"),
    ]
    assert latest_versions(entries)["helmod"].version == "1.2.10"
    assert [e.path.name for e in outdated(entries)] == ["helmod_1.2.9.zip"]
    assert ModEntry.from_path(mods / "notes.zip") is None


def test_move_outdated(tmp_path):
    mods = _mods(tmp_path, "a_1.0.0.zip", "a_0.9.0.zip")
    result, _ = _move_impl(str(mods), str(tmp_path / "old"))
    assert [dst for _, dst in result["moved"]] == [str(tmp_path / "old" / "a_0.9.0.zip")]
    assert (mods / "a_1.0.0.zip").exists()


def test_read_mod_list_ignores_malformed(tmp_path):
    path = tmp_path / "mod-list.json"
    path.write_text(json.dumps({"mods": [{"name": "base", "enabled": True}, {"name": "x"}, {"enabled": False}]}))
    assert read_mod_list(path) == {"base": True}
    assert read_mod_list(tmp_path / "missing.json") == {}


def test_export_then_import(tmp_path):
    mods = _mods(tmp_path, "on_1.0.0.zip", "off_1.0.0.zip")
    (mods / "mod-list.json").write_text(json.dumps({"mods": [
        {"name": "on", "enabled": True}, {"name": "off", "enabled": False},
    ]}))
    archive = tmp_path / "export" / "enabled.zip"
    result, metrics = _export_impl(str(mods), str(archive), include_settings=True)
    assert result["missing"] == ["mod-settings.dat"]
    assert metrics["status"] == "partial"
    with zipfile.ZipFile(archive) as zf:
        assert sorted(zf.namelist()) == ["mod-list.json", "on_1.0.0.zip"]

    fresh = tmp_path / "fresh"
    fresh.mkdir()
    names, _ = _import_impl(str(archive), str(fresh))
    assert sorted(names) == ["mod-list.json", "on_1.0.0.zip"]
    assert (fresh / "on_1.0.0.zip").read_bytes() == b"zip"


def test_package_and_install_folder(tmp_path):
    mods = _mods(tmp_path)
    folder = tmp_path / "src" / "my-mod"
    (folder / "graphics").mkdir(parents=True)
    (folder / "info.json").write_text(json.dumps({"name": "my-mod", "version": "0.2.0"}))
    (folder / "graphics" / "icon.png").write_bytes(b"png")
    installed, _ = _install_impl(str(folder), str(mods))
    assert installed == str(mods / "my-mod_0.2.0.zip")
    with zipfile.ZipFile(installed) as zf:
        assert sorted(zf.namelist()) == ["my-mod/graphics/icon.png", "my-mod/info.json"]

    broken = tmp_path / "broken"
    broken.mkdir()
    (broken / "info.json").write_text(json.dumps({"name": "broken"}))
    with pytest.raises(AssertionError, match="version"):
        package_folder(broken, mods)


def test_install_rejects_bad_names(tmp_path):
    mods = _mods(tmp_path)
    bad = tmp_path / "random.zip"
    bad.write_bytes(b"")
    with pytest.raises(AssertionError, match="Invalid mod file name"):
        _install_impl(str(bad), str(mods))
    good = tmp_path / "thing_1.0.0.zip"
    good.write_bytes(b"")
    path, _ = _install_impl(str(good), str(mods))
    assert path == str(mods / "thing_1.0.0.zip") and not good.exists()


# --- bpdf --------------------------------------------------------------------

def test_chunked_and_collect(tmp_path):
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    (tmp_path / "sub").mkdir()
    (tmp_path / "b.pdf").write_bytes(b"")
    (tmp_path / "sub" / "a.pdf").write_bytes(b"")
    (tmp_path / "c.txt").write_bytes(b"")
    assert collect_pdfs(tmp_path) == [tmp_path / "b.pdf", tmp_path / "sub" / "a.pdf"]
    with pytest.raises(AssertionError, match="not a PDF"):
        collect_pdfs(tmp_path / "c.txt")


def test_convert_copies_chunks(tmp_path, monkeypatch):
    src = tmp_path / "pdfs"
    src.mkdir()
    for name in ("a.pdf", "b.pdf", "c.pdf"):
        (src / name).write_bytes(b"%PDF")
    seen = []

    def fake_convert(chunk_dir, output):
        seen.append(sorted(p.name for p in chunk_dir.iterdir()))
        return subprocess.CompletedProcess([], 0 if chunk_dir.name == "chunk_1" else 1, "", "boom")

    monkeypatch.setattr(sft_bpdf, "_convert_chunk", fake_convert)
    out = tmp_path / "out"
    failed, metrics = sft_bpdf._convert_impl(str(src), str(out), chunk_size=2)
    assert seen == [["a.pdf", "b.pdf"], ["c.pdf"]]
    assert failed == [str(out / "chunk_2")]
    assert metrics["chunks"] == 2 and metrics["status"] == "partial"
