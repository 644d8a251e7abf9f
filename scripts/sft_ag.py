#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "httpx>=0.27",
#     "tomlkit>=0.12",
#     "fastmcp",
# ]
# ///
"""Command-line client for OpenAI-compatible chat APIs.

Settings resolve in order: command-line flag, environment variable, then the
TOML config file (``~/.config/openai-cli/config.toml`` by default, created
empty on first use). ``pin`` stores the chosen model in that file.

Usage:
    sft_ag.py chat "Explain TCP slow start"
    sft_ag.py models
    sft_ag.py pin 3
    sft_ag.py pin gpt-4o-mini
    sft_ag.py mcp-stdio
"""

import argparse
import json
import os
import sys
import time
from datetime import datetime, timezone
from pathlib import Path


# =============================================================================
# LOGGING
# =============================================================================
_LEVELS = {"TRACE": 5, "DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40, "FATAL": 50}
_THRESHOLD = _LEVELS.get(os.environ.get("EBOX_LOG_LEVEL", "INFO"), 20)
_SCRIPT = Path(__file__).stem
_LOG = Path(os.environ.get("EBOX_LOG_DIR") or Path.home() / ".ebox" / "logs") / f"{_SCRIPT}_log.tsv"
_HEADER = "#timestamp\tscript\tlevel\tevent\tmessage\tdetail\tmetrics\ttrace\n"


def _log(level: str, event: str, msg: str, *, detail: str = "", metrics: str = "", trace: str = ""):
    """Append one TSV line to the tool log. A failing log write is ignored."""
    if _LEVELS.get(level, 20) < _THRESHOLD:
        return
    try:
        _LOG.parent.mkdir(parents=True, exist_ok=True)
        ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
        fresh = not _LOG.exists()
        with open(_LOG, "a", encoding="utf-8") as f:
            if fresh:
                f.write(_HEADER)
            f.write(f"{ts}\t{_SCRIPT}\t{level}\t{event}\t{msg}\t{detail}\t{metrics}\t{trace}\n")
    except Exception:
        pass


# =============================================================================
# CONFIGURATION
# =============================================================================
EXPOSED = ["chat", "models", "pin"]

CONFIG = {
    "version": "0.1.36",
    "config_file": os.environ.get("OPENAI_CONFIG_FILE", "~/.config/openai-cli/config.toml"),
    "api_host": "https://api.openai.com/v1",
    "max_tokens": 1000,
    "temperature": 0.7,
    "top_p": 1.0,
    "timeout_seconds": 120.0,
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def load_config(path: str) -> dict:
    """Read the TOML config, writing an empty one when missing."""
    import tomlkit

    p = Path(path).expanduser()
    if not p.exists():
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(tomlkit.dumps(tomlkit.document()), encoding="utf-8")
        return {}
    return dict(tomlkit.parse(p.read_text(encoding="utf-8")))


def save_model(path: str, model: str):
    import tomlkit

    p = Path(path).expanduser()
    doc = tomlkit.parse(p.read_text(encoding="utf-8")) if p.exists() else tomlkit.document()
    doc["model"] = model
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(tomlkit.dumps(doc), encoding="utf-8")


def resolve_settings(config: dict, key: str | None = None, host: str | None = None, model: str | None = None) -> dict:
    """Flag, then environment, then config file."""
    return {
        "api_key": key or os.environ.get("OPENAI_API_KEY") or config.get("api_key"),
        "api_host": host or os.environ.get("OPENAI_API_HOST") or config.get("api_host") or CONFIG["api_host"],
        "model": model or os.environ.get("OPENAI_MODEL") or config.get("model"),
    }


def _client(settings: dict):
    import httpx

    assert settings["api_key"], "API key is required"
    return httpx.Client(
        base_url=settings["api_host"].rstrip("/"),
        headers={"Authorization": f"Bearer {settings['api_key']}"},
        timeout=CONFIG["timeout_seconds"],
    )


def parse_stream_line(line: str) -> str:
    """Text delta carried by one server-sent-event line, or ''."""
    if not line.startswith("data:"):
        return ""
    payload = line[len("data:"):].strip()
    if not payload or payload == "[DONE]":
        return ""
    chunk = json.loads(payload)
    return "".join((choice.get("delta") or {}).get("content") or "" for choice in chunk.get("choices", []))


def stream_chat(settings: dict, prompt: str, max_tokens: int, temperature: float, top_p: float):
    """Yield response text as it arrives."""
    assert settings["model"], "Model is required"
    body = {
        "model": settings["model"],
        "messages": [{"role": "user", "content": prompt}],
        "max_tokens": max_tokens,
        "temperature": temperature,
        "top_p": top_p,
        "stream": True,
    }
    with _client(settings) as client, client.stream("POST", "/chat/completions", json=body) as resp:
        resp.raise_for_status()
        for line in resp.iter_lines():
            text = parse_stream_line(line)
            if text:
                yield text


def list_models(settings: dict) -> list[dict]:
    """Models sorted newest first."""
    with _client(settings) as client:
        resp = client.get("/models")
        resp.raise_for_status()
        models = resp.json().get("data", [])
    return sorted(models, key=lambda m: m.get("created", 0), reverse=True)


def format_models(models: list[dict]) -> str:
    rows = [("Index", "ID", "Owned By", "Created")]
    for i, m in enumerate(models):
        created = datetime.fromtimestamp(m.get("created", 0), tz=timezone.utc).strftime("%Y-%m-%d")
        rows.append((str(i), m.get("id", ""), m.get("owned_by", ""), created))
    widths = [max(len(r[c]) for r in rows) for c in range(4)]
    return "\n".join("  ".join(cell.ljust(w) for cell, w in zip(r, widths)).rstrip() for r in rows)


def pick_model(choice: str, models: list[dict]) -> str:
    """An all-digit choice indexes the newest-first list; anything else is a model name."""
    if choice.isdigit():
        index = int(choice)
        assert index < len(models), f"Invalid index: {index}"
        return models[index]["id"]
    return choice


def _chat_impl(settings: dict, prompt: str, max_tokens: int = CONFIG["max_tokens"],
               temperature: float = CONFIG["temperature"], top_p: float = CONFIG["top_p"]) -> tuple[str, dict]:
    start_ms = time.time() * 1000
    text = "".join(stream_chat(settings, prompt, max_tokens, temperature, top_p))
    metrics = {"chars": len(text), "latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}
    return text, metrics


def _models_impl(settings: dict) -> tuple[list[dict], dict]:
    start_ms = time.time() * 1000
    models = list_models(settings)
    metrics = {"count": len(models), "latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}
    return models, metrics


def _pin_impl(settings: dict, choice: str, config_file: str) -> tuple[str, dict]:
    start_ms = time.time() * 1000
    models = list_models(settings) if choice.isdigit() else []
    model = pick_model(choice, models)
    save_model(config_file, model)
    metrics = {"latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}
    return model, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Command-line interface for OpenAI-compatible APIs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_ag.py chat "Explain TCP slow start"
  sft_ag.py -m gpt-4o-mini chat -t 0.2 summarize this
  sft_ag.py models
  sft_ag.py pin 0
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("-k", "--key", help="API key (env: OPENAI_API_KEY)")
    parser.add_argument("--host-url", help=f"API base URL (env: OPENAI_API_HOST, default: {CONFIG['api_host']})")
    parser.add_argument("-m", "--model", help="Model (env: OPENAI_MODEL)")
    parser.add_argument("-c", "--config-file", default=CONFIG["config_file"], help="Config file (default: %(default)s)")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_chat = subparsers.add_parser("chat", aliases=["c"], help="Chat with the API")
    p_chat.add_argument("prompt", nargs="+", help="Prompt words")
    p_chat.add_argument("-m", "--max-tokens", type=int, default=CONFIG["max_tokens"], help="Completion token limit (default: %(default)s)")
    p_chat.add_argument("-t", "--temperature", type=float, default=CONFIG["temperature"], help="Sampling temperature 0-2 (default: %(default)s)")
    p_chat.add_argument("-p", "--top-p", type=float, default=CONFIG["top_p"], help="Nucleus sampling mass (default: %(default)s)")

    subparsers.add_parser("models", aliases=["l"], help="List available models")

    p_pin = subparsers.add_parser("pin", aliases=["p"], help="Pin a default model")
    p_pin.add_argument("model", metavar="MODEL", help="Model name or index from `models`")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp(args.config_file)
            return
        if args.command is None:
            parser.print_help()
            return
        settings = resolve_settings(load_config(args.config_file), args.key, args.host_url, args.model)
        if args.command in ("chat", "c"):
            start_ms = time.time() * 1000
            chars = 0
            for text in stream_chat(settings, " ".join(args.prompt), args.max_tokens, args.temperature, args.top_p):
                sys.stdout.write(text)
                sys.stdout.flush()
                chars += len(text)
            print()
            metrics = {"chars": chars, "latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}
            _log("INFO", "chat", f"model={settings['model']}", metrics=json.dumps(metrics))
        elif args.command in ("models", "l"):
            models, metrics = _models_impl(settings)
            print(format_models(models))
            _log("INFO", "models", f"count={len(models)}", metrics=json.dumps(metrics))
        elif args.command in ("pin", "p"):
            model, metrics = _pin_impl(settings, args.model, args.config_file)
            print(f"Pinned model: {model}")
            _log("INFO", "pin", f"model={model}", metrics=json.dumps(metrics))
    except AssertionError as e:
        _log("ERROR", "contract_violation", str(e))
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        _log("ERROR", "runtime_error", str(e))
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


# =============================================================================
# FASTMCP SERVER
# =============================================================================
def _run_mcp(config_file: str):
    from fastmcp import FastMCP

    mcp = FastMCP("ag")

    @mcp.tool()
    def chat(prompt: str, max_tokens: int = CONFIG["max_tokens"], temperature: float = CONFIG["temperature"]) -> str:
        """Send one prompt to the configured model and return the full reply.

        Args:
            prompt: User message
            max_tokens: Completion token limit
            temperature: Sampling temperature 0-2
        """
        try:
            settings = resolve_settings(load_config(config_file))
            text, metrics = _chat_impl(settings, prompt, max_tokens, temperature)
            return json.dumps({"reply": text, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    @mcp.tool()
    def models() -> str:
        """List available models, newest first."""
        try:
            settings = resolve_settings(load_config(config_file))
            result, metrics = _models_impl(settings)
            return json.dumps({"models": [m.get("id") for m in result], "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
