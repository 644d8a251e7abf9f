#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "fastmcp",
# ]
# ///
"""Show the size of every entry directly under a directory, largest first.

Usage:
    sft_sz.py list
    sft_sz.py list ~/Downloads --json
    sft_sz.py list ~/Downloads -e
    sft_sz.py mcp-stdio
"""

import argparse
import json
import os
import subprocess
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
EXPOSED = ["list"]

CONFIG = {
    "version": "0.1.36",
}

_UNITS = ["B", "KiB", "MiB", "GiB", "TiB", "PiB"]


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def human_size(n: int) -> str:
    size = float(n)
    for unit in _UNITS:
        if size < 1024 or unit == _UNITS[-1]:
            return f"{int(size)} {unit}" if unit == "B" else f"{size:.2f} {unit}"
        size /= 1024
    return f"{n} B"


def tree_size(path: Path) -> int:
    """Total bytes of regular files below path (path itself if a file)."""
    if path.is_file():
        return path.stat().st_size
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


def _list_impl(src: str = ".") -> tuple[list[dict], dict]:
    start_ms = time.time() * 1000
    root = Path(src)
    assert root.is_dir(), f"Not a directory: {src}"

    rows = [
        {"path": str(p), "is_dir": p.is_dir(), "size": tree_size(p)}
        for p in root.iterdir()
    ]
    rows.sort(key=lambda r: r["size"], reverse=True)

    metrics = {
        "entries": len(rows),
        "total_bytes": sum(r["size"] for r in rows),
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return rows, metrics


def _format_table(rows: list[dict]) -> str:
    width = max([len("Folder")] + [len(r["path"]) for r in rows])
    lines = [f"{'Folder':<{width}}  Size", f"{'-' * width}  {'-' * 12}"]
    lines.extend(f"{r['path']:<{width}}  {human_size(r['size'])}" for r in rows)
    return "\n".join(lines)


def _open_in_explorer(path: str):
    if sys.platform.startswith("win"):
        cmd = ["explorer", path]
    elif sys.platform == "darwin":
        cmd = ["open", path]
    else:
        cmd = ["xdg-open", path]
    try:
        subprocess.run(cmd, check=False)
    except FileNotFoundError:
        raise RuntimeError(f"File explorer command not found: {cmd[0]}")


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Sizes of the entries in a directory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_sz.py list
  sft_sz.py list ~/Downloads -e
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_list = subparsers.add_parser("list", help="List entries by recursive size")
    p_list.add_argument("src", nargs="?", default=".", help="Directory (default: %(default)s)")
    p_list.add_argument("-e", "--explore-greatest-dir", action="store_true", help="Open the largest subdirectory")
    p_list.add_argument("--json", action="store_true", help="Emit JSON")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "list":
            rows, metrics = _list_impl(args.src)
            print(json.dumps(rows, indent=2) if args.json else _format_table(rows))
            if args.explore_greatest_dir:
                largest = next((r for r in rows if r["is_dir"]), None)
                assert largest, f"No directory found in {args.src}"
                _open_in_explorer(largest["path"])
            _log("INFO", "list", f"src={args.src}", metrics=json.dumps(metrics))
        else:
            parser.print_help()
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
def _run_mcp():
    from fastmcp import FastMCP

    mcp = FastMCP("sz")

    @mcp.tool()
    def list_sizes(src: str = ".") -> str:
        """Recursive size of each entry directly under src, largest first."""
        try:
            rows, metrics = _list_impl(src)
            return json.dumps({"entries": rows, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
