#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "fastmcp",
# ]
# ///
"""Concatenate numbered .txt files into one file, in numeric order.

Files are ordered by the first integer in their name (``2.txt`` before
``10.txt``); names without a number sort first.

Usage:
    sft_onize.py merge
    sft_onize.py merge book.txt ./chapters
    sft_onize.py mcp-stdio
"""

import argparse
import json
import os
import re
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
EXPOSED = ["merge"]

CONFIG = {
    "version": "0.1.36",
    "output": "output.txt",
    "directory": "./",
}

_NUMBER_RE = re.compile(r"(\d+)")


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def file_number(name: str) -> int:
    m = _NUMBER_RE.search(name)
    return int(m.group(1)) if m else 0


def ordered_sources(directory: Path, output: Path) -> list[Path]:
    """.txt files of directory in numeric order, excluding output."""
    out_resolved = output.resolve()
    files = [
        p for p in directory.iterdir()
        if p.is_file() and p.name.endswith(".txt") and p.resolve() != out_resolved
    ]
    return sorted(files, key=lambda p: (file_number(p.name), p.name))


def _merge_impl(output: str = CONFIG["output"], directory: str = CONFIG["directory"]) -> tuple[str, dict]:
    start_ms = time.time() * 1000
    src_dir = Path(directory)
    assert src_dir.is_dir(), f"The specified directory does not exist: {directory}"
    out = Path(output)

    sources = ordered_sources(src_dir, out)
    with open(out, "w", encoding="utf-8") as f:
        for path in sources:
            f.write(path.read_text(encoding="utf-8"))
            f.write("\n")

    metrics = {
        "files": len(sources),
        "output": str(out),
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return f"Files have been concatenated and written to {out}", metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Concatenate .txt files ordered by the number in their name",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_onize.py merge
  sft_onize.py merge book.txt ./chapters
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_merge = subparsers.add_parser("merge", help="Concatenate files")
    p_merge.add_argument("output", nargs="?", default=CONFIG["output"], help="Output file (default: %(default)s)")
    p_merge.add_argument("directory", nargs="?", default=CONFIG["directory"], help="Source directory (default: %(default)s)")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "merge":
            result, metrics = _merge_impl(args.output, args.directory)
            print(result)
            _log("INFO", "merge", f"dir={args.directory}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("onize")

    @mcp.tool()
    def merge(output: str = CONFIG["output"], directory: str = CONFIG["directory"]) -> str:
        """Concatenate the .txt files of directory into output, numeric order."""
        try:
            result, metrics = _merge_impl(output, directory)
            return json.dumps({"result": result, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
