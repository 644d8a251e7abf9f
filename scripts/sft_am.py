#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "fastmcp",
# ]
# ///
"""Collect the final summary section of every .txt file under a directory.

Each file is read with its line breaks removed, split on a delimiter, and
the text after the last delimiter is kept. All kept segments are joined
with ``;`` into one output file.

Usage:
    sft_am.py collect ./reports
    sft_am.py collect ./reports -d "Summary:" -o summaries.txt
    sft_am.py mcp-stdio
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
EXPOSED = ["collect"]

CONFIG = {
    "version": "0.1.36",
    "delimiter": "最终概述：",
    "output": "output.txt",
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def last_segment(text: str, delimiter: str) -> str | None:
    """Text after the last delimiter, or None when there is no delimiter."""
    parts = text.split(delimiter)
    if len(parts) < 2:
        return None
    return parts[-1]


def _collect_impl(
    directory: str,
    delimiter: str = CONFIG["delimiter"],
    output: str = CONFIG["output"],
) -> tuple[list[str], dict]:
    """Write joined segments to output. Returns skip messages."""
    start_ms = time.time() * 1000
    root = Path(directory)
    assert root.is_dir(), f"Directory not found: {directory}"
    assert delimiter, "delimiter must not be empty"

    segments = []
    skipped = []
    for path in sorted(root.rglob("*.txt")):
        if not path.is_file():
            continue
        joined = "".join(path.read_text(encoding="utf-8", errors="replace").splitlines())
        seg = last_segment(joined, delimiter)
        if seg is None:
            skipped.append(f"{path} has no delimiter")
        elif not seg:
            skipped.append(f"{path} has empty last segment")
        else:
            segments.append(seg)

    Path(output).write_text(";".join(segments), encoding="utf-8")

    metrics = {
        "collected": len(segments),
        "skipped": len(skipped),
        "output": output,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return skipped, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Join the last delimited segment of every .txt file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_am.py collect ./reports
  sft_am.py collect ./reports -d "Summary:" -o summaries.txt
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_col = subparsers.add_parser("collect", help="Collect segments into one file")
    p_col.add_argument("dir", help="Directory searched recursively for .txt files")
    p_col.add_argument("-d", "--delimiter", default=CONFIG["delimiter"], help="Segment delimiter (default: %(default)s)")
    p_col.add_argument("-o", "--output", default=CONFIG["output"], help="Output file (default: %(default)s)")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "collect":
            skipped, metrics = _collect_impl(args.dir, args.delimiter, args.output)
            for line in skipped:
                print(line)
            print(f"Collected {metrics['collected']} segment(s) into {args.output}")
            _log("INFO", "collect", f"dir={args.dir}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("am")

    @mcp.tool()
    def collect(directory: str, delimiter: str = CONFIG["delimiter"], output: str = CONFIG["output"]) -> str:
        """Join the last delimited segment of every .txt under directory.

        Args:
            directory: Root searched recursively
            delimiter: Segment delimiter
            output: File receiving the ;-joined segments
        """
        try:
            skipped, metrics = _collect_impl(directory, delimiter, output)
            return json.dumps({"skipped": skipped, "metrics": metrics}, ensure_ascii=False)
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
