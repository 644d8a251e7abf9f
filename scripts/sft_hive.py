#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "fastmcp",
# ]
# ///
"""Count how often each citation key appears in a document.

Scans for Typst-style ``#cite(...)`` markers and reports one line per key.

Usage:
    sft_hive.py count thesis.typ
    sft_hive.py count --json thesis.typ
    sft_hive.py mcp-stdio
"""

import argparse
import json
import os
import re
import sys
import time
from collections import Counter
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
EXPOSED = ["count"]

CONFIG = {
    "version": "0.1.36",
}

CITE_RE = re.compile(r"#cite\(([^)]+)\)")


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def _count_impl(file_path: str) -> tuple[dict[str, int], dict]:
    """Map citation key -> occurrences, most frequent first."""
    start_ms = time.time() * 1000
    path = Path(file_path)
    assert path.is_file(), f"File not found: {file_path}"

    content = path.read_text(encoding="utf-8")
    stats = Counter(m.group(1) for m in CITE_RE.finditer(content))
    result = dict(stats.most_common())

    metrics = {
        "file": str(path),
        "unique_keys": len(result),
        "total_citations": sum(result.values()),
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return result, metrics


def _format_stats(stats: dict[str, int]) -> str:
    lines = ["Statistics for citations:"]
    lines.extend(f"{key}: {count}" for key, count in stats.items())
    return "\n".join(lines)


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Citation statistics for #cite(...) markers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_hive.py count thesis.typ
  sft_hive.py count --json thesis.typ | jq 'keys'
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_count = subparsers.add_parser("count", help="Count citations per key")
    p_count.add_argument("file", help="Document to scan")
    p_count.add_argument("--json", action="store_true", help="Emit JSON instead of text")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "count":
            stats, metrics = _count_impl(args.file)
            print(json.dumps(stats, indent=2, ensure_ascii=False) if args.json else _format_stats(stats))
            _log("INFO", "count", f"file={args.file}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("hive")

    @mcp.tool()
    def count(file_path: str) -> str:
        """Count #cite(...) occurrences per citation key.

        Args:
            file_path: Document to scan

        Returns:
            JSON with key counts and metrics
        """
        try:
            stats, metrics = _count_impl(file_path)
            return json.dumps({"citations": stats, "metrics": metrics}, ensure_ascii=False)
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
