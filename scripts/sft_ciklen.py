#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "fastmcp",
# ]
# ///
"""Strip #cite(...) markers from a document, in place.

Citations directly preceded by ``等`` ("et al.") are kept because they are
part of the sentence; every other marker is removed.

Usage:
    sft_ciklen.py clean chapter1.typ
    sft_ciklen.py clean --dry-run chapter1.typ
    sft_ciklen.py mcp-stdio
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
EXPOSED = ["clean"]

CONFIG = {
    "version": "0.1.36",
    "keep_after": "等",
}

CITE_RE = re.compile(r"#cite\([^)]+\)")


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def strip_citations(content: str, keep_after: str = CONFIG["keep_after"]) -> tuple[str, int]:
    """Return (cleaned text, number of markers removed)."""
    removed = 0

    def _replace(m: re.Match) -> str:
        nonlocal removed
        if m.start() > 0 and content[m.start() - 1] == keep_after:
            return m.group(0)
        removed += 1
        return ""

    return CITE_RE.sub(_replace, content), removed


def _clean_impl(file_path: str, dry_run: bool = False) -> tuple[str, dict]:
    start_ms = time.time() * 1000
    path = Path(file_path)
    assert path.is_file(), f"File not found: {file_path}"

    cleaned, removed = strip_citations(path.read_text(encoding="utf-8"))
    if not dry_run:
        path.write_text(cleaned, encoding="utf-8")

    metrics = {
        "file": str(path),
        "removed": removed,
        "dry_run": dry_run,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    verb = "Would remove" if dry_run else "Removed"
    return f"{verb} {removed} citation(s) from {path}", metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Remove #cite(...) markers that are not preceded by 等",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_ciklen.py clean chapter1.typ
  sft_ciklen.py clean --dry-run chapter1.typ
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_clean = subparsers.add_parser("clean", help="Rewrite the file without citations")
    p_clean.add_argument("file", help="Document to clean in place")
    p_clean.add_argument("-n", "--dry-run", action="store_true", help="Only report what would be removed")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "clean":
            result, metrics = _clean_impl(args.file, args.dry_run)
            print(result)
            _log("INFO", "clean", f"file={args.file}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("ciklen")

    @mcp.tool()
    def clean(file_path: str, dry_run: bool = False) -> str:
        """Remove #cite(...) markers not preceded by 等, rewriting the file.

        Args:
            file_path: Document to clean
            dry_run: Count only, leave the file untouched
        """
        try:
            result, metrics = _clean_impl(file_path, dry_run)
            return json.dumps({"result": result, "metrics": metrics}, ensure_ascii=False)
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
