#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "fastmcp",
# ]
# ///
"""Reorder adjacent citations by the order keys first appear in the document.

A block is a run of ``#cite(<key>)`` markers that touch each other. Inside
each block the markers are sorted by the index at which their key was first
cited anywhere in the text; text between blocks is left untouched.

Usage:
    sft_corda.py reorder thesis.typ -o sorted.typ
    sft_corda.py reorder thesis.typ --inplace
    sft_corda.py mcp-stdio
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
EXPOSED = ["reorder"]

CONFIG = {
    "version": "0.1.36",
}

CITE_RE = re.compile(r"#cite\(<([^>]+)>\)")


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def reorder_citations(content: str) -> tuple[str, int, int]:
    """Return (rewritten text, unique key count, block count)."""
    first_seen: dict[str, int] = {}
    matches = []
    for m in CITE_RE.finditer(content):
        first_seen.setdefault(m.group(1), len(first_seen))
        matches.append(m)

    blocks: list[list[re.Match]] = []
    for m in matches:
        if blocks and blocks[-1][-1].end() == m.start():
            blocks[-1].append(m)
        else:
            blocks.append([m])

    out = []
    prev_end = 0
    for block in blocks:
        keys = sorted((m.group(1) for m in block), key=first_seen.__getitem__)
        out.append(content[prev_end:block[0].start()])
        out.append("".join(f"#cite(<{k}>)" for k in keys))
        prev_end = block[-1].end()
    out.append(content[prev_end:])
    return "".join(out), len(first_seen), len(blocks)


def _reorder_impl(input_path: str, output_path: str | None = None, inplace: bool = False) -> tuple[str, dict]:
    start_ms = time.time() * 1000
    src = Path(input_path)
    assert src.is_file(), f"File not found: {input_path}"
    assert inplace or output_path, "output path required unless --inplace"
    dest = src if inplace else Path(output_path)

    text, unique, blocks = reorder_citations(src.read_text(encoding="utf-8"))
    dest.write_text(text, encoding="utf-8")

    metrics = {
        "input": str(src),
        "output": str(dest),
        "unique_keys": unique,
        "blocks": blocks,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return f"{unique} unique keys in {blocks} blocks, written to {dest}", metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Sort adjacent #cite(<key>) runs by first appearance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_corda.py reorder thesis.typ -o sorted.typ
  sft_corda.py reorder thesis.typ --inplace
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_re = subparsers.add_parser("reorder", help="Rewrite citation blocks in order")
    p_re.add_argument("input", help="Source document")
    p_re.add_argument("-o", "--output", help="Destination file")
    p_re.add_argument("--inplace", action="store_true", help="Overwrite the input file")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "reorder":
            if not args.inplace and not args.output:
                p_re.error("one of -o/--output or --inplace is required")
            result, metrics = _reorder_impl(args.input, args.output, args.inplace)
            print(result)
            _log("INFO", "reorder", f"input={args.input}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("corda")

    @mcp.tool()
    def reorder(input_path: str, output_path: str = "", inplace: bool = False) -> str:
        """Sort each run of adjacent citations by first appearance of the key.

        Args:
            input_path: Source document
            output_path: Destination (ignored with inplace)
            inplace: Overwrite the source document
        """
        try:
            result, metrics = _reorder_impl(input_path, output_path or None, inplace)
            return json.dumps({"result": result, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
