#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "python-docx>=1.1.0",
#     "fastmcp",
# ]
# ///
"""Convert a plain-text outline into a Word (.docx) document.

Numbered lines become headings, checked most specific first:
    1.2.3 Title   -> Heading 3
    1.2 Title     -> Heading 2
    1. Title      -> Heading 1
Empty lines are skipped; everything else is a body paragraph.

Usage:
    sft_bdocx.py build thesis.txt
    sft_bdocx.py build thesis.txt -o thesis.docx
    sft_bdocx.py mcp-stdio
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
EXPOSED = ["build"]

CONFIG = {
    "version": "0.1.36",
    "output": "./output.docx",
}

# level -> (pattern, east-asian font, size in pt)
HEADINGS = {
    3: (re.compile(r"^\d+(\.\d+){2}\.?\s+(.+)$"), "SimHei", 12),
    2: (re.compile(r"^\d+(\.\d+)\.?\s+(.+)$"), "SimHei", 13),
    1: (re.compile(r"^\d+\.?\s+(.+)$"), "FangSong_GB2312", 16),
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def heading_level(line: str) -> int:
    """Heading level of a numbered line, 0 for body text."""
    for level in sorted(HEADINGS, reverse=True):
        if HEADINGS[level][0].match(line):
            return level
    return 0


def outline(lines: list[str]) -> list[tuple[int, str]]:
    return [(heading_level(line), line) for line in lines if line]


def _style_headings(doc):
    from docx.oxml.ns import qn
    from docx.shared import Pt

    for level, (_pattern, font, size) in HEADINGS.items():
        style = doc.styles[f"Heading {level}"]
        style.font.bold = True
        style.font.size = Pt(size)
        style.font.name = font
        style.element.get_or_add_rPr().get_or_add_rFonts().set(qn("w:eastAsia"), font)


def _build_impl(input_path: str, output: str = CONFIG["output"]) -> tuple[list[tuple[int, str]], dict]:
    from docx import Document

    start_ms = time.time() * 1000
    src = Path(input_path)
    assert src.is_file(), f"File not found: {input_path}"

    items = outline(src.read_text(encoding="utf-8").splitlines())
    doc = Document()
    _style_headings(doc)
    for level, line in items:
        if level:
            doc.add_heading(line, level=level)
        else:
            doc.add_paragraph(line)
    doc.save(output)

    metrics = {
        "paragraphs": len(items),
        "headings": sum(1 for level, _ in items if level),
        "output": output,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return [(level, line) for level, line in items if level], metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Build a .docx from a numbered text outline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_bdocx.py build thesis.txt
  sft_bdocx.py build thesis.txt -o thesis.docx
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_build = subparsers.add_parser("build", help="Convert a text file to .docx")
    p_build.add_argument("input", help="Text file")
    p_build.add_argument("-o", "--output", default=CONFIG["output"], help="Output .docx (default: %(default)s)")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "build":
            headings, metrics = _build_impl(args.input, args.output)
            for level, line in headings:
                print("  " * (level - 1) + line)
            print(f"Conversion successful! Output saved to {args.output}")
            _log("INFO", "build", f"input={args.input}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("bdocx")

    @mcp.tool()
    def build(input_path: str, output: str = CONFIG["output"]) -> str:
        """Convert a numbered text outline to .docx with styled headings.

        Args:
            input_path: Text file
            output: Destination .docx
        """
        try:
            headings, metrics = _build_impl(input_path, output)
            return json.dumps({"headings": headings, "metrics": metrics}, ensure_ascii=False)
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
