#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "fastmcp",
# ]
# ///
"""Strip markdown decoration from every file with a given extension.

Usage:
    sft_wprune.py prune ./docs ./plain md -r -s
    sft_wprune.py prune ./docs ./plain md -rsk
    sft_wprune.py mcp-stdio
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
EXPOSED = ["prune"]

CONFIG = {
    "version": "0.1.36",
}

# Longest first, otherwise "# " leaves "##" behind.
HEADING_MARKS = ("### ", "## ", "# ")


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def prune_text(text: str, headings: bool = False, stars: bool = False, hyphens: bool = False) -> str:
    if headings:
        for mark in HEADING_MARKS:
            text = text.replace(mark, "")
    if stars:
        text = text.replace("**", "")
    if hyphens:
        text = text.replace("- ", "")
    return text


def _prune_impl(
    input_dir: str,
    output_dir: str,
    ext: str,
    headings: bool = False,
    stars: bool = False,
    hyphens: bool = False,
) -> tuple[list[str], dict]:
    start_ms = time.time() * 1000
    src = Path(input_dir)
    assert src.is_dir(), f"Input directory not found: {input_dir}"
    dest = Path(output_dir)
    dest.mkdir(parents=True, exist_ok=True)
    ext = ext.lstrip(".")

    processed = []
    for path in sorted(src.iterdir()):
        if not path.is_file() or path.suffix != f".{ext}":
            continue
        cleaned = prune_text(path.read_text(encoding="utf-8"), headings, stars, hyphens)
        (dest / path.name).write_text(cleaned, encoding="utf-8")
        processed.append(str(path))

    metrics = {
        "processed": len(processed),
        "headings": headings,
        "stars": stars,
        "hyphens": hyphens,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return processed, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Remove heading marks, bold stars or list hyphens from markdown files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_wprune.py prune ./docs ./plain md -r -s
  sft_wprune.py prune ./docs ./plain md -rsk
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_prune = subparsers.add_parser("prune", help="Write cleaned copies")
    p_prune.add_argument("input_dir", help="Directory with source files")
    p_prune.add_argument("output_dir", help="Directory for cleaned copies")
    p_prune.add_argument("ext", help="File extension to process, e.g. md")
    p_prune.add_argument("-r", "--remove-headings", action="store_true", help="Remove '### ', '## ', '# '")
    p_prune.add_argument("-s", "--remove-stars", action="store_true", help="Remove '**'")
    p_prune.add_argument("-k", "--remove-hyphens", action="store_true", help="Remove '- '")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "prune":
            processed, metrics = _prune_impl(
                args.input_dir, args.output_dir, args.ext,
                args.remove_headings, args.remove_stars, args.remove_hyphens,
            )
            for path in processed:
                print(f"Processing {path}")
            print(f"{len(processed)} files processed")
            _log("INFO", "prune", f"dir={args.input_dir}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("wprune")

    @mcp.tool()
    def prune(
        input_dir: str,
        output_dir: str,
        ext: str = "md",
        headings: bool = False,
        stars: bool = False,
        hyphens: bool = False,
    ) -> str:
        """Write copies of *.ext files with markdown decoration removed.

        Args:
            input_dir: Source directory
            output_dir: Destination directory
            ext: Extension without dot
            headings: Remove '### ', '## ', '# '
            stars: Remove '**'
            hyphens: Remove '- '
        """
        try:
            processed, metrics = _prune_impl(input_dir, output_dir, ext, headings, stars, hyphens)
            return json.dumps({"processed": processed, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
