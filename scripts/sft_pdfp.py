#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "pypdf>=4.0",
#     "Pillow>=10.0",
#     "fastmcp",
# ]
# ///
"""Extract the embedded images of a PDF.

Images are saved as ``<page>-<n>.<ext>`` in the output directory, pages
counted from 1 and images from 0 within a page. Images Pillow can decode are
converted to the requested format; anything else is written as raw bytes.

Usage:
    sft_pdfp.py extract paper.pdf
    sft_pdfp.py extract paper.pdf -o ./figures -e jpg
    sft_pdfp.py mcp-stdio
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
EXPOSED = ["extract"]

CONFIG = {
    "version": "0.1.36",
    "output_dir": "./pdf-pictures",
    "ext": "png",
}

# Pillow format names that differ from the file extension
_FORMATS = {"jpg": "JPEG", "jpeg": "JPEG", "tif": "TIFF"}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def image_name(page: int, index: int, ext: str) -> str:
    return f"{page}-{index}.{ext.lstrip('.')}"


def _save_image(pdf_image, target: Path, ext: str):
    image = pdf_image.image
    if image is None:
        target.write_bytes(pdf_image.data)
        return
    fmt = _FORMATS.get(ext.lower(), ext.upper())
    if fmt == "JPEG" and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    image.save(target, format=fmt)


def _extract_impl(input_path: str, output_dir: str = CONFIG["output_dir"], ext: str = CONFIG["ext"]) -> tuple[list[str], dict]:
    from pypdf import PdfReader

    start_ms = time.time() * 1000
    src = Path(input_path)
    assert src.is_file(), f"File not found: {input_path}"
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    reader = PdfReader(src)
    written = []
    skipped = 0
    for page_no, page in enumerate(reader.pages, 1):
        for index, pdf_image in enumerate(page.images):
            target = out / image_name(page_no, index, ext)
            try:
                _save_image(pdf_image, target, ext)
            except (OSError, ValueError) as e:
                _log("WARN", "image_skipped", f"{target.name}: {e}")
                skipped += 1
                continue
            written.append(str(target))

    metrics = {
        "pages": len(reader.pages),
        "images": len(written),
        "skipped": skipped,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if not skipped else "partial",
    }
    return written, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Extract embedded images from a PDF",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_pdfp.py extract paper.pdf
  sft_pdfp.py extract paper.pdf -o ./figures -e jpg
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_ext = subparsers.add_parser("extract", help="Save every page image")
    p_ext.add_argument("input", help="PDF file")
    p_ext.add_argument("-o", "--output-dir", default=CONFIG["output_dir"], help="Output directory (default: %(default)s)")
    p_ext.add_argument("-e", "--ext", default=CONFIG["ext"], help="Image format/extension (default: %(default)s)")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "extract":
            written, metrics = _extract_impl(args.input, args.output_dir, args.ext)
            print(f"Extracted {len(written)} images from {metrics['pages']} pages to {args.output_dir}")
            if metrics["skipped"]:
                print(f"Skipped {metrics['skipped']} images that could not be saved", file=sys.stderr)
            _log("INFO", "extract", f"input={args.input}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("pdfp")

    @mcp.tool()
    def extract(input_path: str, output_dir: str = CONFIG["output_dir"], ext: str = CONFIG["ext"]) -> str:
        """Save the embedded images of a PDF as <page>-<n>.<ext>.

        Args:
            input_path: PDF file
            output_dir: Destination directory
            ext: Image format, e.g. png or jpg
        """
        try:
            written, metrics = _extract_impl(input_path, output_dir, ext)
            return json.dumps({"written": written, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
