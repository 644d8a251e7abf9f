#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "tqdm>=4.66",
# ]
# ///
"""Feed PDFs to magic-pdf in fixed-size chunks.

PDFs (one file, or every ``.pdf`` under a directory) are split into chunks,
each copied to ``<output>/chunk_<i>`` and converted with
``magic-pdf -p <chunk> -o <output>``. A failing chunk is reported and the
remaining chunks still run.

Usage:
    sft_bpdf.py -p ./papers
    sft_bpdf.py -p ./papers -o ./md -c 5 -v
"""

import argparse
import json
import os
import shutil
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
EXPOSED = ["convert"]

CONFIG = {
    "version": "0.1.36",
    "output": "./output",
    "chunk_size": 10,
    "converter": "magic-pdf",
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def collect_pdfs(path: Path) -> list[Path]:
    if path.is_file():
        assert path.suffix == ".pdf", "Specified file is not a PDF"
        return [path]
    assert path.is_dir(), f"Path not found: {path}"
    return sorted(p for p in path.rglob("*.pdf") if p.is_file())


def chunked(items: list, size: int) -> list[list]:
    assert size >= 1, "chunk_size must be at least 1"
    return [items[i:i + size] for i in range(0, len(items), size)]


def _convert_chunk(chunk_dir: Path, output: Path) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            [CONFIG["converter"], "-p", str(chunk_dir), "-o", str(output)],
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as e:
        raise RuntimeError(f"{CONFIG['converter']} not found on PATH") from e


def _convert_impl(path: str, output: str = CONFIG["output"], chunk_size: int = CONFIG["chunk_size"], verbose: bool = False) -> tuple[list[str], dict]:
    """Returns the chunk directories whose conversion failed."""
    from tqdm import tqdm

    start_ms = time.time() * 1000
    out = Path(output)
    out.mkdir(parents=True, exist_ok=True)
    pdfs = collect_pdfs(Path(path))
    chunks = chunked(pdfs, chunk_size)

    failed = []
    for i, chunk in enumerate(tqdm(chunks, desc="Chunks", unit="chunk"), 1):
        chunk_dir = out / f"chunk_{i}"
        chunk_dir.mkdir(parents=True, exist_ok=True)
        for pdf in chunk:
            shutil.copy2(pdf, chunk_dir / pdf.name)
            if verbose:
                print(f"Copied {pdf} to {chunk_dir / pdf.name}")
        result = _convert_chunk(chunk_dir, out)
        if verbose:
            print(f"{CONFIG['converter']} exit status: {result.returncode}")
            if result.stdout:
                print(result.stdout)
        if result.returncode != 0:
            failed.append(str(chunk_dir))
            _log("WARN", "chunk_failed", str(chunk_dir), detail=result.stderr.strip()[-500:])

    metrics = {
        "pdfs": len(pdfs),
        "chunks": len(chunks),
        "failed": len(failed),
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if not failed else "partial",
    }
    return failed, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Batch-convert PDFs with magic-pdf in chunks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_bpdf.py -p ./papers
  sft_bpdf.py -p ./papers -o ./md -c 5 -v
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("-p", "--path", required=True, help="PDF file or directory")
    parser.add_argument("-o", "--output", default=CONFIG["output"], help="Output directory (default: %(default)s)")
    parser.add_argument("-c", "--chunk-size", type=int, default=CONFIG["chunk_size"], help="PDFs per chunk (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Print copies and converter output")

    args = parser.parse_args()

    try:
        failed, metrics = _convert_impl(args.path, args.output, args.chunk_size, args.verbose)
        if not metrics["pdfs"]:
            print("No PDF files found in the specified path.")
        for chunk_dir in failed:
            print(f"{CONFIG['converter']} command failed on chunk {chunk_dir}", file=sys.stderr)
        print(f"All PDF processing complete. Results are in {args.output}")
        _log("INFO", "convert", f"path={args.path}", metrics=json.dumps(metrics))
    except AssertionError as e:
        _log("ERROR", "contract_violation", str(e))
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        _log("ERROR", "runtime_error", str(e))
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
