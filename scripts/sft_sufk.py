#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = []
# ///
"""Copy files that are still missing their converted counterpart.

A PDF ``paper.pdf`` counts as done when ``paper.txt`` sits next to it; every
PDF without such a sibling is copied to the output directory so it can be
processed again.

Usage:
    sft_sufk.py ./papers
    sft_sufk.py ./scans -o png -e md --out ./todo
"""

import argparse
import json
import os
import shutil
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
EXPOSED = ["filter"]

CONFIG = {
    "version": "0.1.36",
    "original": "pdf",
    "examine": "txt",
    "out": "./filtered",
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def find_unpaired(directory: Path, original: str, examine: str) -> list[Path]:
    """Files with the original extension (any case) lacking an examine sibling."""
    original = original.lower().lstrip(".")
    examine = examine.lstrip(".")
    return sorted(
        p for p in directory.iterdir()
        if p.is_file()
        and p.suffix.lower() == f".{original}"
        and not p.with_suffix(f".{examine}").exists()
    )


def _filter_impl(
    directory: str,
    original: str = CONFIG["original"],
    examine: str = CONFIG["examine"],
    out: str = CONFIG["out"],
) -> tuple[list[str], dict]:
    start_ms = time.time() * 1000
    src = Path(directory)
    assert src.is_dir(), f"Directory not found: {directory}"
    dest = Path(out)
    dest.mkdir(parents=True, exist_ok=True)

    copied = []
    for path in find_unpaired(src, original, examine):
        shutil.copy2(path, dest / path.name)
        copied.append(str(path))

    metrics = {
        "copied": len(copied),
        "out": str(dest),
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return copied, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Copy files that have no sibling with the examined extension",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_sufk.py ./papers
  sft_sufk.py ./scans -o png -e md --out ./todo
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("dir", help="Directory to scan")
    parser.add_argument("-o", "--original", default=CONFIG["original"], help="Extension of source files (default: %(default)s)")
    parser.add_argument("-e", "--examine", default=CONFIG["examine"], help="Extension marking a file as done (default: %(default)s)")
    parser.add_argument("--out", default=CONFIG["out"], help="Destination directory (default: %(default)s)")

    args = parser.parse_args()

    try:
        copied, metrics = _filter_impl(args.dir, args.original, args.examine, args.out)
        for path in copied:
            print(f"Copying {path}")
        print(f"Copied {len(copied)} files.")
        _log("INFO", "filter", f"dir={args.dir}", metrics=json.dumps(metrics))
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
