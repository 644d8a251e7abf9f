#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = []
# ///
"""Cut text files at the first delimiter.

Lines are copied until one contains the delimiter; that line is kept up to
the delimiter and everything after it is dropped. Results go to a separate
output directory, originals are not touched.

Usage:
    sft_rstrip.py
    sft_rstrip.py ./notes -e md -d "---" -o ./trimmed
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
EXPOSED = ["strip"]

CONFIG = {
    "version": "0.1.36",
    "input_dir": ".",
    "extension": "txt",
    "output_dir": "./striped",
    "delimiter": "//",
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def truncate_lines(lines, delimiter: str) -> list[str]:
    """Lines up to and including the first delimiter hit, cut at the delimiter."""
    out = []
    for line in lines:
        pos = line.find(delimiter)
        if pos >= 0:
            out.append(line[:pos])
            break
        out.append(line)
    return out


def _strip_impl(
    input_dir: str = CONFIG["input_dir"],
    extension: str = CONFIG["extension"],
    output_dir: str = CONFIG["output_dir"],
    delimiter: str = CONFIG["delimiter"],
) -> tuple[list[str], dict]:
    start_ms = time.time() * 1000
    src = Path(input_dir)
    assert src.is_dir(), f"Input directory not found: {input_dir}"
    assert delimiter, "delimiter must not be empty"
    dest = Path(output_dir)
    dest.mkdir(parents=True, exist_ok=True)

    processed = []
    for path in sorted(src.iterdir()):
        if not path.is_file() or path.suffix.lstrip(".") != extension:
            continue
        with open(path, encoding="utf-8", errors="replace") as f:
            kept = truncate_lines((line.rstrip("\r\n") for line in f), delimiter)
        (dest / path.name).write_text("".join(f"{line}\n" for line in kept), encoding="utf-8")
        processed.append(str(path))

    metrics = {
        "processed": len(processed),
        "output_dir": str(dest),
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return processed, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Copy text files cut at the first delimiter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_rstrip.py
  sft_rstrip.py ./notes -e md -d "---" -o ./trimmed
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("input_dir", nargs="?", default=CONFIG["input_dir"], help="Directory to scan (default: %(default)s)")
    parser.add_argument("-e", "--extension", default=CONFIG["extension"], help="File extension (default: %(default)s)")
    parser.add_argument("-o", "--output-dir", default=CONFIG["output_dir"], help="Output directory (default: %(default)s)")
    parser.add_argument("-d", "--delimiter", default=CONFIG["delimiter"], help="Cut marker (default: %(default)s)")

    args = parser.parse_args()

    try:
        processed, metrics = _strip_impl(args.input_dir, args.extension, args.output_dir, args.delimiter)
        for path in processed:
            print(f"Processing {path}")
        print(f"Processed {len(processed)} files")
        _log("INFO", "strip", f"dir={args.input_dir}", metrics=json.dumps(metrics))
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
