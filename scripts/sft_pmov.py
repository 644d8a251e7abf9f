#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "tqdm>=4.66",
# ]
# ///
"""Move source directories into numbered buckets of roughly equal size.

Source subdirectories whose names contain the uid separator are taken in
name order and added to a bucket, counting their entries. Once the bucket
holds at least ``--min-bucket-size`` entries it is moved into the next free
``<target>/<N>th`` directory. Leftovers form a final bucket. Directories
already present at the destination are left where they are.

Usage:
    sft_pmov.py ./inbox ./archive
    sft_pmov.py ./inbox ./archive -m 500 -u -
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
EXPOSED = ["bucket"]

CONFIG = {
    "version": "0.1.36",
    "min_bucket_size": 1000,
    "uid_separator": "_",
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def next_target(target_root: Path) -> Path:
    """<target_root>/<N+1>th where N is the highest existing <N>th directory."""
    highest = 0
    if target_root.is_dir():
        for entry in target_root.iterdir():
            if entry.is_dir() and entry.name.endswith("th") and entry.name[:-2].isdigit():
                highest = max(highest, int(entry.name[:-2]))
    return target_root / f"{highest + 1}th"


def plan_buckets(dirs: list[Path], min_size: int) -> list[list[Path]]:
    """Group dirs in order; a group closes once its entry count reaches min_size."""
    buckets, current, size = [], [], 0
    for d in dirs:
        current.append(d)
        size += sum(1 for _ in d.iterdir())
        if size >= min_size:
            buckets.append(current)
            current, size = [], 0
    if size > 0:
        buckets.append(current)
    return buckets


def _bucket_impl(
    source: str,
    target: str,
    min_bucket_size: int = CONFIG["min_bucket_size"],
    uid_separator: str = CONFIG["uid_separator"],
) -> tuple[list[tuple[str, int]], dict]:
    """Returns (target directory, directories moved) per bucket."""
    from tqdm import tqdm

    start_ms = time.time() * 1000
    src_root, target_root = Path(source), Path(target)
    assert src_root.is_dir(), f"Source directory not found: {source}"
    assert min_bucket_size >= 1, "min_bucket_size must be at least 1"

    dirs = sorted(p for p in src_root.iterdir() if p.is_dir() and uid_separator in p.name)
    report = []
    skipped = 0
    for group in plan_buckets(dirs, min_bucket_size):
        dest = next_target(target_root)
        dest.mkdir(parents=True, exist_ok=True)
        moved = 0
        for d in tqdm(group, desc=f"Moving to {dest.name}", unit="dir"):
            if (dest / d.name).exists():
                skipped += 1
                continue
            shutil.move(str(d), str(dest / d.name))
            moved += 1
        report.append((str(dest), moved))

    metrics = {
        "detected": len(dirs),
        "buckets": len(report),
        "skipped": skipped,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if not skipped else "partial",
    }
    return report, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Move uid-named directories into numbered buckets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_pmov.py ./inbox ./archive
  sft_pmov.py ./inbox ./archive -m 500 -u -
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("source", help="Directory holding the uid directories")
    parser.add_argument("target", help="Root receiving the <N>th bucket directories")
    parser.add_argument("-m", "--min-bucket-size", type=int, default=CONFIG["min_bucket_size"], help="Entries per bucket (default: %(default)s)")
    parser.add_argument("-u", "--uid-separator", default=CONFIG["uid_separator"], help="Only directories containing this (default: %(default)s)")

    args = parser.parse_args()

    try:
        report, metrics = _bucket_impl(args.source, args.target, args.min_bucket_size, args.uid_separator)
        print(f"Detected source dirs: {metrics['detected']}")
        for dest, moved in report:
            print(f"Moved {moved} directories to {dest}")
        _log("INFO", "bucket", f"source={args.source}", metrics=json.dumps(metrics))
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
