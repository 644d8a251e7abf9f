#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "tqdm>=4.66",
# ]
# ///
"""Overwrite files in a target tree with same-path files from a reference tree.

Only files that exist on both sides (same relative path) are touched; files
present in only one tree are ignored.

Usage:
    sft_cpr.py ./build ./pristine
    sft_cpr.py ./build ./pristine --dry-run
"""

import argparse
import json
import os
import shutil
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
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
EXPOSED = ["sync"]

CONFIG = {
    "version": "0.1.36",
    "workers": min(32, (os.cpu_count() or 1) + 4),
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def matching_pairs(target_dir: Path, reference_dir: Path) -> list[tuple[Path, Path]]:
    """(reference file, target file) for every relative path present in both."""
    pairs = []
    for target in sorted(target_dir.rglob("*")):
        if not target.is_file():
            continue
        reference = reference_dir / target.relative_to(target_dir)
        if reference.is_file():
            pairs.append((reference, target))
    return pairs


def _sync_impl(target_dir: str, reference_dir: str, dry_run: bool = False, progress: bool = True) -> tuple[list[tuple[str, str]], dict]:
    from tqdm import tqdm

    start_ms = time.time() * 1000
    target = Path(target_dir)
    reference = Path(reference_dir)
    assert target.is_dir(), f"Target directory not found: {target_dir}"
    assert reference.is_dir(), f"Reference directory not found: {reference_dir}"

    pairs = matching_pairs(target, reference)
    if not dry_run and pairs:
        with ThreadPoolExecutor(max_workers=CONFIG["workers"]) as pool, \
                tqdm(total=len(pairs), unit="file", disable=not progress) as bar:
            futures = [pool.submit(shutil.copy2, src, dst) for src, dst in pairs]
            for fut in as_completed(futures):
                fut.result()
                bar.update(1)

    metrics = {
        "copied": 0 if dry_run else len(pairs),
        "matched": len(pairs),
        "dry_run": dry_run,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return [(str(s), str(d)) for s, d in pairs], metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Copy reference files over their same-path counterparts in a target tree",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_cpr.py ./build ./pristine
  sft_cpr.py ./build ./pristine --dry-run
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("target_dir", help="Tree whose files get overwritten")
    parser.add_argument("reference_dir", help="Tree providing the replacement files")
    parser.add_argument("-n", "--dry-run", action="store_true", help="List matches without copying")

    args = parser.parse_args()

    try:
        pairs, metrics = _sync_impl(args.target_dir, args.reference_dir, args.dry_run)
        if args.dry_run:
            for src, dst in pairs:
                print(f"{src} -> {dst}")
        print(f"Done! {metrics['copied']} of {metrics['matched']} matching files copied.")
        _log("INFO", "sync", f"target={args.target_dir}", metrics=json.dumps(metrics))
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
