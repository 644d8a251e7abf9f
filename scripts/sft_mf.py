#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "rapidfuzz>=3.0",
#     "tqdm>=4.66",
# ]
# ///
"""Merge source subfolders into similarly named destination subfolders.

Similarity is the best of three scores: normalized Damerau-Levenshtein on
the raw names, the same after dropping bracket groups from the source name,
and 1.0 when both names carry the same 6+ digit uid. Candidates scoring at
least the threshold are offered best first. Existing destination files are
never overwritten; a source folder left empty is removed.

Usage:
    sft_mf.py ./incoming ./library
    sft_mf.py ./incoming ./library -t 0.8 --create --yes
"""

import argparse
import json
import os
import re
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
EXPOSED = ["merge"]

CONFIG = {
    "version": "0.1.36",
    "threshold": 0.6,
}

# bracket groups holding at least one non-digit, e.g. "(2021 remaster)" or "[HD]"
_BRACKETS = [re.compile(p) for p in (r"\[\D*\d*\D+\d*\D*]", r"\{\D*\d*\D+\d*\D*}", r"\(\D*\d*\D+\d*\D*\)")]
_UID = re.compile(r"\d{6,}")


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def strip_brackets(name: str) -> str:
    for pattern in _BRACKETS:
        name = pattern.sub("", name)
    return name


def uid(name: str) -> int | None:
    m = _UID.search(name)
    return int(m.group(0)) if m else None


def similarity(src: str, dst: str) -> float:
    from rapidfuzz.distance import DamerauLevenshtein

    same_uid = uid(src) is not None and uid(src) == uid(dst)
    return max(
        DamerauLevenshtein.normalized_similarity(src, dst),
        DamerauLevenshtein.normalized_similarity(strip_brackets(src), dst),
        1.0 if same_uid else 0.0,
    )


def candidates(src: str, dst_names: list[str], threshold: float) -> list[tuple[str, int]]:
    """(name, percent score) at or above threshold, best first."""
    scored = [(d, int(similarity(src, d) * 100)) for d in dst_names]
    scored.sort(key=lambda x: -x[1])
    cutoff = int(threshold * 100)
    return [(d, s) for d, s in scored if s >= cutoff]


def subfolders(root: Path) -> list[str]:
    return sorted(p.name for p in root.iterdir() if p.is_dir())


def merge_into(src: Path, dst: Path) -> tuple[int, int]:
    """Move src's contents into dst without overwriting. Returns (moved, skipped)."""
    moved = skipped = 0
    dst.mkdir(parents=True, exist_ok=True)
    for entry in sorted(src.iterdir()):
        target = dst / entry.name
        if not target.exists():
            shutil.move(str(entry), str(target))
            moved += 1
        elif entry.is_dir() and target.is_dir():
            m, s = merge_into(entry, target)
            moved, skipped = moved + m, skipped + s
            remove_if_empty(entry)
        else:
            skipped += 1
    return moved, skipped


def remove_if_empty(folder: Path) -> bool:
    if folder.is_dir() and not any(folder.rglob("*")):
        shutil.rmtree(folder)
        return True
    return False


def _ask(src_name: str, options: list[tuple[str, int]]) -> str | None:
    print(f"Move {src_name} to:")
    for i, (name, score) in enumerate(options):
        print(f"  [{i}] {score}%|{name}")
    print(f"  [{len(options)}] Skip")
    raw = input("Selection [0]: ").strip() or "0"
    assert raw.isdigit() and int(raw) <= len(options), f"Invalid selection: {raw}"
    index = int(raw)
    return options[index][0] if index < len(options) else None


def _confirm(prompt: str) -> bool:
    return input(f"{prompt} [y/N]: ").strip().lower() in ("y", "yes")


def _merge_impl(src: str, dst: str, threshold: float = CONFIG["threshold"], create: bool = False,
                yes: bool = False) -> tuple[list[dict], dict]:
    from tqdm import tqdm

    start_ms = time.time() * 1000
    src_root, dst_root = Path(src), Path(dst)
    assert src_root.is_dir(), f"Source folder not found: {src}"
    assert dst_root.is_dir(), f"Destination folder not found: {dst}"
    dst_names = subfolders(dst_root)

    plan = []
    for name in subfolders(src_root):
        options = candidates(name, dst_names, threshold)
        if options:
            target = options[0][0] if yes else _ask(name, options)
        elif create or (not yes and _confirm(f"Did not find a match for folder [{name}] in [{dst}]. Create a new folder?")):
            target = name
        else:
            target = None
        if target is not None:
            plan.append((name, target))

    report = []
    for name, target in tqdm(plan, desc="Merging", unit="folder"):
        moved, skipped = merge_into(src_root / name, dst_root / target)
        cleaned = remove_if_empty(src_root / name)
        report.append({"source": name, "target": target, "moved": moved, "skipped": skipped, "cleaned": cleaned})

    skipped_total = sum(r["skipped"] for r in report)
    metrics = {
        "merged": len(report),
        "skipped_items": skipped_total,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if not skipped_total else "partial",
    }
    return report, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Merge folders with similar names",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_mf.py ./incoming ./library
  sft_mf.py ./incoming ./library -t 0.8 --create --yes
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("src", help="Source folder")
    parser.add_argument("dst", help="Destination folder")
    parser.add_argument("-c", "--create", action="store_true", help="Create a destination folder when nothing matches")
    parser.add_argument("-t", "--threshold", type=float, default=CONFIG["threshold"], help="Similarity threshold 0-1 (default: %(default)s)")
    parser.add_argument("-y", "--yes", action="store_true", help="Take the best match without prompting")

    args = parser.parse_args()

    try:
        report, metrics = _merge_impl(args.src, args.dst, args.threshold, args.create, args.yes)
        for r in report:
            print(f"Moved {r['moved']} items from {r['source']} to {r['target']}"
                  + (f" ({r['skipped']} existing skipped)" if r["skipped"] else ""))
            if r["cleaned"]:
                print(f"Cleaning empty folder {Path(args.src) / r['source']}")
        _log("INFO", "merge", f"src={args.src} dst={args.dst}", metrics=json.dumps(metrics))
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
