#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = []
# ///
"""Flatten nested directories by pulling their contents up.

With depth 1, everything inside each subdirectory of the input directory is
moved into the output directory; depth 2 reaches one level further down, and
so on. Subdirectories of the input that end up empty are removed.

Collision strategies when the destination name is taken:
    auto      rename to ``stem_N.ext`` (a path moved onto itself is skipped)
    override  delete whatever is in the way
    halt      stop with an error

Usage:
    sft_reduce.py
    sft_reduce.py -i ./albums -o ./flat -d 2 -c override -v
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
EXPOSED = ["flatten"]

CONFIG = {
    "version": "0.1.36",
    "input_dir": "./",
    "output_dir": "./",
    "depth": 1,
    "strategy": "auto",
}

STRATEGIES = ("auto", "override", "halt")


class CollisionError(Exception):
    """Destination exists and the halt strategy is active."""


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def next_free_name(path: Path) -> Path:
    """First of stem_1.ext, stem_2.ext, ... that does not exist."""
    i = 1
    candidate = path
    while candidate.exists():
        candidate = path.with_name(f"{path.stem}_{i}{path.suffix}")
        i += 1
    return candidate


def resolve_collision(src: Path, dest: Path, strategy: str, say=lambda _m: None) -> Path | None:
    """Destination to move src to, or None to skip it."""
    if not dest.exists():
        return dest
    if strategy == "auto":
        if src.resolve() == dest.resolve():
            say(f"Skipping {src} as it matches {dest}.")
            return None
        renamed = next_free_name(dest)
        say(f"Renaming {dest} to {renamed} to avoid collision.")
        return renamed
    if strategy == "override":
        if dest.is_dir():
            shutil.rmtree(dest)
        else:
            dest.unlink()
        say(f"Overriding {dest} with a new file or directory.")
        return dest
    raise CollisionError(f"Destination path {dest} already exists.")


def _flatten_impl(
    input_dir: str = CONFIG["input_dir"],
    output_dir: str = CONFIG["output_dir"],
    depth: int = CONFIG["depth"],
    strategy: str = CONFIG["strategy"],
    verbose: bool = False,
) -> tuple[list[str], dict]:
    start_ms = time.time() * 1000
    src_root = Path(input_dir)
    dest_root = Path(output_dir)
    strategy = strategy.lower()
    assert depth >= 1, "Depth can't be smaller than 1!"
    assert strategy in STRATEGIES, f"Unknown collision strategy: {strategy} (choose from {', '.join(STRATEGIES)})"
    assert src_root.is_dir(), f"Input directory not found: {input_dir}"
    dest_root.mkdir(parents=True, exist_ok=True)

    messages: list[str] = []
    say = messages.append if verbose else (lambda _m: None)
    moved = skipped = 0

    level = [src_root]
    for _ in range(depth):
        level = [d for parent in level for d in sorted(parent.iterdir()) if d.is_dir()]

    for directory in level:
        for entry in sorted(directory.iterdir()):
            target = resolve_collision(entry, dest_root / entry.name, strategy, say)
            if target is None:
                skipped += 1
                continue
            shutil.move(str(entry), str(target))
            say(f"Moved {entry} to {target}.")
            moved += 1

    removed = 0
    for entry in sorted(src_root.iterdir()):
        if entry.is_dir() and not any(entry.iterdir()):
            entry.rmdir()
            say(f"Cleaning {entry}")
            removed += 1

    metrics = {
        "moved": moved,
        "skipped": skipped,
        "removed_dirs": removed,
        "depth": depth,
        "strategy": strategy,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return messages, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Move the contents of nested directories up into one directory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_reduce.py
  sft_reduce.py -i ./albums -o ./flat -d 2 -c override -v
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("-i", "--input-dir", default=CONFIG["input_dir"], help="Directory to flatten (default: %(default)s)")
    parser.add_argument("-o", "--output-dir", default=CONFIG["output_dir"], help="Destination (default: %(default)s)")
    parser.add_argument("-d", "--depth", type=int, default=CONFIG["depth"], help="Levels to reach down (default: %(default)s)")
    parser.add_argument("-c", "--collision-strategy", default=CONFIG["strategy"], choices=STRATEGIES, help="On name clash (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Print every move")

    args = parser.parse_args()

    try:
        messages, metrics = _flatten_impl(
            args.input_dir, args.output_dir, args.depth, args.collision_strategy, args.verbose,
        )
        for line in messages:
            print(line)
        print(f"Moved {metrics['moved']} entries, removed {metrics['removed_dirs']} empty directories.")
        _log("INFO", "flatten", f"input={args.input_dir}", metrics=json.dumps(metrics))
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
