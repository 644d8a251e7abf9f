#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "tqdm>=4.66",
# ]
# ///
"""Maintain a picture/video library laid out as <input>/<group>/<artist_uid>/files.

Commands:
    audit      list subdirectories holding fewer than --min-count media files
    eradicate  delete (or move to --output) the non-media files
    merge      gather media into --output, one directory per artist id

Input directories accept glob patterns. Media are files ending in jpg, jpeg,
png, gif, mp4, avi or mov.

Usage:
    sft_pam.py audit ./library -m 10
    sft_pam.py eradicate "./dl/*" -o ./junk
    sft_pam.py merge "./dl/*" -o ./merged --cut -v
"""

import argparse
import glob
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
EXPOSED = ["audit", "eradicate", "merge"]

CONFIG = {
    "version": "0.1.36",
    "min_count": 5,
    "output": "./merged",
    "media_extensions": {"jpg", "jpeg", "png", "gif", "mp4", "avi", "mov"},
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def is_media(path: Path) -> bool:
    return path.suffix.lstrip(".") in CONFIG["media_extensions"]


def expand_dirs(patterns: list[str]) -> list[Path]:
    found = []
    for pattern in patterns:
        found.extend(Path(p) for p in sorted(glob.glob(pattern)) if Path(p).is_dir())
    return found


def second_level_files(dirs: list[Path]) -> list[Path]:
    """Files in <dir>/<sub>/ for every subdirectory of every dir."""
    files = []
    for d in dirs:
        for sub in sorted(p for p in d.iterdir() if p.is_dir()):
            files.extend(sorted(f for f in sub.iterdir() if f.is_file()))
    return files


def artist_id(path: Path) -> str:
    """Last '_'-separated part of the parent directory name."""
    return path.parent.name.split("_")[-1]


def merge_target(path: Path, output: Path) -> Path:
    """Existing output dir containing the artist id, else output/<parent name>."""
    aid = artist_id(path)
    existing = [e for e in output.iterdir() if aid in e.name] if output.is_dir() else []
    return existing[-1] if existing else output / path.parent.name


def should_copy(src: Path, target_dir: Path) -> bool:
    """False when the target exists and is at least as large."""
    target = target_dir / src.name
    if not target.exists():
        return True
    return target.stat().st_size < src.stat().st_size


def _move(src: Path, dst: Path):
    shutil.move(str(src), str(dst))


def _audit_impl(input_dir: str, min_count: int = CONFIG["min_count"]) -> tuple[list[tuple[str, int]], dict]:
    start_ms = time.time() * 1000
    root = Path(input_dir)
    assert root.is_dir(), f"Input directory {input_dir} does not exist or is not a directory."
    short = []
    for sub in sorted(p for p in root.iterdir() if p.is_dir()):
        count = sum(1 for f in sub.iterdir() if f.is_file() and is_media(f))
        if count < min_count:
            short.append((str(sub), count))
    metrics = {"flagged": len(short), "latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}
    return short, metrics


def _eradicate_impl(input_dirs: list[str], output: str | None = None) -> tuple[list[str], dict]:
    start_ms = time.time() * 1000
    dirs = expand_dirs(input_dirs)
    victims = [f for f in second_level_files(dirs) if not is_media(f)]
    if output:
        Path(output).mkdir(parents=True, exist_ok=True)
    for f in victims:
        if output:
            _move(f, Path(output) / f.name)
        else:
            f.unlink()
    metrics = {"directories": len(dirs), "removed": len(victims),
               "latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}
    return [str(f) for f in victims], metrics


def _merge_impl(input_dirs: list[str], output: str = CONFIG["output"], cut: bool = False,
                verbose: bool = False) -> tuple[dict, dict]:
    from tqdm import tqdm

    start_ms = time.time() * 1000
    out = Path(output)
    out.mkdir(parents=True, exist_ok=True)
    files = [f for f in second_level_files(expand_dirs(input_dirs)) if is_media(f)]
    print(f"Found {len(files)} files")

    processed, skipped = 0, 0
    for f in tqdm(files, desc="Merging", unit="file"):
        target_dir = merge_target(f, out)
        if not should_copy(f, target_dir):
            skipped += 1
            if verbose:
                print(f"Skipped {f} due to existing file with equal or greater size")
            continue
        target_dir.mkdir(parents=True, exist_ok=True)
        if cut:
            _move(f, target_dir / f.name)
        else:
            shutil.copy2(f, target_dir / f.name)
        processed += 1
        if verbose:
            print(f"Processed {f}")

    metrics = {
        "found": len(files),
        "processed": processed,
        "skipped": skipped,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return {"processed": processed, "skipped": skipped}, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Audit, clean and merge picture/video directories",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_pam.py audit ./library -m 10
  sft_pam.py eradicate "./dl/*" -o ./junk
  sft_pam.py merge "./dl/*" -o ./merged --cut -v
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_audit = subparsers.add_parser("audit", help="List subdirectories with too few media files")
    p_audit.add_argument("input_dir", help="Directory to audit")
    p_audit.add_argument("-m", "--min-count", type=int, default=CONFIG["min_count"], help="Minimum media files (default: %(default)s)")

    p_erad = subparsers.add_parser("eradicate", help="Delete non-media files")
    p_erad.add_argument("input_dirs", nargs="+", help="Directories or glob patterns")
    p_erad.add_argument("-o", "--output", help="Move files here instead of deleting")

    p_merge = subparsers.add_parser("merge", help="Gather media per artist id")
    p_merge.add_argument("input_dirs", nargs="+", help="Directories or glob patterns")
    p_merge.add_argument("-o", "--output", default=CONFIG["output"], help="Output directory (default: %(default)s)")
    p_merge.add_argument("-c", "--cut", action="store_true", help="Move instead of copy")
    p_merge.add_argument("-v", "--verbose", action="store_true", help="Print each file")

    args = parser.parse_args()

    try:
        if args.command == "audit":
            short, metrics = _audit_impl(args.input_dir, args.min_count)
            for path, count in short:
                print(f"{path} has fewer than {args.min_count} images/video files (found {count}).")
            _log("INFO", "audit", f"input={args.input_dir}", metrics=json.dumps(metrics))
        elif args.command == "eradicate":
            removed, metrics = _eradicate_impl(args.input_dirs, args.output)
            verb = f"Moved to {args.output}" if args.output else "Deleted"
            print(f"{verb}: {len(removed)} non-media files")
            _log("INFO", "eradicate", f"inputs={len(args.input_dirs)}", metrics=json.dumps(metrics))
        elif args.command == "merge":
            print(f"Merging {args.input_dirs} into {args.output}")
            result, metrics = _merge_impl(args.input_dirs, args.output, args.cut, args.verbose)
            print(f"Done: {result['processed']} processed, {result['skipped']} skipped")
            _log("INFO", "merge", f"output={args.output}", metrics=json.dumps(metrics))
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


if __name__ == "__main__":
    main()
