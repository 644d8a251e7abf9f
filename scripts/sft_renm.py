#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "tqdm>=4.66",
# ]
# ///
"""Rename the files of a directory to 1..N and restore them later.

Files are numbered in name order. The old -> new mapping is saved as JSON so
the operation can be undone with ``restore``.

Usage:
    sft_renm.py rename ./pics
    sft_renm.py rename ./pics --ignore-extension -o pics_map.json
    sft_renm.py restore ./pics pics_map.json
    sft_renm.py restore ./pics pics_map.json --ignore-extension
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
EXPOSED = ["rename", "restore"]

CONFIG = {
    "version": "0.1.36",
    "map_file": "rename_map.json",
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def plan_renames(directory: Path, ignore_extension: bool = False) -> list[tuple[Path, Path]]:
    """(old path, new path) for each file, numbered from 1 in name order."""
    files = sorted((p for p in directory.iterdir() if p.is_file()), key=lambda p: p.name)
    ops = []
    for i, path in enumerate(files, 1):
        ext = path.suffix
        new_name = str(i) if ignore_extension or not ext else f"{i}{ext}"
        ops.append((path, path.with_name(new_name)))
    return ops


def _find_numbered(directory: Path, new_name: str) -> Path | None:
    """Locate new_name with or without an extension."""
    bare = directory / new_name
    if bare.is_file():
        return bare
    return next((p for p in sorted(directory.glob(f"{new_name}.*")) if p.is_file()), None)


def _rename_impl(directory: str, output: str = CONFIG["map_file"], ignore_extension: bool = False) -> tuple[dict, dict]:
    from tqdm import tqdm

    start_ms = time.time() * 1000
    root = Path(directory)
    assert root.is_dir(), f"Directory not found: {directory}"

    ops = [(old, new) for old, new in plan_renames(root, ignore_extension) if old != new]
    for _old, new in ops:
        assert not new.exists(), f"File already exists: {new}"

    for old, new in tqdm(ops, desc="Renaming", unit="file"):
        old.rename(new)

    mapping = {old.name: new.name for old, new in ops}
    Path(output).write_text(json.dumps(mapping, indent=2, ensure_ascii=False), encoding="utf-8")

    metrics = {
        "renamed": len(ops),
        "map_file": output,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return mapping, metrics


def _restore_impl(directory: str, map_file: str, ignore_extension: bool = False) -> tuple[list[str], dict]:
    """Undo a rename. Returns the mapped names that could not be found."""
    from tqdm import tqdm

    start_ms = time.time() * 1000
    root = Path(directory)
    assert root.is_dir(), f"Directory not found: {directory}"
    mapping = json.loads(Path(map_file).read_text(encoding="utf-8"))
    assert isinstance(mapping, dict), f"Invalid mapping file: {map_file}"

    ops = []
    missing = []
    for old_name, new_name in mapping.items():
        current = _find_numbered(root, new_name) if ignore_extension else root / new_name
        if current is None or not current.exists():
            missing.append(new_name)
            continue
        ops.append((current, root / old_name))

    for _current, original in ops:
        assert not original.exists(), f"File already exists: {original}"

    for current, original in tqdm(ops, desc="Restoring", unit="file"):
        current.rename(original)

    metrics = {
        "restored": len(ops),
        "missing": len(missing),
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if not missing else "partial",
    }
    return missing, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Sequentially rename files with a reversible mapping",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_renm.py rename ./pics
  sft_renm.py rename ./pics --ignore-extension -o pics_map.json
  sft_renm.py restore ./pics pics_map.json
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_ren = subparsers.add_parser("rename", help="Rename files to 1..N")
    p_ren.add_argument("directory", help="Directory whose files are renamed")
    p_ren.add_argument("-o", "--output", default=CONFIG["map_file"], help="Mapping file (default: %(default)s)")
    p_ren.add_argument("--ignore-extension", action="store_true", help="Use bare numbers without extensions")

    p_res = subparsers.add_parser("restore", help="Undo a rename from its mapping file")
    p_res.add_argument("directory", help="Directory holding the renamed files")
    p_res.add_argument("map_file", help="Mapping written by rename")
    p_res.add_argument("--ignore-extension", action="store_true", help="Match numbered files with any extension")

    args = parser.parse_args()

    try:
        if args.command == "rename":
            mapping, metrics = _rename_impl(args.directory, args.output, args.ignore_extension)
            print(f"Renamed {len(mapping)} files. Saved mapping to {args.output}")
            _log("INFO", "rename", f"dir={args.directory}", metrics=json.dumps(metrics))
        elif args.command == "restore":
            missing, metrics = _restore_impl(args.directory, args.map_file, args.ignore_extension)
            if missing:
                print("Warning: Missing files to restore:", file=sys.stderr)
                for name in missing:
                    print(f"- {name}", file=sys.stderr)
            print(f"Restored {metrics['restored']} files using {args.map_file}")
            _log("INFO", "restore", f"dir={args.directory}", metrics=json.dumps(metrics))
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
