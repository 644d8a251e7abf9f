#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = []
# ///
"""Replace directories with empty placeholder files.

Each directory tree is deleted and an empty file with the same name (last
extension stripped) is created in its place. Handy for keeping a name around
after reclaiming the space.

Usage:
    sft_rpl.py build/ cache.d/
    sft_rpl.py --all
    sft_rpl.py --all --dry-run
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
EXPOSED = ["replace"]

CONFIG = {
    "version": "0.1.36",
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def _replace_impl(dirs: list[str], all_subdirs: bool = False, dry_run: bool = False, cwd: str = ".") -> tuple[list[str], dict]:
    """Turn each directory into an empty file. Returns per-path messages."""
    start_ms = time.time() * 1000
    if all_subdirs:
        targets = sorted(p for p in Path(cwd).iterdir() if p.is_dir())
    else:
        assert dirs, "no directories given (pass paths or --all)"
        targets = [Path(d) for d in dirs]

    messages = []
    converted = failed = 0
    for path in targets:
        if not path.is_dir():
            messages.append(f"{path} is not a valid directory")
            failed += 1
            continue
        placeholder = path.with_suffix("")
        if dry_run:
            messages.append(f"Would convert {path} into {placeholder}")
            continue
        try:
            shutil.rmtree(path)
            placeholder.touch()
        except OSError as e:
            messages.append(f"Failed to convert {path}: {e}")
            _log("WARN", "convert_failed", str(path), detail=str(e))
            failed += 1
            continue
        messages.append(f"Successfully converted {path} into a file")
        converted += 1

    metrics = {
        "converted": converted,
        "failed": failed,
        "dry_run": dry_run,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if not failed else "partial",
    }
    return messages, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Delete directories and leave empty files with the same name",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_rpl.py build/ cache.d/
  sft_rpl.py --all --dry-run
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("dirs", nargs="*", metavar="DIR", help="Directories to replace")
    parser.add_argument("-a", "--all", action="store_true", help="Replace every subdirectory of the current directory")
    parser.add_argument("-n", "--dry-run", action="store_true", help="Only print what would happen")

    args = parser.parse_args()

    try:
        messages, metrics = _replace_impl(args.dirs, args.all, args.dry_run)
        for line in messages:
            print(line)
        _log("INFO", "replace", f"targets={len(messages)}", metrics=json.dumps(metrics))
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
