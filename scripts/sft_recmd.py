#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "tqdm>=4.66",
# ]
# ///
"""Run one command inside every subdirectory of the current directory.

Usage:
    sft_recmd.py git pull
    sft_recmd.py -r -e node_modules -- npm install
    sft_recmd.py -d cargo clean
"""

import argparse
import json
import os
import subprocess
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
EXPOSED = ["run"]

CONFIG = {
    "version": "0.1.36",
    "workers": os.cpu_count() or 1,
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def collect_directories(root: Path, recursive: bool = False, exclude: str | None = None) -> list[Path]:
    """Subdirectories of root; an excluded name also hides everything below it."""
    found = []
    for entry in sorted(root.iterdir()):
        if not entry.is_dir():
            continue
        if exclude and exclude in entry.name:
            continue
        found.append(entry)
        if recursive:
            found.extend(collect_directories(entry, recursive, exclude))
    return found


def _run_in(directory: Path, command: list[str]) -> int:
    try:
        return subprocess.run(command, cwd=directory).returncode
    except FileNotFoundError:
        return 127


def _run_impl(
    command: list[str],
    recursive: bool = False,
    exclude: str | None = None,
    dry_run: bool = False,
    cwd: str = ".",
) -> tuple[list[tuple[str, int]], dict]:
    """Returns (directory, exit code) for every failed run."""
    from tqdm import tqdm

    start_ms = time.time() * 1000
    assert command, "A command is required"
    dirs = collect_directories(Path(cwd), recursive, exclude)

    failures = []
    if dry_run:
        for d in dirs:
            print(f"(Dry run) Will execute in {d}: {' '.join(command)}")
    else:
        with ThreadPoolExecutor(max_workers=CONFIG["workers"]) as pool:
            futures = {pool.submit(_run_in, d, command): d for d in dirs}
            for fut in tqdm(as_completed(futures), total=len(futures), desc="Running", unit="dir"):
                code = fut.result()
                if code != 0:
                    failures.append((str(futures[fut]), code))

    metrics = {
        "directories": len(dirs),
        "failed": len(failures),
        "dry_run": dry_run,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if not failures else "partial",
    }
    return sorted(failures), metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Execute a command in all subdirectories of the current directory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_recmd.py git pull
  sft_recmd.py -r -e node_modules -- npm install
  sft_recmd.py -d cargo clean
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("-r", "--recursive", action="store_true", help="Recursively traverse subdirectories")
    parser.add_argument("-e", "--exclude", help="Skip directories whose name contains this pattern")
    parser.add_argument("-d", "--dry-run", action="store_true", help="Display the command without executing it")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="The command to execute")

    args = parser.parse_args()
    command = args.command[1:] if args.command[:1] == ["--"] else args.command
    if not command:
        parser.error("the following arguments are required: command")

    try:
        failures, metrics = _run_impl(command, args.recursive, args.exclude, args.dry_run)
        for directory, code in failures:
            print(f"Command failed in {directory}, exit code: {code}", file=sys.stderr)
        _log("INFO", "run", f"command={' '.join(command)}", metrics=json.dumps(metrics))
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
