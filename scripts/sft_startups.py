#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = []
# ///
"""Manage Windows startup applications as .lnk shortcuts.

Shortcuts live in ``%APPDATA%\\Microsoft\\Windows\\Start Menu\\Programs\\Startup``
and are written through PowerShell's WScript.Shell COM object. Shortcut
names get their first letter capitalized; the working directory defaults to
the application's folder. Windows only.

Usage:
    sft_startups.py add C:/Tools/sync.exe --name sync
    sft_startups.py list
    sft_startups.py view Sync
    sft_startups.py remove Sync
"""

import argparse
import json
import os
import subprocess
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
EXPOSED = ["add", "remove", "list", "view"]

CONFIG = {
    "version": "0.1.36",
    "startup_subdir": Path("Microsoft") / "Windows" / "Start Menu" / "Programs" / "Startup",
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def startup_dir() -> Path:
    appdata = os.environ.get("APPDATA")
    assert appdata, "APPDATA is not set; startup shortcuts are Windows only"
    return Path(appdata) / CONFIG["startup_subdir"]


def capitalize_first(name: str) -> str:
    return name[:1].upper() + name[1:]


def shortcut_name(app_path: Path, name: str | None) -> str:
    return capitalize_first(name or app_path.stem)


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def create_script(lnk: Path, target: Path, working_dir: Path) -> str:
    """PowerShell that writes a .lnk pointing at target."""
    return "; ".join([
        "$s = (New-Object -ComObject WScript.Shell).CreateShortcut(" + _ps_quote(str(lnk)) + ")",
        "$s.TargetPath = " + _ps_quote(str(target)),
        "$s.WorkingDirectory = " + _ps_quote(str(working_dir)),
        "$s.Save()",
    ])


def read_script(lnk: Path) -> str:
    return ("$s = (New-Object -ComObject WScript.Shell).CreateShortcut(" + _ps_quote(str(lnk)) + "); "
            "Write-Output $s.TargetPath; Write-Output $s.WorkingDirectory")


def _powershell(script: str) -> str:
    try:
        result = subprocess.run(["powershell", "-NoProfile", "-NonInteractive", "-Command", script],
                                capture_output=True, text=True)
    except FileNotFoundError as e:
        raise RuntimeError("powershell not found on PATH") from e
    if result.returncode != 0:
        raise RuntimeError(result.stderr.strip() or "powershell failed")
    return result.stdout


def find_shortcut(directory: Path, name: str) -> Path | None:
    for candidate in (name, capitalize_first(name)):
        lnk = directory / f"{candidate}.lnk"
        if lnk.exists():
            return lnk
    return None


def _add_impl(app_path: str, name: str | None = None, working_dir: str | None = None) -> tuple[str, dict]:
    start_ms = time.time() * 1000
    target = Path(app_path).absolute()
    workdir = Path(working_dir).absolute() if working_dir else target.parent
    directory = startup_dir()
    directory.mkdir(parents=True, exist_ok=True)
    lnk = directory / f"{shortcut_name(target, name)}.lnk"
    _powershell(create_script(lnk, target, workdir))
    return str(lnk), {"latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}


def _remove_impl(name: str) -> tuple[bool, dict]:
    start_ms = time.time() * 1000
    lnk = find_shortcut(startup_dir(), name)
    if lnk is not None:
        lnk.unlink()
    return lnk is not None, {"latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}


def _list_impl() -> tuple[list[str], dict]:
    start_ms = time.time() * 1000
    directory = startup_dir()
    names = sorted(p.stem for p in directory.glob("*.lnk")) if directory.is_dir() else []
    return names, {"count": len(names), "latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}


def _view_impl(name: str | None = None) -> tuple[dict, dict]:
    """Shortcut details for name, or open the startup folder when name is None."""
    start_ms = time.time() * 1000
    directory = startup_dir()
    if name is None:
        os.startfile(directory)
        result = {"opened": str(directory)}
    else:
        lnk = find_shortcut(directory, name)
        assert lnk is not None, f"Shortcut for {name} does not exist."
        lines = _powershell(read_script(lnk)).splitlines() + ["", ""]
        result = {"shortcut": str(lnk), "target": lines[0].strip(), "working_dir": lines[1].strip()}
    return result, {"latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Manage startup applications on Windows",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_startups.py add C:/Tools/sync.exe --name sync
  sft_startups.py list
  sft_startups.py view Sync
  sft_startups.py remove Sync
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_add = subparsers.add_parser("add", help="Add an application to startup")
    p_add.add_argument("app_path", help="Application to start")
    p_add.add_argument("-n", "--name", help="Shortcut name without .lnk (default: app file name)")
    p_add.add_argument("-w", "--workdir", "--working-dir", dest="working_dir", help="Working directory (default: app folder)")

    p_rm = subparsers.add_parser("remove", help="Remove a startup shortcut")
    p_rm.add_argument("name", help="Shortcut name without .lnk")

    subparsers.add_parser("list", help="List startup shortcuts")

    p_view = subparsers.add_parser("view", help="Show a shortcut, or open the startup folder")
    p_view.add_argument("name", nargs="?", help="Shortcut name without .lnk")

    args = parser.parse_args()

    try:
        if args.command == "add":
            lnk, metrics = _add_impl(args.app_path, args.name, args.working_dir)
            print(f"Added {Path(args.app_path).absolute()} as {lnk}")
            _log("INFO", "add", f"lnk={lnk}", metrics=json.dumps(metrics))
        elif args.command == "remove":
            removed, metrics = _remove_impl(args.name)
            print(f"Removed shortcut for {args.name}" if removed else f"Shortcut for {args.name} does not exist.")
            _log("INFO", "remove", f"name={args.name} removed={removed}", metrics=json.dumps(metrics))
        elif args.command == "list":
            names, metrics = _list_impl()
            print(f"{'Shortcut Name':<30}")
            print("-" * 30)
            for n in names:
                print(f"{n:<30}")
            _log("INFO", "list", f"count={len(names)}", metrics=json.dumps(metrics))
        elif args.command == "view":
            result, metrics = _view_impl(args.name)
            if "opened" in result:
                print(f"Opened startup directory: {result['opened']}")
            else:
                print(f"{result['shortcut']}\n  Target: {result['target']}\n  Working directory: {result['working_dir']}")
            _log("INFO", "view", f"name={args.name}", metrics=json.dumps(metrics))
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
