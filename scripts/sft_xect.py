#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "tqdm>=4.66",
# ]
# ///
"""Drive the GARbro tools to unpack game archives and convert images to PNG.

Commands:
    ui <file>        open a file in GARbro.GUI
    ic <files...>    convert images to PNG with Image.Convert
    all <roots...>   extract every .<ext> archive, convert what is not
                     jpg/jpeg/png, copy the rest into the output directory
    top <roots...>   run ``all`` on each root separately

GARbro executables are looked up under --bin-path (env GARBRO_ROOT).

Usage:
    sft_xect.py -b C:/Tools/GARbro all ./game/data -e dpak -o ./out
    sft_xect.py ic a.tlg b.tlg
"""

import argparse
import json
import os
import shutil
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
EXPOSED = ["ui", "ic", "all", "top"]

CONFIG = {
    "version": "0.1.36",
    "extension": "dpak",
    "output_all": "./output",
    "output_top": "./",
    "image_cmd": "Image.Convert.exe",
    "gui_cmd": "GARbro.GUI.exe",
    "console_cmd": "GARbro.Console.exe",
    "ready_extensions": {"jpg", "jpeg", "png"},
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
class GarbroError(RuntimeError):
    """A GARbro tool exited with a failure status."""


def tool(bin_path: str, name: str) -> str:
    return str(Path(bin_path) / CONFIG[name])


def find_archives(roots: list[Path], extension: str) -> list[Path]:
    found = []
    for root in roots:
        found.extend(sorted(p for p in root.rglob(f"*.{extension}") if p.is_file()))
    return found


def split_for_conversion(files: list[Path]) -> tuple[list[Path], list[Path]]:
    """(needs PNG conversion, already jpg/jpeg/png)."""
    raw, ready = [], []
    for f in files:
        (ready if f.suffix.lstrip(".") in CONFIG["ready_extensions"] else raw).append(f)
    return raw, ready


def _run(cmd: list[str], cwd: Path, verbose: bool, failure: str):
    try:
        result = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise GarbroError(f"{cmd[0]} not found") from e
    if result.returncode != 0:
        _log("ERROR", "tool_failed", failure, detail=result.stderr.strip()[-500:])
        raise GarbroError(f"{failure}: {result.stderr.strip()}")
    if verbose and result.stdout:
        print(result.stdout)


def extract_archives(bin_path: str, archives: list[Path], temp_dir: Path, verbose: bool = False):
    from tqdm import tqdm

    for archive in tqdm(archives, desc="Extracting", unit="archive"):
        _run([tool(bin_path, "console_cmd"), "-x", str(archive.resolve())], temp_dir, verbose,
             f"Failed to uncompress {archive}")


def convert_tree(bin_path: str, source_dir: Path, output_dir: Path, verbose: bool = False) -> tuple[int, int]:
    """Convert raw pictures under source_dir into output_dir and copy the rest. Returns (converted, copied)."""
    from tqdm import tqdm

    files = sorted(p for p in source_dir.rglob("*") if p.is_file())
    raw, ready = split_for_conversion(files)
    if not raw:
        print(f"No raw pictures found in {source_dir}")
    for pic in tqdm(raw, desc="Converting", unit="img"):
        _run([tool(bin_path, "image_cmd"), "-t", "PNG", str(pic.resolve())], output_dir, verbose,
             f"Failed to convert {pic}")
    copied = 0
    for pic in ready:
        if pic.parent.resolve() != output_dir.resolve():
            shutil.copy2(pic, output_dir / pic.name)
            copied += 1
    return len(raw), copied


def _all_impl(bin_path: str, roots: list[str], extension: str = CONFIG["extension"],
              output_dir: str = CONFIG["output_all"], verbose: bool = False) -> tuple[dict, dict]:
    start_ms = time.time() * 1000
    out = Path(output_dir)
    temp = out / "temp"
    temp.mkdir(parents=True, exist_ok=True)
    archives = find_archives([Path(r) for r in roots], extension)
    try:
        if not archives:
            print(f"No compressed files with extension {extension} found.")
        extract_archives(bin_path, archives, temp, verbose)
        converted, copied = convert_tree(bin_path, temp, out, verbose)
    finally:
        shutil.rmtree(temp, ignore_errors=True)
    metrics = {"archives": len(archives), "converted": converted, "copied": copied,
               "latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}
    return {"archives": len(archives), "converted": converted, "copied": copied}, metrics


def _top_impl(bin_path: str, roots: list[str], extension: str = CONFIG["extension"],
              output_dir: str = CONFIG["output_top"], verbose: bool = False) -> tuple[list[dict], dict]:
    start_ms = time.time() * 1000
    report = []
    for root in roots:
        result, _ = _all_impl(bin_path, [root], extension, output_dir, verbose)
        report.append({"root": root, **result})
    metrics = {"roots": len(roots), "latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}
    return report, metrics


def _ic_impl(bin_path: str, files: list[str], verbose: bool = False) -> tuple[int, dict]:
    start_ms = time.time() * 1000
    for f in files:
        assert Path(f).is_file(), f"File not found: {f}"
        _run([tool(bin_path, "image_cmd"), "-t", "PNG", str(Path(f).resolve())], Path.cwd(), verbose,
             f"Failed to convert {f}")
    metrics = {"converted": len(files), "latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}
    return len(files), metrics


def _ui_impl(bin_path: str, file: str):
    """Start the GUI without waiting for it."""
    try:
        subprocess.Popen([tool(bin_path, "gui_cmd"), file])
    except FileNotFoundError as e:
        raise GarbroError(f"{tool(bin_path, 'gui_cmd')} not found") from e


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Convert GARbro archives to PNG images",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_xect.py -b C:/Tools/GARbro all ./game/data -e dpak -o ./out
  sft_xect.py top ./disc1 ./disc2 -v
  sft_xect.py ic a.tlg b.tlg
  sft_xect.py ui sysgrp.arc
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("-b", "--bin-path", default=os.environ.get("GARBRO_ROOT"), help="GARbro install directory (env: GARBRO_ROOT)")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_ui = subparsers.add_parser("ui", help="Open a file in GARbro.GUI")
    p_ui.add_argument("file", help="File to open")

    p_ic = subparsers.add_parser("ic", help="Convert images to PNG")
    p_ic.add_argument("files", nargs="+", help="Image files")
    p_ic.add_argument("-v", "--verbose", action="store_true", help="Print tool output")

    for name, default, help_text in (("all", CONFIG["output_all"], "Extract all archives then convert"),
                                     ("top", CONFIG["output_top"], "Run `all` on each root separately")):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("root_paths", nargs="+", help="Directories to search")
        p.add_argument("-e", "--extension", default=CONFIG["extension"], help="Archive extension (default: %(default)s)")
        p.add_argument("-o", "--output-dir", default=default, help="Output directory (default: %(default)s)")
        p.add_argument("-v", "--verbose", action="store_true", help="Print tool output")

    args = parser.parse_args()

    try:
        if args.command is None:
            parser.print_help()
            return
        assert args.bin_path, "--bin-path or GARBRO_ROOT is required"
        if args.command == "ui":
            _ui_impl(args.bin_path, args.file)
            _log("INFO", "ui", f"file={args.file}")
        elif args.command == "ic":
            count, metrics = _ic_impl(args.bin_path, args.files, args.verbose)
            print(f"Converted {count} files")
            _log("INFO", "ic", f"files={count}", metrics=json.dumps(metrics))
        elif args.command == "all":
            result, metrics = _all_impl(args.bin_path, args.root_paths, args.extension, args.output_dir, args.verbose)
            print(f"Extracted {result['archives']} archives, converted {result['converted']}, copied {result['copied']}")
            _log("INFO", "all", f"roots={len(args.root_paths)}", metrics=json.dumps(metrics))
        elif args.command == "top":
            report, metrics = _top_impl(args.bin_path, args.root_paths, args.extension, args.output_dir, args.verbose)
            for r in report:
                print(f"{r['root']}: {r['archives']} archives, {r['converted']} converted, {r['copied']} copied")
            _log("INFO", "top", f"roots={len(args.root_paths)}", metrics=json.dumps(metrics))
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
