#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "Pillow>=10.0",
#     "tqdm>=4.66",
# ]
# ///
"""Sort images into aspect-ratio folders.

Each image's width/height ratio is matched against the ``min:max`` ranges in
order (min inclusive, max exclusive). A match lands in
``<output>/aspect_<min>_<max>/<relative parent>/``, anything else in
``<output>/other/...``. The output directory must not exist yet.

Usage:
    sft_pps.py -i ./wallpapers
    sft_pps.py -i ./wallpapers -o ./sorted -r 0:1 1:1.5 1.5:8 --move --clean
"""

import argparse
import json
import math
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
EXPOSED = ["classify"]

CONFIG = {
    "version": "0.1.36",
    "output": "./classified",
    "ratios": ["0:1", "1:8"],
    "threads": os.cpu_count() or 1,
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def _bound(text: str, fallback: float) -> float:
    try:
        return float(text)
    except ValueError:
        return fallback


def parse_ratio(text: str) -> tuple[float, float]:
    """'min:max'; an unparseable side is open-ended."""
    low, _, high = text.partition(":")
    return _bound(low, -math.inf), _bound(high, math.inf)


def _fmt(value: float) -> str:
    return f"{value:g}"


def ratio_folder(aspect: float, ratios: list[tuple[float, float]]) -> str:
    for low, high in ratios:
        if low <= aspect < high:
            return f"aspect_{_fmt(low)}_{_fmt(high)}"
    return "other"


def is_image(path: Path) -> bool:
    from PIL import Image

    return path.suffix.lower() in Image.registered_extensions()


def classify_one(path: Path, input_dir: Path, output_dir: Path, ratios: list[tuple[float, float]],
                 move: bool) -> tuple[str, float, str]:
    """Copy or move one image. Returns (relative path, aspect, folder)."""
    from PIL import Image

    with Image.open(path) as img:
        width, height = img.size
    aspect = width / height
    folder = ratio_folder(aspect, ratios)
    rel = path.relative_to(input_dir)
    target_dir = output_dir / folder / rel.parent
    target_dir.mkdir(parents=True, exist_ok=True)
    if move:
        shutil.move(str(path), str(target_dir / rel.name))
    else:
        shutil.copy2(path, target_dir / rel.name)
    return str(rel), aspect, folder


def remove_empty_dirs(root: Path) -> list[str]:
    """Delete empty directories below root, deepest first."""
    removed = []
    for d in sorted((p for p in root.rglob("*") if p.is_dir()), key=lambda p: len(p.parts), reverse=True):
        if not any(d.iterdir()):
            d.rmdir()
            removed.append(str(d))
    return removed


def _classify_impl(input_dir: str, output_dir: str = CONFIG["output"], ratios: list[str] | None = None,
                   move: bool = False, clean: bool = False, threads: int = CONFIG["threads"],
                   verbose: bool = False) -> tuple[dict, dict]:
    from tqdm import tqdm

    start_ms = time.time() * 1000
    src, out = Path(input_dir).resolve(), Path(output_dir).resolve()
    assert src.is_dir(), f"Input directory not found: {input_dir}"
    assert not out.exists(), f"{output_dir} already exists!"
    assert threads >= 1, "threads must be at least 1"
    bounds = [parse_ratio(r) for r in (ratios or CONFIG["ratios"])]
    out.mkdir(parents=True)

    images = sorted(p for p in src.rglob("*") if p.is_file() and is_image(p))
    counts: dict[str, int] = {}
    failed = []
    with ThreadPoolExecutor(max_workers=threads) as pool:
        futures = {pool.submit(classify_one, p, src, out, bounds, move): p for p in images}
        for fut in tqdm(as_completed(futures), total=len(futures), desc="Classifying", unit="img"):
            try:
                rel, aspect, folder = fut.result()
            except OSError as e:
                failed.append(str(futures[fut]))
                _log("WARN", "classify_failed", str(futures[fut]), detail=str(e))
                continue
            counts[folder] = counts.get(folder, 0) + 1
            if verbose:
                print(f"Processing file: {rel} with aspect ratio: {aspect:.2f} -> {folder}")

    removed = remove_empty_dirs(src) if clean else []
    metrics = {
        "images": len(images),
        "failed": len(failed),
        "removed_dirs": len(removed),
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if not failed else "partial",
    }
    return {"counts": counts, "failed": failed, "removed_dirs": removed}, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Classify images by aspect ratio and copy or move them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_pps.py -i ./wallpapers
  sft_pps.py -i ./wallpapers -o ./sorted -r 0:1 1:1.5 1.5:8 --move --clean
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("-i", "--input", required=True, help="Directory of (nested) images")
    parser.add_argument("-o", "--output", default=CONFIG["output"], help="Output directory, must not exist (default: %(default)s)")
    parser.add_argument("-m", "--move", action="store_true", help="Move files instead of copying")
    parser.add_argument("-c", "--clean", action="store_true", help="Remove empty input directories afterwards")
    parser.add_argument("-v", "--verbose", action="store_true", help="Print every file")
    parser.add_argument("-r", "--ratios", nargs="+", default=CONFIG["ratios"], help="Ranges as min:max (default: %(default)s)")
    parser.add_argument("-t", "--threads", type=int, default=CONFIG["threads"], help="Worker threads (default: CPU count)")

    args = parser.parse_args()

    try:
        print(f"Input Directory: {args.input}")
        print(f"Output Directory: {args.output}")
        print(f"Number of Threads: {args.threads}")
        print(f"Move Files: {'Yes' if args.move else 'No'}")
        print(f"Clean Empty Directories: {'Yes' if args.clean else 'No'}")
        print("Aspect Ratio Ranges:")
        for i, r in enumerate(args.ratios):
            low, high = parse_ratio(r)
            print(f"  Range {i}: {low:.2f}:{high:.2f}")
        result, metrics = _classify_impl(args.input, args.output, args.ratios, args.move, args.clean,
                                         args.threads, args.verbose)
        for folder, count in sorted(result["counts"].items()):
            print(f"{folder}: {count}")
        for path in result["failed"]:
            print(f"Failed to process file: {path}", file=sys.stderr)
        for path in result["removed_dirs"]:
            print(f"Deleted empty directory: {path}")
        _log("INFO", "classify", f"input={args.input}", metrics=json.dumps(metrics))
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
