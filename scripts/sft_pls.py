#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "Pillow>=10.0",
#     "numpy>=1.26",
#     "fastmcp",
# ]
# ///
"""Identify, test and sort images by colour, transparency and file size.

An image counts as grayscale when its summed channel differences
(|r-g| + |g-b| + |r-b| over every pixel) fall below ``pixels * threshold``.
``extract`` and ``small`` move matches out of the input tree into a sibling
directory (``<input>-<type>`` and ``<input>-small``), renaming to
``name_N.ext`` on collision.

Usage:
    sft_pls.py identify a.png b.jpg
    sft_pls.py check-diff scan.jpg -t 0.05
    sft_pls.py extract -i ./photos -f col
    sft_pls.py small -i ./photos -s 0.5
    sft_pls.py mcp-stdio
"""

import argparse
import json
import os
import shutil
import sys
import time
from concurrent.futures import ThreadPoolExecutor
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
EXPOSED = ["identify", "check_diff", "extract", "small"]

CONFIG = {
    "version": "0.1.36",
    "threshold": 0.02,
    "size_mb": 0.2,
    "extensions": {".jpg", ".jpeg", ".png"},
    "filter_types": ("gsc", "col", "tra", "ntra"),
    "workers": os.cpu_count() or 1,
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def image_properties(path: Path) -> tuple[bool, bool]:
    """(stored as grayscale, has alpha channel) from the image mode."""
    from PIL import Image

    with Image.open(path) as img:
        return img.mode in ("L", "LA", "I;16", "1"), img.mode in ("RGBA", "LA", "PA") or "transparency" in img.info


def gray_difference(path: Path) -> tuple[float, int]:
    """(summed channel difference, pixel count)."""
    import numpy as np
    from PIL import Image

    with Image.open(path) as img:
        rgb = np.asarray(img.convert("RGB"), dtype=np.int32)
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    diff = np.abs(r - g).sum() + np.abs(g - b).sum() + np.abs(r - b).sum()
    return float(diff), int(r.size)


def is_grayscale(path: Path, threshold: float) -> bool:
    diff, pixels = gray_difference(path)
    return diff < pixels * threshold


def matches(path: Path, filter_type: str, threshold: float) -> bool:
    if filter_type == "gsc":
        return is_grayscale(path, threshold)
    if filter_type == "col":
        return not is_grayscale(path, threshold)
    if filter_type == "tra":
        return image_properties(path)[1]
    if filter_type == "ntra":
        return not image_properties(path)[1]
    raise ValueError(f"Invalid filter type: {filter_type}")


def find_images(root: Path) -> list[Path]:
    return sorted(p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in CONFIG["extensions"])


def free_destination(src: Path, dst_dir: Path) -> Path:
    dst = dst_dir / src.name
    counter = 1
    while dst.exists():
        dst = dst_dir / f"{src.stem}_{counter}{src.suffix}"
        counter += 1
    return dst


def default_output(input_dir: Path, suffix: str) -> Path:
    return input_dir.parent / f"{input_dir.name}-{suffix}"


def _move_all(files: list[Path], input_dir: Path, out: Path) -> list[str]:
    out.mkdir(parents=True, exist_ok=True)
    moved = []
    for f in files:
        shutil.move(str(f), str(free_destination(f, out)))
        moved.append(str(f.relative_to(input_dir)))
    return moved


def _identify_impl(images: list[str]) -> tuple[list[dict], dict]:
    start_ms = time.time() * 1000
    report = []
    for img in images:
        try:
            gray, alpha = image_properties(Path(img))
            report.append({"path": img, "grayscale": gray, "transparent": alpha})
        except OSError as e:
            report.append({"path": img, "error": str(e)})
    failed = sum(1 for r in report if "error" in r)
    metrics = {"images": len(images), "failed": failed, "latency_ms": round(time.time() * 1000 - start_ms, 2),
               "status": "success" if not failed else "partial"}
    return report, metrics


def _check_diff_impl(image: str, threshold: float = CONFIG["threshold"]) -> tuple[float, dict]:
    """Signed margin: negative means grayscale at this threshold."""
    start_ms = time.time() * 1000
    assert Path(image).is_file(), f"File not found: {image}"
    diff, pixels = gray_difference(Path(image))
    metrics = {"pixels": pixels, "latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}
    return diff - pixels * threshold, metrics


def _extract_impl(input_dir: str, filter_type: str = "gsc", output_dir: str | None = None,
                  threshold: float = CONFIG["threshold"]) -> tuple[list[str], dict]:
    start_ms = time.time() * 1000
    root = Path(input_dir)
    assert root.is_dir(), f"Directory not found: {input_dir}"
    assert filter_type in CONFIG["filter_types"], f"Invalid filter type: {filter_type}"
    out = Path(output_dir) if output_dir else default_output(root, filter_type)
    files = [f for f in find_images(root) if out not in f.parents]

    def check(f: Path) -> bool:
        try:
            return matches(f, filter_type, threshold)
        except OSError as e:
            _log("WARN", "unreadable", str(f), detail=str(e))
            return False

    with ThreadPoolExecutor(max_workers=CONFIG["workers"]) as pool:
        selected = [f for f, hit in zip(files, pool.map(check, files)) if hit]
    moved = _move_all(selected, root, out)
    metrics = {"scanned": len(files), "moved": len(moved), "output": str(out),
               "latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}
    return moved, metrics


def _small_impl(input_dir: str, output_dir: str | None = None, size_mb: float = CONFIG["size_mb"]) -> tuple[list[str], dict]:
    start_ms = time.time() * 1000
    root = Path(input_dir)
    assert root.is_dir(), f"Directory not found: {input_dir}"
    out = Path(output_dir) if output_dir else default_output(root, "small")
    limit = int(size_mb * 1024 * 1024)
    files = [f for f in find_images(root) if out not in f.parents]
    moved = _move_all([f for f in files if f.stat().st_size < limit], root, out)
    metrics = {"scanned": len(files), "moved": len(moved), "output": str(out),
               "latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}
    return moved, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Identify and sort images by grayscale, transparency and size",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_pls.py identify a.png b.jpg
  sft_pls.py check-diff scan.jpg -t 0.05
  sft_pls.py extract -i ./photos -f tra
  sft_pls.py small -i ./photos -s 0.5 -o ./thumbs
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_id = subparsers.add_parser("identify", help="Report grayscale and transparency")
    p_id.add_argument("images", nargs="+", help="Image files")

    p_diff = subparsers.add_parser("check-diff", help="Print the grayscale margin of an image")
    p_diff.add_argument("image", help="Image file")
    p_diff.add_argument("-t", "--threshold", type=float, default=CONFIG["threshold"], help="Per-pixel threshold (default: %(default)s)")

    p_ext = subparsers.add_parser("extract", help="Move images of one type out of a tree")
    p_ext.add_argument("-f", "--filter-type", "--type", default="gsc", choices=CONFIG["filter_types"], help="gsc, col, tra or ntra (default: %(default)s)")
    p_ext.add_argument("-i", "--input-dir", required=True, help="Input directory")
    p_ext.add_argument("-o", "--output-dir", help="Destination (default: <input>-<type>)")
    p_ext.add_argument("-t", "--threshold", type=float, default=CONFIG["threshold"], help="Per-pixel threshold (default: %(default)s)")

    p_small = subparsers.add_parser("small", help="Move images under a size limit")
    p_small.add_argument("-i", "--input-dir", required=True, help="Input directory")
    p_small.add_argument("-o", "--output-dir", help="Destination (default: <input>-small)")
    p_small.add_argument("-s", "--size", type=float, default=CONFIG["size_mb"], help="Size limit in MB (default: %(default)s)")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "identify":
            report, metrics = _identify_impl(args.images)
            for r in report:
                if "error" in r:
                    print(f"Error processing {r['path']}.")
                    continue
                print(f"{r['path']} is {'Grayscale' if r['grayscale'] else 'Colorful'}.")
                print(f"{r['path']} {'has Transparency' if r['transparent'] else 'has no transparency'}.")
            _log("INFO", "identify", f"images={len(args.images)}", metrics=json.dumps(metrics))
        elif args.command == "check-diff":
            margin, metrics = _check_diff_impl(args.image, args.threshold)
            print(f"The diff is {margin}")
            _log("INFO", "check_diff", f"image={args.image}", metrics=json.dumps(metrics))
        elif args.command == "extract":
            moved, metrics = _extract_impl(args.input_dir, args.filter_type, args.output_dir, args.threshold)
            for rel in moved:
                print(f"Extracted {rel}")
            _log("INFO", "extract", f"input={args.input_dir} type={args.filter_type}", metrics=json.dumps(metrics))
        elif args.command == "small":
            moved, metrics = _small_impl(args.input_dir, args.output_dir, args.size)
            for rel in moved:
                print(f"Moved {rel}")
            _log("INFO", "small", f"input={args.input_dir}", metrics=json.dumps(metrics))
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


# =============================================================================
# FASTMCP SERVER
# =============================================================================
def _run_mcp():
    from fastmcp import FastMCP

    mcp = FastMCP("pls")

    @mcp.tool()
    def identify(images: list[str]) -> str:
        """Report whether each image is grayscale and whether it has transparency.

        Args:
            images: Image file paths
        """
        try:
            report, metrics = _identify_impl(images)
            return json.dumps({"images": report, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    @mcp.tool()
    def check_diff(image: str, threshold: float = CONFIG["threshold"]) -> str:
        """Grayscale margin of an image; negative means grayscale.

        Args:
            image: Image file path
            threshold: Per-pixel channel-difference threshold
        """
        try:
            margin, metrics = _check_diff_impl(image, threshold)
            return json.dumps({"margin": margin, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
