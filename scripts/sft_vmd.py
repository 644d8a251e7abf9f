#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "tqdm>=4.66",
# ]
# ///
"""Concatenate every short video under a directory into one file.

Videos (mp4, avi, mkv) shorter than the limit, measured with ffprobe, are
listed in ``video_list.txt`` and joined with ffmpeg's concat demuxer.
Streams are copied, or re-encoded with NVENC when ``--use-nvenc`` is set.

Usage:
    sft_vmd.py
    sft_vmd.py -d ./clips -m 30 -o merged.mp4
    sft_vmd.py -d ./clips --use-nvenc
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
EXPOSED = ["merge"]

CONFIG = {
    "version": "0.1.36",
    "dir": "./",
    "max_duration": 15,
    "output": "output.mp4",
    "list_file": "video_list.txt",
    "extensions": (".mp4", ".avi", ".mkv"),
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def find_videos(root: Path) -> list[Path]:
    return sorted(p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in CONFIG["extensions"])


def probe_duration(path: Path) -> float | None:
    """Container duration in seconds, None if ffprobe cannot tell."""
    try:
        result = subprocess.run(
            ["ffprobe", "-v", "error", "-show_entries", "format=duration", "-of", "default=nw=1:nk=1", str(path)],
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as e:
        raise RuntimeError("ffprobe not found on PATH") from e
    try:
        return float(result.stdout.strip())
    except ValueError:
        return None


def concat_list(paths: list[Path]) -> str:
    return "".join(f"file '{p}'\n" for p in paths)


def concat_command(list_file: str, output: str, use_nvenc: bool = False) -> list[str]:
    codec = ["-c:v", "h264_nvenc", "-c:a", "copy"] if use_nvenc else ["-c", "copy"]
    return ["ffmpeg", "-f", "concat", "-safe", "0", "-i", list_file, *codec, output, "-y"]


def _merge_impl(
    directory: str = CONFIG["dir"],
    max_duration: float = CONFIG["max_duration"],
    output: str = CONFIG["output"],
    use_nvenc: bool = False,
) -> tuple[list[str], dict]:
    from tqdm import tqdm

    start_ms = time.time() * 1000
    root = Path(directory)
    assert root.is_dir(), f"Directory not found: {directory}"

    videos = find_videos(root)
    short = []
    for path in tqdm(videos, desc="Probing", unit="video"):
        duration = probe_duration(path)
        if duration is not None and duration < max_duration:
            short.append(path)
    assert short, f"No videos found with duration less than {max_duration} seconds."

    list_file = CONFIG["list_file"]
    Path(list_file).write_text(concat_list([p.resolve() for p in short]), encoding="utf-8")
    try:
        result = subprocess.run(concat_command(list_file, output, use_nvenc), capture_output=True, text=True)
    except FileNotFoundError as e:
        raise RuntimeError("ffmpeg not found on PATH") from e
    if result.returncode != 0:
        raise RuntimeError(f"FFmpeg command failed with status {result.returncode}: {result.stderr.strip()[-500:]}")

    metrics = {
        "videos": len(videos),
        "merged": len(short),
        "output": output,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return [str(p) for p in short], metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Concatenate short videos with ffmpeg",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_vmd.py
  sft_vmd.py -d ./clips -m 30 -o merged.mp4
  sft_vmd.py -d ./clips --use-nvenc
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("-d", "--dir", default=CONFIG["dir"], help="Directory searched for videos (default: %(default)s)")
    parser.add_argument("-m", "--max-duration", type=float, default=CONFIG["max_duration"], help="Only videos shorter than this many seconds (default: %(default)s)")
    parser.add_argument("-o", "--output", default=CONFIG["output"], help="Output file (default: %(default)s)")
    parser.add_argument("-u", "--use-nvenc", action="store_true", help="Re-encode video with h264_nvenc")

    args = parser.parse_args()

    try:
        print(f"Using directory: {args.dir}")
        merged, metrics = _merge_impl(args.dir, args.max_duration, args.output, args.use_nvenc)
        print(f"Videos concatenated successfully to {args.output} ({len(merged)} files)")
        _log("INFO", "merge", f"dir={args.dir}", metrics=json.dumps(metrics))
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
