#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "tqdm>=4.66",
# ]
# ///
"""Re-encode every file of a directory tree to audio with ffmpeg.

The tree is mirrored under the output directory with the target extension.
Each file runs ``ffmpeg -i <in> -vn -b:a <bitrate>k -ar <rate> <out> -y``;
files run in parallel and failures are reported at the end.

Usage:
    sft_arep.py -i ./music
    sft_arep.py -i ./music -o ./opus -t opus -b 160 -s 48000 -v
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
EXPOSED = ["resample"]

CONFIG = {
    "version": "0.1.36",
    "output": "./resampled",
    "bitrate": 320,
    "sample_rate": 48000,
    "target_extension": "mp3",
    "workers": os.cpu_count() or 1,
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def ffmpeg_command(src: Path, dst: Path, bitrate: int, sample_rate: int) -> list[str]:
    return ["ffmpeg", "-i", str(src), "-vn", "-b:a", f"{bitrate}k", "-ar", str(sample_rate), str(dst), "-y"]


def plan_outputs(input_dir: Path, output_dir: Path, extension: str) -> list[tuple[Path, Path]]:
    """(source, destination) for every file, the tree mirrored with a new suffix."""
    ext = "." + extension.lstrip(".")
    return [
        (src, (output_dir / src.relative_to(input_dir)).with_suffix(ext))
        for src in sorted(input_dir.rglob("*"))
        if src.is_file()
    ]


def _encode_one(src: Path, dst: Path, bitrate: int, sample_rate: int) -> bool:
    dst.parent.mkdir(parents=True, exist_ok=True)
    try:
        result = subprocess.run(ffmpeg_command(src, dst, bitrate, sample_rate), capture_output=True, text=True)
    except FileNotFoundError as e:
        raise RuntimeError("ffmpeg not found on PATH") from e
    return result.returncode == 0


def _resample_impl(
    input_dir: str,
    output_dir: str = CONFIG["output"],
    bitrate: int = CONFIG["bitrate"],
    sample_rate: int = CONFIG["sample_rate"],
    target_extension: str = CONFIG["target_extension"],
) -> tuple[dict, dict]:
    from tqdm import tqdm

    start_ms = time.time() * 1000
    src_root, out_root = Path(input_dir), Path(output_dir)
    assert src_root.is_dir(), f"Input directory not found: {input_dir}"
    out_root.mkdir(parents=True, exist_ok=True)

    jobs = plan_outputs(src_root, out_root, target_extension)
    done, failed = [], []
    with ThreadPoolExecutor(max_workers=CONFIG["workers"]) as pool:
        futures = {pool.submit(_encode_one, src, dst, bitrate, sample_rate): (src, dst) for src, dst in jobs}
        for fut in tqdm(as_completed(futures), total=len(futures), desc="Resampling", unit="file"):
            src, dst = futures[fut]
            (done if fut.result() else failed).append((str(src), str(dst)))

    metrics = {
        "files": len(jobs),
        "converted": len(done),
        "failed": len(failed),
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if not failed else "partial",
    }
    return {"converted": done, "failed": failed}, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Batch re-encode audio with ffmpeg, mirroring the directory tree",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_arep.py -i ./music
  sft_arep.py -i ./music -o ./opus -t opus -b 160
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("-i", "--input", required=True, help="Input directory")
    parser.add_argument("-o", "--output", default=CONFIG["output"], help="Output directory (default: %(default)s)")
    parser.add_argument("-b", "--bitrate", type=int, default=CONFIG["bitrate"], help="Audio bitrate in kbps (default: %(default)s)")
    parser.add_argument("-s", "--sample-rate", type=int, default=CONFIG["sample_rate"], help="Sample rate in Hz (default: %(default)s)")
    parser.add_argument("-t", "--target-extension", default=CONFIG["target_extension"], help="Output extension (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Print every converted file")

    args = parser.parse_args()

    try:
        result, metrics = _resample_impl(args.input, args.output, args.bitrate, args.sample_rate, args.target_extension)
        if args.verbose:
            for _src, dst in result["converted"]:
                print(f"Resampled|OUT {dst}")
        for src, _dst in result["failed"]:
            print(f"Failed to resample {src}", file=sys.stderr)
        print(f"Done! {metrics['converted']} converted, {metrics['failed']} failed.")
        _log("INFO", "resample", f"input={args.input}", metrics=json.dumps(metrics))
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
