#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "numpy>=1.26",
#     "soundfile>=0.12",
#     "fastmcp",
# ]
# ///
"""Cut silence out of a 16-bit WAV file.

A frame is kept when any channel's absolute sample value is above
``10 ** (db / 20) * 32767`` (truncated to an integer). Kept frames are
written back to back with the input's sample rate and channel count.

Usage:
    sft_aupr.py trim talk.wav
    sft_aupr.py trim talk.wav trimmed.wav -t -45
    sft_aupr.py mcp-stdio
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
EXPOSED = ["trim"]

CONFIG = {
    "version": "0.1.36",
    "output": "./output.wav",
    "threshold_db": -60.0,
    "full_scale": 32767,
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def amplitude_threshold(db: float) -> int:
    return int(10 ** (db / 20) * CONFIG["full_scale"])


def loud_frames(samples, threshold: int):
    """Boolean mask of frames where some channel exceeds threshold."""
    import numpy as np

    arr = np.asarray(samples).astype(np.int32)
    if arr.ndim == 1:
        arr = arr[:, None]
    return (np.abs(arr) > threshold).any(axis=1)


def _trim_impl(input_path: str, output: str = CONFIG["output"], threshold_db: float = CONFIG["threshold_db"]) -> tuple[str, dict]:
    import soundfile as sf

    start_ms = time.time() * 1000
    assert Path(input_path).is_file(), f"File not found: {input_path}"
    info = sf.info(input_path)
    assert info.subtype == "PCM_16", f"Expected 16-bit PCM, got {info.subtype}"

    samples, rate = sf.read(input_path, dtype="int16", always_2d=True)
    threshold = amplitude_threshold(threshold_db)
    kept = samples[loud_frames(samples, threshold)]
    sf.write(output, kept, rate, subtype="PCM_16")

    metrics = {
        "frames_in": len(samples),
        "frames_out": len(kept),
        "channels": samples.shape[1],
        "threshold": threshold,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return f"Kept {len(kept)} of {len(samples)} frames. Output written to {output}", metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Remove silent frames from a 16-bit WAV",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_aupr.py trim talk.wav
  sft_aupr.py trim talk.wav trimmed.wav -t -45
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_trim = subparsers.add_parser("trim", help="Drop frames below the threshold")
    p_trim.add_argument("input", help="16-bit WAV file")
    p_trim.add_argument("output", nargs="?", default=CONFIG["output"], help="Output WAV (default: %(default)s)")
    p_trim.add_argument("-t", "--threshold-db", type=float, default=CONFIG["threshold_db"], help="Silence level in dBFS (default: %(default)s)")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "trim":
            result, metrics = _trim_impl(args.input, args.output, args.threshold_db)
            print(result)
            _log("INFO", "trim", f"input={args.input}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("aupr")

    @mcp.tool()
    def trim(input_path: str, output: str = CONFIG["output"], threshold_db: float = CONFIG["threshold_db"]) -> str:
        """Write a copy of a 16-bit WAV with silent frames removed.

        Args:
            input_path: Source WAV
            output: Destination WAV
            threshold_db: Frames quieter than this many dBFS are dropped
        """
        try:
            result, metrics = _trim_impl(input_path, output, threshold_db)
            return json.dumps({"result": result, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
