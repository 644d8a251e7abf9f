#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "fastmcp",
# ]
# ///
"""Split a video listing CSV into files by duration interval.

Durations are read from one column, as ``HH:MM:SS`` or ``MM:SS`` found
anywhere in the cell. A row falls into interval ``min:max`` when
``min < seconds <= max``; rows outside every interval go to ``other.csv``.

Usage:
    sft_vlc.py split -f videos.csv
    sft_vlc.py split -f videos.csv -i 0:300,300:1200 -l duration -o ./by_length
    sft_vlc.py mcp-stdio
"""

import argparse
import csv
import json
import os
import re
import sys
import time
from dataclasses import dataclass
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
EXPOSED = ["split"]

CONFIG = {
    "version": "0.1.36",
    "output_dir": "./classified",
    "intervals": "0:60,60:180,180:360,360:720,720:2880",
    "length_label": "length",
}

_LONG_RE = re.compile(r"(\d{2}):(\d{2}):(\d{2})")
_SHORT_RE = re.compile(r"(\d{2}):(\d{2})")


@dataclass(frozen=True)
class Interval:
    low: int
    high: int

    def contains(self, seconds: int) -> bool:
        return self.low < seconds <= self.high

    def __str__(self) -> str:
        return f"{self.low}-{self.high}"


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def parse_duration(text: str) -> int | None:
    """Seconds from the first HH:MM:SS (else MM:SS) in text, or None."""
    m = _LONG_RE.search(text)
    if m:
        h, mi, s = (int(g) for g in m.groups())
        return h * 3600 + mi * 60 + s
    m = _SHORT_RE.search(text)
    if m:
        mi, s = (int(g) for g in m.groups())
        return mi * 60 + s
    return None


def parse_intervals(text: str) -> list[Interval]:
    intervals = []
    for part in text.split(","):
        low, sep, high = part.strip().partition(":")
        assert sep, f"Interval '{part}' must look like min:max"
        intervals.append(Interval(int(low), int(high)))
    return intervals


def bucket_for(seconds: int, intervals: list[Interval]) -> str:
    return next((str(iv) for iv in intervals if iv.contains(seconds)), "other")


def _split_impl(
    file: str,
    output_dir: str = CONFIG["output_dir"],
    intervals: str = CONFIG["intervals"],
    length_label: str = CONFIG["length_label"],
) -> tuple[dict, dict]:
    """Write one CSV per bucket. Returns bucket -> row count plus invalid cells."""
    start_ms = time.time() * 1000
    src = Path(file)
    assert src.is_file(), f"File not found: {file}"
    parsed = parse_intervals(intervals)

    with open(src, newline="", encoding="utf-8") as f:
        reader = csv.reader(f)
        header = next(reader, None)
        assert header, f"{file} is empty"
        assert length_label in header, f"{length_label} is not find in {file}"
        pos = header.index(length_label)

        buckets: dict[str, list[list[str]]] = {}
        invalid = []
        for row in reader:
            if len(row) <= pos:
                continue
            seconds = parse_duration(row[pos])
            if seconds is None:
                invalid.append(row[pos])
                continue
            buckets.setdefault(bucket_for(seconds, parsed), []).append(row)

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    for key, rows in buckets.items():
        with open(out / f"{key}.csv", "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(header)
            writer.writerows(rows)

    counts = {key: len(rows) for key, rows in sorted(buckets.items())}
    metrics = {
        "rows": sum(counts.values()),
        "invalid": len(invalid),
        "buckets": len(counts),
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return {"counts": counts, "invalid": invalid}, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Group CSV rows into files by video length",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_vlc.py split -f videos.csv
  sft_vlc.py split -f videos.csv -i 0:300,300:1200 -l duration
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_split = subparsers.add_parser("split", help="Write one CSV per length interval")
    p_split.add_argument("-f", "--file", required=True, help="Input CSV")
    p_split.add_argument("-o", "--output-dir", default=CONFIG["output_dir"], help="Output directory (default: %(default)s)")
    p_split.add_argument("-i", "--intervals", default=CONFIG["intervals"], help="min:max pairs in seconds (default: %(default)s)")
    p_split.add_argument("-l", "--length-label", default=CONFIG["length_label"], help="Duration column (default: %(default)s)")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "split":
            result, metrics = _split_impl(args.file, args.output_dir, args.intervals, args.length_label)
            for cell in result["invalid"]:
                print(f"{cell} is not a valid duration")
            for key, count in result["counts"].items():
                print(f"Writing {key}|{count} to {Path(args.output_dir) / f'{key}.csv'}")
            _log("INFO", "split", f"file={args.file}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("vlc")

    @mcp.tool()
    def split(
        file: str,
        output_dir: str = CONFIG["output_dir"],
        intervals: str = CONFIG["intervals"],
        length_label: str = CONFIG["length_label"],
    ) -> str:
        """Split CSV rows into per-interval files by a duration column.

        Args:
            file: Input CSV
            output_dir: Directory receiving <min>-<max>.csv and other.csv
            intervals: Comma-separated min:max pairs in seconds
            length_label: Name of the duration column
        """
        try:
            result, metrics = _split_impl(file, output_dir, intervals, length_label)
            return json.dumps({"result": result, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
