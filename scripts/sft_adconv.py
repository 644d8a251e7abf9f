#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "pandas>=2.0",
# ]
# ///
"""Convert a wide CSV into the long item_id,timestamp,target layout.

Modes:
    multiple  every selected column becomes an item; item_id is the column name
    single    one column is the target; item_id is row_index // group_size

A column named ``timestamp`` (any case) is used as the timestamp unless
``-t`` says otherwise. Options left out on the command line are asked for
interactively.

Usage:
    sft_adconv.py data.csv long.csv -m multiple -c cpu,mem
    sft_adconv.py data.csv long.csv -m single -c load -g 100
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
EXPOSED = ["convert"]

CONFIG = {
    "version": "0.1.36",
    "group_size": 1,
    "modes": ("multiple", "single"),
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def detect_timestamp(columns: list[str]) -> str | None:
    return next((c for c in columns if c.lower() == "timestamp"), None)


def to_long(df, timestamp: str, targets: list[str], mode: str, group_size: int = 1):
    """Long-format frame with columns item_id, timestamp, target."""
    import pandas as pd

    assert timestamp in df.columns, f"Column not found: {timestamp}"
    assert targets, "No target columns selected"
    for col in targets:
        assert col in df.columns, f"Column not found: {col}"
        assert col != timestamp, "Target column cannot be the timestamp column"
    assert group_size >= 1, "group_size must be at least 1"

    if mode == "single":
        assert len(targets) == 1, "Single mode takes exactly one target column"
        return pd.DataFrame({
            "item_id": (pd.RangeIndex(len(df)) // group_size).astype(str),
            "timestamp": df[timestamp].to_numpy(),
            "target": df[targets[0]].to_numpy(),
        })
    assert mode == "multiple", f"Unknown mode: {mode}"
    # row-major: every selected column for row 0, then row 1, ...
    melted = df[[timestamp] + targets].reset_index().melt(
        id_vars=["index", timestamp], value_vars=targets, var_name="item_id", value_name="target"
    )
    melted["order"] = melted["item_id"].map({c: i for i, c in enumerate(targets)})
    melted = melted.sort_values(["index", "order"], kind="stable")
    return melted[["item_id", timestamp, "target"]].rename(columns={timestamp: "timestamp"}).reset_index(drop=True)


def _ask_choice(prompt: str, options: list[str]) -> str:
    for i, opt in enumerate(options):
        print(f"  [{i}] {opt}")
    raw = input(f"{prompt} [0]: ").strip() or "0"
    assert raw.isdigit() and int(raw) < len(options), f"Invalid selection: {raw}"
    return options[int(raw)]


def _ask_many(prompt: str, options: list[str]) -> list[str]:
    for i, opt in enumerate(options):
        print(f"  [{i}] {opt}")
    raw = input(f"{prompt} (comma-separated indices): ").strip()
    picks = [p.strip() for p in raw.split(",") if p.strip()]
    assert all(p.isdigit() and int(p) < len(options) for p in picks), f"Invalid selection: {raw}"
    return [options[int(p)] for p in picks]


def _convert_impl(input_path: str, output_path: str, timestamp: str, targets: list[str], mode: str,
                  group_size: int = CONFIG["group_size"]) -> tuple[int, dict]:
    """Returns the number of input records processed."""
    import pandas as pd

    start_ms = time.time() * 1000
    df = pd.read_csv(input_path, dtype=str, keep_default_na=False)
    out = to_long(df, timestamp, targets, mode, group_size)
    out.to_csv(output_path, index=False)
    metrics = {
        "records": len(df),
        "rows_written": len(out),
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return len(df), metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Convert CSV files to item_id,timestamp,target for anomaly detection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_adconv.py data.csv long.csv -m multiple -c cpu,mem
  sft_adconv.py data.csv long.csv -m single -c load -g 100
  sft_adconv.py data.csv long.csv            # prompts for the rest
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("input", help="Input CSV file")
    parser.add_argument("output", help="Output CSV file")
    parser.add_argument("-g", "--group-size", type=int, default=CONFIG["group_size"], help="Rows per item_id in single mode (default: %(default)s)")
    parser.add_argument("-t", "--timestamp-column", help="Timestamp column (default: auto-detect 'timestamp')")
    parser.add_argument("-m", "--mode", choices=CONFIG["modes"], help="Target mode")
    parser.add_argument("-c", "--columns", help="Comma-separated target columns")

    args = parser.parse_args()

    try:
        import pandas as pd

        assert Path(args.input).is_file(), f"File not found: {args.input}"
        headers = list(pd.read_csv(args.input, nrows=0).columns)

        timestamp = args.timestamp_column or detect_timestamp(headers)
        if timestamp and not args.timestamp_column:
            print(f"Automatically selected '{timestamp}' as the timestamp column.")
        if not timestamp:
            timestamp = _ask_choice("Select the timestamp column", headers)

        available = [h for h in headers if h != timestamp]
        assert available, "No other columns available besides timestamp"
        mode = args.mode or _ask_choice("Select target mode", list(CONFIG["modes"]))
        if args.columns:
            targets = [c.strip() for c in args.columns.split(",") if c.strip()]
        elif mode == "multiple":
            targets = _ask_many("Select columns to convert into targets", available)
        else:
            targets = [_ask_choice("Select the target column", available)]

        records, metrics = _convert_impl(args.input, args.output, timestamp, targets, mode, args.group_size)
        print(f"Processed {records} records into {args.output}")
        _log("INFO", "convert", f"input={args.input} mode={mode}", metrics=json.dumps(metrics))
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
