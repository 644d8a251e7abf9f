#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "pandas>=2.0",
#     "fastmcp",
# ]
# ///
"""Filter airfoil sweep results by lift, drag and lift-to-drag ratio.

Expects a CSV with ``naca_code``, ``cl_at_best_aoa`` and ``cd_at_best_aoa``
columns, as produced by batch ffoil sweeps.

Usage:
    sft_fof.py filter results.csv
    sft_fof.py filter results.csv -o good.csv --min-lift-drag-ratio 40 --max-drag 0.02
    sft_fof.py mcp-stdio
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
EXPOSED = ["filter"]

CONFIG = {
    "version": "0.1.36",
    "output": "filtered.csv",
    "min_lift_drag_ratio": 5.0,
    "min_lift": 0.2,
    "max_drag": 0.15,
    "cl_column": "cl_at_best_aoa",
    "cd_column": "cd_at_best_aoa",
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def filter_frame(df, min_lift_drag_ratio: float, min_lift: float, max_drag: float):
    cl = df[CONFIG["cl_column"]]
    cd = df[CONFIG["cd_column"]]
    mask = (cl / cd >= min_lift_drag_ratio) & (cl >= min_lift) & (cd <= max_drag)
    return df[mask]


def _filter_impl(
    input_path: str,
    output: str = CONFIG["output"],
    min_lift_drag_ratio: float = CONFIG["min_lift_drag_ratio"],
    min_lift: float = CONFIG["min_lift"],
    max_drag: float = CONFIG["max_drag"],
) -> tuple[str, dict]:
    import pandas as pd

    start_ms = time.time() * 1000
    assert Path(input_path).is_file(), f"File not found: {input_path}"

    df = pd.read_csv(input_path, dtype={"naca_code": str})
    for col in (CONFIG["cl_column"], CONFIG["cd_column"]):
        assert col in df.columns, f"Missing column '{col}' in {input_path}"

    kept = filter_frame(df, min_lift_drag_ratio, min_lift, max_drag)
    kept.to_csv(output, index=False)

    metrics = {
        "rows_in": len(df),
        "rows_out": len(kept),
        "output": output,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return f"Filtering completed successfully! {len(kept)}/{len(df)} rows kept in {output}", metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Keep airfoils meeting lift, drag and L/D thresholds",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_fof.py filter results.csv
  sft_fof.py filter results.csv -o good.csv --min-lift-drag-ratio 40
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_f = subparsers.add_parser("filter", help="Write the rows passing every threshold")
    p_f.add_argument("input", help="Sweep results CSV")
    p_f.add_argument("-o", "--output", default=CONFIG["output"], help="Output CSV (default: %(default)s)")
    p_f.add_argument("--min-lift-drag-ratio", type=float, default=CONFIG["min_lift_drag_ratio"], help="Minimum Cl/Cd (default: %(default)s)")
    p_f.add_argument("--min-lift", type=float, default=CONFIG["min_lift"], help="Minimum Cl (default: %(default)s)")
    p_f.add_argument("--max-drag", type=float, default=CONFIG["max_drag"], help="Maximum Cd (default: %(default)s)")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "filter":
            result, metrics = _filter_impl(
                args.input, args.output, args.min_lift_drag_ratio, args.min_lift, args.max_drag,
            )
            print(result)
            _log("INFO", "filter", f"input={args.input}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("fof")

    @mcp.tool()
    def filter_airfoils(
        input_path: str,
        output: str = CONFIG["output"],
        min_lift_drag_ratio: float = CONFIG["min_lift_drag_ratio"],
        min_lift: float = CONFIG["min_lift"],
        max_drag: float = CONFIG["max_drag"],
    ) -> str:
        """Write the airfoil rows meeting every threshold to output.

        Args:
            input_path: CSV with naca_code, cl_at_best_aoa, cd_at_best_aoa
            output: Destination CSV
            min_lift_drag_ratio: Minimum Cl/Cd
            min_lift: Minimum Cl
            max_drag: Maximum Cd
        """
        try:
            result, metrics = _filter_impl(input_path, output, min_lift_drag_ratio, min_lift, max_drag)
            return json.dumps({"result": result, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
