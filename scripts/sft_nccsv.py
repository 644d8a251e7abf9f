#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "netCDF4>=1.6",
#     "numpy>=1.26",
#     "pandas>=2.0",
#     "tqdm>=4.66",
#     "fastmcp",
# ]
# ///
"""Extract a point time series from NetCDF files.

The grid point nearest to the requested latitude/longitude is looked up once
(from the ``lat``/``lon`` variables of the first file) and reused for every
file. Time values are hours since 1900-01-01.

Usage:
    sft_nccsv.py extract era5.nc out.csv -a 31.2 -l 121.5
    sft_nccsv.py extract ./era5_dir -a 31.2 -l 121.5 -v u10
    sft_nccsv.py probe era5.nc -a 31.2 -l 121.5
    sft_nccsv.py mcp-stdio
"""

import argparse
import json
import os
import sys
import time
from datetime import datetime, timedelta, timezone
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
EXPOSED = ["extract", "probe"]

CONFIG = {
    "version": "0.1.36",
    "output": "output.csv",
    "variable": "wind",
    "epoch": datetime(1900, 1, 1),
    "time_format": "%Y-%m-%d %H:%M:%S",
}

_LAT_NAMES = ("lat", "latitude")
_LON_NAMES = ("lon", "longitude")


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def nearest_index(seq, target: float) -> int:
    import numpy as np

    return int(np.argmin(np.abs(np.asarray(seq, dtype="f8") - target)))


def hours_to_timestamp(hours: int) -> str:
    return (CONFIG["epoch"] + timedelta(hours=hours)).strftime(CONFIG["time_format"])


def collect_input_files(input_path: str) -> list[Path]:
    path = Path(input_path)
    assert path.exists(), f"Input path does not exist: {input_path}"
    if path.is_dir():
        files = sorted(p for p in path.rglob("*.nc") if p.is_file())
        assert files, f"No .nc files found in directory: {input_path}"
        return files
    assert path.suffix == ".nc", f"Input file is not a .nc file: {input_path}"
    return [path]


def grid_indices(dataset, lat: float, lon: float) -> tuple[int, int]:
    for name in ("lat", "lon"):
        assert name in dataset.variables, f"Missing '{name}' variable"
    return nearest_index(dataset.variables["lat"][:], lat), nearest_index(dataset.variables["lon"][:], lon)


def point_series(dataset, variable: str, lat_i: int, lon_i: int):
    """Values of variable at (lat_i, lon_i) along every other dimension, NaN for masked."""
    import numpy as np

    assert variable in dataset.variables, f"Missing '{variable}' variable"
    var = dataset.variables[variable]
    dims = [d.lower() for d in var.dimensions]
    assert len(dims) >= 3, f"Variable '{variable}' has insufficient dimensions (expected >=3, got {len(dims)})"
    lat_pos = next((i for i, d in enumerate(dims) if d in _LAT_NAMES), 1)
    lon_pos = next((i for i, d in enumerate(dims) if d in _LON_NAMES), 2)
    assert lat_i < var.shape[lat_pos], f"Latitude index {lat_i} out of bounds (lat_dim_len: {var.shape[lat_pos]})"
    assert lon_i < var.shape[lon_pos], f"Longitude index {lon_i} out of bounds (lon_dim_len: {var.shape[lon_pos]})"

    index = [slice(None)] * len(dims)
    index[lat_pos] = lat_i
    index[lon_pos] = lon_i
    return np.ma.filled(np.ma.asarray(var[tuple(index)], dtype="f8"), np.nan).ravel()


def read_file(path: Path, variable: str, indices: tuple[int, int]) -> list[tuple[int, float]]:
    import netCDF4
    import numpy as np

    with netCDF4.Dataset(path) as ds:
        assert "time" in ds.variables, f"Missing 'time' variable in {path}"
        values = point_series(ds, variable, *indices)
        times = np.ma.filled(np.ma.asarray(ds.variables["time"][:], dtype="f8"), np.nan).ravel()
    assert len(values) == len(times), f"Mismatch in data points/timestamps in {path} ({len(values)} vs {len(times)})"
    return [(int(t), float(v)) for t, v in zip(times, values)]


def _extract_impl(
    input_path: str,
    output: str = CONFIG["output"],
    lat: float = 0.0,
    lon: float = 0.0,
    variable: str = CONFIG["variable"],
) -> tuple[list[str], dict]:
    """Write timestamp,<variable> rows. Returns per-file error messages."""
    import netCDF4
    import pandas as pd
    from tqdm import tqdm

    start_ms = time.time() * 1000
    files = collect_input_files(input_path)
    indices = None
    rows: list[tuple[int, float]] = []
    errors = []
    for path in tqdm(files, desc="Reading", unit="file", disable=len(files) < 2):
        try:
            if indices is None:
                with netCDF4.Dataset(path) as ds:
                    indices = grid_indices(ds, lat, lon)
            rows.extend(read_file(path, variable, indices))
        except Exception as e:
            errors.append(f"Error processing {path}: {e}")

    assert rows, "No data extracted. All files might have failed processing or contained no matching data."
    rows.sort(key=lambda r: r[0])
    df = pd.DataFrame({
        "timestamp": [hours_to_timestamp(t) for t, _ in rows],
        variable: [v for _, v in rows],
    })
    df.to_csv(output, index=False, float_format="%.2f")

    metrics = {
        "files": len(files),
        "failed": len(errors),
        "rows": len(rows),
        "grid_index": list(indices) if indices else None,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if not errors else "partial",
    }
    return errors, metrics


def series_stats(values) -> dict:
    """Count, finite count, and population statistics over finite values."""
    import numpy as np

    arr = np.asarray(values, dtype="f8")
    finite = arr[np.isfinite(arr)]
    stats = {"total": int(arr.size), "finite": int(finite.size)}
    if finite.size:
        stats.update(
            mean=float(finite.mean()),
            std=float(finite.std(ddof=0)),
            min=float(finite.min()),
            max=float(finite.max()),
        )
    return stats


def _probe_impl(input_path: str, lat: float = 0.0, lon: float = 0.0, variable: str = CONFIG["variable"]) -> tuple[dict, dict]:
    import netCDF4

    start_ms = time.time() * 1000
    path = Path(input_path)
    assert path.is_file(), f"Input path is not a valid file: {input_path}"
    with netCDF4.Dataset(path) as ds:
        lat_i, lon_i = grid_indices(ds, lat, lon)
        stats = series_stats(point_series(ds, variable, lat_i, lon_i))

    metrics = {
        "grid_index": [lat_i, lon_i],
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return stats, metrics


def _format_stats(stats: dict, variable: str, lat: float, lon: float) -> str:
    lines = [
        f"Statistics for variable '{variable}' at point (Lat: {lat:.2f}, Lon: {lon:.2f}):",
        f"  Total data points retrieved: {stats['total']}",
        f"  Finite data points: {stats['finite']}",
    ]
    if not stats["finite"]:
        lines.append("  No finite data points available to calculate statistics.")
        return "\n".join(lines)
    lines += [
        "  ------------------------------------",
        f"  Mean:           {stats['mean']:.4f}",
        f"  Std Deviation:  {stats['std']:.4f}",
        f"  Minimum:        {stats['min']:.4f}",
        f"  Maximum:        {stats['max']:.4f}",
    ]
    return "\n".join(lines)


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="NetCDF point extraction and statistics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_nccsv.py extract era5.nc out.csv -a 31.2 -l 121.5
  sft_nccsv.py extract ./era5_dir -a 31.2 -l 121.5 -v u10
  sft_nccsv.py probe era5.nc -a 31.2 -l 121.5
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_ext = subparsers.add_parser("extract", help="Write the point time series to CSV")
    p_ext.add_argument("input", help=".nc file or directory searched for .nc files")
    p_ext.add_argument("output", nargs="?", default=CONFIG["output"], help="Output CSV (default: %(default)s)")
    p_ext.add_argument("-a", "--lat", type=float, required=True, help="Latitude")
    p_ext.add_argument("-l", "--lon", type=float, required=True, help="Longitude")
    p_ext.add_argument("-v", "--variable", default=CONFIG["variable"], help="Variable name (default: %(default)s)")

    p_probe = subparsers.add_parser("probe", help="Print statistics of the point series in one file")
    p_probe.add_argument("input", help=".nc file")
    p_probe.add_argument("-a", "--lat", type=float, required=True, help="Latitude")
    p_probe.add_argument("-l", "--lon", type=float, required=True, help="Longitude")
    p_probe.add_argument("-v", "--variable", default=CONFIG["variable"], help="Variable name (default: %(default)s)")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "extract":
            errors, metrics = _extract_impl(args.input, args.output, args.lat, args.lon, args.variable)
            for line in errors:
                print(line, file=sys.stderr)
            print(f"Data successfully written to {args.output}")
            _log("INFO", "extract", f"input={args.input}", metrics=json.dumps(metrics))
        elif args.command == "probe":
            stats, metrics = _probe_impl(args.input, args.lat, args.lon, args.variable)
            print(_format_stats(stats, args.variable, args.lat, args.lon))
            _log("INFO", "probe", f"input={args.input}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("nccsv")

    @mcp.tool()
    def extract(input_path: str, lat: float, lon: float, output: str = CONFIG["output"], variable: str = CONFIG["variable"]) -> str:
        """Write the time series of a variable at the nearest grid point to CSV.

        Args:
            input_path: .nc file or directory of .nc files
            lat: Latitude
            lon: Longitude
            output: Destination CSV
            variable: NetCDF variable name
        """
        try:
            errors, metrics = _extract_impl(input_path, output, lat, lon, variable)
            return json.dumps({"errors": errors, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    @mcp.tool()
    def probe(input_path: str, lat: float, lon: float, variable: str = CONFIG["variable"]) -> str:
        """Statistics (count, mean, std, min, max) of a variable at one point.

        Args:
            input_path: .nc file
            lat: Latitude
            lon: Longitude
            variable: NetCDF variable name
        """
        try:
            stats, metrics = _probe_impl(input_path, lat, lon, variable)
            return json.dumps({"stats": stats, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
