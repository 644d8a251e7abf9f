#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "tqdm>=4.66",
#     "fastmcp",
# ]
# ///
"""Drive XFoil over a range of angles of attack.

Every angle is solved by its own XFoil process fed through stdin, writing
a polar file ``<naca>_<aoa:.2f>.dat`` into the polar directory. An existing
polar file is reused instead of running XFoil again.

    sweep    best lift-to-drag ratio over the range
    get-cl   CSV of aoa, cl, cd, ld for every angle

Environment:
    XFOIL_PATH        XFoil executable (default: xfoil)
    XFOIL_POLAR_PATH  polar directory (default: polar.out)

Usage:
    sft_ffoil.py sweep -n 2412
    sft_ffoil.py -x /opt/xfoil/bin/xfoil sweep -n 0012 -r 500000 --min-aoa 0 --max-aoa 10
    sft_ffoil.py get-cl -n 4412 --aoa-step 0.5 -o cl_4412.csv
    sft_ffoil.py mcp-stdio
"""

import argparse
import csv
import json
import math
import os
import shutil
import subprocess
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
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
EXPOSED = ["sweep", "get_cl"]

CONFIG = {
    "version": "0.1.36",
    "xfoil_path": os.environ.get("XFOIL_PATH", "xfoil"),
    "polar_path": os.environ.get("XFOIL_POLAR_PATH", "polar.out"),
    "reynolds": 1_000_000,
    "min_aoa": -5.0,
    "max_aoa": 15.0,
    "aoa_step": 0.3,
    "output_csv": "cl_data.csv",
    "workers": os.cpu_count() or 1,
    "timeout_s": 120,
}

POLAR_COLUMNS = ("alpha", "CL", "CD", "CDp", "CM", "Top_Xtr", "Bot_Xtr")
POLAR_HEADER_LINES = 12


class XfoilError(Exception):
    """Base class for failures while driving XFoil."""


class XfoilIoError(XfoilError):
    """XFoil could not be started or its files could not be read."""


class XfoilParseError(XfoilError):
    """A polar file row did not parse as numbers."""


class XfoilReadOutputError(XfoilError):
    """XFoil output was not valid text."""


class XfoilConvergenceError(XfoilError):
    """XFoil produced no polar for the requested point."""


@dataclass
class XfoilJob:
    """One XFoil run. Exactly one of naca / dat_file names the airfoil.

    mode is one of ("alpha", a), ("alphas", [a, ...]), ("aseq", (start, end, step)), ("cl", cl).
    """

    xfoil_path: str = CONFIG["xfoil_path"]
    naca: str | None = None
    dat_file: str | None = None
    reynolds: int | None = None
    polar: Path | None = None
    mode: tuple = ("alpha", 0.0)

    def commands(self) -> list[str]:
        seq = ["plop", "G", ""]
        if self.naca:
            seq.append(f"naca {self.naca}")
        elif self.dat_file:
            seq += [f"load {self.dat_file}", ""]
        else:
            raise XfoilError("Xfoil cannot run without airfoil")
        seq.append("oper")
        if self.reynolds:
            seq.append(f"v {self.reynolds}")
        if self.polar is not None:
            seq += ["pacc", str(self.polar), ""]

        kind, value = self.mode
        if kind == "alpha":
            seq.append(f"a {value}")
        elif kind == "alphas":
            seq += [f"a {a}" for a in value]
        elif kind == "aseq":
            seq.append("aseq {} {} {}".format(*value))
        elif kind == "cl":
            seq.append(f"cl {value}")
        else:
            raise XfoilError(f"Unknown mode: {kind}")
        return seq + ["", "quit"]


@dataclass
class AnalysisResult:
    aoa: float = 0.0
    cl: float = 0.0
    cd: float = 0.0
    ld: float = 0.0
    valid: bool = field(default=False, compare=False)

    @classmethod
    def from_coefficients(cls, aoa: float, cl: float, cd: float) -> "AnalysisResult":
        ld = 0.0 if abs(cd) < 1e-9 else cl / cd
        return cls(aoa, cl, cd, ld, True)


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def aoa_sequence(min_aoa: float, max_aoa: float, step: float) -> list[float]:
    assert step > 1e-6, "AoA step must be positive"
    assert max_aoa >= min_aoa, "max AoA must not be smaller than min AoA"
    n = math.ceil((max_aoa - min_aoa) / step)
    return [min_aoa + i * step for i in range(n + 1)]


def polar_file(polar_dir: Path, naca: str, aoa: float) -> Path:
    return polar_dir / f"{naca}_{aoa:.2f}.dat"


def run_xfoil(job: XfoilJob) -> bool:
    """Run XFoil unless the polar already exists. Returns whether it ran."""
    if job.polar is not None and job.polar.exists():
        _log("WARN", "polar_exists", f"Polar file {job.polar} already exists. Skipping XFoil execution.")
        return False
    try:
        subprocess.run(
            [job.xfoil_path],
            input="\n".join(job.commands()),
            capture_output=True,
            text=True,
            timeout=CONFIG["timeout_s"],
        )
    except FileNotFoundError as e:
        raise XfoilIoError(f"XFoil executable not found: {job.xfoil_path}") from e
    except UnicodeDecodeError as e:
        raise XfoilReadOutputError(str(e)) from e
    except subprocess.TimeoutExpired as e:
        raise XfoilConvergenceError(f"XFoil timed out after {CONFIG['timeout_s']}s") from e
    return True


def parse_polar(text: str) -> dict[str, list[float]]:
    """Column name -> values from the table below the polar header."""
    table = {name: [] for name in POLAR_COLUMNS}
    for line in text.splitlines()[POLAR_HEADER_LINES:]:
        if not line.strip():
            continue
        try:
            values = [float(x) for x in line.split()]
        except ValueError as e:
            raise XfoilParseError(f"Failed to parse Xfoil polar line: {line!r}") from e
        for name, value in zip(POLAR_COLUMNS, values):
            table[name].append(value)
    return table


def result_at(table: dict[str, list[float]], aoa: float) -> AnalysisResult:
    """Row whose alpha equals aoa (to 2 decimals), or an invalid result."""
    for i, alpha in enumerate(table["alpha"]):
        if round(alpha, 2) == round(aoa, 2):
            return AnalysisResult.from_coefficients(aoa, table["CL"][i], table["CD"][i])
    return AnalysisResult()


def solve_angle(xfoil_path: str, polar_dir: Path, naca: str, reynolds: int, aoa: float) -> AnalysisResult:
    polar = polar_file(polar_dir, naca, aoa)
    job = XfoilJob(xfoil_path=xfoil_path, naca=naca, reynolds=reynolds, polar=polar, mode=("alpha", aoa))
    run_xfoil(job)
    if not polar.exists():
        return AnalysisResult()
    try:
        text = polar.read_text(encoding="utf-8", errors="strict")
    except UnicodeDecodeError as e:
        raise XfoilReadOutputError(f"{polar}: {e}") from e
    except OSError as e:
        raise XfoilIoError(f"{polar}: {e}") from e
    return result_at(parse_polar(text), aoa)


def solve_range(
    naca: str,
    reynolds: int = CONFIG["reynolds"],
    min_aoa: float = CONFIG["min_aoa"],
    max_aoa: float = CONFIG["max_aoa"],
    aoa_step: float = CONFIG["aoa_step"],
    xfoil_path: str = CONFIG["xfoil_path"],
    polar_path: str = CONFIG["polar_path"],
    progress: bool = True,
) -> list[AnalysisResult]:
    from tqdm import tqdm

    angles = aoa_sequence(min_aoa, max_aoa, aoa_step)
    polar_dir = Path(polar_path)
    polar_dir.mkdir(parents=True, exist_ok=True)
    with ThreadPoolExecutor(max_workers=CONFIG["workers"]) as pool:
        jobs = pool.map(lambda a: solve_angle(xfoil_path, polar_dir, naca, reynolds, a), angles)
        return list(tqdm(jobs, total=len(angles), desc="Solving", unit="aoa", disable=not progress))


def _sweep_impl(
    naca: str,
    reynolds: int = CONFIG["reynolds"],
    min_aoa: float = CONFIG["min_aoa"],
    max_aoa: float = CONFIG["max_aoa"],
    aoa_step: float = CONFIG["aoa_step"],
    xfoil_path: str = CONFIG["xfoil_path"],
    polar_path: str = CONFIG["polar_path"],
) -> tuple[AnalysisResult, dict]:
    """Best L/D over the range. The polar directory is cleared first."""
    start_ms = time.time() * 1000
    if Path(polar_path).exists():
        shutil.rmtree(polar_path)
    results = solve_range(naca, reynolds, min_aoa, max_aoa, aoa_step, xfoil_path, polar_path)
    valid = [r for r in results if r.valid]
    if not valid:
        raise XfoilConvergenceError("No valid analysis result found!")
    best = max(valid, key=lambda r: r.ld)

    metrics = {
        "angles": len(results),
        "converged": len(valid),
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if len(valid) == len(results) else "partial",
    }
    return best, metrics


def _get_cl_impl(
    naca: str,
    reynolds: int = CONFIG["reynolds"],
    min_aoa: float = CONFIG["min_aoa"],
    max_aoa: float = CONFIG["max_aoa"],
    aoa_step: float = CONFIG["aoa_step"],
    output_csv: str = CONFIG["output_csv"],
    xfoil_path: str = CONFIG["xfoil_path"],
    polar_path: str = CONFIG["polar_path"],
) -> tuple[list[AnalysisResult], dict]:
    start_ms = time.time() * 1000
    results = solve_range(naca, reynolds, min_aoa, max_aoa, aoa_step, xfoil_path, polar_path)
    with open(output_csv, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["aoa", "cl", "cd", "ld"])
        for r in results:
            writer.writerow([r.aoa, r.cl, r.cd, r.ld])

    converged = sum(r.valid for r in results)
    metrics = {
        "angles": len(results),
        "converged": converged,
        "output": output_csv,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if converged == len(results) else "partial",
    }
    return results, metrics


def _format_summary(naca: str, reynolds: int, best: AnalysisResult) -> str:
    return "\n".join([
        "",
        "--- Optimal Aerodynamic Performance (Sweep) ---",
        f"Airfoil: NACA {naca}",
        f"Reynolds Number: {reynolds}",
        f"Best Angle of Attack (for max Cl/Cd): {best.aoa:.2f}°",
        f"Lift Coefficient (Cl) at best AoA: {best.cl:.4f}",
        f"Drag Coefficient (Cd) at best AoA: {best.cd:.4f}",
        f"Maximum Cl/Cd Ratio: {best.ld:.4f}",
    ])


# =============================================================================
# CLI INTERFACE
# =============================================================================
def _add_range_args(p: argparse.ArgumentParser, aliases: bool = False):
    p.add_argument("-n", "--naca", required=True, help="NACA code, e.g. 2412")
    p.add_argument("-r", "--reynolds", type=int, default=CONFIG["reynolds"], help="Reynolds number (default: %(default)s)")
    p.add_argument("--min-aoa", *(["--min-alpha"] if aliases else []), dest="min_aoa", type=float, default=CONFIG["min_aoa"], help="First angle (default: %(default)s)")
    p.add_argument("--max-aoa", *(["--max-alpha"] if aliases else []), dest="max_aoa", type=float, default=CONFIG["max_aoa"], help="Last angle (default: %(default)s)")
    p.add_argument("--aoa-step", *(["--alpha-step"] if aliases else []), dest="aoa_step", type=float, default=CONFIG["aoa_step"], help="Angle step (default: %(default)s)")


def main():
    parser = argparse.ArgumentParser(
        description="XFoil CLI for airfoil analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_ffoil.py sweep -n 2412
  sft_ffoil.py -p ./polars sweep -n 0012 -r 500000 --min-aoa 0 --max-aoa 10
  sft_ffoil.py get-cl -n 4412 --aoa-step 0.5 -o cl_4412.csv
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("-x", "--xfoil-path", default=CONFIG["xfoil_path"], help="XFoil executable (default: %(default)s, env XFOIL_PATH)")
    parser.add_argument("-p", "--polar-path", default=CONFIG["polar_path"], help="Polar directory (default: %(default)s, env XFOIL_POLAR_PATH)")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_sweep = subparsers.add_parser("sweep", help="Find the angle with the best Cl/Cd")
    _add_range_args(p_sweep)

    p_cl = subparsers.add_parser("get-cl", help="Write Cl, Cd and Cl/Cd for every angle to CSV")
    _add_range_args(p_cl, aliases=True)
    p_cl.add_argument("-o", "--output-csv", default=CONFIG["output_csv"], help="Output CSV (default: %(default)s)")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "sweep":
            print(
                f"Analyzing NACA {args.naca} at Re = {args.reynolds} from AoA {args.min_aoa:.1f}° "
                f"to {args.max_aoa:.1f}° (step {args.aoa_step:.2f}°)..."
            )
            best, metrics = _sweep_impl(
                args.naca, args.reynolds, args.min_aoa, args.max_aoa, args.aoa_step, args.xfoil_path, args.polar_path,
            )
            print(_format_summary(args.naca, args.reynolds, best))
            _log("INFO", "sweep", f"naca={args.naca}", metrics=json.dumps(metrics))
        elif args.command == "get-cl":
            print(
                f"Calculating Cl for NACA {args.naca} at Re = {args.reynolds} from AoA {args.min_aoa:.2f}° "
                f"to {args.max_aoa:.2f}° (step {args.aoa_step:.2f}°)..."
            )
            _results, metrics = _get_cl_impl(
                args.naca, args.reynolds, args.min_aoa, args.max_aoa, args.aoa_step,
                args.output_csv, args.xfoil_path, args.polar_path,
            )
            print(f"Wrote results to {args.output_csv}")
            _log("INFO", "get_cl", f"naca={args.naca}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("ffoil")

    @mcp.tool()
    def sweep(
        naca: str,
        reynolds: int = CONFIG["reynolds"],
        min_aoa: float = CONFIG["min_aoa"],
        max_aoa: float = CONFIG["max_aoa"],
        aoa_step: float = CONFIG["aoa_step"],
    ) -> str:
        """Angle of attack with the best lift-to-drag ratio for a NACA airfoil.

        Args:
            naca: NACA code, e.g. "2412"
            reynolds: Reynolds number
            min_aoa: First angle in degrees
            max_aoa: Last angle in degrees
            aoa_step: Step in degrees
        """
        try:
            best, metrics = _sweep_impl(naca, reynolds, min_aoa, max_aoa, aoa_step)
            return json.dumps({"best": asdict(best), "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    @mcp.tool()
    def get_cl(
        naca: str,
        reynolds: int = CONFIG["reynolds"],
        min_aoa: float = CONFIG["min_aoa"],
        max_aoa: float = CONFIG["max_aoa"],
        aoa_step: float = CONFIG["aoa_step"],
        output_csv: str = CONFIG["output_csv"],
    ) -> str:
        """Cl, Cd and Cl/Cd for every angle in the range, also written to CSV.

        Args:
            naca: NACA code
            reynolds: Reynolds number
            min_aoa: First angle in degrees
            max_aoa: Last angle in degrees
            aoa_step: Step in degrees
            output_csv: Destination CSV
        """
        try:
            results, metrics = _get_cl_impl(naca, reynolds, min_aoa, max_aoa, aoa_step, output_csv)
            return json.dumps({"results": [asdict(r) for r in results], "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
