#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "numpy>=1.26",
#     "pandas>=2.0",
#     "scikit-learn>=1.3",
#     "tqdm>=4.66",
#     "fastmcp",
# ]
# ///
"""Score cluster counts for a 1-D series with k-means.

For every k in [start, end) the column is clustered with k-means++ and
scored by silhouette (on a random sample when the data is large),
Calinski-Harabasz and Davies-Bouldin. Each score series is normalized, and
the three are combined into ``total_score`` with entropy weights (lower
Davies-Bouldin is better) or with fixed manual weights.

Usage:
    sft_makwei.py nop wind.csv
    sft_makwei.py nop wind.csv -w speed -s 2 -e 10 -N minmax -o scores.csv
    sft_makwei.py nop wind.csv --weighting manual -S 0.5 -C 0.25 -D 0.25
    sft_makwei.py mcp-stdio
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
EXPOSED = ["nop"]

CONFIG = {
    "version": "0.1.36",
    "wind_field": "wind",
    "sample_count": 4000,
    "start": 2,
    "end": 7,
    "silhouette_weight": 0.34,
    "calinski_harabasz_weight": 0.33,
    "davies_bouldin_weight": 0.33,
    "norm_method": "probability",
    "weighting": "entropy",
    "output": "output_scores.csv",
    "eps": 1e-12,
}

NORM_METHODS = ("probability", "minmax", "scale", "zscore")
WEIGHTINGS = ("entropy", "manual")
SCORE_COLUMNS = ("silhouette_score", "calinski_harabasz_score", "davies_bouldin_score")


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def probability_norm(seq):
    import numpy as np

    arr = np.asarray(seq, dtype="f8")
    return arr / arr.sum()


def min_max_norm(seq, reverse: bool = False):
    import numpy as np

    arr = np.asarray(seq, dtype="f8")
    lo, hi = arr.min(), arr.max()
    return (hi - arr) / (hi - lo) if reverse else (arr - lo) / (hi - lo)


def scale_norm(seq):
    import numpy as np

    arr = np.asarray(seq, dtype="f8")
    return arr / arr.max()


def z_score_norm(seq):
    import numpy as np

    arr = np.asarray(seq, dtype="f8")
    return (arr - arr.mean()) / arr.std(ddof=0)


def normalize(seq, method: str, lower_is_better: bool = False):
    assert method in NORM_METHODS, f"Unsupported normalization method: {method}"
    if method == "probability":
        return probability_norm(seq)
    if method == "minmax":
        return min_max_norm(seq, reverse=lower_is_better)
    if method == "scale":
        return scale_norm(seq)
    return z_score_norm(seq)


def entropy_weights(columns, negative: tuple[bool, ...], eps: float = CONFIG["eps"]):
    """Entropy weight method over indicator columns of equal length.

    A negative indicator is min-max reversed before its entropy is taken.
    """
    import numpy as np

    k = len(columns)
    m = len(columns[0]) if k else 0
    if m == 0:
        return np.zeros(k)
    if m == 1:
        return np.full(k, 1.0 / k)

    d = np.empty(k)
    for j, (col, neg) in enumerate(zip(columns, negative)):
        x = np.asarray(col, dtype="f8")
        lo, hi = x.min(), x.max()
        if hi - lo < eps:
            norm = np.ones(m)
        else:
            norm = (hi - x) / (hi - lo) if neg else (x - lo) / (hi - lo)
        norm = np.clip(norm, 0.0, 1.0)
        total = norm.sum()
        p = np.full(m, 1.0 / m) if total < eps else norm / total
        nz = p[p > eps]
        e = -(nz * np.log(nz)).sum() / np.log(m)
        d[j] = 1.0 - float(np.clip(e, 0.0, 1.0))

    if d.sum() < eps:
        return np.full(k, 1.0 / k)
    return d / d.sum()


def cluster_scores(data, k: int, sample_count: int, seed: int | None = None) -> tuple[float, float, float]:
    """(silhouette, calinski_harabasz, davies_bouldin) for k clusters of a 1-D series."""
    import numpy as np
    from sklearn.cluster import KMeans
    from sklearn.metrics import calinski_harabasz_score, davies_bouldin_score, silhouette_score

    x = np.column_stack([np.asarray(data, dtype="f8"), np.zeros(len(data))])
    labels = KMeans(n_clusters=k, init="k-means++", n_init="auto", random_state=seed).fit_predict(x)
    if len(x) > sample_count:
        silhouette = silhouette_score(x, labels, sample_size=sample_count, random_state=seed)
    else:
        silhouette = silhouette_score(x, labels)
    return float(silhouette), float(calinski_harabasz_score(x, labels)), float(davies_bouldin_score(x, labels))


def _nop_impl(
    input_path: str,
    wind_field: str = CONFIG["wind_field"],
    sample_count: int = CONFIG["sample_count"],
    start: int = CONFIG["start"],
    end: int = CONFIG["end"],
    norm_method: str = CONFIG["norm_method"],
    weighting: str = CONFIG["weighting"],
    manual_weights: tuple[float, float, float] = (
        CONFIG["silhouette_weight"], CONFIG["calinski_harabasz_weight"], CONFIG["davies_bouldin_weight"],
    ),
    output: str = CONFIG["output"],
    seed: int | None = None,
) -> tuple[dict, dict]:
    import numpy as np
    import pandas as pd
    from tqdm import tqdm

    start_ms = time.time() * 1000
    assert Path(input_path).is_file(), f"File not found: {input_path}"
    assert 2 <= start < end, f"Cluster range must satisfy 2 <= start < end, got [{start}, {end})"
    assert norm_method in NORM_METHODS, f"Unsupported normalization method: {norm_method}"
    assert weighting in WEIGHTINGS, f"Unsupported weighting: {weighting}"

    df = pd.read_csv(input_path)
    assert wind_field in df.columns, f"Column '{wind_field}' not found in {input_path}"
    data = df[wind_field].astype("f8").to_numpy()
    assert not np.isnan(data).any(), f"Column '{wind_field}' has missing values"
    assert len(data) >= end, f"Need at least {end} data points, got {len(data)}"

    ks = list(range(start, end))
    raw = np.array([cluster_scores(data, k, sample_count, seed) for k in tqdm(ks, desc="Clustering", unit="k")])
    sil, ch, db = raw[:, 0], raw[:, 1], raw[:, 2]

    normed = [normalize(sil, norm_method), normalize(ch, norm_method), normalize(db, norm_method, lower_is_better=True)]
    spread = probability_norm([np.std(n, ddof=0) for n in normed])
    if weighting == "entropy":
        weights = entropy_weights([sil, ch, db], negative=(False, False, True))
    else:
        weights = np.asarray(manual_weights, dtype="f8")
    total = sum(n * w for n, w in zip(normed, weights))

    out = pd.DataFrame({"n": ks, **dict(zip(SCORE_COLUMNS, normed)), "total_score": total})
    out.to_csv(output, index=False, float_format="%.3f")

    result = {
        "points": len(data),
        "variance_weights": [float(v) for v in spread],
        "weights": [float(w) for w in weights],
        "best_n": int(ks[int(np.argmax(total))]),
        "output": output,
    }
    metrics = {
        "points": len(data),
        "k_values": len(ks),
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return result, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Find the best number of k-means clusters for a data column",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_makwei.py nop wind.csv
  sft_makwei.py nop wind.csv -w speed -s 2 -e 10 -N minmax -o scores.csv
  sft_makwei.py nop wind.csv --weighting manual -S 0.5 -C 0.25 -D 0.25
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_nop = subparsers.add_parser("nop", help="Score cluster counts and write them to CSV")
    p_nop.add_argument("input", help="Input CSV")
    p_nop.add_argument("-w", "--wind-field", default=CONFIG["wind_field"], help="Column to cluster (default: %(default)s)")
    p_nop.add_argument("-c", "--sample-count", type=int, default=CONFIG["sample_count"], help="Silhouette sample size (default: %(default)s)")
    p_nop.add_argument("-s", "--start", type=int, default=CONFIG["start"], help="First k (default: %(default)s)")
    p_nop.add_argument("-e", "--end", type=int, default=CONFIG["end"], help="End of k range, exclusive (default: %(default)s)")
    p_nop.add_argument("-S", "--silhouette-weight", type=float, default=CONFIG["silhouette_weight"], help="Manual weight (default: %(default)s)")
    p_nop.add_argument("-C", "--calinski-harabasz-weight", type=float, default=CONFIG["calinski_harabasz_weight"], help="Manual weight (default: %(default)s)")
    p_nop.add_argument("-D", "--davies-bouldin-weight", type=float, default=CONFIG["davies_bouldin_weight"], help="Manual weight (default: %(default)s)")
    p_nop.add_argument("-N", "--norm-method", default=CONFIG["norm_method"], choices=NORM_METHODS, help="Score normalization (default: %(default)s)")
    p_nop.add_argument("--weighting", default=CONFIG["weighting"], choices=WEIGHTINGS, help="How scores are combined (default: %(default)s)")
    p_nop.add_argument("-o", "--output", default=CONFIG["output"], help="Output CSV (default: %(default)s)")
    p_nop.add_argument("--seed", type=int, default=None, help="Random seed for k-means and sampling")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "nop":
            result, metrics = _nop_impl(
                args.input, args.wind_field, args.sample_count, args.start, args.end,
                args.norm_method, args.weighting,
                (args.silhouette_weight, args.calinski_harabasz_weight, args.davies_bouldin_weight),
                args.output, args.seed,
            )
            print(f"Read {result['points']} data points.")
            print(f"The weights : {[round(v, 4) for v in result['variance_weights']]}")
            print(f"The {args.weighting} weights : {[round(w, 4) for w in result['weights']]}")
            print(f"Best n: {result['best_n']}")
            print(f"Scores dumped to {args.output}")
            _log("INFO", "nop", f"input={args.input}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("makwei")

    @mcp.tool()
    def nop(
        input_path: str,
        wind_field: str = CONFIG["wind_field"],
        start: int = CONFIG["start"],
        end: int = CONFIG["end"],
        norm_method: str = CONFIG["norm_method"],
        output: str = CONFIG["output"],
    ) -> str:
        """Score k-means cluster counts in [start, end) for one CSV column.

        Args:
            input_path: Input CSV
            wind_field: Column to cluster
            start: First k (>= 2)
            end: End of the k range, exclusive
            norm_method: probability, minmax, scale or zscore
            output: Destination CSV of per-k scores
        """
        try:
            result, metrics = _nop_impl(input_path, wind_field, CONFIG["sample_count"], start, end, norm_method, output=output)
            return json.dumps({"result": result, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
