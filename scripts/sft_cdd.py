#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "httpx>=0.27",
#     "pandas>=2.0",
#     "tqdm>=4.66",
#     "fastmcp",
# ]
# ///
"""Download one URL, or every URL in a CSV column, concurrently.

Each download is saved under the output directory as the last path segment
of its URL (``downloaded_file`` when that segment is empty).

Usage:
    sft_cdd.py fetch -u https://example.com/data.zip
    sft_cdd.py fetch -f links.csv -c url -o ./downloads
    sft_cdd.py mcp-stdio
"""

import argparse
import json
import os
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
EXPOSED = ["fetch"]

CONFIG = {
    "version": "0.1.36",
    "column": "url",
    "output": "./downloads",
    "fallback_name": "downloaded_file",
    "workers": 16,
    "timeout_seconds": 60.0,
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def file_name_for(url: str) -> str:
    return url.rstrip().split("/")[-1] or CONFIG["fallback_name"]


def read_urls(csv_path: str, column: str) -> list[str]:
    import pandas as pd

    df = pd.read_csv(csv_path, dtype=str)
    assert column in df.columns, f"Column '{column}' not found in CSV"
    return [u.strip() for u in df[column].dropna() if u.strip()]


def _download(client, url: str, output_dir: Path) -> Path:
    target = output_dir / file_name_for(url)
    with client.stream("GET", url) as response:
        response.raise_for_status()
        with open(target, "wb") as f:
            for chunk in response.iter_bytes():
                f.write(chunk)
    return target


def _fetch_impl(
    url: str | None = None,
    file: str | None = None,
    column: str = CONFIG["column"],
    output: str = CONFIG["output"],
) -> tuple[dict, dict]:
    import httpx
    from tqdm import tqdm

    start_ms = time.time() * 1000
    assert url or file, "Either a URL or a CSV file is required"
    urls = [url] if url else read_urls(file, column)
    out = Path(output)
    out.mkdir(parents=True, exist_ok=True)

    done, failed = [], []
    with httpx.Client(follow_redirects=True, timeout=CONFIG["timeout_seconds"]) as client, \
            ThreadPoolExecutor(max_workers=CONFIG["workers"]) as pool:
        futures = {pool.submit(_download, client, u, out): u for u in urls}
        for fut in tqdm(as_completed(futures), total=len(futures), desc="Downloading", unit="file"):
            u = futures[fut]
            try:
                done.append((u, str(fut.result())))
            except (httpx.HTTPError, OSError) as e:
                failed.append((u, str(e)))

    metrics = {
        "urls": len(urls),
        "downloaded": len(done),
        "failed": len(failed),
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if not failed else "partial",
    }
    return {"downloaded": done, "failed": failed}, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Concurrently download URLs from the command line or a CSV file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_cdd.py fetch -u https://example.com/data.zip
  sft_cdd.py fetch -f links.csv -c url -o ./downloads
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_fetch = subparsers.add_parser("fetch", help="Download the given URLs")
    source = p_fetch.add_mutually_exclusive_group(required=True)
    source.add_argument("-u", "--url", help="Single URL to download")
    source.add_argument("-f", "--file", help="CSV file holding URLs")
    p_fetch.add_argument("-c", "--column", default=CONFIG["column"], help="URL column in the CSV (default: %(default)s)")
    p_fetch.add_argument("-o", "--output", default=CONFIG["output"], help="Output directory (default: %(default)s)")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "fetch":
            result, metrics = _fetch_impl(args.url, args.file, args.column, args.output)
            for u, path in result["downloaded"]:
                print(f"Downloaded {u} to {path}")
            for u, err in result["failed"]:
                print(f"Failed {u}: {err}", file=sys.stderr)
            print(f"Download complete. {metrics['downloaded']} succeeded, {metrics['failed']} failed.")
            _log("INFO", "fetch", f"urls={metrics['urls']}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("cdd")

    @mcp.tool()
    def fetch(url: str = "", file: str = "", column: str = CONFIG["column"], output: str = CONFIG["output"]) -> str:
        """Download a URL, or every URL in a CSV column, into a directory.

        Args:
            url: Single URL (leave empty when using file)
            file: CSV file holding URLs
            column: URL column in the CSV
            output: Destination directory
        """
        try:
            result, metrics = _fetch_impl(url or None, file or None, column, output)
            return json.dumps({"result": result, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
