#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "pandas>=2.0",
# ]
# ///
"""Download the videos listed in CSV files with BBDown.

Rows come from the url/title columns of every CSV given. Items whose
``<work-dir>/<title>`` or ``<work-dir>/<title>.mp4`` already exists are
skipped. Between downloads the tool sleeps a random interval/2 to
2*interval/3 seconds. ``--start``/``--end`` are asked for when omitted.

Usage:
    sft_avd.py list.csv --start 0 --end 20
    sft_avd.py a.csv b.csv -w ./videos -a -i 10 --clean-failures
"""

import argparse
import json
import os
import random
import shutil
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
EXPOSED = ["download"]

CONFIG = {
    "version": "0.1.36",
    "downloader": "bbdown",
    "work_dir": ".",
    "interval": 5,
    "url_column": "url",
    "title_column": "title",
}

# flag name -> downloader option
_PASSTHROUGH = {
    "video_only": "--video-only",
    "audio_only": "--audio-only",
    "sub_only": "--sub-only",
    "cover_only": "--cover-only",
    "skip_sub": "--skip-subtitle",
    "skip_cover": "--skip-cover",
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def read_rows(csv_paths: list[str], url_column: str, title_column: str) -> list[tuple[str, str]]:
    """(url, title) rows from every existing CSV, in file order."""
    import pandas as pd

    rows = []
    for path in csv_paths:
        if not Path(path).exists():
            _log("WARN", "missing_csv", path)
            continue
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
        if url_column not in df.columns or title_column not in df.columns:
            _log("WARN", "missing_columns", path, detail=f"{url_column},{title_column}")
            continue
        rows.extend(zip(df[url_column], df[title_column]))
    return rows


def already_downloaded(work_dir: Path, title: str) -> bool:
    return (work_dir / title).exists() or (work_dir / f"{title}.mp4").exists()


def pause_seconds(interval: int) -> int:
    low = interval // 2
    return random.randint(low, max(low, interval // 3 * 2))


def downloader_options(work_dir: str, flags: dict[str, bool]) -> list[str]:
    return ["--work-dir", work_dir] + [opt for name, opt in _PASSTHROUGH.items() if flags.get(name)]


def remove_numeric_dirs(work_dir: Path) -> list[str]:
    removed = []
    if work_dir.is_dir():
        for entry in sorted(work_dir.iterdir()):
            if entry.is_dir() and entry.name.isdigit():
                shutil.rmtree(entry)
                removed.append(str(entry))
    return removed


def _run_downloader(options: list[str], url: str) -> bool:
    try:
        return subprocess.run([CONFIG["downloader"], *options, url]).returncode == 0
    except FileNotFoundError as e:
        raise RuntimeError(f"{CONFIG['downloader']} not found on PATH") from e


def _download_impl(rows: list[tuple[str, str]], start: int, end: int, work_dir: str = CONFIG["work_dir"],
                   interval: int = CONFIG["interval"], flags: dict[str, bool] | None = None,
                   clean_failures: bool = False) -> tuple[dict, dict]:
    start_ms = time.time() * 1000
    end = min(end, len(rows))
    assert 0 <= start <= end, f"Invalid range: {start}..{end}"
    wd = Path(work_dir)
    options = downloader_options(work_dir, flags or {})

    ok, skipped, failed = 0, 0, []
    for index in range(start, end):
        url, title = rows[index]
        print(f"Checking [{index + 1}/{len(rows)}]:{title} | {url}")
        if already_downloaded(wd, title):
            print(f"File already exists, skipping: {title}")
            skipped += 1
            continue
        if _run_downloader(options, url):
            ok += 1
        else:
            failed.append(url)
            _log("WARN", "download_failed", url, detail=title)
        time.sleep(pause_seconds(interval))

    removed = remove_numeric_dirs(wd) if clean_failures else []
    metrics = {
        "total": len(rows),
        "downloaded": ok,
        "skipped": skipped,
        "failed": len(failed),
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if not failed else "partial",
    }
    return {"downloaded": ok, "failed": failed, "removed_dirs": removed}, metrics


def _ask_index(prompt: str, default: int) -> int:
    raw = input(f"{prompt} [{default}]: ").strip()
    if not raw:
        return default
    assert raw.isdigit(), f"Not an index: {raw}"
    return int(raw)


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Download videos listed in CSV files using BBDown",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_avd.py list.csv --start 0 --end 20
  sft_avd.py a.csv b.csv -w ./videos -a -i 10 --clean-failures
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("file_paths", nargs="+", metavar="CSV", help="CSV files holding URLs")
    parser.add_argument("-v", "--video-only", action="store_true", help="Download video only")
    parser.add_argument("-a", "--audio-only", action="store_true", help="Download audio only")
    parser.add_argument("-b", "--sub-only", action="store_true", help="Download subtitles only")
    parser.add_argument("-c", "--cover-only", action="store_true", help="Download cover image only")
    parser.add_argument("-s", "--skip-sub", action="store_true", help="Skip subtitles")
    parser.add_argument("-d", "--skip-cover", action="store_true", help="Skip cover image")
    parser.add_argument("-w", "--work-dir", default=CONFIG["work_dir"], help="Download directory (default: %(default)s)")
    parser.add_argument("-i", "--interval", type=int, default=CONFIG["interval"], help="Seconds between downloads (default: %(default)s)")
    parser.add_argument("--url-tab", default=CONFIG["url_column"], help="URL column (default: %(default)s)")
    parser.add_argument("--title-tab", default=CONFIG["title_column"], help="Title column (default: %(default)s)")
    parser.add_argument("-u", "--clean-failures", action="store_true", help="Remove all-digit leftover directories")
    parser.add_argument("--start", type=int, help="First row index (prompted when omitted)")
    parser.add_argument("--end", type=int, help="Row index to stop before (prompted when omitted)")

    args = parser.parse_args()

    try:
        rows = read_rows(args.file_paths, args.url_tab, args.title_tab)
        print(f"Total URLs: {len(rows)}")
        start = args.start if args.start is not None else _ask_index("Enter the starting index", 0)
        end = args.end if args.end is not None else _ask_index("Enter the ending index", len(rows))
        flags = {name: getattr(args, name) for name in _PASSTHROUGH}
        result, metrics = _download_impl(rows, start, end, args.work_dir, args.interval, flags, args.clean_failures)
        print(f"Downloaded [{result['downloaded']}/{len(rows)}] files successfully.")
        for path in result["removed_dirs"]:
            print(f"Deleting directory: {path}")
        _log("INFO", "download", f"rows={len(rows)}", metrics=json.dumps(metrics))
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
