#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = []
# ///
"""Renumber the images referenced by markdown documents.

Every subdirectory of the parent must hold exactly one ``.md`` file and an
``images/`` directory. Each ``![alt](images/...)`` reference that exists on
disk is renamed to ``<n>.<ext>`` (n counting up from --start, skipping names
already taken) and the markdown is rewritten to match.

Usage:
    sft_mpr.py ./notes
    sft_mpr.py ./notes -s 100
"""

import argparse
import json
import os
import re
import sys
import time
from concurrent.futures import ThreadPoolExecutor
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
EXPOSED = ["renumber"]

CONFIG = {
    "version": "0.1.36",
    "start": 1,
    "workers": os.cpu_count() or 1,
}

IMAGE_RE = re.compile(r"!\[(?P<alt>.*?)]\((?P<path>.*?)\)")


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def image_references(markdown: str) -> list[str]:
    return [m.group("path") for m in IMAGE_RE.finditer(markdown)]


def validate_directory(directory: Path) -> tuple[Path, Path]:
    """(markdown file, images dir) or AssertionError naming what is wrong."""
    md_files = [p for p in directory.iterdir() if p.is_file() and p.suffix == ".md"]
    assert md_files, "No .md file found"
    assert len(md_files) == 1, "Multiple .md files found"
    images = directory / "images"
    assert images.is_dir(), "images directory not found"
    return md_files[0], images


def rename_images(refs: list[str], base: Path, images: Path, start: int) -> tuple[dict[str, str], list[str]]:
    """Rename referenced images in order. Returns old -> new reference and missing paths."""
    mapping: dict[str, str] = {}
    missing = []
    for ref in refs:
        if not ref.startswith("images/") or ref in mapping:
            continue
        original = base / ref
        if not original.exists():
            missing.append(str(original))
            continue
        ext = original.suffix.lstrip(".")
        n = start + len(mapping)
        while (images / f"{n}.{ext}").exists():
            n += 1
        new_name = f"{n}.{ext}"
        original.rename(images / new_name)
        mapping[ref] = f"images/{new_name}"
    return mapping, missing


def rewrite_references(markdown: str, mapping: dict[str, str]) -> str:
    def swap(m: re.Match) -> str:
        new = mapping.get(m.group("path"))
        return f"![{m.group('alt')}]({new})" if new else m.group(0)

    return IMAGE_RE.sub(swap, markdown)


def process_directory(directory: Path, start: int) -> list[str]:
    md_file, images = validate_directory(directory)
    text = md_file.read_text(encoding="utf-8")
    mapping, missing = rename_images(image_references(text), directory, images, start)
    md_file.write_text(rewrite_references(text, mapping), encoding="utf-8")
    return missing


def _renumber_impl(parent_dir: str, start: int = CONFIG["start"]) -> tuple[list[dict], dict]:
    start_ms = time.time() * 1000
    parent = Path(parent_dir)
    assert parent.is_dir(), f"{parent_dir} is not a directory"
    dirs = sorted(p for p in parent.iterdir() if p.is_dir())

    def run(d: Path) -> dict:
        try:
            return {"dir": str(d), "ok": True, "missing": process_directory(d, start)}
        except (AssertionError, OSError) as e:
            return {"dir": str(d), "ok": False, "error": str(e)}

    with ThreadPoolExecutor(max_workers=CONFIG["workers"]) as pool:
        results = list(pool.map(run, dirs))

    failed = sum(1 for r in results if not r["ok"])
    metrics = {
        "directories": len(dirs),
        "failed": failed,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if not failed else "partial",
    }
    return results, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Renumber markdown images per document directory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_mpr.py ./notes
  sft_mpr.py ./notes -s 100
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("parent_dir", help="Directory whose subdirectories are processed")
    parser.add_argument("-s", "--start", type=int, default=CONFIG["start"], help="First image number (default: %(default)s)")

    args = parser.parse_args()

    try:
        results, metrics = _renumber_impl(args.parent_dir, args.start)
        for r in results:
            if r["ok"]:
                for path in r["missing"]:
                    print(f"  Missing: {path}", file=sys.stderr)
                print(f"✅ Processed {args.start}: {r['dir']}")
            else:
                print(f"❌ Failed {args.start}: {r['dir']}: {r['error']}", file=sys.stderr)
        _log("INFO", "renumber", f"parent={args.parent_dir}", metrics=json.dumps(metrics))
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
