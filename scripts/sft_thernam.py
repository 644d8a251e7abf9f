#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = []
# ///
"""Copy graduation-project documents under their standard names.

For each document type in order the user picks one file of the input
directory; it is copied to the output directory as
``<i>-<student id><student name>[<type>].<ext>`` where i is the 1-based
position of the type in the list. The ``skip`` slot keeps its number but is
never asked for.

Usage:
    sft_thernam.py
    sft_thernam.py -d ./submissions -o ./renamed --id 2020123 --name 张三
"""

import argparse
import json
import os
import shutil
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
EXPOSED = ["rename"]

CONFIG = {
    "version": "0.1.36",
}

DOC_TYPES = [
    "任务书",
    "文献综述",
    "外文翻译",
    "开题报告",
    "skip",
    "教师中期检查表",
    "毕业设计过程稿",
    "毕业设计过程稿图纸",
    "毕业设计定稿",
    "毕业设计定稿图纸",
    "指导记录表",
    "指导教师评阅",
    "评阅教师评阅",
]


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def new_filename(index: int, student_id: str, student_name: str, doc_type: str, original: Path) -> str:
    ext = original.suffix
    return f"{index}-{student_id}{student_name}[{doc_type}]{ext}"


def list_files(directory: Path) -> list[Path]:
    files = sorted(p for p in directory.iterdir() if p.is_file())
    assert files, f"No files found in directory: {directory}"
    return files


def _pick_file(doc_type: str, files: list[Path]) -> Path:
    print(f'\nSelect file for "{doc_type}"')
    for i, f in enumerate(files):
        print(f"  [{i}] {f.name}")
    raw = input("Selection [0]: ").strip() or "0"
    assert raw.isdigit() and int(raw) < len(files), f"Invalid selection: {raw}"
    return files[int(raw)]


def _rename_impl(input_dir: str, output_dir: str, student_id: str, student_name: str,
                 choices: dict[str, Path]) -> tuple[list[str], dict]:
    """Copy each chosen file under its standard name. choices maps doc type to file."""
    start_ms = time.time() * 1000
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    written = []
    for index, doc_type in enumerate(DOC_TYPES, 1):
        source = choices.get(doc_type)
        if source is None:
            continue
        target = out / new_filename(index, student_id, student_name, doc_type, source)
        shutil.copy2(source, target)
        written.append(str(target))
    metrics = {"copied": len(written), "latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}
    return written, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Rename student project files to the standard document names",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_thernam.py
  sft_thernam.py -d ./submissions -o ./renamed --id 2020123 --name 张三
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("-d", "--dir", default=".", help="Directory holding the files (default: %(default)s)")
    parser.add_argument("-o", "--output-dir", help="Destination (default: same as --dir)")
    parser.add_argument("--id", dest="student_id", help="Student ID (prompted when omitted)")
    parser.add_argument("--name", dest="student_name", help="Student name (prompted when omitted)")

    args = parser.parse_args()

    try:
        input_dir = Path(args.dir)
        output_dir = args.output_dir or args.dir
        print(f"Processing directory: {input_dir}")
        print(f"Output directory: {output_dir}")
        files = list_files(input_dir)
        student_id = args.student_id or input("Enter student ID: ").strip()
        student_name = args.student_name or input("Enter student name: ").strip()
        assert student_id and student_name, "Student ID and name are required"
        print(f"Using student info: ID = {student_id}, Name = {student_name}")

        choices = {t: _pick_file(t, files) for t in DOC_TYPES if t != "skip"}
        written, metrics = _rename_impl(args.dir, output_dir, student_id, student_name, choices)
        for path in written:
            print(f"Copied and renamed to: {path}")
        print("\nProcessing complete.")
        _log("INFO", "rename", f"dir={args.dir}", metrics=json.dumps(metrics))
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
