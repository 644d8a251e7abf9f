#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "pyyaml>=6.0",
#     "tqdm>=4.66",
#     "fastmcp",
# ]
# ///
"""Split a YOLO image/label folder pair into train and val sets.

Images ``<image_dir>/<stem>.<ext>`` are paired with ``<label_dir>/<stem>.txt``.
Pairs are ordered by a hash of their stem, so the same inputs always produce
the same split. A ``data.yaml`` pointing at the split is written next to it.

Usage:
    sft_yldt.py split
    sft_yldt.py split -i imgs -l lbls -o out --train-ratio 0.9 --image-ext png
    sft_yldt.py split --no-validation --dry-run
    sft_yldt.py mcp-stdio
"""

import argparse
import hashlib
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
EXPOSED = ["split"]

CONFIG = {
    "version": "0.1.36",
    "image_dir": "images",
    "label_dir": "labels",
    "output_dir": "dataset",
    "classes_file": "classes.txt",
    "train_ratio": 0.8,
    "image_ext": "jpg",
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def image_files(image_dir: Path, image_ext: str) -> dict[str, Path]:
    """stem -> image path for files whose extension matches, case-insensitively."""
    ext = image_ext.lower().lstrip(".")
    return {p.stem: p for p in sorted(image_dir.iterdir()) if p.is_file() and p.suffix[1:].lower() == ext}


def stable_order(stems: list[str]) -> list[str]:
    return sorted(stems, key=lambda s: (hashlib.md5(s.encode("utf-8")).hexdigest(), s))


def split_stems(stems: list[str], train_ratio: float, no_validation: bool = False) -> tuple[list[str], list[str]]:
    ordered = stable_order(stems)
    cut = int(train_ratio * len(ordered))
    return ordered[:cut], [] if no_validation else ordered[cut:]


def read_classes(path: Path) -> list[str]:
    if not path.is_file():
        return []
    return [line.strip() for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


def build_data_yaml(output_dir: Path, names: list[str], no_validation: bool) -> dict:
    return {
        "train": str(output_dir / "train" / "images"),
        "val": "" if no_validation else str(output_dir / "val" / "images"),
        "nc": len(names),
        "names": names,
    }


def _split_impl(
    image_dir: str = CONFIG["image_dir"],
    label_dir: str = CONFIG["label_dir"],
    output_dir: str = CONFIG["output_dir"],
    classes_file: str = CONFIG["classes_file"],
    train_ratio: float = CONFIG["train_ratio"],
    no_validation: bool = False,
    dry_run: bool = False,
    image_ext: str = CONFIG["image_ext"],
) -> tuple[dict, dict]:
    import yaml
    from tqdm import tqdm

    start_ms = time.time() * 1000
    images, labels, out = Path(image_dir), Path(label_dir), Path(output_dir)
    assert 0.0 < train_ratio <= 1.0, "train_ratio must be between 0.0 and 1.0"
    assert images.is_dir(), f"Image directory does not exist: {image_dir}"
    assert labels.is_dir(), f"Label directory does not exist: {label_dir}"

    found = image_files(images, image_ext)
    assert found, f"No .{image_ext} image files found in directory"
    missing = [s for s in found if not (labels / f"{s}.txt").exists()]
    paired = [s for s in found if (labels / f"{s}.txt").exists()]
    assert paired, "No paired image and label files found"

    train, val = split_stems(paired, train_ratio, no_validation)
    splits = {"train": train} if no_validation else {"train": train, "val": val}

    if not dry_run:
        for split, chosen in splits.items():
            (out / split / "images").mkdir(parents=True, exist_ok=True)
            (out / split / "labels").mkdir(parents=True, exist_ok=True)
            for stem in tqdm(chosen, desc=f"Copying {split}", unit="pair"):
                img = found[stem]
                shutil.copy2(img, out / split / "images" / img.name)
                shutil.copy2(labels / f"{stem}.txt", out / split / "labels" / f"{stem}.txt")

    classes_path = Path(classes_file)
    names = read_classes(classes_path)
    data = build_data_yaml(out, names, no_validation)
    yaml_text = yaml.safe_dump(data, sort_keys=False, default_flow_style=None, allow_unicode=True)
    if not dry_run:
        out.mkdir(parents=True, exist_ok=True)
        (out / "data.yaml").write_text(yaml_text, encoding="utf-8")

    result = {
        "train": len(train),
        "val": len(val),
        "missing_labels": missing,
        "classes_found": classes_path.is_file(),
        "data_yaml": yaml_text,
    }
    metrics = {
        "paired": len(paired),
        "train": len(train),
        "val": len(val),
        "dry_run": dry_run,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success" if not missing else "partial",
    }
    return result, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Split a YOLO dataset and generate data.yaml",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_yldt.py split
  sft_yldt.py split -i imgs -l lbls -o out --train-ratio 0.9
  sft_yldt.py split --no-validation --dry-run
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_split = subparsers.add_parser("split", help="Copy pairs into train/val and write data.yaml")
    p_split.add_argument("-i", "--image-dir", default=CONFIG["image_dir"], help="Image folder (default: %(default)s)")
    p_split.add_argument("-l", "--label-dir", default=CONFIG["label_dir"], help="Label folder (default: %(default)s)")
    p_split.add_argument("-o", "--output-dir", default=CONFIG["output_dir"], help="Output folder (default: %(default)s)")
    p_split.add_argument("-c", "--classes-file", default=CONFIG["classes_file"], help="One class name per line (default: %(default)s)")
    p_split.add_argument("--train-ratio", type=float, default=CONFIG["train_ratio"], help="Share of pairs for training (default: %(default)s)")
    p_split.add_argument("--no-validation", action="store_true", help="Do not create a validation set")
    p_split.add_argument("--dry-run", action="store_true", help="Report the split without writing")
    p_split.add_argument("--image-ext", default=CONFIG["image_ext"], help="Image extension (default: %(default)s)")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command == "split":
            print("Starting YOLO dataset processing...")
            result, metrics = _split_impl(
                args.image_dir, args.label_dir, args.output_dir, args.classes_file,
                args.train_ratio, args.no_validation, args.dry_run, args.image_ext,
            )
            for stem in result["missing_labels"]:
                print(f"Warning: Corresponding label file not found: {stem}.txt", file=sys.stderr)
            if not result["classes_found"]:
                print(f"Warning: classes file not found: {args.classes_file}", file=sys.stderr)
            print(f"Found {metrics['paired']} paired files")
            print(f"Training set: {result['train']} files")
            if not args.no_validation:
                print(f"Validation set: {result['val']} files")
            if args.dry_run:
                print(result["data_yaml"], end="")
            print("Dataset processing completed!")
            _log("INFO", "split", f"images={args.image_dir}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("yldt")

    @mcp.tool()
    def split(
        image_dir: str = CONFIG["image_dir"],
        label_dir: str = CONFIG["label_dir"],
        output_dir: str = CONFIG["output_dir"],
        classes_file: str = CONFIG["classes_file"],
        train_ratio: float = CONFIG["train_ratio"],
        no_validation: bool = False,
        dry_run: bool = True,
        image_ext: str = CONFIG["image_ext"],
    ) -> str:
        """Split a YOLO dataset into train/val folders and write data.yaml.

        Args:
            image_dir: Folder with images
            label_dir: Folder with <stem>.txt labels
            output_dir: Destination dataset folder
            classes_file: Class names, one per line
            train_ratio: Share of pairs used for training, in (0, 1]
            no_validation: Skip the validation set
            dry_run: Only report (default true)
            image_ext: Image extension to pick up
        """
        try:
            result, metrics = _split_impl(
                image_dir, label_dir, output_dir, classes_file,
                train_ratio, no_validation, dry_run, image_ext,
            )
            return json.dumps({"result": result, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
