#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "httpx>=0.27",
#     "semver>=3.0",
#     "fastmcp",
# ]
# ///
"""Manage Factorio mods: list, archive old versions, export, import, install.

Mod archives are ``<name>_<major>.<minor>.<patch>.zip`` in the mods
directory (default ``<user data dir>/Factorio/mods``). Versions compare
semantically, so 1.10.0 is newer than 1.9.0.

Usage:
    sft_facm.py list
    sft_facm.py move -o ./old_mods
    sft_facm.py export -o enabled.zip -i
    sft_facm.py import -i enabled.zip
    sft_facm.py install https://example.com/foo_1.2.3.zip
    sft_facm.py install ./my-mod-folder
    sft_facm.py mcp-stdio
"""

import argparse
import json
import os
import re
import shutil
import sys
import time
import zipfile
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
def data_dir() -> Path:
    """Per-user application data directory."""
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA") or Path.home() / "AppData" / "Roaming")
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    return Path(os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share")


EXPOSED = ["list", "move", "export", "import", "install"]

CONFIG = {
    "version": "0.1.36",
    "mods_dir": str(data_dir() / "Factorio" / "mods"),
    "old_mods_dir": str(data_dir() / "Factorio" / "old_mods"),
    "export_zip": "./enabled_mods.zip",
    "timeout_seconds": 120.0,
}

MOD_RE = re.compile(r"^(?P<name>.*)_(?P<version>\d+\.\d+\.\d+)\.zip$")


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
class ModEntry:
    """One mod archive in the mods directory."""

    def __init__(self, name: str, version: str, path: Path):
        self.name = name
        self.version = version
        self.path = path

    @classmethod
    def from_path(cls, path: Path) -> "ModEntry | None":
        m = MOD_RE.match(path.name)
        return cls(m.group("name"), m.group("version"), path) if m else None

    def __repr__(self):
        return f"ModEntry({self.name!r}, {self.version!r})"


def mod_entries(mods_dir: Path) -> list[ModEntry]:
    entries = (ModEntry.from_path(p) for p in sorted(mods_dir.glob("*.zip")))
    return [e for e in entries if e is not None]


def latest_versions(entries: list[ModEntry]) -> dict[str, ModEntry]:
    import semver

    latest: dict[str, ModEntry] = {}
    for e in entries:
        best = latest.get(e.name)
        if best is None or semver.Version.parse(e.version) > semver.Version.parse(best.version):
            latest[e.name] = e
    return latest


def outdated(entries: list[ModEntry]) -> list[ModEntry]:
    latest = latest_versions(entries)
    return [e for e in entries if latest[e.name] is not e]


def read_mod_list(mod_list: Path) -> dict[str, bool]:
    """name -> enabled from mod-list.json; malformed entries are ignored."""
    if not mod_list.exists():
        return {}
    data = json.loads(mod_list.read_text(encoding="utf-8"))
    result = {}
    for m in data.get("mods") or []:
        if isinstance(m.get("name"), str) and isinstance(m.get("enabled"), bool):
            result[m["name"]] = m["enabled"]
    return result


def _check_mods_dir(mods_dir: str) -> Path:
    p = Path(mods_dir)
    assert p.is_dir(), "Mods directory does not exist or is not a directory"
    return p


def _list_impl(mods_dir: str = CONFIG["mods_dir"]) -> tuple[list[dict], dict]:
    start_ms = time.time() * 1000
    entries = mod_entries(_check_mods_dir(mods_dir))
    result = [{"name": e.name, "version": e.version} for e in entries]
    return result, {"count": len(result), "latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}


def _move_impl(mods_dir: str = CONFIG["mods_dir"], output_dir: str = CONFIG["old_mods_dir"]) -> tuple[dict, dict]:
    start_ms = time.time() * 1000
    mods = _check_mods_dir(mods_dir)
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    moved, failed = [], []
    for e in outdated(mod_entries(mods)):
        dest = out / e.path.name
        try:
            shutil.move(str(e.path), str(dest))
            moved.append((str(e.path), str(dest)))
        except OSError as err:
            failed.append((str(e.path), str(err)))
    metrics = {"moved": len(moved), "failed": len(failed), "latency_ms": round(time.time() * 1000 - start_ms, 2),
               "status": "success" if not failed else "partial"}
    return {"moved": moved, "failed": failed}, metrics


def _export_impl(mods_dir: str = CONFIG["mods_dir"], output_zip: str = CONFIG["export_zip"],
                 include_settings: bool = False) -> tuple[dict, dict]:
    start_ms = time.time() * 1000
    mods = _check_mods_dir(mods_dir)
    mod_list = mods / "mod-list.json"
    enabled = read_mod_list(mod_list)
    files, missing = [], []
    if mod_list.exists():
        files.append(mod_list)
    else:
        missing.append("mod-list.json")
    files.extend(e.path for e in mod_entries(mods) if enabled.get(e.name, False))
    if include_settings:
        settings = mods / "mod-settings.dat"
        if settings.exists():
            files.append(settings)
        else:
            missing.append("mod-settings.dat")

    Path(output_zip).parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(output_zip, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for f in files:
            zf.write(f, arcname=f.name)
    metrics = {"files": len(files), "latency_ms": round(time.time() * 1000 - start_ms, 2),
               "status": "success" if not missing else "partial"}
    return {"added": [str(f) for f in files], "missing": missing}, metrics


def _import_impl(input_zip: str, mods_dir: str = CONFIG["mods_dir"]) -> tuple[list[str], dict]:
    start_ms = time.time() * 1000
    mods = _check_mods_dir(mods_dir)
    assert Path(input_zip).is_file(), f"File not found: {input_zip}"
    with zipfile.ZipFile(input_zip) as zf:
        names = zf.namelist()
        zf.extractall(mods)
    return names, {"files": len(names), "latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}


def package_folder(folder: Path, mods_dir: Path) -> Path:
    """Zip a mod folder as <name>_<version>.zip using its info.json."""
    info_path = folder / "info.json"
    assert info_path.exists(), "info.json not found in the folder"
    info = json.loads(info_path.read_text(encoding="utf-8"))
    assert isinstance(info.get("name"), str), "Missing 'name' field in info.json"
    assert isinstance(info.get("version"), str), "Missing 'version' field in info.json"
    target = mods_dir / f"{info['name']}_{info['version']}.zip"
    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for f in sorted(folder.rglob("*")):
            if f.is_file():
                zf.write(f, arcname=str(Path(folder.name) / f.relative_to(folder)))
    return target


def download_mod(url: str, mods_dir: Path) -> Path:
    import httpx

    with httpx.Client(follow_redirects=True, timeout=CONFIG["timeout_seconds"]) as client:
        resp = client.get(url)
        resp.raise_for_status()
    name = resp.url.path.rstrip("/").split("/")[-1]
    assert name, "Invalid URL or missing file name"
    target = mods_dir / name
    target.write_bytes(resp.content)
    return target


def _install_impl(source: str, mods_dir: str = CONFIG["mods_dir"]) -> tuple[str, dict]:
    start_ms = time.time() * 1000
    mods = _check_mods_dir(mods_dir)
    if source.startswith(("http://", "https://")):
        path = download_mod(source, mods)
    else:
        path = Path(source)
        assert path.exists(), f"File or folder not found: {source}"
        if path.is_dir():
            path = package_folder(path, mods)
    assert MOD_RE.match(path.name), f"Invalid mod file name: {path.name}"
    if path.parent.resolve() != mods.resolve():
        dest = mods / path.name
        shutil.move(str(path), str(dest))
        path = dest
    return str(path), {"latency_ms": round(time.time() * 1000 - start_ms, 2), "status": "success"}


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Manage Factorio mods",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_facm.py list
  sft_facm.py move -o ./old_mods
  sft_facm.py export -o enabled.zip -i
  sft_facm.py import -i enabled.zip
  sft_facm.py install https://example.com/foo_1.2.3.zip
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_move = subparsers.add_parser("move", aliases=["m"], help="Move old mod versions out of the mods directory")
    p_move.add_argument("-m", "--mods-dir", default=CONFIG["mods_dir"], help="Mods directory (default: %(default)s)")
    p_move.add_argument("-o", "--output-dir", default=CONFIG["old_mods_dir"], help="Old mods directory (default: %(default)s)")

    p_export = subparsers.add_parser("export", aliases=["e"], help="Zip the enabled mods")
    p_export.add_argument("-m", "--mods-dir", default=CONFIG["mods_dir"], help="Mods directory (default: %(default)s)")
    p_export.add_argument("-o", "--output-zip", default=CONFIG["export_zip"], help="Zip file (default: %(default)s)")
    p_export.add_argument("-i", "--include-settings", action="store_true", help="Include mod-settings.dat")

    p_import = subparsers.add_parser("import", aliases=["i"], help="Unzip mods into the mods directory")
    p_import.add_argument("-i", "--input-zip", required=True, help="Zip file")
    p_import.add_argument("-m", "--mods-dir", default=CONFIG["mods_dir"], help="Mods directory (default: %(default)s)")

    p_install = subparsers.add_parser("install", aliases=["in"], help="Install a mod from a file, folder or URL")
    p_install.add_argument("source", help="Zip file, mod folder or URL")
    p_install.add_argument("-m", "--mods-dir", default=CONFIG["mods_dir"], help="Mods directory (default: %(default)s)")

    p_list = subparsers.add_parser("list", aliases=["l"], help="List installed mods")
    p_list.add_argument("-m", "--mods-dir", default=CONFIG["mods_dir"], help="Mods directory (default: %(default)s)")

    subparsers.add_parser("mcp-stdio", help="Run as MCP server")

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp()
        elif args.command in ("list", "l"):
            mods, metrics = _list_impl(args.mods_dir)
            print("Installed mods:")
            for m in mods:
                print(f"{m['name']} (Version: {m['version']})")
            _log("INFO", "list", f"count={len(mods)}", metrics=json.dumps(metrics))
        elif args.command in ("move", "m"):
            result, metrics = _move_impl(args.mods_dir, args.output_dir)
            for src, dest in result["moved"]:
                print(f"Moved {src} to {dest}")
            for src, err in result["failed"]:
                print(f"Failed to move {src}: {err}", file=sys.stderr)
            _log("INFO", "move", f"moved={metrics['moved']}", metrics=json.dumps(metrics))
        elif args.command in ("export", "e"):
            result, metrics = _export_impl(args.mods_dir, args.output_zip, args.include_settings)
            for path in result["added"]:
                print(f"Added {Path(path).name} to {args.output_zip}")
            for name in result["missing"]:
                print(f"{name} not found in the mods directory.", file=sys.stderr)
            _log("INFO", "export", f"zip={args.output_zip}", metrics=json.dumps(metrics))
        elif args.command in ("import", "i"):
            names, metrics = _import_impl(args.input_zip, args.mods_dir)
            print(f"Extracted {len(names)} files from {args.input_zip} to {args.mods_dir}")
            _log("INFO", "import", f"zip={args.input_zip}", metrics=json.dumps(metrics))
        elif args.command in ("install", "in"):
            path, metrics = _install_impl(args.source, args.mods_dir)
            print(f"Installed {path}")
            _log("INFO", "install", f"source={args.source}", metrics=json.dumps(metrics))
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

    mcp = FastMCP("facm")

    @mcp.tool()
    def list_mods(mods_dir: str = CONFIG["mods_dir"]) -> str:
        """List installed mod archives with their versions.

        Args:
            mods_dir: Factorio mods directory
        """
        try:
            mods, metrics = _list_impl(mods_dir)
            return json.dumps({"mods": mods, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    @mcp.tool()
    def export(mods_dir: str = CONFIG["mods_dir"], output_zip: str = CONFIG["export_zip"], include_settings: bool = False) -> str:
        """Zip mod-list.json and every enabled mod archive.

        Args:
            mods_dir: Factorio mods directory
            output_zip: Zip file to write
            include_settings: Also add mod-settings.dat
        """
        try:
            result, metrics = _export_impl(mods_dir, output_zip, include_settings)
            return json.dumps({"result": result, "metrics": metrics})
        except Exception as e:
            return json.dumps({"error": str(e)})

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
