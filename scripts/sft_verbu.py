#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "semver>=3.0",
#     "tomlkit>=0.12",
# ]
# ///
"""Bump ``[project].version`` in pyproject.toml files.

Bump rules:
    (none)   1.2.3 -> 1.2.3-dev0, 1.2.3-dev4 -> 1.2.3-dev5
    -i       patch, 1.2.3-dev4 -> 1.2.4-dev0
    -ii      minor, 1.2.3 -> 1.3.0-dev0
    -iii     major, 1.2.3 -> 2.0.0-dev0
    -r       release, drop the pre-release and build parts

Each positional argument is a project directory or a glob of them. With
``--git-aware`` a project is only bumped when git reports a changed or
untracked file with a watched extension inside it.

Usage:
    sft_verbu.py
    sft_verbu.py -ii packages/*
    sft_verbu.py -i -r ./lib
    sft_verbu.py --git-aware -w py,pyx packages/*
"""

import argparse
import glob
import json
import os
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
EXPOSED = ["bump"]

CONFIG = {
    "version": "0.1.36",
    "watch_extensions": os.environ.get("WATCH_EXTENSIONS", "py,rs"),
    "max_level": 3,
}


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
def bump_dev(prerelease: str | None) -> str:
    """dev<N> -> dev<N+1>; anything else restarts at dev0."""
    if prerelease and prerelease.startswith("dev") and prerelease[3:].isdigit():
        return f"dev{int(prerelease[3:]) + 1}"
    return "dev0"


def next_version(current: str, level: int = 0, release: bool = False) -> str:
    import semver

    assert 0 <= level <= CONFIG["max_level"], "Too many -i flags: use up to 3"
    version = semver.Version.parse(current)
    if level == 1:
        version = version.bump_patch()
    elif level == 2:
        version = version.bump_minor()
    elif level == 3:
        version = version.bump_major()

    if release:
        version = version.replace(prerelease=None)
    elif level == 0:
        version = version.replace(prerelease=bump_dev(version.prerelease))
    else:
        version = version.replace(prerelease="dev0")

    if level > 0 or release:
        version = version.replace(build=None)
    return str(version)


def bump_pyproject(pyproject: Path, level: int = 0, release: bool = False) -> tuple[str, str]:
    """Rewrite the version in place, keeping the rest of the file untouched."""
    import tomlkit

    doc = tomlkit.parse(pyproject.read_text(encoding="utf-8"))
    project = doc.get("project")
    assert project is not None, f"'project' table not found in {pyproject}"
    old = project.get("version")
    assert isinstance(old, str), f"Version not found or invalid in {pyproject}"
    new = next_version(str(old), level, release)
    project["version"] = new
    pyproject.write_text(tomlkit.dumps(doc), encoding="utf-8")
    return str(old), new


def parse_extensions(text: str) -> list[str]:
    return [e.strip().lstrip(".") for e in text.split(",") if e.strip()]


def changed_files(project: Path) -> list[str]:
    """Paths git reports as modified, added or untracked under project."""
    result = subprocess.run(
        ["git", "status", "--porcelain", "--untracked-files=all", "--", "."],
        cwd=project,
        capture_output=True,
        text=True,
        timeout=30,
    )
    assert result.returncode == 0, f"Error checking git status for {project}: {result.stderr.strip()}"
    paths = []
    for line in result.stdout.splitlines():
        entry = line[3:]
        # Renames are reported as "old -> new"
        paths.append(entry.split(" -> ")[-1].strip('"'))
    return paths


def has_watched_changes(project: Path, extensions: list[str]) -> bool:
    return any(Path(p).suffix.lstrip(".") in extensions for p in changed_files(project))


def expand_projects(patterns: list[str]) -> tuple[list[Path], list[str]]:
    """Directories matched by each pattern, plus the patterns matching none."""
    dirs: list[Path] = []
    unmatched = []
    for pattern in patterns:
        hits = [Path(p) for p in sorted(glob.glob(pattern)) if Path(p).is_dir()]
        if not hits:
            unmatched.append(pattern)
        dirs.extend(hits)
    return dirs, unmatched


def _bump_impl(
    projects: list[str],
    level: int = 0,
    release: bool = False,
    git_aware: bool = False,
    watch_extensions: str = CONFIG["watch_extensions"],
) -> tuple[list[dict], dict]:
    """Bump every matching project. Each event is a dict with a kind and a message."""
    start_ms = time.time() * 1000
    assert level <= CONFIG["max_level"], "Too many -i flags: use up to 3"
    extensions = parse_extensions(watch_extensions)
    dirs, unmatched = expand_projects(projects)

    events = [{"kind": "warn", "msg": f"No directories found matching glob pattern '{p}'"} for p in unmatched]
    bumped = 0
    for project in dirs:
        pyproject = project / "pyproject.toml"
        if not pyproject.exists():
            events.append({"kind": "warn", "msg": f"pyproject.toml not found in {project}. Skipping."})
            continue
        if git_aware and not has_watched_changes(project, extensions):
            events.append({
                "kind": "info",
                "msg": f"No git changes detected in {project} for watched extensions ({','.join(extensions)}). Skipping.",
            })
            continue
        old, new = bump_pyproject(pyproject, level, release)
        events.append({"kind": "info", "msg": f"Bumped version in {pyproject} from {old} to {new}"})
        bumped += 1

    if not bumped:
        if projects == ["."] and not Path("pyproject.toml").exists():
            message = "No 'pyproject.toml' found in the current directory."
        else:
            message = "No project versions were bumped."
            if git_aware:
                message += f" In git-aware mode, this can also occur if no targeted projects had relevant git changes for watched extensions ({','.join(extensions)})."
        for event in events:
            print(event["msg"], file=sys.stderr)
        raise RuntimeError(message)

    metrics = {
        "bumped": bumped,
        "projects": len(dirs),
        "level": level,
        "release": release,
        "latency_ms": round(time.time() * 1000 - start_ms, 2),
        "status": "success",
    }
    return events, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================
def main():
    parser = argparse.ArgumentParser(
        description="Bump pyproject.toml versions (dev, patch, minor, major, release)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_verbu.py                    # 1.2.3-dev0 -> 1.2.3-dev1
  sft_verbu.py -i                 # 1.2.3 -> 1.2.4-dev0
  sft_verbu.py -ii -r packages/*  # 1.2.3 -> 1.3.0
  sft_verbu.py -g -w py,pyx       # only when .py/.pyx files changed
        """,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}")
    parser.add_argument("projects", nargs="*", default=["."], help="Project directories or glob patterns (default: .)")
    parser.add_argument("-i", dest="bump_level", action="count", default=0, help="Bump level: -i patch, -ii minor, -iii major")
    parser.add_argument("-r", "--release", action="store_true", help="Make a release version")
    parser.add_argument("-g", "--git-aware", action="store_true", help="Only bump projects with git changes")
    parser.add_argument(
        "-w", "--watch-extensions", default=CONFIG["watch_extensions"],
        help="Extensions counted as changes in git-aware mode (default: %(default)s)",
    )

    args = parser.parse_args()

    try:
        events, metrics = _bump_impl(args.projects, args.bump_level, args.release, args.git_aware, args.watch_extensions)
        for event in events:
            print(event["msg"], file=sys.stderr if event["kind"] == "warn" else sys.stdout)
        _log("INFO", "bump", f"projects={args.projects}", metrics=json.dumps(metrics))
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
