from __future__ import annotations

import argparse
import dataclasses
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .errors import SetupError

APP_DIR = Path.home() / ".mirror_backup"
CONFIG_PATH = APP_DIR / "config.json"

DEFAULT_MAX_TRANSFERS = 1

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


@dataclass(frozen=True)
class SyncConfig:
    source_root: Path
    dest_root: Path
    interval_sec: float = 0.0
    include: tuple[str, ...] = ()
    max_transfers: int = DEFAULT_MAX_TRANSFERS
    log_dir: Optional[Path] = None
    show_progress: bool = True

    @property
    def scheduled(self) -> bool:
        return self.interval_sec > 0


# -------------------------
# CLI
# -------------------------

def parse_interval(text: str) -> float:
    """Parse ``1h30m``, ``45s``, ``500ms`` or a bare number of seconds."""
    raw = text.strip()
    if not raw:
        raise SetupError("empty interval")
    try:
        return float(raw)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for m in _DURATION_PART.finditer(raw):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _UNIT_SECONDS[m.group(2)]
        pos = m.end()
    if pos != len(raw):
        raise SetupError(f"invalid interval: {text!r} (expected e.g. 30m, 1h, 1h30m, 90s)")
    return total


def split_patterns(values: Optional[Iterable[str]]) -> tuple[str, ...]:
    out: list[str] = []
    for value in values or ():
        out.extend(part.strip() for part in value.split(",") if part.strip())
    return tuple(out)


def _interval_arg(text: str) -> float:
    try:
        return parse_interval(text)
    except SetupError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mirror-backup",
        description="Mirror a source folder into a backup folder, in real time or on a schedule.",
    )
    p.add_argument("-s", "--source", type=str, default=None, help="Source directory.")
    p.add_argument("-d", "--destination", type=str, default=None, help="Backup directory (created if absent).")
    p.add_argument(
        "-i",
        "--interval",
        type=_interval_arg,
        default=None,
        help="Schedule interval (e.g. 1h, 30m). If omitted, changes are mirrored in real time.",
    )
    p.add_argument(
        "-e",
        "--include",
        action="append",
        default=None,
        help="Comma-separated file or folder patterns to include (e.g. report,*.jpg). Repeatable.",
    )
    p.add_argument(
        "-m",
        "--max-transfers",
        type=int,
        default=None,
        help=f"Maximum number of concurrent file transfers (default {DEFAULT_MAX_TRANSFERS}).",
    )
    p.add_argument("--log-dir", type=str, default=None, help="Directory for log files.")
    p.add_argument("--no-progress", action="store_true", help="Do not draw per-file progress bars.")
    p.add_argument("--no-save", action="store_true", help="Do not remember these settings for the next run.")
    return p


def parse_args(argv: list[str]) -> argparse.Namespace:
    return build_arg_parser().parse_args(argv)


# -------------------------
# Saved config
# -------------------------

def load_config_file(path: Optional[Path] = None) -> dict:
    path = path or CONFIG_PATH
    try:
        if path.exists():
            data = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                return data
    except (OSError, ValueError):
        pass
    return {}


def save_config_file(cfg: SyncConfig, path: Optional[Path] = None) -> Path:
    path = path or CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "source": str(cfg.source_root),
        "destination": str(cfg.dest_root),
        "max_transfers": cfg.max_transfers,
    }
    if cfg.log_dir is not None:
        payload["log_dir"] = str(cfg.log_dir)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


def build_effective_config(args: argparse.Namespace, saved: Optional[dict] = None) -> SyncConfig:
    """Merge command-line flags over the saved folders and transfer limit."""
    saved = load_config_file() if saved is None else saved

    source = args.source or saved.get("source")
    dest = args.destination or saved.get("destination")
    if not source:
        raise SetupError("source directory is required (--source)")
    if not dest:
        raise SetupError("destination directory is required (--destination)")

    # mode and filters come from this run only; an omitted -i means real-time
    interval = args.interval if args.interval is not None else 0.0
    include = split_patterns(args.include)
    max_transfers = (
        args.max_transfers
        if args.max_transfers is not None
        else int(saved.get("max_transfers", DEFAULT_MAX_TRANSFERS))
    )
    log_dir = args.log_dir or saved.get("log_dir")

    return SyncConfig(
        source_root=Path(source),
        dest_root=Path(dest),
        interval_sec=interval,
        include=include,
        max_transfers=max_transfers,
        log_dir=Path(log_dir) if log_dir else None,
        show_progress=not args.no_progress,
    )


# -------------------------
# Validation
# -------------------------

def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
        return True
    except ValueError:
        return False


def validate_paths(source: Path, dest: Path) -> tuple[Path, Path]:
    source = source.expanduser().resolve()
    dest = dest.expanduser().resolve()

    if not source.exists() or not source.is_dir():
        raise SetupError(f"Source folder does not exist or is not a folder: {source}")
    if source == dest:
        raise SetupError("Source and destination folders must be different.")
    if _is_subpath(dest, source):
        raise SetupError("Destination folder must NOT be inside source folder (would cause loops).")
    if _is_subpath(source, dest):
        raise SetupError("Source folder must NOT be inside destination folder.")

    try:
        dest.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise SetupError(f"Cannot create destination folder {dest}: {e}") from e
    return source, dest


def validate_config(cfg: SyncConfig) -> SyncConfig:
    """Check limits and paths; returns a copy with resolved roots."""
    if cfg.max_transfers < 1:
        raise SetupError(f"--max-transfers must be at least 1, got {cfg.max_transfers}")
    if cfg.interval_sec < 0:
        raise SetupError(f"interval must not be negative, got {cfg.interval_sec}")
    source, dest = validate_paths(cfg.source_root, cfg.dest_root)
    return dataclasses.replace(cfg, source_root=source, dest_root=dest)
