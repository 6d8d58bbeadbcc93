"""Locate the Minecraft client log to follow.

Preference order: explicit path > chosen client key > most recently
modified candidate across all known clients.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

CLIENTS = ("badlion", "vanilla", "pvplounge", "labymod", "feather", "lunar")

_LUNAR_VERSIONS = ("1.8", "1.21")


@dataclass(frozen=True, slots=True)
class LogSource:
    """A resolved log file and the client it belongs to (None for manual paths)."""

    path: Path
    client: str | None = None
    detected: bool = False


def _lunar_candidates(platform: str, home: Path) -> list[Path]:
    if platform == "win32" or platform.startswith("linux"):
        base = home / ".lunarclient" / "profiles" / "lunar"
    elif platform == "darwin":
        base = home / "Library" / "Application Support" / "lunarclient" / "offline"
    else:
        return []
    return [base / version / "logs" / "latest.log" for version in _LUNAR_VERSIONS]


def newest_existing(paths: list[Path]) -> Path | None:
    """Return the existing path with the latest modification time."""
    best: Path | None = None
    best_mtime = 0.0
    for path in paths:
        try:
            mtime = path.stat().st_mtime
        except OSError:
            continue
        if mtime > best_mtime:
            best, best_mtime = path, mtime
    return best


def build_client_paths(
    platform: str | None = None,
    env: Mapping[str, str] | None = None,
    home: Path | None = None,
) -> dict[str, Path]:
    """Map client key -> candidate latest.log path for this OS.

    Lunar is only included when one of its profile logs exists.
    """
    platform = platform or sys.platform
    env = os.environ if env is None else env
    if home is None:
        home = Path(env.get("HOME") or env.get("USERPROFILE") or Path.home())

    if platform == "win32":
        minecraft = Path(env.get("APPDATA", "")) / ".minecraft"
        paths = {
            "badlion": minecraft / "logs" / "blclient" / "minecraft" / "latest.log",
            "vanilla": minecraft / "logs" / "latest.log",
            "pvplounge": Path(env.get("APPDATA", "")) / ".pvplounge" / "logs" / "latest.log",
            "labymod": minecraft / "logs" / "fml-client-latest.log",
            "feather": minecraft / "logs" / "latest.log",
        }
    elif platform == "darwin":
        support = home / "Library" / "Application Support"
        minecraft = support / "minecraft"
        paths = {
            "badlion": minecraft / "logs" / "blclient" / "minecraft" / "latest.log",
            "vanilla": minecraft / "logs" / "latest.log",
            "pvplounge": support / "pvplounge" / "logs" / "latest.log",
            "labymod": minecraft / "logs" / "latest.log",
            "feather": support / "feather" / "logs" / "latest.log",
        }
    else:
        minecraft = home / ".minecraft"
        paths = {
            "badlion": minecraft / "logs" / "blclient" / "minecraft" / "latest.log",
            "vanilla": minecraft / "logs" / "latest.log",
            "pvplounge": home / ".pvplounge" / "logs" / "latest.log",
            "labymod": minecraft / "logs" / "fml-client-latest.log",
            "feather": home / ".feather" / "logs" / "latest.log",
        }

    lunar = newest_existing(_lunar_candidates(platform, home))
    if lunar is not None:
        paths["lunar"] = lunar
    return paths


def auto_detect_latest(paths: Mapping[str, Path]) -> tuple[str, Path] | None:
    """Return (client, path) of the most recently modified existing log."""
    best: tuple[str, Path] | None = None
    best_mtime = 0.0
    for client, path in paths.items():
        try:
            mtime = path.stat().st_mtime
        except OSError:
            continue
        if mtime > best_mtime:
            best, best_mtime = (client, path), mtime
    if best:
        logger.info("Auto-detected %s log: %s", best[0], best[1])
    return best


def resolve_log_source(
    manual_path: str | Path | None = None,
    client: str | None = None,
    paths: Mapping[str, Path] | None = None,
) -> LogSource | None:
    """Pick the log file to follow, or None if nothing usable exists."""
    if manual_path:
        path = Path(manual_path)
        if path.exists():
            return LogSource(path)
        logger.warning("Configured log path does not exist: %s", path)
        return None

    paths = build_client_paths() if paths is None else paths
    if client and client in paths:
        return LogSource(paths[client], client=client)

    detected = auto_detect_latest(paths)
    if detected:
        return LogSource(detected[1], client=detected[0], detected=True)
    return None
