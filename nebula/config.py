"""Application configuration management."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"

DEFAULT_BACKEND_URL = "https://nebula-overlay.online"


@dataclass(frozen=True, slots=True)
class FeatureGates:
    """Toggles deciding whether an event may change the roster.

    The roster itself always applies what it is given; the session checks
    these first.
    """

    add_from_who: bool = True
    remove_on_final_kill: bool = True
    guild_online_only: bool = False
    track_party: bool = True
    track_invites: bool = True
    clear_manual_on_game_start: bool = False


@dataclass
class AppConfig:
    """Application settings."""

    # Identity
    username: str = ""

    # Log source: manual path wins, then client key, else auto-detect
    client: str = ""
    log_path: str = ""
    poll_interval: float = 0.2

    # Stats API
    hypixel_api_key: str = ""
    backend_url: str = DEFAULT_BACKEND_URL
    cache_db_path: str = "stats_cache.db"

    # Feature gates
    add_from_who: bool = True
    remove_on_final_kill: bool = True
    guild_online_only: bool = False
    track_party: bool = True
    track_invites: bool = True
    clear_manual_on_game_start: bool = False

    # Debug
    debug_console: bool = False

    def gates(self) -> FeatureGates:
        return FeatureGates(
            add_from_who=self.add_from_who,
            remove_on_final_kill=self.remove_on_final_kill,
            guild_online_only=self.guild_online_only,
            track_party=self.track_party,
            track_invites=self.track_invites,
            clear_manual_on_game_start=self.clear_manual_on_game_start,
        )

    def save(self, path: str | Path = CONFIG_FILE) -> None:
        """Save config to JSON file."""
        Path(path).write_text(
            json.dumps(asdict(self), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )

    @classmethod
    def load(cls, path: str | Path = CONFIG_FILE) -> AppConfig:
        """Load config from JSON file, using defaults for missing fields."""
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except FileNotFoundError:
            return cls()
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable config %s: %s", path, e)
            return cls()
        if not isinstance(data, dict):
            return cls()
        known = {f.name for f in fields(cls)}
        defaults = asdict(cls())
        defaults.update({k: v for k, v in data.items() if k in known})
        return cls(**defaults)
