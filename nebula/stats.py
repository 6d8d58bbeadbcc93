"""Bedwars stats lookup via Mojang + Hypixel, with backend fallback."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import requests

from nebula.cache import StatsCache

logger = logging.getLogger(__name__)

MOJANG_PROFILE_URL = "https://api.mojang.com/users/profiles/minecraft/{name}"
HYPIXEL_API_URL = "https://api.hypixel.net"
REQUEST_TIMEOUT = 5.0  # seconds

Normalizer = Callable[[dict, str, str, "dict | None"], dict]


def bundle_payloads(player: dict, name: str, uuid: str, guild: dict | None) -> dict:
    """Default normalizer: hand the raw payloads to the caller unchanged."""
    return {"name": name, "uuid": uuid, "player": player, "guild": guild, "nicked": False}


def nick_record(name: str) -> dict:
    """Record for a name with no Mojang profile (most likely a nick)."""
    return {"name": name, "uuid": None, "player": None, "guild": None, "nicked": True}


@dataclass(frozen=True, slots=True)
class StatsResult:
    """Result of a stats lookup."""

    name: str
    success: bool
    record: dict | None = None
    source: str = ""
    error: str | None = None

    @property
    def nicked(self) -> bool:
        return bool(self.record and self.record.get("nicked"))


class _RateLimited(Exception):
    pass


@dataclass
class _Tier:
    name: str
    fetch: Callable[[], "dict | None"]


@dataclass
class _Status:
    backend_down: bool = False
    user_key_valid: bool = True
    last_errors: dict[str, str] = field(default_factory=dict)


class HypixelStatsProvider:
    """Resolves a player name to a stats record.

    Tiers, in order: environment API key, user API key, overlay backend.
    Player and guild payloads are cached (memory + SQLite) for the cache TTL;
    UUIDs are cached for the life of the process.

    Usage:
        provider = HypixelStatsProvider(env_key=os.environ.get("HYPIXEL_KEY", ""))
        result = provider.get_stats("Technoblade")
    """

    def __init__(
        self,
        env_key: str = "",
        user_key: str = "",
        backend_url: str = "",
        cache: StatsCache | None = None,
        normalizer: Normalizer = bundle_payloads,
        session: requests.Session | None = None,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self._env_key = env_key
        self._user_key = user_key
        self._backend_url = backend_url.rstrip("/")
        self._cache = cache
        self._normalizer = normalizer
        self._http = session or requests.Session()
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._timeout = timeout
        self._uuids: dict[str, str | None] = {}
        self._uuid_lock = threading.Lock()
        self._status = _Status()

    # --- Public API ---

    def get_stats(self, name: str, bypass_cache: bool = False) -> StatsResult:
        """Look up stats for name. Never raises; failures come back as success=False."""
        try:
            uuid = self._get_uuid(name)
        except requests.RequestException as e:
            logger.warning("UUID lookup failed for %s: %s", name, e)
            return StatsResult(name, success=False, error="uuid_lookup_failed")

        if not uuid:
            logger.info("No Mojang profile for %s, treating as nick", name)
            return StatsResult(name, success=True, record=nick_record(name), source="nick")

        player, source = self._fetch("player", name, uuid, bypass_cache)
        if player is None:
            return StatsResult(name, success=False, error="Player not found")

        guild, _ = self._fetch("guild", name, uuid, bypass_cache)
        try:
            record = self._normalizer(player, name, uuid, guild)
        except Exception:
            logger.exception("Normalizer failed for %s", name)
            return StatsResult(name, success=False, source=source, error="normalize_failed")
        return StatsResult(name, success=True, record=record, source=source)

    def verify_api_key(self, api_key: str) -> tuple[bool, str | None]:
        """Check a Hypixel API key. Returns (valid, error message)."""
        if not api_key:
            return False, "No API key provided"
        try:
            resp = self._http.get(
                f"{HYPIXEL_API_URL}/punishmentStats",
                headers={"API-Key": api_key},
                timeout=self._timeout,
            )
        except requests.Timeout:
            self._status.user_key_valid = False
            return False, "Request timed out (check your internet connection)"
        except requests.RequestException as e:
            self._status.user_key_valid = False
            return False, f"Network error: {e}"

        if resp.status_code == 200:
            try:
                valid = resp.json().get("success") is True
            except ValueError:
                valid = False
            self._status.user_key_valid = valid
            return valid, None if valid else "API returned invalid response"
        self._status.user_key_valid = False
        if resp.status_code == 403:
            return False, "Invalid API key (403 Forbidden)"
        if resp.status_code == 429:
            return False, "Rate limited (too many requests)"
        return False, f"HTTP {resp.status_code}"

    def update_keys(self, user_key: str | None = None, backend_url: str | None = None) -> None:
        if user_key is not None:
            self._user_key = user_key
            self._status.user_key_valid = True
        if backend_url is not None:
            self._backend_url = backend_url.rstrip("/")

    def clear_cache(self) -> None:
        with self._uuid_lock:
            self._uuids.clear()
        if self._cache is not None:
            self._cache.clear()

    def status(self) -> dict[str, Any]:
        return {
            "backend_available": not self._status.backend_down,
            "user_key_valid": self._status.user_key_valid,
            "uuid_cache_size": len(self._uuids),
            "has_backend": bool(self._backend_url),
            "has_user_key": bool(self._user_key),
            "has_env_key": bool(self._env_key),
        }

    # --- UUID ---

    def _get_uuid(self, name: str) -> str | None:
        key = name.lower()
        with self._uuid_lock:
            if key in self._uuids:
                return self._uuids[key]

        resp = self._http.get(MOJANG_PROFILE_URL.format(name=name), timeout=self._timeout)
        uuid: str | None = None
        if resp.status_code == 200:
            try:
                uuid = resp.json().get("id") or None
            except ValueError:
                uuid = None
        elif resp.status_code >= 500 or resp.status_code == 429:
            # Mojang trouble says nothing about the name: don't cache
            raise requests.HTTPError(f"Mojang returned HTTP {resp.status_code}")

        # Negative results are cached too: unknown names stay unknown
        with self._uuid_lock:
            self._uuids[key] = uuid
        return uuid

    # --- Tiered fetch ---

    def _fetch(
        self, kind: str, name: str, uuid: str, bypass_cache: bool,
    ) -> tuple[dict | None, str]:
        if self._cache is not None and not bypass_cache:
            cached = self._cache.get(kind, name)
            if cached is not None:
                logger.debug("Fetched %s data for %s using CACHE", kind, name)
                return cached, "cache"

        for tier in self._tiers(kind, name, uuid):
            try:
                payload = tier.fetch()
            except _RateLimited:
                logger.warning("%s tier rate limited for %s", tier.name, name)
                continue
            except requests.RequestException as e:
                logger.warning("%s tier failed for %s %s: %s", tier.name, kind, name, e)
                self._status.last_errors[tier.name] = str(e)
                if tier.name == "backend":
                    self._status.backend_down = True
                elif tier.name == "user":
                    self._status.user_key_valid = False
                continue
            if payload:
                logger.info("Fetched %s data for %s using %s", kind, name, tier.name)
                if tier.name == "backend":
                    self._status.backend_down = False
                if self._cache is not None:
                    self._cache.put(kind, name, payload)
                return payload, tier.name

        # All tiers failed on a forced refresh: stale-but-valid cache beats nothing
        if bypass_cache and self._cache is not None:
            cached = self._cache.get(kind, name)
            if cached is not None:
                return cached, "cache"
        return None, ""

    def _tiers(self, kind: str, name: str, uuid: str) -> list[_Tier]:
        path, field_name = {
            "player": ("/v2/player", "player"),
            "guild": ("/v2/guild", "guild"),
        }[kind]
        param = {"uuid": uuid} if kind == "player" else {"player": uuid}
        tiers: list[_Tier] = []
        if self._env_key:
            tiers.append(_Tier("env", lambda: self._hypixel(path, param, self._env_key, field_name)))
        if self._user_key and self._user_key != self._env_key:
            tiers.append(_Tier("user", lambda: self._hypixel(path, param, self._user_key, field_name)))
        if self._backend_url:
            tiers.append(_Tier("backend", lambda: self._backend(f"/api/{kind}", name, field_name)))
        return tiers

    def _hypixel(self, path: str, params: dict, api_key: str, field_name: str) -> dict | None:
        resp = self._get(
            f"{HYPIXEL_API_URL}{path}", params=params, headers={"API-Key": api_key},
        )
        if resp.status_code != 200:
            return None
        return resp.json().get(field_name) or None

    def _backend(self, path: str, name: str, field_name: str) -> dict | None:
        resp = self._get(f"{self._backend_url}{path}", params={"name": name})
        if resp.status_code != 200:
            return None
        data = resp.json()
        if not isinstance(data, dict):
            return None
        return data.get(field_name) or data or None

    def _get(self, url: str, **kwargs: Any) -> requests.Response:
        """GET with retry and exponential backoff on connection problems."""
        for attempt in range(self._max_retries):
            try:
                resp = self._http.get(url, timeout=self._timeout, **kwargs)
            except (requests.ConnectionError, requests.Timeout) as e:
                logger.warning(
                    "Request error (attempt %d/%d) %s: %s",
                    attempt + 1, self._max_retries, url, e,
                )
                if attempt < self._max_retries - 1:
                    time.sleep(self._retry_delay * (2 ** attempt))
                    continue
                raise
            if resp.status_code == 429:
                raise _RateLimited(url)
            return resp
        raise requests.ConnectionError(f"No attempts made for {url}")
