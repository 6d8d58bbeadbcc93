"""Tests for the tiered stats provider."""

import pytest
import requests

from nebula.cache import StatsCache
from nebula.stats import (
    HYPIXEL_API_URL,
    HypixelStatsProvider,
    StatsResult,
    nick_record,
)

BACKEND = "https://backend.test"
PLAYER = {"displayname": "Steve", "stats": {"Bedwars": {"wins_bedwars": 12}}}


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeHttp:
    """Stands in for requests.Session; routes GETs to a handler."""

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append((url, params, headers))
        result = self.handler(url, params or {}, headers or {})
        if isinstance(result, Exception):
            raise result
        return result


def mojang_ok(url):
    return "mojang" in url


def hypixel(url, headers, key):
    return url.startswith(HYPIXEL_API_URL) and headers.get("API-Key") == key


def default_handler(url, params, headers):
    if mojang_ok(url):
        return FakeResponse(200, {"id": "uuid-1", "name": "Steve"})
    if url.endswith("/v2/player"):
        return FakeResponse(200, {"success": True, "player": PLAYER})
    if url.endswith("/v2/guild"):
        return FakeResponse(200, {"success": True, "guild": {"name": "Wardens"}})
    return FakeResponse(404)


@pytest.fixture
def cache(tmp_path):
    c = StatsCache(db_path=tmp_path / "stats.db")
    yield c
    c.close()


def make_provider(handler, cache=None, **kwargs):
    http = FakeHttp(handler)
    kwargs.setdefault("retry_delay", 0)
    return HypixelStatsProvider(cache=cache, session=http, **kwargs), http


class TestLookup:
    """Test the uuid -> tier chain."""

    def test_env_key_tier(self, cache):
        provider, http = make_provider(default_handler, cache, env_key="ENV")
        result = provider.get_stats("Steve")
        assert result.success
        assert result.source == "env"
        assert result.record["player"] == PLAYER
        assert result.record["guild"] == {"name": "Wardens"}
        assert result.record["uuid"] == "uuid-1"
        assert not result.nicked

    def test_player_uses_uuid_param(self):
        provider, http = make_provider(default_handler, env_key="ENV")
        provider.get_stats("Steve")
        player_calls = [c for c in http.calls if c[0].endswith("/v2/player")]
        assert player_calls[0][1] == {"uuid": "uuid-1"}
        assert player_calls[0][2] == {"API-Key": "ENV"}

    def test_second_lookup_from_cache(self, cache):
        provider, http = make_provider(default_handler, cache, env_key="ENV")
        provider.get_stats("Steve")
        calls = len(http.calls)
        result = provider.get_stats("steve")
        assert result.source == "cache"
        assert len(http.calls) == calls

    def test_nick(self):
        provider, http = make_provider(
            lambda url, params, headers: FakeResponse(204), env_key="ENV",
        )
        result = provider.get_stats("Nicked_1")
        assert result == StatsResult("Nicked_1", True, nick_record("Nicked_1"), "nick")
        assert result.nicked

    def test_nick_cached(self):
        provider, http = make_provider(
            lambda url, params, headers: FakeResponse(204), env_key="ENV",
        )
        provider.get_stats("Nicked_1")
        provider.get_stats("Nicked_1")
        assert len(http.calls) == 1

    def test_mojang_outage_not_cached(self):
        provider, http = make_provider(
            lambda url, params, headers: FakeResponse(503), env_key="ENV",
        )
        assert provider.get_stats("Steve").error == "uuid_lookup_failed"
        provider.get_stats("Steve")
        assert len(http.calls) == 2
        assert provider.status()["uuid_cache_size"] == 0

    def test_user_key_after_env_forbidden(self):
        def handler(url, params, headers):
            if hypixel(url, headers, "ENV"):
                return FakeResponse(403, {"success": False})
            return default_handler(url, params, headers)

        provider, _ = make_provider(handler, env_key="ENV", user_key="USER")
        assert provider.get_stats("Steve").source == "user"

    def test_rate_limited_tier_skipped(self):
        def handler(url, params, headers):
            if hypixel(url, headers, "ENV"):
                return FakeResponse(429)
            return default_handler(url, params, headers)

        provider, _ = make_provider(handler, env_key="ENV", user_key="USER")
        assert provider.get_stats("Steve").source == "user"

    def test_same_key_not_tried_twice(self):
        provider, http = make_provider(default_handler, env_key="KEY", user_key="KEY")
        provider.get_stats("Steve")
        keys = [c[2].get("API-Key") for c in http.calls if c[0].endswith("/v2/player")]
        assert keys == ["KEY"]

    def test_backend_fallback(self):
        def handler(url, params, headers):
            if mojang_ok(url):
                return FakeResponse(200, {"id": "uuid-1"})
            if url == f"{BACKEND}/api/player":
                assert params == {"name": "Steve"}
                return FakeResponse(200, {"player": PLAYER})
            return FakeResponse(404)

        provider, _ = make_provider(handler, backend_url=BACKEND + "/")
        result = provider.get_stats("Steve")
        assert result.source == "backend"
        assert result.record["player"] == PLAYER
        assert result.record["guild"] is None

    def test_all_tiers_fail(self):
        def handler(url, params, headers):
            if mojang_ok(url):
                return FakeResponse(200, {"id": "uuid-1"})
            return FakeResponse(404)

        provider, _ = make_provider(handler, env_key="ENV", backend_url=BACKEND)
        result = provider.get_stats("Steve")
        assert not result.success
        assert result.error == "Player not found"

    def test_custom_normalizer(self):
        def normalizer(player, name, uuid, guild):
            return {"name": name, "wins": player["stats"]["Bedwars"]["wins_bedwars"]}

        provider, _ = make_provider(default_handler, env_key="ENV", normalizer=normalizer)
        assert provider.get_stats("Steve").record == {"name": "Steve", "wins": 12}

    def test_failing_normalizer(self):
        def normalizer(player, name, uuid, guild):
            raise KeyError("stats")

        provider, _ = make_provider(default_handler, env_key="ENV", normalizer=normalizer)
        result = provider.get_stats("Steve")
        assert not result.success
        assert result.error == "normalize_failed"


class TestResilience:
    """Test retries, stale fallback and status."""

    def test_retry_after_connection_error(self):
        failures = []

        def handler(url, params, headers):
            if url.endswith("/v2/player") and not failures:
                failures.append(url)
                return requests.ConnectionError("reset")
            return default_handler(url, params, headers)

        provider, _ = make_provider(handler, env_key="ENV")
        assert provider.get_stats("Steve").source == "env"
        assert len(failures) == 1

    def test_backend_down_status(self):
        def handler(url, params, headers):
            if mojang_ok(url):
                return FakeResponse(200, {"id": "uuid-1"})
            return requests.ConnectionError("refused")

        provider, _ = make_provider(handler, backend_url=BACKEND)
        assert not provider.get_stats("Steve").success
        assert provider.status()["backend_available"] is False

    def test_bypass_cache_falls_back_to_stale(self, cache):
        state = {"up": True}

        def handler(url, params, headers):
            if not state["up"] and not mojang_ok(url):
                return FakeResponse(500)
            return default_handler(url, params, headers)

        provider, _ = make_provider(handler, cache, env_key="ENV")
        provider.get_stats("Steve")
        state["up"] = False
        result = provider.get_stats("Steve", bypass_cache=True)
        assert result.success
        assert result.source == "cache"

    def test_clear_cache(self, cache):
        provider, http = make_provider(default_handler, cache, env_key="ENV")
        provider.get_stats("Steve")
        provider.clear_cache()
        assert provider.status()["uuid_cache_size"] == 0
        assert cache.get("player", "Steve") is None

    def test_status_flags(self):
        provider, _ = make_provider(default_handler, env_key="ENV")
        status = provider.status()
        assert status["has_env_key"] is True
        assert status["has_user_key"] is False
        assert status["has_backend"] is False
        provider.update_keys(user_key="USER", backend_url=BACKEND)
        status = provider.status()
        assert status["has_user_key"] is True
        assert status["has_backend"] is True


class TestVerifyApiKey:
    """Test API key verification messages."""

    def verify(self, response):
        provider, _ = make_provider(lambda url, params, headers: response)
        return provider.verify_api_key("KEY"), provider.status()["user_key_valid"]

    def test_valid(self):
        assert self.verify(FakeResponse(200, {"success": True})) == ((True, None), True)

    def test_forbidden(self):
        (valid, error), ok = self.verify(FakeResponse(403))
        assert not valid and not ok
        assert "403" in error

    def test_rate_limited(self):
        (valid, error), _ = self.verify(FakeResponse(429))
        assert error == "Rate limited (too many requests)"

    def test_timeout(self):
        (valid, error), _ = self.verify(requests.Timeout())
        assert "timed out" in error

    def test_empty_key(self):
        provider, http = make_provider(default_handler)
        assert provider.verify_api_key("") == (False, "No API key provided")
        assert http.calls == []
