"""
Tests for utils.cache.TTLCache.
"""

from datetime import UTC, datetime, timedelta

import pytest

from browser_oracle.utils.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = datetime(2025, 11, 2, 8, 0, 0, tzinfo=UTC)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


class TestTTLCache:
    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError, match="ttl must be positive"):
            TTLCache(ttl=timedelta(0))

    def test_get_returns_default_when_missing(self, clock):
        cache = TTLCache(clock=clock)
        assert cache.get("missing", "fallback") == "fallback"
        assert "missing" not in cache

    def test_entry_expires_after_ttl(self, clock):
        cache = TTLCache(ttl=timedelta(minutes=10), clock=clock)
        cache.set("password", "secret")

        clock.advance(minutes=9, seconds=59)
        assert cache.get("password") == "secret"

        clock.advance(seconds=1)
        assert cache.get("password") is None
        assert len(cache) == 0

    def test_get_or_set_calls_factory_once(self, clock):
        cache = TTLCache(clock=clock)
        calls = []

        def factory():
            calls.append(1)
            return "/usr/bin/google-chrome"

        assert cache.get_or_set("binary", factory) == "/usr/bin/google-chrome"
        assert cache.get_or_set("binary", factory) == "/usr/bin/google-chrome"
        assert len(calls) == 1

    def test_get_or_set_does_not_cache_none(self, clock):
        cache = TTLCache(clock=clock)
        results = iter([None, "found"])

        assert cache.get_or_set("key", lambda: next(results)) is None
        assert cache.get_or_set("key", lambda: next(results)) == "found"

    def test_instances_do_not_share_entries(self, clock):
        first = TTLCache(clock=clock)
        second = TTLCache(clock=clock)
        first.set("key", 1)
        assert "key" not in second

    def test_invalidate_and_clear(self, clock):
        cache = TTLCache(clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")
        assert "a" not in cache
        assert "b" in cache

        cache.clear()
        assert len(cache) == 0
