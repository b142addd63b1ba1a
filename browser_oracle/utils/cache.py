"""
Explicit time-to-live cache.

Lookups that are slow or interactive (reading the OS secure-storage password,
probing for a browser binary) are memoized in a TTLCache instance that the
caller creates and passes in. There is no module-level cache: two runs in one
process share entries only if they share the object.

Example:
    >>> cache = TTLCache(ttl=timedelta(minutes=10))
    >>> cache.get_or_set("chrome-binary", detect_browser_binary)
    '/usr/bin/google-chrome'
"""

from collections.abc import Callable, Hashable
from datetime import datetime, timedelta
from typing import Any

from browser_oracle.utils.time import utc_now

DEFAULT_TTL = timedelta(minutes=10)

_MISSING = object()


class TTLCache:
    """
    Key/value store whose entries expire ``ttl`` after they were written.

    Args:
        ttl: Entry lifetime.
        clock: Returns the current timezone-aware time. Defaults to utc_now.
    """

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utc_now,
    ):
        if ttl <= timedelta(0):
            raise ValueError(f"ttl must be positive, got {ttl}")
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, tuple[datetime, Any]] = {}

    def __len__(self) -> int:
        self._evict_expired()
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return default
        return value

    def set(self, key: Hashable, value: Any) -> None:
        self._entries[key] = (self._clock() + self.ttl, value)

    def get_or_set(self, key: Hashable, factory: Callable[[], Any]) -> Any:
        """
        Return the cached value, computing and storing it on a miss.

        ``None`` results are not cached so a failed lookup is retried on the
        next call.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = factory()
        if value is not None:
            self.set(key, value)
        return value

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def _evict_expired(self) -> None:
        now = self._clock()
        for key in [k for k, (exp, _) in self._entries.items() if now >= exp]:
            del self._entries[key]
