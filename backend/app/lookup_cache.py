import time
from typing import Callable, Optional

from .config import settings


class TTLCache:
    """Small id -> document cache. Entries expire `ttl_seconds` after they were stored."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic, max_entries: int = 1024):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[float, dict]] = {}

    def get(self, key: str) -> Optional[dict]:
        hit = self._entries.get(key)
        if hit is None:
            return None
        stored_at, value = hit
        if self._clock() - stored_at >= self.ttl_seconds:
            self._entries.pop(key, None)
            return None
        return value

    def put(self, key: str, value: dict) -> None:
        if len(self._entries) >= self.max_entries and key not in self._entries:
            oldest = min(self._entries, key=lambda k: self._entries[k][0])
            self._entries.pop(oldest, None)
        self._entries[key] = (self._clock(), value)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def get_or_load(self, key: str, load: Callable[[], Optional[dict]]) -> Optional[dict]:
        value = self.get(key)
        if value is None:
            value = load()
            if value is not None:
                self.put(key, value)
        return value


company_cache = TTLCache(settings.lookup_cache_seconds)
client_cache = TTLCache(settings.lookup_cache_seconds)


def clear_lookup_caches() -> None:
    company_cache.clear()
    client_cache.clear()
