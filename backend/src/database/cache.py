"""
Cache contract shared by the storage backends.

Entries are (namespace, key) -> payload with stored_at/expires_at. An entry read
after its expiry is a miss. Backends raise CacheError for any storage failure;
the sync layer treats that like an upstream failure for the current item.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# Namespaces written by the sync subsystem
FIXTURES = "fixtures"
MATCHES = "matches"
MATCH_STATS = "match_stats"
MATCH_EVENTS = "match_events"
LINEUPS = "lineups"

NAMESPACES = (FIXTURES, MATCHES, MATCH_STATS, MATCH_EVENTS, LINEUPS)


class CacheError(Exception):
    """Raised when the cache store is unavailable or rejects an operation."""
    pass


@dataclass(frozen=True)
class CacheEntry:
    namespace: str
    key: str
    payload: Any
    stored_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_expiry(stored_at: datetime, ttl_seconds: float) -> datetime:
    if ttl_seconds <= 0:
        raise CacheError(f"TTL must be positive (got {ttl_seconds})")
    return stored_at + timedelta(seconds=ttl_seconds)


class InMemoryCache:
    """Process-local cache with the same interface as SupabaseCache (tests, dry runs)."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._entries: Dict[Tuple[str, str], CacheEntry] = {}
        self._lock = asyncio.Lock()

    async def get_entry(self, namespace: str, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get((namespace, key))
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry

    async def get(self, namespace: str, key: str) -> Optional[Any]:
        entry = await self.get_entry(namespace, key)
        return entry.payload if entry is not None else None

    async def set(self, namespace: str, key: str, value: Any, ttl_seconds: float) -> None:
        stored_at = self._clock()
        entry = CacheEntry(namespace, key, value, stored_at, make_expiry(stored_at, ttl_seconds))
        async with self._lock:
            self._entries[(namespace, key)] = entry

    async def count(self, namespace: str) -> int:
        return sum(1 for (ns, _key) in self._entries if ns == namespace)

    async def delete_expired(self, namespace: Optional[str] = None) -> int:
        now = self._clock()
        async with self._lock:
            expired = [
                k for k, entry in self._entries.items()
                if entry.is_expired(now) and (namespace is None or k[0] == namespace)
            ]
            for k in expired:
                del self._entries[k]
        return len(expired)

    async def stats(self) -> Dict[str, int]:
        return {ns: await self.count(ns) for ns in NAMESPACES}


def build_cache(config):
    """Create the cache backend selected by CACHE_BACKEND."""
    if config.cache_backend == "memory":
        logger.warning("Using in-memory cache; data is lost on restart")
        return InMemoryCache()
    from database.supabase_cache import SupabaseCache
    return SupabaseCache(config)
