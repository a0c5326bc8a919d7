"""
Supabase-backed cache for provider payloads.

Table (one row per cached item):

    create table api_cache (
        namespace  text not null,
        cache_key  text not null,
        payload    jsonb,
        stored_at  timestamptz not null,
        expires_at timestamptz not null,
        primary key (namespace, cache_key),
        check (expires_at > stored_at)
    );

Queries select only the needed columns and filter on the primary key to keep
egress low. The Supabase client is synchronous, so calls run in a worker thread.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from supabase import Client, create_client

from config import Config
from database.cache import NAMESPACES, CacheEntry, CacheError, make_expiry, utcnow

logger = logging.getLogger(__name__)


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class SupabaseCache:
    """TTL cache stored in a Supabase table."""

    def __init__(self, config: Config, client: Optional[Client] = None):
        self.config = config
        self.table_name = config.cache_table
        self.client: Optional[Client] = client
        if self.client is None:
            self._initialize_client()

    def _initialize_client(self):
        """Initialize Supabase client."""
        if not self.config.supabase_url or not (self.config.supabase_key or self.config.supabase_service_key):
            raise CacheError("Supabase URL and key are required")

        # Service key bypasses RLS for writes; fall back to anon key
        key = self.config.supabase_service_key or self.config.supabase_key
        self.client = create_client(self.config.supabase_url, key)

        logger.info("Initialized Supabase cache", extra={
            "url": self.config.supabase_url,
            "table": self.table_name,
            "using_service_key": bool(self.config.supabase_service_key)
        })

    async def _run(self, operation: str, fn):
        try:
            return await asyncio.to_thread(fn)
        except CacheError:
            raise
        except Exception as e:
            logger.error("Cache operation failed", extra={
                "operation": operation,
                "table": self.table_name,
                "error": str(e)
            })
            raise CacheError(f"Cache {operation} failed: {e}") from e

    async def get_entry(self, namespace: str, key: str) -> Optional[CacheEntry]:
        """Return the live entry for (namespace, key), or None on miss/expiry."""
        now = utcnow()

        def query():
            return (
                self.client.table(self.table_name)
                .select("payload, stored_at, expires_at")
                .eq("namespace", namespace)
                .eq("cache_key", key)
                .gt("expires_at", now.isoformat())
                .limit(1)
                .execute()
            )

        result = await self._run("get", query)
        rows = result.data or []
        if not rows:
            return None
        row = rows[0]
        entry = CacheEntry(
            namespace=namespace,
            key=key,
            payload=row.get("payload"),
            stored_at=_parse_ts(row["stored_at"]),
            expires_at=_parse_ts(row["expires_at"]),
        )
        # Clock skew between us and the database: trust our own clock
        if entry.is_expired(now):
            return None
        return entry

    async def get(self, namespace: str, key: str) -> Optional[Any]:
        entry = await self.get_entry(namespace, key)
        return entry.payload if entry is not None else None

    async def set(self, namespace: str, key: str, value: Any, ttl_seconds: float) -> None:
        """Upsert a payload; the row is replaced in one statement."""
        stored_at = utcnow()
        expires_at = make_expiry(stored_at, ttl_seconds)
        row = {
            "namespace": namespace,
            "cache_key": key,
            "payload": value,
            "stored_at": stored_at.isoformat(),
            "expires_at": expires_at.isoformat(),
        }

        await self._run("set", lambda: (
            self.client.table(self.table_name)
            .upsert(row, on_conflict="namespace,cache_key")
            .execute()
        ))

        logger.debug("Cache set", extra={
            "namespace": namespace,
            "cache_key": key,
            "ttl_seconds": ttl_seconds
        })

    async def count(self, namespace: str) -> int:
        result = await self._run("count", lambda: (
            self.client.table(self.table_name)
            .select("cache_key", count="exact")
            .eq("namespace", namespace)
            .limit(1)
            .execute()
        ))
        return result.count or 0

    async def delete_expired(self, namespace: Optional[str] = None) -> int:
        """Delete expired rows. Returns number of rows removed."""
        now_iso = utcnow().isoformat()

        def delete():
            query = self.client.table(self.table_name).delete().lt("expires_at", now_iso)
            if namespace is not None:
                query = query.eq("namespace", namespace)
            return query.execute()

        result = await self._run("delete_expired", delete)
        deleted = len(result.data or [])

        logger.info("Expired cache entries deleted", extra={
            "namespace": namespace or "*",
            "deleted": deleted
        })

        return deleted

    async def stats(self) -> Dict[str, int]:
        """Entry counts per sync namespace (dashboard)."""
        return {ns: await self.count(ns) for ns in NAMESPACES}
