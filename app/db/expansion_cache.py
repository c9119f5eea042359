"""Query expansion cache: key/value lookup and upsert by normalized query.

Two implementations share one interface so the pipeline receives the cache as
an injected capability:

- ``SupabaseExpansionCache`` persists to ``query_expansion_cache`` and is shared
  across workers.
- ``InMemoryExpansionCache`` is a thread-safe TTL dict for tests and local runs.

Keys hash the expansion model together with the normalized query, so two
models never read each other's expansions.
"""

import hashlib
import re
import threading
from datetime import datetime, timedelta, timezone
from time import monotonic
from typing import Optional, Protocol

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_query(query: str) -> str:
    """Lowercase, trim, and collapse internal whitespace."""
    return _WHITESPACE.sub(" ", query.strip().lower())


def cache_key(query: str, model: str) -> str:
    """md5 of ``"{model}:{normalized query}"``."""
    return hashlib.md5(f"{model}:{normalize_query(query)}".encode("utf-8")).hexdigest()


class ExpansionCache(Protocol):
    """Get/put interface consumed by the query expansion stage."""

    def get(self, query: str, model: str) -> Optional[list[str]]: ...

    def put(self, query: str, model: str, expansions: list[str]) -> None: ...


class InMemoryExpansionCache:
    """Process-local cache guarded by a lock."""

    def __init__(self, ttl_seconds: float = 30 * 24 * 3600):
        self._ttl = ttl_seconds
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[list[str], float]] = {}

    def get(self, query: str, model: str) -> Optional[list[str]]:
        key = cache_key(query, model)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expansions, stored_at = entry
            if monotonic() - stored_at >= self._ttl:
                del self._entries[key]
                return None
            return list(expansions)

    def put(self, query: str, model: str, expansions: list[str]) -> None:
        key = cache_key(query, model)
        with self._lock:
            self._entries[key] = (list(expansions), monotonic())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SupabaseExpansionCache:
    """Cache backed by the ``query_expansion_cache`` table.

    ``put`` is an upsert on ``query_hash`` so concurrent writers for the same
    key converge on one row.
    """

    TABLE = "query_expansion_cache"

    def __init__(self, ttl_days: int = 30):
        self._ttl = timedelta(days=ttl_days)

    def _expiry(self) -> str:
        return (datetime.now(timezone.utc) + self._ttl).isoformat()

    def get(self, query: str, model: str) -> Optional[list[str]]:
        supabase = get_supabase()
        key = cache_key(query, model)
        now = datetime.now(timezone.utc).isoformat()

        response = (
            supabase.table(self.TABLE)
            .select("expanded_queries, hit_count")
            .eq("query_hash", key)
            .gt("expires_at", now)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None

        row = response.data[0]
        try:
            # Hit bookkeeping extends the expiry; losing it is harmless
            supabase.table(self.TABLE).update(
                {
                    "hit_count": (row.get("hit_count") or 0) + 1,
                    "last_used_at": now,
                    "expires_at": self._expiry(),
                }
            ).eq("query_hash", key).execute()
        except Exception as e:
            logger.debug(f"Expansion cache hit bookkeeping failed: {e}")

        return list(row.get("expanded_queries") or [])

    def put(self, query: str, model: str, expansions: list[str]) -> None:
        supabase = get_supabase()
        now = datetime.now(timezone.utc).isoformat()
        supabase.table(self.TABLE).upsert(
            {
                "original_query": query,
                "query_hash": cache_key(query, model),
                "expanded_queries": expansions,
                "expansion_model": model,
                "hit_count": 0,
                "last_used_at": now,
                "expires_at": self._expiry(),
            },
            on_conflict="query_hash",
        ).execute()

    def purge_expired(self) -> int:
        """Delete expired rows; returns how many were removed."""
        supabase = get_supabase()
        now = datetime.now(timezone.utc).isoformat()
        response = supabase.table(self.TABLE).delete().lt("expires_at", now).execute()
        removed = len(response.data or [])
        logger.info(f"Purged {removed} expired query expansions")
        return removed
