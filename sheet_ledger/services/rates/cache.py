"""
Cache Tiers

A cache tier answers get(key) with the entry it holds (if any) and
whether that entry is still inside the tier's freshness window. Stale
entries are returned rather than dropped so a caller can still prefer
them over a static fallback.

Two tiers exist:
- MemoryCacheTier: process-wide dict, lost on restart
- StoreCacheTier: a key/value row in the mirror's sync_metadata table,
  shared across processes and survives restarts
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, NamedTuple, Optional

from pydantic import BaseModel

from sheet_ledger.audit.logger import get_logger
from sheet_ledger.services.storage.interface import MirrorStoreInterface

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CacheEntry(BaseModel):
    """A cached JSON-compatible payload and where it came from."""

    value: dict[str, Any]
    source: str
    fetched_at: datetime


class CacheLookup(NamedTuple):
    entry: Optional[CacheEntry]
    is_fresh: bool

    @property
    def hit(self) -> bool:
        return self.entry is not None and self.is_fresh


MISS = CacheLookup(None, False)


class CacheTier(ABC):
    """A single cache tier with a fixed freshness window."""

    name: str = "tier"

    def __init__(self, ttl_seconds: float, clock: Optional[Clock] = None):
        self._ttl_seconds = ttl_seconds
        self._clock = clock or utc_now

    def is_fresh(self, entry: CacheEntry) -> bool:
        age = (self._clock() - entry.fetched_at).total_seconds()
        return age < self._ttl_seconds

    @abstractmethod
    async def get(self, key: str) -> CacheLookup:
        pass

    @abstractmethod
    async def put(self, key: str, entry: CacheEntry) -> None:
        pass

    @abstractmethod
    async def invalidate(self, key: str) -> None:
        pass


class MemoryCacheTier(CacheTier):
    """
    In-process tier.

    No locking: concurrent resolutions may both miss and both write, which
    only costs a duplicate provider call.
    """

    name = "memory"

    def __init__(
        self,
        ttl_seconds: float,
        clock: Optional[Clock] = None,
        max_entries: int = 64,
    ):
        super().__init__(ttl_seconds, clock)
        self._entries: dict[str, CacheEntry] = {}
        self._max_entries = max_entries

    async def get(self, key: str) -> CacheLookup:
        entry = self._entries.get(key)
        if entry is None:
            return MISS
        return CacheLookup(entry, self.is_fresh(entry))

    async def put(self, key: str, entry: CacheEntry) -> None:
        self._entries.pop(key, None)
        self._entries[key] = entry
        while len(self._entries) > self._max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]

    async def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)


class StoreCacheTier(CacheTier):
    """
    Persistent tier backed by a key/value table in the mirror.

    Rows look like {"key": ..., "value": {..., "source": ...},
    "updated_at": ISO timestamp}. Read and write failures are logged and
    reported as a miss; this tier never raises.
    """

    name = "store"

    def __init__(
        self,
        mirror: MirrorStoreInterface,
        ttl_seconds: float,
        clock: Optional[Clock] = None,
        table: str = "sync_metadata",
    ):
        super().__init__(ttl_seconds, clock)
        self._mirror = mirror
        self._table = table

    async def get(self, key: str) -> CacheLookup:
        try:
            rows = await self._mirror.select(self._table, {"key": key})
        except Exception as e:
            logger.warning("store_cache_read_failed", key=key, error=str(e))
            return MISS

        if not rows:
            return MISS

        row = rows[0]
        value = row.get("value")
        if not isinstance(value, dict):
            return MISS

        try:
            payload = dict(value)
            source = str(payload.pop("source", self.name))
            fetched_at = row.get("updated_at")
            if isinstance(fetched_at, str):
                fetched_at = datetime.fromisoformat(fetched_at)
            if fetched_at.tzinfo is None:
                fetched_at = fetched_at.replace(tzinfo=timezone.utc)
            entry = CacheEntry(value=payload, source=source, fetched_at=fetched_at)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning("store_cache_entry_invalid", key=key, error=str(e))
            return MISS

        return CacheLookup(entry, self.is_fresh(entry))

    async def put(self, key: str, entry: CacheEntry) -> None:
        row = {
            "key": key,
            "value": {**entry.value, "source": entry.source},
            "updated_at": entry.fetched_at.isoformat(),
        }
        try:
            await self._mirror.upsert(self._table, [row], conflict_key=("key",))
        except Exception as e:
            logger.error("store_cache_write_failed", key=key, error=str(e))

    async def invalidate(self, key: str) -> None:
        try:
            await self._mirror.delete(self._table, {"key": key})
        except Exception as e:
            logger.error("store_cache_invalidate_failed", key=key, error=str(e))
