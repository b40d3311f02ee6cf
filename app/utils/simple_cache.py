"""In-memory TTL cache with tag-based invalidation.

Used to avoid redundant store lookups of records and image locations. The
cache is advisory and process-local: a miss always falls back to the record
store, and mutations drop the affected entries by tag instead of tracking
individual keys.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from app.schemas.records import Record

logger = logging.getLogger(__name__)


@dataclass
class CacheItem:
    """Cached value plus the metadata needed to expire and invalidate it."""

    value: Any
    written_at: float
    ttl: float
    tags: frozenset[str] = field(default_factory=frozenset)

    def is_expired(self, now: float) -> bool:
        return now > self.written_at + self.ttl


class TaggedTTLCache:
    """Thread-safe, in-memory TTL cache with tags and LRU eviction.

    Attributes:
        default_ttl_seconds: TTL used when ``set`` is not given one.
        max_entries: Maximum number of cached items (None for unlimited).
    """

    def __init__(
        self,
        default_ttl_seconds: float = 300,
        max_entries: int | None = 1024,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be > 0")
        self._default_ttl = default_ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, CacheItem] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"TaggedTTLCache(default_ttl_seconds={self._default_ttl}, "
            f"max_entries={self._max_entries}, size={len(self._store)}, "
            f"hits={self._hits}, misses={self._misses}, evictions={self._evictions})"
        )

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired.

        Expired entries are removed on access.
        """

        with self._lock:
            item = self._store.get(key)
            if item is None:
                self._misses += 1
                logger.debug("cache.miss", extra={"cache_key": key, "reason": "not_found"})
                return None

            if item.is_expired(self._clock()):
                self._evict_single(key)
                self._misses += 1
                logger.debug("cache.miss", extra={"cache_key": key, "reason": "expired"})
                return None

            self._hits += 1
            self._store.move_to_end(key)
            logger.debug("cache.hit", extra={"cache_key": key})
            return item.value

    def set(
        self,
        key: str,
        value: Any,
        *,
        ttl_seconds: float | None = None,
        tags: Iterable[str] = (),
    ) -> None:
        """Store a value.

        Args:
            key: Cache key.
            value: Value to store.
            ttl_seconds: Entry lifetime; defaults to the cache-wide TTL.
            tags: Labels used by :meth:`invalidate_by_tags`.
        """

        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        with self._lock:
            self._store[key] = CacheItem(
                value=value,
                written_at=self._clock(),
                ttl=ttl,
                tags=frozenset(tags),
            )
            self._store.move_to_end(key)
            self._evict_if_over_capacity_locked()

            logger.debug(
                "cache.set",
                extra={"cache_key": key, "size": len(self._store), "ttl_s": ttl},
            )

    def delete(self, key: str) -> bool:
        """Remove one key; return whether it was present."""

        with self._lock:
            return self._store.pop(key, None) is not None

    def invalidate_by_tags(self, tags: Iterable[str]) -> int:
        """Remove every entry carrying at least one of ``tags``.

        Returns:
            Number of entries removed.
        """

        wanted = frozenset(tags)
        if not wanted:
            return 0

        with self._lock:
            doomed = [key for key, item in self._store.items() if item.tags & wanted]
            for key in doomed:
                del self._store[key]

        if doomed:
            logger.debug(
                "cache.invalidated",
                extra={"tags": sorted(wanted), "removed": len(doomed)},
            )
        return len(doomed)

    def sweep(self) -> int:
        """Remove all expired entries regardless of access pattern."""

        with self._lock:
            now = self._clock()
            expired = [key for key, item in self._store.items() if item.is_expired(now)]
            for key in expired:
                self._evict_single(key)
        return len(expired)

    def clear(self) -> None:
        """Remove all cached entries and reset counters."""

        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> dict[str, int | float | None]:
        """Return lightweight cache metrics without exposing values."""

        with self._lock:
            return {
                "default_ttl_seconds": self._default_ttl,
                "max_entries": self._max_entries,
                "entries": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def _evict_single(self, key: str) -> None:
        if self._store.pop(key, None) is not None:
            self._evictions += 1

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None:
            return

        while len(self._store) > self._max_entries:
            # popitem(last=False) removes the least recently used entry
            self._store.popitem(last=False)
            self._evictions += 1


def record_tag(record_id: str) -> str:
    return f"record:{record_id}"


def owner_tag(owner_id: str) -> str:
    return f"owner:{owner_id}"


def image_tag(record_id: str) -> str:
    return f"image:{record_id}"


class RecordCache:
    """Record-aware facade over :class:`TaggedTTLCache`.

    Key layout:
        ``record:{id}``          Record, short TTL (mutable through scans)
        ``image:{id}``           image key, long TTL (stable once written)
        ``owner_records:{id}``   first page of an owner's records

    Record entries and owner lists are tagged ``record:{id}`` so a scan can
    drop every stale copy of a record at once while the image entry, tagged
    only ``image:{id}``, survives.
    """

    def __init__(
        self,
        cache: TaggedTTLCache,
        *,
        record_ttl_seconds: float,
        image_ttl_seconds: float,
        owner_list_ttl_seconds: float,
    ) -> None:
        self.cache = cache
        self.record_ttl_seconds = record_ttl_seconds
        self.image_ttl_seconds = image_ttl_seconds
        self.owner_list_ttl_seconds = owner_list_ttl_seconds

    def get_record(self, record_id: str) -> Record | None:
        return self.cache.get(f"record:{record_id}")

    def set_record(self, record: Record) -> None:
        tags = [record_tag(record.id)]
        if record.owner_id:
            tags.append(owner_tag(record.owner_id))
        self.cache.set(
            f"record:{record.id}",
            record,
            ttl_seconds=self.record_ttl_seconds,
            tags=tags,
        )

    def get_image_key(self, record_id: str) -> str | None:
        return self.cache.get(f"image:{record_id}")

    def set_image_key(self, record_id: str, image_key: str) -> None:
        self.cache.set(
            f"image:{record_id}",
            image_key,
            ttl_seconds=self.image_ttl_seconds,
            tags=[image_tag(record_id)],
        )

    def get_owner_records(self, owner_id: str) -> list[Record] | None:
        return self.cache.get(f"owner_records:{owner_id}")

    def set_owner_records(self, owner_id: str, records: list[Record]) -> None:
        tags = [owner_tag(owner_id), *(record_tag(r.id) for r in records)]
        self.cache.set(
            f"owner_records:{owner_id}",
            list(records),
            ttl_seconds=self.owner_list_ttl_seconds,
            tags=tags,
        )

    def invalidate_record(self, record_id: str) -> int:
        """Drop cached copies of a record whose counters changed."""
        return self.cache.invalidate_by_tags([record_tag(record_id)])

    def invalidate_owner(self, owner_id: str) -> int:
        return self.cache.invalidate_by_tags([owner_tag(owner_id)])

    def forget(self, record_id: str, owner_id: str | None) -> int:
        """Drop everything known about a deleted record."""
        tags = [record_tag(record_id), image_tag(record_id)]
        if owner_id:
            tags.append(owner_tag(owner_id))
        return self.cache.invalidate_by_tags(tags)
