"""Content cache: TTL-based store in front of the remote content API.

Keys are a stable hash of (repository, path, version). Floating versions
("latest", "HEAD", branch names) get a short TTL; pinned commit SHAs get a
long one because their content can never change.

The cache is an optimization only. Every miss, expired entry or corrupt
entry must be recoverable by refetching from the remote API.
"""

from __future__ import annotations

import hashlib
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from prompt_expert.schemas.content import ContentReference, LoadedItem

logger = structlog.get_logger(__name__)


def cache_key(ref: ContentReference) -> str:
    """Stable key for *ref*; the version is always part of it."""
    raw = "\x1f".join((ref.namespace, ref.collection, ref.path, ref.version))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


@dataclass
class _Entry:
    payload: LoadedItem
    created_at: float
    ttl: float
    size_bytes: int


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    writes: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class ContentCache:
    """In-memory content cache with lazy expiry and oldest-first eviction.

    Args:
        max_bytes: Ceiling on the summed size of all entries.
        floating_ttl: Seconds to keep entries for floating versions.
        pinned_ttl: Seconds to keep entries for pinned commit SHAs.
        max_evictions: Upper bound on entries removed by a single eviction.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        max_bytes: int = 100 * 1024 * 1024,
        floating_ttl: float = 300.0,
        pinned_ttl: float = 86_400.0,
        max_evictions: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_bytes = max_bytes
        self._floating_ttl = floating_ttl
        self._pinned_ttl = pinned_ttl
        self._max_evictions = max_evictions
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._stats = CacheStats()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def ttl_for(self, ref: ContentReference) -> float:
        return self._pinned_ttl if ref.is_pinned else self._floating_ttl

    def get(self, ref: ContentReference) -> LoadedItem | None:
        key = cache_key(ref)
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            return None

        if not self._is_valid(entry, ref):
            logger.warning("cache_entry_corrupt", key=key, path=ref.path)
            self._remove(key)
            self._stats.misses += 1
            return None

        if self._clock() - entry.created_at > entry.ttl:
            logger.debug("cache_expired", key=key, path=ref.path)
            self._remove(key)
            self._stats.misses += 1
            return None

        self._stats.hits += 1
        return entry.payload

    def put(self, ref: ContentReference, item: LoadedItem, ttl: float | None = None) -> bool:
        """Store *item* under *ref*. Returns False if it could not be stored."""
        if item.skipped:
            return False

        key = cache_key(ref)
        size = item.size_bytes
        if size > self._max_bytes:
            logger.warning("cache_item_too_large", path=ref.path, size=size)
            return False

        # Replacing an entry frees its space first.
        self._remove(key)
        overflow = self.total_bytes + size - self._max_bytes
        if overflow > 0:
            self.evict(overflow)
        if self.total_bytes + size > self._max_bytes:
            logger.warning(
                "cache_write_skipped",
                path=ref.path,
                size=size,
                total=self.total_bytes,
            )
            return False

        self._entries[key] = _Entry(
            payload=item,
            created_at=self._clock(),
            ttl=ttl if ttl is not None else self.ttl_for(ref),
            size_bytes=size,
        )
        self._stats.writes += 1
        return True

    def evict(self, n_bytes: int) -> int:
        """Evict oldest entries until *n_bytes* are freed or the attempt cap is hit.

        Returns the number of bytes freed.
        """
        oldest_first = sorted(self._entries.items(), key=lambda kv: kv[1].created_at)
        freed = 0
        attempts = 0
        for key, entry in oldest_first:
            if freed >= n_bytes or attempts >= self._max_evictions:
                break
            self._remove(key)
            freed += entry.size_bytes
            attempts += 1
            self._stats.evictions += 1
            logger.debug("cache_evicted", key=key, size=entry.size_bytes)
        return freed

    def sweep(self) -> int:
        """Remove every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now - e.created_at > e.ttl]
        for key in expired:
            self._remove(key)
        if expired:
            logger.info("cache_swept", removed=len(expired))
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self._stats = CacheStats()

    @property
    def total_bytes(self) -> int:
        return sum(e.size_bytes for e in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict:
        return {
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "writes": self._stats.writes,
            "evictions": self._stats.evictions,
            "hit_rate": round(self._stats.hit_rate, 3),
            "entries": len(self._entries),
            "total_bytes": self.total_bytes,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _remove(self, key: str) -> None:
        self._entries.pop(key, None)

    @staticmethod
    def _is_valid(entry: object, ref: ContentReference) -> bool:
        """Metadata sanity check; anything unreadable counts as corrupt."""
        if not isinstance(entry, _Entry):
            return False
        if not isinstance(entry.payload, LoadedItem):
            return False
        if entry.payload.reference != ref:
            return False
        return entry.ttl >= 0 and entry.size_bytes >= 0
