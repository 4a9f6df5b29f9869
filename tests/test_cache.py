"""Tests for the TTL content cache."""

from __future__ import annotations

from prompt_expert.content.cache import ContentCache, _Entry, cache_key
from prompt_expert.schemas.content import ContentKind, LoadedItem, SkipCategory


def _item(ref, size=100, content="x"):
    return LoadedItem(
        reference=ref,
        kind=ContentKind.TEXT,
        size_bytes=size,
        original_size_bytes=size,
        content=content,
        token_estimate=size // 4,
    )


class TestCacheKey:
    def test_version_changes_key(self, make_ref):
        assert cache_key(make_ref("a.md", "v1")) != cache_key(make_ref("a.md", "v2"))

    def test_key_is_stable(self, make_ref):
        assert cache_key(make_ref("a.md")) == cache_key(make_ref("a.md"))

    def test_repository_changes_key(self, make_ref):
        assert cache_key(make_ref("a.md", namespace="x")) != cache_key(make_ref("a.md"))


class TestGetPut:
    def test_put_then_get_returns_same_content(self, make_ref, clock):
        cache = ContentCache(clock=clock)
        ref = make_ref("a.md")
        item = _item(ref, content="hello")
        assert cache.put(ref, item)
        assert cache.get(ref).content == "hello"

    def test_miss_on_unknown_key(self, make_ref, clock):
        cache = ContentCache(clock=clock)
        assert cache.get(make_ref("missing.md")) is None
        assert cache.stats()["misses"] == 1

    def test_skipped_items_are_not_cached(self, make_ref, clock):
        cache = ContentCache(clock=clock)
        ref = make_ref("a.bin")
        skipped = LoadedItem.rejected(ref, ContentKind.BINARY, 10, "nope", SkipCategory.ITEM_LIMIT)
        assert cache.put(ref, skipped) is False
        assert len(cache) == 0


class TestExpiry:
    def test_floating_entry_expires_after_short_ttl(self, make_ref, clock):
        cache = ContentCache(floating_ttl=300, pinned_ttl=86400, clock=clock)
        ref = make_ref("a.md", "latest")
        cache.put(ref, _item(ref))
        clock.advance(299)
        assert cache.get(ref) is not None
        clock.advance(2)
        assert cache.get(ref) is None
        # Lazily removed on read
        assert len(cache) == 0

    def test_pinned_entry_outlives_floating_ttl(self, make_ref, clock):
        cache = ContentCache(floating_ttl=300, pinned_ttl=86400, clock=clock)
        ref = make_ref("a.md", "3a5f8e2")
        cache.put(ref, _item(ref))
        clock.advance(3600)
        assert cache.get(ref) is not None
        clock.advance(86400)
        assert cache.get(ref) is None

    def test_explicit_ttl_overrides_default(self, make_ref, clock):
        cache = ContentCache(clock=clock)
        ref = make_ref("a.md")
        cache.put(ref, _item(ref), ttl=5)
        clock.advance(6)
        assert cache.get(ref) is None

    def test_sweep_removes_all_expired(self, make_ref, clock):
        cache = ContentCache(floating_ttl=10, pinned_ttl=1000, clock=clock)
        floating = [make_ref(f"f{i}.md") for i in range(3)]
        pinned = make_ref("p.md", "abcdef1")
        for ref in [*floating, pinned]:
            cache.put(ref, _item(ref))
        clock.advance(11)
        assert cache.sweep() == 3
        assert len(cache) == 1


class TestEviction:
    def test_total_size_never_exceeds_ceiling(self, make_ref, clock):
        cache = ContentCache(max_bytes=1000, clock=clock)
        for i in range(25):
            ref = make_ref(f"f{i}.md")
            cache.put(ref, _item(ref, size=150))
            clock.advance(1)
            assert cache.total_bytes <= 1000

    def test_oldest_entries_evicted_first(self, make_ref, clock):
        cache = ContentCache(max_bytes=300, clock=clock)
        refs = [make_ref(f"f{i}.md") for i in range(3)]
        for ref in refs:
            cache.put(ref, _item(ref, size=100))
            clock.advance(1)
        newest = make_ref("new.md")
        cache.put(newest, _item(newest, size=100))
        assert cache.get(refs[0]) is None
        assert cache.get(refs[1]) is not None
        assert cache.get(newest) is not None

    def test_eviction_attempts_are_bounded(self, make_ref, clock):
        cache = ContentCache(max_bytes=1000, max_evictions=3, clock=clock)
        for i in range(10):
            ref = make_ref(f"f{i}.md")
            cache.put(ref, _item(ref, size=100))
            clock.advance(1)
        big = make_ref("big.md")
        # Needs 5 evictions, only 3 allowed: write is refused, ceiling holds.
        assert cache.put(big, _item(big, size=500)) is False
        assert len(cache) == 7
        assert cache.total_bytes <= 1000

    def test_item_larger_than_cache_rejected(self, make_ref, clock):
        cache = ContentCache(max_bytes=100, clock=clock)
        ref = make_ref("huge.md")
        assert cache.put(ref, _item(ref, size=101)) is False

    def test_evict_returns_bytes_freed(self, make_ref, clock):
        cache = ContentCache(clock=clock)
        for i in range(3):
            ref = make_ref(f"f{i}.md")
            cache.put(ref, _item(ref, size=100))
            clock.advance(1)
        assert cache.evict(150) == 200
        assert len(cache) == 1


class TestCorruption:
    def test_corrupt_entry_is_a_miss_and_deleted(self, make_ref, clock):
        cache = ContentCache(clock=clock)
        ref = make_ref("a.md")
        cache._entries[cache_key(ref)] = {"not": "an entry"}
        assert cache.get(ref) is None
        assert len(cache) == 0

    def test_entry_for_another_reference_is_corrupt(self, make_ref, clock):
        cache = ContentCache(clock=clock)
        ref, other = make_ref("a.md"), make_ref("b.md")
        cache._entries[cache_key(ref)] = _Entry(
            payload=_item(other), created_at=clock(), ttl=300, size_bytes=100
        )
        assert cache.get(ref) is None
        assert len(cache) == 0


class TestStats:
    def test_stats_counts(self, make_ref, clock):
        cache = ContentCache(clock=clock)
        ref = make_ref("a.md")
        cache.get(ref)
        cache.put(ref, _item(ref))
        cache.get(ref)
        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["writes"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["entries"] == 1
        assert stats["total_bytes"] == 100

    def test_clear(self, make_ref, clock):
        cache = ContentCache(clock=clock)
        ref = make_ref("a.md")
        cache.put(ref, _item(ref))
        cache.clear()
        assert len(cache) == 0
        assert cache.stats()["writes"] == 0
