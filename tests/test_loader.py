"""Tests for the progressive, budget-aware content loader."""

from __future__ import annotations

import pytest
from conftest import FakeSource

from prompt_expert.content.budget import BudgetTracker
from prompt_expert.content.cache import ContentCache
from prompt_expert.content.loader import ProgressiveLoader, prioritize_references
from prompt_expert.errors import ContentRateLimitError
from prompt_expert.schemas.content import ContentKind, SkipCategory
from prompt_expert.schemas.run import MIB, KindLimit, LoadingMode, RunConfig
from prompt_expert.utils.deadline import Deadline
from prompt_expert.utils.recovery import RecoveryDispatcher


def _loader(source, config=None, *, cache=None, clock, sleep, deadline=None):
    budget = BudgetTracker(config or RunConfig(), clock=clock, sleep=sleep)
    recovery = RecoveryDispatcher(sleep=sleep, rng=lambda: 0.0)
    loader = ProgressiveLoader(source, budget, cache=cache, recovery=recovery, deadline=deadline)
    return loader, budget


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


class TestCollections:
    @pytest.mark.asyncio
    async def test_large_directory_is_sampled_to_cap(self, make_ref, clock, fake_sleep):
        files = {f"src/mod_{i:03d}.py": f"x = {i}\n" for i in range(200)}
        loader, budget = _loader(
            FakeSource(files), RunConfig(max_files_per_collection=20), clock=clock, sleep=fake_sleep
        )

        result = await loader.load_all([make_ref("src")])

        assert len(result.items) == 20
        summary = result.collections[0]
        assert summary.truncated is True
        assert summary.original_count == 200
        assert summary.sampled_count == 20
        assert summary.loaded_count == 20
        assert budget.files.used == 20

    @pytest.mark.asyncio
    async def test_excluded_entries_skipped_and_subdirectories_walked(
        self, make_ref, clock, fake_sleep
    ):
        source = FakeSource(
            {
                "ctx/app.py": "print('app')\n",
                "ctx/node_modules/lib.js": "module.exports = 1;\n",
                "ctx/sub/deep.md": "# deep\n",
            }
        )
        loader, _ = _loader(source, clock=clock, sleep=fake_sleep)

        result = await loader.load_all([make_ref("ctx")])

        assert sorted(i.path for i in result.items) == ["ctx/app.py", "ctx/sub/deep.md"]
        root = result.collections[0]
        assert root.excluded_count == 1
        assert root.subcollections == ["ctx/sub"]
        assert all("node_modules" not in ref.path for ref in source.calls)

    @pytest.mark.asyncio
    async def test_max_depth_limits_recursion(self, make_ref, clock, fake_sleep):
        source = FakeSource({"ctx/a/b/c.md": "deep"})
        loader, _ = _loader(source, RunConfig(max_depth=1), clock=clock, sleep=fake_sleep)

        result = await loader.load_all([make_ref("ctx")])

        assert result.items == []
        assert any("Max depth" in w for w in result.warnings)
        assert [c.depth for c in result.collections] == [0, 1]

    @pytest.mark.asyncio
    async def test_binary_entry_skipped_without_fetch(self, make_ref, clock, fake_sleep):
        source = FakeSource({"ctx/tool.exe": "MZ...", "ctx/readme.md": "hi"})
        loader, _ = _loader(source, clock=clock, sleep=fake_sleep)

        result = await loader.load_all([make_ref("ctx")])

        skipped = result.skipped[0]
        assert skipped.path == "ctx/tool.exe"
        assert skipped.skip_category == SkipCategory.ITEM_LIMIT
        assert "Binary" in skipped.skip_reason
        assert all(ref.path != "ctx/tool.exe" for ref in source.calls)


# ---------------------------------------------------------------------------
# Per-item limits and budget
# ---------------------------------------------------------------------------


class TestLimits:
    @pytest.mark.asyncio
    async def test_oversized_file_skipped_with_ceiling_in_reason(
        self, make_ref, clock, fake_sleep
    ):
        source = FakeSource({"big.md": "tiny body"}, sizes={"big.md": 2 * MIB})
        loader, budget = _loader(source, clock=clock, sleep=fake_sleep)

        result = await loader.load_all([make_ref("big.md")])

        assert result.items == []
        item = result.skipped[0]
        assert item.skipped is True
        assert str(1 * MIB) in item.skip_reason
        assert budget.bytes.used == 0
        assert budget.tokens.used == 0
        assert budget.files.used == 0

    @pytest.mark.asyncio
    async def test_oversized_file_payload_never_downloaded(self, make_ref, clock, fake_sleep):
        source = FakeSource({"big.md": "tiny body"}, sizes={"big.md": 2 * MIB}, deferred={"big.md"})
        loader, _ = _loader(source, clock=clock, sleep=fake_sleep)

        result = await loader.load_all([make_ref("big.md")])

        assert result.items == []
        assert result.skipped[0].skip_category == SkipCategory.ITEM_LIMIT
        assert source.downloads == []

    @pytest.mark.asyncio
    async def test_deferred_payload_downloaded_after_size_check(self, make_ref, clock, fake_sleep):
        source = FakeSource({"notes.md": "hello"}, deferred={"notes.md"})
        loader, budget = _loader(source, clock=clock, sleep=fake_sleep)

        result = await loader.load_all([make_ref("notes.md")])

        assert result.items[0].content == "hello"
        assert source.downloads == ["https://raw.example.com/notes.md"]
        assert budget.calls.total_calls == 2

    @pytest.mark.asyncio
    async def test_oversized_directory_entry_never_fetched(self, make_ref, clock, fake_sleep):
        source = FakeSource(
            {"ctx/huge.md": "small", "ctx/ok.md": "fine"}, sizes={"ctx/huge.md": 2 * MIB}
        )
        loader, _ = _loader(source, clock=clock, sleep=fake_sleep)

        result = await loader.load_all([make_ref("ctx")])

        assert [i.path for i in result.items] == ["ctx/ok.md"]
        assert all(ref.path != "ctx/huge.md" for ref in source.calls)

    @pytest.mark.asyncio
    async def test_budget_rejection_is_recorded_not_raised(self, make_ref, clock, fake_sleep):
        files = {name: "x" * 400 for name in ("a.md", "b.md", "c.md")}
        loader, budget = _loader(
            FakeSource(files), RunConfig(max_total_bytes=1000), clock=clock, sleep=fake_sleep
        )

        result = await loader.load_all([make_ref(n) for n in files])

        assert [i.path for i in result.items] == ["a.md", "b.md"]
        assert result.skipped[0].skip_category == SkipCategory.BUDGET
        assert budget.bytes.used <= budget.bytes.hard_limit
        assert budget.tokens.used <= budget.tokens.hard_limit
        assert result.bytes_considered == 1200

    @pytest.mark.asyncio
    async def test_stops_early_at_critical_limit(self, make_ref, clock, fake_sleep):
        files = {f"{c}.md": "x" * 300 for c in "abcde"}
        loader, _ = _loader(
            FakeSource(files), RunConfig(max_total_bytes=1000), clock=clock, sleep=fake_sleep
        )

        result = await loader.load_all([make_ref(n) for n in files])

        assert len(result.items) == 3
        assert result.stopped is True
        assert result.stop_reason == "critical byte limit reached"
        assert any("Stopped loading" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_lenient_mode_loads_past_file_cap(self, make_ref, clock, fake_sleep):
        files = {f"{c}.md": "x" for c in "abcd"}
        config = RunConfig(max_files=2, loading_mode=LoadingMode.LENIENT)
        loader, budget = _loader(FakeSource(files), config, clock=clock, sleep=fake_sleep)

        result = await loader.load_all([make_ref(n) for n in files])

        assert len(result.items) == 4
        assert "Max file count reached" in budget.warnings

    @pytest.mark.asyncio
    async def test_image_count_cap(self, make_ref, clock, fake_sleep):
        files = {"i1.png": "PNG1", "i2.png": "PNG2"}
        loader, _ = _loader(
            FakeSource(files), RunConfig(max_images=1), clock=clock, sleep=fake_sleep
        )

        result = await loader.load_all([make_ref(n) for n in files])

        assert [i.kind for i in result.items] == [ContentKind.IMAGE]
        assert result.items[0].encoding == "base64"
        assert result.skipped[0].skip_reason == "Max image count reached"

    @pytest.mark.asyncio
    async def test_large_text_is_compressed(self, make_ref, clock, fake_sleep):
        body = "line of prose\n" * 45_000  # ~630 KB, above the 512 KiB warn threshold
        loader, budget = _loader(FakeSource({"notes.md": body}), clock=clock, sleep=fake_sleep)

        result = await loader.load_all([make_ref("notes.md")])

        item = result.items[0]
        assert item.compressed is True
        assert item.original_size_bytes == len(body)
        assert item.size_bytes < item.original_size_bytes
        assert "[Truncated:" in item.content
        assert budget.bytes.used == item.size_bytes


# ---------------------------------------------------------------------------
# Errors, cache, deadline, ordering
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_missing_file_is_error_skip(self, make_ref, clock, fake_sleep):
        loader, _ = _loader(FakeSource({}), clock=clock, sleep=fake_sleep)

        result = await loader.load_all([make_ref("nope.md")])

        assert result.skipped[0].skip_category == SkipCategory.ERROR
        assert "Not Found" in result.skipped[0].skip_reason
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_exhausted_retries_are_failed_skip(self, make_ref, clock, fake_sleep):
        error = ContentRateLimitError("rate limit exceeded", status=429)
        source = FakeSource({"flaky.md": "x"}, errors={"flaky.md": [error] * 4})
        loader, _ = _loader(source, clock=clock, sleep=fake_sleep)

        result = await loader.load_all([make_ref("flaky.md")])

        assert result.items == []
        assert result.skipped[0].skip_category == SkipCategory.FAILED
        assert fake_sleep.calls == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_transient_error_recovers(self, make_ref, clock, fake_sleep):
        error = ContentRateLimitError("rate limit exceeded", status=429)
        source = FakeSource({"flaky.md": "x"}, errors={"flaky.md": [error]})
        loader, budget = _loader(source, clock=clock, sleep=fake_sleep)

        result = await loader.load_all([make_ref("flaky.md")])

        assert [i.path for i in result.items] == ["flaky.md"]
        assert budget.files.used == 1
        assert budget.calls.total_calls == 2


class TestCacheAndControl:
    @pytest.mark.asyncio
    async def test_cache_hit_skips_remote_fetch(self, make_ref, clock, fake_sleep):
        source = FakeSource({"a.md": "cached body"})
        cache = ContentCache(clock=clock)
        first, _ = _loader(source, cache=cache, clock=clock, sleep=fake_sleep)
        await first.load_all([make_ref("a.md")])
        calls_after_first = len(source.calls)

        second, budget = _loader(source, cache=cache, clock=clock, sleep=fake_sleep)
        result = await second.load_all([make_ref("a.md")])

        assert len(source.calls) == calls_after_first
        assert result.items[0].content == "cached body"
        assert budget.files.used == 1

    @pytest.mark.asyncio
    async def test_cached_item_rechecked_against_kind_ceiling(self, make_ref, clock, fake_sleep):
        source = FakeSource({"big.md": "x" * 200_000})
        cache = ContentCache(clock=clock)
        first, _ = _loader(source, cache=cache, clock=clock, sleep=fake_sleep)
        await first.load_all([make_ref("big.md")])

        tight = RunConfig(
            kind_limits={ContentKind.TEXT: KindLimit(max_bytes=100_000, warn_bytes=50_000)}
        )
        second, budget = _loader(source, tight, cache=cache, clock=clock, sleep=fake_sleep)
        result = await second.load_all([make_ref("big.md")])

        assert result.items == []
        assert "100000" in result.skipped[0].skip_reason
        assert budget.bytes.used == 0
        assert budget.files.used == 0

    @pytest.mark.asyncio
    async def test_cached_images_respect_image_cap(self, make_ref, clock, fake_sleep):
        files = {"i1.png": "PNG1", "i2.png": "PNG2"}
        source = FakeSource(files)
        cache = ContentCache(clock=clock)
        first, _ = _loader(source, cache=cache, clock=clock, sleep=fake_sleep)
        await first.load_all([make_ref(n) for n in files])

        second, _ = _loader(
            source, RunConfig(max_images=1), cache=cache, clock=clock, sleep=fake_sleep
        )
        result = await second.load_all([make_ref(n) for n in files])

        assert [i.path for i in result.items] == ["i1.png"]
        assert result.skipped[0].skip_reason == "Max image count reached"

    @pytest.mark.asyncio
    async def test_expired_deadline_stops_loading(self, make_ref, clock, fake_sleep):
        loader, _ = _loader(
            FakeSource({"a.md": "x"}),
            clock=clock,
            sleep=fake_sleep,
            deadline=Deadline(0, clock=clock),
        )

        result = await loader.load_all([make_ref("a.md")])

        assert result.items == []
        assert result.stopped is True
        assert result.stop_reason == "deadline"

    @pytest.mark.asyncio
    async def test_duplicate_reference_loaded_once(self, make_ref, clock, fake_sleep):
        loader, budget = _loader(FakeSource({"a.md": "x"}), clock=clock, sleep=fake_sleep)

        result = await loader.load_all([make_ref("a.md"), make_ref("a.md")])

        assert len(result.items) == 1
        assert budget.files.used == 1

    def test_prioritize_orders_by_kind_then_path_length(self, make_ref):
        refs = [make_ref(p) for p in ("docs/long/guide.md", "a.json", "src/x.py", "b.md")]
        ordered = [r.path for r in prioritize_references(refs)]
        assert ordered == ["src/x.py", "b.md", "docs/long/guide.md", "a.json"]
