"""Progressive content loader.

Walks a list of references (files and directories, possibly in other
repositories and at other versions) and assembles as much context as the
run's budget allows:

  1. Per-kind size ceilings are applied from cheap metadata (listing sizes
     or the size reported with the file) before any payload is downloaded.
  2. The budget tracker must accept the projected cost before a fetch.
  3. Items above their kind's warn threshold are compressed.
  4. Oversized directories are stratified-sampled.
  5. Loading stops (returning partial results) as soon as the budget says so.

The loader never raises for content problems: every rejected reference is
recorded as a skipped item with a reason and a category.
"""

from __future__ import annotations

import base64
import binascii

import structlog

from prompt_expert.content.budget import BudgetTracker, SizeEstimate
from prompt_expert.content.cache import ContentCache
from prompt_expert.content.compression import compress
from prompt_expert.content.github import ContentSource
from prompt_expert.content.kinds import detect_kind, estimate_tokens, is_excluded, kind_rank
from prompt_expert.content.sampling import stratified_sample
from prompt_expert.errors import (
    ContentError,
    InvalidReferenceError,
    RecoveryExhaustedError,
)
from prompt_expert.schemas.content import (
    CollectionSummary,
    ContentKind,
    ContentReference,
    LoadedItem,
    RemoteContent,
    SkipCategory,
)
from prompt_expert.schemas.run import LoadResult
from prompt_expert.utils.deadline import Deadline
from prompt_expert.utils.recovery import RecoveryDispatcher

logger = structlog.get_logger(__name__)


def prioritize_references(refs: list[ContentReference]) -> list[ContentReference]:
    """Order references by kind priority, then shortest path first."""
    return sorted(refs, key=lambda r: (kind_rank(detect_kind(r.path)), len(r.path)))


class ProgressiveLoader:
    """Budget-aware loader for one run.

    Args:
        source: Remote content API.
        budget: The run's budget tracker (shared with every other load in the run).
        cache: Optional content cache consulted before each fetch.
        recovery: Retry policy wrapped around every remote call.
        deadline: Optional run deadline; loading stops once it passes.
    """

    def __init__(
        self,
        source: ContentSource,
        budget: BudgetTracker,
        *,
        cache: ContentCache | None = None,
        recovery: RecoveryDispatcher | None = None,
        deadline: Deadline | None = None,
    ) -> None:
        self._source = source
        self._budget = budget
        self._config = budget.config
        self._cache = cache
        self._recovery = recovery or RecoveryDispatcher()
        self._deadline = deadline or Deadline(None)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def load_all(
        self,
        refs: list[ContentReference],
        *,
        prioritize: bool | None = None,
    ) -> LoadResult:
        result = LoadResult()
        if prioritize if prioritize is not None else self._config.prioritize:
            refs = prioritize_references(refs)

        seen: set[ContentReference] = set()
        for ref in refs:
            if ref in seen:
                result.warnings.append(f"Duplicate reference ignored: {ref}")
                continue
            seen.add(ref)

            if not self._may_continue(result):
                result.warnings.append(f"Stopped loading at {ref} ({result.stop_reason})")
                break

            cached = self._cached(ref)
            if cached is not None:
                # Cached items were admitted under another run's limits.
                rejected = self._precheck(ref, cached.kind, cached.original_size_bytes)
                if rejected is not None:
                    self._skip(rejected, result)
                else:
                    self._admit(cached, result, from_cache=True)
                continue

            remote = await self._fetch(ref, result)
            if remote is None:
                continue
            if remote.is_collection:
                await self._load_collection(ref, remote, 0, result)
            else:
                await self._load_file(ref, remote, result)

        logger.info(
            "loader_done",
            loaded=len(result.items),
            skipped=len(result.skipped),
            stopped=result.stopped,
            stop_reason=result.stop_reason,
            **self._budget.remaining_budget(),
        )
        return result

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def _load_collection(
        self,
        ref: ContentReference,
        listing: RemoteContent,
        depth: int,
        result: LoadResult,
    ) -> None:
        summary = CollectionSummary(reference=ref, depth=depth)
        result.collections.append(summary)

        files, dirs = [], []
        for entry in listing.entries:
            if is_excluded(entry.path, self._config.exclude_patterns):
                summary.excluded_count += 1
                continue
            (dirs if entry.is_collection else files).append(entry)

        summary.original_count = len(files)
        cap = self._config.max_files_per_collection
        if len(files) > cap:
            files = stratified_sample(files, cap)
            summary.truncated = True
            result.warnings.append(
                f"Sampled {len(files)} of {summary.original_count} files in {ref.path}"
            )
            logger.info(
                "loader_collection_sampled",
                path=ref.path,
                original=summary.original_count,
                sampled=len(files),
            )
        summary.sampled_count = len(files)

        for entry in files:
            if not self._may_continue(result):
                summary.stopped_early = True
                return
            child = ref.child(entry.path)
            if await self._load_entry(child, entry.size, result):
                summary.loaded_count += 1

        for entry in dirs:
            if depth >= self._config.max_depth:
                result.warnings.append(
                    f"Max depth {self._config.max_depth} reached; not descending into {entry.path}"
                )
                break
            if not self._may_continue(result):
                summary.stopped_early = True
                return
            child = ref.child(entry.path)
            remote = await self._fetch(child, result)
            if remote is None or not remote.is_collection:
                continue
            summary.subcollections.append(entry.path)
            await self._load_collection(child, remote, depth + 1, result)

    async def _load_entry(self, ref: ContentReference, listed_size: int, result: LoadResult) -> bool:
        """Load one directory entry whose size is already known from the listing."""
        kind = detect_kind(ref.path)
        rejected = self._precheck(ref, kind, listed_size)
        if rejected is not None:
            self._skip(rejected, result)
            return False

        cached = self._cached(ref)
        if cached is not None:
            return self._admit(cached, result, from_cache=True)

        remote = await self._fetch(ref, result, estimated_size=listed_size)
        if remote is None:
            return False
        return await self._load_file(ref, remote, result)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def _load_file(self, ref: ContentReference, remote: RemoteContent, result: LoadResult) -> bool:
        kind = detect_kind(ref.path)
        rejected = self._precheck(ref, kind, remote.size)
        if rejected is not None:
            self._skip(rejected, result)
            return False
        if remote.content is None and remote.download_url:
            remote = await self._fetch(ref, result, estimated_size=remote.size, payload_of=remote)
            if remote is None:
                return False
        return self._admit(self._materialize(ref, kind, remote), result)

    def _precheck(self, ref: ContentReference, kind: ContentKind, size: int) -> LoadedItem | None:
        """Reject from metadata alone; returns None when the item may be fetched."""
        if kind == ContentKind.BINARY:
            return LoadedItem.rejected(
                ref, kind, size, "Binary file type not supported", SkipCategory.ITEM_LIMIT
            )

        limit = self._config.kind_limit(kind)
        if size > limit.max_bytes:
            return LoadedItem.rejected(
                ref,
                kind,
                size,
                f"Exceeds {kind} limit of {limit.max_bytes} bytes ({size} bytes)",
                SkipCategory.ITEM_LIMIT,
            )

        if kind == ContentKind.IMAGE and self._budget.image_slots_left() <= 0:
            return LoadedItem.rejected(
                ref, kind, size, "Max image count reached", SkipCategory.ITEM_LIMIT
            )

        estimate = SizeEstimate(
            bytes=size,
            tokens=estimate_tokens(kind, size, self._config.chars_per_token),
            kind=kind,
        )
        reason = self._budget.rejection_reason(estimate)
        if reason is not None:
            return LoadedItem.rejected(ref, kind, size, reason, SkipCategory.BUDGET)
        return None

    def _materialize(self, ref: ContentReference, kind: ContentKind, remote: RemoteContent) -> LoadedItem:
        if remote.content is None:
            return LoadedItem.rejected(
                ref, kind, remote.size, "No content returned by remote API", SkipCategory.ERROR
            )

        cpt = self._config.chars_per_token
        match kind:
            case ContentKind.TEXT | ContentKind.CODE | ContentKind.CONFIG:
                try:
                    text = _decode_text(remote)
                except (binascii.Error, UnicodeDecodeError, ValueError):
                    return LoadedItem.rejected(
                        ref,
                        kind,
                        remote.size,
                        "Content is not valid UTF-8 text",
                        SkipCategory.ITEM_LIMIT,
                    )
                size = remote.size or len(text.encode("utf-8"))
                item = LoadedItem(
                    reference=ref,
                    kind=kind,
                    size_bytes=len(text.encode("utf-8")),
                    original_size_bytes=size,
                    content=text,
                    token_estimate=estimate_tokens(kind, len(text), cpt),
                )
                if size > self._config.kind_limit(kind).warn_bytes:
                    item = self._compressed(item)
                return item
            case ContentKind.IMAGE | ContentKind.DOCUMENT:
                return LoadedItem(
                    reference=ref,
                    kind=kind,
                    size_bytes=remote.size,
                    original_size_bytes=remote.size,
                    content=remote.content,
                    encoding="base64",
                    token_estimate=estimate_tokens(kind, remote.size, cpt),
                )
            case ContentKind.BINARY:
                return LoadedItem.rejected(
                    ref, kind, remote.size, "Binary file type not supported", SkipCategory.ITEM_LIMIT
                )

    def _compressed(self, item: LoadedItem) -> LoadedItem:
        """A new item holding the compressed content; the original is dropped."""
        content = compress(item.kind, item.content, item.path)
        if content == item.content:
            return item
        logger.info(
            "loader_item_compressed",
            path=item.path,
            kind=item.kind,
            before=len(item.content),
            after=len(content),
        )
        return LoadedItem(
            reference=item.reference,
            kind=item.kind,
            size_bytes=len(content.encode("utf-8")),
            original_size_bytes=item.original_size_bytes,
            content=content,
            token_estimate=estimate_tokens(item.kind, len(content), self._config.chars_per_token),
            compressed=True,
        )

    # ------------------------------------------------------------------
    # Budget, cache and remote calls
    # ------------------------------------------------------------------

    def _admit(self, item: LoadedItem, result: LoadResult, *, from_cache: bool = False) -> bool:
        if item.skipped:
            self._skip(item, result)
            return False

        reason = self._budget.rejection_reason(
            SizeEstimate(bytes=item.size_bytes, tokens=item.token_estimate, kind=item.kind)
        )
        if reason is not None:
            self._skip(
                LoadedItem.rejected(
                    item.reference, item.kind, item.original_size_bytes, reason, SkipCategory.BUDGET
                ),
                result,
            )
            return False

        self._budget.record(item)
        result.items.append(item)
        if self._cache is not None and not from_cache:
            self._cache.put(item.reference, item)
        logger.info(
            "loader_item_loaded",
            path=item.path,
            kind=item.kind,
            bytes=item.size_bytes,
            tokens=item.token_estimate,
            compressed=item.compressed,
            cached=from_cache,
        )
        return True

    def _skip(self, item: LoadedItem, result: LoadResult) -> None:
        result.skipped.append(item)
        logger.info(
            "loader_item_skipped",
            path=item.path,
            category=item.skip_category,
            reason=item.skip_reason,
        )

    def _cached(self, ref: ContentReference) -> LoadedItem | None:
        if self._cache is None:
            return None
        return self._cache.get(ref)

    def _may_continue(self, result: LoadResult) -> bool:
        if result.stopped:
            return False
        if self._deadline.expired:
            result.stopped = True
            result.stop_reason = "deadline"
            logger.warning("loader_deadline_reached")
            return False
        if not self._budget.should_continue_loading():
            result.stopped = True
            result.stop_reason = self._budget.stop_reason
            return False
        return True

    async def _fetch(
        self,
        ref: ContentReference,
        result: LoadResult,
        *,
        estimated_size: int = 0,
        payload_of: RemoteContent | None = None,
    ) -> RemoteContent | None:
        """Metadata for *ref*, or the deferred payload of *payload_of*; None on failure."""

        async def attempt() -> RemoteContent:
            await self._budget.calls.acquire()
            if payload_of is not None:
                return await self._source.get_payload(payload_of)
            return await self._source.get_content(ref)

        kind = detect_kind(ref.path)
        try:
            return await self._recovery.call(f"fetch {ref}", attempt)
        except RecoveryExhaustedError as exc:
            self._skip(
                LoadedItem.rejected(ref, kind, estimated_size, str(exc), SkipCategory.FAILED),
                result,
            )
        except (ContentError, InvalidReferenceError) as exc:
            self._skip(
                LoadedItem.rejected(ref, kind, estimated_size, str(exc), SkipCategory.ERROR),
                result,
            )
        except Exception as exc:
            logger.exception("loader_fetch_failed", path=ref.path)
            self._skip(
                LoadedItem.rejected(
                    ref, kind, estimated_size, f"Unexpected error: {exc}", SkipCategory.ERROR
                ),
                result,
            )
        return None


def _decode_text(remote: RemoteContent) -> str:
    if remote.encoding == "base64":
        raw = base64.b64decode(remote.content or "", validate=False)
        return raw.decode("utf-8")
    return remote.content or ""
