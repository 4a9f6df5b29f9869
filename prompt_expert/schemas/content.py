"""Content references, remote API payloads and loaded items.

ContentReference: a parsed ``[owner/repo:]path[@version]`` string.
RemoteContent:    what the remote content API returns for one reference.
LoadedItem:       one accepted or skipped piece of context produced by the loader.

All models are frozen: the loader never mutates an item after creating it.
Compression produces a brand-new LoadedItem.
"""

from __future__ import annotations

import re
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

FLOATING_VERSIONS = frozenset({"latest", "head"})
# Short SHAs must mix digits and letters; all-digit or all-letter names
# like "2024010" or "deadbeef" are as likely to be branches or tags.
_FULL_SHA_RE = re.compile(r"[0-9a-f]{40}")
_SHORT_SHA_RE = re.compile(r"(?=[0-9a-f]*[0-9])(?=[0-9a-f]*[a-f])[0-9a-f]{7,39}")


class ContentKind(StrEnum):
    """Closed set of content kinds the loader and engine know how to handle."""

    TEXT = "text"
    CODE = "code"
    CONFIG = "config"
    IMAGE = "image"
    DOCUMENT = "document"
    BINARY = "binary"


class SkipCategory(StrEnum):
    """Why an item was not accepted into the context bundle."""

    ITEM_LIMIT = "item_limit"   # per-item ceiling, unsupported kind, image cap
    BUDGET = "budget"           # aggregate budget could not accommodate it
    ERROR = "error"             # permanent remote error (not found, forbidden)
    FAILED = "failed"           # transient error, retries exhausted


class ContentReference(BaseModel):
    """A versioned pointer into a repository.

    Equality and hashing use all four fields, so a reference is a valid
    cache key and two versions of the same path never collide.
    """

    model_config = ConfigDict(frozen=True)

    namespace: str
    collection: str
    path: str
    version: str = "latest"

    @property
    def repository(self) -> str:
        return f"{self.namespace}/{self.collection}"

    @property
    def is_floating(self) -> bool:
        return self.version.lower() in FLOATING_VERSIONS

    @property
    def is_pinned(self) -> bool:
        """True for explicit commit SHAs, whose content can never change."""
        return bool(
            _FULL_SHA_RE.fullmatch(self.version) or _SHORT_SHA_RE.fullmatch(self.version)
        )

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def child(self, path: str) -> ContentReference:
        """Reference to another path in the same repository and version."""
        return self.model_copy(update={"path": path.strip("/")})

    def __str__(self) -> str:
        return f"{self.repository}:{self.path}@{self.version}"


class RemoteEntry(BaseModel):
    """One listing entry of a remote collection (directory)."""

    model_config = ConfigDict(frozen=True)

    path: str
    name: str
    size: int = 0
    is_collection: bool = False


class RemoteContent(BaseModel):
    """Response of the remote content API for a single reference."""

    model_config = ConfigDict(frozen=True)

    reference: ContentReference
    size: int = 0
    is_collection: bool = False
    content: str | None = None
    encoding: str = "base64"
    entries: tuple[RemoteEntry, ...] = ()
    sha: str | None = None
    # Set when the payload was too large to inline; see ContentSource.get_payload.
    download_url: str | None = None


class LoadedItem(BaseModel):
    """A piece of context as loaded (or rejected) by the loader.

    For accepted items ``size_bytes`` is the size of ``content`` as it will be
    sent to the judge, while ``original_size_bytes`` is the size reported by
    the remote API. For skipped items ``size_bytes`` is the estimated size
    and the item contributes nothing to the budget counters.
    """

    model_config = ConfigDict(frozen=True)

    reference: ContentReference
    kind: ContentKind
    size_bytes: int
    original_size_bytes: int = 0
    content: str = ""
    encoding: str = "utf-8"
    token_estimate: int = 0
    compressed: bool = False
    skipped: bool = False
    skip_reason: str | None = None
    skip_category: SkipCategory | None = None

    @property
    def path(self) -> str:
        return self.reference.path

    @classmethod
    def rejected(
        cls,
        reference: ContentReference,
        kind: ContentKind,
        estimated_size: int,
        reason: str,
        category: SkipCategory,
    ) -> LoadedItem:
        return cls(
            reference=reference,
            kind=kind,
            size_bytes=estimated_size,
            original_size_bytes=estimated_size,
            skipped=True,
            skip_reason=reason,
            skip_category=category,
        )


class CollectionSummary(BaseModel):
    """What happened while expanding one collection."""

    reference: ContentReference
    depth: int = 0
    original_count: int = 0
    sampled_count: int = 0
    excluded_count: int = 0
    loaded_count: int = 0
    truncated: bool = False
    stopped_early: bool = False
    subcollections: list[str] = Field(default_factory=list)
