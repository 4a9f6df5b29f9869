"""Run configuration, loader output and the final run result."""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from prompt_expert.schemas.content import (
    CollectionSummary,
    ContentKind,
    ContentReference,
    LoadedItem,
)
from prompt_expert.schemas.evaluation import CandidateEvaluation, Comparison, Verdict

MIB = 1024 * 1024


class LoadingMode(StrEnum):
    """How aggressively the loader stops.

    progressive: stop on critical bytes/tokens and on the file cap.
    strict:      like progressive, and also stop at the first warn threshold.
    lenient:     like progressive, but the file cap does not stop loading.
    """

    PROGRESSIVE = "progressive"
    STRICT = "strict"
    LENIENT = "lenient"


class KindLimit(BaseModel):
    """Byte ceilings for one content kind."""

    max_bytes: int                  # per-item hard ceiling
    warn_bytes: int                 # per-item compression threshold
    total_bytes: int | None = None  # aggregate ceiling for the kind

    @model_validator(mode="after")
    def _warn_below_max(self) -> KindLimit:
        if self.warn_bytes > self.max_bytes:
            raise ValueError("warn_bytes must not exceed max_bytes")
        return self


def _default_kind_limits() -> dict[ContentKind, KindLimit]:
    return {
        ContentKind.TEXT: KindLimit(max_bytes=1 * MIB, warn_bytes=MIB // 2),
        ContentKind.CODE: KindLimit(max_bytes=1 * MIB, warn_bytes=MIB // 2),
        ContentKind.CONFIG: KindLimit(max_bytes=MIB // 2, warn_bytes=MIB // 4),
        ContentKind.IMAGE: KindLimit(max_bytes=5 * MIB, warn_bytes=3 * MIB),
        ContentKind.DOCUMENT: KindLimit(max_bytes=10 * MIB, warn_bytes=7 * MIB),
        ContentKind.BINARY: KindLimit(max_bytes=0, warn_bytes=0),
    }


DEFAULT_EXCLUDE_PATTERNS = [
    "node_modules",
    ".git",
    "dist",
    "build",
    "__pycache__",
    ".venv",
    "vendor",
    "coverage",
    "*.min.js",
    "*.lock",
]


class RunConfig(BaseModel):
    """Resource limits and loading strategy for one evaluation run."""

    max_total_bytes: int = Field(default=50 * MIB, gt=0)
    max_tokens: int = Field(default=200_000, gt=0)
    max_files: int = Field(default=100, gt=0)
    max_files_per_collection: int = 20
    max_depth: int = 3
    max_context_refs: int = 20
    max_images: int = 20
    calls_per_minute: int = Field(default=60, gt=0)
    rate_limit_headroom: int = Field(default=5, ge=0)
    warn_ratio: float = Field(default=0.75, gt=0, le=1)
    critical_ratio: float = Field(default=0.9, gt=0, le=1)
    chars_per_token: int = Field(default=4, gt=0)
    kind_limits: dict[ContentKind, KindLimit] = Field(default_factory=_default_kind_limits)
    loading_mode: LoadingMode = LoadingMode.PROGRESSIVE
    stop_on_warning: bool = False
    stop_on_critical: bool = True
    prioritize: bool = False
    exclude_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))

    @model_validator(mode="after")
    def _ratios_ordered(self) -> RunConfig:
        if self.warn_ratio > self.critical_ratio:
            raise ValueError("warn_ratio must not exceed critical_ratio")
        if self.rate_limit_headroom >= self.calls_per_minute:
            raise ValueError("rate_limit_headroom must be smaller than calls_per_minute")
        # Kinds missing from a partial override keep their defaults.
        defaults = _default_kind_limits()
        for kind, limit in defaults.items():
            self.kind_limits.setdefault(kind, limit)
        return self

    def kind_limit(self, kind: ContentKind) -> KindLimit:
        return self.kind_limits[kind]


class LoadResult(BaseModel):
    """Output of ``ProgressiveLoader.load_all``."""

    items: list[LoadedItem] = Field(default_factory=list)
    skipped: list[LoadedItem] = Field(default_factory=list)
    collections: list[CollectionSummary] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    stopped: bool = False
    stop_reason: str | None = None

    @property
    def bytes_considered(self) -> int:
        return sum(i.original_size_bytes for i in self.items) + sum(
            s.size_bytes for s in self.skipped
        )

    def item_for(self, reference: ContentReference) -> LoadedItem | None:
        for item in self.items:
            if item.reference == reference:
                return item
        return None


class KindUsage(BaseModel):
    count: int = 0
    bytes: int = 0


class UsageReport(BaseModel):
    """Resource usage of a run, as reported to the caller."""

    bytes_used: int = 0
    tokens_used: int = 0
    files_used: int = 0
    bytes_considered: int = 0
    by_kind: dict[ContentKind, KindUsage] = Field(default_factory=dict)
    percent_of_limits: dict[str, float] = Field(default_factory=dict)
    health: Literal["healthy", "warning", "error"] = "healthy"
    health_message: str = ""
    skipped: list[LoadedItem] = Field(default_factory=list)
    collections: list[CollectionSummary] = Field(default_factory=list)
    stopped: bool = False
    stop_reason: str | None = None
    api_calls: int = 0
    cache_hits: int = 0
    cache_misses: int = 0


class Recommendation(StrEnum):
    DEPLOY = "DEPLOY"
    IMPROVE = "IMPROVE"
    REJECT = "REJECT"
    REVIEW = "REVIEW"


class RunResult(BaseModel):
    """Terminal artifact of an A/B run."""

    success: bool
    error: str | None = None
    verdict: Verdict | None = None
    evaluations: dict[str, CandidateEvaluation] = Field(default_factory=dict)
    comparison: Comparison | None = None
    usage: UsageReport = Field(default_factory=UsageReport)
    summary: str = ""
    recommendation: Recommendation | None = None
    recommendation_message: str = ""
    recommendations: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
