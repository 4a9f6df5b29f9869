"""Evaluation, comparison and verdict models."""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Winner = Literal["A", "B"]
Confidence = Literal["high", "medium", "low"]


class Aspect(StrEnum):
    """The three independent evaluation passes run per candidate."""

    STRUCTURAL = "structural"
    DOMAIN = "domain"
    EFFECTIVENESS = "effectiveness"


class ScoreSource(StrEnum):
    """Where a pass score came from. DEFAULT marks a known noise source."""

    NUMERIC = "numeric"
    KEYWORD = "keyword"
    DEFAULT = "default"


class PassResult(BaseModel):
    """Raw output of one evaluation pass."""

    model_config = ConfigDict(frozen=True)

    aspect: Aspect
    score: float
    raw_text: str = ""
    score_source: ScoreSource = ScoreSource.NUMERIC
    failed: bool = False
    error: str | None = None


class CandidateEvaluation(BaseModel):
    """Scores of one candidate across all passes.

    ``aggregate_score`` includes the iteration leniency offset;
    ``raw_aggregate`` and the pass scores never do.
    """

    model_config = ConfigDict(frozen=True)

    candidate_id: str
    passes: tuple[PassResult, ...]
    per_aspect_score: dict[Aspect, float]
    raw_aggregate: float
    leniency: float = 0.0
    aggregate_score: float
    strengths: frozenset[tuple[Aspect, str]] = frozenset()
    weaknesses: frozenset[tuple[Aspect, str]] = frozenset()
    warnings: tuple[str, ...] = ()

    def pass_for(self, aspect: Aspect) -> PassResult | None:
        for p in self.passes:
            if p.aspect == aspect:
                return p
        return None

    def strengths_text(self) -> str:
        return ", ".join(f"{a}: {attr}" for a, attr in sorted(self.strengths)) or "none"

    def weaknesses_text(self) -> str:
        return ", ".join(f"{a}: {attr}" for a, attr in sorted(self.weaknesses)) or "none"


class AspectChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    aspect: Aspect
    delta: float
    from_score: float
    to_score: float


class Comparison(BaseModel):
    """Per-aspect diff of two candidate evaluations (B minus A)."""

    model_config = ConfigDict(frozen=True)

    score_delta: float
    per_aspect_delta: dict[Aspect, float]
    improvements: tuple[AspectChange, ...] = ()
    regressions: tuple[AspectChange, ...] = ()
    unchanged: tuple[Aspect, ...] = ()
    detailed: str = ""


class Verdict(BaseModel):
    """Structured decision parsed from the judge's free-text verdict.

    ``reasoning_text`` keeps the full raw judgment so disagreements between
    the parsed fields and the prose can be audited.
    """

    model_config = ConfigDict(frozen=True)

    winner: Winner
    confidence: Confidence
    reasoning_text: str
    recommend_production: bool
    score_delta: float = 0.0
    parse_warnings: list[str] = Field(default_factory=list)
