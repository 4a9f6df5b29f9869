"""Score extraction and per-candidate aggregation.

Judge responses are free text. A score is pulled out with a small set of
patterns (``8/10``, ``Score: 8``, ``8 out of 10``), then a sentiment keyword
map, and finally an explicit neutral default of 5. The default is a known
source of evaluation noise, so it is tagged ``ScoreSource.DEFAULT`` and
surfaced as a warning instead of being absorbed silently.
"""

from __future__ import annotations

import re
from statistics import fmean

import structlog

from prompt_expert.schemas.evaluation import (
    Aspect,
    CandidateEvaluation,
    PassResult,
    ScoreSource,
)

logger = structlog.get_logger(__name__)

NEUTRAL_SCORE = 5.0
STRENGTH_CUTOFF = 7.0

_SCORE_PATTERNS = (
    re.compile(r"(\d+(?:\.\d+)?)\s*/\s*10", re.IGNORECASE),
    re.compile(r"score[:\s]+(\d+(?:\.\d+)?)", re.IGNORECASE),
    re.compile(r"(\d+(?:\.\d+)?)\s*out\s*of\s*10", re.IGNORECASE),
)

# Checked in order; the first keyword present wins.
_KEYWORD_SCORES = (
    ("excellent", 9.0),
    ("good", 7.0),
    ("adequate", 5.0),
    ("poor", 3.0),
)

# Attribute -> minimum pass score for the attribute to count as met.
ASPECT_THRESHOLDS: dict[Aspect, dict[str, float]] = {
    Aspect.STRUCTURAL: {"clarity": 7, "organization": 7, "completeness": 8},
    Aspect.DOMAIN: {"accuracy": 8, "depth": 7, "best_practices": 8},
    Aspect.EFFECTIVENESS: {"output_quality": 7, "task_completion": 8, "edge_cases": 6},
}


def extract_score(text: str) -> tuple[float, ScoreSource]:
    """Pull a 0-10 score out of a judge response."""
    for pattern in _SCORE_PATTERNS:
        match = pattern.search(text)
        if match:
            return min(10.0, float(match.group(1))), ScoreSource.NUMERIC

    lowered = text.lower()
    for keyword, score in _KEYWORD_SCORES:
        if keyword in lowered:
            return score, ScoreSource.KEYWORD

    return NEUTRAL_SCORE, ScoreSource.DEFAULT


def leniency_offset(iteration: int) -> float:
    """Bonus added to the aggregate on repeated improvement iterations."""
    if iteration >= 3:
        return 0.5
    if iteration >= 2:
        return 0.3
    return 0.0


def attributes_met(aspect: Aspect, score: float) -> dict[str, bool]:
    return {attr: score >= bar for attr, bar in ASPECT_THRESHOLDS[aspect].items()}


def strengths_and_weaknesses(
    passes: tuple[PassResult, ...],
) -> tuple[frozenset[tuple[Aspect, str]], frozenset[tuple[Aspect, str]]]:
    """Strong passes contribute met attributes, weak passes contribute unmet ones."""
    strengths: set[tuple[Aspect, str]] = set()
    weaknesses: set[tuple[Aspect, str]] = set()
    for p in passes:
        met = attributes_met(p.aspect, p.score)
        if p.score >= STRENGTH_CUTOFF:
            strengths.update((p.aspect, attr) for attr, ok in met.items() if ok)
        else:
            weaknesses.update((p.aspect, attr) for attr, ok in met.items() if not ok)
    return frozenset(strengths), frozenset(weaknesses)


def build_evaluation(
    candidate_id: str,
    passes: tuple[PassResult, ...],
    iteration: int = 0,
) -> CandidateEvaluation:
    """Aggregate pass results into an immutable CandidateEvaluation.

    The leniency offset touches only ``aggregate_score``; pass scores and
    ``raw_aggregate`` stay as the judge produced them.
    """
    per_aspect = {p.aspect: p.score for p in passes}
    raw = fmean(p.score for p in passes) if passes else NEUTRAL_SCORE
    offset = leniency_offset(iteration)
    aggregate = min(10.0, raw + offset)
    strengths, weaknesses = strengths_and_weaknesses(passes)

    warnings = []
    for p in passes:
        if p.failed:
            warnings.append(f"{candidate_id}: {p.aspect} pass failed ({p.error}); scored {p.score}")
        elif p.score_source == ScoreSource.DEFAULT:
            warnings.append(
                f"{candidate_id}: no score found in {p.aspect} response; defaulted to {p.score}"
            )
    if offset:
        logger.info(
            "leniency_applied",
            candidate=candidate_id,
            iteration=iteration,
            offset=offset,
        )

    return CandidateEvaluation(
        candidate_id=candidate_id,
        passes=passes,
        per_aspect_score=per_aspect,
        raw_aggregate=raw,
        leniency=offset,
        aggregate_score=aggregate,
        strengths=strengths,
        weaknesses=weaknesses,
        warnings=tuple(warnings),
    )
