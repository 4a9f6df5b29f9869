"""Comparison of two candidate evaluations and verdict synthesis."""

from __future__ import annotations

import structlog

from prompt_expert.content.budget import CallWindow
from prompt_expert.evaluation.engine import Judge, judge_call
from prompt_expert.evaluation.verdict_parser import KeywordVerdictParser, VerdictParser
from prompt_expert.prompts.templates import (
    COMPARISON_SYSTEM,
    COMPARISON_TASK,
    VERDICT_SYSTEM,
    VERDICT_TASK,
)
from prompt_expert.schemas.evaluation import (
    Aspect,
    AspectChange,
    CandidateEvaluation,
    Comparison,
    Verdict,
)
from prompt_expert.schemas.run import Recommendation
from prompt_expert.utils.recovery import RecoveryDispatcher

logger = structlog.get_logger(__name__)

# Judge scores are not precise to better than about half a point.
DEAD_ZONE = 0.5


def _delta(a: float, b: float) -> float:
    return round(b - a, 6)


def compare(a: CandidateEvaluation, b: CandidateEvaluation, detailed: str = "") -> Comparison:
    """Per-aspect diff, B minus A. Both dead-zone boundaries are exclusive."""
    per_aspect: dict[Aspect, float] = {}
    improvements: list[AspectChange] = []
    regressions: list[AspectChange] = []
    unchanged: list[Aspect] = []

    for aspect in Aspect:
        before = a.per_aspect_score.get(aspect)
        after = b.per_aspect_score.get(aspect)
        if before is None or after is None:
            continue
        delta = _delta(before, after)
        per_aspect[aspect] = delta
        change = AspectChange(aspect=aspect, delta=delta, from_score=before, to_score=after)
        if delta > DEAD_ZONE:
            improvements.append(change)
        elif delta < -DEAD_ZONE:
            regressions.append(change)
        else:
            unchanged.append(aspect)

    return Comparison(
        score_delta=_delta(a.aggregate_score, b.aggregate_score),
        per_aspect_delta=per_aspect,
        improvements=tuple(improvements),
        regressions=tuple(regressions),
        unchanged=tuple(unchanged),
        detailed=detailed,
    )


class VerdictSynthesizer:
    """Asks the judge for a detailed comparison and then a verdict.

    ``verdict_judge`` may be a differently tuned judge for the final call;
    it defaults to ``judge``.
    """

    def __init__(
        self,
        judge: Judge,
        recovery: RecoveryDispatcher | None = None,
        parser: VerdictParser | None = None,
        verdict_judge: Judge | None = None,
        calls: CallWindow | None = None,
    ) -> None:
        self._judge = judge
        self._calls = calls
        self._verdict_judge = verdict_judge or judge
        self._recovery = recovery or RecoveryDispatcher()
        self._parser = parser or KeywordVerdictParser()

    async def detailed_comparison(
        self,
        expert_definition: str,
        a: CandidateEvaluation,
        b: CandidateEvaluation,
        label_a: str = "A",
        label_b: str = "B",
    ) -> str:
        system = COMPARISON_SYSTEM.format(expert_definition=expert_definition)
        user = COMPARISON_TASK.format(
            label_a=label_a,
            score_a=round(a.aggregate_score, 2),
            strengths_a=a.strengths_text(),
            weaknesses_a=a.weaknesses_text(),
            label_b=label_b,
            score_b=round(b.aggregate_score, 2),
            strengths_b=b.strengths_text(),
            weaknesses_b=b.weaknesses_text(),
        )
        return await self._recovery.call(
            "judge detailed_comparison", lambda: judge_call(self._judge, system, user, self._calls)
        )

    async def synthesize_verdict(self, expert_definition: str, comparison: Comparison) -> Verdict:
        system = VERDICT_SYSTEM.format(expert_definition=expert_definition)
        user = VERDICT_TASK.format(
            detailed_comparison=comparison.detailed or "(no detailed comparison available)",
            score_delta=f"{comparison.score_delta:+.2f}",
            improvements=len(comparison.improvements),
            regressions=len(comparison.regressions),
        )
        text = await self._recovery.call(
            "judge verdict", lambda: judge_call(self._verdict_judge, system, user, self._calls)
        )
        return self._parser.parse(text, score_delta=comparison.score_delta)


def fallback_verdict(comparison: Comparison, error: str) -> Verdict:
    """Verdict derived from scores alone, for when the verdict call fails."""
    winner = "B" if comparison.score_delta > 0 else "A"
    return Verdict(
        winner=winner,
        confidence="low",
        reasoning_text=f"Judge verdict unavailable ({error}); winner taken from aggregate scores.",
        recommend_production=False,
        score_delta=comparison.score_delta,
        parse_warnings=[f"Verdict call failed: {error}"],
    )


def interpret(
    verdict: Verdict,
    comparison: Comparison,
    a: CandidateEvaluation,
    b: CandidateEvaluation,
) -> tuple[Recommendation, str, list[str]]:
    """Map a verdict onto an action, with the items worth acting on."""
    delta = verdict.score_delta
    if verdict.confidence == "high" and verdict.recommend_production:
        return (
            Recommendation.DEPLOY,
            f"Deploy version {verdict.winner}: clearly superior with high confidence",
            [f"{c.aspect} +{c.delta:.1f}" for c in comparison.improvements],
        )
    if verdict.confidence == "medium" or (verdict.winner == "B" and 0 < delta < 1):
        winner = b if verdict.winner == "B" else a
        return (
            Recommendation.IMPROVE,
            f"Version {verdict.winner} shows promise but needs refinement",
            sorted(f"{aspect}: {attr}" for aspect, attr in winner.weaknesses),
        )
    if verdict.winner == "A" or verdict.confidence == "low" or delta < 0:
        return (
            Recommendation.REJECT,
            "Keep current version: version B has regressions or critical issues",
            [f"{c.aspect} {c.delta:.1f}" for c in comparison.regressions],
        )
    return Recommendation.REVIEW, "Manual review recommended: unclear verdict", []
