"""Multi-pass candidate evaluation.

Each candidate is judged three times, once per ``Aspect``, with a
pass-specific system framing and the same candidate text and context
summary. The passes have no data dependency, so they run concurrently.
A pass whose judge call fails (after recovery) or misses the run deadline
becomes a failed ``PassResult`` scored at the neutral default; the run
carries on with a partial, explained result.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog

from prompt_expert.content.budget import CallWindow
from prompt_expert.evaluation.scoring import NEUTRAL_SCORE, build_evaluation, extract_score
from prompt_expert.prompts.templates import (
    DOMAIN_SYSTEM,
    EFFECTIVENESS_SYSTEM,
    NO_CONTEXT,
    PASS_TASK,
    STRUCTURAL_SYSTEM,
    expert_excerpt,
    iteration_context,
    leniency_note,
)
from prompt_expert.schemas.content import ContentKind, LoadedItem
from prompt_expert.schemas.evaluation import (
    Aspect,
    CandidateEvaluation,
    PassResult,
    ScoreSource,
)
from prompt_expert.schemas.run import LoadResult
from prompt_expert.utils.deadline import Deadline
from prompt_expert.utils.recovery import RecoveryDispatcher

logger = structlog.get_logger(__name__)


class Judge(Protocol):
    """The external judgment service: system framing + user message -> free text."""

    async def judge(self, system: str, user: str) -> str: ...


async def judge_call(judge: Judge, system: str, user: str, calls: CallWindow | None = None) -> str:
    """One judge round-trip, counted against the run's call window."""
    if calls is not None:
        await calls.acquire()
    return await judge.judge(system, user)


_PASS_FRAMINGS: dict[Aspect, tuple[str, str]] = {
    Aspect.STRUCTURAL: (STRUCTURAL_SYSTEM, "structure"),
    Aspect.DOMAIN: (DOMAIN_SYSTEM, "domain expertise"),
    Aspect.EFFECTIVENESS: (EFFECTIVENESS_SYSTEM, "effectiveness"),
}


# ---------------------------------------------------------------------------
# Context rendering
# ---------------------------------------------------------------------------


def _render_item(item: LoadedItem) -> str | None:
    note = ", compressed" if item.compressed else ""
    match item.kind:
        case ContentKind.TEXT | ContentKind.CODE | ContentKind.CONFIG:
            return f"### {item.path} ({item.kind}, {item.size_bytes} bytes{note})\n{item.content}"
        case ContentKind.IMAGE:
            return f"### {item.path} (image, {item.size_bytes} bytes, not inlined)"
        case ContentKind.DOCUMENT:
            return f"### {item.path} (document, {item.size_bytes} bytes, not inlined)"
        case ContentKind.BINARY:
            return None


def summarize_context(context: LoadResult | None) -> str:
    """Render the assembled context bundle for the judge."""
    if context is None or not (context.items or context.skipped):
        return NO_CONTEXT

    lines = [
        f"Test context available: {len(context.items)} files, "
        f"{len(context.collections)} directories"
    ]
    for item in context.items:
        rendered = _render_item(item)
        if rendered is not None:
            lines.append(rendered)
    if context.skipped:
        lines.append(f"{len(context.skipped)} item(s) were left out of this context.")
    if context.stopped:
        lines.append(f"Context is partial: loading stopped ({context.stop_reason}).")
    return "\n\n".join(lines)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class EvaluationEngine:
    """Runs the three evaluation passes for one candidate.

    Args:
        judge: The judgment service.
        recovery: Retry policy for judge calls.
        deadline: Run deadline; pending passes fail once it has passed.
        calls: Rate limiter shared with every other remote call in the run.
    """

    def __init__(
        self,
        judge: Judge,
        recovery: RecoveryDispatcher | None = None,
        deadline: Deadline | None = None,
        calls: CallWindow | None = None,
    ) -> None:
        self._judge = judge
        self._recovery = recovery or RecoveryDispatcher()
        self._deadline = deadline or Deadline(None)
        self._calls = calls

    async def evaluate(
        self,
        candidate_id: str,
        candidate_text: str,
        expert_definition: str,
        context: LoadResult | None = None,
        iteration: int = 0,
    ) -> CandidateEvaluation:
        summary = summarize_context(context)
        logger.info("evaluation_start", candidate=candidate_id, iteration=iteration)

        passes = await asyncio.gather(
            *(
                self._run_pass(aspect, candidate_id, candidate_text, expert_definition, summary, iteration)
                for aspect in Aspect
            )
        )
        evaluation = build_evaluation(candidate_id, tuple(passes), iteration)

        for warning in evaluation.warnings:
            logger.warning("evaluation_data_quality", candidate=candidate_id, warning=warning)
        logger.info(
            "evaluation_done",
            candidate=candidate_id,
            aggregate=round(evaluation.aggregate_score, 2),
            scores={str(a): s for a, s in evaluation.per_aspect_score.items()},
        )
        return evaluation

    async def _run_pass(
        self,
        aspect: Aspect,
        candidate_id: str,
        candidate_text: str,
        expert_definition: str,
        context_summary: str,
        iteration: int,
    ) -> PassResult:
        template, focus = _PASS_FRAMINGS[aspect]
        system = template.format(
            expert_excerpt=expert_excerpt(expert_definition),
            test_context="Test materials provided for evaluation context."
            if context_summary != NO_CONTEXT
            else NO_CONTEXT,
            iteration_context=iteration_context(iteration),
            leniency_note=leniency_note(iteration),
        )
        user = PASS_TASK.format(
            focus=focus,
            candidate_text=candidate_text,
            context_summary=context_summary,
        )

        if self._deadline.expired:
            return self._failed(aspect, candidate_id, "deadline reached before the pass started")

        call = self._recovery.call(
            f"judge {candidate_id}/{aspect}",
            lambda: judge_call(self._judge, system, user, self._calls),
        )
        remaining = self._deadline.remaining()
        try:
            text = await (call if remaining is None else asyncio.wait_for(call, remaining))
        except TimeoutError:
            return self._failed(aspect, candidate_id, "deadline reached during the pass")
        except Exception as exc:
            return self._failed(aspect, candidate_id, str(exc))

        score, source = extract_score(text)
        if source == ScoreSource.DEFAULT:
            logger.warning("score_defaulted", candidate=candidate_id, aspect=aspect, score=score)
        return PassResult(aspect=aspect, score=score, raw_text=text, score_source=source)

    @staticmethod
    def _failed(aspect: Aspect, candidate_id: str, error: str) -> PassResult:
        logger.warning("evaluation_pass_failed", candidate=candidate_id, aspect=aspect, error=error)
        return PassResult(
            aspect=aspect,
            score=NEUTRAL_SCORE,
            score_source=ScoreSource.DEFAULT,
            failed=True,
            error=error,
        )
