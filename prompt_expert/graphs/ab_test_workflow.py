"""A/B Test Workflow Graph: bounded loading, parallel evaluation, verdict.

  START → validate ──(error)──────────────────────────────────────→ END
              │
              └→ load_inputs ──(error)────────────────────────────→ END
                     │
                     └→ load_context ─┬→ evaluate_a ─┐
                                      └→ evaluate_b ─┴→ compare → verdict → END

Collaborators that outlive a run (content source, judge, cache, settings)
travel in ``config["configurable"]``. Everything the run owns (budget,
loader, engine, deadline) is a ``RunState`` created by ``validate`` and
dropped with the graph state, so concurrent runs never share counters.

Only upfront validation and unloadable inputs end the run with
``success=False``; after that, failures degrade into warnings and
failed passes.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from langchain_core.runnables import RunnableConfig
from langgraph.constants import END, START
from langgraph.graph import StateGraph

from prompt_expert.config import ABTestSettings, get_abtest_settings
from prompt_expert.content.budget import BudgetTracker
from prompt_expert.content.cache import ContentCache
from prompt_expert.content.github import ContentSource
from prompt_expert.content.kinds import is_textual
from prompt_expert.content.loader import ProgressiveLoader
from prompt_expert.content.reference import is_valid_reference, parse_reference
from prompt_expert.errors import InvalidReferenceError
from prompt_expert.evaluation.comparator import (
    VerdictSynthesizer,
    compare,
    fallback_verdict,
    interpret,
)
from prompt_expert.evaluation.engine import EvaluationEngine, Judge
from prompt_expert.schemas.content import ContentKind, ContentReference
from prompt_expert.schemas.run import LoadResult, RunConfig, RunResult, UsageReport
from prompt_expert.schemas.state import ABTestState, RunState
from prompt_expert.utils.deadline import Deadline
from prompt_expert.utils.recovery import RecoveryDispatcher

logger = structlog.get_logger(__name__)

T = TypeVar("T")

CANDIDATE_A = "A"
CANDIDATE_B = "B"


# ---------------------------------------------------------------------------
# Upfront validation
# ---------------------------------------------------------------------------


def validate_inputs(
    expert_path: str,
    prompt_a_path: str,
    prompt_b_path: str,
    context_paths: list[str],
    max_context_refs: int,
) -> list[str]:
    """Every reason the run cannot start; empty when the inputs are usable."""
    errors: list[str] = []
    for label, value in (
        ("Expert definition path", expert_path),
        ("Prompt A path", prompt_a_path),
        ("Prompt B path", prompt_b_path),
    ):
        if not value or not value.strip():
            errors.append(f"{label} is required")
        elif not is_valid_reference(value):
            errors.append(f"Invalid path format for {label}: {value}")

    if prompt_a_path and prompt_b_path and prompt_a_path.strip() == prompt_b_path.strip():
        errors.append("Prompt A and Prompt B must be different")

    if len(context_paths) > max_context_refs:
        errors.append(
            f"Too many context paths ({len(context_paths)}); maximum is {max_context_refs}"
        )
    for path in context_paths:
        if not is_valid_reference(path):
            errors.append(f"Invalid context path format: {path}")
    return errors


def _route_on_error(next_node: str) -> Callable[[ABTestState], str]:
    def _route(state: ABTestState) -> str:
        return END if state.get("error") else next_node

    return _route


async def validate_node(state: ABTestState, config: RunnableConfig) -> dict:
    """Check the inputs and build the run's RunState."""
    cfg = config["configurable"]
    settings: ABTestSettings = cfg.get("abtest_settings") or get_abtest_settings()
    run_config: RunConfig = cfg.get("run_config") or settings.limits
    namespace = cfg.get("default_namespace", "")

    context_paths = state.get("context_paths", [])
    errors = validate_inputs(
        state.get("expert_path", ""),
        state.get("prompt_a_path", ""),
        state.get("prompt_b_path", ""),
        context_paths,
        run_config.max_context_refs,
    )
    if not errors:
        try:
            expert_ref = parse_reference(state["expert_path"], namespace)
            prompt_a_ref = parse_reference(state["prompt_a_path"], namespace)
            prompt_b_ref = parse_reference(state["prompt_b_path"], namespace)
            context_refs = [parse_reference(p, namespace) for p in context_paths]
        except InvalidReferenceError as exc:
            errors.append(str(exc))
        else:
            if prompt_a_ref == prompt_b_ref:
                errors.append("Prompt A and Prompt B must be different")

    if errors:
        logger.warning("validation_failed", errors=errors)
        return {"error": "; ".join(errors)}

    clock = cfg.get("clock", time.monotonic)
    sleep = cfg.get("sleep", asyncio.sleep)
    deadline = Deadline(cfg.get("deadline"), clock=clock)
    recovery = cfg.get("recovery") or RecoveryDispatcher.from_settings(settings.retry, sleep=sleep)
    cache: ContentCache | None = cfg.get("cache")
    budget = BudgetTracker(run_config, clock=clock, sleep=sleep)
    judge: Judge = cfg["judge"]

    run = RunState(
        config=run_config,
        budget=budget,
        loader=ProgressiveLoader(
            cfg["source"], budget, cache=cache, recovery=recovery, deadline=deadline
        ),
        engine=EvaluationEngine(judge, recovery=recovery, deadline=deadline, calls=budget.calls),
        synthesizer=VerdictSynthesizer(
            cfg.get("comparison_judge") or judge,
            recovery=recovery,
            verdict_judge=cfg.get("verdict_judge"),
            calls=budget.calls,
        ),
        recovery=recovery,
        deadline=deadline,
        cache=cache,
        cache_baseline=cache.stats() if cache is not None else {},
    )
    logger.info(
        "validation_passed",
        expert=str(expert_ref),
        prompt_a=str(prompt_a_ref),
        prompt_b=str(prompt_b_ref),
        context_refs=len(context_refs),
        mode=run_config.loading_mode,
    )
    return {
        "run": run,
        "expert_ref": expert_ref,
        "prompt_a_ref": prompt_a_ref,
        "prompt_b_ref": prompt_b_ref,
        "context_refs": context_refs,
    }


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


async def load_inputs_node(state: ABTestState) -> dict:
    """Load the expert definition and both candidates through the run budget."""
    run = state["run"]
    labelled = (
        ("expert definition", state["expert_ref"], "expert_text"),
        ("prompt A", state["prompt_a_ref"], "prompt_a_text"),
        ("prompt B", state["prompt_b_ref"], "prompt_b_text"),
    )
    result = await run.loader.load_all([ref for _, ref, _ in labelled], prioritize=False)

    update: dict = {"inputs": result, "warnings": list(result.warnings)}
    errors = []
    for label, ref, key in labelled:
        item = result.item_for(ref)
        if item is None:
            reasons = [s.skip_reason for s in result.skipped if s.reference == ref]
            detail = f": {reasons[0]}" if reasons else " (not a single file)"
            errors.append(f"Could not load {label} {ref}{detail}")
        elif not is_textual(item.kind):
            errors.append(f"The {label} {ref} must be a text file, got {item.kind}")
        else:
            update[key] = item.content

    if errors:
        logger.warning("inputs_unavailable", errors=errors)
        update["error"] = "; ".join(errors)
    return update


async def load_context_node(state: ABTestState) -> dict:
    """Load the context references into a bounded bundle."""
    run = state["run"]
    refs = state.get("context_refs", [])
    if not refs:
        return {"context": LoadResult()}

    result = await run.loader.load_all(refs)
    logger.info(
        "context_loaded",
        items=len(result.items),
        skipped=len(result.skipped),
        stopped=result.stopped,
    )
    return {"context": result, "warnings": list(result.warnings)}


# ---------------------------------------------------------------------------
# Evaluation, comparison, verdict
# ---------------------------------------------------------------------------


def _make_evaluate_node(candidate_id: str, text_key: str):  # noqa: ANN202
    async def evaluate_node(state: ABTestState) -> dict:
        run = state["run"]
        evaluation = await run.engine.evaluate(
            candidate_id,
            state[text_key],
            state["expert_text"],
            state.get("context"),
            state.get("iteration", 0),
        )
        return {
            "evaluations": {candidate_id: evaluation},
            "warnings": list(evaluation.warnings),
        }

    evaluate_node.__name__ = f"evaluate_{candidate_id.lower()}_node"
    return evaluate_node


async def _bounded(run: RunState, make_call: Callable[[], Awaitable[T]]) -> T:
    """Await a judge call, giving up when the run deadline passes."""
    if run.deadline.expired:
        raise TimeoutError("run deadline reached")
    remaining = run.deadline.remaining()
    if remaining is None:
        return await make_call()
    return await asyncio.wait_for(make_call(), remaining)


async def compare_node(state: ABTestState) -> dict:
    run = state["run"]
    a = state["evaluations"][CANDIDATE_A]
    b = state["evaluations"][CANDIDATE_B]

    warnings: list[str] = []
    try:
        detailed = await _bounded(
            run,
            lambda: run.synthesizer.detailed_comparison(
                state["expert_text"],
                a,
                b,
                label_a=str(state["prompt_a_ref"]),
                label_b=str(state["prompt_b_ref"]),
            ),
        )
    except Exception as exc:
        logger.warning("detailed_comparison_failed", error=str(exc))
        warnings.append(f"Detailed comparison unavailable: {exc}")
        detailed = ""

    comparison = compare(a, b, detailed=detailed)
    logger.info(
        "comparison_done",
        score_delta=comparison.score_delta,
        improvements=len(comparison.improvements),
        regressions=len(comparison.regressions),
    )
    return {"comparison": comparison, "warnings": warnings}


async def verdict_node(state: ABTestState) -> dict:
    run = state["run"]
    comparison = state["comparison"]
    try:
        verdict = await _bounded(
            run,
            lambda: run.synthesizer.synthesize_verdict(state["expert_text"], comparison),
        )
    except Exception as exc:
        logger.warning("verdict_failed", error=str(exc))
        verdict = fallback_verdict(comparison, str(exc) or type(exc).__name__)
    return {"verdict": verdict, "warnings": list(verdict.parse_warnings)}


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


def build_ab_test_graph() -> StateGraph:
    """Build the A/B test graph (uncompiled).

    Fan-out:  load_context → [evaluate_a, evaluate_b]  (parallel)
    Fan-in:   [evaluate_a, evaluate_b] → compare → verdict → END
    """
    builder = StateGraph(ABTestState)

    builder.add_node("validate", validate_node)
    builder.add_node("load_inputs", load_inputs_node)
    builder.add_node("load_context", load_context_node)
    builder.add_node("evaluate_a", _make_evaluate_node(CANDIDATE_A, "prompt_a_text"))
    builder.add_node("evaluate_b", _make_evaluate_node(CANDIDATE_B, "prompt_b_text"))
    builder.add_node("compare", compare_node)
    builder.add_node("verdict", verdict_node)

    builder.add_edge(START, "validate")
    builder.add_conditional_edges(
        "validate", _route_on_error("load_inputs"), ["load_inputs", END]
    )
    builder.add_conditional_edges(
        "load_inputs", _route_on_error("load_context"), ["load_context", END]
    )

    builder.add_edge("load_context", "evaluate_a")
    builder.add_edge("load_context", "evaluate_b")
    builder.add_edge("evaluate_a", "compare")
    builder.add_edge("evaluate_b", "compare")

    builder.add_edge("compare", "verdict")
    builder.add_edge("verdict", END)

    return builder


ab_test_graph = build_ab_test_graph().compile()


# ---------------------------------------------------------------------------
# Result assembly
# ---------------------------------------------------------------------------


def build_usage_report(run: RunState, *loads: LoadResult) -> UsageReport:
    budget = run.budget
    health, health_message = budget.health()
    stats = run.cache.stats() if run.cache is not None else {}
    baseline = run.cache_baseline
    stop_reasons = [r.stop_reason for r in loads if r.stopped]

    return UsageReport(
        bytes_used=budget.bytes.used,
        tokens_used=budget.tokens.used,
        files_used=budget.files.used,
        bytes_considered=sum(r.bytes_considered for r in loads),
        by_kind={k: u.model_copy() for k, u in budget.by_kind.items() if u.count},
        percent_of_limits=budget.percent_of_limits(),
        health=health,
        health_message=health_message,
        skipped=[s for r in loads for s in r.skipped],
        collections=[c for r in loads for c in r.collections],
        stopped=bool(stop_reasons),
        stop_reason=stop_reasons[0] if stop_reasons else None,
        api_calls=budget.calls.total_calls,
        cache_hits=stats.get("hits", 0) - baseline.get("hits", 0),
        cache_misses=stats.get("misses", 0) - baseline.get("misses", 0),
    )


def usage_recommendations(run: RunState, usage: UsageReport) -> list[str]:
    """Advice on how to make the next run fit its budget better."""
    advice = []
    if run.budget.tokens.used > run.budget.tokens.warn:
        advice.append("Reduce context paths or use more specific file patterns")
    if len(usage.skipped) > 10:
        advice.append(
            f"{len(usage.skipped)} files were skipped. Consider using file type filters."
        )
    if usage.bytes_used and len(usage.by_kind) > 1:
        kind, top = max(usage.by_kind.items(), key=lambda kv: kv[1].bytes)
        share = top.bytes / usage.bytes_used
        if share > 0.7:
            advice.append(
                f"{kind} content makes up {share:.0%} of loaded bytes. "
                "Consider narrowing the context to what the evaluation needs."
            )
    images = usage.by_kind.get(ContentKind.IMAGE)
    if images is not None and images.count > 10:
        advice.append("Many images loaded. Consider selecting only essential images.")
    if usage.stopped:
        advice.append(f"Context loading stopped early ({usage.stop_reason}).")
    return advice


def build_summary(result: RunResult) -> str:
    verdict = result.verdict
    if verdict is None:
        return ""
    return (
        f"A/B test complete: version {verdict.winner} is "
        f"{'BETTER' if verdict.winner == CANDIDATE_B else 'NOT BETTER'} than the baseline. "
        f"Confidence: {verdict.confidence}. "
        f"Score difference: {verdict.score_delta:+.1f}. "
        f"Production ready: {'YES' if verdict.recommend_production else 'NO'}."
    )


def _unique(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def build_run_result(state: ABTestState) -> RunResult:
    run: RunState | None = state.get("run")
    warnings = list(state.get("warnings", []))
    if run is not None:
        warnings += run.budget.warnings + run.budget.errors
        loads = [r for r in (state.get("inputs"), state.get("context")) if r is not None]
        usage = build_usage_report(run, *loads)
    else:
        usage = UsageReport()

    if state.get("error"):
        return RunResult(
            success=False,
            error=state["error"],
            usage=usage,
            warnings=_unique(warnings),
        )

    evaluations = state["evaluations"]
    comparison = state["comparison"]
    verdict = state["verdict"]
    recommendation, message, items = interpret(
        verdict, comparison, evaluations[CANDIDATE_A], evaluations[CANDIDATE_B]
    )
    result = RunResult(
        success=True,
        verdict=verdict,
        evaluations=evaluations,
        comparison=comparison,
        usage=usage,
        recommendation=recommendation,
        recommendation_message=message,
        recommendations=items + usage_recommendations(run, usage),
        warnings=_unique(warnings),
    )
    result.summary = build_summary(result)
    return result


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def run_ab_test(
    expert_path: str,
    prompt_a_path: str,
    prompt_b_path: str,
    context_paths: list[str] | None = None,
    iteration: int = 0,
    *,
    source: ContentSource,
    judge: Judge,
    cache: ContentCache | None = None,
    abtest_settings: ABTestSettings | None = None,
    run_config: RunConfig | None = None,
    default_namespace: str = "",
    deadline: float | None = None,
    **configurable,  # noqa: ANN003
) -> RunResult:
    """Run one A/B test and return its result.

    Extra keyword arguments (``recovery``, ``comparison_judge``,
    ``verdict_judge``, ``clock``, ``sleep``) are passed to the graph
    through ``config["configurable"]``.
    """
    run_id = str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(run_id=run_id)
    try:
        initial: ABTestState = {
            "expert_path": expert_path,
            "prompt_a_path": prompt_a_path,
            "prompt_b_path": prompt_b_path,
            "context_paths": list(context_paths or []),
            "iteration": iteration,
            "warnings": [],
        }
        config = {
            "configurable": {
                "thread_id": run_id,
                "source": source,
                "judge": judge,
                "cache": cache,
                "abtest_settings": abtest_settings,
                "run_config": run_config,
                "default_namespace": default_namespace,
                "deadline": deadline,
                **configurable,
            }
        }
        final_state = await ab_test_graph.ainvoke(initial, config=config)
        result = build_run_result(final_state)
        logger.info(
            "ab_test_done",
            success=result.success,
            recommendation=result.recommendation,
            winner=result.verdict.winner if result.verdict else None,
        )
        return result
    finally:
        structlog.contextvars.unbind_contextvars("run_id")
