"""Graph state definitions.

RunState: the per-run collaborators (budget, loader, engine, ...), created
    by the validate node and discarded with the graph state.
ABTestState: the TypedDict flowing through the A/B test graph.
"""

from __future__ import annotations

import operator
from dataclasses import dataclass, field
from typing import Annotated, TypedDict

from prompt_expert.content.budget import BudgetTracker
from prompt_expert.content.cache import ContentCache
from prompt_expert.content.loader import ProgressiveLoader
from prompt_expert.evaluation.comparator import VerdictSynthesizer
from prompt_expert.evaluation.engine import EvaluationEngine
from prompt_expert.schemas.content import ContentReference
from prompt_expert.schemas.evaluation import CandidateEvaluation, Comparison, Verdict
from prompt_expert.schemas.run import LoadResult, RunConfig
from prompt_expert.utils.deadline import Deadline
from prompt_expert.utils.recovery import RecoveryDispatcher


@dataclass
class RunState:
    """Everything one run owns. Never shared between runs."""

    config: RunConfig
    budget: BudgetTracker
    loader: ProgressiveLoader
    engine: EvaluationEngine
    synthesizer: VerdictSynthesizer
    recovery: RecoveryDispatcher
    deadline: Deadline
    cache: ContentCache | None = None
    cache_baseline: dict = field(default_factory=dict)


def _merge_dicts(left: dict, right: dict) -> dict:
    return {**left, **right}


class ABTestState(TypedDict, total=False):
    """State for the A/B test graph.

    Flows: validate -> load_inputs -> load_context
           -> [evaluate_a, evaluate_b] (parallel) -> compare -> verdict
    """

    # ----- Input -----
    expert_path: str
    prompt_a_path: str
    prompt_b_path: str
    context_paths: list[str]
    iteration: int

    # ----- Validation -----
    error: str
    run: RunState
    expert_ref: ContentReference
    prompt_a_ref: ContentReference
    prompt_b_ref: ContentReference
    context_refs: list[ContentReference]

    # ----- Loading -----
    inputs: LoadResult
    expert_text: str
    prompt_a_text: str
    prompt_b_text: str
    context: LoadResult

    # ----- Evaluation (written by the parallel branches) -----
    evaluations: Annotated[dict[str, CandidateEvaluation], _merge_dicts]

    # ----- Comparison -----
    comparison: Comparison
    verdict: Verdict

    # ----- Warnings (accumulate across nodes) -----
    warnings: Annotated[list[str], operator.add]
