"""Prompt templates for the judge calls.

Three evaluation passes per candidate (structural, domain expertise,
effectiveness), then a detailed comparison and a verdict call that share the
expert's full definition as their framing.
"""

EXPERT_EXCERPT_CHARS = 500

# ---------------------------------------------------------------------------
# Evaluation passes
# ---------------------------------------------------------------------------

STRUCTURAL_SYSTEM = """\
You are an expert evaluator analyzing prompt structure.
Evaluating the organization, clarity, and logical structure of the prompt.

Expert perspective: {expert_excerpt}

{test_context}
{iteration_context}

Evaluate the prompt for:
1. Clarity and organization
2. Completeness of instructions
3. Logical flow
4. Appropriate level of detail
5. Alignment with provided test context

Pay attention to how well the prompt guides the user.
{leniency_note}
End your answer with a line of the form "Score: X/10".
"""

DOMAIN_SYSTEM = """\
You are a domain expert evaluator.
Expert perspective: {expert_excerpt}

{test_context}
{iteration_context}

Evaluate the prompt for:
1. Domain accuracy
2. Technical depth
3. Best practices adherence
4. Industry standards alignment
5. Practical applicability to test scenarios
{leniency_note}
End your answer with a line of the form "Score: X/10".
"""

EFFECTIVENESS_SYSTEM = """\
You are evaluating prompt effectiveness.
Expert perspective: {expert_excerpt}

{test_context}
{iteration_context}

Evaluate the prompt for:
1. Likely output quality
2. Task completion capability
3. Edge case handling
4. Practical usability
5. Performance on test scenarios
{leniency_note}
End your answer with a line of the form "Score: X/10".
"""

PASS_TASK = """\
Evaluate this prompt's {focus}:

{candidate_text}

Test Context Summary:
{context_summary}
"""

FIRST_ITERATION = "This is the first evaluation."

ITERATION_CONTEXT = (
    "This is iteration {number} of improvements. Be {degree} in evaluation."
)

LENIENCY_NOTE = (
    "Note: After 3+ iterations, focus on whether the prompt is reasonably "
    "good rather than perfect."
)

NO_CONTEXT = "No test context provided."


# ---------------------------------------------------------------------------
# Comparison and verdict
# ---------------------------------------------------------------------------

COMPARISON_SYSTEM = """\
You are the expert defined by this prompt:
{expert_definition}

Provide a detailed comparison of two prompt evaluations.
"""

COMPARISON_TASK = """\
Compare these two prompt evaluations:

PROMPT A ({label_a}):
Score: {score_a}
Strengths: {strengths_a}
Weaknesses: {weaknesses_a}

PROMPT B ({label_b}):
Score: {score_b}
Strengths: {strengths_b}
Weaknesses: {weaknesses_b}

Provide detailed comparison focusing on:
1. Key differences
2. Trade-offs
3. Use case suitability
4. Overall improvement or regression
"""

VERDICT_SYSTEM = """\
You are the expert defined by this prompt:
{expert_definition}

You must provide a clear verdict on which prompt version is better.
"""

VERDICT_TASK = """\
Based on this comparison, provide your expert verdict:

{detailed_comparison}

Score difference: {score_delta}
Improvements: {improvements}
Regressions: {regressions}

PROVIDE CLEAR VERDICT:
1. Which version is better: Version A or Version B?
2. Why is it better?
3. Confidence level (high/medium/low)
4. Recommendation for production use
"""


def expert_excerpt(definition: str) -> str:
    if len(definition) <= EXPERT_EXCERPT_CHARS:
        return definition
    return definition[:EXPERT_EXCERPT_CHARS] + "..."


def iteration_context(iteration: int) -> str:
    if iteration < 1:
        return FIRST_ITERATION
    degree = "more lenient" if iteration >= 3 else "reasonably lenient"
    return ITERATION_CONTEXT.format(number=iteration + 1, degree=degree)


def leniency_note(iteration: int) -> str:
    return LENIENCY_NOTE if iteration >= 3 else ""
