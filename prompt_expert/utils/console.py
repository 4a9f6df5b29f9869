"""Rich console output for A/B test runs."""

from __future__ import annotations

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from prompt_expert.schemas.evaluation import Aspect
from prompt_expert.schemas.run import Recommendation, RunResult, UsageReport

console = Console()

RECOMMENDATION_COLORS = {
    Recommendation.DEPLOY: "bold green",
    Recommendation.IMPROVE: "yellow",
    Recommendation.REJECT: "red",
    Recommendation.REVIEW: "magenta",
}

HEALTH_COLORS = {"healthy": "green", "warning": "yellow", "error": "red"}


def print_header(expert: str, prompt_a: str, prompt_b: str, model: str, mode: str) -> None:
    """Print the startup banner."""
    console.print()
    console.print(
        Panel(
            f"[bold]Prompt A/B Test[/bold]\n\n"
            f"  Expert: [cyan]{expert}[/cyan]\n"
            f"  Prompt A: [cyan]{prompt_a}[/cyan]\n"
            f"  Prompt B: [cyan]{prompt_b}[/cyan]\n"
            f"  Judge model: [cyan]{model}[/cyan]\n"
            f"  Loading mode: [cyan]{mode}[/cyan]",
            border_style="bright_blue",
            padding=(1, 2),
        )
    )
    console.print()


def _scores_table(result: RunResult) -> Table:
    table = Table(title="Scores", show_lines=False)
    table.add_column("Aspect")
    table.add_column("A", justify="right")
    table.add_column("B", justify="right")
    table.add_column("Δ", justify="right")

    a = result.evaluations.get("A")
    b = result.evaluations.get("B")
    deltas = result.comparison.per_aspect_delta if result.comparison else {}
    for aspect in Aspect:
        table.add_row(
            str(aspect),
            f"{a.per_aspect_score.get(aspect, 0):.1f}" if a else "-",
            f"{b.per_aspect_score.get(aspect, 0):.1f}" if b else "-",
            f"{deltas.get(aspect, 0):+.1f}",
        )
    if a and b:
        table.add_row(
            "[bold]aggregate[/bold]",
            f"{a.aggregate_score:.2f}",
            f"{b.aggregate_score:.2f}",
            f"{b.aggregate_score - a.aggregate_score:+.2f}",
        )
    return table


def _usage_table(usage: UsageReport) -> Table:
    table = Table(title="Resource usage")
    table.add_column("Dimension")
    table.add_column("Used", justify="right")
    table.add_column("% of limit", justify="right")
    table.add_row("bytes", str(usage.bytes_used), f"{usage.percent_of_limits.get('bytes', 0)}%")
    table.add_row("tokens", str(usage.tokens_used), f"{usage.percent_of_limits.get('tokens', 0)}%")
    table.add_row("files", str(usage.files_used), f"{usage.percent_of_limits.get('files', 0)}%")
    for kind, kind_usage in usage.by_kind.items():
        table.add_row(f"  {kind}", f"{kind_usage.count} files / {kind_usage.bytes} bytes", "")
    table.add_row("API calls", str(usage.api_calls), "")
    table.add_row("cache hits / misses", f"{usage.cache_hits} / {usage.cache_misses}", "")
    return table


def print_run_result(result: RunResult) -> None:
    """Render a run result: verdict, scores, usage, skipped items, warnings."""
    console.print()
    if not result.success:
        console.print(
            Panel(
                escape(result.error or "Unknown error"),
                title="[bold red]A/B test failed[/bold red]",
                border_style="red",
                padding=(1, 2),
            )
        )
        return

    color = RECOMMENDATION_COLORS.get(result.recommendation, "white")
    console.print(
        Panel(
            f"{result.summary}\n\n"
            f"[{color}]{result.recommendation}[/{color}]: {result.recommendation_message}",
            title="[bold]Verdict[/bold]",
            border_style=color.split()[-1],
            padding=(1, 2),
        )
    )
    console.print(_scores_table(result))

    if result.verdict is not None:
        console.print(
            Panel(
                Markdown(result.verdict.reasoning_text),
                title="Judge reasoning",
                border_style="dim",
            )
        )

    usage = result.usage
    console.print(_usage_table(usage))
    health_color = HEALTH_COLORS.get(usage.health, "white")
    console.print(f"  Health: [{health_color}]{usage.health}[/{health_color}] ({usage.health_message})")

    for collection in usage.collections:
        if collection.truncated:
            console.print(
                f"  [dim]{escape(collection.reference.path)}: sampled {collection.sampled_count} "
                f"of {collection.original_count} files[/dim]"
            )
    if usage.skipped:
        console.print(f"\n  [yellow]Skipped {len(usage.skipped)} item(s):[/yellow]")
        for item in usage.skipped:
            console.print(
                f"    - {escape(item.path)} ({item.skip_category}): {escape(item.skip_reason or '')}"
            )

    for line in result.recommendations:
        console.print(f"  [cyan]•[/cyan] {escape(line)}")
    for warning in result.warnings:
        console.print(f"  [yellow]![/yellow] {escape(warning)}")
    console.print()
