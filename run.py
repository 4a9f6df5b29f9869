"""CLI entry point for prompt A/B testing.

Usage:
    python run.py experts/security.md prompts/reviewer.md@v1 prompts/reviewer.md
    python run.py EXPERT A B --context src/auth --context acme/specs:api.yaml@v2
    python run.py EXPERT A B --mode strict --max-tokens 50000 --json
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from pydantic import ValidationError

from prompt_expert.config import get_abtest_settings, get_settings
from prompt_expert.content.cache import ContentCache
from prompt_expert.content.github import GitHubContentClient
from prompt_expert.errors import ConfigurationError
from prompt_expert.graphs.ab_test_workflow import run_ab_test
from prompt_expert.logging_config import setup_logging
from prompt_expert.models import LLMJudge
from prompt_expert.schemas.run import LoadingMode, RunConfig, RunResult
from prompt_expert.utils.console import print_header, print_run_result


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Compare two prompt versions with an expert-defined LLM judge.",
    )
    parser.add_argument("expert", help="Expert definition path: [owner/repo:]path[@version]")
    parser.add_argument("prompt_a", help="Baseline prompt path")
    parser.add_argument("prompt_b", help="Variant prompt path")
    parser.add_argument(
        "--context",
        action="append",
        default=[],
        metavar="PATH",
        help="Context file or directory (repeatable).",
    )
    parser.add_argument(
        "--iteration",
        type=int,
        default=0,
        help="Number of previous improvement iterations (enables leniency at 2+).",
    )
    parser.add_argument("--max-tokens", type=int, default=None, help="Token budget.")
    parser.add_argument("--max-bytes", type=int, default=None, help="Byte budget.")
    parser.add_argument("--max-files", type=int, default=None, help="File budget.")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in LoadingMode],
        default=None,
        help="Loading mode (default from abtest.toml).",
    )
    parser.add_argument(
        "--prioritize",
        action="store_true",
        default=False,
        help="Load context by kind priority (code, text, config, ...) then path length.",
    )
    parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Stop starting new work after this many seconds.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Print the run result as JSON instead of the rich report.",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL.")
    return parser.parse_args(argv)


def build_run_config(args: argparse.Namespace, base: RunConfig) -> RunConfig:
    """Apply CLI overrides on top of the [limits] table."""
    overrides = {}
    if args.max_tokens is not None:
        overrides["max_tokens"] = args.max_tokens
    if args.max_bytes is not None:
        overrides["max_total_bytes"] = args.max_bytes
    if args.max_files is not None:
        overrides["max_files"] = args.max_files
    if args.mode is not None:
        overrides["loading_mode"] = LoadingMode(args.mode)
    if args.prioritize:
        overrides["prioritize"] = True
    if not overrides:
        return base
    try:
        return RunConfig.model_validate({**base.model_dump(), **overrides})
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid command line limits: {exc}") from exc


async def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    setup_logging(args.log_level or settings.log_level, json_logs=args.json)
    try:
        abtest_settings = get_abtest_settings()
        run_config = build_run_config(args, abtest_settings.limits)
    except ConfigurationError as exc:
        result = RunResult(success=False, error=str(exc))
        if args.json:
            print(result.model_dump_json(indent=2))
        else:
            print_run_result(result)
        return 1

    if not args.json:
        print_header(
            args.expert,
            args.prompt_a,
            args.prompt_b,
            abtest_settings.defaults.model,
            run_config.loading_mode,
        )

    cache = ContentCache(
        max_bytes=abtest_settings.cache.max_bytes,
        floating_ttl=abtest_settings.cache.floating_ttl,
        pinned_ttl=abtest_settings.cache.pinned_ttl,
        max_evictions=abtest_settings.cache.max_evictions,
    )
    async with GitHubContentClient(
        token=settings.github_token or None,
        base_url=settings.github_api_url,
        timeout=abtest_settings.defaults.timeout,
    ) as source:
        result = await run_ab_test(
            args.expert,
            args.prompt_a,
            args.prompt_b,
            args.context,
            args.iteration,
            source=source,
            judge=LLMJudge.from_settings("evaluation", settings, abtest_settings),
            comparison_judge=LLMJudge.from_settings("comparison", settings, abtest_settings),
            verdict_judge=LLMJudge.from_settings("verdict", settings, abtest_settings),
            cache=cache,
            abtest_settings=abtest_settings,
            run_config=run_config,
            default_namespace=settings.default_namespace,
            deadline=args.deadline,
        )

    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        print_run_result(result)
    return 0 if result.success else 1


def main() -> None:
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
