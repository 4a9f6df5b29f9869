"""Error classification and bounded retry for every remote call.

Failures are matched against an ordered table of ``RecoveryRule`` entries;
the first rule whose predicate accepts the error decides what happens.
Adding a recoverable error class is a matter of adding a row.

  transient (rate limit, timeout, reset, 5xx)  -> retried with capped backoff
  judge unavailable / overloaded               -> retried with capped backoff
  permanent (not found, forbidden, malformed)  -> raised immediately
  resource (context length)                    -> raised immediately
  anything unmatched                           -> raised immediately
"""

from __future__ import annotations

import asyncio
import random
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TypeVar

import structlog

from prompt_expert.errors import (
    ContentNotFoundError,
    ContentPermissionError,
    ContentRateLimitError,
    ContentUnavailableError,
    InvalidReferenceError,
    JudgeTimeoutError,
    JudgeUnavailableError,
    RecoveryExhaustedError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Predicate = Callable[[BaseException], bool]


class ErrorClass(StrEnum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RESOURCE = "resource"
    JUDGE_UNAVAILABLE = "judge_unavailable"


class RecoveryAction(StrEnum):
    RETRY = "retry"                      # exponential backoff
    WAIT_RATE_LIMIT = "wait_rate_limit"  # honour retry-after, else backoff
    FAIL = "fail"                        # surface immediately


@dataclass(frozen=True)
class RecoveryRule:
    name: str
    predicate: Predicate
    error_class: ErrorClass
    action: RecoveryAction
    max_attempts: int | None = None  # None = dispatcher default


# ---------------------------------------------------------------------------
# Predicate builders
# ---------------------------------------------------------------------------


def is_instance(*types: type[BaseException]) -> Predicate:
    return lambda exc: isinstance(exc, types)


def type_named(*names: str) -> Predicate:
    """Match by class name, for SDK exceptions we do not import."""
    wanted = set(names)
    return lambda exc: any(cls.__name__ in wanted for cls in type(exc).__mro__)


def message_matches(pattern: str) -> Predicate:
    regex = re.compile(pattern, re.IGNORECASE)
    return lambda exc: bool(regex.search(str(exc)))


def any_of(*predicates: Predicate) -> Predicate:
    return lambda exc: any(p(exc) for p in predicates)


DEFAULT_RULES: tuple[RecoveryRule, ...] = (
    RecoveryRule(
        name="invalid_reference",
        predicate=is_instance(InvalidReferenceError),
        error_class=ErrorClass.PERMANENT,
        action=RecoveryAction.FAIL,
    ),
    RecoveryRule(
        name="rate_limit",
        predicate=any_of(
            is_instance(ContentRateLimitError),
            type_named("RateLimitError"),
            message_matches(r"rate limit|too many requests|\b429\b"),
        ),
        error_class=ErrorClass.TRANSIENT,
        action=RecoveryAction.WAIT_RATE_LIMIT,
    ),
    RecoveryRule(
        name="judge_overloaded",
        predicate=any_of(
            is_instance(JudgeUnavailableError),
            message_matches(r"overloaded|\b529\b|service unavailable"),
        ),
        error_class=ErrorClass.JUDGE_UNAVAILABLE,
        action=RecoveryAction.RETRY,
    ),
    RecoveryRule(
        name="timeout",
        predicate=any_of(
            is_instance(JudgeTimeoutError, TimeoutError),
            type_named("APITimeoutError", "TimeoutException"),
            message_matches(r"timeout|timed out|ETIMEDOUT"),
        ),
        error_class=ErrorClass.TRANSIENT,
        action=RecoveryAction.RETRY,
    ),
    RecoveryRule(
        name="connection",
        predicate=any_of(
            is_instance(ContentUnavailableError, ConnectionError),
            type_named("APIConnectionError", "InternalServerError", "TransportError"),
            message_matches(r"connection (reset|refused|error)|ECONNRESET|ECONNREFUSED"),
        ),
        error_class=ErrorClass.TRANSIENT,
        action=RecoveryAction.RETRY,
    ),
    RecoveryRule(
        name="not_found",
        predicate=any_of(
            is_instance(ContentNotFoundError),
            message_matches(r"\b404\b|not found"),
        ),
        error_class=ErrorClass.PERMANENT,
        action=RecoveryAction.FAIL,
    ),
    RecoveryRule(
        name="permission",
        predicate=any_of(
            is_instance(ContentPermissionError),
            type_named("AuthenticationError", "PermissionDeniedError"),
            message_matches(r"\b40[13]\b|unauthorized|forbidden|bad credentials"),
        ),
        error_class=ErrorClass.PERMANENT,
        action=RecoveryAction.FAIL,
    ),
    RecoveryRule(
        name="context_length",
        predicate=message_matches(r"context length|token limit|too many tokens"),
        error_class=ErrorClass.RESOURCE,
        action=RecoveryAction.FAIL,
    ),
)


@dataclass(frozen=True)
class RetryRecord:
    operation: str
    attempt: int
    rule: str
    delay: float


@dataclass
class RecoveryDispatcher:
    """Runs async operations under the recovery table.

    ``sleep`` and ``rng`` are injectable so backoff can be asserted exactly.
    """

    rules: tuple[RecoveryRule, ...] = DEFAULT_RULES
    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.1
    rate_limit_max_wait: float = 300.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    rng: Callable[[], float] = random.random
    history: list[RetryRecord] = field(default_factory=list)

    @classmethod
    def from_settings(cls, retry, **overrides) -> RecoveryDispatcher:  # noqa: ANN001
        """Build from the ``[retry]`` table of abtest.toml."""
        params = dict(
            max_attempts=retry.max_attempts,
            base_delay=retry.base_delay,
            max_delay=retry.max_delay,
            jitter=retry.jitter,
            rate_limit_max_wait=retry.rate_limit_max_wait,
        )
        params.update(overrides)
        return cls(**params)

    def classify(self, exc: BaseException) -> RecoveryRule | None:
        for rule in self.rules:
            if rule.predicate(exc):
                return rule
        return None

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number *attempt* (1-based), with jitter."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return delay + self.rng() * self.jitter * delay

    def _delay_for(self, rule: RecoveryRule, exc: BaseException, attempt: int) -> float | None:
        if rule.action == RecoveryAction.WAIT_RATE_LIMIT:
            retry_after = getattr(exc, "retry_after", None)
            if retry_after is not None:
                if retry_after > self.rate_limit_max_wait:
                    return None
                return float(retry_after)
        return self.backoff_delay(attempt)

    async def call(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Await ``fn()``; retry per the matching rule.

        Raises:
            RecoveryExhaustedError: a retryable error persisted past its budget.
            Exception: permanent or unclassified errors, unchanged.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await fn()
            except Exception as exc:
                rule = self.classify(exc)
                if rule is None or rule.action == RecoveryAction.FAIL:
                    logger.info(
                        "recovery_not_retryable",
                        operation=operation,
                        rule=rule.name if rule else None,
                        error=str(exc),
                    )
                    raise

                limit = rule.max_attempts or self.max_attempts
                delay = self._delay_for(rule, exc, attempt)
                if attempt >= limit or delay is None:
                    logger.warning(
                        "recovery_exhausted",
                        operation=operation,
                        rule=rule.name,
                        attempts=attempt,
                    )
                    raise RecoveryExhaustedError(
                        operation,
                        attempts=attempt,
                        error_class=rule.error_class,
                        last_error=exc,
                    ) from exc

                self.history.append(RetryRecord(operation, attempt, rule.name, delay))
                logger.info(
                    "recovery_retry",
                    operation=operation,
                    rule=rule.name,
                    attempt=attempt,
                    delay=round(delay, 3),
                )
                await self.sleep(delay)
