"""Resource budget tracking for a single evaluation run.

A ``BudgetTracker`` is created at run start and discarded at run end, so
concurrent runs never share counters. It tracks five independent
dimensions:

  bytes       total bytes accepted into the context bundle
  tokens      estimated tokens of accepted content
  files       number of accepted items
  kind bytes  bytes accepted per content kind (optional ceilings)
  calls       remote API calls in a rolling 60s window

Acceptance is a conjunction: an item is admitted only if *every* relevant
dimension stays within its hard limit. Exhaustion is reported through
yes/no predicates, never through exceptions.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog

from prompt_expert.schemas.content import ContentKind, LoadedItem
from prompt_expert.schemas.run import KindUsage, LoadingMode, RunConfig

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SizeEstimate:
    """Projected cost of admitting one item."""

    bytes: int
    tokens: int
    kind: ContentKind
    files: int = 1


@dataclass
class BudgetDimension:
    """A counter with warn / critical thresholds and a hard limit."""

    name: str
    hard_limit: int
    warn: int
    critical: int
    used: int = 0

    @classmethod
    def from_ratios(
        cls, name: str, hard_limit: int, warn_ratio: float, critical_ratio: float
    ) -> BudgetDimension:
        return cls(
            name=name,
            hard_limit=hard_limit,
            warn=int(hard_limit * warn_ratio),
            critical=int(hard_limit * critical_ratio),
        )

    @property
    def remaining(self) -> int:
        return max(0, self.hard_limit - self.used)

    @property
    def percent(self) -> float:
        return round(100.0 * self.used / self.hard_limit, 1) if self.hard_limit else 0.0

    def would_exceed(self, amount: int) -> bool:
        return self.used + amount > self.hard_limit


class CallWindow:
    """Rolling per-minute call counter with a blocking wait near the ceiling.

    Approaching the ceiling is a scheduling event, not an error: ``acquire``
    sleeps until the window resets when fewer than *headroom* calls remain.
    """

    def __init__(
        self,
        calls_per_minute: int,
        headroom: int = 5,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._ceiling = calls_per_minute
        # At least one call per window, whatever the headroom.
        self._threshold = max(1, calls_per_minute - headroom)
        self._window = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._calls = 0
        self._reset_at = clock() + window_seconds
        self.total_calls = 0
        self.waits = 0
        self._lock = asyncio.Lock()

    @property
    def calls_in_window(self) -> int:
        self._roll()
        return self._calls

    def _roll(self) -> None:
        now = self._clock()
        if now >= self._reset_at:
            self._calls = 0
            self._reset_at = now + self._window

    async def acquire(self) -> None:
        # Concurrent callers queue here so only one of them waits out the window.
        async with self._lock:
            self._roll()
            if self._calls >= self._threshold:
                wait = self._reset_at - self._clock()
                if wait > 0:
                    self.waits += 1
                    logger.info(
                        "rate_limit_pause",
                        wait_seconds=round(wait, 1),
                        calls=self._calls,
                        ceiling=self._ceiling,
                    )
                    await self._sleep(wait)
                self._calls = 0
                self._reset_at = self._clock() + self._window
            self._calls += 1
            self.total_calls += 1


@dataclass
class _Flags:
    warned: set[str] = field(default_factory=set)
    kind_ceiling_hit: set[ContentKind] = field(default_factory=set)


class BudgetTracker:
    """Multi-dimensional budget for one run (the run's ``RunState``)."""

    def __init__(
        self,
        config: RunConfig,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.bytes = BudgetDimension.from_ratios(
            "bytes", config.max_total_bytes, config.warn_ratio, config.critical_ratio
        )
        self.tokens = BudgetDimension.from_ratios(
            "tokens", config.max_tokens, config.warn_ratio, config.critical_ratio
        )
        self.files = BudgetDimension(
            name="files",
            hard_limit=config.max_files,
            warn=int(config.max_files * config.warn_ratio),
            critical=config.max_files,
        )
        self.by_kind: dict[ContentKind, KindUsage] = {k: KindUsage() for k in ContentKind}
        self.calls = CallWindow(
            config.calls_per_minute,
            headroom=config.rate_limit_headroom,
            clock=clock,
            sleep=sleep,
        )
        self.warnings: list[str] = []
        self.errors: list[str] = []
        self.stop_reason: str | None = None
        self._flags = _Flags()

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def rejection_reason(self, estimate: SizeEstimate) -> str | None:
        """Why *estimate* cannot be admitted, or None if every dimension fits."""
        if self.bytes.would_exceed(estimate.bytes):
            return (
                f"Would exceed byte budget ({self.bytes.used + estimate.bytes} > "
                f"{self.bytes.hard_limit})"
            )
        if self.tokens.would_exceed(estimate.tokens):
            return (
                f"Would exceed token budget ({self.tokens.used + estimate.tokens} > "
                f"{self.tokens.hard_limit})"
            )
        if (
            self.config.loading_mode != LoadingMode.LENIENT
            and self.files.would_exceed(estimate.files)
        ):
            return f"Would exceed file budget ({self.files.hard_limit} files)"

        ceiling = self.config.kind_limit(estimate.kind).total_bytes
        if ceiling is not None and self.by_kind[estimate.kind].bytes + estimate.bytes > ceiling:
            return f"Would exceed {estimate.kind} byte ceiling of {ceiling} bytes"
        return None

    def can_accommodate(self, estimate: SizeEstimate) -> bool:
        return self.rejection_reason(estimate) is None

    def should_continue_loading(self) -> bool:
        if self.bytes.used >= self.bytes.critical:
            return self._stop("critical byte limit reached")
        if self.tokens.used >= self.tokens.critical:
            return self._stop("critical token limit reached")

        if self.files.used >= self.files.hard_limit:
            self._warn_once("files", "Max file count reached")
            if self.config.loading_mode != LoadingMode.LENIENT:
                return self._stop("max file count reached")

        warn_hit = self.bytes.used >= self.bytes.warn or self.tokens.used >= self.tokens.warn
        stop_on_warning = (
            self.config.stop_on_warning or self.config.loading_mode == LoadingMode.STRICT
        )
        if warn_hit and stop_on_warning:
            return self._stop("warning threshold reached")

        if self.config.stop_on_critical and self._flags.kind_ceiling_hit:
            kinds = ", ".join(sorted(self._flags.kind_ceiling_hit))
            return self._stop(f"per-kind byte ceiling reached ({kinds})")
        return True

    def remaining_budget(self) -> dict[str, int]:
        return {
            "bytes": self.bytes.remaining,
            "tokens": self.tokens.remaining,
            "files": self.files.remaining,
        }

    def image_slots_left(self) -> int:
        return self.config.max_images - self.by_kind[ContentKind.IMAGE].count

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def record(self, item: LoadedItem) -> None:
        """Account for one accepted item. Call exactly once per accepted item."""
        if item.skipped:
            raise ValueError(f"Skipped item cannot be recorded: {item.path}")

        self.bytes.used += item.size_bytes
        self.tokens.used += item.token_estimate
        self.files.used += 1
        usage = self.by_kind[item.kind]
        usage.count += 1
        usage.bytes += item.size_bytes

        for dim in (self.bytes, self.tokens):
            if dim.used >= dim.critical:
                self._error_once(dim.name, f"Critical {dim.name} threshold reached")
            elif dim.used >= dim.warn:
                self._warn_once(
                    dim.name,
                    f"{dim.name.capitalize()} usage at {dim.percent}% of limit",
                )

        ceiling = self.config.kind_limit(item.kind).total_bytes
        if ceiling is not None and usage.bytes >= ceiling:
            self._flags.kind_ceiling_hit.add(item.kind)
            self._warn_once(f"kind:{item.kind}", f"{item.kind} byte ceiling reached")

    # ------------------------------------------------------------------
    # Reporting helpers
    # ------------------------------------------------------------------

    def percent_of_limits(self) -> dict[str, float]:
        return {
            "bytes": self.bytes.percent,
            "tokens": self.tokens.percent,
            "files": self.files.percent,
        }

    def health(self) -> tuple[str, str]:
        if self.errors:
            return "error", "Critical limits reached during loading"
        if self.tokens.used > self.tokens.warn:
            return "warning", "Approaching token limit"
        if self.bytes.used > self.bytes.warn:
            return "warning", "High byte usage"
        return "healthy", "All budgets within normal parameters"

    def _stop(self, reason: str) -> bool:
        if self.stop_reason is None:
            self.stop_reason = reason
            logger.warning("budget_stop", reason=reason, **self.remaining_budget())
        return False

    def _warn_once(self, key: str, message: str) -> None:
        if key in self._flags.warned:
            return
        self._flags.warned.add(key)
        self.warnings.append(message)
        logger.warning("budget_warning", message=message)

    def _error_once(self, key: str, message: str) -> None:
        if f"error:{key}" in self._flags.warned:
            return
        self._flags.warned.add(f"error:{key}")
        self.errors.append(message)
        logger.warning("budget_critical", message=message)
