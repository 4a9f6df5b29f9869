"""Exception hierarchy shared by the loader, the judge and the recovery layer."""

from __future__ import annotations


class PromptExpertError(Exception):
    """Base class for all errors raised by this package."""


class InvalidReferenceError(PromptExpertError, ValueError):
    """A path string does not match ``[owner/repo:]path[@version]``."""


class ConfigurationError(PromptExpertError):
    """Upfront validation failed; the run cannot start."""


# ---------------------------------------------------------------------------
# Remote content API
# ---------------------------------------------------------------------------


class ContentError(PromptExpertError):
    """Failure talking to the remote content API."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ContentNotFoundError(ContentError):
    pass


class ContentPermissionError(ContentError):
    pass


class ContentRateLimitError(ContentError):
    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status=status)
        self.retry_after = retry_after


class ContentUnavailableError(ContentError):
    """5xx responses, timeouts and connection failures."""


# ---------------------------------------------------------------------------
# Judgment service
# ---------------------------------------------------------------------------


class JudgeError(PromptExpertError):
    """Failure calling the external judgment service."""


class JudgeTimeoutError(JudgeError):
    pass


class JudgeUnavailableError(JudgeError):
    """Overloaded, rate limited or otherwise unreachable judge."""


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------


class RecoveryExhaustedError(PromptExpertError):
    """A retryable operation kept failing until its attempt budget ran out."""

    def __init__(
        self,
        operation: str,
        *,
        attempts: int,
        error_class: str,
        last_error: BaseException,
    ) -> None:
        super().__init__(
            f"{operation} failed after {attempts} attempt(s) "
            f"({error_class}): {last_error}"
        )
        self.operation = operation
        self.attempts = attempts
        self.error_class = error_class
        self.last_error = last_error
