"""Exception taxonomy for the repair agent."""

from __future__ import annotations


class RepairAgentError(Exception):
    """Base class for agent errors."""


class RateLimitedError(RepairAgentError):
    """The completion service reported a transient capacity error."""


class RetryExhaustedError(RepairAgentError):
    """Rate-limit retries ran out before the call succeeded."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Rate limited after {attempts} attempts")
        self.attempts = attempts


class CriticalToolFailure(RepairAgentError):
    """A primary tool failed and the request cannot produce a diagnosis."""

    def __init__(self, tool_name: str, cause: BaseException) -> None:
        super().__init__(f"{tool_name} failed: {cause}")
        self.tool_name = tool_name
        self.cause = cause


def is_rate_limit_error(exc: BaseException) -> bool:
    """Detect rate-limit signals from provider exceptions."""
    if isinstance(exc, RateLimitedError):
        return True
    status = getattr(exc, "status_code", None) or getattr(exc, "code", None)
    if status == 429:
        return True
    message = str(exc).lower()
    return "429" in message or "resource exhausted" in message or "rate limit" in message
