"""Injectable retry policy for rate-limited completion calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from repair_agent.config import AgentConfig
from repair_agent.errors import RetryExhaustedError, is_rate_limit_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Bounded exponential backoff around one awaitable call.

    Only rate-limit errors are retried; anything else propagates on the first
    attempt. `sleep` is injectable so tests can run without real delays.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        initial_seconds: float = 15.0,
        max_seconds: float = 60.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.max_attempts = max_attempts
        self.initial_seconds = initial_seconds
        self.max_seconds = max_seconds
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: AgentConfig,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            initial_seconds=config.backoff_initial_seconds,
            max_seconds=config.backoff_max_seconds,
            sleep=sleep,
        )

    async def call(self, fn: Callable[[], Awaitable[T]], *, label: str = "completion") -> T:
        def _log_retry(state: RetryCallState) -> None:
            delay = state.next_action.sleep if state.next_action else 0.0
            logger.warning(
                "[%s] Rate limited (attempt %d/%d), retrying in %.1fs",
                label,
                state.attempt_number,
                self.max_attempts,
                delay,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.initial_seconds, max=self.max_seconds),
            retry=retry_if_exception(is_rate_limit_error),
            sleep=self._sleep,
            before_sleep=_log_retry,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    result = await fn()
        except RetryError as exc:
            raise RetryExhaustedError(self.max_attempts) from exc.last_attempt.exception()
        return result
