import pytest

from repair_agent.agent.retry import RetryPolicy
from repair_agent.config import AgentConfig
from repair_agent.errors import RateLimitedError, RetryExhaustedError, is_rate_limit_error


class _RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class _Flaky:
    def __init__(self, failures: list[Exception]) -> None:
        self.failures = list(failures)
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


@pytest.mark.asyncio
async def test_rate_limits_are_retried_with_exponential_backoff() -> None:
    sleep = _RecordingSleep()
    policy = RetryPolicy.from_config(AgentConfig(), sleep=sleep)
    call = _Flaky([RateLimitedError("429"), RuntimeError("429 Resource exhausted")])

    assert await policy.call(call) == "ok"
    assert call.calls == 3
    assert sleep.delays == [15.0, 30.0]


@pytest.mark.asyncio
async def test_exhausted_attempts_raise_retry_exhausted() -> None:
    sleep = _RecordingSleep()
    policy = RetryPolicy(max_attempts=3, initial_seconds=1.0, sleep=sleep)
    call = _Flaky([RateLimitedError("429")] * 5)

    with pytest.raises(RetryExhaustedError) as excinfo:
        await policy.call(call)

    assert call.calls == 3
    assert excinfo.value.attempts == 3
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_other_errors_are_not_retried() -> None:
    sleep = _RecordingSleep()
    policy = RetryPolicy(sleep=sleep)
    call = _Flaky([ValueError("bad schema")])

    with pytest.raises(ValueError):
        await policy.call(call)

    assert call.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_backoff_is_capped() -> None:
    sleep = _RecordingSleep()
    policy = RetryPolicy(max_attempts=3, initial_seconds=50.0, max_seconds=60.0, sleep=sleep)

    assert await policy.call(_Flaky([RateLimitedError("429")] * 2)) == "ok"
    assert sleep.delays == [50.0, 60.0]


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (RateLimitedError("slow down"), True),
        (RuntimeError("HTTP 429 Too Many Requests"), True),
        (RuntimeError("RESOURCE EXHAUSTED: quota"), True),
        (RuntimeError("connection reset"), False),
    ],
)
def test_rate_limit_detection(exc: Exception, expected: bool) -> None:
    assert is_rate_limit_error(exc) is expected
