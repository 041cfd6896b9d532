from types import SimpleNamespace
import asyncio
import sys

import pytest
from tenacity import RetryCallState

from mapreducer.core.retry.retry import (
    FailureKind,
    backoff_delay_ms,
    classify,
    is_retryable,
    retry_after_ms,
    wait_for_failure,
    with_retry,
)
from mapreducer.domain.exceptions.exceptions import ProviderError, RetryExhaustedError


class FakeSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def flaky(errors: list[BaseException], result: str = "ok"):
    """Coroutine factory raising each error in turn, then returning result."""
    calls = {"count": 0}

    async def fn():
        calls["count"] += 1
        if errors:
            raise errors.pop(0)
        return result

    return fn, calls


# Classification
# ---


def test_classify_by_status():
    assert classify(ProviderError(429)) is FailureKind.RATE_LIMITED
    assert classify(ProviderError(500)) is FailureKind.SERVER_ERROR
    assert classify(ProviderError(503)) is FailureKind.SERVER_ERROR
    assert classify(ProviderError(400)) is FailureKind.FATAL
    assert classify(ValueError("boom")) is FailureKind.FATAL


def test_classify_reads_response_status_code():
    error = Exception("upstream")
    error.response = SimpleNamespace(status_code=502, headers={})
    assert classify(error) is FailureKind.SERVER_ERROR


def test_retry_after_from_attribute_and_header():
    assert retry_after_ms(ProviderError(429, retry_after_seconds=1.5)) == 1500

    error = Exception("slow down")
    error.response = SimpleNamespace(status_code=429, headers={"retry-after": "3"})
    assert retry_after_ms(error) == 3000


def test_retry_after_ignores_garbage():
    error = Exception("slow down")
    error.response = SimpleNamespace(status_code=429, headers={"retry-after": "soon"})
    assert retry_after_ms(error) is None
    assert retry_after_ms(ProviderError(429)) is None


def test_backoff_is_exponential_and_capped():
    assert [backoff_delay_ms(n) for n in range(1, 6)] == [2000, 4000, 8000, 8000, 8000]


# with_retry
# ---


@pytest.mark.asyncio
async def test_rate_limited_k_times_then_succeeds():
    sleep = FakeSleep()
    fn, calls = flaky([ProviderError(429), ProviderError(429)])
    result = await with_retry(fn, max_retries=7, sleep=sleep)
    assert result == "ok"
    assert calls["count"] == 3
    assert sleep.delays == [2.0, 4.0]


@pytest.mark.asyncio
async def test_rate_limited_uses_provider_hint():
    sleep = FakeSleep()
    fn, calls = flaky([ProviderError(429, retry_after_seconds=0.25)])
    assert await with_retry(fn, sleep=sleep) == "ok"
    assert sleep.delays == [0.25]


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    sleep = FakeSleep()
    error = ProviderError(400, "bad request")
    fn, calls = flaky([error])
    with pytest.raises(ProviderError) as excinfo:
        await with_retry(fn, sleep=sleep)
    assert excinfo.value is error
    assert calls["count"] == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_server_errors_exhaust_retries():
    sleep = FakeSleep()
    fn, calls = flaky([ProviderError(500) for _ in range(10)])
    with pytest.raises(RetryExhaustedError) as excinfo:
        await with_retry(fn, max_retries=3, sleep=sleep)
    assert calls["count"] == 4
    assert excinfo.value.attempts == 4
    assert excinfo.value.status == 500
    assert isinstance(excinfo.value.__cause__, ProviderError)
    assert sleep.delays == [2.0, 4.0, 8.0]


@pytest.mark.asyncio
async def test_zero_retries_runs_once():
    sleep = FakeSleep()
    fn, calls = flaky([ProviderError(503)])
    with pytest.raises(RetryExhaustedError):
        await with_retry(fn, max_retries=0, sleep=sleep)
    assert calls["count"] == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_default_allows_eight_invocations():
    sleep = FakeSleep()
    fn, calls = flaky([ProviderError(500) for _ in range(7)])
    assert await with_retry(fn, sleep=sleep) == "ok"
    assert calls["count"] == 8


@pytest.mark.asyncio
async def test_cancellation_is_not_retried():
    sleep = FakeSleep()
    fn, calls = flaky([asyncio.CancelledError()])
    with pytest.raises(asyncio.CancelledError):
        await with_retry(fn, sleep=sleep)
    assert calls["count"] == 1
    assert sleep.delays == []


# tenacity wait strategy
# ---


def failed_state(error: BaseException, attempt_number: int) -> RetryCallState:
    state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
    state.attempt_number = attempt_number
    try:
        raise error
    except BaseException:
        state.set_exception(sys.exc_info())
    return state


def test_wait_prefers_provider_hint_for_rate_limits():
    state = failed_state(ProviderError(429, retry_after_seconds=3), attempt_number=1)
    assert wait_for_failure(state) == 3.0


def test_wait_backs_off_for_server_errors():
    assert wait_for_failure(failed_state(ProviderError(502), attempt_number=2)) == 4.0
    assert wait_for_failure(failed_state(ProviderError(502), attempt_number=6)) == 8.0


def test_only_transient_errors_are_retryable():
    assert is_retryable(ProviderError(429))
    assert is_retryable(ProviderError(503))
    assert not is_retryable(ProviderError(404))
    assert not is_retryable(asyncio.CancelledError())
