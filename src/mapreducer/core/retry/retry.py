"""
Classified retries with backoff.

- 429 (rate limited): wait the provider's retry-after if given, else exponential backoff.
- >= 500 (server error): exponential backoff.
- anything else: fatal, re-raised immediately.

This is the only place a failure is turned into a delayed retry; every other component
treats a failure as terminal for that call.
"""

from __future__ import annotations
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar
import asyncio
import logging

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)

from mapreducer.domain.exceptions.exceptions import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 7
BASE_DELAY_MS = 1000
MAX_BACKOFF_MS = 8000


class FailureKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    FATAL = "fatal"


@dataclass(frozen=True)
class Attempt:
    """A failed attempt and what the policy decided to do about it."""

    number: int
    kind: FailureKind
    delay_ms: int | None
    error: BaseException


def error_status(error: BaseException) -> int | None:
    """
    Pull an HTTP-like status code off an error, wherever the client put it.
    """
    for attr in ("status", "status_code"):
        status = getattr(error, attr, None)
        if isinstance(status, int):
            return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def retry_after_ms(error: BaseException) -> int | None:
    """
    Provider-supplied retry hint in milliseconds, or None if absent or unparseable.
    """
    seconds: Any = getattr(error, "retry_after_seconds", None)
    if seconds is None:
        response = getattr(error, "response", None)
        headers = getattr(response, "headers", None)
        if headers is not None:
            seconds = headers.get("retry-after")
    if seconds is None:
        return None
    try:
        value = float(seconds)
    except (TypeError, ValueError):
        return None
    if value < 0:
        return None
    return int(value * 1000)


def classify(error: BaseException) -> FailureKind:
    status = error_status(error)
    if status == 429:
        return FailureKind.RATE_LIMITED
    if status is not None and status >= 500:
        return FailureKind.SERVER_ERROR
    return FailureKind.FATAL


def backoff_delay_ms(attempt: int) -> int:
    """Exponential backoff for the n-th failed attempt (1-based), capped at 8 seconds."""
    return min(2**attempt * BASE_DELAY_MS, MAX_BACKOFF_MS)


def next_delay_ms(attempt: int, error: BaseException) -> Attempt:
    kind = classify(error)
    if kind is FailureKind.RATE_LIMITED:
        hinted = retry_after_ms(error)
        delay = hinted if hinted is not None else backoff_delay_ms(attempt)
    elif kind is FailureKind.SERVER_ERROR:
        delay = backoff_delay_ms(attempt)
    else:
        delay = None
    return Attempt(number=attempt, kind=kind, delay_ms=delay, error=error)


def is_retryable(error: BaseException) -> bool:
    return classify(error) is not FailureKind.FATAL


def wait_for_failure(retry_state: RetryCallState) -> float:
    """
    tenacity wait strategy: the provider hint for 429s, else capped exponential backoff.
    Returns seconds.
    """
    error = retry_state.outcome.exception()
    record = next_delay_ms(retry_state.attempt_number, error)
    delay_ms = record.delay_ms if record.delay_ms is not None else 0
    return delay_ms / 1000


def _log_before_sleep(total: int) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        sleep_ms = int(retry_state.next_action.sleep * 1000)
        logger.warning(
            f"{error_status(error)} received ({classify(error).value}), "
            f"retry {retry_state.attempt_number}/{total} in {sleep_ms} ms"
        )

    return log


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Run `fn` up to `max_retries + 1` times.

    Args:
        fn: Zero-argument coroutine factory. Called afresh for every attempt.
        max_retries: Re-invocations allowed after the first failure.
        sleep: Awaitable sleep taking seconds; injectable for tests.

    Raises:
        The original error for non-retryable failures, or RetryExhaustedError
        (chained from the last error) once every attempt has failed.
    """
    total = max_retries + 1
    retrying = AsyncRetrying(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(total),
        wait=wait_for_failure,
        sleep=sleep,
        before_sleep=_log_before_sleep(total),
    )
    try:
        return await retrying(fn)
    except RetryError as e:
        last_error = e.last_attempt.exception()
        attempts = e.last_attempt.attempt_number
        logger.error(
            f"Giving up after {attempts} attempts ({classify(last_error).value}): {last_error}"
        )
        raise RetryExhaustedError(attempts, last_error) from last_error
