"""
Token budget tracking for tokens-per-minute limits.

The window is a fixed bucket that snaps back to zero the first time any call observes
that `window_ms` has elapsed since it opened. This keeps O(1) state and matches how
providers publish fixed per-minute quotas.

All reads and writes of the counters go through one lock: every concurrent job both
checks the budget and later records its usage, and interleaving those without a single
mutual-exclusion point is how the budget gets overshot.
"""

from __future__ import annotations
from collections.abc import Callable
import asyncio
import logging
import threading
import time

from mapreducer.domain.exceptions.exceptions import BudgetTimeoutError

logger = logging.getLogger(__name__)


class TokenBudgetTracker:
    """
    Sliding reset window counter enforcing a tokens-per-window ceiling.

    `use` never rejects or clamps; a call that reports more tokens than were estimated
    can push the window past capacity until it resets.

    Reservations (`try_reserve` / `settle` / `release`) cover requests that were admitted
    but have not reported usage yet, so concurrent admissions cannot all see the same free
    budget. With no reservations outstanding, `can_use` and `remaining` are plain
    `used + estimate <= capacity` checks.
    """

    def __init__(
        self,
        capacity_tokens: int,
        window_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity_tokens <= 0:
            raise ValueError("capacity_tokens must be greater than 0")
        if window_ms <= 0:
            raise ValueError("window_ms must be greater than 0")
        self.capacity_tokens: int = capacity_tokens
        self.window_ms: int = window_ms
        self._clock: Callable[[], float] = clock
        self._lock = threading.Lock()
        self._used_tokens: int = 0
        self._reserved_tokens: int = 0
        self._window_start: float = clock()
        # Wakes budget waiters early when usage is settled or released
        self._changed: asyncio.Event | None = None

    # Public API
    def can_use(self, estimate: int) -> bool:
        with self._lock:
            self._reset_if_needed()
            return self._fits(estimate)

    def use(self, amount: int) -> None:
        with self._lock:
            self._reset_if_needed()
            self._used_tokens += amount

    def remaining(self) -> int:
        with self._lock:
            self._reset_if_needed()
            return max(
                0, self.capacity_tokens - self._used_tokens - self._reserved_tokens
            )

    @property
    def used_tokens(self) -> int:
        with self._lock:
            self._reset_if_needed()
            return self._used_tokens

    @property
    def reserved_tokens(self) -> int:
        with self._lock:
            return self._reserved_tokens

    # Reservations
    def try_reserve(self, estimate: int) -> bool:
        """
        Atomically check the budget and, if it fits, hold `estimate` for an in-flight call.
        """
        with self._lock:
            self._reset_if_needed()
            if not self._fits(estimate):
                return False
            self._reserved_tokens += estimate
            return True

    def settle(self, estimate: int, actual: int | None) -> int:
        """
        Drop a reservation and record what the call actually used.
        Falls back to the estimate when the provider reported no usage.
        Returns the amount recorded.
        """
        recorded = estimate if actual is None else actual
        with self._lock:
            self._reset_if_needed()
            self._reserved_tokens = max(0, self._reserved_tokens - estimate)
            self._used_tokens += recorded
        self._notify()
        return recorded

    def release(self, estimate: int) -> None:
        """
        Drop a reservation without recording usage (the call failed).
        """
        with self._lock:
            self._reserved_tokens = max(0, self._reserved_tokens - estimate)
        self._notify()

    async def wait_for_budget(
        self,
        estimate: int,
        timeout_ms: int,
        poll_interval_ms: int = 3000,
    ) -> None:
        """
        Suspend until `estimate` tokens are reserved for the caller.

        Wakes on the poll interval, on window rollover, or when another call settles or
        releases its reservation, whichever comes first. Raises BudgetTimeoutError once
        `timeout_ms` has elapsed. Cancelling the waiting task cancels the wait.
        """
        deadline = self._clock() + timeout_ms / 1000
        while not self.try_reserve(estimate):
            now = self._clock()
            if now >= deadline:
                remaining = self.remaining()
                logger.error(
                    f"Token budget timeout: need {estimate}, have {remaining}"
                )
                raise BudgetTimeoutError(estimate, remaining, timeout_ms)
            logger.info(
                f"Waiting for token budget... (need {estimate}, have {self.remaining()})"
            )
            delay = min(
                poll_interval_ms / 1000,
                self._seconds_until_reset(),
                deadline - now,
            )
            await self._wait_for_change(max(delay, 0.0))

    # Internals
    def _fits(self, estimate: int) -> bool:
        return (
            self._used_tokens + self._reserved_tokens + estimate
            <= self.capacity_tokens
        )

    def _reset_if_needed(self) -> None:
        # Caller holds the lock
        now = self._clock()
        if (now - self._window_start) * 1000 >= self.window_ms:
            self._used_tokens = 0
            self._window_start = now

    def _seconds_until_reset(self) -> float:
        with self._lock:
            elapsed = self._clock() - self._window_start
        return max(0.0, self.window_ms / 1000 - elapsed)

    def _notify(self) -> None:
        event = self._changed
        if event is not None:
            event.set()

    async def _wait_for_change(self, delay: float) -> None:
        if self._changed is None:
            self._changed = asyncio.Event()
        event = self._changed
        event.clear()
        try:
            await asyncio.wait_for(event.wait(), timeout=delay)
        except TimeoutError:
            pass

    def __repr__(self) -> str:
        return (
            f"TokenBudgetTracker(capacity_tokens={self.capacity_tokens}, "
            f"window_ms={self.window_ms}, used={self._used_tokens}, "
            f"reserved={self._reserved_tokens})"
        )
