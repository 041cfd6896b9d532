import asyncio
import time

import pytest

from mapreducer.core.budget.token_tracker import TokenBudgetTracker
from mapreducer.domain.exceptions.exceptions import BudgetTimeoutError


# Window accounting
# ---


def test_can_use_flips_exactly_at_capacity(clock):
    tracker = TokenBudgetTracker(1000, 60_000, clock=clock)
    tracker.use(400)
    assert tracker.can_use(600)
    assert not tracker.can_use(601)


def test_remaining_never_negative(clock):
    tracker = TokenBudgetTracker(100, 60_000, clock=clock)
    for amount in (40, 50, 30, 200):
        tracker.use(amount)
        assert tracker.remaining() >= 0
    assert tracker.remaining() == 0
    assert tracker.used_tokens == 320


def test_use_never_clamps_over_capacity(clock):
    tracker = TokenBudgetTracker(100, 60_000, clock=clock)
    tracker.use(150)
    assert tracker.used_tokens == 150
    assert not tracker.can_use(0)


def test_window_resets_after_duration(clock):
    tracker = TokenBudgetTracker(500, 60_000, clock=clock)
    tracker.use(500)
    assert tracker.remaining() == 0

    clock.advance_ms(59_000)
    assert tracker.remaining() == 0

    clock.advance_ms(1_000)
    assert tracker.remaining() == 500
    assert tracker.remaining() == 500


def test_window_reset_is_lazy_and_restarts_window(clock):
    tracker = TokenBudgetTracker(500, 1_000, clock=clock)
    tracker.use(300)
    clock.advance_ms(5_000)
    tracker.use(100)
    assert tracker.remaining() == 400
    clock.advance_ms(999)
    assert tracker.remaining() == 400


# Reservations
# ---


def test_reservations_count_against_budget(clock):
    tracker = TokenBudgetTracker(100, 60_000, clock=clock)
    assert tracker.try_reserve(60)
    assert not tracker.try_reserve(60)
    assert tracker.remaining() == 40
    assert tracker.reserved_tokens == 60


def test_settle_records_actual_usage(clock):
    tracker = TokenBudgetTracker(100, 60_000, clock=clock)
    tracker.try_reserve(60)
    recorded = tracker.settle(60, 25)
    assert recorded == 25
    assert tracker.reserved_tokens == 0
    assert tracker.used_tokens == 25


def test_settle_falls_back_to_estimate(clock):
    tracker = TokenBudgetTracker(100, 60_000, clock=clock)
    tracker.try_reserve(60)
    assert tracker.settle(60, None) == 60
    assert tracker.used_tokens == 60


def test_release_records_nothing(clock):
    tracker = TokenBudgetTracker(100, 60_000, clock=clock)
    tracker.try_reserve(60)
    tracker.release(60)
    assert tracker.used_tokens == 0
    assert tracker.remaining() == 100


def test_reservations_survive_window_reset(clock):
    tracker = TokenBudgetTracker(100, 1_000, clock=clock)
    tracker.try_reserve(70)
    clock.advance_ms(1_000)
    assert tracker.remaining() == 30


def test_rejects_non_positive_limits():
    with pytest.raises(ValueError):
        TokenBudgetTracker(0, 1000)
    with pytest.raises(ValueError):
        TokenBudgetTracker(10, 0)


# Waiting for budget
# ---


@pytest.mark.asyncio
async def test_wait_for_budget_returns_immediately_when_free():
    tracker = TokenBudgetTracker(100, 60_000)
    await tracker.wait_for_budget(50, timeout_ms=1_000)
    assert tracker.reserved_tokens == 50


@pytest.mark.asyncio
async def test_wait_for_budget_wakes_on_window_rollover():
    tracker = TokenBudgetTracker(100, 50)
    tracker.use(100)
    start = time.monotonic()
    await tracker.wait_for_budget(10, timeout_ms=2_000, poll_interval_ms=10_000)
    assert time.monotonic() - start < 1.0
    assert tracker.reserved_tokens == 10


@pytest.mark.asyncio
async def test_wait_for_budget_wakes_on_release():
    tracker = TokenBudgetTracker(100, 60_000)
    assert tracker.try_reserve(100)
    asyncio.get_running_loop().call_later(0.02, tracker.release, 100)
    start = time.monotonic()
    await tracker.wait_for_budget(40, timeout_ms=5_000, poll_interval_ms=10_000)
    assert time.monotonic() - start < 1.0


@pytest.mark.asyncio
async def test_wait_for_budget_times_out():
    tracker = TokenBudgetTracker(100, 60_000)
    tracker.use(100)
    with pytest.raises(BudgetTimeoutError) as excinfo:
        await tracker.wait_for_budget(10, timeout_ms=30, poll_interval_ms=5)
    assert excinfo.value.needed == 10
    assert excinfo.value.remaining == 0
    assert excinfo.value.timeout_ms == 30
    assert tracker.reserved_tokens == 0


@pytest.mark.asyncio
async def test_wait_for_budget_is_cancellable():
    tracker = TokenBudgetTracker(100, 60_000)
    tracker.use(100)
    task = asyncio.create_task(
        tracker.wait_for_budget(10, timeout_ms=60_000, poll_interval_ms=10)
    )
    await asyncio.sleep(0.02)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
