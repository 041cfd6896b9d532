"""
Bounded-concurrency, interval-capped job queue.

Two caps apply at once:
- concurrency: at most `concurrency` jobs running at any moment;
- interval: at most `interval_cap` jobs *started* per `interval_ms` window.

Jobs start in FIFO order as soon as both caps have room. Submitting never fails for
capacity reasons; the returned future simply resolves later. All counters are touched
only from the event loop thread, so the loop is the single point of mutual exclusion.
"""

from __future__ import annotations
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar
import asyncio
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

Job = Callable[[], Awaitable[T]]


class JobQueue(Generic[T]):
    """
    Admission-controlled executor for async jobs.

    The queue does not retry. Callers compose retries around `submit` so that each
    attempt takes its own slot and backoff sleeps never hold one.
    """

    def __init__(self, concurrency: int, interval_ms: int, interval_cap: int):
        if concurrency <= 0:
            raise ValueError("concurrency must be greater than 0")
        if interval_ms <= 0:
            raise ValueError("interval_ms must be greater than 0")
        if interval_cap <= 0:
            raise ValueError("interval_cap must be greater than 0")
        self.concurrency: int = concurrency
        self.interval_ms: int = interval_ms
        self.interval_cap: int = interval_cap

        self._waiting: deque[tuple[Job, asyncio.Future]] = deque()
        self._running: dict[asyncio.Future, asyncio.Task] = {}
        self._interval_start: float | None = None
        self._started_in_interval: int = 0
        self._timer: asyncio.TimerHandle | None = None
        self._idle: asyncio.Event | None = None

    # Introspection
    @property
    def running(self) -> int:
        return len(self._running)

    @property
    def waiting(self) -> int:
        return sum(1 for _, future in self._waiting if not future.done())

    @property
    def started_in_interval(self) -> int:
        return self._started_in_interval

    # Public API
    def submit(self, job: Job) -> asyncio.Future:
        """
        Enqueue a job and return a future for its result.

        Cancelling the future drops the job if it is still waiting, or cancels the
        running task (the in-flight call is abandoned).
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        future.add_done_callback(self._on_future_done)
        self._waiting.append((job, future))
        self._pump()
        return future

    async def run(self, job: Job) -> Any:
        """Submit a job and wait for its result."""
        return await self.submit(job)

    async def join(self) -> None:
        """Wait until nothing is running or waiting."""
        if self._is_idle():
            return
        if self._idle is None:
            self._idle = asyncio.Event()
        self._idle.clear()
        await self._idle.wait()

    # Scheduling
    def _pump(self) -> None:
        loop = asyncio.get_running_loop()
        while self._waiting:
            job, future = self._waiting[0]
            if future.done():
                # Cancelled while waiting
                self._waiting.popleft()
                continue
            if len(self._running) >= self.concurrency:
                break
            now = loop.time()
            self._roll_interval(now)
            if self._started_in_interval >= self.interval_cap:
                self._schedule_rollover(now)
                break
            self._waiting.popleft()
            self._started_in_interval += 1
            task = loop.create_task(self._execute(job, future))
            self._running[future] = task
            logger.debug(
                f"Job started (running={len(self._running)}/{self.concurrency}, "
                f"interval={self._started_in_interval}/{self.interval_cap})"
            )
        self._check_idle()

    def _roll_interval(self, now: float) -> None:
        if (
            self._interval_start is None
            or (now - self._interval_start) * 1000 >= self.interval_ms
        ):
            self._interval_start = now
            self._started_in_interval = 0

    def _schedule_rollover(self, now: float) -> None:
        if self._timer is not None:
            return
        assert self._interval_start is not None
        delay = max(0.0, self._interval_start + self.interval_ms / 1000 - now)
        logger.info(
            f"Request cap of {self.interval_cap} per {self.interval_ms} ms reached, "
            f"pausing starts for {delay:.2f} s"
        )
        self._timer = asyncio.get_running_loop().call_later(delay, self._on_rollover)

    def _on_rollover(self) -> None:
        self._timer = None
        self._pump()

    async def _execute(self, job: Job, future: asyncio.Future) -> None:
        try:
            result = await job()
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._running.pop(future, None)
            self._pump()

    def _on_future_done(self, future: asyncio.Future) -> None:
        if not future.cancelled():
            return
        task = self._running.get(future)
        if task is not None and not task.done():
            logger.debug("Job cancelled while running, abandoning in-flight call")
            task.cancel()
        else:
            self._check_idle()

    def _is_idle(self) -> bool:
        return not self._running and self.waiting == 0

    def _check_idle(self) -> None:
        if self._idle is not None and self._is_idle():
            self._idle.set()

    def __repr__(self) -> str:
        return (
            f"JobQueue(concurrency={self.concurrency}, interval_ms={self.interval_ms}, "
            f"interval_cap={self.interval_cap}, running={self.running}, "
            f"waiting={self.waiting})"
        )
