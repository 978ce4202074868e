#!/usr/bin/env python3
"""
Result aggregation.

Results flow through a bounded queue to the consumer. When the queue is full
the scheduler's emitting task waits while still holding its concurrency
slot, so a slow consumer throttles admission instead of growing memory.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from .classifier import CheckResult, Status


logger = logging.getLogger(__name__)

_DONE = object()


@dataclass
class RunStats:
    """Tallies over the results emitted so far."""
    total: int = 0
    active: int = 0
    inactive: int = 0
    invalid: int = 0
    attempts: int = 0
    retries: int = 0
    deadline_expired: int = 0
    reasons: dict = field(default_factory=dict)
    start_time: float = field(default_factory=time.perf_counter)
    end_time: Optional[float] = None

    def add(self, result: CheckResult):
        self.total += 1
        self.attempts += result.attempts
        self.retries += max(0, result.attempts - 1)
        if result.status is Status.ACTIVE:
            self.active += 1
        elif result.status is Status.INACTIVE:
            self.inactive += 1
        else:
            self.invalid += 1
        if result.reason and result.status is not Status.INVALID:
            self.reasons[result.reason] = self.reasons.get(result.reason, 0) + 1

    @property
    def duration(self) -> float:
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return end - self.start_time

    @property
    def throughput(self) -> float:
        return self.total / self.duration if self.duration > 0 else 0


class ResultAggregator:
    """Bounded hand-off between the scheduler and the consumer."""

    def __init__(self, maxsize: int):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.stats = RunStats()

    async def put(self, result: CheckResult):
        await self._queue.put(result)
        self.stats.add(result)

    async def finish(self):
        self.stats.end_time = time.perf_counter()
        await self._queue.put(_DONE)

    async def get(self):
        """Next result, or None once the producer has finished."""
        item = await self._queue.get()
        return None if item is _DONE else item

    def qsize(self) -> int:
        return self._queue.qsize()


class ResultStream:
    """
    Lazy, finite, non-restartable async sequence of CheckResult.

    The producing run starts on first iteration. Exceptions that abort the
    run (a failing input source, not a failing subject) are re-raised to
    the consumer after the results produced before them. Closing the stream
    early cancels the run and every in-flight probe.
    """

    def __init__(self, aggregator: ResultAggregator, produce: Callable[[], Awaitable[None]]):
        self._aggregator = aggregator
        self._produce = produce
        self._task: Optional[asyncio.Task] = None
        self._error: Optional[BaseException] = None
        self._exhausted = False

    @property
    def stats(self) -> RunStats:
        return self._aggregator.stats

    async def _run(self):
        try:
            await self._produce()
        except Exception as e:
            self._error = e
        await self._aggregator.finish()

    def __aiter__(self):
        return self

    async def __anext__(self) -> CheckResult:
        if self._exhausted:
            raise StopAsyncIteration
        if self._task is None:
            self._task = asyncio.create_task(self._run())

        result = await self._aggregator.get()
        if result is not None:
            return result

        self._exhausted = True
        await self._task
        if self._error is not None:
            error, self._error = self._error, None
            raise error
        raise StopAsyncIteration

    async def aclose(self):
        """Stop the run, cancelling in-flight probes."""
        self._exhausted = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                logger.debug("Result stream closed before the run finished")

    async def collect(self) -> list[CheckResult]:
        return [result async for result in self]

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False
