#!/usr/bin/env python3
"""
Concurrency scheduler.

Drives validated subjects through probe -> classify under a hard ceiling of
C concurrently executing attempts:

- One asyncio.Semaphore(C) owned here is the only gate to the probe. A slot
  is held from admission until the attempt's result is emitted or the task
  is handed back for retry.
- Pending tasks wait in a FIFO admission deque. Input is pulled lazily and
  at most `window` subjects wait at once; retries re-enter at the tail after
  a backoff and never hold a slot while waiting.
- A run deadline stops admission. In-flight probes finish at their own
  timeout; everything still queued or waiting to retry finalizes INACTIVE.

Each ProbeTask moves through Pending -> Probing -> {Retry -> Pending | Final}
and `attempt` is the only counter that changes.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterable, Iterable, Optional, Union

from .aggregator import ResultAggregator
from .classifier import CheckResult, FailureKind, Final, Status, classify, invalid_result
from .config import EngineConfig
from .metrics import ProbeMetrics
from .probe import (
    DnsFailure,
    DnsUnresolved,
    Prober,
    ProbeOutcome,
    TransportError,
    TransportFailure,
)
from .validator import Subject


logger = logging.getLogger(__name__)

DEADLINE_REASON = "run deadline exceeded"


class TaskState(Enum):
    PENDING = "pending"
    PROBING = "probing"
    RETRY = "retry"
    FINAL = "final"


@dataclass
class ProbeTask:
    """One subject's unit of work, owned by the scheduler until final."""
    subject: Subject
    deadline: Optional[float] = None  # loop time; None = no run deadline
    attempt: int = 0
    state: TaskState = TaskState.PENDING
    last_reason: Optional[str] = None

    def _move(self, expected: TaskState, new: TaskState):
        if self.state is not expected:
            raise RuntimeError(
                f"{self.subject.raw!r}: cannot move {self.state.value} -> {new.value}"
            )
        self.state = new

    def begin_attempt(self):
        self._move(TaskState.PENDING, TaskState.PROBING)
        self.attempt += 1

    def mark_retry(self, reason: str):
        self._move(TaskState.PROBING, TaskState.RETRY)
        self.last_reason = reason

    def requeue(self):
        self._move(TaskState.RETRY, TaskState.PENDING)

    def finish(self, result: CheckResult) -> CheckResult:
        if self.state is TaskState.FINAL:
            raise RuntimeError(f"{self.subject.raw!r}: result already emitted")
        self.state = TaskState.FINAL
        return result

    def expire(self) -> CheckResult:
        """Result for a task the run deadline cut off."""
        reason = DEADLINE_REASON
        if self.last_reason:
            reason = f"{DEADLINE_REASON} (last: {self.last_reason})"
        return CheckResult(
            subject=self.subject,
            status=Status.INACTIVE,
            attempts=self.attempt,
            reason=reason,
            failure=FailureKind.RESOURCE_EXHAUSTION,
        )


async def _iterate(source: Union[Iterable, AsyncIterable]):
    if hasattr(source, "__aiter__"):
        async for item in source:
            yield item
    else:
        for item in source:
            yield item


class Scheduler:
    """Runs one batch of subjects to completion under a concurrency ceiling."""

    def __init__(
        self,
        prober: Prober,
        config: EngineConfig,
        results: ResultAggregator,
        metrics: Optional[ProbeMetrics] = None,
    ):
        self.prober = prober
        self.config = config
        self.results = results
        self.metrics = metrics or ProbeMetrics()

        self._slots = asyncio.Semaphore(config.concurrency)
        self._changed = asyncio.Condition()
        self._pending: deque[ProbeTask] = deque()
        self._outstanding = 0  # admitted, not yet emitted
        self._input_done = False
        self._active: set[asyncio.Task] = set()
        self._deadline: Optional[float] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._main_tasks: tuple[asyncio.Task, ...] = ()
        self._failure: Optional[BaseException] = None
        self._ran = False

    def _now(self) -> float:
        return self._loop.time()

    def _expired(self) -> bool:
        return self._deadline is not None and self._now() >= self._deadline

    async def _admit(self, task: ProbeTask):
        async with self._changed:
            await self._changed.wait_for(lambda: len(self._pending) < self.config.window)
            self._outstanding += 1
            self._pending.append(task)
            self._changed.notify_all()

    async def _requeue(self, task: ProbeTask, delay: float):
        if delay > 0:
            await asyncio.sleep(delay)
        async with self._changed:
            task.requeue()
            self._pending.append(task)
            self._changed.notify_all()

    async def _next_task(self) -> Optional[ProbeTask]:
        async with self._changed:
            await self._changed.wait_for(
                lambda: self._pending or (self._input_done and self._outstanding == 0)
            )
            if not self._pending:
                return None
            task = self._pending.popleft()
            self._changed.notify_all()
            return task

    async def _emit(self, task: ProbeTask, result: CheckResult):
        await self.results.put(task.finish(result))
        async with self._changed:
            self._outstanding -= 1
            self._changed.notify_all()

    def _spawn(self, coro) -> asyncio.Task:
        t = asyncio.create_task(coro)
        self._active.add(t)
        t.add_done_callback(self._task_done)
        return t

    def _task_done(self, t: asyncio.Task):
        self._active.discard(t)
        if t.cancelled() or t.exception() is None:
            return
        # A crashed attempt would leave its subject outstanding forever
        if self._failure is None:
            self._failure = t.exception()
            for main in self._main_tasks:
                main.cancel()

    async def run(self, subjects: Union[Iterable[Subject], AsyncIterable[Subject]]):
        """
        Probe every subject and emit exactly one result per subject.

        Invalid subjects are emitted directly and never reach the probe.
        Returns when every result has been handed to the aggregator.
        """
        if self._ran:
            raise RuntimeError("a Scheduler runs exactly once")
        self._ran = True

        self._loop = asyncio.get_running_loop()
        if self.config.deadline is not None:
            self._deadline = self._now() + self.config.deadline

        logger.info(
            "Scheduler starting: concurrency=%d timeout=%.1fs max_attempts=%d deadline=%s",
            self.config.concurrency, self.config.probe_timeout,
            self.config.max_attempts, self.config.deadline,
        )

        feeder = asyncio.create_task(self._feed(subjects))
        dispatcher = asyncio.create_task(self._dispatch())
        self._main_tasks = (feeder, dispatcher)
        try:
            await asyncio.gather(feeder, dispatcher)
            if self._active:
                await asyncio.gather(*self._active)
        except asyncio.CancelledError:
            if self._failure is None:
                raise
            raise self._failure
        finally:
            leftovers = [t for t in (feeder, dispatcher, *self._active) if not t.done()]
            for t in leftovers:
                t.cancel()
            if leftovers:
                await asyncio.gather(*leftovers, return_exceptions=True)

        logger.info("Scheduler finished: %s", self.metrics)

    async def _feed(self, subjects):
        try:
            async for subject in _iterate(subjects):
                if not subject.is_valid:
                    await self.results.put(invalid_result(subject))
                    continue
                await self._admit(ProbeTask(subject, deadline=self._deadline))
        finally:
            async with self._changed:
                self._input_done = True
                self._changed.notify_all()

    async def _acquire_slot(self) -> bool:
        """Take a slot; give up (False) once the run deadline passes."""
        if self._deadline is None:
            await self._slots.acquire()
            return True
        remaining = self._deadline - self._now()
        if remaining <= 0:
            return False

        waiter = asyncio.ensure_future(self._slots.acquire())
        try:
            done, _ = await asyncio.wait({waiter}, timeout=remaining)
        except asyncio.CancelledError:
            waiter.cancel()
            raise
        if done:
            return True

        waiter.cancel()
        try:
            await waiter
        except asyncio.CancelledError:
            return False
        # Acquired as the deadline passed
        self._slots.release()
        return False

    async def _dispatch(self):
        deadline_logged = False
        while True:
            task = await self._next_task()
            if task is None:
                return

            if await self._acquire_slot():
                if not self._expired():
                    self._spawn(self._attempt(task))
                    continue
                self._slots.release()

            if not deadline_logged:
                logger.warning("Run deadline reached; finalizing queued subjects as INACTIVE")
                deadline_logged = True
            await self._emit(task, task.expire())

    async def _attempt(self, task: ProbeTask):
        try:
            task.begin_attempt()
            outcome = await self._probe_once(task.subject)
            decision = classify(
                task.subject, outcome, task.attempt,
                self.config.max_attempts, self.config.lenient_http,
            )

            if isinstance(decision, Final):
                await self._emit(task, decision.result)
                return

            task.mark_retry(decision.reason)
            delay = self.config.retry_backoff * task.attempt
            if task.deadline is not None and self._now() + delay >= task.deadline:
                await self._emit(task, task.expire())
                return

            logger.debug(
                "Retrying %s after %s (attempt %d/%d, backoff %.2fs)",
                task.subject.raw, decision.reason, task.attempt,
                self.config.max_attempts, delay,
            )
            self._spawn(self._requeue(task, delay))
        finally:
            self._slots.release()

    async def _probe_once(self, subject: Subject) -> ProbeOutcome:
        self.metrics.probe_started()
        start = time.perf_counter()
        outcome: Optional[ProbeOutcome] = None
        try:
            outcome = await self.prober.probe(subject, self.config.probe_timeout)
        except Exception as e:
            # A single subject must never abort the run
            logger.warning("Probe for %s raised unexpectedly", subject.raw, exc_info=True)
            outcome = TransportError(TransportFailure.ERROR, f"{type(e).__name__}: {e}")
        finally:
            latency_ms = (time.perf_counter() - start) * 1000
            self.metrics.probe_finished(latency_ms, _is_timeout(outcome))
        logger.debug("Probe %s -> %s", subject.raw, outcome)
        return outcome


def _is_timeout(outcome: Optional[ProbeOutcome]) -> bool:
    if isinstance(outcome, TransportError):
        return outcome.failure is TransportFailure.TIMEOUT
    if isinstance(outcome, DnsUnresolved):
        return outcome.failure is DnsFailure.TIMEOUT
    return False
