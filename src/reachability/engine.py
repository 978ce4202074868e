#!/usr/bin/env python3
"""
Availability checking engine.

Wires the pieces together:

    raw strings -> validate -> Scheduler -> probe -> classify -> ResultStream

Usage:
    engine = AvailabilityEngine(EngineConfig(concurrency=1000))
    async with engine.check(subjects) as stream:
        async for result in stream:
            print(result.raw, result.status.value)
"""

import asyncio
import logging
from typing import AsyncIterable, Callable, Iterable, Optional, Union

from .aggregator import ResultAggregator, ResultStream
from .classifier import CheckResult
from .config import EngineConfig
from .metrics import ProbeMetrics
from .probe import NetworkProbe, Prober
from .scheduler import Scheduler
from .validator import validate


logger = logging.getLogger(__name__)

Subjects = Union[Iterable[str], AsyncIterable[str]]
ProberFactory = Callable[[EngineConfig], Prober]


class AvailabilityEngine:
    """Classifies domains and URLs as ACTIVE, INACTIVE or INVALID at scale."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        prober_factory: ProberFactory = NetworkProbe,
    ):
        self.config = (config or EngineConfig()).validate()
        self.prober_factory = prober_factory
        self.last_metrics: Optional[ProbeMetrics] = None

    async def _validated(self, raw_subjects: Subjects):
        schemes = self.config.allowed_schemes
        if hasattr(raw_subjects, "__aiter__"):
            async for raw in raw_subjects:
                yield validate(raw, schemes)
        else:
            for raw in raw_subjects:
                yield validate(raw, schemes)

    def check(self, raw_subjects: Subjects) -> ResultStream:
        """
        Start checking subjects; results arrive in completion order.

        Every input yields exactly one CheckResult. The returned stream is
        single-use; the run begins when iteration starts.
        """
        aggregator = ResultAggregator(self.config.result_buffer)
        metrics = ProbeMetrics()
        self.last_metrics = metrics

        async def produce():
            prober = self.prober_factory(self.config)
            try:
                scheduler = Scheduler(prober, self.config, aggregator, metrics)
                await scheduler.run(self._validated(raw_subjects))
            finally:
                await prober.aclose()
            stats = aggregator.stats
            logger.info(
                "Run complete: %d results (%d active, %d inactive, %d invalid) in %.1fs",
                stats.total, stats.active, stats.inactive, stats.invalid, stats.duration,
            )

        return ResultStream(aggregator, produce)

    async def check_batch(self, raw_subjects: Subjects) -> list[CheckResult]:
        """Check subjects and return all results (completion order)."""
        async with self.check(raw_subjects) as stream:
            return await stream.collect()


def check_all(raw_subjects: Subjects, config: Optional[EngineConfig] = None) -> list[CheckResult]:
    """Synchronous convenience wrapper around AvailabilityEngine.check_batch."""
    engine = AvailabilityEngine(config)
    return asyncio.run(engine.check_batch(raw_subjects))
