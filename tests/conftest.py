"""Shared fakes for engine and scheduler tests (no network)."""

import asyncio

import pytest

from reachability.config import EngineConfig
from reachability.engine import AvailabilityEngine
from reachability.probe import DnsResolved


EXAMPLE_ADDRESS = ("93.184.216.34",)


class FakeProbe:
    """
    Scripted prober.

    script maps a raw subject to a list of outcomes (or exceptions to raise),
    consumed one per attempt; the last entry repeats. delay is seconds per
    call, either a number or a dict keyed by raw subject.
    """

    def __init__(self, script=None, delay=0.0):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.cancelled = 0
        self.closed = False

    def _next(self, raw):
        outcomes = self.script.get(raw)
        if not outcomes:
            return DnsResolved(EXAMPLE_ADDRESS)
        return outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]

    async def probe(self, subject, timeout):
        self.calls.append(subject.raw)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delay.get(subject.raw, 0.0) if isinstance(self.delay, dict) else self.delay
            await asyncio.sleep(delay)
            outcome = self._next(subject.raw)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.in_flight -= 1

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_probe():
    return FakeProbe


@pytest.fixture
def make_engine():
    def _make(prober, **overrides):
        overrides.setdefault("retry_backoff", 0.0)
        config = EngineConfig(**overrides)
        return AvailabilityEngine(config, prober_factory=lambda cfg: prober)
    return _make


def run_engine(engine, subjects):
    """Check subjects synchronously and index results by raw subject."""
    results = asyncio.run(engine.check_batch(subjects))
    return results, {r.raw: r for r in results}


@pytest.fixture
def run():
    return run_engine
