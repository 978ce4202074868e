#!/usr/bin/env python3
"""
Probe metrics for one run: probes in flight (and the peak, which must stay
within the concurrency ceiling), recent probe latency and how many probes
ran out of time.
"""

from collections import deque
from dataclasses import dataclass


@dataclass
class MetricsSnapshot:
    in_flight: int
    peak_in_flight: int
    total_probes: int
    timeouts: int
    avg_latency_ms: float
    p95_latency_ms: float

    @property
    def timeout_rate(self) -> float:
        return self.timeouts / self.total_probes if self.total_probes else 0.0


class ProbeMetrics:
    """Updated by the scheduler around every probe attempt."""

    def __init__(self, latency_window: int = 1000):
        # Only completed probes; timed-out ones would just report the timeout
        self.latencies: deque[float] = deque(maxlen=latency_window)
        self.in_flight = 0
        self.peak_in_flight = 0
        self.total_probes = 0
        self.timeouts = 0

    def probe_started(self):
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)

    def probe_finished(self, latency_ms: float, is_timeout: bool = False):
        self.in_flight -= 1
        self.total_probes += 1
        if is_timeout:
            self.timeouts += 1
        elif latency_ms > 0:
            self.latencies.append(latency_ms)

    def get_snapshot(self) -> MetricsSnapshot:
        avg = p95 = 0.0
        if self.latencies:
            ordered = sorted(self.latencies)
            avg = sum(ordered) / len(ordered)
            p95 = ordered[min(int(len(ordered) * 0.95), len(ordered) - 1)]
        return MetricsSnapshot(
            in_flight=self.in_flight,
            peak_in_flight=self.peak_in_flight,
            total_probes=self.total_probes,
            timeouts=self.timeouts,
            avg_latency_ms=avg,
            p95_latency_ms=p95,
        )

    def __str__(self) -> str:
        s = self.get_snapshot()
        return (
            f"{s.total_probes} probes, peak {s.peak_in_flight} in flight, "
            f"avg {s.avg_latency_ms:.0f}ms, p95 {s.p95_latency_ms:.0f}ms, "
            f"{s.timeouts} timed out"
        )
