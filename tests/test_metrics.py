#!/usr/bin/env python3
"""
Probe metrics and file-limit helpers.
"""

from reachability import limits
from reachability.metrics import ProbeMetrics


def test_in_flight_peak():
    metrics = ProbeMetrics()
    metrics.probe_started()
    metrics.probe_started()
    metrics.probe_finished(10.0)
    metrics.probe_started()
    metrics.probe_finished(30.0, is_timeout=True)
    metrics.probe_finished(20.0)

    snapshot = metrics.get_snapshot()
    assert snapshot.in_flight == 0
    assert snapshot.peak_in_flight == 2
    assert snapshot.total_probes == 3
    assert snapshot.timeouts == 1
    assert snapshot.avg_latency_ms == 15.0
    assert abs(snapshot.timeout_rate - 1 / 3) < 1e-9


def test_empty_metrics():
    snapshot = ProbeMetrics().get_snapshot()
    assert snapshot.avg_latency_ms == 0.0
    assert snapshot.p95_latency_ms == 0.0
    assert snapshot.timeout_rate == 0.0


def test_p95():
    metrics = ProbeMetrics()
    for ms in range(1, 101):
        metrics.probe_started()
        metrics.probe_finished(float(ms))
    assert metrics.get_snapshot().p95_latency_ms == 96.0


def test_latency_window_keeps_recent_probes():
    metrics = ProbeMetrics(latency_window=2)
    for ms in (1000.0, 10.0, 30.0):
        metrics.probe_started()
        metrics.probe_finished(ms)
    assert metrics.get_snapshot().avg_latency_ms == 20.0
    assert metrics.total_probes == 3


def test_descriptors_needed_scales_with_ceiling():
    assert limits.descriptors_needed(100_000) > 200_000
    assert limits.descriptors_needed(1) == 2 + limits.FD_HEADROOM


def test_ensure_file_limit_reports():
    limit = limits.ensure_file_limit(1)
    assert limit.needed == limits.descriptors_needed(1)
    assert limit.sufficient
