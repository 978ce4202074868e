#!/usr/bin/env python3
"""
Benchmark engine throughput at several concurrency ceilings.
Uses a simulated probe (random latency, some NXDOMAIN / timeouts), so the
numbers measure scheduling overhead, not the network.

Usage:
    python benchmarks/engine_throughput.py
    python benchmarks/engine_throughput.py --subjects 200000 --latency-ms 80
"""

import argparse
import asyncio
import random
import resource
import sys
import time

try:
    import uvloop
except ImportError:
    uvloop = None

from reachability import AvailabilityEngine, EngineConfig, Status
from reachability.probe import DnsFailure, DnsResolved, DnsUnresolved


class SimulatedProbe:
    """Sleeps for a random latency and returns a weighted outcome."""

    def __init__(self, latency_ms: float, nxdomain_rate: float = 0.3, timeout_rate: float = 0.02):
        self.latency = latency_ms / 1000
        self.nxdomain_rate = nxdomain_rate
        self.timeout_rate = timeout_rate

    async def probe(self, subject, timeout):
        await asyncio.sleep(random.uniform(0.5, 1.5) * self.latency)
        roll = random.random()
        if roll < self.timeout_rate:
            return DnsUnresolved(DnsFailure.TIMEOUT)
        if roll < self.timeout_rate + self.nxdomain_rate:
            return DnsUnresolved(DnsFailure.NXDOMAIN)
        return DnsResolved(("192.0.2.1",))

    async def aclose(self):
        pass


def generate_subjects(count: int) -> list[str]:
    """Generate a mix of domains, URLs and some malformed lines."""
    subjects = []
    for i in range(count):
        if i % 50 == 0:
            subjects.append(f"bad domain {i}")
        elif i % 5 == 0:
            subjects.append(f"https://site{i:07d}.example.com/")
        else:
            subjects.append(f"testbiz{i:08d}.com")
    return subjects


async def benchmark(subjects: list[str], concurrency: int, latency_ms: float) -> dict:
    config = EngineConfig(concurrency=concurrency, retry_backoff=0.05, result_buffer=10000)
    engine = AvailabilityEngine(config, prober_factory=lambda cfg: SimulatedProbe(latency_ms))

    counts = {status: 0 for status in Status}
    start = time.perf_counter()
    async with engine.check(subjects) as stream:
        async for result in stream:
            counts[result.status] += 1
    elapsed = time.perf_counter() - start

    return {
        'concurrency': concurrency,
        'elapsed': elapsed,
        'throughput': len(subjects) / elapsed if elapsed > 0 else 0,
        'peak': engine.last_metrics.peak_in_flight,
        'retries': stream.stats.retries,
        'counts': counts,
    }


async def main(args):
    soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    print("=" * 70)
    print("ENGINE THROUGHPUT BENCHMARK (simulated probe)")
    print("=" * 70)
    print(f"Python: {sys.version.split()[0]}")
    print(f"uvloop: {'enabled' if uvloop is not None else 'not available'}")
    print(f"File descriptors: soft={soft:,} hard={hard:,}")
    print(f"Subjects: {args.subjects:,}  latency: ~{args.latency_ms:.0f}ms")
    print()
    print(f"{'Concurrency':<12} {'Time':>10} {'Throughput':>15} {'Peak':>8} {'Retries':>9}")
    print("-" * 70)

    subjects = generate_subjects(args.subjects)
    for concurrency in args.levels:
        r = await benchmark(subjects, concurrency, args.latency_ms)
        print(
            f"{r['concurrency']:<12} {r['elapsed']:>8.2f}s {r['throughput']:>12.0f}/sec "
            f"{r['peak']:>8,} {r['retries']:>9,}"
        )
        assert r['peak'] <= concurrency, "concurrency ceiling exceeded"
        assert sum(r['counts'].values()) == len(subjects), "missing results"


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Engine throughput benchmark")
    parser.add_argument("--subjects", type=int, default=50000, help="Number of subjects")
    parser.add_argument("--latency-ms", type=float, default=50.0, help="Mean simulated probe latency")
    parser.add_argument("--levels", type=int, nargs="+", default=[100, 1000, 10000, 100000],
                        help="Concurrency ceilings to test")
    args = parser.parse_args()

    if uvloop is not None:
        asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
    asyncio.run(main(args))
