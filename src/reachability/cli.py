#!/usr/bin/env python3
"""
Bulk domain / URL reachability checker.

Usage:
    domain-reachability -i domains.txt -o results
    domain-reachability -i urls.txt -o results -c 5000 --timeout 3 --retries 1
    domain-reachability -i domains.txt -o results --format csv --check-http -v 2
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Iterator, Optional

try:
    import uvloop
except ImportError:
    uvloop = None

from .aggregator import RunStats
from .config import AddressFamily, EngineConfig
from .engine import AvailabilityEngine
from .errors import ConfigurationError
from .limits import ensure_file_limit
from .metrics import ProbeMetrics
from .output import FORMATS, format_console, open_writer, parse_exclude


logger = logging.getLogger("reachability")

LOG_LEVELS = {0: logging.WARNING, 1: logging.INFO, 2: logging.DEBUG}


def read_subjects(path: Path) -> Iterator[str]:
    """Yield one subject per line, skipping blank lines and # comments."""
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            yield line


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="domain-reachability",
        description="Classify domains and URLs as ACTIVE, INACTIVE or INVALID",
    )
    parser.add_argument("-i", "--input-file", required=True, type=Path,
                        help="File with one domain or URL per line")
    parser.add_argument("-o", "--output-file", required=True, type=Path,
                        help="Output prefix (e.g. results -> results_ACTIVE.txt)")
    parser.add_argument("-e", "--exclude", default="",
                        help="Statuses not to write, comma-separated (ACTIVE, INACTIVE, INVALID)")
    parser.add_argument("-c", "--concurrency", type=int, default=None,
                        help="Maximum probes in flight (default: 100)")
    parser.add_argument("-v", "--verbose-level", type=int, choices=(0, 1, 2), default=1,
                        help="0 = summary only, 1 = one line per subject, 2 = debug")
    parser.add_argument("-f", "--format", choices=FORMATS, default="text",
                        help="Output format (default: text)")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Per-probe timeout in seconds (default: 5)")
    parser.add_argument("--retries", type=int, default=None,
                        help="Retries after a transient failure (default: 2)")
    parser.add_argument("--deadline", type=float, default=None,
                        help="Stop admitting probes after this many seconds")
    parser.add_argument("--backoff", type=float, default=None,
                        help="Retry backoff step in seconds (default: 0.5)")
    parser.add_argument("--max-redirects", type=int, default=None,
                        help="Redirect hops allowed per URL (default: 10)")
    parser.add_argument("--no-follow-redirects", action="store_true",
                        help="Judge URLs by their first response")
    parser.add_argument("--address-family", choices=[f.value for f in AddressFamily], default=None,
                        help="Address records that count as resolved (default: any)")
    parser.add_argument("--nameserver", action="append", default=None,
                        help="Resolver IP to query (repeatable; default: system resolvers)")
    parser.add_argument("--check-http", action="store_true",
                        help="Also send an HTTP request to bare domains")
    parser.add_argument("--lenient-http", action="store_true",
                        help="Count 401/403/429/5xx responses as ACTIVE")
    parser.add_argument("--insecure", action="store_true",
                        help="Do not verify TLS certificates")
    return parser


def config_from_args(args: argparse.Namespace) -> EngineConfig:
    """Environment (REACH_*) first, command line on top."""
    return EngineConfig.from_env(
        concurrency=args.concurrency,
        probe_timeout=args.timeout,
        max_retries=args.retries,
        deadline=args.deadline,
        retry_backoff=args.backoff,
        max_redirects=args.max_redirects,
        follow_redirects=False if args.no_follow_redirects else None,
        address_family=AddressFamily(args.address_family) if args.address_family else None,
        nameservers=tuple(args.nameserver) if args.nameserver else None,
        http_check_domains=True if args.check_http else None,
        lenient_http=True if args.lenient_http else None,
        verify_tls=False if args.insecure else None,
    ).validate()


def print_summary(stats: RunStats, metrics: Optional[ProbeMetrics]):
    """Print final summary."""
    print("\n" + "=" * 60)
    print("FINAL RESULTS")
    print("=" * 60)
    print(f"Total checked:    {stats.total:,}")
    print(f"Active:           {stats.active:,}")
    print(f"Inactive:         {stats.inactive:,}")
    print(f"Invalid:          {stats.invalid:,}")
    print()
    print(f"Attempts:         {stats.attempts:,}")
    print(f"Retries:          {stats.retries:,}")
    print(f"Time:             {stats.duration:.1f}s ({stats.duration/60:.1f} min)")
    print(f"Throughput:       {stats.throughput:.0f} subjects/sec")
    if metrics is not None:
        snapshot = metrics.get_snapshot()
        print()
        print(f"Peak in flight:   {snapshot.peak_in_flight:,}")
        print(f"Avg latency:      {snapshot.avg_latency_ms:.0f}ms")
        print(f"P95 latency:      {snapshot.p95_latency_ms:.0f}ms")
        print(f"Probe timeouts:   {snapshot.timeouts:,} ({snapshot.timeout_rate*100:.1f}%)")
    if stats.reasons:
        print()
        print("Top failure reasons:")
        for reason, count in sorted(stats.reasons.items(), key=lambda x: -x[1])[:10]:
            print(f"  {count:>8,}  {reason}")


async def run(args: argparse.Namespace, config: EngineConfig) -> RunStats:
    exclude = parse_exclude(args.exclude)
    engine = AvailabilityEngine(config)

    with open_writer(args.format, args.output_file, exclude) as writer:
        async with engine.check(read_subjects(args.input_file)) as stream:
            async for result in stream:
                writer.write(result)
                if args.verbose_level > 0 and result.status not in exclude:
                    print(format_console(result))

    print_summary(stream.stats, engine.last_metrics)
    return stream.stats


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=LOG_LEVELS[args.verbose_level],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = config_from_args(args)
        parse_exclude(args.exclude)
    except (ConfigurationError, ValueError) as e:
        parser.error(str(e))

    if not args.input_file.is_file():
        parser.error(f"input file not found: {args.input_file}")

    if uvloop is not None:
        asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())

    ensure_file_limit(config.concurrency)
    logger.info(
        "Checking %s (concurrency=%d, uvloop: %s)",
        args.input_file, config.concurrency, "enabled" if uvloop is not None else "not available",
    )

    try:
        stats = asyncio.run(run(args, config))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130

    if args.verbose_level > 0:
        print("All tasks completed.")
    logger.debug("Processed %d subjects", stats.total)
    return 0


if __name__ == "__main__":
    sys.exit(main())
