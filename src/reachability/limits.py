#!/usr/bin/env python3
"""
System limits that bound how many probes can really be in flight.

Each in-flight probe needs at least one socket (a UDP socket for DNS, a TCP
connection for HTTP), so the open-file limit has to cover the ceiling.
"""

import logging
from dataclasses import dataclass

try:
    import resource
except ImportError:  # Windows has no RLIMIT_NOFILE
    resource = None


logger = logging.getLogger(__name__)

# Descriptors kept free for the interpreter, logs and output files
FD_HEADROOM = 256


@dataclass
class FileLimit:
    soft: int
    hard: int
    needed: int

    @property
    def sufficient(self) -> bool:
        return self.soft >= self.needed


def descriptors_needed(concurrency: int) -> int:
    """Descriptors a run with this ceiling can hold at once (DNS + HTTP)."""
    return concurrency * 2 + FD_HEADROOM


def ensure_file_limit(concurrency: int) -> FileLimit:
    """
    Raise the soft RLIMIT_NOFILE toward what `concurrency` needs.

    Never exceeds the hard limit. Logs a warning when the ceiling cannot be
    covered; the run still proceeds and excess connects fail as transient
    transport errors.
    """
    needed = descriptors_needed(concurrency)
    if resource is None:
        return FileLimit(soft=needed, hard=needed, needed=needed)

    soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    if soft < needed:
        target = needed if hard == resource.RLIM_INFINITY else min(needed, hard)
        try:
            resource.setrlimit(resource.RLIMIT_NOFILE, (target, hard))
            soft = target
        except (ValueError, OSError) as e:
            logger.warning("Could not raise open-file limit to %d: %s", target, e)

    limit = FileLimit(soft=soft, hard=hard, needed=needed)
    if not limit.sufficient:
        logger.warning(
            "Open-file limit %d is below the %d descriptors concurrency=%d may use; "
            "run 'ulimit -n %d' or lower --concurrency",
            soft, needed, concurrency, needed,
        )
    return limit
