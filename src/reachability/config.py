#!/usr/bin/env python3
"""
Engine configuration.

Values are fixed for the lifetime of one run and passed explicitly into the
engine and scheduler; nothing reads global configuration mid-run.

Environment Variables:
    REACH_CONCURRENCY: Concurrency ceiling (max in-flight probes)
    REACH_TIMEOUT: Per-probe timeout in seconds
    REACH_MAX_RETRIES: Retries after the first attempt
    REACH_DEADLINE: Run-level deadline in seconds
    REACH_BACKOFF: Retry backoff step in seconds
    REACH_MAX_REDIRECTS: Redirect hops allowed per URL
    REACH_ADDRESS_FAMILY: any, ipv4 or ipv6
    REACH_NAMESERVERS: Comma-separated resolver IPs
    REACH_RESULT_BUFFER: Bound of the result queue
"""

import os
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Optional

from .errors import ConfigurationError


DEFAULT_CONCURRENCY = 100
DEFAULT_TIMEOUT = 5.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_BACKOFF = 0.5
DEFAULT_MAX_REDIRECTS = 10
DEFAULT_RESULT_BUFFER = 1000
DEFAULT_USER_AGENT = "domain-reachability/0.1 (+https://pypi.org/project/domain-reachability/)"


class AddressFamily(Enum):
    """Which address records count as a successful resolution."""
    ANY = "any"    # race A and AAAA, first family with addresses wins
    IPV4 = "ipv4"
    IPV6 = "ipv6"

    @property
    def record_types(self) -> tuple[str, ...]:
        if self is AddressFamily.IPV4:
            return ("A",)
        if self is AddressFamily.IPV6:
            return ("AAAA",)
        return ("A", "AAAA")


@dataclass(frozen=True)
class EngineConfig:
    """Configuration for one availability run."""
    # Concurrency
    concurrency: int = DEFAULT_CONCURRENCY
    admission_window: Optional[int] = None  # defaults to concurrency
    result_buffer: int = DEFAULT_RESULT_BUFFER

    # Timing
    probe_timeout: float = DEFAULT_TIMEOUT
    deadline: Optional[float] = None
    retry_backoff: float = DEFAULT_BACKOFF

    # Retry policy
    max_retries: int = DEFAULT_MAX_RETRIES

    # DNS
    address_family: AddressFamily = AddressFamily.ANY
    nameservers: tuple[str, ...] = ()

    # HTTP
    follow_redirects: bool = True
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    http_check_domains: bool = False
    lenient_http: bool = False
    verify_tls: bool = True
    user_agent: str = DEFAULT_USER_AGENT

    # Syntax
    allowed_schemes: tuple[str, ...] = ("http", "https")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @property
    def window(self) -> int:
        return self.admission_window or self.concurrency

    def validate(self) -> "EngineConfig":
        """Raise ConfigurationError if the configuration cannot drive a run."""
        if not isinstance(self.concurrency, int) or self.concurrency <= 0:
            raise ConfigurationError(f"concurrency must be a positive integer, got {self.concurrency!r}")
        if self.admission_window is not None and self.admission_window <= 0:
            raise ConfigurationError(f"admission_window must be positive, got {self.admission_window!r}")
        if self.result_buffer <= 0:
            raise ConfigurationError(f"result_buffer must be positive, got {self.result_buffer!r}")
        if self.probe_timeout <= 0:
            raise ConfigurationError(f"probe_timeout must be positive, got {self.probe_timeout!r}")
        if self.deadline is not None and self.deadline <= 0:
            raise ConfigurationError(f"deadline must be positive, got {self.deadline!r}")
        if self.retry_backoff < 0:
            raise ConfigurationError(f"retry_backoff must not be negative, got {self.retry_backoff!r}")
        if not isinstance(self.max_retries, int) or self.max_retries < 0:
            raise ConfigurationError(f"max_retries must be a non-negative integer, got {self.max_retries!r}")
        if self.max_redirects < 0:
            raise ConfigurationError(f"max_redirects must not be negative, got {self.max_redirects!r}")
        if not self.allowed_schemes:
            raise ConfigurationError("allowed_schemes must name at least one scheme")
        if not isinstance(self.address_family, AddressFamily):
            raise ConfigurationError(f"unknown address family: {self.address_family!r}")
        return self

    def with_overrides(self, **overrides) -> "EngineConfig":
        """Copy with the given fields replaced; None values are ignored."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigurationError(f"unknown configuration fields: {', '.join(sorted(unknown))}")
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_env(cls, **overrides) -> "EngineConfig":
        """Create configuration from environment variables, then apply overrides."""
        env = os.environ
        try:
            config = cls(
                concurrency=int(env.get("REACH_CONCURRENCY", DEFAULT_CONCURRENCY)),
                probe_timeout=float(env.get("REACH_TIMEOUT", DEFAULT_TIMEOUT)),
                max_retries=int(env.get("REACH_MAX_RETRIES", DEFAULT_MAX_RETRIES)),
                deadline=float(env["REACH_DEADLINE"]) if env.get("REACH_DEADLINE") else None,
                retry_backoff=float(env.get("REACH_BACKOFF", DEFAULT_BACKOFF)),
                max_redirects=int(env.get("REACH_MAX_REDIRECTS", DEFAULT_MAX_REDIRECTS)),
                address_family=AddressFamily(env.get("REACH_ADDRESS_FAMILY", "any").lower()),
                nameservers=tuple(
                    ns.strip() for ns in env.get("REACH_NAMESERVERS", "").split(",") if ns.strip()
                ),
                result_buffer=int(env.get("REACH_RESULT_BUFFER", DEFAULT_RESULT_BUFFER)),
            )
        except ValueError as e:
            raise ConfigurationError(f"invalid REACH_* environment value: {e}") from e
        return config.with_overrides(**overrides)
