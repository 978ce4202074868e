#!/usr/bin/env python3
"""
Network probe: one reachability attempt for one subject.

Domains get a DNS lookup (A/AAAA). URLs get the same lookup followed by one
lightweight HTTP request (HEAD, falling back to a streamed GET when the
target rejects HEAD). The probe never retries; every DNS or HTTP failure is
returned as a ProbeOutcome variant for the classifier to judge.
"""

import asyncio
import logging
import ssl
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Union

import dns.asyncresolver
import dns.exception
import dns.resolver
import httpx

from .config import AddressFamily, EngineConfig
from .validator import Subject, SubjectKind


logger = logging.getLogger(__name__)

HTTP_SCHEMES = ("http", "https")

# HEAD answered with one of these is retried once as GET
HEAD_REJECTED_CODES = frozenset({400, 405, 501})

# Servers that drop HEAD on the floor instead of answering it
HEAD_REJECTED_ERRORS = (httpx.RemoteProtocolError, httpx.ReadError, httpx.WriteError)


class DnsFailure(Enum):
    """Why a name did not resolve."""
    NXDOMAIN = "NXDOMAIN"
    NO_ADDRESS = "no address records"
    SERVFAIL = "SERVFAIL"
    TIMEOUT = "DNS timeout"
    ERROR = "DNS error"

    @property
    def authoritative(self) -> bool:
        return self in (DnsFailure.NXDOMAIN, DnsFailure.NO_ADDRESS)


class TransportFailure(Enum):
    """Why an HTTP request did not produce a status code."""
    TIMEOUT = "timeout"
    REFUSED = "connection refused"
    CONNECT = "connection failed"
    TLS = "TLS handshake failed"
    RESET = "connection reset"
    PROTOCOL = "protocol error"
    TOO_MANY_REDIRECTS = "too many redirects"
    RESOURCE = "local resource exhausted"
    ERROR = "transport error"

    @property
    def authoritative(self) -> bool:
        return self is TransportFailure.TOO_MANY_REDIRECTS


@dataclass(frozen=True)
class DnsResolved:
    addresses: tuple[str, ...]


@dataclass(frozen=True)
class DnsUnresolved:
    failure: DnsFailure
    detail: str = ""


@dataclass(frozen=True)
class HttpResponded:
    status_code: int
    url: str
    method: str = "HEAD"
    redirects: int = 0
    addresses: tuple[str, ...] = ()


@dataclass(frozen=True)
class TransportError:
    failure: TransportFailure
    detail: str = ""


ProbeOutcome = Union[DnsResolved, DnsUnresolved, HttpResponded, TransportError]


class Prober(Protocol):
    """Anything the scheduler can drive: one attempt per call, no retries."""

    async def probe(self, subject: Subject, timeout: float) -> ProbeOutcome:
        ...

    async def aclose(self) -> None:
        ...


def _dns_failure(exc: BaseException) -> DnsFailure:
    if isinstance(exc, dns.resolver.NXDOMAIN):
        return DnsFailure.NXDOMAIN
    if isinstance(exc, dns.resolver.NoAnswer):
        return DnsFailure.NO_ADDRESS
    if isinstance(exc, dns.resolver.NoNameservers):
        return DnsFailure.SERVFAIL
    if isinstance(exc, (dns.exception.Timeout, asyncio.TimeoutError)):
        return DnsFailure.TIMEOUT
    return DnsFailure.ERROR


# Lower rank wins when every record type failed
_DNS_FAILURE_RANK = {
    DnsFailure.NXDOMAIN: 0,
    DnsFailure.TIMEOUT: 1,
    DnsFailure.SERVFAIL: 2,
    DnsFailure.ERROR: 3,
    DnsFailure.NO_ADDRESS: 4,
}


def _caused_by_tls(exc: BaseException) -> bool:
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        if isinstance(exc, ssl.SSLError):
            return True
        message = str(exc).upper()
        if "SSL" in message or "CERTIFICATE" in message or "TLS" in message:
            return True
        exc = exc.__cause__ or exc.__context__
    return False


def _transport_failure(exc: BaseException) -> TransportFailure:
    if isinstance(exc, httpx.TooManyRedirects):
        return TransportFailure.TOO_MANY_REDIRECTS
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return TransportFailure.TIMEOUT
    if isinstance(exc, httpx.ConnectError):
        if _caused_by_tls(exc):
            return TransportFailure.TLS
        if "refused" in str(exc).lower():
            return TransportFailure.REFUSED
        return TransportFailure.CONNECT
    if isinstance(exc, (httpx.ReadError, httpx.WriteError)):
        return TransportFailure.RESET
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.LocalProtocolError)):
        return TransportFailure.PROTOCOL
    if isinstance(exc, OSError):
        return TransportFailure.RESOURCE
    return TransportFailure.ERROR


class NetworkProbe:
    """
    DNS + HTTP probe sharing one resolver and one HTTP client.

    Safe to call from any number of concurrent tasks: neither the resolver
    nor the client carries per-subject state.
    """

    def __init__(
        self,
        config: EngineConfig,
        resolver: Optional[dns.asyncresolver.Resolver] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.resolver = resolver or self._build_resolver(config)
        self._client = client
        self._owns_client = client is None

    @staticmethod
    def _build_resolver(config: EngineConfig) -> dns.asyncresolver.Resolver:
        if config.nameservers:
            resolver = dns.asyncresolver.Resolver(configure=False)
            resolver.nameservers = list(config.nameservers)
        else:
            resolver = dns.asyncresolver.Resolver()
        resolver.timeout = config.probe_timeout
        resolver.lifetime = config.probe_timeout
        return resolver

    @property
    def client(self) -> httpx.AsyncClient:
        """HTTP client, created on first use inside the running loop."""
        if self._client is None:
            limits = httpx.Limits(
                max_connections=self.config.concurrency,
                max_keepalive_connections=min(self.config.concurrency, 1000),
            )
            self._client = httpx.AsyncClient(
                limits=limits,
                timeout=httpx.Timeout(self.config.probe_timeout),
                follow_redirects=self.config.follow_redirects,
                max_redirects=self.config.max_redirects,
                verify=self.config.verify_tls,
                headers={"User-Agent": self.config.user_agent},
            )
        return self._client

    async def aclose(self):
        """Close the HTTP client (releases pooled sockets)."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    async def probe(self, subject: Subject, timeout: float) -> ProbeOutcome:
        """Run one attempt for a valid subject, bounded by `timeout` seconds."""
        if not subject.is_valid:
            raise ValueError(f"invalid subject reached the probe: {subject.raw!r}")

        deadline = time.monotonic() + timeout

        if subject.is_ip_literal:
            dns_outcome = DnsResolved((subject.host,))
        else:
            dns_outcome = await self.resolve(subject.host, timeout)
        if not isinstance(dns_outcome, DnsResolved):
            return dns_outcome

        url = self._http_target(subject)
        if url is None:
            return dns_outcome

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return TransportError(TransportFailure.TIMEOUT, "probe timeout spent on DNS")
        return await self.fetch(url, remaining, dns_outcome.addresses)

    def _http_target(self, subject: Subject) -> Optional[str]:
        if subject.kind is SubjectKind.URL:
            return subject.normalized if subject.scheme in HTTP_SCHEMES else None
        if self.config.http_check_domains:
            return f"http://{subject.host}/"
        return None

    async def resolve(self, host: str, timeout: float) -> Union[DnsResolved, DnsUnresolved]:
        """
        Resolve A and/or AAAA records for host.

        With AddressFamily.ANY both lookups run concurrently and the first
        family that returns addresses wins; the other lookup is cancelled.
        """
        record_types = self.config.address_family.record_types
        if len(record_types) == 1:
            return await self._lookup(host, record_types[0], timeout)

        pending = {
            asyncio.create_task(self._lookup(host, rdtype, timeout))
            for rdtype in record_types
        }
        failures: list[DnsUnresolved] = []
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    outcome = task.result()
                    if isinstance(outcome, DnsResolved):
                        return outcome
                    failures.append(outcome)
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        return min(failures, key=lambda f: _DNS_FAILURE_RANK[f.failure])

    async def _lookup(self, host: str, rdtype: str, timeout: float) -> Union[DnsResolved, DnsUnresolved]:
        try:
            answer = await self.resolver.resolve(host, rdtype, lifetime=timeout)
        except dns.exception.DNSException as e:
            failure = _dns_failure(e)
            logger.debug("DNS %s %s: %s (%s)", rdtype, host, failure.value, e)
            return DnsUnresolved(failure, f"{type(e).__name__}: {str(e)[:120]}")
        addresses = tuple(str(rdata) for rdata in answer)
        if not addresses:
            return DnsUnresolved(DnsFailure.NO_ADDRESS, f"empty {rdtype} answer")
        return DnsResolved(addresses)

    async def fetch(self, url: str, timeout: float, addresses: tuple[str, ...] = ()) -> Union[HttpResponded, TransportError]:
        """HEAD the URL (GET if HEAD is rejected) and report the final status."""
        try:
            response = await asyncio.wait_for(self._request(url, timeout), timeout)
        except (httpx.HTTPError, OSError, asyncio.TimeoutError) as e:
            failure = _transport_failure(e)
            logger.debug("HTTP %s: %s (%s)", url, failure.value, e)
            return TransportError(failure, f"{type(e).__name__}: {str(e)[:120]}")
        return HttpResponded(
            status_code=response.status_code,
            url=str(response.url),
            method=response.request.method,
            redirects=len(response.history),
            addresses=addresses,
        )

    async def _request(self, url: str, timeout: float) -> httpx.Response:
        try:
            response = await self.client.head(url, timeout=timeout)
        except HEAD_REJECTED_ERRORS as e:
            logger.debug("HEAD %s dropped (%s), retrying as GET", url, type(e).__name__)
        else:
            if response.status_code not in HEAD_REJECTED_CODES:
                return response
        # Stream so the body is never downloaded; only the status is needed
        async with self.client.stream("GET", url, timeout=timeout) as streamed:
            return streamed
