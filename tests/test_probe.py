#!/usr/bin/env python3
"""
Network probe tests.
Stub resolver for DNS, httpx.MockTransport for HTTP; no network traffic.
"""

import asyncio

import dns.exception
import dns.resolver
import httpx
import pytest

from reachability.config import AddressFamily, EngineConfig
from reachability.probe import (
    DnsFailure,
    DnsResolved,
    DnsUnresolved,
    HttpResponded,
    NetworkProbe,
    TransportError,
    TransportFailure,
)
from reachability.validator import validate


class StubResolver:
    """Answers from a table: host -> {rdtype: list of addresses | exception}."""

    def __init__(self, table, delay=0.0):
        self.table = table
        self.delay = delay
        self.queries = []

    async def resolve(self, host, rdtype, lifetime=None):
        self.queries.append((host, rdtype))
        await asyncio.sleep(self.delay)
        answer = self.table.get(host, {}).get(rdtype, dns.resolver.NXDOMAIN())
        if isinstance(answer, BaseException):
            raise answer
        return answer


RESOLVES = {"A": ["93.184.216.34"], "AAAA": dns.resolver.NoAnswer()}


def probe_once(subject, resolver, handler=None, timeout=2.0, **config):
    """Run one probe with a stub resolver and a mock HTTP transport."""
    async def go():
        client = None
        if handler is not None:
            client = httpx.AsyncClient(
                transport=httpx.MockTransport(handler),
                follow_redirects=True,
                max_redirects=config.get("max_redirects", 10),
            )
        probe = NetworkProbe(EngineConfig(**config), resolver=resolver, client=client)
        try:
            return await probe.probe(validate(subject), timeout)
        finally:
            if client is not None:
                await client.aclose()
    return asyncio.run(go())


def test_domain_resolves():
    outcome = probe_once("example.com", StubResolver({"example.com": RESOLVES}))
    assert isinstance(outcome, DnsResolved)
    assert outcome.addresses == ("93.184.216.34",)


@pytest.mark.parametrize("exc, failure", [
    (dns.resolver.NXDOMAIN(), DnsFailure.NXDOMAIN),
    (dns.resolver.NoAnswer(), DnsFailure.NO_ADDRESS),
    (dns.resolver.NoNameservers(), DnsFailure.SERVFAIL),
    (dns.exception.Timeout(), DnsFailure.TIMEOUT),
])
def test_dns_failures_are_preserved(exc, failure):
    resolver = StubResolver({"example.com": {"A": exc, "AAAA": exc}})
    outcome = probe_once("example.com", resolver)
    assert isinstance(outcome, DnsUnresolved)
    assert outcome.failure is failure


def test_nxdomain_scenario():
    outcome = probe_once("this-domain-does-not-exist-xyz123.invalid", StubResolver({}))
    assert isinstance(outcome, DnsUnresolved)
    assert outcome.failure is DnsFailure.NXDOMAIN


def test_ipv6_only_host_resolves_with_any_family():
    table = {"v6.example.com": {"A": dns.resolver.NoAnswer(), "AAAA": ["2001:db8::1"]}}
    outcome = probe_once("v6.example.com", StubResolver(table))
    assert isinstance(outcome, DnsResolved)
    assert outcome.addresses == ("2001:db8::1",)


def test_timeout_outranks_missing_records():
    table = {"example.com": {"A": dns.exception.Timeout(), "AAAA": dns.resolver.NoAnswer()}}
    outcome = probe_once("example.com", StubResolver(table))
    assert outcome.failure is DnsFailure.TIMEOUT


def test_ipv4_family_only_queries_a_records():
    resolver = StubResolver({"example.com": RESOLVES})
    outcome = probe_once("example.com", resolver, address_family=AddressFamily.IPV4)
    assert isinstance(outcome, DnsResolved)
    assert resolver.queries == [("example.com", "A")]


def test_ipv6_family_fails_without_aaaa():
    resolver = StubResolver({"example.com": RESOLVES})
    outcome = probe_once("example.com", resolver, address_family=AddressFamily.IPV6)
    assert isinstance(outcome, DnsUnresolved)
    assert outcome.failure is DnsFailure.NO_ADDRESS


def test_url_http_404():
    def handler(request):
        assert request.method == "HEAD"
        return httpx.Response(404)

    outcome = probe_once("http://example.com/404page", StubResolver({"example.com": RESOLVES}), handler)
    assert isinstance(outcome, HttpResponded)
    assert outcome.status_code == 404
    assert outcome.method == "HEAD"
    assert outcome.addresses == ("93.184.216.34",)


def test_url_falls_back_to_get_when_head_rejected():
    methods = []

    def handler(request):
        methods.append(request.method)
        if request.method == "HEAD":
            return httpx.Response(405)
        return httpx.Response(200, text="hello")

    outcome = probe_once("https://example.com/", StubResolver({"example.com": RESOLVES}), handler)
    assert methods == ["HEAD", "GET"]
    assert outcome.status_code == 200
    assert outcome.method == "GET"


@pytest.mark.parametrize("exc", [
    httpx.RemoteProtocolError("Server disconnected without sending a response."),
    httpx.ReadError("connection reset"),
])
def test_url_falls_back_to_get_when_head_dropped(exc):
    methods = []

    def handler(request):
        methods.append(request.method)
        if request.method == "HEAD":
            raise exc
        return httpx.Response(200, text="hello")

    outcome = probe_once("https://example.com/", StubResolver({"example.com": RESOLVES}), handler)
    assert methods == ["HEAD", "GET"]
    assert isinstance(outcome, HttpResponded)
    assert outcome.status_code == 200
    assert outcome.method == "GET"


def test_get_error_is_reported_when_head_dropped():
    def handler(request):
        if request.method == "HEAD":
            raise httpx.RemoteProtocolError("Server disconnected without sending a response.")
        raise httpx.ConnectError("[Errno 111] Connection refused")

    outcome = probe_once("https://example.com/", StubResolver({"example.com": RESOLVES}), handler)
    assert isinstance(outcome, TransportError)
    assert outcome.failure is TransportFailure.REFUSED


def test_url_redirect_followed():
    def handler(request):
        if request.url.path == "/old":
            return httpx.Response(301, headers={"Location": "https://example.com/new"})
        return httpx.Response(200)

    outcome = probe_once("https://example.com/old", StubResolver({"example.com": RESOLVES}), handler)
    assert outcome.status_code == 200
    assert outcome.redirects == 1
    assert outcome.url == "https://example.com/new"


def test_redirect_loop_hits_limit():
    def handler(request):
        return httpx.Response(302, headers={"Location": str(request.url)})

    outcome = probe_once(
        "https://example.com/loop", StubResolver({"example.com": RESOLVES}), handler, max_redirects=3
    )
    assert isinstance(outcome, TransportError)
    assert outcome.failure is TransportFailure.TOO_MANY_REDIRECTS


@pytest.mark.parametrize("exc, failure", [
    (httpx.ConnectError("[Errno 111] Connection refused"), TransportFailure.REFUSED),
    (httpx.ConnectError("[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed"), TransportFailure.TLS),
    (httpx.ConnectError("[Errno 113] No route to host"), TransportFailure.CONNECT),
    (httpx.ReadTimeout("timed out"), TransportFailure.TIMEOUT),
    (httpx.ConnectTimeout("timed out"), TransportFailure.TIMEOUT),
    (httpx.ReadError("reset by peer"), TransportFailure.RESET),
    (httpx.RemoteProtocolError("bad status line"), TransportFailure.PROTOCOL),
])
def test_transport_errors(exc, failure):
    def handler(request):
        raise exc

    outcome = probe_once("https://example.com/", StubResolver({"example.com": RESOLVES}), handler)
    assert isinstance(outcome, TransportError)
    assert outcome.failure is failure


def test_dns_failure_skips_http():
    def handler(request):
        raise AssertionError("HTTP must not be attempted")

    outcome = probe_once("http://gone.example/", StubResolver({}), handler)
    assert isinstance(outcome, DnsUnresolved)
    assert outcome.failure is DnsFailure.NXDOMAIN


def test_ip_literal_skips_dns():
    resolver = StubResolver({})
    outcome = probe_once("http://127.0.0.1:8080/", resolver, lambda request: httpx.Response(204))
    assert resolver.queries == []
    assert outcome.status_code == 204
    assert outcome.addresses == ("127.0.0.1",)


def test_domain_http_check_is_opt_in():
    urls = []

    def handler(request):
        urls.append(str(request.url))
        return httpx.Response(503)

    resolver = StubResolver({"example.com": RESOLVES})
    plain = probe_once("example.com", resolver, handler)
    assert isinstance(plain, DnsResolved)
    assert urls == []

    checked = probe_once("example.com", resolver, handler, http_check_domains=True)
    assert checked.status_code == 503
    assert urls == ["http://example.com/"]


def test_non_http_scheme_is_dns_only():
    resolver = StubResolver({"files.example.com": RESOLVES})

    async def go():
        probe = NetworkProbe(EngineConfig(allowed_schemes=("http", "https", "ftp")), resolver=resolver)
        subject = validate("ftp://files.example.com/pub", allowed_schemes=("http", "https", "ftp"))
        return await probe.probe(subject, 2.0)

    outcome = asyncio.run(go())
    assert isinstance(outcome, DnsResolved)


def test_invalid_subject_is_refused():
    async def go():
        probe = NetworkProbe(EngineConfig(), resolver=StubResolver({}))
        return await probe.probe(validate("not a valid domain!!"), 1.0)

    with pytest.raises(ValueError):
        asyncio.run(go())


def test_owned_client_is_closed():
    async def go():
        probe = NetworkProbe(EngineConfig(), resolver=StubResolver({}))
        client = probe.client
        await probe.aclose()
        return client

    client = asyncio.run(go())
    assert client.is_closed
