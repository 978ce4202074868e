#!/usr/bin/env python3
"""
Subject syntax validation.

Turns one raw input string into a Subject of kind DOMAIN, URL or INVALID.
Pure and non-blocking: malformed input is a classification, never an error.
"""

import ipaddress
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional
from urllib.parse import urlsplit, urlunsplit

import idna


MAX_NAME_LENGTH = 253
MAX_LABEL_LENGTH = 63
DEFAULT_SCHEMES = ("http", "https")
DEFAULT_SCHEME = "http"

LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?$")
TLD_RE = re.compile(r"^(?:[a-z]{2,63}|xn--[a-z0-9-]{1,59})$")
SCHEME_RE = re.compile(r"^([A-Za-z][A-Za-z0-9+.-]*)://")
AUTHORITY_END_RE = re.compile(r"[/?#]")


class SubjectKind(Enum):
    DOMAIN = "domain"
    URL = "url"
    INVALID = "invalid"


@dataclass(frozen=True)
class Subject:
    """One validated input. `host` is what the probe resolves."""
    raw: str
    kind: SubjectKind
    normalized: str
    host: Optional[str] = None
    scheme: Optional[str] = None
    reason: Optional[str] = None  # why INVALID

    @property
    def is_valid(self) -> bool:
        return self.kind is not SubjectKind.INVALID

    @property
    def is_ip_literal(self) -> bool:
        if not self.host:
            return False
        try:
            ipaddress.ip_address(self.host)
        except ValueError:
            return False
        return True

    def __str__(self) -> str:
        return self.raw


def _invalid(raw: str, reason: str) -> Subject:
    return Subject(raw=raw, kind=SubjectKind.INVALID, normalized=raw.strip(), reason=reason)


def normalize_domain(name: str) -> tuple[Optional[str], Optional[str]]:
    """
    Normalize a host name to lower-case ASCII.

    Returns (normalized, None) on success or (None, reason) on failure.
    """
    if name.endswith("."):
        name = name[:-1]
    if not name:
        return None, "empty domain name"

    if not name.isascii():
        try:
            name = idna.encode(name, uts46=True).decode("ascii")
        except idna.IDNAError as e:
            return None, f"invalid internationalized name: {e}"
    name = name.lower()

    if len(name) > MAX_NAME_LENGTH:
        return None, f"name too long ({len(name)} > {MAX_NAME_LENGTH} characters)"

    labels = name.split(".")
    if len(labels) < 2:
        return None, "missing top-level label"

    for label in labels:
        if not label:
            return None, "malformed label: empty label"
        if len(label) > MAX_LABEL_LENGTH:
            return None, f"malformed label: '{label[:20]}...' exceeds {MAX_LABEL_LENGTH} characters"
        if not LABEL_RE.match(label):
            bad = next((c for c in label if not (c.isascii() and (c.isalnum() or c == "-"))), None)
            if bad is not None:
                return None, f"disallowed character {bad!r} in label '{label}'"
            return None, f"malformed label: '{label}' starts or ends with a hyphen"

    if not TLD_RE.match(labels[-1]):
        return None, f"invalid top-level label '{labels[-1]}'"

    return name, None


def _validate_url(raw: str, text: str, allowed_schemes: Iterable[str]) -> Subject:
    try:
        parts = urlsplit(text)
        port = parts.port
    except ValueError as e:
        return _invalid(raw, f"malformed URL: {e}")

    scheme = parts.scheme.lower()
    if scheme not in allowed_schemes:
        return _invalid(raw, f"unsupported scheme '{scheme}'")

    hostname = parts.hostname
    if not hostname:
        return _invalid(raw, "URL has no host")

    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        ip = None

    if ip is not None:
        host = str(ip)
        netloc_host = f"[{host}]" if ip.version == 6 else host
    else:
        host, reason = normalize_domain(hostname)
        if host is None:
            return _invalid(raw, reason)
        netloc_host = host

    netloc = netloc_host if port is None else f"{netloc_host}:{port}"
    if parts.username is not None:
        userinfo = parts.username if parts.password is None else f"{parts.username}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"

    normalized = urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))
    return Subject(raw=raw, kind=SubjectKind.URL, normalized=normalized, host=host, scheme=scheme)


def validate(raw: str, allowed_schemes: Iterable[str] = DEFAULT_SCHEMES) -> Subject:
    """Classify a raw subject string as a domain, URL or invalid input."""
    if not isinstance(raw, str):
        return _invalid(str(raw), f"subject must be text, got {type(raw).__name__}")

    text = raw.strip()
    if not text:
        return _invalid(raw, "empty subject")

    bad = next((c for c in text if c.isspace() or not c.isprintable()), None)
    if bad is not None:
        return _invalid(raw, f"disallowed character {bad!r}")

    allowed = tuple(s.lower() for s in allowed_schemes)

    if SCHEME_RE.match(text):
        return _validate_url(raw, text, allowed)

    # Paths, queries or ports without a scheme: default the scheme
    if any(c in text for c in "/?:"):
        authority = AUTHORITY_END_RE.split(text, 1)[0]
        if "@" in authority:
            return _invalid(raw, "credentials need an explicit scheme")
        _, colon, port = authority.rpartition(":")
        if colon and port and not authority.endswith("]") and not port.isdigit():
            return _invalid(raw, f"unsupported scheme {authority.split(':', 1)[0].lower()!r}")
        return _validate_url(raw, f"{DEFAULT_SCHEME}://{text}", allowed)

    host, reason = normalize_domain(text)
    if host is None:
        return _invalid(raw, reason)
    return Subject(raw=raw, kind=SubjectKind.DOMAIN, normalized=host, host=host)
