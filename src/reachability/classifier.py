#!/usr/bin/env python3
"""
Status classification.

Maps a probe outcome (plus the subject and attempt counter) to either a
final CheckResult or a Retry decision.

Policy:
- Authoritative negatives (NXDOMAIN, no address records, HTTP 4xx/5xx,
  redirect limit) finalize as INACTIVE on the attempt that saw them.
- Transient failures (DNS timeout, SERVFAIL, any other transport error)
  retry until max_attempts, then finalize INACTIVE with the last reason.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from .probe import (
    DnsResolved,
    DnsUnresolved,
    HttpResponded,
    ProbeOutcome,
    TransportError,
)
from .validator import Subject


# Lenient status table: codes that still prove a
# server is answering for the name
LENIENT_ACTIVE_CODES = frozenset({
    200, 201, 202, 203, 204, 205, 206,
    300, 301, 302, 303, 304, 307, 308,
    401, 403, 405, 406, 407, 408, 409,
    429,
    500, 501, 502, 503, 504, 505,
})


class Status(Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    INVALID = "INVALID"


class FailureKind(Enum):
    SYNTAX = "syntax"
    TRANSIENT = "transient"
    AUTHORITATIVE = "authoritative"
    RESOURCE_EXHAUSTION = "resource-exhaustion"


@dataclass(frozen=True)
class CheckResult:
    """Final, immutable record handed to the consumer."""
    subject: Subject
    status: Status
    attempts: int
    reason: Optional[str] = None
    failure: Optional[FailureKind] = None
    http_status: Optional[int] = None
    addresses: tuple[str, ...] = field(default=(), compare=False)

    @property
    def raw(self) -> str:
        return self.subject.raw

    @property
    def is_active(self) -> bool:
        return self.status is Status.ACTIVE


@dataclass(frozen=True)
class Final:
    result: CheckResult


@dataclass(frozen=True)
class Retry:
    reason: str


Decision = Union[Final, Retry]


def invalid_result(subject: Subject) -> CheckResult:
    return CheckResult(
        subject=subject,
        status=Status.INVALID,
        attempts=0,
        reason=subject.reason or "invalid syntax",
        failure=FailureKind.SYNTAX,
    )


def _describe(outcome: Union[DnsUnresolved, TransportError]) -> str:
    return outcome.failure.value


def _transient(subject: Subject, reason: str, attempt: int, max_attempts: int) -> Decision:
    if attempt < max_attempts:
        return Retry(reason)
    return Final(CheckResult(
        subject=subject,
        status=Status.INACTIVE,
        attempts=attempt,
        reason=reason,
        failure=FailureKind.TRANSIENT,
    ))


def classify(
    subject: Subject,
    outcome: Optional[ProbeOutcome],
    attempt: int,
    max_attempts: int,
    lenient_http: bool = False,
) -> Decision:
    """
    Decide what one attempt means.

    Args:
        subject: The subject that was probed
        outcome: Result of attempt number `attempt` (None for invalid subjects)
        attempt: 1-based number of the attempt just made
        max_attempts: Upper bound on attempts for this subject
        lenient_http: Judge HTTP codes by LENIENT_ACTIVE_CODES instead of < 400

    Returns:
        Final(CheckResult) or Retry(reason)
    """
    if not subject.is_valid:
        return Final(invalid_result(subject))

    if isinstance(outcome, DnsResolved):
        return Final(CheckResult(
            subject=subject,
            status=Status.ACTIVE,
            attempts=attempt,
            addresses=outcome.addresses,
        ))

    if isinstance(outcome, DnsUnresolved):
        if outcome.failure.authoritative:
            return Final(CheckResult(
                subject=subject,
                status=Status.INACTIVE,
                attempts=attempt,
                reason=_describe(outcome),
                failure=FailureKind.AUTHORITATIVE,
            ))
        return _transient(subject, _describe(outcome), attempt, max_attempts)

    if isinstance(outcome, HttpResponded):
        code = outcome.status_code
        active = code in LENIENT_ACTIVE_CODES if lenient_http else 200 <= code < 400
        if active:
            return Final(CheckResult(
                subject=subject,
                status=Status.ACTIVE,
                attempts=attempt,
                http_status=code,
                addresses=outcome.addresses,
            ))
        return Final(CheckResult(
            subject=subject,
            status=Status.INACTIVE,
            attempts=attempt,
            reason=f"HTTP {code}",
            failure=FailureKind.AUTHORITATIVE,
            http_status=code,
            addresses=outcome.addresses,
        ))

    if isinstance(outcome, TransportError):
        if outcome.failure.authoritative:
            return Final(CheckResult(
                subject=subject,
                status=Status.INACTIVE,
                attempts=attempt,
                reason=_describe(outcome),
                failure=FailureKind.AUTHORITATIVE,
            ))
        return _transient(subject, _describe(outcome), attempt, max_attempts)

    raise TypeError(f"unhandled probe outcome for {subject.raw!r}: {outcome!r}")
