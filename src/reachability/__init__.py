# Domain Reachability - Core Components
from .validator import Subject, SubjectKind, validate
from .probe import (
    DnsResolved,
    DnsUnresolved,
    HttpResponded,
    NetworkProbe,
    ProbeOutcome,
    TransportError,
)
from .classifier import CheckResult, FailureKind, Final, Retry, Status, classify
from .config import AddressFamily, EngineConfig
from .scheduler import ProbeTask, Scheduler
from .aggregator import ResultStream, RunStats
from .engine import AvailabilityEngine, check_all
from .errors import ConfigurationError, ReachabilityError

__version__ = "0.1.0"

__all__ = [
    'AvailabilityEngine',
    'check_all',
    'EngineConfig',
    'AddressFamily',
    'Subject',
    'SubjectKind',
    'validate',
    'NetworkProbe',
    'ProbeOutcome',
    'DnsResolved',
    'DnsUnresolved',
    'HttpResponded',
    'TransportError',
    'CheckResult',
    'Status',
    'FailureKind',
    'Final',
    'Retry',
    'classify',
    'Scheduler',
    'ProbeTask',
    'ResultStream',
    'RunStats',
    'ConfigurationError',
    'ReachabilityError',
]
