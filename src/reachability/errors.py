"""Exception types raised by the reachability engine."""


class ReachabilityError(Exception):
    """Base class for errors surfaced to the caller of the engine."""


class ConfigurationError(ReachabilityError, ValueError):
    """Invalid engine configuration, detected before any probing starts."""
