"""
Exceptions raised by the tracking core.

Only ConfigurationError is fatal; the others are raised at component seams
and handled inside the tick.
"""


class ConfigurationError(ValueError):
    """Invalid engine configuration. Raised at startup."""


class InputError(ValueError):
    """A snapshot report without a usable aircraft id."""


class EnrichmentUnavailable(RuntimeError):
    """An external lookup timed out or failed."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source} lookup unavailable: {reason}")
        self.source = source
        self.reason = reason


class ZoneNotFoundError(KeyError):
    """Zone id not present in the registry."""
