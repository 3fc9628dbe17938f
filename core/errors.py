"""Exception types shared across the scanner.

Only LoadError is fatal. Everything else is caught by the component that
raised it and degrades to "no additional evidence".
"""


class WardError(Exception):
    """Base class for all scanner errors."""


class LoadError(WardError):
    """The fingerprint database is missing or malformed."""


class FetchError(WardError):
    """A probe could not be completed (network, timeout, TLS)."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class ToolInvocationError(WardError):
    """The external template tool could not be run."""


class MalformedRecord(WardError):
    """A line of tool output could not be decoded."""
