"""Exception hierarchy shared across collection, storage and publishing."""

from typing import Any


class ThreatSyncError(Exception):
    """Base class for all ThreatSync errors."""


class ConfigurationError(ThreatSyncError):
    """Invalid credentials or malformed configuration; fatal before a cycle starts."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []

    def __str__(self) -> str:
        base = super().__str__()
        if self.errors:
            return f"{base}: {'; '.join(self.errors)}"
        return base


class SourceFetchError(ThreatSyncError):
    """Network, timeout or non-2xx failure of a single threat source."""

    def __init__(self, source_name: str, message: str):
        super().__init__(f"{source_name}: {message}")
        self.source_name = source_name


class UnsupportedFormatError(ThreatSyncError):
    """The source declares a format that has no parser."""

    def __init__(self, source_name: str, feed_format: str):
        super().__init__(f"{feed_format} format not implemented for {source_name}")
        self.source_name = source_name
        self.feed_format = feed_format


class StoreError(ThreatSyncError):
    """Base class for indicator store failures."""


class StoreReadError(StoreError):
    """Stored data is missing or unreadable."""


class StoreWriteError(StoreError):
    """The backing store rejected a write."""


class DownstreamAPIError(ThreatSyncError):
    """The list API answered with a non-2xx status or an unsuccessful envelope."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class RateLimitedError(DownstreamAPIError):
    """HTTP 429 from the list API; retried locally with backoff."""
