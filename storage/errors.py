"""Error taxonomy for the remote content store."""

from __future__ import annotations


class StoreError(Exception):
    """Base class for remote store failures.

    ``status`` carries the HTTP status code when the failure came from a
    response rather than the transport.
    """

    def __init__(self, message: str, *, status: int | None = None, path: str | None = None):
        super().__init__(message)
        self.status = status
        self.path = path


class AuthError(StoreError):
    """Missing or rejected credential. Never retried."""


class NetworkError(StoreError):
    """Transport failure, offline, or request timeout."""


class ParseError(StoreError):
    """Remote content could not be decoded into records."""
