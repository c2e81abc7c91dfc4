"""Custom exceptions for gridsync.

Resolver errors carry the attempt log of the resolution that failed so
callers can explain what was tried.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gridsync.model import Attempt


class GridsyncError(Exception):
    """Base exception for all gridsync errors."""

    pass


class InvalidAddressError(GridsyncError, ValueError):
    """Raised when a column label or A1 cell address cannot be decoded."""

    def __init__(self, address: str, reason: str) -> None:
        self.address = address
        self.reason = reason
        super().__init__(f"Invalid cell address '{address}': {reason}")


class ParseError(GridsyncError):
    """Raised when a document body cannot be turned into a grid."""

    def __init__(self, reason: str, source: str | None = None) -> None:
        self.reason = reason
        self.source = source
        if source:
            super().__init__(f"Could not parse '{source}': {reason}")
        else:
            super().__init__(f"Could not parse document: {reason}")


class ResolverError(GridsyncError):
    """Base exception for signed URL resolution failures."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        attempts: list[Attempt] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.attempts = list(attempts or [])


class MockDataUnavailableError(ResolverError):
    """Raised for URLs produced by a simulated upload.

    Such URLs never point at real data, so no request is ever made for them.
    """

    retryable = False


class AuthenticationRequiredError(ResolverError):
    """Raised when no bearer token is available or the backend rejected it."""


class RefreshExhaustedError(ResolverError):
    """Raised when the single allowed URL refresh did not yield a live URL."""


class NetworkError(ResolverError):
    """Raised when storage or the backend could not be reached."""


class ApplyEditsFailedError(GridsyncError):
    """Raised when the backend refuses or fails to apply a list of cell edits."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
