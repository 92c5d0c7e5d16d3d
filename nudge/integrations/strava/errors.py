"""Errors raised by the Strava client and token manager."""

from __future__ import annotations


class StravaAPIError(Exception):
    """Base exception for Strava API errors."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class AuthenticationError(StravaAPIError):
    """Raised on 401/403, a failed token refresh, or a missing session.

    Never retried automatically; the caller must refresh or log in again.
    """


class RateLimitError(StravaAPIError):
    """Raised when 429 responses persist past the retry ceiling."""


class ServerError(StravaAPIError):
    """Raised when 5xx responses or transport failures persist past the retry ceiling."""


class UnexpectedResponseError(StravaAPIError):
    """Raised on any other non-2xx response."""
