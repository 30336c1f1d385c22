"""
Exception taxonomy shared by the REST and streaming clients.
"""

from typing import Any, Dict, Optional


class TraderMadeError(Exception):
    """Base exception for the TraderMade clients."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class FeedError(TraderMadeError):
    """Streaming feed failure."""


class FeedConnectionError(FeedError):
    """The websocket could not be opened or was lost."""


class FeedAuthenticationError(FeedError):
    """Sending the credential frame failed after the socket opened."""


class FeedProtocolError(FeedError):
    """An inbound frame matched no known shape and was dropped."""

    def __init__(self, message: str, frame: str):
        super().__init__(message, {"frame": frame})
        self.frame = frame


class FeedRetriesExhaustedError(FeedError):
    """Reconnection gave up after the configured number of attempts."""

    def __init__(self, attempts: int):
        super().__init__(f"gave up reconnecting after {attempts} attempts", {"attempts": attempts})
        self.attempts = attempts


class RestError(TraderMadeError):
    """REST request failure."""


class RestTransportError(RestError):
    """The HTTP request never produced a response."""


class APIError(RestError):
    """The API answered with an error status or an embedded error code."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[int] = None,
        errors: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, {"status_code": status_code, "error_code": error_code, "errors": errors or {}})
        self.status_code = status_code
        self.error_code = error_code
        self.errors = errors or {}


class ResponseParseError(RestError):
    """A successful response body did not match the expected payload."""
