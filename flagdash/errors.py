"""
Error types for FlagDash SDK.

Transport failures are classified into these types and surfaced through the
client's ``error`` event. Only ``ConfigurationError`` is ever raised to callers.
"""

from enum import Enum
from typing import Optional

import httpx


class ErrorCategory(str, Enum):
    """Categories of errors for classification."""

    CONFIGURATION = "configuration"
    AUTH = "auth"
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"
    STREAM = "stream"
    UNKNOWN = "unknown"


class FlagDashError(Exception):
    """Base exception for all FlagDash SDK errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.status_code = status_code
        self.retryable = retryable

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, category={self.category})"


class ConfigurationError(FlagDashError):
    """Raised at construction when the client configuration is unusable."""

    def __init__(self, message: str = "FlagDash: sdk_key is required"):
        super().__init__(message, category=ErrorCategory.CONFIGURATION)


class AuthenticationError(FlagDashError):
    """Raised when authentication fails (401/403)."""

    def __init__(self, message: str = "Authentication failed", status_code: int = 401):
        super().__init__(
            message,
            category=ErrorCategory.AUTH,
            status_code=status_code,
        )


class NetworkError(FlagDashError):
    """Raised on timeouts and connection failures."""

    def __init__(self, message: str = "Network error"):
        super().__init__(message, category=ErrorCategory.NETWORK, retryable=True)


class RateLimitError(FlagDashError):
    """Raised when rate limited (429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.RATE_LIMIT,
            status_code=429,
            retryable=True,
        )
        self.retry_after = retry_after


class ValidationError(FlagDashError):
    """Raised when the server rejects a request (400)."""

    def __init__(self, message: str = "Validation error"):
        super().__init__(message, category=ErrorCategory.VALIDATION, status_code=400)


class NotFoundError(FlagDashError):
    """Raised when a flag, config or AI config file does not exist (404)."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, category=ErrorCategory.NOT_FOUND, status_code=404)


class InternalError(FlagDashError):
    """Raised when server error occurs (5xx)."""

    def __init__(self, message: str = "Internal server error", status_code: int = 500):
        super().__init__(
            message,
            category=ErrorCategory.INTERNAL,
            status_code=status_code,
            retryable=True,
        )


class StreamError(FlagDashError):
    """Raised inside the live-update channel when the push stream drops."""

    def __init__(self, message: str = "Stream disconnected"):
        super().__init__(message, category=ErrorCategory.STREAM, retryable=True)


def error_for_status(status_code: int, reason: str = "") -> FlagDashError:
    """Build the error matching a non-success HTTP status."""
    message = f"FlagDash API error: {status_code} {reason}".rstrip()

    if status_code in (401, 403):
        return AuthenticationError(message, status_code)
    if status_code == 404:
        return NotFoundError(message)
    if status_code == 429:
        return RateLimitError(message)
    if status_code == 400:
        return ValidationError(message)
    if 500 <= status_code < 600:
        return InternalError(message, status_code)
    return FlagDashError(message, status_code=status_code)


def classify_error(error: Exception, status_code: Optional[int] = None) -> FlagDashError:
    """
    Classify an exception into a FlagDashError.

    Args:
        error: The original exception
        status_code: Optional HTTP status code

    Returns:
        A classified FlagDashError
    """
    if isinstance(error, FlagDashError):
        return error

    if isinstance(error, httpx.HTTPStatusError):
        return error_for_status(
            error.response.status_code, error.response.reason_phrase
        )

    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return NetworkError(str(error) or error.__class__.__name__)

    message = str(error)

    network_indicators = [
        "connection",
        "timeout",
        "timed out",
        "network",
        "dns",
    ]
    if any(indicator in message.lower() for indicator in network_indicators):
        return NetworkError(message)

    if status_code:
        return error_for_status(status_code, message)

    return FlagDashError(message)
