"""Custom exceptions for the review poller."""

from typing import Optional


class ReviewPollerException(Exception):
    """Base exception for the review poller."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ConfigError(ReviewPollerException):
    """Startup configuration could not be loaded or is invalid."""

    def __init__(self, message: str = "Invalid configuration"):
        super().__init__(message, 500)


class ValidationError(ReviewPollerException):
    """Client supplied malformed or missing query parameters."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 400 status code."""
        super().__init__(message, 400)


class StoreError(ReviewPollerException):
    """Persistence I/O failed (state document or review log)."""

    def __init__(self, message: str = "Store operation failed"):
        super().__init__(message, 500)


class FeedError(ReviewPollerException):
    """Base class for failures fetching or decoding a feed page."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message, status_code)


class FeedHTTPError(FeedError):
    """The feed answered with a non-success HTTP status.

    Carries the status code and a truncated response body for diagnostics.
    """

    def __init__(self, status: int, body: str = "", url: Optional[str] = None):
        self.status = status
        self.body = body
        self.url = url
        super().__init__(f"http {status} {url or ''}: {body}".strip())


class FeedDecodeError(FeedError):
    """The feed body was not a decodable feed document."""

    def __init__(self, message: str = "Could not decode feed document", url: Optional[str] = None):
        self.url = url
        super().__init__(message)
