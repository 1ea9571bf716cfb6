"""Clever API client exceptions."""


class CleverClientError(Exception):
    """Base exception for Clever API client errors."""

    pass


class AuthenticationFailedError(CleverClientError):
    """Raised when no usable bearer token could be obtained.

    Fatal for the triggering run: callers must not issue API requests
    after receiving it.
    """

    pass


class CleverRetryableError(CleverClientError):
    """Base class for errors the retry policy handles internally."""

    pass


class RateLimitedError(CleverRetryableError):
    """Raised on a 429 response.

    Handled inside the client by sleeping `retry_after` plus a safety
    margin; it does not consume a retry attempt and normally never
    reaches callers.
    """

    def __init__(self, message: str, retry_after: float = 0.0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TransientFetchFailedError(CleverRetryableError):
    """Raised when network errors or 5xx responses exhausted the retry policy."""

    def __init__(self, message: str, attempts: int, endpoint: str | None = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.endpoint = endpoint


class CleverNotFoundError(CleverClientError):
    """Raised when a resource is not found (404)."""

    pass
