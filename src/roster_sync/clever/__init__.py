"""Clever API access.

This module provides:
- TokenManager / AuthToken: bearer token lifecycle
- CleverClient: paginated reads with retry and rate-limit handling
- ChangeFeedReader / ChangeEvent: classified change-feed consumption
"""

from .auth import AuthToken, TokenManager
from .client import CleverClient
from .events import ChangeEvent, ChangeFeedReader, EventAction, ObjectType
from .exceptions import (
    AuthenticationFailedError,
    CleverClientError,
    CleverNotFoundError,
    CleverRetryableError,
    RateLimitedError,
    TransientFetchFailedError,
)

__all__ = [
    # Auth
    "AuthToken",
    "TokenManager",
    # Client
    "CleverClient",
    # Change feed
    "ChangeEvent",
    "ChangeFeedReader",
    "EventAction",
    "ObjectType",
    # Exceptions
    "AuthenticationFailedError",
    "CleverClientError",
    "CleverNotFoundError",
    "CleverRetryableError",
    "RateLimitedError",
    "TransientFetchFailedError",
]
