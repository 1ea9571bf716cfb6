"""OAuth2 client-credentials token lifecycle for the Clever API.

A single TokenManager is created per process and shared by every API
client. It caches the current bearer token in memory, refreshes it once
75% of its lifetime has elapsed, and serializes refreshes so concurrent
callers wait for the one in-flight request instead of issuing their own.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import httpx
from pydantic import ValidationError

from roster_sync.config import AuthConfig, get_settings
from roster_sync.logging import get_logger
from roster_sync.schemas.clever_api import CleverTokenResponse

from .exceptions import AuthenticationFailedError

logger = get_logger(__name__)

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]

NEVER = datetime.max.replace(tzinfo=UTC)


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class AuthToken:
    """An issued bearer token.

    Replaced wholesale on refresh, never mutated. A lifetime of zero or
    less means the token does not expire.
    """

    value: str
    """Bearer token value (never persisted or logged)."""

    issued_at: datetime
    """When the token was received."""

    lifetime_seconds: int
    """Lifetime reported by the token endpoint."""

    token_type: str = "Bearer"
    """Authorization scheme."""

    @property
    def is_non_expiring(self) -> bool:
        """True when the endpoint reported no positive lifetime."""
        return self.lifetime_seconds <= 0

    @property
    def expires_at(self) -> datetime:
        """Absolute expiry, or datetime.max for non-expiring tokens."""
        if self.is_non_expiring:
            return NEVER
        return self.issued_at + timedelta(seconds=self.lifetime_seconds)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the token can no longer be used."""
        if self.is_non_expiring:
            return False
        return (now or _utc_now()) >= self.expires_at

    def should_refresh(self, threshold_pct: float = 75.0, now: datetime | None = None) -> bool:
        """Check whether the token is expired or past `threshold_pct` of its lifetime.

        Args:
            threshold_pct: Percentage of lifetime after which to refresh
            now: Reference time (defaults to the current UTC time)

        Returns:
            True if a new token should be requested
        """
        if self.is_non_expiring:
            return False
        now = now or _utc_now()
        if self.is_expired(now):
            return True
        elapsed = (now - self.issued_at).total_seconds()
        return elapsed / self.lifetime_seconds * 100 >= threshold_pct

    def time_until_expiration(self, now: datetime | None = None) -> timedelta:
        """Remaining lifetime (timedelta.max for non-expiring tokens)."""
        if self.is_non_expiring:
            return timedelta.max
        remaining = self.expires_at - (now or _utc_now())
        return max(remaining, timedelta(0))

    @property
    def authorization_header(self) -> str:
        """Value for the Authorization header."""
        return f"{self.token_type} {self.value}"


class TokenManager:
    """Acquire, cache, and proactively refresh the API bearer token.

    Usage:
        async with TokenManager() as tokens:
            token = await tokens.get_valid_token()
            headers = {"Authorization": token.authorization_header}

    The manager is injectable: tests pass a stub http client, a fake
    clock, and a no-op sleep.
    """

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        *,
        config: AuthConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = _utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the token manager.

        Args:
            client_id: OAuth client id. Defaults to CLEVER_CLIENT_ID.
            client_secret: OAuth client secret. Defaults to CLEVER_CLIENT_SECRET.
            config: Token endpoint and retry settings. Defaults to Settings.auth.
            http_client: Optional shared httpx client (not closed by us).
            clock: Returns the current UTC time.
            sleep: Awaitable used for backoff delays.

        Raises:
            AuthenticationFailedError: If no credentials are configured.
        """
        settings = get_settings()
        self._client_id = client_id or settings.clever_client_id
        self._client_secret = client_secret or settings.clever_client_secret
        if not self._client_id or not self._client_secret:
            raise AuthenticationFailedError(
                "Clever credentials required. Set CLEVER_CLIENT_ID and CLEVER_CLIENT_SECRET."
            )
        self._config = config or settings.auth
        self._http = http_client
        self._owns_http = http_client is None
        self._clock = clock
        self._sleep = sleep

        self._token: AuthToken | None = None
        self._refresh_lock = asyncio.Lock()
        self._last_successful_auth: datetime | None = None
        self._last_error: str | None = None

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------
    @property
    def current_token(self) -> AuthToken | None:
        """The cached token, if any."""
        return self._token

    @property
    def last_successful_auth(self) -> datetime | None:
        """When a token was last obtained."""
        return self._last_successful_auth

    @property
    def last_error(self) -> str | None:
        """Message of the most recent failed token request."""
        return self._last_error

    def time_until_expiration(self) -> timedelta | None:
        """Remaining lifetime of the cached token."""
        if self._token is None:
            return None
        return self._token.time_until_expiration(self._clock())

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._config.timeout_seconds)
        return self._http

    async def close(self) -> None:
        """Close the HTTP client if this manager created it."""
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> TokenManager:
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.close()

    # -------------------------------------------------------------------------
    # Token access
    # -------------------------------------------------------------------------
    def _is_usable(self, token: AuthToken | None) -> bool:
        return token is not None and not token.should_refresh(
            self._config.refresh_threshold_pct, self._clock()
        )

    async def get_valid_token(self) -> AuthToken:
        """Return the cached token, refreshing it first when due.

        Concurrent callers share one refresh. If the refresh fails but the
        cached token has not yet expired, the cached token is returned.

        Returns:
            A token that is not expired

        Raises:
            AuthenticationFailedError: If refresh failed and no unexpired
                token is available.
        """
        token = self._token
        if self._is_usable(token):
            assert token is not None
            return token

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited
            token = self._token
            if self._is_usable(token):
                assert token is not None
                return token

            try:
                new_token = await self._request_with_retry()
            except AuthenticationFailedError:
                if token is not None and not token.is_expired(self._clock()):
                    logger.warning(
                        "Token refresh failed; using cached token for {} more",
                        token.time_until_expiration(self._clock()),
                    )
                    return token
                raise

            self._token = new_token
            return new_token

    def invalidate(self, token: AuthToken | None = None) -> None:
        """Drop the cached token so the next call requests a new one.

        Args:
            token: Only invalidate if this is still the cached token. Lets a
                caller that saw a 401 avoid discarding a token another
                caller has already replaced.
        """
        if token is None or self._token is token:
            self._token = None

    # -------------------------------------------------------------------------
    # Token endpoint
    # -------------------------------------------------------------------------
    async def _request_with_retry(self) -> AuthToken:
        attempts = self._config.max_attempts
        for attempt in range(attempts):
            try:
                token = await self._request_token()
            except _RetryableTokenError as e:
                self._last_error = str(e)
                if attempt + 1 >= attempts:
                    break
                delay = self._config.base_delay_seconds * 2**attempt
                logger.warning(
                    "Token request attempt {}/{} failed ({}); retrying in {}s",
                    attempt + 1,
                    attempts,
                    e,
                    delay,
                )
                await self._sleep(delay)
                continue
            except AuthenticationFailedError as e:
                self._last_error = str(e)
                logger.error("Token request rejected: {}", e)
                raise

            self._last_successful_auth = self._clock()
            self._last_error = None
            logger.info(
                "Obtained access token (expires in {}s)",
                token.lifetime_seconds if not token.is_non_expiring else "never",
            )
            return token

        raise AuthenticationFailedError(
            f"Token request failed after {attempts} attempts: {self._last_error}"
        )

    async def _request_token(self) -> AuthToken:
        try:
            response = await self._get_http().post(
                self._config.token_endpoint,
                auth=(self._client_id, self._client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
            )
        except httpx.TransportError as e:
            raise _RetryableTokenError(f"network error: {e.__class__.__name__}") from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise _RetryableTokenError(f"token endpoint returned {status}")
        if status >= 400:
            raise AuthenticationFailedError(f"Token endpoint rejected credentials ({status})")

        try:
            parsed = CleverTokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise _RetryableTokenError("malformed token response") from e

        return AuthToken(
            value=parsed.access_token,
            issued_at=self._clock(),
            lifetime_seconds=parsed.expires_in,
            token_type=parsed.token_type or "Bearer",
        )


class _RetryableTokenError(Exception):
    """Internal signal for a token attempt worth retrying."""
