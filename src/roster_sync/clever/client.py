"""Async Clever API client with retry and rate-limit handling.

This module provides cursor-following page reads against the Clever
v3.0 data API. Every request is wrapped in a transient-fault policy:
network errors and 5xx responses back off exponentially (2s, 4s, 8s,
16s, 32s by default) while 429 responses wait for the server's
Retry-After hint plus a safety margin without using up a retry.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

import httpx
from pydantic import ValidationError

from roster_sync.config import ApiConfig, get_settings
from roster_sync.logging import get_logger
from roster_sync.schemas.clever_api import CleverPage, CleverSchool

from .exceptions import (
    AuthenticationFailedError,
    CleverClientError,
    CleverNotFoundError,
    RateLimitedError,
    TransientFetchFailedError,
)

if TYPE_CHECKING:
    from .auth import TokenManager

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Record = dict[str, Any]


class CleverClient:
    """Retrying, paginated reader for the Clever data API.

    Usage:
        async with TokenManager() as tokens, CleverClient(tokens) as client:
            async for school in client.iter_schools():
                print(school.name)

            records, cursor = await client.fetch_page("schools/123/sections")
            while cursor:
                records, cursor = await client.fetch_page("schools/123/sections", cursor)
    """

    def __init__(
        self,
        token_manager: TokenManager,
        *,
        config: ApiConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the API client.

        Args:
            token_manager: Shared TokenManager supplying bearer tokens.
            config: API settings. Defaults to Settings.api.
            http_client: Optional httpx client. When given it must use the
                API base URL as its base_url; it is not closed by us.
            sleep: Awaitable used for backoff and rate-limit waits.
        """
        self._tokens = token_manager
        self._config = config or get_settings().api
        self._http = http_client
        self._owns_http = http_client is None
        self._sleep = sleep
        self._version_prefix = urlsplit(self._config.base_url).path.rstrip("/")

        self.requests_made = 0
        self.retries = 0
        self.rate_limit_waits = 0

    @property
    def page_size(self) -> int:
        """Records requested per page."""
        return self._config.page_size

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self._config.base_url.rstrip("/") + "/",
                timeout=self._config.timeout_seconds,
            )
        return self._http

    async def close(self) -> None:
        """Close the underlying HTTP client if we created it."""
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> CleverClient:
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
    # Paging
    # -------------------------------------------------------------------------
    async def fetch_page(
        self,
        endpoint: str,
        cursor: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> tuple[list[Record], str | None]:
        """Fetch one page of an endpoint.

        The first page is requested with the configured page size and any
        filters in `params`. Later pages are requested by passing back the
        cursor returned here, which is the server's own `next` link; offsets
        are never computed locally.

        Args:
            endpoint: Path relative to the API base (e.g. "schools/1/users")
            cursor: Cursor from a previous call, or None for the first page
            params: Query filters for the first page (e.g. {"role": "student"})

        Returns:
            Tuple of (records, next cursor or None on the last page)

        Raises:
            TransientFetchFailedError: Network/5xx failures exhausted retries
            AuthenticationFailedError: No valid token could be obtained
            CleverNotFoundError: The endpoint returned 404
        """
        if cursor is not None:
            path, query = self._cursor_to_path(cursor), None
        else:
            path, query = endpoint, {"limit": self._config.page_size, **(params or {})}

        payload = await self._get(path, query)
        try:
            page = CleverPage.model_validate(payload)
        except ValidationError as e:
            raise CleverClientError(f"Unexpected response shape from {path}") from e

        return page.records, page.next_uri

    async def iter_records(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> AsyncIterator[Record]:
        """Iterate over every record of an endpoint, fetching pages lazily.

        Args:
            endpoint: Path relative to the API base
            params: Query filters for the first page

        Yields:
            Bare resource dicts (the `{data: ...}` wrapper removed)
        """
        records, cursor = await self.fetch_page(endpoint, params=params)
        while True:
            for record in records:
                yield record
            if cursor is None:
                return
            records, cursor = await self.fetch_page(endpoint, cursor)

    def _cursor_to_path(self, cursor: str) -> str:
        """Turn a `next` link into a path relative to the base URL."""
        if cursor.startswith(("http://", "https://")):
            return cursor
        if self._version_prefix and cursor.startswith(self._version_prefix + "/"):
            cursor = cursor[len(self._version_prefix) :]
        return cursor.lstrip("/")

    # -------------------------------------------------------------------------
    # Resource helpers
    # -------------------------------------------------------------------------
    async def iter_schools(self) -> AsyncIterator[CleverSchool]:
        """Iterate over schools visible to the district token."""
        async for record in self.iter_records("schools"):
            try:
                yield CleverSchool.model_validate(record)
            except ValidationError:
                logger.warning("Skipping malformed school record: {}", record.get("id"))

    def iter_students(self, school_id: str) -> AsyncIterator[Record]:
        """Iterate over student users of a school."""
        return self.iter_records(f"schools/{school_id}/users", {"role": "student"})

    def iter_teachers(self, school_id: str) -> AsyncIterator[Record]:
        """Iterate over teacher users of a school."""
        return self.iter_records(f"schools/{school_id}/users", {"role": "teacher"})

    def iter_sections(self, school_id: str) -> AsyncIterator[Record]:
        """Iterate over sections of a school."""
        return self.iter_records(f"schools/{school_id}/sections")

    def iter_courses(self, school_id: str) -> AsyncIterator[Record]:
        """Iterate over courses taught at a school."""
        return self.iter_records(f"schools/{school_id}/courses")

    def iter_terms(self) -> AsyncIterator[Record]:
        """Iterate over district terms."""
        return self.iter_records("terms")

    def iter_events(self, starting_after: str | None = None) -> AsyncIterator[Record]:
        """Iterate over raw change-feed events after an event id."""
        params = {"starting_after": starting_after} if starting_after else None
        return self.iter_records("events", params)

    # -------------------------------------------------------------------------
    # Request execution
    # -------------------------------------------------------------------------
    async def _get(self, path: str, params: dict[str, Any] | None) -> Any:
        """GET with the transient-fault and rate-limit policy applied."""
        delays = self._config.backoff_delays()
        failures = 0
        rate_limit_waits = 0
        reauthenticated = False

        while True:
            token = await self._tokens.get_valid_token()
            failure: str
            try:
                self.requests_made += 1
                response = await self._get_http().get(
                    path,
                    params=params,
                    headers={
                        "Authorization": token.authorization_header,
                        "Accept": "application/json",
                    },
                )
            except httpx.TransportError as e:
                failure = f"network error ({e.__class__.__name__})"
            else:
                status = response.status_code

                if status == 429:
                    rate_limit_waits += 1
                    retry_after = _parse_retry_after(response.headers.get("Retry-After"))
                    if rate_limit_waits > self._config.max_rate_limit_waits:
                        raise RateLimitedError(
                            f"Still rate limited on {path} after {rate_limit_waits - 1} waits",
                            retry_after=retry_after,
                        )
                    delay = retry_after + self._config.rate_limit_margin_seconds
                    self.rate_limit_waits += 1
                    logger.info("Rate limited on {}; waiting {:.1f}s", path, delay)
                    await self._sleep(delay)
                    continue

                if status == 401:
                    if reauthenticated:
                        raise AuthenticationFailedError(f"Token rejected by API for {path}")
                    logger.info("API rejected token; requesting a new one")
                    self._tokens.invalidate(token)
                    reauthenticated = True
                    continue

                if status == 404:
                    raise CleverNotFoundError(f"Not found: {path}")

                if status >= 500:
                    failure = f"HTTP {status}"
                elif status >= 400:
                    raise CleverClientError(f"Clever API error ({status}) for {path}")
                else:
                    try:
                        return response.json()
                    except ValueError:
                        failure = "malformed JSON body"

            if failures >= len(delays):
                raise TransientFetchFailedError(
                    f"GET {path} failed after {failures + 1} attempts: {failure}",
                    attempts=failures + 1,
                    endpoint=path,
                )
            delay = delays[failures]
            failures += 1
            self.retries += 1
            logger.warning(
                "GET {} failed ({}); retry {}/{} in {}s",
                path,
                failure,
                failures,
                len(delays),
                delay,
            )
            await self._sleep(delay)


def _parse_retry_after(value: str | None) -> float:
    """Parse a Retry-After header (delta-seconds or HTTP date) into seconds."""
    if not value:
        return 0.0
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return 0.0
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max((when - datetime.now(UTC)).total_seconds(), 0.0)
