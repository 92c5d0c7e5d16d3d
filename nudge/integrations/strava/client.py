from __future__ import annotations

import asyncio
import datetime as dt
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from loguru import logger

from nudge.config.settings import StravaConfig
from nudge.integrations.strava.errors import (
    AuthenticationError,
    RateLimitError,
    ServerError,
    UnexpectedResponseError,
)
from nudge.utils.time_utils import months_ago, to_unix_seconds

MAX_ATTEMPTS = 5
MAX_PER_PAGE = 100
PAGE_DELAY_SECONDS = 0.25


def _retry_after_seconds(response: httpx.Response) -> int | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(int(value.strip()), 0)
    except ValueError:
        return None


class StravaClient:
    """Async Strava API client.

    - Sequential pagination for the activity list
    - Exponential backoff on 429/5xx, honoring Retry-After
    - 401/403 are never retried; refresh the token before calling
    """

    def __init__(
        self,
        access_token: str,
        *,
        config: StravaConfig,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._access_token = access_token
        self._config = config
        self._http = http_client or httpx.AsyncClient(timeout=config.timeout)
        self._owns_http = http_client is None
        self._sleep = sleep

    async def __aenter__(self) -> StravaClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    async def _backoff(self, attempt: int, delay: float) -> None:
        # The final attempt raises right away
        if attempt + 1 < MAX_ATTEMPTS:
            await self._sleep(delay)

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET a Strava endpoint, applying the status policy.

        Raises:
            AuthenticationError: On 401/403
            RateLimitError: When 429 persists for MAX_ATTEMPTS attempts
            ServerError: When 5xx or transport errors persist for MAX_ATTEMPTS attempts
            UnexpectedResponseError: On any other non-2xx status
        """
        url = f"{self._config.api_base}{path}"
        last_error: Exception | None = None

        for attempt in range(MAX_ATTEMPTS):
            try:
                resp = await self._http.get(url, headers=self._headers(), params=params)
            except httpx.TransportError as e:
                delay = 2**attempt
                logger.warning(f"[STRAVA] Transport error on {path} (attempt {attempt + 1}/{MAX_ATTEMPTS}): {e!s}; retrying in {delay}s")
                last_error = ServerError(f"Transport error calling {path}: {e!s}")
                await self._backoff(attempt, delay)
                continue

            status = resp.status_code
            if 200 <= status < 300:
                return resp.json()

            if status in {401, 403}:
                logger.warning(f"[STRAVA] Authentication rejected on {path}: {status}")
                raise AuthenticationError(f"Strava rejected the access token ({status})", status_code=status)

            if status == 429:
                retry_after = _retry_after_seconds(resp)
                delay = retry_after if retry_after is not None else 2**attempt
                logger.warning(f"[STRAVA] Rate limited on {path} (attempt {attempt + 1}/{MAX_ATTEMPTS}); retrying in {delay}s")
                last_error = RateLimitError(f"Rate limited by Strava after {MAX_ATTEMPTS} attempts", status_code=status)
                await self._backoff(attempt, delay)
                continue

            if status >= 500:
                delay = 2**attempt
                logger.warning(f"[STRAVA] Server error {status} on {path} (attempt {attempt + 1}/{MAX_ATTEMPTS}); retrying in {delay}s")
                last_error = ServerError(f"Strava server error {status} after {MAX_ATTEMPTS} attempts", status_code=status)
                await self._backoff(attempt, delay)
                continue

            logger.error(f"[STRAVA] Unexpected response {status} on {path}: {resp.text[:200]}")
            raise UnexpectedResponseError(f"Unexpected Strava response {status}", status_code=status)

        logger.error(f"[STRAVA] Giving up on {path} after {MAX_ATTEMPTS} attempts")
        raise last_error or ServerError(f"Strava request to {path} failed")

    async def fetch_athlete(self) -> dict[str, Any]:
        """Fetch the authenticated athlete's profile."""
        return await self._get("/athlete")

    async def fetch_athlete_stats(self, athlete_id: int | str) -> dict[str, Any]:
        """Fetch aggregate totals for an athlete."""
        return await self._get(f"/athletes/{athlete_id}/stats")

    async def fetch_activities_page(
        self,
        *,
        after: dt.datetime | str | int,
        page: int,
        per_page: int = MAX_PER_PAGE,
    ) -> list[dict[str, Any]]:
        """Fetch ONE page of activities started after ``after``."""
        payload = await self._get(
            "/athlete/activities",
            params={
                "after": to_unix_seconds(after),
                "page": page,
                "per_page": min(per_page, MAX_PER_PAGE),
            },
        )
        return payload or []

    async def fetch_activities_since(
        self,
        after: dt.datetime | str | int,
        per_page: int = MAX_PER_PAGE,
    ) -> list[dict[str, Any]]:
        """Fetch every activity started after ``after``.

        Pages are requested one at a time; an empty page or one shorter than
        ``per_page`` ends the listing.
        """
        if per_page < 1:
            raise ValueError(f"per_page must be at least 1, got {per_page}")
        per_page = min(per_page, MAX_PER_PAGE)
        activities: list[dict[str, Any]] = []
        page = 1

        while True:
            batch = await self.fetch_activities_page(after=after, page=page, per_page=per_page)
            activities.extend(batch)
            logger.debug(f"[STRAVA] Page {page}: {len(batch)} activities (total={len(activities)})")

            if not batch or len(batch) < per_page:
                break

            page += 1
            await self._sleep(PAGE_DELAY_SECONDS)

        logger.info(f"[STRAVA] Fetched {len(activities)} activities in {page} page(s)")
        return activities

    async def fetch_activities_last_months(self, months: int = 3) -> list[dict[str, Any]]:
        return await self.fetch_activities_since(months_ago(months))
