"""Strava OAuth token lifecycle.

Tracks expiry of the bearer credential pair and exchanges refresh tokens for
new ones. There is no retry loop here: a failed refresh surfaces as an
AuthenticationError and the caller decides whether to log in again.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx
from loguru import logger

from nudge.config.settings import StravaConfig
from nudge.integrations.strava.errors import AuthenticationError
from nudge.integrations.strava.schemas import AuthSession

if TYPE_CHECKING:
    from nudge.state.session_repository import SessionRepository

DEFAULT_SCOPE = "read,activity:read_all"


class TokenManager:
    def __init__(
        self,
        config: StravaConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._http = http_client
        self._clock = clock

    def is_expired(self, session: AuthSession) -> bool:
        """Check if the access token is past its expiry."""
        return self._clock() > session.expires_at

    def authorization_url(self, scope: str = DEFAULT_SCOPE) -> str:
        params = {
            "client_id": self._config.client_id,
            "redirect_uri": self._config.redirect_uri,
            "response_type": "code",
            "scope": scope,
        }
        return f"{self._config.auth_base}/authorize?{urlencode(params)}"

    async def _post_token(self, data: dict[str, str]) -> dict[str, Any]:
        url = f"{self._config.auth_base}/token"
        payload = {
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
            **data,
        }
        try:
            if self._http is not None:
                resp = await self._http.post(url, data=payload)
            else:
                async with httpx.AsyncClient(timeout=self._config.timeout) as client:
                    resp = await client.post(url, data=payload)
            resp.raise_for_status()
            token_data = resp.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"[TOKENS] Token endpoint rejected {data['grant_type']}: {status} - {e.response.text[:200]}")
            raise AuthenticationError(f"Token exchange failed ({status})", status_code=status) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[TOKENS] Token endpoint call failed for {data['grant_type']}: {e!s}")
            raise AuthenticationError(f"Token exchange failed: {e!s}") from e

        if not isinstance(token_data.get("access_token"), str) or not isinstance(token_data.get("expires_at"), int):
            raise AuthenticationError("Malformed token response from Strava")
        return token_data

    async def exchange_code(self, code: str) -> AuthSession:
        """Exchange an authorization code for a new session.

        Raises:
            AuthenticationError: If the exchange fails
        """
        logger.info("[TOKENS] Exchanging authorization code for access token")
        token_data = await self._post_token({"code": code, "grant_type": "authorization_code"})
        session = AuthSession.from_token_response(token_data)
        logger.info(f"[TOKENS] Authorized athlete_id={session.athlete_id}")
        return session

    async def refresh(self, session_or_token: AuthSession | str) -> AuthSession:
        """Exchange a refresh token for a new access/refresh pair.

        Accepts either the current session (its athlete is carried over) or a
        bare refresh token.

        Raises:
            AuthenticationError: If there is no refresh token or the refresh fails
        """
        previous = session_or_token if isinstance(session_or_token, AuthSession) else None
        refresh_token = previous.refresh_token if previous else session_or_token
        if not refresh_token:
            raise AuthenticationError("No refresh token available; log in again")

        logger.debug("[TOKENS] Refreshing Strava access token")
        token_data = await self._post_token({"refresh_token": refresh_token, "grant_type": "refresh_token"})
        session = AuthSession.from_token_response(token_data, previous=previous)
        logger.info(f"[TOKENS] Access token refreshed, expires_at={session.expires_at}")
        return session

    async def ensure_fresh(self, session: AuthSession, repository: SessionRepository | None = None) -> AuthSession:
        """Return a usable session, refreshing it first if expired.

        The refreshed session replaces the persisted one when a repository is
        given.
        """
        if not self.is_expired(session) or not session.refresh_token:
            return session
        refreshed = await self.refresh(session)
        if repository is not None:
            repository.save(refreshed)
        return refreshed
