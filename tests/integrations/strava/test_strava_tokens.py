from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from nudge.integrations.strava.errors import AuthenticationError
from nudge.integrations.strava.schemas import AuthSession
from nudge.integrations.strava.tokens import TokenManager
from nudge.state.session_repository import InMemorySessionRepository

NOW = 1_750_000_000


def make_manager(strava_config, handler=None) -> TokenManager:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler)) if handler else None
    return TokenManager(strava_config, http_client=http_client, clock=lambda: NOW)


def form(request: httpx.Request) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


def test_is_expired_compares_against_clock(strava_config):
    manager = make_manager(strava_config)

    assert manager.is_expired(AuthSession(access_token="a", expires_at=NOW - 1))
    assert not manager.is_expired(AuthSession(access_token="a", expires_at=NOW))
    assert not manager.is_expired(AuthSession(access_token="a", expires_at=NOW + 3600))


def test_authorization_url_contains_client_and_scope(strava_config):
    url = make_manager(strava_config).authorization_url()
    params = parse_qs(urlparse(url).query)

    assert url.startswith("https://www.strava.com/oauth/authorize?")
    assert params["client_id"] == ["id"]
    assert params["response_type"] == ["code"]
    assert params["scope"] == ["read,activity:read_all"]


@pytest.mark.asyncio
async def test_refresh_keeps_athlete_from_previous_session(strava_config):
    def handler(request: httpx.Request) -> httpx.Response:
        body = form(request)
        assert request.url.path == "/oauth/token"
        assert body["grant_type"] == "refresh_token"
        assert body["refresh_token"] == "old-refresh"
        assert body["client_secret"] == "secret"
        return httpx.Response(200, json={"access_token": "new-access", "refresh_token": "new-refresh", "expires_at": NOW + 21600})

    previous = AuthSession(access_token="old", refresh_token="old-refresh", expires_at=NOW - 10, athlete_id=7, athlete={"id": 7})
    session = await make_manager(strava_config, handler).refresh(previous)

    assert session.access_token == "new-access"
    assert session.refresh_token == "new-refresh"
    assert session.expires_at == NOW + 21600
    assert session.athlete_id == 7


@pytest.mark.asyncio
async def test_refresh_failure_is_an_authentication_error(strava_config):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"message": "Bad Request"})

    with pytest.raises(AuthenticationError) as exc_info:
        await make_manager(strava_config, handler).refresh("bad-refresh")

    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_refresh_rejects_malformed_payload(strava_config):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "x"})

    with pytest.raises(AuthenticationError):
        await make_manager(strava_config, handler).refresh("r")


@pytest.mark.asyncio
async def test_refresh_without_refresh_token_fails(strava_config):
    with pytest.raises(AuthenticationError):
        await make_manager(strava_config).refresh(AuthSession(access_token="a", athlete_id=1))


@pytest.mark.asyncio
async def test_ensure_fresh_saves_refreshed_session(strava_config):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "fresh", "refresh_token": "r2", "expires_at": NOW + 100})

    repository = InMemorySessionRepository()
    expired = AuthSession(access_token="stale", refresh_token="r1", expires_at=NOW - 1, athlete_id=3)

    session = await make_manager(strava_config, handler).ensure_fresh(expired, repository)

    assert session.access_token == "fresh"
    assert repository.load() == session


@pytest.mark.asyncio
async def test_ensure_fresh_leaves_valid_session_alone(strava_config):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("token endpoint must not be called")

    valid = AuthSession(access_token="ok", refresh_token="r", expires_at=NOW + 60, athlete_id=3)

    assert await make_manager(strava_config, handler).ensure_fresh(valid) is valid


@pytest.mark.asyncio
async def test_exchange_code_builds_session_with_athlete(strava_config):
    def handler(request: httpx.Request) -> httpx.Response:
        body = form(request)
        assert body["grant_type"] == "authorization_code"
        assert body["code"] == "abc"
        return httpx.Response(
            200,
            json={
                "access_token": "a",
                "refresh_token": "r",
                "expires_at": NOW + 21600,
                "athlete": {"id": 99, "firstname": "Ada"},
            },
        )

    session = await make_manager(strava_config, handler).exchange_code("abc")

    assert session.athlete_id == 99
    assert session.athlete["firstname"] == "Ada"
