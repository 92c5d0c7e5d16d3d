import asyncio
import datetime as dt

import httpx
import pytest

from conftest import FakeStravaClient, make_activity
from nudge.db.documents import SyncStatusDocument
from nudge.db.store import DocumentStore, StoreUnavailableError
from nudge.integrations.strava.errors import AuthenticationError, ServerError
from nudge.integrations.strava.schemas import AuthSession
from nudge.integrations.strava.tokens import TokenManager
from nudge.ingestion.sync import SyncService
from nudge.state.session_repository import InMemorySessionRepository

NOW = dt.datetime(2025, 6, 15, 12, 0, tzinfo=dt.timezone.utc)
NOW_TS = int(NOW.timestamp())


def token_manager(strava_config, handler=None, now: int = NOW_TS) -> TokenManager:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler)) if handler else None
    return TokenManager(strava_config, http_client=http_client, clock=lambda: now)


def make_service(store, strava_config, client, *, tokens=None, repository=None) -> SyncService:
    return SyncService(
        store=store,
        token_manager=tokens or token_manager(strava_config),
        client_factory=client,
        session_repository=repository,
        clock=lambda: NOW,
    )


def valid_session(athlete_id=12345) -> AuthSession:
    return AuthSession(access_token="access", refresh_token="refresh", expires_at=NOW_TS + 3600, athlete_id=athlete_id)


@pytest.mark.asyncio
async def test_full_sync_stores_everything_and_reports_progress(store, strava_config, athlete_id):
    client = FakeStravaClient()
    messages = []

    result = await make_service(store, strava_config, client).sync_all(valid_session(), on_progress=messages.append)

    assert result.success is True
    assert result.errors == []
    assert result.results.activities.count == 2
    assert messages == [
        "Fetching athlete profile...",
        "Storing athlete profile...",
        "Fetching athlete stats...",
        "Storing athlete stats...",
        "Fetching activities from Strava...",
        "Storing 2 activities...",
        "Data synchronization completed!",
    ]
    assert client.tokens == ["access"]
    assert client.closed is True

    assert (await store.get_profile(athlete_id)).firstname == "Ada"
    assert (await store.get_stats(athlete_id)).all_time.run.count == 2
    assert len(await store.get_activities(athlete_id)) == 2
    status = await store.get_sync_status(athlete_id)
    assert status.success is True
    assert status.last_sync_time == NOW.isoformat()


@pytest.mark.asyncio
async def test_failed_stage_does_not_stop_later_stages(store, strava_config, athlete_id):
    client = FakeStravaClient(fail={"stats": ServerError("Strava API unavailable", status_code=503)})

    result = await make_service(store, strava_config, client).sync_all(valid_session())

    assert result.success is False
    assert result.errors == ["Athlete stats sync failed: Strava API unavailable"]
    assert result.results.athlete.success is True
    assert result.results.stats.success is False
    assert result.results.activities.success is True

    assert await store.get_profile(athlete_id) is not None
    assert await store.get_stats(athlete_id) is None
    assert len(await store.get_activities(athlete_id)) == 2
    status = await store.get_sync_status(athlete_id)
    assert status.success is False
    assert status.errors == result.errors


@pytest.mark.asyncio
async def test_default_window_is_three_calendar_months(store, strava_config):
    client = FakeStravaClient()

    await make_service(store, strava_config, client).sync_all(valid_session())

    assert client.after == dt.datetime(2025, 3, 15, 12, 0, tzinfo=dt.timezone.utc)


@pytest.mark.asyncio
async def test_start_date_overrides_default_window(store, strava_config):
    client = FakeStravaClient()

    await make_service(store, strava_config, client).sync_all(valid_session(), start_date="2024-01-01T00:00:00Z")

    assert client.after == dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc)


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_and_persisted(store, strava_config):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "new-access", "refresh_token": "new-refresh", "expires_at": NOW_TS + 21600})

    repository = InMemorySessionRepository()
    client = FakeStravaClient()
    expired = AuthSession(access_token="old", refresh_token="refresh", expires_at=NOW_TS - 60, athlete_id=12345)
    service = make_service(store, strava_config, client, tokens=token_manager(strava_config, handler), repository=repository)
    messages = []

    result = await service.sync_all(expired, on_progress=messages.append)

    assert result.success is True
    assert messages[0] == "Refreshing access token..."
    assert client.tokens == ["new-access"]
    assert repository.load().access_token == "new-access"
    assert repository.load().athlete_id == 12345


@pytest.mark.asyncio
async def test_refresh_failure_aborts_and_records_status(store, strava_config, athlete_id):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "Authorization Error"})

    client = FakeStravaClient()
    expired = AuthSession(access_token="old", refresh_token="refresh", expires_at=NOW_TS - 60, athlete_id=athlete_id)
    service = make_service(store, strava_config, client, tokens=token_manager(strava_config, handler))

    with pytest.raises(AuthenticationError):
        await service.sync_all(expired)

    assert client.tokens == []
    status = await store.get_sync_status(athlete_id)
    assert status.success is False
    assert len(status.errors) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "session, message",
    [
        (None, "No valid authentication data provided"),
        (AuthSession(access_token="", athlete_id=1), "No valid authentication data provided"),
        (AuthSession(access_token="access"), "No athlete ID found in authentication data"),
    ],
)
async def test_sync_requires_session_and_athlete(store, strava_config, session, message):
    client = FakeStravaClient()

    with pytest.raises(AuthenticationError, match=message):
        await make_service(store, strava_config, client).sync_all(session)

    assert client.tokens == []


@pytest.mark.asyncio
async def test_quick_sync_runs_only_requested_types(store, strava_config, athlete_id):
    client = FakeStravaClient(fail={"stats": ServerError("boom", status_code=500)})
    messages = []

    results = await make_service(store, strava_config, client).quick_sync(
        valid_session(),
        data_types=["stats", "activities", "gear"],
        on_progress=messages.append,
    )

    assert set(results) == {"stats", "activities"}
    assert results["stats"].success is False
    assert results["stats"].error == "boom"
    assert results["activities"].count == 2
    assert messages == ["Syncing athlete stats...", "Syncing activities..."]
    assert await store.get_profile(athlete_id) is None
    assert await store.get_sync_status(athlete_id) is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "age, expected",
    [
        (None, True),
        (dt.timedelta(hours=30), True),
        (dt.timedelta(hours=1), False),
    ],
)
async def test_needs_sync_by_age_of_last_sync(store, strava_config, athlete_id, age, expected):
    if age is not None:
        await store.store_sync_status(athlete_id, SyncStatusDocument(last_sync_time=(NOW - age).isoformat(), success=True))
    service = make_service(store, strava_config, FakeStravaClient())

    assert await service.needs_sync(athlete_id, max_age_hours=24) is expected


@pytest.mark.asyncio
async def test_auto_sync_skips_fresh_data(store, strava_config, athlete_id):
    await store.store_sync_status(athlete_id, SyncStatusDocument(last_sync_time=(NOW - dt.timedelta(hours=2)).isoformat(), success=True))
    client = FakeStravaClient()
    messages = []

    result = await make_service(store, strava_config, client).auto_sync(valid_session(), on_progress=messages.append)

    assert result is None
    assert messages == ["Data is up to date, no sync needed"]
    assert client.tokens == []


@pytest.mark.asyncio
async def test_auto_sync_runs_when_never_synced(store, strava_config):
    client = FakeStravaClient()
    messages = []

    result = await make_service(store, strava_config, client).auto_sync(valid_session(), on_progress=messages.append)

    assert result.success is True
    assert messages[0] == "Data sync needed, starting synchronization..."
    assert messages[-1] == "Data synchronization completed!"


@pytest.mark.asyncio
async def test_concurrent_syncs_of_one_athlete_do_not_interleave(store, strava_config):
    client = FakeStravaClient()
    service = make_service(store, strava_config, client)

    first, second = await asyncio.gather(service.sync_all(valid_session()), service.sync_all(valid_session()))

    assert first.success and second.success
    assert client.calls == ["athlete", "stats", "activities", "athlete", "stats", "activities"]
    assert service._locks == {}


@pytest.mark.asyncio
async def test_status_write_failure_does_not_fail_sync(store, strava_config, athlete_id, monkeypatch):
    async def unavailable(*args, **kwargs):
        raise StoreUnavailableError("Document store is unreachable")

    monkeypatch.setattr(store, "store_sync_status", unavailable)

    result = await make_service(store, strava_config, FakeStravaClient()).sync_all(valid_session())

    assert result.success is True
    assert result.last_sync_time == NOW.isoformat()
    assert len(await store.get_activities(athlete_id)) == 2


@pytest.mark.asyncio
async def test_unreadable_status_counts_as_stale(strava_config, athlete_id):
    service = make_service(DocumentStore(None), strava_config, FakeStravaClient())

    assert await service.needs_sync(athlete_id) is True


@pytest.mark.asyncio
async def test_malformed_last_sync_time_counts_as_stale(store, strava_config, athlete_id):
    await store.store_sync_status(athlete_id, SyncStatusDocument(last_sync_time="yesterday-ish", success=True))
    client = FakeStravaClient()
    service = make_service(store, strava_config, client)

    assert await service.needs_sync(athlete_id) is True
    result = await service.auto_sync(valid_session())
    assert result.success is True
    assert client.calls == ["athlete", "stats", "activities"]
