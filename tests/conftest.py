"""Root conftest for all tests.

Shared fixtures: an in-memory SQLite document store, a deterministic clock and
Strava client configuration.
"""

import asyncio
import datetime as dt

import pytest

from nudge.config.settings import StravaConfig
from nudge.db.session import create_engine_for_url
from nudge.db.store import DocumentStore

TEST_ATHLETE_ID = 12345


class FakeClock:
    """Clock that advances by ``step`` on every call."""

    def __init__(self, start: dt.datetime, step: dt.timedelta = dt.timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> dt.datetime:
        current = self.now
        self.now = self.now + self.step
        return current


class SleepRecorder:
    """Async stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def athlete_id() -> int:
    return TEST_ATHLETE_ID


@pytest.fixture
def strava_config() -> StravaConfig:
    return StravaConfig(client_id="id", client_secret="secret", redirect_uri="http://localhost:5173/callback")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(dt.datetime(2025, 6, 15, 12, 0, tzinfo=dt.timezone.utc))


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def engine():
    """Isolated in-memory SQLite engine per test."""
    engine = create_engine_for_url("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine, clock) -> DocumentStore:
    return DocumentStore(engine, clock=clock, batch_size=2)


def make_activity(activity_id: int, **overrides) -> dict:
    """Strava summary activity payload with sensible defaults."""
    activity = {
        "id": activity_id,
        "name": f"Activity {activity_id}",
        "type": "Run",
        "sport_type": "Run",
        "distance": 5000.0,
        "moving_time": 1500,
        "elapsed_time": 1600,
        "total_elevation_gain": 40.0,
        "start_date": "2025-05-01T07:00:00Z",
        "start_date_local": "2025-05-01T09:00:00Z",
        "timezone": "(GMT+01:00) Europe/Brussels",
        "average_speed": 3.33,
        "max_speed": 4.5,
    }
    activity.update(overrides)
    return activity


class FakeStravaClient:
    """In-memory Strava client with per-endpoint failure injection."""

    def __init__(self, *, activities=None, fail=None) -> None:
        self.activities = activities if activities is not None else [make_activity(1), make_activity(2)]
        self.fail = fail or {}
        self.after = None
        self.tokens: list[str] = []
        self.closed = False
        self.calls: list[str] = []

    def __call__(self, access_token: str) -> "FakeStravaClient":
        self.tokens.append(access_token)
        return self

    async def __aenter__(self) -> "FakeStravaClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.closed = True

    async def _maybe_fail(self, endpoint: str) -> None:
        self.calls.append(endpoint)
        await asyncio.sleep(0)
        if endpoint in self.fail:
            raise self.fail[endpoint]

    async def fetch_athlete(self) -> dict:
        await self._maybe_fail("athlete")
        return {"id": 12345, "firstname": "Ada", "lastname": "Lovelace"}

    async def fetch_athlete_stats(self, athlete_id) -> dict:
        await self._maybe_fail("stats")
        return {"all_run_totals": {"count": 2, "distance": 10000.0}}

    async def fetch_activities_since(self, after, per_page: int = 100) -> list[dict]:
        await self._maybe_fail("activities")
        self.after = after
        return list(self.activities)
