"""Strava -> document store synchronization.

A sync runs its stages strictly in order:

    refresh token if needed -> profile -> stats -> activities -> sync status

Profile, stats and activities are isolated from each other: a failing stage is
recorded in the error list and the next stage still runs. The sync succeeds
only when no stage failed. Progress messages go to an optional callback,
synchronously and in stage order.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from loguru import logger
from pydantic import BaseModel, Field

from nudge.db.documents import StageResult, SyncResults, SyncStatusDocument
from nudge.db.store import DocumentStore
from nudge.integrations.strava.client import StravaClient
from nudge.integrations.strava.errors import AuthenticationError
from nudge.integrations.strava.schemas import AuthSession
from nudge.integrations.strava.tokens import TokenManager
from nudge.state.session_repository import SessionRepository
from nudge.utils.time_utils import months_ago, parse_datetime, utc_now

ProgressCallback = Callable[[str], None]
ClientFactory = Callable[[str], StravaClient]

DEFAULT_HISTORY_MONTHS = 3
DATA_TYPES = ("athlete", "stats", "activities")


class SyncResult(BaseModel):
    success: bool
    results: SyncResults
    errors: list[str] = Field(default_factory=list)
    last_sync_time: str


@dataclass
class _AthleteLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def _notify(on_progress: ProgressCallback | None, message: str) -> None:
    if on_progress is not None:
        on_progress(message)


class SyncService:
    def __init__(
        self,
        *,
        store: DocumentStore,
        token_manager: TokenManager,
        client_factory: ClientFactory,
        session_repository: SessionRepository | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._tokens = token_manager
        self._client_factory = client_factory
        self._sessions = session_repository
        self._clock = clock
        self._locks: dict[str, _AthleteLock] = {}

    @asynccontextmanager
    async def _athlete_lock(self, athlete_id: str) -> AsyncIterator[None]:
        """Serialize syncs of one athlete.

        The lock is dropped once no sync holds or waits on it.
        """
        entry = self._locks.get(athlete_id)
        if entry is None:
            entry = self._locks[athlete_id] = _AthleteLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[athlete_id]

    @staticmethod
    def _require_athlete(session: AuthSession | None) -> str:
        if session is None or not session.access_token:
            raise AuthenticationError("No valid authentication data provided")
        if session.athlete_id is None:
            raise AuthenticationError("No athlete ID found in authentication data")
        return str(session.athlete_id)

    async def _refresh_if_needed(self, session: AuthSession, on_progress: ProgressCallback | None) -> AuthSession:
        if not self._tokens.is_expired(session) or not session.refresh_token:
            return session
        _notify(on_progress, "Refreshing access token...")
        return await self._tokens.ensure_fresh(session, self._sessions)

    def _activities_after(self, start_date: datetime | str | None) -> datetime:
        if start_date is not None:
            return parse_datetime(start_date)
        return months_ago(DEFAULT_HISTORY_MONTHS, self._clock())

    async def _sync_profile(self, client: StravaClient, athlete_id: str, on_progress: ProgressCallback | None) -> StageResult:
        _notify(on_progress, "Fetching athlete profile...")
        profile = await client.fetch_athlete()
        _notify(on_progress, "Storing athlete profile...")
        await self._store.store_profile(athlete_id, profile)
        return StageResult(success=True, data=profile)

    async def _sync_stats(self, client: StravaClient, athlete_id: str, on_progress: ProgressCallback | None) -> StageResult:
        _notify(on_progress, "Fetching athlete stats...")
        stats = await client.fetch_athlete_stats(athlete_id)
        _notify(on_progress, "Storing athlete stats...")
        await self._store.store_stats(athlete_id, stats)
        return StageResult(success=True, data=stats)

    async def _sync_activities(
        self,
        client: StravaClient,
        athlete_id: str,
        on_progress: ProgressCallback | None,
        start_date: datetime | str | None,
    ) -> StageResult:
        _notify(on_progress, "Fetching activities from Strava...")
        activities = await client.fetch_activities_since(self._activities_after(start_date))
        _notify(on_progress, f"Storing {len(activities)} activities...")
        stored = await self._store.store_activities(athlete_id, activities)
        return StageResult(success=True, count=stored.count, message=stored.message)

    async def sync_all(
        self,
        session: AuthSession,
        on_progress: ProgressCallback | None = None,
        start_date: datetime | str | None = None,
    ) -> SyncResult:
        """Sync profile, stats and activities, then record the sync status.

        Activities are fetched since ``start_date``, or for the last three
        calendar months when it is not given.

        Raises:
            AuthenticationError: If the session or athlete id is missing, or the
                token refresh fails
        """
        athlete_id = self._require_athlete(session)

        async with self._athlete_lock(athlete_id):
            logger.info(f"[SYNC] Starting full sync for athlete_id={athlete_id}")
            try:
                session = await self._refresh_if_needed(session, on_progress)
            except Exception as e:
                logger.error(f"[SYNC] Sync aborted for athlete_id={athlete_id}: {e!s}")
                await self._record_status(
                    athlete_id,
                    SyncStatusDocument(last_sync_time=self._clock().isoformat(), success=False, errors=[str(e)]),
                )
                raise

            results = SyncResults()
            stages = (
                ("athlete", "Athlete profile sync failed", lambda c: self._sync_profile(c, athlete_id, on_progress)),
                ("stats", "Athlete stats sync failed", lambda c: self._sync_stats(c, athlete_id, on_progress)),
                ("activities", "Activities sync failed", lambda c: self._sync_activities(c, athlete_id, on_progress, start_date)),
            )

            async with self._client_factory(session.access_token) as client:
                for name, failure_prefix, run_stage in stages:
                    try:
                        setattr(results, name, await run_stage(client))
                    except Exception as e:
                        logger.error(f"[SYNC] Stage {name} failed for athlete_id={athlete_id}: {e!s}")
                        results.errors.append(f"{failure_prefix}: {e!s}")
                        setattr(results, name, StageResult(success=False, error=str(e)))

            status = SyncStatusDocument(
                last_sync_time=self._clock().isoformat(),
                success=not results.errors,
                errors=list(results.errors),
                sync_results=results,
            )
            await self._record_status(athlete_id, status)

            _notify(on_progress, "Data synchronization completed!")
            logger.info(f"[SYNC] Finished full sync for athlete_id={athlete_id}: success={status.success}, errors={len(status.errors)}")

            return SyncResult(
                success=status.success,
                results=results,
                errors=list(results.errors),
                last_sync_time=status.last_sync_time,
            )

    async def _record_status(self, athlete_id: str, status: SyncStatusDocument) -> None:
        try:
            await self._store.store_sync_status(athlete_id, status)
        except Exception as e:
            logger.error(f"[SYNC] Error storing sync status for athlete_id={athlete_id}: {e!s}")

    async def quick_sync(
        self,
        session: AuthSession,
        data_types: Iterable[str] = ("activities",),
        on_progress: ProgressCallback | None = None,
        start_date: datetime | str | None = None,
    ) -> dict[str, StageResult]:
        """Sync only the requested data types, each isolated from the others.

        Does not record a sync status.
        """
        athlete_id = self._require_athlete(session)

        async with self._athlete_lock(athlete_id):
            session = await self._refresh_if_needed(session, on_progress)
            results: dict[str, StageResult] = {}

            async with self._client_factory(session.access_token) as client:
                for data_type in data_types:
                    if data_type not in DATA_TYPES:
                        logger.warning(f"[SYNC] Unknown data type: {data_type}")
                        continue
                    try:
                        if data_type == "athlete":
                            _notify(on_progress, "Syncing athlete profile...")
                            await self._store.store_profile(athlete_id, await client.fetch_athlete())
                            results[data_type] = StageResult(success=True)
                        elif data_type == "stats":
                            _notify(on_progress, "Syncing athlete stats...")
                            await self._store.store_stats(athlete_id, await client.fetch_athlete_stats(athlete_id))
                            results[data_type] = StageResult(success=True)
                        else:
                            _notify(on_progress, "Syncing activities...")
                            activities = await client.fetch_activities_since(self._activities_after(start_date))
                            stored = await self._store.store_activities(athlete_id, activities)
                            results[data_type] = StageResult(success=True, count=stored.count)
                    except Exception as e:
                        logger.error(f"[SYNC] Error syncing {data_type} for athlete_id={athlete_id}: {e!s}")
                        results[data_type] = StageResult(success=False, error=str(e))

            return results

    async def needs_sync(self, athlete_id: int | str, max_age_hours: float = 24) -> bool:
        """True when the athlete has never synced or the last sync is too old.

        A status that cannot be read counts as stale.
        """
        try:
            status = await self._store.get_sync_status(athlete_id)
            if status is None or not status.last_sync_time:
                return True
            last_sync = parse_datetime(status.last_sync_time)
        except Exception as e:
            logger.error(f"[SYNC] Error checking sync status for athlete_id={athlete_id}: {e!s}")
            return True

        return last_sync < self._clock() - timedelta(hours=max_age_hours)

    async def auto_sync(
        self,
        session: AuthSession,
        max_age_hours: float = 24,
        on_progress: ProgressCallback | None = None,
    ) -> SyncResult | None:
        """Run a full sync only when the stored data is stale."""
        athlete_id = self._require_athlete(session)

        if not await self.needs_sync(athlete_id, max_age_hours):
            _notify(on_progress, "Data is up to date, no sync needed")
            return None

        _notify(on_progress, "Data sync needed, starting synchronization...")
        return await self.sync_all(session, on_progress)
