"""Per-athlete document store with merge-upsert semantics.

Layout:
- athletes/{athlete_id}: root document; profile, stats and sync status live
  under the ``profile``, ``stats`` and ``syncStatus`` keys
- athletes/{athlete_id}/activities/{activity_id}: one document per activity

Every write reads the current document, merges the new fields at the top level
and writes it back, so categories never clobber each other and un-mentioned
activity fields are kept. There is no cross-document transaction: activities
are committed one by one in input order.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nudge.db.documents import ActivityDocument, ProfileDocument, StatsDocument, SyncStatusDocument
from nudge.db.models import Base, Document
from nudge.utils.time_utils import parse_datetime, to_iso, utc_now

ATHLETES = "athletes"
PROFILE_KEY = "profile"
STATS_KEY = "stats"
SYNC_STATUS_KEY = "syncStatus"

# Fields written on insert and never overwritten afterwards
CREATE_ONLY_FIELDS = ("stored_at",)


class StoreUnavailableError(Exception):
    """Raised when the document store is not initialized or unreachable."""


@dataclass
class StoreResult:
    count: int
    message: str


def athlete_path(athlete_id: int | str) -> str:
    return f"{ATHLETES}/{athlete_id}"


def activities_collection(athlete_id: int | str) -> str:
    return f"{athlete_path(athlete_id)}/activities"


def _order_key(start_date: str | None) -> str | None:
    if not start_date:
        return None
    try:
        return to_iso(parse_datetime(start_date))
    except ValueError:
        return start_date


class DocumentStore:
    def __init__(
        self,
        engine: Engine | None,
        *,
        clock: Callable[[], datetime] = utc_now,
        batch_size: int = 200,
    ) -> None:
        self._engine = engine
        self._clock = clock
        self._batch_size = batch_size
        self._ready = False

    def _now(self) -> str:
        return self._clock().isoformat()

    def _require_engine(self) -> Engine:
        if self._engine is None:
            raise StoreUnavailableError("Document store is not initialized. Check DATABASE_URL.")
        return self._engine

    def _ensure_ready(self, engine: Engine) -> Engine:
        """Fail closed unless the backing database is reachable.

        Runs in the worker thread. The first successful check also creates the
        documents table.
        """
        if not self._ready:
            try:
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                Base.metadata.create_all(bind=engine)
            except SQLAlchemyError as e:
                logger.error(f"[STORE] Database connection test failed: {e}")
                raise StoreUnavailableError(f"Document store is unreachable: {e}") from e
            self._ready = True
            logger.debug("[STORE] Document store ready")
        return engine

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        engine = self._require_engine()
        return await asyncio.to_thread(lambda: fn(self._ensure_ready(engine), *args))

    def _merge_upsert(
        self,
        session: Session,
        *,
        path: str,
        collection: str,
        fields: dict[str, Any],
        order_key: str | None = None,
    ) -> None:
        now = self._clock()
        row = session.get(Document, path)
        if row is None:
            session.add(
                Document(
                    path=path,
                    collection=collection,
                    order_key=order_key,
                    data=dict(fields),
                    created_at=now,
                    updated_at=now,
                )
            )
            return

        merged = {**row.data, **fields}
        for key in CREATE_ONLY_FIELDS:
            if key in row.data:
                merged[key] = row.data[key]
        # Assign a new dict so the JSON column is flagged dirty
        row.data = merged
        row.updated_at = now
        if order_key is not None:
            row.order_key = order_key

    def _read(self, engine: Engine, path: str) -> dict[str, Any] | None:
        with Session(engine) as session:
            row = session.get(Document, path)
            return dict(row.data) if row is not None else None

    def _write_category(self, engine: Engine, athlete_id: str, key: str, value: dict[str, Any]) -> None:
        with Session(engine) as session:
            self._merge_upsert(
                session,
                path=athlete_path(athlete_id),
                collection=ATHLETES,
                fields={"athlete_id": athlete_id, key: value},
            )
            session.commit()

    def _write_activities(self, engine: Engine, athlete_id: str, activities: list[dict[str, Any]]) -> int:
        collection = activities_collection(athlete_id)
        stored = 0
        with Session(engine) as session:
            for activity in activities:
                doc = ActivityDocument.from_strava(activity, self._now())
                self._merge_upsert(
                    session,
                    path=f"{collection}/{doc.id}",
                    collection=collection,
                    fields=doc.model_dump(mode="json"),
                    order_key=_order_key(doc.start_date),
                )
                # Committed per activity: a failure later in the loop keeps earlier writes
                session.commit()
                stored += 1
        return stored

    def _list_activities(
        self,
        engine: Engine,
        athlete_id: str,
        limit: int | None,
        offset: int,
        start_key: str | None,
        end_key: str | None,
    ) -> list[dict[str, Any]]:
        stmt = select(Document).where(Document.collection == activities_collection(athlete_id))
        if start_key is not None:
            stmt = stmt.where(Document.order_key >= start_key)
        if end_key is not None:
            stmt = stmt.where(Document.order_key <= end_key)
        stmt = stmt.order_by(Document.order_key.desc(), Document.path.desc()).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        with Session(engine) as session:
            return [dict(row.data) for row in session.scalars(stmt)]

    async def store_activities(self, athlete_id: int | str, activities: Iterable[dict[str, Any]]) -> StoreResult:
        """Upsert activities keyed by their Strava id.

        Safe to call repeatedly with overlapping sets.
        """
        activities = list(activities)
        count = await self._run(self._write_activities, str(athlete_id), activities)
        message = f"Successfully stored {count} activities"
        logger.info(f"[STORE] {message} for athlete_id={athlete_id}")
        return StoreResult(count=count, message=message)

    async def store_profile(self, athlete_id: int | str, profile: dict[str, Any]) -> None:
        now = self._now()
        existing = await self._run(self._read, athlete_path(athlete_id)) or {}
        stored_at = (existing.get(PROFILE_KEY) or {}).get("stored_at") or now
        doc = ProfileDocument(**{**profile, "stored_at": stored_at, "updated_at": now})
        await self._run(self._write_category, str(athlete_id), PROFILE_KEY, doc.model_dump(mode="json"))
        logger.info(f"[STORE] Stored athlete profile for athlete_id={athlete_id}")

    async def get_profile(self, athlete_id: int | str) -> ProfileDocument | None:
        value = await self._get_category(athlete_id, PROFILE_KEY)
        return ProfileDocument.model_validate(value) if value is not None else None

    async def store_stats(self, athlete_id: int | str, stats: dict[str, Any]) -> None:
        doc = StatsDocument.from_strava(stats, self._now())
        await self._run(self._write_category, str(athlete_id), STATS_KEY, doc.model_dump(mode="json"))
        logger.info(f"[STORE] Stored athlete stats for athlete_id={athlete_id}")

    async def get_stats(self, athlete_id: int | str) -> StatsDocument | None:
        value = await self._get_category(athlete_id, STATS_KEY)
        return StatsDocument.model_validate(value) if value is not None else None

    async def store_sync_status(self, athlete_id: int | str, status: SyncStatusDocument) -> None:
        await self._run(self._write_category, str(athlete_id), SYNC_STATUS_KEY, status.model_dump(mode="json"))
        logger.debug(f"[STORE] Stored sync status for athlete_id={athlete_id}: success={status.success}")

    async def get_sync_status(self, athlete_id: int | str) -> SyncStatusDocument | None:
        value = await self._get_category(athlete_id, SYNC_STATUS_KEY)
        return SyncStatusDocument.model_validate(value) if value is not None else None

    async def _get_category(self, athlete_id: int | str, key: str) -> dict[str, Any] | None:
        doc = await self._run(self._read, athlete_path(athlete_id))
        if doc is None:
            return None
        return doc.get(key)

    async def get_activity(self, athlete_id: int | str, activity_id: int | str) -> dict[str, Any] | None:
        return await self._run(self._read, f"{activities_collection(athlete_id)}/{activity_id}")

    async def get_activities(self, athlete_id: int | str, limit: int | None = None) -> list[dict[str, Any]]:
        """Most recent activities first."""
        return await self._run(self._list_activities, str(athlete_id), limit, 0, None, None)

    async def get_activities_by_date_range(
        self,
        athlete_id: int | str,
        start: datetime | str,
        end: datetime | str,
    ) -> list[dict[str, Any]]:
        """Activities whose start_date lies in [start, end], most recent first."""
        return await self._run(
            self._list_activities,
            str(athlete_id),
            None,
            0,
            to_iso(parse_datetime(start)),
            to_iso(parse_datetime(end)),
        )

    async def stream_activities(self, athlete_id: int | str) -> AsyncIterator[dict[str, Any]]:
        """Yield every stored activity, most recent first, reading in batches."""
        offset = 0
        while True:
            batch = await self._run(self._list_activities, str(athlete_id), self._batch_size, offset, None, None)
            for activity in batch:
                yield activity
            if len(batch) < self._batch_size:
                return
            offset += len(batch)
