"""Versioned schemas for every document category kept in the store.

Each category carries ``kind`` and ``schema_version`` so a stored document can
be validated against the model that wrote it.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from nudge.integrations.strava.schemas import StravaActivity, StravaStatsResponse, StravaTotals


class Totals(BaseModel):
    count: int = 0
    distance: float = 0.0
    moving_time: int = 0
    elapsed_time: int = 0
    elevation_gain: float = 0.0


class SportTotals(BaseModel):
    run: Totals = Field(default_factory=Totals)
    ride: Totals = Field(default_factory=Totals)
    swim: Totals = Field(default_factory=Totals)


def _totals(raw: StravaTotals) -> Totals:
    return Totals(
        count=raw.count,
        distance=raw.distance,
        moving_time=raw.moving_time,
        elapsed_time=raw.elapsed_time,
        elevation_gain=raw.elevation_gain,
    )


class ProfileDocument(BaseModel):
    """Athlete profile as returned by Strava; unknown attributes are kept."""

    model_config = ConfigDict(extra="allow")

    kind: Literal["profile"] = "profile"
    schema_version: int = 1
    stored_at: str | None = None
    updated_at: str | None = None


class StatsDocument(BaseModel):
    kind: Literal["stats"] = "stats"
    schema_version: int = 1
    all_time: SportTotals = Field(default_factory=SportTotals)
    recent: SportTotals = Field(default_factory=SportTotals)
    ytd: SportTotals = Field(default_factory=SportTotals)
    biggest_ride_distance: float | None = None
    biggest_climb_elevation_gain: float | None = None
    stored_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_strava(cls, payload: dict[str, Any], now: str) -> StatsDocument:
        raw = StravaStatsResponse.model_validate(payload)
        return cls(
            all_time=SportTotals(run=_totals(raw.all_run_totals), ride=_totals(raw.all_ride_totals), swim=_totals(raw.all_swim_totals)),
            recent=SportTotals(run=_totals(raw.recent_run_totals), ride=_totals(raw.recent_ride_totals), swim=_totals(raw.recent_swim_totals)),
            ytd=SportTotals(run=_totals(raw.ytd_run_totals), ride=_totals(raw.ytd_ride_totals), swim=_totals(raw.ytd_swim_totals)),
            biggest_ride_distance=raw.biggest_ride_distance,
            biggest_climb_elevation_gain=raw.biggest_climb_elevation_gain,
            stored_at=now,
            updated_at=now,
        )


class StageResult(BaseModel):
    """Outcome of one sync stage."""

    success: bool
    error: str | None = None
    count: int | None = None
    message: str | None = None
    data: dict[str, Any] | None = None


class SyncResults(BaseModel):
    athlete: StageResult | None = None
    stats: StageResult | None = None
    activities: StageResult | None = None
    errors: list[str] = Field(default_factory=list)


class SyncStatusDocument(BaseModel):
    kind: Literal["sync_status"] = "sync_status"
    schema_version: int = 1
    last_sync_time: str | None = None
    success: bool = False
    errors: list[str] = Field(default_factory=list)
    sync_results: SyncResults | None = None


class ActivityDocument(BaseModel):
    kind: Literal["activity"] = "activity"
    schema_version: int = 1
    id: int
    name: str | None = None
    type: str | None = None
    sport_type: str | None = None
    distance: float = 0.0
    moving_time: int = 0
    elapsed_time: int = 0
    total_elevation_gain: float = 0.0
    start_date: str | None = None
    start_date_local: str | None = None
    timezone: str | None = None
    average_speed: float = 0.0
    max_speed: float = 0.0
    average_heartrate: float = 0.0
    max_heartrate: float = 0.0
    achievement_count: int = 0
    kudos_count: int = 0
    comment_count: int = 0
    athlete_count: int = 1
    map: dict[str, Any] = Field(default_factory=dict)
    start_latlng: list[float] = Field(default_factory=list)
    end_latlng: list[float] = Field(default_factory=list)
    stored_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_strava(cls, payload: dict[str, Any], now: str) -> ActivityDocument:
        """Normalize a Strava summary activity; missing counters become 0."""
        raw = StravaActivity.model_validate(payload)
        return cls(
            id=raw.id,
            name=raw.name,
            type=raw.type,
            sport_type=raw.sport_type or raw.type,
            distance=raw.distance or 0.0,
            moving_time=raw.moving_time or 0,
            elapsed_time=raw.elapsed_time or 0,
            total_elevation_gain=raw.total_elevation_gain or 0.0,
            start_date=raw.start_date,
            start_date_local=raw.start_date_local,
            timezone=raw.timezone,
            average_speed=raw.average_speed or 0.0,
            max_speed=raw.max_speed or 0.0,
            average_heartrate=raw.average_heartrate or 0.0,
            max_heartrate=raw.max_heartrate or 0.0,
            achievement_count=raw.achievement_count or 0,
            kudos_count=raw.kudos_count or 0,
            comment_count=raw.comment_count or 0,
            athlete_count=raw.athlete_count or 1,
            map=raw.map or {},
            start_latlng=raw.start_latlng or [],
            end_latlng=raw.end_latlng or [],
            stored_at=now,
            updated_at=now,
        )
