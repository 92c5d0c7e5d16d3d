from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class AuthSession(BaseModel):
    """Strava bearer credential pair for one athlete."""

    access_token: str
    refresh_token: str | None = None
    expires_at: int = 0
    athlete_id: int | None = None
    athlete: dict[str, Any] | None = None

    @classmethod
    def from_token_response(cls, data: dict[str, Any], previous: AuthSession | None = None) -> AuthSession:
        """Build a session from a Strava token endpoint response.

        Refresh responses carry no athlete, so the athlete of ``previous`` is kept.
        A refresh response may also omit the refresh token, in which case the
        previous one stays valid.
        """
        athlete = data.get("athlete") or (previous.athlete if previous else None)
        athlete_id = athlete.get("id") if athlete else None
        if athlete_id is None and previous is not None:
            athlete_id = previous.athlete_id
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or (previous.refresh_token if previous else None),
            expires_at=int(data["expires_at"]),
            athlete_id=athlete_id,
            athlete=athlete,
        )


class StravaActivity(BaseModel):
    """Summary activity as returned by ``GET /athlete/activities``.

    Only the fields that are mirrored are declared; the rest of the payload is
    ignored.
    """

    id: int
    name: str | None = None
    type: str | None = None
    sport_type: str | None = None
    distance: float | None = None
    moving_time: int | None = None
    elapsed_time: int | None = None
    total_elevation_gain: float | None = None
    start_date: str | None = None
    start_date_local: str | None = None
    timezone: str | None = None
    average_speed: float | None = None
    max_speed: float | None = None
    average_heartrate: float | None = None
    max_heartrate: float | None = None
    achievement_count: int | None = None
    kudos_count: int | None = None
    comment_count: int | None = None
    athlete_count: int | None = None
    map: dict[str, Any] | None = None
    start_latlng: list[float] | None = None
    end_latlng: list[float] | None = None

    model_config = {"extra": "ignore"}


class StravaTotals(BaseModel):
    count: int = 0
    distance: float = 0.0
    moving_time: int = 0
    elapsed_time: int = 0
    elevation_gain: float = 0.0
    achievement_count: int | None = None

    model_config = {"extra": "ignore"}


class StravaStatsResponse(BaseModel):
    """Payload of ``GET /athletes/{id}/stats``."""

    biggest_ride_distance: float | None = None
    biggest_climb_elevation_gain: float | None = None
    recent_run_totals: StravaTotals = Field(default_factory=StravaTotals)
    recent_ride_totals: StravaTotals = Field(default_factory=StravaTotals)
    recent_swim_totals: StravaTotals = Field(default_factory=StravaTotals)
    ytd_run_totals: StravaTotals = Field(default_factory=StravaTotals)
    ytd_ride_totals: StravaTotals = Field(default_factory=StravaTotals)
    ytd_swim_totals: StravaTotals = Field(default_factory=StravaTotals)
    all_run_totals: StravaTotals = Field(default_factory=StravaTotals)
    all_ride_totals: StravaTotals = Field(default_factory=StravaTotals)
    all_swim_totals: StravaTotals = Field(default_factory=StravaTotals)

    model_config = {"extra": "ignore"}
