"""Personal records derived from stored activities.

Three independent passes, each a single scan over the athlete's activities:

- general: per-sport count, longest distance, fastest average speed and
  biggest climb
- running: best time per standard distance plus the longest run
- cycling: best time per standard distance, longest ride, biggest climb and
  total elevation gain

Best times use an exact-match-or-estimate policy. An activity within 5% of a
target distance contributes its moving time as is ("exact"); a longer activity
contributes its moving time scaled linearly to the target ("estimate"). Both
kinds compete on the same minimum, so an estimate can beat a slower exact
match. Every record is replaced only on strict improvement: the first activity
seen wins ties.

Passes never write to the store and are deterministic for a given input order.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from loguru import logger

from nudge.analytics.distances import (
    BIGGEST_CLIMB,
    CYCLING_DISTANCES,
    ELEVATION_GAIN,
    EXACT_MATCH_TOLERANCE,
    LONGEST_RIDE,
    LONGEST_RUN,
    RUNNING_DISTANCES,
)
from nudge.utils.sport_utils import is_ride, is_run, sport_of

if TYPE_CHECKING:
    from nudge.db.store import DocumentStore

Activity = Mapping[str, Any]
PRRecord = dict[str, Any]


def _num(activity: Activity, key: str) -> float:
    return float(activity.get(key) or 0)


def activity_ref(activity: Activity) -> dict[str, Any]:
    return {
        "id": activity.get("id"),
        "name": activity.get("name"),
        "start_date": activity.get("start_date"),
    }


def distance_candidate(distance: float, moving_time: float, target: float) -> tuple[float, str] | None:
    """Candidate time for ``target`` from one activity, with its method.

    Returns None when the activity is too short to say anything about the
    target.
    """
    if distance <= 0 or moving_time <= 0:
        return None
    if abs(distance - target) <= EXACT_MATCH_TOLERANCE * target:
        return moving_time, "exact"
    if distance >= target:
        return moving_time * (target / distance), "estimate"
    return None


class _MaxTracker:
    """Strict maximum of one metric with the activity that set it."""

    def __init__(self, field: str, label: str) -> None:
        self.field = field
        self.label = label
        self.best = 0.0
        self.activity: Activity | None = None

    def update(self, activity: Activity) -> None:
        value = _num(activity, self.field)
        if value > self.best:
            self.best = value
            self.activity = activity

    def result(self) -> PRRecord | None:
        if self.activity is None:
            return None
        return {self.label: self.best, "activity": activity_ref(self.activity)}


class _DistanceTracker:
    """Fastest time per target distance."""

    def __init__(self, targets: Mapping[str, float]) -> None:
        self.targets = targets
        self.best: dict[str, PRRecord] = {}

    def update(self, activity: Activity) -> None:
        distance = _num(activity, "distance")
        moving_time = _num(activity, "moving_time")
        for label, target in self.targets.items():
            candidate = distance_candidate(distance, moving_time, target)
            if candidate is None:
                continue
            time_seconds, method = candidate
            current = self.best.get(label)
            if current is None or time_seconds < current["time_seconds"]:
                self.best[label] = {
                    "time_seconds": time_seconds,
                    "activity": activity_ref(activity),
                    "method": method,
                }

    def result(self) -> dict[str, PRRecord | None]:
        return {label: self.best.get(label) for label in self.targets}


class GeneralPRs:
    def __init__(self) -> None:
        self._sports: dict[str, dict[str, Any]] = {}

    def add(self, activity: Activity) -> None:
        sport = sport_of(activity)
        group = self._sports.get(sport)
        if group is None:
            group = {
                "count": 0,
                "longest": _MaxTracker("distance", "distance"),
                "fastest": _MaxTracker("average_speed", "average_speed"),
                "biggest_climb": _MaxTracker("total_elevation_gain", "elevation"),
            }
            self._sports[sport] = group
        group["count"] += 1
        for key in ("longest", "fastest", "biggest_climb"):
            group[key].update(activity)

    def result(self) -> dict[str, dict[str, Any]]:
        return {
            sport: {
                "count": group["count"],
                "longest": group["longest"].result(),
                "fastest": group["fastest"].result(),
                "biggest_climb": group["biggest_climb"].result(),
            }
            for sport, group in self._sports.items()
        }


class RunningPRs:
    def __init__(self) -> None:
        self._distances = _DistanceTracker(RUNNING_DISTANCES)
        self._longest = _MaxTracker("distance", "distance")

    def add(self, activity: Activity) -> None:
        if not is_run(activity):
            return
        self._distances.update(activity)
        self._longest.update(activity)

    def result(self) -> dict[str, PRRecord | None]:
        return {**self._distances.result(), LONGEST_RUN: self._longest.result()}


class CyclingPRs:
    def __init__(self) -> None:
        self._distances = _DistanceTracker(CYCLING_DISTANCES)
        self._longest = _MaxTracker("distance", "distance")
        self._climb = _MaxTracker("total_elevation_gain", "elevation")
        self._total_elevation = 0.0
        self._rides = 0

    def add(self, activity: Activity) -> None:
        if not is_ride(activity):
            return
        self._rides += 1
        self._distances.update(activity)
        self._longest.update(activity)
        self._climb.update(activity)
        self._total_elevation += _num(activity, "total_elevation_gain")

    def result(self) -> dict[str, PRRecord | None]:
        return {
            LONGEST_RIDE: self._longest.result(),
            BIGGEST_CLIMB: self._climb.result(),
            ELEVATION_GAIN: {"total": self._total_elevation} if self._rides else None,
            **self._distances.result(),
        }


def general_prs(activities: Iterable[Activity]) -> dict[str, dict[str, Any]]:
    acc = GeneralPRs()
    for activity in activities:
        acc.add(activity)
    return acc.result()


def running_prs(activities: Iterable[Activity]) -> dict[str, PRRecord | None]:
    acc = RunningPRs()
    for activity in activities:
        acc.add(activity)
    return acc.result()


def cycling_prs(activities: Iterable[Activity]) -> dict[str, PRRecord | None]:
    acc = CyclingPRs()
    for activity in activities:
        acc.add(activity)
    return acc.result()


async def _aggregate(store: DocumentStore, athlete_id: int | str, acc: GeneralPRs | RunningPRs | CyclingPRs) -> Any:
    count = 0
    async for activity in store.stream_activities(athlete_id):
        acc.add(activity)
        count += 1
    logger.debug(f"[PRS] {type(acc).__name__} scanned {count} activities for athlete_id={athlete_id}")
    return acc.result()


async def get_general_prs(store: DocumentStore, athlete_id: int | str) -> dict[str, dict[str, Any]]:
    return await _aggregate(store, athlete_id, GeneralPRs())


async def get_running_prs(store: DocumentStore, athlete_id: int | str) -> dict[str, PRRecord | None]:
    return await _aggregate(store, athlete_id, RunningPRs())


async def get_cycling_prs(store: DocumentStore, athlete_id: int | str) -> dict[str, PRRecord | None]:
    return await _aggregate(store, athlete_id, CyclingPRs())


def format_duration(seconds: float) -> str:
    """Format seconds as ``H:MM:SS``, or ``M:SS`` under an hour."""
    total = round(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"
