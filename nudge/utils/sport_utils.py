"""Sport type helpers for stored activities."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

RUN_TYPES = frozenset({"run", "running"})
RIDE_TYPES = frozenset({"ride", "cycling"})


def sport_of(activity: Mapping[str, Any]) -> str:
    """Return the activity's sport: ``sport_type``, then ``type``, then ``"Unknown"``."""
    return activity.get("sport_type") or activity.get("type") or "Unknown"


def _matches(activity: Mapping[str, Any], types: frozenset[str]) -> bool:
    for key in ("sport_type", "type"):
        value = activity.get(key)
        if value and value.lower() in types:
            return True
    return False


def is_run(activity: Mapping[str, Any]) -> bool:
    return _matches(activity, RUN_TYPES)


def is_ride(activity: Mapping[str, Any]) -> bool:
    return _matches(activity, RIDE_TYPES)
