"""Utilities for classifying tracked activity types."""

from __future__ import annotations

from enum import Enum
from typing import Any

__all__ = [
    "ActivityType",
    "ELIGIBLE_ACTIVITIES",
    "normalize_activity_type",
    "parse_activity_type",
    "is_capture_eligible",
]


class ActivityType(str, Enum):
    RUNNING = "running"
    GOLF = "golf"
    WALKING = "walking"
    HIKING = "hiking"
    SKIING = "skiing"
    CYCLING = "cycling"
    GYM = "gym"
    OTHER = "other"


# Only these activities take part in territory capture.
ELIGIBLE_ACTIVITIES = frozenset(
    {ActivityType.RUNNING, ActivityType.GOLF, ActivityType.HIKING, ActivityType.SKIING}
)

# Labels written by older app versions, which stored the display name.
_LEGACY_LABELS = {
    "löppass": ActivityType.RUNNING,
    "löpning": ActivityType.RUNNING,
    "run": ActivityType.RUNNING,
    "golfrunda": ActivityType.GOLF,
    "promenad": ActivityType.WALKING,
    "walk": ActivityType.WALKING,
    "bestiga berg": ActivityType.HIKING,
    "berg": ActivityType.HIKING,
    "hike": ActivityType.HIKING,
    "skidor": ActivityType.SKIING,
    "skidåkning": ActivityType.SKIING,
    "ski": ActivityType.SKIING,
    "ride": ActivityType.CYCLING,
    "gympass": ActivityType.GYM,
}


def normalize_activity_type(value: Any) -> str | None:
    """Return a lowercase activity type string or ``None`` when missing.

    The backend stores whatever label the client sent, so casing and
    surrounding whitespace vary between app versions.
    """

    if value is None:
        return None
    if isinstance(value, ActivityType):
        return value.value
    normalized = str(value).strip().lower()
    return normalized or None


def parse_activity_type(value: Any) -> ActivityType | None:
    """Map a raw activity label to :class:`ActivityType`.

    Returns ``None`` for missing or unknown labels so remote territories with
    an unexpected activity still load with an unknown activity.
    """

    normalized = normalize_activity_type(value)
    if normalized is None:
        return None
    try:
        return ActivityType(normalized)
    except ValueError:
        return _LEGACY_LABELS.get(normalized)


def is_capture_eligible(activity: Any) -> bool:
    """Return ``True`` when ``activity`` may capture territory."""

    parsed = activity if isinstance(activity, ActivityType) else parse_activity_type(activity)
    return parsed in ELIGIBLE_ACTIVITIES
