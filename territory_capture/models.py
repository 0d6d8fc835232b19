"""Dataclasses describing captured territories and capture outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Mapping, Optional, Tuple

from .activity_types import ELIGIBLE_ACTIVITIES, ActivityType
from .config import (
    CAPTURE_DEBOUNCE_SECONDS,
    LOOP_CLOSE_DISTANCE_M,
    LOOP_MIN_COORDINATES,
    LOOP_MIN_PERIMETER_M,
    LOOP_MIN_POINTS,
    LOOP_RECENT_BUFFER,
    POLYGON_MAX_POINTS,
    POLYGON_SNAP_TOLERANCE_M,
    SESSION_END_CLOSE_DISTANCE_M,
    SESSION_END_MIN_POINTS,
)

LatLon = Tuple[float, float]
Ring = Tuple[LatLon, ...]


@dataclass(frozen=True, slots=True)
class LoopDetectionSettings:
    """Thresholds used by the live scanner and the end-of-session fallback."""

    eligible_activities: FrozenSet[ActivityType] = ELIGIBLE_ACTIVITIES
    min_coordinates: int = LOOP_MIN_COORDINATES
    recent_buffer: int = LOOP_RECENT_BUFFER
    close_distance_m: float = LOOP_CLOSE_DISTANCE_M
    min_loop_points: int = LOOP_MIN_POINTS
    min_perimeter_m: float = LOOP_MIN_PERIMETER_M
    debounce_seconds: float = CAPTURE_DEBOUNCE_SECONDS
    session_end_close_distance_m: float = SESSION_END_CLOSE_DISTANCE_M
    session_end_min_points: int = SESSION_END_MIN_POINTS
    polygon_max_points: int = POLYGON_MAX_POINTS
    snap_tolerance_m: float = POLYGON_SNAP_TOLERANCE_M


@dataclass(frozen=True, slots=True)
class Territory:
    """A captured polygon attributed to a user and activity."""

    id: str
    owner_id: str
    activity: Optional[ActivityType]
    area_m2: float
    polygons: Tuple[Ring, ...]
    # Session data shown next to the territory (optional).
    session_distance_km: Optional[float] = None
    session_duration_s: Optional[int] = None
    session_pace: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    pending: bool = False

    def with_session(self, source: "Territory") -> "Territory":
        """Return a copy carrying the session metadata of ``source``."""

        return replace(
            self,
            session_distance_km=source.session_distance_km,
            session_duration_s=source.session_duration_s,
            session_pace=source.session_pace,
        )


@dataclass(frozen=True, slots=True)
class SessionMetadata:
    """Optional activity statistics attached to a capture."""

    distance_km: Optional[float] = None
    duration_s: Optional[int] = None
    pace: Optional[str] = None


class CaptureState(str, Enum):
    LOCAL_OPTIMISTIC = "local_optimistic"
    CONFIRMED = "confirmed"
    RETRACTED = "retracted"


@dataclass(slots=True)
class CaptureResult:
    """Final outcome of a single capture attempt."""

    temporary_id: str
    state: CaptureState
    territory: Optional[Territory] = None
    error: Optional[BaseException] = None


@dataclass(frozen=True, slots=True)
class ClaimFailure:
    """Emitted when a claim is rejected and its optimistic entry retracted."""

    temporary_id: str
    owner_id: str
    activity: ActivityType
    error: BaseException
    occurred_at: datetime


@dataclass(frozen=True, slots=True)
class TerritorySnapshot:
    """Read-only view of the published store state."""

    territories: Mapping[str, Territory]
    active_session: Tuple[Territory, ...] = field(default_factory=tuple)
