"""Territory loop detection and capture package."""

from .activity_types import ActivityType, ELIGIBLE_ACTIVITIES
from .errors import (
    TerritoryClaimError,
    TerritoryError,
    TerritoryPayloadError,
    TerritoryPermissionError,
    TerritoryServiceError,
)
from .models import (
    CaptureResult,
    CaptureState,
    ClaimFailure,
    LoopDetectionSettings,
    SessionMetadata,
    Territory,
    TerritorySnapshot,
)
from .store import TerritoryStore
from .territory_client import TerritoryFeature, TerritoryService

__all__ = [
    "ActivityType",
    "ELIGIBLE_ACTIVITIES",
    "CaptureResult",
    "CaptureState",
    "ClaimFailure",
    "LoopDetectionSettings",
    "SessionMetadata",
    "Territory",
    "TerritorySnapshot",
    "TerritoryStore",
    "TerritoryFeature",
    "TerritoryService",
    "TerritoryError",
    "TerritoryServiceError",
    "TerritoryPermissionError",
    "TerritoryClaimError",
    "TerritoryPayloadError",
]
