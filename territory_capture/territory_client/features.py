"""Remote territory representations and their mapping to :class:`Territory`."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from shapely.errors import ShapelyError
from shapely.geometry import Polygon

from ..activity_types import parse_activity_type
from ..errors import TerritoryPayloadError
from ..models import Ring, Territory

LOGGER = logging.getLogger(__name__)

__all__ = ["TerritoryFeature", "parse_features", "parse_feature"]


@dataclass(slots=True)
class TerritoryFeature:
    """A row of the ``territory_geojson`` view.

    ``geojson`` holds a GeoJSON ``MultiPolygon`` (or ``Polygon``) with
    coordinates in ``[lon, lat]`` order.
    """

    id: str
    owner_id: str
    activity_type: str
    area_m2: float
    geojson: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TerritoryFeature":
        """Build a feature from a decoded JSON row.

        Raises:
            TerritoryPayloadError: when required fields are missing or invalid.
        """

        try:
            feature_id = payload["id"]
            owner_id = payload["owner_id"]
            area = float(payload.get("area_m2") or 0.0)
        except (KeyError, TypeError, ValueError) as exc:
            raise TerritoryPayloadError(f"Invalid territory row: {exc}") from exc
        if feature_id is None or owner_id is None:
            raise TerritoryPayloadError("Territory row missing id or owner_id")
        geojson = payload.get("geojson")
        if not isinstance(geojson, Mapping):
            raise TerritoryPayloadError(f"Territory {feature_id} has no geojson object")
        return cls(
            id=str(feature_id),
            owner_id=str(owner_id),
            activity_type=str(payload.get("activity_type") or ""),
            area_m2=area,
            geojson=dict(geojson),
            created_at=_parse_iso_datetime(payload.get("created_at")),
            updated_at=_parse_iso_datetime(payload.get("updated_at")),
        )

    def to_territory(self) -> Territory | None:
        """Map to a :class:`Territory`, or ``None`` when no ring is usable."""

        polygons = tuple(
            ring
            for ring in (_exterior_ring(poly) for poly in self._polygon_coordinates())
            if ring is not None
        )
        if not polygons:
            return None
        return Territory(
            id=self.id,
            owner_id=self.owner_id,
            activity=parse_activity_type(self.activity_type),
            area_m2=self.area_m2,
            polygons=polygons,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def _polygon_coordinates(self) -> List[Any]:
        geo_type = self.geojson.get("type")
        coordinates = self.geojson.get("coordinates")
        if not isinstance(coordinates, list):
            return []
        if geo_type == "MultiPolygon":
            return coordinates
        if geo_type == "Polygon":
            return [coordinates]
        LOGGER.debug("Unsupported geometry type=%s for territory=%s", geo_type, self.id)
        return []


def parse_feature(payload: Any) -> TerritoryFeature | None:
    """Parse one row, returning ``None`` (and logging) when it is malformed."""

    if not isinstance(payload, Mapping):
        LOGGER.warning("Skipping territory row of type %s", type(payload).__name__)
        return None
    try:
        return TerritoryFeature.from_payload(payload)
    except TerritoryPayloadError as exc:
        LOGGER.warning("Skipping malformed territory row: %s", exc)
        return None


def parse_features(rows: Sequence[Any]) -> List[TerritoryFeature]:
    features = [parse_feature(row) for row in rows]
    return [feature for feature in features if feature is not None]


def _exterior_ring(polygon: Any) -> Ring | None:
    """Return the closed exterior ring of a GeoJSON polygon as (lat, lon)."""

    if not isinstance(polygon, list) or not polygon:
        return None
    exterior = polygon[0]
    if not isinstance(exterior, list):
        return None
    pairs = [
        pair for pair in exterior if isinstance(pair, (list, tuple)) and len(pair) == 2
    ]
    try:
        shape = Polygon([(float(lon), float(lat)) for lon, lat in pairs])
    except (ShapelyError, TypeError, ValueError) as exc:
        LOGGER.debug("Dropping unusable ring: %s", exc)
        return None
    if shape.is_empty:
        return None
    return tuple((lat, lon) for lon, lat in shape.exterior.coords)


def _parse_iso_datetime(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        if value.endswith("Z"):
            value = value.replace("Z", "+00:00")
        return datetime.fromisoformat(value)
    except ValueError:
        return None
