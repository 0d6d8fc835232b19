#!/usr/bin/env python3
"""Replay a recorded route through the territory store.

Feeds the route to :class:`TerritoryStore` one point at a time (as the
activity tracker would), applies the end-of-session fallback, and prints a
JSON summary of the captures. Useful for tuning loop thresholds against real
GPS recordings.

Usage examples:

    # Offline replay of a GPX recording (claims answered in memory)
    python -m territory_capture.tools.replay_route \
        --input morning_run.gpx --activity running --user-id demo

    # JSON route ([[lat, lon], ...]) against the live backend
    python -m territory_capture.tools.replay_route \
        --input route.json --activity hiking --user-id <uuid> --live-backend
"""

from __future__ import annotations

import argparse
from concurrent.futures import Future, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import sys
import threading
from typing import Any, Dict, List, Sequence
import uuid

from defusedxml import ElementTree as ET

from territory_capture.activity_types import ActivityType, parse_activity_type
from territory_capture.errors import TerritoryClaimError
from territory_capture.geometry import path_length_m, polygon_area_m2
from territory_capture.models import (
    CaptureResult,
    CaptureState,
    LatLon,
    LoopDetectionSettings,
)
from territory_capture.store import TerritoryStore
from territory_capture.territory_client import TerritoryClient, TerritoryFeature

LOGGER = logging.getLogger("replay_route")


class SimulatedClock:
    """Monotonic clock advanced manually by the replay loop."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start

    def advance(self, seconds: float) -> None:
        self._now += seconds

    def __call__(self) -> float:
        return self._now


class OfflineTerritoryService:
    """In-memory stand-in for the backend that accepts every claim."""

    def __init__(self, *, min_area_m2: float = 0.0) -> None:
        self._features: Dict[str, TerritoryFeature] = {}
        self._lock = threading.Lock()
        self._min_area_m2 = min_area_m2

    def fetch_territories(self) -> List[TerritoryFeature]:
        with self._lock:
            return list(self._features.values())

    def claim_territory(
        self,
        owner_id: str,
        activity: ActivityType,
        coordinates: Sequence[LatLon],
    ) -> TerritoryFeature:
        area = polygon_area_m2(coordinates)
        if area < self._min_area_m2:
            raise TerritoryClaimError(
                f"Polygon area {area:.0f}m2 below minimum {self._min_area_m2:.0f}m2"
            )
        now = datetime.now(timezone.utc)
        feature = TerritoryFeature(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            activity_type=ActivityType(activity).value,
            area_m2=area,
            geojson={
                "type": "MultiPolygon",
                "coordinates": [[[[lon, lat] for lat, lon in coordinates]]],
            },
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._features[feature.id] = feature
        return feature


@dataclass(slots=True)
class ReplaySummary:
    points: int
    distance_m: float
    live_captures: List[CaptureResult] = field(default_factory=list)
    session_end_capture: CaptureResult | None = None

    @property
    def confirmed(self) -> List[CaptureResult]:
        results = list(self.live_captures)
        if self.session_end_capture is not None:
            results.append(self.session_end_capture)
        return [r for r in results if r.state is CaptureState.CONFIRMED]

    def to_dict(self) -> Dict[str, Any]:
        def _entry(result: CaptureResult) -> Dict[str, Any]:
            territory = result.territory
            return {
                "temporary_id": result.temporary_id,
                "state": result.state.value,
                "territory_id": territory.id if territory else None,
                "area_m2": round(territory.area_m2, 1) if territory else None,
                "polygon_points": len(territory.polygons[0]) if territory else None,
                "error": str(result.error) if result.error else None,
            }

        return {
            "points": self.points,
            "distance_m": round(self.distance_m, 1),
            "live_captures": [_entry(r) for r in self.live_captures],
            "session_end_capture": (
                _entry(self.session_end_capture) if self.session_end_capture else None
            ),
        }


def load_route(path: Path) -> List[LatLon]:
    """Load (lat, lon) points from a GPX file or a JSON array."""

    if path.suffix.lower() == ".gpx":
        return _load_gpx(path)
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("points") or payload.get("latlng") or []
    points: List[LatLon] = []
    for item in payload:
        if isinstance(item, dict):
            points.append((float(item["lat"]), float(item.get("lon", item.get("lng")))))
        elif isinstance(item, (list, tuple)) and len(item) >= 2:
            points.append((float(item[0]), float(item[1])))
    if not points:
        raise SystemExit(f"No route points found in {path}")
    return points


def _load_gpx(path: Path) -> List[LatLon]:
    root = ET.parse(path).getroot()
    points = [
        (float(node.attrib["lat"]), float(node.attrib["lon"]))
        for node in root.iter()
        if node.tag.rsplit("}", 1)[-1] == "trkpt"
    ]
    if not points:
        raise SystemExit("GPX file contains no track points")
    return points


def replay_route(
    points: Sequence[LatLon],
    activity: ActivityType,
    user_id: str,
    *,
    service: TerritoryClient | None = None,
    sample_interval_s: float = 1.0,
    settings: LoopDetectionSettings | None = None,
    timeout_s: float = 30.0,
) -> ReplaySummary:
    """Feed ``points`` through a fresh store and wait for every claim."""

    clock = SimulatedClock()
    store = TerritoryStore(
        service or OfflineTerritoryService(), settings=settings, clock=clock
    )
    live: List[Future[CaptureResult]] = []
    end_future: Future[CaptureResult] | None = None
    try:
        store.reset_session()
        for count in range(1, len(points) + 1):
            clock.advance(sample_interval_s)
            future = store.check_route_for_loops(points[:count], activity, user_id)
            if future is not None:
                live.append(future)
        end_future = store.capture_territory_if_needed(activity, points, user_id)
        pending = list(live) + ([end_future] if end_future is not None else [])
        wait(pending, timeout=timeout_s)
    finally:
        store.close(cancel_pending=True)

    summary = ReplaySummary(
        points=len(points),
        distance_m=path_length_m(points),
        live_captures=[f.result() for f in live if f.done() and not f.cancelled()],
    )
    if end_future is not None and end_future.done() and not end_future.cancelled():
        summary.session_end_capture = end_future.result()
    LOGGER.info(
        "Replayed %d points: %d live captures, session end capture=%s",
        summary.points,
        len(summary.live_captures),
        summary.session_end_capture is not None,
    )
    return summary


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Replay a recorded route through the territory loop detector."
    )
    parser.add_argument(
        "--input",
        type=Path,
        required=True,
        help="GPX file or JSON array of [lat, lon] pairs",
    )
    parser.add_argument(
        "--activity",
        default=ActivityType.RUNNING.value,
        help="Activity type (running, golf, hiking, skiing, ...)",
    )
    parser.add_argument(
        "--user-id",
        default="replay-user",
        help="Owner id attached to captured territories",
    )
    parser.add_argument(
        "--sample-interval",
        type=float,
        default=1.0,
        help="Seconds between GPS fixes in the recording (default: 1.0)",
    )
    parser.add_argument(
        "--live-backend",
        action="store_true",
        help="Submit claims to TERRITORY_API_URL instead of the in-memory backend",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity (default: INFO)",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:  # pragma: no cover - CLI glue
    args = parse_args(argv)
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=getattr(logging, args.log_level),
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )
    activity = parse_activity_type(args.activity)
    if activity is None:
        raise SystemExit(f"Unknown activity type: {args.activity}")
    service: TerritoryClient | None = None
    if args.live_backend:
        from territory_capture.territory_client import TerritoryService

        service = TerritoryService()
    summary = replay_route(
        load_route(args.input),
        activity,
        args.user_id,
        service=service,
        sample_interval_s=args.sample_interval,
    )
    json.dump(summary.to_dict(), sys.stdout, indent=2)
    sys.stdout.write("\n")


if __name__ == "__main__":  # pragma: no cover - CLI entry
    try:
        main()
    except KeyboardInterrupt:
        sys.exit(130)
