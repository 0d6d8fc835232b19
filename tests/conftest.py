"""Global pytest fixtures & helpers.

Adds project root to path and provides route builders plus a controllable
fake territory backend shared by the store tests.
"""
from __future__ import annotations

import math
import os
import sys
import threading
import uuid
from typing import Callable, List, Sequence

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from territory_capture.activity_types import ActivityType
from territory_capture.store import TerritoryStore
from territory_capture.territory_client import TerritoryFeature

CENTER = (59.3293, 18.0686)
_M_PER_DEG_LAT = 111_320.0


# --- Route helpers ---------------------------------------------------
def offset(origin, north_m: float, east_m: float):
    """Return (lat, lon) shifted by metres from ``origin``."""
    lat, lon = origin
    dlat = north_m / _M_PER_DEG_LAT
    dlon = east_m / (_M_PER_DEG_LAT * math.cos(math.radians(lat)))
    return (lat + dlat, lon + dlon)


def circle_route(radius_m: float = 30.0, points: int = 40, laps: int = 1, origin=CENTER):
    """Points on a circle, starting due north, repeated ``laps`` times."""
    lap = [
        offset(
            origin,
            radius_m * math.cos(2 * math.pi * i / points),
            radius_m * math.sin(2 * math.pi * i / points),
        )
        for i in range(points)
    ]
    return lap * laps


def feed(store: TerritoryStore, route: Sequence, activity=ActivityType.RUNNING, user_id="user-1", clock=None, step_s: float = 1.0):
    """Push ``route`` one fix at a time, returning every claim future."""
    futures = []
    for count in range(1, len(route) + 1):
        if clock is not None:
            clock.advance(step_s)
        future = store.check_route_for_loops(route[:count], activity, user_id)
        if future is not None:
            futures.append(future)
    return futures


def make_feature(feature_id=None, owner_id="user-1", activity="running", area=1234.0, ring=None):
    ring = ring or circle_route(radius_m=30.0, points=12)
    return TerritoryFeature(
        id=feature_id or str(uuid.uuid4()),
        owner_id=owner_id,
        activity_type=activity,
        area_m2=area,
        geojson={
            "type": "MultiPolygon",
            "coordinates": [[[[lon, lat] for lat, lon in list(ring) + [ring[0]]]]],
        },
    )


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def __call__(self) -> float:
        return self.now


class FakeTerritoryService:
    """Backend double: records claims, optionally blocks or fails them."""

    def __init__(self) -> None:
        self.claims: List[tuple] = []
        self.features: List[object] = []
        self.gate = threading.Event()
        self.gate.set()
        self.claim_error: Exception | None = None
        self.fetch_error: Exception | None = None
        self.area = 2500.0
        self.server_ids: List[str] = []
        self.on_claim: Callable[[], None] | None = None
        self.fetch_started = threading.Event()
        self.fetch_gate = threading.Event()
        self.fetch_gate.set()

    def fetch_territories(self):
        self.fetch_started.set()
        assert self.fetch_gate.wait(5), "fetch gate never released"
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.features)

    def claim_territory(self, owner_id, activity, coordinates):
        self.claims.append((owner_id, activity, list(coordinates)))
        if self.on_claim is not None:
            self.on_claim()
        assert self.gate.wait(5), "claim gate never released"
        if self.claim_error is not None:
            raise self.claim_error
        server_id = f"server-{len(self.server_ids) + 1}"
        self.server_ids.append(server_id)
        return make_feature(
            feature_id=server_id,
            owner_id=owner_id,
            activity=activity.value,
            area=self.area,
            ring=list(coordinates)[:-1],
        )


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service() -> FakeTerritoryService:
    return FakeTerritoryService()


@pytest.fixture
def store(service, clock):
    territory_store = TerritoryStore(service, clock=clock)
    yield territory_store
    service.gate.set()
    service.fetch_gate.set()
    territory_store.close()
