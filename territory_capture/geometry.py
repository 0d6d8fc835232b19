"""Geodesic helpers for loop detection and polygon preparation.

Distances are measured on the WGS84 ellipsoid through :class:`pyproj.Geod`
so every threshold in the package uses the same model.
"""

from __future__ import annotations

import math
from typing import List, Sequence

import numpy as np
from numpy.typing import NDArray
from pyproj import Geod

from .config import (
    LOOP_MIN_PERIMETER_M,
    LOOP_MIN_POINTS,
    POLYGON_MAX_POINTS,
    POLYGON_SNAP_TOLERANCE_M,
)
from .models import LatLon

__all__ = [
    "distance_m",
    "distances_from",
    "path_length_m",
    "is_valid_loop",
    "simplify",
    "ensure_closed_loop",
    "is_closed",
    "prepare_polygon",
    "polygon_area_m2",
]

_GEOD = Geod(ellps="WGS84")


def distance_m(a: LatLon, b: LatLon) -> float:
    """Return the geodesic distance between two (lat, lon) points in metres."""

    _, _, dist = _GEOD.inv(a[1], a[0], b[1], b[0])
    return float(dist)


def distances_from(points: Sequence[LatLon], target: LatLon) -> NDArray[np.float64]:
    """Return the distance from every point in ``points`` to ``target``."""

    if not points:
        return np.empty(0, dtype=float)
    array = np.asarray(points, dtype=float)
    lats = array[:, 0]
    lons = array[:, 1]
    target_lats = np.full_like(lats, float(target[0]))
    target_lons = np.full_like(lons, float(target[1]))
    _, _, dist = _GEOD.inv(lons, lats, target_lons, target_lats)
    return np.asarray(dist, dtype=float)


def path_length_m(points: Sequence[LatLon]) -> float:
    """Sum of consecutive geodesic distances along ``points``."""

    if len(points) < 2:
        return 0.0
    array = np.asarray(points, dtype=float)
    return float(_GEOD.line_length(array[:, 1], array[:, 0]))


def is_valid_loop(
    points: Sequence[LatLon],
    *,
    min_points: int = LOOP_MIN_POINTS,
    min_perimeter_m: float = LOOP_MIN_PERIMETER_M,
) -> bool:
    """Reject degenerate loops made of a few nearly coincident points."""

    if len(points) < min_points:
        return False
    return path_length_m(points) > min_perimeter_m


def simplify(
    points: Sequence[LatLon], max_points: int = POLYGON_MAX_POINTS
) -> List[LatLon]:
    """Down-sample ``points`` by stride while always keeping the last point.

    The stride is rounded up so the result never exceeds ``max_points`` plus
    the forced final point.
    """

    count = len(points)
    step = max(1, math.ceil(count / max(1, max_points)))
    result = [points[idx] for idx in range(0, count, step)]
    if count and (count - 1) % step != 0:
        result.append(points[-1])
    if len(result) < 3:
        return list(points)
    return result


def is_closed(ring: Sequence[LatLon]) -> bool:
    return len(ring) >= 2 and tuple(ring[0]) == tuple(ring[-1])


def ensure_closed_loop(
    points: Sequence[LatLon], snap_tolerance_m: float = POLYGON_SNAP_TOLERANCE_M
) -> List[LatLon]:
    """Return ``points`` with its first point repeated at the end.

    A last point within ``snap_tolerance_m`` of the first is replaced by the
    first point, otherwise the first point is appended.
    """

    result = list(points)
    if len(result) < 3:
        return result
    first = result[0]
    if is_closed(result):
        return result
    if distance_m(first, result[-1]) <= snap_tolerance_m:
        result[-1] = first
    else:
        result.append(first)
    return result


def prepare_polygon(
    points: Sequence[LatLon],
    *,
    max_points: int = POLYGON_MAX_POINTS,
    snap_tolerance_m: float = POLYGON_SNAP_TOLERANCE_M,
) -> List[LatLon]:
    """Simplify then close a loop so it can be published and submitted."""

    return ensure_closed_loop(simplify(points, max_points), snap_tolerance_m)


def polygon_area_m2(ring: Sequence[LatLon]) -> float:
    """Geodesic area enclosed by ``ring`` (absolute value, square metres)."""

    if len(ring) < 3:
        return 0.0
    array = np.asarray(ring, dtype=float)
    area, _ = _GEOD.polygon_area_perimeter(array[:, 1], array[:, 0])
    return abs(float(area))
