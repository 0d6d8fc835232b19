"""Session-scoped territory store: live loop detection and claim reconciliation.

The store is fed synchronously by the activity tracker (one call per GPS
fix). When the route closes a loop, a local optimistic territory is published
immediately and the claim is submitted on a worker thread. The claim either
swaps the optimistic entry for the server's territory or retracts it.

Every mutation of published state and every listener notification happens
while holding ``self._lock`` so readers never observe half-applied swaps.
"""

from __future__ import annotations

from concurrent.futures import CancelledError, Executor, Future, ThreadPoolExecutor
from datetime import datetime, timezone
import logging
import math
import threading
import time
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple
import uuid

import numpy as np
import pandas as pd

from .activity_types import ActivityType, parse_activity_type
from .config import CLAIM_MAX_WORKERS, REFRESH_AFTER_CLAIM
from .errors import TerritoryPayloadError
from .geometry import distance_m, distances_from, is_valid_loop, prepare_polygon
from .models import (
    CaptureResult,
    CaptureState,
    ClaimFailure,
    LatLon,
    LoopDetectionSettings,
    SessionMetadata,
    Territory,
    TerritorySnapshot,
)
from .territory_client.features import TerritoryFeature, parse_feature
from .territory_client.service import TerritoryClient

StateListener = Callable[[TerritorySnapshot], None]
FailureListener = Callable[[ClaimFailure], None]

__all__ = ["TerritoryStore"]


class TerritoryStore:
    """Owns captured territories for one tracked activity flow."""

    def __init__(
        self,
        service: TerritoryClient,
        *,
        settings: LoopDetectionSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        executor: Executor | None = None,
        max_workers: int = CLAIM_MAX_WORKERS,
        refresh_after_claim: bool = REFRESH_AFTER_CLAIM,
    ) -> None:
        self._log = logging.getLogger(self.__class__.__name__)
        self._service = service
        self._settings = settings or LoopDetectionSettings()
        self._clock = clock
        self._refresh_after_claim = refresh_after_claim
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="territory-claim"
        )
        self._lock = threading.RLock()
        self._territories: Dict[str, Territory] = {}
        self._active: Dict[str, Territory] = {}
        # Optimistic entries whose claim has not completed, keyed by temporary id.
        self._pending: Dict[str, Territory] = {}
        self._claim_futures: Dict[str, Future] = {}
        # Final state of captures started in this session, keyed by temporary id.
        self._outcomes: Dict[str, CaptureState] = {}
        # Confirmations made while a refresh fetch is running; merged by id
        # into the fetched set so a slower fetch cannot drop them.
        self._confirm_seq = 0
        self._confirmed_during_refresh: List[Tuple[int, Territory]] = []
        self._refreshes_in_flight = 0
        self._last_checked_index = 0
        self._last_capture_time = -math.inf
        self._listeners: List[StateListener] = []
        self._failure_listeners: List[FailureListener] = []

    # ------------------------------------------------------------------
    # Published state
    # ------------------------------------------------------------------
    @property
    def settings(self) -> LoopDetectionSettings:
        return self._settings

    @property
    def territories(self) -> Mapping[str, Territory]:
        with self._lock:
            return MappingProxyType(dict(self._territories))

    @property
    def active_session_territories(self) -> Tuple[Territory, ...]:
        with self._lock:
            return tuple(self._active.values())

    @property
    def last_checked_index(self) -> int:
        with self._lock:
            return self._last_checked_index

    @property
    def last_capture_time(self) -> float:
        with self._lock:
            return self._last_capture_time

    @property
    def pending_claims(self) -> Tuple[str, ...]:
        """Temporary ids of captures still waiting on the backend."""

        with self._lock:
            return tuple(self._pending)

    def capture_state(self, temporary_id: str) -> CaptureState | None:
        """Return where a capture of this session is in its lifecycle.

        ``None`` for unknown ids. Outcomes of captures that finished before
        the last :meth:`reset_session` are forgotten.
        """

        with self._lock:
            if temporary_id in self._pending:
                return CaptureState.LOCAL_OPTIMISTIC
            return self._outcomes.get(temporary_id)

    def snapshot(self) -> TerritorySnapshot:
        with self._lock:
            return self._snapshot_locked()

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener`` for every state change; returns an unsubscribe."""

        with self._lock:
            self._listeners.append(listener)
        return lambda: self._remove_listener(self._listeners, listener)

    def subscribe_failures(self, listener: FailureListener) -> Callable[[], None]:
        """Register ``listener`` for rejected claims; returns an unsubscribe."""

        with self._lock:
            self._failure_listeners.append(listener)
        return lambda: self._remove_listener(self._failure_listeners, listener)

    def territories_for_owner(self, owner_id: str) -> List[Territory]:
        with self._lock:
            return [t for t in self._territories.values() if t.owner_id == owner_id]

    def owner_summary(self) -> pd.DataFrame:
        """Return territory count and total area per owner, largest area first."""

        columns = ["owner_id", "territories", "total_area_m2"]
        with self._lock:
            rows = [
                {"owner_id": t.owner_id, "area_m2": t.area_m2}
                for t in self._territories.values()
            ]
        if not rows:
            return pd.DataFrame(columns=columns)
        frame = pd.DataFrame(rows)
        summary = (
            frame.groupby("owner_id", sort=False)["area_m2"]
            .agg(territories="count", total_area_m2="sum")
            .reset_index()
        )
        summary = summary.sort_values(
            ["total_area_m2", "owner_id"], ascending=[False, True], kind="stable"
        )
        return summary.reset_index(drop=True)[columns]

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    def reset_session(self) -> None:
        """Start a new tracked activity.

        In-flight claims are not cancelled; when they finish they only touch
        ``territories`` because their optimistic entry is gone from the
        active session.
        """

        with self._lock:
            self._active = {}
            self._last_checked_index = 0
            self._last_capture_time = -math.inf
            self._outcomes = {}
            self._notify_locked()
        self._log.debug("Territory session reset")

    def check_route_for_loops(
        self,
        coordinates: Sequence[LatLon],
        activity: ActivityType | str | None,
        user_id: str,
        *,
        metadata: SessionMetadata | None = None,
    ) -> Future[CaptureResult] | None:
        """Scan the route tail for a closed loop and capture it.

        Called once per new GPS fix with the full route so far. Returns the
        claim future when a capture was triggered, otherwise ``None``.
        """

        settings = self._settings
        parsed = parse_activity_type(activity)
        if parsed not in settings.eligible_activities:
            return None
        count = len(coordinates)
        if count < settings.min_coordinates:
            return None

        with self._lock:
            now = self._clock()
            if now - self._last_capture_time <= settings.debounce_seconds:
                return None
            current_index = count - 1
            search_end_index = current_index - settings.recent_buffer
            start_index = self._last_checked_index
            if search_end_index <= start_index:
                return None

            current = _as_latlon(coordinates[current_index])
            window = [
                _as_latlon(point)
                for point in coordinates[start_index : search_end_index + 1]
            ]
            # The latest hit equals the first match of a backwards scan.
            hits = np.flatnonzero(
                distances_from(window, current) < settings.close_distance_m
            )
            if hits.size == 0:
                return None
            loop_start = start_index + int(hits[-1])

            loop = [_as_latlon(point) for point in coordinates[loop_start:count]]
            if not is_valid_loop(
                loop,
                min_points=settings.min_loop_points,
                min_perimeter_m=settings.min_perimeter_m,
            ):
                self._log.debug(
                    "Rejected loop indices=%d..%d points=%d (too small)",
                    loop_start,
                    current_index,
                    len(loop),
                )
                return None

            self._log.info(
                "Loop closed indices=%d..%d points=%d user=%s activity=%s",
                loop_start,
                current_index,
                len(loop),
                user_id,
                parsed.value,
            )
            future = self._capture(loop, parsed, user_id, metadata)
            self._last_checked_index = current_index
            self._last_capture_time = now
            return future

    def capture_territory_if_needed(
        self,
        activity: ActivityType | str | None,
        route_coordinates: Sequence[LatLon],
        user_id: str,
        *,
        metadata: SessionMetadata | None = None,
    ) -> Future[CaptureResult] | None:
        """Capture the whole route at activity end when it returns to its start.

        Independent of the live scanner: the debounce and scan position are
        neither consulted nor updated.
        """

        settings = self._settings
        parsed = parse_activity_type(activity)
        if parsed not in settings.eligible_activities:
            return None
        if len(route_coordinates) < settings.session_end_min_points:
            return None
        route = [_as_latlon(point) for point in route_coordinates]
        gap_m = distance_m(route[0], route[-1])
        if gap_m > settings.session_end_close_distance_m:
            self._log.debug("Route not closed at session end (gap %.1fm)", gap_m)
            return None
        self._log.info(
            "Closed route at session end points=%d gap=%.1fm user=%s",
            len(route),
            gap_m,
            user_id,
        )
        with self._lock:
            return self._capture(route, parsed, user_id, metadata)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------
    def refresh(self) -> int | None:
        """Replace known territories with the backend's set.

        Returns the number of territories now known, or ``None`` when the
        fetch failed (state is left untouched). Pending optimistic entries
        and claims confirmed while the fetch was running are kept.
        """

        with self._lock:
            self._refreshes_in_flight += 1
            started_seq = self._confirm_seq
        try:
            try:
                features = self._service.fetch_territories()
            except Exception as exc:
                self._log.error("Territory refresh failed: %s", exc, exc_info=True)
                return None

            mapped: Dict[str, Territory] = {}
            dropped = 0
            for item in features:
                feature = item if isinstance(item, TerritoryFeature) else parse_feature(item)
                territory = feature.to_territory() if feature is not None else None
                if territory is None:
                    dropped += 1
                    continue
                mapped.setdefault(territory.id, territory)
            if dropped:
                self._log.warning("Dropped %d territories that failed to map", dropped)

            with self._lock:
                for seq, confirmed in self._confirmed_during_refresh:
                    if seq > started_seq:
                        mapped.setdefault(confirmed.id, confirmed)
                for temp_id, optimistic in self._pending.items():
                    mapped.setdefault(temp_id, optimistic)
                self._territories = mapped
                total = len(mapped)
                owners = len({t.owner_id for t in mapped.values()})
                self._notify_locked()
        finally:
            with self._lock:
                self._refreshes_in_flight -= 1
                if not self._refreshes_in_flight:
                    self._confirmed_during_refresh = []
        self._log.info("Loaded %d territories from %d owners", total, owners)
        return total

    def refresh_async(self) -> Future[int | None]:
        return self._executor.submit(self.refresh)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------
    def cancel_pending_claims(self) -> int:
        """Cancel claims that have not started and retract their entries."""

        cancelled = 0
        with self._lock:
            for temp_id, future in list(self._claim_futures.items()):
                if future.cancel():
                    optimistic = self._pending.get(temp_id)
                    if optimistic is not None:
                        self._retract_locked(optimistic, CancelledError())
                    cancelled += 1
        if cancelled:
            self._log.info("Cancelled %d pending territory claims", cancelled)
        return cancelled

    def close(self, *, cancel_pending: bool = False, wait: bool = True) -> None:
        if cancel_pending:
            self.cancel_pending_claims()
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def __enter__(self) -> "TerritoryStore":
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Capture state machine
    # ------------------------------------------------------------------
    def _capture(
        self,
        points: Sequence[LatLon],
        activity: ActivityType,
        user_id: str,
        metadata: SessionMetadata | None,
    ) -> Future[CaptureResult]:
        """Publish an optimistic territory and submit its claim.

        Must be called with ``self._lock`` held so the claim cannot complete
        before it is registered.
        """

        settings = self._settings
        polygon = prepare_polygon(
            points,
            max_points=settings.polygon_max_points,
            snap_tolerance_m=settings.snap_tolerance_m,
        )
        metadata = metadata or SessionMetadata()
        optimistic = Territory(
            id=str(uuid.uuid4()),
            owner_id=user_id,
            activity=activity,
            area_m2=0.0,
            polygons=(tuple(polygon),),
            session_distance_km=metadata.distance_km,
            session_duration_s=metadata.duration_s,
            session_pace=metadata.pace,
            created_at=datetime.now(timezone.utc),
            pending=True,
        )
        self._active[optimistic.id] = optimistic
        self._territories.setdefault(optimistic.id, optimistic)
        self._pending[optimistic.id] = optimistic
        self._notify_locked()

        try:
            future = self._executor.submit(self._submit_claim, optimistic)
        except RuntimeError as exc:
            # Executor already shut down.
            self._retract_locked(optimistic, exc)
            failed: Future = Future()
            failed.set_result(
                CaptureResult(optimistic.id, CaptureState.RETRACTED, error=exc)
            )
            return failed
        self._claim_futures[optimistic.id] = future
        return future

    def _submit_claim(self, optimistic: Territory) -> CaptureResult:
        polygon = optimistic.polygons[0]
        try:
            feature = self._service.claim_territory(
                optimistic.owner_id, optimistic.activity, polygon
            )
            confirmed = feature.to_territory()
            if confirmed is None:
                raise TerritoryPayloadError(
                    f"Claimed territory {feature.id} has no usable polygon"
                )
        except Exception as exc:
            self._log.warning(
                "Territory claim failed owner=%s temp_id=%s: %s",
                optimistic.owner_id,
                optimistic.id,
                exc,
                exc_info=True,
            )
            with self._lock:
                self._retract_locked(optimistic, exc)
            return CaptureResult(optimistic.id, CaptureState.RETRACTED, error=exc)

        confirmed = confirmed.with_session(optimistic)
        with self._lock:
            self._confirm_locked(optimistic, confirmed)
        self._log.info(
            "Territory confirmed id=%s area=%.0fm2 (temp_id=%s)",
            confirmed.id,
            confirmed.area_m2,
            optimistic.id,
        )
        if self._refresh_after_claim:
            self.refresh()
        return CaptureResult(optimistic.id, CaptureState.CONFIRMED, territory=confirmed)

    def _confirm_locked(self, optimistic: Territory, confirmed: Territory) -> None:
        self._pending.pop(optimistic.id, None)
        self._claim_futures.pop(optimistic.id, None)
        self._territories = _swap_entry(self._territories, optimistic.id, confirmed)
        # A reset while the claim was in flight means the capture belongs to an
        # earlier session; it stays out of the current one.
        if optimistic.id in self._active:
            self._active = _swap_entry(self._active, optimistic.id, confirmed)
        self._outcomes[optimistic.id] = CaptureState.CONFIRMED
        self._confirm_seq += 1
        if self._refreshes_in_flight:
            self._confirmed_during_refresh.append(
                (self._confirm_seq, self._territories[confirmed.id])
            )
        self._notify_locked()

    def _retract_locked(self, optimistic: Territory, error: BaseException) -> None:
        self._pending.pop(optimistic.id, None)
        self._claim_futures.pop(optimistic.id, None)
        self._territories.pop(optimistic.id, None)
        self._active.pop(optimistic.id, None)
        self._outcomes[optimistic.id] = CaptureState.RETRACTED
        self._notify_locked()
        failure = ClaimFailure(
            temporary_id=optimistic.id,
            owner_id=optimistic.owner_id,
            activity=optimistic.activity,
            error=error,
            occurred_at=datetime.now(timezone.utc),
        )
        for listener in list(self._failure_listeners):
            try:
                listener(failure)
            except Exception:
                self._log.exception("Claim failure listener raised")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _snapshot_locked(self) -> TerritorySnapshot:
        return TerritorySnapshot(
            territories=MappingProxyType(dict(self._territories)),
            active_session=tuple(self._active.values()),
        )

    def _notify_locked(self) -> None:
        if not self._listeners:
            return
        snapshot = self._snapshot_locked()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                self._log.exception("Territory state listener raised")

    def _remove_listener(self, listeners: List[Any], listener: Any) -> None:
        with self._lock:
            if listener in listeners:
                listeners.remove(listener)


def _as_latlon(point: Sequence[float]) -> LatLon:
    return (float(point[0]), float(point[1]))


def _swap_entry(
    entries: Dict[str, Territory], old_id: str, new: Territory
) -> Dict[str, Territory]:
    """Return a copy with ``old_id`` replaced by ``new`` in the same position.

    An existing entry with ``new.id`` wins over the replacement; a missing
    ``old_id`` appends ``new`` unless its id is already present.
    """

    swapped: Dict[str, Territory] = {}
    if old_id not in entries:
        swapped.update(entries)
        swapped.setdefault(new.id, new)
        return swapped
    for key, value in entries.items():
        if key != old_id:
            swapped[key] = value
        elif new.id not in entries:
            swapped[new.id] = new
    return swapped
