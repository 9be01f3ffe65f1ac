"""
Dwell detection over an ordered fix stream, and the tracking-session handle
that owns one session while it is being recorded.
"""

from __future__ import annotations

import bisect
import logging
import math
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .errors import MalformedInput
from .location_utils import Coordinate, LocationUtils
from .models import DwellPoint, Fix, NightSession
from .settings import TrackingConfig

logger = logging.getLogger(__name__)

# An OS-reported visit is treated as the same stop as an existing dwell when
# it lies within this distance and overlaps it in time.
VISIT_OVERLAP_RADIUS_M = 50.0


def validate_fix(fix: Fix) -> None:
    """Raise MalformedInput unless the fix has sane coordinates and an aware timestamp."""

    if not LocationUtils.is_valid_coordinate(fix.latitude, fix.longitude):
        raise MalformedInput(f"Invalid coordinate ({fix.latitude}, {fix.longitude})")
    if not isinstance(fix.timestamp, datetime):
        raise MalformedInput(f"Fix timestamp must be a datetime, got {type(fix.timestamp).__name__}")
    if fix.timestamp.tzinfo is None:
        raise MalformedInput("Fix timestamp has no timezone")
    if fix.accuracy is not None and not math.isfinite(fix.accuracy):
        raise MalformedInput(f"Non-finite accuracy {fix.accuracy}")


@dataclass
class _Window:
    """Open candidate window: the anchor fix plus the last fix seen within radius."""

    anchor: Fix
    last: Fix
    count: int = 1

    @property
    def duration(self) -> float:
        return (self.last.timestamp - self.anchor.timestamp).total_seconds()


class DwellDetector:
    """
    Turns an ordered fix stream into dwell points.

    Every incoming fix is compared with the window's original anchor (not a
    rolling centroid). When a fix lands further than the dwell radius away the
    window closes; it becomes a dwell if it lasted at least the minimum
    duration, and a new window is anchored at the breaking fix either way.
    Dwells are located at their anchor fix.

    Fixes must be fed in arrival order from a single caller.
    """

    def __init__(self, radius_m: float = 25.0, min_duration_s: float = 20 * 60.0):
        if not radius_m > 0:
            raise ValueError(f"radius_m must be positive, got {radius_m}")
        if not min_duration_s > 0:
            raise ValueError(f"min_duration_s must be positive, got {min_duration_s}")
        self.radius_m = radius_m
        self.min_duration_s = min_duration_s
        self._window: Optional[_Window] = None
        self._last_timestamp: Optional[datetime] = None

    @classmethod
    def from_config(cls, config: TrackingConfig) -> 'DwellDetector':
        return cls(radius_m=config.dwell_radius_m, min_duration_s=config.dwell_min_seconds)

    @property
    def is_idle(self) -> bool:
        return self._window is None

    @property
    def anchor(self) -> Optional[Fix]:
        return self._window.anchor if self._window else None

    def process(self, fix: Fix) -> Optional[DwellPoint]:
        """
        Feed one fix.

        Returns:
            The dwell completed by this fix, if any

        Raises:
            MalformedInput: invalid fix or timestamp earlier than the previous fix
        """
        validate_fix(fix)
        if self._last_timestamp is not None and fix.timestamp < self._last_timestamp:
            raise MalformedInput(
                f"Out-of-order fix: {fix.timestamp.isoformat()} is before {self._last_timestamp.isoformat()}"
            )
        self._last_timestamp = fix.timestamp

        window = self._window
        if window is None:
            self._window = _Window(anchor=fix, last=fix)
            return None

        distance = LocationUtils.distance_meters(fix.coordinate, window.anchor.coordinate)
        if distance <= self.radius_m:
            window.last = fix
            window.count += 1
            return None

        # Left the area: close the window and re-anchor at the breaking fix
        dwell = self._close(window)
        self._window = _Window(anchor=fix, last=fix)
        return dwell

    def flush(self) -> Optional[DwellPoint]:
        """Close any open window at session end, returning its dwell if it qualifies."""

        window = self._window
        self._window = None
        if window is None:
            return None
        return self._close(window)

    def reset(self) -> None:
        self._window = None
        self._last_timestamp = None

    def _close(self, window: _Window) -> Optional[DwellPoint]:
        duration = window.duration
        if duration <= 0 or duration < self.min_duration_s:
            logger.debug("Discarded candidate window of %.0fs (%d fixes)", duration, window.count)
            return None

        dwell = DwellPoint(
            location=window.anchor.coordinate,
            start_time=window.anchor.timestamp,
            end_time=window.last.timestamp,
        )
        logger.info("🏠 Dwell detected at (%.6f, %.6f), %.0f min",
                    dwell.location.latitude, dwell.location.longitude, duration / 60)
        return dwell


class TrackingSession:
    """
    Single owner of a session while it is being recorded.

    Readers get immutable NightSession snapshots; every mutation goes through
    this handle. Place names may be applied from other threads (see
    ReverseGeocoder.name_session_dwells), so all state changes hold a lock.
    Dwells are kept ordered by start time.
    """

    def __init__(self, config: Optional[TrackingConfig] = None, start_time: Optional[datetime] = None,
                 session_id: Optional[uuid.UUID] = None):
        self.config = config or TrackingConfig()
        if start_time is None:
            start_time = datetime.now(timezone.utc)
        if start_time.tzinfo is None:
            raise MalformedInput("Session start time has no timezone")
        self._session = NightSession(start_time=start_time, id=session_id or uuid.uuid4())
        self._route: List[Fix] = []
        self._dwells: List[DwellPoint] = []
        self._detector = DwellDetector.from_config(self.config)
        self._lock = threading.RLock()

    @property
    def id(self) -> uuid.UUID:
        return self._session.id

    @property
    def is_active(self) -> bool:
        return self._session.is_active

    def snapshot(self) -> NightSession:
        with self._lock:
            return replace(self._session, route=tuple(self._route), dwells=tuple(self._dwells))

    def add_fix(self, fix: Fix) -> Optional[DwellPoint]:
        """
        Record a fix and run dwell detection on it.

        Fixes with poor accuracy are dropped (None is returned). Invalid or
        out-of-order fixes raise MalformedInput and leave the session unchanged.
        """
        with self._lock:
            if not self.is_active:
                raise MalformedInput("Session has already ended")
            validate_fix(fix)
            if fix.timestamp < self._session.start_time:
                raise MalformedInput(
                    f"Fix at {fix.timestamp.isoformat()} precedes session start {self._session.start_time.isoformat()}"
                )
            if not self._is_accurate(fix):
                logger.warning("⚠️ Fix filtered: poor accuracy (%sm)", fix.accuracy)
                return None

            dwell = self._detector.process(fix)
            self._route.append(fix)
            if dwell is not None:
                self._insert_dwell(dwell)
            return dwell

    def add_external_visit(self, latitude: float, longitude: float,
                           arrival: datetime, departure: datetime) -> Optional[DwellPoint]:
        """
        Accept a visit reported by the platform as a fallback dwell.

        An arrival before the session start is clipped to the start. The visit
        is added only if what remains lasts at least the minimum dwell duration
        and does not overlap (in space and time) a dwell already recorded.
        """
        if not LocationUtils.is_valid_coordinate(latitude, longitude):
            raise MalformedInput(f"Invalid coordinate ({latitude}, {longitude})")
        if arrival.tzinfo is None or departure.tzinfo is None:
            raise MalformedInput("Visit timestamps must have a timezone")

        with self._lock:
            if not self.is_active:
                raise MalformedInput("Session has already ended")

            if arrival < self._session.start_time:
                logger.debug("Visit arrival %s clipped to session start", arrival.isoformat())
                arrival = self._session.start_time

            duration = (departure - arrival).total_seconds()
            if duration <= 0 or duration < self.config.dwell_min_seconds:
                return None

            location = Coordinate(latitude, longitude)
            for dwell in self._dwells:
                close = LocationUtils.distance_meters(dwell.location, location) < VISIT_OVERLAP_RADIUS_M
                if close and dwell.start_time < departure and dwell.end_time > arrival:
                    logger.info("ℹ️ Visit overlaps an existing dwell - skipped")
                    return None

            dwell = DwellPoint(location=location, start_time=arrival, end_time=departure)
            self._insert_dwell(dwell)
        logger.info("✅ Visit added as dwell (%.0f min)", duration / 60)
        return dwell

    def add_drink(self, category: str, count: int = 1) -> None:
        with self._lock:
            self._session = replace(self._session, drinks=self._session.drinks.with_added(category, count))

    def remove_drink(self, category: str) -> None:
        self.add_drink(category, -1)

    def set_rating(self, stars: int) -> None:
        with self._lock:
            self._session = self._session.with_rating(stars)

    def set_place_name(self, dwell_id: uuid.UUID, name: Optional[str]) -> bool:
        """Attach a geocoded name to a dwell. Returns False for unknown ids."""

        return self._update_dwell(dwell_id, lambda d: d.with_place_name(name))

    def set_manual_place_name(self, dwell_id: uuid.UUID, name: Optional[str]) -> bool:
        return self._update_dwell(dwell_id, lambda d: d.with_manual_place_name(name))

    def should_auto_stop(self, now: Optional[datetime] = None) -> bool:
        if not self.is_active or self.config.auto_stop_hours <= 0:
            return False
        if now is None:
            now = datetime.now(timezone.utc)
        return now - self._session.start_time >= timedelta(hours=self.config.auto_stop_hours)

    def end(self, end_time: Optional[datetime] = None) -> NightSession:
        """
        Flush the detector and finalize the session.

        The end time is moved later if needed so that every fix and dwell lies
        within [start, end].
        """
        with self._lock:
            if not self.is_active:
                return self.snapshot()

            dwell = self._detector.flush()
            if dwell is not None:
                self._insert_dwell(dwell)

            if end_time is None:
                end_time = datetime.now(timezone.utc)
            if self._route:
                end_time = max(end_time, self._route[-1].timestamp)
            if self._dwells:
                end_time = max(end_time, max(d.end_time for d in self._dwells))
            end_time = max(end_time, self._session.start_time)
            self._session = replace(self._session, end_time=end_time)

            session = self.snapshot()
        logger.info("🛑 Session %s ended: %d fixes, %d dwells, %.2f km",
                    session.id, len(session.route), len(session.dwells), session.total_distance / 1000)
        return session

    def _is_accurate(self, fix: Fix) -> bool:
        limit = self.config.max_accuracy_m
        if limit is None or fix.accuracy is None:
            return True
        return 0 <= fix.accuracy <= limit

    def _insert_dwell(self, dwell: DwellPoint) -> None:
        # Caller holds the lock
        bisect.insort(self._dwells, dwell, key=lambda d: d.start_time)

    def _update_dwell(self, dwell_id, update) -> bool:
        with self._lock:
            for index, dwell in enumerate(self._dwells):
                if dwell.id == dwell_id:
                    self._dwells[index] = update(dwell)
                    return True
        logger.warning("Unknown dwell id %s", dwell_id)
        return False
