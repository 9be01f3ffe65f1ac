"""Data models for fixes, dwells and night sessions, plus their JSON codec."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .location_utils import Coordinate, LocationUtils


@dataclass(frozen=True)
class Fix:
    """A single timestamped position reading from the location provider."""

    latitude: float
    longitude: float
    timestamp: datetime
    accuracy: Optional[float] = None  # horizontal accuracy in meters

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


@dataclass(frozen=True)
class DwellPoint:
    """
    A detected stop.

    `place_name` is filled in later by the geocoder; `manual_place_name` is a
    user correction that takes priority when displayed.
    """

    location: Coordinate
    start_time: datetime
    end_time: datetime
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    place_name: Optional[str] = None
    manual_place_name: Optional[str] = None
    suggested_places: Tuple[str, ...] = ()

    @property
    def duration(self) -> float:
        """Dwell duration in seconds."""

        return (self.end_time - self.start_time).total_seconds()

    @property
    def display_name(self) -> Optional[str]:
        return self.manual_place_name or self.place_name

    @property
    def is_manually_set(self) -> bool:
        return self.manual_place_name is not None

    def with_place_name(self, name: Optional[str]) -> 'DwellPoint':
        return replace(self, place_name=name)

    def with_manual_place_name(self, name: Optional[str]) -> 'DwellPoint':
        return replace(self, manual_place_name=name)


@dataclass(frozen=True)
class DrinkCounts:
    """Per-category drink tally. Field order is the category priority order."""

    beer: int = 0
    spirits: int = 0
    cocktails: int = 0
    shots: int = 0
    wine: int = 0
    other: int = 0

    @classmethod
    def categories(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @property
    def total(self) -> int:
        return sum(self.as_dict().values())

    def as_dict(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in self.categories()}

    def with_added(self, category: str, count: int = 1) -> 'DrinkCounts':
        """Return a copy with `count` added to `category` (never below zero)."""

        if category not in self.categories():
            raise ValueError(f"Unknown drink category: {category!r}")
        return replace(self, **{category: max(0, getattr(self, category) + count)})

    def __add__(self, other: 'DrinkCounts') -> 'DrinkCounts':
        if not isinstance(other, DrinkCounts):
            return NotImplemented
        return DrinkCounts(**{name: getattr(self, name) + getattr(other, name) for name in self.categories()})


@dataclass(frozen=True)
class NightSession:
    """
    One outing from start to end. Immutable: the tracking handle produces a new
    value for every change.
    """

    start_time: datetime
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    end_time: Optional[datetime] = None
    route: Tuple[Fix, ...] = ()
    dwells: Tuple[DwellPoint, ...] = ()
    drinks: DrinkCounts = field(default_factory=DrinkCounts)
    rating: Optional[int] = None  # 1-5 stars

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    @property
    def coordinates(self) -> list:
        return [fix.coordinate for fix in self.route]

    @property
    def total_distance(self) -> float:
        """Distance along the route in meters."""

        return LocationUtils.path_length(self.coordinates)

    def duration(self, now: Optional[datetime] = None) -> float:
        """
        Session duration in seconds.

        For an active session this is measured up to `now` (defaults to the
        current time), so it is a snapshot rather than a stable value.
        """

        if self.end_time is not None:
            return (self.end_time - self.start_time).total_seconds()
        if now is None:
            now = datetime.now(timezone.utc)
        return (now - self.start_time).total_seconds()

    def with_rating(self, stars: int) -> 'NightSession':
        return replace(self, rating=min(max(int(stars), 1), 5))


# ---------------------------------------------------------------------------
# JSON codec
# ---------------------------------------------------------------------------

def encode_datetime(value: datetime) -> str:
    return value.isoformat()


def decode_datetime(text: str) -> datetime:
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        # Naive timestamps are treated as UTC
        value = value.replace(tzinfo=timezone.utc)
    return value


def fix_to_dict(fix: Fix) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        'latitude': fix.latitude,
        'longitude': fix.longitude,
        'timestamp': encode_datetime(fix.timestamp),
    }
    if fix.accuracy is not None:
        data['accuracy'] = fix.accuracy
    return data


def fix_from_dict(data: Dict[str, Any]) -> Fix:
    accuracy = data.get('accuracy')
    return Fix(
        latitude=float(data['latitude']),
        longitude=float(data['longitude']),
        timestamp=decode_datetime(data['timestamp']),
        accuracy=float(accuracy) if accuracy is not None else None,
    )


def dwell_to_dict(dwell: DwellPoint) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        'id': str(dwell.id),
        'latitude': dwell.location[0],
        'longitude': dwell.location[1],
        'start_time': encode_datetime(dwell.start_time),
        'end_time': encode_datetime(dwell.end_time),
    }
    if dwell.place_name is not None:
        data['place_name'] = dwell.place_name
    if dwell.manual_place_name is not None:
        data['manual_place_name'] = dwell.manual_place_name
    if dwell.suggested_places:
        data['suggested_places'] = list(dwell.suggested_places)
    return data


def dwell_from_dict(data: Dict[str, Any]) -> DwellPoint:
    return DwellPoint(
        id=uuid.UUID(data['id']),
        location=Coordinate(float(data['latitude']), float(data['longitude'])),
        start_time=decode_datetime(data['start_time']),
        end_time=decode_datetime(data['end_time']),
        place_name=data.get('place_name'),
        manual_place_name=data.get('manual_place_name'),
        suggested_places=tuple(data.get('suggested_places') or ()),
    )


def session_to_dict(session: NightSession) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        'id': str(session.id),
        'start_time': encode_datetime(session.start_time),
        'route': [fix_to_dict(fix) for fix in session.route],
        'dwells': [dwell_to_dict(dwell) for dwell in session.dwells],
        'drinks': session.drinks.as_dict(),
    }
    if session.end_time is not None:
        data['end_time'] = encode_datetime(session.end_time)
    if session.rating is not None:
        data['rating'] = session.rating
    return data


def session_from_dict(data: Dict[str, Any]) -> NightSession:
    end_time = data.get('end_time')
    drinks = data.get('drinks') or {}
    known = set(DrinkCounts.categories())
    return NightSession(
        id=uuid.UUID(data['id']),
        start_time=decode_datetime(data['start_time']),
        end_time=decode_datetime(end_time) if end_time else None,
        route=tuple(fix_from_dict(item) for item in data.get('route', [])),
        dwells=tuple(dwell_from_dict(item) for item in data.get('dwells', [])),
        drinks=DrinkCounts(**{k: int(v) for k, v in drinks.items() if k in known}),
        rating=data.get('rating'),
    )
