"""Shared fixtures for NightTrail tests."""

from datetime import datetime, timedelta, timezone

import pytest

from nighttrail.lib.location_utils import METERS_PER_DEGREE, Coordinate
from nighttrail.lib.models import DrinkCounts, DwellPoint, Fix, NightSession

BASE_LAT = 51.5074
BASE_LON = -0.1278


def offset_north(meters: float, lat: float = BASE_LAT, lon: float = BASE_LON) -> Coordinate:
    """Coordinate `meters` north of (lat, lon)."""
    return Coordinate(lat + meters / METERS_PER_DEGREE, lon)


@pytest.fixture
def t0() -> datetime:
    """A fixed, timezone-aware reference time (Tuesday 21:00 UTC)."""
    return datetime(2024, 3, 5, 21, 0, 0, 123456, tzinfo=timezone.utc)


@pytest.fixture
def make_fix(t0):
    """Factory for fixes `minutes` after t0 and `meters` north of the base point."""

    def _make(minutes: float, meters: float = 0.0, accuracy=None) -> Fix:
        coordinate = offset_north(meters)
        return Fix(coordinate.latitude, coordinate.longitude, t0 + timedelta(minutes=minutes), accuracy)

    return _make


@pytest.fixture
def make_dwell(t0):
    """Factory for dwells at (lat, lon) starting `start` minutes after t0."""

    def _make(lat=BASE_LAT, lon=BASE_LON, start=0.0, minutes=30.0, name=None) -> DwellPoint:
        start_time = t0 + timedelta(minutes=start)
        return DwellPoint(
            location=Coordinate(lat, lon),
            start_time=start_time,
            end_time=start_time + timedelta(minutes=minutes),
            place_name=name,
        )

    return _make


@pytest.fixture
def make_session():
    """Factory for ended sessions."""

    def _make(start: datetime, hours: float = 3.0, route=(), dwells=(), drinks=None, rating=None) -> NightSession:
        return NightSession(
            start_time=start,
            end_time=start + timedelta(hours=hours),
            route=tuple(route),
            dwells=tuple(dwells),
            drinks=drinks or DrinkCounts(),
            rating=rating,
        )

    return _make
