"""Per-session metrics and cross-session statistics over the stored history."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .clustering_utils import MOST_VISITED_RADIUS_M, NO_DATA_LABEL, DwellClusterer
from .models import DrinkCounts, DwellPoint, NightSession

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
NOT_AVAILABLE = "N/A"
NO_FAVORITE = "None yet"

MAX_VALID_DWELL_SECONDS = 12 * 3600
MAX_FUTURE_DWELL_END = timedelta(days=1)
RECENT_DAYS = 30


def _now(now: Optional[datetime]) -> datetime:
    """Current time by default; a naive `now` is taken as local time."""

    if now is None:
        return datetime.now(timezone.utc).astimezone()
    if now.tzinfo is None:
        return now.astimezone()
    return now


def _local(value: datetime, now: datetime) -> datetime:
    """Express `value` in the timezone of `now` so calendar fields line up."""

    return value.astimezone(now.tzinfo)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def format_duration(seconds: float) -> str:
    """Return "2h 5m" or "45m" for a number of seconds."""

    seconds = max(seconds, 0)
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_distance(meters: float) -> str:
    if meters >= 1000:
        return f"{meters / 1000:.1f} km"
    return f"{meters:.0f} m"


def format_hour(hour: int) -> str:
    """12-hour clock label such as "9PM" or "12AM"."""

    suffix = "AM" if hour < 12 else "PM"
    display = hour % 12 or 12
    return f"{display}{suffix}"


# ---------------------------------------------------------------------------
# Per-session
# ---------------------------------------------------------------------------

def session_distance(session: NightSession) -> float:
    return session.total_distance


def session_duration(session: NightSession, now: Optional[datetime] = None) -> float:
    return session.duration(now)


@dataclass
class SessionSummary:
    """Figures shown for a single night."""

    duration: float
    distance: float
    venues: int
    drinks: int
    rating: Optional[int]
    average_time_per_venue: float

    @property
    def duration_label(self) -> str:
        return format_duration(self.duration)

    @property
    def distance_label(self) -> str:
        return format_distance(self.distance)

    @property
    def average_time_per_venue_label(self) -> str:
        return format_duration(self.average_time_per_venue) if self.venues else NOT_AVAILABLE


def session_summary(session: NightSession, now: Optional[datetime] = None) -> SessionSummary:
    duration = session.duration(_now(now))
    venues = len(session.dwells)
    return SessionSummary(
        duration=duration,
        distance=session.total_distance,
        venues=venues,
        drinks=session.drinks.total,
        rating=session.rating,
        average_time_per_venue=duration / venues if venues else 0.0,
    )


# ---------------------------------------------------------------------------
# Cross-session
# ---------------------------------------------------------------------------

def total_distance(sessions: Iterable[NightSession]) -> float:
    return sum(s.total_distance for s in sessions)


def total_duration(sessions: Iterable[NightSession], now: Optional[datetime] = None) -> float:
    now = _now(now)
    return sum(s.duration(now) for s in sessions)


def total_stops(sessions: Iterable[NightSession]) -> int:
    return sum(len(s.dwells) for s in sessions)


def weekly_streak(sessions: Iterable[NightSession], now: Optional[datetime] = None) -> int:
    """
    Consecutive calendar days, counting back from today, that contain at least
    one session start. Today without a session gives 0.
    """
    now = _now(now)
    days = {_local(s.start_time, now).date() for s in sessions}

    streak = 0
    day: date = now.date()
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def yearly_drinks(sessions: Iterable[NightSession], now: Optional[datetime] = None) -> DrinkCounts:
    now = _now(now)
    totals = DrinkCounts()
    for session in sessions:
        if _local(session.start_time, now).year == now.year:
            totals = totals + session.drinks
    return totals


def favorite_drink(sessions: Iterable[NightSession], now: Optional[datetime] = None) -> Tuple[str, int]:
    """
    Category with the highest yearly count.

    Returns:
        (category, count); ties go to the earlier category in DrinkCounts
        order, and ("None yet", 0) when nothing was logged this year
    """
    counts = yearly_drinks(sessions, now).as_dict()
    category = max(counts, key=counts.get)
    if counts[category] == 0:
        return NO_FAVORITE, 0
    return category, counts[category]


def _first_max(sessions: Sequence[NightSession], key) -> Optional[NightSession]:
    if not sessions:
        return None
    return max(sessions, key=key)


def longest_night(sessions: Sequence[NightSession], now: Optional[datetime] = None) -> Optional[NightSession]:
    now = _now(now)
    return _first_max(sessions, lambda s: s.duration(now))


def furthest_night(sessions: Sequence[NightSession]) -> Optional[NightSession]:
    return _first_max(sessions, lambda s: s.total_distance)


def most_stops_night(sessions: Sequence[NightSession]) -> Optional[NightSession]:
    return _first_max(sessions, lambda s: len(s.dwells))


def biggest_night(sessions: Sequence[NightSession]) -> Optional[NightSession]:
    """Session with the most drinks, None when no drinks were ever logged."""

    best = _first_max(sessions, lambda s: s.drinks.total)
    if best is None or best.drinks.total == 0:
        return None
    return best


def busiest_weekday(sessions: Iterable[NightSession], now: Optional[datetime] = None) -> Tuple[str, int]:
    """
    Weekday with the most session starts.

    Ties go to the weekday seen first in the input. Empty history gives ("N/A", 0).
    """
    now = _now(now)
    counts = Counter(_local(s.start_time, now).weekday() for s in sessions)
    if not counts:
        return NOT_AVAILABLE, 0
    weekday, count = max(counts.items(), key=lambda item: item[1])
    return WEEKDAY_NAMES[weekday], count


def peak_start_hour(sessions: Iterable[NightSession], now: Optional[datetime] = None) -> Tuple[Optional[int], str]:
    """Most common start hour and its label, (None, "N/A") for empty history."""

    now = _now(now)
    counts = Counter(_local(s.start_time, now).hour for s in sessions)
    if not counts:
        return None, NOT_AVAILABLE
    hour, _ = max(counts.items(), key=lambda item: item[1])
    return hour, format_hour(hour)


def is_valid_dwell(dwell: DwellPoint, now: datetime) -> bool:
    now = _now(now)
    duration = dwell.duration
    return (
        dwell.start_time < dwell.end_time
        and 0 < duration <= MAX_VALID_DWELL_SECONDS
        and dwell.end_time <= now + MAX_FUTURE_DWELL_END
    )


def average_dwell_duration(sessions: Iterable[NightSession], now: Optional[datetime] = None) -> float:
    """Mean duration in seconds of plausible dwells; implausible ones are skipped."""

    now = _now(now)
    durations = [d.duration for s in sessions for d in s.dwells if is_valid_dwell(d, now)]
    if not durations:
        return 0.0
    return sum(durations) / len(durations)


def average_drinks_per_night(sessions: Sequence[NightSession]) -> float:
    return sum(s.drinks.total for s in sessions) / max(len(sessions), 1)


def recent_sessions(sessions: Iterable[NightSession], now: Optional[datetime] = None,
                    days: int = RECENT_DAYS) -> List[NightSession]:
    now = _now(now)
    cutoff = now - timedelta(days=days)
    return [s for s in sessions if s.start_time >= cutoff]


def days_with_sessions_this_week(sessions: Iterable[NightSession], now: Optional[datetime] = None) -> List[int]:
    """Weekday indexes (0 = Monday) of this week's days that had a session."""

    now = _now(now)
    week_start = now.date() - timedelta(days=now.weekday())
    week_end = week_start + timedelta(days=7)
    days = set()
    for session in sessions:
        day = _local(session.start_time, now).date()
        if week_start <= day < week_end:
            days.add(day.weekday())
    return sorted(days)


def all_dwells(sessions: Iterable[NightSession]) -> List[DwellPoint]:
    return [dwell for session in sessions for dwell in session.dwells]


@dataclass
class HistoryStatistics:
    """Every cross-session figure, computed in one pass over the history."""

    session_count: int = 0
    total_distance: float = 0.0
    total_duration: float = 0.0
    total_stops: int = 0
    average_distance: float = 0.0
    average_duration: float = 0.0
    average_stops: float = 0.0
    weekly_streak: int = 0
    yearly_drinks: DrinkCounts = field(default_factory=DrinkCounts)
    favorite_drink: Tuple[str, int] = (NO_FAVORITE, 0)
    longest_night: Optional[NightSession] = None
    furthest_night: Optional[NightSession] = None
    most_stops_night: Optional[NightSession] = None
    biggest_night: Optional[NightSession] = None
    busiest_weekday: Tuple[str, int] = (NOT_AVAILABLE, 0)
    peak_hour: Tuple[Optional[int], str] = (None, NOT_AVAILABLE)
    average_dwell_duration: float = 0.0
    average_drinks_per_night: float = 0.0
    recent_session_count: int = 0
    recent_distance: float = 0.0
    days_this_week: List[int] = field(default_factory=list)
    most_visited_place: Tuple[int, str] = (0, NO_DATA_LABEL)

    def as_dict(self) -> Dict[str, object]:
        """Printable figures (records reduced to their headline value)."""

        return {
            "Nights": self.session_count,
            "Total distance": format_distance(self.total_distance),
            "Total time out": format_duration(self.total_duration),
            "Total stops": self.total_stops,
            "Average distance": format_distance(self.average_distance),
            "Average night": format_duration(self.average_duration),
            "Average stops": f"{self.average_stops:.1f}",
            "Streak (days)": self.weekly_streak,
            "Drinks this year": self.yearly_drinks.total,
            "Favorite drink": f"{self.favorite_drink[0]} ({self.favorite_drink[1]})",
            "Busiest day": f"{self.busiest_weekday[0]} ({self.busiest_weekday[1]})",
            "Peak start hour": self.peak_hour[1],
            "Average stop": format_duration(self.average_dwell_duration),
            "Drinks per night": f"{self.average_drinks_per_night:.1f}",
            "Last 30 days": f"{self.recent_session_count} nights, {format_distance(self.recent_distance)}",
            "Most visited": f"{self.most_visited_place[1]} ({self.most_visited_place[0]})",
        }


def compute_history_statistics(sessions: Sequence[NightSession],
                               now: Optional[datetime] = None) -> HistoryStatistics:
    """Aggregate stats for the supplied sessions."""

    now = _now(now)
    sessions = list(sessions)
    count = len(sessions)
    denominator = max(count, 1)

    distance = total_distance(sessions)
    duration = total_duration(sessions, now)
    stops = total_stops(sessions)
    recent = recent_sessions(sessions, now)

    stats = HistoryStatistics(
        session_count=count,
        total_distance=distance,
        total_duration=duration,
        total_stops=stops,
        average_distance=distance / denominator,
        average_duration=duration / denominator,
        average_stops=stops / denominator,
        weekly_streak=weekly_streak(sessions, now),
        yearly_drinks=yearly_drinks(sessions, now),
        favorite_drink=favorite_drink(sessions, now),
        longest_night=longest_night(sessions, now),
        furthest_night=furthest_night(sessions),
        most_stops_night=most_stops_night(sessions),
        biggest_night=biggest_night(sessions),
        busiest_weekday=busiest_weekday(sessions, now),
        peak_hour=peak_start_hour(sessions, now),
        average_dwell_duration=average_dwell_duration(sessions, now),
        average_drinks_per_night=average_drinks_per_night(sessions),
        recent_session_count=len(recent),
        recent_distance=total_distance(recent),
        days_this_week=days_with_sessions_this_week(sessions, now),
        most_visited_place=DwellClusterer.most_visited_place(all_dwells(sessions), MOST_VISITED_RADIUS_M),
    )
    logger.debug("Computed statistics over %d sessions", count)
    return stats
