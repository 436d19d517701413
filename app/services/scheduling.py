"""
Conflict and slot engine.

Pure functions over value types: no session, no clock. The availability and
booking workflows load rules and appointments, turn them into the types below,
and ask this module for verdicts.

Intervals are half-open, ``[start, end)``, so back-to-back bookings touch
without overlapping.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Iterable, List, Optional, Union

# Candidate slots start on fixed 30-minute boundaries from the window start,
# whatever duration is requested.
SLOT_STEP_MINUTES = 30


class DayOfWeek(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def from_date(cls, day: date) -> "DayOfWeek":
        return list(cls)[day.weekday()]

    @property
    def ordinal(self) -> int:
        return list(DayOfWeek).index(self)


@dataclass(frozen=True)
class OpenWindow:
    """Bookable time of day, ``[start, end)``."""
    start: time
    end: time

    def contains(self, start: time, end: time) -> bool:
        return start < end and self.start <= start and end <= self.end


@dataclass(frozen=True)
class Closed:
    """No bookable time on this weekday."""


CLOSED = Closed()

DayRule = Union[OpenWindow, Closed]


@dataclass(frozen=True)
class Interval:
    start: datetime
    end: datetime

    @classmethod
    def starting_at(cls, day: date, start: time, duration_minutes: int) -> "Interval":
        begin = datetime.combine(day, start)
        return cls(begin, begin + timedelta(minutes=duration_minutes))

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end

    @property
    def crosses_midnight(self) -> bool:
        return self.end.date() != self.start.date()


def window_contains(rule: Optional[DayRule], interval: Interval) -> bool:
    """Containment test: the whole interval must sit inside the open window.

    A missing rule and a closed rule contain nothing.
    """
    if not isinstance(rule, OpenWindow) or interval.crosses_midnight:
        return False
    return rule.contains(interval.start.time(), interval.end.time())


def has_conflict(candidate: Interval, booked: Iterable[Interval]) -> bool:
    return any(candidate.overlaps(existing) for existing in booked)


def enumerate_slots(
    rule: Optional[DayRule],
    day: date,
    duration_minutes: int,
    booked: Iterable[Interval],
    step_minutes: int = SLOT_STEP_MINUTES,
) -> List[time]:
    """Start times on ``day`` where a ``duration_minutes`` visit fits and is free."""
    if not isinstance(rule, OpenWindow):
        return []

    booked = list(booked)
    window_end = datetime.combine(day, rule.end)
    step = timedelta(minutes=step_minutes)

    slots: List[time] = []
    current = datetime.combine(day, rule.start)
    while current < window_end:
        candidate = Interval(current, current + timedelta(minutes=duration_minutes))
        if candidate.end <= window_end and not has_conflict(candidate, booked):
            slots.append(current.time())
        current += step

    return slots
