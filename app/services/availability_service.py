from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from datetime import date, time
from typing import Iterable, List, Optional
import logging

from ..core.config import settings
from ..core.exceptions import NotAvailable, NotFound, ValidationError
from ..models.appointment import Appointment, BLOCKING_STATUSES
from ..models.availability import DoctorAvailability
from ..schemas.availability import AvailabilityEntry
from .events import EventPublisher
from .scheduling import (
    CLOSED, DayOfWeek, DayRule, Interval, OpenWindow, enumerate_slots, window_contains
)

logger = logging.getLogger(__name__)


def validate_duration(duration_minutes: int) -> None:
    if not settings.MIN_DURATION_MINUTES <= duration_minutes <= settings.MAX_DURATION_MINUTES:
        raise ValidationError(
            f"Duration must be between {settings.MIN_DURATION_MINUTES} "
            f"and {settings.MAX_DURATION_MINUTES} minutes"
        )


def rule_from_entry(entry: AvailabilityEntry) -> DayRule:
    if not entry.is_available:
        return CLOSED
    if entry.start_time is None or entry.end_time is None:
        raise ValidationError("Start time and end time are required when available is true")
    if entry.start_time >= entry.end_time:
        raise ValidationError("Start time must be before end time")
    return OpenWindow(entry.start_time, entry.end_time)


class AvailabilityService:
    def __init__(self, db: Session, events: Optional[EventPublisher] = None):
        self.db = db
        self.events = events

    # Lookups
    def _get_row(self, doctor_id: int, day_of_week: DayOfWeek) -> Optional[DoctorAvailability]:
        return self.db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == doctor_id,
            DoctorAvailability.day_of_week == day_of_week
        ).first()

    def get_rule(self, doctor_id: int, day_of_week: DayOfWeek) -> Optional[DayRule]:
        """Rule for the weekday, or None when nothing is configured."""
        row = self._get_row(doctor_id, day_of_week)
        return row.rule if row else None

    def is_available_for(self, doctor_id: int, day_of_week: DayOfWeek, start: time, end: time) -> bool:
        rule = self.get_rule(doctor_id, day_of_week)
        return isinstance(rule, OpenWindow) and rule.contains(start, end)

    def is_interval_available(self, doctor_id: int, interval: Interval) -> bool:
        rule = self.get_rule(doctor_id, DayOfWeek.from_date(interval.start.date()))
        return window_contains(rule, interval)

    def get_doctor_availability(self, doctor_id: int) -> List[DoctorAvailability]:
        rows = self.db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == doctor_id
        ).all()
        return sorted(rows, key=lambda row: row.day_of_week.ordinal)

    def get_availability_for_date(self, doctor_id: int, day: date) -> DoctorAvailability:
        day_of_week = DayOfWeek.from_date(day)
        row = self._get_row(doctor_id, day_of_week)
        if row is None:
            raise NotFound(f"No availability configured for doctor {doctor_id} on {day_of_week.name}")
        if not row.is_available:
            raise NotAvailable(f"Doctor is not available on {day_of_week.name}")
        return row

    def available_slots(self, doctor_id: int, day: date, duration_minutes: int) -> List[time]:
        """Bookable start times on ``day``, ascending."""
        validate_duration(duration_minutes)

        rule = self.get_rule(doctor_id, DayOfWeek.from_date(day))
        if not isinstance(rule, OpenWindow):
            return []

        booked = [
            appointment.interval
            for appointment in self.db.query(Appointment).filter(
                Appointment.doctor_id == doctor_id,
                Appointment.appointment_date == day,
                Appointment.status.in_(BLOCKING_STATUSES)
            ).all()
        ]
        return enumerate_slots(rule, day, duration_minutes, booked)

    # Mutations
    def _upsert(self, doctor_id: int, day_of_week: DayOfWeek, rule: DayRule) -> DoctorAvailability:
        row = self._get_row(doctor_id, day_of_week)
        if row is None:
            row = DoctorAvailability(doctor_id=doctor_id, day_of_week=day_of_week)
            self.db.add(row)
        row.set_rule(rule)
        return row

    def set_availability(self, doctor_id: int, entry: AvailabilityEntry) -> DoctorAvailability:
        """Create or replace the rule for a single weekday."""
        rule = rule_from_entry(entry)

        try:
            row = self._upsert(doctor_id, entry.day_of_week, rule)
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError:
            self.db.rollback()
            raise

        logger.info(f"Availability for doctor {doctor_id} on {entry.day_of_week.name} set to {row.rule}")
        self._publish([row])
        return row

    def set_weekly_schedule(self, doctor_id: int, entries: Iterable[AvailabilityEntry]) -> List[DoctorAvailability]:
        """Replace the doctor's whole week; weekdays left out are removed."""
        rules = {}
        for entry in entries:
            if entry.day_of_week in rules:
                raise ValidationError(f"Duplicate entry for {entry.day_of_week.name}")
            rules[entry.day_of_week] = rule_from_entry(entry)

        if not rules:
            raise ValidationError("Weekly schedule must contain at least one day")

        try:
            self.db.query(DoctorAvailability).filter(
                DoctorAvailability.doctor_id == doctor_id,
                DoctorAvailability.day_of_week.notin_(list(rules))
            ).delete(synchronize_session=False)

            rows = [self._upsert(doctor_id, day, rule) for day, rule in rules.items()]
            self.db.commit()
            for row in rows:
                self.db.refresh(row)
        except SQLAlchemyError:
            self.db.rollback()
            raise

        logger.info(f"Weekly schedule for doctor {doctor_id} replaced ({len(rows)} days)")
        rows.sort(key=lambda row: row.day_of_week.ordinal)
        self._publish(rows)
        return rows

    def _publish(self, rows: List[DoctorAvailability]) -> None:
        if self.events is None:
            return
        for row in rows:
            self.events.availability_updated(row)
