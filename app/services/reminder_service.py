from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from typing import List, Optional
import logging

from ..core.config import settings
from ..core.exceptions import ValidationError
from ..models.appointment import Appointment, BLOCKING_STATUSES
from .events import EventPublisher

logger = logging.getLogger(__name__)


class ReminderService:
    """Answers the external reminder sweep; this service schedules nothing itself."""

    def __init__(self, db: Session, events: Optional[EventPublisher] = None):
        self.db = db
        self.events = events

    def find_upcoming(self, now: datetime, lookahead_hours: Optional[int] = None) -> List[Appointment]:
        """Blocking appointments starting in ``[now, now + lookahead)``."""
        hours = settings.REMINDER_LOOKAHEAD_HOURS if lookahead_hours is None else lookahead_hours
        if hours <= 0:
            raise ValidationError("Lookahead must be a positive number of hours")

        window_end = now + timedelta(hours=hours)
        candidates = self.db.query(Appointment).filter(
            Appointment.appointment_date >= now.date(),
            Appointment.appointment_date <= window_end.date(),
            Appointment.status.in_(BLOCKING_STATUSES)
        ).all()

        upcoming = [a for a in candidates if now <= a.start_datetime < window_end]
        upcoming.sort(key=lambda a: a.start_datetime)
        return upcoming

    def publish_reminders(self, now: datetime, lookahead_hours: Optional[int] = None) -> List[Appointment]:
        appointments = self.find_upcoming(now, lookahead_hours)
        if self.events:
            for appointment in appointments:
                self.events.appointment_reminder(appointment)

        logger.info(f"Reminder sweep found {len(appointments)} upcoming appointments")
        return appointments
