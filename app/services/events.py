import json
import logging
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, Optional

import redis

from ..core.config import settings
from ..models.appointment import Appointment
from ..models.availability import DoctorAvailability

logger = logging.getLogger(__name__)

APPOINTMENT_BOOKED = "appointment.booked"
APPOINTMENT_CANCELLED = "appointment.cancelled"
APPOINTMENT_RESCHEDULED = "appointment.rescheduled"
APPOINTMENT_STATUS_UPDATED = "appointment.status.updated"
APPOINTMENT_REMINDER = "appointment.reminder"
AVAILABILITY_UPDATED = "doctor.availability.updated"


def _encode(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Cannot serialize {type(value).__name__}")


class EventPublisher:
    """Publish-only adapter over Redis pub/sub.

    Publishing is fire-and-forget: callers publish after their transaction has
    committed, and a failure here is logged, never raised.
    """

    def __init__(self, client, enabled: Optional[bool] = None):
        self.client = client
        self.enabled = settings.EVENTS_ENABLED if enabled is None else enabled

    def publish(self, channel: str, payload: Dict[str, Any]) -> bool:
        if not self.enabled:
            return False

        try:
            message = json.dumps(payload, default=_encode)
            self.client.publish(channel, message)
        except (redis.RedisError, TypeError, ValueError):
            logger.exception(f"Failed to publish event to {channel}")
            return False

        logger.debug(f"Published {channel}: {message}")
        return True

    # Appointment events
    def appointment_booked(self, appointment: Appointment) -> bool:
        return self.publish(APPOINTMENT_BOOKED, {
            **_appointment_fields(appointment),
            "durationMinutes": appointment.duration_minutes,
            "type": appointment.appointment_type,
        })

    def appointment_cancelled(self, appointment: Appointment) -> bool:
        return self.publish(APPOINTMENT_CANCELLED, {
            **_appointment_fields(appointment),
            "cancellationReason": appointment.cancellation_reason,
            "cancelledBy": appointment.cancelled_by,
            "cancelledAt": appointment.cancelled_at,
        })

    def appointment_rescheduled(self, appointment: Appointment, reason: Optional[str], rescheduled_by: int) -> bool:
        return self.publish(APPOINTMENT_RESCHEDULED, {
            **_appointment_fields(appointment),
            "newDate": appointment.appointment_date,
            "newTime": appointment.appointment_time,
            "reason": reason,
            "rescheduledBy": rescheduled_by,
        })

    def appointment_status_updated(self, appointment: Appointment, updated_by: int) -> bool:
        return self.publish(APPOINTMENT_STATUS_UPDATED, {
            **_appointment_fields(appointment),
            "status": appointment.status,
            "updatedBy": updated_by,
            "updatedAt": datetime.now(),
        })

    def appointment_reminder(self, appointment: Appointment, reminder_type: str = "24_HOUR") -> bool:
        return self.publish(APPOINTMENT_REMINDER, {
            **_appointment_fields(appointment),
            "reminderType": reminder_type,
        })

    # Availability events
    def availability_updated(self, availability: DoctorAvailability) -> bool:
        return self.publish(AVAILABILITY_UPDATED, {
            "doctorUserId": availability.doctor_id,
            "dayOfWeek": availability.day_of_week,
            "startTime": availability.start_time,
            "endTime": availability.end_time,
            "isAvailable": availability.is_available,
        })


def _appointment_fields(appointment: Appointment) -> Dict[str, Any]:
    return {
        "appointmentId": appointment.id,
        "patientUserId": appointment.patient_id,
        "doctorUserId": appointment.doctor_id,
        "appointmentDate": appointment.appointment_date,
        "appointmentTime": appointment.appointment_time,
    }
