from sqlalchemy import func
from sqlalchemy.orm import Session
from datetime import date, timedelta
from typing import Any, Dict, Optional

from ..core.config import settings
from ..core.exceptions import ValidationError
from ..models.appointment import Appointment, AppointmentStatus


class StatisticsService:
    """Read-only rollups of appointment counts by status."""

    def __init__(self, db: Session):
        self.db = db

    def get_statistics(
        self,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        doctor_id: Optional[int] = None
    ) -> Dict[str, Any]:
        end = to_date or date.today()
        start = from_date or end - timedelta(days=settings.STATISTICS_DEFAULT_DAYS)
        if start > end:
            raise ValidationError("from_date must not be after to_date")

        query = self.db.query(Appointment.status, func.count(Appointment.id)).filter(
            Appointment.appointment_date >= start,
            Appointment.appointment_date <= end
        )
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)

        counts = {status: 0 for status in AppointmentStatus}
        for status, count in query.group_by(Appointment.status).all():
            counts[status] = count

        return {
            "total_appointments": sum(counts.values()),
            "counts": counts,
            "scheduled_count": counts[AppointmentStatus.SCHEDULED],
            "confirmed_count": counts[AppointmentStatus.CONFIRMED],
            "completed_count": counts[AppointmentStatus.COMPLETED],
            "cancelled_count": counts[AppointmentStatus.CANCELLED],
            "no_show_count": counts[AppointmentStatus.NO_SHOW],
            "rescheduled_count": counts[AppointmentStatus.RESCHEDULED],
            "from_date": start,
            "to_date": end,
            "doctor_id": doctor_id,
        }
