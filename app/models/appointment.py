from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Date, Time, Text, Index, Enum as SQLEnum
from sqlalchemy.sql import func
import enum

from ..core.database import Base
from ..services.scheduling import Interval

class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"

    @property
    def is_blocking(self) -> bool:
        """Whether an appointment in this status still occupies its slot."""
        return self in BLOCKING_STATUSES

    @classmethod
    def parse(cls, raw: str) -> "AppointmentStatus":
        """Accept names or values, any case: "NO_SHOW", "no show", "No-Show"."""
        normalized = raw.strip().lower().replace("-", "_").replace(" ", "_")
        return cls(normalized)

class AppointmentType(str, enum.Enum):
    CONSULTATION = "consultation"
    FOLLOW_UP = "follow_up"
    EMERGENCY = "emergency"
    CHECK_UP = "check_up"
    PROCEDURE = "procedure"
    SURGERY = "surgery"
    VACCINATION = "vaccination"
    THERAPY = "therapy"

BLOCKING_STATUSES = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.RESCHEDULED,
})

# Transitions the engine drives itself; everything else is terminal
ALLOWED_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    }),
}

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_doctor_date", "doctor_id", "appointment_date"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Participants are owned by the identity service
    patient_id = Column(Integer, nullable=False, index=True)
    doctor_id = Column(Integer, nullable=False)

    # Appointment details
    appointment_date = Column(Date, nullable=False)
    appointment_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)
    status = Column(SQLEnum(AppointmentStatus), nullable=False, default=AppointmentStatus.SCHEDULED)
    appointment_type = Column(SQLEnum(AppointmentType), nullable=False, default=AppointmentType.CONSULTATION)
    reason_for_visit = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    # Tracking
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    cancelled_by = Column(Integer, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(String(500), nullable=True)

    @property
    def interval(self) -> Interval:
        return Interval.starting_at(self.appointment_date, self.appointment_time, self.duration_minutes)

    @property
    def start_datetime(self) -> datetime:
        return self.interval.start

    @property
    def end_datetime(self) -> datetime:
        return self.interval.end

    def can_transition_to(self, target: AppointmentStatus) -> bool:
        return target in ALLOWED_TRANSITIONS.get(self.status, frozenset())

    def can_be_cancelled(self) -> bool:
        return self.can_transition_to(AppointmentStatus.CANCELLED)

    def can_be_rescheduled(self) -> bool:
        return self.can_transition_to(AppointmentStatus.RESCHEDULED)

    def append_note(self, text: str) -> str:
        """Append a line to the notes and return the new notes."""
        self.notes = f"{self.notes}\n{text}" if self.notes else text
        return self.notes

    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, doctor_id={self.doctor_id}, date='{self.appointment_date}', time='{self.appointment_time}')>"
