from sqlalchemy import Column, Integer, DateTime, Boolean, Time, Enum as SQLEnum, UniqueConstraint, CheckConstraint
from sqlalchemy.sql import func

from ..core.database import Base
from ..services.scheduling import CLOSED, DayOfWeek, DayRule, OpenWindow

class DoctorAvailability(Base):
    __tablename__ = "doctor_availability"
    __table_args__ = (
        UniqueConstraint("doctor_id", "day_of_week", name="uq_doctor_availability_day"),
        # A closed day carries no times; an open day needs both
        CheckConstraint(
            "NOT is_available OR (start_time IS NOT NULL AND end_time IS NOT NULL)",
            name="ck_doctor_availability_open_window",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, nullable=False, index=True)
    day_of_week = Column(SQLEnum(DayOfWeek), nullable=False)

    is_available = Column(Boolean, nullable=False, default=True)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def rule(self) -> DayRule:
        if self.is_available and self.start_time is not None and self.end_time is not None:
            return OpenWindow(self.start_time, self.end_time)
        return CLOSED

    def set_rule(self, rule: DayRule) -> None:
        if isinstance(rule, OpenWindow):
            self.is_available = True
            self.start_time = rule.start
            self.end_time = rule.end
        else:
            self.is_available = False
            self.start_time = None
            self.end_time = None

    def __repr__(self):
        window = f"{self.start_time}-{self.end_time}" if self.is_available else "closed"
        return f"<DoctorAvailability(doctor_id={self.doctor_id}, day={self.day_of_week}, {window})>"
