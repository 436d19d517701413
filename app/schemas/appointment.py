from datetime import date, datetime, time
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..core.config import settings
from ..models.appointment import AppointmentStatus, AppointmentType


class AppointmentCreate(BaseModel):
    doctor_id: int
    # Only honoured for admins booking on a patient's behalf
    patient_id: Optional[int] = None
    appointment_date: date
    appointment_time: time
    duration_minutes: int = settings.DEFAULT_DURATION_MINUTES
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    reason_for_visit: Optional[str] = None
    notes: Optional[str] = None


class RescheduleRequest(BaseModel):
    new_appointment_date: date
    new_appointment_time: time
    reschedule_reason: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str
    notes: Optional[str] = None


class CancelRequest(BaseModel):
    cancellation_reason: Optional[str] = None


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    appointment_date: date
    appointment_time: time
    duration_minutes: int
    end_datetime: datetime
    status: AppointmentStatus
    appointment_type: AppointmentType
    reason_for_visit: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    class Config:
        from_attributes = True


class AppointmentPage(BaseModel):
    items: List[AppointmentResponse]
    page: int
    size: int
    total_elements: int
    total_pages: int
    has_next: bool
    has_previous: bool


class StatisticsResponse(BaseModel):
    total_appointments: int
    counts: Dict[AppointmentStatus, int]
    scheduled_count: int
    confirmed_count: int
    completed_count: int
    cancelled_count: int
    no_show_count: int
    rescheduled_count: int
    from_date: date
    to_date: date
    doctor_id: Optional[int] = None


class ReminderDispatchResponse(BaseModel):
    published: int
    appointment_ids: List[int]
