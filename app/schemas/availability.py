from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, field_validator

from ..services.scheduling import DayOfWeek


class AvailabilityEntry(BaseModel):
    day_of_week: DayOfWeek
    is_available: bool = True
    start_time: Optional[time] = None
    end_time: Optional[time] = None

    @field_validator("day_of_week", mode="before")
    @classmethod
    def normalize_day(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value


class AvailabilityRequest(AvailabilityEntry):
    # Admins may set availability on behalf of a doctor
    doctor_id: Optional[int] = None


class WeeklyScheduleRequest(BaseModel):
    doctor_id: Optional[int] = None
    weekly_schedule: List[AvailabilityEntry]


class AvailabilityResponse(BaseModel):
    id: int
    doctor_id: int
    day_of_week: DayOfWeek
    is_available: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SlotListResponse(BaseModel):
    doctor_id: int
    date: date
    duration_minutes: int
    slots: List[time]
