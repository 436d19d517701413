from fastapi import APIRouter, Depends, Query
from datetime import date
from typing import List, Optional

from ...api.deps import require_role, get_current_identity, get_availability_service
from ...core.security import AuthorizationError, Identity, UserRole
from ...services.availability_service import AvailabilityService
from ...schemas.availability import (
    AvailabilityRequest, AvailabilityResponse, SlotListResponse, WeeklyScheduleRequest
)

router = APIRouter(prefix="/availability", tags=["Availability"])

def _target_doctor(identity: Identity, requested: Optional[int]) -> int:
    """Doctors manage their own week; admins may name any doctor."""
    if requested is None or requested == identity.user_id:
        return identity.user_id
    if not identity.is_admin:
        raise AuthorizationError("Only admins can manage another doctor's availability")
    return requested

@router.post("", response_model=AvailabilityResponse)
def set_availability(
    request: AvailabilityRequest,
    identity: Identity = Depends(require_role([UserRole.DOCTOR, UserRole.ADMIN])),
    service: AvailabilityService = Depends(get_availability_service)
):
    """Create or replace the rule for one weekday."""
    doctor_id = _target_doctor(identity, request.doctor_id)
    return AvailabilityResponse.model_validate(service.set_availability(doctor_id, request))

@router.put("/weekly", response_model=List[AvailabilityResponse])
def set_weekly_schedule(
    request: WeeklyScheduleRequest,
    identity: Identity = Depends(require_role([UserRole.DOCTOR, UserRole.ADMIN])),
    service: AvailabilityService = Depends(get_availability_service)
):
    """Replace the whole week; days left out become unavailable."""
    doctor_id = _target_doctor(identity, request.doctor_id)
    rows = service.set_weekly_schedule(doctor_id, request.weekly_schedule)
    return [AvailabilityResponse.model_validate(row) for row in rows]

@router.get("/slots", response_model=SlotListResponse)
def get_available_slots(
    doctor_id: int,
    date: date,
    duration: int = Query(30),
    _: Identity = Depends(require_role([UserRole.PATIENT, UserRole.DOCTOR, UserRole.ADMIN])),
    service: AvailabilityService = Depends(get_availability_service)
):
    slots = service.available_slots(doctor_id, date, duration)
    return SlotListResponse(doctor_id=doctor_id, date=date, duration_minutes=duration, slots=slots)

@router.get("/{doctor_id}", response_model=List[AvailabilityResponse])
def get_doctor_availability(
    doctor_id: int,
    _: Identity = Depends(get_current_identity),
    service: AvailabilityService = Depends(get_availability_service)
):
    return [AvailabilityResponse.model_validate(row) for row in service.get_doctor_availability(doctor_id)]

@router.get("/{doctor_id}/date/{day}", response_model=AvailabilityResponse)
def get_availability_for_date(
    doctor_id: int,
    day: date,
    _: Identity = Depends(get_current_identity),
    service: AvailabilityService = Depends(get_availability_service)
):
    return AvailabilityResponse.model_validate(service.get_availability_for_date(doctor_id, day))
