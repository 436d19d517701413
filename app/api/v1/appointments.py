from fastapi import APIRouter, Depends, Query, status
from datetime import date, datetime
from typing import List, Optional

from ...api.deps import (
    require_role, get_current_identity, get_appointment_service,
    get_statistics_service, get_reminder_service
)
from ...core.security import AuthorizationError, Identity, UserRole
from ...models.appointment import Appointment
from ...services.appointment_service import AppointmentService, total_pages
from ...services.statistics_service import StatisticsService
from ...services.reminder_service import ReminderService
from ...schemas.appointment import (
    AppointmentCreate, AppointmentResponse, AppointmentPage, CancelRequest,
    RescheduleRequest, StatusUpdateRequest, StatisticsResponse, ReminderDispatchResponse
)

router = APIRouter(prefix="/appointments", tags=["Appointments"])

STAFF_ROLES = [UserRole.ADMIN, UserRole.DOCTOR, UserRole.NURSE]

def _ensure_can_access(identity: Identity, appointment: Appointment) -> None:
    """Patients only ever see and change their own appointments."""
    if identity.has_role(*STAFF_ROLES):
        return
    if appointment.patient_id != identity.user_id:
        raise AuthorizationError("You can only access your own appointments")

def _page(items: List[Appointment], total: int, page: int, size: int) -> AppointmentPage:
    pages = total_pages(total, size)
    return AppointmentPage(
        items=[AppointmentResponse.model_validate(item) for item in items],
        page=page,
        size=size,
        total_elements=total,
        total_pages=pages,
        has_next=page + 1 < pages,
        has_previous=page > 0
    )

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    request: AppointmentCreate,
    identity: Identity = Depends(require_role([UserRole.PATIENT, UserRole.ADMIN])),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Book a new appointment for the calling patient."""
    patient_id = identity.user_id
    if identity.is_admin and request.patient_id is not None:
        patient_id = request.patient_id

    appointment = service.create_appointment(request, patient_id=patient_id, requested_by=identity.user_id)
    return AppointmentResponse.model_validate(appointment)

@router.get("", response_model=AppointmentPage)
def list_appointments(
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    doctor_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    status: Optional[str] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    _: Identity = Depends(require_role(STAFF_ROLES)),
    service: AppointmentService = Depends(get_appointment_service)
):
    """List appointments with optional filters (staff only)."""
    items, total = service.list_appointments(
        page=page, size=size, doctor_id=doctor_id, patient_id=patient_id,
        status=status, from_date=from_date, to_date=to_date
    )
    return _page(items, total, page, size)

@router.get("/patient", response_model=AppointmentPage)
def get_patient_appointments(
    page: int = Query(0, ge=0),
    size: int = Query(10, ge=1, le=100),
    identity: Identity = Depends(require_role([UserRole.PATIENT])),
    service: AppointmentService = Depends(get_appointment_service)
):
    """The calling patient's appointments, newest first."""
    items, total = service.get_patient_appointments(identity.user_id, page=page, size=size)
    return _page(items, total, page, size)

@router.get("/doctor", response_model=List[AppointmentResponse])
def get_doctor_appointments(
    date: Optional[date] = None,
    identity: Identity = Depends(require_role([UserRole.DOCTOR])),
    service: AppointmentService = Depends(get_appointment_service)
):
    """The calling doctor's appointments, optionally for a single day."""
    appointments = service.get_doctor_appointments(identity.user_id, date)
    return [AppointmentResponse.model_validate(a) for a in appointments]

@router.get("/statistics", response_model=StatisticsResponse)
def get_statistics(
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    doctor_id: Optional[int] = None,
    _: Identity = Depends(require_role([UserRole.ADMIN, UserRole.DOCTOR])),
    service: StatisticsService = Depends(get_statistics_service)
):
    """Appointment counts by status over a date range."""
    return StatisticsResponse(**service.get_statistics(from_date, to_date, doctor_id))

@router.get("/reminders", response_model=List[AppointmentResponse])
def list_upcoming_reminders(
    hours: Optional[int] = Query(None, ge=1, le=168),
    _: Identity = Depends(require_role([UserRole.ADMIN])),
    service: ReminderService = Depends(get_reminder_service)
):
    """Blocking appointments starting within the lookahead window."""
    appointments = service.find_upcoming(datetime.now(), hours)
    return [AppointmentResponse.model_validate(a) for a in appointments]

@router.post("/reminders/dispatch", response_model=ReminderDispatchResponse)
def dispatch_reminders(
    hours: Optional[int] = Query(None, ge=1, le=168),
    _: Identity = Depends(require_role([UserRole.ADMIN])),
    service: ReminderService = Depends(get_reminder_service)
):
    """Publish one reminder event per upcoming appointment."""
    appointments = service.publish_reminders(datetime.now(), hours)
    return ReminderDispatchResponse(
        published=len(appointments),
        appointment_ids=[a.id for a in appointments]
    )

@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    identity: Identity = Depends(get_current_identity),
    service: AppointmentService = Depends(get_appointment_service)
):
    appointment = service.get_appointment(appointment_id)
    _ensure_can_access(identity, appointment)
    return AppointmentResponse.model_validate(appointment)

@router.put("/{appointment_id}/status", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    request: StatusUpdateRequest,
    identity: Identity = Depends(require_role([UserRole.DOCTOR, UserRole.ADMIN])),
    service: AppointmentService = Depends(get_appointment_service)
):
    appointment = service.update_appointment_status(
        appointment_id, request.status, request.notes, updated_by=identity.user_id
    )
    return AppointmentResponse.model_validate(appointment)

@router.put("/{appointment_id}/reschedule", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    request: RescheduleRequest,
    identity: Identity = Depends(require_role([UserRole.PATIENT, UserRole.DOCTOR, UserRole.ADMIN])),
    service: AppointmentService = Depends(get_appointment_service)
):
    _ensure_can_access(identity, service.get_appointment(appointment_id))
    appointment = service.reschedule_appointment(
        appointment_id,
        request.new_appointment_date,
        request.new_appointment_time,
        request.reschedule_reason,
        rescheduled_by=identity.user_id
    )
    return AppointmentResponse.model_validate(appointment)

@router.delete("/{appointment_id}", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    request: Optional[CancelRequest] = None,
    identity: Identity = Depends(require_role([UserRole.PATIENT, UserRole.DOCTOR, UserRole.ADMIN])),
    service: AppointmentService = Depends(get_appointment_service)
):
    _ensure_can_access(identity, service.get_appointment(appointment_id))
    reason = request.cancellation_reason if request else None
    appointment = service.cancel_appointment(appointment_id, reason, cancelled_by=identity.user_id)
    return AppointmentResponse.model_validate(appointment)
