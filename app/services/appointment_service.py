from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from datetime import date, datetime, time
from typing import List, Optional, Tuple
import logging
import math

from ..core.config import settings
from ..core.exceptions import NotAvailable, NotFound, SlotConflict, StateError, ValidationError
from ..core.locks import booking_locks
from ..models.appointment import Appointment, AppointmentStatus, BLOCKING_STATUSES
from ..schemas.appointment import AppointmentCreate
from .availability_service import AvailabilityService, validate_duration
from .events import EventPublisher
from .scheduling import Interval, has_conflict

logger = logging.getLogger(__name__)

DEFAULT_CANCELLATION_REASON = "No reason provided"


def _check_length(value: Optional[str], limit: int, field: str) -> None:
    if value is not None and len(value) > limit:
        raise ValidationError(f"{field} must not exceed {limit} characters")


def _check_future(day: date) -> None:
    if day <= date.today():
        raise ValidationError("Appointment date must be in the future")


class AppointmentService:
    """Booking workflow: create, cancel, reschedule and status updates.

    Every mutation holds the per-doctor-per-date key twice: in process through
    ``booking_locks`` and, on PostgreSQL, through a transaction-scoped advisory
    lock on the same key, which also covers other worker processes. The
    doctor's appointments for that date are then re-read with ``FOR UPDATE``
    before deciding. Events go out only after the commit.
    """

    def __init__(self, db: Session, events: Optional[EventPublisher] = None):
        self.db = db
        self.events = events
        self.availability = AvailabilityService(db)

    # Lookups
    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).first()
        if not appointment:
            raise NotFound(f"Appointment not found with id: {appointment_id}")
        return appointment

    def blocking_appointments(
        self,
        doctor_id: int,
        day: date,
        exclude_id: Optional[int] = None,
        for_update: bool = False
    ) -> List[Appointment]:
        query = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date == day,
            Appointment.status.in_(BLOCKING_STATUSES)
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        if for_update:
            query = query.with_for_update()
        return query.order_by(Appointment.appointment_time.asc()).all()

    def has_conflict(
        self,
        doctor_id: int,
        day: date,
        start: time,
        end: time,
        exclude_id: Optional[int] = None
    ) -> bool:
        """Whether ``[start, end)`` on ``day`` overlaps a blocking appointment."""
        candidate = Interval(datetime.combine(day, start), datetime.combine(day, end))
        return self._conflicts(doctor_id, candidate, exclude_id)

    def _conflicts(self, doctor_id: int, candidate: Interval, exclude_id: Optional[int] = None,
                   for_update: bool = False) -> bool:
        existing = self.blocking_appointments(
            doctor_id, candidate.start.date(), exclude_id=exclude_id, for_update=for_update
        )
        return has_conflict(candidate, (appointment.interval for appointment in existing))

    def _check_slot(self, doctor_id: int, candidate: Interval, exclude_id: Optional[int] = None) -> None:
        if not self.availability.is_interval_available(doctor_id, candidate):
            raise NotAvailable("Doctor is not available at the requested time")
        if self._conflicts(doctor_id, candidate, exclude_id=exclude_id, for_update=True):
            raise SlotConflict("Time slot conflicts with existing appointment")

    # Mutations
    def create_appointment(self, request: AppointmentCreate, patient_id: int, requested_by: int) -> Appointment:
        validate_duration(request.duration_minutes)
        _check_future(request.appointment_date)
        _check_length(request.reason_for_visit, settings.MAX_REASON_LENGTH, "Reason for visit")
        _check_length(request.notes, settings.MAX_NOTES_LENGTH, "Notes")

        candidate = Interval.starting_at(
            request.appointment_date, request.appointment_time, request.duration_minutes
        )

        with booking_locks.hold((request.doctor_id, request.appointment_date)):
            try:
                self._lock_days((request.doctor_id, request.appointment_date))
                self._check_slot(request.doctor_id, candidate)

                appointment = Appointment(
                    patient_id=patient_id,
                    doctor_id=request.doctor_id,
                    appointment_date=request.appointment_date,
                    appointment_time=request.appointment_time,
                    duration_minutes=request.duration_minutes,
                    status=AppointmentStatus.SCHEDULED,
                    appointment_type=request.appointment_type,
                    reason_for_visit=request.reason_for_visit,
                    notes=request.notes,
                    created_by=requested_by
                )
                self.db.add(appointment)
                self.db.commit()
                self.db.refresh(appointment)
            except (NotAvailable, SlotConflict) as exc:
                self.db.rollback()
                logger.warning(
                    f"Booking rejected for doctor {request.doctor_id} at "
                    f"{candidate.start:%Y-%m-%d %H:%M}: {exc.detail}"
                )
                raise
            except SQLAlchemyError:
                self.db.rollback()
                raise

        logger.info(f"Appointment {appointment.id} booked with doctor {appointment.doctor_id} by user {requested_by}")
        if self.events:
            self.events.appointment_booked(appointment)
        return appointment

    def cancel_appointment(self, appointment_id: int, reason: Optional[str], cancelled_by: int) -> Appointment:
        reason = reason.strip() if reason and reason.strip() else DEFAULT_CANCELLATION_REASON
        _check_length(reason, settings.MAX_CANCELLATION_REASON_LENGTH, "Cancellation reason")

        appointment = self.get_appointment(appointment_id)

        with booking_locks.hold(self._lock_key(appointment)):
            try:
                self._lock_days(self._lock_key(appointment))
                self.db.refresh(appointment, with_for_update=True)
                if not appointment.can_be_cancelled():
                    raise StateError(
                        f"Appointment cannot be cancelled in current status: {appointment.status.value}"
                    )

                appointment.status = AppointmentStatus.CANCELLED
                appointment.cancellation_reason = reason
                appointment.cancelled_by = cancelled_by
                appointment.cancelled_at = datetime.now()
                self.db.commit()
                self.db.refresh(appointment)
            except (StateError, SQLAlchemyError):
                self.db.rollback()
                raise

        logger.info(f"Appointment {appointment.id} cancelled by user {cancelled_by}")
        if self.events:
            self.events.appointment_cancelled(appointment)
        return appointment

    def reschedule_appointment(
        self,
        appointment_id: int,
        new_date: date,
        new_time: time,
        reason: Optional[str],
        rescheduled_by: int
    ) -> Appointment:
        _check_future(new_date)
        appointment = self.get_appointment(appointment_id)

        # Holds both the old and the new day so neither can change underneath
        with booking_locks.hold(self._lock_key(appointment), (appointment.doctor_id, new_date)):
            try:
                self._lock_days(self._lock_key(appointment), (appointment.doctor_id, new_date))
                self.db.refresh(appointment, with_for_update=True)
                if not appointment.can_be_rescheduled():
                    raise StateError(
                        f"Appointment cannot be rescheduled in current status: {appointment.status.value}"
                    )

                candidate = Interval.starting_at(new_date, new_time, appointment.duration_minutes)
                self._check_slot(appointment.doctor_id, candidate, exclude_id=appointment.id)

                note = f"Rescheduled from {appointment.appointment_date} {appointment.appointment_time:%H:%M}"
                if reason and reason.strip():
                    note = f"{note}: {reason.strip()}"
                appointment.append_note(note)
                _check_length(appointment.notes, settings.MAX_NOTES_LENGTH, "Notes")

                appointment.appointment_date = new_date
                appointment.appointment_time = new_time
                appointment.status = AppointmentStatus.RESCHEDULED
                self.db.commit()
                self.db.refresh(appointment)
            except (NotAvailable, SlotConflict, StateError, ValidationError) as exc:
                self.db.rollback()
                logger.warning(f"Reschedule of appointment {appointment_id} rejected: {exc.detail}")
                raise
            except SQLAlchemyError:
                self.db.rollback()
                raise

        logger.info(f"Appointment {appointment.id} rescheduled to {new_date} {new_time} by user {rescheduled_by}")
        if self.events:
            self.events.appointment_rescheduled(appointment, reason, rescheduled_by)
        return appointment

    def update_appointment_status(
        self,
        appointment_id: int,
        status: str,
        notes: Optional[str],
        updated_by: int
    ) -> Appointment:
        """Set any known status; this path is not gated by the transition table.

        Moving a cancelled, completed or no-show appointment back to a blocking
        status is conflict checked against the doctor's other bookings.
        """
        try:
            new_status = AppointmentStatus.parse(status or "")
        except ValueError:
            raise ValidationError(f"Invalid appointment status: {status}")

        appointment = self.get_appointment(appointment_id)

        with booking_locks.hold(self._lock_key(appointment)):
            try:
                self._lock_days(self._lock_key(appointment))
                self.db.refresh(appointment, with_for_update=True)
                if new_status.is_blocking and not appointment.status.is_blocking:
                    if self._conflicts(appointment.doctor_id, appointment.interval,
                                       exclude_id=appointment.id, for_update=True):
                        raise SlotConflict("Time slot conflicts with existing appointment")
                appointment.status = new_status
                if notes and notes.strip():
                    appointment.append_note(notes.strip())
                    _check_length(appointment.notes, settings.MAX_NOTES_LENGTH, "Notes")
                self.db.commit()
                self.db.refresh(appointment)
            except (SlotConflict, ValidationError) as exc:
                self.db.rollback()
                logger.warning(f"Status update of appointment {appointment_id} rejected: {exc.detail}")
                raise
            except SQLAlchemyError:
                self.db.rollback()
                raise

        logger.info(f"Appointment {appointment.id} status set to {new_status.value} by user {updated_by}")
        if self.events:
            self.events.appointment_status_updated(appointment, updated_by)
        return appointment

    def _lock_days(self, *keys: Tuple[int, date]) -> None:
        """Take ``pg_advisory_xact_lock(doctor_id, day)`` for each key, in sorted order.

        Released by the commit or rollback that ends the transaction. A no-op on
        other dialects.
        """
        if self.db.get_bind().dialect.name != "postgresql":
            return
        for doctor_id, day in sorted(set(keys)):
            self.db.execute(select(func.pg_advisory_xact_lock(doctor_id, day.toordinal())))

    @staticmethod
    def _lock_key(appointment: Appointment) -> Tuple[int, date]:
        return appointment.doctor_id, appointment.appointment_date

    # Listings
    def list_appointments(
        self,
        page: int = 0,
        size: int = 20,
        doctor_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        status: Optional[str] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> Tuple[List[Appointment], int]:
        """One page of appointments plus the total number of matches."""
        if page < 0 or size < 1:
            raise ValidationError("Page must be >= 0 and size >= 1")

        query = self.db.query(Appointment)
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        if status:
            try:
                query = query.filter(Appointment.status == AppointmentStatus.parse(status))
            except ValueError:
                raise ValidationError(f"Invalid appointment status: {status}")
        if from_date is not None:
            query = query.filter(Appointment.appointment_date >= from_date)
        if to_date is not None:
            query = query.filter(Appointment.appointment_date <= to_date)

        total = query.count()
        items = query.order_by(
            Appointment.appointment_date.asc(), Appointment.appointment_time.asc()
        ).offset(page * size).limit(size).all()
        return items, total

    def get_patient_appointments(self, patient_id: int, page: int = 0, size: int = 10) -> Tuple[List[Appointment], int]:
        query = self.db.query(Appointment).filter(Appointment.patient_id == patient_id)
        total = query.count()
        items = query.order_by(
            Appointment.appointment_date.desc(), Appointment.appointment_time.desc()
        ).offset(page * size).limit(size).all()
        return items, total

    def get_doctor_appointments(self, doctor_id: int, day: Optional[date] = None) -> List[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.doctor_id == doctor_id)
        if day is not None:
            query = query.filter(Appointment.appointment_date == day)
        return query.order_by(
            Appointment.appointment_date.asc(), Appointment.appointment_time.asc()
        ).all()


def total_pages(total: int, size: int) -> int:
    return math.ceil(total / size) if size else 0
