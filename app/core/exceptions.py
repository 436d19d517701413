"""
Scheduling error taxonomy.

Every failure raised by the availability and booking workflows is one of the
classes below. Each carries the HTTP status the API layer answers with, so the
services stay free of FastAPI imports.
"""
from fastapi import status


class SchedulingError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    error: str = "Scheduling Error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(SchedulingError):
    """Doctor availability, appointment or rule is absent."""
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"


class NotAvailable(SchedulingError):
    """Requested interval lies outside the doctor's open window."""
    status_code = status.HTTP_409_CONFLICT
    error = "Not Available"


class SlotConflict(SchedulingError):
    """Requested interval overlaps an existing blocking appointment."""
    status_code = status.HTTP_409_CONFLICT
    error = "Slot Conflict"


class StateError(SchedulingError):
    """Illegal appointment status transition."""
    status_code = status.HTTP_409_CONFLICT
    error = "Invalid State"


class ValidationError(SchedulingError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error = "Validation Error"
