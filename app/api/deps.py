from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import List

from ..core.database import get_db, get_redis
from ..core.security import (
    security, verify_token, identity_from_payload, AuthenticationError,
    AuthorizationError, Identity, UserRole, TokenPayload
)
from ..services.events import EventPublisher
from ..services.availability_service import AvailabilityService
from ..services.appointment_service import AppointmentService
from ..services.statistics_service import StatisticsService
from ..services.reminder_service import ReminderService

async def get_current_user_token(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    token = credentials.credentials

    # Verify token
    token_payload = verify_token(token)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    # Refresh tokens never authorize a request; tokens without a type are access tokens
    if token_payload.token_type == "refresh":
        raise AuthenticationError("Invalid token type")

    return token_payload

async def get_current_identity(
    token_payload: TokenPayload = Depends(get_current_user_token)
) -> Identity:
    """Caller identity as asserted by the gateway-issued token."""
    identity = identity_from_payload(token_payload)
    if identity is None:
        raise AuthenticationError("Invalid token payload")
    return identity

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        identity: Identity = Depends(get_current_identity)
    ) -> Identity:
        if not identity.has_role(*allowed_roles):
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return identity

    return role_checker

# Service dependencies
def get_event_publisher(redis_client = Depends(get_redis)) -> EventPublisher:
    return EventPublisher(redis_client)

def get_appointment_service(
    db: Session = Depends(get_db),
    events: EventPublisher = Depends(get_event_publisher)
) -> AppointmentService:
    return AppointmentService(db, events)

def get_availability_service(
    db: Session = Depends(get_db),
    events: EventPublisher = Depends(get_event_publisher)
) -> AvailabilityService:
    return AvailabilityService(db, events)

def get_statistics_service(db: Session = Depends(get_db)) -> StatisticsService:
    return StatisticsService(db)

def get_reminder_service(
    db: Session = Depends(get_db),
    events: EventPublisher = Depends(get_event_publisher)
) -> ReminderService:
    return ReminderService(db, events)
