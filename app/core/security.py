from typing import FrozenSet, List, Optional
from jose import JWTError, jwt
from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
from pydantic import BaseModel, ValidationError
from enum import Enum

from .config import settings

# Upstream auth prefixes granted authorities, e.g. "ROLE_PATIENT"
ROLE_PREFIX = "role_"

# JWT Security
security = HTTPBearer()

class UserRole(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    NURSE = "nurse"
    PATIENT = "patient"

class TokenPayload(BaseModel):
    sub: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    roles: List[str] = []
    userId: Optional[int] = None
    exp: Optional[int] = None
    token_type: Optional[str] = None  # "access" or "refresh"

class Identity(BaseModel):
    """Caller identity handed over by the gateway; trusted as-is."""
    user_id: int
    roles: FrozenSet[UserRole]

    def has_role(self, *roles: UserRole) -> bool:
        return any(role in self.roles for role in roles)

    @property
    def is_admin(self) -> bool:
        return UserRole.ADMIN in self.roles

def verify_token(token: str) -> Optional[TokenPayload]:
    """Verify and decode JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )

        return TokenPayload(**payload)

    except (JWTError, ValidationError):
        return None

def _parse_role(name: str) -> Optional[UserRole]:
    normalized = name.strip().lower()
    if normalized.startswith(ROLE_PREFIX):
        normalized = normalized[len(ROLE_PREFIX):]
    try:
        return UserRole(normalized)
    except ValueError:
        return None

def identity_from_payload(payload: TokenPayload) -> Optional[Identity]:
    """Build the caller identity; unknown role names are ignored.

    The numeric ``userId`` claim wins; a numeric ``sub`` is accepted when it
    is absent.
    """
    if payload.userId is not None:
        user_id = payload.userId
    elif payload.sub and payload.sub.isdigit():
        user_id = int(payload.sub)
    else:
        return None

    names = list(payload.roles)
    if payload.role:
        names.append(payload.role)

    roles = {role for role in map(_parse_role, names) if role is not None}
    return Identity(user_id=user_id, roles=frozenset(roles))

# Security exceptions
class AuthenticationError(HTTPException):
    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )

class AuthorizationError(HTTPException):
    def __init__(self, detail: str = "Not enough permissions"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )
