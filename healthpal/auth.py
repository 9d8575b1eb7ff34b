import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt
from pydantic import BaseModel, ValidationError

from .config import JWT_ACCESS_SECRET, JWT_ALGORITHM
from .errors import ForbiddenError, UnauthorizedError
from .models import UserRole

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """Claims carried by an access token"""

    sub: str
    email: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def create_access_token(data: dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create an access token

    Args:
        data: Claims to encode (sub, email, role)
        expires_delta: Token expiration time (default 15 minutes)
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return jose_jwt.encode(to_encode, JWT_ACCESS_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> CurrentUser:
    """Verify signature and expiry, then validate the claim shape"""
    try:
        payload = jose_jwt.decode(token, JWT_ACCESS_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise UnauthorizedError("Invalid or expired token") from e

    try:
        return CurrentUser.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"⚠️ Token claims rejected: {e.errors()}")
        raise UnauthorizedError("Invalid token claims") from e


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """Resolve the caller from the Bearer token"""
    if not credentials:
        raise UnauthorizedError("Authentication required")

    user = decode_access_token(credentials.credentials)
    logger.debug(f"✅ User authenticated: {user.email} ({user.role.value})")
    return user


def require_role(*roles: UserRole):
    """
    Create a dependency that only lets the given roles through

    Example usage:
        @router.post("/{appointment_id}/confirm")
        async def confirm(user: CurrentUser = Depends(require_role(UserRole.DOCTOR))):
            ...
    """
    allowed = set(roles)

    async def role_guard(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed:
            names = " or ".join(sorted(r.value.lower() for r in allowed))
            raise ForbiddenError(f"Only {names} users can perform this action")
        return user

    return role_guard
