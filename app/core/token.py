"""
Token management and validation logic.
All JWT and authentication dependency operations are centralized here.
"""

from datetime import timedelta
from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.core.config import settings
from app.core.errors import UnauthenticatedError
from app.core.time import utcnow

# Missing credentials are reported as UNAUTHENTICATED by the dependency below
security_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()

    now = utcnow()
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire, "iat": now})

    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate JWT token string"""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def verify_token(token: str) -> Optional[str]:
    """Verify token and extract user ID (sub claim)"""
    payload = decode_token(token)
    if payload is None:
        return None

    user_id: Optional[str] = payload.get("sub")
    return user_id


async def get_current_user_id(
    auth: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security_scheme)],
) -> str:
    """
    FastAPI dependency to validate token and return current user ID.
    Used in protected routes.
    """
    if auth is None or not auth.credentials:
        raise UnauthenticatedError()
    user_id = verify_token(auth.credentials)
    if not user_id:
        raise UnauthenticatedError("Could not validate credentials")
    return user_id


# Frequently used Dependency Annotation
CurrentUserDep = Annotated[str, Depends(get_current_user_id)]
