from datetime import datetime, timedelta, timezone
from typing import Optional, Any, List
import uuid

from jose import JWTError, jwt

from opsportal.config import settings


def create_access_token(
    subject: str,
    role: str,
    name: Optional[str] = None,
    branches: Optional[List[str]] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token carrying the portal identity claims.

    Tokens are normally minted by the authentication service; this helper
    produces the same shape for local runs and tests.

    Args:
        subject: Stable user identity (email or user id)
        role: Portal role code, e.g. 'dispatcher'
        name: Display name shown on checkpoints and late additions
        branches: Branch slugs the user is assigned to
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "sub": str(subject),
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "jti": str(uuid.uuid4()),
        "type": "access",
        "role": role,
        "name": name,
        "branches": list(branches or []),
    }

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a JWT token.

    Returns:
        Decoded token payload or None if invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None


def verify_access_token(token: str) -> Optional[dict[str, Any]]:
    """Return the claims of a valid access token, or None."""
    payload = decode_token(token)
    if payload is None:
        return None

    if payload.get("type") != "access":
        return None

    if not payload.get("sub") or not payload.get("role"):
        return None

    return payload
