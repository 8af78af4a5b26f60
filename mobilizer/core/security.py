"""JWT helpers.

Tokens are issued by the authentication collaborator. This service only
verifies them and reads the caller id (``sub``) and the scopes that were
resolved for the caller at issue time (``scopes``).
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from mobilizer.core.config import settings
from mobilizer.core.logging_config import get_logger

logger = get_logger(__name__)


def create_access_token(
    data: dict, expires_delta: timedelta | None = None
) -> str:
    """
    Create a JWT access token.

    Used by tooling and tests; production tokens come from the auth service.

    Args:
        data: Payload data to encode in the token
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """
    Decode and verify a JWT access token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.debug(f"Rejected access token: {e}")
        return None


def token_scopes(payload: dict[str, Any]) -> set[str]:
    """Extract the scope set from a token payload.

    Accepts either a list claim or the OAuth-style space separated string.
    """
    raw = payload.get("scopes", payload.get("scope"))
    if raw is None:
        return set()
    if isinstance(raw, str):
        return {scope for scope in raw.split() if scope}
    return {str(scope) for scope in raw}
