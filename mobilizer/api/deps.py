"""API dependencies for authentication and authorization."""

from typing import Annotated, Awaitable, Callable
from uuid import UUID

import asyncpg
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from mobilizer.core.database import get_db
from mobilizer.core.errors import ForbiddenError
from mobilizer.core.logging_config import security_logger
from mobilizer.core.scopes import get_scope_registry, missing_scopes, scopes_satisfied
from mobilizer.core.security import decode_access_token, token_scopes
from mobilizer.services.users import get_user_by_id

security = HTTPBearer(auto_error=False)


def _credentials_error(detail: str = "Invalid authentication credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_optional_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
) -> dict | None:
    """
    Resolve the caller from the bearer token, or None without a token.

    A token that is present but invalid is rejected rather than treated
    as anonymous. The returned dict carries the scopes from the token.
    """
    if credentials is None:
        return None

    payload = decode_access_token(credentials.credentials)
    if payload is None or payload.get("sub") is None:
        raise _credentials_error()

    try:
        user_id = UUID(str(payload["sub"]))
    except ValueError:
        raise _credentials_error()

    user = await get_user_by_id(conn, user_id)
    if user is None:
        raise _credentials_error("User not found")

    user["scopes"] = sorted(token_scopes(payload))
    return user


async def get_current_user(
    user: Annotated[dict | None, Depends(get_optional_user)],
) -> dict:
    """Dependency to get the current authenticated user."""
    if user is None:
        raise _credentials_error("Not authenticated")
    return user


def require_scopes(operation: str) -> Callable[..., Awaitable[dict | None]]:
    """
    Build a dependency that gates ``operation`` on the scope table.

    Usage:
        caller: Annotated[dict | None, Depends(require_scopes("locations.check_hierarchy"))]
    """

    async def check_scopes(
        request: Request,
        user: Annotated[dict | None, Depends(get_optional_user)],
    ) -> dict | None:
        required = get_scope_registry().required_scopes(operation)
        caller_scopes = user.get("scopes", []) if user is not None else None

        if not scopes_satisfied(required, caller_scopes):
            user_id = user.get("id") if user is not None else None
            security_logger.log_scope_denied(operation, user_id, missing_scopes(required, caller_scopes))
            if user is None:
                security_logger.log_unauthorized_access(
                    request.url.path,
                    ip_address=request.client.host if request.client else None,
                    reason="no authenticated caller",
                )
            raise ForbiddenError(f"Insufficient scopes for {operation}")
        return user

    return check_scopes


def require_platform_admin(current_user: Annotated[dict, Depends(get_current_user)]) -> dict:
    """
    Dependency to require the platform administrator flag.

    Raises 403 if the caller is not a platform admin.
    """
    if not current_user.get("is_platform_admin"):
        raise ForbiddenError("Platform Admin access required")
    return current_user
