"""Role lookup for the authenticated caller."""

from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, Query

from mobilizer.api.deps import get_current_user, require_scopes
from mobilizer.core.database import get_db
from mobilizer.core.responses import success_response
from mobilizer.services.scope_resolver import get_user_roles

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.get("/roles")
async def get_roles(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
    _: Annotated[dict | None, Depends(require_scopes("auth.get_user_roles"))],
    movement_id: Annotated[UUID | None, Query()] = None,
):
    """
    List the caller's roles per movement, with the support groups each
    role reaches.

    **Response:**
    ```json
    [
        {
            "movement_id": "…",
            "movement_name": "Renewed Hope",
            "roles": [
                {
                    "role_id": "…",
                    "role_name": "Ward Coordinator",
                    "support_groups": [{"id": "…", "name": "Ward 03"}]
                }
            ]
        }
    ]
    ```

    Returns 403 when ``movement_id`` is a movement the caller has no
    membership in, and 404 when it does not exist.
    """
    roles = await get_user_roles(
        conn,
        current_user["id"],
        movement_id=str(movement_id) if movement_id else None,
        caller_id=current_user["id"],
    )
    return success_response(data=[entry.model_dump() for entry in roles])
