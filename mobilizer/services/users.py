"""User lookups used by authentication."""

from typing import Any
from uuid import UUID

import asyncpg


async def get_user_by_id(  # type: ignore[no-any-unimported]
    conn: asyncpg.Connection, user_id: UUID
) -> dict[str, Any] | None:
    """Get user by ID."""
    result = await conn.fetchrow(
        """
        SELECT id, email, first_name, last_name, is_platform_admin
        FROM users
        WHERE id = $1 AND deleted = FALSE
        """,
        str(user_id),
    )
    if result is None:
        return None

    user = dict(result)
    user["id"] = str(user["id"])
    return user
