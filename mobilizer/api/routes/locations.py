"""Location reference-data checks.

Both endpoints are read-only: the delimitation report never touches the
database, and the hierarchy check only reads the stored tree.
"""

from typing import Annotated, Any

import asyncpg
from fastapi import APIRouter, Depends
from pydantic import BaseModel, model_validator

from mobilizer.api.deps import require_platform_admin, require_scopes
from mobilizer.core.database import get_db
from mobilizer.core.responses import success_response
from mobilizer.services.delimitations import (
    validate_delimitations,
    validate_delimitations_from_dump,
)
from mobilizer.services.locations import check_location_tree, load_location_nodes

router = APIRouter(prefix="/locations", tags=["Locations"])


class DelimitationBatch(BaseModel):
    """Either positional records or the raw text of a lookup dump."""

    records: list[Any] | None = None
    sql_dump: str | None = None

    @model_validator(mode="after")
    def _one_source(self) -> "DelimitationBatch":
        if (self.records is None) == (self.sql_dump is None):
            raise ValueError("Provide exactly one of 'records' or 'sql_dump'")
        return self


@router.post("/delimitations/validate")
async def validate_delimitation_batch(
    request: DelimitationBatch,
    _: Annotated[dict | None, Depends(require_scopes("locations.validate_delimitations"))],
):
    """
    Dry-run duplicate report for polling-unit delimitations.

    **Request Body:**
    ```json
    {"records": [[1, 1, 1, 1, "AB-01-01-001"], "(1, 1, 1, 2, 'AB-01-01-002')"]}
    ```
    """
    if request.sql_dump is not None:
        report = validate_delimitations_from_dump(request.sql_dump)
    else:
        report = validate_delimitations(request.records or [])

    message = "No duplicate delimitations found"
    if report.has_duplicates:
        message = f"{report.duplicate_count} delimitation value(s) repeated"
    return success_response(data=report.model_dump(), message=message)


@router.get("/hierarchy/check")
async def check_hierarchy(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    _: Annotated[dict | None, Depends(require_scopes("locations.check_hierarchy"))],
    admin_user: Annotated[dict, Depends(require_platform_admin)],
):
    """Verify that every stored location chains up to exactly one country."""
    nodes = await load_location_nodes(conn)
    report = check_location_tree(nodes)
    return success_response(data={**report.model_dump(), "is_valid": report.is_valid})
