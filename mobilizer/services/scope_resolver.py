"""Resolve the roles and support groups a user holds, grouped by movement.

A declared role is held when the user has an active, approved membership in
an organization at or above the role's level in the same movement. The
support groups listed under it are the organizations at or below the role's
level reachable downwards from those memberships.
"""

from collections import defaultdict

import asyncpg
from pydantic import BaseModel, Field

from mobilizer.core.errors import ForbiddenError, NotFoundError
from mobilizer.core.logging_config import get_logger, security_logger
from mobilizer.services.hierarchy import (
    HierarchySnapshot,
    OrgLevel,
    Organization,
    load_hierarchy,
)

logger = get_logger(__name__)

SUPER_ADMIN_ROLE_NAME = "Super Admin"


class SupportGroupInfo(BaseModel):
    id: str
    name: str


class RoleInfo(BaseModel):
    role_id: str
    role_name: str
    support_groups: list[SupportGroupInfo] = Field(default_factory=list)


class MovementRoles(BaseModel):
    movement_id: str
    movement_name: str
    roles: list[RoleInfo]


def _org_sort_key(org: Organization) -> tuple:
    return (org.level.rank, org.name, org.id)


def can_view_movement(snapshot: HierarchySnapshot, caller_id: str, movement_id: str) -> bool:
    """Platform admins, movement admins and active members can see a movement."""
    if snapshot.is_platform_admin(caller_id):
        return True
    if movement_id in snapshot.admin_movements(caller_id):
        return True
    for membership in snapshot.memberships_for(caller_id):
        org = snapshot.organizations.get(membership.organization_id)
        if membership.is_active and org is not None and org.movement_id == movement_id:
            return True
    return False


def _anchor_organizations(
    snapshot: HierarchySnapshot, user_id: str, movement_id: str | None
) -> dict[str, list[Organization]]:
    """Organizations of the user's active, approved memberships, per movement."""
    anchors: dict[str, list[Organization]] = defaultdict(list)
    for membership in snapshot.memberships_for(user_id):
        if not (membership.is_active and membership.is_approved):
            continue
        org = snapshot.organizations.get(membership.organization_id)
        if org is None or not org.is_active:
            continue
        if movement_id is not None and org.movement_id != movement_id:
            continue
        anchors[org.movement_id].append(org)
    return anchors


def _support_groups(
    snapshot: HierarchySnapshot, anchors: list[Organization], level: OrgLevel
) -> list[SupportGroupInfo]:
    reachable: dict[str, Organization] = {}
    for anchor in anchors:
        for org in snapshot.subtree(anchor.id):
            if org.level.rank >= level.rank:
                reachable.setdefault(org.id, org)

    return [
        SupportGroupInfo(id=org.id, name=org.name)
        for org in sorted(reachable.values(), key=_org_sort_key)
    ]


def _declared_roles(
    snapshot: HierarchySnapshot, movement_id: str, anchors: list[Organization]
) -> list[RoleInfo]:
    roles: list[RoleInfo] = []
    for role in sorted(snapshot.roles_for(movement_id), key=lambda r: (r.level.rank, r.name, r.id)):
        holding = [org for org in anchors if org.level.is_at_or_above(role.level)]
        if not holding:
            continue
        roles.append(
            RoleInfo(
                role_id=role.id,
                role_name=role.name,
                support_groups=_support_groups(snapshot, holding, role.level),
            )
        )
    return roles


def _super_admin_role(snapshot: HierarchySnapshot, movement_id: str) -> RoleInfo:
    groups = sorted(snapshot.movement_organizations(movement_id), key=_org_sort_key)
    return RoleInfo(
        role_id=f"super-admin-{movement_id}",
        role_name=SUPER_ADMIN_ROLE_NAME,
        support_groups=[SupportGroupInfo(id=org.id, name=org.name) for org in groups],
    )


def resolve_user_roles(
    snapshot: HierarchySnapshot,
    user_id: str,
    movement_id: str | None = None,
    caller_id: str | None = None,
) -> list[MovementRoles]:
    """
    Compute the roles visible to ``user_id``.

    Args:
        snapshot: Hierarchy tables for the user (and caller).
        user_id: User whose roles are resolved.
        movement_id: Restrict the result to one movement.
        caller_id: Identity making the request; defaults to ``user_id``.

    Returns:
        One entry per movement with at least one role, ordered by movement
        name. Empty when the user has no active memberships.

    Raises:
        NotFoundError: unknown user or movement.
        ForbiddenError: ``movement_id`` is outside the caller's visibility.
    """
    if user_id not in snapshot.users:
        raise NotFoundError("User", user_id)

    if movement_id is not None:
        if movement_id not in snapshot.movements:
            raise NotFoundError("Movement", movement_id)
        if not can_view_movement(snapshot, caller_id or user_id, movement_id):
            raise ForbiddenError(f"No membership in movement {movement_id}")

    anchors = _anchor_organizations(snapshot, user_id, movement_id)
    admin_movements = snapshot.admin_movements(user_id)
    if movement_id is not None:
        admin_movements &= {movement_id}

    result: list[MovementRoles] = []
    for mid in set(anchors) | admin_movements:
        movement = snapshot.movements.get(mid)
        if movement is None:
            logger.warning(f"Skipping roles for unknown movement {mid}")
            continue

        roles: list[RoleInfo] = []
        if mid in admin_movements:
            roles.append(_super_admin_role(snapshot, mid))
        roles.extend(_declared_roles(snapshot, mid, anchors.get(mid, [])))

        if roles:
            result.append(MovementRoles(movement_id=mid, movement_name=movement.name, roles=roles))

    result.sort(key=lambda entry: (entry.movement_name, entry.movement_id))
    return result


async def get_user_roles(
    conn: asyncpg.Connection,
    user_id: str,
    movement_id: str | None = None,
    caller_id: str | None = None,
) -> list[MovementRoles]:
    """Load a fresh snapshot and resolve roles. Performs no writes."""
    user_ids = {user_id}
    if caller_id:
        user_ids.add(caller_id)

    snapshot = await load_hierarchy(conn, user_ids, movement_id=movement_id)
    try:
        return resolve_user_roles(snapshot, user_id, movement_id=movement_id, caller_id=caller_id)
    except ForbiddenError:
        security_logger.log_movement_forbidden(caller_id or user_id, str(movement_id))
        raise
