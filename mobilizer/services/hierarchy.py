"""In-memory organization hierarchy used for role resolution.

A ``HierarchySnapshot`` is loaded fresh for each request and never mutated
afterwards. Subtree walks run over its indices instead of
chained queries, so resolution can be tested with a hand-built snapshot.
"""

from collections import defaultdict, deque
from datetime import datetime
from enum import Enum
from typing import Any, Iterable
from uuid import UUID

import asyncpg
from pydantic import BaseModel, ValidationError, model_validator

from mobilizer.core.logging_config import get_logger

logger = get_logger(__name__)


class OrgLevel(str, Enum):
    """Organization rank, mirroring the geographic hierarchy."""

    NATIONAL = "NATIONAL"
    STATE = "STATE"
    LGA = "LGA"
    WARD = "WARD"
    POLLING_UNIT = "POLLING_UNIT"

    @property
    def rank(self) -> int:
        """0 for NATIONAL down to 4 for POLLING_UNIT."""
        return _ORG_LEVEL_ORDER.index(self)

    def is_at_or_above(self, other: "OrgLevel") -> bool:
        return self.rank <= other.rank


_ORG_LEVEL_ORDER = list(OrgLevel)


class UserRecord(BaseModel):
    id: str
    is_platform_admin: bool = False


class Movement(BaseModel):
    id: str
    name: str


class Organization(BaseModel):
    id: str
    movement_id: str
    name: str
    level: OrgLevel
    parent_id: str | None = None
    is_active: bool = True


class Membership(BaseModel):
    """A user's membership in one organization."""

    user_id: str
    organization_id: str
    is_admin: bool = False
    is_active: bool = True
    joined_at: datetime | None = None
    approved_at: datetime | None = None

    @model_validator(mode="after")
    def _admin_implies_active(self) -> "Membership":
        if self.is_admin and not self.is_active:
            raise ValueError(
                f"Membership of {self.user_id} in {self.organization_id} is admin but not active"
            )
        return self

    @property
    def is_approved(self) -> bool:
        return self.approved_at is not None


class Role(BaseModel):
    id: str
    movement_id: str
    name: str
    level: OrgLevel


class MovementAdmin(BaseModel):
    user_id: str
    movement_id: str


def _membership_sort_key(membership: Membership) -> tuple:
    # Approved rows first, earliest approval wins; pending rows by join date.
    stamp = membership.approved_at or membership.joined_at
    return (membership.approved_at is None, stamp is None, stamp or datetime.min)


def _collapse_memberships(memberships: Iterable[Membership]) -> dict[str, list[Membership]]:
    """Index memberships by user, keeping one active row per organization."""
    grouped: dict[tuple[str, str], list[Membership]] = defaultdict(list)
    for membership in memberships:
        grouped[(membership.user_id, membership.organization_id)].append(membership)

    by_user: dict[str, list[Membership]] = defaultdict(list)
    for (user_id, org_id), rows in grouped.items():
        active = sorted((m for m in rows if m.is_active), key=_membership_sort_key)
        if len(active) > 1:
            logger.warning(
                f"User {user_id} has {len(active)} active memberships in {org_id}; keeping the earliest"
            )
        by_user[user_id].extend(active[:1])
        by_user[user_id].extend(m for m in rows if not m.is_active)
    return by_user


class HierarchySnapshot:
    """Read-only tables for users, movements, organizations, roles and memberships."""

    def __init__(
        self,
        users: Iterable[UserRecord] = (),
        movements: Iterable[Movement] = (),
        organizations: Iterable[Organization] = (),
        roles: Iterable[Role] = (),
        memberships: Iterable[Membership] = (),
        movement_admins: Iterable[MovementAdmin] = (),
    ) -> None:
        self.users = {user.id: user for user in users}
        self.movements = {movement.id: movement for movement in movements}
        self.organizations = {org.id: org for org in organizations}

        self._children: dict[str, list[str]] = defaultdict(list)
        for org in sorted(self.organizations.values(), key=lambda o: (o.name, o.id)):
            if org.parent_id is not None:
                self._children[org.parent_id].append(org.id)

        self._roles: dict[str, list[Role]] = defaultdict(list)
        for role in roles:
            self._roles[role.movement_id].append(role)

        self._memberships = _collapse_memberships(memberships)

        self._admin_movements: dict[str, set[str]] = defaultdict(set)
        for admin in movement_admins:
            self._admin_movements[admin.user_id].add(admin.movement_id)

    def is_platform_admin(self, user_id: str) -> bool:
        user = self.users.get(user_id)
        return bool(user and user.is_platform_admin)

    def memberships_for(self, user_id: str) -> list[Membership]:
        return list(self._memberships.get(user_id, ()))

    def admin_movements(self, user_id: str) -> set[str]:
        return set(self._admin_movements.get(user_id, ()))

    def roles_for(self, movement_id: str) -> list[Role]:
        return list(self._roles.get(movement_id, ()))

    def movement_organizations(self, movement_id: str, active_only: bool = True) -> list[Organization]:
        return [
            org
            for org in self.organizations.values()
            if org.movement_id == movement_id and (org.is_active or not active_only)
        ]

    def subtree(self, org_id: str, active_only: bool = True) -> list[Organization]:
        """
        Breadth-first walk from ``org_id`` through its descendants.

        The root is included. Children in another movement are not followed,
        and with ``active_only`` an inactive organization hides its subtree.
        Safe against cycles in ``parent_id``.
        """
        root = self.organizations.get(org_id)
        if root is None or (active_only and not root.is_active):
            return []

        seen = {root.id}
        ordered = [root]
        queue = deque([root.id])
        while queue:
            current = queue.popleft()
            for child_id in self._children.get(current, ()):
                child = self.organizations[child_id]
                if child_id in seen or child.movement_id != root.movement_id:
                    continue
                if active_only and not child.is_active:
                    continue
                seen.add(child_id)
                ordered.append(child)
                queue.append(child_id)
        return ordered


# ============================================
# LOADING
# ============================================


def _parse_row(row: asyncpg.Record | dict | None) -> dict[str, Any]:
    """Convert a database row into a dict with UUIDs as strings."""
    result = dict(row or {})
    for key, value in result.items():
        if isinstance(value, UUID):
            result[key] = str(value)
    return result


async def load_hierarchy(
    conn: asyncpg.Connection,
    user_ids: Iterable[str],
    movement_id: str | None = None,
) -> HierarchySnapshot:
    """
    Read everything needed to resolve roles for ``user_ids``.

    Organizations and roles are loaded for every movement the users belong
    to or administer (only ``movement_id`` when given). Read-only.
    """
    ids = sorted({str(user_id) for user_id in user_ids})

    user_rows = await conn.fetch(
        """
        SELECT id, is_platform_admin
        FROM users
        WHERE id = ANY($1::uuid[]) AND deleted = FALSE
        """,
        ids,
    )

    membership_query = """
        SELECT m.user_id, m.organization_id, m.is_admin, m.is_active,
               m.joined_at, m.approved_at, o.movement_id
        FROM org_memberships m
        JOIN organizations o ON o.id = m.organization_id
        WHERE m.user_id = ANY($1::uuid[])
    """
    membership_params: list[Any] = [ids]
    if movement_id:
        membership_query += " AND o.movement_id = $2"
        membership_params.append(str(movement_id))
    membership_rows = [_parse_row(r) for r in await conn.fetch(membership_query, *membership_params)]

    admin_query = """
        SELECT user_id, movement_id
        FROM movement_admins
        WHERE user_id = ANY($1::uuid[])
    """
    admin_params: list[Any] = [ids]
    if movement_id:
        admin_query += " AND movement_id = $2"
        admin_params.append(str(movement_id))
    admin_rows = [_parse_row(r) for r in await conn.fetch(admin_query, *admin_params)]

    if movement_id:
        movement_ids = [str(movement_id)]
    else:
        movement_ids = sorted(
            {row["movement_id"] for row in membership_rows}
            | {row["movement_id"] for row in admin_rows}
        )

    movement_rows: list[dict[str, Any]] = []
    org_rows: list[dict[str, Any]] = []
    role_rows: list[dict[str, Any]] = []
    if movement_ids:
        movement_rows = [
            _parse_row(r)
            for r in await conn.fetch(
                "SELECT id, name FROM movements WHERE id = ANY($1::uuid[])",
                movement_ids,
            )
        ]
        org_rows = [
            _parse_row(r)
            for r in await conn.fetch(
                """
                SELECT id, movement_id, name, level, parent_id, is_active
                FROM organizations
                WHERE movement_id = ANY($1::uuid[])
                """,
                movement_ids,
            )
        ]
        role_rows = [
            _parse_row(r)
            for r in await conn.fetch(
                """
                SELECT id, movement_id, name, level
                FROM roles
                WHERE movement_id = ANY($1::uuid[])
                """,
                movement_ids,
            )
        ]

    memberships: list[Membership] = []
    for row in membership_rows:
        row.pop("movement_id", None)
        try:
            memberships.append(Membership(**row))
        except ValidationError as e:
            logger.warning(f"Ignoring inconsistent membership row: {e.errors()[0]['msg']}")

    snapshot = HierarchySnapshot(
        users=[UserRecord(**_parse_row(r)) for r in user_rows],
        movements=[Movement(**r) for r in movement_rows],
        organizations=[Organization(**r) for r in org_rows],
        roles=[Role(**r) for r in role_rows],
        memberships=memberships,
        movement_admins=[MovementAdmin(**r) for r in admin_rows],
    )
    logger.debug(
        f"Loaded hierarchy for {len(ids)} user(s): {len(movement_rows)} movements, "
        f"{len(org_rows)} organizations, {len(role_rows)} roles, {len(membership_rows)} memberships"
    )
    return snapshot
