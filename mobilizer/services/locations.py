"""Location reference data: country → state → LGA → ward → polling unit.

The tree is built from the legacy lookup dump, checked, and upserted in one
transaction. Node ids are derived from the code path, so seeding the same
data twice produces the same rows instead of duplicates.
"""

import uuid
from collections import Counter, defaultdict
from enum import Enum
from typing import Any, Sequence

import asyncpg
from pydantic import BaseModel, Field

from mobilizer.core.errors import ValidationSkipped
from mobilizer.core.logging_config import get_logger
from mobilizer.services.delimitations import PU_DATA_TABLE, DuplicateValue
from mobilizer.services.sql_dump import extract_table_rows

logger = get_logger(__name__)

LOCATION_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "mobilizer:locations")

STATES_TABLE = "states"
LGAS_TABLE = "local_governments"
WARDS_TABLE = "registration_areas"


class LocationLevel(str, Enum):
    COUNTRY = "COUNTRY"
    STATE = "STATE"
    LGA = "LGA"
    WARD = "WARD"
    POLLING_UNIT = "POLLING_UNIT"

    @property
    def rank(self) -> int:
        return _LOCATION_ORDER.index(self)

    @property
    def parent_level(self) -> "LocationLevel | None":
        if self is LocationLevel.COUNTRY:
            return None
        return _LOCATION_ORDER[self.rank - 1]


_LOCATION_ORDER = list(LocationLevel)


class LocationNode(BaseModel):
    id: str
    level: LocationLevel
    name: str
    code: str | None = None
    parent_id: str | None = None
    delimitation: str | None = None


class CodeCollision(BaseModel):
    """Two delimitations that resolve to the same ward and unit code."""

    ward_id: str
    code: str
    delimitations: list[str]


class LocationSeedPlan(BaseModel):
    """Nodes to upsert plus everything that was left out and why."""

    nodes: list[LocationNode] = Field(default_factory=list)
    skipped: list[ValidationSkipped] = Field(default_factory=list)
    missing_states: list[str] = Field(default_factory=list)
    missing_lgas: list[str] = Field(default_factory=list)
    missing_wards: list[str] = Field(default_factory=list)
    repeated_delimitations: list[DuplicateValue] = Field(default_factory=list)
    code_collisions: list[CodeCollision] = Field(default_factory=list)

    def nodes_at(self, level: LocationLevel) -> list[LocationNode]:
        return [node for node in self.nodes if node.level is level]

    def counts(self) -> dict[str, int]:
        tally = Counter(node.level.value for node in self.nodes)
        return {level.value: tally.get(level.value, 0) for level in LocationLevel}


def location_id(level: LocationLevel, *codes: str) -> str:
    """Stable id for a node, derived from its level and code path."""
    path = "/".join(_code_key(code) for code in codes)
    return str(uuid.uuid5(LOCATION_NAMESPACE, f"{level.value}:{path}"))


def _code_key(code: str) -> str:
    # "3" and "003" name the same unit in the legacy data
    code = code.strip()
    return str(int(code)) if code.isdecimal() else code.upper()


def _field(row: Sequence[Any], position: int) -> str | None:
    if position >= len(row) or row[position] is None:
        return None
    value = str(row[position]).strip()
    return value or None


def build_location_tree(
    states: Sequence[Sequence[Any]],
    lgas: Sequence[Sequence[Any]],
    wards: Sequence[Sequence[Any]],
    polling_units: Sequence[Sequence[Any]],
    country_name: str,
    country_code: str,
) -> LocationSeedPlan:
    """
    Build the location tree from legacy lookup rows.

    Row layouts:
        states:        (id, name, abbreviation)
        lgas:          (id, state_id, name, abbreviation)
        wards:         (id, lga_id, name, abbreviation)
        polling_units: (id, ward_id, lga_id, state_id, delimitation,
                        state, lga, ward, name)

    Polling units are placed by their delimitation ``SS-LL-WW-PPP``. The
    first row wins for repeated codes and delimitations.
    """
    plan = LocationSeedPlan()
    country = LocationNode(
        id=location_id(LocationLevel.COUNTRY, country_code),
        level=LocationLevel.COUNTRY,
        name=country_name,
        code=country_code,
    )
    plan.nodes.append(country)

    def skip(table: str, index: int, reason: str, row: Any) -> None:
        plan.skipped.append(
            ValidationSkipped(index=index, reason=f"{table}: {reason}", raw=repr(row)[:200])
        )

    # States
    state_code_by_old_id: dict[str, str] = {}
    states_by_code: dict[str, LocationNode] = {}
    for index, row in enumerate(states):
        old_id, name, code = _field(row, 0), _field(row, 1), _field(row, 2)
        if not (old_id and name and code):
            skip(STATES_TABLE, index, "incomplete row", row)
            continue
        key = _code_key(code)
        if key in states_by_code:
            skip(STATES_TABLE, index, f"repeated state code {code}", row)
        else:
            states_by_code[key] = LocationNode(
                id=location_id(LocationLevel.STATE, country_code, code),
                level=LocationLevel.STATE,
                name=name,
                code=code,
                parent_id=country.id,
            )
            plan.nodes.append(states_by_code[key])
        state_code_by_old_id[old_id] = key

    # LGAs
    lga_codes_by_old_id: dict[str, tuple[str, str]] = {}
    lgas_by_codes: dict[tuple[str, str], LocationNode] = {}
    for index, row in enumerate(lgas):
        old_id, old_state_id, name, code = (_field(row, i) for i in range(4))
        if not (old_id and old_state_id and name and code):
            skip(LGAS_TABLE, index, "incomplete row", row)
            continue
        state_key = state_code_by_old_id.get(old_state_id)
        if state_key is None:
            skip(LGAS_TABLE, index, f"unknown state id {old_state_id}", row)
            continue
        key = (state_key, _code_key(code))
        if key in lgas_by_codes:
            skip(LGAS_TABLE, index, f"repeated LGA code {code}", row)
        else:
            lgas_by_codes[key] = LocationNode(
                id=location_id(LocationLevel.LGA, country_code, *key),
                level=LocationLevel.LGA,
                name=name,
                code=code,
                parent_id=states_by_code[state_key].id,
            )
            plan.nodes.append(lgas_by_codes[key])
        lga_codes_by_old_id[old_id] = key

    # Wards
    wards_by_codes: dict[tuple[str, str, str], LocationNode] = {}
    for index, row in enumerate(wards):
        old_id, old_lga_id, name, code = (_field(row, i) for i in range(4))
        if not (old_id and old_lga_id and name and code):
            skip(WARDS_TABLE, index, "incomplete row", row)
            continue
        lga_key = lga_codes_by_old_id.get(old_lga_id)
        if lga_key is None:
            skip(WARDS_TABLE, index, f"unknown LGA id {old_lga_id}", row)
            continue
        key = (*lga_key, _code_key(code))
        if key in wards_by_codes:
            skip(WARDS_TABLE, index, f"repeated ward code {code}", row)
            continue
        wards_by_codes[key] = LocationNode(
            id=location_id(LocationLevel.WARD, country_code, *key),
            level=LocationLevel.WARD,
            name=name,
            code=code,
            parent_id=lgas_by_codes[lga_key].id,
        )
        plan.nodes.append(wards_by_codes[key])

    # Polling units
    missing_states: set[str] = set()
    missing_lgas: set[str] = set()
    missing_wards: set[str] = set()
    delimitation_counts: Counter[str] = Counter()
    claimed: dict[tuple[str, str], list[str]] = defaultdict(list)

    for index, row in enumerate(polling_units):
        delimitation, name = _field(row, 4), _field(row, 8)
        if not delimitation or not name:
            skip(PU_DATA_TABLE, index, "missing delimitation or name", row)
            continue

        parts = [part.strip() for part in delimitation.split("-")]
        if len(parts) != 4 or not all(parts):
            skip(PU_DATA_TABLE, index, f"invalid delimitation format {delimitation}", row)
            continue

        delimitation_counts[delimitation] += 1
        if delimitation_counts[delimitation] > 1:
            continue

        state_code, lga_code, ward_code, unit_code = parts
        state_key = _code_key(state_code)
        if state_key not in states_by_code:
            missing_states.add(state_code)
            continue
        lga_key = (state_key, _code_key(lga_code))
        if lga_key not in lgas_by_codes:
            missing_lgas.add(f"{state_code}-{lga_code}")
            continue
        ward_key = (*lga_key, _code_key(ward_code))
        ward = wards_by_codes.get(ward_key)
        if ward is None:
            missing_wards.add(f"{state_code}-{lga_code}-{ward_code}")
            continue

        slot = (ward.id, _code_key(unit_code))
        claimed[slot].append(delimitation)
        if len(claimed[slot]) > 1:
            continue

        plan.nodes.append(
            LocationNode(
                id=location_id(LocationLevel.POLLING_UNIT, country_code, *ward_key, unit_code),
                level=LocationLevel.POLLING_UNIT,
                name=name,
                code=unit_code,
                parent_id=ward.id,
                delimitation=delimitation,
            )
        )

    plan.missing_states = sorted(missing_states)
    plan.missing_lgas = sorted(missing_lgas)
    plan.missing_wards = sorted(missing_wards)
    plan.repeated_delimitations = sorted(
        (DuplicateValue(value=v, count=c) for v, c in delimitation_counts.items() if c > 1),
        key=lambda d: (-d.count, d.value),
    )
    plan.code_collisions = [
        CodeCollision(ward_id=ward_id, code=code, delimitations=delims)
        for (ward_id, code), delims in sorted(claimed.items())
        if len(delims) > 1
    ]

    logger.info(f"Location plan built: {plan.counts()}, {len(plan.skipped)} rows skipped")
    return plan


def build_location_tree_from_dump(
    sql_text: str, country_name: str, country_code: str
) -> LocationSeedPlan:
    """Build the plan from the four lookup tables of the legacy SQL dump."""
    return build_location_tree(
        states=extract_table_rows(sql_text, STATES_TABLE),
        lgas=extract_table_rows(sql_text, LGAS_TABLE),
        wards=extract_table_rows(sql_text, WARDS_TABLE),
        polling_units=extract_table_rows(sql_text, PU_DATA_TABLE),
        country_name=country_name,
        country_code=country_code,
    )


# ============================================
# TREE INTEGRITY
# ============================================


class LocationProblem(BaseModel):
    node_id: str
    kind: str
    detail: str


class LocationTreeReport(BaseModel):
    total_nodes: int
    counts: dict[str, int]
    problems: list[LocationProblem]

    @property
    def is_valid(self) -> bool:
        return not self.problems


def check_location_tree(nodes: Sequence[LocationNode]) -> LocationTreeReport:
    """
    Verify that every parent chain ends at exactly one country.

    Checks, per node: the parent exists and sits exactly one level up,
    only countries lack a parent, and following parents never loops.
    """
    by_id: dict[str, LocationNode] = {}
    problems: list[LocationProblem] = []

    for node in nodes:
        if node.id in by_id:
            problems.append(LocationProblem(node_id=node.id, kind="duplicate_id", detail=node.name))
            continue
        by_id[node.id] = node

    for node in by_id.values():
        expected = node.level.parent_level
        if node.parent_id is None:
            if expected is not None:
                problems.append(
                    LocationProblem(
                        node_id=node.id,
                        kind="missing_parent_id",
                        detail=f"{node.level.value} {node.name} has no parent",
                    )
                )
            continue

        if expected is None:
            problems.append(
                LocationProblem(
                    node_id=node.id, kind="unexpected_parent", detail=f"country {node.name} has a parent"
                )
            )
            continue

        parent = by_id.get(node.parent_id)
        if parent is None:
            problems.append(
                LocationProblem(
                    node_id=node.id, kind="missing_parent", detail=f"parent {node.parent_id} not found"
                )
            )
            continue

        if parent.level is not expected:
            problems.append(
                LocationProblem(
                    node_id=node.id,
                    kind="wrong_parent_level",
                    detail=f"{node.level.value} under {parent.level.value}",
                )
            )

    # Chains that loop never reach a root
    for node in by_id.values():
        seen = {node.id}
        current = node
        while current.parent_id is not None and current.parent_id in by_id:
            if current.parent_id in seen:
                problems.append(
                    LocationProblem(node_id=node.id, kind="cycle", detail=f"loops at {current.parent_id}")
                )
                break
            seen.add(current.parent_id)
            current = by_id[current.parent_id]

    counts = Counter(node.level.value for node in by_id.values())
    return LocationTreeReport(
        total_nodes=len(by_id),
        counts={level.value: counts.get(level.value, 0) for level in LocationLevel},
        problems=problems,
    )


# ============================================
# PERSISTENCE
# ============================================

_UPSERTS: dict[LocationLevel, str] = {
    LocationLevel.COUNTRY: """
        INSERT INTO countries (id, name, code)
        VALUES ($1, $2, $3)
        ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, code = EXCLUDED.code
    """,
    LocationLevel.STATE: """
        INSERT INTO states (id, country_id, name, code)
        VALUES ($1, $2, $3, $4)
        ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, code = EXCLUDED.code
    """,
    LocationLevel.LGA: """
        INSERT INTO lgas (id, state_id, name, code)
        VALUES ($1, $2, $3, $4)
        ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, code = EXCLUDED.code
    """,
    LocationLevel.WARD: """
        INSERT INTO wards (id, lga_id, name, code)
        VALUES ($1, $2, $3, $4)
        ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, code = EXCLUDED.code
    """,
    LocationLevel.POLLING_UNIT: """
        INSERT INTO polling_units (id, ward_id, name, code, delimitation)
        VALUES ($1, $2, $3, $4, $5)
        ON CONFLICT (id) DO UPDATE
        SET name = EXCLUDED.name, code = EXCLUDED.code, delimitation = EXCLUDED.delimitation
    """,
}


def _upsert_args(node: LocationNode) -> tuple:
    if node.level is LocationLevel.COUNTRY:
        return (node.id, node.name, node.code)
    if node.level is LocationLevel.POLLING_UNIT:
        return (node.id, node.parent_id, node.name, node.code, node.delimitation)
    return (node.id, node.parent_id, node.name, node.code)


async def seed_location_tree(
    conn: asyncpg.Connection,
    plan: LocationSeedPlan,
    dry_run: bool = False,
) -> dict[str, int]:
    """
    Upsert the planned nodes, parents before children, in one transaction.

    Returns the number of rows per level (written, or that would be written
    on a dry run).
    """
    counts = plan.counts()
    if dry_run:
        logger.info(f"Dry run, nothing written: {counts}")
        return counts

    async with conn.transaction():
        for level in LocationLevel:
            rows = [_upsert_args(node) for node in plan.nodes_at(level)]
            if rows:
                await conn.executemany(_UPSERTS[level], rows)
                logger.info(f"Upserted {len(rows)} {level.value} rows")

    return counts


async def load_location_nodes(conn: asyncpg.Connection) -> list[LocationNode]:
    """Read the stored location tables as one flat node list."""
    rows = await conn.fetch(
        """
        SELECT id, 'COUNTRY' AS level, name, code, NULL::uuid AS parent_id, NULL AS delimitation
        FROM countries
        UNION ALL
        SELECT id, 'STATE', name, code, country_id, NULL FROM states
        UNION ALL
        SELECT id, 'LGA', name, code, state_id, NULL FROM lgas
        UNION ALL
        SELECT id, 'WARD', name, code, lga_id, NULL FROM wards
        UNION ALL
        SELECT id, 'POLLING_UNIT', name, code, ward_id, delimitation FROM polling_units
        """
    )
    nodes = []
    for row in rows:
        data = dict(row)
        data["id"] = str(data["id"])
        if data.get("parent_id") is not None:
            data["parent_id"] = str(data["parent_id"])
        nodes.append(LocationNode(**data))
    return nodes
