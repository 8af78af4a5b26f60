"""Unit tests for location tree construction, checks and seeding."""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from mobilizer.services.locations import (
    LocationLevel,
    LocationNode,
    build_location_tree,
    build_location_tree_from_dump,
    check_location_tree,
    load_location_nodes,
    location_id,
    seed_location_tree,
)

STATES = [["1", "ABIA", "AB"], ["2", "ADAMAWA", "AD"], ["3", "BROKEN", None]]
LGAS = [["10", "1", "ABA NORTH", "01"], ["11", "9", "GHOST", "02"], ["12", "2", "DEMSA", "01"]]
WARDS = [["100", "10", "EZIAMA", "01"], ["101", "12", "BILLE", "01"], ["102", "77", "NOWHERE", "01"]]


def _pu(pu_id, delimitation, name):
    return [pu_id, "100", "10", "1", delimitation, "ABIA", "ABA NORTH", "EZIAMA", name]


POLLING_UNITS = [
    _pu("1", "AB-01-01-001", "CLASS ROOM I"),
    _pu("2", "AB-01-01-001", "CLASS ROOM I (COPY)"),
    _pu("3", "AB-01-01-1", "CLASS ROOM II"),
    _pu("4", "AD-01-01-002", "BILLE PRIMARY SCHOOL"),
    _pu("5", "ZZ-01-01-001", "UNKNOWN STATE"),
    _pu("6", "AB-09-01-001", "UNKNOWN LGA"),
    _pu("7", "AB-01-07-001", "UNKNOWN WARD"),
    _pu("8", "AB0101001", "NO DASHES"),
    _pu("9", None, "NO DELIMITATION"),
]


def _build(polling_units=POLLING_UNITS):
    return build_location_tree(STATES, LGAS, WARDS, polling_units, "Nigeria", "NG")


class TestBuildLocationTree:
    """Tests for building the seed plan from lookup rows."""

    def test_counts_per_level(self):
        plan = _build()

        assert plan.counts() == {
            "COUNTRY": 1,
            "STATE": 2,
            "LGA": 2,
            "WARD": 2,
            "POLLING_UNIT": 2,
        }

    def test_parents_link_one_level_up(self):
        plan = _build()
        by_id = {node.id: node for node in plan.nodes}

        unit = next(n for n in plan.nodes_at(LocationLevel.POLLING_UNIT) if n.code == "001")
        ward = by_id[unit.parent_id]
        lga = by_id[ward.parent_id]
        state = by_id[lga.parent_id]
        country = by_id[state.parent_id]

        assert (ward.name, lga.name, state.name) == ("EZIAMA", "ABA NORTH", "ABIA")
        assert country.level is LocationLevel.COUNTRY
        assert country.parent_id is None
        assert unit.delimitation == "AB-01-01-001"

    def test_problems_are_recorded(self):
        plan = _build()

        assert plan.missing_states == ["ZZ"]
        assert plan.missing_lgas == ["AB-09"]
        assert plan.missing_wards == ["AB-01-07"]
        assert [(d.value, d.count) for d in plan.repeated_delimitations] == [("AB-01-01-001", 2)]

    def test_first_row_wins_for_repeated_delimitation(self):
        plan = _build()
        names = {n.name for n in plan.nodes_at(LocationLevel.POLLING_UNIT)}

        assert "CLASS ROOM I" in names
        assert "CLASS ROOM I (COPY)" not in names

    def test_unit_code_collision(self):
        plan = _build()

        assert len(plan.code_collisions) == 1
        collision = plan.code_collisions[0]
        assert collision.code == "1"
        assert collision.delimitations == ["AB-01-01-001", "AB-01-01-1"]

    def test_skipped_rows_name_their_table(self):
        plan = _build()
        reasons = [s.reason for s in plan.skipped]

        assert len(reasons) == 5
        assert reasons[0].startswith("states: incomplete row")
        assert any(r.startswith("local_governments: unknown state id 9") for r in reasons)
        assert any(r.startswith("registration_areas: unknown LGA id 77") for r in reasons)
        assert any("invalid delimitation format AB0101001" in r for r in reasons)
        assert any("missing delimitation or name" in r for r in reasons)

    def test_ids_are_stable_across_builds(self):
        first = _build()
        second = _build(list(reversed(POLLING_UNITS[3:])) + POLLING_UNITS[:3])

        assert {n.id for n in first.nodes} == {n.id for n in second.nodes}
        assert [n.id for n in first.nodes] == [n.id for n in _build().nodes]

    def test_padded_codes_share_an_id(self):
        assert location_id(LocationLevel.WARD, "NG", "AB", "01", "001") == location_id(
            LocationLevel.WARD, "NG", "ab", "1", "1"
        )
        assert location_id(LocationLevel.WARD, "NG", "AB") != location_id(LocationLevel.LGA, "NG", "AB")

    def test_non_decimal_code_does_not_abort_build(self):
        plan = build_location_tree([["1", "ABIA", "\u00b2"]], [], [], [], "Nigeria", "NG")

        states = plan.nodes_at(LocationLevel.STATE)
        assert [s.code for s in states] == ["\u00b2"]
        assert location_id(LocationLevel.STATE, "NG", "03") == location_id(LocationLevel.STATE, "NG", "3")

    def test_built_tree_passes_integrity_check(self):
        report = check_location_tree(_build().nodes)

        assert report.is_valid
        assert report.total_nodes == 9

    def test_from_dump(self):
        dump = """
        INSERT INTO `states` VALUES (1, 'ABIA', 'AB');
        INSERT INTO `local_governments` VALUES (10, 1, 'ABA NORTH', '01');
        INSERT INTO `registration_areas` VALUES (100, 10, 'EZIAMA', '01');
        INSERT INTO `pu_data` VALUES
        (1, 100, 10, 1, 'AB-01-01-001', 'ABIA', 'ABA NORTH', 'EZIAMA', 'OBI''S COMPOUND (A)');
        """
        plan = build_location_tree_from_dump(dump, "Nigeria", "NG")

        unit = plan.nodes_at(LocationLevel.POLLING_UNIT)[0]
        assert unit.name == "OBI'S COMPOUND (A)"
        assert plan.counts()["STATE"] == 1


def _node(node_id, level, parent_id=None, name="node"):
    return LocationNode(id=node_id, level=level, name=name, parent_id=parent_id)


class TestCheckLocationTree:
    """Tests for the integrity report."""

    def test_valid_chain(self):
        nodes = [
            _node("c", LocationLevel.COUNTRY),
            _node("s", LocationLevel.STATE, "c"),
            _node("l", LocationLevel.LGA, "s"),
        ]
        report = check_location_tree(nodes)

        assert report.is_valid
        assert report.counts["LGA"] == 1
        assert report.counts["POLLING_UNIT"] == 0

    def test_missing_parent(self):
        report = check_location_tree([_node("s", LocationLevel.STATE, "gone")])

        assert [p.kind for p in report.problems] == ["missing_parent"]

    def test_non_country_root(self):
        report = check_location_tree([_node("w", LocationLevel.WARD)])

        assert [p.kind for p in report.problems] == ["missing_parent_id"]

    def test_country_with_parent(self):
        nodes = [_node("c1", LocationLevel.COUNTRY), _node("c2", LocationLevel.COUNTRY, "c1")]
        report = check_location_tree(nodes)

        assert [p.kind for p in report.problems] == ["unexpected_parent"]

    def test_wrong_parent_level(self):
        nodes = [
            _node("c", LocationLevel.COUNTRY),
            _node("w", LocationLevel.WARD, "c"),
        ]
        report = check_location_tree(nodes)

        assert [(p.node_id, p.kind) for p in report.problems] == [("w", "wrong_parent_level")]

    def test_cycle_detected(self):
        nodes = [
            _node("a", LocationLevel.STATE, "b"),
            _node("b", LocationLevel.STATE, "a"),
        ]
        report = check_location_tree(nodes)

        assert "cycle" in {p.kind for p in report.problems}
        assert not report.is_valid

    def test_duplicate_id(self):
        nodes = [_node("c", LocationLevel.COUNTRY), _node("c", LocationLevel.COUNTRY)]
        report = check_location_tree(nodes)

        assert [p.kind for p in report.problems] == ["duplicate_id"]
        assert report.total_nodes == 1


class TestSeedLocationTree:
    """Tests for writing the plan."""

    @pytest.mark.asyncio
    async def test_upserts_parents_before_children(self):
        conn = MagicMock()
        conn.executemany = AsyncMock()
        plan = _build()

        counts = await seed_location_tree(conn, plan)

        conn.transaction.assert_called_once()
        tables = [call.args[0].split("INTO")[1].split()[0] for call in conn.executemany.await_args_list]
        assert tables == ["countries", "states", "lgas", "wards", "polling_units"]
        assert all("ON CONFLICT (id) DO UPDATE" in call.args[0] for call in conn.executemany.await_args_list)
        assert counts == plan.counts()

    @pytest.mark.asyncio
    async def test_polling_unit_rows_carry_delimitation(self):
        conn = MagicMock()
        conn.executemany = AsyncMock()

        await seed_location_tree(conn, _build())

        unit_rows = conn.executemany.await_args_list[-1].args[1]
        assert {row[4] for row in unit_rows} == {"AB-01-01-001", "AD-01-01-002"}

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self):
        conn = MagicMock()
        conn.executemany = AsyncMock()

        counts = await seed_location_tree(conn, _build(), dry_run=True)

        conn.transaction.assert_not_called()
        conn.executemany.assert_not_awaited()
        assert counts["POLLING_UNIT"] == 2


@pytest.mark.asyncio
async def test_load_location_nodes_converts_ids():
    country_id, state_id = uuid4(), uuid4()
    conn = MagicMock()
    conn.fetch = AsyncMock(
        return_value=[
            {"id": country_id, "level": "COUNTRY", "name": "Nigeria", "code": "NG", "parent_id": None, "delimitation": None},
            {"id": state_id, "level": "STATE", "name": "ABIA", "code": "AB", "parent_id": country_id, "delimitation": None},
        ]
    )

    nodes = await load_location_nodes(conn)

    assert nodes[1].parent_id == str(country_id)
    assert nodes[1].level is LocationLevel.STATE
    assert check_location_tree(nodes).is_valid
