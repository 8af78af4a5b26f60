#!/usr/bin/env python3
"""
Seed the location tree (country, states, LGAs, wards, polling units) from a
legacy SQL dump.

Usage:
    python scripts/seed_locations.py path/to/dump.sql --dry-run
    python scripts/seed_locations.py path/to/dump.sql

Node ids are derived from the code path, so running the seed twice updates
rows in place instead of duplicating them. The tree is checked before any
write and the run aborts if it is inconsistent.
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from mobilizer.core.config import get_settings
from mobilizer.core.database import close_db_pool, get_db_connection, init_db_pool
from mobilizer.core.logging_config import get_logger, setup_logging
from mobilizer.services.locations import (
    LocationSeedPlan,
    build_location_tree_from_dump,
    check_location_tree,
    seed_location_tree,
)

logger = get_logger(__name__)


def print_plan(plan: LocationSeedPlan, limit: int) -> None:
    print("=" * 60)
    print("LOCATION SEED PLAN")
    print("=" * 60)
    for level, count in plan.counts().items():
        print(f"  {level:<14} {count}")
    print()

    sections = [
        ("Unknown states referenced", plan.missing_states),
        ("Unknown LGAs referenced", plan.missing_lgas),
        ("Unknown wards referenced", plan.missing_wards),
    ]
    for title, values in sections:
        if values:
            print(f"⚠️  {title}: {len(values)}")
            for value in values[:limit]:
                print(f"    {value}")

    if plan.repeated_delimitations:
        print(f"⚠️  Repeated delimitations (first kept): {len(plan.repeated_delimitations)}")
        for entry in plan.repeated_delimitations[:limit]:
            print(f"    {entry.value} x{entry.count}")

    if plan.code_collisions:
        print(f"⚠️  Unit code collisions (first kept): {len(plan.code_collisions)}")
        for collision in plan.code_collisions[:limit]:
            print(f"    {collision.code}: {', '.join(collision.delimitations)}")

    if plan.skipped:
        print(f"⚠️  Skipped rows: {len(plan.skipped)}")
        for skipped in plan.skipped[:limit]:
            print(f"    #{skipped.index}: {skipped.reason}")
    print()


async def seed(dump: Path, dry_run: bool) -> int:
    settings = get_settings()
    plan = build_location_tree_from_dump(
        dump.read_text(encoding="utf-8", errors="replace"),
        country_name=settings.LOCATION_COUNTRY_NAME,
        country_code=settings.LOCATION_COUNTRY_CODE,
    )
    print_plan(plan, settings.DELIMITATION_SAMPLE_LIMIT)

    report = check_location_tree(plan.nodes)
    if not report.is_valid:
        print(f"❌ Location tree is inconsistent ({len(report.problems)} problem(s)); nothing written")
        for problem in report.problems[: settings.DELIMITATION_SAMPLE_LIMIT]:
            print(f"    {problem.kind}: {problem.node_id} {problem.detail}")
        return 1

    if dry_run:
        print("ℹ️  Dry run: nothing written")
        return 0

    await init_db_pool(settings)
    try:
        async with get_db_connection() as conn:
            counts = await seed_location_tree(conn, plan)
    finally:
        await close_db_pool()

    print("✅ Location tree seeded:")
    for level, count in counts.items():
        print(f"  {level:<14} {count}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seed the location tree from a legacy SQL dump")
    parser.add_argument("dump", type=Path, help="SQL dump with states, LGA, ward and pu_data tables")
    parser.add_argument("--dry-run", action="store_true", help="build and check the tree without writing")
    args = parser.parse_args(argv)

    if not args.dump.is_file():
        print(f"❌ Dump not found: {args.dump}", file=sys.stderr)
        return 2

    return asyncio.run(seed(args.dump, args.dry_run))


if __name__ == "__main__":
    setup_logging()
    sys.exit(main())
