#!/usr/bin/env python3
"""
Report repeated polling-unit delimitations in a legacy SQL dump.

Usage:
    python scripts/check_delimitations.py path/to/dump.sql
    python scripts/check_delimitations.py path/to/dump.sql --json
    python scripts/check_delimitations.py path/to/dump.sql --limit 50

Repeated values are reported, not treated as a failure: the exit status is 0
whenever the report runs and 2 when the dump file is missing.
Nothing is written anywhere.
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from mobilizer.core.config import get_settings
from mobilizer.core.logging_config import setup_logging
from mobilizer.services.delimitations import (
    DelimitationReport,
    validate_delimitations_from_dump,
)


def print_report(report: DelimitationReport, limit: int) -> None:
    print("=" * 60)
    print("DELIMITATION CHECK")
    print("=" * 60)
    print(f"Total rows:        {report.total_rows}")
    print(f"Parsed rows:       {report.parsed_rows}")
    print(f"Unique values:     {report.unique_count}")
    print(f"Duplicated values: {report.duplicate_count}")
    print(f"Duplicate rows:    {report.duplicate_rows}")
    print(f"Unparseable rows:  {report.unparseable_count}")
    print()

    if report.duplicates:
        print(f"Top {min(limit, len(report.duplicates))} repeated delimitations:")
        for entry in report.duplicates[:limit]:
            print(f"  {entry.value:<20} x{entry.count}")
        print()

    if report.skipped:
        print(f"First {min(limit, len(report.skipped))} unparseable rows:")
        for skipped in report.skipped[:limit]:
            print(f"  #{skipped.index}: {skipped.reason} | {skipped.raw}")
        print()

    if report.has_duplicates:
        print("⚠️  Delimitations are not unique")
    else:
        print("✅ All delimitations are unique")


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("dump", type=Path, help="SQL dump containing the pu_data table")
    parser.add_argument("--json", action="store_true", help="print the report as JSON")
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.DELIMITATION_SAMPLE_LIMIT,
        help="how many duplicates and skipped rows to list",
    )
    args = parser.parse_args(argv)

    if not args.dump.is_file():
        print(f"❌ Dump not found: {args.dump}", file=sys.stderr)
        return 2

    report = validate_delimitations_from_dump(args.dump.read_text(encoding="utf-8", errors="replace"))

    if args.json:
        print(json.dumps(report.model_dump(), indent=2))
    else:
        print_report(report, args.limit)

    return 0


if __name__ == "__main__":
    setup_logging()
    sys.exit(main())
