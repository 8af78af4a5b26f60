"""Duplicate report for polling-unit delimitation reference data.

Duplicated delimitations are informational: the report lists them but
nothing is rejected and nothing is written. Rows that cannot be parsed are
counted separately and never reach the tallies.
"""

import re
from collections import Counter
from typing import Any, Iterable, Sequence

from pydantic import BaseModel

from mobilizer.core.errors import ValidationSkipped
from mobilizer.core.logging_config import get_logger
from mobilizer.services.sql_dump import extract_table_rows, parse_values_block

logger = get_logger(__name__)

PU_DATA_TABLE = "pu_data"

_ID_RE = re.compile(r"\d+")
_ID_FIELDS = ("country_code", "state_code", "lga_code", "ward_code")
_RAW_PREVIEW = 200


class DelimitationRecord(BaseModel):
    """One parsed ``(country, state, lga, ward, delimitation)`` row."""

    country_code: int
    state_code: int
    lga_code: int
    ward_code: int
    delimitation: str


class DuplicateValue(BaseModel):
    value: str
    count: int


class DelimitationReport(BaseModel):
    """Counts for a batch of delimitation rows."""

    total_rows: int
    parsed_rows: int
    unique_count: int
    duplicate_count: int
    duplicate_rows: int
    duplicates: list[DuplicateValue]
    unparseable_count: int
    skipped: list[ValidationSkipped]

    @property
    def has_duplicates(self) -> bool:
        return self.duplicate_count > 0


def _preview(raw: Any) -> str:
    text = raw if isinstance(raw, str) else repr(raw)
    return text[:_RAW_PREVIEW]


def _parse_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and _ID_RE.fullmatch(value.strip()):
        return int(value.strip())
    return None


def _as_fields(raw: Any) -> Sequence[Any] | None:
    """Accept a positional sequence or the tuple text as it appears in a dump."""
    if isinstance(raw, str):
        rows = parse_values_block(raw)
        return rows[0] if len(rows) == 1 else None
    if isinstance(raw, (list, tuple)):
        return raw
    return None


def parse_delimitation_record(
    raw: Any, index: int
) -> DelimitationRecord | ValidationSkipped:
    """Parse one raw row, or describe why it was skipped."""
    fields = _as_fields(raw)
    if fields is None:
        return ValidationSkipped(index=index, reason="not a positional record", raw=_preview(raw))

    if len(fields) < 5:
        return ValidationSkipped(
            index=index,
            reason=f"expected at least 5 fields, got {len(fields)}",
            raw=_preview(raw),
        )

    ids: dict[str, int] = {}
    for name, value in zip(_ID_FIELDS, fields[:4]):
        parsed = _parse_id(value)
        if parsed is None:
            return ValidationSkipped(
                index=index, reason=f"{name} is not numeric: {value!r}", raw=_preview(raw)
            )
        ids[name] = parsed

    delimitation = fields[4]
    # the dump reader yields unquoted numbers as text
    if isinstance(delimitation, int) and not isinstance(delimitation, bool):
        delimitation = str(delimitation)
    if not isinstance(delimitation, str) or not delimitation.strip():
        return ValidationSkipped(index=index, reason="missing delimitation", raw=_preview(raw))

    return DelimitationRecord(delimitation=delimitation.strip(), **ids)


def validate_delimitations(records: Iterable[Any]) -> DelimitationReport:
    """
    Count delimitation values across a batch.

    Args:
        records: Raw rows, each a positional sequence or tuple text.

    Returns:
        DelimitationReport. ``duplicates`` is ordered by count (desc) then
        value, so any permutation of the same rows yields the same report.
    """
    counts: Counter[str] = Counter()
    skipped: list[ValidationSkipped] = []
    total = 0

    for index, raw in enumerate(records):
        total += 1
        parsed = parse_delimitation_record(raw, index)
        if isinstance(parsed, ValidationSkipped):
            logger.debug(f"Skipping row {index}: {parsed.reason}")
            skipped.append(parsed)
            continue
        counts[parsed.delimitation] += 1

    duplicates = sorted(
        (DuplicateValue(value=value, count=count) for value, count in counts.items() if count > 1),
        key=lambda d: (-d.count, d.value),
    )
    parsed_rows = sum(counts.values())

    report = DelimitationReport(
        total_rows=total,
        parsed_rows=parsed_rows,
        unique_count=len(counts),
        duplicate_count=len(duplicates),
        duplicate_rows=parsed_rows - len(counts),
        duplicates=duplicates,
        unparseable_count=len(skipped),
        skipped=skipped,
    )

    logger.info(
        f"Delimitation check: {report.total_rows} rows, {report.unique_count} unique, "
        f"{report.duplicate_count} duplicated, {report.unparseable_count} unparseable"
    )
    return report


def validate_delimitations_from_dump(sql_text: str) -> DelimitationReport:
    """Run the report over the ``pu_data`` rows of a reference SQL dump."""
    return validate_delimitations(extract_table_rows(sql_text, PU_DATA_TABLE))
