"""Reader for the MySQL ``location_lookups.sql`` reference dump.

Only ``INSERT INTO `table` ... VALUES (...), (...);`` statements are read.
Values are split with a quote-aware scanner, so names such as
``'ESIT EKET (UQUO)'`` or ``'OBI''S COMPOUND'`` survive intact.
"""

import re

from mobilizer.core.logging_config import get_logger

logger = get_logger(__name__)

Row = list[str | None]

_QUOTES = ("'", '"')
_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "0": "\0"}
_VALUES_RE = re.compile(r"\bVALUES\b\s*", re.IGNORECASE)


def _insert_re(table: str) -> re.Pattern[str]:
    return re.compile(rf"INSERT\s+INTO\s+`?{re.escape(table)}`?[\s(]", re.IGNORECASE)


def _skip_quoted(text: str, i: int, quote_char: str) -> int:
    """Return the index just past the quoted literal opened at ``i - 1``."""
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote_char:
            if i + 1 < n and text[i + 1] == quote_char:
                i += 2
                continue
            return i + 1
        i += 1
    return n


def _statement_end(text: str, start: int) -> int:
    """Index of the first unquoted ``;`` at or after ``start``."""
    i = start
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in _QUOTES:
            i = _skip_quoted(text, i + 1, ch)
            continue
        if ch == ";":
            return i
        i += 1
    return n


def _finish_field(buf: list[str], quoted: bool) -> str | None:
    text = "".join(buf)
    if quoted:
        return text
    text = text.strip()
    if text.upper() == "NULL":
        return None
    return text


def split_fields(content: str) -> Row:
    """Split the inside of one tuple into cleaned values."""
    if not content.strip():
        return []

    fields: Row = []
    buf: list[str] = []
    quoted = False
    in_quotes = False
    quote_char = ""
    i = 0
    n = len(content)

    while i < n:
        ch = content[i]
        if in_quotes:
            if ch == "\\" and i + 1 < n:
                nxt = content[i + 1]
                buf.append(_ESCAPES.get(nxt, nxt))
                i += 2
                continue
            if ch == quote_char:
                if i + 1 < n and content[i + 1] == quote_char:
                    buf.append(ch)
                    i += 2
                    continue
                in_quotes = False
            else:
                buf.append(ch)
        elif ch in _QUOTES and not quoted:
            # whitespace before the opening quote is not part of the value
            buf = []
            in_quotes = True
            quoted = True
            quote_char = ch
        elif ch == ",":
            fields.append(_finish_field(buf, quoted))
            buf = []
            quoted = False
        elif not quoted:
            buf.append(ch)
        i += 1

    fields.append(_finish_field(buf, quoted))
    return fields


def parse_values_block(block: str) -> list[Row]:
    """Split ``(a, b), (c, d)`` into rows. Parentheses inside quotes are data."""
    rows: list[Row] = []
    i = 0
    n = len(block)

    while i < n:
        if block[i] != "(":
            i += 1
            continue

        i += 1
        start = i
        depth = 1
        while i < n and depth:
            ch = block[i]
            if ch in _QUOTES:
                i = _skip_quoted(block, i + 1, ch)
                continue
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
            i += 1

        end = i - 1 if depth == 0 else n
        rows.append(split_fields(block[start:end]))

    return rows


def iter_values_blocks(sql_text: str, table: str):
    """Yield the VALUES section of every INSERT statement for ``table``."""
    pattern = _insert_re(table)
    pos = 0
    while True:
        match = pattern.search(sql_text, pos)
        if not match:
            return
        values = _VALUES_RE.search(sql_text, match.end())
        if not values:
            return
        end = _statement_end(sql_text, values.end())
        yield sql_text[values.end():end]
        pos = end + 1


def extract_table_rows(sql_text: str, table: str) -> list[Row]:
    """Collect all rows inserted into ``table`` across the dump."""
    rows: list[Row] = []
    for block in iter_values_blocks(sql_text, table):
        rows.extend(parse_values_block(block))
    logger.debug(f"Extracted {len(rows)} rows from `{table}`")
    return rows
