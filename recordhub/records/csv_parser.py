"""CSV import parser.

Turns raw CSV text into an ordered list of field mappings. The dialect is
fixed: ``,`` separates fields, ``"`` quotes them, ``""`` is a literal quote
inside a quoted field, and newlines only end a row outside quotes.
"""

from __future__ import annotations

import math
import re

from recordhub.telemetry.errors import FormatError

REQUIRED_FIELD = "name"

FieldValue = str | int | float

_INT_RE = re.compile(r"[+-]?(?:0|[1-9]\d*)")
_FLOAT_RE = re.compile(r"[+-]?(?:(?:0|[1-9]\d*)(?:\.\d+)?|\.\d+)(?:[eE][+-]?\d+)?")


def parse_csv(text: str) -> list[dict[str, FieldValue]]:
    """Parse CSV text into records keyed by the header row.

    Raises FormatError for blank input, a header without data rows, or a
    header that lacks the ``name`` column.
    """
    if not text or not text.strip():
        raise FormatError("CSV input is empty")

    rows = _split_rows(text.strip())
    if len(rows) < 2:
        raise FormatError("CSV must have at least a header row and one data row")

    headers = rows[0]
    if REQUIRED_FIELD not in headers:
        raise FormatError(f'CSV must contain a "{REQUIRED_FIELD}" column')

    records: list[dict[str, FieldValue]] = []
    for values in rows[1:]:
        record: dict[str, FieldValue] = {}
        for index, header in enumerate(headers):
            raw = values[index] if index < len(values) else ""
            record[header] = coerce_value(raw)
        records.append(record)
    return records


def coerce_value(value: str) -> FieldValue:
    """Return ``value`` as a number when that is lossless, else unchanged."""
    candidate = value.strip()
    if not candidate:
        return value
    if _INT_RE.fullmatch(candidate):
        return int(candidate)
    if _FLOAT_RE.fullmatch(candidate):
        number = float(candidate)
        if math.isfinite(number):
            return number
    return value


def _split_rows(text: str) -> list[list[str]]:
    # A line holding only whitespace is skipped; a quoted empty field is a row.
    rows: list[list[str]] = []
    row: list[str] = []
    field: list[str] = []
    in_quotes = False
    has_content = False
    i = 0
    length = len(text)

    while i < length:
        char = text[i]
        if not char.isspace():
            has_content = True
        if char == '"':
            if in_quotes and i + 1 < length and text[i + 1] == '"':
                field.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            row.append("".join(field).strip())
            field = []
        elif char == "\n" and not in_quotes:
            row.append("".join(field).strip())
            if has_content:
                rows.append(row)
            row, field = [], []
            has_content = False
        elif char == "\r" and not in_quotes and i + 1 < length and text[i + 1] == "\n":
            pass
        else:
            field.append(char)
        i += 1

    row.append("".join(field).strip())
    if has_content:
        rows.append(row)
    return rows
