"""CSV export of records, including their augmentation results."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from typing import Any

from recordhub.records.models import Record

AUGMENTATION_COLUMNS = ("has_ai_analysis", "last_augmented", "ai_analysis")


def export_headers(records: Sequence[Record], available_fields: Sequence[str]) -> list[str]:
    """Schema fields, then custom properties seen on ``records``, then AI columns."""
    headers = list(available_fields)
    seen = set(headers)
    for record in records:
        for key in record.custom_properties:
            if key not in seen:
                seen.add(key)
                headers.append(key)
    return headers + list(AUGMENTATION_COLUMNS)


def export_csv(records: Iterable[Record], available_fields: Sequence[str]) -> str:
    """Render records as CSV text.

    Fields containing a comma, quote or newline are quoted, with embedded
    quotes doubled.
    """
    records = list(records)
    headers = export_headers(records, available_fields)
    data_headers = headers[: -len(AUGMENTATION_COLUMNS)]

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(headers)
    for record in records:
        row = [_format_value(record.value(key)) for key in data_headers]
        row.append("Yes" if record.has_analysis else "No")
        row.append(record.last_augmented.isoformat() if record.last_augmented else "")
        row.append(record.augmentation_results or "")
        writer.writerow(row)
    return buffer.getvalue()


def export_filename(day: date | None = None) -> str:
    day = day or datetime.now().date()
    return f"records-export-{day.isoformat()}.csv"


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (list, tuple)):
        return "; ".join(_format_value(item) for item in value)
    return str(value)
