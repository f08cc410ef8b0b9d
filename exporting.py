"""CSV and JSON renderings of attendance records for download."""

from __future__ import annotations

import csv
import io
import json
from typing import Iterable, List

from attendance_types import AttendanceRecord
from errors import ValidationError

CSV_HEADERS = ("Class", "Date", "Student", "Status", "Arrival Time", "Notes")

EXPORT_FORMATS = {
    "csv": "text/csv",
    "json": "application/json",
}


def to_json(records: Iterable[AttendanceRecord]) -> str:
    return json.dumps([record.to_dict() for record in records], indent=2)


def to_csv(records: Iterable[AttendanceRecord]) -> str:
    """One row per student entry, in record order."""

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for record in records:
        for entry in record.students:
            writer.writerow([
                record.class_name,
                record.date,
                entry.student_name,
                entry.status,
                entry.arrival_time or "",
                entry.notes or "",
            ])
    return buffer.getvalue()


def export_records(records: List[AttendanceRecord], export_format: str) -> str:
    if export_format == "json":
        return to_json(records)
    if export_format == "csv":
        return to_csv(records)
    raise ValidationError(f"Unsupported export format {export_format!r}, use csv or json")


__all__ = ["CSV_HEADERS", "EXPORT_FORMATS", "export_records", "to_csv", "to_json"]
