"""Attendance aggregation: filtering, ordering, paging and statistics.

Everything here is a pure function over :class:`AttendanceRecord` values.
The functions never touch the database and never raise for empty input;
looking a student or class up in the directory (and failing when it is
unknown) is the record store's job.

Two different meanings of ``total`` are in play and are kept as they are:

* student statistics count *sessions* the student appears in;
* class statistics count *student entries* across the class's sessions.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from attendance_types import (
    ABSENT,
    EXCUSED,
    ISO_DATE_FORMAT,
    LATE,
    PRESENT,
    AttendanceFilter,
    AttendanceRecord,
    AttendanceSummary,
    StudentAttendance,
)

WEEKDAYS = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")

# Record fields that may be used for ``sortBy``; all are always-present strings.
SORTABLE_FIELDS = {
    "id": "id",
    "classId": "class_id",
    "className": "class_name",
    "date": "date",
    "teacherId": "teacher_id",
    "teacherName": "teacher_name",
    "createdAt": "created_at",
}


@dataclass(frozen=True)
class Page:
    items: List[Any]
    total: int
    page: int
    limit: int
    total_pages: int

    def pagination(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "totalPages": self.total_pages,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def attendance_rate(present: int, total: int) -> float:
    """Present share of ``total`` as a percentage, ``0`` when there is nothing to count."""

    return (present / total) * 100 if total > 0 else 0.0


def weekday_name(iso_date: str) -> str:
    day = datetime.strptime(iso_date, ISO_DATE_FORMAT).date()
    # isoweekday(): Monday=1 .. Sunday=7, so Sunday lands on index 0.
    return WEEKDAYS[day.isoweekday() % 7]


def tally(students: Iterable[StudentAttendance]) -> AttendanceSummary:
    """Recount a summary from individual student entries."""

    counts = Counter(entry.status for entry in students)
    return AttendanceSummary(
        total=sum(counts.values()),
        present=counts[PRESENT],
        absent=counts[ABSENT],
        late=counts[LATE],
        excused=counts[EXCUSED],
    )


def _breakdown(statuses: Sequence[str]) -> Dict[str, Any]:
    counts = Counter(statuses)
    total = len(statuses)
    return {
        "total": total,
        "present": counts[PRESENT],
        "absent": counts[ABSENT],
        "late": counts[LATE],
        "excused": counts[EXCUSED],
        "rate": attendance_rate(counts[PRESENT], total),
    }


# ---------------------------------------------------------------------------
# Query pipeline
# ---------------------------------------------------------------------------

def _matches(record: AttendanceRecord, query: AttendanceFilter) -> bool:
    if query.class_id and record.class_id != query.class_id:
        return False
    if query.teacher_id and record.teacher_id != query.teacher_id:
        return False
    if query.student_id and not any(
        entry.student_id == query.student_id for entry in record.students
    ):
        return False
    # Any student in the sheet with this status qualifies the whole record.
    if query.status and not any(entry.status == query.status for entry in record.students):
        return False
    if query.start_date and record.date < query.start_date:
        return False
    if query.end_date and record.date > query.end_date:
        return False
    if query.is_makeup_class is not None and record.is_makeup_class != query.is_makeup_class:
        return False
    return True


def filter_records(
    records: Iterable[AttendanceRecord], query: AttendanceFilter
) -> List[AttendanceRecord]:
    """Return the records matching every criterion set on ``query``."""

    return [record for record in records if _matches(record, query)]


def sort_records(
    records: Iterable[AttendanceRecord],
    sort_by: Optional[str],
    sort_order: str = "asc",
) -> List[AttendanceRecord]:
    """Order records by a string field; unknown fields leave the order untouched."""

    records = list(records)
    attribute = SORTABLE_FIELDS.get(sort_by or "")
    if attribute is None:
        return records
    return sorted(
        records,
        key=lambda record: getattr(record, attribute),
        reverse=sort_order == "desc",
    )


def paginate(records: Sequence[Any], page: int, limit: int) -> Page:
    """Slice one 1-indexed page out of ``records``.

    A page before the first or past the last yields no items; clamping is
    left to the caller. ``limit`` must be positive.
    """

    if limit < 1:
        raise ValueError("limit must be at least 1")
    total = len(records)
    start = (page - 1) * limit
    return Page(
        items=list(records[start:start + limit]) if page >= 1 else [],
        total=total,
        page=page,
        limit=limit,
        total_pages=max(1, math.ceil(total / limit)),
    )


def select_records(
    records: Iterable[AttendanceRecord], query: AttendanceFilter
) -> List[AttendanceRecord]:
    """Filter then sort, without paging. Used by the export endpoint."""

    return sort_records(filter_records(records, query), query.sort_by, query.sort_order)


def query_records(records: Iterable[AttendanceRecord], query: AttendanceFilter) -> Page:
    """Filter, then sort, then paginate. The order of the steps matters."""

    return paginate(select_records(records, query), query.page, query.limit)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def compute_student_stats(
    records: Iterable[AttendanceRecord],
    student_id: str,
    student_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Attendance statistics for one student.

    ``total`` everywhere in the result is the number of sessions the
    student was listed in.
    """

    sessions = []
    for record in records:
        entry = record.entry_for(student_id)
        if entry is not None:
            sessions.append((record, entry))

    if student_name is None and sessions:
        student_name = sessions[0][1].student_name

    by_class: Dict[str, List[str]] = {}
    class_names: Dict[str, str] = {}
    by_weekday: Dict[str, List[str]] = {}
    for record, entry in sessions:
        by_class.setdefault(record.class_id, []).append(entry.status)
        class_names.setdefault(record.class_id, record.class_name)
        by_weekday.setdefault(weekday_name(record.date), []).append(entry.status)

    weekday_rows = []
    for weekday in WEEKDAYS:
        statuses = by_weekday.get(weekday)
        if not statuses:
            continue
        row = _breakdown(statuses)
        weekday_rows.append({
            "weekday": weekday,
            "total": row["total"],
            "present": row["present"],
            "absent": row["absent"],
            "rate": row["rate"],
        })

    trends = sorted(
        ({"date": record.date, "status": entry.status} for record, entry in sessions),
        key=lambda point: point["date"],
    )

    return {
        "studentId": student_id,
        "studentName": student_name,
        "overall": _breakdown([entry.status for _, entry in sessions]),
        "byClass": [
            {"classId": class_id, "className": class_names[class_id], **_breakdown(statuses)}
            for class_id, statuses in by_class.items()
        ],
        "byWeekday": weekday_rows,
        "trends": trends,
    }


def compute_class_stats(
    records: Iterable[AttendanceRecord],
    class_id: str,
    class_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Attendance statistics for one class.

    ``overall`` and ``byWeekday`` count individual student entries across
    all sessions; ``byStudent`` counts sessions per student and ``byDate``
    has one row per session.
    """

    sessions = [record for record in records if record.class_id == class_id]
    if class_name is None and sessions:
        class_name = sessions[0].class_name

    all_statuses: List[str] = []
    by_student: Dict[str, List[str]] = {}
    student_names: Dict[str, str] = {}
    by_weekday: Dict[str, List[str]] = {}
    for record in sessions:
        statuses = [entry.status for entry in record.students]
        all_statuses.extend(statuses)
        by_weekday.setdefault(weekday_name(record.date), []).extend(statuses)
        for entry in record.students:
            by_student.setdefault(entry.student_id, []).append(entry.status)
            student_names.setdefault(entry.student_id, entry.student_name)

    by_date = sorted(
        (
            {"date": record.date, **_breakdown([entry.status for entry in record.students])}
            for record in sessions
        ),
        key=lambda row: row["date"],
    )

    weekday_rows = []
    for weekday in WEEKDAYS:
        statuses = by_weekday.get(weekday)
        if not statuses:
            continue
        weekday_rows.append({"weekday": weekday, "rate": _breakdown(statuses)["rate"]})

    return {
        "classId": class_id,
        "className": class_name,
        "overall": _breakdown(all_statuses),
        "byStudent": [
            {
                "studentId": student_id,
                "studentName": student_names[student_id],
                **_breakdown(statuses),
            }
            for student_id, statuses in by_student.items()
        ],
        "byDate": by_date,
        "byWeekday": weekday_rows,
    }


__all__ = [
    "Page",
    "SORTABLE_FIELDS",
    "WEEKDAYS",
    "attendance_rate",
    "compute_class_stats",
    "compute_student_stats",
    "filter_records",
    "paginate",
    "query_records",
    "select_records",
    "sort_records",
    "tally",
    "weekday_name",
]
