"""Plain data types shared by the aggregator, the store and the API.

These are read models: the store builds them from ORM rows and the
aggregator consumes them without touching the database. ``to_dict`` renders
the camelCase JSON shape the console front end expects; optional fields
that are unset are omitted rather than sent as ``null``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from errors import ValidationError

PRESENT = "present"
ABSENT = "absent"
LATE = "late"
EXCUSED = "excused"
ATTENDANCE_STATUSES = (PRESENT, ABSENT, LATE, EXCUSED)

# Statuses that may carry an excuse.
EXCUSABLE_STATUSES = (ABSENT, EXCUSED)

EXCUSE_PENDING = "pending"
EXCUSE_APPROVED = "approved"
EXCUSE_REJECTED = "rejected"
EXCUSE_STATUSES = (EXCUSE_PENDING, EXCUSE_APPROVED, EXCUSE_REJECTED)

ISO_DATE_FORMAT = "%Y-%m-%d"


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


def parse_iso_date(value: str, field_name: str = "date") -> str:
    """Validate ``value`` as a zero-padded ``YYYY-MM-DD`` date and return it unchanged.

    ``strptime`` alone also accepts ``2024-1-5``, which would not compare
    equal to ``2024-01-05`` as a string; only the padded form passes.
    """

    try:
        parsed = datetime.strptime(value, ISO_DATE_FORMAT)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field_name} {value!r}, must be YYYY-MM-DD")
    if parsed.strftime(ISO_DATE_FORMAT) != value:
        raise ValidationError(f"Invalid {field_name} {value!r}, must be YYYY-MM-DD")
    return value


def optional_text(value: Any, field_name: str) -> Optional[str]:
    """Return ``value`` when it is a string or ``None``, otherwise reject it."""

    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")
    return value


def validate_status(status: Any) -> str:
    if status not in ATTENDANCE_STATUSES:
        raise ValidationError(
            f"Invalid status {status!r}, expected one of {', '.join(ATTENDANCE_STATUSES)}"
        )
    return status


@dataclass(frozen=True)
class Excuse:
    reason: str
    status: str = EXCUSE_PENDING
    document_url: Optional[str] = None
    verified_by: Optional[str] = None
    verified_at: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "reason": self.reason,
            "documentUrl": self.document_url,
            "status": self.status,
            "verifiedBy": self.verified_by,
            "verifiedAt": self.verified_at,
            "notes": self.notes,
        })

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Excuse":
        return cls(
            reason=data["reason"],
            status=data.get("status", EXCUSE_PENDING),
            document_url=data.get("documentUrl"),
            verified_by=data.get("verifiedBy"),
            verified_at=data.get("verifiedAt"),
            notes=data.get("notes"),
        )


@dataclass(frozen=True)
class StudentAttendance:
    """One student's status within one attendance record."""

    student_id: str
    student_name: str
    status: str
    arrival_time: Optional[str] = None
    excuse: Optional[Excuse] = None
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "studentId": self.student_id,
            "studentName": self.student_name,
            "status": self.status,
            "arrivalTime": self.arrival_time,
            "excuse": self.excuse.to_dict() if self.excuse else None,
            "notes": self.notes,
        })

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StudentAttendance":
        excuse = data.get("excuse")
        return cls(
            student_id=data["studentId"],
            student_name=data["studentName"],
            status=data["status"],
            arrival_time=data.get("arrivalTime"),
            excuse=Excuse.from_dict(excuse) if excuse else None,
            notes=data.get("notes"),
        )


@dataclass(frozen=True)
class AttendanceSummary:
    total: int = 0
    present: int = 0
    absent: int = 0
    late: int = 0
    excused: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "present": self.present,
            "absent": self.absent,
            "late": self.late,
            "excused": self.excused,
        }


@dataclass(frozen=True)
class AttendanceRecord:
    """One class session's attendance sheet."""

    id: str
    class_id: str
    class_name: str
    date: str
    teacher_id: str
    teacher_name: str
    students: Tuple[StudentAttendance, ...]
    summary: AttendanceSummary
    is_makeup_class: bool = False
    makeup_class_id: Optional[str] = None
    created_at: str = ""
    modified_at: Optional[str] = None
    modified_by: Optional[str] = None

    def entry_for(self, student_id: str) -> Optional[StudentAttendance]:
        for entry in self.students:
            if entry.student_id == student_id:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "id": self.id,
            "classId": self.class_id,
            "className": self.class_name,
            "date": self.date,
            "teacherId": self.teacher_id,
            "teacherName": self.teacher_name,
            "students": [entry.to_dict() for entry in self.students],
            "isMakeupClass": self.is_makeup_class,
            "makeupClassId": self.makeup_class_id,
            "createdAt": self.created_at,
            "modifiedAt": self.modified_at,
            "modifiedBy": self.modified_by,
            "summary": self.summary.to_dict(),
        })

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AttendanceRecord":
        return cls(
            id=data["id"],
            class_id=data["classId"],
            class_name=data["className"],
            date=data["date"],
            teacher_id=data["teacherId"],
            teacher_name=data["teacherName"],
            students=tuple(StudentAttendance.from_dict(s) for s in data["students"]),
            summary=AttendanceSummary(**data["summary"]),
            is_makeup_class=bool(data.get("isMakeupClass", False)),
            makeup_class_id=data.get("makeupClassId"),
            created_at=data.get("createdAt", ""),
            modified_at=data.get("modifiedAt"),
            modified_by=data.get("modifiedBy"),
        )


_TRUE_VALUES = {"true", "1", "yes"}
_FALSE_VALUES = {"false", "0", "no"}


def _parse_bool(value: str, field_name: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValidationError(f"{field_name} must be true or false")


def _parse_positive_int(value: str, field_name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer")
    if number < 1:
        raise ValidationError(f"{field_name} must be at least 1")
    return number


def parse_paging(
    args: Mapping[str, str], default_limit: int = 10, max_limit: int = 100
) -> Tuple[int, int, str]:
    """Read ``page``, ``limit`` and ``sortOrder`` from query arguments.

    A ``limit`` above ``max_limit`` is clamped rather than rejected.
    """

    page = _parse_positive_int(args.get("page", 1), "page")
    limit = min(_parse_positive_int(args.get("limit", default_limit), "limit"), max_limit)
    sort_order = (args.get("sortOrder") or "asc").lower()
    if sort_order not in ("asc", "desc"):
        raise ValidationError("sortOrder must be asc or desc")
    return page, limit, sort_order


@dataclass(frozen=True)
class AttendanceFilter:
    """Query for the attendance list and export endpoints.

    Every criterion is optional; the ones that are set are combined with AND.
    """

    class_id: Optional[str] = None
    teacher_id: Optional[str] = None
    student_id: Optional[str] = None
    status: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    is_makeup_class: Optional[bool] = None
    page: int = 1
    limit: int = 10
    sort_by: Optional[str] = None
    sort_order: str = "asc"

    @classmethod
    def from_query(
        cls,
        args: Mapping[str, str],
        default_limit: int = 10,
        max_limit: int = 100,
    ) -> "AttendanceFilter":
        """Build a filter from query-string arguments (camelCase names).

        Raises :class:`~errors.ValidationError` for malformed values. A
        ``limit`` above ``max_limit`` is clamped rather than rejected.
        """

        status = args.get("status") or None
        if status is not None:
            validate_status(status)

        start_date = args.get("startDate") or None
        end_date = args.get("endDate") or None
        if start_date is not None:
            parse_iso_date(start_date, "startDate")
        if end_date is not None:
            parse_iso_date(end_date, "endDate")

        makeup_raw = args.get("isMakeupClass")
        is_makeup_class = None
        if makeup_raw not in (None, ""):
            is_makeup_class = _parse_bool(makeup_raw, "isMakeupClass")

        page, limit, sort_order = parse_paging(args, default_limit, max_limit)

        return cls(
            class_id=args.get("classId") or None,
            teacher_id=args.get("teacherId") or None,
            student_id=args.get("studentId") or None,
            status=status,
            start_date=start_date,
            end_date=end_date,
            is_makeup_class=is_makeup_class,
            page=page,
            limit=limit,
            sort_by=args.get("sortBy") or None,
            sort_order=sort_order,
        )
