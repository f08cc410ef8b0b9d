"""Durable attendance record store.

:class:`AttendanceStore` is the only code that reads or writes attendance
rows. Reads come back as plain :class:`~attendance_types.AttendanceRecord`
values for the aggregator in :mod:`attendance_stats`; writes keep the
sheet's summary counts equal to a fresh tally of its entries.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.orm import joinedload, selectinload

from app_logging import DBTimer, get_logger, log_event
from attendance_stats import compute_class_stats, compute_student_stats, tally
from attendance_types import (
    EXCUSABLE_STATUSES,
    EXCUSE_APPROVED,
    EXCUSE_PENDING,
    EXCUSE_REJECTED,
    LATE,
    AttendanceRecord,
    optional_text,
    parse_iso_date,
    validate_status,
)
from auth import Principal
from errors import ConflictError, NotFoundError, ValidationError
from models import (
    AttendanceEntry,
    AttendanceSheet,
    ClassRoom,
    Student,
    db,
    utcnow,
)

_logger = get_logger("vertex.attendance")


def _validate_arrival_time(status: str, arrival_time: Optional[str]) -> Optional[str]:
    if arrival_time in (None, ""):
        return None
    if status != LATE:
        raise ValidationError("arrivalTime is only allowed for late students")
    if not isinstance(arrival_time, str):
        raise ValidationError("arrivalTime must be a string")
    try:
        datetime.strptime(arrival_time, "%H:%M")
    except ValueError:
        raise ValidationError(f"Invalid arrivalTime {arrival_time!r}, must be HH:MM")
    return arrival_time


def _validate_excuse(status: str, excuse: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    if excuse is None:
        return None
    if not isinstance(excuse, Mapping):
        raise ValidationError("excuse must be an object")
    if not excuse:
        return None
    if status not in EXCUSABLE_STATUSES:
        raise ValidationError("An excuse can only be attached to absent or excused students")
    reason = optional_text(excuse.get("reason"), "reason")
    if not (reason or "").strip():
        raise ValidationError("An excuse needs a reason")
    optional_text(excuse.get("documentUrl"), "documentUrl")
    optional_text(excuse.get("notes"), "notes")
    return excuse


class AttendanceStore:
    """Reads and writes attendance sheets through the SQLAlchemy session."""

    def __init__(self, session=None) -> None:
        self.session = session if session is not None else db.session

    # -- directory ---------------------------------------------------------

    def list_classes(self) -> List[Dict[str, Any]]:
        with DBTimer():
            classes = (ClassRoom.query.options(joinedload(ClassRoom.teacher))
                       .order_by(ClassRoom.name).all())
        return [
            {**classroom.to_dict(), 'teacherName': classroom.teacher.full_name}
            for classroom in classes
        ]

    def list_students(self) -> List[Dict[str, Any]]:
        with DBTimer():
            students = Student.query.order_by(Student.last_name, Student.first_name).all()
        return [student.to_dict() for student in students]

    def get_class(self, class_id: str) -> ClassRoom:
        classroom = self.session.get(ClassRoom, class_id)
        if classroom is None:
            raise NotFoundError(f"Class {class_id} not found")
        return classroom

    def get_student(self, student_id: str) -> Student:
        student = self.session.get(Student, student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} not found")
        return student

    # -- reads -------------------------------------------------------------

    def list_records(self, class_id: Optional[str] = None) -> List[AttendanceRecord]:
        """Every attendance record, oldest session first."""

        query = AttendanceSheet.query.options(
            joinedload(AttendanceSheet.classroom),
            joinedload(AttendanceSheet.teacher),
            selectinload(AttendanceSheet.entries).joinedload(AttendanceEntry.student),
        )
        if class_id is not None:
            query = query.filter_by(class_id=class_id)
        with DBTimer():
            sheets = query.order_by(AttendanceSheet.date, AttendanceSheet.created_at).all()
        return [sheet.to_record() for sheet in sheets]

    def student_stats(self, student_id: str) -> Dict[str, Any]:
        student = self.get_student(student_id)
        return compute_student_stats(self.list_records(), student_id, student.full_name)

    def class_stats(self, class_id: str) -> Dict[str, Any]:
        classroom = self.get_class(class_id)
        return compute_class_stats(self.list_records(class_id=class_id), class_id, classroom.name)

    # -- writes ------------------------------------------------------------

    def _sheet_for(self, class_id: str, date: str) -> Tuple[AttendanceSheet, bool]:
        """Return the class's sheet for ``date``, creating it when missing."""

        classroom = self.session.get(ClassRoom, class_id)
        if classroom is None:
            raise ValidationError(f"Cannot record attendance for unknown class {class_id}")
        sheet = AttendanceSheet.query.filter_by(class_id=class_id, date=date).first()
        if sheet is not None:
            return sheet, False
        sheet = AttendanceSheet(
            class_id=class_id,
            date=date,
            teacher_id=classroom.teacher_id,
            classroom=classroom,
            teacher=classroom.teacher,
            is_makeup_class=False,
            created_at=utcnow(),
        )
        self.session.add(sheet)
        return sheet, True

    def _existing_sheet(self, class_id: str, date: str) -> AttendanceSheet:
        sheet = AttendanceSheet.query.filter_by(class_id=class_id, date=date).first()
        if sheet is None:
            raise NotFoundError(f"No attendance recorded for class {class_id} on {date}")
        return sheet

    @staticmethod
    def _entry(sheet: AttendanceSheet, student_id: str) -> Optional[AttendanceEntry]:
        for entry in sheet.entries:
            if entry.student_id == student_id:
                return entry
        return None

    def _existing_entry(self, sheet: AttendanceSheet, student_id: str) -> AttendanceEntry:
        entry = self._entry(sheet, student_id)
        if entry is None:
            raise NotFoundError(
                f"Student {student_id} has no attendance for class {sheet.class_id} on {sheet.date}"
            )
        return entry

    def _apply_mark(
        self,
        sheet: AttendanceSheet,
        student: Student,
        status: str,
        arrival_time: Optional[str],
        excuse: Optional[Mapping[str, Any]],
        notes: Optional[str],
    ) -> None:
        entry = self._entry(sheet, student.id)
        if entry is None:
            entry = AttendanceEntry(student_id=student.id, student=student, position=len(sheet.entries))
            sheet.entries.append(entry)

        entry.status = status
        entry.arrival_time = arrival_time
        if notes is not None:
            entry.notes = notes or None
        if status not in EXCUSABLE_STATUSES:
            entry.clear_excuse()
        if excuse:
            entry.clear_excuse()
            entry.excuse_reason = str(excuse["reason"]).strip()
            entry.excuse_document_url = excuse.get("documentUrl") or None
            entry.excuse_notes = excuse.get("notes") or None
            entry.excuse_status = EXCUSE_PENDING

    def _finish(self, sheet: AttendanceSheet, created: bool, principal: Principal) -> AttendanceRecord:
        sheet.refresh_summary(tally(entry.to_student_attendance() for entry in sheet.entries))
        if not created:
            sheet.modified_at = utcnow()
            sheet.modified_by = principal.user_id
        self.session.commit()
        return sheet.to_record()

    def mark_attendance(
        self,
        class_id: str,
        date: str,
        student_id: str,
        status: str,
        principal: Principal,
        arrival_time: Optional[str] = None,
        excuse: Optional[Mapping[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> AttendanceRecord:
        """Record one student's status, creating the session's sheet if needed."""

        parse_iso_date(date)
        validate_status(status)
        arrival_time = _validate_arrival_time(status, arrival_time)
        excuse = _validate_excuse(status, excuse)
        notes = optional_text(notes, "notes")
        student = self.session.get(Student, student_id)
        if student is None:
            raise ValidationError(f"Cannot record attendance for unknown student {student_id}")

        sheet, created = self._sheet_for(class_id, date)
        self._apply_mark(sheet, student, status, arrival_time, excuse, notes)
        record = self._finish(sheet, created, principal)
        log_event(
            _logger,
            "attendance_marked",
            record_id=record.id,
            class_id=class_id,
            date=date,
            student_id=student_id,
            attendance_status=status,
        )
        return record

    def bulk_mark_attendance(
        self,
        class_id: str,
        date: str,
        marks: Sequence[Mapping[str, Any]],
        principal: Principal,
        is_makeup_class: Optional[bool] = None,
        makeup_class_id: Optional[str] = None,
    ) -> AttendanceRecord:
        """Record the statuses of several students in one session.

        ``marks`` items use the request payload's keys (``studentId``,
        ``status``, optional ``arrivalTime`` and ``notes``). The batch is
        validated as a whole before anything is written.
        """

        parse_iso_date(date)
        if not marks:
            raise ValidationError("records must be a non-empty list")

        prepared = []
        seen = set()
        for position, mark in enumerate(marks):
            if not isinstance(mark, Mapping):
                raise ValidationError(f"records[{position}] must be an object")
            student_id = mark.get("studentId")
            if not student_id:
                raise ValidationError(f"records[{position}] is missing studentId")
            if not isinstance(student_id, str):
                raise ValidationError(f"records[{position}].studentId must be a string")
            if student_id in seen:
                raise ValidationError(f"Student {student_id} appears more than once")
            seen.add(student_id)
            status = validate_status(mark.get("status"))
            arrival_time = _validate_arrival_time(status, mark.get("arrivalTime"))
            notes = optional_text(mark.get("notes"), f"records[{position}].notes")
            student = self.session.get(Student, student_id)
            if student is None:
                raise ValidationError(f"Cannot record attendance for unknown student {student_id}")
            prepared.append((student, status, arrival_time, notes))

        makeup_class_id = optional_text(makeup_class_id, "makeupClassId")
        if is_makeup_class and makeup_class_id:
            if makeup_class_id == class_id:
                raise ValidationError("A makeup class cannot replace a session of its own class")
            if self.session.get(ClassRoom, makeup_class_id) is None:
                raise ValidationError(f"Unknown original class {makeup_class_id}")

        sheet, created = self._sheet_for(class_id, date)
        if is_makeup_class is not None:
            sheet.is_makeup_class = bool(is_makeup_class)
            sheet.makeup_class_id = makeup_class_id if is_makeup_class else None
        for student, status, arrival_time, notes in prepared:
            self._apply_mark(sheet, student, status, arrival_time, None, notes)
        record = self._finish(sheet, created, principal)
        log_event(
            _logger,
            "attendance_bulk_marked",
            record_id=record.id,
            class_id=class_id,
            date=date,
            entries=len(prepared),
        )
        return record

    def add_excuse(
        self,
        class_id: str,
        date: str,
        student_id: str,
        reason: str,
        principal: Principal,
        document_url: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> AttendanceRecord:
        """Attach an excuse to an absent or excused entry; it starts as pending."""

        parse_iso_date(date)
        sheet = self._existing_sheet(class_id, date)
        entry = self._existing_entry(sheet, student_id)
        excuse = _validate_excuse(
            entry.status, {"reason": reason, "documentUrl": document_url, "notes": notes}
        )
        self._apply_mark(sheet, entry.student, entry.status, entry.arrival_time, excuse, None)
        record = self._finish(sheet, False, principal)
        log_event(_logger, "excuse_added", record_id=record.id, class_id=class_id, date=date,
                  student_id=student_id)
        return record

    def verify_excuse(
        self,
        class_id: str,
        date: str,
        student_id: str,
        decision: str,
        principal: Principal,
    ) -> AttendanceRecord:
        """Approve or reject a pending excuse."""

        if decision not in (EXCUSE_APPROVED, EXCUSE_REJECTED):
            raise ValidationError("status must be approved or rejected")
        parse_iso_date(date)
        sheet = self._existing_sheet(class_id, date)
        entry = self._existing_entry(sheet, student_id)
        if entry.excuse_reason is None:
            raise NotFoundError(f"Student {student_id} has no excuse on {date}")
        if entry.excuse_status != EXCUSE_PENDING:
            raise ConflictError(f"Excuse was already {entry.excuse_status}")

        entry.excuse_status = decision
        entry.excuse_verified_by = principal.user_id
        entry.excuse_verified_at = utcnow()
        record = self._finish(sheet, False, principal)
        log_event(
            _logger,
            "excuse_verified",
            record_id=record.id,
            class_id=class_id,
            date=date,
            student_id=student_id,
            decision=decision,
        )
        return record


__all__ = ["AttendanceStore"]
