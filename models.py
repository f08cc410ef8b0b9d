"""Database models for the Vertex attendance service.

SQLAlchemy (through Flask-SQLAlchemy) is the persistence layer. The models
fall in three groups:

* the directory: :class:`ClassRoom`, :class:`Student`, :class:`Teacher` and
  :class:`StaffUser` (the people who log in to the console);
* attendance: :class:`AttendanceSheet` holds one class session and its
  denormalised summary counts, :class:`AttendanceEntry` one student's status
  within that session;
* notes: :class:`Note` holds free-text staff notes on students and classes.

A unique constraint on ``(class_id, date)`` keeps one sheet per class
session, and one on ``(sheet_id, student_id)`` keeps students unique within
a sheet. ``to_record`` converts a sheet to the plain
:class:`~attendance_types.AttendanceRecord` the aggregator works with.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from flask_sqlalchemy import SQLAlchemy

from attendance_types import (
    AttendanceRecord,
    AttendanceSummary,
    Excuse,
    StudentAttendance,
)

db = SQLAlchemy()


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form the DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return uuid.uuid4().hex


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class ClassRoom(db.Model):
    """A class (course group) listed in the console.

    ``status`` is one of ``active``, ``inactive`` or ``merged``.
    """

    __tablename__ = 'classroom'

    id: str = db.Column(db.String(64), primary_key=True)
    name: str = db.Column(db.String(120), unique=True, nullable=False)
    teacher_id: str = db.Column(db.String(64), db.ForeignKey('teacher.id'), nullable=False)
    level: Optional[str] = db.Column(db.String(40), nullable=True)
    room: Optional[str] = db.Column(db.String(40), nullable=True)
    status: str = db.Column(db.String(20), nullable=False, default='active')

    teacher = db.relationship('Teacher', backref='classes', lazy=True)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'teacherId': self.teacher_id,
            'level': self.level,
            'room': self.room,
            'status': self.status,
        }

    def __repr__(self) -> str:
        return f"<ClassRoom {self.name}>"


class Student(db.Model):
    __tablename__ = 'student'

    id: str = db.Column(db.String(64), primary_key=True)
    first_name: str = db.Column(db.String(80), nullable=False)
    last_name: str = db.Column(db.String(80), nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def to_dict(self) -> dict:
        return {'id': self.id, 'firstName': self.first_name, 'lastName': self.last_name}

    def __repr__(self) -> str:
        return f"<Student {self.full_name}>"


class Teacher(db.Model):
    __tablename__ = 'teacher'

    id: str = db.Column(db.String(64), primary_key=True)
    first_name: str = db.Column(db.String(80), nullable=False)
    last_name: str = db.Column(db.String(80), nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Teacher {self.full_name}>"


class StaffUser(db.Model):
    """A console user. ``role`` is one of the names in :data:`auth.ROLE_PERMISSIONS`."""

    __tablename__ = 'staff_user'

    id: str = db.Column(db.String(64), primary_key=True, default=_new_id)
    username: str = db.Column(db.String(80), unique=True, nullable=False)
    name: str = db.Column(db.String(120), nullable=False)
    email: str = db.Column(db.String(255), unique=True, nullable=False)
    role: str = db.Column(db.String(20), nullable=False)
    status: str = db.Column(db.String(20), nullable=False, default='active')
    password_hash: str = db.Column(db.String(255), nullable=False)
    last_login: Optional[datetime] = db.Column(db.DateTime, nullable=True)
    created_at: datetime = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'username': self.username,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'status': self.status,
            'lastLogin': _iso(self.last_login),
            'createdAt': _iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<StaffUser {self.username} role={self.role}>"


class AttendanceSheet(db.Model):
    """One class session's attendance.

    The four count columns and ``total`` mirror the statuses of ``entries``
    and are rewritten by :meth:`refresh_summary` whenever an entry changes.
    """

    __tablename__ = 'attendance_sheet'

    id: str = db.Column(db.String(64), primary_key=True, default=_new_id)
    class_id: str = db.Column(db.String(64), db.ForeignKey('classroom.id'), nullable=False)
    date: str = db.Column(db.String(10), nullable=False, index=True)  # YYYY-MM-DD
    teacher_id: str = db.Column(db.String(64), db.ForeignKey('teacher.id'), nullable=False)
    is_makeup_class: bool = db.Column(db.Boolean, nullable=False, default=False)
    makeup_class_id: Optional[str] = db.Column(db.String(64), nullable=True)
    created_at: datetime = db.Column(db.DateTime, nullable=False, default=utcnow)
    modified_at: Optional[datetime] = db.Column(db.DateTime, nullable=True)
    modified_by: Optional[str] = db.Column(db.String(64), nullable=True)

    total: int = db.Column(db.Integer, nullable=False, default=0)
    present: int = db.Column(db.Integer, nullable=False, default=0)
    absent: int = db.Column(db.Integer, nullable=False, default=0)
    late: int = db.Column(db.Integer, nullable=False, default=0)
    excused: int = db.Column(db.Integer, nullable=False, default=0)

    classroom = db.relationship('ClassRoom', lazy=True)
    teacher = db.relationship('Teacher', lazy=True)
    entries = db.relationship(
        'AttendanceEntry',
        backref='sheet',
        lazy=True,
        order_by='AttendanceEntry.position',
        cascade='all, delete-orphan',
    )

    __table_args__ = (db.UniqueConstraint('class_id', 'date', name='uix_sheet_class_date'),)

    def refresh_summary(self, summary: AttendanceSummary) -> None:
        self.total = summary.total
        self.present = summary.present
        self.absent = summary.absent
        self.late = summary.late
        self.excused = summary.excused

    def to_record(self) -> AttendanceRecord:
        return AttendanceRecord(
            id=self.id,
            class_id=self.class_id,
            class_name=self.classroom.name,
            date=self.date,
            teacher_id=self.teacher_id,
            teacher_name=self.teacher.full_name,
            students=tuple(entry.to_student_attendance() for entry in self.entries),
            summary=AttendanceSummary(
                total=self.total,
                present=self.present,
                absent=self.absent,
                late=self.late,
                excused=self.excused,
            ),
            is_makeup_class=bool(self.is_makeup_class),
            makeup_class_id=self.makeup_class_id if self.is_makeup_class else None,
            created_at=_iso(self.created_at),
            modified_at=_iso(self.modified_at),
            modified_by=self.modified_by,
        )

    def __repr__(self) -> str:
        return f"<AttendanceSheet class={self.class_id} date={self.date}>"


class AttendanceEntry(db.Model):
    """One student's status within an :class:`AttendanceSheet`.

    The ``excuse_*`` columns are only populated for absent or excused
    entries, and ``arrival_time`` only for late ones.
    """

    __tablename__ = 'attendance_entry'

    id: int = db.Column(db.Integer, primary_key=True)
    sheet_id: str = db.Column(db.String(64), db.ForeignKey('attendance_sheet.id'), nullable=False)
    position: int = db.Column(db.Integer, nullable=False, default=0)
    student_id: str = db.Column(db.String(64), db.ForeignKey('student.id'), nullable=False)
    status: str = db.Column(db.String(20), nullable=False)  # present, absent, late, excused
    arrival_time: Optional[str] = db.Column(db.String(5), nullable=True)  # HH:MM
    notes: Optional[str] = db.Column(db.String(500), nullable=True)

    excuse_reason: Optional[str] = db.Column(db.String(500), nullable=True)
    excuse_document_url: Optional[str] = db.Column(db.String(500), nullable=True)
    excuse_status: Optional[str] = db.Column(db.String(20), nullable=True)
    excuse_verified_by: Optional[str] = db.Column(db.String(64), nullable=True)
    excuse_verified_at: Optional[datetime] = db.Column(db.DateTime, nullable=True)
    excuse_notes: Optional[str] = db.Column(db.String(500), nullable=True)

    student = db.relationship('Student', lazy=True)

    __table_args__ = (db.UniqueConstraint('sheet_id', 'student_id', name='uix_entry_sheet_student'),)

    def clear_excuse(self) -> None:
        self.excuse_reason = None
        self.excuse_document_url = None
        self.excuse_status = None
        self.excuse_verified_by = None
        self.excuse_verified_at = None
        self.excuse_notes = None

    def to_student_attendance(self) -> StudentAttendance:
        excuse = None
        if self.excuse_reason is not None:
            excuse = Excuse(
                reason=self.excuse_reason,
                status=self.excuse_status,
                document_url=self.excuse_document_url,
                verified_by=self.excuse_verified_by,
                verified_at=_iso(self.excuse_verified_at),
                notes=self.excuse_notes,
            )
        return StudentAttendance(
            student_id=self.student_id,
            student_name=self.student.full_name,
            status=self.status,
            arrival_time=self.arrival_time,
            excuse=excuse,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return (f"<AttendanceEntry sheet={self.sheet_id} student={self.student_id} "
                f"status={self.status}>")


class Note(db.Model):
    """A staff note about a student, a class, or both.

    ``modification_history`` keeps one entry per edit with the previous
    values of the fields that changed. JSON columns are replaced, never
    mutated in place, so SQLAlchemy notices the change.
    """

    __tablename__ = 'note'

    id: str = db.Column(db.String(64), primary_key=True, default=_new_id)
    type: str = db.Column(db.String(20), nullable=False)  # academic, behavioral, attendance, general
    visibility: str = db.Column(db.String(20), nullable=False)  # teacher_only, all_staff, manager_only
    content: str = db.Column(db.Text, nullable=False)
    tags: list = db.Column(db.JSON, nullable=False, default=list)
    student_id: Optional[str] = db.Column(db.String(64), db.ForeignKey('student.id'), nullable=True)
    class_id: Optional[str] = db.Column(db.String(64), db.ForeignKey('classroom.id'), nullable=True)
    created_by: str = db.Column(db.String(64), db.ForeignKey('staff_user.id'), nullable=False)
    created_at: datetime = db.Column(db.DateTime, nullable=False, default=utcnow)
    modified_at: datetime = db.Column(db.DateTime, nullable=False, default=utcnow)
    modified_by: Optional[str] = db.Column(db.String(64), db.ForeignKey('staff_user.id'), nullable=True)
    modification_history: list = db.Column(db.JSON, nullable=False, default=list)

    student = db.relationship('Student', lazy=True)
    classroom = db.relationship('ClassRoom', lazy=True)
    author = db.relationship('StaffUser', foreign_keys=[created_by], lazy=True)
    editor = db.relationship('StaffUser', foreign_keys=[modified_by], lazy=True)

    def to_dict(self) -> dict:
        data = {
            'id': self.id,
            'type': self.type,
            'visibility': self.visibility,
            'content': self.content,
            'tags': list(self.tags or []),
            'createdBy': {'id': self.author.id, 'username': self.author.username},
            'createdAt': _iso(self.created_at),
            'modifiedAt': _iso(self.modified_at),
            'modificationHistory': list(self.modification_history or []),
        }
        if self.editor is not None:
            data['modifiedBy'] = {'id': self.editor.id, 'username': self.editor.username}
        if self.student is not None:
            data['student'] = self.student.to_dict()
        if self.classroom is not None:
            data['class'] = {'id': self.classroom.id, 'name': self.classroom.name}
        return data

    def __repr__(self) -> str:
        return f"<Note {self.id} type={self.type}>"
