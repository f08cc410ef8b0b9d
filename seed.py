"""Seed the database with demo data.

Populates the directory (classes, students, teachers and console users), a
few staff notes, and attendance sheets for the last 30 days. Generation is
deterministic for a given random seed, so demo environments can be rebuilt
identically.

Usage:
    python seed.py [--records 50] [--random-seed 42]

Demo logins (password ``Vertex123!`` for all of them):
``admin@vertex.edu``, ``manager@vertex.edu``, ``secretary@vertex.edu`` and
``teacher@vertex.edu``.
"""

from __future__ import annotations

import argparse
import random
from datetime import date, datetime, timedelta
from typing import List, Optional

from flask import Flask
from werkzeug.security import generate_password_hash

from attendance_stats import tally
from attendance_types import (
    ATTENDANCE_STATUSES,
    EXCUSABLE_STATUSES,
    EXCUSE_PENDING,
    EXCUSE_STATUSES,
    LATE,
)
from config import Config
from models import (
    AttendanceEntry,
    AttendanceSheet,
    ClassRoom,
    Note,
    StaffUser,
    Student,
    Teacher,
    db,
    utcnow,
)

DEMO_PASSWORD = 'Vertex123!'

TEACHERS = [
    ('teacher1', 'David', 'Miller'),
    ('teacher2', 'Sarah', 'Wilson'),
]

CLASSES = [
    ('class1', 'Mathematics 101', 'teacher1', 'Beginner', 'Room A101', 'active'),
    ('class2', 'Physics Fundamentals', 'teacher2', 'Advanced', 'Lab B202', 'active'),
    ('class3', 'English Literature', 'teacher1', 'Intermediate', 'Room C103', 'inactive'),
]

STUDENTS = [
    ('student1', 'John', 'Doe'),
    ('student2', 'Jane', 'Smith'),
    ('student3', 'Bob', 'Johnson'),
    ('student4', 'Alice', 'Williams'),
    ('student5', 'Charlie', 'Brown'),
]

STAFF = [
    ('admin', 'Admin User', 'admin@vertex.edu', 'SuperAdmin', 'active'),
    ('manager1', 'Manager User', 'manager@vertex.edu', 'Manager', 'active'),
    ('secretary1', 'Secretary User', 'secretary@vertex.edu', 'Secretary', 'active'),
    ('teacher1', 'Teacher User', 'teacher@vertex.edu', 'Teacher', 'active'),
]

NOTES = [
    ('teacher1', 'student1', 'class1', 'academic', 'all_staff',
     'Strong progress on algebra homework this month.', ['homework', 'assessment']),
    ('teacher1', 'student2', 'class1', 'attendance', 'teacher_only',
     'Arrived late three times this month, parent contacted.', ['parent-contact', 'follow-up']),
    ('manager1', 'student3', None, 'behavioral', 'manager_only',
     'Discussed classroom conduct with the family.', ['meeting']),
    ('admin', None, 'class2', 'general', 'all_staff',
     'Lab B202 is booked for the exam week.', ['exam']),
]


def create_app() -> Flask:
    """Standalone Flask application for seeding, without the API routes."""
    app = Flask(__name__)
    app.config.from_object(Config)
    db.init_app(app)
    return app


def seed_directory() -> None:
    for teacher_id, first, last in TEACHERS:
        db.session.add(Teacher(id=teacher_id, first_name=first, last_name=last))
    for class_id, name, teacher_id, level, room, status in CLASSES:
        db.session.add(ClassRoom(id=class_id, name=name, teacher_id=teacher_id,
                                 level=level, room=room, status=status))
    for student_id, first, last in STUDENTS:
        db.session.add(Student(id=student_id, first_name=first, last_name=last))
    password_hash = generate_password_hash(DEMO_PASSWORD)
    for username, name, email, role, status in STAFF:
        db.session.add(StaffUser(
            username=username,
            name=name,
            email=email,
            role=role,
            status=status,
            password_hash=password_hash,
        ))
    db.session.commit()


def _random_entry(rng: random.Random, student: Student, position: int) -> AttendanceEntry:
    status = rng.choice(ATTENDANCE_STATUSES)
    entry = AttendanceEntry(student_id=student.id, student=student, position=position, status=status)
    if status == LATE:
        entry.arrival_time = f"{rng.randint(8, 9):02d}:{rng.randint(0, 59):02d}"
    if status in EXCUSABLE_STATUSES:
        entry.excuse_reason = 'Family emergency'
        entry.excuse_document_url = 'https://example.com/doc.pdf' if rng.random() > 0.5 else None
        entry.excuse_status = rng.choice(EXCUSE_STATUSES)
        if entry.excuse_status != EXCUSE_PENDING:
            entry.excuse_verified_by = 'teacher1'
            entry.excuse_verified_at = utcnow()
    if rng.random() > 0.7:
        entry.notes = 'Some notes about attendance'
    return entry


def seed_attendance(count: int = 50, random_seed: int = 42, today: Optional[date] = None) -> int:
    """Generate up to ``count`` sheets over the 30 days before ``today``.

    Each class has at most one sheet per date, so fewer sheets are created
    when ``count`` exceeds the available class/date slots. Returns the number
    of sheets created.
    """

    rng = random.Random(random_seed)
    today = today or date.today()
    classes: List[ClassRoom] = ClassRoom.query.order_by(ClassRoom.id).all()
    students: List[Student] = Student.query.order_by(Student.id).all()

    slots = [(classroom, today - timedelta(days=offset))
             for offset in range(30) for classroom in classes]
    rng.shuffle(slots)

    created = 0
    for classroom, session_date in slots[:count]:
        entries = [_random_entry(rng, student, position) for position, student in enumerate(students)]
        is_makeup = rng.random() > 0.9
        makeup_class_id = None
        if is_makeup:
            originals = [c for c in classes if c.id != classroom.id] or classes
            makeup_class_id = rng.choice(originals).id
        sheet = AttendanceSheet(
            class_id=classroom.id,
            date=session_date.isoformat(),
            teacher_id=classroom.teacher_id,
            classroom=classroom,
            teacher=classroom.teacher,
            is_makeup_class=is_makeup,
            makeup_class_id=makeup_class_id,
            created_at=datetime.combine(session_date, datetime.min.time()),
            entries=entries,
        )
        sheet.refresh_summary(tally(entry.to_student_attendance() for entry in entries))
        db.session.add(sheet)
        created += 1
    db.session.commit()
    return created


def seed_notes() -> int:
    """Insert the demo notes; each is authored by the staff member named first."""

    authors = {user.username: user.id for user in StaffUser.query.all()}
    for username, student_id, class_id, note_type, visibility, content, tags in NOTES:
        db.session.add(Note(
            type=note_type,
            visibility=visibility,
            content=content,
            tags=list(tags),
            student_id=student_id,
            class_id=class_id,
            created_by=authors[username],
        ))
    db.session.commit()
    return len(NOTES)


def seed_data(count: int = 50, random_seed: int = 42) -> int:
    """Drop and recreate all tables, then insert the demo data."""
    db.drop_all()
    db.create_all()
    seed_directory()
    created = seed_attendance(count=count, random_seed=random_seed)
    seed_notes()
    return created


def main() -> None:
    parser = argparse.ArgumentParser(description='Seed the Vertex database with demo data.')
    parser.add_argument('--records', type=int, default=50, help='attendance sheets to generate')
    parser.add_argument('--random-seed', type=int, default=42)
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        created = seed_data(count=args.records, random_seed=args.random_seed)

    print(f'Database seeded successfully ({created} attendance records).')


if __name__ == '__main__':
    main()
