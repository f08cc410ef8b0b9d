"""Staff notes on students and classes.

:class:`NoteStore` is the only code that reads or writes the ``note`` table.
Listings go through the same filter, sort and page steps as attendance
records, applied to the JSON shape of each note.

What a staff member may read depends on the note's visibility:

* ``all_staff`` notes are readable by every role that may view notes;
* ``teacher_only`` notes by teachers and managers;
* ``manager_only`` notes by managers and super admins only.

A note the caller may not read behaves as if it did not exist, and nobody
can write a note with a visibility they could not read back.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.orm import joinedload

from app_logging import DBTimer, get_logger, log_event
from attendance_stats import Page, paginate
from attendance_types import optional_text, parse_iso_date, parse_paging
from auth import Principal
from errors import NotFoundError, PermissionDeniedError, ValidationError
from models import ClassRoom, Note, StaffUser, Student, db, utcnow

NOTE_TYPES = ("academic", "behavioral", "attendance", "general")

TEACHER_ONLY = "teacher_only"
ALL_STAFF = "all_staff"
MANAGER_ONLY = "manager_only"
NOTE_VISIBILITIES = (TEACHER_ONLY, ALL_STAFF, MANAGER_ONLY)

# Roles allowed to read each visibility; None means every role.
_AUDIENCES: Dict[str, Optional[frozenset]] = {
    ALL_STAFF: None,
    TEACHER_ONLY: frozenset({"SuperAdmin", "Manager", "Teacher"}),
    MANAGER_ONLY: frozenset({"SuperAdmin", "Manager"}),
}

NOTE_SORT_FIELDS = ("createdAt", "modifiedAt", "type", "visibility")

# Fields an update may change.
EDITABLE_FIELDS = ("content", "type", "visibility", "tags")

RECENT_NOTES = 5

_logger = get_logger("vertex.notes")


def readable_visibilities(role: str) -> Tuple[str, ...]:
    return tuple(
        visibility for visibility, roles in _AUDIENCES.items()
        if roles is None or role in roles
    )


def _choice(value: Any, choices: Tuple[str, ...], field_name: str) -> str:
    if value not in choices:
        raise ValidationError(f"Invalid {field_name} {value!r}, expected one of {', '.join(choices)}")
    return value


def _content(value: Any) -> str:
    content = optional_text(value, "content")
    if not (content or "").strip():
        raise ValidationError("Note content is required")
    return content.strip()


def _tags(value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(tag, str) for tag in value):
        raise ValidationError("tags must be a list of strings")
    tags: List[str] = []
    for tag in value:
        tag = tag.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


@dataclass(frozen=True)
class NoteFilter:
    """Query for the note listings. Without ``sortBy`` newest notes come first."""

    type: Optional[str] = None
    visibility: Optional[str] = None
    student_id: Optional[str] = None
    class_id: Optional[str] = None
    tags: Tuple[str, ...] = ()
    search: Optional[str] = None
    from_date: Optional[str] = None
    to_date: Optional[str] = None
    page: int = 1
    limit: int = 10
    sort_by: Optional[str] = None
    sort_order: str = "desc"

    @classmethod
    def from_query(
        cls,
        args: Mapping[str, str],
        default_limit: int = 10,
        max_limit: int = 100,
    ) -> "NoteFilter":
        note_type = args.get("type") or None
        if note_type is not None:
            _choice(note_type, NOTE_TYPES, "type")
        visibility = args.get("visibility") or None
        if visibility is not None:
            _choice(visibility, NOTE_VISIBILITIES, "visibility")

        from_date = args.get("fromDate") or None
        to_date = args.get("toDate") or None
        if from_date is not None:
            parse_iso_date(from_date, "fromDate")
        if to_date is not None:
            parse_iso_date(to_date, "toDate")

        page, limit, sort_order = parse_paging(args, default_limit, max_limit)
        if not args.get("sortOrder"):
            sort_order = "desc"

        tags = tuple(tag.strip() for tag in (args.get("tags") or "").split(",") if tag.strip())
        return cls(
            type=note_type,
            visibility=visibility,
            student_id=args.get("studentId") or None,
            class_id=args.get("classId") or None,
            tags=tags,
            search=(args.get("search") or "").strip() or None,
            from_date=from_date,
            to_date=to_date,
            page=page,
            limit=limit,
            sort_by=args.get("sortBy") or None,
            sort_order=sort_order,
        )


def _searchable(note: Mapping[str, Any]) -> List[str]:
    values = [note["content"], *note["tags"]]
    student = note.get("student")
    if student:
        values.append(f"{student['firstName']} {student['lastName']}")
    classroom = note.get("class")
    if classroom:
        values.append(classroom["name"])
    return [value.lower() for value in values]


def _note_matches(note: Mapping[str, Any], query: NoteFilter) -> bool:
    if query.type and note["type"] != query.type:
        return False
    if query.visibility and note["visibility"] != query.visibility:
        return False
    if query.student_id and (note.get("student") or {}).get("id") != query.student_id:
        return False
    if query.class_id and (note.get("class") or {}).get("id") != query.class_id:
        return False
    if query.tags:
        tags = {tag.lower() for tag in note["tags"]}
        if not all(tag.lower() in tags for tag in query.tags):
            return False
    if query.search:
        needle = query.search.lower()
        if not any(needle in value for value in _searchable(note)):
            return False
    created_on = note["createdAt"][:10]
    if query.from_date and created_on < query.from_date:
        return False
    if query.to_date and created_on > query.to_date:
        return False
    return True


def select_notes(notes: Iterable[Mapping[str, Any]], query: NoteFilter) -> List[Mapping[str, Any]]:
    """Filter then sort. Unknown sort fields fall back to ``createdAt``."""

    field = query.sort_by if query.sort_by in NOTE_SORT_FIELDS else "createdAt"
    return sorted(
        (note for note in notes if _note_matches(note, query)),
        key=lambda note: note[field],
        reverse=query.sort_order == "desc",
    )


def summarize_notes(notes: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    notes = list(notes)
    by_type = dict.fromkeys(NOTE_TYPES, 0)
    for note in notes:
        by_type[note["type"]] = by_type.get(note["type"], 0) + 1
    newest = sorted(notes, key=lambda note: note["createdAt"], reverse=True)
    return {"total": len(notes), "byType": by_type, "recent": newest[:RECENT_NOTES]}


class NoteStore:
    """Reads and writes notes through the SQLAlchemy session."""

    def __init__(self, session=None) -> None:
        self.session = session if session is not None else db.session

    # -- reads -------------------------------------------------------------

    def _visible_notes(self, principal: Principal) -> List[Dict[str, Any]]:
        query = Note.query.options(
            joinedload(Note.student),
            joinedload(Note.classroom),
            joinedload(Note.author),
            joinedload(Note.editor),
        ).filter(Note.visibility.in_(readable_visibilities(principal.role)))
        with DBTimer():
            notes = query.all()
        return [note.to_dict() for note in notes]

    def _readable(self, note_id: str, principal: Principal) -> Note:
        note = self.session.get(Note, note_id)
        if note is None or note.visibility not in readable_visibilities(principal.role):
            raise NotFoundError(f"Note {note_id} not found")
        return note

    def list_notes(self, principal: Principal, query: NoteFilter) -> Page:
        return paginate(select_notes(self._visible_notes(principal), query), query.page, query.limit)

    def list_student_notes(self, student_id: str, principal: Principal, query: NoteFilter) -> Page:
        if self.session.get(Student, student_id) is None:
            raise NotFoundError(f"Student {student_id} not found")
        return self.list_notes(principal, replace(query, student_id=student_id))

    def list_class_notes(self, class_id: str, principal: Principal, query: NoteFilter) -> Page:
        if self.session.get(ClassRoom, class_id) is None:
            raise NotFoundError(f"Class {class_id} not found")
        return self.list_notes(principal, replace(query, class_id=class_id))

    def summary(self, principal: Principal) -> Dict[str, Any]:
        return summarize_notes(self._visible_notes(principal))

    def get_note(self, note_id: str, principal: Principal) -> Dict[str, Any]:
        return self._readable(note_id, principal).to_dict()

    # -- writes ------------------------------------------------------------

    @staticmethod
    def _check_writable(visibility: str, principal: Principal) -> None:
        if visibility not in readable_visibilities(principal.role):
            raise PermissionDeniedError(f"Role {principal.role} cannot write {visibility} notes")

    def create_note(self, data: Mapping[str, Any], principal: Principal) -> Dict[str, Any]:
        """Create a note attached to a student, a class, or both."""

        content = _content(data.get("content"))
        if not data.get("type"):
            raise ValidationError("Note type is required")
        note_type = _choice(data["type"], NOTE_TYPES, "type")
        if not data.get("visibility"):
            raise ValidationError("Note visibility is required")
        visibility = _choice(data["visibility"], NOTE_VISIBILITIES, "visibility")
        tags = _tags(data.get("tags"))
        student_id = optional_text(data.get("studentId"), "studentId") or None
        class_id = optional_text(data.get("classId"), "classId") or None
        if student_id is None and class_id is None:
            raise ValidationError("A note must be associated with either a student or a class")
        if student_id is not None and self.session.get(Student, student_id) is None:
            raise ValidationError(f"Unknown student {student_id}")
        if class_id is not None and self.session.get(ClassRoom, class_id) is None:
            raise ValidationError(f"Unknown class {class_id}")
        self._check_writable(visibility, principal)

        now = utcnow()
        note = Note(
            type=note_type,
            visibility=visibility,
            content=content,
            tags=tags,
            student_id=student_id,
            class_id=class_id,
            created_by=principal.user_id,
            created_at=now,
            modified_at=now,
            modification_history=[],
        )
        self.session.add(note)
        self.session.commit()
        log_event(_logger, "note_created", note_id=note.id, note_type=note_type,
                  student_id=student_id, class_id=class_id)
        return note.to_dict()

    def update_note(self, note_id: str, data: Mapping[str, Any], principal: Principal) -> Dict[str, Any]:
        """Change any of content, type, visibility and tags.

        Each effective edit appends the previous and new values of the
        changed fields to the note's modification history.
        """

        if not any(field in data for field in EDITABLE_FIELDS):
            raise ValidationError(f"Nothing to update, expected one of {', '.join(EDITABLE_FIELDS)}")
        note = self._readable(note_id, principal)

        updates: Dict[str, Any] = {}
        if "content" in data:
            updates["content"] = _content(data["content"])
        if "type" in data:
            updates["type"] = _choice(data["type"], NOTE_TYPES, "type")
        if "visibility" in data:
            updates["visibility"] = _choice(data["visibility"], NOTE_VISIBILITIES, "visibility")
            self._check_writable(updates["visibility"], principal)
        if "tags" in data:
            updates["tags"] = _tags(data["tags"])

        changes = {
            field: {"from": getattr(note, field), "to": value}
            for field, value in updates.items()
            if getattr(note, field) != value
        }
        if not changes:
            return note.to_dict()

        editor = self.session.get(StaffUser, principal.user_id)
        now = utcnow()
        for field, value in updates.items():
            setattr(note, field, value)
        note.modified_at = now
        note.modified_by = principal.user_id
        note.modification_history = [
            *(note.modification_history or []),
            {
                "modifiedAt": now.isoformat(),
                "modifiedBy": {"id": editor.id, "username": editor.username},
                "changes": changes,
            },
        ]
        self.session.commit()
        log_event(_logger, "note_updated", note_id=note.id, fields=sorted(changes))
        return note.to_dict()

    def delete_note(self, note_id: str, principal: Principal) -> None:
        note = self._readable(note_id, principal)
        self.session.delete(note)
        self.session.commit()
        log_event(_logger, "note_deleted", note_id=note_id)


__all__ = [
    "NOTE_TYPES",
    "NOTE_VISIBILITIES",
    "NoteFilter",
    "NoteStore",
    "readable_visibilities",
    "select_notes",
    "summarize_notes",
]
