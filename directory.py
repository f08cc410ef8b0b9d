"""Class directory queries: search, filters, ordering and paging.

Works on the class dictionaries produced by
:meth:`attendance_store.AttendanceStore.list_classes`, so it never touches
the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from attendance_stats import Page, paginate
from attendance_types import parse_paging
from errors import ValidationError

CLASS_STATUSES = ("active", "inactive", "merged")

CLASS_SORT_FIELDS = ("name", "level", "room", "status", "teacherName")


@dataclass(frozen=True)
class ClassFilter:
    search: Optional[str] = None
    status: Optional[str] = None
    level: Optional[str] = None
    room: Optional[str] = None
    teacher_id: Optional[str] = None
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
    ) -> "ClassFilter":
        status = args.get("status") or None
        if status is not None and status not in CLASS_STATUSES:
            raise ValidationError(
                f"Invalid status {status!r}, expected one of {', '.join(CLASS_STATUSES)}"
            )
        page, limit, sort_order = parse_paging(args, default_limit, max_limit)
        return cls(
            search=(args.get("search") or "").strip() or None,
            status=status,
            level=args.get("level") or None,
            room=args.get("room") or None,
            teacher_id=args.get("teacherId") or None,
            page=page,
            limit=limit,
            sort_by=args.get("sortBy") or None,
            sort_order=sort_order,
        )


def _text(value: Any) -> str:
    return (value or "").lower()


def _class_matches(item: Mapping[str, Any], query: ClassFilter) -> bool:
    if query.search:
        needle = query.search.lower()
        haystack = (item.get("name"), item.get("level"), item.get("room"), item.get("teacherName"))
        if not any(needle in _text(value) for value in haystack):
            return False
    if query.status and item.get("status") != query.status:
        return False
    # Level is an exact match, room a case-insensitive substring.
    if query.level and item.get("level") != query.level:
        return False
    if query.room and query.room.lower() not in _text(item.get("room")):
        return False
    if query.teacher_id and item.get("teacherId") != query.teacher_id:
        return False
    return True


def select_classes(
    classes: Iterable[Mapping[str, Any]], query: ClassFilter
) -> List[Mapping[str, Any]]:
    """Filter, then order by ``sortBy``. Unknown sort fields fall back to ``name``."""

    matched = [item for item in classes if _class_matches(item, query)]
    if query.sort_by is None:
        return matched
    field = query.sort_by if query.sort_by in CLASS_SORT_FIELDS else "name"
    return sorted(
        matched,
        key=lambda item: _text(item.get(field)),
        reverse=query.sort_order == "desc",
    )


def query_classes(classes: Iterable[Mapping[str, Any]], query: ClassFilter) -> Page:
    return paginate(select_classes(classes, query), query.page, query.limit)


def distinct_values(classes: Iterable[Mapping[str, Any]], field: str) -> List[str]:
    """Sorted distinct non-empty values of ``field``, for filter drop-downs."""

    return sorted({item[field] for item in classes if item.get(field)})


def class_options(classes: Iterable[Mapping[str, Any]]) -> Dict[str, List[str]]:
    classes = list(classes)
    return {
        "levels": distinct_values(classes, "level"),
        "rooms": distinct_values(classes, "room"),
        "statuses": list(CLASS_STATUSES),
    }


__all__ = [
    "CLASS_SORT_FIELDS",
    "CLASS_STATUSES",
    "ClassFilter",
    "class_options",
    "query_classes",
    "select_classes",
]
