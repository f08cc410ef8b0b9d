"""Flask application providing the Vertex attendance API.

This module wires together configuration, logging middleware, the database
models and the route definitions. All responses are JSON except exports.

Endpoints:

* ``GET /health`` – liveness check.
* ``POST /api/auth/login`` – exchange email/password for a bearer token.
* ``GET /api/auth/me`` – the logged-in staff member and their permissions.
* ``GET /api/classes`` – the class directory. Query parameters: ``search,
  status, level, room, teacherId, page, limit, sortBy, sortOrder``.
* ``GET /api/classes/options`` – levels, rooms and statuses for filters.
* ``GET /api/students`` – the student directory.
* ``GET /api/attendance`` – filtered, sorted and paginated records. Query
  parameters: ``classId, studentId, teacherId, status, startDate, endDate,
  isMakeupClass, page, limit, sortBy, sortOrder``.
* ``GET /api/attendance/students/<id>/stats`` – one student's statistics.
* ``GET /api/attendance/classes/<id>/stats`` – one class's statistics.
* ``POST /api/attendance/<classId>/<date>/<studentId>`` – mark one student.
* ``POST /api/attendance/<classId>/<date>/bulk`` – mark several students.
* ``POST /api/attendance/<classId>/<date>/<studentId>/excuse`` – add an excuse.
* ``POST /api/attendance/<classId>/<date>/<studentId>/excuse/verify`` –
  approve or reject a pending excuse.
* ``GET /api/attendance/export?format=csv|json`` – download the filtered set.
* ``GET|POST /api/notes`` – list (``type, visibility, studentId, classId,
  tags, search, fromDate, toDate`` plus paging) or create staff notes.
* ``GET /api/notes/summary`` – counts by type and the newest notes.
* ``GET|PUT|PATCH|DELETE /api/notes/<id>`` – one note.
* ``GET /api/students/<id>/notes`` / ``GET /api/classes/<id>/notes`` – notes
  about one student or class.

Errors are returned as problem details:
``{"type", "title", "status", "detail", "request_id"}``.
"""

from __future__ import annotations

import os
from datetime import date
from typing import Any, Dict, Optional

from flask import Flask, Response, current_app, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from app_logging import configure_logging, get_logger, get_request_id
from attendance_stats import query_records, select_records
from attendance_store import AttendanceStore
from attendance_types import AttendanceFilter
from auth import (
    EXPORT_ATTENDANCE,
    MANAGE_NOTES,
    MARK_ATTENDANCE,
    VERIFY_EXCUSES,
    VIEW_ATTENDANCE,
    VIEW_DIRECTORY,
    VIEW_NOTES,
    authenticate,
    current_principal,
    issue_token,
    jwt,
    requires,
)
from config import Config
from correlation_id_middleware import init_correlation_id
from db_utils import retry_with_backoff
from directory import ClassFilter, class_options, query_classes
from errors import ValidationError, VertexError
from exporting import EXPORT_FORMATS, export_records
from models import db
from notes_store import NoteFilter, NoteStore
from request_logging_middleware import init_request_logging

_logger = get_logger("vertex.app")


def _problem(status: int, title: str, detail: str) -> Response:
    response = jsonify({
        'type': 'about:blank',
        'title': title,
        'status': status,
        'detail': detail,
        'request_id': getattr(g, 'request_id', None) or get_request_id(),
    })
    response.status_code = status
    response.mimetype = 'application/problem+json'
    return response


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _optional_bool(data: Dict[str, Any], key: str) -> Optional[bool]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValidationError(f'{key} must be a boolean')
    return value


def _attendance_filter() -> AttendanceFilter:
    return AttendanceFilter.from_query(
        request.args,
        default_limit=current_app.config['DEFAULT_PAGE_SIZE'],
        max_limit=current_app.config['MAX_PAGE_SIZE'],
    )


def _class_filter() -> ClassFilter:
    return ClassFilter.from_query(
        request.args,
        default_limit=current_app.config['DEFAULT_PAGE_SIZE'],
        max_limit=current_app.config['MAX_PAGE_SIZE'],
    )


def _note_filter() -> NoteFilter:
    return NoteFilter.from_query(
        request.args,
        default_limit=current_app.config['DEFAULT_PAGE_SIZE'],
        max_limit=current_app.config['MAX_PAGE_SIZE'],
    )


def create_app(test_config: Optional[Dict[str, Any]] = None) -> Flask:
    """Application factory used by both the server and tests.

    ``test_config`` overrides :class:`config.Config` before the database is
    bound, so tests can point the app at an in-memory SQLite database.
    Tables are created at start-up if they do not exist yet.
    """
    configure_logging()
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)
    db.init_app(app)
    jwt.init_app(app)

    init_correlation_id(app)
    init_request_logging(app)

    with app.app_context():
        try:
            retry_with_backoff(db.create_all)
        except SQLAlchemyError as exc:
            # The app still starts; /health stays up and API calls report 503.
            _logger.warning("Database unavailable during table creation: %s", exc)

    store = AttendanceStore()
    notes = NoteStore()

    @app.route('/health')
    def healthcheck():
        return jsonify({'status': 'ok'}), 200

    # -- auth ----------------------------------------------------------------

    @app.route('/api/auth/login', methods=['POST'])
    def api_login():
        data = _json_body()
        user = authenticate(data.get('email', ''), data.get('password', ''))
        return jsonify({'token': issue_token(user), 'user': user.to_dict()})

    @app.route('/api/auth/me', methods=['GET'])
    @requires()
    def api_me():
        return jsonify(current_principal().to_dict())

    # -- directory -------------------------------------------------------------

    @app.route('/api/classes', methods=['GET'])
    @requires(VIEW_DIRECTORY)
    def api_get_classes():
        page = query_classes(store.list_classes(), _class_filter())
        return jsonify({'classes': page.items, 'pagination': page.pagination()})

    @app.route('/api/classes/options', methods=['GET'])
    @requires(VIEW_DIRECTORY)
    def api_class_options():
        return jsonify(class_options(store.list_classes()))

    @app.route('/api/students', methods=['GET'])
    @requires(VIEW_DIRECTORY)
    def api_get_students():
        return jsonify(store.list_students())

    # -- notes -----------------------------------------------------------------

    def _notes_response(page):
        return jsonify({'notes': page.items, 'pagination': page.pagination()})

    @app.route('/api/notes', methods=['GET'])
    @requires(VIEW_NOTES)
    def api_list_notes():
        return _notes_response(notes.list_notes(current_principal(), _note_filter()))

    @app.route('/api/notes', methods=['POST'])
    @requires(MANAGE_NOTES)
    def api_create_note():
        return jsonify(notes.create_note(_json_body(), current_principal())), 201

    @app.route('/api/notes/summary', methods=['GET'])
    @requires(VIEW_NOTES)
    def api_notes_summary():
        return jsonify(notes.summary(current_principal()))

    @app.route('/api/notes/<note_id>', methods=['GET'])
    @requires(VIEW_NOTES)
    def api_get_note(note_id: str):
        return jsonify(notes.get_note(note_id, current_principal()))

    @app.route('/api/notes/<note_id>', methods=['PUT', 'PATCH'])
    @requires(MANAGE_NOTES)
    def api_update_note(note_id: str):
        return jsonify(notes.update_note(note_id, _json_body(), current_principal()))

    @app.route('/api/notes/<note_id>', methods=['DELETE'])
    @requires(MANAGE_NOTES)
    def api_delete_note(note_id: str):
        notes.delete_note(note_id, current_principal())
        return jsonify({'message': 'Note deleted successfully'})

    @app.route('/api/students/<student_id>/notes', methods=['GET'])
    @requires(VIEW_NOTES)
    def api_student_notes(student_id: str):
        return _notes_response(notes.list_student_notes(student_id, current_principal(), _note_filter()))

    @app.route('/api/classes/<class_id>/notes', methods=['GET'])
    @requires(VIEW_NOTES)
    def api_class_notes(class_id: str):
        return _notes_response(notes.list_class_notes(class_id, current_principal(), _note_filter()))

    # -- attendance reads ------------------------------------------------------

    @app.route('/api/attendance', methods=['GET'])
    @requires(VIEW_ATTENDANCE)
    def api_list_attendance():
        query = _attendance_filter()
        page = query_records(store.list_records(), query)
        return jsonify({
            'records': [record.to_dict() for record in page.items],
            'pagination': page.pagination(),
        })

    @app.route('/api/attendance/students/<student_id>/stats', methods=['GET'])
    @requires(VIEW_ATTENDANCE)
    def api_student_stats(student_id: str):
        return jsonify(store.student_stats(student_id))

    @app.route('/api/attendance/classes/<class_id>/stats', methods=['GET'])
    @requires(VIEW_ATTENDANCE)
    def api_class_stats(class_id: str):
        return jsonify(store.class_stats(class_id))

    @app.route('/api/attendance/export', methods=['GET'])
    @requires(EXPORT_ATTENDANCE)
    def api_export_attendance():
        export_format = (request.args.get('format') or 'csv').lower()
        records = select_records(store.list_records(), _attendance_filter())
        body = export_records(records, export_format)
        filename = f'attendance-{date.today().isoformat()}.{export_format}'
        return Response(
            body,
            mimetype=EXPORT_FORMATS[export_format],
            headers={'Content-Disposition': f'attachment; filename="{filename}"'},
        )

    # -- attendance writes -----------------------------------------------------

    @app.route('/api/attendance/<class_id>/<attendance_date>/bulk', methods=['POST'])
    @requires(MARK_ATTENDANCE)
    def api_bulk_mark(class_id: str, attendance_date: str):
        data = _json_body()
        records = data.get('records')
        if not isinstance(records, list):
            raise ValidationError('records must be a list')
        record = store.bulk_mark_attendance(
            class_id,
            attendance_date,
            records,
            principal=current_principal(),
            is_makeup_class=_optional_bool(data, 'isMakeupClass'),
            makeup_class_id=data.get('makeupClassId'),
        )
        return jsonify(record.to_dict())

    @app.route('/api/attendance/<class_id>/<attendance_date>/<student_id>', methods=['POST'])
    @requires(MARK_ATTENDANCE)
    def api_mark(class_id: str, attendance_date: str, student_id: str):
        data = _json_body()
        record = store.mark_attendance(
            class_id,
            attendance_date,
            student_id,
            data.get('status'),
            principal=current_principal(),
            arrival_time=data.get('arrivalTime'),
            excuse=data.get('excuse'),
            notes=data.get('notes'),
        )
        return jsonify(record.to_dict())

    @app.route('/api/attendance/<class_id>/<attendance_date>/<student_id>/excuse', methods=['POST'])
    @requires(MARK_ATTENDANCE)
    def api_add_excuse(class_id: str, attendance_date: str, student_id: str):
        data = _json_body()
        record = store.add_excuse(
            class_id,
            attendance_date,
            student_id,
            data.get('reason', ''),
            principal=current_principal(),
            document_url=data.get('documentUrl'),
            notes=data.get('notes'),
        )
        return jsonify(record.to_dict())

    @app.route('/api/attendance/<class_id>/<attendance_date>/<student_id>/excuse/verify',
               methods=['POST'])
    @requires(VERIFY_EXCUSES)
    def api_verify_excuse(class_id: str, attendance_date: str, student_id: str):
        data = _json_body()
        record = store.verify_excuse(
            class_id,
            attendance_date,
            student_id,
            data.get('status'),
            principal=current_principal(),
        )
        return jsonify(record.to_dict())

    # -- errors ----------------------------------------------------------------

    @app.errorhandler(VertexError)
    def handle_domain_error(error: VertexError):
        if error.status_code >= 500:
            _logger.error("request failed: %s", error.detail)
        else:
            _logger.info("request rejected", extra={'error_type': type(error).__name__,
                                                    'error': error.detail})
        return _problem(error.status_code, error.title, error.detail)

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return _problem(error.code or 500, error.name, error.description or error.name)

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(error: SQLAlchemyError):
        db.session.rollback()
        _logger.error("Database operation failed", exc_info=error)
        return _problem(503, 'Service Unavailable', 'Database temporarily unavailable')

    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 8000))
    create_app().run(host='0.0.0.0', port=port, debug=True)
