"""Domain exceptions raised by the record store and the auth layer.

Each exception carries the HTTP status and title used when ``app.py``
renders it as a problem-details response.
"""

from __future__ import annotations


class VertexError(Exception):
    """Base class for errors that are reported to the API client."""

    status_code = 500
    title = "Internal Server Error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(VertexError):
    """Input is malformed or violates an attendance invariant."""

    status_code = 400
    title = "Validation Failed"


class AuthenticationError(VertexError):
    status_code = 401
    title = "Authentication Required"


class PermissionDeniedError(VertexError):
    status_code = 403
    title = "Permission Denied"


class NotFoundError(VertexError):
    """A class, student or attendance entry is not in the directory."""

    status_code = 404
    title = "Not Found"


class ConflictError(VertexError):
    status_code = 409
    title = "Conflict"


__all__ = [
    "AuthenticationError",
    "ConflictError",
    "NotFoundError",
    "PermissionDeniedError",
    "ValidationError",
    "VertexError",
]
