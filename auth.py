"""Authentication and role permissions.

Console users log in with email and password and receive a signed bearer
token. Each API request resolves that token into a :class:`Principal`, kept
on :data:`flask.g` for the duration of the request and handed explicitly to
the record store when it needs to know who is acting.

Roles grant explicit permission sets. A role never inherits another role's
permissions implicitly, so adding a permission to one role does not leak it
to the others.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from typing import Callable, FrozenSet, Optional

from flask import g, request
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt_identity,
    verify_jwt_in_request,
)
from flask_jwt_extended.exceptions import JWTExtendedException, NoAuthorizationError
from jwt.exceptions import ExpiredSignatureError, PyJWTError
from werkzeug.security import check_password_hash

from app_logging import bind_principal, get_logger, log_event
from errors import AuthenticationError, PermissionDeniedError, ValidationError
from models import StaffUser, db, utcnow

VIEW_DIRECTORY = "directory:view"
VIEW_ATTENDANCE = "attendance:view"
MARK_ATTENDANCE = "attendance:mark"
EXPORT_ATTENDANCE = "attendance:export"
VERIFY_EXCUSES = "excuses:verify"
VIEW_NOTES = "notes:view"
MANAGE_NOTES = "notes:manage"

ALL_PERMISSIONS = frozenset({
    VIEW_DIRECTORY,
    VIEW_ATTENDANCE,
    MARK_ATTENDANCE,
    EXPORT_ATTENDANCE,
    VERIFY_EXCUSES,
    VIEW_NOTES,
    MANAGE_NOTES,
})

ROLE_PERMISSIONS = {
    "SuperAdmin": ALL_PERMISSIONS,
    "Manager": ALL_PERMISSIONS,
    "Teacher": frozenset({
        VIEW_DIRECTORY,
        VIEW_ATTENDANCE,
        MARK_ATTENDANCE,
        EXPORT_ATTENDANCE,
        VERIFY_EXCUSES,
        VIEW_NOTES,
        MANAGE_NOTES,
    }),
    "Secretary": frozenset({VIEW_DIRECTORY, VIEW_NOTES}),
}

jwt = JWTManager()

_logger = get_logger("vertex.auth")


@dataclass(frozen=True)
class Principal:
    """The staff member a request runs on behalf of."""

    user_id: str
    name: str
    role: str
    permissions: FrozenSet[str]

    def can(self, permission: str) -> bool:
        return permission in self.permissions

    @classmethod
    def from_user(cls, user: StaffUser) -> "Principal":
        return cls(
            user_id=user.id,
            name=user.name,
            role=user.role,
            permissions=ROLE_PERMISSIONS.get(user.role, frozenset()),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.user_id,
            "name": self.name,
            "role": self.role,
            "permissions": sorted(self.permissions),
        }


def issue_token(user: StaffUser) -> str:
    return create_access_token(identity=user.id, additional_claims={"role": user.role})


def authenticate(email: str, password: str) -> StaffUser:
    """Check credentials and return the matching active user."""

    if not isinstance(email, str) or not isinstance(password, str):
        raise ValidationError("email and password must be strings")
    user = StaffUser.query.filter_by(email=email.strip().lower()).first()
    if user is None or not check_password_hash(user.password_hash, password):
        raise AuthenticationError("Invalid email or password")
    if user.status != "active":
        raise PermissionDeniedError("This account is inactive")
    user.last_login = utcnow()
    db.session.commit()
    log_event(_logger, "login_succeeded", user_id=user.id, role=user.role)
    return user


def load_principal() -> Principal:
    """Resolve the request's bearer token into a :class:`Principal`."""

    try:
        verify_jwt_in_request()
    except NoAuthorizationError:
        raise AuthenticationError("Missing bearer token")
    except ExpiredSignatureError:
        raise AuthenticationError("Session expired, please log in again")
    except (JWTExtendedException, PyJWTError):
        raise AuthenticationError("Invalid bearer token")

    user = db.session.get(StaffUser, get_jwt_identity())
    if user is None or user.status != "active":
        raise AuthenticationError("Unknown or inactive user")

    principal = Principal.from_user(user)
    g.principal = principal
    bind_principal(principal.user_id, principal.role)
    return principal


def current_principal() -> Principal:
    principal = getattr(g, "principal", None)
    return principal if principal is not None else load_principal()


def requires(permission: Optional[str] = None) -> Callable:
    """Route decorator: authenticate the request and check ``permission``.

    With no permission it only requires a valid login.
    """

    def decorator(view: Callable) -> Callable:
        @wraps(view)
        def wrapper(*args, **kwargs):
            principal = current_principal()
            if permission is not None and not principal.can(permission):
                _logger.warning(
                    "permission_denied",
                    extra={"permission": permission, "route": request.path},
                )
                raise PermissionDeniedError(f"Role {principal.role} lacks {permission}")
            return view(*args, **kwargs)

        return wrapper

    return decorator


__all__ = [
    "ALL_PERMISSIONS",
    "EXPORT_ATTENDANCE",
    "MANAGE_NOTES",
    "MARK_ATTENDANCE",
    "Principal",
    "ROLE_PERMISSIONS",
    "VERIFY_EXCUSES",
    "VIEW_ATTENDANCE",
    "VIEW_DIRECTORY",
    "VIEW_NOTES",
    "authenticate",
    "current_principal",
    "issue_token",
    "jwt",
    "load_principal",
    "requires",
]
