"""Application configuration module.

Settings are read from environment variables so the same code runs locally,
in CI and on a hosted platform. A local ``.env`` file is loaded when present.
Platforms such as Heroku provide a ``DATABASE_URL`` that may start with
``postgres://``; SQLAlchemy only accepts ``postgresql://`` so the prefix is
normalised here.
"""

import os
from datetime import timedelta

from dotenv import load_dotenv


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return default


class Config:
    """Base configuration class.

    Flask and Flask-SQLAlchemy read their settings from the attributes of
    this class. Values specific to Vertex (pagination, token lifetime and
    request logging) live alongside them so ``app.config`` is the single
    source of settings.
    """

    load_dotenv()

    # Signs Flask sessions, and the login tokens unless JWT_SECRET_KEY is set.
    SECRET_KEY = os.environ.get('SECRET_KEY', 'change-this-secret-in-prod')

    _db_url = os.environ.get('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        # Only the scheme is rewritten.
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)
    SQLALCHEMY_DATABASE_URI = _db_url or 'sqlite:///vertex.db'

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Pagination defaults for ``GET /api/attendance``.
    DEFAULT_PAGE_SIZE = _int_env('DEFAULT_PAGE_SIZE', 10)
    MAX_PAGE_SIZE = _int_env('MAX_PAGE_SIZE', 100)

    # Lifetime of login tokens, in seconds.
    AUTH_TOKEN_MAX_AGE = _int_env('AUTH_TOKEN_MAX_AGE', 3600)

    # Flask-JWT-Extended signs with SECRET_KEY unless a dedicated key is set.
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY')
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(seconds=AUTH_TOKEN_MAX_AGE)
    JWT_TOKEN_LOCATION = ['headers']

    # Request logging: share of requests logged, and the response body cap.
    REQUEST_LOG_SAMPLE_RATE = min(1.0, max(0.0, _float_env('REQUEST_LOG_SAMPLE_RATE', 1.0)))
    RESPONSE_BODY_MAX_BYTES = _int_env('RESPONSE_BODY_MAX_BYTES', 2048)
