"""Correlation ids for API requests.

Callers may send their own ``X-Request-ID``; otherwise one is generated. The
id is returned on the response, included in problem-details bodies and bound
to every log line of the request.
"""

from __future__ import annotations

import re
import uuid
from typing import Optional

from flask import Flask, g, request

from app_logging import clear_request_context, set_request_id

HEADER_NAME = "X-Request-ID"

# Ids are copied into logs and headers, so only plain tokens are accepted.
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def request_id_from_headers() -> Optional[str]:
    candidate = request.headers.get(HEADER_NAME, "").strip()
    return candidate if _VALID_REQUEST_ID.match(candidate) else None


def init_correlation_id(app: Flask) -> None:
    """Bind a request id before each request and unbind it afterwards."""

    @app.before_request
    def _bind_request_id() -> None:
        g.request_id = request_id_from_headers() or uuid.uuid4().hex
        set_request_id(g.request_id)

    @app.after_request
    def _echo_request_id(response):
        if "request_id" in g:
            response.headers[HEADER_NAME] = g.request_id
        return response

    @app.teardown_request
    def _unbind_request_context(_exc) -> None:
        clear_request_context()


__all__ = ["HEADER_NAME", "init_correlation_id", "request_id_from_headers"]
