"""Request/response logging for the API.

One ``request_start`` and one ``request_end`` line per sampled request. The
query string and JSON bodies are logged redacted; export downloads are
logged by size only. Sampling and the body size cap come from
``REQUEST_LOG_SAMPLE_RATE`` and ``RESPONSE_BODY_MAX_BYTES`` in the app config.
"""

from __future__ import annotations

import json
import random
import time
from typing import Any, Dict, Optional

from flask import Flask, Response, current_app, g, request

from app_logging import get_logger, merge_request_context, redact_sensitive_data

UNLOGGED_PATHS = frozenset({"/health"})

_request_logger = get_logger("vertex.request")


def _client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    return forwarded.split(",")[0].strip() if forwarded else (request.remote_addr or "unknown")


def _sampled() -> bool:
    if request.path in UNLOGGED_PATHS:
        return False
    rate = current_app.config.get("REQUEST_LOG_SAMPLE_RATE", 1.0)
    return rate >= 1.0 or random.random() < rate


def _request_payload() -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    if request.args:
        payload["query"] = redact_sensitive_data(request.args.to_dict(flat=False))
    if request.method in ("POST", "PUT", "PATCH"):
        body = request.get_json(silent=True)
        if body is not None:
            payload["json"] = redact_sensitive_data(body)
    return payload


def _is_download(response: Response) -> bool:
    return response.headers.get("Content-Disposition", "").startswith("attachment")


def _response_body(response: Response) -> Optional[str]:
    limit = current_app.config.get("RESPONSE_BODY_MAX_BYTES", 2048)
    if limit <= 0 or response.direct_passthrough or not response.is_json or _is_download(response):
        return None
    body = response.get_data(as_text=True)
    try:
        body = json.dumps(redact_sensitive_data(json.loads(body)))
    except ValueError:
        pass
    if len(body) > limit:
        return f"{body[:limit]}... truncated {len(body) - limit} bytes"
    return body


def init_request_logging(app: Flask) -> None:
    """Register the before/after hooks on ``app``."""

    @app.before_request
    def _start_request_log() -> None:
        g._request_started = time.perf_counter()
        g._request_sampled = _sampled()
        merge_request_context(
            method=request.method,
            path=request.path,
            route=request.url_rule.rule if request.url_rule else None,
            client_ip=_client_ip(),
        )
        if g._request_sampled:
            _request_logger.info(
                "request_start",
                extra={
                    "event": "request_start",
                    "user_agent": request.headers.get("User-Agent"),
                    "request_payload": _request_payload(),
                },
            )

    @app.after_request
    def _end_request_log(response: Response) -> Response:
        started = getattr(g, "_request_started", None)
        duration_ms = round((time.perf_counter() - started) * 1000, 2) if started else None
        merge_request_context(status=response.status_code, duration_ms=duration_ms)
        if getattr(g, "_request_sampled", False):
            extra: Dict[str, Any] = {"event": "request_end", "response_body": _response_body(response)}
            if _is_download(response):
                extra["download_bytes"] = response.content_length
            _request_logger.info("request_end", extra=extra)
        return response


__all__ = ["init_request_logging"]
