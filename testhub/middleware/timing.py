"""
Request timing middleware.

Records request duration, tags every request with a request id and logs
slow requests and server errors.  Adds X-Request-ID and
X-Request-Duration-Ms headers to all responses.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

# Endpoints excluded from timing logs (high frequency, low value)
_SKIP_LOG = frozenset({"/api/v1/health/ready", "/api/v1/health/live"})

# Slow request threshold (ms)
SLOW_THRESHOLD_MS = 1000


def _session_scope() -> int | None:
    """Session id for log context: route arg first, then what a portal resolved."""
    view_args = request.view_args or {}
    session_id = view_args.get("session_id")
    if session_id is None:
        session_id = getattr(g, "uat_session_id", None)
    return session_id


def _loggable_path() -> str:
    """Request path with any capability token in it shortened to a prefix."""
    token = (request.view_args or {}).get("token")
    if not token:
        return request.path
    return request.path.replace(token, f"{token[:4]}...", 1)


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:12])

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        response.headers["X-Request-ID"] = getattr(g, "request_id", "")

        if request.path in _SKIP_LOG:
            return response

        path = _loggable_path()
        extra = {
            "method": request.method,
            "path": path,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "remote_addr": request.remote_addr,
            "request_id": getattr(g, "request_id", ""),
            "session_id": _session_scope(),
            "token_kind": getattr(g, "uat_token_kind", None),
        }
        if duration_ms > SLOW_THRESHOLD_MS:
            logger.warning("Slow request: %s %s %d (%.0fms)",
                           request.method, path,
                           response.status_code, duration_ms, extra=extra)
        elif response.status_code >= 500:
            logger.error("Server error: %s %s %d (%.0fms)",
                         request.method, path,
                         response.status_code, duration_ms, extra=extra)
        else:
            logger.debug("Request: %s %s %d (%.0fms)",
                         request.method, path,
                         response.status_code, duration_ms, extra=extra)

        return response
