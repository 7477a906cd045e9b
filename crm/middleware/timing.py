"""
Request timing and request ids.

Each API request gets an id (the caller's X-Request-ID, or a fresh one) and
a duration. Both are returned as response headers. Slow requests are logged
at WARNING, 5xx responses at ERROR and the rest at DEBUG; health probes are
not logged at all.
"""

import logging
import re
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_THRESHOLD_MS = 1000
_UNLOGGED_PREFIX = "/api/v1/health/"
# Accept caller-supplied ids only if they are short and printable
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")


def _incoming_request_id() -> str:
    supplied = request.headers.get("X-Request-ID", "")
    if _REQUEST_ID_RE.match(supplied):
        return supplied
    return uuid.uuid4().hex[:12]


def _level_for(status: int, duration_ms: float) -> int:
    if duration_ms > SLOW_THRESHOLD_MS:
        return logging.WARNING
    if status >= 500:
        return logging.ERROR
    return logging.DEBUG


def init_request_timing(app: Flask):
    """Register the before/after hooks on ``app``."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = _incoming_request_id()

    @app.after_request
    def _finish_timer(response):
        start = g.get("request_start")
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if not request.path.startswith(_UNLOGGED_PREFIX):
            view_args = request.view_args or {}
            logger.log(
                _level_for(response.status_code, duration_ms),
                "%s %s -> %d (%.0fms)",
                request.method, request.path, response.status_code, duration_ms,
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "remote_addr": request.remote_addr,
                    "module_name": view_args.get("module"),
                    "rule_id": view_args.get("rid"),
                },
            )
        return response
