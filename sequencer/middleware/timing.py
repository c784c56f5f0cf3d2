"""
Request timing middleware.

Every response carries X-Request-ID and X-Request-Duration-Ms. The request
log line is tagged with the org / site / staff it concerns so it can be
joined with the rollover log records of the same scope.

Writes to the sequencer (manual rollover, reconcile, overrides) are logged at
INFO; reads at DEBUG; anything slower than SLOW_REQUEST_MS at WARNING.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

_PROBES = frozenset({"/api/v1/health/ready", "/api/v1/health/live"})
_WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

# (log field, view arg / query arg / JSON key)
_SCOPE_KEYS = (
    ("org_id", "org_id"),
    ("role_id", "role_id"),
    ("location_id", "location_id"),
    ("staff_id", "staff_id"),
)


def _request_scope() -> dict:
    view_args = request.view_args or {}
    body = request.get_json(silent=True) if request.is_json else None
    scope = {}
    for field, key in _SCOPE_KEYS:
        value = view_args.get(key, request.args.get(key))
        if value is None and isinstance(body, dict):
            value = body.get(key)
        if value is not None:
            scope[field] = value
    return scope


def init_request_timing(app: Flask):
    slow_ms = app.config.get("SLOW_REQUEST_MS", 1000)

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        response.headers["X-Request-ID"] = g.request_id

        if request.path in _PROBES:
            return response

        extra = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "remote_addr": request.remote_addr,
            "request_id": g.request_id,
            **_request_scope(),
        }
        if duration_ms >= slow_ms:
            logger.warning("Slow request %s %s", request.method, request.path, extra=extra)
        elif request.method in _WRITE_METHODS and request.path.startswith("/api/v1/sequencer"):
            logger.info("%s %s -> %d", request.method, request.path, response.status_code, extra=extra)
        else:
            logger.debug("%s %s", request.method, request.path, extra=extra)
        return response
