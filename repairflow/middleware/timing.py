"""
Request timing middleware.

Stamps every response with ``X-Request-ID`` (echoing the caller's value when
given) and ``X-Request-Duration-Ms``, and logs one line per issue request
with the acting username attached.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

# Probes are polled every few seconds; keep them out of the log
_QUIET_PREFIXES = ("/api/v1/health/",)

DEFAULT_SLOW_REQUEST_MS = 1000


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""
    slow_ms = app.config.get("SLOW_REQUEST_MS", DEFAULT_SLOW_REQUEST_MS)

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _finish_timer(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.1f}"

        if request.path.startswith(_QUIET_PREFIXES):
            return response

        extra = {
            "request_id": g.request_id,
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": elapsed_ms,
            "remote_addr": request.remote_addr,
            "actor": getattr(g, "current_username", None),
        }
        if response.status_code >= 500:
            level = logging.ERROR
        elif elapsed_ms > slow_ms:
            level = logging.WARNING
        else:
            level = logging.DEBUG
        logger.log(level, "%s %s -> %d", request.method, request.path, response.status_code, extra=extra)
        return response
