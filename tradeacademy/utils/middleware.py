"""
TradeAcademy - Request Hooks

Every request gets a request ID (echoed in ``X-Request-ID``), a timing
measurement and the standard security headers. The authenticated user's ID
is stamped on ``g`` by the JWT user loader so that request logs can carry it.
"""

import re
import time
import uuid

from flask import Flask, Response, current_app, g, request

from tradeacademy.models import utcnow
from tradeacademy.utils.logger import get_logger, log_performance_metric, log_security_event

logger = get_logger("tradeacademy.requests")

# Client supplied request IDs are only trusted when they look like one
_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{8,64}$")

# Paths that are polled too often to be worth an info line per hit
QUIET_PATHS = ("/health",)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


def get_client_ip() -> str:
    """Client address, honouring the first ``X-Forwarded-For`` hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or request.remote_addr or "unknown"


def _start_request() -> None:
    supplied = request.headers.get("X-Request-ID", "")
    g.request_id = supplied if _REQUEST_ID.match(supplied) else uuid.uuid4().hex
    g.current_user_id = None
    g.request_started_at = utcnow()
    g.request_timer = time.perf_counter()


def _finish_request(response: Response) -> Response:
    response.headers["X-Request-ID"] = g.get("request_id", "")

    timer = g.get("request_timer")
    if timer is None:
        return response

    duration_ms = (time.perf_counter() - timer) * 1000
    response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

    details = {
        "status_code": response.status_code,
        "duration_ms": round(duration_ms, 2),
        "user_id": g.get("current_user_id"),
        "started_at": g.request_started_at.isoformat(),
    }
    summary = f"{request.method} {request.path} -> {response.status_code}"
    if duration_ms > current_app.config.get("SLOW_REQUEST_MS", 1000):
        logger.warning(f"Slow request: {summary}", extra=details)
    elif request.path not in QUIET_PATHS:
        logger.info(summary, extra=details)

    log_performance_metric(
        "request_duration", duration_ms, path=request.path, endpoint=request.endpoint
    )
    return response


def _add_security_headers(response: Response) -> Response:
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)

    if request.path.startswith("/api/"):
        # Responses carry per-user portfolio and progress data
        response.headers["Cache-Control"] = "no-store"

    if current_app.config.get("ENV") == "production":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    response.headers.pop("Server", None)
    return response


def _log_rate_limited(response: Response) -> Response:
    if response.status_code == 429:
        log_security_event(
            "rate_limit_exceeded",
            user_id=g.get("current_user_id"),
            ip_address=get_client_ip(),
            user_agent=request.headers.get("User-Agent"),
            endpoint=request.endpoint,
        )
    return response


def setup_middleware(app: Flask) -> None:
    """Register the request hooks on ``app``."""
    app.before_request(_start_request)
    app.after_request(_finish_request)
    app.after_request(_add_security_headers)
    app.after_request(_log_rate_limited)
