"""
Flask middleware for request logging and metrics.

Provides:
- Request ID tracking (X-Request-ID in and out)
- Request timing and per-route counters
- Structured request logging
"""

import time
import uuid
from collections.abc import Callable
from functools import wraps

from flask import Flask, Response, g, request

from monitoring.logging import clear_request_context, get_logger, set_request_context
from monitoring.metrics import metrics

logger = get_logger("yieldsteward.request")


def setup_request_logging(app: Flask) -> None:
    """
    Set up request logging middleware for a Flask app.

    Args:
        app: Flask application instance
    """

    @app.before_request
    def before_request():
        g.request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        g.start_time = time.perf_counter()
        set_request_context(request_id=g.request_id, method=request.method, path=request.path)
        metrics.increment_gauge("http_requests_active")

    @app.after_request
    def after_request(response: Response) -> Response:
        _record_request_metrics(response.status_code)
        if hasattr(g, "request_id"):
            response.headers["X-Request-ID"] = g.request_id
        return response

    @app.teardown_request
    def teardown_request(exception=None):
        clear_request_context()
        metrics.decrement_gauge("http_requests_active")

        if exception:
            logger.error(
                "Request failed with exception",
                exc_info=exception,
                extra={
                    "request_id": getattr(g, "request_id", "unknown"),
                    "path": request.path,
                    "method": request.method,
                },
            )


def _record_request_metrics(status_code: int) -> None:
    duration_ms = 0.0
    if hasattr(g, "start_time"):
        duration_ms = (time.perf_counter() - g.start_time) * 1000

    path = _normalize_path(request.path)
    metrics.increment(
        "http_requests_total",
        labels={"method": request.method, "path": path, "status": str(status_code)},
    )
    metrics.timing("http_request_duration_ms", duration_ms, labels={"method": request.method, "path": path})

    if status_code >= 500:
        log = logger.error
    elif status_code >= 400:
        log = logger.warning
    else:
        log = logger.info
    log(
        f"{request.method} {request.path} -> {status_code}",
        extra={
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2),
            "request_id": getattr(g, "request_id", "unknown"),
        },
    )


def _normalize_path(path: str) -> str:
    """
    Normalize path for metrics labels.

    Numeric segments (recipient indexes, validator positions) become `:id`
    so label cardinality stays bounded.
    """
    parts = [p for p in path.strip("/").split("/") if p]
    normalized = [":id" if part.isdigit() else part for part in parts]
    return "/" + "/".join(normalized)


def timed(metric_name: str | None = None):
    """
    Decorator for timing function execution.

    Usage:
        @timed("keeper_cycle_ms")
        def run_once():
            ...
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            with metrics.timer(metric_name or f"function_{func.__name__}"):
                return func(*args, **kwargs)

        return wrapper

    return decorator
