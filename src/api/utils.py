"""
Shared utilities for the YieldSteward status API.

Authentication for mutating routes, query parameter bounds and the mapping
from treasury exceptions to HTTP responses.
"""

import os
import secrets
from functools import wraps
from typing import Any

from flask import jsonify, request

from treasury_exceptions import (
    ConfigurationError,
    DrainTransferFailed,
    GatewayError,
    LedgerUnavailable,
    NoBalance,
    ReentrancyError,
    TimingError,
    TreasuryError,
    Unauthorized,
)

# ============================================================
# Security Configuration
# ============================================================

API_KEY = os.getenv("STEWARD_API_KEY", None)
API_KEY_REQUIRED = os.getenv("STEWARD_REQUIRE_AUTH", "true").lower() == "true"

DEFAULT_EVENT_LIMIT = 50
MAX_EVENT_LIMIT = 1000


def bounded_limit(value: Any, default: int = DEFAULT_EVENT_LIMIT, max_limit: int = MAX_EVENT_LIMIT) -> int:
    """Clamp a requested limit into 1..max_limit."""
    try:
        limit = int(value) if value is not None else default
    except (TypeError, ValueError):
        limit = default
    return max(1, min(limit, max_limit))


def require_api_key(f):
    """Decorator to require API key authentication."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not API_KEY_REQUIRED:
            return f(*args, **kwargs)

        provided_key = request.headers.get("X-API-Key")
        if not provided_key:
            return jsonify({
                "error": "API key required",
                "hint": "Provide API key in X-API-Key header",
            }), 401

        if not API_KEY:
            return jsonify({
                "error": "Server API key not configured",
                "hint": "Set STEWARD_API_KEY environment variable",
            }), 503

        if not secrets.compare_digest(provided_key, API_KEY):
            return jsonify({"error": "Invalid API key"}), 403

        return f(*args, **kwargs)

    return decorated_function


# ============================================================
# Error Mapping
# ============================================================

_STATUS_BY_ERROR: list[tuple[type[TreasuryError], int]] = [
    (TimingError, 409),
    (ReentrancyError, 409),
    (NoBalance, 409),
    (Unauthorized, 403),
    (GatewayError, 502),
    (LedgerUnavailable, 502),
    (DrainTransferFailed, 502),
    (ConfigurationError, 500),
]


def status_for(error: TreasuryError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


def error_response(error: TreasuryError):
    """JSON response for a treasury exception."""
    return jsonify({"error": error.message, "details": error.to_dict()}), status_for(error)


def not_initialized():
    return jsonify({"error": "Treasury not initialized"}), 503
