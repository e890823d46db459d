"""
Monitoring API endpoints.

- /metrics: Prometheus-compatible metrics
- /metrics/json: JSON metrics
- /health: Liveness plus storage and treasury status
"""

import time

from flask import Blueprint, Response, jsonify

from api import state
from monitoring import metrics

monitoring_bp = Blueprint("monitoring", __name__)

_startup_time = time.time()


@monitoring_bp.route("/metrics", methods=["GET"])
def prometheus_metrics():
    """Metrics in Prometheus text exposition format."""
    return Response(metrics.to_prometheus(), mimetype="text/plain; charset=utf-8")


@monitoring_bp.route("/metrics/json", methods=["GET"])
def json_metrics():
    return jsonify(metrics.get_all())


@monitoring_bp.route("/health", methods=["GET"])
def health():
    """
    Basic health check.

    Reports "degraded" when no treasury is loaded; never calls the gateway.
    """
    treasury = state.get_treasury()
    checks = {
        "treasury": {
            "status": "ok" if treasury else "unavailable",
            "loaded": treasury is not None,
        },
        "storage": _check_storage(),
    }
    if treasury is not None:
        with state.treasury_lock:
            checks["treasury"]["last_transfer_block"] = treasury.last_transfer_block
            checks["treasury"]["validator"] = treasury.current_validator.to_dict()

    return jsonify({
        "status": "healthy" if treasury else "degraded",
        "service": "YieldSteward",
        "uptime_seconds": time.time() - _startup_time,
        "checks": checks,
    })


def _check_storage() -> dict:
    if state.store is None:
        return {"status": "unconfigured"}
    info = state.store.get_info()
    return {"status": "ok" if info.get("available") else "unavailable", **info}
