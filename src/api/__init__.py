"""
YieldSteward status API.

Blueprints:
- monitoring: /health and /metrics
- treasury: status queries and distribution/validator triggers
"""

import os

from flask import Flask

from api import state
from api.monitoring import monitoring_bp
from api.treasury import treasury_bp
from monitoring import get_logger, setup_request_logging
from storage.base import StateStore
from treasury import YieldTreasury

logger = get_logger(__name__)

# Tuple format: (blueprint, url_prefix)
ALL_BLUEPRINTS = [
    (monitoring_bp, ""),
    (treasury_bp, ""),
]


def register_blueprints(app: Flask) -> None:
    """Register all blueprints with the Flask app."""
    for blueprint, url_prefix in ALL_BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=url_prefix)


def create_app(treasury: YieldTreasury | None = None, store: StateStore | None = None) -> Flask:
    """
    Create the Flask application.

    Args:
        treasury: Treasury to serve; routes answer 503 while it is None
        store: Store the snapshot is persisted to after mutating requests
    """
    app = Flask(__name__)
    setup_request_logging(app)
    register_blueprints(app)
    state.init_state(treasury, store)
    return app


def run_server(host: str | None = None, port: int | None = None, debug: bool = False) -> None:
    """Load the treasury from the environment and serve the API."""
    from chain_interface import StakingGatewayClient
    from keeper import load_treasury
    from storage import get_state_store

    config_path = os.getenv("STEWARD_CONFIG_FILE", "treasury.json")
    gateway = StakingGatewayClient(
        endpoint=os.getenv("STEWARD_GATEWAY_URL", "http://localhost:9933"),
        timeout=int(os.getenv("STEWARD_GATEWAY_TIMEOUT", "30")),
        api_token=os.getenv("STEWARD_GATEWAY_TOKEN"),
    )
    store = get_state_store()
    treasury = load_treasury(config_path, gateway, store)

    app = create_app(treasury, store)
    host = host or os.getenv("HOST", "127.0.0.1")
    port = port or int(os.getenv("PORT", "5000"))
    logger.info("Starting YieldSteward API on %s:%d", host, port)
    app.run(host=host, port=port, debug=debug)
