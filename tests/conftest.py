"""
Pytest configuration and shared fixtures for YieldSteward tests.

This module provides:
- A MockStakingGateway with a staked principal and a small validator set
- A standard 16-recipient configuration
- Settings with a unit dust threshold so scenarios can use small amounts
- A ready treasury backed by an isolated metrics collector
"""

import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

# Set up test environment before any imports
os.environ["STEWARD_REQUIRE_AUTH"] = "false"
os.environ.setdefault("LOG_LEVEL", "WARNING")

AGENT = "0xagent"
OPERATOR = "0xoperator"
DESTINATION = "0xdrain"
NETWORK = 1
PRINCIPAL = 1_000_000
START_BLOCK = 1_000
VALIDATOR_0 = "0xval0"
VALIDATOR_1 = "0xval1"


def make_recipients(proportions=None):
    from treasury_config import Recipient

    proportions = proportions or [625] * 16
    return [Recipient(account=f"0xr{i:02d}", proportion=p) for i, p in enumerate(proportions)]


def make_config(proportions=None, **overrides):
    from treasury_config import TreasuryConfig

    fields = {
        "recipients": make_recipients(proportions),
        "agent_account": AGENT,
        "network": NETWORK,
        "emergency_operator": OPERATOR,
        "drain_destination": DESTINATION,
    }
    fields.update(overrides)
    return TreasuryConfig(**fields)


@pytest.fixture
def gateway():
    """Mock gateway with the principal staked to validator 0 and one spare validator."""
    from chain_interface import MockStakingGateway, ValidatorRecord

    gw = MockStakingGateway(network=NETWORK, block=START_BLOCK)
    gw.add_validator(ValidatorRecord(identity=VALIDATOR_0, stake=5_000, dividend=1_000))
    gw.add_validator(ValidatorRecord(identity=VALIDATOR_1, stake=4_000, dividend=1_000))
    gw.set_stake(AGENT, VALIDATOR_0, PRINCIPAL)
    return gw


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def settings():
    """Reference intervals with a dust threshold of one unit."""
    from treasury_config import TreasurySettings

    return TreasurySettings(existential_amount=1)


@pytest.fixture
def collector():
    """Isolated metrics collector so tests don't share counters."""
    from monitoring.metrics import MetricsCollector

    return MetricsCollector()


@pytest.fixture
def treasury(config, gateway, settings, collector):
    """Fresh treasury on validator 0 holding PRINCIPAL."""
    from treasury import YieldTreasury
    from treasury_config import InitialValidator

    return YieldTreasury(
        config,
        gateway,
        gateway,
        InitialValidator(identity=VALIDATOR_0, position=0),
        settings=settings,
        metrics_collector=collector,
    )


@pytest.fixture
def config_file(tmp_path, config):
    """Config JSON on disk, as read by the CLI and API launcher."""
    import json

    data = config.to_dict()
    data["validator"] = {"identity": VALIDATOR_0, "position": 0}
    path = tmp_path / "treasury.json"
    path.write_text(json.dumps(data))
    return str(path)
