"""
YieldSteward - Treasury Configuration

Two layers of configuration:
- TreasuryConfig: the deployment configuration (recipients, accounts, network,
  operator, drain destination). Set once, never mutated.
- TreasurySettings: tunable thresholds and intervals, read from environment.

Environment Variables:
    STEWARD_MIN_INTERVAL_BLOCKS=7200
    STEWARD_VALIDATOR_CHECK_INTERVAL=100
    STEWARD_EXISTENTIAL_AMOUNT=1000000000
    STEWARD_RATE_SPIKE_MULTIPLIER=2
    STEWARD_ABSOLUTE_SPIKE_MULTIPLIER=3
    STEWARD_EMERGENCY_TIMELOCK=86400
"""

import hashlib
import json
import os
from dataclasses import dataclass, field
from typing import Any

from treasury_exceptions import ConfigurationError

# =============================================================================
# Constants
# =============================================================================

RECIPIENT_COUNT = 16
BASIS_POINTS = 10_000

# Reference cadence and thresholds (in blocks / smallest units)
DEFAULT_MIN_INTERVAL_BLOCKS = 7200
DEFAULT_VALIDATOR_CHECK_INTERVAL = 100
DEFAULT_EXISTENTIAL_AMOUNT = 1_000_000_000
DEFAULT_RATE_SPIKE_MULTIPLIER = 2
DEFAULT_ABSOLUTE_SPIKE_MULTIPLIER = 3
DEFAULT_EMERGENCY_TIMELOCK = 86400


def is_zero_identifier(identifier: str | None) -> bool:
    """True for empty identifiers and hex identifiers made only of zeros."""
    if not identifier or not str(identifier).strip():
        return True
    value = str(identifier).strip().lower()
    if value.startswith("0x"):
        value = value[2:]
    return not value or set(value) == {"0"}


# =============================================================================
# Deployment Configuration
# =============================================================================


@dataclass(frozen=True)
class Recipient:
    """A beneficiary account and its share in basis points."""

    account: str
    proportion: int

    def to_dict(self) -> dict[str, Any]:
        return {"account": self.account, "proportion": self.proportion}


@dataclass(frozen=True)
class TreasuryConfig:
    """
    Immutable deployment configuration.

    Invariants (checked at construction):
    - exactly 16 recipients
    - every proportion > 0 and the proportions sum to exactly 10,000
    - no zero identifiers (recipients may repeat)
    """

    recipients: tuple[Recipient, ...]
    agent_account: str
    network: int
    emergency_operator: str
    drain_destination: str

    def __post_init__(self):
        # Accept any sequence but store a tuple so the list can't be mutated later
        object.__setattr__(self, "recipients", tuple(self.recipients))
        self._validate()

    def _validate(self) -> None:
        if len(self.recipients) != RECIPIENT_COUNT:
            raise ConfigurationError(
                f"Expected {RECIPIENT_COUNT} recipients, got {len(self.recipients)}",
                field_name="recipients",
            )

        total = 0
        for index, recipient in enumerate(self.recipients):
            if is_zero_identifier(recipient.account):
                raise ConfigurationError(
                    f"Recipient {index} has a zero account",
                    field_name="recipients",
                    details={"index": index},
                )
            if not isinstance(recipient.proportion, int) or isinstance(recipient.proportion, bool):
                raise ConfigurationError(
                    f"Recipient {index} proportion must be an integer",
                    field_name="recipients",
                    details={"index": index},
                )
            if recipient.proportion <= 0:
                raise ConfigurationError(
                    f"Recipient {index} has a non-positive proportion",
                    field_name="recipients",
                    details={"index": index, "proportion": recipient.proportion},
                )
            total += recipient.proportion

        if total != BASIS_POINTS:
            raise ConfigurationError(
                f"Proportions must sum to {BASIS_POINTS}, got {total}",
                field_name="recipients",
                details={"total": total},
            )

        for name in ("agent_account", "emergency_operator", "drain_destination"):
            if is_zero_identifier(getattr(self, name)):
                raise ConfigurationError(f"{name} must be a non-zero identifier", field_name=name)

        if not isinstance(self.network, int) or self.network < 0:
            raise ConfigurationError("network must be a non-negative integer", field_name="network")

    @property
    def fingerprint(self) -> str:
        """Stable hash of the configuration, used to pair persisted state with its config."""
        hash_input = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(hash_input.encode()).hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipients": [r.to_dict() for r in self.recipients],
            "agent_account": self.agent_account,
            "network": self.network,
            "emergency_operator": self.emergency_operator,
            "drain_destination": self.drain_destination,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TreasuryConfig":
        """Create from dictionary (e.g. a parsed JSON config file)."""
        try:
            recipients = [
                Recipient(account=str(r["account"]), proportion=r["proportion"])
                for r in data["recipients"]
            ]
            return cls(
                recipients=tuple(recipients),
                agent_account=str(data["agent_account"]),
                network=data["network"],
                emergency_operator=str(data["emergency_operator"]),
                drain_destination=str(data["drain_destination"]),
            )
        except (KeyError, TypeError) as e:
            raise ConfigurationError(f"Malformed configuration: {e}", cause=e) from e


@dataclass(frozen=True)
class InitialValidator:
    """Validator the principal is staked to when the treasury is created."""

    identity: str
    position: int

    def __post_init__(self):
        if is_zero_identifier(self.identity):
            raise ConfigurationError("validator identity must be non-zero", field_name="validator")
        if not isinstance(self.position, int) or self.position < 0:
            raise ConfigurationError("validator position must be >= 0", field_name="validator")


def load_config_file(path: str) -> tuple[TreasuryConfig, InitialValidator]:
    """
    Load the deployment configuration from a JSON file.

    Expected layout:
        {
            "recipients": [{"account": "0x..", "proportion": 625}, ...],
            "agent_account": "0x..",
            "network": 1,
            "emergency_operator": "0x..",
            "drain_destination": "0x..",
            "validator": {"identity": "0x..", "position": 0}
        }

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Config file not found: {path}", cause=e) from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in config file: {e}", cause=e) from e

    config = TreasuryConfig.from_dict(data)
    validator = data.get("validator") or {}
    try:
        initial = InitialValidator(
            identity=str(validator["identity"]),
            position=validator["position"],
        )
    except KeyError as e:
        raise ConfigurationError(f"Missing validator field: {e}", field_name="validator", cause=e) from e
    return config, initial


# =============================================================================
# Tunable Settings
# =============================================================================


@dataclass(frozen=True)
class TreasurySettings:
    """Thresholds and intervals for the decision engines."""

    min_interval_blocks: int = DEFAULT_MIN_INTERVAL_BLOCKS
    validator_check_interval: int = DEFAULT_VALIDATOR_CHECK_INTERVAL
    existential_amount: int = DEFAULT_EXISTENTIAL_AMOUNT
    rate_spike_multiplier: int = DEFAULT_RATE_SPIKE_MULTIPLIER
    absolute_spike_multiplier: int = DEFAULT_ABSOLUTE_SPIKE_MULTIPLIER
    emergency_timelock: int = DEFAULT_EMERGENCY_TIMELOCK

    # Fixed point scale for reward rates
    rate_precision: int = field(default=10**18, repr=False)

    def __post_init__(self):
        for name in (
            "min_interval_blocks",
            "validator_check_interval",
            "existential_amount",
            "emergency_timelock",
        ):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} cannot be negative", field_name=name)
        if self.rate_spike_multiplier < 1 or self.absolute_spike_multiplier < 1:
            raise ConfigurationError("spike multipliers must be at least 1", field_name="multiplier")

    @classmethod
    def from_env(cls) -> "TreasurySettings":
        """Create settings from environment variables."""
        try:
            return cls(
                min_interval_blocks=int(
                    os.getenv("STEWARD_MIN_INTERVAL_BLOCKS", str(DEFAULT_MIN_INTERVAL_BLOCKS))
                ),
                validator_check_interval=int(
                    os.getenv("STEWARD_VALIDATOR_CHECK_INTERVAL", str(DEFAULT_VALIDATOR_CHECK_INTERVAL))
                ),
                existential_amount=int(
                    os.getenv("STEWARD_EXISTENTIAL_AMOUNT", str(DEFAULT_EXISTENTIAL_AMOUNT))
                ),
                rate_spike_multiplier=int(
                    os.getenv("STEWARD_RATE_SPIKE_MULTIPLIER", str(DEFAULT_RATE_SPIKE_MULTIPLIER))
                ),
                absolute_spike_multiplier=int(
                    os.getenv("STEWARD_ABSOLUTE_SPIKE_MULTIPLIER", str(DEFAULT_ABSOLUTE_SPIKE_MULTIPLIER))
                ),
                emergency_timelock=int(
                    os.getenv("STEWARD_EMERGENCY_TIMELOCK", str(DEFAULT_EMERGENCY_TIMELOCK))
                ),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}", cause=e) from e

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_interval_blocks": self.min_interval_blocks,
            "validator_check_interval": self.validator_check_interval,
            "existential_amount": self.existential_amount,
            "rate_spike_multiplier": self.rate_spike_multiplier,
            "absolute_spike_multiplier": self.absolute_spike_multiplier,
            "emergency_timelock": self.emergency_timelock,
        }
