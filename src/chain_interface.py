"""
YieldSteward - Staking Chain Interface

Collaborator contracts consumed by the treasury engines, and a client
for a JSON HTTP staking gateway that implements them.

- LedgerGateway: staked balances, transfers and validator-to-validator moves
- ValidatorDirectory: per-position permit/activity/identity/stake/dividend
- StakingGatewayClient: requests-based implementation of both
- MockStakingGateway: in-memory implementation for tests and simulation

Core principle: every call either returns a value or raises GatewayError.
Nothing partial leaks into the treasury's state.
"""

import hashlib
import json
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from treasury_exceptions import GatewayError

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_GATEWAY_ENDPOINT = os.getenv("STEWARD_GATEWAY_URL", "http://localhost:9933")

API_VERSION = "v1"

# Timeouts (seconds)
DEFAULT_TIMEOUT = 30
CONNECT_TIMEOUT = 10

# Retry configuration (reads only; transfers and moves are never replayed)
MAX_RETRIES = 4
RETRY_BACKOFF_FACTOR = 2

# Dividend share is reported on a 16-bit scale
MAX_DIVIDEND = 65535

MAX_AUDIT_LOG_ENTRIES = 1000


# =============================================================================
# Collaborator Contracts
# =============================================================================


class LedgerGateway(ABC):
    """Staking ledger operations used by the treasury."""

    @abstractmethod
    def balance_of(self, owner: str, validator: str, network: int) -> int:
        """Amount `owner` has staked to `validator` on `network`."""

    @abstractmethod
    def transfer(
        self, from_account: str, to_account: str, validator: str, amount: int, network: int
    ) -> None:
        """Transfer stake from one account to another. Raises GatewayError on failure."""

    @abstractmethod
    def move(
        self,
        owner: str,
        from_validator: str,
        to_validator: str,
        from_network: int,
        to_network: int,
        amount: int,
    ) -> None:
        """Move stake between validators. Raises GatewayError on failure."""

    @abstractmethod
    def current_block(self) -> int:
        """Current block height, the treasury's unit of time."""


class ValidatorDirectory(ABC):
    """Network metadata about validator positions."""

    @abstractmethod
    def has_permit(self, network: int, position: int) -> bool:
        pass

    @abstractmethod
    def is_active(self, network: int, position: int) -> bool:
        pass

    @abstractmethod
    def identity_at(self, network: int, position: int) -> str:
        pass

    @abstractmethod
    def stake_at(self, network: int, position: int) -> int:
        pass

    @abstractmethod
    def dividend_at(self, network: int, position: int) -> int:
        pass

    @abstractmethod
    def position_count(self, network: int) -> int:
        pass


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class ValidatorRecord:
    """A validator position as reported by the directory."""

    identity: str
    permit: bool = True
    active: bool = True
    stake: int = 0
    dividend: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "permit": self.permit,
            "active": self.active,
            "stake": self.stake,
            "dividend": self.dividend,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ValidatorRecord":
        return cls(
            identity=str(data["identity"]),
            permit=bool(data.get("permit", False)),
            active=bool(data.get("active", False)),
            stake=int(data.get("stake", 0)),
            dividend=int(data.get("dividend", 0)),
        )


# =============================================================================
# Gateway Client
# =============================================================================


class StakingGatewayClient(LedgerGateway, ValidatorDirectory):
    """
    Client for the staking gateway HTTP API.

    Features:
    - Automatic retry with exponential backoff for idempotent reads
    - Connect/read timeouts
    - Request audit log
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_GATEWAY_ENDPOINT,
        timeout: int = DEFAULT_TIMEOUT,
        verify_ssl: bool = True,
        api_token: str | None = None,
    ):
        """
        Initialize the gateway client.

        Args:
            endpoint: Gateway base URL
            timeout: Read timeout in seconds
            verify_ssl: Whether to verify SSL certificates
            api_token: Optional bearer token for the gateway
        """
        self.endpoint = endpoint.rstrip("/")
        self.api_base = f"{self.endpoint}/api/{API_VERSION}"
        self.timeout = timeout
        self.verify_ssl = verify_ssl

        self.audit_log: list[dict[str, Any]] = []

        self.session = requests.Session()
        self._setup_session(api_token)

    def _setup_session(self, api_token: str | None) -> None:
        """Set up requests session with retry logic."""
        retry_strategy = Retry(
            total=MAX_RETRIES,
            backoff_factor=RETRY_BACKOFF_FACTOR,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "HEAD"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self.session.headers.update(
            {
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": f"YieldSteward-Python/{API_VERSION}",
            }
        )
        if api_token:
            self.session.headers["Authorization"] = f"Bearer {api_token}"

    def _record(self, entry: dict[str, Any]) -> None:
        self.audit_log.append(entry)
        if len(self.audit_log) > MAX_AUDIT_LOG_ENTRIES:
            del self.audit_log[: len(self.audit_log) - MAX_AUDIT_LOG_ENTRIES]

    def _make_request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> tuple[bool, Any]:
        """
        Make an HTTP request to the gateway.

        Args:
            method: HTTP method
            path: API path (without base URL)
            body: Request body (will be JSON-encoded)
            params: Query parameters

        Returns:
            Tuple of (success, response_data or error)
        """
        url = f"{self.api_base}{path}"
        body_str = json.dumps(body, sort_keys=True) if body else None

        request_log = {
            "timestamp": datetime.now(UTC).isoformat(),
            "method": method,
            "path": path,
            "params": params,
            "body_hash": hashlib.sha256(body_str.encode()).hexdigest() if body_str else None,
        }

        try:
            response = self.session.request(
                method=method,
                url=url,
                json=body,
                params=params,
                timeout=(CONNECT_TIMEOUT, self.timeout),
                verify=self.verify_ssl,
            )

            request_log["status_code"] = response.status_code
            request_log["success"] = response.ok
            self._record(request_log)

            if response.ok:
                try:
                    return True, response.json()
                except ValueError:
                    return False, {"error": "Invalid JSON response", "status_code": response.status_code}

            error_data = {
                "error": f"HTTP {response.status_code}",
                "status_code": response.status_code,
                "message": response.text,
            }
            try:
                error_data.update(response.json())
            except ValueError:
                pass
            return False, error_data

        except requests.exceptions.Timeout:
            request_log["error"] = "timeout"
            self._record(request_log)
            return False, {"error": "Request timed out"}
        except requests.exceptions.SSLError as e:
            request_log["error"] = f"ssl_error: {e!s}"
            self._record(request_log)
            return False, {"error": f"SSL error: {e!s}"}
        except requests.exceptions.ConnectionError as e:
            request_log["error"] = f"connection_error: {e!s}"
            self._record(request_log)
            return False, {"error": f"Connection error: {e!s}"}
        except requests.exceptions.RequestException as e:
            request_log["error"] = str(e)
            self._record(request_log)
            return False, {"error": str(e)}

    def _call(
        self,
        operation: str,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make a request and raise GatewayError unless it succeeded."""
        success, data = self._make_request(method, path, body=body, params=params)
        if not success:
            error = data.get("error", "unknown error") if isinstance(data, dict) else str(data)
            status_code = data.get("status_code") if isinstance(data, dict) else None
            logger.warning(
                "Gateway %s failed: %s",
                operation,
                error,
                extra={"operation": operation, "status_code": status_code},
            )
            raise GatewayError(error, operation=operation, status_code=status_code)
        if not isinstance(data, dict):
            raise GatewayError("Unexpected response shape", operation=operation)
        return data

    @staticmethod
    def _field(data: dict[str, Any], key: str, operation: str) -> Any:
        if key not in data:
            raise GatewayError(f"Response missing '{key}'", operation=operation)
        return data[key]

    # =========================================================================
    # Ledger Gateway
    # =========================================================================

    def current_block(self) -> int:
        data = self._call("current_block", "GET", "/chain/head")
        return int(self._field(data, "block", "current_block"))

    def balance_of(self, owner: str, validator: str, network: int) -> int:
        data = self._call(
            "balance_of",
            "GET",
            "/stake",
            params={"owner": owner, "validator": validator, "network": network},
        )
        return int(self._field(data, "amount", "balance_of"))

    def transfer(
        self, from_account: str, to_account: str, validator: str, amount: int, network: int
    ) -> None:
        data = self._call(
            "transfer",
            "POST",
            "/stake/transfer",
            body={
                "from": from_account,
                "to": to_account,
                "validator": validator,
                "amount": str(amount),
                "network": network,
            },
        )
        if not data.get("ok", False):
            raise GatewayError(data.get("reason", "transfer rejected"), operation="transfer")

    def move(
        self,
        owner: str,
        from_validator: str,
        to_validator: str,
        from_network: int,
        to_network: int,
        amount: int,
    ) -> None:
        data = self._call(
            "move",
            "POST",
            "/stake/move",
            body={
                "owner": owner,
                "from_validator": from_validator,
                "to_validator": to_validator,
                "from_network": from_network,
                "to_network": to_network,
                "amount": str(amount),
            },
        )
        if not data.get("ok", False):
            raise GatewayError(data.get("reason", "move rejected"), operation="move")

    # =========================================================================
    # Validator Directory
    # =========================================================================

    def get_validator(self, network: int, position: int) -> ValidatorRecord:
        """Fetch the full record for a validator position."""
        data = self._call("get_validator", "GET", f"/validators/{network}/{position}")
        try:
            return ValidatorRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise GatewayError(f"Malformed validator record: {e}", operation="get_validator", cause=e) from e

    def has_permit(self, network: int, position: int) -> bool:
        return self.get_validator(network, position).permit

    def is_active(self, network: int, position: int) -> bool:
        return self.get_validator(network, position).active

    def identity_at(self, network: int, position: int) -> str:
        return self.get_validator(network, position).identity

    def stake_at(self, network: int, position: int) -> int:
        return self.get_validator(network, position).stake

    def dividend_at(self, network: int, position: int) -> int:
        return self.get_validator(network, position).dividend

    def position_count(self, network: int) -> int:
        data = self._call("position_count", "GET", f"/validators/{network}/count")
        return int(self._field(data, "count", "position_count"))


# =============================================================================
# Mock Gateway (for testing and simulation)
# =============================================================================


class MockStakingGateway(StakingGatewayClient):
    """
    Mock gateway for testing without a live staking network.

    Simulates ledger and directory behavior locally. Failure injection:
    - fail_balance: balance reads fail
    - fail_directory: every directory read fails
    - fail_positions: directory reads for these positions fail
    - fail_transfers_to: transfers to these accounts fail
    - fail_moves: validator moves fail
    - on_transfer: callback invoked before each transfer is applied
    """

    def __init__(self, network: int = 1, block: int = 0):
        super().__init__(endpoint="http://mock:9933", verify_ssl=False)

        self.network = network
        self.block = block

        # (owner, validator, network) -> amount
        self._stakes: dict[tuple[str, str, int], int] = {}
        # network -> positions
        self._validators: dict[int, list[ValidatorRecord]] = {network: []}

        self.transfers: list[dict[str, Any]] = []
        self.moves: list[dict[str, Any]] = []

        self.fail_balance = False
        self.fail_directory = False
        self.fail_positions: set[int] = set()
        self.fail_transfers_to: set[str] = set()
        self.fail_moves = False
        self.on_transfer: Callable[[dict[str, Any]], None] | None = None

    # -- Simulation helpers ---------------------------------------------------

    def advance(self, blocks: int) -> int:
        """Advance the block height and return the new height."""
        self.block += blocks
        return self.block

    def add_validator(self, record: ValidatorRecord, network: int | None = None) -> int:
        """Register a validator position and return its index."""
        positions = self._validators.setdefault(self.network if network is None else network, [])
        positions.append(record)
        return len(positions) - 1

    def validator(self, position: int, network: int | None = None) -> ValidatorRecord:
        return self._validators[self.network if network is None else network][position]

    def set_stake(self, owner: str, validator: str, amount: int, network: int | None = None) -> None:
        self._stakes[(owner, validator, self.network if network is None else network)] = amount

    def add_stake(self, owner: str, validator: str, amount: int, network: int | None = None) -> None:
        key = (owner, validator, self.network if network is None else network)
        self._stakes[key] = self._stakes.get(key, 0) + amount

    def stake_of(self, owner: str, validator: str, network: int | None = None) -> int:
        return self._stakes.get((owner, validator, self.network if network is None else network), 0)

    # -- Request routing ------------------------------------------------------

    def _make_request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> tuple[bool, Any]:
        """Override to use in-memory state instead of HTTP."""
        self._record(
            {
                "timestamp": datetime.now(UTC).isoformat(),
                "method": method,
                "path": path,
                "params": params,
                "mock": True,
            }
        )

        if path == "/chain/head" and method == "GET":
            return True, {"block": self.block}
        if path == "/stake" and method == "GET":
            return self._mock_balance(params or {})
        if path == "/stake/transfer" and method == "POST":
            return self._mock_transfer(body or {})
        if path == "/stake/move" and method == "POST":
            return self._mock_move(body or {})
        if path.startswith("/validators/") and method == "GET":
            parts = path.strip("/").split("/")
            if len(parts) == 3 and parts[2] == "count":
                return self._mock_position_count(int(parts[1]))
            if len(parts) == 3:
                return self._mock_get_validator(int(parts[1]), int(parts[2]))

        return False, {"error": f"Unknown path: {path}", "status_code": 404}

    def _mock_balance(self, params: dict[str, Any]) -> tuple[bool, Any]:
        if self.fail_balance:
            return False, {"error": "balance unavailable", "status_code": 503}
        key = (params["owner"], params["validator"], int(params["network"]))
        return True, {"amount": self._stakes.get(key, 0)}

    def _mock_transfer(self, body: dict[str, Any]) -> tuple[bool, Any]:
        amount = int(body["amount"])
        if body["to"] in self.fail_transfers_to:
            return True, {"ok": False, "reason": "destination rejected"}

        if self.on_transfer:
            self.on_transfer(body)

        source = (body["from"], body["validator"], int(body["network"]))
        available = self._stakes.get(source, 0)
        if amount > available:
            return True, {"ok": False, "reason": "insufficient stake"}

        self._stakes[source] = available - amount
        destination = (body["to"], body["validator"], int(body["network"]))
        self._stakes[destination] = self._stakes.get(destination, 0) + amount
        self.transfers.append({"to": body["to"], "amount": amount, "validator": body["validator"]})
        return True, {"ok": True}

    def _mock_move(self, body: dict[str, Any]) -> tuple[bool, Any]:
        if self.fail_moves:
            return False, {"error": "move failed", "status_code": 500}

        amount = int(body["amount"])
        source = (body["owner"], body["from_validator"], int(body["from_network"]))
        available = self._stakes.get(source, 0)
        if amount > available:
            return True, {"ok": False, "reason": "insufficient stake"}

        self._stakes[source] = available - amount
        destination = (body["owner"], body["to_validator"], int(body["to_network"]))
        self._stakes[destination] = self._stakes.get(destination, 0) + amount
        self.moves.append(
            {"from": body["from_validator"], "to": body["to_validator"], "amount": amount}
        )
        return True, {"ok": True}

    def _mock_position_count(self, network: int) -> tuple[bool, Any]:
        if self.fail_directory:
            return False, {"error": "directory unavailable", "status_code": 503}
        return True, {"count": len(self._validators.get(network, []))}

    def _mock_get_validator(self, network: int, position: int) -> tuple[bool, Any]:
        if self.fail_directory or position in self.fail_positions:
            return False, {"error": "directory unavailable", "status_code": 503}
        positions = self._validators.get(network, [])
        if position >= len(positions):
            return False, {"error": f"No validator at position {position}", "status_code": 404}
        return True, positions[position].to_dict()
