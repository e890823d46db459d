"""
YieldSteward - Emergency Drain Controller

A slow, cancellable exit for the entire staked balance.

Lifecycle:
    IDLE (requested_at is None) -> REQUESTED (requested_at == t) -> IDLE

- Only the emergency operator may request or execute a drain.
- Execution waits for the timelock to expire.
- The operator may cancel at any time. Anyone may cancel once twice the
  timelock has passed, so an absent operator cannot leave a drain armed.
- A failed transfer keeps the request pending; the operator retries
  without waiting for a new timelock.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from chain_interface import LedgerGateway
from treasury_exceptions import (
    DrainAlreadyRequested,
    DrainTransferFailed,
    GatewayError,
    LedgerUnavailable,
    NoBalance,
    NoPendingRequest,
    TimelockNotExpired,
    Unauthorized,
)

logger = logging.getLogger(__name__)


class DrainStatus(Enum):
    """Status of the drain workflow."""

    IDLE = "idle"
    REQUESTED = "requested"


@dataclass
class DrainRequest:
    """The single pending request plus a record of the last executed drain."""

    requested_at: int | None = None
    last_drained_amount: int = 0
    last_drained_block: int = 0

    @property
    def status(self) -> DrainStatus:
        return DrainStatus.IDLE if self.requested_at is None else DrainStatus.REQUESTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "requested_at": self.requested_at,
            "last_drained_amount": self.last_drained_amount,
            "last_drained_block": self.last_drained_block,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DrainRequest":
        return cls(
            requested_at=None if data.get("requested_at") is None else int(data["requested_at"]),
            last_drained_amount=int(data.get("last_drained_amount", 0)),
            last_drained_block=int(data.get("last_drained_block", 0)),
        )


class EmergencyDrainController:
    """Authorization and timelock rules for draining the treasury."""

    def __init__(
        self,
        ledger: LedgerGateway,
        operator: str,
        destination: str,
        agent_account: str,
        network: int,
        timelock: int,
        request: DrainRequest | None = None,
    ):
        self.ledger = ledger
        self.operator = operator
        self.destination = destination
        self.agent_account = agent_account
        self.network = network
        self.timelock = timelock
        self.request = request or DrainRequest()

    @property
    def is_pending(self) -> bool:
        return self.request.status == DrainStatus.REQUESTED

    @property
    def unlock_block(self) -> int:
        return self.request.requested_at + self.timelock

    @property
    def public_cancel_block(self) -> int:
        return self.request.requested_at + 2 * self.timelock

    def _require_operator(self, caller: str, action: str) -> None:
        if caller != self.operator:
            raise Unauthorized(action, caller)

    def request_drain(self, caller: str, now: int) -> int:
        """
        Arm a drain.

        Returns:
            The block at which execution becomes possible
        """
        self._require_operator(caller, "request")
        if self.is_pending:
            raise DrainAlreadyRequested(self.request.requested_at)

        self.request.requested_at = now
        logger.warning(
            "Emergency drain requested, unlocks at block %d", self.unlock_block,
            extra={"operator": caller},
        )
        return self.unlock_block

    def execute_drain(self, caller: str, now: int, validator: str) -> int:
        """
        Transfer the entire balance staked with `validator` to the destination.

        Returns:
            The amount drained
        """
        self._require_operator(caller, "execute")
        if not self.is_pending:
            raise NoPendingRequest("execute")
        if now < self.unlock_block:
            raise TimelockNotExpired(now, self.unlock_block)

        try:
            balance = self.ledger.balance_of(self.agent_account, validator, self.network)
        except GatewayError as e:
            raise LedgerUnavailable("execute_emergency_drain", cause=e) from e
        if balance == 0:
            raise NoBalance()

        try:
            self.ledger.transfer(self.agent_account, self.destination, validator, balance, self.network)
        except GatewayError as e:
            logger.error("Emergency drain transfer failed, request kept pending: %s", e.message)
            raise DrainTransferFailed(balance, self.destination, cause=e) from e

        self.request.requested_at = None
        self.request.last_drained_amount = balance
        self.request.last_drained_block = now
        return balance

    def cancel_drain(self, caller: str, now: int) -> None:
        """Cancel the pending drain (operator any time, anyone after 2x timelock)."""
        if not self.is_pending:
            raise NoPendingRequest("cancel")
        if caller != self.operator and now < self.public_cancel_block:
            raise Unauthorized("cancel", caller)

        self.request.requested_at = None

    def status(self, now: int) -> tuple[bool, int]:
        """Return (is_pending, blocks until the timelock expires)."""
        if not self.is_pending:
            return False, 0
        return True, max(0, self.unlock_block - now)
