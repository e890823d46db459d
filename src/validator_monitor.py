"""
YieldSteward - Validator Health Monitor

Re-validates the validator the principal is staked to and, when it is no
longer suitable, selects the best alternative and migrates the stake.

A validator is healthy when, at its recorded position, it:
- still holds a validator permit
- is still the identity recorded for that position
- is active

Candidates are ranked by stake boosted by dividend share:
    score = stake * (65535 + dividend) / 65535

The validator reference is only replaced after the stake move succeeded.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from chain_interface import MAX_DIVIDEND, LedgerGateway, ValidatorDirectory
from treasury_exceptions import GatewayError

logger = logging.getLogger(__name__)


class HealthState(Enum):
    """States of a single health check."""

    CHECKING = "checking"
    HEALTHY = "healthy"
    SWITCHING = "switching"
    SWITCHED = "switched"
    NO_CANDIDATE = "no_candidate"
    NOTHING_TO_MOVE = "nothing_to_move"
    CHECK_FAILED = "check_failed"


class SwitchReason(Enum):
    """Which health check failed."""

    LOST_PERMIT = "Validator lost permit"
    IDENTITY_MISMATCH = "Validator identity mismatch at position"
    INACTIVE = "Validator is inactive"


@dataclass(frozen=True)
class ValidatorReference:
    """The validator currently holding the principal."""

    identity: str
    position: int

    def to_dict(self) -> dict[str, Any]:
        return {"identity": self.identity, "position": self.position}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ValidatorReference":
        return cls(identity=str(data["identity"]), position=int(data["position"]))


@dataclass(frozen=True)
class Candidate:
    """An eligible replacement validator."""

    identity: str
    position: int
    stake: int
    dividend: int
    score: int


@dataclass
class HealthCheckResult:
    """Outcome of a check, including the new reference when a switch happened."""

    state: HealthState
    previous: ValidatorReference
    current: ValidatorReference
    reason: str | None = None
    candidate: Candidate | None = None
    moved_amount: int = 0
    skipped_positions: list[tuple[int, str]] = field(default_factory=list)

    @property
    def switched(self) -> bool:
        return self.state == HealthState.SWITCHED

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "previous": self.previous.to_dict(),
            "current": self.current.to_dict(),
            "reason": self.reason,
            "moved_amount": self.moved_amount,
            "skipped_positions": [
                {"position": position, "reason": reason}
                for position, reason in self.skipped_positions
            ],
        }


def score_validator(stake: int, dividend: int) -> int:
    """Stake weighted by dividend share, dividend clamped to 0..65535."""
    dividend = max(0, min(dividend, MAX_DIVIDEND))
    return stake * (MAX_DIVIDEND + dividend) // MAX_DIVIDEND


class ValidatorHealthMonitor:
    """Runs the check → select → migrate state machine."""

    def __init__(
        self,
        ledger: LedgerGateway,
        directory: ValidatorDirectory,
        agent_account: str,
        network: int,
    ):
        self.ledger = ledger
        self.directory = directory
        self.agent_account = agent_account
        self.network = network
        self.state = HealthState.HEALTHY

    def evaluate(self, reference: ValidatorReference) -> SwitchReason | None:
        """
        Run the three health checks.

        Returns:
            None when healthy, otherwise the first failing check

        Raises:
            GatewayError: If the directory could not be read
        """
        has_permit = self.directory.has_permit(self.network, reference.position)
        identity = self.directory.identity_at(self.network, reference.position)
        active = self.directory.is_active(self.network, reference.position)

        if not has_permit:
            return SwitchReason.LOST_PERMIT
        if identity != reference.identity:
            return SwitchReason.IDENTITY_MISMATCH
        if not active:
            return SwitchReason.INACTIVE
        return None

    def find_best_candidate(
        self, exclude_position: int | None = None
    ) -> tuple[Candidate | None, list[tuple[int, str]]]:
        """
        Scan every directory position for the highest scoring eligible validator.

        Unreadable positions are skipped and reported, not fatal.

        Returns:
            Tuple of (best candidate or None, skipped (position, reason) pairs)

        Raises:
            GatewayError: If the position count could not be read
        """
        count = self.directory.position_count(self.network)
        best: Candidate | None = None
        skipped: list[tuple[int, str]] = []

        for position in range(count):
            if position == exclude_position:
                continue
            try:
                if not self.directory.has_permit(self.network, position):
                    continue
                if not self.directory.is_active(self.network, position):
                    continue
                stake = self.directory.stake_at(self.network, position)
                dividend = self.directory.dividend_at(self.network, position)
                identity = self.directory.identity_at(self.network, position)
            except GatewayError as e:
                logger.warning("Skipping validator position %d: %s", position, e.message)
                skipped.append((position, e.message))
                continue

            score = score_validator(stake, dividend)
            if best is None or score > best.score:
                best = Candidate(identity, position, stake, dividend, score)

        return best, skipped

    def check(self, reference: ValidatorReference) -> HealthCheckResult:
        """
        Check the current validator and switch away from it if needed.

        Never raises for collaborator failures; they end in CHECK_FAILED.
        """
        self.state = HealthState.CHECKING
        result = self._run_check(reference)
        self.state = result.state
        return result

    def _run_check(self, reference: ValidatorReference) -> HealthCheckResult:
        try:
            reason = self.evaluate(reference)
        except GatewayError as e:
            logger.warning("Validator check failed: %s", e.message)
            return HealthCheckResult(
                HealthState.CHECK_FAILED, reference, reference,
                reason=f"Directory query failed: {e.message}",
            )

        if reason is None:
            return HealthCheckResult(HealthState.HEALTHY, reference, reference)

        logger.info(
            "Validator %s unhealthy: %s", reference.identity, reason.value,
            extra={"position": reference.position},
        )
        return self._switch(reference, reason)

    def _switch(self, reference: ValidatorReference, reason: SwitchReason) -> HealthCheckResult:
        self.state = HealthState.SWITCHING
        try:
            candidate, skipped = self.find_best_candidate(exclude_position=reference.position)
        except GatewayError as e:
            return HealthCheckResult(
                HealthState.CHECK_FAILED, reference, reference,
                reason=f"Candidate search failed: {e.message}",
            )

        if candidate is None:
            return HealthCheckResult(
                HealthState.NO_CANDIDATE, reference, reference,
                reason=f"{reason.value}; no eligible validator found",
                skipped_positions=skipped,
            )

        try:
            balance = self.ledger.balance_of(self.agent_account, reference.identity, self.network)
            if balance == 0:
                logger.info("No stake on %s, keeping validator reference", reference.identity)
                return HealthCheckResult(
                    HealthState.NOTHING_TO_MOVE, reference, reference,
                    reason=f"{reason.value}; nothing to move",
                    candidate=candidate,
                    skipped_positions=skipped,
                )
            self.ledger.move(
                self.agent_account,
                reference.identity,
                candidate.identity,
                self.network,
                self.network,
                balance,
            )
        except GatewayError as e:
            logger.error("Stake migration to %s failed: %s", candidate.identity, e.message)
            return HealthCheckResult(
                HealthState.CHECK_FAILED, reference, reference,
                reason=f"Stake migration failed: {e.message}",
                candidate=candidate,
                skipped_positions=skipped,
            )

        new_reference = ValidatorReference(candidate.identity, candidate.position)
        return HealthCheckResult(
            HealthState.SWITCHED,
            reference,
            new_reference,
            reason=reason.value,
            candidate=candidate,
            moved_amount=balance,
            skipped_positions=skipped,
        )
