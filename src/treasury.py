"""
YieldSteward - Treasury Agent
Autonomous distribution of staking yield with principal protection.

Purpose:
- Claims the yield earned by a fixed principal position each interval
- Splits it among 16 recipients by fixed basis-point proportions
- Locks externally added capital as principal instead of paying it out
- Keeps the stake on a healthy validator, migrating when needed
- Offers a timelocked, cancellable emergency drain of the whole balance

Core Properties:
- Permissionless: anyone may trigger distribution and validator checks
- Single owner of all mutable state; only the operations below mutate it
- Transparent: every outcome is emitted as an event and logged
- Guarded: distribution and drain execution reject reentrant calls
"""

import logging
from collections.abc import Callable
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from chain_interface import LedgerGateway, ValidatorDirectory
from distribution import DistributionEngine, PaymentStatus
from emergency_drain import DrainRequest, EmergencyDrainController
from monitoring.logging import LoggingContext
from monitoring.metrics import MetricsCollector, metrics
from principal_tracker import PrincipalTracker, YieldState
from treasury_config import InitialValidator, Recipient, TreasuryConfig, TreasurySettings
from treasury_exceptions import (
    ConfigurationError,
    GatewayError,
    LedgerUnavailable,
    ReentrancyError,
    TooSoon,
)
from validator_monitor import HealthCheckResult, HealthState, ValidatorHealthMonitor, ValidatorReference

logger = logging.getLogger(__name__)

STATE_VERSION = 1
MAX_EVENTS = 10_000


class YieldTreasury:
    """
    Treasury agent for a staked principal.

    Key Design Principles:
    - Principal never decreases across a distribution cycle
    - Payout shares always add up to the approved yield
    - Collaborator failures inside loops are recorded, never fatal to the loop
    - Validator reference changes only after the stake move succeeded
    """

    def __init__(
        self,
        config: TreasuryConfig,
        ledger: LedgerGateway,
        directory: ValidatorDirectory,
        validator: InitialValidator | ValidatorReference,
        settings: TreasurySettings | None = None,
        clock: Callable[[], int] | None = None,
        yield_state: YieldState | None = None,
        drain_request: DrainRequest | None = None,
        metrics_collector: MetricsCollector | None = None,
    ):
        """
        Initialize the treasury.

        Args:
            config: Immutable deployment configuration
            ledger: Staking ledger gateway
            directory: Validator directory
            validator: Validator currently holding the principal
            settings: Tunable thresholds (defaults to reference values)
            clock: Returns the current block (defaults to ledger.current_block)
            yield_state: Restored state; when None the principal is read from the ledger
            drain_request: Restored drain request
            metrics_collector: Metrics sink (defaults to the global collector)
        """
        self.config = config
        self.settings = settings or TreasurySettings()
        self.ledger = ledger
        self.directory = directory
        self._clock = clock or ledger.current_block
        self.metrics = metrics_collector or metrics

        self._validator = ValidatorReference(validator.identity, validator.position)
        self._entered: str | None = None

        # Audit trail
        self.events: list[dict[str, Any]] = []

        if yield_state is None:
            now = self._now()
            try:
                balance = ledger.balance_of(config.agent_account, self._validator.identity, config.network)
            except GatewayError as e:
                raise LedgerUnavailable("initialize", cause=e) from e
            yield_state = YieldState(
                principal_locked=balance,
                previous_balance=balance,
                last_transfer_block=now,
                last_validator_check_block=now,
            )
            logger.info(
                "Treasury initialized with principal %d on validator %s",
                balance,
                self._validator.identity,
            )

        self.tracker = PrincipalTracker(yield_state, self.settings)
        self.engine = DistributionEngine(
            ledger, config.recipients, config.agent_account, config.network
        )
        self.monitor = ValidatorHealthMonitor(
            ledger, directory, config.agent_account, config.network
        )
        self.drain = EmergencyDrainController(
            ledger,
            operator=config.emergency_operator,
            destination=config.drain_destination,
            agent_account=config.agent_account,
            network=config.network,
            timelock=self.settings.emergency_timelock,
            request=drain_request,
        )

        self._update_gauges()

    # ==================== STATE ACCESS ====================

    @property
    def state(self) -> YieldState:
        return self.tracker.state

    @property
    def principal_locked(self) -> int:
        return self.tracker.state.principal_locked

    @property
    def last_payment_amount(self) -> int:
        return self.tracker.state.last_payment_amount

    @property
    def last_transfer_block(self) -> int:
        return self.tracker.state.last_transfer_block

    @property
    def current_validator(self) -> ValidatorReference:
        return self._validator

    def _now(self) -> int:
        try:
            return int(self._clock())
        except GatewayError as e:
            raise LedgerUnavailable("read_block", cause=e) from e

    @contextmanager
    def _non_reentrant(self, action: str):
        """Hold the reentrancy flag for the duration of a guarded operation."""
        if self._entered is not None:
            logger.error("Rejected reentrant %s during %s", action, self._entered)
            raise ReentrancyError(action, held_by=self._entered)
        self._entered = action
        try:
            yield
        finally:
            self._entered = None

    # ==================== DISTRIBUTION ====================

    def distribute(self) -> dict[str, Any]:
        """
        Run one distribution cycle. Callable by anyone.

        Raises:
            TooSoon: If MIN_INTERVAL blocks have not passed since the last cycle
            LedgerUnavailable: If the staked balance could not be read
            ReentrancyError: If called from within a guarded operation

        Returns:
            Summary of the cycle
        """
        with self._non_reentrant("distribute"):
            now = self._now()
            state = self.tracker.state
            next_allowed = state.last_transfer_block + self.settings.min_interval_blocks
            if now < next_allowed:
                raise TooSoon(now, next_allowed)

            with LoggingContext(operation="distribute", block=now):
                return self._run_cycle(now)

    def _run_cycle(self, now: int) -> dict[str, Any]:
        state = self.tracker.state

        validator_check = None
        if now >= state.last_validator_check_block + self.settings.validator_check_interval:
            validator_check = self._run_health_check(now)

        validator = self._validator.identity
        try:
            balance = self.ledger.balance_of(self.config.agent_account, validator, self.config.network)
        except GatewayError as e:
            raise LedgerUnavailable("distribute", cause=e) from e

        assessment = self.tracker.assess(balance, now)
        self.tracker.commit(assessment)

        if assessment.principal_added > 0:
            self.metrics.increment("principal_detections_total")
            self._emit_event("PrincipalDetected", {
                "amount": assessment.principal_added,
                "new_total": state.principal_locked,
                "rate_spike": assessment.rate_spike,
                "absolute_spike": assessment.absolute_spike,
            }, now)

        result: dict[str, Any] = {
            "block": now,
            "balance": balance,
            "principal_locked": state.principal_locked,
            "principal_added": assessment.principal_added,
            "used_fallback": assessment.used_fallback,
            "validator_check": validator_check.to_dict() if validator_check else None,
        }

        if not assessment.distributable:
            self.tracker.skip(now, balance)
            reason = "below_existential" if assessment.below_existential else "no_yield"
            logger.info(
                "Nothing distributed this cycle (%s)", reason,
                extra={"yield_amount": assessment.yield_amount},
            )
            self.metrics.increment("distributions_skipped_total", labels={"reason": reason})
            self._update_gauges()
            result.update({"status": "skipped", "reason": reason, "yield": assessment.yield_amount,
                           "total_paid": 0, "payments": []})
            return result

        if assessment.used_fallback:
            logger.warning(
                "Balance %d not above principal %d, repeating last payment %d",
                balance, state.principal_locked, assessment.yield_amount,
            )

        report = self.engine.pay_out(assessment.yield_amount, validator)
        for payment in report.results:
            if payment.status == PaymentStatus.PAID:
                self.metrics.increment("recipient_payments_total", labels={"status": "paid"})
                self._emit_event("RecipientPaid", {
                    "recipient": payment.recipient,
                    "amount": payment.amount,
                    "proportion": payment.proportion,
                }, now)
            elif payment.status == PaymentStatus.FAILED:
                self.metrics.increment("recipient_payments_total", labels={"status": "failed"})
                self._emit_event("TransferFailed", {
                    "recipient": payment.recipient,
                    "amount": payment.amount,
                    "reason": payment.reason,
                }, now)

        total_paid = report.total_paid
        self.tracker.settle(now, balance, total_paid)

        self._emit_event("DistributionCompleted", {
            "total": total_paid,
            "new_balance": state.previous_balance,
        }, now)
        self.metrics.increment("distributions_total")
        self._update_gauges()

        result.update({
            "status": "distributed",
            "yield": assessment.yield_amount,
            "total_paid": total_paid,
            "failed": len(report.failures),
            "new_balance": state.previous_balance,
            "payments": [p.to_dict() for p in report.results],
        })
        return result

    # ==================== VALIDATOR HEALTH ====================

    def check_and_switch(self) -> dict[str, Any]:
        """Check the current validator and migrate if unhealthy. Callable by anyone."""
        now = self._now()
        with LoggingContext(operation="check_and_switch", block=now):
            return self._run_health_check(now).to_dict()

    def _run_health_check(self, now: int) -> HealthCheckResult:
        result = self.monitor.check(self._validator)
        self.tracker.state.last_validator_check_block = now
        self.metrics.increment("validator_checks_total", labels={"outcome": result.state.value})

        for position, reason in result.skipped_positions:
            self._emit_event("CandidateSkipped", {"position": position, "reason": reason}, now)

        if result.state == HealthState.SWITCHED:
            self._validator = result.current
            self._emit_event("ValidatorSwitched", {
                "old_identity": result.previous.identity,
                "new_identity": result.current.identity,
                "new_position": result.current.position,
                "reason": result.reason,
                "moved_amount": result.moved_amount,
            }, now)
        elif result.state in (
            HealthState.CHECK_FAILED, HealthState.NO_CANDIDATE, HealthState.NOTHING_TO_MOVE
        ):
            self._emit_event("ValidatorCheckFailed", {"reason": result.reason}, now)

        return result

    # ==================== EMERGENCY DRAIN ====================

    def request_emergency_drain(self, caller: str) -> dict[str, Any]:
        """Arm the emergency drain. Operator only."""
        now = self._now()
        unlock_block = self.drain.request_drain(caller, now)
        self.metrics.increment("emergency_drain_total", labels={"action": "requested"})
        self._emit_event("EmergencyDrainRequested", {"unlock_block": unlock_block}, now)
        return {"status": "requested", "requested_at": self.drain.request.requested_at,
                "unlock_block": unlock_block}

    def execute_emergency_drain(self, caller: str) -> dict[str, Any]:
        """Drain the whole balance to the configured destination. Operator only."""
        with self._non_reentrant("execute_emergency_drain"):
            now = self._now()
            amount = self.drain.execute_drain(caller, now, self._validator.identity)
            self.metrics.increment("emergency_drain_total", labels={"action": "executed"})
            self._emit_event("EmergencyDrainExecuted", {
                "destination": self.config.drain_destination,
                "amount": amount,
            }, now)
            return {"status": "executed", "amount": amount,
                    "destination": self.config.drain_destination}

    def cancel_emergency_drain(self, caller: str) -> dict[str, Any]:
        """Cancel the pending drain. Operator any time, anyone after 2x timelock."""
        now = self._now()
        self.drain.cancel_drain(caller, now)
        self.metrics.increment("emergency_drain_total", labels={"action": "cancelled"})
        self._emit_event("EmergencyDrainCancelled", {"cancelled_by": caller}, now)
        return {"status": "cancelled", "cancelled_by": caller}

    # ==================== QUERIES ====================

    def get_staked_balance(self) -> int:
        return self.ledger.balance_of(
            self.config.agent_account, self._validator.identity, self.config.network
        )

    def get_available_rewards(self) -> int:
        """Balance above the locked principal."""
        return max(0, self.get_staked_balance() - self.principal_locked)

    def get_next_transfer_amount(self) -> int:
        """Amount the next distribution would pay at the current balance."""
        return self.tracker.preview(self.get_staked_balance(), self._now())

    def can_execute_transfer(self) -> bool:
        return self.blocks_until_next_transfer() == 0

    def blocks_until_next_transfer(self) -> int:
        next_allowed = self.last_transfer_block + self.settings.min_interval_blocks
        return max(0, next_allowed - self._now())

    def get_current_validator_info(self) -> tuple[str, int, bool]:
        """Return (identity, position, is_valid) for the current validator."""
        is_valid = self.monitor.evaluate(self._validator) is None
        return self._validator.identity, self._validator.position, is_valid

    def get_recipients(self) -> list[Recipient]:
        return list(self.config.recipients)

    def get_recipient(self, index: int) -> Recipient:
        if not 0 <= index < len(self.config.recipients):
            raise IndexError(f"Recipient index {index} out of range")
        return self.config.recipients[index]

    def get_recipient_count(self) -> int:
        return len(self.config.recipients)

    def get_emergency_drain_status(self) -> tuple[bool, int]:
        """Return (is_pending, blocks until execution is allowed)."""
        return self.drain.status(self._now())

    def get_statistics(self) -> dict[str, Any]:
        """Snapshot of state and configuration, without ledger calls."""
        event_counts: dict[str, int] = {}
        for event in self.events:
            event_counts[event["event_type"]] = event_counts.get(event["event_type"], 0) + 1

        return {
            "yield_state": self.tracker.state.to_dict(),
            "validator": self._validator.to_dict(),
            "drain": self.drain.request.to_dict(),
            "recipients": len(self.config.recipients),
            "network": self.config.network,
            "event_counts": event_counts,
            "configuration": self.settings.to_dict(),
        }

    def get_audit_trail(self, limit: int = 100, event_type: str | None = None) -> list[dict[str, Any]]:
        """Get recent audit trail events, newest first."""
        events = self.events
        if event_type:
            events = [e for e in events if e["event_type"] == event_type]
        return list(reversed(events[-limit:])) if limit > 0 else []

    # ==================== PERSISTENCE ====================

    def to_dict(self) -> dict[str, Any]:
        """Serialize mutable state for persistence between invocations."""
        return {
            "version": STATE_VERSION,
            "config_fingerprint": self.config.fingerprint,
            "validator": self._validator.to_dict(),
            "yield_state": self.tracker.state.to_dict(),
            "drain_request": self.drain.request.to_dict(),
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        config: TreasuryConfig,
        ledger: LedgerGateway,
        directory: ValidatorDirectory,
        settings: TreasurySettings | None = None,
        clock: Callable[[], int] | None = None,
        metrics_collector: MetricsCollector | None = None,
    ) -> "YieldTreasury":
        """Restore a treasury from `to_dict()` output."""
        if data.get("version") != STATE_VERSION:
            raise ConfigurationError(
                f"Unsupported state version: {data.get('version')}", field_name="version"
            )
        if data.get("config_fingerprint") != config.fingerprint:
            raise ConfigurationError(
                "Persisted state belongs to a different configuration",
                field_name="config_fingerprint",
            )
        try:
            validator = ValidatorReference.from_dict(data["validator"])
            yield_state = YieldState.from_dict(data["yield_state"])
            drain_request = DrainRequest.from_dict(data.get("drain_request", {}))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Malformed persisted state: {e}", cause=e) from e

        return cls(
            config,
            ledger,
            directory,
            validator,
            settings=settings,
            clock=clock,
            yield_state=yield_state,
            drain_request=drain_request,
            metrics_collector=metrics_collector,
        )

    # ==================== UTILITY METHODS ====================

    def _update_gauges(self) -> None:
        state = self.tracker.state
        self.metrics.set_gauge("principal_locked", state.principal_locked)
        self.metrics.set_gauge("last_payment_amount", state.last_payment_amount)

    def _emit_event(self, event_type: str, data: dict[str, Any], block: int) -> None:
        """Emit an event for the audit trail."""
        event = {
            "event_type": event_type,
            "block": block,
            "timestamp": datetime.now(UTC).isoformat(),
            "data": data,
        }
        self.events.append(event)
        if len(self.events) > MAX_EVENTS:
            del self.events[: len(self.events) - MAX_EVENTS]

        level = logging.WARNING if event_type in ("TransferFailed", "ValidatorCheckFailed") else logging.INFO
        logger.log(level, event_type, extra={"event": data, "block": block})
