"""
Tests for the treasury agent (src/treasury.py)

Tests cover:
- Creation and principal locking
- Distribution cycles, fallback and principal detection
- Dust threshold boundary
- Automatic and manual validator health checks
- Emergency drain lifecycle
- Reentrancy protection
- Queries, metrics and persistence
"""

import pytest

from chain_interface import ValidatorRecord
from conftest import (
    AGENT,
    DESTINATION,
    OPERATOR,
    PRINCIPAL,
    START_BLOCK,
    VALIDATOR_0,
    VALIDATOR_1,
    make_config,
)
from treasury import YieldTreasury
from treasury_config import InitialValidator, TreasurySettings
from treasury_exceptions import (
    ConfigurationError,
    LedgerUnavailable,
    NoPendingRequest,
    ReentrancyError,
    TimelockNotExpired,
    TooSoon,
    Unauthorized,
)

INTERVAL = 7200
TIMELOCK = 86400
SCENARIO_PROPORTIONS = [100, 100, 500] + [700] * 12 + [900]


def accrue(gateway, amount, blocks=INTERVAL):
    """Credit rewards to the agent's stake and move time forward."""
    if amount:
        gateway.add_stake(AGENT, VALIDATOR_0, amount)
    gateway.advance(blocks)


def event_types(treasury):
    return [e["event_type"] for e in treasury.events]


def build(gateway, collector, config=None, settings=None, validator=VALIDATOR_0, position=0):
    return YieldTreasury(
        config or make_config(),
        gateway,
        gateway,
        InitialValidator(identity=validator, position=position),
        settings=settings or TreasurySettings(existential_amount=1),
        metrics_collector=collector,
    )


# ============================================================
# Creation
# ============================================================


class TestCreation:
    """Tests for treasury initialization."""

    def test_principal_read_from_ledger(self, treasury):
        assert treasury.principal_locked == PRINCIPAL
        assert treasury.state.previous_balance == PRINCIPAL
        assert treasury.last_transfer_block == START_BLOCK
        assert treasury.state.last_validator_check_block == START_BLOCK
        assert treasury.current_validator.identity == VALIDATOR_0

    def test_creation_fails_without_balance(self, gateway, collector):
        gateway.fail_balance = True

        with pytest.raises(LedgerUnavailable):
            build(gateway, collector)

    def test_starts_without_events(self, treasury):
        assert treasury.events == []


# ============================================================
# Distribution
# ============================================================


class TestDistribution:
    """Tests for distribution cycles."""

    def test_too_soon_changes_nothing(self, treasury, gateway):
        accrue(gateway, 500, blocks=INTERVAL - 1)
        before = treasury.to_dict()

        with pytest.raises(TooSoon) as exc_info:
            treasury.distribute()

        assert exc_info.value.next_allowed_block == START_BLOCK + INTERVAL
        assert treasury.to_dict() == before
        assert treasury.events == []
        assert gateway.transfers == []

    def test_scenario_proportional_payout(self, gateway, collector):
        treasury = build(gateway, collector, config=make_config(SCENARIO_PROPORTIONS))
        accrue(gateway, 1_000)

        result = treasury.distribute()

        assert result["status"] == "distributed"
        assert gateway.stake_of("0xr00", VALIDATOR_0) == 10
        assert gateway.stake_of("0xr01", VALIDATOR_0) == 10
        assert gateway.stake_of("0xr02", VALIDATOR_0) == 50
        assert result["total_paid"] == 1_000
        assert treasury.principal_locked == PRINCIPAL
        assert treasury.last_payment_amount == 1_000
        assert treasury.state.previous_balance == PRINCIPAL
        assert event_types(treasury).count("RecipientPaid") == 16
        assert event_types(treasury)[-1] == "DistributionCompleted"

    def test_flat_balance_repeats_last_payment(self, treasury, gateway):
        accrue(gateway, 1_600)
        treasury.distribute()
        accrue(gateway, 0)

        result = treasury.distribute()

        assert result["used_fallback"]
        assert result["total_paid"] == 1_600
        assert treasury.principal_locked == PRINCIPAL

    def test_added_principal_is_locked(self, treasury, gateway):
        accrue(gateway, 200)
        treasury.distribute()
        accrue(gateway, 810)

        result = treasury.distribute()

        assert result["principal_added"] == 610
        assert result["total_paid"] == 200
        assert treasury.principal_locked == PRINCIPAL + 610
        detected = treasury.get_audit_trail(event_type="PrincipalDetected")
        assert detected[0]["data"]["amount"] == 610
        assert detected[0]["data"]["new_total"] == PRINCIPAL + 610

    def test_nothing_to_distribute_resets_markers(self, treasury, gateway):
        accrue(gateway, 0)

        result = treasury.distribute()

        assert result["status"] == "skipped"
        assert result["reason"] == "no_yield"
        assert treasury.last_transfer_block == START_BLOCK + INTERVAL
        assert "DistributionCompleted" not in event_types(treasury)

    def test_failed_transfer_is_reported_and_excluded(self, treasury, gateway):
        gateway.fail_transfers_to = {"0xr03"}
        accrue(gateway, 1_600)

        result = treasury.distribute()

        assert result["failed"] == 1
        assert result["total_paid"] == 1_500
        assert treasury.last_payment_amount == 1_500
        assert treasury.state.previous_balance == PRINCIPAL + 100
        failed = treasury.get_audit_trail(event_type="TransferFailed")
        assert failed[0]["data"]["recipient"] == "0xr03"

    def test_balance_read_failure(self, treasury, gateway):
        accrue(gateway, 1_600)
        gateway.fail_balance = True

        with pytest.raises(LedgerUnavailable):
            treasury.distribute()

        assert treasury.last_transfer_block == START_BLOCK
        assert treasury._entered is None


class TestDustThreshold:
    """Tests for the existential amount boundary."""

    @pytest.fixture
    def dusty(self, gateway, collector):
        return build(gateway, collector, settings=TreasurySettings(existential_amount=1_600))

    def test_exact_threshold_distributes(self, dusty, gateway):
        accrue(gateway, 1_600)

        result = dusty.distribute()

        assert result["status"] == "distributed"
        assert result["total_paid"] == 1_600

    def test_one_below_threshold_pays_nothing(self, dusty, gateway):
        accrue(gateway, 1_599)

        result = dusty.distribute()

        assert result["status"] == "skipped"
        assert result["reason"] == "below_existential"
        assert gateway.transfers == []
        assert dusty.last_transfer_block == START_BLOCK + INTERVAL
        assert dusty.state.previous_balance == PRINCIPAL + 1_599
        assert "DistributionCompleted" not in event_types(dusty)


# ============================================================
# Validator Health
# ============================================================


class TestValidatorHealth:
    """Tests for health checks through the treasury."""

    def test_manual_check_healthy(self, treasury, gateway):
        gateway.advance(5)

        result = treasury.check_and_switch()

        assert result["state"] == "healthy"
        assert treasury.state.last_validator_check_block == START_BLOCK + 5

    def test_scenario_best_candidate(self, treasury, gateway):
        gateway.validator(1).stake = 2_000
        gateway.validator(1).dividend = 15_000
        gateway.add_validator(ValidatorRecord("0xval2", stake=3_000, dividend=5_000))
        gateway.validator(0).permit = False

        result = treasury.check_and_switch()

        assert result["state"] == "switched"
        assert treasury.current_validator.identity == "0xval2"
        assert treasury.get_current_validator_info() == ("0xval2", 2, True)
        assert gateway.stake_of(AGENT, "0xval2") == PRINCIPAL
        switched = treasury.get_audit_trail(event_type="ValidatorSwitched")[0]["data"]
        assert switched["old_identity"] == VALIDATOR_0
        assert switched["reason"] == "Validator lost permit"

    def test_distribution_runs_due_check(self, treasury, gateway):
        gateway.validator(0).active = False
        accrue(gateway, 1_600)

        result = treasury.distribute()

        assert result["validator_check"]["state"] == "switched"
        assert treasury.current_validator.identity == VALIDATOR_1
        assert all(t["validator"] == VALIDATOR_1 for t in gateway.transfers)
        assert result["total_paid"] == 1_600

    def test_no_candidate_keeps_validator(self, treasury, gateway):
        gateway.validator(0).permit = False
        gateway.validator(1).permit = False

        result = treasury.check_and_switch()

        assert result["state"] == "no_candidate"
        assert treasury.current_validator.identity == VALIDATOR_0
        assert "ValidatorCheckFailed" in event_types(treasury)

    def test_empty_stake_keeps_validator(self, treasury, gateway):
        gateway.set_stake(AGENT, VALIDATOR_0, 0)
        gateway.validator(0).permit = False

        result = treasury.check_and_switch()

        assert result["state"] == "nothing_to_move"
        assert treasury.current_validator.identity == VALIDATOR_0
        assert gateway.moves == []
        assert "ValidatorSwitched" not in event_types(treasury)
        assert "ValidatorCheckFailed" in event_types(treasury)

    def test_skipped_candidates_are_reported(self, treasury, gateway):
        gateway.validator(0).permit = False
        gateway.fail_positions = {1}

        treasury.check_and_switch()

        skipped = treasury.get_audit_trail(event_type="CandidateSkipped")
        assert skipped[0]["data"]["position"] == 1

    def test_invalid_validator_info(self, treasury, gateway):
        gateway.validator(0).identity = "0xreplaced"

        assert treasury.get_current_validator_info() == (VALIDATOR_0, 0, False)


# ============================================================
# Emergency Drain
# ============================================================


class TestEmergencyDrain:
    """Tests for the drain lifecycle through the treasury."""

    def test_scenario_timelock(self, treasury, gateway):
        result = treasury.request_emergency_drain(OPERATOR)
        assert result["unlock_block"] == START_BLOCK + TIMELOCK

        gateway.advance(TIMELOCK - 1)
        with pytest.raises(TimelockNotExpired):
            treasury.execute_emergency_drain(OPERATOR)

        gateway.advance(1)
        executed = treasury.execute_emergency_drain(OPERATOR)

        assert executed["amount"] == PRINCIPAL
        assert gateway.stake_of(DESTINATION, VALIDATOR_0) == PRINCIPAL
        with pytest.raises(NoPendingRequest):
            treasury.execute_emergency_drain(OPERATOR)
        assert event_types(treasury) == ["EmergencyDrainRequested", "EmergencyDrainExecuted"]

    def test_drain_status(self, treasury, gateway):
        assert treasury.get_emergency_drain_status() == (False, 0)

        treasury.request_emergency_drain(OPERATOR)
        gateway.advance(400)

        assert treasury.get_emergency_drain_status() == (True, TIMELOCK - 400)

    def test_stranger_cannot_request(self, treasury):
        with pytest.raises(Unauthorized):
            treasury.request_emergency_drain("0xstranger")

        assert treasury.events == []

    def test_public_cancel_after_window(self, treasury, gateway):
        treasury.request_emergency_drain(OPERATOR)
        gateway.advance(2 * TIMELOCK)

        treasury.cancel_emergency_drain("0xanyone")

        cancelled = treasury.get_audit_trail(event_type="EmergencyDrainCancelled")
        assert cancelled[0]["data"]["cancelled_by"] == "0xanyone"
        assert treasury.get_emergency_drain_status() == (False, 0)


# ============================================================
# Reentrancy
# ============================================================


class TestReentrancy:
    """Tests for the guard on distribute and drain execution."""

    def test_reentrant_distribute_fails_only_that_transfer(self, treasury, gateway):
        calls = []

        def reenter(body):
            calls.append(body["to"])
            if len(calls) == 1:
                treasury.distribute()

        gateway.on_transfer = reenter
        accrue(gateway, 1_600)

        result = treasury.distribute()

        assert result["failed"] == 1
        assert "Reentrant" in result["payments"][0]["reason"]
        assert result["total_paid"] == 1_500
        assert treasury._entered is None

    def test_reentrant_call_during_drain(self, treasury, gateway):
        treasury.request_emergency_drain(OPERATOR)
        gateway.advance(TIMELOCK)
        gateway.on_transfer = lambda body: treasury.distribute()

        with pytest.raises(ReentrancyError):
            treasury.execute_emergency_drain(OPERATOR)

        assert treasury.get_emergency_drain_status()[0]
        assert gateway.stake_of(AGENT, VALIDATOR_0) == PRINCIPAL

    def test_guard_released_after_error(self, treasury):
        with pytest.raises(TooSoon):
            treasury.distribute()

        assert treasury._entered is None


# ============================================================
# Queries and Metrics
# ============================================================


class TestQueries:
    """Tests for read-only queries."""

    def test_rewards_and_preview(self, treasury, gateway):
        accrue(gateway, 1_600)
        before = treasury.to_dict()

        assert treasury.get_staked_balance() == PRINCIPAL + 1_600
        assert treasury.get_available_rewards() == 1_600
        assert treasury.get_next_transfer_amount() == 1_600
        assert treasury.to_dict() == before

    def test_transfer_timing(self, treasury, gateway):
        assert not treasury.can_execute_transfer()
        assert treasury.blocks_until_next_transfer() == INTERVAL

        gateway.advance(INTERVAL)

        assert treasury.can_execute_transfer()
        assert treasury.blocks_until_next_transfer() == 0

    def test_recipients(self, treasury):
        assert treasury.get_recipient_count() == 16
        assert treasury.get_recipient(15).account == "0xr15"
        with pytest.raises(IndexError):
            treasury.get_recipient(16)

    def test_audit_trail_newest_first(self, treasury, gateway):
        accrue(gateway, 1_600)
        treasury.distribute()

        trail = treasury.get_audit_trail(limit=2)

        assert trail[0]["event_type"] == "DistributionCompleted"
        assert trail[1]["event_type"] == "RecipientPaid"
        assert trail[0]["block"] == START_BLOCK + INTERVAL

    def test_statistics(self, treasury, gateway):
        accrue(gateway, 1_600)
        treasury.distribute()

        stats = treasury.get_statistics()

        assert stats["recipients"] == 16
        assert stats["event_counts"]["RecipientPaid"] == 16
        assert stats["yield_state"]["last_payment_amount"] == 1_600
        assert stats["drain"]["requested_at"] is None

    def test_metrics(self, treasury, gateway, collector):
        gateway.fail_transfers_to = {"0xr00"}
        accrue(gateway, 1_600)
        treasury.distribute()

        assert collector.get_counter("distributions_total") == 1
        assert collector.get_counter("recipient_payments_total", labels={"status": "paid"}) == 15
        assert collector.get_counter("recipient_payments_total", labels={"status": "failed"}) == 1
        assert collector.get_counter("validator_checks_total", labels={"outcome": "healthy"}) == 1
        assert collector.get_gauge("last_payment_amount") == 1_500
        assert collector.get_gauge("principal_locked") == PRINCIPAL


# ============================================================
# Persistence
# ============================================================


class TestPersistence:
    """Tests for snapshot round-trips."""

    def test_round_trip_continues_schedule(self, treasury, gateway, config, settings, collector):
        accrue(gateway, 200)
        treasury.distribute()
        treasury.request_emergency_drain(OPERATOR)

        restored = YieldTreasury.from_dict(
            treasury.to_dict(), config, gateway, gateway, settings=settings, metrics_collector=collector
        )

        assert restored.to_dict() == treasury.to_dict()
        assert restored.get_emergency_drain_status()[0]
        with pytest.raises(TooSoon):
            restored.distribute()

        accrue(gateway, 810)
        assert restored.distribute()["principal_added"] == 610

    def test_restore_does_not_reread_principal(self, treasury, gateway, config, settings):
        snapshot = treasury.to_dict()
        gateway.add_stake(AGENT, VALIDATOR_0, 5_000)

        restored = YieldTreasury.from_dict(snapshot, config, gateway, gateway, settings=settings)

        assert restored.principal_locked == PRINCIPAL

    def test_config_mismatch(self, treasury, gateway):
        other = make_config(drain_destination="0xelsewhere")

        with pytest.raises(ConfigurationError, match="different configuration"):
            YieldTreasury.from_dict(treasury.to_dict(), other, gateway, gateway)

    def test_unknown_version(self, treasury, gateway, config):
        snapshot = treasury.to_dict()
        snapshot["version"] = 99

        with pytest.raises(ConfigurationError):
            YieldTreasury.from_dict(snapshot, config, gateway, gateway)

    def test_malformed_snapshot(self, treasury, gateway, config):
        snapshot = treasury.to_dict()
        del snapshot["yield_state"]["principal_locked"]

        with pytest.raises(ConfigurationError, match="Malformed"):
            YieldTreasury.from_dict(snapshot, config, gateway, gateway)
