"""
Tests for the emergency drain controller (src/emergency_drain.py)

Tests cover:
- Operator-only request and execution
- Timelock boundary
- Operator and public cancellation
- Transfer failure keeps the request pending
"""

import pytest

from chain_interface import MockStakingGateway
from conftest import AGENT, DESTINATION, NETWORK, OPERATOR, VALIDATOR_0
from emergency_drain import DrainRequest, DrainStatus, EmergencyDrainController
from treasury_exceptions import (
    DrainAlreadyRequested,
    DrainTransferFailed,
    LedgerUnavailable,
    NoBalance,
    NoPendingRequest,
    TimelockNotExpired,
    Unauthorized,
)

TIMELOCK = 86_400
T = 5_000


@pytest.fixture
def gateway():
    gw = MockStakingGateway(network=NETWORK)
    gw.set_stake(AGENT, VALIDATOR_0, 777_000)
    return gw


@pytest.fixture
def controller(gateway):
    return EmergencyDrainController(
        gateway,
        operator=OPERATOR,
        destination=DESTINATION,
        agent_account=AGENT,
        network=NETWORK,
        timelock=TIMELOCK,
    )


class TestRequest:
    """Tests for arming a drain."""

    def test_operator_request(self, controller):
        unlock = controller.request_drain(OPERATOR, T)

        assert unlock == T + TIMELOCK
        assert controller.request.status == DrainStatus.REQUESTED
        assert controller.status(T) == (True, TIMELOCK)

    def test_non_operator_rejected(self, controller):
        with pytest.raises(Unauthorized):
            controller.request_drain("0xstranger", T)

        assert not controller.is_pending

    def test_duplicate_request_rejected(self, controller):
        controller.request_drain(OPERATOR, T)

        with pytest.raises(DrainAlreadyRequested):
            controller.request_drain(OPERATOR, T + 10)

        assert controller.request.requested_at == T

    def test_idle_status(self, controller):
        assert controller.status(T) == (False, 0)


class TestExecute:
    """Tests for executing a drain."""

    def test_timelock_boundary(self, controller, gateway):
        controller.request_drain(OPERATOR, T)

        with pytest.raises(TimelockNotExpired):
            controller.execute_drain(OPERATOR, T + TIMELOCK - 1, VALIDATOR_0)

        amount = controller.execute_drain(OPERATOR, T + TIMELOCK, VALIDATOR_0)

        assert amount == 777_000
        assert gateway.stake_of(DESTINATION, VALIDATOR_0) == 777_000
        assert gateway.stake_of(AGENT, VALIDATOR_0) == 0
        assert not controller.is_pending
        assert controller.request.last_drained_amount == 777_000

        with pytest.raises(NoPendingRequest):
            controller.execute_drain(OPERATOR, T + TIMELOCK + 1, VALIDATOR_0)

    def test_non_operator_cannot_execute(self, controller):
        controller.request_drain(OPERATOR, T)

        with pytest.raises(Unauthorized):
            controller.execute_drain("0xstranger", T + TIMELOCK, VALIDATOR_0)

    def test_execute_without_request(self, controller):
        with pytest.raises(NoPendingRequest):
            controller.execute_drain(OPERATOR, T, VALIDATOR_0)

    def test_empty_balance(self, controller, gateway):
        gateway.set_stake(AGENT, VALIDATOR_0, 0)
        controller.request_drain(OPERATOR, T)

        with pytest.raises(NoBalance):
            controller.execute_drain(OPERATOR, T + TIMELOCK, VALIDATOR_0)

        assert controller.is_pending

    def test_balance_read_failure(self, controller, gateway):
        controller.request_drain(OPERATOR, T)
        gateway.fail_balance = True

        with pytest.raises(LedgerUnavailable):
            controller.execute_drain(OPERATOR, T + TIMELOCK, VALIDATOR_0)

    def test_transfer_failure_keeps_request(self, controller, gateway):
        controller.request_drain(OPERATOR, T)
        gateway.fail_transfers_to = {DESTINATION}

        with pytest.raises(DrainTransferFailed):
            controller.execute_drain(OPERATOR, T + TIMELOCK, VALIDATOR_0)

        assert controller.is_pending
        gateway.fail_transfers_to = set()
        assert controller.execute_drain(OPERATOR, T + TIMELOCK + 5, VALIDATOR_0) == 777_000


class TestCancel:
    """Tests for cancelling a drain."""

    def test_operator_cancels_any_time(self, controller):
        controller.request_drain(OPERATOR, T)

        controller.cancel_drain(OPERATOR, T + 1)

        assert not controller.is_pending

    def test_public_cancel_before_window(self, controller):
        controller.request_drain(OPERATOR, T)

        with pytest.raises(Unauthorized):
            controller.cancel_drain("0xanyone", T + 2 * TIMELOCK - 1)

        assert controller.is_pending

    def test_public_cancel_after_window(self, controller):
        controller.request_drain(OPERATOR, T)

        controller.cancel_drain("0xanyone", T + 2 * TIMELOCK)

        assert not controller.is_pending

    def test_cancel_without_request(self, controller):
        with pytest.raises(NoPendingRequest):
            controller.cancel_drain(OPERATOR, T)

    def test_request_again_after_cancel(self, controller):
        controller.request_drain(OPERATOR, T)
        controller.cancel_drain(OPERATOR, T + 1)

        assert controller.request_drain(OPERATOR, T + 2) == T + 2 + TIMELOCK


class TestDrainRequest:
    def test_round_trip(self):
        request = DrainRequest(requested_at=10, last_drained_amount=5, last_drained_block=3)

        assert DrainRequest.from_dict(request.to_dict()) == request

    def test_from_empty_dict_is_idle(self):
        assert DrainRequest.from_dict({}).status == DrainStatus.IDLE

    def test_request_at_genesis_round_trip(self):
        request = DrainRequest(requested_at=0)

        restored = DrainRequest.from_dict(request.to_dict())

        assert restored.status == DrainStatus.REQUESTED
        assert restored.requested_at == 0


class TestGenesisBlock:
    """A drain armed at block 0 keeps the exact timelock boundary."""

    def test_unlocks_exactly_after_timelock(self, controller):
        assert controller.request_drain(OPERATOR, 0) == TIMELOCK
        assert controller.is_pending
        assert controller.status(0) == (True, TIMELOCK)

    def test_execute_at_boundary(self, controller, gateway):
        controller.request_drain(OPERATOR, 0)

        with pytest.raises(TimelockNotExpired):
            controller.execute_drain(OPERATOR, TIMELOCK - 1, VALIDATOR_0)

        assert controller.execute_drain(OPERATOR, TIMELOCK, VALIDATOR_0) == 777_000
        assert not controller.is_pending
        assert controller.request.requested_at is None
