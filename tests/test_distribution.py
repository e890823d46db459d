"""
Tests for yield splitting and payout (src/distribution.py)

Tests cover:
- Basis point shares with the remainder to the last recipient
- Per-recipient failure isolation
- Zero shares
"""

import pytest

from chain_interface import MockStakingGateway
from conftest import AGENT, NETWORK, VALIDATOR_0, make_recipients
from distribution import DistributionEngine, PaymentStatus, split_yield
from treasury_exceptions import ReentrancyError

SCENARIO_PROPORTIONS = [100, 100, 500] + [700] * 12 + [900]


class TestSplitYield:
    """Tests for share computation."""

    def test_scenario_proportions(self):
        shares = split_yield(1_000, make_recipients(SCENARIO_PROPORTIONS))

        assert shares[0] == 10
        assert shares[1] == 10
        assert shares[2] == 50
        assert sum(shares) == 1_000

    def test_last_recipient_takes_remainder(self):
        shares = split_yield(1_001, make_recipients())

        assert shares[:15] == [62] * 15
        assert shares[15] == 1_001 - 62 * 15

    @pytest.mark.parametrize("amount", [0, 1, 15, 16, 9_999, 10**12 + 7])
    def test_shares_always_sum_to_amount(self, amount):
        shares = split_yield(amount, make_recipients(SCENARIO_PROPORTIONS))

        assert sum(shares) == amount
        assert all(share >= 0 for share in shares)

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            split_yield(-1, make_recipients())


class TestPayOut:
    """Tests for issuing transfers."""

    @pytest.fixture
    def gateway(self):
        gw = MockStakingGateway(network=NETWORK)
        gw.set_stake(AGENT, VALIDATOR_0, 100_000)
        return gw

    @pytest.fixture
    def engine(self, gateway):
        return DistributionEngine(gateway, make_recipients(SCENARIO_PROPORTIONS), AGENT, NETWORK)

    def test_pays_every_recipient_in_order(self, engine, gateway):
        report = engine.pay_out(1_000, VALIDATOR_0)

        assert report.total_paid == 1_000
        assert [t["to"] for t in gateway.transfers] == [f"0xr{i:02d}" for i in range(16)]
        assert gateway.stake_of("0xr02", VALIDATOR_0) == 50
        assert gateway.stake_of(AGENT, VALIDATOR_0) == 99_000

    def test_failed_transfer_does_not_stop_others(self, engine, gateway):
        gateway.fail_transfers_to = {"0xr01"}

        report = engine.pay_out(1_000, VALIDATOR_0)

        assert len(report.failures) == 1
        assert report.failures[0].recipient == "0xr01"
        assert report.total_paid == 990
        assert len(gateway.transfers) == 15
        assert report.results[2].status == PaymentStatus.PAID

    def test_rejected_reentrant_call_is_recorded(self, engine, gateway):
        def reenter(body):
            if body["to"] == "0xr05":
                raise ReentrancyError("distribute", held_by="distribute")

        gateway.on_transfer = reenter

        report = engine.pay_out(1_000, VALIDATOR_0)

        assert report.results[5].status == PaymentStatus.FAILED
        assert "Reentrant" in report.results[5].reason
        assert report.total_paid == 1_000 - report.results[5].amount

    def test_programming_errors_propagate(self, engine, gateway):
        def broken(body):
            if body["to"] == "0xr05":
                raise TypeError("unsupported operand")

        gateway.on_transfer = broken

        with pytest.raises(TypeError):
            engine.pay_out(1_000, VALIDATOR_0)

        assert len(gateway.transfers) == 5

    def test_zero_shares_are_skipped(self, engine, gateway):
        report = engine.pay_out(10, VALIDATOR_0)

        skipped = [r for r in report.results if r.status == PaymentStatus.SKIPPED]
        assert len(skipped) == 15
        assert report.results[15].amount == 10
        assert len(gateway.transfers) == 1

    def test_report_to_dict(self, engine):
        data = engine.pay_out(1_000, VALIDATOR_0).to_dict()

        assert data["approved"] == 1_000
        assert data["failed"] == 0
        assert len(data["payments"]) == 16
