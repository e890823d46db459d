"""
YieldSteward - Distribution Engine

Splits an approved yield among the configured recipients and issues the
transfers. The last recipient absorbs the rounding remainder, so the shares
always add up to exactly the approved amount. Each transfer is attempted on
its own; one failure never stops the others.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from chain_interface import LedgerGateway
from treasury_config import BASIS_POINTS, Recipient
from treasury_exceptions import GatewayError, ReentrancyError

logger = logging.getLogger(__name__)


class PaymentStatus(Enum):
    """Outcome of a single recipient transfer."""

    PAID = "paid"
    FAILED = "failed"
    SKIPPED = "skipped"  # Share rounded down to zero


@dataclass(frozen=True)
class PaymentResult:
    """Per-recipient result of a payout."""

    index: int
    recipient: str
    proportion: int
    amount: int
    status: PaymentStatus
    reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == PaymentStatus.PAID

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "recipient": self.recipient,
            "proportion": self.proportion,
            "amount": self.amount,
            "status": self.status.value,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class PayoutReport:
    """Aggregate of a payout run."""

    approved: int
    results: tuple[PaymentResult, ...]

    @property
    def total_paid(self) -> int:
        return sum(r.amount for r in self.results if r.succeeded)

    @property
    def failures(self) -> list[PaymentResult]:
        return [r for r in self.results if r.status == PaymentStatus.FAILED]

    def to_dict(self) -> dict[str, Any]:
        return {
            "approved": self.approved,
            "total_paid": self.total_paid,
            "failed": len(self.failures),
            "payments": [r.to_dict() for r in self.results],
        }


def split_yield(amount: int, recipients: Sequence[Recipient]) -> list[int]:
    """
    Compute each recipient's share of `amount`.

    Non-last shares are floor(amount * proportion / 10000); the last share
    is whatever remains.
    """
    if amount < 0:
        raise ValueError("amount cannot be negative")
    if not recipients:
        return []

    shares = []
    remaining = amount
    for recipient in recipients[:-1]:
        share = amount * recipient.proportion // BASIS_POINTS
        shares.append(share)
        remaining -= share
    shares.append(remaining)
    return shares


class DistributionEngine:
    """Issues the per-recipient transfers for an approved yield."""

    def __init__(
        self,
        ledger: LedgerGateway,
        recipients: Sequence[Recipient],
        agent_account: str,
        network: int,
    ):
        self.ledger = ledger
        self.recipients = tuple(recipients)
        self.agent_account = agent_account
        self.network = network

    def pay_out(self, amount: int, validator: str) -> PayoutReport:
        """
        Transfer each recipient's share of `amount`, staked with `validator`.

        Returns:
            PayoutReport with one result per recipient, in list order
        """
        results = []
        for index, (recipient, share) in enumerate(zip(self.recipients, split_yield(amount, self.recipients))):
            if share == 0:
                results.append(
                    PaymentResult(index, recipient.account, recipient.proportion, 0, PaymentStatus.SKIPPED)
                )
                continue

            try:
                self.ledger.transfer(
                    self.agent_account, recipient.account, validator, share, self.network
                )
            except (GatewayError, ReentrancyError) as e:
                # Gateway failures and rejected reentrant callbacks stay local to this recipient
                logger.warning(
                    "Transfer to recipient %d failed: %s",
                    index,
                    e,
                    extra={"recipient": recipient.account, "amount": share},
                )
                results.append(
                    PaymentResult(
                        index,
                        recipient.account,
                        recipient.proportion,
                        share,
                        PaymentStatus.FAILED,
                        reason=str(e),
                    )
                )
                continue

            results.append(
                PaymentResult(index, recipient.account, recipient.proportion, share, PaymentStatus.PAID)
            )

        return PayoutReport(approved=amount, results=tuple(results))
