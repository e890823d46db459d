"""
YieldSteward - Principal/Yield Tracker

Separates organic staking yield from externally added capital.

Each cycle the staked balance is compared with the locked principal. The
increase is yield, unless it looks like a top-up: a reward rate more than
`rate_spike_multiplier` times the last observed rate, or an amount more than
`absolute_spike_multiplier` times the last payment. In that case everything
above the last payment is locked as new principal and only the last payment
is released.

When the balance has not grown past the principal but a previous payment
exists, the previous payment is repeated. Ledger settlement can lag one
cycle behind the rewards it reports.
"""

from dataclasses import dataclass, replace
from typing import Any

from treasury_config import TreasurySettings


@dataclass
class YieldState:
    """Mutable principal and history figures, owned by the treasury."""

    principal_locked: int
    previous_balance: int
    last_transfer_block: int
    last_reward_rate: int = 0
    last_payment_amount: int = 0
    last_validator_check_block: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "principal_locked": self.principal_locked,
            "previous_balance": self.previous_balance,
            "last_transfer_block": self.last_transfer_block,
            "last_reward_rate": self.last_reward_rate,
            "last_payment_amount": self.last_payment_amount,
            "last_validator_check_block": self.last_validator_check_block,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "YieldState":
        return cls(
            principal_locked=int(data["principal_locked"]),
            previous_balance=int(data["previous_balance"]),
            last_transfer_block=int(data["last_transfer_block"]),
            last_reward_rate=int(data.get("last_reward_rate", 0)),
            last_payment_amount=int(data.get("last_payment_amount", 0)),
            last_validator_check_block=int(data.get("last_validator_check_block", 0)),
        )


@dataclass(frozen=True)
class YieldAssessment:
    """Outcome of one yield computation."""

    balance: int
    yield_amount: int
    principal_added: int = 0
    current_rate: int | None = None
    used_fallback: bool = False
    rate_spike: bool = False
    absolute_spike: bool = False
    below_existential: bool = False

    @property
    def distributable(self) -> bool:
        return self.yield_amount > 0 and not self.below_existential

    def to_dict(self) -> dict[str, Any]:
        return {
            "balance": self.balance,
            "yield_amount": self.yield_amount,
            "principal_added": self.principal_added,
            "current_rate": self.current_rate,
            "used_fallback": self.used_fallback,
            "rate_spike": self.rate_spike,
            "absolute_spike": self.absolute_spike,
            "below_existential": self.below_existential,
        }


class PrincipalTracker:
    """Computes yield and commits principal/rate bookkeeping."""

    def __init__(self, state: YieldState, settings: TreasurySettings | None = None):
        self.state = state
        self.settings = settings or TreasurySettings()

    def assess(self, balance: int, now: int) -> YieldAssessment:
        """
        Decide how much of `balance` is distributable yield.

        Pure: reads the state but never writes it. `commit()` applies the
        principal and rate updates of an assessment.
        """
        state = self.state

        if balance <= state.principal_locked:
            if state.last_payment_amount > 0:
                return self._with_guard(
                    YieldAssessment(
                        balance=balance,
                        yield_amount=state.last_payment_amount,
                        used_fallback=True,
                    )
                )
            return YieldAssessment(balance=balance, yield_amount=0)

        yield_amount = balance - state.principal_locked
        elapsed = now - state.last_transfer_block
        if elapsed <= 0:
            return self._with_guard(YieldAssessment(balance=balance, yield_amount=yield_amount))

        current_rate = yield_amount * self.settings.rate_precision // elapsed

        if state.last_payment_amount > 0 and state.previous_balance > 0:
            rate_spike = (
                state.last_reward_rate > 0
                and current_rate > state.last_reward_rate * self.settings.rate_spike_multiplier
            )
            absolute_spike = (
                yield_amount > state.last_payment_amount * self.settings.absolute_spike_multiplier
            )
            if rate_spike or absolute_spike:
                return self._with_guard(
                    YieldAssessment(
                        balance=balance,
                        yield_amount=state.last_payment_amount,
                        principal_added=yield_amount - state.last_payment_amount,
                        current_rate=current_rate,
                        rate_spike=rate_spike,
                        absolute_spike=absolute_spike,
                    )
                )

        # First cycle lands here too: the rate becomes the baseline
        return self._with_guard(
            YieldAssessment(balance=balance, yield_amount=yield_amount, current_rate=current_rate)
        )

    def _with_guard(self, assessment: YieldAssessment) -> YieldAssessment:
        if assessment.yield_amount < self.settings.existential_amount:
            return replace(assessment, below_existential=True)
        return assessment

    def commit(self, assessment: YieldAssessment) -> None:
        """Apply principal additions and the observed reward rate."""
        if assessment.principal_added > 0:
            self.state.principal_locked += assessment.principal_added
        if assessment.current_rate is not None:
            self.state.last_reward_rate = assessment.current_rate

    def settle(self, now: int, balance: int, paid: int) -> None:
        """Record the end of a distribution cycle."""
        self.state.last_transfer_block = now
        self.state.last_payment_amount = paid
        self.state.previous_balance = balance - paid

    def skip(self, now: int, balance: int) -> None:
        """Reset the time markers for a cycle that paid nothing."""
        self.state.last_transfer_block = now
        self.state.previous_balance = balance

    def preview(self, balance: int, now: int) -> int:
        """Amount the next distribution would pay, without side effects."""
        assessment = self.assess(balance, now)
        return assessment.yield_amount if assessment.distributable else 0
