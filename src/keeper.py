"""
YieldSteward - Distribution Keeper

Helper for scheduled invocation (cron, CI schedule, systemd timer). Each run
checks whether a distribution is due, runs it, and every few runs also
reports on the current validator, triggering a switch when it is invalid.

Results are plain dictionaries so they can be logged or printed as JSON.
"""

import logging
import os
from typing import Any

from chain_interface import StakingGatewayClient
from monitoring.middleware import timed
from storage.base import StateStore, StorageError
from treasury import YieldTreasury
from treasury_config import TreasurySettings, load_config_file
from treasury_exceptions import TreasuryError

logger = logging.getLogger(__name__)

DEFAULT_CHECK_EVERY = 10


class DistributionKeeper:
    """Drives a YieldTreasury from a scheduler and persists its state."""

    def __init__(
        self,
        treasury: YieldTreasury,
        store: StateStore | None = None,
        check_every: int | None = None,
    ):
        """
        Args:
            treasury: Treasury to drive
            store: Where to persist the treasury snapshot after each run
            check_every: Run a validator status check every N runs
                (defaults to STEWARD_KEEPER_CHECK_EVERY or 10; 0 disables)
        """
        self.treasury = treasury
        self.store = store
        if check_every is None:
            check_every = int(os.getenv("STEWARD_KEEPER_CHECK_EVERY", str(DEFAULT_CHECK_EVERY)))
        self.check_every = check_every
        self.run_count = 0

    @timed("keeper_run_ms")
    def run_once(self, skip_validator_check: bool = False) -> dict[str, Any]:
        """
        Run one keeper cycle.

        Returns:
            Dictionary with success, can_execute, blocks_remaining, amount,
            validator_switched, failed_transfers and error
        """
        result: dict[str, Any] = {
            "success": False,
            "can_execute": False,
            "blocks_remaining": None,
            "amount": None,
            "validator_switched": False,
            "failed_transfers": 0,
            "error": None,
        }
        self.run_count += 1

        try:
            if not skip_validator_check and self.check_every and self.run_count % self.check_every == 0:
                status = self.check_validator_status()
                result["validator_switched"] = status["validator_switched"]

            result["can_execute"] = self.treasury.can_execute_transfer()
            if not result["can_execute"]:
                result["blocks_remaining"] = self.treasury.blocks_until_next_transfer()
                logger.info("Distribution not ready, %d blocks remaining", result["blocks_remaining"])
                return result

            cycle = self.treasury.distribute()
            check = cycle.get("validator_check")
            if check and check["state"] == "switched":
                result["validator_switched"] = True
            result["amount"] = cycle["total_paid"]
            result["failed_transfers"] = cycle.get("failed", 0)
            result["status"] = cycle["status"]
            result["success"] = True
            logger.info(
                "Distribution %s, paid %d", cycle["status"], cycle["total_paid"],
                extra={"failed_transfers": result["failed_transfers"]},
            )
        except TreasuryError as e:
            result["error"] = e.message
            logger.error("Distribution failed: %s", e.message, extra={"error": e.to_dict()})
        finally:
            self._persist(result)

        return result

    def check_validator_status(self, switch: bool = True) -> dict[str, Any]:
        """
        Report on the current validator and, if it is invalid, run a check-and-switch.

        Returns:
            Dictionary with success, identity, position, is_valid, staked_balance,
            validator_switched and error
        """
        status: dict[str, Any] = {
            "success": False,
            "identity": None,
            "position": None,
            "is_valid": False,
            "staked_balance": None,
            "validator_switched": False,
            "error": None,
        }

        try:
            identity, position, is_valid = self.treasury.get_current_validator_info()
            status.update({"identity": identity, "position": position, "is_valid": is_valid})

            if not is_valid:
                logger.warning("Current validator %s at position %d is no longer valid", identity, position)
                if switch:
                    check = self.treasury.check_and_switch()
                    status["validator_switched"] = check["state"] == "switched"
                    status["check"] = check
            else:
                logger.info("Validator status check passed")

            status["staked_balance"] = self.treasury.get_staked_balance()
            status["success"] = True
        except TreasuryError as e:
            status["error"] = e.message
            logger.error("Validator status check failed: %s", e.message)

        return status

    def _persist(self, result: dict[str, Any]) -> None:
        if self.store is None:
            return
        try:
            self.store.save_state(self.treasury.to_dict())
        except StorageError as e:
            logger.error("Failed to persist treasury state: %s", e)
            result["success"] = False
            result["error"] = result["error"] or f"State not saved: {e}"


def load_treasury(
    config_path: str,
    gateway: StakingGatewayClient,
    store: StateStore,
    settings: TreasurySettings | None = None,
) -> YieldTreasury:
    """
    Build the treasury for one invocation.

    Restores the saved snapshot when there is one; otherwise creates a fresh
    treasury, locking the current staked balance as principal, and saves it.

    Raises:
        ConfigurationError: If the config file or snapshot is invalid
        LedgerUnavailable: If a fresh treasury cannot read its balance
        StorageError: If the snapshot cannot be read or written
    """
    config, initial = load_config_file(config_path)
    settings = settings or TreasurySettings.from_env()

    snapshot = store.load_state()
    if snapshot is not None:
        logger.debug("Restoring treasury state from %s", store.__class__.__name__)
        return YieldTreasury.from_dict(snapshot, config, gateway, gateway, settings=settings)

    treasury = YieldTreasury(config, gateway, gateway, initial, settings=settings)
    store.save_state(treasury.to_dict())
    return treasury
