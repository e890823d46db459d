"""
YieldSteward - Treasury Exception Hierarchy

Provides a consistent set of exceptions for the treasury engines.
All exceptions carry structured error context for logging and monitoring.

Categories:
- Authorization: wrong caller for an operator-only operation
- Timing: too soon, timelock not expired, nothing pending
- Validation: malformed configuration at construction time
- External: ledger gateway / validator directory failures
- Concurrency: reentrant invocation of a guarded operation
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ErrorSeverity(Enum):
    """Severity levels for treasury errors."""
    LOW = "low"           # Expected rejection, caller may retry later
    MEDIUM = "medium"     # Warning, should be monitored
    HIGH = "high"         # Error, requires attention
    CRITICAL = "critical" # Funds may be at risk


@dataclass
class ErrorContext:
    """Structured context for error tracking and debugging."""
    component: str
    action: str
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: dict[str, Any] = field(default_factory=dict)
    severity: ErrorSeverity = ErrorSeverity.MEDIUM

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "component": self.component,
            "action": self.action,
            "timestamp": self.timestamp,
            "details": self.details,
            "severity": self.severity.value
        }


class TreasuryError(Exception):
    """
    Base exception for all treasury errors.

    Includes structured error context for improved debugging
    and integration with monitoring systems.
    """

    def __init__(
        self,
        message: str,
        component: str = "treasury",
        action: str = "unknown",
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        super().__init__(message)
        self.message = message
        self.context = ErrorContext(
            component=component,
            action=action,
            severity=severity,
            details=details or {}
        )
        self.cause = cause

        if cause:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        result = {
            "error_type": type(self).__name__,
            "message": self.message,
            **self.context.to_dict()
        }
        if self.cause:
            result["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause)
            }
        return result

    def __str__(self) -> str:
        base = f"[{self.context.component}:{self.context.action}] {self.message}"
        if self.cause:
            base += f" (caused by: {self.cause})"
        return base


# =============================================================================
# Validation Errors
# =============================================================================

class ConfigurationError(TreasuryError):
    """
    Raised when the treasury configuration is malformed.

    Examples:
    - Wrong number of recipients
    - Zero proportion, or proportions not summing to 10,000
    - Zero or empty identifiers
    """

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        super().__init__(
            message=message,
            component="treasury_config",
            action="validate",
            severity=ErrorSeverity.HIGH,
            details={"field": field_name, **(details or {})},
            cause=cause
        )
        self.field_name = field_name


# =============================================================================
# Authorization Errors
# =============================================================================

class Unauthorized(TreasuryError):
    """Caller is not allowed to perform an operator-only operation."""

    def __init__(self, action: str, caller: str | None = None):
        super().__init__(
            message=f"Caller {caller!r} is not authorized to {action}",
            component="emergency_drain",
            action=action,
            severity=ErrorSeverity.HIGH,
            details={"caller": caller}
        )
        self.caller = caller


# =============================================================================
# Timing Errors
# =============================================================================

class TimingError(TreasuryError):
    """Base class for errors raised because an operation is not due."""

    def __init__(
        self,
        message: str,
        component: str,
        action: str,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            component=component,
            action=action,
            severity=ErrorSeverity.LOW,
            details=details
        )


class TooSoon(TimingError):
    """Distribution attempted before the minimum interval elapsed."""

    def __init__(self, current_block: int, next_allowed_block: int):
        super().__init__(
            message=f"Distribution not allowed until block {next_allowed_block}",
            component="distribution",
            action="distribute",
            details={
                "current_block": current_block,
                "next_allowed_block": next_allowed_block,
                "blocks_remaining": next_allowed_block - current_block,
            }
        )
        self.current_block = current_block
        self.next_allowed_block = next_allowed_block


class TimelockNotExpired(TimingError):
    """Emergency drain executed before the timelock expired."""

    def __init__(self, current_block: int, unlock_block: int):
        super().__init__(
            message=f"Emergency drain timelock expires at block {unlock_block}",
            component="emergency_drain",
            action="execute",
            details={"current_block": current_block, "unlock_block": unlock_block}
        )
        self.unlock_block = unlock_block


class NoPendingRequest(TimingError):
    """No emergency drain request is pending."""

    def __init__(self, action: str):
        super().__init__(
            message="No emergency drain request is pending",
            component="emergency_drain",
            action=action
        )


class DrainAlreadyRequested(TimingError):
    """An emergency drain request is already pending."""

    def __init__(self, requested_at: int):
        super().__init__(
            message=f"Emergency drain already requested at block {requested_at}",
            component="emergency_drain",
            action="request",
            details={"requested_at": requested_at}
        )
        self.requested_at = requested_at


# =============================================================================
# External-call Errors
# =============================================================================

class GatewayError(TreasuryError):
    """A ledger gateway or validator directory call failed."""

    def __init__(
        self,
        message: str,
        operation: str = "call",
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        super().__init__(
            message=message,
            component="chain_interface",
            action=operation,
            severity=ErrorSeverity.MEDIUM,
            details={"status_code": status_code, **(details or {})},
            cause=cause
        )
        self.operation = operation
        self.status_code = status_code


class LedgerUnavailable(TreasuryError):
    """An essential balance read failed, so the operation cannot proceed."""

    def __init__(self, action: str, cause: Exception | None = None):
        super().__init__(
            message="Staked balance could not be read",
            component="treasury",
            action=action,
            severity=ErrorSeverity.HIGH,
            cause=cause
        )


class NoBalance(TreasuryError):
    """Emergency drain found nothing to drain."""

    def __init__(self):
        super().__init__(
            message="No staked balance to drain",
            component="emergency_drain",
            action="execute",
            severity=ErrorSeverity.MEDIUM
        )


class DrainTransferFailed(TreasuryError):
    """The drain transfer failed; the pending request is preserved."""

    def __init__(self, amount: int, destination: str, cause: Exception | None = None):
        super().__init__(
            message=f"Transfer of {amount} to drain destination failed",
            component="emergency_drain",
            action="execute",
            severity=ErrorSeverity.CRITICAL,
            details={"amount": amount, "destination": destination},
            cause=cause
        )
        self.amount = amount


# =============================================================================
# Concurrency Errors
# =============================================================================

class ReentrancyError(TreasuryError):
    """A guarded operation was invoked while another one was in progress."""

    def __init__(self, action: str, held_by: str | None = None):
        super().__init__(
            message=f"Reentrant call to {action} rejected",
            component="treasury",
            action=action,
            severity=ErrorSeverity.CRITICAL,
            details={"held_by": held_by}
        )
