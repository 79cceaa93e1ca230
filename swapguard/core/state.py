"""
swapguard Transaction State & Outcome Enums
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

Core enums that define the states a transaction moves through,
its terminal outcomes, and the severities of emitted events.
"""

import logging
from enum import StrEnum

__all__ = ["TransactionState", "Outcome", "Severity", "ExitCode"]


class TransactionState(StrEnum):
    """
    Lifecycle state of a RollbackController.

    - IDLE: Nothing captured, live state untouched.
    - SNAPSHOT_TAKEN: A durable snapshot exists; no mutation yet.
    - MUTATING: The mutation plan is running.
    - VERIFYING: The plan finished; criteria are being checked.
    - COMMITTED: New state accepted.
    - ROLLED_BACK: Original state restored.
    - FAILED: Restore could not complete; manual recovery required.
    """

    IDLE = "IDLE"
    SNAPSHOT_TAKEN = "SNAPSHOT_TAKEN"
    MUTATING = "MUTATING"
    VERIFYING = "VERIFYING"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"
    FAILED = "FAILED"

    def is_terminal(self) -> bool:
        """Return True if no automatic transition leaves this state."""
        return self in (
            TransactionState.COMMITTED,
            TransactionState.ROLLED_BACK,
            TransactionState.FAILED,
        )

    def is_interruptible(self) -> bool:
        """Return True if an interruption in this state forces a rollback."""
        return self in (
            TransactionState.SNAPSHOT_TAKEN,
            TransactionState.MUTATING,
            TransactionState.VERIFYING,
        )


class Outcome(StrEnum):
    """Terminal result of a transaction."""

    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"
    FAILED = "FAILED"

    def exit_code(self) -> int:
        """Return the CLI exit code for this outcome."""
        return ExitCode.COMMITTED if self is Outcome.COMMITTED else ExitCode.REVERTED


class Severity(StrEnum):
    """Severity of a transition event, as displayed by the CLI."""

    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    SUCCESS = "SUCCESS"

    def log_level(self) -> int:
        """Return the stdlib logging level used for this severity."""
        return {
            Severity.INFO: logging.INFO,
            Severity.WARN: logging.WARNING,
            Severity.ERROR: logging.ERROR,
            Severity.SUCCESS: logging.INFO,
        }[self]


class ExitCode:
    """Process exit codes for the command-line interface."""

    COMMITTED = 0
    REVERTED = 1
    ABORTED = 2
