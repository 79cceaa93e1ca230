"""
swapguard Custom Exceptions
~~~~~~~~~~~~~~~~~~~~~~~~~~~

All custom exception classes for swapguard, organized by domain.
Every distinct failure mode has its own exception type.

**Structured Error Messages**

Errors that require operator action provide three structured fields:
- ``what_happened``: Clear plain-English description
- ``where``: The step, criterion or snapshot location involved
- ``how_to_fix``: Concrete, actionable steps
"""

from __future__ import annotations

from typing import Any

__all__ = [
    # Base
    "SwapGuardError",
    # Config
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigValidationError",
    # Preconditions
    "PreconditionError",
    "MissingToolError",
    "UnsupportedEnvironmentError",
    "PlanValidationError",
    "AbortedError",
    # Snapshot
    "SnapshotError",
    "SnapshotNotFoundError",
    "SnapshotIntegrityError",
    # Transaction
    "StepExecutionError",
    "StepTimeoutError",
    "VerificationError",
    "TransactionInterruptedError",
    "TransactionStateError",
    "RestoreFailedError",
]


# ── Formatting Helper ────────────────────────────────────────────────────────

_SEPARATOR = "─" * 52


def _format_structured_error(
    title: str,
    what_happened: str,
    where: str,
    how_to_fix: str,
) -> str:
    """Build a structured, multi-line error message."""
    lines = [
        f"  {title}",
        f"  {_SEPARATOR}",
        "  What happened:",
        *[f"    {line}" for line in what_happened.strip().splitlines()],
        "",
        "  Where:",
        f"    {where}",
        "",
        "  How to fix:",
        *[f"    {line}" for line in how_to_fix.strip().splitlines()],
    ]
    return "\n".join(lines)


# ── Base Exception ───────────────────────────────────────────────────────────


class SwapGuardError(Exception):
    """Base exception for all swapguard errors."""

    def __init__(self, message: str = "", details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ── Config Exceptions ────────────────────────────────────────────────────────


class ConfigError(SwapGuardError):
    """Base exception for configuration-related errors."""


class ConfigFileNotFoundError(ConfigError):
    """Raised when a configuration file cannot be found at the specified path."""


class ConfigValidationError(ConfigError):
    """Raised when configuration values fail validation."""


# ── Precondition Exceptions ──────────────────────────────────────────────────


class PreconditionError(SwapGuardError):
    """
    Raised when the environment cannot support a transaction.

    Nothing has been captured or mutated when this is raised.
    """


class MissingToolError(PreconditionError):
    """Raised when a required external tool is not on PATH."""

    def __init__(
        self,
        message: str = "Required tools are missing",
        tools: list[str] | None = None,
        details: dict | None = None,
    ) -> None:
        self.tools = list(tools or [])
        super().__init__(message, details)


class UnsupportedEnvironmentError(PreconditionError):
    """Raised when the process runs in an environment the job refuses."""


class PlanValidationError(PreconditionError):
    """Raised when a MutationPlan is malformed (empty names, misplaced install step)."""


class AbortedError(PreconditionError):
    """Raised when the operator declines to continue."""


# ── Snapshot Exceptions ──────────────────────────────────────────────────────


class SnapshotError(SwapGuardError):
    """Raised when a snapshot cannot be captured, persisted or restored."""

    def __init__(
        self,
        message: str = "Snapshot operation failed",
        path: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.path = path
        super().__init__(message, details)


class SnapshotNotFoundError(SnapshotError):
    """Raised when a snapshot for a given snapshot_id cannot be found."""


class SnapshotIntegrityError(SnapshotError):
    """Raised when stored copies do not match the digests recorded at capture."""


# ── Transaction Exceptions ───────────────────────────────────────────────────


class StepExecutionError(SwapGuardError):
    """
    Raised when a step's command fails or its output fails a success predicate.

    Carries the step name and the captured diagnostic output.
    """

    def __init__(
        self,
        message: str = "Step failed",
        step: str = "",
        output: str = "",
        details: dict | None = None,
    ) -> None:
        self.step = step
        self.output = output
        super().__init__(message, details)


class StepTimeoutError(StepExecutionError):
    """Raised when a step exceeds its deadline."""


class VerificationError(SwapGuardError):
    """Raised when post-mutation state does not match the expected criteria."""

    def __init__(
        self,
        message: str = "Verification failed",
        failed: list[str] | None = None,
        details: dict | None = None,
    ) -> None:
        self.failed = list(failed or [])
        super().__init__(message, details)


class TransactionInterruptedError(SwapGuardError):
    """
    Raised when a signal or user interrupt cancels a running transaction.

    ``partial`` holds whatever per-step results were produced before the
    interruption was honored.
    """

    def __init__(
        self,
        message: str = "Transaction interrupted",
        reason: str = "",
        partial: list[Any] | None = None,
        details: dict | None = None,
    ) -> None:
        self.reason = reason
        self.partial = list(partial or [])
        super().__init__(message, details)


class TransactionStateError(SwapGuardError):
    """Raised on an illegal state transition or a second concurrent transaction."""


class RestoreFailedError(SwapGuardError):
    """
    Raised when the automatic restore could not complete.

    This is the only non-recoverable outcome. The snapshot is retained and
    its location is part of the message so the operator can recover by hand.
    """

    def __init__(
        self,
        message: str = "Restore failed",
        snapshot_id: str = "",
        location: str = "",
        failed_paths: dict[str, str] | None = None,
        details: dict | None = None,
        what_happened: str = "",
        how_to_fix: str = "",
    ) -> None:
        self.snapshot_id = snapshot_id
        self.location = location
        self.failed_paths = dict(failed_paths or {})
        self.what_happened = what_happened or (
            "Automatic rollback could not restore "
            f"{len(self.failed_paths)} path(s):\n"
            + "\n".join(f"{p}: {err}" for p, err in self.failed_paths.items())
        )
        self.how_to_fix = how_to_fix or (
            f"1. Retry the restore once the cause is fixed:\n"
            f"   swapguard rollback {snapshot_id}\n"
            f"2. Or copy the files back by hand using the actions listed in\n"
            f"   {location}/manifest.json\n"
            f"3. Do not dispose of the snapshot until the system is recovered"
        )
        super().__init__(message, details)

    def __str__(self) -> str:
        return _format_structured_error(
            title=f"RestoreFailedError: {self.args[0]}",
            what_happened=self.what_happened,
            where=self.location or "(unknown snapshot location)",
            how_to_fix=self.how_to_fix,
        )
