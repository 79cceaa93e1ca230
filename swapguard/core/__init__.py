"""swapguard core module — data models, states, cancellation and the controller."""

from swapguard.core.cancellation import CancellationToken, SignalTrap
from swapguard.core.models import (
    ExecutionResult,
    MutationPlan,
    ResourceSet,
    RestoreResult,
    Snapshot,
    Step,
    StepResult,
    TransactionReport,
)
from swapguard.core.state import ExitCode, Outcome, Severity, TransactionState

__all__ = [
    "TransactionState",
    "Outcome",
    "Severity",
    "ExitCode",
    "CancellationToken",
    "SignalTrap",
    "ResourceSet",
    "Snapshot",
    "RestoreResult",
    "Step",
    "MutationPlan",
    "StepResult",
    "ExecutionResult",
    "TransactionReport",
]
