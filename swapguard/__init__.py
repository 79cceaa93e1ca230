"""
swapguard — Reversible replacement of system files.

swapguard wraps a risky change to live system state (swapping a shared
library, patching a config tree) in a transaction:

- A durable snapshot of the protected paths is taken first
- The change runs as an ordered plan of steps in a scratch directory
- Post-change criteria decide whether the new state is accepted
- Any failure or interruption restores the snapshot
- A restore that cannot complete names the snapshot for manual recovery

Quick Start::

    from swapguard import (
        FileContainsPattern, MutationPlan, ResourceSet, RunCommand, Step, SwapGuard,
    )

    guard = SwapGuard.default()
    report = guard.run(
        ResourceSet("motd", ("/etc/motd",)),
        MutationPlan((
            Step("write", RunCommand(["sh", "-c", "echo hello > /etc/motd"]),
                 mutates_system=True),
        )),
        criteria=[FileContainsPattern("/etc/motd", "hello")],
    )
    print(report.outcome)

:license: Apache-2.0
"""

from swapguard.core.cancellation import CancellationToken, SignalTrap
from swapguard.core.controller import RollbackController
from swapguard.core.guard import SwapGuard
from swapguard.core.models import (
    MutationPlan,
    ResourceSet,
    RestoreResult,
    Snapshot,
    Step,
    StepResult,
    TransactionReport,
)
from swapguard.core.state import ExitCode, Outcome, Severity, TransactionState
from swapguard.execution import (
    BaseAction,
    CallAction,
    ExitStatus,
    ExtractArchive,
    FileMatches,
    MutationExecutor,
    OutputMatches,
    RunCommand,
    SubstituteText,
)
from swapguard.snapshot import SnapshotStore
from swapguard.verification import (
    BaseCriterion,
    BinaryVersionMatches,
    CallableCriterion,
    FileContainsPattern,
    FileLacksPattern,
    FileNonEmpty,
    LibraryInLinkerCache,
    VerificationProbe,
)

__version__ = "0.1.0"
__license__ = "Apache-2.0"

__all__ = [
    # Core
    "SwapGuard",
    "RollbackController",
    "TransactionState",
    "Outcome",
    "Severity",
    "ExitCode",
    "CancellationToken",
    "SignalTrap",
    # Models
    "ResourceSet",
    "Snapshot",
    "RestoreResult",
    "Step",
    "MutationPlan",
    "StepResult",
    "TransactionReport",
    # Components
    "SnapshotStore",
    "MutationExecutor",
    "VerificationProbe",
    # Actions
    "BaseAction",
    "RunCommand",
    "SubstituteText",
    "ExtractArchive",
    "CallAction",
    "ExitStatus",
    "OutputMatches",
    "FileMatches",
    # Criteria
    "BaseCriterion",
    "BinaryVersionMatches",
    "LibraryInLinkerCache",
    "FileLacksPattern",
    "FileContainsPattern",
    "FileNonEmpty",
    "CallableCriterion",
    # Metadata
    "__version__",
]
