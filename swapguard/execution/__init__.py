"""swapguard execution — step actions, success predicates and the executor."""

from swapguard.execution.actions import (
    BaseAction,
    CallAction,
    ExtractArchive,
    RunCommand,
    SubstituteText,
)
from swapguard.execution.executor import MutationExecutor
from swapguard.execution.predicates import (
    BaseStepPredicate,
    ExitStatus,
    FileMatches,
    OutputMatches,
)

__all__ = [
    "MutationExecutor",
    "BaseAction",
    "RunCommand",
    "SubstituteText",
    "ExtractArchive",
    "CallAction",
    "BaseStepPredicate",
    "ExitStatus",
    "OutputMatches",
    "FileMatches",
]
