"""
swapguard Data Models
~~~~~~~~~~~~~~~~~~~~~

Defines the core dataclasses that flow through a transaction:
ResourceSet and Snapshot (what is protected), Step and MutationPlan
(what is done), and the per-step, per-criterion and per-transaction
results that make up the final report.
"""

from __future__ import annotations

import glob
import os
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from swapguard.core.state import Outcome, TransactionState
from swapguard.exceptions import PlanValidationError

if TYPE_CHECKING:
    from swapguard.core.cancellation import CancellationToken

__all__ = [
    "ResourceSet",
    "SnapshotEntry",
    "RestoreAction",
    "Snapshot",
    "RestoreResult",
    "StepContext",
    "ActionOutcome",
    "Step",
    "MutationPlan",
    "StepResult",
    "ExecutionResult",
    "PredicateResult",
    "VerificationReport",
    "TransitionRecord",
    "TransactionReport",
]


def _now() -> datetime:
    return datetime.now(UTC)


# ── Protected state ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ResourceSet:
    """
    A named group of filesystem paths making up one replaceable component.

    Attributes:
        identifier: Stable name, e.g. "libinput".
        patterns: Ordered glob patterns, e.g. "/usr/lib/libinput.so*".
        captured_at: Set on the copy stored with a Snapshot.
    """

    identifier: str
    patterns: tuple[str, ...] = ()
    captured_at: datetime | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.patterns, tuple):
            object.__setattr__(self, "patterns", tuple(self.patterns))

    def with_capture_time(self, when: datetime | None = None) -> ResourceSet:
        """Return a copy stamped with the capture time."""
        return replace(self, captured_at=when or _now())

    def expand(self) -> list[str]:
        """
        Resolve the patterns to existing paths.

        Order follows the pattern order; matches within a pattern are sorted.
        Dangling symlinks count as existing.
        """
        seen: set[str] = set()
        paths: list[str] = []
        for pattern in self.patterns:
            if glob.has_magic(pattern):
                matches = sorted(glob.glob(pattern))
            else:
                matches = [pattern] if os.path.lexists(pattern) else []
            for match in matches:
                norm = os.path.abspath(match)
                if norm not in seen:
                    seen.add(norm)
                    paths.append(norm)
        return paths


@dataclass
class SnapshotEntry:
    """
    One captured path.

    Attributes:
        original_path: Absolute live path.
        stored_path: Absolute path of the copy in scratch storage.
        kind: "file", "symlink" or "directory".
        digest: sha256 of the content (file), link target (symlink)
            or the tree (directory).
        mode: Permission bits of the original, if applicable.
        link_target: Target of a captured symlink.
    """

    original_path: str
    stored_path: str
    kind: str
    digest: str
    mode: int | None = None
    link_target: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_path": self.original_path,
            "stored_path": self.stored_path,
            "kind": self.kind,
            "digest": self.digest,
            "mode": self.mode,
            "link_target": self.link_target,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SnapshotEntry:
        return cls(**data)


@dataclass(frozen=True)
class RestoreAction:
    """A single declarative "copy src -> dst" instruction."""

    src: str
    dst: str
    kind: str = "file"

    def to_dict(self) -> dict[str, str]:
        return {"src": self.src, "dst": self.dst, "kind": self.kind}


@dataclass
class Snapshot:
    """
    Durable, restorable copy of a ResourceSet at a point in time.

    Owned by the SnapshotStore that created it. ``restore_actions`` is the
    generated restore procedure; it is also written to ``manifest.json``
    inside ``location``.
    """

    snapshot_id: str
    resource_set: ResourceSet
    location: str
    entries: list[SnapshotEntry] = field(default_factory=list)
    restore_actions: list[RestoreAction] = field(default_factory=list)
    captured_at: datetime = field(default_factory=_now)
    durable: bool = False
    disposed: bool = False

    @property
    def manifest_path(self) -> str:
        return os.path.join(self.location, "manifest.json")

    def to_manifest(self) -> dict[str, Any]:
        """Serialize to the JSON-safe manifest format."""
        return {
            "snapshot_id": self.snapshot_id,
            "resource_set": {
                "identifier": self.resource_set.identifier,
                "patterns": list(self.resource_set.patterns),
            },
            "captured_at": self.captured_at.isoformat(),
            "entries": [e.to_dict() for e in self.entries],
            "restore_actions": [a.to_dict() for a in self.restore_actions],
        }

    @classmethod
    def from_manifest(cls, data: dict[str, Any], location: str) -> Snapshot:
        """Rebuild a Snapshot from its manifest."""
        captured_at = datetime.fromisoformat(data["captured_at"])
        rs = data.get("resource_set", {})
        return cls(
            snapshot_id=data["snapshot_id"],
            resource_set=ResourceSet(
                identifier=rs.get("identifier", ""),
                patterns=tuple(rs.get("patterns", [])),
                captured_at=captured_at,
            ),
            location=location,
            entries=[SnapshotEntry.from_dict(e) for e in data.get("entries", [])],
            restore_actions=[
                RestoreAction(**a) for a in data.get("restore_actions", [])
            ],
            captured_at=captured_at,
            durable=True,
        )


@dataclass
class RestoreResult:
    """
    Outcome of replaying a snapshot.

    Attributes:
        snapshot_id: The snapshot that was replayed.
        restored: Paths copied back.
        removed: Paths created after capture that were deleted.
        failed: Path -> error message for every path that could not be restored.
    """

    snapshot_id: str
    restored: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


# ── Mutation plan ────────────────────────────────────────────────────────────


@dataclass
class StepContext:
    """
    Per-run context handed to every step action.

    Attributes:
        workdir: Freshly prepared working directory for this run.
        token: Cancellation token to poll during long operations.
        env: Extra environment variables for external commands.
        poll_interval: Seconds between cancellation/deadline checks.
    """

    workdir: Path
    token: CancellationToken
    env: dict[str, str] = field(default_factory=dict)
    poll_interval: float = 0.1


@dataclass
class ActionOutcome:
    """Raw result of running one step action, before predicates are applied."""

    exit_code: int | None = 0
    output: str = ""
    timed_out: bool = False


@dataclass(frozen=True)
class Step:
    """
    One named operation of a MutationPlan.

    Attributes:
        name: Unique name within the plan.
        action: Object with ``run(context, deadline) -> ActionOutcome``.
        predicates: Success predicates; all must hold. Empty means
            "exit status 0".
        timeout: Optional deadline in seconds.
        mutates_system: True for the single, final step that touches
            live system state.
    """

    name: str
    action: Any
    predicates: tuple[Any, ...] = ()
    timeout: float | None = None
    mutates_system: bool = False


@dataclass(frozen=True)
class MutationPlan:
    """Ordered sequence of Steps."""

    steps: tuple[Step, ...] = ()
    name: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.steps, tuple):
            object.__setattr__(self, "steps", tuple(self.steps))

    def validate(self) -> None:
        """
        Check the plan's structure.

        Raises:
            PlanValidationError: On empty or duplicate step names, or when
                a system-mutating step is not the single final step.
        """
        names: set[str] = set()
        for step in self.steps:
            if not step.name:
                raise PlanValidationError("Every step needs a non-empty name")
            if step.name in names:
                raise PlanValidationError(f"Duplicate step name: {step.name!r}")
            names.add(step.name)

        mutating = [i for i, s in enumerate(self.steps) if s.mutates_system]
        if len(mutating) > 1:
            raise PlanValidationError(
                "Only one step may mutate system state, found "
                + ", ".join(repr(self.steps[i].name) for i in mutating)
            )
        if mutating and mutating[0] != len(self.steps) - 1:
            raise PlanValidationError(
                f"System-mutating step {self.steps[mutating[0]].name!r} "
                "must be the last step of the plan"
            )

    def __len__(self) -> int:
        return len(self.steps)


@dataclass
class StepResult:
    """
    Result of executing one Step.

    Attributes:
        step: Step name.
        success: Whether the action ran and every predicate held.
        exit_code: Exit status of the external command, if any.
        output: Captured diagnostic output.
        duration_ms: Wall-clock time.
        timed_out: True if the deadline expired.
        failed_predicate: Description of the first predicate that failed.
        error: Error message, if the action raised.
    """

    step: str
    success: bool
    exit_code: int | None = None
    output: str = ""
    duration_ms: int = 0
    timed_out: bool = False
    failed_predicate: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "success": self.success,
            "exit_code": self.exit_code,
            "output": self.output,
            "duration_ms": self.duration_ms,
            "timed_out": self.timed_out,
            "failed_predicate": self.failed_predicate,
            "error": self.error,
        }


@dataclass
class ExecutionResult:
    """All StepResults of one MutationExecutor.run() call."""

    results: list[StepResult] = field(default_factory=list)
    workdir: str | None = None

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def failed_step(self) -> StepResult | None:
        """Return the step that aborted the run, if any."""
        for result in self.results:
            if not result.success:
                return result
        return None


# ── Verification ─────────────────────────────────────────────────────────────


@dataclass
class PredicateResult:
    """Pass/fail of one verification criterion."""

    name: str
    passed: bool
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "passed": self.passed, "detail": self.detail}


@dataclass
class VerificationReport:
    """Per-criterion results; truthy only when every criterion passed."""

    results: list[PredicateResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    @property
    def failed(self) -> list[PredicateResult]:
        return [r for r in self.results if not r.passed]

    def __bool__(self) -> bool:
        return self.passed


# ── Transaction report ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class TransitionRecord:
    """One edge taken by the controller's state machine."""

    from_state: TransactionState
    to_state: TransactionState
    reason: str = ""
    timestamp: datetime = field(default_factory=_now)


@dataclass
class TransactionReport:
    """
    Final report of one transaction.

    Attributes:
        transaction_id: Unique ID for this transaction.
        resource_set: Identifier of the protected ResourceSet.
        outcome: COMMITTED, ROLLED_BACK or FAILED.
        steps: Per-step results, in execution order.
        verification: Per-criterion results.
        history: Every state transition taken.
        snapshot_id: Snapshot taken for this transaction.
        snapshot_location: Where the snapshot lives on disk.
        snapshot_retained: Whether the snapshot was kept after the transaction.
        restore: Result of the automatic restore, if one ran.
        error: The error that triggered rollback, or the RestoreFailedError.
    """

    resource_set: str
    transaction_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    outcome: Outcome | None = None
    steps: list[StepResult] = field(default_factory=list)
    verification: list[PredicateResult] = field(default_factory=list)
    history: list[TransitionRecord] = field(default_factory=list)
    snapshot_id: str | None = None
    snapshot_location: str | None = None
    snapshot_retained: bool = False
    restore: RestoreResult | None = None
    error: Exception | None = None
    started_at: datetime = field(default_factory=_now)
    finished_at: datetime | None = None

    @property
    def exit_code(self) -> int:
        if self.outcome is None:
            raise ValueError("Transaction has not finished")
        return self.outcome.exit_code()

    @property
    def rolled_back(self) -> bool:
        return self.restore is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dictionary."""
        return {
            "transaction_id": self.transaction_id,
            "resource_set": self.resource_set,
            "outcome": self.outcome.value if self.outcome else None,
            "steps": [s.to_dict() for s in self.steps],
            "verification": [v.to_dict() for v in self.verification],
            "history": [
                {
                    "from": t.from_state.value,
                    "to": t.to_state.value,
                    "reason": t.reason,
                    "timestamp": t.timestamp.isoformat(),
                }
                for t in self.history
            ],
            "snapshot_id": self.snapshot_id,
            "snapshot_location": self.snapshot_location,
            "snapshot_retained": self.snapshot_retained,
            "restore": (
                {
                    "restored": self.restore.restored,
                    "removed": self.restore.removed,
                    "failed": self.restore.failed,
                }
                if self.restore
                else None
            ),
            "error": str(self.error) if self.error else None,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
