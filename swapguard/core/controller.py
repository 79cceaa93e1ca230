"""
Rollback Controller
~~~~~~~~~~~~~~~~~~~

Runs one transaction against a ResourceSet: snapshot, mutate, verify,
then commit or roll back. Step failures, verification failures and
interruptions all leave through the same rollback path; the only other
exit is a failed restore, which is escalated with recovery guidance.

Transitions::

    IDLE ──capture──> SNAPSHOT_TAKEN ──begin──> MUTATING ──ok──> VERIFYING ──pass──> COMMITTED
                           │                       │                 │
                           └──interrupt────────────┴──fail/interrupt─┴──> ROLLED_BACK ──restore fails──> FAILED
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from swapguard.core.cancellation import CancellationToken
from swapguard.core.models import (
    MutationPlan,
    ResourceSet,
    RestoreResult,
    Snapshot,
    Step,
    StepResult,
    TransactionReport,
    TransitionRecord,
)
from swapguard.core.state import Outcome, Severity, TransactionState
from swapguard.exceptions import (
    RestoreFailedError,
    SnapshotError,
    StepExecutionError,
    StepTimeoutError,
    TransactionInterruptedError,
    TransactionStateError,
    VerificationError,
)
from swapguard.execution.executor import MutationExecutor
from swapguard.observability.event_log import EventLog
from swapguard.observability.metrics import MetricsCollector
from swapguard.snapshot.store import SnapshotStore
from swapguard.verification.criteria import BaseCriterion
from swapguard.verification.probe import VerificationProbe

__all__ = ["RollbackController"]

logger = logging.getLogger(__name__)

_S = TransactionState

_TRANSITIONS: dict[TransactionState, frozenset[TransactionState]] = {
    _S.IDLE: frozenset({_S.SNAPSHOT_TAKEN}),
    _S.SNAPSHOT_TAKEN: frozenset({_S.MUTATING, _S.ROLLED_BACK}),
    _S.MUTATING: frozenset({_S.VERIFYING, _S.ROLLED_BACK}),
    _S.VERIFYING: frozenset({_S.COMMITTED, _S.ROLLED_BACK}),
    _S.ROLLED_BACK: frozenset({_S.FAILED}),
    _S.COMMITTED: frozenset(),
    _S.FAILED: frozenset(),
}

_STATE_SEVERITY = {
    _S.COMMITTED: Severity.SUCCESS,
    _S.ROLLED_BACK: Severity.WARN,
    _S.FAILED: Severity.ERROR,
}


class RollbackController:
    """
    One transaction at a time against one ResourceSet.

    The caller is responsible for exclusive access to the ResourceSet for
    the duration of ``run()``; the controller only refuses to start a
    second transaction while its own is not finished.
    """

    def __init__(
        self,
        store: SnapshotStore,
        executor: MutationExecutor,
        probe: VerificationProbe | None = None,
        event_log: EventLog | None = None,
        metrics: MetricsCollector | None = None,
        retain_on_commit: bool = True,
        retain_on_rollback: bool = False,
    ) -> None:
        self._store = store
        self._executor = executor
        self._probe = probe if probe is not None else VerificationProbe()
        self._events = event_log if event_log is not None else EventLog()
        self._metrics = metrics if metrics is not None else MetricsCollector()
        self._retain_on_commit = retain_on_commit
        self._retain_on_rollback = retain_on_rollback

        self._state = TransactionState.IDLE
        self._report: TransactionReport | None = None
        self._snapshot: Snapshot | None = None

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def report(self) -> TransactionReport | None:
        """Report of the current or last transaction."""
        return self._report

    def reset(self) -> None:
        """Return a finished controller to IDLE for another transaction."""
        if self._state is not TransactionState.IDLE and not self._state.is_terminal():
            raise TransactionStateError(
                f"Cannot reset while transaction is in state {self._state}"
            )
        self._state = TransactionState.IDLE
        self._snapshot = None

    # ── Transaction ───────────────────────────────────────────────

    def run(
        self,
        resource_set: ResourceSet,
        plan: MutationPlan,
        criteria: Iterable[BaseCriterion] = (),
        token: CancellationToken | None = None,
    ) -> TransactionReport:
        """
        Run one transaction to a terminal outcome.

        Args:
            resource_set: The live state to protect.
            plan: The steps that mutate it.
            criteria: Expectations checked after the plan succeeds.
            token: Cancellation token; cancelling it forces a rollback.

        Returns:
            TransactionReport with outcome COMMITTED, ROLLED_BACK or FAILED.

        Raises:
            TransactionStateError: If a transaction is already in progress.
            PlanValidationError: If the plan is malformed (nothing captured).
            SnapshotError: If capture fails (nothing mutated; stays IDLE).
        """
        if self._state is not TransactionState.IDLE:
            raise TransactionStateError(
                f"Controller is busy (state {self._state}); call reset() first"
            )

        token = token or CancellationToken()
        criteria = list(criteria)
        report = TransactionReport(resource_set=resource_set.identifier)
        self._report = report
        started = time.monotonic()
        self._metrics.increment("transactions")

        plan.validate()

        self._emit(Severity.INFO, f"Capturing snapshot of {resource_set.identifier!r}")
        try:
            snapshot = self._store.capture(resource_set)
        except SnapshotError as exc:
            self._metrics.increment("aborts")
            self._emit(
                Severity.ERROR,
                f"Snapshot failed, nothing was changed: {exc}",
                details={"path": exc.path},
            )
            raise
        self._snapshot = snapshot
        self._metrics.increment("snapshots_captured")
        report.snapshot_id = snapshot.snapshot_id
        report.snapshot_location = snapshot.location
        report.snapshot_retained = True
        self._transition(
            TransactionState.SNAPSHOT_TAKEN,
            f"Snapshot {snapshot.snapshot_id} saved to {snapshot.location} "
            f"({len(snapshot.entries)} path(s))",
        )

        try:
            token.raise_if_cancelled()
            self._mutate(plan, token)
            token.raise_if_cancelled(partial=report.steps)
            self._verify(criteria)
            token.raise_if_cancelled(partial=report.steps)
            self._commit()
        except TransactionInterruptedError as exc:
            if exc.partial:
                report.steps = list(exc.partial)
            self._metrics.increment("interruptions")
            self._interrupted(exc)
        except KeyboardInterrupt:
            self._metrics.increment("interruptions")
            self._interrupted(
                TransactionInterruptedError(
                    "Interrupted by user", reason="KeyboardInterrupt"
                )
            )
        except (StepExecutionError, VerificationError) as exc:
            self._roll_back(exc)
        except Exception as exc:
            logger.exception("Unexpected error during transaction %s", report.transaction_id)
            self._roll_back(exc)

        report.finished_at = datetime.now(UTC)
        self._metrics.record_duration(int((time.monotonic() - started) * 1000))
        return report

    def _mutate(self, plan: MutationPlan, token: CancellationToken) -> None:
        if self._report is None:
            raise TransactionStateError("No transaction in progress")
        self._transition(TransactionState.MUTATING, f"Running {len(plan)} step(s)")
        execution = self._executor.run(
            plan,
            token,
            on_step_start=self._on_step_start,
            on_step_end=self._on_step_end,
        )
        self._report.steps = execution.results

        failed = execution.failed_step
        if failed is not None:
            self._metrics.increment("step_failures")
            error_cls = StepTimeoutError if failed.timed_out else StepExecutionError
            raise error_cls(
                f"Step {failed.step!r} failed: {failed.error or failed.failed_predicate}",
                step=failed.step,
                output=failed.output,
            )

    def _verify(self, criteria: list[BaseCriterion]) -> None:
        if self._report is None:
            raise TransactionStateError("No transaction in progress")
        self._transition(TransactionState.VERIFYING, f"Checking {len(criteria)} criterion(s)")
        verification = self._probe.check(criteria)
        self._report.verification = verification.results

        for result in verification.results:
            severity = Severity.SUCCESS if result.passed else Severity.ERROR
            message = f"{result.name}: {'ok' if result.passed else 'FAILED'}"
            if result.detail:
                message += f" ({result.detail})"
            self._emit(severity, message, step=result.name)

        if not verification.passed:
            self._metrics.increment("verification_failures")
            failed = [r.name for r in verification.failed]
            raise VerificationError(
                f"{len(failed)} verification criterion(s) failed: " + "; ".join(failed),
                failed=failed,
            )

    def _commit(self) -> None:
        if self._report is None or self._snapshot is None:
            raise TransactionStateError("No transaction in progress")
        self._transition(TransactionState.COMMITTED, "All criteria passed, changes committed")
        self._report.outcome = Outcome.COMMITTED
        self._metrics.increment("commits")
        self._store.mark_committed(self._snapshot)

        if self._retain_on_commit:
            self._emit(
                Severity.INFO,
                f"Snapshot kept at {self._snapshot.location}; "
                f"undo with: swapguard rollback {self._snapshot.snapshot_id}",
            )
        else:
            self._dispose()

    def _interrupted(self, exc: TransactionInterruptedError) -> None:
        """Roll back unless the transaction already reached a terminal state."""
        if not self._state.is_interruptible():
            self._emit(
                Severity.WARN,
                f"Interrupt ({exc.reason}) arrived in state {self._state}; nothing to undo",
            )
            return
        self._roll_back(exc)

    def _roll_back(self, cause: BaseException) -> None:
        """Restore the snapshot; escalate to FAILED if that is incomplete."""
        if self._report is None or self._snapshot is None:
            raise TransactionStateError("No transaction in progress")
        report = self._report
        snapshot = self._snapshot
        report.error = cause if isinstance(cause, Exception) else None

        self._transition(TransactionState.ROLLED_BACK, f"Rolling back: {cause}")
        self._metrics.increment("rollbacks")

        try:
            restore = self._store.restore(snapshot)
        except SnapshotError as exc:
            restore = RestoreResult(
                snapshot_id=snapshot.snapshot_id,
                failed={snapshot.location: str(exc)},
            )
        report.restore = restore

        if restore.ok:
            report.outcome = Outcome.ROLLED_BACK
            self._emit(
                Severity.WARN,
                f"Original state restored ({len(restore.restored)} restored, "
                f"{len(restore.removed)} removed)",
            )
            if not self._retain_on_rollback:
                self._dispose()
            return

        error = RestoreFailedError(
            f"Could not restore {report.resource_set!r} after: {cause}",
            snapshot_id=snapshot.snapshot_id,
            location=snapshot.location,
            failed_paths=restore.failed,
            details={"cause": str(cause)},
        )
        error.__cause__ = cause
        report.error = error
        report.outcome = Outcome.FAILED
        report.snapshot_retained = True
        self._metrics.increment("failures")
        self._transition(TransactionState.FAILED, str(error))

    def _dispose(self) -> None:
        if self._report is None or self._snapshot is None:
            raise TransactionStateError("No transaction in progress")
        try:
            self._store.dispose(self._snapshot)
        except SnapshotError as exc:
            self._emit(Severity.WARN, f"Snapshot could not be disposed: {exc}")
            return
        self._report.snapshot_retained = False
        self._metrics.increment("snapshots_disposed")

    # ── State machine ─────────────────────────────────────────────

    def _transition(self, to_state: TransactionState, reason: str = "") -> None:
        if to_state not in _TRANSITIONS[self._state]:
            raise TransactionStateError(f"Illegal transition {self._state} -> {to_state}")
        record = TransitionRecord(from_state=self._state, to_state=to_state, reason=reason)
        self._state = to_state
        if self._report is not None:
            self._report.history.append(record)
        self._emit(_STATE_SEVERITY.get(to_state, Severity.INFO), reason, state=to_state)

    def _on_step_start(self, step: Step) -> None:
        self._emit(Severity.INFO, f"Step {step.name}: {step.action.describe()}", step=step.name)

    def _on_step_end(self, result: StepResult) -> None:
        self._metrics.increment("steps_run")
        if result.success:
            self._emit(
                Severity.SUCCESS,
                f"Step {result.step} done ({result.duration_ms} ms)",
                step=result.step,
                details={"output": result.output},
            )
        else:
            self._emit(
                Severity.ERROR,
                f"Step {result.step} failed: {result.error or result.failed_predicate}",
                step=result.step,
                details={"output": result.output, "exit_code": result.exit_code},
            )

    def _emit(self, severity: Severity, message: str, **kwargs: Any) -> None:
        transaction_id = self._report.transaction_id if self._report else ""
        self._events.emit(transaction_id, severity, message, **kwargs)
