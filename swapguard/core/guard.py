"""
SwapGuard — Main Guard Class
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

The primary entry point for swapguard. Assembles the snapshot store,
executor, probe and observability from configuration, and exposes the
public API for running transactions and managing retained snapshots.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from typing import Any

from swapguard.config.builder import build_criteria, build_plan, build_resource_set
from swapguard.config.defaults import DEFAULT_CONFIG
from swapguard.config.loader import load_config, load_config_from_dict
from swapguard.config.schema import JobConfig, SwapGuardConfig
from swapguard.core.cancellation import CancellationToken, SignalTrap
from swapguard.core.controller import RollbackController
from swapguard.core.models import MutationPlan, ResourceSet, RestoreResult, TransactionReport
from swapguard.core.state import Severity
from swapguard.exceptions import (
    AbortedError,
    ConfigError,
    RestoreFailedError,
    SnapshotNotFoundError,
)
from swapguard.execution.executor import MutationExecutor
from swapguard.observability.event_log import EventLog, TransitionEvent
from swapguard.observability.exporters import EXPORTERS
from swapguard.observability.metrics import MetricsCollector
from swapguard.preconditions import BasePackageInstaller, PreconditionChecker
from swapguard.snapshot.store import SnapshotStore
from swapguard.verification.criteria import BaseCriterion
from swapguard.verification.probe import VerificationProbe

__all__ = ["SwapGuard"]

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[ResourceSet, MutationPlan], bool]


class SwapGuard:
    """
    Runs reversible mutations of protected filesystem state.

    Each ``run()`` gets a fresh RollbackController; the store, executor,
    event log and metrics are shared across transactions.

    Usage::

        guard = SwapGuard.from_config("job.yaml")
        report = guard.run_job()
        sys.exit(report.exit_code)
    """

    def __init__(
        self,
        config: SwapGuardConfig | None = None,
        installer: BasePackageInstaller | None = None,
        base_dir: str | None = None,
    ) -> None:
        self._config = config or SwapGuardConfig()
        self._base_dir = base_dir

        # ── Subsystems ────────────────────────────────────────────
        storage = self._config.storage
        self._store = SnapshotStore(
            root=_expand(storage.snapshot_dir),
            db_path=_expand(storage.db_path),
            max_in_memory=storage.max_in_memory,
        )
        execution = self._config.execution
        self._executor = MutationExecutor(
            work_root=_expand(execution.work_dir),
            keep_workdir=execution.keep_work_dir,
            default_timeout=execution.default_step_timeout,
            poll_interval=execution.poll_interval,
            env=execution.env,
        )
        self._probe = VerificationProbe()
        self._event_log = EventLog(
            max_entries=self._config.observability.event_log_max_entries
        )
        self._metrics = MetricsCollector()
        pre = self._config.preconditions
        self._preconditions = PreconditionChecker(
            required_tools=pre.required_tools,
            packages=pre.packages,
            forbid_root=pre.forbid_root,
            require_root=pre.require_root,
            installer=installer,
        )
        self._controller: RollbackController | None = None

        # ── Initialize ────────────────────────────────────────────
        self._setup_exporters()

    # ── Class Methods (constructors) ──────────────────────────────

    @classmethod
    def from_config(
        cls, path: str, installer: BasePackageInstaller | None = None
    ) -> SwapGuard:
        """
        Create a SwapGuard from a YAML config or job file.

        Relative archive paths in the job resolve against the file's directory.
        """
        config = load_config(path)
        return cls(
            config=config,
            installer=installer,
            base_dir=os.path.dirname(os.path.abspath(path)),
        )

    @classmethod
    def default(cls) -> SwapGuard:
        """Create a SwapGuard with default settings and no job."""
        return cls(config=load_config_from_dict(DEFAULT_CONFIG))

    # ── Setup Methods ─────────────────────────────────────────────

    def _setup_exporters(self) -> None:
        """Configure event log exporters from config."""
        for exporter_name in self._config.observability.exporters:
            self._event_log.add_exporter(EXPORTERS[exporter_name]())

    # ── Properties ────────────────────────────────────────────────

    @property
    def config(self) -> SwapGuardConfig:
        return self._config

    @property
    def store(self) -> SnapshotStore:
        return self._store

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def controller(self) -> RollbackController | None:
        """Controller of the current or last transaction."""
        return self._controller

    # ── Primary API: Transactions ─────────────────────────────────

    def check_preconditions(self) -> None:
        """Raise PreconditionError if the environment is unsuitable."""
        self._preconditions.check()

    def run(
        self,
        resource_set: ResourceSet,
        plan: MutationPlan,
        criteria: Iterable[BaseCriterion] = (),
        token: CancellationToken | None = None,
        confirm: ConfirmCallback | None = None,
        trap_signals: bool = True,
    ) -> TransactionReport:
        """
        Run one transaction.

        Args:
            resource_set: Paths to protect.
            plan: Steps to run.
            criteria: Post-mutation checks.
            token: Cancellation token; a new one is created if omitted.
            confirm: Called before anything is captured; returning False aborts.
            trap_signals: Cancel the token on the configured signals.

        Returns:
            The TransactionReport.

        Raises:
            PreconditionError: If preconditions fail or ``confirm`` declines.
            SnapshotError: If the snapshot could not be captured.
        """
        plan.validate()
        self.check_preconditions()
        if confirm is not None and not confirm(resource_set, plan):
            self._metrics.increment("aborts")
            raise AbortedError("Aborted by operator before any change was made")

        token = token or CancellationToken()
        controller = RollbackController(
            store=self._store,
            executor=self._executor,
            probe=self._probe,
            event_log=self._event_log,
            metrics=self._metrics,
            retain_on_commit=self._config.storage.retain_on_commit,
            retain_on_rollback=self._config.storage.retain_on_rollback,
        )
        self._controller = controller

        if not trap_signals:
            return controller.run(resource_set, plan, criteria, token)
        with SignalTrap(token, self._config.signals.trap):
            return controller.run(resource_set, plan, criteria, token)

    def run_job(
        self,
        job: JobConfig | None = None,
        token: CancellationToken | None = None,
        confirm: ConfirmCallback | None = None,
        trap_signals: bool = True,
    ) -> TransactionReport:
        """
        Run the job from configuration, or the one given.

        Raises:
            ConfigError: If no job is configured.
        """
        job = job or self._config.job
        if job is None:
            raise ConfigError("No job defined in configuration")
        return self.run(
            build_resource_set(job),
            build_plan(job, self._base_dir),
            build_criteria(job),
            token=token,
            confirm=confirm,
            trap_signals=trap_signals,
        )

    # ── Primary API: Snapshots ────────────────────────────────────

    def rollback(self, snapshot_id: str) -> RestoreResult:
        """
        Restore a retained snapshot by hand, then dispose of it.

        Raises:
            SnapshotNotFoundError: If no such snapshot is stored.
            RestoreFailedError: If some paths could not be restored.
        """
        snapshot = self._store.get(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(f"No snapshot found with id {snapshot_id!r}")

        self._event_log.emit("", Severity.INFO, f"Restoring snapshot {snapshot_id}")
        self._metrics.increment("rollbacks")
        result = self._store.restore(snapshot)
        if not result.ok:
            self._metrics.increment("failures")
            raise RestoreFailedError(
                f"Could not restore snapshot {snapshot_id}",
                snapshot_id=snapshot_id,
                location=snapshot.location,
                failed_paths=result.failed,
            )

        self._event_log.emit(
            "",
            Severity.SUCCESS,
            f"Snapshot {snapshot_id} restored ({len(result.restored)} restored, "
            f"{len(result.removed)} removed)",
        )
        self._store.dispose(snapshot)
        self._metrics.increment("snapshots_disposed")
        return result

    def dispose(self, snapshot_id: str) -> None:
        """
        Delete a retained snapshot.

        Raises:
            SnapshotNotFoundError: If no such snapshot is stored.
        """
        snapshot = self._store.get(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(f"No snapshot found with id {snapshot_id!r}")
        self._store.dispose(snapshot)
        self._metrics.increment("snapshots_disposed")

    def list_snapshots(self) -> list[dict[str, str]]:
        return self._store.list_snapshots()

    def cleanup(self, older_than_hours: float = 24 * 7) -> int:
        """Dispose snapshots older than the cutoff; returns how many."""
        removed = self._store.cleanup(older_than_hours)
        self._metrics.increment("snapshots_disposed", removed)
        return removed

    # ── Primary API: Observability ────────────────────────────────

    def add_exporter(self, exporter: Any) -> None:
        """Add an event exporter implementing ``export(TransitionEvent)``."""
        self._event_log.add_exporter(exporter)

    def get_events(self, transaction_id: str | None = None) -> list[TransitionEvent]:
        return self._event_log.query(transaction_id=transaction_id)

    def get_metrics(self) -> dict[str, float]:
        return self._metrics.snapshot()

    def __repr__(self) -> str:
        job = self._config.job
        return f"<SwapGuard job={job.resources.id if job else None!r} store={self._store.root!r}>"


def _expand(path: str | None) -> str | None:
    return os.path.expanduser(path) if path else None
