"""
Mutation Executor
~~~~~~~~~~~~~~~~~

Runs the steps of a MutationPlan strictly in order inside a freshly
prepared working directory, applying each step's success predicates
and optional deadline.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

from swapguard.core.cancellation import CancellationToken
from swapguard.core.models import (
    ExecutionResult,
    MutationPlan,
    Step,
    StepContext,
    StepResult,
)
from swapguard.exceptions import TransactionInterruptedError
from swapguard.execution.predicates import ExitStatus

__all__ = ["MutationExecutor"]

logger = logging.getLogger(__name__)

StepHook = Callable[[Step], None]
ResultHook = Callable[[StepResult], None]


class MutationExecutor:
    """
    Executes a MutationPlan step by step.

    Responsibilities:
    - Prepare a fresh working directory per run
    - Run each step's action with its deadline
    - Judge each step by its predicates and stop at the first failure
    - Honor cancellation between steps and during external commands

    A step is atomic from the executor's point of view; undo happens at
    the ResourceSet level through the SnapshotStore.
    """

    def __init__(
        self,
        work_root: str | None = None,
        keep_workdir: bool = False,
        default_timeout: float | None = None,
        poll_interval: float = 0.1,
        env: dict[str, str] | None = None,
    ) -> None:
        self._work_root = work_root
        self._keep_workdir = keep_workdir
        self._default_timeout = default_timeout
        self._poll_interval = poll_interval
        self._env = env or {}

    def _prepare_workdir(self) -> Path:
        if self._work_root:
            os.makedirs(self._work_root, exist_ok=True)
            return Path(tempfile.mkdtemp(prefix="run-", dir=self._work_root))
        return Path(tempfile.mkdtemp(prefix="swapguard_work_"))

    def run(
        self,
        plan: MutationPlan,
        token: CancellationToken | None = None,
        on_step_start: StepHook | None = None,
        on_step_end: ResultHook | None = None,
    ) -> ExecutionResult:
        """
        Execute the plan.

        Args:
            plan: The steps to run.
            token: Cancellation token polled at step boundaries and while
                external commands run.
            on_step_start: Called before each step.
            on_step_end: Called with each StepResult.

        Returns:
            ExecutionResult with one StepResult per executed step. The run
            stops at the first failed step.

        Raises:
            PlanValidationError: If the plan is malformed.
            TransactionInterruptedError: If cancelled; ``partial`` carries
                the results gathered so far.
        """
        plan.validate()
        token = token or CancellationToken()
        workdir = self._prepare_workdir()
        context = StepContext(
            workdir=workdir,
            token=token,
            env=dict(self._env),
            poll_interval=self._poll_interval,
        )
        execution = ExecutionResult(workdir=str(workdir))
        logger.debug("Prepared working directory %s", workdir)

        try:
            for step in plan.steps:
                token.raise_if_cancelled(partial=execution.results)
                if on_step_start:
                    on_step_start(step)

                try:
                    result = self._run_step(step, context)
                except TransactionInterruptedError as exc:
                    execution.results.append(
                        StepResult(
                            step=step.name,
                            success=False,
                            error=f"interrupted: {exc.reason}",
                        )
                    )
                    raise TransactionInterruptedError(
                        str(exc), reason=exc.reason, partial=execution.results
                    ) from exc

                execution.results.append(result)
                if on_step_end:
                    on_step_end(result)
                if not result.success:
                    logger.error(
                        "Step %s failed: %s",
                        step.name,
                        result.error or result.failed_predicate,
                    )
                    break
        finally:
            if not self._keep_workdir:
                shutil.rmtree(workdir, ignore_errors=True)

        return execution

    def _run_step(self, step: Step, context: StepContext) -> StepResult:
        timeout = step.timeout if step.timeout is not None else self._default_timeout
        start = time.monotonic()
        deadline = start + timeout if timeout is not None else None
        logger.info("Running step %s: %s", step.name, step.action.describe())

        try:
            outcome = step.action.run(context, deadline)
        except TransactionInterruptedError:
            raise
        except Exception as exc:
            return StepResult(
                step=step.name,
                success=False,
                duration_ms=int((time.monotonic() - start) * 1000),
                error=f"{type(exc).__name__}: {exc}",
            )

        duration_ms = int((time.monotonic() - start) * 1000)
        result = StepResult(
            step=step.name,
            success=True,
            exit_code=outcome.exit_code,
            output=outcome.output,
            duration_ms=duration_ms,
        )

        if outcome.timed_out or (deadline is not None and time.monotonic() > deadline):
            result.success = False
            result.timed_out = True
            result.failed_predicate = f"deadline of {timeout}s"
            return result

        for predicate in step.predicates or (ExitStatus(0),):
            check = predicate.check(outcome, context)
            if not check.passed:
                result.success = False
                result.failed_predicate = check.name
                if check.detail:
                    result.error = check.detail
                break

        return result
