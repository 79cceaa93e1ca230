"""
Step Actions
~~~~~~~~~~~~

The operations a Step can perform: run an external command, substitute
text in the working copy, extract an archive, or call a Python function.
Every action takes the run's StepContext and an optional absolute
deadline (``time.monotonic()`` based).
"""

from __future__ import annotations

import glob
import logging
import os
import re
import shlex
import shutil
import signal
import subprocess
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import Any

from swapguard.core.models import ActionOutcome, StepContext
from swapguard.exceptions import TransactionInterruptedError

__all__ = [
    "BaseAction",
    "RunCommand",
    "SubstituteText",
    "ExtractArchive",
    "CallAction",
]

logger = logging.getLogger(__name__)

_TERMINATE_GRACE_SECONDS = 5.0


class BaseAction(ABC):
    """Abstract base class for step actions."""

    @abstractmethod
    def describe(self) -> str:
        """One-line description for logs and reports."""
        ...

    @abstractmethod
    def run(self, context: StepContext, deadline: float | None = None) -> ActionOutcome:
        """
        Perform the action.

        Raises:
            TransactionInterruptedError: If the token was cancelled while
                the action was in flight.
        """
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.describe()!r}>"


def _terminate(proc: subprocess.Popen) -> None:
    """Terminate a child's process group, escalating to SIGKILL."""
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        proc.wait(timeout=_TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        logger.warning("Process %d ignored SIGTERM, killing", proc.pid)
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        proc.wait()


class RunCommand(BaseAction):
    """
    Run an external command and capture its combined output.

    Relative ``cwd`` values are resolved against the working directory.
    The child runs in its own session so it can be terminated as a group
    on cancellation or timeout.
    """

    def __init__(
        self,
        command: Sequence[str] | str,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self._argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not self._argv:
            raise ValueError("RunCommand needs a non-empty command")
        self._cwd = cwd
        self._env = env or {}

    @property
    def argv(self) -> list[str]:
        return list(self._argv)

    def describe(self) -> str:
        return shlex.join(self._argv)

    def run(self, context: StepContext, deadline: float | None = None) -> ActionOutcome:
        cwd = context.workdir
        if self._cwd:
            cwd = cwd / self._cwd
        env = {**os.environ, **context.env, **self._env}

        proc = subprocess.Popen(
            self._argv,
            cwd=cwd,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            start_new_session=True,
        )
        logger.debug("Started %s (pid %d)", self.describe(), proc.pid)

        timed_out = False
        while True:
            try:
                output, _ = proc.communicate(timeout=context.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if context.token.cancelled:
                    _terminate(proc)
                    proc.communicate()
                    raise TransactionInterruptedError(
                        f"{self.describe()} interrupted: {context.token.reason}",
                        reason=context.token.reason,
                    ) from None
                if deadline is not None and time.monotonic() >= deadline:
                    _terminate(proc)
                    output, _ = proc.communicate()
                    timed_out = True
                    break

        return ActionOutcome(
            exit_code=proc.returncode,
            output=output or "",
            timed_out=timed_out,
        )


class SubstituteText(BaseAction):
    """
    Apply literal or regex replacements to files in the working copy.

    Re-running is safe: a second pass over already substituted text changes
    nothing. With ``require_match`` the step fails when the globs select no
    file at all.
    """

    def __init__(
        self,
        files: Sequence[str],
        replacements: Sequence[tuple[str, str]],
        regex: bool = False,
        root: str | None = None,
        require_match: bool = True,
    ) -> None:
        if not replacements:
            raise ValueError("SubstituteText needs at least one replacement")
        self._files = list(files)
        self._root = root
        self._require_match = require_match
        self._replacements: list[tuple[re.Pattern[str], str]] = []
        for pattern, replacement in replacements:
            if regex:
                self._replacements.append((re.compile(pattern), replacement))
            else:
                self._replacements.append(
                    (re.compile(re.escape(pattern)), replacement.replace("\\", "\\\\"))
                )

    def describe(self) -> str:
        return f"substitute {len(self._replacements)} pattern(s) in {', '.join(self._files)}"

    def _select(self, base: str) -> list[str]:
        selected: list[str] = []
        for pattern in self._files:
            for path in sorted(glob.glob(os.path.join(base, pattern), recursive=True)):
                if os.path.isfile(path) and path not in selected:
                    selected.append(path)
        return selected

    def run(self, context: StepContext, deadline: float | None = None) -> ActionOutcome:
        base = str(context.workdir / self._root) if self._root else str(context.workdir)
        files = self._select(base)
        if not files:
            if self._require_match:
                return ActionOutcome(
                    exit_code=1, output=f"no file matched {', '.join(self._files)}"
                )
            return ActionOutcome(exit_code=0, output="no files selected")

        report: list[str] = []
        for path in files:
            context.token.raise_if_cancelled()
            with open(path, encoding="utf-8", errors="surrogateescape") as f:
                original = f.read()
            text = original
            total = 0
            for pattern, replacement in self._replacements:
                text, count = pattern.subn(replacement, text)
                total += count
            if text == original:
                continue

            with open(path, "w", encoding="utf-8", errors="surrogateescape") as f:
                f.write(text)

            rel = os.path.relpath(path, base)
            report.append(f"{rel}: {total} replacement(s)")
            before, after = original.splitlines(), text.splitlines()
            if len(before) == len(after):
                for lineno, (old, new) in enumerate(zip(before, after), start=1):
                    if old != new:
                        report.append(f"  {rel}:{lineno}: {new.strip()}")

        if not report:
            report.append("already up to date")
        return ActionOutcome(exit_code=0, output="\n".join(report))


class ExtractArchive(BaseAction):
    """
    Unpack an archive into the working directory.

    ``expect`` names a path (relative to ``dest``) that must exist afterwards.
    Unpacking into an existing ``expect`` path is skipped.
    """

    def __init__(
        self,
        archive: str,
        dest: str = ".",
        expect: str | None = None,
        archive_format: str | None = None,
    ) -> None:
        self._archive = archive
        self._dest = dest
        self._expect = expect
        self._format = archive_format

    def describe(self) -> str:
        return f"extract {self._archive} -> {self._dest}"

    def run(self, context: StepContext, deadline: float | None = None) -> ActionOutcome:
        dest = context.workdir / self._dest
        archive = os.path.abspath(os.path.expanduser(self._archive))
        if self._expect and (dest / self._expect).exists():
            return ActionOutcome(
                exit_code=0, output=f"{self._expect} already present, using existing tree"
            )
        if not os.path.isfile(archive):
            return ActionOutcome(exit_code=1, output=f"archive not found: {archive}")

        try:
            shutil.unpack_archive(archive, dest, self._format)
        except (shutil.ReadError, ValueError, OSError) as exc:
            return ActionOutcome(exit_code=1, output=f"failed to extract {archive}: {exc}")

        if self._expect and not (dest / self._expect).exists():
            return ActionOutcome(
                exit_code=1,
                output=f"extraction did not create expected path {self._expect!r}",
            )
        return ActionOutcome(exit_code=0, output=f"extracted {archive} into {dest}")


class CallAction(BaseAction):
    """
    Call a Python function with the StepContext.

    The return value is interpreted as: an ActionOutcome is used as-is;
    ``False`` means exit status 1; anything else means exit status 0, with
    strings becoming the step output. Exceptions propagate to the executor.
    """

    def __init__(
        self,
        func: Callable[[StepContext], Any],
        description: str | None = None,
    ) -> None:
        self._func = func
        self._description = description or getattr(func, "__name__", repr(func))

    def describe(self) -> str:
        return self._description

    def run(self, context: StepContext, deadline: float | None = None) -> ActionOutcome:
        value = self._func(context)
        if isinstance(value, ActionOutcome):
            return value
        if value is False:
            return ActionOutcome(exit_code=1, output=f"{self._description} returned False")
        return ActionOutcome(exit_code=0, output=value if isinstance(value, str) else "")
