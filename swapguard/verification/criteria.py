"""
Verification Criteria
~~~~~~~~~~~~~~~~~~~~~

Predicates over live system state, checked after a plan has run:
the installed binary's version, the dynamic-linker cache, and the
contents of installed files.
"""

from __future__ import annotations

import os
import re
import shutil
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

from swapguard.core.models import PredicateResult

__all__ = [
    "BaseCriterion",
    "BinaryVersionMatches",
    "LibraryInLinkerCache",
    "FileLacksPattern",
    "FileContainsPattern",
    "FileNonEmpty",
    "CallableCriterion",
]


class BaseCriterion(ABC):
    """
    Abstract base class for verification criteria.

    Subclasses implement ``name`` and ``check()``. ``check()`` may raise;
    the VerificationProbe records an exception as a failed criterion.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique, human-readable description of the expectation."""
        ...

    @abstractmethod
    def check(self) -> PredicateResult:
        """Evaluate the criterion against current system state."""
        ...

    def _result(self, passed: bool, detail: str = "") -> PredicateResult:
        return PredicateResult(name=self.name, passed=passed, detail=detail)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name!r}>"


class BinaryVersionMatches(BaseCriterion):
    """Running ``<binary> --version`` prints output matching a pattern."""

    def __init__(
        self,
        binary: str,
        pattern: str,
        version_args: Sequence[str] = ("--version",),
        timeout: float = 10.0,
    ) -> None:
        self._binary = binary
        self._pattern = re.compile(pattern)
        self._args = list(version_args)
        self._timeout = timeout

    @property
    def name(self) -> str:
        return f"{self._binary} version matches /{self._pattern.pattern}/"

    def check(self) -> PredicateResult:
        executable = shutil.which(self._binary)
        if executable is None:
            return self._result(False, f"{self._binary} not found in PATH")
        proc = subprocess.run(
            [executable, *self._args],
            capture_output=True,
            text=True,
            timeout=self._timeout,
        )
        output = (proc.stdout + proc.stderr).strip()
        if proc.returncode != 0:
            return self._result(False, f"exit status {proc.returncode}: {output}")
        if self._pattern.search(output):
            return self._result(True, output.splitlines()[0] if output else "")
        return self._result(False, f"version output was {output!r}")


class LibraryInLinkerCache(BaseCriterion):
    """The dynamic-linker cache (``ldconfig -p``) lists a library."""

    def __init__(
        self,
        library: str,
        ldconfig: str = "ldconfig",
        timeout: float = 10.0,
    ) -> None:
        self._library = library
        self._ldconfig = ldconfig
        self._timeout = timeout

    @property
    def name(self) -> str:
        return f"{self._library} in dynamic-linker cache"

    def check(self) -> PredicateResult:
        executable = shutil.which(self._ldconfig) or shutil.which(
            self._ldconfig, path="/sbin:/usr/sbin"
        )
        if executable is None:
            return self._result(False, f"{self._ldconfig} not found")
        proc = subprocess.run(
            [executable, "-p"],
            capture_output=True,
            text=True,
            timeout=self._timeout,
        )
        if proc.returncode != 0:
            return self._result(False, f"{self._ldconfig} -p exited {proc.returncode}")
        for line in proc.stdout.splitlines():
            entry = line.strip().split(" ", 1)[0]
            if entry.startswith(self._library):
                return self._result(True, line.strip())
        return self._result(False, f"{self._library} not listed")


class _FileCriterion(BaseCriterion):
    def __init__(self, path: str) -> None:
        self._path = path

    def _read(self) -> bytes:
        with open(self._path, "rb") as f:
            return f.read()


class FileLacksPattern(_FileCriterion):
    """A file no longer contains a pattern."""

    def __init__(self, path: str, pattern: str) -> None:
        super().__init__(path)
        self._pattern = re.compile(pattern.encode())

    @property
    def name(self) -> str:
        return f"{self._path} lacks /{self._pattern.pattern.decode()}/"

    def check(self) -> PredicateResult:
        try:
            data = self._read()
        except OSError as exc:
            return self._result(False, str(exc))
        match = self._pattern.search(data)
        if match is None:
            return self._result(True)
        return self._result(False, f"pattern found at offset {match.start()}")


class FileContainsPattern(_FileCriterion):
    """A file contains a pattern."""

    def __init__(self, path: str, pattern: str) -> None:
        super().__init__(path)
        self._pattern = re.compile(pattern.encode())

    @property
    def name(self) -> str:
        return f"{self._path} contains /{self._pattern.pattern.decode()}/"

    def check(self) -> PredicateResult:
        try:
            data = self._read()
        except OSError as exc:
            return self._result(False, str(exc))
        if self._pattern.search(data):
            return self._result(True)
        return self._result(False, "pattern not found")


class FileNonEmpty(_FileCriterion):
    """A regular file exists and is not empty."""

    @property
    def name(self) -> str:
        return f"{self._path} is non-empty"

    def check(self) -> PredicateResult:
        try:
            size = os.path.getsize(self._path)
        except OSError as exc:
            return self._result(False, str(exc))
        return self._result(size > 0, f"{size} bytes")


class CallableCriterion(BaseCriterion):
    """Wraps a plain function returning a bool."""

    def __init__(self, name: str, func: Callable[[], bool]) -> None:
        self._name = name
        self._func = func

    @property
    def name(self) -> str:
        return self._name

    def check(self) -> PredicateResult:
        return self._result(bool(self._func()))
