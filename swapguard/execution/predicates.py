"""
Step Success Predicates
~~~~~~~~~~~~~~~~~~~~~~~

Decide whether a step succeeded from its ActionOutcome. A step without
explicit predicates is judged by ``ExitStatus(0)``.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable

from swapguard.core.models import ActionOutcome, PredicateResult, StepContext

__all__ = ["BaseStepPredicate", "ExitStatus", "OutputMatches", "FileMatches"]


class BaseStepPredicate(ABC):
    """
    Abstract base class for step success predicates.

    Subclasses implement ``name`` and ``check()``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable description used in diagnostics."""
        ...

    @abstractmethod
    def check(self, outcome: ActionOutcome, context: StepContext) -> PredicateResult:
        """Evaluate the predicate against a finished action."""
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name!r}>"


class ExitStatus(BaseStepPredicate):
    """Exit status is one of the expected values."""

    def __init__(self, expected: int | Iterable[int] = 0) -> None:
        self._expected = (
            frozenset([expected]) if isinstance(expected, int) else frozenset(expected)
        )

    @property
    def name(self) -> str:
        codes = ", ".join(str(c) for c in sorted(self._expected))
        return f"exit status in ({codes})"

    def check(self, outcome: ActionOutcome, context: StepContext) -> PredicateResult:
        passed = outcome.exit_code in self._expected
        return PredicateResult(
            name=self.name,
            passed=passed,
            detail="" if passed else f"exit status was {outcome.exit_code}",
        )


class OutputMatches(BaseStepPredicate):
    """Captured output contains (or, negated, lacks) a regex match."""

    def __init__(self, pattern: str, negate: bool = False) -> None:
        self._pattern = re.compile(pattern, re.MULTILINE)
        self._negate = negate

    @property
    def name(self) -> str:
        verb = "lacks" if self._negate else "matches"
        return f"output {verb} /{self._pattern.pattern}/"

    def check(self, outcome: ActionOutcome, context: StepContext) -> PredicateResult:
        found = self._pattern.search(outcome.output) is not None
        passed = found != self._negate
        return PredicateResult(name=self.name, passed=passed)


class FileMatches(BaseStepPredicate):
    """
    A file in the working directory contains (or lacks) a regex match.

    Relative paths are resolved against the run's working directory.
    """

    def __init__(self, path: str, pattern: str, negate: bool = False) -> None:
        self._path = path
        self._pattern = re.compile(pattern.encode(), re.MULTILINE)
        self._negate = negate

    @property
    def name(self) -> str:
        verb = "lacks" if self._negate else "matches"
        return f"{self._path} {verb} /{self._pattern.pattern.decode()}/"

    def check(self, outcome: ActionOutcome, context: StepContext) -> PredicateResult:
        path = context.workdir / self._path
        try:
            data = path.read_bytes()
        except OSError as exc:
            return PredicateResult(name=self.name, passed=False, detail=str(exc))
        found = self._pattern.search(data) is not None
        return PredicateResult(name=self.name, passed=found != self._negate)
