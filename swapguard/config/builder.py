"""
Job Builder
~~~~~~~~~~~

Turns a validated job definition into the runtime objects a transaction
needs: the ResourceSet, the MutationPlan and the verification criteria.
"""

from __future__ import annotations

import os

from swapguard.config.schema import CriterionConfig, JobConfig, StepConfig
from swapguard.core.models import MutationPlan, ResourceSet, Step
from swapguard.exceptions import ConfigValidationError
from swapguard.execution.actions import (
    BaseAction,
    ExtractArchive,
    RunCommand,
    SubstituteText,
)
from swapguard.execution.predicates import (
    BaseStepPredicate,
    ExitStatus,
    FileMatches,
    OutputMatches,
)
from swapguard.verification.criteria import (
    BaseCriterion,
    BinaryVersionMatches,
    FileContainsPattern,
    FileLacksPattern,
    FileNonEmpty,
    LibraryInLinkerCache,
)

__all__ = ["build_resource_set", "build_plan", "build_criteria", "build_step"]


def _require(value: str | None, field: str, owner: str) -> str:
    if value is None:
        raise ConfigValidationError(f"{owner}: '{field}' is required")
    return value


def build_resource_set(job: JobConfig) -> ResourceSet:
    return ResourceSet(
        identifier=job.resources.id,
        patterns=tuple(os.path.expanduser(p) for p in job.resources.paths),
    )


def _build_action(step: StepConfig, base_dir: str | None) -> BaseAction:
    if step.kind == "substitute":
        return SubstituteText(
            files=step.files,
            replacements=[(r.pattern, r.replacement) for r in step.replacements],
            regex=step.regex,
            root=step.root,
            require_match=step.require_match,
        )
    if step.kind == "extract":
        archive = _require(step.archive, "archive", f"step {step.name!r}")
        archive = os.path.expanduser(archive)
        if base_dir and not os.path.isabs(archive):
            archive = os.path.join(base_dir, archive)
        return ExtractArchive(archive=archive, dest=step.dest, expect=step.expect_path)
    if not step.command:
        raise ConfigValidationError(f"step {step.name!r}: 'command' is required")
    return RunCommand(step.command, cwd=step.cwd, env=step.env)


def _build_predicates(step: StepConfig) -> tuple[BaseStepPredicate, ...]:
    expect = step.expect
    predicates: list[BaseStepPredicate] = [ExitStatus(expect.exit_status)]
    if expect.output_matches:
        predicates.append(OutputMatches(expect.output_matches))
    if expect.output_lacks:
        predicates.append(OutputMatches(expect.output_lacks, negate=True))
    if expect.file_matches:
        predicates.append(FileMatches(expect.file_matches.path, expect.file_matches.pattern))
    if expect.file_lacks:
        predicates.append(
            FileMatches(expect.file_lacks.path, expect.file_lacks.pattern, negate=True)
        )
    return tuple(predicates)


def build_step(step: StepConfig, base_dir: str | None = None) -> Step:
    """
    Build one Step.

    Relative archive paths are resolved against ``base_dir``, normally the
    directory holding the job file.
    """
    return Step(
        name=step.name,
        action=_build_action(step, base_dir),
        predicates=_build_predicates(step),
        timeout=step.timeout,
        mutates_system=step.mutates_system,
    )


def build_plan(job: JobConfig, base_dir: str | None = None) -> MutationPlan:
    return MutationPlan(
        steps=tuple(build_step(s, base_dir) for s in job.steps),
        name=job.name or job.resources.id,
    )


def _build_criterion(config: CriterionConfig) -> BaseCriterion:
    kind = config.kind
    owner = f"{kind} criterion"
    if kind == "binary_version":
        return BinaryVersionMatches(
            _require(config.binary, "binary", owner),
            _require(config.pattern, "pattern", owner),
            config.version_args,
        )
    if kind == "linker_cache":
        return LibraryInLinkerCache(
            _require(config.library, "library", owner), ldconfig=config.ldconfig
        )
    path = os.path.expanduser(_require(config.path, "path", owner))
    if kind == "file_lacks":
        return FileLacksPattern(path, _require(config.pattern, "pattern", owner))
    if kind == "file_contains":
        return FileContainsPattern(path, _require(config.pattern, "pattern", owner))
    return FileNonEmpty(path)


def build_criteria(job: JobConfig) -> list[BaseCriterion]:
    return [_build_criterion(c) for c in job.verify]
