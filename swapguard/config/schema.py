"""
Configuration Schema
~~~~~~~~~~~~~~~~~~~~

Pydantic models for validating swapguard configuration and job files.
"""

from __future__ import annotations

import logging
import signal
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

__all__ = [
    "SwapGuardConfig",
    "StorageConfig",
    "ExecutionConfig",
    "SignalConfig",
    "PreconditionConfig",
    "ObservabilityConfig",
    "ResourceSetConfig",
    "ReplacementConfig",
    "FilePatternConfig",
    "ExpectConfig",
    "StepConfig",
    "CriterionConfig",
    "JobConfig",
]

_EXPORTER_NAMES = {"console", "jsonl"}


class StorageConfig(BaseModel):
    """Snapshot storage and retention."""

    snapshot_dir: str | None = None
    db_path: str | None = None
    retain_on_commit: bool = True
    retain_on_rollback: bool = False
    max_in_memory: int = Field(default=100, ge=1)


class ExecutionConfig(BaseModel):
    """Mutation executor settings."""

    work_dir: str | None = None
    keep_work_dir: bool = False
    default_step_timeout: float | None = Field(default=None, gt=0)
    poll_interval: float = Field(default=0.1, gt=0, le=5)
    env: dict[str, str] = Field(default_factory=dict)


class SignalConfig(BaseModel):
    """Signals that interrupt a running transaction."""

    trap: list[str] = Field(default_factory=lambda: ["SIGINT", "SIGTERM", "SIGHUP"])

    @field_validator("trap")
    @classmethod
    def validate_signal_names(cls, v: list[str]) -> list[str]:
        """Every name must exist in the signal module."""
        normalized = []
        for name in v:
            upper = name.upper()
            if not upper.startswith("SIG"):
                upper = f"SIG{upper}"
            if not hasattr(signal, upper):
                raise ValueError(f"Unknown signal: {name!r}")
            normalized.append(upper)
        return normalized


class PreconditionConfig(BaseModel):
    """Environment checks performed before capture."""

    required_tools: list[str] = Field(default_factory=list)
    packages: dict[str, str] = Field(default_factory=dict)
    forbid_root: bool = False
    require_root: bool = False

    @model_validator(mode="after")
    def check_root_flags(self) -> PreconditionConfig:
        if self.forbid_root and self.require_root:
            raise ValueError("forbid_root and require_root are mutually exclusive")
        return self


class ObservabilityConfig(BaseModel):
    """Event log and logging configuration."""

    exporters: list[str] = Field(default_factory=lambda: ["console"])
    event_log_max_entries: int = Field(default=10000, ge=100)
    log_level: str = "WARNING"

    @field_validator("exporters")
    @classmethod
    def validate_exporters(cls, v: list[str]) -> list[str]:
        unknown = [name for name in v if name not in _EXPORTER_NAMES]
        if unknown:
            raise ValueError(
                f"Unknown exporter(s) {unknown}; expected one of {sorted(_EXPORTER_NAMES)}"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Invalid log level: {v!r}")
        return level


# ── Job definition ───────────────────────────────────────────────────────────


class ResourceSetConfig(BaseModel):
    """The paths protected by a job."""

    id: str = Field(min_length=1)
    paths: list[str] = Field(default_factory=list)


class ReplacementConfig(BaseModel):
    """One text substitution."""

    pattern: str = Field(min_length=1)
    replacement: str


class FilePatternConfig(BaseModel):
    """A file path paired with a regex."""

    path: str
    pattern: str


class ExpectConfig(BaseModel):
    """Success predicates of a step."""

    exit_status: int | list[int] = 0
    output_matches: str | None = None
    output_lacks: str | None = None
    file_matches: FilePatternConfig | None = None
    file_lacks: FilePatternConfig | None = None


class StepConfig(BaseModel):
    """One step of a job's mutation plan."""

    name: str = Field(min_length=1)
    kind: Literal["command", "substitute", "extract"] = "command"
    # command
    command: list[str] | str | None = None
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    # substitute
    files: list[str] = Field(default_factory=list)
    replacements: list[ReplacementConfig] = Field(default_factory=list)
    regex: bool = False
    root: str | None = None
    require_match: bool = True
    # extract
    archive: str | None = None
    dest: str = "."
    expect_path: str | None = None
    # common
    timeout: float | None = Field(default=None, gt=0)
    mutates_system: bool = False
    expect: ExpectConfig = Field(default_factory=ExpectConfig)

    @model_validator(mode="after")
    def check_kind_fields(self) -> StepConfig:
        if self.kind == "command" and not self.command:
            raise ValueError(f"step {self.name!r}: 'command' is required")
        if self.kind == "substitute" and not (self.files and self.replacements):
            raise ValueError(
                f"step {self.name!r}: 'files' and 'replacements' are required"
            )
        if self.kind == "extract" and not self.archive:
            raise ValueError(f"step {self.name!r}: 'archive' is required")
        return self


class CriterionConfig(BaseModel):
    """One post-mutation verification criterion."""

    kind: Literal[
        "binary_version",
        "linker_cache",
        "file_lacks",
        "file_contains",
        "file_non_empty",
    ]
    binary: str | None = None
    version_args: list[str] = Field(default_factory=lambda: ["--version"])
    library: str | None = None
    ldconfig: str = "ldconfig"
    path: str | None = None
    pattern: str | None = None

    @model_validator(mode="after")
    def check_kind_fields(self) -> CriterionConfig:
        required = {
            "binary_version": ("binary", "pattern"),
            "linker_cache": ("library",),
            "file_lacks": ("path", "pattern"),
            "file_contains": ("path", "pattern"),
            "file_non_empty": ("path",),
        }[self.kind]
        missing = [f for f in required if getattr(self, f) is None]
        if missing:
            raise ValueError(f"{self.kind} criterion requires: {', '.join(missing)}")
        return self


class JobConfig(BaseModel):
    """A complete job: what to protect, how to change it, how to check it."""

    name: str = ""
    resources: ResourceSetConfig
    steps: list[StepConfig] = Field(default_factory=list)
    verify: list[CriterionConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_steps(self) -> JobConfig:
        names = [s.name for s in self.steps]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"Duplicate step names: {dupes}")
        return self


class SwapGuardConfig(BaseModel):
    """
    Root configuration model for swapguard.

    Validated on load with clear error messages for invalid values.
    """

    version: str = "1.0"
    storage: StorageConfig = Field(default_factory=StorageConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    signals: SignalConfig = Field(default_factory=SignalConfig)
    preconditions: PreconditionConfig = Field(default_factory=PreconditionConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    job: JobConfig | None = None
