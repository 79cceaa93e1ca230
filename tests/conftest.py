"""Shared fixtures for swapguard tests."""

from __future__ import annotations

import os

import pytest

from swapguard import MutationExecutor, RollbackController, SnapshotStore
from swapguard.observability import EventLog, MetricsCollector


@pytest.fixture
def temp_dir(tmp_path) -> str:
    """A scratch directory standing in for protected system paths."""
    path = tmp_path / "system"
    path.mkdir()
    return str(path)


@pytest.fixture
def store(tmp_path) -> SnapshotStore:
    """A SnapshotStore with its storage and index under tmp_path."""
    return SnapshotStore(
        root=str(tmp_path / "store" / "snapshots"),
        db_path=str(tmp_path / "store" / "snapshots.db"),
    )


@pytest.fixture
def executor(tmp_path) -> MutationExecutor:
    """An executor with a short poll interval."""
    return MutationExecutor(work_root=str(tmp_path / "work"), poll_interval=0.05)


@pytest.fixture
def event_log() -> EventLog:
    """An event log with no exporters, for quiet test output."""
    return EventLog()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def controller(store, executor, event_log, metrics) -> RollbackController:
    return RollbackController(
        store=store,
        executor=executor,
        event_log=event_log,
        metrics=metrics,
    )


@pytest.fixture
def config_file(temp_dir) -> str:
    """A protected config file with known content."""
    path = os.path.join(temp_dir, "app.conf")
    with open(path, "w") as f:
        f.write("original content\n")
    return path
