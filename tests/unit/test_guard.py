"""Tests for the SwapGuard facade."""

import os
import sys

import pytest

from swapguard import (
    CallAction,
    FileContainsPattern,
    MutationPlan,
    Outcome,
    ResourceSet,
    Step,
    SwapGuard,
)
from swapguard.config import load_config_from_dict
from swapguard.exceptions import (
    AbortedError,
    ConfigError,
    MissingToolError,
    PlanValidationError,
    RestoreFailedError,
    SnapshotNotFoundError,
)


def _writer(path, content):
    def _write(context):
        with open(path, "w") as f:
            f.write(content)

    return Step("write", CallAction(_write), mutates_system=True)


def _read(path):
    with open(path) as f:
        return f.read()


@pytest.fixture
def make_guard(tmp_path):
    def _make(**overrides):
        data = {
            "storage": {
                "snapshot_dir": str(tmp_path / "snapshots"),
                "db_path": str(tmp_path / "index.db"),
            },
            "execution": {"work_dir": str(tmp_path / "work")},
            "observability": {"exporters": []},
        }
        for key, value in overrides.items():
            data[key] = {**data.get(key, {}), **value}
        return SwapGuard(load_config_from_dict(data))

    return _make


class TestSwapGuard:
    """Tests for running transactions through the facade."""

    def test_commit(self, make_guard, config_file):
        guard = make_guard()
        report = guard.run(
            ResourceSet("app", (config_file,)),
            MutationPlan((_writer(config_file, "new"),)),
            [FileContainsPattern(config_file, "new")],
        )

        assert report.outcome is Outcome.COMMITTED
        assert guard.controller is not None
        assert guard.get_metrics()["commits"] == 1
        assert guard.get_events(report.transaction_id)

    def test_each_run_gets_a_fresh_controller(self, make_guard, config_file):
        guard = make_guard()
        rs = ResourceSet("app", (config_file,))
        first = guard.run(rs, MutationPlan(()))
        controller = guard.controller
        second = guard.run(rs, MutationPlan(()))

        assert first.transaction_id != second.transaction_id
        assert guard.controller is not controller

    def test_confirm_declined(self, make_guard, config_file):
        guard = make_guard()
        seen = []

        def confirm(resource_set, plan):
            seen.append((resource_set.identifier, len(plan)))
            return False

        with pytest.raises(AbortedError):
            guard.run(
                ResourceSet("app", (config_file,)),
                MutationPlan((_writer(config_file, "new"),)),
                confirm=confirm,
            )

        assert seen == [("app", 1)]
        assert _read(config_file) == "original content\n"
        assert guard.list_snapshots() == []

    def test_invalid_plan_is_rejected_before_confirm(self, make_guard, config_file):
        guard = make_guard()
        plan = MutationPlan(
            (_writer(config_file, "a"), Step("after", CallAction(lambda c: None)))
        )
        with pytest.raises(PlanValidationError):
            guard.run(ResourceSet("app", (config_file,)), plan, confirm=lambda r, p: True)

    def test_preconditions_checked(self, make_guard, config_file):
        guard = make_guard(preconditions={"required_tools": ["swapguard-missing-tool"]})
        with pytest.raises(MissingToolError):
            guard.run(ResourceSet("app", (config_file,)), MutationPlan(()))
        assert guard.list_snapshots() == []

    def test_run_job_requires_job(self, make_guard):
        with pytest.raises(ConfigError):
            make_guard().run_job()

    def test_run_job(self, make_guard, config_file):
        guard = make_guard(
            job={
                "resources": {"id": "app", "paths": [config_file]},
                "steps": [
                    {
                        "name": "patch",
                        "kind": "command",
                        "command": [
                            sys.executable,
                            "-c",
                            f"open({config_file!r}, 'w').write('patched')",
                        ],
                        "mutates_system": True,
                    }
                ],
                "verify": [{"kind": "file_contains", "path": config_file, "pattern": "^patched$"}],
            }
        )
        report = guard.run_job(trap_signals=False)

        assert report.outcome is Outcome.COMMITTED
        assert _read(config_file) == "patched"


class TestSnapshotManagement:
    """Tests for manual rollback and disposal."""

    def test_manual_rollback_after_commit(self, make_guard, config_file):
        guard = make_guard()
        report = guard.run(
            ResourceSet("app", (config_file,)), MutationPlan((_writer(config_file, "new"),))
        )

        result = guard.rollback(report.snapshot_id)

        assert result.ok
        assert _read(config_file) == "original content\n"
        assert guard.list_snapshots() == []

    def test_rollback_unknown(self, make_guard):
        with pytest.raises(SnapshotNotFoundError):
            make_guard().rollback("missing")

    def test_rollback_failure_keeps_snapshot(self, make_guard, config_file, monkeypatch):
        guard = make_guard()
        report = guard.run(
            ResourceSet("app", (config_file,)), MutationPlan((_writer(config_file, "new"),))
        )

        def failing(action, entry):
            raise PermissionError(13, "Permission denied", action.dst)

        monkeypatch.setattr(guard.store, "_restore_action", failing)
        with pytest.raises(RestoreFailedError) as exc_info:
            guard.rollback(report.snapshot_id)

        assert exc_info.value.location == report.snapshot_location
        assert os.path.isdir(report.snapshot_location)
        assert len(guard.list_snapshots()) == 1

    def test_dispose(self, make_guard, config_file):
        guard = make_guard()
        report = guard.run(ResourceSet("app", (config_file,)), MutationPlan(()))

        guard.dispose(report.snapshot_id)

        assert not os.path.exists(report.snapshot_location)
        with pytest.raises(SnapshotNotFoundError):
            guard.dispose(report.snapshot_id)

    def test_retention_from_config(self, make_guard, config_file):
        guard = make_guard(storage={"retain_on_commit": False})
        report = guard.run(ResourceSet("app", (config_file,)), MutationPlan(()))
        assert not report.snapshot_retained
        assert guard.list_snapshots() == []


class TestEventSideChannel:
    """Tests for events reaching the guard's log and exporters."""

    def test_console_exporter_receives_transitions(self, make_guard, config_file, capsys):
        guard = make_guard(observability={"exporters": ["console"]})
        report = guard.run(
            ResourceSet("app", (config_file,)),
            MutationPlan((_writer(config_file, "new"),)),
            trap_signals=False,
        )

        out = capsys.readouterr().out
        assert report.outcome is Outcome.COMMITTED
        assert "[INFO] Capturing snapshot of 'app'" in out
        assert "[SUCCESS] All criteria passed, changes committed" in out

    def test_events_recorded_per_transaction(self, make_guard, config_file):
        guard = make_guard()
        first = guard.run(ResourceSet("app", (config_file,)), MutationPlan(()))
        second = guard.run(ResourceSet("app", (config_file,)), MutationPlan(()))

        states = [e.state for e in guard.get_events(first.transaction_id) if e.state]
        assert states[-1] == "COMMITTED"
        assert guard.get_events(second.transaction_id)
        assert len(guard.get_events()) == len(guard.get_events(first.transaction_id)) + len(
            guard.get_events(second.transaction_id)
        )
