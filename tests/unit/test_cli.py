"""Tests for the command-line interface."""

import json
import os
import sys

import pytest
import yaml

from swapguard import __version__
from swapguard.cli import main


def _exit_code(argv):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


@pytest.fixture
def write_config(tmp_path, config_file):
    """Write a job file protecting config_file; returns its path."""

    def _write(new_content="new content", expect="new content", extra=None):
        config = {
            "storage": {
                "snapshot_dir": str(tmp_path / "snapshots"),
                "db_path": str(tmp_path / "index.db"),
            },
            "execution": {"work_dir": str(tmp_path / "work"), "poll_interval": 0.05},
            "observability": {"exporters": []},
            "job": {
                "name": "cli-job",
                "resources": {"id": "app", "paths": [config_file]},
                "steps": [
                    {
                        "name": "install",
                        "command": [
                            sys.executable,
                            "-c",
                            f"open({config_file!r}, 'w').write({new_content!r})",
                        ],
                        "mutates_system": True,
                    }
                ],
                "verify": [
                    {"kind": "file_contains", "path": config_file, "pattern": expect}
                ],
            },
        }
        config.update(extra or {})
        path = tmp_path / "job.yaml"
        path.write_text(yaml.safe_dump(config))
        return str(path)

    return _write


def _read(path):
    with open(path) as f:
        return f.read()


class TestCli:
    """Tests for each subcommand and its exit code."""

    def test_version(self, capsys):
        main(["version"])
        assert capsys.readouterr().out.strip() == f"swapguard {__version__}"

    def test_version_flag(self, capsys):
        main(["--version"])
        assert __version__ in capsys.readouterr().out

    def test_no_command(self, capsys):
        assert _exit_code([]) == 2

    def test_validate(self, write_config, capsys):
        assert _exit_code(["validate", write_config()]) == 0
        out = capsys.readouterr().out
        assert "Job 'cli-job' is valid" in out
        assert "1 path(s) present" in out

    def test_validate_invalid(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"job": {"resources": {"id": "x"}, "steps": [{"name": "a"}]}}))
        assert _exit_code(["validate", str(path)]) == 2
        assert "Invalid" in capsys.readouterr().err

    def test_validate_missing_job(self, tmp_path):
        path = tmp_path / "nojob.yaml"
        path.write_text("storage: {}\n")
        assert _exit_code(["validate", str(path)]) == 2

    def test_run_commit(self, write_config, config_file, capsys):
        assert _exit_code(["run", write_config(), "--yes"]) == 0
        assert _read(config_file) == "new content"
        out = capsys.readouterr().out
        assert "COMMITTED" in out
        assert "kept at" in out

    def test_run_rollback(self, write_config, config_file, capsys):
        path = write_config(new_content="broken", expect="new content")
        assert _exit_code(["run", path, "--yes"]) == 1
        assert _read(config_file) == "original content\n"
        assert "ROLLED_BACK" in capsys.readouterr().out

    def test_run_json(self, write_config, capsys):
        assert _exit_code(["run", write_config(), "--yes", "--json"]) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["outcome"] == "COMMITTED"
        assert report["resource_set"] == "app"
        assert [s["step"] for s in report["steps"]] == ["install"]

    def test_run_declined(self, write_config, config_file, monkeypatch, capsys):
        monkeypatch.setattr("builtins.input", lambda prompt: "n")
        assert _exit_code(["run", write_config()]) == 2
        assert _read(config_file) == "original content\n"
        assert "nothing was changed" in capsys.readouterr().err

    def test_run_confirmed(self, write_config, config_file, monkeypatch):
        monkeypatch.setattr("builtins.input", lambda prompt: "yes")
        assert _exit_code(["run", write_config()]) == 0
        assert _read(config_file) == "new content"

    def test_run_missing_tool(self, write_config, config_file):
        path = write_config(
            extra={"preconditions": {"required_tools": ["swapguard-missing-tool"]}}
        )
        assert _exit_code(["run", path, "--yes"]) == 2
        assert _read(config_file) == "original content\n"

    def test_run_missing_config(self, tmp_path):
        assert _exit_code(["run", str(tmp_path / "nope.yaml"), "--yes"]) == 2

    def test_snapshots_rollback_dispose(self, write_config, config_file, capsys):
        path = write_config()
        assert _exit_code(["run", path, "--yes", "--json"]) == 0
        snapshot_id = json.loads(capsys.readouterr().out)["snapshot_id"]

        assert _exit_code(["snapshots", "--config", path]) == 0
        assert snapshot_id in capsys.readouterr().out

        assert _exit_code(["rollback", snapshot_id, "--config", path, "--yes"]) == 0
        assert _read(config_file) == "original content\n"
        assert "Restored 1 path(s)" in capsys.readouterr().out

        # restored snapshots are disposed
        assert _exit_code(["dispose", snapshot_id, "--config", path]) == 2

    def test_dispose(self, write_config, capsys):
        path = write_config()
        _exit_code(["run", path, "--yes", "--json"])
        snapshot_id = json.loads(capsys.readouterr().out)["snapshot_id"]

        assert _exit_code(["dispose", snapshot_id, "--config", path]) == 0
        assert _exit_code(["snapshots", "--config", path]) == 0
        assert "No snapshots stored" in capsys.readouterr().out

    def test_rollback_unknown(self, write_config):
        path = write_config()
        assert _exit_code(["rollback", "nope", "--config", path, "--yes"]) == 2

    def test_cleanup(self, write_config, capsys):
        path = write_config()
        _exit_code(["run", path, "--yes", "--json"])
        capsys.readouterr()

        assert _exit_code(["cleanup", "--older-than", "0", "--config", path]) == 0
        assert "Disposed 1 snapshot(s)" in capsys.readouterr().out
        assert os.listdir(os.path.join(os.path.dirname(path), "snapshots")) == []
