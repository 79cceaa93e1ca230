"""
Default Configuration
~~~~~~~~~~~~~~~~~~~~~

Sensible defaults for swapguard when no config file is provided.
"""

from __future__ import annotations

__all__ = ["DEFAULT_CONFIG"]

DEFAULT_CONFIG: dict = {
    "version": "1.0",
    "storage": {
        "snapshot_dir": None,
        "db_path": None,
        "retain_on_commit": True,
        "retain_on_rollback": False,
        "max_in_memory": 100,
    },
    "execution": {
        "work_dir": None,
        "keep_work_dir": False,
        "default_step_timeout": None,
        "poll_interval": 0.1,
        "env": {},
    },
    "signals": {
        "trap": ["SIGINT", "SIGTERM", "SIGHUP"],
    },
    "preconditions": {
        "required_tools": [],
        "packages": {},
        "forbid_root": False,
        "require_root": False,
    },
    "observability": {
        "exporters": ["console"],
        "event_log_max_entries": 10000,
        "log_level": "WARNING",
    },
    "job": None,
}
