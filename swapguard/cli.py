"""
swapguard CLI
~~~~~~~~~~~~~

Command-line interface for swapguard.

Exit codes: 0 committed, 1 rolled back or failed, 2 aborted before any
change was made.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from swapguard.core.state import ExitCode, Outcome
from swapguard.exceptions import (
    ConfigError,
    PreconditionError,
    RestoreFailedError,
    SnapshotError,
    SnapshotNotFoundError,
)


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="swapguard",
        description="swapguard — reversible replacement of system files",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version and exit",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Override the configured log level (e.g. DEBUG)",
    )
    subparsers = parser.add_subparsers(dest="command")

    # run command
    run_parser = subparsers.add_parser("run", help="Run the job in a config file")
    run_parser.add_argument("config", type=str, help="Path to the job YAML file")
    run_parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Do not ask for confirmation before starting",
    )
    run_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the transaction report as JSON instead of events",
    )

    # validate command
    validate_parser = subparsers.add_parser(
        "validate", help="Check a job file without running it"
    )
    validate_parser.add_argument("config", type=str, help="Path to the job YAML file")

    # snapshots command
    snapshots_parser = subparsers.add_parser("snapshots", help="List retained snapshots")
    _add_config_option(snapshots_parser)

    # rollback command
    rollback_parser = subparsers.add_parser(
        "rollback", help="Restore a retained snapshot"
    )
    rollback_parser.add_argument("snapshot_id", type=str, help="Snapshot to restore")
    rollback_parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Do not ask for confirmation",
    )
    _add_config_option(rollback_parser)

    # dispose command
    dispose_parser = subparsers.add_parser("dispose", help="Delete a retained snapshot")
    dispose_parser.add_argument("snapshot_id", type=str, help="Snapshot to delete")
    _add_config_option(dispose_parser)

    # cleanup command
    cleanup_parser = subparsers.add_parser(
        "cleanup", help="Delete snapshots older than a cutoff"
    )
    cleanup_parser.add_argument(
        "--older-than",
        type=float,
        default=24 * 7,
        help="Age in hours (default: 168)",
    )
    _add_config_option(cleanup_parser)

    # version command
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        from swapguard import __version__

        print(f"swapguard {__version__}")
        return

    if args.command == "run":
        sys.exit(_run_job(args))
    elif args.command == "validate":
        sys.exit(_run_validate(args))
    elif args.command == "snapshots":
        sys.exit(_run_snapshots(args))
    elif args.command == "rollback":
        sys.exit(_run_rollback(args))
    elif args.command == "dispose":
        sys.exit(_run_dispose(args))
    elif args.command == "cleanup":
        sys.exit(_run_cleanup(args))
    else:
        parser.print_help()
        sys.exit(ExitCode.ABORTED)


def _add_config_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a config file (for snapshot storage settings)",
    )


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _make_guard(config_path: str | None, args: argparse.Namespace) -> Any:
    """Create a SwapGuard instance from config or defaults."""
    from swapguard.core.guard import SwapGuard

    guard = SwapGuard.from_config(config_path) if config_path else SwapGuard.default()
    _setup_logging(args.log_level or guard.config.observability.log_level)
    return guard


def _confirm(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _run_job(args: argparse.Namespace) -> int:
    """Run the run command."""
    try:
        guard = _make_guard(args.config, args)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return ExitCode.ABORTED

    if args.json:
        guard.event_log.clear_exporters()

    def confirm(resource_set: Any, plan: Any) -> bool:
        if args.yes:
            return True
        print(f"About to modify {resource_set.identifier}:")
        for pattern in resource_set.patterns:
            print(f"  {pattern}")
        for step in plan.steps:
            marker = " (modifies system)" if step.mutates_system else ""
            print(f"  - {step.name}: {step.action.describe()}{marker}")
        return _confirm("Continue?")

    try:
        report = guard.run_job(confirm=confirm)
    except (ConfigError, PreconditionError, SnapshotError) as exc:
        print(f"Aborted, nothing was changed: {exc}", file=sys.stderr)
        return ExitCode.ABORTED

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        _print_summary(report)
    return report.exit_code


def _print_summary(report: Any) -> None:
    print()
    print(f"Transaction {report.transaction_id}: {report.outcome}")
    for step in report.steps:
        sym = "ok" if step.success else "FAILED"
        print(f"  step {step.step}: {sym} ({step.duration_ms} ms)")
    for result in report.verification:
        sym = "ok" if result.passed else "FAILED"
        print(f"  check {result.name}: {sym}")
    if report.outcome is Outcome.FAILED:
        print(str(report.error), file=sys.stderr)
    elif report.snapshot_retained:
        print(f"Snapshot {report.snapshot_id} kept at {report.snapshot_location}")


def _run_validate(args: argparse.Namespace) -> int:
    """Run the validate command."""
    from swapguard.config.builder import build_criteria, build_plan, build_resource_set
    from swapguard.config.loader import load_config

    try:
        config = load_config(args.config)
        if config.job is None:
            raise ConfigError("No job defined in configuration")
        resource_set = build_resource_set(config.job)
        plan = build_plan(config.job)
        plan.validate()
        criteria = build_criteria(config.job)
    except (ConfigError, PreconditionError, ValueError) as exc:
        print(f"Invalid: {exc}", file=sys.stderr)
        return ExitCode.ABORTED

    print(f"Job {plan.name!r} is valid")
    print(f"  resources: {resource_set.identifier} ({len(resource_set.expand())} path(s) present)")
    print(f"  steps:     {len(plan)}")
    print(f"  checks:    {len(criteria)}")
    return ExitCode.COMMITTED


def _run_snapshots(args: argparse.Namespace) -> int:
    """Run the snapshots command."""
    guard = _make_guard(args.config, args)
    rows = guard.list_snapshots()
    if not rows:
        print("No snapshots stored")
        return ExitCode.COMMITTED
    for row in rows:
        print(
            f"{row['snapshot_id']}  {row['status']:<10} {row['captured_at']}  {row['location']}"
        )
    return ExitCode.COMMITTED


def _run_rollback(args: argparse.Namespace) -> int:
    """Run the rollback command."""
    guard = _make_guard(args.config, args)
    if not args.yes and not _confirm(f"Restore snapshot {args.snapshot_id}?"):
        print("Aborted", file=sys.stderr)
        return ExitCode.ABORTED

    try:
        result = guard.rollback(args.snapshot_id)
    except SnapshotNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return ExitCode.ABORTED
    except RestoreFailedError as exc:
        print(str(exc), file=sys.stderr)
        return ExitCode.REVERTED

    print(
        f"Restored {len(result.restored)} path(s), removed {len(result.removed)} path(s)"
    )
    return ExitCode.COMMITTED


def _run_dispose(args: argparse.Namespace) -> int:
    """Run the dispose command."""
    guard = _make_guard(args.config, args)
    try:
        guard.dispose(args.snapshot_id)
    except SnapshotError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return ExitCode.ABORTED
    print(f"Disposed snapshot {args.snapshot_id}")
    return ExitCode.COMMITTED


def _run_cleanup(args: argparse.Namespace) -> int:
    """Run the cleanup command."""
    guard = _make_guard(args.config, args)
    removed = guard.cleanup(args.older_than)
    print(f"Disposed {removed} snapshot(s)")
    return ExitCode.COMMITTED


if __name__ == "__main__":
    main()
