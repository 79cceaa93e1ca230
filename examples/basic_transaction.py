"""
swapguard — Basic Transaction Example
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

Protects a scratch "config tree", runs a plan whose last step breaks
it, and shows the automatic rollback. A second run commits.
"""

import os
import sys
import tempfile

from swapguard import (
    CallAction,
    FileContainsPattern,
    MutationPlan,
    ResourceSet,
    RunCommand,
    Step,
    SubstituteText,
    SwapGuard,
)
from swapguard.config import load_config_from_dict


def main() -> None:
    base = tempfile.mkdtemp(prefix="swapguard-example-")
    target = os.path.join(base, "app.conf")
    with open(target, "w") as f:
        f.write("debounce_ms = 25\n")

    guard = SwapGuard(
        load_config_from_dict(
            {
                "storage": {"snapshot_dir": os.path.join(base, "snapshots")},
                "execution": {"work_dir": os.path.join(base, "work")},
            }
        )
    )
    resources = ResourceSet("app-config", (target,))

    def stage(context):
        with open(target) as src, open(context.workdir / "app.conf", "w") as dst:
            dst.write(src.read())
        return "staged app.conf"

    def install(context):
        with open(context.workdir / "app.conf") as src, open(target, "w") as dst:
            dst.write(src.read())
        return "installed app.conf"

    # 1. The patch goes wrong: verification fails and the file comes back
    broken = MutationPlan(
        (
            Step("stage", CallAction(stage)),
            Step(
                "patch",
                SubstituteText(["app.conf"], [("debounce_ms = 25", "debounce_ms = ")]),
            ),
            Step("install", CallAction(install), mutates_system=True),
        )
    )
    report = guard.run(
        resources, broken, [FileContainsPattern(target, r"debounce_ms = \d+")]
    )
    print(f"first run:  {report.outcome}")
    with open(target) as f:
        print(f"  {target}: {f.read().strip()}")

    # 2. The correct patch commits; the snapshot is kept for a manual undo
    fixed = MutationPlan(
        (
            Step("stage", CallAction(stage)),
            Step(
                "patch",
                SubstituteText(["app.conf"], [("debounce_ms = 25", "debounce_ms = 0")]),
            ),
            Step("check", RunCommand([sys.executable, "-c", "print('ok')"])),
            Step("install", CallAction(install), mutates_system=True),
        )
    )
    report = guard.run(
        resources, fixed, [FileContainsPattern(target, r"debounce_ms = 0")]
    )
    print(f"second run: {report.outcome}")
    print(f"  undo with: swapguard rollback {report.snapshot_id}")

    print()
    for name, value in guard.get_metrics().items():
        print(f"  {name}: {value}")


if __name__ == "__main__":
    main()
