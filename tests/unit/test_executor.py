"""Tests for the mutation executor, step actions and step predicates."""

import os
import shutil
import sys
import threading
import time

import pytest

from swapguard import (
    CallAction,
    CancellationToken,
    ExitStatus,
    ExtractArchive,
    FileMatches,
    MutationExecutor,
    MutationPlan,
    OutputMatches,
    RunCommand,
    Step,
    SubstituteText,
)
from swapguard.exceptions import PlanValidationError, TransactionInterruptedError


def _py(code):
    return RunCommand([sys.executable, "-c", code])


def _record(calls, name):
    def _call(context):
        calls.append((name, str(context.workdir)))
        return f"{name} done"

    return CallAction(_call, name)


class TestPlanValidation:
    """Tests for MutationPlan structure checks."""

    def test_empty_plan_is_valid(self):
        MutationPlan(()).validate()

    def test_duplicate_step_names(self):
        plan = MutationPlan((Step("a", _py("pass")), Step("a", _py("pass"))))
        with pytest.raises(PlanValidationError, match="Duplicate"):
            plan.validate()

    def test_mutating_step_must_be_last(self):
        plan = MutationPlan(
            (Step("install", _py("pass"), mutates_system=True), Step("after", _py("pass")))
        )
        with pytest.raises(PlanValidationError, match="last step"):
            plan.validate()

    def test_only_one_mutating_step(self):
        plan = MutationPlan(
            (
                Step("one", _py("pass"), mutates_system=True),
                Step("two", _py("pass"), mutates_system=True),
            )
        )
        with pytest.raises(PlanValidationError, match="Only one"):
            plan.validate()

    def test_executor_rejects_invalid_plan(self, executor):
        plan = MutationPlan((Step("", _py("pass")),))
        with pytest.raises(PlanValidationError):
            executor.run(plan)


class TestMutationExecutor:
    """Tests for step ordering, failure handling and deadlines."""

    def test_steps_run_in_order_in_shared_workdir(self, executor):
        calls = []
        plan = MutationPlan(
            (Step("one", _record(calls, "one")), Step("two", _record(calls, "two")))
        )

        execution = executor.run(plan)

        assert execution.success
        assert [name for name, _ in calls] == ["one", "two"]
        assert calls[0][1] == calls[1][1]
        assert [r.step for r in execution.results] == ["one", "two"]
        assert execution.results[0].output == "one done"

    def test_stops_at_first_failure(self, executor):
        calls = []
        plan = MutationPlan(
            (
                Step("ok", _record(calls, "ok")),
                Step("fail", _py("import sys; print('boom'); sys.exit(3)")),
                Step("never", _record(calls, "never")),
            )
        )

        execution = executor.run(plan)

        assert not execution.success
        assert [r.step for r in execution.results] == ["ok", "fail"]
        failed = execution.failed_step
        assert failed.step == "fail"
        assert failed.exit_code == 3
        assert "boom" in failed.output
        assert failed.failed_predicate == "exit status in (0)"
        assert calls == [("ok", calls[0][1])]

    def test_custom_exit_status(self, executor):
        plan = MutationPlan(
            (Step("grep", _py("import sys; sys.exit(1)"), predicates=(ExitStatus([0, 1]),)),)
        )
        assert executor.run(plan).success

    def test_output_predicate(self, executor):
        plan = MutationPlan(
            (
                Step(
                    "version",
                    _py("print('libinput 1.30.0')"),
                    predicates=(ExitStatus(0), OutputMatches(r"^libinput 1\.30")),
                ),
                Step(
                    "no-warnings",
                    _py("print('WARNING: deprecated')"),
                    predicates=(OutputMatches("WARNING", negate=True),),
                ),
            )
        )
        execution = executor.run(plan)

        assert execution.results[0].success
        assert not execution.results[1].success
        assert execution.results[1].failed_predicate == "output lacks /WARNING/"

    def test_stderr_is_captured(self, executor):
        plan = MutationPlan(
            (Step("err", _py("import sys; sys.stderr.write('to stderr')")),)
        )
        assert "to stderr" in executor.run(plan).results[0].output

    def test_action_exception_becomes_failed_step(self, executor):
        def boom(context):
            raise RuntimeError("boom")

        plan = MutationPlan((Step("boom", CallAction(boom)),))
        result = executor.run(plan).results[0]

        assert not result.success
        assert result.error == "RuntimeError: boom"

    def test_call_action_returning_false_fails(self, executor):
        plan = MutationPlan((Step("no", CallAction(lambda ctx: False, "no")),))
        assert not executor.run(plan).success

    def test_step_deadline(self, executor):
        plan = MutationPlan(
            (Step("slow", _py("import time; time.sleep(30)"), timeout=0.5),)
        )
        start = time.monotonic()
        result = executor.run(plan).results[0]

        assert time.monotonic() - start < 15
        assert not result.success
        assert result.timed_out
        assert result.failed_predicate == "deadline of 0.5s"

    def test_default_timeout_applies(self, tmp_path):
        executor = MutationExecutor(
            work_root=str(tmp_path / "work"), default_timeout=0.5, poll_interval=0.05
        )
        plan = MutationPlan((Step("slow", _py("import time; time.sleep(30)")),))
        assert executor.run(plan).results[0].timed_out

    def test_environment_is_passed(self, tmp_path):
        executor = MutationExecutor(work_root=str(tmp_path / "work"), env={"SG_MARK": "xyz"})
        plan = MutationPlan(
            (
                Step(
                    "env",
                    RunCommand(
                        [sys.executable, "-c", "import os; print(os.environ['SG_MARK'])"],
                        env={"SG_OTHER": "1"},
                    ),
                    predicates=(OutputMatches("xyz"),),
                ),
            )
        )
        assert executor.run(plan).success

    def test_workdir_removed_after_run(self, executor):
        seen = []
        plan = MutationPlan((Step("one", _record(seen, "one")),))
        execution = executor.run(plan)

        assert not os.path.exists(execution.workdir)

    def test_keep_workdir(self, tmp_path):
        executor = MutationExecutor(work_root=str(tmp_path / "work"), keep_workdir=True)
        plan = MutationPlan((Step("one", _py("open('out.txt', 'w').write('x')")),))
        execution = executor.run(plan)

        assert os.path.isfile(os.path.join(execution.workdir, "out.txt"))

    def test_hooks_called(self, executor):
        started, ended = [], []
        plan = MutationPlan((Step("a", _py("pass")), Step("b", _py("pass"))))
        executor.run(
            plan,
            on_step_start=lambda step: started.append(step.name),
            on_step_end=lambda result: ended.append(result.step),
        )
        assert started == ["a", "b"]
        assert ended == ["a", "b"]


class TestCancellation:
    """Tests for cancellation between and during steps."""

    def test_cancelled_before_start(self, executor):
        token = CancellationToken()
        token.cancel("stop")
        plan = MutationPlan((Step("a", _py("pass")),))

        with pytest.raises(TransactionInterruptedError) as exc_info:
            executor.run(plan, token)

        assert exc_info.value.reason == "stop"
        assert exc_info.value.partial == []

    def test_cancel_between_steps(self, executor):
        token = CancellationToken()

        def cancel(context):
            token.cancel("between")

        plan = MutationPlan((Step("first", CallAction(cancel)), Step("second", _py("pass"))))

        with pytest.raises(TransactionInterruptedError) as exc_info:
            executor.run(plan, token)

        assert [r.step for r in exc_info.value.partial] == ["first"]

    def test_cancel_during_command(self, executor):
        token = CancellationToken()
        plan = MutationPlan(
            (Step("ok", _py("pass")), Step("slow", _py("import time; time.sleep(30)")))
        )
        timer = threading.Timer(1.5, token.cancel, args=("test cancel",))
        timer.start()
        start = time.monotonic()
        try:
            with pytest.raises(TransactionInterruptedError) as exc_info:
                executor.run(plan, token)
        finally:
            timer.cancel()

        assert time.monotonic() - start < 15
        partial = exc_info.value.partial
        assert [r.step for r in partial] == ["ok", "slow"]
        assert partial[0].success
        assert not partial[1].success
        assert partial[1].error == "interrupted: test cancel"


class TestSubstituteText:
    """Tests for the text substitution action."""

    def _seed(self, path, text):
        def _write(context):
            target = context.workdir / path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text)

        return CallAction(_write, f"seed {path}")

    def test_literal_substitution(self, executor):
        plan = MutationPlan(
            (
                Step("seed", self._seed("src/debounce.c", "a = ms2us(25);\nb = ms2us(12);\n")),
                Step(
                    "patch",
                    SubstituteText(
                        ["src/*.c"],
                        [("ms2us(25)", "ms2us(0)"), ("ms2us(12)", "ms2us(0)")],
                    ),
                    predicates=(
                        ExitStatus(0),
                        FileMatches("src/debounce.c", r"ms2us\((25|12)\)", negate=True),
                    ),
                ),
            )
        )
        execution = executor.run(plan)

        assert execution.success
        output = execution.results[1].output
        assert "debounce.c: 2 replacement(s)" in output
        assert "debounce.c:1: a = ms2us(0);" in output

    def test_second_pass_changes_nothing(self, executor):
        substitute = SubstituteText(["*.c"], [("ms2us(25)", "ms2us(0)")])
        plan = MutationPlan(
            (
                Step("seed", self._seed("x.c", "ms2us(25)")),
                Step("first", substitute),
                Step("second", substitute),
            )
        )
        execution = executor.run(plan)

        assert execution.success
        assert execution.results[2].output == "already up to date"

    def test_regex_substitution(self, executor):
        plan = MutationPlan(
            (
                Step("seed", self._seed("x.c", "ms2us(5) ms2us(15)")),
                Step(
                    "patch",
                    SubstituteText(["x.c"], [(r"ms2us\(\d+\)", "ms2us(0)")], regex=True),
                    predicates=(FileMatches("x.c", r"^ms2us\(0\) ms2us\(0\)$"),),
                ),
            )
        )
        assert executor.run(plan).success

    def test_backslash_in_literal_replacement(self, executor):
        plan = MutationPlan(
            (
                Step("seed", self._seed("x.txt", "PATH")),
                Step(
                    "patch",
                    SubstituteText(["x.txt"], [("PATH", r"C:\new")]),
                    predicates=(FileMatches("x.txt", r"^C:\\new$"),),
                ),
            )
        )
        assert executor.run(plan).success

    def test_no_matching_files_fails(self, executor):
        plan = MutationPlan((Step("patch", SubstituteText(["*.c"], [("a", "b")])),))
        result = executor.run(plan).results[0]
        assert not result.success
        assert "no file matched" in result.output

    def test_no_matching_files_allowed(self, executor):
        plan = MutationPlan(
            (Step("patch", SubstituteText(["*.c"], [("a", "b")], require_match=False)),)
        )
        assert executor.run(plan).success

    def test_requires_replacements(self):
        with pytest.raises(ValueError):
            SubstituteText(["*.c"], [])


class TestExtractArchive:
    """Tests for the archive extraction action."""

    @pytest.fixture
    def archive(self, tmp_path):
        src = tmp_path / "src"
        (src / "libinput-1.30.0" / "src").mkdir(parents=True)
        (src / "libinput-1.30.0" / "src" / "evdev.c").write_text("ms2us(25)\n")
        return shutil.make_archive(
            str(tmp_path / "libinput-1.30.0"),
            "zip",
            root_dir=str(src),
            base_dir="libinput-1.30.0",
        )

    def test_extract(self, executor, archive):
        plan = MutationPlan(
            (
                Step("extract", ExtractArchive(archive, expect="libinput-1.30.0")),
                Step(
                    "check",
                    CallAction(lambda ctx: True, "check"),
                    predicates=(FileMatches("libinput-1.30.0/src/evdev.c", r"ms2us\(25\)"),),
                ),
            )
        )
        execution = executor.run(plan)
        assert execution.success, execution.failed_step

    def test_missing_expected_path(self, executor, archive):
        plan = MutationPlan((Step("extract", ExtractArchive(archive, expect="other")),))
        result = executor.run(plan).results[0]
        assert not result.success
        assert "expected path" in result.output

    def test_missing_archive(self, executor, tmp_path):
        plan = MutationPlan(
            (Step("extract", ExtractArchive(str(tmp_path / "missing.zip"))),)
        )
        result = executor.run(plan).results[0]
        assert not result.success
        assert "archive not found" in result.output
