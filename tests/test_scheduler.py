"""End-to-end scheduling scenarios against a scripted executor."""

import threading

import pytest

from matrixci.dsl import job, sh, wf
from matrixci.errors import GraphError
from matrixci.executor import ExecResult
from matrixci.model import InstanceStatus
from matrixci.scheduler import Scheduler, run_pipeline
from matrixci.dag import load

from conftest import ScriptedExecutor


def _statuses(run, job_id):
    return [i.status for i in run.instances_of(job_id)]


def _chain():
    return wf(
        job("a", sh("build", "make")),
        job("b", sh("test", "make test"), needs=["a"]),
        job("c", sh("done", "true"), needs=["a", "b"], gate=True),
    )


class TestHappyPath:
    """Everything succeeds in dependency order."""

    def test_chain_with_gate(self, executor, console):
        run = run_pipeline(_chain(), executor, max_workers=4, console=console)

        assert run.result is InstanceStatus.SUCCEEDED
        assert run.succeeded
        assert run.gate == "c"
        assert executor.jobs_called() == ["a", "b", "c"]
        assert all(i.status is InstanceStatus.SUCCEEDED for i in run.instances)

    def test_dependencies_finish_before_dependents(self, console):
        executor = ScriptedExecutor(delay=0.01)
        pipeline = wf(
            job("lint", sh("ruff", "ruff check .")),
            job("unit", sh("pytest", "pytest"), matrix={"os": ["l", "m", "w"]}),
            job("docs", sh("build", "mkdocs build"), needs=["lint"]),
            job("ci", sh("ok", "true"), needs=["docs", "unit"]),
        )

        run = run_pipeline(pipeline, executor, max_workers=4, console=console)
        called = executor.jobs_called()

        assert run.succeeded
        assert called.index("docs") > called.index("lint")
        assert called.index("ci") > max(i for i, j in enumerate(called) if j == "unit")
        assert called.count("unit") == 3

    def test_instances_reported_in_graph_order(self, executor, console):
        pipeline = [
            job("ci", sh("ok", "true"), needs=["test"]),
            job("test", sh("run", "true"), matrix={"py": ["3.11", "3.12"]}),
        ]

        run = run_pipeline(pipeline, executor, console=console)

        assert [i.key for i in run.instances] == ["test (py=3.11)", "test (py=3.12)", "ci"]

    def test_accepts_loaded_graph(self, executor, console):
        graph = load(_chain())

        run = Scheduler(graph, executor, max_workers=1, console=console).run()

        assert run.succeeded
        assert run.pipeline is graph.pipeline


class TestFailurePropagation:
    """Failed or skipped dependencies block dependents."""

    def test_root_failure_skips_downstream(self, console):
        executor = ScriptedExecutor({("a", "build"): "failure"})

        run = run_pipeline(_chain(), executor, console=console)

        assert run.result is InstanceStatus.FAILED
        assert _statuses(run, "a") == [InstanceStatus.FAILED]
        assert _statuses(run, "b") == [InstanceStatus.SKIPPED]
        assert _statuses(run, "c") == [InstanceStatus.SKIPPED]
        assert executor.jobs_called() == ["a"]
        assert run.instances_of("b")[0].reason == "dependency failed: a"
        assert run.instances_of("c")[0].reason == "dependency failed: a, b"

    def test_one_failed_matrix_instance_blocks_dependents(self, console):
        executor = ScriptedExecutor({("test", "run", "windows"): "failure"})
        pipeline = wf(
            job("test", sh("run", "make test"), matrix={"os": ["ubuntu", "macos", "windows"]}),
            job("ci", sh("ok", "true"), needs=["test"], gate=True),
        )

        run = run_pipeline(pipeline, executor, max_workers=3, console=console)

        by_os = {i.matrix_assignment["os"]: i.status for i in run.instances_of("test")}
        assert by_os == {
            "ubuntu": InstanceStatus.SUCCEEDED,
            "macos": InstanceStatus.SUCCEEDED,
            "windows": InstanceStatus.FAILED,
        }
        assert _statuses(run, "ci") == [InstanceStatus.SKIPPED]
        assert "ci" not in executor.jobs_called()
        assert run.result is InstanceStatus.FAILED

    def test_matrix_conditional_step(self, executor, console):
        pipeline = wf(
            job(
                "unit",
                sh("llvm", "scoop install llvm", if_="matrix.os == 'windows-2019'"),
                sh("test", "make test"),
                matrix={"os": ["ubuntu-latest", "macos-latest", "windows-2019"]},
            ),
        )

        run = run_pipeline(pipeline, executor, console=console)

        llvm_calls = [c for c in executor.calls if c[2] == "llvm"]
        assert llvm_calls == [("unit", {"os": "windows-2019"}, "llvm")]
        assert len([c for c in executor.calls if c[2] == "test"]) == 3
        assert run.succeeded
        ubuntu = next(i for i in run.instances if i.matrix_assignment["os"] == "ubuntu-latest")
        assert [s.outcome.value for s in ubuntu.steps] == ["skipped", "success"]

    def test_independent_branch_keeps_running(self, console):
        executor = ScriptedExecutor({("lint", "ruff"): "failure"})
        pipeline = [
            job("lint", sh("ruff", "ruff check .")),
            job("unit", sh("pytest", "pytest")),
            job("docs", sh("build", "mkdocs"), needs=["unit"]),
        ]

        run = run_pipeline(pipeline, executor, console=console)

        assert _statuses(run, "docs") == [InstanceStatus.SUCCEEDED]
        assert run.result is InstanceStatus.FAILED

    def test_executor_error_reason(self, console):
        executor = ScriptedExecutor({("a", "build"): "raise"})

        run = run_pipeline(_chain(), executor, console=console)

        inst = run.instances_of("a")[0]
        assert inst.status is InstanceStatus.FAILED
        assert inst.reason.startswith("executor_error:")

    def test_skipped_gate_fails_pipeline(self, console):
        executor = ScriptedExecutor({("a", "build"): "failure"})
        pipeline = wf(
            job("a", sh("build", "make")),
            job("b", sh("test", "make test"), needs=["a"], gate=True),
            job("report", sh("summary", "true"), needs=["b"], always=True),
        )

        run = run_pipeline(pipeline, executor, console=console)

        assert _statuses(run, "b") == [InstanceStatus.SKIPPED]
        assert _statuses(run, "report") == [InstanceStatus.SUCCEEDED]
        assert run.result is InstanceStatus.FAILED


class TestRunPolicy:
    """`always` jobs run whatever happened upstream."""

    def test_always_runs_after_failure(self, console):
        executor = ScriptedExecutor({("a", "build"): "failure"})
        pipeline = [
            job("a", sh("build", "make")),
            job("cleanup", sh("rm", "rm -rf build"), needs=["a"], always=True),
        ]

        run = run_pipeline(pipeline, executor, console=console)

        assert _statuses(run, "cleanup") == [InstanceStatus.SUCCEEDED]
        assert executor.jobs_called() == ["a", "cleanup"]


class TestVerdict:
    """Gate versus sinks."""

    def test_sinks_decide_without_gate(self, console):
        executor = ScriptedExecutor({("b", "x"): "failure"})
        pipeline = [job("a", sh("x", "true")), job("b", sh("x", "false"))]

        run = run_pipeline(pipeline, executor, console=console)

        assert run.gate is None
        assert run.result is InstanceStatus.FAILED

    def test_gate_success_ignores_other_sinks(self, console):
        executor = ScriptedExecutor({("side", "x"): "failure"})
        pipeline = wf(
            job("a", sh("x", "true")),
            job("side", sh("x", "false")),
            job("ci", sh("x", "true"), needs=["a"], gate=True),
        )

        run = run_pipeline(pipeline, executor, console=console)

        assert _statuses(run, "side") == [InstanceStatus.FAILED]
        assert run.result is InstanceStatus.SUCCEEDED
        assert run.gate == "ci"

    def test_empty_pipeline_succeeds(self, executor, console):
        run = run_pipeline([], executor, console=console)

        assert run.succeeded
        assert run.instances == []


class TestFailFast:
    """Cancellation after the first failure."""

    def _pipeline(self, b_started):
        def fail_after_b_started(step, ctx):
            b_started.wait(timeout=5)
            return ExecResult.failure(exit_code=1)

        def wait_for_cancel(step, ctx):
            b_started.set()
            ctx.cancelled.wait(timeout=5)
            return ExecResult.success()

        script = {("a", "boom"): fail_after_b_started, ("b", "first"): wait_for_cancel}
        pipeline = [
            job("a", sh("boom", "false")),
            job("b", sh("first", "sleep 1"), sh("second", "true")),
            job("d", sh("after", "true"), needs=["b"]),
            job("e", sh("after", "true"), needs=["b"], always=True),
        ]
        return pipeline, ScriptedExecutor(script)

    def test_cancels_in_flight_and_pending_work(self, console):
        pipeline, executor = self._pipeline(threading.Event())

        run = run_pipeline(pipeline, executor, max_workers=2, fail_fast=True, console=console)

        b = run.instances_of("b")[0]
        assert b.status is InstanceStatus.FAILED
        assert b.reason == "cancelled"
        assert [s.name for s in b.steps] == ["first"]
        assert ("b", {}, "second") not in executor.calls

        assert _statuses(run, "d") == [InstanceStatus.SKIPPED]
        assert run.instances_of("d")[0].reason == "dependency failed: b"
        assert _statuses(run, "e") == [InstanceStatus.SKIPPED]
        assert run.instances_of("e")[0].reason == "cancelled"
        assert "e" not in executor.jobs_called()
        assert run.result is InstanceStatus.FAILED

    def test_without_fail_fast_work_continues(self, console):
        pipeline, executor = self._pipeline(threading.Event())
        executor.script[("b", "first")] = lambda step, ctx: ExecResult.success()
        executor.script[("a", "boom")] = "failure"

        run = run_pipeline(pipeline, executor, max_workers=2, fail_fast=False, console=console)

        assert _statuses(run, "b") == [InstanceStatus.SUCCEEDED]
        assert _statuses(run, "d") == [InstanceStatus.SUCCEEDED]
        assert _statuses(run, "e") == [InstanceStatus.SUCCEEDED]
        assert run.result is InstanceStatus.FAILED


class TestConcurrency:
    """The worker bound is respected."""

    @pytest.mark.parametrize("workers", [1, 2])
    def test_max_workers(self, console, workers):
        executor = ScriptedExecutor(delay=0.02)
        pipeline = [job("t", sh("run", "true"), matrix={"n": [1, 2, 3, 4, 5]})]

        run = run_pipeline(pipeline, executor, max_workers=workers, console=console)

        assert run.succeeded
        assert executor.max_active <= workers
        assert len(executor.calls) == 5

    def test_parallel_instances_overlap(self, console):
        started = threading.Barrier(2, timeout=5)

        def rendezvous(step, ctx):
            started.wait()
            return ExecResult.success()

        executor = ScriptedExecutor({("t", "run"): rendezvous})
        pipeline = [job("t", sh("run", "true"), matrix={"n": [1, 2]})]

        run = run_pipeline(pipeline, executor, max_workers=2, console=console)

        assert run.succeeded
        assert executor.max_active == 2

    def test_queued_instances_stay_pending(self, console):
        pending = []

        def record_pending(step, ctx):
            statuses = [i.status for i in scheduler.snapshot()]
            pending.append(statuses.count(InstanceStatus.PENDING))
            return ExecResult.success()

        executor = ScriptedExecutor({("t", "run"): record_pending})
        graph = load([job("t", sh("run", "true"), matrix={"n": [1, 2, 3, 4, 5]})])
        scheduler = Scheduler(graph, executor, max_workers=1, console=console)

        run = scheduler.run()

        assert run.succeeded
        # with one worker, everything behind the current instance is still queued
        assert pending == [4, 3, 2, 1, 0]


class TestValidation:
    """Invalid graphs never reach the executor."""

    def test_cycle_raises_before_execution(self, executor, console):
        pipeline = [job("a", sh("x", "true"), needs=["b"]), job("b", sh("x", "true"), needs=["a"])]

        with pytest.raises(GraphError) as exc:
            run_pipeline(pipeline, executor, console=console)

        assert exc.value.kind == "cycle"
        assert executor.calls == []

    def test_missing_dependency_raises(self, executor, console):
        with pytest.raises(GraphError):
            run_pipeline([job("a", sh("x", "true"), needs=["nope"])], executor, console=console)
        assert executor.calls == []


class TestSnapshot:
    """Serialized run state."""

    def test_to_dict(self, console):
        executor = ScriptedExecutor({("a", "build"): "failure"})

        data = run_pipeline(_chain(), executor, console=console).to_dict()

        assert data["result"] == "failed"
        assert data["gate"] == "c"
        first = data["instances"][0]
        assert first["job_id"] == "a"
        assert first["status"] == "failed"
        assert first["steps"][0]["outcome"] == "failure"
        assert first["steps"][0]["exit_code"] == 2
        assert data["instances"][1]["reason"] == "dependency failed: a"

    def test_snapshot_is_a_copy(self, executor, console):
        scheduler = Scheduler(load(_chain()), executor, max_workers=1, console=console)
        scheduler.run()

        snap = scheduler.snapshot()
        snap[0].status = InstanceStatus.FAILED

        assert scheduler.snapshot()[0].status is InstanceStatus.SUCCEEDED
