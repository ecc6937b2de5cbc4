# scheduler.py
from __future__ import annotations

import copy
import logging
import os
import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Deque, Dict, Iterable, List, Optional, Union

from . import dag
from .executor import StepExecutor
from .matrix import expand
from .model import InstanceStatus, JobInstance, JobSpec, Pipeline, PipelineRun
from .runner import InstanceResult, run_instance
from .status import aggregate, pipeline_result
from .ui.console import Console, get_console

log = logging.getLogger(__name__)


def default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


class Scheduler:
    """
    Runs a validated graph to completion.

    Only the thread calling run() touches the bookkeeping (remaining instance
    counts, unresolved dependency counts, ready queue). Workers get a job, a
    copy of the matrix assignment and hand back an InstanceResult; the only
    instance write they make is the Pending -> Running flip, through _set().
    The lock guards instance state against snapshot() readers.
    """

    def __init__(
        self,
        graph: dag.Graph,
        executor: StepExecutor,
        *,
        max_workers: Optional[int] = None,
        fail_fast: bool = False,
        console: Optional[Console] = None,
    ):
        self.graph = graph
        self.executor = executor
        self.max_workers = max_workers or default_workers()
        self.fail_fast = fail_fast
        self.console = console or get_console()

        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._failed = False

        self._instances: Dict[str, List[JobInstance]] = {
            job_id: expand(graph.jobs[job_id]) for job_id in graph.order
        }
        self._remaining: Dict[str, int] = {j: len(insts) for j, insts in self._instances.items()}
        self._waiting: Dict[str, int] = {j: len(graph.dependencies[j]) for j in graph.order}
        self._ready: Deque[str] = deque(graph.roots)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def snapshot(self) -> List[JobInstance]:
        """Copies of every instance, in graph order."""
        with self._lock:
            return [copy.deepcopy(i) for job_id in self.graph.order for i in self._instances[job_id]]

    def _set(self, inst: JobInstance, status: InstanceStatus, *, reason: str | None = None, steps=None) -> None:
        with self._lock:
            inst.status = status
            if reason is not None:
                inst.reason = reason
            if steps is not None:
                inst.steps = list(steps)
        log.debug("%s -> %s%s", inst.key, status.value, f" ({reason})" if reason else "")

    def _aggregate(self, job_id: str) -> InstanceStatus:
        return aggregate(job_id, self._instances[job_id])

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    def _resolved(self, job_id: str) -> None:
        """Every instance of job_id is terminal: unlock dependents."""
        log.debug("job %s resolved: %s", job_id, self._aggregate(job_id).value)
        for child in sorted(self.graph.dependents[job_id], key=self.graph.order.index):
            self._waiting[child] -= 1
            if self._waiting[child] == 0:
                self._ready.append(child)

    def _skip_job(self, job_id: str, reason: str) -> None:
        for inst in self._instances[job_id]:
            self._set(inst, InstanceStatus.SKIPPED, reason=reason)
            self.console.print_instance_skipped(inst.key, reason)
        self._remaining[job_id] = 0
        self._resolved(job_id)

    def _release(self, job_id: str, pool: ThreadPoolExecutor, in_flight: Dict[Future, JobInstance]) -> None:
        job = self.graph.jobs[job_id]
        deps = sorted(self.graph.dependencies[job_id], key=self.graph.order.index)
        failed = [d for d in deps if self._aggregate(d) is not InstanceStatus.SUCCEEDED]

        if failed and job.run_policy != "always":
            self._skip_job(job_id, f"dependency failed: {', '.join(failed)}")
            return

        if self.fail_fast and self._failed:
            self._skip_job(job_id, "cancelled")
            return

        for inst in self._instances[job_id]:
            fut = pool.submit(self._work, job, inst, dict(inst.matrix_assignment))
            in_flight[fut] = inst

    def _work(self, job: JobSpec, inst: JobInstance, matrix: dict) -> InstanceResult:
        # runs on a pool thread: Pending until a worker actually picks it up
        if self._cancelled.is_set():
            return InstanceResult(InstanceStatus.SKIPPED, reason="cancelled")
        self._set(inst, InstanceStatus.RUNNING)
        self.console.print_instance_start(inst.key)
        return run_instance(
            job,
            matrix,
            self.executor,
            conditions=self.graph.conditions[job.id],
            env=self.graph.pipeline.env,
            cancelled=self._cancelled,
            console=self.console,
        )

    def _complete(self, inst: JobInstance, fut: Future) -> None:
        try:
            result = fut.result()
        except Exception as e:
            # run_instance records executor problems itself; this is a bug in the engine
            log.exception("worker for %s crashed", inst.key)
            result = InstanceResult(InstanceStatus.FAILED, reason=f"executor_error: {type(e).__name__}: {e}")

        self._set(inst, result.status, reason=result.reason, steps=result.steps)
        self.console.print_instance_result(inst)

        if result.status is InstanceStatus.FAILED:
            self._failed = True
            if self.fail_fast and not self._cancelled.is_set():
                log.debug("fail-fast: cancelling remaining work after %s", inst.key)
                self._cancelled.set()

        self._remaining[inst.job_id] -= 1
        if self._remaining[inst.job_id] == 0:
            self._resolved(inst.job_id)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self) -> PipelineRun:
        started = time.monotonic()
        in_flight: Dict[Future, JobInstance] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            try:
                while self._ready or in_flight:
                    # dispatch everything currently eligible
                    while self._ready:
                        self._release(self._ready.popleft(), pool, in_flight)

                    if not in_flight:
                        break

                    # wait for completions, then loop to dispatch newly-ready jobs
                    done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                    for fut in done:
                        self._complete(in_flight.pop(fut), fut)
            except KeyboardInterrupt:
                self._cancelled.set()
                raise

        instances = self.snapshot()
        result, gate = pipeline_result(self.graph, instances)
        return PipelineRun(
            pipeline=self.graph.pipeline,
            instances=instances,
            result=result,
            gate=gate,
            duration=time.monotonic() - started,
        )


def run_pipeline(
    pipeline: Union[dag.Graph, Pipeline, Iterable[JobSpec]],
    executor: StepExecutor,
    *,
    max_workers: Optional[int] = None,
    fail_fast: bool = False,
    console: Optional[Console] = None,
) -> PipelineRun:
    """Validate (if needed) and run a pipeline. Raises GraphError before running anything."""
    graph = pipeline if isinstance(pipeline, dag.Graph) else dag.load(pipeline)
    scheduler = Scheduler(
        graph,
        executor,
        max_workers=max_workers,
        fail_fast=fail_fast,
        console=console,
    )
    return scheduler.run()
