# runner.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .conditions import Predicate, compile_condition
from .errors import ExecutorError, StepFailure
from .executor import ExecResult, StepContext, StepExecutor
from .model import InstanceStatus, JobSpec, StepOutcome, StepRecord, StepSpec
from .ui.console import Console, get_console

log = logging.getLogger(__name__)


@dataclass
class InstanceResult:
    """What a worker hands back to the scheduler for one instance."""
    status: InstanceStatus
    steps: List[StepRecord] = field(default_factory=list)
    reason: Optional[str] = None


def _label(job_id: str, matrix: Mapping[str, Any]) -> str:
    if not matrix:
        return job_id
    return f"{job_id} ({', '.join(f'{k}={v}' for k, v in matrix.items())})"


def _execute(executor: StepExecutor, step: StepSpec, ctx: StepContext) -> ExecResult:
    try:
        result = executor.run(step, ctx)
    except ExecutorError as e:
        return ExecResult(StepOutcome.EXECUTOR_ERROR, message=e.message)
    except Exception as e:
        log.exception("executor crashed on step %r", step.name)
        return ExecResult(StepOutcome.EXECUTOR_ERROR, message=f"{type(e).__name__}: {e}")

    if not isinstance(result, ExecResult) or result.outcome is StepOutcome.SKIPPED:
        return ExecResult(
            StepOutcome.EXECUTOR_ERROR,
            message=f"executor returned an invalid result: {result!r}",
        )
    return result


def run_instance(
    job: JobSpec,
    matrix: Mapping[str, Any],
    executor: StepExecutor,
    *,
    conditions: Optional[Sequence[Optional[Predicate]]] = None,
    env: Optional[Mapping[str, str]] = None,
    cancelled: Optional[threading.Event] = None,
    console: Optional[Console] = None,
) -> InstanceResult:
    """
    Run one job instance's steps in order.

      - condition false          -> step recorded as skipped, keep going
      - success                  -> next step
      - failure / executor_error -> instance failed, remaining steps never run
      - every step ok or skipped -> instance succeeded

    `cancelled` is checked before each step; once set, no further step starts.
    """
    console = console or get_console()
    label = _label(job.id, matrix)

    if conditions is None:
        conditions = [compile_condition(s.condition, where=f"{job.id}/{s.name}") for s in job.steps]

    merged_env: Dict[str, str] = dict(env or {})
    merged_env.update(job.env or {})

    records: List[StepRecord] = []
    outcomes: Dict[str, StepOutcome] = {}

    for step, predicate in zip(job.steps, conditions):
        if cancelled is not None and cancelled.is_set():
            log.debug("%s: cancelled before step %r", label, step.name)
            return InstanceResult(InstanceStatus.FAILED, records, reason="cancelled")

        ctx = StepContext(
            job_id=job.id,
            matrix=MappingProxyType(dict(matrix)),
            env=MappingProxyType(dict(merged_env)),
            outcomes=MappingProxyType(dict(outcomes)),
            cancelled=cancelled,
        )

        if predicate is not None:
            try:
                should_run = bool(predicate(ctx))
            except Exception as e:
                record = StepRecord(
                    name=step.name,
                    outcome=StepOutcome.EXECUTOR_ERROR,
                    message=f"condition raised {type(e).__name__}: {e}",
                )
                records.append(record)
                console.print_step_result(label, record)
                return InstanceResult(
                    InstanceStatus.FAILED,
                    records,
                    reason=f"executor_error: {step.name}: {record.message}",
                )

            if not should_run:
                record = StepRecord(name=step.name, outcome=StepOutcome.SKIPPED, message="condition false")
                records.append(record)
                outcomes[step.key] = StepOutcome.SKIPPED
                console.print_step_result(label, record)
                continue

        console.print_step(label, step.name)
        started = time.monotonic()
        result = _execute(executor, step, ctx)
        record = StepRecord(
            name=step.name,
            outcome=result.outcome,
            exit_code=result.exit_code,
            message=result.message,
            duration=time.monotonic() - started,
        )
        records.append(record)
        outcomes[step.key] = result.outcome
        console.print_step_result(label, record, output=result.output)

        if result.outcome is StepOutcome.FAILURE:
            failure = StepFailure(job=label, step=step.name, cmd=step.command, exit_code=result.exit_code)
            return InstanceResult(InstanceStatus.FAILED, records, reason=f"step_failure: {failure}")

        if result.outcome is StepOutcome.EXECUTOR_ERROR:
            return InstanceResult(
                InstanceStatus.FAILED,
                records,
                reason=f"executor_error: {step.name}: {result.message}",
            )

    return InstanceResult(InstanceStatus.SUCCEEDED, records)
