# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union


class InstanceStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (InstanceStatus.SUCCEEDED, InstanceStatus.FAILED, InstanceStatus.SKIPPED)


class StepOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    EXECUTOR_ERROR = "executor_error"
    SKIPPED = "skipped"

    @property
    def ok(self) -> bool:
        return self in (StepOutcome.SUCCESS, StepOutcome.SKIPPED)


RUN_POLICIES = ("on_success", "always")

# str -> expression compiled by conditions.compile_condition
Condition = Union[str, Callable[..., bool], None]


@dataclass(frozen=True)
class StepSpec:
    """A single command (step) inside a CI job."""
    name: str
    command: str
    condition: Condition = None
    env: Dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    id: str | None = None

    @property
    def key(self) -> str:
        # how later conditions refer to this step: steps.<key>.outcome
        return self.id or self.name


@dataclass
class JobSpec:
    """
    A declared unit of work: ordered steps + dependencies + matrix axes.

    `matrix` maps axis name -> values; axis order and value order are
    preserved and drive expansion order.
    """
    id: str
    steps: list[StepSpec]
    depends_on: list[str] = field(default_factory=list)
    matrix: Dict[str, List[Any]] = field(default_factory=dict)
    name: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    run_policy: str = "on_success"
    gate: bool = False

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass
class Pipeline:
    """A whole workflow: jobs in declaration order, optional gate, shared env."""
    jobs: list[JobSpec]
    name: Optional[str] = None
    gate: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class StepRecord:
    name: str
    outcome: StepOutcome
    exit_code: Optional[int] = None
    message: Optional[str] = None
    duration: float = 0.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "message": self.message,
            "duration": round(self.duration, 3),
        }


@dataclass
class JobInstance:
    """One concrete, schedulable execution of a JobSpec for one matrix assignment."""
    job_id: str
    matrix_assignment: Dict[str, Any] = field(default_factory=dict)
    status: InstanceStatus = InstanceStatus.PENDING
    steps: list[StepRecord] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def key(self) -> str:
        if not self.matrix_assignment:
            return self.job_id
        axes = ", ".join(f"{k}={v}" for k, v in self.matrix_assignment.items())
        return f"{self.job_id} ({axes})"

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "matrix": dict(self.matrix_assignment),
            "status": self.status.value,
            "reason": self.reason,
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass
class PipelineRun:
    """
    Snapshot of a finished execution.

    `result` is the pipeline verdict (succeeded/failed); `gate` names the job
    that decided it, or None when the DAG sinks decided it.
    """
    pipeline: Pipeline
    instances: list[JobInstance]
    result: InstanceStatus
    gate: Optional[str] = None
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.result is InstanceStatus.SUCCEEDED

    def instances_of(self, job_id: str) -> list[JobInstance]:
        return [i for i in self.instances if i.job_id == job_id]

    def to_dict(self) -> dict:
        return {
            "pipeline": self.pipeline.name,
            "result": self.result.value,
            "gate": self.gate,
            "duration": round(self.duration, 3),
            "instances": [i.to_dict() for i in self.instances],
        }
