from .dsl import job, sh, workflow, wf, JobBuilder, build
from .dag import Graph, load
from .errors import ExecutorError, GraphError, StepFailure
from .executor import ExecResult, ShellExecutor, StepContext, StepExecutor
from .matrix import expand
from .model import InstanceStatus, JobInstance, JobSpec, Pipeline, PipelineRun, StepOutcome, StepSpec
from .scheduler import Scheduler, run_pipeline
from .status import aggregate

__all__ = [
    "job", "sh", "workflow", "wf", "JobBuilder", "build",
    "Graph", "load", "expand", "aggregate",
    "Scheduler", "run_pipeline",
    "StepExecutor", "ShellExecutor", "StepContext", "ExecResult",
    "GraphError", "ExecutorError", "StepFailure",
    "InstanceStatus", "StepOutcome", "JobInstance", "JobSpec", "StepSpec", "Pipeline", "PipelineRun",
]
