"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, List, Optional

from ..status import summarize

if TYPE_CHECKING:
    from ..model import JobInstance, PipelineRun, StepRecord


_STEP_MARKS = {
    "success": "ok",
    "failure": "FAILED",
    "executor_error": "ERROR",
    "skipped": "skipped",
}


class Console:
    """Centralized console output formatting. Safe to call from worker threads."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        debug: tracebacks, engine debug lines and the output of passing steps.
        quiet: drop progress lines; errors still reach stderr.
        """
        self.debug = debug
        self.quiet = quiet
        self._lock = threading.Lock()

    def _out(self, *lines: str) -> None:
        if self.quiet:
            return
        with self._lock:
            for line in lines:
                print(line)

    def _err(self, *lines: str) -> None:
        with self._lock:
            for line in lines:
                print(line, file=sys.stderr)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        pipeline: str,
        workflow: str,
        job_count: int,
        instance_count: int,
    ) -> None:
        """Banner printed once before any instance is dispatched."""
        self._out(
            "\nRUN STARTED",
            f"Pipeline: {pipeline}",
            f"Workflow: {workflow}",
            f"Jobs: {job_count} ({instance_count} instance(s))",
            "",
        )

    def print_instance_start(self, key: str) -> None:
        self._out(f"JOB STARTED: {key}")

    def print_step(self, job: str, name: str) -> None:
        self._out(f"[{job}] STEP: {name}")

    def print_step_result(self, job: str, record: "StepRecord", output: str = "") -> None:
        mark = _STEP_MARKS.get(record.outcome.value, record.outcome.value)
        line = f"[{job}] {mark}: {record.name}"
        if record.outcome.value == "skipped":
            line += f" ({record.message or 'condition false'})"
        elif not record.outcome.ok:
            if record.exit_code is not None:
                line += f" (exit={record.exit_code})"
            if record.message:
                line += f" - {record.message}"
        lines = [line]
        if output and (self.debug or not record.outcome.ok):
            lines.extend(f"    {l}" for l in output.rstrip().splitlines())
        self._out(*lines)

    def print_instance_skipped(self, key: str, reason: str) -> None:
        self._out(f"JOB SKIPPED: {key} ({reason})")

    def print_instance_result(self, inst: "JobInstance") -> None:
        if inst.status.value == "succeeded":
            self._out(f"JOB SUCCEEDED: {inst.key}")
        elif inst.status.value == "skipped":
            self._out(f"JOB SKIPPED: {inst.key} ({inst.reason})")
        else:
            self._out(f"JOB FAILED: {inst.key}", f"Reason: {inst.reason}")

    def print_plan(self, levels: List[List[str]], instances: List["JobInstance"], gate: Optional[str]) -> None:
        """Print stages and the instances each job expands to."""
        by_job: dict[str, list[str]] = {}
        for inst in instances:
            by_job.setdefault(inst.job_id, []).append(inst.key)
        for idx, level in enumerate(levels, start=1):
            self._out(f"=== Stage {idx}: {level} ===")
            for job_id in level:
                suffix = " [gate]" if job_id == gate else ""
                self._out(f"  {job_id}{suffix}")
                for key in by_job.get(job_id, []):
                    if key != job_id:
                        self._out(f"    - {key}")

    def print_results(self, run: "PipelineRun") -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for inst in run.instances:
            lines.append(f"  {inst.key}: {inst.status.value.upper()}")
        decided_by = f"gate '{run.gate}'" if run.gate else "sink jobs"
        counts = summarize(run.instances)
        lines.append("-" * 40)
        lines.append("Instances: " + ", ".join(f"{n} {status}" for status, n in counts.items() if n))
        lines.append(f"PIPELINE: {run.result.value.upper()} (decided by {decided_by})")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """Error block on stderr: title, message, optional detail lines and a hint."""
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._err(*lines)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._err(f"Error: {exc}")

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)


# process-wide console; the CLI replaces it per invocation
_console: Optional[Console] = None


def get_console() -> Console:
    """Return the process-wide console, creating a default one on first use."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    global _console
    _console = console
