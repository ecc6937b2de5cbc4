# executor.py
from __future__ import annotations

import os
import shlex
import subprocess
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from .conditions import interpolate
from .errors import ExecutorError
from .model import StepOutcome, StepSpec


TOOL_HINTS = {
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "node": "Install Node.js or fix PATH.",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "ruff": "Install ruff (e.g., pip install ruff).",
    "cargo": "Install the Rust toolchain (rustup) or fix PATH.",
    "make": "Install make or fix PATH.",
    "docker": "Install Docker and ensure the daemon is running.",
    "python3": "Install Python 3 or fix PATH (python3).",
}

# exit status a POSIX shell uses for "command not found"
_NOT_FOUND = 127
_OUTPUT_TAIL = 4000
# actions the local workspace already satisfies
BUILTIN_ACTIONS = ("actions/checkout",)
ACTION_PREFIX = "uses:"


@dataclass(frozen=True)
class StepContext:
    """
    What a step (and its condition) can see while its instance runs.

    outcomes: step key -> outcome, for steps already run in this instance.
    """
    job_id: str
    matrix: Mapping[str, Any] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    outcomes: Mapping[str, StepOutcome] = field(default_factory=dict)
    cancelled: Optional[threading.Event] = None


@dataclass(frozen=True)
class ExecResult:
    outcome: StepOutcome
    exit_code: Optional[int] = None
    message: Optional[str] = None
    output: str = ""

    @classmethod
    def success(cls, exit_code: int | None = 0) -> "ExecResult":
        return cls(StepOutcome.SUCCESS, exit_code=exit_code)

    @classmethod
    def failure(cls, exit_code: int | None = 1, message: str | None = None) -> "ExecResult":
        return cls(StepOutcome.FAILURE, exit_code=exit_code, message=message)


class StepExecutor(ABC):
    """
    Boundary to whatever actually runs a step's command.

    Implementations return SUCCESS / FAILURE / EXECUTOR_ERROR, or raise
    ExecutorError when the command could not be run at all. They must always
    return: a hung command has to be bounded by the executor's own timeout.
    """

    @abstractmethod
    def run(self, step: StepSpec, context: StepContext) -> ExecResult:
        raise NotImplementedError


def matrix_env(matrix: Mapping[str, Any]) -> dict[str, str]:
    """Expose matrix values as MATRIX_<AXIS> environment variables."""
    out = {}
    for axis, value in matrix.items():
        name = "MATRIX_" + "".join(c if c.isalnum() else "_" for c in str(axis)).upper()
        out[name] = "" if value is None else str(value)
    return out


class ShellExecutor(StepExecutor):
    """Run step commands through the system shell, relative to a repo root."""

    def __init__(self, repo_root: str | Path = ".", timeout: float | None = None):
        self.repo_root = Path(repo_root).resolve()
        self.timeout = timeout

    def _command(self, step: StepSpec, context: StepContext) -> str:
        try:
            return interpolate(step.command, context)
        except ValueError as e:
            raise ExecutorError(f"bad expression in command: {e}", step=step.name) from e

    def _action(self, step: StepSpec, ref: str) -> ExecResult:
        if ref.split("@", 1)[0] in BUILTIN_ACTIONS:
            return ExecResult(StepOutcome.SUCCESS, message="workspace is already checked out")
        raise ExecutorError(f"action '{ref}' is not supported by the shell executor", step=step.name)

    def run(self, step: StepSpec, context: StepContext) -> ExecResult:
        if step.command.startswith(ACTION_PREFIX):
            return self._action(step, step.command[len(ACTION_PREFIX):].strip())

        cmd = self._command(step, context)

        cwd = (self.repo_root / (step.cwd or ".")).resolve()
        if not cwd.exists():
            raise ExecutorError(f"cwd not found: {cwd}", step=step.name)

        env = os.environ.copy()
        env.update({k: str(v) for k, v in context.env.items()})
        try:
            env.update({k: interpolate(str(v), context) for k, v in (step.env or {}).items()})
        except ValueError as e:
            raise ExecutorError(f"bad expression in step env: {e}", step=step.name) from e
        env.update(matrix_env(context.matrix))

        try:
            proc = subprocess.run(
                cmd,
                shell=True,
                cwd=str(cwd),
                env=env,
                text=True,
                capture_output=True,  # so you can show output on failure
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ExecutorError(f"timed out after {e.timeout}s", step=step.name) from e
        except OSError as e:
            raise ExecutorError(f"could not start command: {e}", step=step.name) from e

        output = ((proc.stdout or "") + (proc.stderr or ""))[-_OUTPUT_TAIL:]

        if proc.returncode == 0:
            return ExecResult(StepOutcome.SUCCESS, exit_code=0, output=output)

        if proc.returncode == _NOT_FOUND:
            tool = _first_word(cmd)
            hint = TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")
            return ExecResult(
                StepOutcome.EXECUTOR_ERROR,
                exit_code=proc.returncode,
                message=f"{tool} is not available. {hint}",
                output=output,
            )

        return ExecResult(
            StepOutcome.FAILURE,
            exit_code=proc.returncode,
            message=f"exit code {proc.returncode}",
            output=output,
        )


def _first_word(cmd: str) -> str:
    try:
        parts = shlex.split(cmd)
    except ValueError:
        parts = cmd.split()
    return parts[0] if parts else cmd
