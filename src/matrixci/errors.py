# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class GraphError(Exception):
    """
    Malformed pipeline definition.

    Raised before any execution starts:
      - duplicate job ids
      - dangling `needs` references
      - dependency cycles
      - unparsable definitions / conditions
    """
    kind: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class ExecutorError(Exception):
    """The step executor could not run the command (missing tool, timeout, ...)."""
    message: str
    step: str | None = None

    def __str__(self) -> str:
        if self.step:
            return f"step '{self.step}': {self.message}"
        return self.message


@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int | None

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"
