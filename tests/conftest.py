"""Shared fixtures: scripted step executors and a silent console."""

from __future__ import annotations

import threading
import time

import pytest

from matrixci.errors import ExecutorError
from matrixci.executor import ExecResult, StepExecutor
from matrixci.ui.console import Console


class ScriptedExecutor(StepExecutor):
    """
    Fake executor driven by a script.

    `script` maps (job_id, step name) or (job_id, step name, axis value) to
    "success" | "failure" | "raise" | "crash" or a callable(step, ctx).
    Unlisted steps succeed. Every invocation is recorded in `calls`.
    """

    def __init__(self, script=None, delay: float = 0.0):
        self.script = dict(script or {})
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _lookup(self, step, ctx):
        for value in ctx.matrix.values():
            key = (ctx.job_id, step.name, value)
            if key in self.script:
                return self.script[key]
        return self.script.get((ctx.job_id, step.name), "success")

    def run(self, step, ctx):
        with self._lock:
            self.calls.append((ctx.job_id, dict(ctx.matrix), step.name))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            action = self._lookup(step, ctx)
            if callable(action):
                return action(step, ctx)
            if action == "failure":
                return ExecResult.failure(exit_code=2, message="exit code 2")
            if action == "raise":
                raise ExecutorError("could not invoke", step=step.name)
            if action == "crash":
                raise RuntimeError("kaboom")
            return ExecResult.success()
        finally:
            with self._lock:
                self.active -= 1

    def jobs_called(self):
        return [c[0] for c in self.calls]


@pytest.fixture
def console():
    return Console(quiet=True)


@pytest.fixture
def executor():
    return ScriptedExecutor()
