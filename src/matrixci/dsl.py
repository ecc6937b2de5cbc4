# src/matrixci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

from .model import Condition, JobSpec, Pipeline, StepSpec


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    if_: Condition = None,
    env: Optional[Dict[str, Any]] = None,
    cwd: str | None = None,
    id: str | None = None,
) -> StepSpec:
    """
    Create a shell step.

    `if_` is an expression ("matrix.os == 'windows'") or a callable taking
    the StepContext.
    """
    return StepSpec(
        name=name,
        command=cmd,
        condition=if_,
        env={k: str(v) for k, v in (env or {}).items()},
        cwd=cwd,
        id=id,
    )


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    id: str,
    *steps: StepSpec,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[StepSpec]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    matrix: Optional[Dict[str, Iterable[Any]]] = None,
    name: Optional[str] = None,
    env: Optional[Dict[str, Any]] = None,
    always: bool = False,
    gate: bool = False,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> JobSpec:
    steps_final: List[StepSpec] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({id!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return JobSpec(
        id=id,
        steps=steps_final,
        depends_on=list(needs or []),
        matrix={axis: list(values) for axis, values in (matrix or {}).items()},
        name=name,
        env={k: str(v) for k, v in (env or {}).items()},
        run_policy="always" if always else "on_success",
        gate=gate,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, id: str):
        self.id = id
        self._name: Optional[str] = None
        self._needs: list[str] = []
        self._steps: list[StepSpec] = []
        self._matrix: dict[str, list[Any]] = {}
        self._env: dict[str, str] = {}
        self._run_policy = "on_success"
        self._gate = False

    def named(self, name: str):
        self._name = name
        return self

    def depends_on(self, *job_ids: str):
        self._needs.extend(job_ids)
        return self

    def define_step(self, name: str, run: str, *, if_: Condition = None, cwd: str | None = None):
        self._steps.append(sh(name, run, if_=if_, cwd=cwd))
        return self

    def with_matrix(self, axis: str, values: Iterable[Any]):
        self._matrix[axis] = list(values)
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def always(self):
        """Run even when a dependency failed."""
        self._run_policy = "always"
        return self

    def as_gate(self):
        self._gate = True
        return self

    def build(self) -> JobSpec:
        if not self._steps:
            raise ValueError(f"Job '{self.id}' has no steps")

        return JobSpec(
            id=self.id,
            steps=list(self._steps),
            depends_on=list(self._needs),
            matrix=dict(self._matrix),
            name=self._name,
            env=dict(self._env),
            run_policy=self._run_policy,
            gate=self._gate,
        )


def build(id: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(id)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    *jobs: JobSpec,
    name: Optional[str] = None,
    gate: Optional[str] = None,
    env: Optional[Dict[str, Any]] = None,
) -> Pipeline:
    """
    Workflow definition helper. Use this name so you can define your own
    def workflow(): return wf(job(...), job(...)).

    Users can write:
        from matrixci import wf, job, sh

        def workflow():
            return wf(
                job("test", sh("Run", "pytest -q"), matrix={"py": ["3.11", "3.12"]}),
                job("ci", sh("Done", "true"), needs=["test"], gate=True),
            )

    Or use PIPELINE directly:
        PIPELINE = wf(job(...), job(...))
    """
    return Pipeline(
        jobs=list(jobs),
        name=name,
        gate=gate,
        env={k: str(v) for k, v in (env or {}).items()},
    )


workflow = wf  # alias (avoid naming your function workflow if you use it)
