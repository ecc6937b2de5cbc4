# schema.py
"""
Validated shape of YAML pipeline documents.

A GitHub-Actions-shaped subset:

    name: CI workflow
    env: {RUST_BACKTRACE: full}
    jobs:
      unit-test:
        runs-on: ${{ matrix.os }}
        strategy:
          matrix:
            os: [ubuntu-latest, macos-11, windows-2019]
        steps:
          - uses: actions/checkout@v2
          - if: matrix.os == 'windows-2019'
            name: Windows Dependencies
            run: scoop install llvm yasm
          - name: UnitTest
            run: make test
      ci-success:
        name: ci
        needs: [unit-test]
        gate: true
        steps:
          - name: CI succeeded
            run: exit 0
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Scalar = Union[bool, int, float, str]

_ALWAYS_RE = re.compile(r"^\s*(\$\{\{\s*)?always\(\)(\s*\}\})?\s*$")
_SUCCESS_RE = re.compile(r"^\s*(\$\{\{\s*)?success\(\)(\s*\}\})?\s*$")


class StepDocument(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: Optional[str] = None
    name: Optional[str] = None
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Scalar] = Field(default_factory=dict, alias="with")
    if_: Optional[Union[bool, str]] = Field(default=None, alias="if")
    env: Dict[str, Scalar] = Field(default_factory=dict)
    working_directory: Optional[str] = Field(default=None, alias="working-directory")

    @model_validator(mode="after")
    def _one_command(self) -> "StepDocument":
        if (self.run is None) == (self.uses is None):
            raise ValueError("a step needs exactly one of 'run' or 'uses'")
        return self

    @property
    def command(self) -> str:
        if self.run is not None:
            return self.run
        return f"uses:{self.uses}"

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.uses:
            return self.uses
        lines = (self.run or "").strip().splitlines()
        return lines[0] if lines else "run"


class StrategyDocument(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    matrix: Dict[str, List[Scalar]] = Field(default_factory=dict)
    # accepted for compatibility; the CLI --fail-fast flag controls cancellation
    fail_fast: Optional[bool] = Field(default=None, alias="fail-fast")


class JobDocument(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    needs: Union[str, List[str]] = Field(default_factory=list)
    # toolchain provisioning happens outside the engine
    runs_on: Optional[Any] = Field(default=None, alias="runs-on")
    strategy: Optional[StrategyDocument] = None
    matrix: Optional[Dict[str, List[Scalar]]] = None
    env: Dict[str, Scalar] = Field(default_factory=dict)
    if_: Optional[str] = Field(default=None, alias="if")
    gate: bool = False
    steps: List[StepDocument] = Field(default_factory=list)

    @field_validator("needs")
    @classmethod
    def _needs_list(cls, v: Union[str, List[str]]) -> List[str]:
        if isinstance(v, str):
            return [v]
        return list(v)

    @field_validator("if_")
    @classmethod
    def _job_condition(cls, v: Optional[str]) -> Optional[str]:
        if v is None or _ALWAYS_RE.match(v) or _SUCCESS_RE.match(v):
            return v
        raise ValueError("job-level 'if' supports only always() or success()")

    @model_validator(mode="after")
    def _single_matrix(self) -> "JobDocument":
        if self.matrix is not None and self.strategy is not None and self.strategy.matrix:
            raise ValueError("declare the matrix either under 'strategy' or at job level, not both")
        return self

    @property
    def axes(self) -> Dict[str, List[Scalar]]:
        if self.matrix is not None:
            return dict(self.matrix)
        if self.strategy is not None:
            return dict(self.strategy.matrix)
        return {}

    @property
    def run_policy(self) -> str:
        if self.if_ is not None and _ALWAYS_RE.match(self.if_):
            return "always"
        return "on_success"


class PipelineDocument(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    # trigger section; events are decided by whoever invokes the engine
    on: Optional[Any] = None
    env: Dict[str, Scalar] = Field(default_factory=dict)
    gate: Optional[str] = None
    jobs: Dict[str, JobDocument]

    @model_validator(mode="before")
    @classmethod
    def _yaml11_on_key(cls, data: Any) -> Any:
        # YAML 1.1 reads a bare `on:` key as boolean True
        if isinstance(data, dict) and True in data:
            data = dict(data)
            data["on"] = data.pop(True)
        return data

