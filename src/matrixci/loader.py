# loader.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import ValidationError

from .errors import GraphError
from .model import JobSpec, Pipeline, StepSpec
from .schema import PipelineDocument

PYTHON_SUFFIXES = (".py",)
YAML_SUFFIXES = (".yml", ".yaml")


def _env_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _format_errors(e: ValidationError) -> List[str]:
    out = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        out.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return out


# ----------------------------------------------------------------------
# YAML documents
# ----------------------------------------------------------------------

def pipeline_from_dict(data: Dict[str, Any], *, source: str = "<dict>") -> Pipeline:
    """Validate a parsed YAML/JSON document and turn it into a Pipeline."""
    if not isinstance(data, dict):
        raise GraphError(
            kind="invalid_definition",
            message=f"{source}: expected a mapping at the top level, got {type(data).__name__}",
        )
    try:
        doc = PipelineDocument.model_validate(data)
    except ValidationError as e:
        errors = _format_errors(e)
        raise GraphError(
            kind="invalid_definition",
            message=f"{source}: {len(errors)} validation error(s)",
            details={"errors": "; ".join(errors)},
        ) from e

    jobs: List[JobSpec] = []
    for job_id, jd in doc.jobs.items():
        steps = [
            StepSpec(
                name=sd.display_name,
                command=sd.command,
                condition=sd.if_,
                env={k: _env_str(v) for k, v in sd.env.items()},
                cwd=sd.working_directory,
                id=sd.id,
            )
            for sd in jd.steps
        ]
        jobs.append(
            JobSpec(
                id=job_id,
                steps=steps,
                depends_on=list(jd.needs),
                matrix=jd.axes,
                name=jd.name,
                env={k: _env_str(v) for k, v in jd.env.items()},
                run_policy=jd.run_policy,
                gate=jd.gate,
            )
        )

    return Pipeline(
        jobs=jobs,
        name=doc.name,
        gate=doc.gate,
        env={k: _env_str(v) for k, v in doc.env.items()},
    )


def load_yaml_workflow(path: Path) -> Pipeline:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise GraphError(kind="invalid_definition", message=f"{path.name}: invalid YAML", details={"error": str(e)}) from e
    pipeline = pipeline_from_dict(data, source=path.name)
    if pipeline.name is None:
        pipeline.name = path.stem
    return pipeline


# ----------------------------------------------------------------------
# Python workflows
# ----------------------------------------------------------------------

def _as_pipeline(obj: Any, path: Path) -> Pipeline:
    if isinstance(obj, Pipeline):
        pipeline = obj
    elif isinstance(obj, (list, tuple)) and all(isinstance(j, JobSpec) for j in obj):
        pipeline = Pipeline(jobs=list(obj))
    else:
        raise GraphError(
            kind="invalid_workflow",
            message=(
                "Workflow must return/define a Pipeline or a list of JobSpec. "
                "Define workflow() -> Pipeline, PIPELINE = wf(...) or JOBS = [job(...), ...]."
            ),
            details={"file": path.name, "got": type(obj).__name__},
        )
    if pipeline.name is None:
        pipeline.name = path.stem
    return pipeline


def load_python_workflow(path: Path) -> Pipeline:
    """
    The file must define one of:
      - workflow() -> Pipeline | List[JobSpec]
      - PIPELINE = wf(...)
      - JOBS = [JobSpec, ...]
    """
    module_name = f"matrixci_workflow_{path.stem}"
    globals_dict = runpy.run_path(str(path), run_name=module_name)

    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            obj = globals_dict["workflow"]()
        except TypeError as e:
            if "positional argument" in str(e):
                raise TypeError(
                    "Your workflow() is being called with arguments (name collision with the helper). "
                    "Use the 'wf' helper instead: `from matrixci import wf, job, sh` then "
                    "`def workflow(): return wf(job(...), job(...))`"
                ) from e
            raise
    elif "PIPELINE" in globals_dict:
        obj = globals_dict["PIPELINE"]
    elif "JOBS" in globals_dict:
        obj = globals_dict["JOBS"]
    else:
        obj = None

    return _as_pipeline(obj, path)


def load_workflow(path: str | Path) -> Pipeline:
    """
    Load a pipeline definition from a .py or .yml/.yaml file.

    The whole definition is read before anything runs. Malformed definitions
    raise GraphError; a missing file raises FileNotFoundError.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix in PYTHON_SUFFIXES:
        return load_python_workflow(wf_path)
    if wf_path.suffix in YAML_SUFFIXES:
        return load_yaml_workflow(wf_path)

    raise GraphError(
        kind="invalid_workflow",
        message=f"Workflow must be a .py, .yml or .yaml file, got: {wf_path.name}",
    )
