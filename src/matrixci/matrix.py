# matrix.py
from __future__ import annotations

from itertools import product
from typing import TYPE_CHECKING, List

from .model import JobInstance, JobSpec

if TYPE_CHECKING:
    from .dag import Graph


def expand(job: JobSpec) -> List[JobInstance]:
    """
    Expand one job into its matrix instances.

    Example:
        matrix = {"os": ["ubuntu", "macos"], "py": ["3.11", "3.12"]}
        -> (ubuntu, 3.11), (ubuntu, 3.12), (macos, 3.11), (macos, 3.12)

    Axis order and value order are the declared ones, so the same job always
    expands to the same sequence. No axes -> one instance with {}.
    """
    axes = list((job.matrix or {}).items())
    if not axes:
        return [JobInstance(job_id=job.id)]

    names = [name for name, _ in axes]
    return [
        JobInstance(job_id=job.id, matrix_assignment=dict(zip(names, combo)))
        for combo in product(*(list(values) for _, values in axes))
    ]


def expand_all(graph: "Graph") -> List[JobInstance]:
    """Expand every job of a validated graph, in graph order."""
    out: List[JobInstance] = []
    for job_id in graph.order:
        out.extend(expand(graph.jobs[job_id]))
    return out
