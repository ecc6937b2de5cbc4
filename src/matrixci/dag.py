# dag.py
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from .conditions import Predicate, compile_condition
from .errors import GraphError
from .model import RUN_POLICIES, JobSpec, Pipeline

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Graph:
    """
    Validated, read-only view of a pipeline.

    dependencies: job -> jobs it needs (backward edges)
    dependents:   job -> jobs that need it (forward edges)
    order:        deterministic topological order
    conditions:   job -> compiled step predicates, aligned with job.steps
    """
    pipeline: Pipeline
    jobs: Mapping[str, JobSpec]
    dependencies: Mapping[str, frozenset]
    dependents: Mapping[str, frozenset]
    order: Tuple[str, ...]
    conditions: Mapping[str, Tuple[Optional[Predicate], ...]]

    @property
    def gate(self) -> Optional[str]:
        return self.pipeline.gate

    @property
    def roots(self) -> List[str]:
        return [n for n in self.order if not self.dependencies[n]]

    @property
    def sinks(self) -> List[str]:
        return [n for n in self.order if not self.dependents[n]]

    def levels(self) -> List[List[str]]:
        """Parallel stages: every job in a stage only needs jobs from earlier stages."""
        indeg = {n: len(d) for n, d in self.dependencies.items()}
        adj = {n: set(d) for n, d in self.dependents.items()}
        return topo_levels(adj, indeg, rank=_rank(self.pipeline.jobs))


def _rank(jobs: Iterable[JobSpec]) -> Dict[str, int]:
    return {j.id: i for i, j in enumerate(jobs)}


def build_dag(jobs: List[JobSpec]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build forward adjacency and in-degrees from JobSpecs.

    Requires:
      - job.id: str (unique)
      - job.depends_on: ids of jobs that must finish BEFORE this job
    """
    ids = [j.id for j in jobs]
    if len(set(ids)) != len(ids):
        dupes = sorted({n for n in ids if ids.count(n) > 1})
        raise GraphError(
            kind="duplicate_job",
            message=f"Duplicate job ids found: {dupes}",
            details={"jobs": dupes},
        )

    id_set = set(ids)
    adj: Dict[str, Set[str]] = {n: set() for n in ids}
    indeg: Dict[str, int] = {n: 0 for n in ids}

    for job in jobs:
        for dep in job.depends_on or []:
            if dep not in id_set:
                raise GraphError(
                    kind="missing_dependency",
                    message=f"Job '{job.id}' needs missing job '{dep}'",
                    details={"job": job.id, "known": sorted(id_set)},
                )
            # edge dep -> job.id (dep must run before job)
            if job.id not in adj[dep]:
                adj[dep].add(job.id)
                indeg[job.id] += 1

    return adj, indeg


def topo_levels(
    adj: Dict[str, Set[str]],
    indeg: Dict[str, int],
    *,
    rank: Optional[Dict[str, int]] = None,
) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Each stage can run in parallel. Within a stage, jobs keep `rank` order
    (declaration order), falling back to name order.
    """
    rank = rank or {}

    def _key(n: str):
        return (rank.get(n, len(rank)), n)

    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted([n for n, d in indeg.items() if d == 0], key=_key))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []
        unlocked: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in adj.get(node, set()):
                indeg[child] -= 1
                if indeg[child] == 0:
                    unlocked.append(child)

        q.extend(sorted(unlocked, key=_key))
        levels.append(level)

    if processed != len(indeg):
        remaining = sorted([n for n, d in indeg.items() if d > 0], key=_key)
        raise GraphError(
            kind="cycle",
            message=f"Dependency graph has a cycle. Stuck jobs: {remaining}",
            details={"jobs": remaining},
        )

    return levels


def _check_job(job: JobSpec) -> Tuple[Optional[Predicate], ...]:
    if job.run_policy not in RUN_POLICIES:
        raise GraphError(
            kind="invalid_job",
            message=f"Job '{job.id}' has unknown run policy {job.run_policy!r}",
            details={"allowed": list(RUN_POLICIES)},
        )

    for axis, values in (job.matrix or {}).items():
        values = list(values)
        if not values:
            raise GraphError(
                kind="invalid_matrix",
                message=f"Job '{job.id}' matrix axis '{axis}' has no values",
            )
        seen = []
        for v in values:
            if v in seen:
                raise GraphError(
                    kind="invalid_matrix",
                    message=f"Job '{job.id}' matrix axis '{axis}' repeats value {v!r}",
                )
            seen.append(v)

    # steps.<key>.outcome must name exactly one step
    keys = [s.key for s in job.steps]
    dupes = sorted({k for k in keys if keys.count(k) > 1})
    if dupes:
        raise GraphError(
            kind="invalid_job",
            message=f"Job '{job.id}' has several steps keyed {dupes}; give them distinct names or ids",
            details={"steps": dupes},
        )

    return tuple(
        compile_condition(step.condition, where=f"{job.id}/{step.name}")
        for step in job.steps
    )


def _resolve_gate(pipeline: Pipeline) -> Pipeline:
    """A gate can be named on the pipeline or flagged on exactly one job."""
    flagged = [j.id for j in pipeline.jobs if j.gate]
    if len(flagged) > 1:
        raise GraphError(
            kind="multiple_gates",
            message=f"Only one job can be the gate, got {flagged}",
        )
    if not flagged:
        return pipeline
    if pipeline.gate is not None and pipeline.gate != flagged[0]:
        raise GraphError(
            kind="multiple_gates",
            message=f"Pipeline gate '{pipeline.gate}' conflicts with job '{flagged[0]}' marked as gate",
        )
    return replace(pipeline, gate=flagged[0])


def load(specs: Union[Pipeline, Iterable[JobSpec]]) -> Graph:
    """
    Validate and index a pipeline definition.

    Raises GraphError on duplicate ids, dangling `needs`, cycles, empty or
    repeating matrix axes, unparsable conditions and an unknown gate.
    Nothing is executed.
    """
    pipeline = specs if isinstance(specs, Pipeline) else Pipeline(jobs=list(specs))
    jobs = list(pipeline.jobs)

    adj, indeg = build_dag(jobs)
    levels = topo_levels(adj, indeg, rank=_rank(jobs))
    order = tuple(n for level in levels for n in level)

    pipeline = _resolve_gate(pipeline)
    if pipeline.gate is not None and pipeline.gate not in adj:
        raise GraphError(
            kind="missing_gate",
            message=f"Gate job '{pipeline.gate}' is not declared",
            details={"known": sorted(adj)},
        )

    by_id = {j.id: j for j in jobs}
    conditions = {j.id: _check_job(j) for j in jobs}

    deps: Dict[str, frozenset] = {j.id: frozenset(j.depends_on or []) for j in jobs}
    fwd: Dict[str, frozenset] = {n: frozenset(children) for n, children in adj.items()}

    log.debug("loaded %d job(s) in %d stage(s)", len(jobs), len(levels))

    return Graph(
        pipeline=pipeline,
        jobs=MappingProxyType(by_id),
        dependencies=MappingProxyType(deps),
        dependents=MappingProxyType(fwd),
        order=order,
        conditions=MappingProxyType(conditions),
    )
