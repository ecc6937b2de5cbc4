# status.py
from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Dict, Iterable, Optional, Tuple

from .model import InstanceStatus, JobInstance

if TYPE_CHECKING:
    from .dag import Graph


def aggregate(job_id: str, instances: Iterable[JobInstance]) -> InstanceStatus:
    """
    Combined verdict for one job: SUCCEEDED only if every instance succeeded.

    Skipped counts as failure (a job blocked by a failed dependency must not
    let a gate pass). A job with no terminal instances yet is FAILED too;
    callers only aggregate resolved jobs.
    """
    seen = False
    for inst in instances:
        if inst.job_id != job_id:
            continue
        seen = True
        if inst.status is not InstanceStatus.SUCCEEDED:
            return InstanceStatus.FAILED
    return InstanceStatus.SUCCEEDED if seen else InstanceStatus.FAILED


def pipeline_result(
    graph: "Graph",
    instances: Iterable[JobInstance],
) -> Tuple[InstanceStatus, Optional[str]]:
    """
    Overall verdict: the gate job's aggregate if one is declared, otherwise
    the conjunction of every sink job's aggregate.

    Returns (result, gate_id or None).
    """
    instances = list(instances)

    if graph.gate is not None:
        return aggregate(graph.gate, instances), graph.gate

    for sink in graph.sinks:
        if aggregate(sink, instances) is InstanceStatus.FAILED:
            return InstanceStatus.FAILED, None
    return InstanceStatus.SUCCEEDED, None


def summarize(instances: Iterable[JobInstance]) -> Dict[str, int]:
    counts = Counter(inst.status.value for inst in instances)
    return {s.value: counts.get(s.value, 0) for s in InstanceStatus}
