# dag.py
from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Dict, Iterable, Set, Tuple

from .errors import PipelineError

if TYPE_CHECKING:
    from .model import Job


Graph = Dict[str, Set[str]]


def build_dag(jobs: Iterable["Job"]) -> Tuple[Graph, Dict[str, int]]:
    """
    Index `needs` edges between jobs.

    Returns (dependents, pending): `dependents[x]` are the jobs that need x,
    `pending[x]` is how many jobs x still waits for. Raises PipelineError
    for duplicate names and for needs on jobs that do not exist.
    """
    jobs = list(jobs)
    seen: Set[str] = set()
    dupes: Set[str] = set()
    for j in jobs:
        (dupes if j.name in seen else seen).add(j.name)
    if dupes:
        raise PipelineError("Duplicate job names found", {"jobs": sorted(dupes)})

    dependents: Graph = {name: set() for name in seen}
    pending: Dict[str, int] = dict.fromkeys(seen, 0)

    for j in jobs:
        for dep in set(j.needs):
            if dep not in dependents:
                raise PipelineError(
                    f"Job '{j.name}' needs missing job '{dep}'",
                    {"known": sorted(seen)},
                )
            dependents[dep].add(j.name)
            pending[j.name] += 1

    return dependents, pending


def check_acyclic(dependents: Graph, pending: Dict[str, int]) -> None:
    """Raise PipelineError naming the jobs stuck in (or behind) a cycle."""
    left = dict(pending)
    queue = deque(name for name, n in left.items() if n == 0)
    while queue:
        for nxt in dependents[queue.popleft()]:
            left[nxt] -= 1
            if left[nxt] == 0:
                queue.append(nxt)

    stuck = sorted(name for name, n in left.items() if n > 0)
    if stuck:
        raise PipelineError("Job dependencies contain a cycle", {"stuck": stuck})
