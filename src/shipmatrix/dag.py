# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, List, Sequence, Set, Tuple

from .errors import GraphError
from .model import Job


def build_dag(jobs: Sequence[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from Job objects.

    Requires:
      - job.id: str (unique)
      - job.needs: ids of jobs that must succeed BEFORE this job

    Returns (adj, indeg) where adj maps a job to its dependents.
    """
    ids = [j.id for j in jobs]
    if len(set(ids)) != len(ids):
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        raise GraphError(f"Duplicate job ids found: {dupes}", dupes)

    id_set = set(ids)
    adj: Dict[str, Set[str]] = {i: set() for i in ids}
    indeg: Dict[str, int] = {i: 0 for i in ids}

    for job in jobs:
        for need in job.needs:
            if need not in id_set:
                raise GraphError(
                    f"Job '{job.id}' needs missing job '{need}'. Known jobs: {sorted(id_set)}",
                    [job.id, need],
                )
            # Edge need -> job.id (need must finish before job)
            if job.id not in adj[need]:
                adj[need].add(job.id)
                indeg[job.id] += 1

    return adj, indeg


def _order(jobs: Sequence[Job]) -> Tuple[List[List[str]], Dict[str, Set[str]]]:
    adj, indeg = build_dag(jobs)
    position = {j.id: n for n, j in enumerate(jobs)}
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(j.id for j in jobs if indeg[j.id] == 0)

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj[node], key=position.__getitem__):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        stuck = _cycle_members(adj, {n for n, d in indeg.items() if d > 0})
        raise GraphError(f"Job graph has a cycle. Offending jobs: {sorted(stuck)}", sorted(stuck))

    return levels, adj


def _cycle_members(adj: Dict[str, Set[str]], stuck: Set[str]) -> Set[str]:
    # Drop jobs that are merely downstream of a cycle: they lead nowhere inside `stuck`.
    remaining = set(stuck)
    changed = True
    while changed:
        changed = False
        for node in list(remaining):
            if not (adj[node] & remaining):
                remaining.discard(node)
                changed = True
    return remaining


def topo_levels(jobs: Sequence[Job]) -> List[List[str]]:
    """
    Convert the job graph into topological "levels" (stages).
    Jobs within a stage do not depend on each other.
    """
    levels, _ = _order(jobs)
    return levels


def topo_order(jobs: Sequence[Job]) -> List[str]:
    """Flat topological order; raises GraphError on cycles, dupes or missing needs."""
    return [n for level in topo_levels(jobs) for n in level]


def dependents_closure(adj: Dict[str, Set[str]], start: str) -> Set[str]:
    """Every job transitively depending on `start` (excluding start)."""
    seen: Set[str] = set()
    stack = list(adj.get(start, ()))
    while stack:
        node = stack.pop()
        if node in seen:
            continue
        seen.add(node)
        stack.extend(adj.get(node, ()))
    return seen
