# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, List, Set, Tuple

from .errors import ConfigError
from .model import Job


def build_dag(jobs: List[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a dependency graph from Job objects.

    Returns (adj, indeg) where adj maps a job to the jobs that need it and
    indeg counts each job's dependencies. Raises ConfigError on duplicate
    names or dependencies on unknown jobs.
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ConfigError(f"Duplicate job names found: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for job in jobs:
        for dep in job.needs or []:
            if dep not in name_set:
                raise ConfigError(
                    f"Job '{job.name}' needs missing job '{dep}'",
                    job=job.name,
                    details={"known": sorted(name_set)},
                )
            if dep == job.name:
                raise ConfigError(f"Job '{job.name}' needs itself", job=job.name)
            # edge dep -> job (dep must finish first)
            if job.name not in adj[dep]:
                adj[dep].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert the graph into topological stages. Jobs within a stage have no
    dependency on each other. Raises ConfigError on a cycle.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted(n for n, d in indeg.items() if d == 0))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level: List[str] = []
        for _ in range(len(q)):
            node = q.popleft()
            level.append(node)
            processed += 1
            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)
        levels.append(sorted(level))

    if processed != len(indeg):
        stuck = sorted(n for n, d in indeg.items() if d > 0)
        raise ConfigError("Job dependencies form a cycle", details={"stuck": stuck})

    return levels


def validate_dag(jobs: List[Job]) -> List[List[str]]:
    """Full load-time check; returns the stages on success."""
    adj, indeg = build_dag(jobs)
    return topo_levels(adj, indeg)
