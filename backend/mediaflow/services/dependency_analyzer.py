"""
Dependency analysis: partitions a workflow graph into execution levels.

A level is a set of nodes whose upstream nodes all sit in earlier levels, so
every node in a level can run concurrently once the previous level settled.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from typing import Iterable

from pydantic import BaseModel, Field

from mediaflow.models.graph import Edge

logger = logging.getLogger(__name__)


class ExecutionPlan(BaseModel):
    levels: list[list[str]] = Field(default_factory=list)
    # Nodes placed in the terminal level without their dependencies satisfied
    forced: list[str] = Field(default_factory=list)


def build_dependency_map(
    node_ids: Iterable[str],
    edges: Iterable[Edge],
) -> dict[str, set[str]]:
    """
    Map each node to the set of nodes it depends on.

    Edges touching a node that is not part of the graph are ignored, and
    several edges between the same pair count as one dependency.
    """
    dependencies: dict[str, set[str]] = {nid: set() for nid in node_ids}
    for edge in edges:
        if edge.source not in dependencies or edge.target not in dependencies:
            logger.debug(
                "Ignoring dangling edge %s -> %s", edge.source, edge.target
            )
            continue
        dependencies[edge.target].add(edge.source)
    return dependencies


def get_execution_levels(
    node_ids: Iterable[str],
    edges: Iterable[Edge],
) -> ExecutionPlan:
    """
    Compute execution levels by repeatedly taking the frontier of unplaced
    nodes whose dependencies are all placed.

    When no frontier exists but nodes remain (cycle or self-loop), every
    remaining node goes into one final level and computation stops. Nodes in
    that forced level have no ordering guarantee between each other.
    """
    ordered_ids = list(dict.fromkeys(node_ids))
    dependencies = build_dependency_map(ordered_ids, edges)

    plan = ExecutionPlan()
    placed: set[str] = set()

    while len(placed) < len(ordered_ids):
        frontier = [
            nid
            for nid in ordered_ids
            if nid not in placed and dependencies[nid] <= placed
        ]

        if not frontier:
            remaining = [nid for nid in ordered_ids if nid not in placed]
            logger.warning(
                "Circular dependency among nodes %s; running them as a final level",
                ", ".join(remaining),
            )
            plan.levels.append(remaining)
            plan.forced = remaining
            break

        plan.levels.append(frontier)
        placed.update(frontier)

    return plan


def find_cycle_nodes(
    node_ids: Iterable[str],
    edges: Iterable[Edge],
) -> list[str]:
    """
    Return the nodes that can never be scheduled (Kahn's algorithm leftovers):
    members of a cycle and everything downstream of one. Empty for a DAG.
    """
    ordered_ids = list(dict.fromkeys(node_ids))
    dependencies = build_dependency_map(ordered_ids, edges)

    in_degree: dict[str, int] = {nid: len(deps) for nid, deps in dependencies.items()}
    adjacency: dict[str, list[str]] = defaultdict(list)
    for nid, deps in dependencies.items():
        for dep in deps:
            adjacency[dep].append(nid)

    queue: deque[str] = deque(nid for nid in ordered_ids if in_degree[nid] == 0)
    visited: set[str] = set()

    while queue:
        nid = queue.popleft()
        visited.add(nid)
        for neighbor in adjacency[nid]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    return [nid for nid in ordered_ids if nid not in visited]
