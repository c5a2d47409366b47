"""Batch dependency graph: validation and creation order.

Everything here is pure; nothing touches the store. A batch ``A`` depends on
batch ``B`` when declared explicitly or when a sub-task in ``A`` names a
sub-task in ``B`` as a dependency. References to batches or sub-tasks outside
the request are assumed to exist already and add no edges.
"""

from __future__ import annotations

import heapq
from typing import Dict, Iterable, List, Mapping

from ..errors import CircularDependency, DuplicateDefinition
from .specs import BatchSpec, SubtaskBatchRequest

Graph = Dict[str, List[str]]


def name_key(name: str) -> str:
    """Sub-task names match case-insensitively, ignoring surrounding space."""
    return name.strip().lower()


def _add_edge(graph: Graph, source: str, target: str) -> None:
    if target not in graph[source]:
        graph[source].append(target)


def build_batch_graph(request: SubtaskBatchRequest) -> Graph:
    """Map each batch id to the batch ids it depends on."""
    graph: Graph = {}
    owner: Dict[str, str] = {}
    for batch in request.batches:
        if batch.batch_id in graph:
            raise DuplicateDefinition(
                f"Batch '{batch.batch_id}' is defined more than once", batch_id=batch.batch_id
            )
        graph[batch.batch_id] = []
        for subtask in batch.subtasks:
            key = name_key(subtask.name)
            if key in owner:
                raise DuplicateDefinition(
                    f"Sub-task '{subtask.name}' is defined more than once",
                    subtask=subtask.name,
                    batch_id=batch.batch_id,
                )
            owner[key] = batch.batch_id

    for dependency in request.batch_dependencies:
        if dependency.batch_id not in graph:
            continue
        for required in dependency.depends_on_batches:
            if required in graph:
                _add_edge(graph, dependency.batch_id, required)

    for batch in request.batches:
        for subtask in batch.subtasks:
            for name in subtask.dependencies:
                required = owner.get(name_key(name))
                if required is not None and required != batch.batch_id:
                    _add_edge(graph, batch.batch_id, required)
    return graph


def find_cycle(graph: Mapping[str, Iterable[str]]) -> str | None:
    """Depth-first search with an explicit path stack; returns a node on a cycle."""
    visited: set[str] = set()
    on_path: set[str] = set()

    for root in graph:
        if root in visited:
            continue
        visited.add(root)
        on_path.add(root)
        stack = [(root, iter(graph.get(root, ())))]
        while stack:
            node, neighbours = stack[-1]
            for neighbour in neighbours:
                if neighbour in on_path:
                    return neighbour
                if neighbour not in visited:
                    visited.add(neighbour)
                    on_path.add(neighbour)
                    stack.append((neighbour, iter(graph.get(neighbour, ()))))
                    break
            else:
                on_path.discard(node)
                stack.pop()
    return None


def validate_batch_dependencies(request: SubtaskBatchRequest) -> Graph:
    """Reject cyclic requests; return the batch graph when acyclic.

    Raises:
        DuplicateDefinition: repeated batch id or sub-task name.
        CircularDependency: a cycle between batches, or between sub-tasks of
            one batch.
    """
    graph = build_batch_graph(request)
    offending = find_cycle(graph)
    if offending is not None:
        raise CircularDependency(offending)

    for batch in request.batches:
        local = {name_key(s.name): s for s in batch.subtasks}
        subtask_graph = {
            key: [name_key(d) for d in spec.dependencies if name_key(d) in local]
            for key, spec in local.items()
        }
        if find_cycle(subtask_graph) is not None:
            raise CircularDependency(batch.batch_id, detail="sub-task dependencies")
    return graph


def sequence_batches(batch_ids: List[str], graph: Mapping[str, Iterable[str]]) -> List[str]:
    """Kahn's algorithm; ready batches are released in input order."""
    position = {batch_id: index for index, batch_id in enumerate(batch_ids)}
    in_degree = {batch_id: 0 for batch_id in batch_ids}
    dependents: Dict[str, List[str]] = {batch_id: [] for batch_id in batch_ids}
    for batch_id in batch_ids:
        for required in graph.get(batch_id, ()):
            if required in position:
                in_degree[batch_id] += 1
                dependents[required].append(batch_id)

    ready = [position[b] for b in batch_ids if in_degree[b] == 0]
    heapq.heapify(ready)
    order: List[str] = []
    while ready:
        batch_id = batch_ids[heapq.heappop(ready)]
        order.append(batch_id)
        for dependent in dependents[batch_id]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, position[dependent])

    if len(order) != len(batch_ids):
        stuck = next(b for b in batch_ids if b not in order)
        raise CircularDependency(stuck)
    return order


def plan_batches(request: SubtaskBatchRequest) -> List[BatchSpec]:
    """Validate ``request`` and return its batches in creation order."""
    graph = validate_batch_dependencies(request)
    by_id = {batch.batch_id: batch for batch in request.batches}
    order = sequence_batches([batch.batch_id for batch in request.batches], graph)
    return [by_id[batch_id] for batch_id in order]
