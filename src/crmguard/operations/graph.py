"""Dependency graph over a batch of record operations.

Nodes are operations (``op_0``, ``op_1``, ...). An edge ``source -> target``
means the target's payload holds a Reference to the source's temp_id, so
the source must run first. ``field`` is the target field carrying it.

Cycle search and leveling both take an ``excluded`` edge set: the edges
chosen as break points, which are satisfied by a follow-up update instead
of by execution order.
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass, field

import structlog

from src.crmguard.core.errors import ValidationError
from src.crmguard.operations.schemas import BreakPoint, ExecutionBatch, RecordOperation

logger = structlog.get_logger(__name__)

_ON_STACK = 1
_DONE = 2


@dataclass
class GraphNode:
    id: str
    operation: RecordOperation
    dependencies: list[str] = field(default_factory=list)
    dependents: list[str] = field(default_factory=list)
    level: int = 0
    executed: bool = False


@dataclass(frozen=True)
class DependencyEdge:
    source: str
    target: str
    field: str


@dataclass
class DependencyGraph:
    nodes: dict[str, GraphNode] = field(default_factory=dict)
    edges: list[DependencyEdge] = field(default_factory=list)

    def node_for_temp_id(self, temp_id: str) -> GraphNode | None:
        for node in self.nodes.values():
            if node.operation.temp_id == temp_id:
                return node
        return None


def build_graph(operations: list[RecordOperation]) -> DependencyGraph:
    """Create one node per operation and one edge per in-batch Reference.

    References to temp ids not present in the batch produce no edge; they
    surface as unresolved references at execution time.

    Raises:
        ValidationError: If two operations share a temp_id.
    """
    graph = DependencyGraph()
    by_temp_id: dict[str, str] = {}

    for index, operation in enumerate(operations):
        node_id = f"op_{index}"
        graph.nodes[node_id] = GraphNode(id=node_id, operation=operation)
        if operation.temp_id:
            if operation.temp_id in by_temp_id:
                raise ValidationError(
                    f"Duplicate temp_id {operation.temp_id!r} "
                    f"({by_temp_id[operation.temp_id]} and {node_id})"
                )
            by_temp_id[operation.temp_id] = node_id

    for node in graph.nodes.values():
        for field_name, reference in node.operation.references():
            source_id = by_temp_id.get(reference.temp_id)
            if source_id is None:
                logger.warning(
                    "resolver.reference_outside_batch",
                    node_id=node.id,
                    field=field_name,
                    temp_id=reference.temp_id,
                )
                continue
            graph.edges.append(DependencyEdge(source=source_id, target=node.id, field=field_name))
            if source_id not in node.dependencies:
                node.dependencies.append(source_id)
            source = graph.nodes[source_id]
            if node.id not in source.dependents:
                source.dependents.append(node.id)

    return graph


def find_cycle(
    graph: DependencyGraph,
    excluded: Collection[DependencyEdge] = (),
) -> list[DependencyEdge] | None:
    """Return the edges of one dependency cycle, or None if the graph is acyclic.

    Depth-first along dependencies with an explicit stack. Each returned
    edge's ``source`` is the next edge's ``target``, so the list walks
    "depends on" once around the loop.
    """
    outgoing: dict[str, list[DependencyEdge]] = {node_id: [] for node_id in graph.nodes}
    for edge in graph.edges:
        if edge not in excluded:
            outgoing[edge.target].append(edge)

    state: dict[str, int] = {}
    for root in graph.nodes:
        if root in state:
            continue
        state[root] = _ON_STACK
        stack = [(root, iter(outgoing[root]))]
        path: list[DependencyEdge] = []

        while stack:
            node_id, pending = stack[-1]
            edge = next(pending, None)
            if edge is None:
                state[node_id] = _DONE
                stack.pop()
                if path:
                    path.pop()
                continue

            next_id = edge.source
            next_state = state.get(next_id)
            if next_state == _ON_STACK:
                start = [entry[0] for entry in stack].index(next_id)
                return [*path[start:], edge]
            if next_state is None:
                state[next_id] = _ON_STACK
                path.append(edge)
                stack.append((next_id, iter(outgoing[next_id])))

    return None


def assign_levels(graph: DependencyGraph, excluded: Collection[DependencyEdge] = ()) -> None:
    """Set each node's level to one more than its deepest dependency.

    Iterative relaxation over the non-excluded edges until nothing changes.
    The caller must have removed every cycle via ``excluded`` first.
    """
    for node in graph.nodes.values():
        node.level = 0

    active = [edge for edge in graph.edges if edge not in excluded]
    changed = True
    while changed:
        changed = False
        for edge in active:
            dependency = graph.nodes[edge.source]
            node = graph.nodes[edge.target]
            if node.level <= dependency.level:
                node.level = dependency.level + 1
                changed = True


def build_batches(graph: DependencyGraph, break_points: list[BreakPoint]) -> list[ExecutionBatch]:
    """Group nodes by level into ordered execution batches."""
    levels: dict[int, list[GraphNode]] = {}
    for node in graph.nodes.values():
        levels.setdefault(node.level, []).append(node)

    batches: list[ExecutionBatch] = []
    for level in sorted(levels):
        nodes = levels[level]
        node_ids = [n.id for n in nodes]
        batches.append(
            ExecutionBatch(
                level=level,
                node_ids=node_ids,
                operations=[n.operation for n in nodes],
                can_parallelize=len(nodes) > 1,
                break_points=[bp for bp in break_points if bp.node_id in node_ids],
            )
        )
    return batches
