"""Dependency resolver -- orders and executes a batch of linked record operations.

Pipeline per batch:
1. Ensure metadata for every entity in the batch, plus one hop of
   relationships, so break-point decisions can see which lookups are
   optional.
2. Build the reference graph (see graph.py).
3. Find cycles one at a time and break each at the first edge whose field
   is a non-required relationship. The dependent record is created without
   that field and updated once the referenced id exists. A cycle with no
   such edge is a fatal analysis error and nothing executes.
4. Level the graph and group it into ordered batches.
5. Execute batch by batch, substituting real ids for References. Batches
   with several operations run concurrently with settle-all semantics; a
   single-operation batch runs sequentially and a failure aborts whatever
   remains in it.

Failures are collected into ExecutionResult.errors instead of raised, so
the caller always gets back whatever completed. The exception is a
metadata sync failure, which propagates.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog

from src.crmguard.core.errors import (
    CircularDependencyError,
    UnresolvedReferenceError,
    ValidationError,
)
from src.crmguard.metadata.cache import MetadataCacheManager
from src.crmguard.metadata.store import MetadataStore
from src.crmguard.operations.graph import (
    DependencyEdge,
    DependencyGraph,
    GraphNode,
    assign_levels,
    build_batches,
    build_graph,
    find_cycle,
)
from src.crmguard.operations.schemas import (
    BreakPoint,
    ExecutionBatch,
    ExecutionError,
    ExecutionPhase,
    ExecutionResult,
    OperationResult,
    OperationType,
    RecordOperation,
    Reference,
)
from src.crmguard.remote.service import RemoteDataService, SaveResult

logger = structlog.get_logger(__name__)


class DependencyResolver:
    """Plans and runs a batch of RecordOperations connected by References.

    Args:
        service: Remote data service that performs the writes.
        store: Metadata store consulted for relationship requiredness.
        cache_manager: Keeps the batch's entity metadata fresh.
    """

    def __init__(
        self,
        service: RemoteDataService,
        store: MetadataStore,
        cache_manager: MetadataCacheManager,
    ) -> None:
        self._service = service
        self._store = store
        self._cache_manager = cache_manager

    async def execute_with_dependencies(self, operations: list[RecordOperation]) -> ExecutionResult:
        """Analyze, plan, and execute ``operations``.

        Raises:
            MetadataSyncError: If metadata for the batch cannot be synced.
        """
        start = time.perf_counter()
        result = ExecutionResult()

        sobjects = list(dict.fromkeys(op.sobject for op in operations))
        await self._cache_manager.ensure_metadata(sobjects)
        for name in sobjects:
            await self._cache_manager.ensure_metadata_with_relationships(name, depth=1)

        try:
            plan, graph = await self.plan(operations)
        except (CircularDependencyError, ValidationError) as exc:
            logger.error("resolver.analysis_failed", error=exc.message, code=exc.code.value)
            result.success = False
            result.errors.append(
                ExecutionError(message=exc.message, phase=ExecutionPhase.ANALYSIS, code=exc.code.value)
            )
            result.total_duration = time.perf_counter() - start
            return result

        result.execution_plan = plan
        logger.info(
            "resolver.plan_ready",
            operations=len(operations),
            batches=len(plan),
            break_points=sum(len(b.break_points) for b in plan),
        )

        await self.execute_plan(plan, graph, result)

        result.total_duration = time.perf_counter() - start
        logger.info(
            "resolver.execution_complete",
            success=result.success,
            operations=len(result.operations),
            errors=len(result.errors),
            duration_s=round(result.total_duration, 3),
        )
        return result

    async def plan(self, operations: list[RecordOperation]) -> tuple[list[ExecutionBatch], DependencyGraph]:
        """Build the graph, break cycles, and return ordered batches.

        Does not touch the remote service. Metadata must already be cached.

        Raises:
            ValidationError: Duplicate temp ids in the batch.
            CircularDependencyError: A cycle has no optional edge to break.
        """
        graph = build_graph(operations)
        await self._warn_empty_required_relationships(graph)

        excluded: set[DependencyEdge] = set()
        break_points: list[BreakPoint] = []
        while True:
            cycle = find_cycle(graph, excluded)
            if cycle is None:
                break
            edge = await self._choose_break_edge(graph, cycle)
            if edge is None:
                raise CircularDependencyError([e.target for e in cycle])
            excluded.add(edge)
            referenced = graph.nodes[edge.source].operation.temp_id or edge.source
            break_points.append(BreakPoint(node_id=edge.target, field=edge.field, references=referenced))
            logger.info(
                "resolver.cycle_broken",
                cycle=[e.target for e in cycle],
                node_id=edge.target,
                field=edge.field,
            )

        assign_levels(graph, excluded)
        return build_batches(graph, break_points), graph

    # ── Analysis helpers ────────────────────────────────────────────────────

    async def _warn_empty_required_relationships(self, graph: DependencyGraph) -> None:
        for node in graph.nodes.values():
            operation = node.operation
            if operation.type != OperationType.CREATE:
                continue
            for rel in await self._store.get_relationships(operation.sobject):
                if rel.is_required and operation.data.get(rel.field_name) in (None, ""):
                    logger.warning(
                        "resolver.required_relationship_empty",
                        node_id=node.id,
                        sobject=operation.sobject,
                        field=rel.field_name,
                    )

    async def _choose_break_edge(
        self,
        graph: DependencyGraph,
        cycle: list[DependencyEdge],
    ) -> DependencyEdge | None:
        """First cycle edge whose field is a known, non-required relationship."""
        for edge in cycle:
            sobject = graph.nodes[edge.target].operation.sobject
            relationships = await self._store.get_relationships(sobject)
            for rel in relationships:
                if rel.field_name == edge.field and not rel.is_required:
                    return edge
        return None

    # ── Execution ───────────────────────────────────────────────────────────

    async def execute_plan(
        self,
        plan: list[ExecutionBatch],
        graph: DependencyGraph,
        result: ExecutionResult | None = None,
    ) -> ExecutionResult:
        """Run batches from plan() in order, collecting outcomes into ``result``.

        Batches marked ``can_parallelize`` dispatch concurrently. Any other
        batch runs in order and its first failure skips the rest of it.
        plan() marks only single-operation batches sequential, so the skip
        applies when a caller serializes a wider batch before running it.
        """
        if result is None:
            result = ExecutionResult(execution_plan=plan)
        id_map: dict[str, str] = {}
        node_record_ids: dict[str, str] = {}
        pending = [bp for batch in plan for bp in batch.break_points]
        deferred_fields: dict[str, set[str]] = {}
        for bp in pending:
            deferred_fields.setdefault(bp.node_id, set()).add(bp.field)

        for batch in plan:
            nodes = [graph.nodes[node_id] for node_id in batch.node_ids]
            logger.debug(
                "resolver.batch_started",
                level=batch.level,
                operations=len(nodes),
                parallel=batch.can_parallelize,
            )

            if batch.can_parallelize:
                outcomes = await self._run_parallel(nodes, id_map, deferred_fields)
            else:
                outcomes = await self._run_sequential(nodes, id_map, deferred_fields, result)

            for node, outcome in outcomes:
                result.operations.append(outcome)
                if not outcome.success:
                    result.errors.append(
                        ExecutionError(
                            message=outcome.errors[0] if outcome.errors else "Operation failed",
                            phase=ExecutionPhase.EXECUTION,
                            operation_id=node.id,
                        )
                    )
                    continue
                node.executed = True
                if outcome.id:
                    node_record_ids[node.id] = outcome.id
                    if node.operation.temp_id:
                        id_map[node.operation.temp_id] = outcome.id

            pending = await self._run_deferred_updates(pending, graph, id_map, node_record_ids, result)

        for bp in pending:
            message = (
                f"Deferred update of {bp.node_id}.{bp.field} skipped: "
                f"{bp.references} or {bp.node_id} has no record id"
            )
            logger.warning("resolver.deferred_update_skipped", node_id=bp.node_id, field=bp.field)
            result.errors.append(
                ExecutionError(message=message, phase=ExecutionPhase.EXECUTION, operation_id=bp.node_id)
            )

        result.success = not result.errors and all(op.success for op in result.operations)
        return result

    async def _run_parallel(
        self,
        nodes: list[GraphNode],
        id_map: dict[str, str],
        deferred_fields: dict[str, set[str]],
    ) -> list[tuple[GraphNode, OperationResult]]:
        """Dispatch every node concurrently; one failure never cancels siblings."""
        settled = await asyncio.gather(
            *[self._execute_operation(node, id_map, deferred_fields.get(node.id, set())) for node in nodes],
            return_exceptions=True,
        )
        outcomes: list[tuple[GraphNode, OperationResult]] = []
        for node, outcome in zip(nodes, settled):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                outcome = _failed(node, outcome)
            outcomes.append((node, outcome))
        return outcomes

    async def _run_sequential(
        self,
        nodes: list[GraphNode],
        id_map: dict[str, str],
        deferred_fields: dict[str, set[str]],
        result: ExecutionResult,
    ) -> list[tuple[GraphNode, OperationResult]]:
        """Run nodes in order, aborting the rest of the batch on first failure."""
        outcomes: list[tuple[GraphNode, OperationResult]] = []
        for index, node in enumerate(nodes):
            try:
                outcome = await self._execute_operation(node, id_map, deferred_fields.get(node.id, set()))
            except Exception as exc:
                outcome = _failed(node, exc)
            outcomes.append((node, outcome))
            if outcome.success:
                continue

            for skipped in nodes[index + 1 :]:
                logger.warning("resolver.operation_skipped", node_id=skipped.id, after=node.id)
                result.errors.append(
                    ExecutionError(
                        message=f"Skipped after {node.id} failed in the same batch",
                        phase=ExecutionPhase.EXECUTION,
                        operation_id=skipped.id,
                    )
                )
            break
        return outcomes

    async def _execute_operation(
        self,
        node: GraphNode,
        id_map: dict[str, str],
        deferred: set[str],
    ) -> OperationResult:
        """Resolve References in the payload and issue the remote write.

        Raises:
            UnresolvedReferenceError: A Reference has no real id yet.
        """
        operation = node.operation
        data = resolve_references(operation.data, id_map, skip=deferred)

        if operation.type == OperationType.CREATE:
            save = await self._service.create(operation.sobject, data)
        elif operation.type == OperationType.UPDATE:
            save = await self._service.update(operation.sobject, operation.record_id, data)
        else:
            save = await self._service.delete(operation.sobject, operation.record_id)

        logger.debug(
            "resolver.operation_done",
            node_id=node.id,
            operation=operation.label(),
            success=save.success,
            record_id=save.id,
        )
        return _from_save(node, operation.type, save)

    async def _run_deferred_updates(
        self,
        pending: list[BreakPoint],
        graph: DependencyGraph,
        id_map: dict[str, str],
        node_record_ids: dict[str, str],
        result: ExecutionResult,
    ) -> list[BreakPoint]:
        """Fire every deferred update whose two ids are now known.

        Returns:
            Break points still waiting on an id.
        """
        waiting: list[BreakPoint] = []
        for bp in pending:
            own_id = node_record_ids.get(bp.node_id)
            referenced_id = id_map.get(bp.references)
            if own_id is None or referenced_id is None:
                waiting.append(bp)
                continue

            node = graph.nodes[bp.node_id]
            try:
                save = await self._service.update(node.operation.sobject, own_id, {bp.field: referenced_id})
                outcome = _from_save(node, OperationType.UPDATE, save)
            except Exception as exc:
                outcome = _failed(node, exc, OperationType.UPDATE)
            outcome.deferred = True
            result.operations.append(outcome)

            if outcome.success:
                logger.info("resolver.deferred_update_applied", node_id=bp.node_id, field=bp.field)
            else:
                result.errors.append(
                    ExecutionError(
                        message=outcome.errors[0] if outcome.errors else "Deferred update failed",
                        phase=ExecutionPhase.EXECUTION,
                        operation_id=bp.node_id,
                    )
                )
        return waiting


def resolve_references(
    data: dict[str, Any],
    id_map: dict[str, str],
    skip: set[str] | frozenset[str] = frozenset(),
) -> dict[str, Any]:
    """Copy ``data`` with every Reference replaced by its real id.

    Fields in ``skip`` are left out entirely.

    Raises:
        UnresolvedReferenceError: A Reference's temp id is not in ``id_map``.
    """
    resolved: dict[str, Any] = {}
    for field_name, value in data.items():
        if field_name in skip:
            continue
        if isinstance(value, Reference):
            real_id = id_map.get(value.temp_id)
            if real_id is None:
                raise UnresolvedReferenceError(value.temp_id, field_name)
            resolved[field_name] = real_id
        else:
            resolved[field_name] = value
    return resolved


def _from_save(node: GraphNode, op_type: OperationType, save: SaveResult) -> OperationResult:
    return OperationResult(
        operation_id=node.id,
        type=op_type,
        sobject=node.operation.sobject,
        success=save.success,
        temp_id=node.operation.temp_id,
        id=save.id,
        errors=[e.message for e in save.errors],
    )


def _failed(node: GraphNode, exc: Exception, op_type: OperationType | None = None) -> OperationResult:
    message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
    logger.warning("resolver.operation_failed", node_id=node.id, error=message)
    return OperationResult(
        operation_id=node.id,
        type=op_type or node.operation.type,
        sobject=node.operation.sobject,
        success=False,
        temp_id=node.operation.temp_id,
        errors=[message],
    )

