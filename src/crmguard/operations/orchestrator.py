"""Operation orchestrator -- routes caller requests to the single or multi path.

Single path: ensure metadata, check duplicates (create only, never
blocking), run preflight validation (blocking), then issue the remote
write.

Multi path: delegate to the dependency resolver, which ensures metadata for
every entity in the batch with one hop of relationships, then orders and
executes the operations.

Routing is structural: a single operation always takes the single path; a
list takes the multi path when it has more than one entry or any payload
carries a Reference.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Mapping
from typing import Any

import structlog

from src.crmguard.core.errors import CRMError, MetadataSyncError, ValidationError
from src.crmguard.matching.matcher import SmartMatcher, get_match_summary
from src.crmguard.matching.schemas import MatchConfidence, MatchResult, SearchConfig
from src.crmguard.metadata.cache import MetadataCacheManager
from src.crmguard.metadata.schemas import CacheStats, SyncResult
from src.crmguard.operations.resolver import DependencyResolver, resolve_references
from src.crmguard.operations.schemas import (
    CreatedRecord,
    ExecutionMode,
    MultiOperationResult,
    OperationType,
    OrchestratorResult,
    RecordOperation,
    SingleOperationResult,
    has_references,
)
from src.crmguard.remote.service import RemoteDataService, SaveResult
from src.crmguard.validation.preflight import PreflightValidator
from src.crmguard.validation.schemas import ValidationResult

logger = structlog.get_logger(__name__)

DUPLICATE_RETURN_FIELDS: dict[str, list[str]] = {
    "Account": ["Industry", "BillingCity", "Phone", "Website"],
    "Contact": ["Email", "Phone", "AccountId", "Title"],
    "Lead": ["Email", "Phone", "Company", "Status"],
}

OperationInput = RecordOperation | Mapping[str, Any] | list[RecordOperation | Mapping[str, Any]]


def _coerce(operation: RecordOperation | Mapping[str, Any]) -> RecordOperation:
    if isinstance(operation, RecordOperation):
        return operation
    return RecordOperation.from_payload(dict(operation))


class OperationOrchestrator:
    """Entry point that composes cache, matcher, validator, and resolver.

    Args:
        service: Remote data service for writes and searches.
        cache_manager: Metadata cache (its store backs the validator).
        matcher: Duplicate matcher.
        validator: Preflight validator.
        resolver: Dependency resolver for batches.
        duplicate_limit: Max candidates returned by a duplicate check.
    """

    def __init__(
        self,
        service: RemoteDataService,
        cache_manager: MetadataCacheManager,
        matcher: SmartMatcher,
        validator: PreflightValidator,
        resolver: DependencyResolver,
        duplicate_limit: int = 10,
    ) -> None:
        self._service = service
        self._cache_manager = cache_manager
        self._matcher = matcher
        self._validator = validator
        self._resolver = resolver
        self._duplicate_limit = duplicate_limit

    async def initialize(self) -> None:
        """Pre-warm core entity metadata."""
        await self._cache_manager.initialize()
        logger.info("orchestrator.ready")

    # ── Routing ─────────────────────────────────────────────────────────────

    async def execute(self, request: OperationInput) -> OrchestratorResult:
        """Route a single operation or a list of operations.

        Log lines emitted during the call carry a fresh ``request_id``.

        Raises:
            ValidationError: If the request is neither an operation nor a
                non-empty list of operations.
            MetadataSyncError: If required metadata cannot be synced.
        """
        with structlog.contextvars.bound_contextvars(request_id=str(uuid.uuid4())):
            return await self._route(request)

    async def _route(self, request: OperationInput) -> OrchestratorResult:
        if isinstance(request, RecordOperation) or (
            isinstance(request, Mapping) and "type" in request and "sobject" in request
        ):
            single = await self.execute_single_operation(_coerce(request))
            return OrchestratorResult(mode=ExecutionMode.SINGLE, result=single)

        if isinstance(request, list) and request:
            operations = [_coerce(op) for op in request]
            if len(operations) > 1 or any(has_references(op.data) for op in operations):
                logger.debug("orchestrator.route_multi", operations=len(operations))
                multi = await self.execute_multiple_operations(operations)
                return OrchestratorResult(mode=ExecutionMode.MULTI, result=multi)
            single = await self.execute_single_operation(operations[0])
            return OrchestratorResult(mode=ExecutionMode.SINGLE, result=single)

        raise ValidationError("Invalid operation input format")

    # ── Single path ─────────────────────────────────────────────────────────

    async def execute_single_operation(self, operation: RecordOperation) -> SingleOperationResult:
        """Validate and execute one operation.

        Duplicate findings become warnings. Invalid payloads are reported in
        ``errors`` without contacting the remote service.

        Raises:
            MetadataSyncError: If the entity's metadata cannot be synced.
        """
        start = time.perf_counter()
        result = SingleOperationResult()

        await self._cache_manager.ensure_metadata([operation.sobject])

        try:
            # A lone operation has no batch to resolve References against.
            resolve_references(operation.data, {})

            if operation.type == OperationType.CREATE:
                duplicates = await self.check_duplicates(operation.sobject, operation.data)
                result.warnings.extend(_duplicate_warnings(duplicates))

            validation = await self._validate(operation)
            if validation is not None:
                result.warnings.extend(w.message for w in validation.warnings)
                if not validation.valid:
                    result.errors = [e.message for e in validation.errors]
                    logger.info(
                        "orchestrator.preflight_rejected",
                        sobject=operation.sobject,
                        errors=len(result.errors),
                    )
                    result.duration = time.perf_counter() - start
                    return result

            save = await self._dispatch(operation)
            result.success = save.success
            result.record_id = save.id or operation.record_id
            if not save.success:
                result.errors = [e.message for e in save.errors] or ["Operation failed"]
        except MetadataSyncError:
            raise
        except CRMError as exc:
            logger.error("orchestrator.single_failed", sobject=operation.sobject, error=exc.message)
            result.success = False
            result.errors.append(exc.message)

        result.duration = time.perf_counter() - start
        logger.info(
            "orchestrator.single_complete",
            operation=operation.type.value,
            sobject=operation.sobject,
            success=result.success,
            duration_s=round(result.duration, 3),
        )
        return result

    async def check_duplicates(
        self,
        sobject: str,
        data: dict[str, Any],
        field: str = "Name",
        limit: int | None = None,
        min_confidence: MatchConfidence = MatchConfidence.MEDIUM,
    ) -> list[MatchResult]:
        """Search for likely duplicates of ``data[field]``. Failures yield []."""
        if not data.get(field):
            logger.debug("orchestrator.duplicate_check_skipped", sobject=sobject, field=field)
            return []

        config = SearchConfig(
            sobject=sobject,
            field=field,
            return_fields=["Id", "Name", *DUPLICATE_RETURN_FIELDS.get(sobject, [])],
            limit=limit or self._duplicate_limit,
            min_confidence=min_confidence,
        )
        try:
            matches = await self._matcher.find_duplicates(data, config)
        except CRMError as exc:
            logger.warning("orchestrator.duplicate_check_failed", sobject=sobject, error=exc.message)
            return []
        logger.debug("orchestrator.duplicate_check_complete", sobject=sobject, matches=len(matches))
        return matches

    async def _validate(self, operation: RecordOperation) -> ValidationResult | None:
        if operation.type == OperationType.CREATE:
            return await self._validator.validate_create(operation.sobject, operation.data)
        if operation.type == OperationType.UPDATE and operation.record_id:
            return await self._validator.validate_update(operation.sobject, operation.record_id, operation.data)
        return None

    async def _dispatch(self, operation: RecordOperation) -> SaveResult:
        if operation.type == OperationType.CREATE:
            return await self._service.create(operation.sobject, operation.data)
        if operation.type == OperationType.UPDATE:
            return await self._service.update(operation.sobject, operation.record_id, operation.data)
        return await self._service.delete(operation.sobject, operation.record_id)

    # ── Multi path ──────────────────────────────────────────────────────────

    async def execute_multiple_operations(self, operations: list[RecordOperation]) -> MultiOperationResult:
        """Execute a batch via the dependency resolver and summarize it.

        Raises:
            MetadataSyncError: If metadata for the batch cannot be synced.
        """
        start = time.perf_counter()
        # The resolver ensures metadata (with one hop of relationships) itself.
        resolved = await self._resolver.execute_with_dependencies(operations)

        result = MultiOperationResult(
            success=resolved.success,
            total_operations=len(operations),
            successful_operations=sum(1 for op in resolved.operations if op.success and not op.deferred),
            failed_operations=sum(1 for op in resolved.operations if not op.success),
            created_records=[
                CreatedRecord(temp_id=op.temp_id, record_id=op.id, sobject=op.sobject)
                for op in resolved.operations
                if op.success and op.id and op.type == OperationType.CREATE
            ],
            errors=[e.message for e in resolved.errors],
            execution_plan=resolved.execution_plan,
        )
        result.warnings = [
            f"{bp.node_id}.{bp.field} set by follow-up update (circular reference to {bp.references})"
            for batch in resolved.execution_plan
            for bp in batch.break_points
        ]
        result.duration = time.perf_counter() - start

        logger.info(
            "orchestrator.multi_complete",
            total=result.total_operations,
            successful=result.successful_operations,
            failed=result.failed_operations,
            duration_s=round(result.duration, 3),
        )
        return result

    # ── Cache pass-throughs ─────────────────────────────────────────────────

    async def get_cache_stats(self) -> CacheStats:
        return await self._cache_manager.get_cache_stats()

    async def refresh_metadata(self, names: list[str]) -> SyncResult | None:
        logger.info("orchestrator.refresh_metadata", sobjects=names)
        return await self._cache_manager.refresh_metadata(names)

    async def clear_cache(self) -> None:
        logger.info("orchestrator.clear_cache")
        await self._cache_manager.clear_cache()


def _duplicate_warnings(matches: list[MatchResult]) -> list[str]:
    high = [m for m in matches if m.confidence == MatchConfidence.HIGH]
    medium = [m for m in matches if m.confidence == MatchConfidence.MEDIUM]

    warnings: list[str] = []
    if high:
        warnings.append(f"POTENTIAL DUPLICATE: Found {len(high)} high-confidence match(es):")
        for index, match in enumerate(high, start=1):
            name = match.record.get("Name") or match.record.get("Id")
            warnings.append(f"  {index}. {name} - {get_match_summary(match)}")
    if medium:
        warnings.append(f"Possible duplicates: Found {len(medium)} medium-confidence match(es)")
    return warnings
