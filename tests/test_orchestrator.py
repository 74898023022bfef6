"""Tests for OperationOrchestrator routing, the single-operation path, and
the multi-operation summary.

Most tests wire the orchestrator through create_orchestrator() with the
fake remote and a throwaway metadata store. Duplicate-warning tests swap
in an AsyncMock matcher to control confidence tiers directly.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import structlog

from src.crmguard.config import Settings
from src.crmguard.core.errors import MetadataSyncError, RemoteServiceError, ValidationError
from src.crmguard.main import create_orchestrator
from src.crmguard.matching.matcher import SmartMatcher, get_match_summary
from src.crmguard.matching.schemas import MatchConfidence, MatchResult, MatchStrategy
from src.crmguard.metadata.cache import MetadataCacheManager
from src.crmguard.operations.orchestrator import OperationOrchestrator
from src.crmguard.operations.resolver import DependencyResolver
from src.crmguard.operations.schemas import (
    ExecutionResult,
    ExecutionMode,
    MultiOperationResult,
    RecordOperation,
    SingleOperationResult,
)
from src.crmguard.validation.preflight import PreflightValidator
from tests.fakes import FakeRemoteService


# -- Test Helpers --------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(CORE_SOBJECTS=["Account", "Contact"], _env_file=None)


@pytest.fixture
def orchestrator(settings: Settings, remote: FakeRemoteService, session_factory) -> OperationOrchestrator:
    return create_orchestrator(settings, service=remote, session_factory=session_factory)


def with_matcher(
    matcher: AsyncMock, remote: FakeRemoteService, cache_manager: MetadataCacheManager
) -> OperationOrchestrator:
    """Orchestrator wired by hand around a mocked matcher."""
    store = cache_manager.store
    return OperationOrchestrator(
        service=remote,
        cache_manager=cache_manager,
        matcher=matcher,
        validator=PreflightValidator(store),
        resolver=DependencyResolver(remote, store, cache_manager),
    )


def with_resolver(resolver: AsyncMock, remote: FakeRemoteService) -> tuple[OperationOrchestrator, AsyncMock]:
    """Orchestrator around a mocked resolver and cache manager."""
    cache_manager = AsyncMock(spec=MetadataCacheManager)
    orchestrator = OperationOrchestrator(
        service=remote,
        cache_manager=cache_manager,
        matcher=AsyncMock(spec=SmartMatcher),
        validator=AsyncMock(spec=PreflightValidator),
        resolver=resolver,
    )
    return orchestrator, cache_manager


def match(name: str, confidence: MatchConfidence, score: float) -> MatchResult:
    return MatchResult(
        record={"Id": "001000000000500", "Name": name},
        confidence=confidence,
        score=score,
        matched_by=[MatchStrategy.EXACT],
        normalized_input="acme",
        normalized_record=name.lower(),
    )


def create_account(name: str = "Acme", **data) -> dict:
    return {"type": "create", "sobject": "Account", "data": {"Name": name, **data}}


# -- Routing -------------------------------------------------------------------


class TestRouting:
    async def test_mapping_routes_single(self, orchestrator: OperationOrchestrator) -> None:
        outcome = await orchestrator.execute(create_account())

        assert outcome.mode == ExecutionMode.SINGLE
        assert isinstance(outcome.result, SingleOperationResult)
        assert outcome.result.success is True
        assert outcome.result.record_id.startswith("001")

    async def test_record_operation_routes_single(self, orchestrator: OperationOrchestrator) -> None:
        outcome = await orchestrator.execute(RecordOperation.from_payload(create_account()))
        assert outcome.mode == ExecutionMode.SINGLE

    async def test_one_element_list_routes_single(self, orchestrator: OperationOrchestrator) -> None:
        outcome = await orchestrator.execute([create_account()])
        assert outcome.mode == ExecutionMode.SINGLE

    async def test_two_elements_route_multi(self, orchestrator: OperationOrchestrator) -> None:
        outcome = await orchestrator.execute([create_account("Acme"), create_account("Globex")])

        assert outcome.mode == ExecutionMode.MULTI
        assert isinstance(outcome.result, MultiOperationResult)
        assert outcome.result.total_operations == 2

    async def test_lone_operation_with_reference_routes_multi(self, orchestrator: OperationOrchestrator) -> None:
        outcome = await orchestrator.execute(
            [{"type": "create", "sobject": "Contact", "data": {"LastName": "Doe", "AccountId": "@acc"}}]
        )

        assert outcome.mode == ExecutionMode.MULTI
        assert outcome.result.success is False
        assert outcome.result.errors == ["Cannot resolve reference @acc in AccountId"]

    @pytest.mark.parametrize("request_", [[], "junk", {"sobject": "Account"}, 42])
    async def test_invalid_input_raises(self, orchestrator: OperationOrchestrator, request_) -> None:
        with pytest.raises(ValidationError, match="Invalid operation input format"):
            await orchestrator.execute(request_)


# -- Single path ---------------------------------------------------------------


class TestSingleOperation:
    async def test_preflight_rejection_skips_remote(
        self, orchestrator: OperationOrchestrator, remote: FakeRemoteService
    ) -> None:
        outcome = await orchestrator.execute({"type": "create", "sobject": "Account", "data": {"Industry": "Banking"}})

        assert outcome.result.success is False
        assert outcome.result.errors == ["Required field 'Account Name' is missing or empty."]
        assert remote.calls == []

    async def test_preflight_warnings_carried(self, orchestrator: OperationOrchestrator) -> None:
        outcome = await orchestrator.execute(create_account(Shoe_Size__c=9))

        assert outcome.result.success is True
        assert any("Shoe_Size__c" in w for w in outcome.result.warnings)

    async def test_reference_in_lone_operation_is_error(
        self, orchestrator: OperationOrchestrator, remote: FakeRemoteService
    ) -> None:
        outcome = await orchestrator.execute(
            {"type": "create", "sobject": "Contact", "data": {"LastName": "Doe", "AccountId": "@acc"}}
        )

        assert outcome.mode == ExecutionMode.SINGLE
        assert outcome.result.success is False
        assert outcome.result.errors == ["Cannot resolve reference @acc in AccountId"]
        assert remote.calls == []

    async def test_update(self, orchestrator: OperationOrchestrator, remote: FakeRemoteService) -> None:
        outcome = await orchestrator.execute(
            {"type": "update", "sobject": "Account", "recordId": "001000000000001", "data": {"Industry": "Banking"}}
        )

        assert outcome.result.success is True
        assert outcome.result.record_id == "001000000000001"
        assert remote.calls == [("update", "Account", "001000000000001", {"Industry": "Banking"})]

    async def test_update_with_bad_picklist_rejected(
        self, orchestrator: OperationOrchestrator, remote: FakeRemoteService
    ) -> None:
        outcome = await orchestrator.execute(
            {"type": "update", "sobject": "Account", "recordId": "001000000000001", "data": {"Industry": "Nope"}}
        )

        assert outcome.result.success is False
        assert remote.calls == []

    async def test_delete(self, orchestrator: OperationOrchestrator, remote: FakeRemoteService) -> None:
        outcome = await orchestrator.execute(
            {"type": "delete", "sobject": "Contact", "recordId": "003000000000001"}
        )

        assert outcome.result.success is True
        assert remote.calls == [("delete", "Contact", "003000000000001", {})]

    async def test_remote_rejection(self, orchestrator: OperationOrchestrator, remote: FakeRemoteService) -> None:
        remote.rejected_names = {"Acme": "Duplicate value found"}

        outcome = await orchestrator.execute(create_account())

        assert outcome.result.success is False
        assert outcome.result.errors == ["Duplicate value found"]

    async def test_remote_exception_reported(
        self, orchestrator: OperationOrchestrator, remote: FakeRemoteService
    ) -> None:
        remote.raising_names = {"Acme"}

        outcome = await orchestrator.execute(create_account())

        assert outcome.result.success is False
        assert "connection reset" in outcome.result.errors[0]

    async def test_unknown_entity_propagates(self, orchestrator: OperationOrchestrator) -> None:
        with pytest.raises(MetadataSyncError):
            await orchestrator.execute({"type": "create", "sobject": "Nope__c", "data": {"Name": "x"}})


# -- Duplicate checks ----------------------------------------------------------


class TestDuplicateWarnings:
    async def test_high_confidence_from_search(
        self, orchestrator: OperationOrchestrator, remote: FakeRemoteService
    ) -> None:
        remote.search_records = [{"attributes": {"type": "Account"}, "Id": "001000000000500", "Name": "Acme"}]

        outcome = await orchestrator.execute(create_account())

        assert outcome.result.success is True
        assert outcome.result.warnings[0] == "POTENTIAL DUPLICATE: Found 1 high-confidence match(es):"
        assert outcome.result.warnings[1].startswith("  1. Acme - HIGH confidence")

    async def test_high_confidence_lines_use_match_summary(
        self, remote: FakeRemoteService, cache_manager: MetadataCacheManager
    ) -> None:
        found = match("Acme Corp", MatchConfidence.HIGH, 0.97)
        matcher = AsyncMock(spec=SmartMatcher)
        matcher.find_duplicates.return_value = [found]
        orchestrator = with_matcher(matcher, remote, cache_manager)

        result = await orchestrator.execute_single_operation(RecordOperation.from_payload(create_account()))

        assert result.warnings == [
            "POTENTIAL DUPLICATE: Found 1 high-confidence match(es):",
            f"  1. Acme Corp - {get_match_summary(found)}",
        ]

    async def test_medium_confidence(
        self, remote: FakeRemoteService, cache_manager: MetadataCacheManager
    ) -> None:
        matcher = AsyncMock(spec=SmartMatcher)
        matcher.find_duplicates.return_value = [match("Acme Holdings", MatchConfidence.MEDIUM, 0.8)]
        orchestrator = with_matcher(matcher, remote, cache_manager)

        result = await orchestrator.execute_single_operation(RecordOperation.from_payload(create_account()))

        assert result.success is True
        assert result.warnings == ["Possible duplicates: Found 1 medium-confidence match(es)"]
        config = matcher.find_duplicates.call_args.args[1]
        assert config.min_confidence == MatchConfidence.MEDIUM
        assert config.return_fields[:2] == ["Id", "Name"]

    async def test_matcher_failure_tolerated(
        self, remote: FakeRemoteService, cache_manager: MetadataCacheManager
    ) -> None:
        matcher = AsyncMock(spec=SmartMatcher)
        matcher.find_duplicates.side_effect = RemoteServiceError("search unavailable", status_code=503)
        orchestrator = with_matcher(matcher, remote, cache_manager)

        result = await orchestrator.execute_single_operation(RecordOperation.from_payload(create_account()))

        assert result.success is True
        assert result.warnings == []

    async def test_no_check_for_updates(self, remote: FakeRemoteService, cache_manager: MetadataCacheManager) -> None:
        matcher = AsyncMock(spec=SmartMatcher)
        orchestrator = with_matcher(matcher, remote, cache_manager)

        await orchestrator.execute_single_operation(
            RecordOperation(type="update", sobject="Account", record_id="001000000000001", data={"Name": "Acme"})
        )

        matcher.find_duplicates.assert_not_called()

    async def test_missing_field_skips_search(
        self, remote: FakeRemoteService, cache_manager: MetadataCacheManager
    ) -> None:
        matcher = AsyncMock(spec=SmartMatcher)
        orchestrator = with_matcher(matcher, remote, cache_manager)

        assert await orchestrator.check_duplicates("Contact", {"LastName": "Doe"}) == []
        matcher.find_duplicates.assert_not_called()


# -- Multi path ----------------------------------------------------------------


class TestMultiOperation:
    async def test_summary_with_cycle(self, orchestrator: OperationOrchestrator) -> None:
        outcome = await orchestrator.execute(
            [
                {
                    "type": "create",
                    "sobject": "Account",
                    "tempId": "@acc",
                    "data": {"Name": "Acme", "Primary_Contact__c": "@con"},
                },
                {
                    "type": "create",
                    "sobject": "Contact",
                    "tempId": "@con",
                    "data": {"LastName": "Doe", "AccountId": "@acc"},
                },
            ]
        )
        result = outcome.result

        assert result.success is True
        assert result.total_operations == 2
        assert result.successful_operations == 2
        assert result.failed_operations == 0
        assert [(r.temp_id, r.sobject) for r in result.created_records] == [("@acc", "Account"), ("@con", "Contact")]
        assert result.warnings == ["op_0.Primary_Contact__c set by follow-up update (circular reference to @con)"]
        assert len(result.execution_plan) == 2

    async def test_partial_failure_counts(
        self, orchestrator: OperationOrchestrator, remote: FakeRemoteService
    ) -> None:
        remote.rejected_names = {"Globex": "Name is reserved"}

        outcome = await orchestrator.execute([create_account("Acme"), create_account("Globex")])
        result = outcome.result

        assert result.success is False
        assert (result.successful_operations, result.failed_operations) == (1, 1)
        assert result.errors == ["Name is reserved"]
        assert len(result.created_records) == 1

    async def test_unbreakable_cycle_reported(
        self, orchestrator: OperationOrchestrator, remote: FakeRemoteService
    ) -> None:
        outcome = await orchestrator.execute(
            [
                {"type": "create", "sobject": "Invoice__c", "tempId": "@inv", "data": {"Payment__c": "@pay"}},
                {"type": "create", "sobject": "Payment__c", "tempId": "@pay", "data": {"Invoice__c": "@inv"}},
            ]
        )

        assert outcome.result.success is False
        assert outcome.result.errors[0].startswith("Circular dependency cannot be broken")
        assert remote.calls == []

    async def test_sync_failure_propagates(self, orchestrator: OperationOrchestrator) -> None:
        with pytest.raises(MetadataSyncError):
            await orchestrator.execute([create_account(), {"type": "create", "sobject": "Nope__c", "data": {}}])

    async def test_metadata_left_to_resolver(self, remote: FakeRemoteService) -> None:
        resolver = AsyncMock(spec=DependencyResolver)
        resolver.execute_with_dependencies.return_value = ExecutionResult()
        orchestrator, cache_manager = with_resolver(resolver, remote)
        operations = [RecordOperation.from_payload(create_account(name)) for name in ("Acme", "Globex")]

        result = await orchestrator.execute_multiple_operations(operations)

        resolver.execute_with_dependencies.assert_awaited_once_with(operations)
        assert cache_manager.method_calls == []
        assert result.success is True
        assert result.total_operations == 2

    async def test_request_id_bound_for_the_call(self, remote: FakeRemoteService) -> None:
        seen: dict = {}

        async def run(operations):
            seen.update(structlog.contextvars.get_contextvars())
            return ExecutionResult()

        resolver = AsyncMock(spec=DependencyResolver)
        resolver.execute_with_dependencies.side_effect = run
        orchestrator, _ = with_resolver(resolver, remote)

        await orchestrator.execute([create_account("Acme"), create_account("Globex")])

        assert len(seen["request_id"]) == 36
        assert "request_id" not in structlog.contextvars.get_contextvars()


# -- Cache pass-throughs -------------------------------------------------------


class TestCacheOperations:
    async def test_initialize_and_stats(
        self, orchestrator: OperationOrchestrator, remote: FakeRemoteService
    ) -> None:
        await orchestrator.initialize()

        stats = await orchestrator.get_cache_stats()
        assert stats.total_objects == 2
        assert stats.core_objects_cached == 2
        assert remote.describe_calls == ["Account", "Contact"]

    async def test_refresh_and_clear(self, orchestrator: OperationOrchestrator, remote: FakeRemoteService) -> None:
        result = await orchestrator.refresh_metadata(["Invoice__c"])
        assert result.objects_synced == 1

        await orchestrator.clear_cache()
        assert (await orchestrator.get_cache_stats()).total_objects == 0
