"""Tests for dependency graph analysis and DependencyResolver execution.

Batches run against FakeRemoteService with real metadata synced into a
throwaway store, so break-point choices see real relationship
requiredness. Covers linear chains, fan-out, independent batches,
breakable and unbreakable cycles, self references, unresolved
references, failure isolation in parallel batches, the abort in serialized
batches, and duplicate temp ids.
"""

from __future__ import annotations

from typing import Any

import pytest

from src.crmguard.core.errors import MetadataSyncError, UnresolvedReferenceError
from src.crmguard.metadata.cache import MetadataCacheManager
from src.crmguard.metadata.store import MetadataStore
from src.crmguard.operations.graph import DependencyEdge, assign_levels, build_graph, find_cycle
from src.crmguard.operations.resolver import DependencyResolver, resolve_references
from src.crmguard.operations.schemas import (
    ExecutionPhase,
    OperationType,
    RecordOperation,
    Reference,
)
from tests.fakes import FakeRemoteService


# -- Test Helpers --------------------------------------------------------------


def op(type: str, sobject: str, data: dict[str, Any], temp_id: str | None = None, record_id: str | None = None) -> RecordOperation:
    """Build an operation the way callers send it, "@x" strings and all."""
    payload: dict[str, Any] = {"type": type, "sobject": sobject, "data": data}
    if temp_id:
        payload["tempId"] = temp_id
    if record_id:
        payload["recordId"] = record_id
    return RecordOperation.from_payload(payload)


@pytest.fixture
def resolver(
    remote: FakeRemoteService, store: MetadataStore, cache_manager: MetadataCacheManager
) -> DependencyResolver:
    return DependencyResolver(remote, store, cache_manager)


# -- Graph ---------------------------------------------------------------------


class TestGraph:
    def test_edges_follow_references(self) -> None:
        graph = build_graph(
            [
                op("create", "Account", {"Name": "Acme"}, "@acc"),
                op("create", "Contact", {"LastName": "Doe", "AccountId": "@acc"}, "@con"),
            ]
        )

        assert graph.edges == [DependencyEdge(source="op_0", target="op_1", field="AccountId")]
        assert graph.nodes["op_1"].dependencies == ["op_0"]
        assert graph.nodes["op_0"].dependents == ["op_1"]
        assert graph.node_for_temp_id("@con").id == "op_1"

    def test_reference_outside_batch_has_no_edge(self) -> None:
        graph = build_graph([op("create", "Contact", {"LastName": "Doe", "AccountId": "@ghost"})])
        assert graph.edges == []

    def test_acyclic_graph(self) -> None:
        graph = build_graph(
            [
                op("create", "Account", {"Name": "Acme"}, "@acc"),
                op("create", "Contact", {"LastName": "Doe", "AccountId": "@acc"}),
            ]
        )
        assert find_cycle(graph) is None

    def test_two_node_cycle(self) -> None:
        graph = build_graph(
            [
                op("create", "Account", {"Name": "Acme", "Primary_Contact__c": "@con"}, "@acc"),
                op("create", "Contact", {"LastName": "Doe", "AccountId": "@acc"}, "@con"),
            ]
        )

        cycle = find_cycle(graph)

        assert cycle == [
            DependencyEdge(source="op_1", target="op_0", field="Primary_Contact__c"),
            DependencyEdge(source="op_0", target="op_1", field="AccountId"),
        ]
        assert find_cycle(graph, excluded={cycle[0]}) is None

    def test_self_reference_is_a_cycle(self) -> None:
        graph = build_graph([op("create", "Account", {"Name": "Acme", "ParentId": "@acc"}, "@acc")])
        assert find_cycle(graph) == [DependencyEdge(source="op_0", target="op_0", field="ParentId")]

    def test_levels_are_longest_path(self) -> None:
        graph = build_graph(
            [
                op("create", "Account", {"Name": "Parent"}, "@parent"),
                op("create", "Account", {"Name": "Child", "ParentId": "@parent"}, "@child"),
                op("create", "Contact", {"LastName": "Doe", "AccountId": "@child", "ReportsToId": "@boss"}),
                op("create", "Contact", {"LastName": "Boss", "AccountId": "@parent"}, "@boss"),
            ]
        )

        assign_levels(graph)

        assert [graph.nodes[f"op_{i}"].level for i in range(4)] == [0, 1, 2, 1]


# -- Reference substitution ----------------------------------------------------


class TestResolveReferences:
    def test_substitutes_real_ids(self) -> None:
        data = {"LastName": "Doe", "AccountId": Reference("@acc")}
        assert resolve_references(data, {"@acc": "001000000000001"}) == {
            "LastName": "Doe",
            "AccountId": "001000000000001",
        }

    def test_skipped_fields_omitted(self) -> None:
        data = {"Name": "Acme", "Primary_Contact__c": Reference("@con")}
        assert resolve_references(data, {}, skip={"Primary_Contact__c"}) == {"Name": "Acme"}

    def test_unresolved_raises(self) -> None:
        with pytest.raises(UnresolvedReferenceError) as exc_info:
            resolve_references({"AccountId": Reference("@acc")}, {})

        assert exc_info.value.message == "Cannot resolve reference @acc in AccountId"

    def test_literal_at_strings_untouched(self) -> None:
        operation = op("create", "Contact", {"LastName": "Doe", "Email": "doe@example.com", "Twitter__c": "@"})
        assert operation.references() == []


# -- Execution -----------------------------------------------------------------


class TestExecuteWithDependencies:
    async def test_linear_chain(self, resolver: DependencyResolver, remote: FakeRemoteService) -> None:
        result = await resolver.execute_with_dependencies(
            [
                op("create", "Account", {"Name": "Acme"}, "@acc"),
                op("create", "Contact", {"LastName": "Doe", "AccountId": "@acc"}, "@con"),
            ]
        )

        assert result.success is True
        assert [b.node_ids for b in result.execution_plan] == [["op_0"], ["op_1"]]
        account_id = result.operations[0].id
        [(_, _, _, contact_data)] = remote.created("Contact")
        assert contact_data == {"LastName": "Doe", "AccountId": account_id}
        assert [o.temp_id for o in result.operations] == ["@acc", "@con"]

    async def test_fan_out_runs_dependents_in_parallel(
        self, resolver: DependencyResolver, remote: FakeRemoteService
    ) -> None:
        result = await resolver.execute_with_dependencies(
            [
                op("create", "Account", {"Name": "Acme"}, "@acc"),
                op("create", "Contact", {"LastName": "One", "AccountId": "@acc"}),
                op("create", "Contact", {"LastName": "Two", "AccountId": "@acc"}),
                op("create", "Contact", {"LastName": "Three", "AccountId": "@acc"}),
            ]
        )

        assert result.success is True
        assert len(result.execution_plan) == 2
        second = result.execution_plan[1]
        assert second.node_ids == ["op_1", "op_2", "op_3"]
        assert second.can_parallelize is True
        account_id = result.operations[0].id
        assert {c[3]["AccountId"] for c in remote.created("Contact")} == {account_id}

    async def test_independent_operations_share_one_batch(self, resolver: DependencyResolver) -> None:
        result = await resolver.execute_with_dependencies(
            [op("create", "Account", {"Name": "Acme"}), op("create", "Account", {"Name": "Globex"})]
        )

        assert result.success is True
        assert len(result.execution_plan) == 1
        assert result.execution_plan[0].can_parallelize is True
        assert all(o.success for o in result.operations)

    async def test_update_and_delete_dispatch(self, resolver: DependencyResolver, remote: FakeRemoteService) -> None:
        result = await resolver.execute_with_dependencies(
            [
                op("create", "Contact", {"LastName": "Doe"}, "@con"),
                op("update", "Account", {"Primary_Contact__c": "@con"}, record_id="001000000000099"),
                op("delete", "Contact", {}, record_id="003000000000099"),
            ]
        )

        assert result.success is True
        assert [b.node_ids for b in result.execution_plan] == [["op_0", "op_2"], ["op_1"]]
        contact_id = next(o.id for o in result.operations if o.temp_id == "@con")
        assert ("update", "Account", "001000000000099", {"Primary_Contact__c": contact_id}) in remote.calls
        assert ("delete", "Contact", "003000000000099", {}) in remote.calls

    async def test_breakable_cycle_uses_follow_up_update(
        self, resolver: DependencyResolver, remote: FakeRemoteService
    ) -> None:
        result = await resolver.execute_with_dependencies(
            [
                op("create", "Account", {"Name": "Acme", "Primary_Contact__c": "@con"}, "@acc"),
                op("create", "Contact", {"LastName": "Doe", "AccountId": "@acc"}, "@con"),
            ]
        )

        assert result.success is True
        [break_point] = result.execution_plan[0].break_points
        assert (break_point.node_id, break_point.field, break_point.references) == (
            "op_0",
            "Primary_Contact__c",
            "@con",
        )

        [(_, _, _, account_data)] = remote.created("Account")
        assert account_data == {"Name": "Acme"}
        account_id = result.operations[0].id
        contact_id = result.operations[1].id
        assert remote.calls[-1] == ("update", "Account", account_id, {"Primary_Contact__c": contact_id})

        deferred = [o for o in result.operations if o.deferred]
        assert len(deferred) == 1
        assert deferred[0].type == OperationType.UPDATE
        assert deferred[0].success is True

    async def test_self_reference_updated_after_create(
        self, resolver: DependencyResolver, remote: FakeRemoteService
    ) -> None:
        result = await resolver.execute_with_dependencies(
            [op("create", "Account", {"Name": "Acme", "ParentId": "@acc"}, "@acc")]
        )

        assert result.success is True
        account_id = result.operations[0].id
        assert remote.calls == [
            ("create", "Account", None, {"Name": "Acme"}),
            ("update", "Account", account_id, {"ParentId": account_id}),
        ]

    async def test_unbreakable_cycle_executes_nothing(
        self, resolver: DependencyResolver, remote: FakeRemoteService
    ) -> None:
        result = await resolver.execute_with_dependencies(
            [
                op("create", "Invoice__c", {"Name": "INV-1", "Payment__c": "@pay"}, "@inv"),
                op("create", "Payment__c", {"Name": "PAY-1", "Invoice__c": "@inv"}, "@pay"),
            ]
        )

        assert result.success is False
        assert result.operations == []
        assert result.execution_plan == []
        [error] = result.errors
        assert error.phase == ExecutionPhase.ANALYSIS
        assert error.code == "CIRCULAR_DEPENDENCY"
        assert "op_0" in error.message and "op_1" in error.message
        assert remote.calls == []

    async def test_unresolved_reference_fails_only_that_operation(
        self, resolver: DependencyResolver, remote: FakeRemoteService
    ) -> None:
        result = await resolver.execute_with_dependencies(
            [
                op("create", "Account", {"Name": "Acme"}, "@acc"),
                op("create", "Contact", {"LastName": "Doe", "AccountId": "@ghost"}),
            ]
        )

        assert result.success is False
        by_id = {o.operation_id: o for o in result.operations}
        assert by_id["op_0"].success is True
        assert by_id["op_1"].success is False
        assert by_id["op_1"].errors == ["Cannot resolve reference @ghost in AccountId"]
        [error] = result.errors
        assert (error.phase, error.operation_id) == (ExecutionPhase.EXECUTION, "op_1")
        assert remote.created("Contact") == []

    async def test_parallel_failure_does_not_cancel_siblings(
        self, resolver: DependencyResolver, remote: FakeRemoteService
    ) -> None:
        remote.rejected_names = {"Broken": "Industry is required"}
        remote.raising_names = {"Flaky"}

        result = await resolver.execute_with_dependencies(
            [
                op("create", "Account", {"Name": "Acme"}),
                op("create", "Account", {"Name": "Broken"}),
                op("create", "Account", {"Name": "Flaky"}),
                op("create", "Account", {"Name": "Globex"}),
            ]
        )

        assert result.success is False
        assert [o.success for o in result.operations] == [True, False, False, True]
        assert result.operations[1].errors == ["Industry is required"]
        assert "connection reset" in result.operations[2].errors[0]
        assert sorted(e.operation_id for e in result.errors) == ["op_1", "op_2"]

    async def test_failed_dependency_fails_dependents(
        self, resolver: DependencyResolver, remote: FakeRemoteService
    ) -> None:
        remote.rejected_names = {"Broken": "Name is reserved"}

        result = await resolver.execute_with_dependencies(
            [
                op("create", "Account", {"Name": "Broken"}, "@acc"),
                op("create", "Contact", {"LastName": "Doe", "AccountId": "@acc"}),
            ]
        )

        assert result.success is False
        assert [o.success for o in result.operations] == [False, False]
        assert result.operations[1].errors == ["Cannot resolve reference @acc in AccountId"]
        assert remote.created("Contact") == []

    async def test_failed_cycle_member_skips_deferred_update(
        self, resolver: DependencyResolver, remote: FakeRemoteService
    ) -> None:
        remote.rejected_names = {"Doe": "Email is required"}

        result = await resolver.execute_with_dependencies(
            [
                op("create", "Account", {"Name": "Acme", "Primary_Contact__c": "@con"}, "@acc"),
                op("create", "Contact", {"LastName": "Doe", "AccountId": "@acc"}, "@con"),
            ]
        )

        assert result.success is False
        assert [c[0] for c in remote.calls] == ["create", "create"]
        assert result.errors[-1].message.startswith("Deferred update of op_0.Primary_Contact__c skipped")

    async def test_duplicate_temp_id_is_analysis_error(
        self, resolver: DependencyResolver, remote: FakeRemoteService
    ) -> None:
        result = await resolver.execute_with_dependencies(
            [
                op("create", "Account", {"Name": "Acme"}, "@acc"),
                op("create", "Account", {"Name": "Globex"}, "@acc"),
            ]
        )

        assert result.success is False
        [error] = result.errors
        assert error.phase == ExecutionPhase.ANALYSIS
        assert error.code == "VALIDATION_ERROR"
        assert remote.calls == []

    async def test_metadata_sync_failure_propagates(self, resolver: DependencyResolver) -> None:
        with pytest.raises(MetadataSyncError):
            await resolver.execute_with_dependencies([op("create", "Nope__c", {"Name": "x"})])

    async def test_plan_does_not_touch_remote_writes(
        self, resolver: DependencyResolver, remote: FakeRemoteService, synced_store: MetadataStore
    ) -> None:
        batches, graph = await resolver.plan(
            [
                op("create", "Account", {"Name": "Acme"}, "@acc"),
                op("create", "Contact", {"LastName": "Doe", "AccountId": "@acc"}),
            ]
        )

        assert [b.level for b in batches] == [0, 1]
        assert set(graph.nodes) == {"op_0", "op_1"}
        assert remote.calls == []

    async def test_serialized_batch_stops_at_first_failure(
        self, resolver: DependencyResolver, remote: FakeRemoteService, synced_store: MetadataStore
    ) -> None:
        remote.rejected_names = {"Broken": "Name is reserved"}
        batches, graph = await resolver.plan(
            [
                op("create", "Account", {"Name": "Acme"}),
                op("create", "Account", {"Name": "Broken"}),
                op("create", "Account", {"Name": "Globex"}),
            ]
        )
        [batch] = batches
        assert batch.can_parallelize is True

        result = await resolver.execute_plan([batch.model_copy(update={"can_parallelize": False})], graph)

        assert result.success is False
        assert [o.success for o in result.operations] == [True, False]
        assert [c[3]["Name"] for c in remote.created("Account")] == ["Acme", "Broken"]
        assert sorted((e.operation_id, e.message) for e in result.errors) == [
            ("op_1", "Name is reserved"),
            ("op_2", "Skipped after op_1 failed in the same batch"),
        ]

    async def test_execute_plan_runs_parallel_batch(
        self, resolver: DependencyResolver, remote: FakeRemoteService, synced_store: MetadataStore
    ) -> None:
        batches, graph = await resolver.plan(
            [op("create", "Account", {"Name": "Acme"}), op("create", "Account", {"Name": "Globex"})]
        )

        result = await resolver.execute_plan(batches, graph)

        assert result.success is True
        assert result.execution_plan == batches
        assert len(remote.created("Account")) == 2
