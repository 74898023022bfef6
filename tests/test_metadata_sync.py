"""Tests for MetadataSyncService and the describe() conversion helpers."""

from __future__ import annotations

from src.crmguard.metadata.schemas import FieldType, RelationshipType
from src.crmguard.metadata.store import MetadataStore
from src.crmguard.metadata.sync import (
    MetadataSyncService,
    field_from_describe,
    relationship_from_describe,
    sobject_from_describe,
)
from tests.fakes import FakeRemoteService, account_describe, make_field


# -- Describe conversion -------------------------------------------------------


class TestDescribeConversion:
    def test_sobject(self) -> None:
        sobject = sobject_from_describe(account_describe())

        assert sobject.name == "Account"
        assert sobject.key_prefix == "001"
        assert sobject.is_custom is False
        assert sobject.is_createable is True

    def test_currency_field(self) -> None:
        field = field_from_describe(
            "Account", make_field("AnnualRevenue", "currency", "Annual Revenue", precision=18, scale=2)
        )

        assert field.type == FieldType.CURRENCY
        assert field.precision == 18
        assert field.scale == 2
        assert field.length is None
        assert field.is_required is False

    def test_zero_scale_kept_when_precision_declared(self) -> None:
        field = field_from_describe("Account", make_field("Seats__c", "double", precision=5, scale=0))
        assert field.scale == 0

    def test_picklist_values(self) -> None:
        raw = make_field(
            "Rating",
            "picklist",
            picklistValues=[
                {"value": "Hot", "label": "Hot", "active": True, "defaultValue": True},
                {"value": "Cold", "label": "Cold", "active": False},
                {"label": "broken entry"},
            ],
        )
        field = field_from_describe("Account", raw)

        assert [(v.value, v.active, v.default_value) for v in field.picklist_values] == [
            ("Hot", True, True),
            ("Cold", False, False),
        ]

    def test_boolean_default_is_stringified(self) -> None:
        field = field_from_describe("Account", make_field("IsPartner", "boolean", nillable=False, defaultValue=False))
        assert field.default_value == "False"

    def test_unknown_type_collapses_to_other(self) -> None:
        assert field_from_describe("Account", make_field("Geo", "complexvalue")).type == FieldType.OTHER

    def test_type_lookup_ignores_case(self) -> None:
        assert field_from_describe("Account", make_field("Any", "anytype")).type == FieldType.ANYTYPE

    def test_non_reference_has_no_relationship(self) -> None:
        assert relationship_from_describe("Account", make_field("Name")) is None

    def test_lookup_relationship(self) -> None:
        rel = relationship_from_describe(
            "Contact", make_field("AccountId", "reference", referenceTo=["Account"], relationshipName="Account")
        )

        assert rel.to_sobject == "Account"
        assert rel.relationship_type == RelationshipType.LOOKUP
        assert rel.is_required is False

    def test_master_detail_is_required(self) -> None:
        rel = relationship_from_describe(
            "Payment__c",
            make_field("Invoice__c", "reference", nillable=False, referenceTo=["Invoice__c"], cascadeDelete=True),
        )

        assert rel.relationship_type == RelationshipType.MASTER_DETAIL
        assert rel.is_cascade_delete is True
        assert rel.is_required is True
        assert rel.relationship_name == "Invoice__c"

    def test_polymorphic_uses_first_target(self) -> None:
        rel = relationship_from_describe("Task", make_field("WhoId", "reference", referenceTo=["Contact", "Lead"]))
        assert rel.to_sobject == "Contact"

    def test_external_lookup(self) -> None:
        rel = relationship_from_describe("Order", make_field("Ext__c", "reference", referenceTo=["Legacy__x"]))
        assert rel.relationship_type == RelationshipType.EXTERNAL_LOOKUP


# -- Sync ----------------------------------------------------------------------


class TestSyncObjects:
    async def test_syncs_objects_fields_and_relationships(
        self, sync_service: MetadataSyncService, store: MetadataStore
    ) -> None:
        result = await sync_service.sync_objects(["Account", "Contact"])

        assert result.success is True
        assert result.objects_synced == 2
        assert result.fields_synced == len(account_describe()["fields"]) + 7
        assert result.relationships_synced == 6
        assert result.errors == []

        industry = await store.get_field("Account", "Industry")
        assert industry.type == FieldType.PICKLIST
        assert len(industry.picklist_values) == 12
        rels = {r.field_name: r.to_sobject for r in await store.get_relationships("Contact")}
        assert rels == {"AccountId": "Account", "OwnerId": "User", "ReportsToId": "Contact"}

    async def test_per_object_failure_collected(
        self, sync_service: MetadataSyncService, store: MetadataStore
    ) -> None:
        result = await sync_service.sync_objects(["Account", "Nope__c"])

        assert result.success is False
        assert result.objects_synced == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Failed to sync Nope__c:")
        assert await store.get_sobject("Account") is not None
        assert await store.get_sobject("Nope__c") is None

    async def test_validation_rules_synced(
        self, remote: FakeRemoteService, sync_service: MetadataSyncService, store: MetadataStore
    ) -> None:
        remote.validation_rules = [
            {
                "Id": "03d000000000001",
                "EntityDefinitionId": "Account",
                "ValidationName": "Require_Industry",
                "Active": True,
                "ErrorMessage": "Industry is required",
                "ErrorDisplayField": "Industry",
                "Description": None,
            },
            {
                "Id": "03d000000000002",
                "EntityDefinitionId": "01I000000000001",
                "ValidationName": "Positive_Amount",
                "Active": True,
                "ErrorMessage": "Amount must be positive",
                "ErrorDisplayField": None,
                "Description": "Blocks negative invoices",
            },
            {
                "Id": "03d000000000003",
                "EntityDefinitionId": "Lead",
                "ValidationName": "Lead_Rule",
                "Active": True,
                "ErrorMessage": "Not synced",
            },
        ]
        remote.entity_definitions = [{"Id": "01I000000000001", "QualifiedApiName": "Invoice__c"}]

        result = await sync_service.sync_objects(["Account", "Invoice__c"])

        assert result.validation_rules_synced == 2
        assert [r.name for r in await store.get_validation_rules("Account")] == ["Require_Industry"]
        [invoice_rule] = await store.get_validation_rules("Invoice__c")
        assert invoice_rule.description == "Blocks negative invoices"
        assert any("FROM EntityDefinition WHERE Id IN ('01I000000000001')" in q for q in remote.queries)

    async def test_standard_objects_skip_entity_lookup(
        self, remote: FakeRemoteService, sync_service: MetadataSyncService
    ) -> None:
        remote.validation_rules = [
            {"EntityDefinitionId": "Account", "ValidationName": "R1", "Active": True, "ErrorMessage": "x"}
        ]

        await sync_service.sync_objects(["Account"])

        assert not any("EntityDefinition WHERE" in q for q in remote.queries)

    async def test_tooling_failure_counts_zero_rules(
        self, remote: FakeRemoteService, sync_service: MetadataSyncService
    ) -> None:
        remote.fail_tooling = True

        result = await sync_service.sync_objects(["Account"])

        assert result.success is True
        assert result.objects_synced == 1
        assert result.validation_rules_synced == 0

    async def test_nothing_synced_skips_rule_query(
        self, remote: FakeRemoteService, sync_service: MetadataSyncService
    ) -> None:
        result = await sync_service.sync_objects(["Nope__c"])

        assert result.success is False
        assert remote.queries == []
