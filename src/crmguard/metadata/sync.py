"""Metadata sync -- pulls describe() results from the remote CRM into the store.

For each requested entity:
1. describe() it and upsert the sobject row (stamping synced_at)
2. upsert every field
3. upsert one relationship per reference field (required = not nillable)

Then one Tooling API query fetches active validation rules for the synced
entities. Validation rules are advisory, so a failure there is logged and
counted as zero rules rather than failing the sync.

Per-object failures are collected into SyncResult.errors; the caller (the
cache manager) decides whether that is fatal.
"""

from __future__ import annotations

import time
from typing import Any

import structlog

from src.crmguard.metadata.schemas import (
    FieldMetadata,
    FieldType,
    PicklistValue,
    RelationshipMetadata,
    RelationshipType,
    SObjectMetadata,
    SyncResult,
    ValidationRuleMetadata,
)
from src.crmguard.metadata.store import MetadataStore
from src.crmguard.remote.service import RemoteDataService

logger = structlog.get_logger(__name__)

VALIDATION_RULE_QUERY = (
    "SELECT Id, EntityDefinitionId, ValidationName, Active, Description, "
    "ErrorMessage, ErrorDisplayField FROM ValidationRule WHERE Active = true LIMIT 200"
)
ENTITY_DEFINITION_PREFIX = "01I"


# ── Describe conversion ─────────────────────────────────────────────────────


def sobject_from_describe(describe: dict[str, Any]) -> SObjectMetadata:
    """Convert a describe() payload to SObjectMetadata."""
    return SObjectMetadata(
        name=describe["name"],
        label=describe.get("label") or describe["name"],
        label_plural=describe.get("labelPlural"),
        key_prefix=describe.get("keyPrefix"),
        is_custom=bool(describe.get("custom")),
        is_queryable=bool(describe.get("queryable", True)),
        is_createable=bool(describe.get("createable")),
        is_updateable=bool(describe.get("updateable")),
        is_deletable=bool(describe.get("deletable")),
        is_searchable=bool(describe.get("searchable")),
    )


def field_from_describe(sobject_name: str, field: dict[str, Any]) -> FieldMetadata:
    """Convert one describe() field entry to FieldMetadata.

    Defaults are stringified; a describe default of False for a checkbox
    is kept as "False" so the field counts as auto-defaulted.
    """
    default = field.get("defaultValue")
    picklist = [
        PicklistValue(
            label=entry.get("label"),
            value=entry["value"],
            active=entry.get("active", True),
            default_value=entry.get("defaultValue", False),
        )
        for entry in field.get("picklistValues") or []
        if entry.get("value") is not None
    ]
    return FieldMetadata(
        sobject=sobject_name,
        name=field["name"],
        label=field.get("label") or field["name"],
        type=FieldType(field.get("type") or "other"),
        length=field.get("length") or None,
        precision=field.get("precision") or None,
        scale=field.get("scale") if field.get("precision") else None,
        is_nillable=bool(field.get("nillable", True)),
        is_unique=bool(field.get("unique")),
        is_external_id=bool(field.get("externalId")),
        is_auto_number=bool(field.get("autoNumber")),
        is_calculated=bool(field.get("calculated")),
        default_value=str(default) if default is not None else None,
        picklist_values=picklist,
        reference_to=list(field.get("referenceTo") or []),
        relationship_name=field.get("relationshipName"),
        help_text=field.get("inlineHelpText"),
    )


def relationship_from_describe(sobject_name: str, field: dict[str, Any]) -> RelationshipMetadata | None:
    """Build the outbound relationship carried by a reference field, if any.

    Polymorphic fields (several targets) are recorded against their first
    target, since relationships are unique per (sobject, field).
    """
    targets = field.get("referenceTo") or []
    if not targets:
        return None
    if field.get("cascadeDelete"):
        kind = RelationshipType.MASTER_DETAIL
    elif any(target.endswith("__x") for target in targets):
        kind = RelationshipType.EXTERNAL_LOOKUP
    else:
        kind = RelationshipType.LOOKUP
    return RelationshipMetadata(
        from_sobject=sobject_name,
        to_sobject=targets[0],
        field_name=field["name"],
        relationship_name=field.get("relationshipName") or field["name"],
        relationship_type=kind,
        is_cascade_delete=bool(field.get("cascadeDelete")),
        is_restricted_delete=bool(field.get("restrictedDelete")),
        is_required=not field.get("nillable", True),
    )


class MetadataSyncService:
    """Fetches entity metadata from the remote CRM and writes it to the store.

    Args:
        service: Remote data service used for describe() and Tooling queries.
        store: Metadata store receiving the upserts.
    """

    def __init__(self, service: RemoteDataService, store: MetadataStore) -> None:
        self._service = service
        self._store = store

    async def sync_objects(self, names: list[str]) -> SyncResult:
        """Sync each named entity, then its active validation rules.

        Args:
            names: Entity API names to sync.

        Returns:
            SyncResult with per-kind counts and any per-object errors.
            ``success`` is False if any object failed.
        """
        started = time.monotonic()
        result = SyncResult()
        synced: list[str] = []

        for name in names:
            try:
                fields, relationships = await self.sync_object(name)
            except Exception as exc:
                message = f"Failed to sync {name}: {exc}"
                result.errors.append(message)
                logger.error("metadata.sync_object_failed", sobject=name, error=str(exc))
                continue
            result.objects_synced += 1
            result.fields_synced += fields
            result.relationships_synced += relationships
            synced.append(name)

        if synced:
            result.validation_rules_synced = await self.sync_validation_rules(synced)

        result.success = not result.errors
        result.duration = time.monotonic() - started
        logger.info(
            "metadata.sync_complete",
            objects=result.objects_synced,
            fields=result.fields_synced,
            relationships=result.relationships_synced,
            validation_rules=result.validation_rules_synced,
            errors=len(result.errors),
            duration_s=round(result.duration, 3),
        )
        return result

    async def sync_object(self, name: str) -> tuple[int, int]:
        """Describe one entity and upsert it with its fields and relationships.

        Returns:
            Tuple of (fields written, relationships written).
        """
        describe = await self._service.describe(name)
        sobject = sobject_from_describe(describe)
        await self._store.upsert_sobject(sobject)

        raw_fields = describe.get("fields") or []
        fields = [field_from_describe(sobject.name, f) for f in raw_fields]
        await self._store.upsert_fields(sobject.name, fields)

        relationships = 0
        for raw in raw_fields:
            relationship = relationship_from_describe(sobject.name, raw)
            if relationship is None:
                continue
            await self._store.upsert_relationship(relationship)
            relationships += 1

        logger.debug("metadata.object_synced", sobject=sobject.name, fields=len(fields))
        return len(fields), relationships

    async def sync_validation_rules(self, names: list[str]) -> int:
        """Upsert active validation rules belonging to the given entities.

        Returns:
            Number of rules written; 0 if the Tooling query fails.
        """
        try:
            result = await self._service.query(VALIDATION_RULE_QUERY, tooling=True)
            records = result.get("records") or []

            # Custom objects report a 01I EntityDefinition id; standard
            # objects report their API name directly.
            entity_ids = sorted(
                {
                    r["EntityDefinitionId"]
                    for r in records
                    if (r.get("EntityDefinitionId") or "").startswith(ENTITY_DEFINITION_PREFIX)
                }
            )
            entity_names: dict[str, str] = {}
            if entity_ids:
                quoted = "','".join(entity_ids)
                entities = await self._service.query(
                    f"SELECT Id, QualifiedApiName FROM EntityDefinition WHERE Id IN ('{quoted}')",
                    tooling=True,
                )
                for entity in entities.get("records") or []:
                    entity_names[entity["Id"]] = entity["QualifiedApiName"]

            wanted = set(names)
            count = 0
            for record in records:
                entity = record.get("EntityDefinitionId") or ""
                sobject_name = entity_names.get(entity, entity)
                if sobject_name not in wanted:
                    continue
                await self._store.upsert_validation_rule(
                    ValidationRuleMetadata(
                        sobject=sobject_name,
                        name=record["ValidationName"],
                        active=bool(record.get("Active", True)),
                        error_message=record.get("ErrorMessage") or "",
                        error_display_field=record.get("ErrorDisplayField"),
                        description=record.get("Description"),
                    )
                )
                count += 1
            return count
        except Exception as exc:
            logger.warning("metadata.validation_rule_sync_failed", error=str(exc))
            return 0
