"""Metadata store -- async read/write access to cached CRM metadata.

Provides MetadataStore with the session_factory callable pattern. Handles
serialization between the Pydantic metadata schemas and SQLAlchemy models
for sobjects, fields, validation rules, and relationships.

All writes are upserts keyed on the natural key (sobject name, sobject +
field name, sobject + rule name, from-sobject + field name); concurrent
syncs of the same entity resolve as last-writer-wins.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.crmguard.metadata.models import (
    FieldModel,
    RelationshipModel,
    SObjectModel,
    ValidationRuleModel,
)
from src.crmguard.metadata.schemas import (
    FieldMetadata,
    FieldType,
    PicklistValue,
    RelationshipMetadata,
    RelationshipType,
    SObjectMetadata,
    StoreStats,
    ValidationRuleMetadata,
)

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_sobject(model: SObjectModel) -> SObjectMetadata:
    """Convert SObjectModel to SObjectMetadata schema."""
    return SObjectMetadata(
        name=model.name,
        label=model.label,
        label_plural=model.label_plural,
        key_prefix=model.key_prefix,
        is_custom=model.is_custom,
        is_queryable=model.is_queryable,
        is_createable=model.is_createable,
        is_updateable=model.is_updateable,
        is_deletable=model.is_deletable,
        is_searchable=model.is_searchable,
        synced_at=_as_utc(model.synced_at),
    )


def _model_to_field(model: FieldModel, sobject_name: str) -> FieldMetadata:
    """Convert FieldModel to FieldMetadata schema."""
    return FieldMetadata(
        sobject=sobject_name,
        name=model.name,
        label=model.label,
        type=FieldType(model.type),
        length=model.length,
        precision=model.precision,
        scale=model.scale,
        is_nillable=model.is_nillable,
        is_unique=model.is_unique,
        is_external_id=model.is_external_id,
        is_auto_number=model.is_auto_number,
        is_calculated=model.is_calculated,
        default_value=model.default_value,
        picklist_values=[PicklistValue.model_validate(v) for v in model.picklist_values or []],
        reference_to=list(model.reference_to or []),
        relationship_name=model.relationship_name,
        help_text=model.help_text,
    )


def _model_to_relationship(model: RelationshipModel, from_sobject: str) -> RelationshipMetadata:
    """Convert RelationshipModel to RelationshipMetadata schema."""
    return RelationshipMetadata(
        from_sobject=from_sobject,
        to_sobject=model.to_sobject,
        field_name=model.field_name,
        relationship_name=model.relationship_name,
        relationship_type=RelationshipType(model.relationship_type),
        is_cascade_delete=model.is_cascade_delete,
        is_restricted_delete=model.is_restricted_delete,
        is_required=model.is_required,
    )


def _model_to_validation_rule(model: ValidationRuleModel, sobject_name: str) -> ValidationRuleMetadata:
    """Convert ValidationRuleModel to ValidationRuleMetadata schema."""
    return ValidationRuleMetadata(
        sobject=sobject_name,
        name=model.name,
        active=model.active,
        error_message=model.error_message,
        error_display_field=model.error_display_field,
        description=model.description,
    )


def _apply_field(model: FieldModel, field: FieldMetadata) -> None:
    model.label = field.label
    model.type = field.type.value
    model.length = field.length
    model.precision = field.precision
    model.scale = field.scale
    model.is_nillable = field.is_nillable
    model.is_unique = field.is_unique
    model.is_external_id = field.is_external_id
    model.is_auto_number = field.is_auto_number
    model.is_calculated = field.is_calculated
    model.default_value = field.default_value
    model.picklist_values = (
        [v.model_dump(mode="json") for v in field.picklist_values] if field.picklist_values else None
    )
    model.reference_to = list(field.reference_to) or None
    model.relationship_name = field.relationship_name
    model.help_text = field.help_text


class MetadataStore:
    """Async metadata store for sobject, field, relationship, and rule records.

    Uses the session_factory callable pattern so tests can run against an
    isolated in-memory database.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
        clock: Returns the current time; used for synced_at stamps and
            staleness checks.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def _get_sobject_model(self, session: AsyncSession, name: str) -> SObjectModel | None:
        result = await session.execute(select(SObjectModel).where(SObjectModel.name == name))
        return result.scalar_one_or_none()

    async def _require_sobject_model(self, session: AsyncSession, name: str) -> SObjectModel:
        model = await self._get_sobject_model(session, name)
        if model is None:
            raise LookupError(f"SObject '{name}' is not in the metadata store")
        return model

    # ── SObjects ────────────────────────────────────────────────────────────

    async def upsert_sobject(self, sobject: SObjectMetadata) -> SObjectMetadata:
        """Insert or update an sobject by name and stamp it as synced now.

        Returns:
            The stored SObjectMetadata with its new synced_at.
        """
        async for session in self._session_factory():
            model = await self._get_sobject_model(session, sobject.name)
            if model is None:
                model = SObjectModel(name=sobject.name)
                session.add(model)
            model.label = sobject.label
            model.label_plural = sobject.label_plural or sobject.label
            model.key_prefix = sobject.key_prefix
            model.is_custom = sobject.is_custom
            model.is_queryable = sobject.is_queryable
            model.is_createable = sobject.is_createable
            model.is_updateable = sobject.is_updateable
            model.is_deletable = sobject.is_deletable
            model.is_searchable = sobject.is_searchable
            model.synced_at = self._clock()
            await session.commit()
            await session.refresh(model)
            return _model_to_sobject(model)

    async def get_sobject(self, name: str) -> SObjectMetadata | None:
        async for session in self._session_factory():
            model = await self._get_sobject_model(session, name)
            if model is None:
                return None
            return _model_to_sobject(model)

    async def get_sobjects(self, names: list[str]) -> list[SObjectMetadata]:
        if not names:
            return []
        async for session in self._session_factory():
            result = await session.execute(select(SObjectModel).where(SObjectModel.name.in_(names)))
            return [_model_to_sobject(m) for m in result.scalars().all()]

    async def is_metadata_stale(self, name: str, ttl: timedelta) -> bool:
        """Return True if the sobject is absent, never synced, or older than ttl."""
        sobject = await self.get_sobject(name)
        if sobject is None or sobject.synced_at is None:
            return True
        return self._clock() - sobject.synced_at > ttl

    async def get_metadata_age(self, name: str) -> timedelta | None:
        """Time since the sobject was last synced, or None if never synced."""
        sobject = await self.get_sobject(name)
        if sobject is None or sobject.synced_at is None:
            return None
        return self._clock() - sobject.synced_at

    # ── Fields ──────────────────────────────────────────────────────────────

    async def upsert_fields(self, sobject_name: str, fields: list[FieldMetadata]) -> int:
        """Insert or update fields of one sobject by (sobject, name).

        Raises:
            LookupError: If the sobject has not been upserted first.

        Returns:
            Number of fields written.
        """
        async for session in self._session_factory():
            sobject = await self._require_sobject_model(session, sobject_name)
            result = await session.execute(select(FieldModel).where(FieldModel.sobject_id == sobject.id))
            existing = {m.name: m for m in result.scalars().all()}
            for field in fields:
                model = existing.get(field.name)
                if model is None:
                    model = FieldModel(sobject_id=sobject.id, name=field.name)
                    session.add(model)
                    existing[field.name] = model
                _apply_field(model, field)
            await session.commit()
            return len(fields)

    async def upsert_field(self, field: FieldMetadata) -> None:
        await self.upsert_fields(field.sobject, [field])

    async def get_fields(self, sobject_name: str) -> list[FieldMetadata]:
        async for session in self._session_factory():
            stmt = (
                select(FieldModel)
                .join(SObjectModel, FieldModel.sobject_id == SObjectModel.id)
                .where(SObjectModel.name == sobject_name)
                .order_by(FieldModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_field(m, sobject_name) for m in result.scalars().all()]

    async def get_field(self, sobject_name: str, field_name: str) -> FieldMetadata | None:
        async for session in self._session_factory():
            stmt = (
                select(FieldModel)
                .join(SObjectModel, FieldModel.sobject_id == SObjectModel.id)
                .where(SObjectModel.name == sobject_name, FieldModel.name == field_name)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_field(model, sobject_name)

    async def get_required_fields(self, sobject_name: str) -> list[FieldMetadata]:
        """Fields declared not-nillable (before any exclusion rules)."""
        async for session in self._session_factory():
            stmt = (
                select(FieldModel)
                .join(SObjectModel, FieldModel.sobject_id == SObjectModel.id)
                .where(SObjectModel.name == sobject_name, FieldModel.is_nillable.is_(False))
                .order_by(FieldModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_field(m, sobject_name) for m in result.scalars().all()]

    # ── Validation Rules ────────────────────────────────────────────────────

    async def upsert_validation_rule(self, rule: ValidationRuleMetadata) -> None:
        async for session in self._session_factory():
            sobject = await self._require_sobject_model(session, rule.sobject)
            stmt = select(ValidationRuleModel).where(
                ValidationRuleModel.sobject_id == sobject.id,
                ValidationRuleModel.name == rule.name,
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            if model is None:
                model = ValidationRuleModel(sobject_id=sobject.id, name=rule.name)
                session.add(model)
            model.active = rule.active
            model.error_message = rule.error_message
            model.error_display_field = rule.error_display_field
            model.description = rule.description
            await session.commit()

    async def get_validation_rules(self, sobject_name: str) -> list[ValidationRuleMetadata]:
        """Active validation rules for an sobject."""
        async for session in self._session_factory():
            stmt = (
                select(ValidationRuleModel)
                .join(SObjectModel, ValidationRuleModel.sobject_id == SObjectModel.id)
                .where(SObjectModel.name == sobject_name, ValidationRuleModel.active.is_(True))
                .order_by(ValidationRuleModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_validation_rule(m, sobject_name) for m in result.scalars().all()]

    # ── Relationships ───────────────────────────────────────────────────────

    async def upsert_relationship(self, relationship: RelationshipMetadata) -> None:
        async for session in self._session_factory():
            sobject = await self._require_sobject_model(session, relationship.from_sobject)
            stmt = select(RelationshipModel).where(
                RelationshipModel.from_sobject_id == sobject.id,
                RelationshipModel.field_name == relationship.field_name,
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            if model is None:
                model = RelationshipModel(from_sobject_id=sobject.id, field_name=relationship.field_name)
                session.add(model)
            model.to_sobject = relationship.to_sobject
            model.relationship_name = relationship.relationship_name
            model.relationship_type = relationship.relationship_type.value
            model.is_cascade_delete = relationship.is_cascade_delete
            model.is_restricted_delete = relationship.is_restricted_delete
            model.is_required = relationship.is_required
            await session.commit()

    async def get_relationships(self, sobject_name: str) -> list[RelationshipMetadata]:
        """Outbound relationship edges of an sobject."""
        async for session in self._session_factory():
            stmt = (
                select(RelationshipModel)
                .join(SObjectModel, RelationshipModel.from_sobject_id == SObjectModel.id)
                .where(SObjectModel.name == sobject_name)
                .order_by(RelationshipModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_relationship(m, sobject_name) for m in result.scalars().all()]

    # ── Maintenance ─────────────────────────────────────────────────────────

    async def get_stats(self) -> StoreStats:
        async for session in self._session_factory():
            counts = {}
            for key, model in (
                ("sobjects", SObjectModel),
                ("fields", FieldModel),
                ("validation_rules", ValidationRuleModel),
                ("relationships", RelationshipModel),
            ):
                counts[key] = (await session.execute(select(func.count()).select_from(model))).scalar_one()
            return StoreStats(**counts)

    async def clear_metadata(self) -> None:
        """Delete every cached metadata row."""
        async for session in self._session_factory():
            for model in (RelationshipModel, ValidationRuleModel, FieldModel, SObjectModel):
                await session.execute(delete(model))
            await session.commit()
            logger.info("metadata.store_cleared")
