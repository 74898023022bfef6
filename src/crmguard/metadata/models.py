"""Metadata store persistence models.

Four SQLAlchemy models on MetadataBase:
- SObjectModel: One row per remote entity, keyed by unique name
- FieldModel: Field definitions, unique per (sobject, name)
- ValidationRuleModel: Validation rule summaries, unique per (sobject, name)
- RelationshipModel: Outbound reference edges, unique per (from_sobject, field)

Child rows cascade-delete with their sobject. Picklist values and reference
targets are stored as JSON documents.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.crmguard.core.database import MetadataBase


class SObjectModel(MetadataBase):
    """Remote entity type (Account, Contact, ...)."""

    __tablename__ = "sobjects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    label_plural: Mapped[str | None] = mapped_column(String(255), nullable=True)
    key_prefix: Mapped[str | None] = mapped_column(String(3), nullable=True)
    is_custom: Mapped[bool] = mapped_column(Boolean, default=False)
    is_queryable: Mapped[bool] = mapped_column(Boolean, default=True)
    is_createable: Mapped[bool] = mapped_column(Boolean, default=False)
    is_updateable: Mapped[bool] = mapped_column(Boolean, default=False)
    is_deletable: Mapped[bool] = mapped_column(Boolean, default=False)
    is_searchable: Mapped[bool] = mapped_column(Boolean, default=False)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )

    fields: Mapped[list[FieldModel]] = relationship(
        back_populates="sobject", cascade="all, delete-orphan", passive_deletes=True
    )
    validation_rules: Mapped[list[ValidationRuleModel]] = relationship(
        back_populates="sobject", cascade="all, delete-orphan", passive_deletes=True
    )
    relationships: Mapped[list[RelationshipModel]] = relationship(
        back_populates="from_sobject", cascade="all, delete-orphan", passive_deletes=True
    )


class FieldModel(MetadataBase):
    """Field definition belonging to one sobject."""

    __tablename__ = "fields"
    __table_args__ = (
        UniqueConstraint("sobject_id", "name", name="uq_field_sobject_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sobject_id: Mapped[int] = mapped_column(
        ForeignKey("sobjects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    length: Mapped[int | None] = mapped_column(Integer, nullable=True)
    precision: Mapped[int | None] = mapped_column(Integer, nullable=True)
    scale: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_nillable: Mapped[bool] = mapped_column(Boolean, default=True)
    is_unique: Mapped[bool] = mapped_column(Boolean, default=False)
    is_external_id: Mapped[bool] = mapped_column(Boolean, default=False)
    is_auto_number: Mapped[bool] = mapped_column(Boolean, default=False)
    is_calculated: Mapped[bool] = mapped_column(Boolean, default=False)
    default_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    picklist_values: Mapped[list | None] = mapped_column(JSON, nullable=True)
    reference_to: Mapped[list | None] = mapped_column(JSON, nullable=True)
    relationship_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    help_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=True,
    )

    sobject: Mapped[SObjectModel] = relationship(back_populates="fields")


class ValidationRuleModel(MetadataBase):
    """Validation rule summary. Formulas are not stored (not locally evaluable)."""

    __tablename__ = "validation_rules"
    __table_args__ = (
        UniqueConstraint("sobject_id", "name", name="uq_validation_rule_sobject_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sobject_id: Mapped[int] = mapped_column(
        ForeignKey("sobjects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    error_display_field: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=True,
    )

    sobject: Mapped[SObjectModel] = relationship(back_populates="validation_rules")


class RelationshipModel(MetadataBase):
    """Outbound reference edge from one sobject's field to a target entity name."""

    __tablename__ = "relationships"
    __table_args__ = (
        UniqueConstraint("from_sobject_id", "field_name", name="uq_relationship_from_field"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_sobject_id: Mapped[int] = mapped_column(
        ForeignKey("sobjects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    to_sobject: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    field_name: Mapped[str] = mapped_column(String(255), nullable=False)
    relationship_name: Mapped[str] = mapped_column(String(255), nullable=False)
    relationship_type: Mapped[str] = mapped_column(String(50), nullable=False, default="lookup")
    is_cascade_delete: Mapped[bool] = mapped_column(Boolean, default=False)
    is_restricted_delete: Mapped[bool] = mapped_column(Boolean, default=False)
    is_required: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=True,
    )

    from_sobject: Mapped[SObjectModel] = relationship(back_populates="relationships")
