"""Pydantic schemas for cached CRM metadata.

Rows read from the metadata store are converted into these typed records
once, at the store boundary. Every consumer (cache manager, preflight
validator, dependency resolver) works with these schemas, never raw rows.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field


class FieldType(str, Enum):
    """Declared field type as reported by describe().

    Types this package has no special handling for collapse to OTHER.
    """

    STRING = "string"
    TEXTAREA = "textarea"
    EMAIL = "email"
    URL = "url"
    PHONE = "phone"
    PICKLIST = "picklist"
    MULTIPICKLIST = "multipicklist"
    COMBOBOX = "combobox"
    ID = "id"
    REFERENCE = "reference"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    INT = "int"
    LONG = "long"
    DOUBLE = "double"
    CURRENCY = "currency"
    PERCENT = "percent"
    BOOLEAN = "boolean"
    BASE64 = "base64"
    ENCRYPTEDSTRING = "encryptedstring"
    ADDRESS = "address"
    LOCATION = "location"
    ANYTYPE = "anyType"
    OTHER = "other"

    @classmethod
    def _missing_(cls, value: object) -> FieldType:
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.lower():
                    return member
        return cls.OTHER


class RelationshipType(str, Enum):
    LOOKUP = "lookup"
    MASTER_DETAIL = "master-detail"
    EXTERNAL_LOOKUP = "external-lookup"


class PicklistValue(BaseModel):
    label: str | None = None
    value: str
    active: bool = True
    default_value: bool = False


class SObjectMetadata(BaseModel):
    """One remote entity type. Identity is ``name``."""

    name: str
    label: str
    label_plural: str | None = None
    key_prefix: str | None = None
    is_custom: bool = False
    is_queryable: bool = True
    is_createable: bool = False
    is_updateable: bool = False
    is_deletable: bool = False
    is_searchable: bool = False
    synced_at: datetime | None = None


class FieldMetadata(BaseModel):
    """One field of an entity. Unique per (sobject, name)."""

    sobject: str
    name: str
    label: str
    type: FieldType = FieldType.OTHER
    length: int | None = None
    precision: int | None = None
    scale: int | None = None
    is_nillable: bool = True
    is_unique: bool = False
    is_external_id: bool = False
    is_auto_number: bool = False
    is_calculated: bool = False
    default_value: str | None = None
    picklist_values: list[PicklistValue] = Field(default_factory=list)
    reference_to: list[str] = Field(default_factory=list)
    relationship_name: str | None = None
    help_text: str | None = None

    @property
    def is_required(self) -> bool:
        return not self.is_nillable


class RelationshipMetadata(BaseModel):
    """Directed edge ``from_sobject.field_name -> to_sobject``.

    Unique per (from_sobject, field_name). The target is stored by name so
    an edge can exist before its target entity has been synced.
    """

    from_sobject: str
    to_sobject: str
    field_name: str
    relationship_name: str
    relationship_type: RelationshipType = RelationshipType.LOOKUP
    is_cascade_delete: bool = False
    is_restricted_delete: bool = False
    is_required: bool = False


class ValidationRuleMetadata(BaseModel):
    """Advisory record of a server-side validation rule (formula not evaluable locally)."""

    sobject: str
    name: str
    active: bool = True
    error_message: str
    error_display_field: str | None = None
    description: str | None = None


# ── Sync and cache reporting ────────────────────────────────────────────────


class StoreStats(BaseModel):
    sobjects: int = 0
    fields: int = 0
    validation_rules: int = 0
    relationships: int = 0


class SyncResult(BaseModel):
    """Outcome of a metadata sync run. Per-object failures land in ``errors``."""

    success: bool = True
    objects_synced: int = 0
    fields_synced: int = 0
    validation_rules_synced: int = 0
    relationships_synced: int = 0
    errors: list[str] = Field(default_factory=list)
    duration: float = 0.0  # seconds


class CacheStats(BaseModel):
    total_objects: int
    total_fields: int
    total_relationships: int
    total_validation_rules: int
    core_objects_cached: int
    ttl: timedelta
