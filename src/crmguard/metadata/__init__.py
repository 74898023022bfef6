"""Metadata cache -- local store, remote sync, and TTL-aware cache manager.

Provides SQLAlchemy models for sobjects, fields, validation rules, and
relationships, Pydantic schemas for each, MetadataStore for async access,
MetadataSyncService for pulling describe() results from the remote CRM, and
MetadataCacheManager for lazy, staleness-driven syncing.
"""

from src.crmguard.metadata.cache import CORE_SOBJECTS, DEFAULT_TTL, MetadataCacheManager
from src.crmguard.metadata.schemas import (
    CacheStats,
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
from src.crmguard.metadata.sync import MetadataSyncService

__all__ = [
    "MetadataCacheManager",
    "MetadataStore",
    "MetadataSyncService",
    "CORE_SOBJECTS",
    "DEFAULT_TTL",
    "CacheStats",
    "FieldMetadata",
    "FieldType",
    "PicklistValue",
    "RelationshipMetadata",
    "RelationshipType",
    "SObjectMetadata",
    "SyncResult",
    "ValidationRuleMetadata",
]
