"""Metadata cache manager -- TTL-aware lazy sync of entity metadata.

Decides which entities are missing or stale, syncs only those, and can
expand along relationship edges so a batch touching Contact automatically
pulls in Account metadata.

Staleness is always answered by MetadataStore.is_metadata_stale, so the
"is it cached" predicate and the "what must I fetch" computation can never
disagree.
"""

from __future__ import annotations

from datetime import timedelta

import structlog

from src.crmguard.core.errors import ConfigurationError, MetadataSyncError
from src.crmguard.metadata.schemas import CacheStats, SyncResult
from src.crmguard.metadata.store import MetadataStore
from src.crmguard.metadata.sync import MetadataSyncService

logger = structlog.get_logger(__name__)

CORE_SOBJECTS: tuple[str, ...] = ("Account", "Contact", "Lead", "Opportunity", "User", "Case")
DEFAULT_TTL = timedelta(hours=24)


class MetadataCacheManager:
    """Keeps the local metadata store fresh on demand.

    Does not retry: retry policy belongs to the remote service. Any sync
    that reports errors raises MetadataSyncError.

    Args:
        store: Metadata store holding cached records.
        sync_service: Collaborator that fetches and writes metadata. None
            gives a read-only manager: stats, age and clear work, but any
            sync raises ConfigurationError.
        ttl: Maximum metadata age before it is considered stale.
        core_sobjects: Entities pre-warmed by initialize().
    """

    def __init__(
        self,
        store: MetadataStore,
        sync_service: MetadataSyncService | None,
        ttl: timedelta = DEFAULT_TTL,
        core_sobjects: tuple[str, ...] | list[str] = CORE_SOBJECTS,
    ) -> None:
        self._store = store
        self._sync_service = sync_service
        self._ttl = ttl
        self._core_sobjects = tuple(core_sobjects)

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def store(self) -> MetadataStore:
        return self._store

    async def initialize(self) -> None:
        """Sync whichever core entities are missing or stale."""
        missing = await self.find_missing_or_stale(list(self._core_sobjects))
        if missing:
            logger.info("metadata.cache_warming", sobjects=missing)
            await self._sync(missing)
        else:
            logger.debug("metadata.cache_warm")

    async def ensure_metadata(self, names: list[str]) -> None:
        """Sync whichever of ``names`` are missing or stale. Empty list is a no-op."""
        if not names:
            return
        missing = await self.find_missing_or_stale(names)
        if missing:
            await self._sync(missing)

    async def ensure_metadata_with_relationships(self, name: str, depth: int = 1) -> None:
        """Ensure an entity and, up to ``depth`` hops, the entities it references.

        Args:
            name: Entity to ensure.
            depth: Number of relationship hops to follow (0 = entity only).
        """
        await self._ensure_recursive(name, depth, set())

    async def _ensure_recursive(self, name: str, depth: int, seen: set[str]) -> None:
        seen.add(name)
        await self.ensure_metadata([name])
        if depth <= 0:
            return

        relationships = await self._store.get_relationships(name)
        related: list[str] = []
        for rel in relationships:
            if rel.to_sobject not in related:
                related.append(rel.to_sobject)
        if not related:
            return

        logger.debug("metadata.expanding_relationships", sobject=name, related=related, depth=depth)
        for target in related:
            if target in seen:
                continue
            await self._ensure_recursive(target, depth - 1, seen)

    async def find_missing_or_stale(self, names: list[str]) -> list[str]:
        missing: list[str] = []
        for name in dict.fromkeys(names):
            if await self._store.is_metadata_stale(name, self._ttl):
                missing.append(name)
        return missing

    async def refresh_metadata(self, names: list[str]) -> SyncResult | None:
        """Force a sync of ``names`` regardless of staleness."""
        if not names:
            return None
        return await self._sync(list(dict.fromkeys(names)))

    async def clear_cache(self) -> None:
        await self._store.clear_metadata()

    async def get_cache_stats(self) -> CacheStats:
        stats = await self._store.get_stats()
        core_cached = 0
        for name in self._core_sobjects:
            if await self.is_cached(name):
                core_cached += 1
        return CacheStats(
            total_objects=stats.sobjects,
            total_fields=stats.fields,
            total_relationships=stats.relationships,
            total_validation_rules=stats.validation_rules,
            core_objects_cached=core_cached,
            ttl=self._ttl,
        )

    async def is_cached(self, name: str) -> bool:
        return not await self._store.is_metadata_stale(name, self._ttl)

    async def get_metadata_age(self, name: str) -> timedelta | None:
        return await self._store.get_metadata_age(name)

    def set_ttl(self, ttl: timedelta) -> None:
        logger.info("metadata.ttl_changed", ttl_s=ttl.total_seconds())
        self._ttl = ttl

    async def _sync(self, names: list[str]) -> SyncResult:
        if self._sync_service is None:
            raise ConfigurationError(
                f"Cannot sync {', '.join(names)}: no remote service configured"
            )
        result = await self._sync_service.sync_objects(names)
        if result.errors:
            logger.error("metadata.sync_failed", sobjects=names, errors=result.errors)
            raise MetadataSyncError(
                f"Metadata sync failed for {len(result.errors)} of {len(names)} object(s): "
                + "; ".join(result.errors),
                errors=result.errors,
            )
        logger.info(
            "metadata.synced",
            sobjects=names,
            fields=result.fields_synced,
            relationships=result.relationships_synced,
        )
        return result
