"""Application wiring.

Builds the object graph (remote service, metadata store, sync service,
cache manager, matcher, validator, resolver, orchestrator) from Settings.
Every collaborator can be overridden so tests and embedding callers can
swap the remote service or the session factory.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.crmguard.config import Settings, get_settings
from src.crmguard.core.database import close_db, get_session, init_db
from src.crmguard.core.logging import configure_structlog
from src.crmguard.matching.matcher import SmartMatcher
from src.crmguard.matching.schemas import MatchThresholds
from src.crmguard.matching.similarity import SimilarityWeights
from src.crmguard.metadata.cache import MetadataCacheManager
from src.crmguard.metadata.store import MetadataStore
from src.crmguard.metadata.sync import MetadataSyncService
from src.crmguard.operations.orchestrator import OperationOrchestrator
from src.crmguard.operations.resolver import DependencyResolver
from src.crmguard.remote.salesforce import SalesforceRestService
from src.crmguard.remote.service import RemoteDataService
from src.crmguard.validation.preflight import PreflightValidator

logger = structlog.get_logger(__name__)


def create_cache_manager(
    settings: Settings,
    service: RemoteDataService | None,
    session_factory: Callable[..., AsyncGenerator[AsyncSession, None]] = get_session,
) -> MetadataCacheManager:
    """Build the metadata store, sync service, and cache manager.

    Without a ``service`` the manager is read-only: it reports stats and
    clears the store, and raises ConfigurationError on any sync.
    """
    store = MetadataStore(session_factory)
    return MetadataCacheManager(
        store,
        MetadataSyncService(service, store) if service is not None else None,
        ttl=timedelta(seconds=settings.METADATA_TTL_SECONDS),
        core_sobjects=settings.CORE_SOBJECTS,
    )


def create_orchestrator(
    settings: Settings | None = None,
    service: RemoteDataService | None = None,
    session_factory: Callable[..., AsyncGenerator[AsyncSession, None]] = get_session,
) -> OperationOrchestrator:
    """Wire an OperationOrchestrator from settings.

    Args:
        settings: Defaults to get_settings().
        service: Remote data service; defaults to SalesforceRestService
            built from settings.
        session_factory: Async session generator for the metadata store.
    """
    settings = settings or get_settings()
    service = service or SalesforceRestService.from_settings(settings)

    cache_manager = create_cache_manager(settings, service, session_factory)
    store = cache_manager.store

    matcher = SmartMatcher(
        service,
        thresholds=MatchThresholds(
            high=settings.MATCH_HIGH_THRESHOLD,
            medium=settings.MATCH_MEDIUM_THRESHOLD,
        ),
        weights=SimilarityWeights(
            levenshtein=settings.SIMILARITY_WEIGHT_LEVENSHTEIN,
            jaro_winkler=settings.SIMILARITY_WEIGHT_JARO_WINKLER,
            trigram=settings.SIMILARITY_WEIGHT_TRIGRAM,
            soundex=settings.SIMILARITY_WEIGHT_SOUNDEX,
        ),
    )

    return OperationOrchestrator(
        service=service,
        cache_manager=cache_manager,
        matcher=matcher,
        validator=PreflightValidator(store),
        resolver=DependencyResolver(service, store, cache_manager),
        duplicate_limit=settings.DUPLICATE_CHECK_LIMIT,
    )


@asynccontextmanager
async def orchestrator_lifespan(
    settings: Settings | None = None,
    service: RemoteDataService | None = None,
) -> AsyncGenerator[OperationOrchestrator, None]:
    """Configure logging, create tables, warm core metadata, and close on exit."""
    settings = settings or get_settings()
    configure_structlog(settings)
    await init_db()

    orchestrator = create_orchestrator(settings, service)
    try:
        await orchestrator.initialize()
        logger.info("crmguard.started", environment=settings.ENVIRONMENT.value)
        yield orchestrator
    finally:
        await close_db()
        logger.info("crmguard.stopped")
