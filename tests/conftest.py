"""Shared fixtures for CRM Guard tests.

Provides:
- A throwaway SQLite metadata store per test, with a controllable clock
- A FakeRemoteService preloaded with Account, Contact, User, Invoice__c,
  and Payment__c describe() payloads
- A cache manager and sync service wired to the fake remote
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from src.crmguard.core.database import build_engine, init_db
from src.crmguard.metadata.cache import MetadataCacheManager
from src.crmguard.metadata.store import MetadataStore
from src.crmguard.metadata.sync import MetadataSyncService
from tests.fakes import FakeClock, FakeRemoteService


# -- Fixtures ------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Async engine on a fresh SQLite file with the metadata tables created."""
    db_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'metadata.db'}")
    await init_db(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the per-test engine."""

    async def factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    return factory


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(session_factory, clock) -> MetadataStore:
    return MetadataStore(session_factory, clock=clock)


@pytest.fixture
def remote() -> FakeRemoteService:
    return FakeRemoteService()


@pytest.fixture
def sync_service(remote, store) -> MetadataSyncService:
    return MetadataSyncService(remote, store)


@pytest.fixture
def cache_manager(store, sync_service) -> MetadataCacheManager:
    return MetadataCacheManager(
        store,
        sync_service,
        ttl=timedelta(hours=24),
        core_sobjects=("Account", "Contact"),
    )


@pytest_asyncio.fixture
async def synced_store(store, sync_service) -> MetadataStore:
    """Store pre-loaded with every entity the fake remote can describe."""
    result = await sync_service.sync_objects(["Account", "Contact", "User", "Invoice__c", "Payment__c"])
    assert result.success, result.errors
    return store
