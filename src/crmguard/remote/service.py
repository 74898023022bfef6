"""Remote data service abstract base class -- the CRM API surface the core depends on.

The matcher, metadata sync, dependency resolver, and orchestrator only ever
talk to the remote CRM through this interface. SalesforceRestService is the
concrete REST implementation; tests substitute an AsyncMock.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class SaveError(BaseModel):
    """One error reported by the remote API for a save call."""

    message: str
    status_code: str | None = None
    fields: list[str] = Field(default_factory=list)


class SaveResult(BaseModel):
    """Outcome of a create/update/delete call."""

    success: bool
    id: str | None = None
    errors: list[SaveError] = Field(default_factory=list)

    @property
    def error_message(self) -> str:
        return "; ".join(e.message for e in self.errors) or "Unknown error"


class RemoteDataService(ABC):
    """Abstract interface for the remote CRM API.

    Methods:
        describe: Full field-level schema of one entity.
        describe_global: List of all entities visible to the user.
        query: Run a SOQL query (optionally against the Tooling API).
        search: Run a SOSL search, returning {"searchRecords": [...]}.
        create: Insert one record.
        update: Update one record by id.
        delete: Delete one record by id.
    """

    @abstractmethod
    async def describe(self, sobject: str) -> dict[str, Any]:
        """Return describe result with "fields" and "recordTypeInfos"."""
        ...

    @abstractmethod
    async def describe_global(self) -> dict[str, Any]:
        """Return describe-global result with "sobjects"."""
        ...

    @abstractmethod
    async def query(self, soql: str, tooling: bool = False) -> dict[str, Any]:
        """Run a SOQL query, return {"totalSize", "done", "records"}."""
        ...

    @abstractmethod
    async def search(self, sosl: str) -> dict[str, Any]:
        """Run a SOSL search, return {"searchRecords": [...]}."""
        ...

    @abstractmethod
    async def create(self, sobject: str, data: dict[str, Any]) -> SaveResult:
        """Create a record, return SaveResult carrying the new id."""
        ...

    @abstractmethod
    async def update(self, sobject: str, record_id: str, data: dict[str, Any]) -> SaveResult:
        """Update a record by id."""
        ...

    @abstractmethod
    async def delete(self, sobject: str, record_id: str) -> SaveResult:
        """Delete a record by id."""
        ...
