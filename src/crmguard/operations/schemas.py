"""Schemas for record operations, execution plans, and results.

A payload value is either a literal or a ``Reference`` to another
operation's temporary id in the same batch. ``RecordOperation.from_payload``
is the only place "@tempId"-shaped strings are turned into References;
everything downstream branches on ``isinstance(value, Reference)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

TEMP_ID_PREFIX = "@"


@dataclass(frozen=True)
class Reference:
    """Placeholder for the real id of another operation in the batch.

    ``temp_id`` includes the sigil, e.g. ``"@account1"``.
    """

    temp_id: str

    def __str__(self) -> str:
        return self.temp_id


def is_temp_id(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 1 and value.startswith(TEMP_ID_PREFIX)


def has_references(data: dict[str, Any]) -> bool:
    return any(isinstance(v, Reference) for v in data.values())


class OperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class RecordOperation(BaseModel):
    """One unit of work in a batch.

    Attributes:
        type: create, update, or delete.
        sobject: Target entity name.
        data: Field values; a value may be a Reference to another operation.
        temp_id: Caller-assigned temporary id (``"@name"``) other operations
            may reference.
        record_id: Real record id, required for update and delete.
    """

    type: OperationType
    sobject: str
    data: dict[str, Any] = Field(default_factory=dict)
    temp_id: str | None = None
    record_id: str | None = None

    @model_validator(mode="after")
    def _check_record_id(self) -> RecordOperation:
        if self.type in (OperationType.UPDATE, OperationType.DELETE) and not self.record_id:
            raise ValueError(f"{self.type.value} operation requires record_id")
        if self.temp_id is not None and not is_temp_id(self.temp_id):
            raise ValueError(f"temp_id must start with '{TEMP_ID_PREFIX}': {self.temp_id!r}")
        return self

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> RecordOperation:
        """Build an operation from caller JSON, converting "@x" strings to References.

        Accepts both snake_case (``temp_id``/``record_id``) and camelCase
        (``tempId``/``recordId``) keys.
        """
        data = {
            key: Reference(value) if is_temp_id(value) else value
            for key, value in (payload.get("data") or {}).items()
        }
        return cls(
            type=payload["type"],
            sobject=payload["sobject"],
            data=data,
            temp_id=payload.get("temp_id") or payload.get("tempId"),
            record_id=payload.get("record_id") or payload.get("recordId"),
        )

    def references(self) -> list[tuple[str, Reference]]:
        """(field, Reference) pairs in payload order."""
        return [(k, v) for k, v in self.data.items() if isinstance(v, Reference)]

    def label(self) -> str:
        return f"{self.type.value} {self.sobject} ({self.temp_id or self.record_id or 'no-ref'})"


# ── Plan ────────────────────────────────────────────────────────────────────


class BreakStrategy(str, Enum):
    CREATE_THEN_UPDATE = "create-then-update"


class BreakPoint(BaseModel):
    """A node created with ``field`` omitted, then updated once ``references`` resolves."""

    node_id: str
    field: str
    references: str
    strategy: BreakStrategy = BreakStrategy.CREATE_THEN_UPDATE


class ExecutionBatch(BaseModel):
    """Operations sharing one dependency level. No edges exist within a batch."""

    level: int
    node_ids: list[str]
    operations: list[RecordOperation]
    can_parallelize: bool = False
    break_points: list[BreakPoint] = Field(default_factory=list)


# ── Results ─────────────────────────────────────────────────────────────────


class ExecutionPhase(str, Enum):
    ANALYSIS = "analysis"
    EXECUTION = "execution"


class ExecutionError(BaseModel):
    message: str
    phase: ExecutionPhase
    operation_id: str | None = None
    code: str | None = None


class OperationResult(BaseModel):
    """Outcome of one remote write issued by the resolver."""

    operation_id: str
    type: OperationType
    sobject: str
    success: bool
    temp_id: str | None = None
    id: str | None = None
    errors: list[str] = Field(default_factory=list)
    deferred: bool = False


class ExecutionResult(BaseModel):
    """What the dependency resolver returns for a batch.

    ``errors`` collects analysis- and execution-phase problems; a failure
    never discards the results of operations that already ran.
    """

    success: bool = True
    operations: list[OperationResult] = Field(default_factory=list)
    execution_plan: list[ExecutionBatch] = Field(default_factory=list)
    errors: list[ExecutionError] = Field(default_factory=list)
    total_duration: float = 0.0  # seconds


class SingleOperationResult(BaseModel):
    success: bool = False
    record_id: str | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    duration: float = 0.0  # seconds


class CreatedRecord(BaseModel):
    temp_id: str | None
    record_id: str
    sobject: str


class MultiOperationResult(BaseModel):
    success: bool = False
    total_operations: int = 0
    successful_operations: int = 0
    failed_operations: int = 0
    created_records: list[CreatedRecord] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    execution_plan: list[ExecutionBatch] = Field(default_factory=list)
    duration: float = 0.0  # seconds


class ExecutionMode(str, Enum):
    SINGLE = "single"
    MULTI = "multi"


class OrchestratorResult(BaseModel):
    """Routing outcome of ``OperationOrchestrator.execute``."""

    mode: ExecutionMode
    result: SingleOperationResult | MultiOperationResult
