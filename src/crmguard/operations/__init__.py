"""Record operations -- dependency-ordered batch execution and request routing.

Provides:
- RecordOperation / Reference: operations whose payloads may point at other
  operations in the same batch
- DependencyResolver: graph build, cycle breaking, leveled execution
- OperationOrchestrator: single-operation fast path vs. batch path
"""

from src.crmguard.operations.orchestrator import OperationOrchestrator
from src.crmguard.operations.resolver import DependencyResolver
from src.crmguard.operations.schemas import (
    BreakPoint,
    CreatedRecord,
    ExecutionBatch,
    ExecutionError,
    ExecutionMode,
    ExecutionPhase,
    ExecutionResult,
    MultiOperationResult,
    OperationResult,
    OperationType,
    OrchestratorResult,
    RecordOperation,
    Reference,
    SingleOperationResult,
)

__all__ = [
    "DependencyResolver",
    "OperationOrchestrator",
    "BreakPoint",
    "CreatedRecord",
    "ExecutionBatch",
    "ExecutionError",
    "ExecutionMode",
    "ExecutionPhase",
    "ExecutionResult",
    "MultiOperationResult",
    "OperationResult",
    "OperationType",
    "OrchestratorResult",
    "RecordOperation",
    "Reference",
    "SingleOperationResult",
]
