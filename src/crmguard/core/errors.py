"""Exception hierarchy for CRM Guard.

Every raised error carries a machine-readable ``code`` so callers can
branch without string matching. Validation findings and duplicate matches
are returned as structured results and never raised; these exceptions are
reserved for hard failures (bad input shape, remote API errors, failed
metadata syncs, unbreakable dependency cycles).
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"
    API_ERROR = "API_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    METADATA_SYNC_FAILED = "METADATA_SYNC_FAILED"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    UNRESOLVED_REFERENCE = "UNRESOLVED_REFERENCE"


class CRMError(Exception):
    """Base error for all CRM Guard failures.

    Attributes:
        code: Machine-readable error code.
        status_code: HTTP status associated with the failure, if any.
        details: Optional structured payload for diagnostics.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.API_ERROR,
        status_code: int | None = None,
        details: Any = None,
    ) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code.value,
            "status_code": self.status_code,
        }


class ValidationError(CRMError):
    """Raised when caller input has the wrong shape (bad name, id, or payload)."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message, ErrorCode.VALIDATION_ERROR, 400, details)


class ConfigurationError(CRMError):
    """Raised when required settings are missing or invalid."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, None, details)


class RemoteServiceError(CRMError):
    """Raised when the remote CRM API rejects a request or is unreachable.

    Attributes:
        error_code: The remote API's own error code (e.g. ``INVALID_FIELD``).
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        details: Any = None,
    ) -> None:
        code = ErrorCode.AUTHENTICATION_FAILED if status_code == 401 else ErrorCode.API_ERROR
        if status_code is None:
            code = ErrorCode.NETWORK_ERROR
        self.error_code = error_code
        super().__init__(message, code, status_code, details)


class MetadataSyncError(CRMError):
    """Raised when a metadata sync reports errors.

    Downstream validation cannot run against absent schema, so sync
    failures are never degraded into partial success.
    """

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message, ErrorCode.METADATA_SYNC_FAILED, None, self.errors)


class CircularDependencyError(CRMError):
    """Raised when a dependency cycle has no nullable edge to break it."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        path = " -> ".join([*cycle, cycle[0]]) if cycle else ""
        super().__init__(
            f"Circular dependency cannot be broken (no optional relationship): {path}",
            ErrorCode.CIRCULAR_DEPENDENCY,
            None,
            cycle,
        )


class UnresolvedReferenceError(CRMError):
    """Raised when a payload references a temp id with no real id yet."""

    def __init__(self, temp_id: str, field: str) -> None:
        self.temp_id = temp_id
        self.field = field
        super().__init__(
            f"Cannot resolve reference {temp_id} in {field}",
            ErrorCode.UNRESOLVED_REFERENCE,
            None,
            {"temp_id": temp_id, "field": field},
        )
