"""Pydantic schemas for preflight validation results."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field


class IssueType(str, Enum):
    """Machine-readable kind of a validation finding.

    Blocking kinds land in ``ValidationResult.errors``; advisory kinds land
    in ``warnings`` or ``suggestions`` and never affect ``valid``.
    """

    # Blocking
    METADATA_NOT_FOUND = "METADATA_NOT_FOUND"
    CRUD_PERMISSION = "CRUD_PERMISSION"
    REQUIRED_FIELD = "REQUIRED_FIELD"
    TYPE_MISMATCH = "TYPE_MISMATCH"
    LENGTH_EXCEEDED = "LENGTH_EXCEEDED"
    INVALID_PICKLIST_VALUE = "INVALID_PICKLIST_VALUE"
    REQUIRED_RELATIONSHIP = "REQUIRED_RELATIONSHIP"

    # Advisory
    UNKNOWN_FIELD = "UNKNOWN_FIELD"
    PRECISION_WARNING = "PRECISION_WARNING"
    SCALE_WARNING = "SCALE_WARNING"
    VALIDATION_RULES_EXIST = "VALIDATION_RULES_EXIST"
    REFERENCE_CHECK = "REFERENCE_CHECK"


class ValidationIssue(BaseModel):
    field: str
    message: str
    type: IssueType
    suggestion: str | None = None
    details: Any = None


class ValidationResult(BaseModel):
    """Outcome of one validate call. ``valid`` is true iff ``errors`` is empty."""

    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    suggestions: list[ValidationIssue] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def valid(self) -> bool:
        return not self.errors
