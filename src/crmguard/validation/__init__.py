"""Preflight validation -- local checks of record payloads against cached metadata.

Provides:
- PreflightValidator: validate_create / validate_update / get_summary
- ValidationResult / ValidationIssue / IssueType: structured findings
"""

from src.crmguard.validation.preflight import PreflightValidator
from src.crmguard.validation.schemas import IssueType, ValidationIssue, ValidationResult

__all__ = [
    "PreflightValidator",
    "IssueType",
    "ValidationIssue",
    "ValidationResult",
]
