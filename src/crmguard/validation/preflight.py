"""Preflight validator -- checks a record payload against cached metadata.

Runs before any remote call so that obviously-bad payloads (missing
required fields, wrong value types, over-long strings, unknown picklist
values, missing required lookups) are rejected locally with an actionable
message instead of a round trip.

Only a missing entity or a CRUD permission failure short-circuits; every
other check runs so the caller sees all problems at once.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

import structlog

from src.crmguard.metadata.schemas import FieldMetadata, FieldType
from src.crmguard.metadata.store import MetadataStore
from src.crmguard.validation.schemas import IssueType, ValidationIssue, ValidationResult

logger = structlog.get_logger(__name__)

SOBJECT_FIELD = "__sobject__"
VALIDATION_RULES_FIELD = "__validation_rules__"

SYSTEM_FIELDS = frozenset(
    {
        "Id",
        "IsDeleted",
        "CreatedDate",
        "CreatedById",
        "LastModifiedDate",
        "LastModifiedById",
        "SystemModstamp",
        "LastViewedDate",
        "LastReferencedDate",
    }
)

BOOLEAN_DEFAULT_FIELDS = frozenset(
    {
        "IsExcludedFromRealign",
        "IsPartner",
        "IsCustomerPortal",
        "HasOptedOutOfEmail",
        "HasOptedOutOfFax",
        "DoNotCall",
        "IsEmailBounced",
        "IsPriorityRecord",
    }
)

# OwnerId defaults to the running user.
AUTO_DEFAULTED_FIELDS = frozenset({"OwnerId"})

SYSTEM_RELATIONSHIPS = frozenset({"OwnerId", "CreatedById", "LastModifiedById", "RecordTypeId"})

MAX_PICKLIST_SUGGESTIONS = 10

# ── Type compatibility ──────────────────────────────────────────────────────

_STRING = "string"
_NUMBER = "number"
_BOOLEAN = "boolean"

_EXPECTED_KIND: dict[FieldType, str] = {
    FieldType.STRING: _STRING,
    FieldType.TEXTAREA: _STRING,
    FieldType.EMAIL: _STRING,
    FieldType.URL: _STRING,
    FieldType.PHONE: _STRING,
    FieldType.PICKLIST: _STRING,
    FieldType.MULTIPICKLIST: _STRING,
    FieldType.COMBOBOX: _STRING,
    FieldType.ID: _STRING,
    FieldType.REFERENCE: _STRING,
    FieldType.ENCRYPTEDSTRING: _STRING,
    FieldType.DATE: _STRING,
    FieldType.DATETIME: _STRING,
    FieldType.TIME: _STRING,
    FieldType.INT: _NUMBER,
    FieldType.LONG: _NUMBER,
    FieldType.DOUBLE: _NUMBER,
    FieldType.CURRENCY: _NUMBER,
    FieldType.PERCENT: _NUMBER,
    FieldType.BOOLEAN: _BOOLEAN,
}

_LENGTH_CHECKED = frozenset(
    {
        FieldType.STRING,
        FieldType.TEXTAREA,
        FieldType.EMAIL,
        FieldType.URL,
        FieldType.PHONE,
        FieldType.ENCRYPTEDSTRING,
    }
)

_DECIMAL_TYPES = frozenset({FieldType.DOUBLE, FieldType.CURRENCY, FieldType.PERCENT})


def _value_kind(value: Any) -> str:
    """Classify a payload value the way the remote JSON API sees it."""
    if isinstance(value, bool):
        return _BOOLEAN
    if isinstance(value, (int, float, Decimal)):
        return _NUMBER
    if isinstance(value, str):
        return _STRING
    return type(value).__name__


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _digits(value: int | float | Decimal) -> tuple[int, int]:
    """Return (significant digits, decimal places) of a numeric value."""
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        return 0, 0
    if not parsed.is_finite():
        return 0, 0
    _, digits, exponent = parsed.as_tuple()
    places = -exponent if isinstance(exponent, int) and exponent < 0 else 0
    total = len(digits) + (exponent if isinstance(exponent, int) and exponent > 0 else 0)
    return total, places


class PreflightValidator:
    """Validates create/update payloads against the metadata store.

    Args:
        store: Metadata store; the caller is responsible for making sure the
            entity's metadata has been synced (see MetadataCacheManager).
    """

    def __init__(self, store: MetadataStore) -> None:
        self._store = store

    async def validate_create(self, sobject_name: str, data: dict[str, Any]) -> ValidationResult:
        """Validate a create payload.

        Runs: entity exists, entity createable, required fields present,
        per-field checks, validation-rule awareness, relationship checks.
        """
        result = ValidationResult()

        sobject = await self._store.get_sobject(sobject_name)
        if sobject is None:
            result.errors.append(_metadata_not_found(sobject_name))
            return result
        if not sobject.is_createable:
            result.errors.append(
                ValidationIssue(
                    field=SOBJECT_FIELD,
                    message=f"Object '{sobject_name}' is not createable. Check CRUD permissions.",
                    type=IssueType.CRUD_PERMISSION,
                )
            )
            return result

        fields = await self._store.get_fields(sobject_name)
        required = await self._store.get_required_fields(sobject_name)

        self._check_required_fields(required, data, result)
        self._check_fields(fields, data, result)
        await self._check_validation_rules(sobject_name, result)
        await self._check_relationships(sobject_name, data, result)

        logger.debug(
            "preflight.create_validated",
            sobject=sobject_name,
            valid=result.valid,
            errors=len(result.errors),
            warnings=len(result.warnings),
        )
        return result

    async def validate_update(
        self,
        sobject_name: str,
        record_id: str,
        data: dict[str, Any],
    ) -> ValidationResult:
        """Validate an update payload.

        Same as validate_create minus the required-field check, since
        partial payloads are expected on update.
        """
        result = ValidationResult()

        sobject = await self._store.get_sobject(sobject_name)
        if sobject is None:
            result.errors.append(_metadata_not_found(sobject_name))
            return result
        if not sobject.is_updateable:
            result.errors.append(
                ValidationIssue(
                    field=SOBJECT_FIELD,
                    message=f"Object '{sobject_name}' is not updateable. Check CRUD permissions.",
                    type=IssueType.CRUD_PERMISSION,
                )
            )
            return result

        fields = await self._store.get_fields(sobject_name)
        self._check_fields(fields, data, result)
        await self._check_validation_rules(sobject_name, result)
        await self._check_relationships(sobject_name, data, result)

        logger.debug(
            "preflight.update_validated",
            sobject=sobject_name,
            record_id=record_id,
            valid=result.valid,
            errors=len(result.errors),
        )
        return result

    # ── Checks ──────────────────────────────────────────────────────────────

    def _check_required_fields(
        self,
        required: list[FieldMetadata],
        data: dict[str, Any],
        result: ValidationResult,
    ) -> None:
        for field in required:
            if field.name in SYSTEM_FIELDS or field.name in BOOLEAN_DEFAULT_FIELDS:
                continue
            if field.name in AUTO_DEFAULTED_FIELDS:
                continue
            if field.default_value not in (None, ""):
                continue
            # Server-computed, never supplied by the caller.
            if field.is_auto_number or field.is_calculated:
                continue
            if _is_blank(data.get(field.name)):
                result.errors.append(
                    ValidationIssue(
                        field=field.name,
                        message=f"Required field '{field.label}' is missing or empty.",
                        type=IssueType.REQUIRED_FIELD,
                        suggestion=f"Provide a value for {field.name} ({field.type.value})",
                    )
                )

    def _check_fields(
        self,
        fields: list[FieldMetadata],
        data: dict[str, Any],
        result: ValidationResult,
    ) -> None:
        by_name = {f.name: f for f in fields}
        for name, value in data.items():
            field = by_name.get(name)
            if field is None:
                result.warnings.append(
                    ValidationIssue(
                        field=name,
                        message=(
                            f"Field '{name}' not found in metadata. "
                            "It may not exist or you may lack access."
                        ),
                        type=IssueType.UNKNOWN_FIELD,
                    )
                )
                continue
            if value is None:
                continue

            if not self._check_type(field, value, result):
                continue

            if field.type in _LENGTH_CHECKED and field.length and isinstance(value, str):
                if len(value) > field.length:
                    result.errors.append(
                        ValidationIssue(
                            field=name,
                            message=(
                                f"Field '{field.label}' exceeds maximum length of {field.length} "
                                f"characters (provided: {len(value)})."
                            ),
                            type=IssueType.LENGTH_EXCEEDED,
                        )
                    )

            if field.type in (FieldType.PICKLIST, FieldType.MULTIPICKLIST) and field.picklist_values:
                self._check_picklist(field, value, result)

            if field.type in _DECIMAL_TYPES and _value_kind(value) == _NUMBER:
                self._check_number(field, value, result)

    def _check_type(self, field: FieldMetadata, value: Any, result: ValidationResult) -> bool:
        expected = _EXPECTED_KIND.get(field.type)
        if expected is None:
            return True
        actual = _value_kind(value)
        if actual == expected:
            return True
        result.errors.append(
            ValidationIssue(
                field=field.name,
                message=f"Field '{field.label}' expects type {expected} but got {actual}.",
                type=IssueType.TYPE_MISMATCH,
                suggestion=f"Convert value to {expected}",
            )
        )
        return False

    def _check_picklist(self, field: FieldMetadata, value: str, result: ValidationResult) -> None:
        valid_values = [pv.value for pv in field.picklist_values]
        if field.type == FieldType.MULTIPICKLIST:
            selected = [part.strip() for part in value.split(";") if part.strip()]
        else:
            selected = [value]

        for item in selected:
            if item in valid_values:
                continue
            shown = ", ".join(valid_values[:MAX_PICKLIST_SUGGESTIONS])
            more = "..." if len(valid_values) > MAX_PICKLIST_SUGGESTIONS else ""
            result.errors.append(
                ValidationIssue(
                    field=field.name,
                    message=f"Invalid picklist value '{item}' for field '{field.label}'.",
                    type=IssueType.INVALID_PICKLIST_VALUE,
                    suggestion=f"Valid values: {shown}{more}",
                )
            )

    def _check_number(self, field: FieldMetadata, value: int | float, result: ValidationResult) -> None:
        digits, places = _digits(value)
        if field.precision and digits > field.precision:
            result.warnings.append(
                ValidationIssue(
                    field=field.name,
                    message=f"Field '{field.label}' may exceed precision of {field.precision} digits.",
                    type=IssueType.PRECISION_WARNING,
                    suggestion=f"Use at most {field.precision} significant digits",
                )
            )
        if field.scale is not None and places > field.scale:
            result.warnings.append(
                ValidationIssue(
                    field=field.name,
                    message=(
                        f"Field '{field.label}' has {places} decimal places "
                        f"but max is {field.scale}."
                    ),
                    type=IssueType.SCALE_WARNING,
                    suggestion=f"Round to {field.scale} decimal places",
                )
            )

    async def _check_validation_rules(self, sobject_name: str, result: ValidationResult) -> None:
        rules = await self._store.get_validation_rules(sobject_name)
        if not rules:
            return
        result.warnings.append(
            ValidationIssue(
                field=VALIDATION_RULES_FIELD,
                message=(
                    f"This object has {len(rules)} active validation rule(s) "
                    "that may prevent save."
                ),
                type=IssueType.VALIDATION_RULES_EXIST,
                details=[
                    {
                        "name": rule.name,
                        "error_message": rule.error_message,
                        "description": rule.description,
                    }
                    for rule in rules
                ],
            )
        )

    async def _check_relationships(
        self,
        sobject_name: str,
        data: dict[str, Any],
        result: ValidationResult,
    ) -> None:
        relationships = await self._store.get_relationships(sobject_name)
        for rel in relationships:
            if rel.field_name in SYSTEM_RELATIONSHIPS:
                continue
            value = data.get(rel.field_name)
            if rel.is_required and _is_blank(value):
                result.errors.append(
                    ValidationIssue(
                        field=rel.field_name,
                        message=(
                            f"Required relationship field '{rel.field_name}' "
                            f"to {rel.to_sobject} is missing."
                        ),
                        type=IssueType.REQUIRED_RELATIONSHIP,
                        suggestion=f"Create or reference a {rel.to_sobject} record first",
                    )
                )
            if not _is_blank(value):
                result.suggestions.append(
                    ValidationIssue(
                        field=rel.field_name,
                        message=f"Ensure {rel.to_sobject} record with ID '{value}' exists.",
                        type=IssueType.REFERENCE_CHECK,
                    )
                )

    # ── Presentation ────────────────────────────────────────────────────────

    @staticmethod
    def get_summary(result: ValidationResult) -> str:
        """Render a human-readable pass/fail report with hints."""
        parts = ["Validation PASSED" if result.valid else "Validation FAILED"]

        if result.errors:
            parts.append(f"\nErrors ({len(result.errors)}):")
            for issue in result.errors:
                parts.append(f"  - {issue.field}: {issue.message}")
                if issue.suggestion:
                    parts.append(f"    Hint: {issue.suggestion}")

        if result.warnings:
            parts.append(f"\nWarnings ({len(result.warnings)}):")
            for issue in result.warnings:
                parts.append(f"  - {issue.field}: {issue.message}")

        if result.suggestions:
            parts.append(f"\nSuggestions ({len(result.suggestions)}):")
            for issue in result.suggestions:
                parts.append(f"  - {issue.field}: {issue.message}")

        return "\n".join(parts)


def _metadata_not_found(sobject_name: str) -> ValidationIssue:
    return ValidationIssue(
        field=SOBJECT_FIELD,
        message=f"Object '{sobject_name}' not found in metadata. Run metadata sync first.",
        type=IssueType.METADATA_NOT_FOUND,
    )
