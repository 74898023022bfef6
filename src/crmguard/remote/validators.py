"""Input shape checks applied before any remote call.

Each validator raises ValidationError (or ConfigurationError for settings)
with a message naming what was wrong.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlparse

from src.crmguard.core.errors import ConfigurationError, ValidationError

_SOBJECT_NAME = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")
_RECORD_ID = re.compile(r"^[a-zA-Z0-9]+$")
_API_VERSION = re.compile(r"^\d+\.\d+$")


def validate_sobject_name(sobject: Any) -> None:
    if not sobject or not isinstance(sobject, str):
        raise ValidationError("SObject name must be a non-empty string")
    if not _SOBJECT_NAME.match(sobject):
        raise ValidationError(f"Invalid SObject name format: {sobject!r}")


def validate_record_id(record_id: Any) -> None:
    if not record_id or not isinstance(record_id, str):
        raise ValidationError("Record ID must be a non-empty string")
    if len(record_id) not in (15, 18):
        raise ValidationError("Record ID must be 15 or 18 characters")
    if not _RECORD_ID.match(record_id):
        raise ValidationError(f"Invalid Record ID format: {record_id!r}")


def validate_record_data(data: Any) -> None:
    if not isinstance(data, Mapping):
        raise ValidationError("Record data must be an object")
    if not data:
        raise ValidationError("Record data cannot be empty")


def validate_query(query: Any) -> None:
    if not query or not isinstance(query, str) or not query.strip():
        raise ValidationError("Query must be a non-empty string")


def validate_connection_settings(instance_url: str, access_token: str, api_version: str) -> None:
    """Check remote connection settings, collecting every problem.

    Raises:
        ConfigurationError: Listing all invalid settings.
    """
    errors: list[str] = []

    if not instance_url:
        errors.append("SF_INSTANCE_URL is required")
    elif urlparse(instance_url).scheme != "https" or not urlparse(instance_url).netloc:
        errors.append("SF_INSTANCE_URL must be a valid HTTPS URL")

    if not access_token:
        errors.append("SF_ACCESS_TOKEN is required")

    if not _API_VERSION.match(api_version or ""):
        errors.append('SF_API_VERSION must be a valid version number (e.g., "65.0")')

    if errors:
        raise ConfigurationError(
            "Configuration validation failed:\n  - " + "\n  - ".join(errors),
            details={"errors": errors},
        )
