"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Local metadata store
    DATABASE_URL: str = "sqlite+aiosqlite:///./crm-metadata.db"

    # Remote CRM (Salesforce REST API)
    SF_INSTANCE_URL: str = ""
    SF_ACCESS_TOKEN: str = ""
    SF_API_VERSION: str = "65.0"
    SF_TIMEOUT: float = 30.0
    SF_MAX_RETRIES: int = 3

    # Metadata cache
    METADATA_TTL_SECONDS: int = 86400  # 24 hours
    CORE_SOBJECTS: list[str] = ["Account", "Contact", "Lead", "Opportunity", "User", "Case"]

    # Duplicate matching
    MATCH_HIGH_THRESHOLD: float = 0.95
    MATCH_MEDIUM_THRESHOLD: float = 0.75
    SIMILARITY_WEIGHT_LEVENSHTEIN: float = 0.3
    SIMILARITY_WEIGHT_JARO_WINKLER: float = 0.4
    SIMILARITY_WEIGHT_TRIGRAM: float = 0.2
    SIMILARITY_WEIGHT_SOUNDEX: float = 0.1
    DUPLICATE_CHECK_LIMIT: int = 10


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
