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

    # Redis document store
    REDIS_URL: str = "redis://localhost:6379/0"
    STORE_KEY_PREFIX: str = "salescrm"

    # Persisted layout: CRM collections live under {root}/{main_doc}/<name>
    CRM_ROOT_COLLECTION: str = "crm"
    CRM_MAIN_DOC: str = "main"

    # Write the bootstrap dataset when the primary collections are all empty
    SEED_ON_START: bool = True

    # Quotation workflow
    QUOTATION_TASK_DUE_DAYS: int = 7
    QUOTATION_VALIDITY_DAYS: int = 30
    INVOICE_DUE_DAYS: int = 30
    DEFAULT_TAX_RATE: float = 5.0  # percent
    CURRENCY: str = "AED"


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
