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

    # Database (empty -> in-memory store)
    DATABASE_URL: str = ""

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Pipedrive
    PIPEDRIVE_BASE_URL: str = "https://api.pipedrive.com/v1"
    PIPEDRIVE_API_TOKEN: str = ""
    PIPEDRIVE_TIMEOUT: float = 30.0

    # Pipedrive deal custom field keys (40-char hashes per account)
    PIPEDRIVE_FIELD_SITE: str = "676d6bd51e52999c582c01f67c99a35ed30bf6ae"
    PIPEDRIVE_FIELD_CAES: str = "e1971bf3a21d48737b682bf8d864ddc5eb15a351"
    PIPEDRIVE_FIELD_FUNDAE: str = "245d60d4d18aec40ba888998ef92e5d00e494583"
    PIPEDRIVE_FIELD_HOTEL: str = "c3a6daf8eb5b4e59c3c07cda8e01f43439101269"
    PIPEDRIVE_FIELD_ADDRESS: str = "8b2a7570f5ba8aa4754f061cd9dc92fd778376a7"
    PIPEDRIVE_FIELD_FORMATIONS: str = ""

    # Sync
    SYNC_DEAL_LIMIT: int = 100
    FIELD_OPTIONS_TTL_SECONDS: int = 6 * 60 * 60
    TRAINING_CODE_MARKER: str = "form-"

    def custom_field_keys(self) -> dict[str, str]:
        """Return logical custom field name -> configured Pipedrive key.

        Fields without a configured key are omitted.
        """
        keys = {
            "site": self.PIPEDRIVE_FIELD_SITE,
            "caes": self.PIPEDRIVE_FIELD_CAES,
            "fundae": self.PIPEDRIVE_FIELD_FUNDAE,
            "hotel_pernocta": self.PIPEDRIVE_FIELD_HOTEL,
            "address": self.PIPEDRIVE_FIELD_ADDRESS,
            "formations": self.PIPEDRIVE_FIELD_FORMATIONS,
        }
        return {name: key for name, key in keys.items() if key}


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
