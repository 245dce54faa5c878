"""Engine configuration management using Pydantic Settings.

This module loads and validates environment variables using Pydantic Settings.
All configuration is loaded from environment variables (prefixed with
``CAMPAIGN_``) or a .env file.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SCHEMA_PATH = Path(__file__).parent / "schemas" / "campaign.schema.json"


class Settings(BaseSettings):
    """Engine settings loaded from environment variables.

    Attributes:
        environment: Deployment environment (development, staging, production)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        schema_path: Path to the JSON Schema campaign documents are checked against
        max_document_bytes: Largest campaign document the loader will accept
    """

    environment: str = Field(
        default="development",
        description="Deployment environment"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    schema_path: Path = Field(
        default=DEFAULT_SCHEMA_PATH,
        description="Path to the campaign JSON Schema document"
    )
    max_document_bytes: int = Field(
        default=1024 * 1024,
        ge=1,
        description="Maximum size of a campaign document in bytes"
    )

    model_config = SettingsConfigDict(
        env_prefix="CAMPAIGN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is one of the allowed values."""
        allowed = {"development", "staging", "production"}
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of {allowed}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the allowed values."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"Log level must be one of {allowed}")
        return v_upper

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Engine settings, loaded once per process

    Note:
        Settings are read-only after load; they hold no campaign state.
    """
    return Settings()
