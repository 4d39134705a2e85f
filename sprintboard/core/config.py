"""
Application configuration using pydantic-settings.

Settings are loaded from environment variables with sensible defaults.
Azure DevOps credentials accept the legacy variable names used by the
Node proxy (VITE_AZDO_*, AZDO_ORGURL, ...).
"""

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Capacity defaults (story points per sprint)
    default_sprint_capacity: float = 16
    rebalance_default_capacity: float = 14

    # Preferences store configuration
    db_path: str = ".data/sprintboard.db"
    db_timeout: int = 30  # Connection timeout in seconds

    # Azure DevOps relay
    azdo_org_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("VITE_AZDO_ORG_URL", "AZDO_ORG_URL", "AZDO_ORGURL", "AZDO_ORG"),
    )
    azdo_pat: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("VITE_AZDO_PAT", "AZDO_PAT", "AZDO_PERSONAL_ACCESS_TOKEN"),
    )
    azdo_project: str | None = Field(
        default=None,
        validation_alias=AliasChoices("AZDO_PROJECT", "VITE_AZDO_PROJECT"),
    )
    azdo_api_version: str = Field(
        default="6.0",
        validation_alias=AliasChoices("VITE_AZDO_API_VERSION", "AZDO_API_VERSION"),
    )
    azdo_config_path: str | None = None
    azdo_timeout_seconds: float = 60
    azdo_verify_tls: bool = True
    azdo_batch_size: int = 200

    # CORS configuration
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Server configuration
    host: str = "0.0.0.0"
    port: int = 4000
    debug: bool = True
    log_level: str = "INFO"


# Global settings instance
settings = Settings()
