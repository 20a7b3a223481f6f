"""
Settings for credproxy.

Values come from the environment with the CREDPROXY_ prefix
(e.g., CREDPROXY_LOG_LEVEL=DEBUG). Command-line options override them.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide configuration."""

    model_config = SettingsConfigDict(env_prefix="CREDPROXY_", extra="ignore")

    log_level: str = Field(
        default="INFO",
        description="Minimum log level.",
    )
    log_json: bool = Field(
        default=False,
        description="Emit logs as JSON lines instead of console output.",
    )
    db_path: Path = Field(
        default=Path("credproxy.db"),
        description="SQLite database used by the reference policy store.",
    )


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()
