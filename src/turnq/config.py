"""Configuration management for turnq."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from turnq.logging_utils import configure_logging


class Settings(BaseSettings):
    """Scheduler settings."""

    model_config = SettingsConfigDict(
        env_prefix="TURNQ_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")
    log_profile: Literal["default", "cli"] = Field(default="default", description="Log output profile")

    # Run Registry
    max_recent_runs: int = Field(default=500, ge=1, description="Runs retained for introspection")
    list_default_limit: int = Field(default=200, ge=1, description="Default page size for run listings")
    list_max_limit: int = Field(default=1000, ge=1, description="Upper bound for run listing limits")

    # Admission
    coalesce_separator: str = Field(default="\n", description="Joiner used when collect mode merges messages")

    # Echo executor
    echo_delay_seconds: float = Field(default=0.05, ge=0, description="Delay between echoed chunks")


def get_settings(**overrides: object) -> Settings:
    """Get application settings.

    Args:
        overrides: Explicit field values that win over the environment

    Returns:
        Settings instance
    """
    settings = Settings(**overrides)  # type: ignore[arg-type]

    configure_logging(profile=settings.log_profile, level=settings.log_level)

    return settings
