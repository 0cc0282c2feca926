"""Configuration using pydantic-settings.

Every field can be set through an ``OPCONTRACTS_`` environment variable,
e.g. ``OPCONTRACTS_EXECUTION_TIMEOUT=2.5``.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for loading specifications and executing operations."""

    model_config = SettingsConfigDict(env_prefix="OPCONTRACTS_", extra="ignore")

    log_level: str = Field(default="WARNING", description="Logging level")
    execution_timeout: float | None = Field(
        default=None, gt=0, description="Seconds before a call times out (unset: no limit)"
    )
    condition_modules: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["math"],
        description="Modules visible to condition expressions (comma-separated)",
    )
    spec_encoding: str = Field(default="utf-8", description="Encoding of specification files")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid:
            raise ValueError(f"log_level must be one of {valid}")
        return v.upper()

    @field_validator("condition_modules", mode="before")
    @classmethod
    def parse_condition_modules(cls, v):
        if isinstance(v, str):
            return [name.strip() for name in v.split(",") if name.strip()]
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
