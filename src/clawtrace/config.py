"""Configuration management for ClawTrace."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


class ClawTraceSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    traces_dir: Path = Field(
        default=Path("memory/traces"), validation_alias="CLAWTRACE_TRACES_DIR"
    )
    memory_changes_dir: Path = Field(
        default=Path("memory/memory-changes"), validation_alias="CLAWTRACE_MEMORY_CHANGES_DIR"
    )
    sessions_dir: Path | None = Field(default=None, validation_alias="CLAWTRACE_SESSIONS_DIR")
    project_root: Path = Field(default=Path("."), validation_alias="CLAWTRACE_PROJECT_ROOT")
    log_level: str = Field(default="INFO", validation_alias="CLAWTRACE_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "CLAWTRACE_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("sessions_dir", mode="before")
    @classmethod
    def _empty_sessions_dir(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return value


@lru_cache(maxsize=1)
def get_settings() -> ClawTraceSettings:
    """Return cached settings instance."""

    settings = ClawTraceSettings()
    settings.traces_dir = settings.traces_dir.expanduser().resolve()
    settings.memory_changes_dir = settings.memory_changes_dir.expanduser().resolve()
    settings.project_root = settings.project_root.expanduser().resolve()
    if settings.sessions_dir is not None:
        settings.sessions_dir = settings.sessions_dir.expanduser().resolve()
    return settings


def configure_logging(level: str) -> None:
    """Configure root logging for the ClawTrace command line."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
    )


__all__ = ["ClawTraceSettings", "configure_logging", "get_settings"]
