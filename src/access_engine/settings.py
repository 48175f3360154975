"""Runtime settings read from ``ACCESS_*`` environment variables and ``.env``."""

from __future__ import annotations

from collections.abc import Callable
from functools import lru_cache
from pathlib import Path
from typing import TypeVar

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("console", "json")

T = TypeVar("T")


def access_settings_config() -> SettingsConfigDict:
    """Return the standard ``BaseSettings`` config dict."""

    return SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="ACCESS_",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
        str_strip_whitespace=True,
    )


def create_settings_accessors(
    settings_type: type[T],
) -> tuple[Callable[[], T], Callable[[], T]]:
    """Return a cached ``get`` accessor and a ``reload`` that rebuilds it."""

    @lru_cache(maxsize=1)
    def _build() -> T:
        return settings_type()

    def get_settings() -> T:
        return _build()

    def reload_settings() -> T:
        _build.cache_clear()
        return _build()

    return get_settings, reload_settings


def normalize_choice(value: object, choices: tuple[str, ...], *, env_var: str) -> str:
    """Match ``value`` against ``choices`` ignoring case and surrounding blanks."""

    text = str(value).strip()
    for choice in choices:
        if text.casefold() == choice.casefold():
            return choice
    raise ValueError(f"{env_var} must be one of: {', '.join(choices)}.")


class Settings(BaseSettings):
    """Engine settings loaded from ACCESS_* environment variables."""

    model_config = access_settings_config()

    # Logging
    log_format: str = "console"
    log_level: str = "INFO"
    database_log_level: str | None = None

    # Resolution policy
    lenient_on_missing_target: bool = True
    bypass_level_ceiling: int = Field(1, ge=0)
    audit_enabled: bool = True

    # Role/entity table override (JSON); defaults are built in when unset
    config_file: Path | None = None

    # Optional SQL-backed identity store
    database_url: str | None = None
    database_echo: bool = False

    # ---- Validators ----

    @field_validator("log_format", mode="before")
    @classmethod
    def _normalize_log_format(cls, value: object) -> object:
        if value is None:
            return "console"
        return normalize_choice(value, LOG_FORMATS, env_var="ACCESS_LOG_FORMAT")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if value is None:
            return "INFO"
        return normalize_choice(value, LOG_LEVELS, env_var="ACCESS_LOG_LEVEL")

    @field_validator("database_log_level", mode="before")
    @classmethod
    def _normalize_database_log_level(cls, value: object) -> object:
        if value is None:
            return None
        return normalize_choice(value, LOG_LEVELS, env_var="ACCESS_DATABASE_LOG_LEVEL")

    @field_validator("config_file", mode="before")
    @classmethod
    def _resolve_config_file(cls, value: object) -> object:
        if value is None or value == "":
            return None
        return Path(str(value)).expanduser()


get_settings, reload_settings = create_settings_accessors(Settings)


__all__ = [
    "Settings",
    "access_settings_config",
    "create_settings_accessors",
    "get_settings",
    "normalize_choice",
    "reload_settings",
]
