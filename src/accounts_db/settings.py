"""Runtime configuration, read from ``ACCOUNTS_*`` environment variables and ``./.env``."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["console", "json"]

SUPPORTED_BACKENDS = frozenset({"postgresql", "sqlite"})


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ACCOUNTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    # Database
    database_url: str = Field(description="postgresql+psycopg://... or sqlite:///...")
    database_echo: bool = False
    database_log_level: LogLevel | None = None
    database_pool_size: int = Field(5, ge=1)
    database_max_overflow: int = Field(10, ge=0)
    database_pool_timeout: int = Field(30, gt=0)
    database_pool_recycle: int = Field(1800, ge=0)
    database_connect_timeout_seconds: int | None = Field(10, ge=0)

    # Logging
    log_level: LogLevel | None = None
    log_format: LogFormat = "console"

    # Runner
    migration_batch_size: int = Field(1000, ge=1)
    migration_lease_seconds: int = Field(900, ge=0, description="0 disables lease expiry.")
    migration_owner: str | None = None

    # Seeds the demo user when the deployment runs with mock authentication.
    mock_auth: bool = False

    @field_validator("database_url")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        try:
            backend = make_url(value).get_backend_name()
        except ArgumentError as exc:
            raise ValueError(f"not a database URL: {value!r}") from exc
        if backend == "postgres":
            backend = "postgresql"
        if backend not in SUPPORTED_BACKENDS:
            raise ValueError("use postgresql+psycopg:// or sqlite://")
        return value

    @field_validator("log_level", "database_log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("log_format", mode="before")
    @classmethod
    def _lower_format(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value

    @property
    def effective_log_level(self) -> str:
        return self.log_level or "INFO"

    @property
    def lease_enabled(self) -> bool:
        return self.migration_lease_seconds > 0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def reload_settings() -> Settings:
    """Drop the cached instance and read the environment again."""

    get_settings.cache_clear()
    return get_settings()


__all__ = [
    "LogFormat",
    "LogLevel",
    "SUPPORTED_BACKENDS",
    "Settings",
    "get_settings",
    "reload_settings",
]
