"""Settings for specrepo components.

Every settings class reads, in order of precedence:

- keyword arguments passed to the constructor
- environment variables named ``SPECREPO_<NAME>_<FIELD>``
- an optional ``settings/<name>.yaml`` file relative to the working directory
"""

import typing as t
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)
from sqlalchemy import pool
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

settings_path = Path.cwd() / "settings"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        validate_default=True,
        arbitrary_types_allowed=True,
    )

    settings_name: t.ClassVar[str] = "app"

    @classmethod
    def yaml_file(cls) -> Path:
        return settings_path / f"{cls.settings_name}.yaml"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources: list[PydanticBaseSettingsSource] = [init_settings, env_settings]
        yaml_file = cls.yaml_file()
        if yaml_file.is_file():
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file))
        return tuple(sources)


class StoreSettings(Settings):
    """Connection settings for the relational store."""

    model_config = SettingsConfigDict(env_prefix="SPECREPO_STORE_")
    settings_name: t.ClassVar[str] = "store"

    database_url: str = "sqlite+aiosqlite:///:memory:"
    echo: bool = False
    pool_pre_ping: bool = False
    poolclass: str | None = None
    engine_kwargs: dict[str, t.Any] = {}

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        try:
            url = make_url(v)
        except ArgumentError as e:
            msg = f"database_url is not a valid URL: {v!r}"
            raise ValueError(msg) from e
        if "+" not in url.drivername:
            msg = (
                "database_url must name an async driver, "
                "e.g. postgresql+asyncpg:// or sqlite+aiosqlite://"
            )
            raise ValueError(msg)
        return v

    @property
    def is_memory_sqlite(self) -> bool:
        url = make_url(self.database_url)
        return url.get_backend_name() == "sqlite" and url.database in (
            None,
            "",
            ":memory:",
        )

    def build_engine_kwargs(self) -> dict[str, t.Any]:
        kwargs: dict[str, t.Any] = {"echo": self.echo}
        if self.is_memory_sqlite:
            # one shared connection, otherwise every checkout sees an empty db
            kwargs["poolclass"] = pool.StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        elif self.poolclass:
            kwargs["poolclass"] = getattr(pool, self.poolclass)
        if self.pool_pre_ping:
            kwargs["pool_pre_ping"] = True
        return kwargs | self.engine_kwargs


class RepositorySettings(Settings):
    """Repository configuration settings."""

    model_config = SettingsConfigDict(env_prefix="SPECREPO_REPOSITORY_")
    settings_name: t.ClassVar[str] = "repository"

    # Query settings
    default_page_size: int = Field(default=50, ge=1, le=1000)
    max_page_size: int = Field(default=1000, ge=1)

    # Batching
    batch_size: int = Field(default=500, ge=1, le=10000)

    # Auditing
    audit_enabled: bool = True
    audit_user: str = "system"

    log_operations: bool = True

    @model_validator(mode="after")
    def validate_page_size(self) -> t.Self:
        if self.default_page_size > self.max_page_size:
            msg = "default_page_size cannot exceed max_page_size"
            raise ValueError(msg)
        return self


class LoggerSettings(Settings):
    model_config = SettingsConfigDict(env_prefix="SPECREPO_LOGGER_")
    settings_name: t.ClassVar[str] = "logger"

    log_level: str = "INFO"
    format: dict[str, str] = {
        "time": "<b><e>[</e> <w>{time:YYYY-MM-DD HH:mm:ss.SSS}</w> <e>]</e></b>",
        "level": " <level>{level:>8}</level>",
        "sep": " <b><w>in</w></b> ",
        "name": "<b>{extra[mod_name]:>20}</b>",
        "line": "<b><e>[</e><w>{line:^5}</w><e>]</e></b>",
        "message": "  <level>{message}</level>",
    }
    serialize: bool = False
    colorize: bool = True
    intercept_sql: bool = False
    sql_level: str = "WARNING"

    @field_validator("log_level", "sql_level")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.upper()


@lru_cache
def get_store_settings() -> StoreSettings:
    """Get cached store settings."""
    return StoreSettings()


@lru_cache
def get_repository_settings() -> RepositorySettings:
    """Get cached repository settings."""
    return RepositorySettings()


@lru_cache
def get_logger_settings() -> LoggerSettings:
    return LoggerSettings()
