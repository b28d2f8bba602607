"""Configuration management for Armada."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class ArmadaSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    claude_path: str | None = Field(default=None, validation_alias="CLAUDE_PATH")
    codex_path: str | None = Field(default=None, validation_alias="CODEX_PATH")
    data_dir: Path = Field(default=Path("./.armada"), validation_alias="ARMADA_DATA_DIR")
    class_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("classes"),), validation_alias="ARMADA_CLASS_PATHS"
    )
    log_level: str = Field(default="INFO", validation_alias="ARMADA_LOG_LEVEL")
    host: str = Field(default="127.0.0.1", validation_alias="ARMADA_HOST")
    port: int = Field(default=5174, validation_alias="ARMADA_PORT")
    default_backend: str = Field(default="interactive", validation_alias="ARMADA_DEFAULT_BACKEND")
    stop_grace_seconds: float = Field(default=3.0, validation_alias="ARMADA_STOP_GRACE_SECONDS")
    resume_delay_seconds: float = Field(
        default=2.0, validation_alias="ARMADA_RESUME_DELAY_SECONDS"
    )
    persist_interval_seconds: float = Field(
        default=10.0, validation_alias="ARMADA_PERSIST_INTERVAL_SECONDS"
    )
    watchdog_interval_seconds: float = Field(
        default=5.0, validation_alias="ARMADA_WATCHDOG_INTERVAL_SECONDS"
    )
    auto_restart: bool = Field(default=False, validation_alias="ARMADA_AUTO_RESTART")
    observer_queue_size: int = Field(default=256, validation_alias="ARMADA_OBSERVER_QUEUE_SIZE")
    stream_limit_bytes: int = Field(
        default=16 * 1024 * 1024, validation_alias="ARMADA_STREAM_LIMIT_BYTES"
    )
    capture_output: bool = Field(default=True, validation_alias="ARMADA_CAPTURE_OUTPUT")
    kill_on_shutdown: bool = Field(default=True, validation_alias="ARMADA_KILL_ON_SHUTDOWN")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "ARMADA_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("default_backend")
    @classmethod
    def _validate_backend(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"interactive", "batch-resume"}:
            raise ValueError("ARMADA_DEFAULT_BACKEND must be 'interactive' or 'batch-resume'")
        return normalized

    @field_validator("class_paths", mode="before")
    @classmethod
    def _parse_class_paths(cls, value):
        if value is None or value == "":
            return (Path("classes"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("classes"),)
        raise TypeError("ARMADA_CLASS_PATHS must be a list of paths or a path-separated string")

    @field_validator(
        "stop_grace_seconds",
        "persist_interval_seconds",
        "watchdog_interval_seconds",
        "observer_queue_size",
        "stream_limit_bytes",
    )
    @classmethod
    def _validate_positive(cls, value):
        if value <= 0:
            raise ValueError("value must be > 0")
        return value

    @field_validator("resume_delay_seconds")
    @classmethod
    def _validate_resume_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("ARMADA_RESUME_DELAY_SECONDS must be >= 0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> ArmadaSettings:
    """Return cached settings instance."""

    settings = ArmadaSettings()
    settings.data_dir = settings.data_dir.expanduser().resolve()
    settings.class_paths = tuple(path.expanduser().resolve() for path in settings.class_paths)
    return settings


__all__ = ["ArmadaSettings", "get_settings"]
