"""Configuration loading and validation for the reactivity engine."""
from __future__ import annotations

import datetime as dt
import pathlib
from typing import Any, Dict

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .records import Region


class ConfigurationError(RuntimeError):
    """Raised when configuration cannot be loaded or is invalid."""


class DatabaseConfig(BaseModel):
    url: str = Field(default="sqlite+aiosqlite:///./reactivity.db")
    echo: bool = False
    connect_retries: int = Field(default=3, ge=0)
    retry_backoff_seconds: float = Field(default=1.0, gt=0)
    fetch_timeout_seconds: float = Field(default=30.0, gt=0)


class CacheConfig(BaseModel):
    ttl_hours: float = Field(default=12.0, gt=0)
    serve_stale_on_error: bool = True
    identity_cache_size: int = Field(default=1024, ge=1)

    @property
    def ttl(self) -> dt.timedelta:
        return dt.timedelta(hours=self.ttl_hours)


class ReactivityConfig(BaseModel):
    """Grade thresholds and calculation window for reactivity scoring."""

    grade_a: float = 0.9
    grade_b: float = 0.8
    grade_c: float = 0.7
    min_pairs: int = Field(default=2, ge=2)
    window_months: int = Field(default=1, ge=1)
    region: Region = Region.US

    @field_validator("region", mode="before")
    @classmethod
    def _parse_region(cls, value: Any) -> Any:
        return Region.parse(value) if isinstance(value, str) else value

    @model_validator(mode="after")
    def _validate_thresholds(self) -> "ReactivityConfig":
        if not self.grade_a > self.grade_b > self.grade_c:
            raise ValueError("grade thresholds must be strictly decreasing (grade_a > grade_b > grade_c)")
        return self


class BatchConfig(BaseModel):
    max_concurrency: int = Field(default=4, ge=1)
    regions: list[Region] = Field(default_factory=lambda: [Region.US])

    @field_validator("regions", mode="before")
    @classmethod
    def _parse_regions(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [Region.parse(item) if isinstance(item, str) else item for item in value]
        return value

    @field_validator("regions")
    @classmethod
    def _validate_regions(cls, value: list[Region]) -> list[Region]:
        if not value:
            raise ValueError("at least one region must be configured for the batch")
        return list(dict.fromkeys(value))


class LoggingConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    level: str = Field(default="info")
    render_json: bool = Field(default=True, alias="json")
    log_file: str | None = None


class RetryConfig(BaseModel):
    attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=0.5, gt=0)
    backoff_max_seconds: float = Field(default=8.0, gt=0)


class AppConfig(BaseModel):
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    reactivity: ReactivityConfig = Field(default_factory=ReactivityConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)


def load_config(path: str | pathlib.Path) -> AppConfig:
    """Load and validate the YAML configuration file."""

    config_path = pathlib.Path(path).expanduser().resolve()
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        try:
            raw: Dict[str, Any] = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Configuration file {config_path} is not valid YAML") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError("Configuration root must be a mapping")

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {exc}") from exc


__all__ = [
    "AppConfig",
    "BatchConfig",
    "CacheConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "LoggingConfig",
    "ReactivityConfig",
    "RetryConfig",
    "load_config",
]
