"""
Configuration interface for digest citation storage.

Pydantic models for loading and validating ``config.yaml``. All models
forbid unknown keys so that a typo in the file fails at load time.

Usage:
    from digest_citations.config_interface import load_config

    config = load_config("config/config.yaml")
    db_path = config.database.path
"""
import hashlib
from pathlib import Path
from typing import Literal, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from digest_citations.citations.parser import DEFAULT_CONTEXT_WINDOW, MIN_CONTEXT_LENGTH

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class DatabaseConfig(_StrictModel):
    """SQLite database settings."""

    path: Path = Path("data/digests.db")
    busy_timeout_ms: int = Field(default=30000, ge=0)


class CitationsConfig(_StrictModel):
    """Citation parsing settings."""

    context_window: int = Field(default=DEFAULT_CONTEXT_WINDOW, ge=MIN_CONTEXT_LENGTH)


class LoggingConfig(_StrictModel):
    """Logging settings."""

    level: LogLevel = "INFO"
    file: str | None = None

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v


class Config(_StrictModel):
    """Root configuration."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    citations: CitationsConfig = Field(default_factory=CitationsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: Union[str, Path]) -> Config:
    """Load and validate configuration from a YAML file."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw_config = yaml.safe_load(f)

    return Config.model_validate(raw_config or {})


def get_config_version(config: Config) -> str:
    """Generate a hash-based version string for the configuration."""
    config_json = config.model_dump_json(exclude_none=True)
    return hashlib.sha256(config_json.encode()).hexdigest()[:16]
