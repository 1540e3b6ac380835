"""
Configuration management for the escrow board service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, field_validator

from escrow_board_service.logging import VALID_LOG_LEVELS

REDACTION_MARKER = "***REDACTED***"
MAX_PLATFORM_FEE_PERCENTAGE = 10
# Largest value an SQLite INTEGER column holds.
MAX_STORED_INTEGER = 2**63 - 1

_SENSITIVE_KEY_PARTS = ("password", "secret", "token", "private_key")


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str

    @field_validator("level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        if value.upper() not in VALID_LOG_LEVELS:
            msg = f"Invalid log level: {value}"
            raise ValueError(msg)
        return value


class DatabaseConfig(BaseModel):
    """Registry database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class FundsConfig(BaseModel):
    """Account book configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str
    custody_account_id: str


class IdentityConfig(BaseModel):
    """Identity service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    verify_jws_path: str
    timeout_seconds: int


class PlatformConfig(BaseModel):
    """Registry owner and fee policy."""

    model_config = ConfigDict(extra="forbid")
    owner_id: str
    platform_fee_percentage: int

    @field_validator("owner_id")
    @classmethod
    def _check_owner(cls, value: str) -> str:
        if not value:
            msg = "owner_id must not be empty"
            raise ValueError(msg)
        return value

    @field_validator("platform_fee_percentage")
    @classmethod
    def _check_fee(cls, value: int) -> int:
        if not 0 <= value <= MAX_PLATFORM_FEE_PERCENTAGE:
            msg = f"platform_fee_percentage must be between 0 and {MAX_PLATFORM_FEE_PERCENTAGE}"
            raise ValueError(msg)
        return value


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    funds: FundsConfig
    identity: IdentityConfig
    platform: PlatformConfig
    request: RequestConfig


def get_config_path() -> Path:
    """Determine configuration file path from CONFIG_PATH, else ./config.yaml."""
    env_path = os.environ.get("CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return Path.cwd() / "config.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and validate settings from the YAML config file.

    Raises:
        FileNotFoundError: If the config file does not exist
        ValueError: If the file is not a YAML mapping
        pydantic.ValidationError: If any value is missing or invalid
    """
    config_path = get_config_path()
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open(encoding="utf-8") as config_file:
        raw = yaml.safe_load(config_file)

    if not isinstance(raw, dict):
        msg = f"Configuration file must contain a mapping: {config_path}"
        raise ValueError(msg)

    return Settings.model_validate(raw)


def clear_settings_cache() -> None:
    """Drop cached settings so the next call reloads from disk."""
    get_settings.cache_clear()


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTION_MARKER
            if any(part in key.lower() for part in _SENSITIVE_KEY_PARTS)
            else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    return _redact(get_settings().model_dump())
