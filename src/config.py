"""Configuration management for the care-plan engine."""

from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_REPO_ROOT = Path(__file__).resolve().parents[1]
_DEFAULT_CONFIG_PATH = _REPO_ROOT / "config" / "careplan.yml"
_USER_CONFIG_PATHS = [
    Path("~/.config/careplan/careplan.yml").expanduser(),
    Path("/config/careplan.yml"),
]
_USER_SECRETS_PATHS = [
    Path("~/.config/careplan/secrets.yml").expanduser(),
    Path("/config/secrets.yml"),
]

_CHANNELS = {"EMAIL", "PUSH", "SMS"}


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping from disk, returning an empty mapping if missing."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return data


def _yaml_settings_source(paths: list[Path]):
    """Create a Pydantic settings source for a list of YAML paths."""

    def source() -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for path in paths:
            merged.update(_load_yaml(path))
        return merged

    return source


def _set_nested_value(target: dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted-path value on a nested mapping, creating containers."""
    parts = path.split(".")
    cursor = target
    for key in parts[:-1]:
        node = cursor.get(key)
        if not isinstance(node, dict):
            node = {}
            cursor[key] = node
        cursor = node
    cursor[parts[-1]] = value


def _parse_env_value(raw: str, kind: str) -> Any:
    """Parse an environment value into the requested primitive type."""
    if kind == "int":
        return int(raw)
    if kind == "bool":
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if kind == "json":
        return json.loads(raw)
    return raw


def _env_settings_source():
    """Create a settings source that maps environment variables to config keys."""
    mapping = {
        "DATABASE_URL": ("database.url", "str"),
        "DATABASE_ECHO": ("database.echo", "bool"),
        "USER_TIMEZONE": ("user.timezone", "str"),
        "LOG_LEVEL": ("log_level", "str"),
        "LOG_JSON": ("log_json", "bool"),
        "REMINDER_DEFAULT_CHANNELS": ("reminders.default_channels", "json"),
    }

    def source() -> dict[str, Any]:
        data: dict[str, Any] = {}
        for env_key, (path, kind) in mapping.items():
            raw = os.environ.get(env_key)
            if raw is None:
                continue
            _set_nested_value(data, path, _parse_env_value(raw, kind))
        return data

    return source


def _validate_hhmm(value: str, label: str) -> str:
    """Ensure a time-of-day string uses HH:MM 24-hour format."""
    try:
        datetime.strptime(value.strip(), "%H:%M")
    except ValueError as exc:
        raise ValueError(f"{label} must be HH:MM.") from exc
    return value.strip()


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    url: str = "sqlite:///careplan.db"
    echo: bool = False

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        """Ensure the database URL is non-empty."""
        if not value or not value.strip():
            raise ValueError("database.url must be non-empty.")
        return value.strip()


class UserConfig(BaseModel):
    """Deployment locale used for local-time arithmetic."""

    timezone: str = "UTC"

    @model_validator(mode="after")
    def validate_timezone(self) -> "UserConfig":
        """Ensure the configured timezone is valid."""
        try:
            ZoneInfo(self.timezone)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Invalid timezone: {self.timezone}") from exc
        return self


class CarePlanConfig(BaseModel):
    """Care-plan task validation limits."""

    min_reason_length: int = 3
    reason_max_length: int = 800
    title_max_length: int = 200
    description_max_length: int = 2000
    check_in_preview_size: int = 3

    @field_validator("min_reason_length")
    @classmethod
    def validate_min_reason_length(cls, value: int) -> int:
        """Ensure the minimum reason length is positive."""
        if value < 1:
            raise ValueError("care_plan.min_reason_length must be >= 1.")
        return value

    @field_validator("reason_max_length", "title_max_length", "description_max_length")
    @classmethod
    def validate_max_lengths(cls, value: int) -> int:
        """Ensure truncation limits are positive."""
        if value < 1:
            raise ValueError("care_plan length limits must be >= 1.")
        return value

    @field_validator("check_in_preview_size")
    @classmethod
    def validate_preview_size(cls, value: int) -> int:
        """Ensure the check-in preview size is non-negative."""
        if value < 0:
            raise ValueError("care_plan.check_in_preview_size must be >= 0.")
        return value

    @model_validator(mode="after")
    def validate_reason_bounds(self) -> "CarePlanConfig":
        """Ensure a valid reason can fit inside the truncation limit."""
        if self.min_reason_length > self.reason_max_length:
            raise ValueError(
                "care_plan.min_reason_length must not exceed care_plan.reason_max_length."
            )
        return self


class ReminderConfig(BaseModel):
    """Reminder derivation defaults."""

    default_channels: list[str] = Field(default_factory=lambda: ["PUSH"])
    blood_pressure_reminder_time: str = "09:00"
    blood_pressure_days: int = 7
    upload_analysis_reminder_time: str = "10:00"
    upload_analysis_due_days: int = 2
    previsit_lead_hours: int = 48
    previsit_fallback_minutes: int = 10

    @field_validator("default_channels")
    @classmethod
    def validate_default_channels(cls, value: list[str]) -> list[str]:
        """Ensure the fallback channel set is non-empty and known."""
        normalized = [item.strip().upper() for item in value]
        if not normalized:
            raise ValueError("reminders.default_channels must be non-empty.")
        unknown = sorted(set(normalized) - _CHANNELS)
        if unknown:
            raise ValueError(f"reminders.default_channels has unknown channels: {unknown}")
        return list(dict.fromkeys(normalized))

    @field_validator("blood_pressure_reminder_time", "upload_analysis_reminder_time")
    @classmethod
    def validate_reminder_times(cls, value: str) -> str:
        """Ensure reminder times use HH:MM 24-hour format."""
        return _validate_hhmm(value, "reminders time")

    @field_validator(
        "blood_pressure_days",
        "upload_analysis_due_days",
        "previsit_lead_hours",
        "previsit_fallback_minutes",
    )
    @classmethod
    def validate_positive(cls, value: int) -> int:
        """Ensure reminder windows are positive."""
        if value < 1:
            raise ValueError("reminders windows must be >= 1.")
        return value


class Settings(BaseSettings):
    """Application settings loaded from environment variables and YAML."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Layer settings sources in descending order of precedence."""
        return (
            init_settings,
            _env_settings_source(),
            _yaml_settings_source(_USER_SECRETS_PATHS),
            _yaml_settings_source(_USER_CONFIG_PATHS),
            _yaml_settings_source([_DEFAULT_CONFIG_PATH]),
        )

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Database Configuration
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # Locale
    user: UserConfig = Field(default_factory=UserConfig)

    # Care plan limits
    care_plan: CarePlanConfig = Field(default_factory=CarePlanConfig)

    # Reminder derivation
    reminders: ReminderConfig = Field(default_factory=ReminderConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Ensure the log level is a standard logging level name."""
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log_level: {value}")
        return normalized

    @property
    def database_url(self) -> str:
        """Return the configured database URL."""
        return self.database.url


# Global settings instance
settings = Settings()
