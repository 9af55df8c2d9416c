"""Centralized application configuration with schema validation.

This module is intentionally compatibility-first:
- Supports flat environment names (for example ``DB_URL``).
- Supports nested names (for example ``DB__URL``) for future consistency.
- Optionally reads a local ``.env`` file before process env values.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from threading import Lock

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

_DEFAULT_CHANNELS = ["storage_change", "pipeline_change"]
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _normalize_level_text(value: object) -> str:
    text = str(value or "").strip().upper()
    if text in _LOG_LEVELS:
        return text
    return "INFO"


class DatabaseConfig(BaseModel):
    """Database connection settings."""

    model_config = ConfigDict(frozen=True)

    url: str | None = Field(default=None, description="Postgres connection URL")
    pool_maxconn: int = Field(default=10, ge=1, le=100)
    connect_timeout: int = Field(default=5, ge=1, le=60)


class APIConfig(BaseModel):
    """Flask API runtime configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000, ge=1, le=65535)
    version: str = Field(default="v1")
    debug_errors: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    cors_origin: str = Field(default="*")
    enforce_schema_gate: bool = Field(default=True)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return _normalize_level_text(value)

    @field_validator("version")
    @classmethod
    def _normalize_version(cls, value: str) -> str:
        text = str(value or "").strip().lower()
        if re.match(r"^v\d+$", text):
            return text
        return "v1"

    @field_validator("cors_origin", mode="before")
    @classmethod
    def _normalize_cors_origin(cls, value: object) -> str:
        return str(value or "").strip()


class LoggingSettings(BaseModel):
    """Repository-wide logging settings."""

    model_config = ConfigDict(frozen=True)

    level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)
    override_root_handlers: bool = Field(default=False)

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        return _normalize_level_text(value)


class DbMetricsConfig(BaseModel):
    """DB query instrumentation settings."""

    model_config = ConfigDict(frozen=True)

    metrics_enabled: bool = Field(default=True)
    slow_query_threshold_ms: float = Field(default=1000.0, ge=0.0)

    @field_validator("metrics_enabled", mode="before")
    @classmethod
    def _normalize_metrics_enabled(cls, value: object) -> bool:
        if value is None:
            return True
        text = str(value).strip().lower()
        if text in {"0", "false", "no", "off"}:
            return False
        return True

    @field_validator("slow_query_threshold_ms", mode="before")
    @classmethod
    def _normalize_threshold_ms(cls, value: object) -> float:
        if value is None:
            return 1000.0
        text = str(value).strip()
        if text == "":
            return 1000.0
        try:
            parsed = float(text)
        except (TypeError, ValueError):
            return 1000.0
        return max(0.0, parsed)


class ForecastConfig(BaseModel):
    """Runway projection defaults and warning thresholds."""

    model_config = ConfigDict(frozen=True)

    default_horizon_days: int = Field(default=30, ge=1)
    max_horizon_days: int = Field(default=365, ge=1)
    critical_days: int = Field(default=3, ge=0)
    warning_days: int = Field(default=7, ge=0)
    growth_window: int = Field(default=7, ge=2, le=365)

    @model_validator(mode="after")
    def _check_ordering(self) -> ForecastConfig:
        if self.default_horizon_days > self.max_horizon_days:
            raise ValueError("forecast.default_horizon_days must be <= forecast.max_horizon_days")
        if self.critical_days > self.warning_days:
            raise ValueError("forecast.critical_days must be <= forecast.warning_days")
        return self


class LiveConfig(BaseModel):
    """Live update feed (WebSocket relay) settings."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5001, ge=1, le=65535)
    channels: list[str] = Field(default_factory=lambda: list(_DEFAULT_CHANNELS))
    poll_timeout_s: float = Field(default=5.0, gt=0.0, le=300.0)
    queue_max_frames: int = Field(default=1000, ge=1, le=1_000_000)

    @field_validator("channels", mode="before")
    @classmethod
    def _normalize_channels(cls, value: object) -> list[str]:
        """Accept list or comma-separated string and normalize to unique ordered list."""
        if value is None:
            return list(_DEFAULT_CHANNELS)

        items: list[str]
        if isinstance(value, str):
            items = [part.strip() for part in value.split(",") if part.strip()]
        elif isinstance(value, list):
            items = [str(part).strip() for part in value if str(part).strip()]
        else:
            raise TypeError("live.channels must be a list[str] or comma-separated string")

        if not items:
            raise ValueError("live.channels must contain at least one channel")

        seen: set[str] = set()
        ordered: list[str] = []
        for channel in items:
            if not re.match(r"^[a-z_][a-z0-9_]*$", channel):
                raise ValueError(f"invalid notification channel name: {channel!r}")
            if channel not in seen:
                seen.add(channel)
                ordered.append(channel)
        return ordered


class Settings(BaseModel):
    """Top-level settings model."""

    model_config = ConfigDict(frozen=True)

    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    db_metrics: DbMetricsConfig = Field(default_factory=DbMetricsConfig)
    forecast: ForecastConfig = Field(default_factory=ForecastConfig)
    live: LiveConfig = Field(default_factory=LiveConfig)

    @classmethod
    def from_env(
        cls,
        *,
        env: Mapping[str, str] | None = None,
        env_file: str = ".env",
    ) -> Settings:
        """Build settings from `.env` then environment variables."""
        runtime_env = os.environ if env is None else env
        merged_env = _merge_env(_load_dotenv(Path(env_file)), runtime_env)
        payload = _build_payload(merged_env)
        return cls.model_validate(payload)


def _load_dotenv(path: Path) -> dict[str, str]:
    """Parse a minimal `.env` file format."""
    if not path.exists() or not path.is_file():
        return {}

    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, raw_value = line.split("=", 1)
        key_clean = key.strip()
        value = raw_value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        if key_clean:
            values[key_clean] = value
    return values


def _merge_env(dotenv_values: Mapping[str, str], runtime_env: Mapping[str, str]) -> dict[str, str]:
    """Return env map where process env overrides `.env` values."""
    merged = {str(k): str(v) for k, v in dotenv_values.items()}
    for key, value in runtime_env.items():
        merged[str(key)] = str(value)
    return merged


def _first_non_empty(env: Mapping[str, str], *keys: str) -> str | None:
    """Return the first non-empty value for the provided keys."""
    for key in keys:
        value = str(env.get(key, "")).strip()
        if value:
            return value
    return None


def _db_url_from_parts(env: Mapping[str, str]) -> str | None:
    """Build a libpq URL from DB_HOST/DB_NAME/... when DB_URL is absent."""
    host = _first_non_empty(env, "DB_HOST")
    name = _first_non_empty(env, "DB_NAME")
    if not host or not name:
        return None
    user = _first_non_empty(env, "DB_USER") or ""
    password = _first_non_empty(env, "DB_PASSWORD") or ""
    port = _first_non_empty(env, "DB_PORT") or "5432"
    auth = ""
    if user:
        auth = f"{user}:{password}@" if password else f"{user}@"
    return f"postgresql://{auth}{host}:{port}/{name}"


def _build_payload(env: Mapping[str, str]) -> dict[str, object]:
    """Build nested settings payload from env values."""
    db = {
        "url": _first_non_empty(env, "DB__URL", "DB_URL", "DATABASE_URL") or _db_url_from_parts(env),
        "pool_maxconn": _first_non_empty(env, "DB__POOL_MAXCONN", "DB_POOL_MAXCONN"),
        "connect_timeout": _first_non_empty(env, "DB__CONNECT_TIMEOUT", "DB_CONNECT_TIMEOUT"),
    }
    api = {
        "host": _first_non_empty(env, "API__HOST", "API_HOST", "HOST"),
        "port": _first_non_empty(env, "API__PORT", "API_PORT", "PORT"),
        "version": _first_non_empty(env, "API__VERSION", "API_VERSION"),
        "debug_errors": _first_non_empty(env, "API__DEBUG_ERRORS", "API_DEBUG_ERRORS"),
        "log_level": _first_non_empty(env, "API__LOG_LEVEL", "API_LOG_LEVEL"),
        "cors_origin": _first_non_empty(env, "API__CORS_ORIGIN", "API_CORS_ORIGIN"),
        "enforce_schema_gate": _first_non_empty(env, "API__ENFORCE_SCHEMA_GATE", "API_ENFORCE_SCHEMA_GATE"),
    }
    logging_settings = {
        "level": _first_non_empty(env, "LOGGING__LEVEL", "RUNWAY_LOG_LEVEL"),
        "json_logs": _first_non_empty(env, "LOGGING__JSON_LOGS", "RUNWAY_LOG_JSON"),
        "override_root_handlers": _first_non_empty(
            env, "LOGGING__OVERRIDE_ROOT_HANDLERS", "RUNWAY_LOG_OVERRIDE"
        ),
    }
    db_metrics = {
        "metrics_enabled": _first_non_empty(env, "DB_METRICS__ENABLED", "DB_QUERY_METRICS_ENABLED"),
        "slow_query_threshold_ms": _first_non_empty(
            env, "DB_METRICS__SLOW_QUERY_THRESHOLD_MS", "DB_SLOW_QUERY_THRESHOLD_MS"
        ),
    }
    forecast = {
        "default_horizon_days": _first_non_empty(
            env, "FORECAST__DEFAULT_HORIZON_DAYS", "FORECAST_HORIZON_DAYS"
        ),
        "max_horizon_days": _first_non_empty(env, "FORECAST__MAX_HORIZON_DAYS", "FORECAST_MAX_HORIZON_DAYS"),
        "critical_days": _first_non_empty(env, "FORECAST__CRITICAL_DAYS", "RUNWAY_CRITICAL_DAYS"),
        "warning_days": _first_non_empty(env, "FORECAST__WARNING_DAYS", "RUNWAY_WARNING_DAYS"),
        "growth_window": _first_non_empty(env, "FORECAST__GROWTH_WINDOW", "GROWTH_WINDOW"),
    }
    live = {
        "host": _first_non_empty(env, "LIVE__HOST", "LIVE_HOST"),
        "port": _first_non_empty(env, "LIVE__PORT", "LIVE_PORT", "WS_PORT"),
        "channels": _first_non_empty(env, "LIVE__CHANNELS", "LIVE_CHANNELS"),
        "poll_timeout_s": _first_non_empty(env, "LIVE__POLL_TIMEOUT_S", "LIVE_POLL_TIMEOUT_S"),
        "queue_max_frames": _first_non_empty(env, "LIVE__QUEUE_MAX_FRAMES", "LIVE_QUEUE_MAX_FRAMES"),
    }
    return {
        "db": {k: v for k, v in db.items() if v is not None},
        "api": {k: v for k, v in api.items() if v is not None},
        "logging": {k: v for k, v in logging_settings.items() if v is not None},
        "db_metrics": {k: v for k, v in db_metrics.items() if v is not None},
        "forecast": {k: v for k, v in forecast.items() if v is not None},
        "live": {k: v for k, v in live.items() if v is not None},
    }


_SETTINGS_LOCK = Lock()
_SETTINGS_CACHE: Settings | None = None


def get_settings(*, reload: bool = False) -> Settings:
    """Return cached settings, optionally forcing reload from env."""
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        if reload or _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = Settings.from_env()
        return _SETTINGS_CACHE


def clear_settings_cache() -> None:
    """Clear in-process settings cache."""
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None


__all__ = [
    "APIConfig",
    "DatabaseConfig",
    "DbMetricsConfig",
    "ForecastConfig",
    "LiveConfig",
    "LoggingSettings",
    "Settings",
    "get_settings",
    "clear_settings_cache",
    "ValidationError",
]
