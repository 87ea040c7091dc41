"""Pydantic schema for configuration validation.

All config values are validated at startup. Typos and invalid values
fail fast with clear error messages.

Usage:
    from analytics_stream.config_schema import load_validated_config, AppConfig
    config = load_validated_config("config/config.yaml")
    # config is now a validated AppConfig instance
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator


# =============================================================================
# BASE MODEL WITH STRICT VALIDATION
# =============================================================================

class StrictModel(BaseModel):
    """Base model that rejects unknown fields (catches typos)."""

    model_config = ConfigDict(extra="forbid")


# =============================================================================
# STREAM MODEL
# =============================================================================

class StreamConfig(StrictModel):
    """Realtime stream connection settings."""

    enabled: bool = Field(
        default=True,
        description="Open realtime streams at all"
    )
    ws_base_url: str | None = Field(
        default=None,
        description="WebSocket base URL (e.g. ws://localhost:5000); stream paths are appended"
    )
    api_base_url: str | None = Field(
        default=None,
        description="REST base URL; also used to derive the WebSocket URL when ws_base_url is unset"
    )
    base_interval: float = Field(
        default=2.0,
        gt=0,
        description="Base reconnect delay in seconds (multiplied by the attempt count)"
    )
    max_interval: float = Field(
        default=15.0,
        gt=0,
        description="Upper bound on the reconnect delay in seconds"
    )

    @model_validator(mode="after")
    def check_intervals(self) -> "StreamConfig":
        if self.max_interval < self.base_interval:
            raise ValueError("max_interval must be >= base_interval")
        return self


# =============================================================================
# BASELINE MODEL
# =============================================================================

class BaselineConfig(StrictModel):
    """Baseline snapshot fetch settings."""

    timeout: float = Field(
        default=10.0,
        gt=0,
        description="HTTP timeout for baseline requests in seconds"
    )


# =============================================================================
# DASHBOARD MODELS
# =============================================================================

class DashboardEntryConfig(StrictModel):
    """Settings for one analytics dashboard."""

    enabled: bool = Field(default=True, description="Mount this dashboard")
    stream_path: str | None = Field(
        default=None,
        description="Override the dashboard's default stream path"
    )
    range: str | None = Field(
        default=None,
        description="Baseline time window (e.g. 7d); None uses the API default"
    )


class DashboardsConfig(StrictModel):
    """All analytics dashboards."""

    events: DashboardEntryConfig = Field(default_factory=DashboardEntryConfig)
    users: DashboardEntryConfig = Field(default_factory=DashboardEntryConfig)
    monitoring: DashboardEntryConfig = Field(default_factory=DashboardEntryConfig)

    def enabled_names(self) -> list[str]:
        return [
            name
            for name in ("events", "users", "monitoring")
            if getattr(self, name).enabled
        ]


# =============================================================================
# SERVER MODEL
# =============================================================================

class ServerConfig(StrictModel):
    """Serving surface configuration."""

    host: str = Field(
        default="0.0.0.0",
        description="Host to bind (0.0.0.0 for all interfaces)"
    )
    port: int = Field(
        default=8080,
        gt=0,
        description="Port number"
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed CORS origins"
    )
    keepalive_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds of client silence before a keepalive ping is sent"
    )


# =============================================================================
# LOGGING MODEL
# =============================================================================

class LoggingConfig(StrictModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root log level"
    )
    format: str = Field(
        default="%(asctime)s %(levelname)s %(name)s: %(message)s",
        description="logging.Formatter format string"
    )


# =============================================================================
# ROOT CONFIG MODEL
# =============================================================================

class AppConfig(StrictModel):
    """Root configuration model for the entire application.

    All fields have sensible defaults, so an empty config file is valid.
    """

    stream: StreamConfig = Field(default_factory=StreamConfig)
    baseline: BaselineConfig = Field(default_factory=BaselineConfig)
    dashboards: DashboardsConfig = Field(default_factory=DashboardsConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# LOADING FUNCTIONS
# =============================================================================

def load_validated_config(config_path: str | Path = "config/config.yaml") -> AppConfig:
    """Load and validate configuration from YAML file.

    Args:
        config_path: Path to config YAML file.

    Returns:
        Validated AppConfig instance.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        pydantic.ValidationError: If config is invalid (with detailed error message).
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    return AppConfig.model_validate(raw_config)


def validate_config_dict(config_dict: dict[str, Any]) -> AppConfig:
    """Validate a configuration dictionary.

    Raises:
        pydantic.ValidationError: If config is invalid.
    """
    return AppConfig.model_validate(config_dict)


__all__ = [
    "StrictModel",
    "StreamConfig",
    "BaselineConfig",
    "DashboardEntryConfig",
    "DashboardsConfig",
    "ServerConfig",
    "LoggingConfig",
    "AppConfig",
    "load_validated_config",
    "validate_config_dict",
]
