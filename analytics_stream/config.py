"""Configuration loader for the realtime analytics service.

All configurable values come from config/config.yaml.
Stream base URLs may be overridden from the environment
(ANALYTICS_WS_BASE_URL, ANALYTICS_API_BASE_URL), including a .env file.

Configuration is validated at load time using Pydantic.
Typos and invalid values fail fast with clear error messages.

Usage:
    from analytics_stream.config import load_config, get, get_validated_config

    # Load and validate (call once at startup)
    load_config("config/config.yaml")

    # Get values by dot-path
    interval = get("stream.base_interval")

    # Or use the typed config object (preferred)
    config = get_validated_config()
    interval = config.stream.base_interval
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .config_schema import AppConfig, validate_config_dict

logger = logging.getLogger(__name__)

# Global config instances
_config: dict[str, Any] | None = None
_validated_config: AppConfig | None = None

# Default config path
DEFAULT_CONFIG_PATH: Path = Path(__file__).parent.parent / "config" / "config.yaml"

# Environment variable -> stream config key
ENV_OVERRIDES: dict[str, str] = {
    "ANALYTICS_WS_BASE_URL": "ws_base_url",
    "ANALYTICS_API_BASE_URL": "api_base_url",
}


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    stream = dict(raw.get("stream") or {})
    for env_name, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            stream[key] = value
    if stream:
        raw = {**raw, "stream": stream}
    return raw


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load and validate configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to config/config.yaml;
            when that default is absent (e.g. an installed package) the
            schema defaults are used.

    Returns:
        Configuration dictionary (after environment overrides).

    Raises:
        FileNotFoundError: If an explicitly given config file doesn't exist.
        pydantic.ValidationError: If config is invalid.
    """
    global _config, _validated_config

    path: Path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    loaded: Any = {}
    if path.exists():
        with open(path) as f:
            loaded = yaml.safe_load(f)
        if not isinstance(loaded, dict):
            loaded = {}
    elif config_path:
        raise FileNotFoundError(f"Config file not found: {path}")
    else:
        logger.info("No config file at %s; using defaults", path)

    load_dotenv()

    loaded = _apply_env_overrides(loaded)
    _validated_config = validate_config_dict(loaded)
    _config = loaded
    return _config


def set_config(config: dict[str, Any]) -> AppConfig:
    """Install an in-memory configuration (validated). Used by tests and embedders."""
    global _config, _validated_config
    _validated_config = validate_config_dict(config)
    _config = config
    return _validated_config


def reset_config() -> None:
    """Forget the loaded configuration so the next access reloads it."""
    global _config, _validated_config
    _config = None
    _validated_config = None


def get_config() -> dict[str, Any]:
    """Get the loaded configuration dict. Loads default if not already loaded.

    For typed access, use get_validated_config() instead.
    """
    global _config
    if _config is None:
        load_config()
    if _config is None:
        raise RuntimeError("Config failed to load. Call load_config() first.")
    return _config


def get_validated_config() -> AppConfig:
    """Get the validated configuration object.

    Returns a typed AppConfig instance with IDE autocompletion support.
    Loads default config if not already loaded.
    """
    global _validated_config
    if _validated_config is None:
        load_config()
    if _validated_config is None:
        raise RuntimeError("Validated config failed to load. Call load_config() first.")
    return _validated_config


def get(key: str, default: Any = None) -> Any:
    """Get a config value by dot-separated key path.

    Examples:
        get("stream.max_interval")
        get("dashboards.monitoring.stream_path")
    """
    config: dict[str, Any] = get_config()
    keys: list[str] = key.split(".")

    value: Any = config
    for k in keys:
        if isinstance(value, dict) and k in value:
            value = value[k]
        else:
            return default

    return value


def configure_logging(config: AppConfig | None = None) -> None:
    """Apply the configured log level and format to the root logger."""
    cfg = (config or get_validated_config()).logging
    logging.basicConfig(level=cfg.level, format=cfg.format)
    logging.getLogger().setLevel(cfg.level)
    # Frame-level chatter from the websocket client is rarely useful
    logging.getLogger("websockets").setLevel(logging.WARNING)
