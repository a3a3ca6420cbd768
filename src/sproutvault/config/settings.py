"""
Configuration settings management for SproutVault.

This module handles loading, validating, and saving the service settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.sproutvault/config.yaml by default, with the
path overridable via the SPROUTVAULT_CONFIG environment variable.

These settings describe where the live store and the application's .env
file live and how the HTTP boundary is exposed. The application's own
.env values are held separately by sproutvault.config.runtime.RuntimeConfig.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".sproutvault"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# Logical store file name expected by the application and inside bundles
STORE_FILE_NAME = "baby-tracker.db"


@dataclass
class StoreConfig:
    """Locations of the live data store and configuration file."""

    path: str = str(DEFAULT_CONFIG_DIR / "db" / STORE_FILE_NAME)
    env_path: str = str(DEFAULT_CONFIG_DIR / ".env")


@dataclass
class ServerConfig:
    """HTTP boundary settings."""

    host: str = "127.0.0.1"
    port: int = 8080
    admin_token: str = ""
    max_upload_mb: int = 512


@dataclass
class Settings:
    """
    Complete SproutVault configuration settings.

    Settings are loaded from a YAML configuration file and can be overridden
    by environment variables prefixed with SPROUTVAULT_.

    Attributes:
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        store: Live store and .env locations.
        server: HTTP boundary settings.
    """

    log_level: str = "INFO"

    store: StoreConfig = field(default_factory=StoreConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @property
    def store_path(self) -> Path:
        """Resolved path of the live store file."""
        return Path(self.store.path).expanduser()

    @property
    def env_path(self) -> Path:
        """Resolved path of the live .env file."""
        return Path(self.store.env_path).expanduser()


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from SPROUTVAULT_CONFIG environment variable if set,
    otherwise returns the default path (~/.sproutvault/config.yaml).

    Returns:
        Path to the configuration file.
    """
    env_path = os.environ.get("SPROUTVAULT_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses SPROUTVAULT_CONFIG environment variable or default path.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        settings = _apply_config_data(settings, config_data)

    settings = _apply_environment_overrides(settings)

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Args:
        settings: Settings instance to save.
        config_path: Optional path to configuration file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    vault_data = data.get("sproutvault") or {}
    if "log_level" in vault_data:
        settings.log_level = str(vault_data["log_level"]).upper()

    store = data.get("store") or {}
    if "path" in store:
        settings.store.path = str(store["path"])
    if "env_path" in store:
        settings.store.env_path = str(store["env_path"])

    server = data.get("server") or {}
    try:
        if "host" in server:
            settings.server.host = str(server["host"])
        if "port" in server:
            settings.server.port = int(server["port"])
        if "admin_token" in server:
            settings.server.admin_token = str(server["admin_token"] or "")
        if "max_upload_mb" in server:
            settings.server.max_upload_mb = int(server["max_upload_mb"])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid server setting: {e}") from e

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "SPROUTVAULT_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "SPROUTVAULT_STORE_PATH": ("store.path", str),
        "SPROUTVAULT_ENV_PATH": ("store.env_path", str),
        "SPROUTVAULT_HOST": ("server.host", str),
        "SPROUTVAULT_PORT": ("server.port", int),
        "SPROUTVAULT_ADMIN_TOKEN": ("server.admin_token", str),
        "SPROUTVAULT_MAX_UPLOAD_MB": ("server.max_upload_mb", int),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            try:
                _set_nested_attr(settings, attr_path, converter(value))
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {value!r}") from e

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )

    if not settings.store.path:
        raise ConfigurationError("store.path must not be empty")

    if not settings.store.env_path:
        raise ConfigurationError("store.env_path must not be empty")

    if not 0 < settings.server.port < 65536:
        raise ConfigurationError(f"Invalid port: {settings.server.port}")

    if settings.server.max_upload_mb < 1:
        raise ConfigurationError("max_upload_mb must be at least 1")


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "sproutvault": {
            "log_level": settings.log_level,
        },
        "store": {
            "path": settings.store.path,
            "env_path": settings.store.env_path,
        },
        "server": {
            "host": settings.server.host,
            "port": settings.server.port,
            "admin_token": settings.server.admin_token,
            "max_upload_mb": settings.server.max_upload_mb,
        },
    }
