"""
EchoMesh - Configuration Management

This module handles loading, merging, and managing configuration from
TOML files and environment variables. Supports default values and
runtime configuration updates.

Passwords are never part of the configuration.

Author: echomesh contributors
Version: 1.0.0
"""

import copy
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

# Python 3.11+ has tomllib built-in, older versions need tomli
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .constants import (
    ARGON2_MEMORY_COST,
    ARGON2_PARALLELISM,
    ARGON2_TIME_COST,
    CONFIG_FILENAME,
    DEFAULT_DATA_DIR,
    MAX_TEXT_MESSAGE_SIZE,
    MESSAGE_LIFETIME,
    REPLAY_WINDOW_SIZE,
    SEND_COOLDOWN,
    SWEEP_INTERVAL,
    WIRE_FIELDS_DEFAULT,
    WIRE_FIELDS_HARDENED,
)
from .errors import ConfigError, ErrorCode

ENV_PREFIX = "ECHOMESH"

# Default configuration dictionary
DEFAULT_CONFIG: Dict[str, Any] = {
    "crypto": {
        "argon2_time_cost": ARGON2_TIME_COST,
        "argon2_memory_cost": ARGON2_MEMORY_COST,
        "argon2_parallelism": ARGON2_PARALLELISM,
        "wire_fields": WIRE_FIELDS_DEFAULT,
        "combine_shared_value": False,
    },
    "session": {
        "message_lifetime": float(MESSAGE_LIFETIME),
        "sweep_interval": float(SWEEP_INTERVAL),
        "send_cooldown": SEND_COOLDOWN,
        "replay_window_size": REPLAY_WINDOW_SIZE,
        "max_message_length": MAX_TEXT_MESSAGE_SIZE,
    },
    "logging": {
        "level": "INFO",
    },
}


class Config:
    """Configuration manager for EchoMesh.

    Loads configuration from TOML files, merges with defaults,
    and applies environment variable overrides.

    Attributes:
        config_path: Path to the configuration file
        data: Configuration dictionary
    """

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file (optional)
                If not provided, uses default location
        """
        if config_path is None:
            data_dir = Path(DEFAULT_DATA_DIR).expanduser()
            config_path = data_dir / CONFIG_FILENAME

        self.config_path = Path(config_path)
        self.data = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file and merge with defaults.

        Returns:
            Merged configuration dictionary

        Raises:
            ConfigError: If configuration loading, parsing or validation fails
        """
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    file_config = tomllib.load(f)
            except OSError as e:
                raise ConfigError(
                    ErrorCode.E701_CONFIG_LOAD_FAILED,
                    f"Failed to read configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                ) from e
            except tomllib.TOMLDecodeError as e:
                raise ConfigError(
                    ErrorCode.E704_CONFIG_PARSE_ERROR,
                    f"Failed to parse configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                ) from e

            config = self._merge_config(config, file_config)

        config = self._apply_env_overrides(config)
        self._validate(config)

        return config

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override config into base config.

        Args:
            base: Base configuration dictionary
            override: Override configuration dictionary

        Returns:
            Merged configuration dictionary
        """
        result = copy.deepcopy(base)

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration.

        Environment variables follow the pattern: ECHOMESH_SECTION_KEY
        For example: ECHOMESH_SESSION_SEND_COOLDOWN=2.5

        Args:
            config: Base configuration dictionary

        Returns:
            Configuration with environment overrides applied

        Raises:
            ConfigError: If a value cannot be converted to the setting's type
        """
        result = copy.deepcopy(config)

        for section, settings in config.items():
            if not isinstance(settings, dict):
                continue

            for key in settings:
                env_var = f"{ENV_PREFIX}_{section.upper()}_{key.upper()}"
                env_value = os.environ.get(env_var)

                if env_value is None:
                    continue

                original_type = type(settings[key])
                try:
                    if original_type == bool:
                        result[section][key] = env_value.lower() in ("true", "1", "yes")
                    elif original_type == int:
                        result[section][key] = int(env_value)
                    elif original_type == float:
                        result[section][key] = float(env_value)
                    else:
                        result[section][key] = env_value
                except ValueError as e:
                    raise ConfigError(
                        ErrorCode.E703_INVALID_CONFIG,
                        f"Invalid value for {env_var}: {env_value!r}",
                        {"variable": env_var},
                    ) from e

        return result

    def _validate(self, config: Dict[str, Any]) -> None:
        """Reject settings that would break interoperability or timers."""
        wire_fields = config["crypto"].get("wire_fields")
        if wire_fields not in (WIRE_FIELDS_DEFAULT, WIRE_FIELDS_HARDENED):
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                f"crypto.wire_fields must be 2 or 3, got {wire_fields!r}",
            )

        positive = (
            "message_lifetime",
            "sweep_interval",
            "replay_window_size",
            "max_message_length",
        )
        for key in positive:
            value = config["session"].get(key)
            if not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(
                    ErrorCode.E703_INVALID_CONFIG,
                    f"session.{key} must be a positive number, got {value!r}",
                )

        cooldown = config["session"].get("send_cooldown")
        if not isinstance(cooldown, (int, float)) or cooldown < 0:
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                f"session.send_cooldown must not be negative, got {cooldown!r}",
            )

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Args:
            section: Configuration section name
            key: Configuration key name
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self.data.get(section, {}).get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        """Set a configuration value.

        Args:
            section: Configuration section name
            key: Configuration key name
            value: Value to set
        """
        if section not in self.data:
            self.data[section] = {}

        self.data[section][key] = value

    def save(self) -> None:
        """Save current configuration to file.

        Raises:
            ConfigError: If saving fails
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self.config_path, "w") as f:
                self._write_toml(f, self.data)

        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to save configuration: {e}",
                {"path": str(self.config_path), "error": str(e)},
            ) from e

    @staticmethod
    def _write_toml(file, data: Dict[str, Any]) -> None:
        """Write configuration data as TOML format.

        Args:
            file: File object to write to
            data: Configuration data to write
        """
        for section, settings in data.items():
            if isinstance(settings, dict):
                file.write(f"[{section}]\n")
                for key, value in settings.items():
                    if isinstance(value, bool):
                        file.write(f"{key} = {str(value).lower()}\n")
                    elif isinstance(value, (int, float)):
                        file.write(f"{key} = {value}\n")
                    elif isinstance(value, str):
                        file.write(f'{key} = "{value}"\n')
                file.write("\n")

    def to_dict(self) -> Dict[str, Any]:
        """Get configuration as dictionary.

        Returns:
            Configuration dictionary
        """
        return copy.deepcopy(self.data)

    @classmethod
    def create_example(cls, path: Path) -> None:
        """Create an example configuration file.

        Args:
            path: Path where to create the example config

        Raises:
            ConfigError: If file creation fails
        """
        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            with open(path, "w") as f:
                f.write("# EchoMesh Configuration File\n")
                f.write("# Every peer of a room must use the same [crypto] settings\n\n")
                cls._write_toml(f, DEFAULT_CONFIG)

        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to create example configuration: {e}",
                {"path": str(path), "error": str(e)},
            ) from e
