"""Configuration management module.

This module handles persistent configuration storage using TOML format and
resolves where templater keeps its data.

Config keys:
    storage_dir: Root directory for metadata and archives
    editor: Editor command used by ``templater edit``
    compression_level: gzip level for new archives (0-9)

Security:
- Config file permissions: 0600 (owner read/write only)
- Atomic writes via temporary file and rename
"""

import logging
import os
import platform
import tomllib
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import tomlkit

from templater.errors import ConfigError

logger = logging.getLogger(__name__)

__all__ = [
    "ConfigManager",
    "TemplaterConfig",
    "user_config_dir",
    "user_data_dir",
]

APP_NAME = "templater"
HOME_ENV = "TEMPLATER_HOME"
CONFIG_ENV = "TEMPLATER_CONFIG"


def user_data_dir() -> Path:
    """Platform-specific local data directory for templater."""
    system = platform.system()
    if system == "Windows":
        base = os.environ.get("LOCALAPPDATA") or str(Path.home() / "AppData" / "Local")
        return Path(base) / APP_NAME
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME
    base = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / APP_NAME


def user_config_dir() -> Path:
    """Platform-specific configuration directory for templater."""
    system = platform.system()
    if system == "Windows":
        base = os.environ.get("APPDATA") or str(Path.home() / "AppData" / "Roaming")
        return Path(base) / APP_NAME
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_NAME


@dataclass
class TemplaterConfig:
    """Templater configuration data."""

    storage_dir: str | None = None
    editor: str | None = None
    compression_level: int = 6

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        data = asdict(self)
        # TOML has no null
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TemplaterConfig":
        """Create from dictionary."""
        config = cls(
            storage_dir=data.get("storage_dir"),
            editor=data.get("editor"),
            compression_level=data.get("compression_level", 6),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate config fields.

        Raises:
            ConfigError: If validation fails
        """
        level = self.compression_level
        if isinstance(level, bool) or not isinstance(level, int) or not 0 <= level <= 9:
            raise ConfigError(f"compression_level must be an integer 0-9, got {level!r}")
        for key in ("storage_dir", "editor"):
            value = getattr(self, key)
            if value is not None and not isinstance(value, str):
                raise ConfigError(f"{key} must be a string, got {type(value).__name__}")


class ConfigManager:
    """Manage the templater configuration file.

    Configuration is stored at <config dir>/config.toml unless TEMPLATER_CONFIG
    points elsewhere.
    """

    DEFAULT_CONFIG_FILE = user_config_dir() / "config.toml"
    KEYS = ("storage_dir", "editor", "compression_level")

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            Path to config file (may not exist yet)
        """
        if custom_path:
            return Path(custom_path).expanduser().resolve()
        env_path = os.environ.get(CONFIG_ENV)
        if env_path:
            return Path(env_path).expanduser().resolve()
        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> TemplaterConfig:
        """Load configuration from file.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            TemplaterConfig object; defaults if the file does not exist

        Raises:
            ConfigError: If the file exists but cannot be loaded
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return TemplaterConfig()

        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to load config: {e}") from e

        logger.debug(f"Loaded config from: {config_path}")
        return TemplaterConfig.from_dict(data)

    @classmethod
    def save_config(cls, config: TemplaterConfig, custom_path: str | None = None) -> Path:
        """Save configuration to file.

        Existing comments and formatting are preserved.

        Returns:
            Path the config was written to

        Raises:
            ConfigError: If saving fails
        """
        config.validate()
        config_path = cls.get_config_path(custom_path)
        temp_path = config_path.with_suffix(".tmp")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)

            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
                for key in cls.KEYS:
                    if key in doc:
                        del doc[key]
            else:
                doc = tomlkit.document()
            for key, value in config.to_dict().items():
                doc[key] = value

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)

            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)

            logger.debug(f"Saved config to: {config_path}")
            return config_path

        except Exception as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e

    @classmethod
    def update_config(cls, custom_path: str | None = None, **updates: Any) -> TemplaterConfig:
        """Update configuration values.

        Raises:
            ConfigError: On unknown keys, invalid values or I/O failure
        """
        config = cls.load_config(custom_path)

        for key, value in updates.items():
            if key not in cls.KEYS:
                raise ConfigError(f"Unknown config key: {key}")
            setattr(config, key, value)

        cls.save_config(config, custom_path)
        return config

    @classmethod
    def get_storage_dir(
        cls, cli_value: str | None = None, custom_path: str | None = None
    ) -> Path:
        """Get the storage root with CLI override.

        Order: CLI value, $TEMPLATER_HOME, config storage_dir, platform data dir.
        """
        if cli_value:
            return Path(cli_value).expanduser()

        env_value = os.environ.get(HOME_ENV)
        if env_value:
            return Path(env_value).expanduser()

        config = cls.load_config(custom_path)
        if config.storage_dir:
            return Path(config.storage_dir).expanduser()

        return user_data_dir()
