"""
Configuration management for octo.

This module provides configuration file support with YAML format and
default settings.

Features:
- YAML configuration file at ~/.config/octo/config.yaml
- Default values with user overrides
- Engine host override (otherwise DOCKER_HOST / socket detection)
- Log viewer buffer capacity, initial tail and export directory
- Log level, location and rotation override

Architecture:
- ConfigManager: Main configuration interface
- Merges user config with defaults, unknown keys ignored
- Provides typed access to settings
- Handles missing/invalid config gracefully
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict
from pathlib import Path

from .ringbuffer import DEFAULT_CAPACITY

logger = logging.getLogger(__name__)

DEFAULT_TAIL = 500


@dataclass
class EngineConfig:
    """Engine connection configuration."""
    host: Optional[str] = None  # None: DOCKER_HOST, then socket detection
    request_timeout: int = 60


@dataclass
class LogsConfig:
    """Container log viewer configuration."""
    buffer_capacity: int = DEFAULT_CAPACITY
    initial_tail: int = DEFAULT_TAIL
    export_dir: Optional[str] = None  # None for ~/.octo/logs


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file_path: Optional[str] = None  # None for default
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class AppConfig:
    """Main application configuration."""
    engine: EngineConfig = field(default_factory=EngineConfig)
    logs: LogsConfig = field(default_factory=LogsConfig)
    logging: LogConfig = field(default_factory=LogConfig)


class ConfigManager:
    """Configuration manager with YAML file support."""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else Path.home() / ".config" / "octo"
        self.config_file = self.config_dir / "config.yaml"
        self._config: AppConfig = AppConfig()
        self.load_config()

    def load_config(self) -> None:
        """Load configuration from YAML file. A missing file means defaults."""
        try:
            if self.config_file.exists():
                with open(self.config_file, 'r') as f:
                    user_config = yaml.safe_load(f) or {}
                if not isinstance(user_config, dict):
                    raise ValueError("top-level value must be a mapping")
                self._config = self._merge_configs(AppConfig(), user_config)
                logger.debug(f"Loaded configuration from {self.config_file}")
            else:
                self._config = AppConfig()
        except Exception as e:
            logger.error(f"Failed to load config: {e}, using defaults")
            self._config = AppConfig()

    def save_config(self) -> None:
        """Save current configuration to YAML file."""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w') as f:
                yaml.safe_dump(asdict(self._config), f, default_flow_style=False, indent=2)
            logger.debug(f"Saved configuration to {self.config_file}")
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    def get_config(self) -> AppConfig:
        """Get current configuration."""
        return self._config

    def _merge_configs(self, default: AppConfig, user: Dict[str, Any]) -> AppConfig:
        """Merge user config with defaults."""
        for section in ('engine', 'logs', 'logging'):
            if isinstance(user.get(section), dict):
                self._merge_dataclass(getattr(default, section), user[section])
        return default

    def _merge_dataclass(self, obj: Any, updates: Dict[str, Any]) -> None:
        """Merge updates into dataclass object; values of the wrong type keep the default."""
        for key, value in updates.items():
            if not hasattr(obj, key):
                continue
            default = getattr(obj, key)
            if isinstance(default, int):
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    logger.warning(f"Ignoring invalid {key} in config: {value!r}")
                    continue
            elif value is not None and not isinstance(value, str):
                logger.warning(f"Ignoring invalid {key} in config: {value!r}")
                continue
            setattr(obj, key, value)

    def get_engine_host(self) -> Optional[str]:
        """Engine address override, or None to use the environment."""
        return self._config.engine.host or None

    def get_request_timeout(self) -> int:
        return int(self._config.engine.request_timeout)

    def get_buffer_capacity(self) -> int:
        """Log viewer ring buffer capacity (values <= 0 mean the default)."""
        capacity = int(self._config.logs.buffer_capacity)
        return capacity if capacity > 0 else DEFAULT_CAPACITY

    def get_initial_tail(self) -> int:
        tail = int(self._config.logs.initial_tail)
        return tail if tail > 0 else DEFAULT_TAIL

    def get_export_dir(self) -> Path:
        """Directory log exports are written to."""
        if self._config.logs.export_dir:
            return Path(os.path.expanduser(self._config.logs.export_dir))
        return Path.home() / ".octo" / "logs"

    def get_log_level(self) -> str:
        """Get configured log level."""
        return str(self._config.logging.level).upper()

    def get_custom_log_path(self) -> Optional[str]:
        """Get custom log file path if configured."""
        return self._config.logging.file_path

    def get_log_max_bytes(self) -> int:
        return int(self._config.logging.max_size_mb) * 1024 * 1024

    def get_log_backup_count(self) -> int:
        return int(self._config.logging.backup_count)


# Global config instance
config_manager = ConfigManager()
