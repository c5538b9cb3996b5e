"""Configuration management.

Loads and merges configuration from multiple sources with proper precedence.
"""

import json
import os
from contextvars import ContextVar, Token
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from .bus import Bus, BusEvent
from .config_loader import deep_merge, load_json_file
from .config_schema import BootstrapConfig, Config, LoggingConfig, PreloadConfig
from .global_paths import GlobalPath
from ..util.log import Log

log = Log.create({"service": "config"})

__all__ = [
    "BootstrapConfig",
    "Config",
    "ConfigError",
    "ConfigManager",
    "ConfigUpdated",
    "ConfigUpdatedProps",
    "LoggingConfig",
    "PreloadConfig",
]

CONFIG_FILENAMES = ("rootmux.json", "rootmux.jsonc")


class ConfigUpdatedProps(BaseModel):
    """Properties for the config.updated event."""
    settings: Dict[str, Any]


# Fired whenever the host changes configuration at runtime
ConfigUpdated = BusEvent.define("config.updated", ConfigUpdatedProps)


class ConfigError(Exception):
    """Configuration error."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"Config error in {path}: {message}")


_config_var: ContextVar['ConfigManager'] = ContextVar('_config_var')


class ConfigManager:
    """Configuration management.

    Instance-based with ContextVar for scoping. Class methods delegate
    to the current instance.

    Sources, lowest precedence first:
    1. Global config (rootmux.json in the user config directory)
    2. Project config (rootmux.json found walking up from the directory)
    3. ``ROOTMUX_CONFIG_CONTENT`` environment variable
    4. Runtime overrides applied with :meth:`update`
    """

    def __init__(self, directory: str = ".") -> None:
        self._directory = directory
        self._cache: Optional[Config] = None
        self._overrides: Dict[str, Any] = {}
        self._sources: List[str] = []

    # -- ContextVar plumbing --

    @classmethod
    def current(cls) -> 'ConfigManager':
        try:
            return _config_var.get()
        except LookupError:
            instance = cls()
            _config_var.set(instance)
            return instance

    @classmethod
    def provide(cls, instance: 'ConfigManager') -> Token['ConfigManager']:
        return _config_var.set(instance)

    @classmethod
    def restore(cls, token: Token['ConfigManager']) -> None:
        _config_var.reset(token)

    # -- Public API --

    @classmethod
    def reset(cls) -> None:
        """Drop cached configuration and runtime overrides."""
        inst = cls.current()
        inst._cache = None
        inst._overrides = {}
        inst._sources = []

    @classmethod
    async def get(cls) -> Config:
        inst = cls.current()
        if inst._cache is None:
            inst._cache = inst._load()
        return inst._cache

    @classmethod
    def sources(cls) -> List[str]:
        """Files that contributed to the current configuration."""
        return cls.current()._sources.copy()

    @classmethod
    async def update(cls, updates: Dict[str, Any]) -> Config:
        """Apply runtime overrides and announce the new language settings."""
        inst = cls.current()
        inst._overrides = deep_merge(inst._overrides, updates)
        inst._cache = None
        config = await cls.get()
        log.info("configuration updated", {"keys": sorted(updates)})
        await Bus.publish(ConfigUpdated, ConfigUpdatedProps(settings=config.language_settings()))
        return config

    # -- Instance methods --

    def _load(self) -> Config:
        result: Dict[str, Any] = {}
        sources: List[str] = []

        # 1. Global config
        for filename in CONFIG_FILENAMES:
            filepath = Path(GlobalPath.config()) / filename
            data = load_json_file(filepath)
            if data:
                result = deep_merge(result, data)
                sources.append(str(filepath))
                log.info("loaded global config", {"path": str(filepath)})

        # 2. Project config, outermost directory first
        project_configs: List[Path] = []
        current = Path(self._directory).resolve()
        while True:
            for filename in CONFIG_FILENAMES:
                filepath = current / filename
                if filepath.exists():
                    project_configs.append(filepath)
            if current == current.parent:
                break
            current = current.parent

        for filepath in reversed(project_configs):
            data = load_json_file(filepath)
            if data:
                result = deep_merge(result, data)
                sources.append(str(filepath))
                log.info("loaded project config", {"path": str(filepath)})

        # 3. Environment variable config
        env_config = os.environ.get("ROOTMUX_CONFIG_CONTENT")
        if env_config:
            try:
                data = json.loads(env_config)
                result = deep_merge(result, data)
                log.info("loaded config from ROOTMUX_CONFIG_CONTENT")
            except json.JSONDecodeError:
                log.error("failed to parse ROOTMUX_CONFIG_CONTENT")

        # 4. Runtime overrides
        if self._overrides:
            result = deep_merge(result, self._overrides)

        try:
            config = Config.model_validate(result)
        except ValidationError as e:
            origin = sources[-1] if sources else "<defaults>"
            raise ConfigError(origin, str(e)) from e

        self._sources = sources
        return config
