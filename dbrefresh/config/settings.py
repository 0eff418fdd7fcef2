"""
Manages application configuration settings by loading them from a central YAML file.

This module provides a `Settings` class that loads `config.yaml`, validates it
with the Pydantic models in `pydantic_models` and hands plain dictionaries to
the components that need them.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from dbrefresh.config.pydantic_models import AppConfig
from dbrefresh.domain.errors import ConfigurationError


class Settings:
    """
    Main configuration class that loads and validates all settings from a YAML file.
    """

    def __init__(self, config_path: Optional[Path] = None, logger: Optional[Any] = None):
        """
        Initializes settings by loading the specified configuration file.

        Raises:
            pydantic.ValidationError: If the file content fails validation.
            ConfigurationError: If the file exists but cannot be parsed.
        """
        if config_path is None:
            config_path = Path("config/config.yaml")

        self._logger = logger
        self.config_path = config_path
        self._yaml_config: Dict[str, Any] = {}
        if config_path.exists():
            self._load_from_file(config_path)
        else:
            self._emit_warning(f"Configuration file not found at {config_path}, using defaults")

        self._validated_config = AppConfig(**self._yaml_config)

    def _emit_warning(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        if self._logger is not None and hasattr(self._logger, 'warning'):
            self._logger.warning(message, context or None)
            return
        logging.getLogger(__name__).warning(message)

    def _load_from_file(self, config_path: Path) -> None:
        """
        Loads the entire configuration from a YAML file into a dictionary.
        """
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Could not load or parse config file {config_path}: {e}",
                {"config_path": str(config_path)}
            ) from e
        if not isinstance(loaded, dict):
            raise ConfigurationError(
                f"Config file {config_path} must contain a mapping at the top level",
                {"config_path": str(config_path)}
            )
        self._yaml_config = loaded

    @property
    def app_config(self) -> AppConfig:
        return self._validated_config

    def get_array_config(self) -> Dict[str, Any]:
        """
        Gets the storage array configuration dictionary.
        """
        return self._validated_config.array.model_dump()

    def get_remote_config(self) -> Dict[str, Any]:
        """
        Gets the SSH configuration dictionary used for database hosts.
        """
        return self._validated_config.remote.model_dump()

    def get_sqlserver_config(self) -> Dict[str, Any]:
        """
        Gets the database engine configuration dictionary.
        """
        return self._validated_config.sqlserver.model_dump()

    def get_logging_config(self) -> Dict[str, Any]:
        """
        Gets the logging configuration dictionary.
        """
        return self._validated_config.logging.model_dump()

    def get_refresh_config(self) -> Dict[str, Any]:
        """
        Gets the orchestration configuration dictionary.
        """
        return self._validated_config.refresh.model_dump()
