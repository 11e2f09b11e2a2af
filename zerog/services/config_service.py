"""Planner configuration: config.yaml plus environment overrides.

Precedence, lowest first: AppConfig defaults, config.yaml, ZEROG_* variables.
A broken or invalid file never stops the planner from starting; it falls back
to defaults (environment overrides still apply).
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from zerog.models.config import AppConfig

logger = logging.getLogger(__name__)

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "ZEROG_API_URL": ("remote", "base_url"),
    "ZEROG_DATA_DIR": ("storage", "data_dir"),
}


def _set_in_section(config: dict[str, Any], section: str, key: str, value: Any) -> None:
    target = config.get(section)
    if not isinstance(target, dict):
        target = {}
        config[section] = target
    target[key] = value


class ConfigService:
    """Loads, caches and saves the planner's AppConfig."""

    def __init__(self, config_path: str | Path = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: AppConfig | None = None

    def load(self) -> AppConfig:
        """Read config.yaml, apply overrides and validate.

        Returns:
            The validated AppConfig, also cached for get_config().
        """
        raw = self._with_env(self._read_file())
        try:
            self._config = AppConfig.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Invalid config in {self.config_path}, using defaults: {e}")
            self._config = AppConfig.model_validate(self._with_env({}))
        return self._config

    def get_config(self) -> AppConfig:
        """Cached config, loading it on first use."""
        return self._config if self._config is not None else self.load()

    def reload(self) -> AppConfig:
        self._config = None
        return self.load()

    def save(self, config: AppConfig | None = None) -> bool:
        """Write `config` (or the cached config) back to config.yaml.

        Returns:
            False if there was nothing to save or the write failed.
        """
        config = config or self._config
        if config is None:
            return False
        try:
            self.config_path.write_text(
                yaml.safe_dump(config.model_dump(mode="json"), default_flow_style=False, sort_keys=False)
            )
        except OSError as e:
            logger.error(f"Could not write {self.config_path}: {e}")
            return False
        return True

    def _read_file(self) -> dict[str, Any]:
        if not self.config_path.exists():
            logger.info(f"No config file at {self.config_path}, using defaults")
            return {}
        try:
            loaded = yaml.safe_load(self.config_path.read_text())
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not read {self.config_path}, using defaults: {e}")
            return {}
        if loaded is None:
            return {}
        if not isinstance(loaded, dict):
            logger.warning(f"{self.config_path} is not a mapping, using defaults")
            return {}
        return loaded

    def _with_env(self, config: dict[str, Any]) -> dict[str, Any]:
        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                _set_in_section(config, section, key, value)
                logger.info(f"{section}.{key} overridden by {env_name}")
        return config


_config_service: ConfigService | None = None


def get_config_service(config_path: str | Path = "config.yaml") -> ConfigService:
    """Process-wide ConfigService; `config_path` only matters on the first call."""
    global _config_service
    if _config_service is None:
        _config_service = ConfigService(config_path)
    return _config_service


def reset_config_service() -> None:
    """Forget the process-wide ConfigService (tests)."""
    global _config_service
    _config_service = None
