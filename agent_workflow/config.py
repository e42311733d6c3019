"""User settings for the agent-workflow CLI, stored as YAML."""

from pathlib import Path
from typing import Any

import structlog
import yaml

from agent_workflow.store import WORKFLOW_DIR

logger = structlog.get_logger()

CONFIG_FILE = "config.yaml"

DEFAULTS: dict[str, Any] = {
    "agent.name": None,
    "lock.poll_interval_ms": 5000,
    "lock.wait_timeout_ms": 180000,
}


class Config:
    """Settings manager backed by local and global YAML files.

    Local settings live in ``.agent-workflow/config.yaml`` under the project directory,
    global ones in ``~/.agent-workflow/config.yaml``. Reads look at local settings first,
    then global ones, then the built-in defaults.
    """

    def __init__(self, use_global: bool = False, config_dir: Path | None = None) -> None:
        """Initialize the settings manager.

        Args:
            use_global: If True, read and write the global file only
            config_dir: Directory holding the settings file (overrides use_global)
        """
        if config_dir is not None:
            self.config_dir = Path(config_dir)
            self.is_global = use_global
        elif use_global:
            self.config_dir = Path.home() / WORKFLOW_DIR
            self.is_global = True
        else:
            self.config_dir = Path.cwd() / WORKFLOW_DIR
            self.is_global = False

        self.config_file = self.config_dir / CONFIG_FILE
        self._config: dict[str, Any] = self._read(self.config_file)

        self._global_config: dict[str, Any] = {}
        if not self.is_global:
            global_file = Path.home() / WORKFLOW_DIR / CONFIG_FILE
            if global_file.exists() and global_file != self.config_file:
                try:
                    self._global_config = self._read(global_file)
                except ValueError as e:
                    logger.warning("Ignoring unreadable global config", error=str(e))

        logger.debug("Config initialized", config_file=str(self.config_file), is_global=self.is_global)

    def _read(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            logger.debug("Config file does not exist", path=str(path))
            return {}

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error("Failed to load config", path=str(path), error=str(e))
            raise ValueError(f"Failed to load config from {path}: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        return data

    def _save(self) -> None:
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.safe_dump(self._config, f, default_flow_style=False, sort_keys=False)
            logger.debug("Config saved", config_file=str(self.config_file))
        except OSError as e:
            logger.error("Failed to save config", error=str(e))
            raise ValueError(f"Failed to save config to {self.config_file}: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting, falling back to global settings and then built-in defaults.

        Args:
            key: Setting key, e.g. ``lock.poll_interval_ms``
            default: Returned when the key is set nowhere and has no built-in default
        """
        if key in self._config:
            return self._config[key]
        if not self.is_global and key in self._global_config:
            return self._global_config[key]
        if DEFAULTS.get(key) is not None:
            return DEFAULTS[key]
        return default

    def get_int(self, key: str, default: int | None = None) -> int | None:
        value = self.get(key, default)
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Config value {key}={value!r} is not an integer") from e

    def set(self, key: str, value: str) -> None:
        logger.debug("Setting config value", key=key)
        self._config[key] = value
        self._save()

    def unset(self, key: str) -> None:
        logger.debug("Unsetting config value", key=key)
        if key in self._config:
            del self._config[key]
            self._save()

    def list(self) -> dict[str, Any]:
        """All explicitly set values; local values take precedence over global ones."""
        if self.is_global:
            return self._config.copy()
        merged = self._global_config.copy()
        merged.update(self._config)
        return merged


def get_config(use_global: bool = False) -> Config:
    return Config(use_global=use_global)
