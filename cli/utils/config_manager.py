"""Configuration Management for CLI Settings"""

import copy
import os
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console

console = Console()

API_URL_ENV = "GENERATION_WORKER_API_URL"

DEFAULT_CONFIG: dict[str, Any] = {
    "api": {
        "base_url": "http://localhost:8000",
        "timeout": 30,
        "headers": {},
    },
    "display": {"jobs_per_page": 20},
}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """
    YAML-backed CLI configuration.

    Values are read with dot notation. The file only overrides defaults, and
    GENERATION_WORKER_API_URL overrides both for ``api.base_url``.
    """

    def __init__(self, config_dir: Path | None = None):
        self.config_dir = config_dir or Path.home() / ".generation-worker"
        self.config_file = self.config_dir / "config.yaml"

    def get_default_config(self) -> dict[str, Any]:
        return copy.deepcopy(DEFAULT_CONFIG)

    def _read_file(self) -> dict[str, Any]:
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            console.print(f"[red]Error loading config: {e}[/red]")
            return {}
        return data if isinstance(data, dict) else {}

    def load_config(self) -> dict[str, Any]:
        """Defaults merged with the config file and environment overrides"""
        config = _merge(DEFAULT_CONFIG, self._read_file())
        env_url = os.getenv(API_URL_ENV)
        if env_url:
            config["api"]["base_url"] = env_url
        return config

    def save_config(self, config: dict[str, Any]):
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w") as f:
            yaml.dump(config, f, default_flow_style=False)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'api.base_url')"""
        value: Any = self.load_config()
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                return default
            value = value[part]
        return value

    def set(self, key: str, value: Any):
        """Set a value in the config file using dot notation"""
        stored = self._read_file()
        *parents, leaf = key.split(".")

        current = stored
        for part in parents:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]
        current[leaf] = value

        self.save_config(stored)

    def reset(self):
        """Overwrite the configuration file with defaults"""
        self.save_config(self.get_default_config())


# Global config manager instance
config = ConfigManager()
