"""Three-tier settings loader.

Configuration priority (highest to lowest):
1. CLI overrides
2. Project config (.gitshelf/config.json or config.yaml in workspace)
3. User config (~/.gitshelf/config.json or config.yaml)
4. System defaults (config/defaults/gitshelf.json)
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from config.schema import GitShelfSettings

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".gitshelf"
_CONFIG_NAMES = ("config.json", "config.yaml", "config.yml")


class SettingsLoader:
    """Loads GitShelfSettings with a three-tier merge."""

    def __init__(self, workspace_root: str | Path | None = None):
        self.workspace_root = Path(workspace_root).resolve() if workspace_root else None
        self._system_defaults_dir = Path(__file__).parent / "defaults"

    def load(self, cli_overrides: dict[str, Any] | None = None) -> GitShelfSettings:
        """Load settings with three-tier merge."""
        system_config = self._load_system_defaults()
        user_config = self._load_user_config()
        project_config = self._load_project_config()

        final_config = self._deep_merge(system_config, user_config, project_config)
        if cli_overrides:
            final_config = self._deep_merge(final_config, cli_overrides)

        final_config = self._expand_env_vars(final_config)
        final_config = self._remove_none_values(final_config)

        return GitShelfSettings(**final_config)

    # ── Internal helpers ──

    def _load_system_defaults(self) -> dict[str, Any]:
        """Load system defaults from gitshelf.json."""
        return self._load_file(self._system_defaults_dir / "gitshelf.json")

    def _load_user_config(self) -> dict[str, Any]:
        """Load user config from ~/.gitshelf/."""
        return self._load_first(Path.home() / CONFIG_DIR_NAME)

    def _load_project_config(self) -> dict[str, Any]:
        """Load project config from <workspace>/.gitshelf/."""
        if not self.workspace_root:
            return {}
        return self._load_first(self.workspace_root / CONFIG_DIR_NAME)

    def _load_first(self, config_dir: Path) -> dict[str, Any]:
        for name in _CONFIG_NAMES:
            path = config_dir / name
            if path.exists():
                return self._load_file(path)
        return {}

    @staticmethod
    def _load_file(path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                if path.suffix in (".yaml", ".yml"):
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except (json.JSONDecodeError, yaml.YAMLError, OSError) as e:
            logger.warning("Skipping unreadable config %s: %s", path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Skipping config %s: top level must be a mapping", path)
            return {}
        return data

    def _deep_merge(self, *dicts: dict[str, Any]) -> dict[str, Any]:
        """Deep merge multiple dictionaries. Later dicts override earlier ones."""
        result: dict[str, Any] = {}
        for d in dicts:
            for key, value in d.items():
                if key not in result:
                    result[key] = value
                elif value is None:
                    continue
                elif isinstance(value, dict) and isinstance(result[key], dict):
                    result[key] = self._deep_merge(result[key], value)
                else:
                    result[key] = value
        return result

    def _expand_env_vars(self, obj: Any) -> Any:
        """Recursively expand ${VAR} and ~ in string values."""
        if isinstance(obj, dict):
            return {k: self._expand_env_vars(v) for k, v in obj.items()}
        if isinstance(obj, list):
            return [self._expand_env_vars(v) for v in obj]
        if isinstance(obj, str):
            return os.path.expandvars(os.path.expanduser(obj))
        return obj

    def _remove_none_values(self, obj: Any) -> Any:
        """Recursively remove None values to allow Pydantic defaults."""
        if isinstance(obj, dict):
            return {k: self._remove_none_values(v) for k, v in obj.items() if v is not None}
        if isinstance(obj, list):
            return [self._remove_none_values(v) for v in obj if v is not None]
        return obj


def load_settings(
    workspace_root: str | Path | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> GitShelfSettings:
    """Convenience function to load settings."""
    return SettingsLoader(workspace_root=workspace_root).load(cli_overrides=cli_overrides)
