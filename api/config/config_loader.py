"""
Configuration Loader for the SketchMatch engine

Reads engine_config.yaml once per process and layers SKETCHMATCH_*
environment variables on top of it.
"""

import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional
import os


CONFIG_FILENAME = "engine_config.yaml"
ENV_PREFIX = "SKETCHMATCH_"
# Not a config key; selects the YAML file itself
CONFIG_FILE_ENV = f"{ENV_PREFIX}CONFIG_FILE"


def resolve_env_key(tree: Dict[str, Any], env_key: str) -> List[str]:
    """
    Map a lower-cased env suffix onto a path through the YAML tree.

    Key names contain underscores themselves, so at each level the longest
    run of parts naming an existing key wins.

    Args:
        tree: Loaded configuration
        env_key: Suffix after the prefix (e.g. "outline_min_component_pixels")

    Returns:
        Path parts (e.g. ["outline", "min_component_pixels"]), or an empty
        list when the suffix names no leaf value
    """
    parts = env_key.split('_')
    node: Any = tree
    path: List[str] = []
    i = 0
    while i < len(parts):
        if not isinstance(node, dict):
            return []
        for end in range(len(parts), i, -1):
            candidate = '_'.join(parts[i:end])
            if candidate in node:
                path.append(candidate)
                node = node[candidate]
                i = end
                break
        else:
            return []
    if isinstance(node, dict):
        return []
    return path


def coerce_like(raw: str, current: Any) -> Any:
    """Convert an env string to the type of the value it replaces."""
    if isinstance(current, bool):
        return raw.strip().lower() in ('true', '1', 'yes', 'on')
    try:
        if isinstance(current, int):
            return int(raw)
        if isinstance(current, float):
            return float(raw)
    except ValueError:
        # Left as text so settings validation names the bad key
        return raw
    return raw


class ConfigLoader:
    """Singleton configuration loader."""

    _instance: Optional['ConfigLoader'] = None
    _config: Optional[Dict[str, Any]] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._config is None:
            self._load_config()

    def _load_config(self):
        self.path = Path(os.environ.get(CONFIG_FILE_ENV) or Path(__file__).parent / CONFIG_FILENAME)
        if not self.path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.path}")

        with open(self.path, 'r', encoding='utf-8') as f:
            self._config = yaml.safe_load(f) or {}

        self.overrides: Dict[str, Any] = {}
        for key, raw in sorted(os.environ.items()):
            if not key.startswith(ENV_PREFIX) or key == CONFIG_FILE_ENV:
                continue
            path = resolve_env_key(self._config, key[len(ENV_PREFIX):].lower())
            if path:
                self._override(path, raw)

    def _override(self, path: List[str], raw: str):
        section = self._config
        for part in path[:-1]:
            section = section[part]
        value = coerce_like(raw, section[path[-1]])
        section[path[-1]] = value
        self.overrides['.'.join(path)] = value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key.

        Example:
            >>> get_config().get("scoring.alignment_threshold")
            0.78
        """
        current = self._config
        for part in key.split('.'):
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        return current

    def get_section(self, section: str) -> Dict[str, Any]:
        """Whole section as a dict ({} when absent)."""
        value = self.get(section, {})
        return value if isinstance(value, dict) else {}

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._config or {})

    def reload(self):
        """Re-read the file and the environment."""
        self._config = None
        self._load_config()


_loader: Optional[ConfigLoader] = None


def get_config() -> ConfigLoader:
    """Process-wide configuration loader."""
    global _loader
    if _loader is None:
        _loader = ConfigLoader()
    return _loader


def reload_config():
    """
    Reload configuration from file.

    Use this after modifying the YAML file or the environment.
    """
    global _loader
    if _loader is not None:
        _loader.reload()
    else:
        _loader = ConfigLoader()


def get_value(key: str, default: Any = None) -> Any:
    """
    Quick access to configuration value.

    Example:
        >>> get_value("scoring.debounce_ms", 100)
        100
    """
    return get_config().get(key, default)
