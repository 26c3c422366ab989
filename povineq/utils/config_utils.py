"""Configuration loading for povineq.

Defaults ship in ``povineq/configs/defaults.yaml``. A user file named by the
``POVINEQ_CONFIG`` environment variable is deep-merged on top.
"""

import os
import warnings
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

CONFIG_ENV_VAR = "POVINEQ_CONFIG"
DEFAULTS_PATH = Path(__file__).parents[1] / "configs" / "defaults.yaml"


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)
    return cfg or {}


@lru_cache(maxsize=None)
def _load_cached(user_path: Optional[str]) -> Dict[str, Any]:
    config = _read_yaml(DEFAULTS_PATH)

    if user_path:
        path = Path(user_path)
        if path.exists():
            config = deep_merge(config, _read_yaml(path))
        else:
            warnings.warn(f"{CONFIG_ENV_VAR} points to a missing file ({path}); using defaults")

    return config


def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load the packaged defaults merged with an optional user YAML file.

    Args:
        path: User config file. Falls back to ``$POVINEQ_CONFIG`` when omitted.

    Returns:
        Nested settings dictionary (a fresh copy, safe to mutate)
    """
    user_path = str(path) if path is not None else os.environ.get(CONFIG_ENV_VAR)
    return deep_merge({}, _load_cached(user_path))


def get_setting(key: str, default: Any = None) -> Any:
    """Look up a dotted key such as ``"indicators.chu.percent"``."""
    node: Any = load_config()
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def clear_config_cache() -> None:
    """Forget loaded config files (needed after editing them in-process)."""
    _load_cached.cache_clear()
