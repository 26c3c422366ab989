"""Utility functions for povineq."""

from .config_utils import (
    clear_config_cache,
    deep_merge,
    get_setting,
    load_config,
)

__all__ = [
    "clear_config_cache",
    "deep_merge",
    "get_setting",
    "load_config",
]
