"""
Settings management for the audit history service.

This module provides centralized access to application settings
with caching and validation.
"""

import copy
import functools
import os
from typing import Any, Dict, List

import yaml

from .logging_utils import get_logger
from .path_utils import get_config_path

__all__ = [
    "DEFAULTS",
    "get_history_settings",
    "get_settings",
    "load_settings",
    "reload_settings",
    "validate_settings",
]

logger = get_logger(__name__)

DEFAULTS: Dict[str, Any] = {
    "api": {
        "base_url": "http://localhost:5000/api",
        "timeout_seconds": 30,
    },
    "ui": {
        "default_page_size": 10,
        "max_page_size": 100,
        "sort": {"default_field": "action_date", "default_ascending": False},
    },
    "history": {
        # Record window used to derive distinct parents client-side
        "window_size": 1000,
        # Upper bound on parents materialized for an export of all matching data
        "export_cap": 10000,
        "prefer_grouped": True,
        "force_strategy": None,
    },
    "logging": {
        "level": "INFO",
        "file": None,
    },
}

VALID_STRATEGIES = ("record_window", "grouped")


def _deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in update.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _apply_env_overrides(settings: Dict[str, Any]) -> Dict[str, Any]:
    # Emergency overrides; config file values lose to these
    base_url = os.environ.get("AH_API_BASE_URL")
    if base_url:
        settings["api"]["base_url"] = base_url

    force_strategy = os.environ.get("AH_FORCE_STRATEGY")
    if force_strategy:
        settings["history"]["force_strategy"] = force_strategy

    return settings


@functools.lru_cache(maxsize=1)
def load_settings(path: str) -> Dict[str, Any]:
    """Load settings from YAML file with defaults.

    This function is cached to prevent repeated file I/O and parsing.
    Use reload_settings() to force a fresh load.

    Args:
        path: Path to settings YAML file

    Returns:
        Dictionary with settings (user config merged over defaults)

    """
    settings = copy.deepcopy(DEFAULTS)
    try:
        with open(path) as f:
            user_config = yaml.safe_load(f) or {}
        _deep_merge(settings, user_config)
        logger.debug(f"Settings loaded from {path}")
    except FileNotFoundError:
        logger.warning(f"Settings file not found: {path}. Using defaults.")
    except yaml.YAMLError as e:
        logger.error(f"Error parsing settings file {path}: {e}. Using defaults.")

    return _apply_env_overrides(settings)


def reload_settings(path: str | None = None) -> Dict[str, Any]:
    """Force reload settings from file (clears cache).

    Args:
        path: Path to settings YAML file, defaults to config/settings.yaml

    Returns:
        Freshly loaded settings

    """
    load_settings.cache_clear()
    return load_settings(path or str(get_config_path()))


def get_settings() -> Dict[str, Any]:
    """Get application settings with caching."""
    return load_settings(str(get_config_path()))


def get_history_settings(settings: Dict[str, Any] | None = None) -> Dict[str, Any]:
    """Returns history settings with defaults filled in.

    Args:
        settings: Settings dict to use. If None, uses get_settings().

    Returns:
        Dict with window_size, export_cap, prefer_grouped and force_strategy.
    """
    if settings is None:
        settings = get_settings()

    return {**DEFAULTS["history"], **settings.get("history", {})}


def validate_settings(settings: Dict[str, Any] | None = None) -> List[str]:
    """Returns list of validation warnings.

    Args:
        settings: Settings dict to validate. If None, uses get_settings().

    Returns:
        List of validation warning messages.
    """
    warnings = []
    if settings is None:
        settings = get_settings()
    ui = settings.get("ui", {})
    history = get_history_settings(settings)
    api = settings.get("api", {})

    max_page_size = ui.get("max_page_size", 100)
    if not isinstance(max_page_size, int) or max_page_size < 1 or max_page_size > 1000:
        warnings.append(f"ui.max_page_size must be int 1-1000, got {max_page_size}")

    window_size = history.get("window_size")
    if not isinstance(window_size, int) or window_size < 1 or window_size > 100000:
        warnings.append(f"history.window_size must be int 1-100000, got {window_size}")

    export_cap = history.get("export_cap")
    if not isinstance(export_cap, int) or export_cap < 1:
        warnings.append(f"history.export_cap must be a positive int, got {export_cap}")

    force_strategy = history.get("force_strategy")
    if force_strategy is not None and force_strategy not in VALID_STRATEGIES:
        warnings.append(
            f"history.force_strategy must be one of {VALID_STRATEGIES}, got {force_strategy}"
        )

    timeout_seconds = api.get("timeout_seconds", 30)
    if not isinstance(timeout_seconds, (int, float)) or timeout_seconds < 1 or timeout_seconds > 300:
        warnings.append(f"api.timeout_seconds must be number 1-300, got {timeout_seconds}")

    return warnings
