"""Utility modules for the audit history service.
"""

from .logging_utils import get_logger, setup_logging
from .path_utils import ensure_directory_exists, get_config_path, get_export_dir, get_project_root
from .settings import get_history_settings, get_settings, reload_settings, validate_settings

__all__ = [
    # Logging utilities
    "get_logger",
    "setup_logging",
    # Path utilities
    "get_project_root",
    "get_config_path",
    "get_export_dir",
    "ensure_directory_exists",
    # Settings
    "get_settings",
    "get_history_settings",
    "reload_settings",
    "validate_settings",
]
