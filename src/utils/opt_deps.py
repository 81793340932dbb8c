"""Optional dependencies management for the audit history service.

This module centralizes capability checks for optional dependencies
like prometheus_client.
"""

import importlib
from typing import Any, Optional


def try_import(module: str) -> Optional[Any]:
    """Try to import a module, return None if unavailable."""
    try:
        return importlib.import_module(module)
    except ImportError:
        return None


# Centralized capability checks
PROMETHEUS = try_import("prometheus_client")

# Export handles & flags
PROMETHEUS_AVAILABLE = PROMETHEUS is not None
