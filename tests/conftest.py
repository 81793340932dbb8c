from __future__ import annotations

import pytest
from hypothesis import settings

from src.utils.settings import DEFAULTS, load_settings


@pytest.fixture(autouse=True)
def clear_settings_cache(monkeypatch):
    """Keep environment overrides and cached YAML from leaking between tests."""
    monkeypatch.delenv("AH_API_BASE_URL", raising=False)
    monkeypatch.delenv("AH_FORCE_STRATEGY", raising=False)
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()


@pytest.fixture
def history_settings():
    """Settings dict with test-sized limits."""
    return {
        "api": {"base_url": "http://testserver/api", "timeout_seconds": 5},
        "ui": {
            "default_page_size": 10,
            "max_page_size": 100,
            "sort": dict(DEFAULTS["ui"]["sort"]),
        },
        "history": {
            "window_size": 1000,
            "export_cap": 10000,
            "prefer_grouped": False,
            "force_strategy": None,
        },
        "logging": {"level": "INFO", "file": None},
    }


# Hypothesis settings for all property-based tests
settings.register_profile("deterministic",
    deadline=None,
    max_examples=200,
    derandomize=True,  # Same examples on every run
    database=None
)
settings.load_profile("deterministic")
