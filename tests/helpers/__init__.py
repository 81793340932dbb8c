"""Test helper utilities package.

This package provides an in-memory history backend and event factories
shared by the service tests.
"""

from .fake_backend import BASE_TIME, FakeHistoryClient, at, make_event

__all__ = [
    "BASE_TIME",
    "FakeHistoryClient",
    "at",
    "make_event",
]
