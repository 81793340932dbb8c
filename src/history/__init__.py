"""Audit history domain: event records, parent groups, sources and the API client.

This package holds the data model shared by the paginator, hydrator,
sorter, export builder and page controller.
"""

from .errors import (
    ExportValidationError,
    GroupFetchError,
    HistoryApiError,
    HistoryError,
    PageFetchError,
)
from .models import (
    SYSTEM_PERFORMER,
    Action,
    EventRecord,
    Group,
    GroupCollection,
    HydrationState,
    MergeOutcome,
    Page,
    PageState,
    ParentStub,
    Performer,
)
from .sources import HEALTH_CHECK_RESULT, SOURCES, TREATMENT_PLAN, HistorySource, get_source

__all__ = [
    "SYSTEM_PERFORMER",
    "Action",
    "EventRecord",
    "ExportValidationError",
    "Group",
    "GroupCollection",
    "GroupFetchError",
    "HEALTH_CHECK_RESULT",
    "HistoryApiError",
    "HistoryError",
    "HistorySource",
    "HydrationState",
    "MergeOutcome",
    "Page",
    "PageFetchError",
    "PageState",
    "ParentStub",
    "Performer",
    "SOURCES",
    "TREATMENT_PLAN",
    "get_source",
]
