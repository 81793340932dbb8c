"""Sort utilities for grouped audit history.

Groups are ordered by the recency of their latest event once hydrated, with a
parent-code tie-breaker so the order is stable across runs.
"""

from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Optional

from src.history.models import EventRecord, Group, ParentStub

# Stand-in for minus infinity; groups without events sort as oldest
_MIN_TIME = datetime.min.replace(tzinfo=timezone.utc)


def latest_event_time(group: Group) -> Optional[datetime]:
    """Most recent action date in a group, None when it has no events."""
    return group.latest_event_time


def _recency_key(group: Group) -> tuple[int, datetime]:
    latest = group.latest_event_time
    if latest is None:
        return (0, _MIN_TIME)
    return (1, latest)


def reorder(groups: Iterable[Group], ascending: bool = False) -> list[Group]:
    """Order groups by latest event time, ties broken by ascending parent code.

    Args:
        groups: Groups of one page
        ascending: Oldest activity first when True

    Returns:
        New list; the input is not modified

    """
    # Two stable passes: the tie-breaker first, then the primary key
    ordered = sorted(groups, key=lambda g: g.parent_code)
    ordered.sort(key=_recency_key, reverse=not ascending)
    return ordered


def sort_events(events: Iterable[EventRecord], ascending: bool = False) -> tuple[EventRecord, ...]:
    """Order events within a group by action date, then id for stability."""
    ordered = sorted(events, key=lambda e: e.id)
    ordered.sort(key=lambda e: e.action_date, reverse=not ascending)
    return tuple(ordered)


def order_page(groups: Iterable[Group], ascending: bool = False) -> list[Group]:
    """Recency-order groups and their events for display."""
    return reorder(
        (replace(g, events=sort_events(g.events, ascending)) for g in groups),
        ascending,
    )


def sort_stubs(stubs: Iterable[ParentStub], field: str, ascending: bool = False) -> list[ParentStub]:
    """Sort distinct parents by a parent-level attribute, parent id as tie-breaker.

    Args:
        stubs: Distinct parent stubs
        field: ``parent_code`` or ``secondary_code``
        ascending: Sort direction

    Returns:
        Sorted list; missing values sort as empty strings

    """
    ordered = sorted(stubs, key=lambda s: s.parent_id)
    ordered.sort(key=lambda s: getattr(s, field) or "", reverse=not ascending)
    return ordered
