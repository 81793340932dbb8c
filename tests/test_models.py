"""
Tests for the audit history data model.
"""

import pytest

from src.history.models import (
    Action,
    Group,
    GroupCollection,
    HydrationState,
    Page,
    ParentStub,
)
from tests.helpers import at, make_event


class TestAction:
    """Test action parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("Approved", Action.APPROVED),
            ("approved", Action.APPROVED),
            ("Cancelled_For_Adjustment", Action.CANCELLED_FOR_ADJUSTMENT),
            ("follow-up scheduled", Action.FOLLOW_UP_SCHEDULED),
            ("", Action.OTHER),
            (None, Action.OTHER),
            ("Escalated", Action.OTHER),
        ],
    )
    def test_parse(self, value, expected) -> None:
        assert Action.parse(value) is expected

    def test_unknown_action_keeps_label(self) -> None:
        event = make_event("1", "A", at(1), action="Escalated")
        assert event.action is Action.OTHER
        assert event.action_name == "Escalated"


class TestGroupCollection:
    """Test keyed group storage."""

    def test_first_stub_wins(self) -> None:
        collection = GroupCollection([ParentStub("A", "first"), ParentStub("B", "b"), ParentStub("A", "second")])
        assert len(collection) == 2
        assert collection.get("A").parent_code == "first"
        assert [g.parent_id for g in collection] == ["A", "B"]

    def test_failed_merge_drops_events(self) -> None:
        collection = GroupCollection([ParentStub("A", "a")])
        collection.merge("A", HydrationState.FAILED, [make_event("1", "A", at(1))])
        group = collection.get("A")
        assert group.state is HydrationState.FAILED
        assert group.events == ()

    def test_hydration_state(self) -> None:
        collection = GroupCollection([ParentStub("A", "a"), ParentStub("B", "b")])
        assert collection.hydration_state is HydrationState.PENDING
        collection.merge("A", HydrationState.LOADED, [])
        collection.merge("B", HydrationState.FAILED)
        assert collection.hydration_state is HydrationState.LOADED

    def test_latest_event_time(self) -> None:
        group = Group(stub=ParentStub("A", "a"), events=(make_event("1", "A", at(2)), make_event("2", "A", at(5))))
        assert group.latest_event_time == at(5)
        assert Group(stub=ParentStub("B", "b")).latest_event_time is None


class TestPage:
    """Test page snapshot helpers."""

    def test_total_pages(self) -> None:
        assert Page(total_distinct_parents=21, page_size=10).total_pages == 3
        assert Page(total_distinct_parents=0, page_size=10).total_pages == 0

    def test_incomplete_notice(self) -> None:
        assert Page().incomplete_notice is None
        page = Page(window_truncated=True, window_size=1000)
        assert page.incomplete_notice == "Results may be incomplete beyond 1000 records"

    def test_window_size_not_part_of_equality(self) -> None:
        assert Page(window_size=5) == Page(window_size=None)
