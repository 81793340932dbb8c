"""Data model for grouped audit history.

Event records and parent stubs are read-only facts from the backing API.
Groups and pages are rebuilt for every query/page and never cached across
pages.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Iterable, Iterator, Optional


class Action(str, Enum):
    """Audit actions recorded against a parent entity."""

    CREATED = "Created"
    UPDATED = "Updated"
    APPROVED = "Approved"
    CANCELLED = "Cancelled"
    CANCELLED_FOR_ADJUSTMENT = "CancelledForAdjustment"
    COMPLETED = "Completed"
    RESTORED = "Restored"
    SOFT_DELETED = "SoftDeleted"
    AUTO_COMPLETED = "AutoCompleted"
    FOLLOW_UP_SCHEDULED = "FollowUpScheduled"
    FOLLOW_UP_CANCELLED = "FollowUpCancelled"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Action":
        """Parse a wire value, ignoring case and separators ("auto-completed")."""
        if not value:
            return cls.OTHER
        key = _action_key(value)
        for member in cls:
            if _action_key(member.value) == key:
                return member
        return cls.OTHER


def _action_key(value: str) -> str:
    return re.sub(r"[\s_\-]", "", value).lower()


@dataclass(frozen=True)
class Performer:
    """User reference attached to an event; ``SYSTEM_PERFORMER`` for automated actions."""

    id: Optional[str]
    name: str
    email: Optional[str] = None

    @property
    def is_system(self) -> bool:
        return self.id is None


SYSTEM_PERFORMER = Performer(id=None, name="System")


@dataclass(frozen=True)
class ParentStub:
    """Identity of a parent entity, known before any of its events are fetched.

    Attributes:
        parent_id: Identifier of the parent (health-check result, treatment plan)
        parent_code: Display code of the parent
        secondary_id: Optional linked entity id surfaced for cross-navigation
        secondary_code: Optional linked entity display code
        patient: Optional patient of the linked entity, "Full Name (email)"
    """

    parent_id: str
    parent_code: str
    secondary_id: Optional[str] = None
    secondary_code: Optional[str] = None
    patient: Optional[str] = None

@dataclass(frozen=True)
class EventRecord:
    """One immutable audit fact about a parent entity."""

    id: str
    parent_id: str
    parent_code: str
    action: Action
    action_date: datetime
    performed_by: Performer = SYSTEM_PERFORMER
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    change_details: Optional[str] = None
    rejection_reason: Optional[str] = None
    secondary_id: Optional[str] = None
    secondary_code: Optional[str] = None
    patient: Optional[str] = None
    # Raw wire value, kept so unknown actions still display
    action_label: str = ""

    @property
    def action_name(self) -> str:
        if self.action is Action.OTHER and self.action_label:
            return self.action_label
        return self.action.value

    def to_stub(self) -> ParentStub:
        return ParentStub(
            parent_id=self.parent_id,
            parent_code=self.parent_code,
            secondary_id=self.secondary_id,
            secondary_code=self.secondary_code,
            patient=self.patient,
        )


class HydrationState(Enum):
    PENDING = "pending"
    LOADED = "loaded"
    FAILED = "failed"


class PageState(Enum):
    """Page controller states: IDLE -> PAGINATING -> HYDRATING -> READY, or FAILED."""

    IDLE = "idle"
    PAGINATING = "paginating"
    HYDRATING = "hydrating"
    READY = "ready"
    FAILED = "failed"


class MergeOutcome(Enum):
    """Result of offering a hydration response to a group collection."""

    APPLIED = "applied"
    STALE = "stale"


@dataclass(frozen=True)
class Group:
    """A parent entity plus its hydrated event history. Identity is ``parent_id``."""

    stub: ParentStub
    events: tuple[EventRecord, ...] = ()
    state: HydrationState = HydrationState.PENDING

    @property
    def parent_id(self) -> str:
        return self.stub.parent_id

    @property
    def parent_code(self) -> str:
        return self.stub.parent_code

    @property
    def latest_event_time(self) -> Optional[datetime]:
        """Most recent ``action_date``; None stands for minus infinity."""
        if not self.events:
            return None
        return max(event.action_date for event in self.events)


class GroupCollection:
    """Groups of one page, keyed by ``parent_id``.

    Hydration responses can complete in any order, so every update goes
    through :meth:`merge` by key. Iteration follows the paginator's order.
    """

    def __init__(self, stubs: Iterable[ParentStub]):
        self._groups: dict[str, Group] = {}
        for stub in stubs:
            # First occurrence wins, same as the paginator's fold
            self._groups.setdefault(stub.parent_id, Group(stub=stub))

    def merge(
        self,
        parent_id: str,
        state: HydrationState,
        events: Iterable[EventRecord] = (),
    ) -> None:
        """Replace one group's hydration result.

        Raises:
            KeyError: If ``parent_id`` is not part of this page
        """
        group = self._groups[parent_id]
        loaded = tuple(events) if state is HydrationState.LOADED else ()
        self._groups[parent_id] = replace(group, events=loaded, state=state)

    def get(self, parent_id: str) -> Optional[Group]:
        return self._groups.get(parent_id)

    def pending_stubs(self) -> list[ParentStub]:
        return [g.stub for g in self._groups.values() if g.state is HydrationState.PENDING]

    def groups(self) -> list[Group]:
        return list(self._groups.values())

    @property
    def hydration_state(self) -> HydrationState:
        if any(g.state is HydrationState.PENDING for g in self._groups.values()):
            return HydrationState.PENDING
        return HydrationState.LOADED

    def __iter__(self) -> Iterator[Group]:
        return iter(self.groups())

    def __len__(self) -> int:
        return len(self._groups)

    def __contains__(self, parent_id: object) -> bool:
        return parent_id in self._groups


@dataclass(frozen=True)
class Page:
    """Snapshot of the page published to the presentation layer."""

    groups: tuple[Group, ...] = ()
    page_index: int = 1
    page_size: int = 10
    total_distinct_parents: int = 0
    generation: int = 0
    state: PageState = PageState.IDLE
    # True when the record window came back full: totals may be incomplete
    window_truncated: bool = False
    error: Optional[str] = None
    window_size: Optional[int] = field(default=None, compare=False)

    @property
    def hydration_state(self) -> HydrationState:
        if any(g.state is HydrationState.PENDING for g in self.groups):
            return HydrationState.PENDING
        return HydrationState.LOADED

    @property
    def total_pages(self) -> int:
        if self.page_size < 1:
            return 0
        return (self.total_distinct_parents + self.page_size - 1) // self.page_size

    @property
    def failed_groups(self) -> list[Group]:
        return [g for g in self.groups if g.state is HydrationState.FAILED]

    @property
    def incomplete_notice(self) -> Optional[str]:
        """User-facing signal for the record-window approximation."""
        if not self.window_truncated:
            return None
        limit = self.window_size if self.window_size is not None else "the window"
        return f"Results may be incomplete beyond {limit} records"
