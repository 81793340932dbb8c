"""
Group pagination utilities for grouped audit history.

This module determines the page of distinct parents matching a query.

Strategies:
- record_window: the backend only offers record-level listings, so one
  bounded window of matching records is folded into distinct parents
  client-side. This is an approximation: when more distinct parents match
  than fit in the window, totals and page contents are incomplete, which is
  reported through ``window_truncated``.
- grouped: the backend groups server-side and returns parents together with
  their histories in one call.

Settings Keys:
- history.window_size: record window for the record_window strategy (default: 1000)
- history.prefer_grouped: use grouped where the source supports it (default: True)
- history.force_strategy: record_window | grouped, overrides selection
- ui.max_page_size: page size clamp (default: 100)
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from src.history.client import HistoryApiClient
from src.history.errors import HistoryApiError, PageFetchError
from src.history.models import EventRecord, ParentStub
from src.history.sources import HistorySource

from .filtering import Query
from .logging_utils import get_logger
from .metrics import record_page_size_clamped, record_paginate_request, record_window_truncated
from .settings import get_history_settings
from .sort_utils import sort_stubs

logger = get_logger(__name__)


@dataclass(frozen=True)
class PaginationResult:
    """A page of distinct parents.

    Attributes:
        stubs: Parents on the requested page, in paginator order
        total: Size of the full distinct set (not of the record window)
        window_truncated: True when the record window came back full
        preloaded: Histories already returned with the page, by parent id
    """

    stubs: Tuple[ParentStub, ...]
    total: int
    window_truncated: bool = False
    preloaded: Mapping[str, Tuple[EventRecord, ...]] = field(default_factory=dict, compare=False)


def fold_distinct_parents(events: Iterable[EventRecord]) -> List[ParentStub]:
    """Fold records into distinct parents keyed by parent id.

    The first occurrence wins for display code, so the result keeps the
    order in which parents first appear in the record window.
    """
    distinct: Dict[str, ParentStub] = {}
    for event in events:
        if event.parent_id not in distinct:
            distinct[event.parent_id] = event.to_stub()
    return list(distinct.values())


def slice_page(items: Sequence[Any], page_index: int, page_size: int) -> List[Any]:
    """Apply ``skip = (page_index - 1) * page_size``, ``take = page_size``."""
    skip = (page_index - 1) * page_size
    return list(items[skip:skip + page_size])


def clamp_page_size(page_size: int, settings: Optional[Mapping[str, Any]] = None) -> int:
    """Clamp page size to ``ui.max_page_size``, logging when it had to."""
    max_page_size = int((settings or {}).get("ui", {}).get("max_page_size", 100))
    if page_size > max_page_size:
        logger.warning(f"Page size {page_size} exceeds max {max_page_size}, clamping")
        record_page_size_clamped()
        return max_page_size
    return page_size


def _validate_page_args(page_index: int, page_size: int) -> None:
    if page_index < 1:
        raise ValueError(f"page_index must be >= 1, got {page_index}")
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")


class DistinctParentPaginator(ABC):
    """Base class for distinct-parent pagination strategies."""

    strategy_name = "base"

    def __init__(self, source: HistorySource, client: HistoryApiClient):
        self.source = source
        self.client = client

    async def paginate(self, query: Query, page_index: int, page_size: int) -> PaginationResult:
        """Get the page of distinct parents matching ``query``.

        Args:
            query: Canonical query
            page_index: 1-based page number
            page_size: Parents per page

        Returns:
            PaginationResult with the page slice and the distinct total

        Raises:
            ValueError: If page_index or page_size is below 1
            PageFetchError: If the backing API fails or returns an unusable payload
        """
        _validate_page_args(page_index, page_size)
        start_time = time.time()
        logger.info(
            f"paginate | source={self.source.name} strategy={self.strategy_name} "
            f"page={page_index} page_size={page_size} sort={query.sort_field} ascending={query.ascending}"
        )

        try:
            result = await self._fetch_page(query, page_index, page_size)
        except HistoryApiError as e:
            duration = time.time() - start_time
            record_paginate_request(self.strategy_name, False, duration)
            logger.error(f"paginate failed | source={self.source.name} strategy={self.strategy_name}: {e}")
            raise PageFetchError(f"Could not load {self.source.label.lower()} history: {e}") from e

        duration = time.time() - start_time
        record_paginate_request(self.strategy_name, True, duration)
        logger.info(
            f"paginate done | source={self.source.name} parents={len(result.stubs)} total={result.total} "
            f"truncated={result.window_truncated} elapsed={duration:.3f}s"
        )
        return result

    @abstractmethod
    async def _fetch_page(self, query: Query, page_index: int, page_size: int) -> PaginationResult:
        raise NotImplementedError


class RecordWindowPaginator(DistinctParentPaginator):
    """Distinct parents derived client-side from one bounded record window."""

    strategy_name = "record_window"

    def __init__(self, source: HistorySource, client: HistoryApiClient, window_size: int = 1000):
        super().__init__(source, client)
        self.window_size = window_size

    async def _fetch_page(self, query: Query, page_index: int, page_size: int) -> PaginationResult:
        events = await self.client.fetch_events(self.source, query, self.window_size)

        truncated = len(events) >= self.window_size
        if truncated:
            record_window_truncated()
            logger.warning(
                f"Record window full | source={self.source.name} window={self.window_size}; "
                "distinct parents beyond it are not counted"
            )

        distinct = fold_distinct_parents(events)
        if query.sorts_by_parent:
            distinct = sort_stubs(distinct, query.sort_field, query.ascending)

        return PaginationResult(
            stubs=tuple(slice_page(distinct, page_index, page_size)),
            total=len(distinct),
            window_truncated=truncated,
        )


class GroupedPaginator(DistinctParentPaginator):
    """Distinct parents and their histories from the server-side grouped listing."""

    strategy_name = "grouped"

    async def _fetch_page(self, query: Query, page_index: int, page_size: int) -> PaginationResult:
        grouped = await self.client.fetch_grouped(self.source, query, page_index, page_size)

        stubs: Dict[str, ParentStub] = {}
        preloaded: Dict[str, Tuple[EventRecord, ...]] = {}
        for stub, histories in grouped.items:
            if stub.parent_id in stubs:
                continue
            stubs[stub.parent_id] = stub
            preloaded[stub.parent_id] = tuple(histories)

        return PaginationResult(
            stubs=tuple(stubs.values()),
            total=grouped.total,
            preloaded=preloaded,
        )


def get_paginator(
    source: HistorySource,
    client: HistoryApiClient,
    settings: Optional[Mapping[str, Any]] = None,
) -> DistinctParentPaginator:
    """Select a pagination strategy by backend capability and settings.

    Precedence: history.force_strategy > capability + history.prefer_grouped.
    A forced grouped strategy on a source without a grouped endpoint falls
    back to record_window with a warning.
    """
    history = get_history_settings(settings or {})
    window_size = int(history["window_size"])
    force_strategy = history.get("force_strategy")

    if force_strategy == GroupedPaginator.strategy_name:
        if source.supports_grouped:
            logger.info(f"Force grouped strategy enabled | source={source.name}")
            return GroupedPaginator(source, client)
        logger.warning(f"Forced grouped strategy unsupported by source={source.name}, using record_window")
        return RecordWindowPaginator(source, client, window_size)

    if force_strategy == RecordWindowPaginator.strategy_name:
        logger.info(f"Force record_window strategy enabled | source={source.name}")
        return RecordWindowPaginator(source, client, window_size)

    if force_strategy:
        logger.warning(f"Unknown history.force_strategy '{force_strategy}', ignoring")

    if source.supports_grouped and history.get("prefer_grouped", True):
        return GroupedPaginator(source, client)
    return RecordWindowPaginator(source, client, window_size)
