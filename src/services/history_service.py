"""History service: the page controller for grouped audit history.

The controller owns pagination state (query, page index, page size) and runs
Normalizer -> Paginator -> Hydrator -> Recency Sorter whenever any of them
changes. Every run gets a new generation number; work belonging to an older
generation is superseded and never published.
"""

from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional

from src.history.client import HistoryApiClient
from src.history.errors import PageFetchError
from src.history.models import GroupCollection, Page, PageState, Performer
from src.history.sources import HistorySource
from src.utils.filtering import Query, normalize
from src.utils.group_details import GroupHydrator, Notifier, apply_preloaded
from src.utils.group_pagination import (
    DistinctParentPaginator,
    PaginationResult,
    clamp_page_size,
    get_paginator,
)
from src.utils.logging_utils import get_logger
from src.utils.settings import get_history_settings, get_settings
from src.utils.sort_utils import order_page

from .export_service import ExportBuilder, ExportConfig, ExportReport

logger = get_logger(__name__)

PageObserver = Callable[[Page], None]


@dataclass(frozen=True)
class FilterOptions:
    """Distinct values for populating filter dropdowns."""

    parent_codes: List[str]
    secondary_codes: List[str]
    performers: List[Performer]


def collect_filter_options(events) -> FilterOptions:
    """Distinct parent codes, linked codes and performers, in first-seen order."""
    parent_codes: dict[str, None] = {}
    secondary_codes: dict[str, None] = {}
    performers: dict[str, Performer] = {}
    for event in events:
        if event.parent_code:
            parent_codes.setdefault(event.parent_code, None)
        if event.secondary_code:
            secondary_codes.setdefault(event.secondary_code, None)
        if not event.performed_by.is_system:
            performers.setdefault(event.performed_by.id, event.performed_by)
    return FilterOptions(
        parent_codes=list(parent_codes),
        secondary_codes=list(secondary_codes),
        performers=list(performers.values()),
    )


def _log_notifier(message: str) -> None:
    logger.warning(f"Notification: {message}")


class HistoryPageController:
    """Owns one history screen's page and keeps it consistent with the query."""

    def __init__(
        self,
        source: HistorySource,
        client: HistoryApiClient,
        settings: Optional[Mapping[str, Any]] = None,
        notifier: Optional[Notifier] = None,
        paginator: Optional[DistinctParentPaginator] = None,
    ):
        self.source = source
        self.client = client
        self.settings = settings if settings is not None else get_settings()
        self.notifier = notifier or _log_notifier
        self.paginator = paginator or get_paginator(source, client, self.settings)
        self.hydrator = GroupHydrator(source, client, self.notifier)

        self._query = normalize(None, self.settings)
        self._page_index = 1
        self._page_size = clamp_page_size(
            int(self.settings.get("ui", {}).get("default_page_size", 10)), self.settings
        )
        self._generation = 0
        self._state = PageState.IDLE
        self._result: Optional[PaginationResult] = None
        self._collection: Optional[GroupCollection] = None
        self._error: Optional[str] = None
        self._observers: List[PageObserver] = []

    @property
    def query(self) -> Query:
        return self._query

    @property
    def state(self) -> PageState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def subscribe(self, observer: PageObserver) -> Callable[[], None]:
        """Register an observer for published snapshots; returns an unsubscribe callable."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def get_page(self) -> Page:
        """Snapshot of the current page, groups in recency order."""
        groups = ()
        if self._collection is not None:
            groups = tuple(order_page(self._collection.groups(), self._query.ascending))
        window_size = getattr(self.paginator, "window_size", None)
        return Page(
            groups=groups,
            page_index=self._page_index,
            page_size=self._page_size,
            total_distinct_parents=self._result.total if self._result else 0,
            generation=self._generation,
            state=self._state,
            window_truncated=self._result.window_truncated if self._result else False,
            error=self._error,
            window_size=window_size,
        )

    async def set_query(self, query: Mapping[str, Any] | Query | None, force: bool = False) -> Page:
        """Replace the query and reload from page 1.

        Setting an equal query is a no-op unless ``force`` is set.
        """
        normalized = normalize(query, self.settings)
        if normalized == self._query and not force and self._state is not PageState.IDLE:
            logger.debug("set_query | query unchanged, keeping current page")
            return self.get_page()
        self._query = normalized
        self._page_index = 1
        return await self._run()

    async def set_page(self, page_index: int, page_size: Optional[int] = None) -> Page:
        """Navigate to another page, optionally changing page size."""
        self._set_position(page_index, page_size)
        return await self._run()

    async def load(
        self, query: Mapping[str, Any] | Query | None, page_index: int = 1, page_size: Optional[int] = None
    ) -> Page:
        """Set query, page and page size together and run the pipeline once."""
        normalized = normalize(query, self.settings)
        self._set_position(page_index, page_size)
        self._query = normalized
        return await self._run()

    def _set_position(self, page_index: int, page_size: Optional[int]) -> None:
        if page_index < 1:
            raise ValueError(f"page_index must be >= 1, got {page_index}")
        if page_size is not None:
            if page_size < 1:
                raise ValueError(f"page_size must be >= 1, got {page_size}")
            self._page_size = clamp_page_size(page_size, self.settings)
        self._page_index = page_index

    async def refresh(self) -> Page:
        """Re-run the whole pipeline for the current query and page."""
        return await self._run()

    async def request_export(self, config: ExportConfig) -> ExportReport:
        """Build an export report; raises ExportValidationError when refused."""
        page = self.get_page() if self._collection is not None else None
        builder = ExportBuilder(self.source, self.client, self.settings, self.notifier)
        return await builder.build(config, self._query, page)

    async def load_filter_options(self) -> FilterOptions:
        """Distinct codes and performers from one unfiltered record window."""
        window_size = int(get_history_settings(self.settings)["window_size"])
        events = await self.client.fetch_events(self.source, self._query.without_filters(), window_size)
        return collect_filter_options(events)

    async def _run(self) -> Page:
        self._generation += 1
        generation = self._generation
        query, page_index, page_size = self._query, self._page_index, self._page_size

        self._state = PageState.PAGINATING
        self._result = None
        self._collection = None
        self._error = None
        self._publish(generation)

        try:
            result = await self.paginator.paginate(query, page_index, page_size)
        except PageFetchError as e:
            if not self.is_current(generation):
                return self.get_page()
            self._state = PageState.FAILED
            self._error = str(e)
            self.notifier(str(e))
            self._publish(generation)
            return self.get_page()

        if not self.is_current(generation):
            logger.debug(f"Discarding superseded page | generation={generation} current={self._generation}")
            return self.get_page()

        collection = GroupCollection(result.stubs)
        apply_preloaded(collection, result.preloaded)
        self._result = result
        self._collection = collection
        self._state = PageState.HYDRATING
        if result.window_truncated:
            self.notifier(self.get_page().incomplete_notice)
        self._publish(generation)

        await self.hydrator.hydrate(
            collection,
            generation,
            self.is_current,
            on_update=lambda: self._publish(generation),
        )

        if not self.is_current(generation):
            return self.get_page()

        self._state = PageState.READY
        self._publish(generation)
        return self.get_page()

    def _publish(self, generation: int) -> None:
        if not self.is_current(generation) or not self._observers:
            return
        page = self.get_page()
        for observer in list(self._observers):
            observer(page)


__all__ = ["FilterOptions", "HistoryPageController", "collect_filter_options"]
