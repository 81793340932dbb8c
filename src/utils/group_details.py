"""Group details utilities for grouped audit history.

This module hydrates the groups of one page: it fetches every parent's full
history concurrently and merges each response into the page's group
collection by parent id.

Ordering:
- Responses may complete in any order; merges are keyed, never positional.
- Each batch is tagged with the generation it was issued for. A response
  whose generation is no longer current is dropped without surfacing an
  error.

Failures:
- One parent failing, whether from an API error or a malformed payload,
  marks that group FAILED with no events and raises a user-facing
  notification. Sibling fetches are unaffected.
"""

import asyncio
from typing import Callable, Dict, Mapping, Optional, Tuple

from src.history.client import HistoryApiClient
from src.history.errors import GroupFetchError, HistoryApiError
from src.history.models import EventRecord, GroupCollection, HydrationState, MergeOutcome, ParentStub
from src.history.sources import HistorySource

from .logging_utils import get_logger
from .metrics import record_hydration, record_stale_discard

logger = get_logger(__name__)

Notifier = Callable[[str], None]
GenerationCheck = Callable[[int], bool]


def _always_current(generation: int) -> bool:
    return True


def apply_preloaded(
    collection: GroupCollection, preloaded: Mapping[str, Tuple[EventRecord, ...]]
) -> int:
    """Merge histories that arrived together with the page (grouped strategy).

    Returns:
        Number of groups marked loaded
    """
    applied = 0
    for parent_id, events in preloaded.items():
        if parent_id in collection:
            collection.merge(parent_id, HydrationState.LOADED, events)
            applied += 1
    return applied


class GroupHydrator:
    """Fan-out/fan-in loader of per-parent histories."""

    def __init__(
        self,
        source: HistorySource,
        client: HistoryApiClient,
        notifier: Optional[Notifier] = None,
    ):
        self.source = source
        self.client = client
        self.notifier = notifier

    async def hydrate(
        self,
        collection: GroupCollection,
        generation: int = 0,
        is_current: GenerationCheck = _always_current,
        on_update: Optional[Callable[[], None]] = None,
    ) -> Dict[str, MergeOutcome]:
        """Load every pending group of ``collection`` concurrently.

        Args:
            collection: The page's groups; only PENDING ones are fetched
            generation: Generation the batch is issued for
            is_current: Tells whether a generation is still the current one
            on_update: Called after every applied merge

        Returns:
            Merge outcome per parent id. Never raises for per-group failures.

        """
        stubs = collection.pending_stubs()
        if not stubs:
            return {}

        logger.info(
            f"hydrate | source={self.source.name} generation={generation} groups={len(stubs)}"
        )
        tasks = [
            asyncio.create_task(self._hydrate_one(collection, stub, generation, is_current, on_update))
            for stub in stubs
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        outcomes: Dict[str, MergeOutcome] = {}
        for stub, result in zip(stubs, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Unexpected hydration error | source={self.source.name} parent_id={stub.parent_id}: {result!r}"
                )
                outcomes[stub.parent_id] = self._fail(collection, stub, generation, is_current, on_update, result)
            elif isinstance(result, BaseException):
                raise result
            else:
                parent_id, outcome = result
                outcomes[parent_id] = outcome
        return outcomes

    async def _hydrate_one(
        self,
        collection: GroupCollection,
        stub: ParentStub,
        generation: int,
        is_current: GenerationCheck,
        on_update: Optional[Callable[[], None]],
    ) -> Tuple[str, MergeOutcome]:
        try:
            events = await self._fetch(stub)
        except GroupFetchError as e:
            return stub.parent_id, self._fail(collection, stub, generation, is_current, on_update, e)

        if not is_current(generation):
            return stub.parent_id, self._discard(stub, generation)
        collection.merge(stub.parent_id, HydrationState.LOADED, events)
        record_hydration("loaded")
        if on_update is not None:
            on_update()
        return stub.parent_id, MergeOutcome.APPLIED

    async def _fetch(self, stub: ParentStub) -> list[EventRecord]:
        try:
            return await self.client.fetch_history_for_parent(self.source, stub)
        except HistoryApiError as e:
            raise GroupFetchError(stub.parent_id, str(e)) from e

    def _fail(
        self,
        collection: GroupCollection,
        stub: ParentStub,
        generation: int,
        is_current: GenerationCheck,
        on_update: Optional[Callable[[], None]],
        error: Exception,
    ) -> MergeOutcome:
        if not is_current(generation):
            return self._discard(stub, generation)
        logger.warning(f"Group hydration failed | source={self.source.name} parent_id={stub.parent_id}: {error}")
        collection.merge(stub.parent_id, HydrationState.FAILED)
        record_hydration("failed")
        self._notify(f"Could not load history for {self.source.label.lower()} {stub.parent_code or stub.parent_id}")
        if on_update is not None:
            on_update()
        return MergeOutcome.APPLIED

    def _discard(self, stub: ParentStub, generation: int) -> MergeOutcome:
        logger.debug(
            f"Discarding stale history | source={self.source.name} parent_id={stub.parent_id} generation={generation}"
        )
        record_hydration("stale")
        record_stale_discard()
        return MergeOutcome.STALE

    def _notify(self, message: str) -> None:
        if self.notifier is not None:
            self.notifier(message)
