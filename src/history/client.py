"""Async client for the clinical-operations backing API.

Only the three read calls the history service needs are exposed: a
record-level history listing, one parent's full history, and the
server-side grouped listing where a source offers it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx

from src.utils.filtering import Query, to_api_params
from src.utils.logging_utils import get_logger

from .errors import HistoryApiError
from .models import EventRecord, ParentStub
from .sources import HistorySource

logger = get_logger(__name__)


@dataclass(frozen=True)
class GroupedPage:
    """One page of the server-side grouped listing."""

    items: list[tuple[ParentStub, list[EventRecord]]]
    total: int


def unwrap_envelope(payload: Any) -> Any:
    """Return ``data`` from the backend envelope ``{isSuccess|success, message, data}``.

    Payloads without an envelope are returned unchanged.

    Raises:
        HistoryApiError: If the envelope reports failure
    """
    if not isinstance(payload, Mapping):
        return payload
    success = payload.get("isSuccess", payload.get("success"))
    if success is None and "data" not in payload:
        return payload
    if success is False:
        raise HistoryApiError(str(payload.get("message") or "Request was not successful"))
    return payload.get("data")


def extract_items(data: Any) -> list[Mapping[str, Any]]:
    """Items of a listing payload: a bare list or ``{items: [...]}``."""
    if data is None:
        return []
    if isinstance(data, list):
        return data
    if isinstance(data, Mapping) and isinstance(data.get("items"), list):
        return data["items"]
    raise HistoryApiError(f"Unexpected listing payload of type {type(data).__name__}")


class HistoryApiClient:
    """Thin async wrapper over ``httpx.AsyncClient``.

    Use as an async context manager, or call :meth:`aclose` when done.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers=dict(headers or {}),
        )

    @classmethod
    def from_settings(
        cls,
        settings: Mapping[str, Any],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "HistoryApiClient":
        api = settings.get("api", {})
        return cls(
            base_url=api.get("base_url", "http://localhost:5000/api"),
            timeout=float(api.get("timeout_seconds", 30)),
            transport=transport,
        )

    async def __aenter__(self) -> "HistoryApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise HistoryApiError(
                f"GET {path} failed with status {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise HistoryApiError(f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise HistoryApiError(f"GET {path} returned invalid JSON: {e}") from e
        return unwrap_envelope(payload)

    async def fetch_events(
        self, source: HistorySource, query: Query, window_size: int
    ) -> list[EventRecord]:
        """Fetch up to ``window_size`` matching records, in the query's sort order."""
        params = {"page": 1, "pageSize": window_size, **to_api_params(query, source)}
        data = await self._get(source.events_path, params)
        events = [source.parse_event(item) for item in extract_items(data)]
        logger.debug(f"fetch_events | source={source.name} window={window_size} rows={len(events)}")
        return events

    async def fetch_history_for_parent(
        self, source: HistorySource, stub: ParentStub
    ) -> list[EventRecord]:
        """Fetch one parent's full ordered history."""
        data = await self._get(source.history_path_for(stub.parent_id))
        return [source.parse_event(item, stub=stub) for item in extract_items(data)]

    async def fetch_grouped(
        self, source: HistorySource, query: Query, page_index: int, page_size: int
    ) -> GroupedPage:
        """Fetch one page of the server-side grouped listing.

        Raises:
            HistoryApiError: If the source has no grouped endpoint or the payload is unusable
        """
        if source.grouped_path is None:
            raise HistoryApiError(f"{source.label} history has no grouped endpoint")

        params = {"page": page_index, "pageSize": page_size, **to_api_params(query, source)}
        data = await self._get(source.grouped_path, params)
        raw_items = extract_items(data)

        items = []
        for raw in raw_items:
            stub = source.parse_stub(raw)
            raw_histories = raw.get("histories") or []
            if not isinstance(raw_histories, list):
                raise HistoryApiError(f"{source.label} grouped item {stub.parent_id} has no histories list")
            histories = [source.parse_event(item, stub=stub) for item in raw_histories]
            items.append((stub, histories))

        total = len(items)
        if isinstance(data, Mapping):
            total = _parse_total(data.get(source.grouped_total_field, data.get("totalCount", total)), source)
        return GroupedPage(items=items, total=total)


def _parse_total(value: Any, source: HistorySource) -> int:
    try:
        total = int(value)
    except (TypeError, ValueError) as e:
        raise HistoryApiError(f"{source.label} grouped listing has an invalid total {value!r}") from e
    if total < 0:
        raise HistoryApiError(f"{source.label} grouped listing has a negative total {total}")
    return total
