"""Filtering and sorting utilities for grouped audit history.

This module provides the canonical query descriptor shared by the
paginator, hydrator, sorter and export builder.
"""

import re
from dataclasses import dataclass, fields, replace
from datetime import date, datetime
from typing import Any, Mapping, Optional

import pandas as pd

from src.history.models import Action
from src.history.sources import HistorySource
from src.utils.logging_utils import get_logger

logger = get_logger(__name__)

DEFAULT_SORT_FIELD = "action_date"

SORT_FIELDS = ("action_date", "action", "performed_by", "parent_code", "secondary_code")

# Sort fields that describe the parent rather than an event
PARENT_LEVEL_SORT_FIELDS = ("parent_code", "secondary_code")

FILTER_FIELDS = (
    "action",
    "performed_by",
    "previous_status",
    "new_status",
    "action_date_from",
    "action_date_to",
    "parent_code",
    "secondary_code",
    "rejection_reason",
)

# User-facing filter names accepted by normalize()
FILTER_ALIASES = {
    "code": "parent_code",
    "performed_by_search": "performed_by",
    "performer": "performed_by",
    "start_action_date": "action_date_from",
    "action_start_date": "action_date_from",
    "end_action_date": "action_date_to",
    "action_end_date": "action_date_to",
    "sort_by": "sort_field",
    "sort_option": "sort_field",
}

SORT_ALIASES = {
    "date": "action_date",
    "code": "parent_code",
    "treatment_plan_code": "parent_code",
    "health_check_result_code": "parent_code",
    "performer": "performed_by",
}


@dataclass(frozen=True)
class Query:
    """Canonical filter + sort descriptor.

    Two queries are equal iff all fields are equal; the page controller relies
    on this to tell whether in-flight work still matches what the user wants.
    """

    action: Optional[str] = None
    performed_by: Optional[str] = None
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    action_date_from: Optional[date] = None
    action_date_to: Optional[date] = None
    parent_code: Optional[str] = None
    secondary_code: Optional[str] = None
    rejection_reason: Optional[str] = None
    sort_field: str = DEFAULT_SORT_FIELD
    ascending: bool = False

    @property
    def sorts_by_parent(self) -> bool:
        return self.sort_field in PARENT_LEVEL_SORT_FIELDS

    def without_filters(self) -> "Query":
        """Same sort, no field filters."""
        return Query(sort_field=self.sort_field, ascending=self.ascending)


def _snake_case(name: str) -> str:
    name = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", name.strip())
    return re.sub(r"[\s\-]+", "_", name).lower()


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_date(value: Any, key: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unparseable date filter {key}={value!r}")
        return None
    if pd.isna(ts):
        return None
    return ts.date()


def _coerce_action(value: Any) -> Optional[str]:
    text = _clean_text(value)
    if text is None:
        return None
    action = Action.parse(text)
    # Unknown actions are kept verbatim so the backend can still match them
    return text if action is Action.OTHER else action.value


def _coerce_ascending(raw: Mapping[str, Any], default: bool) -> bool:
    if "ascending" in raw and raw["ascending"] is not None:
        value = raw["ascending"]
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes", "asc", "ascending")
        return bool(value)
    direction = raw.get("sort_direction") or raw.get("direction")
    if isinstance(direction, str) and direction.strip():
        return direction.strip().lower() in ("asc", "ascending")
    return default


def _resolve_sort_field(value: Any, default_field: str) -> str:
    text = _clean_text(value)
    if text is None:
        return default_field
    field_name = _snake_case(text)
    field_name = SORT_ALIASES.get(field_name, field_name)
    if field_name not in SORT_FIELDS:
        logger.warning(f"Unknown sort_field='{text}', falling back to default: {default_field}")
        return default_field
    return field_name


def _sort_defaults(settings: Optional[Mapping[str, Any]]) -> tuple[str, bool]:
    sort_cfg = (settings or {}).get("ui", {}).get("sort", {})
    default_field = sort_cfg.get("default_field", DEFAULT_SORT_FIELD)
    if default_field not in SORT_FIELDS:
        logger.error(f"Configured default sort field '{default_field}' is invalid, using {DEFAULT_SORT_FIELD}")
        default_field = DEFAULT_SORT_FIELD
    return default_field, bool(sort_cfg.get("default_ascending", False))


def normalize(
    raw_filters: Mapping[str, Any] | Query | None,
    settings: Optional[Mapping[str, Any]] = None,
) -> Query:
    """Turn a user-facing filter object into a canonical Query.

    Never raises: unset or unusable values mean "no constraint" and the sort
    falls back to the configured default (``action_date`` descending).

    Args:
        raw_filters: Filter mapping (snake_case or camelCase keys), an existing
            Query, or None
        settings: Settings dict supplying the default sort

    Returns:
        Canonical Query
    """
    if isinstance(raw_filters, Query):
        return raw_filters

    default_field, default_ascending = _sort_defaults(settings)
    if not raw_filters:
        return Query(sort_field=default_field, ascending=default_ascending)

    raw: dict[str, Any] = {}
    for key, value in raw_filters.items():
        name = _snake_case(str(key))
        raw[FILTER_ALIASES.get(name, name)] = value

    date_from = _coerce_date(raw.get("action_date_from"), "action_date_from")
    date_to = _coerce_date(raw.get("action_date_to"), "action_date_to")
    date_range = raw.get("action_date_range") or raw.get("date_range")
    if date_range:
        try:
            start, end = date_range
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed date range {date_range!r}")
        else:
            date_from = _coerce_date(start, "action_date_range") or date_from
            date_to = _coerce_date(end, "action_date_range") or date_to
    if date_from and date_to and date_from > date_to:
        date_from, date_to = date_to, date_from

    unknown = set(raw) - set(FILTER_FIELDS) - {
        "sort_field", "ascending", "sort_direction", "direction", "action_date_range", "date_range"
    }
    if unknown:
        logger.warning(f"Ignoring unknown filter keys: {sorted(unknown)}")

    return Query(
        action=_coerce_action(raw.get("action")),
        performed_by=_clean_text(raw.get("performed_by")),
        previous_status=_clean_text(raw.get("previous_status")),
        new_status=_clean_text(raw.get("new_status")),
        action_date_from=date_from,
        action_date_to=date_to,
        parent_code=_clean_text(raw.get("parent_code")),
        secondary_code=_clean_text(raw.get("secondary_code")),
        rejection_reason=_clean_text(raw.get("rejection_reason")),
        sort_field=_resolve_sort_field(raw.get("sort_field"), default_field),
        ascending=_coerce_ascending(raw, default_ascending),
    )


def has_active_filters(query: Query) -> bool:
    """Whether any field filter is set. Sort settings do not count."""
    return any(getattr(query, name) is not None for name in FILTER_FIELDS)


def active_filters(query: Query) -> dict[str, Any]:
    """The field filters that are set, by name."""
    return {
        f.name: getattr(query, f.name)
        for f in fields(query)
        if f.name in FILTER_FIELDS and getattr(query, f.name) is not None
    }


def with_sort(query: Query, sort_field: str, ascending: bool) -> Query:
    """Copy of ``query`` with a different sort."""
    return replace(query, sort_field=_resolve_sort_field(sort_field, query.sort_field), ascending=ascending)


def to_api_params(query: Query, source: HistorySource) -> dict[str, Any]:
    """Render a Query as the source's wire parameters.

    Filters the source has no parameter for are dropped with a debug log.
    Dates are sent as ``YYYY-MM-DD``.
    """
    params: dict[str, Any] = {}
    for name, value in active_filters(query).items():
        param = source.param_names.get(name)
        if param is None:
            logger.debug(f"Filter {name} not supported by source={source.name}, dropped")
            continue
        params[param] = value.strftime("%Y-%m-%d") if isinstance(value, date) else value

    params["sortBy"] = source.sort_names.get(query.sort_field, source.sort_names.get(DEFAULT_SORT_FIELD, "ActionDate"))
    params["ascending"] = query.ascending
    return params
