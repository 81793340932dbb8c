"""Export service for grouped audit history.

Builds a multi-section tabular report (one row per event, plus an optional
status-distribution summary) from either the current page's hydrated
groups or a freshly materialized, unpaginated result set, and writes it to
Excel.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import pandas as pd

from src.history.client import HistoryApiClient
from src.history.errors import ExportValidationError
from src.history.models import EventRecord, Group, GroupCollection, HydrationState, Page
from src.history.sources import HistorySource
from src.utils.filtering import Query, has_active_filters
from src.utils.group_details import GroupHydrator, Notifier, apply_preloaded
from src.utils.group_pagination import get_paginator
from src.utils.logging_utils import get_logger
from src.utils.metrics import record_export
from src.utils.path_utils import ensure_directory_exists, get_export_dir
from src.utils.schema_utils import (
    ACTION,
    ACTION_DATE,
    CATEGORY,
    CHANGE_DETAILS,
    COUNT,
    HISTORY_COLUMNS,
    NEW_STATUS,
    PARENT_CODE,
    PATIENT,
    PERCENTAGE,
    PERFORMED_BY,
    PREVIOUS_STATUS,
    REJECTION_REASON,
    SECONDARY_CODE,
    SUMMARY_COLUMNS,
    VALUE,
    to_display,
)
from src.utils.settings import get_history_settings
from src.utils.sort_utils import order_page

logger = get_logger(__name__)

HISTORY_SECTION = "history"
SUMMARY_SECTION = "summary"

NO_FILTER_MESSAGE = (
    "Exporting the current page needs at least one active filter. "
    "Apply a filter, or choose to export all matching data."
)


class ExportScope(Enum):
    CURRENT_PAGE_ONLY = "current_page"
    ALL_MATCHING_QUERY = "all_matching"


@dataclass(frozen=True)
class ExportConfig:
    """What to export and which columns to include.

    ``filters`` applies to ALL_MATCHING_QUERY only and defaults to the
    current query.
    """

    scope: ExportScope = ExportScope.ALL_MATCHING_QUERY
    include_parent_code: bool = True
    include_secondary_code: bool = True
    include_patient: bool = True
    include_action: bool = True
    include_action_date: bool = True
    include_performed_by: bool = True
    include_previous_status: bool = True
    include_new_status: bool = True
    include_rejection_reason: bool = True
    include_change_details: bool = True
    include_summary: bool = True
    filters: Optional[Query] = None

    def enabled_columns(self) -> List[str]:
        """Enabled history columns, in report order."""
        return [column for column in HISTORY_COLUMNS if getattr(self, f"include_{column}")]


@dataclass
class ExportReport:
    """Result of an export: one DataFrame per section."""

    source: HistorySource
    scope: ExportScope
    sections: Dict[str, pd.DataFrame]
    group_count: int
    failed_groups: int = 0
    truncated: bool = False
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def row_count(self) -> int:
        return len(self.sections[HISTORY_SECTION])

    def default_filename(self) -> str:
        return f"{self.source.name}_history_{self.generated_at:%Y%m%d_%H%M%S}.xlsx"

    def to_excel(self, path: str | Path | None = None) -> Path:
        """Write one sheet per section; returns the written path."""
        if path is None:
            export_dir = get_export_dir()
            ensure_directory_exists(str(export_dir))
            path = export_dir / self.default_filename()
        path = Path(path)

        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            for name, df in self.sections.items():
                to_display(df).to_excel(writer, sheet_name=name.title(), index=False)

        logger.info(f"Export written | source={self.source.name} path={path} rows={self.row_count}")
        return path


def _excel_datetime(value: datetime) -> datetime:
    # Spreadsheets have no timezone; store UTC wall time
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _event_row(event: EventRecord, group: Group) -> Dict[str, Any]:
    return {
        PARENT_CODE: group.parent_code,
        SECONDARY_CODE: group.stub.secondary_code,
        PATIENT: group.stub.patient,
        ACTION: event.action_name,
        ACTION_DATE: _excel_datetime(event.action_date),
        PERFORMED_BY: event.performed_by.name,
        PREVIOUS_STATUS: event.previous_status,
        NEW_STATUS: event.new_status,
        REJECTION_REASON: event.rejection_reason,
        CHANGE_DETAILS: event.change_details,
    }


def build_history_frame(groups: List[Group], columns: List[str]) -> pd.DataFrame:
    """Flatten groups to one row per event with the parent code repeated."""
    rows = [_event_row(event, group) for group in groups for event in group.events]
    return pd.DataFrame(rows, columns=HISTORY_COLUMNS)[columns]


def _distribution(events: pd.Series, category: str) -> pd.DataFrame:
    counts = events.fillna("(none)").value_counts()
    total = int(counts.sum())
    frame = counts.rename_axis(VALUE).reset_index(name=COUNT)
    frame[PERCENTAGE] = (frame[COUNT] / total * 100).round(2) if total else 0.0
    frame.insert(0, CATEGORY, category)
    return frame


def build_summary_frame(groups: List[Group]) -> pd.DataFrame:
    """Status and action distribution, computed from the exported events."""
    events = [event for group in groups for event in group.events]
    if not events:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)

    df = pd.DataFrame(
        {
            NEW_STATUS: [e.new_status for e in events],
            ACTION: [e.action_name for e in events],
        }
    )
    return pd.concat(
        [_distribution(df[NEW_STATUS], "New Status"), _distribution(df[ACTION], "Action")],
        ignore_index=True,
    )[SUMMARY_COLUMNS]


class ExportBuilder:
    """Assemble export reports without touching the live page."""

    def __init__(
        self,
        source: HistorySource,
        client: HistoryApiClient,
        settings: Optional[Mapping[str, Any]] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.source = source
        self.client = client
        self.settings = settings or {}
        self.notifier = notifier

    def validate(self, config: ExportConfig, current_query: Query, current_page: Optional[Page]) -> None:
        """Refuse exports that would be ambiguous, before any I/O.

        Raises:
            ExportValidationError: With a message the user can act on
        """
        if not config.enabled_columns():
            raise ExportValidationError("Select at least one column to export.")
        if config.scope is ExportScope.CURRENT_PAGE_ONLY:
            if not has_active_filters(current_query):
                raise ExportValidationError(NO_FILTER_MESSAGE)
            if current_page is None:
                raise ExportValidationError("There is no loaded page to export yet.")

    async def build(
        self,
        config: ExportConfig,
        current_query: Query,
        current_page: Optional[Page] = None,
    ) -> ExportReport:
        """Build the report for ``config``.

        Args:
            config: Scope, columns and optional filters
            current_query: Query behind the page the user is looking at
            current_page: Snapshot of that page, required for CURRENT_PAGE_ONLY

        Raises:
            ExportValidationError: If the request is refused
            PageFetchError: If ALL_MATCHING_QUERY cannot list parents
        """
        try:
            self.validate(config, current_query, current_page)
        except ExportValidationError:
            record_export(config.scope.value, False)
            raise

        start_time = time.time()
        if config.scope is ExportScope.CURRENT_PAGE_ONLY:
            query = current_query
            groups = list(current_page.groups)
            truncated = current_page.window_truncated
        else:
            query = config.filters or current_query
            groups, truncated = await self._materialize(query)

        loaded = [g for g in order_page(groups, query.ascending) if g.state is HydrationState.LOADED]
        sections = {HISTORY_SECTION: build_history_frame(loaded, config.enabled_columns())}
        if config.include_summary:
            sections[SUMMARY_SECTION] = build_summary_frame(loaded)

        report = ExportReport(
            source=self.source,
            scope=config.scope,
            sections=sections,
            group_count=len(loaded),
            failed_groups=sum(1 for g in groups if g.state is HydrationState.FAILED),
            truncated=truncated,
        )
        record_export(config.scope.value, True)
        logger.info(
            f"Export built | source={self.source.name} scope={config.scope.value} groups={report.group_count} "
            f"rows={report.row_count} failed={report.failed_groups} truncated={truncated} "
            f"elapsed={time.time() - start_time:.3f}s"
        )
        return report

    async def _materialize(self, query: Query) -> tuple[List[Group], bool]:
        """Run pagination and hydration into a throwaway collection."""
        export_cap = int(get_history_settings(self.settings)["export_cap"])
        paginator = get_paginator(self.source, self.client, self.settings)
        result = await paginator.paginate(query, 1, export_cap)

        collection = GroupCollection(result.stubs)
        apply_preloaded(collection, result.preloaded)
        await GroupHydrator(self.source, self.client, self.notifier).hydrate(collection)

        truncated = result.window_truncated or result.total > len(result.stubs)
        if truncated:
            logger.warning(
                f"Export may be incomplete | source={self.source.name} parents={len(result.stubs)} "
                f"total={result.total} cap={export_cap}"
            )
        return collection.groups(), truncated
