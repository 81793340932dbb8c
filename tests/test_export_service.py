"""
Tests for the export builder.

Covers the current-page scope guard, both export scopes, column
selection, the summary sheet and writing the workbook.
"""

from dataclasses import replace

import pandas as pd
import pytest
from openpyxl import load_workbook

from src.history.errors import ExportValidationError
from src.history.sources import HEALTH_CHECK_RESULT
from src.services import ExportBuilder, ExportConfig, ExportScope, HistoryPageController
from src.services.export_service import HISTORY_SECTION, NO_FILTER_MESSAGE, SUMMARY_SECTION
from src.utils.filtering import Query
from src.utils.schema_utils import (
    ACTION,
    CHANGE_DETAILS,
    HISTORY_COLUMNS,
    PARENT_CODE,
    PATIENT,
    REJECTION_REASON,
)
from tests.helpers import FakeHistoryClient, at, make_event

pytestmark = pytest.mark.asyncio


@pytest.fixture
def events():
    return [
        make_event("a1", "A", at(8), action="Approved", previous_status="Pending", new_status="Approved"),
        make_event("a2", "A", at(10), action="Updated", new_status="Completed"),
        make_event("c1", "C", at(7), action="Approved", new_status="Approved"),
        make_event("c2", "C", at(11), action="Updated"),
        make_event("b1", "B", at(6), action="Approved", new_status="Approved"),
        make_event("b2", "B", at(9), action="Updated", new_status="Completed"),
    ]


def _builder(client, settings):
    return ExportBuilder(HEALTH_CHECK_RESULT, client, settings)


class TestScopeGuard:
    """Test the current-page export guard."""

    async def test_current_page_without_filter_is_refused(self, events, history_settings) -> None:
        """No active filter means no export and no network call."""
        client = FakeHistoryClient(events)
        config = ExportConfig(scope=ExportScope.CURRENT_PAGE_ONLY)

        with pytest.raises(ExportValidationError, match="at least one active filter"):
            await _builder(client, history_settings).build(config, Query())

        assert client.call_count == 0

    async def test_refused_after_page_loaded(self, events, history_settings) -> None:
        """The guard applies to a loaded page as well, without further calls."""
        client = FakeHistoryClient(events)
        controller = HistoryPageController(HEALTH_CHECK_RESULT, client, history_settings)
        await controller.refresh()
        calls = client.call_count

        with pytest.raises(ExportValidationError) as exc_info:
            await controller.request_export(ExportConfig(scope=ExportScope.CURRENT_PAGE_ONLY))

        assert str(exc_info.value) == NO_FILTER_MESSAGE
        assert client.call_count == calls

    async def test_sort_alone_is_not_a_filter(self, events, history_settings) -> None:
        config = ExportConfig(scope=ExportScope.CURRENT_PAGE_ONLY)
        with pytest.raises(ExportValidationError):
            await _builder(FakeHistoryClient(events), history_settings).build(
                config, Query(sort_field="action", ascending=True)
            )

    async def test_no_columns_is_refused(self, events, history_settings) -> None:
        config = ExportConfig(**{f"include_{column}": False for column in HISTORY_COLUMNS})
        client = FakeHistoryClient(events)

        with pytest.raises(ExportValidationError, match="at least one column"):
            await _builder(client, history_settings).build(config, Query(action="Approved"))

        assert client.call_count == 0


class TestCurrentPageExport:
    """Test exporting the already hydrated page."""

    async def test_uses_hydrated_groups_only(self, events, history_settings) -> None:
        history_settings["ui"]["default_page_size"] = 2
        client = FakeHistoryClient(events)
        controller = HistoryPageController(HEALTH_CHECK_RESULT, client, history_settings)
        await controller.set_query({"action": "Approved"})
        calls = client.call_count

        report = await controller.request_export(ExportConfig(scope=ExportScope.CURRENT_PAGE_ONLY))

        assert client.call_count == calls
        history = report.sections[HISTORY_SECTION]
        assert list(history[PARENT_CODE]) == ["CODE-C", "CODE-C", "CODE-A", "CODE-A"]
        assert report.group_count == 2
        assert report.scope is ExportScope.CURRENT_PAGE_ONLY


class TestAllMatchingExport:
    """Test exporting everything that matches a query."""

    async def test_materializes_every_parent(self, events, history_settings) -> None:
        client = FakeHistoryClient(events)

        report = await _builder(client, history_settings).build(ExportConfig(), Query(action="Approved"))

        history = report.sections[HISTORY_SECTION]
        assert report.group_count == 3
        assert report.row_count == 6
        assert list(history.columns) == HISTORY_COLUMNS
        # Recency order, parent code repeated on every row
        assert list(history[PARENT_CODE].drop_duplicates()) == ["CODE-C", "CODE-A", "CODE-B"]
        assert sorted(client.history_calls) == ["A", "B", "C"]
        assert report.truncated is False

    async def test_config_filters_override_current_query(self, events, history_settings) -> None:
        client = FakeHistoryClient(events)
        config = ExportConfig(filters=Query(parent_code="CODE-B"))

        report = await _builder(client, history_settings).build(config, Query(action="Approved"))

        assert set(report.sections[HISTORY_SECTION][PARENT_CODE]) == {"CODE-B"}

    async def test_excluded_columns(self, events, history_settings) -> None:
        config = ExportConfig(include_change_details=False, include_rejection_reason=False)

        report = await _builder(FakeHistoryClient(events), history_settings).build(config, Query())

        columns = list(report.sections[HISTORY_SECTION].columns)
        assert CHANGE_DETAILS not in columns
        assert REJECTION_REASON not in columns
        assert columns[0] == PARENT_CODE

    async def test_patient_column(self, history_settings) -> None:
        events = [
            replace(make_event("t1", "T", at(8)), patient="Minh Tran (minh@example.com)"),
            make_event("u1", "U", at(7)),
        ]

        report = await _builder(FakeHistoryClient(events), history_settings).build(ExportConfig(), Query())

        rows = report.sections[HISTORY_SECTION].set_index(PARENT_CODE)
        assert rows.loc["CODE-T", PATIENT] == "Minh Tran (minh@example.com)"
        assert pd.isna(rows.loc["CODE-U", PATIENT])

        config = ExportConfig(include_patient=False)
        report = await _builder(FakeHistoryClient(events), history_settings).build(config, Query())
        assert PATIENT not in report.sections[HISTORY_SECTION].columns

    async def test_failed_groups_are_left_out(self, events, history_settings) -> None:
        client = FakeHistoryClient(events)
        client.failing.add("B")

        report = await _builder(client, history_settings).build(ExportConfig(), Query())

        assert report.failed_groups == 1
        assert report.group_count == 2
        assert "CODE-B" not in set(report.sections[HISTORY_SECTION][PARENT_CODE])

    async def test_cap_marks_report_truncated(self, events, history_settings) -> None:
        history_settings["history"]["export_cap"] = 2

        report = await _builder(FakeHistoryClient(events), history_settings).build(ExportConfig(), Query())

        assert report.group_count == 2
        assert report.truncated is True


class TestSummary:
    """Test the status distribution sheet."""

    async def test_status_and_action_distribution(self, events, history_settings) -> None:
        report = await _builder(FakeHistoryClient(events), history_settings).build(ExportConfig(), Query())

        summary = report.sections[SUMMARY_SECTION]
        statuses = summary[summary["category"] == "New Status"].set_index("value")
        assert statuses.loc["Approved", "count"] == 3
        assert statuses.loc["Completed", "count"] == 2
        assert statuses.loc["(none)", "count"] == 1
        assert statuses.loc["Approved", "percentage"] == 50.0
        assert statuses.loc["(none)", "percentage"] == pytest.approx(16.67)

        actions = summary[summary["category"] == "Action"].set_index("value")
        assert actions.loc["Approved", "count"] == 3
        assert actions.loc["Updated", "count"] == 3

    async def test_summary_optional(self, events, history_settings) -> None:
        config = ExportConfig(include_summary=False)
        report = await _builder(FakeHistoryClient(events), history_settings).build(config, Query())
        assert list(report.sections) == [HISTORY_SECTION]


class TestWorkbook:
    """Test writing reports to Excel."""

    async def test_to_excel(self, events, history_settings, tmp_path) -> None:
        report = await _builder(FakeHistoryClient(events), history_settings).build(ExportConfig(), Query())

        path = report.to_excel(tmp_path / "history.xlsx")

        workbook = load_workbook(path)
        assert workbook.sheetnames == ["History", "Summary"]
        header = [cell.value for cell in workbook["History"][1]]
        assert header[:5] == ["Code", "Linked Code", "Patient", "Action", "Action Date"]
        assert workbook["History"].max_row == report.row_count + 1

    async def test_default_filename(self, events, history_settings) -> None:
        report = await _builder(FakeHistoryClient(events), history_settings).build(ExportConfig(), Query())

        name = report.default_filename()
        assert name.startswith("health_check_result_history_")
        assert name.endswith(".xlsx")

    async def test_empty_export_writes_headers(self, history_settings, tmp_path) -> None:
        report = await _builder(FakeHistoryClient([]), history_settings).build(ExportConfig(), Query())

        assert report.row_count == 0
        path = report.to_excel(tmp_path / "empty.xlsx")
        header = [cell.value for cell in load_workbook(path)["History"][1]]
        assert header[3] == "Action"
        assert ACTION in HISTORY_COLUMNS
