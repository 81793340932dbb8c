"""
Tests for query normalization and wire parameter rendering.
"""

from datetime import date

from src.history.sources import HEALTH_CHECK_RESULT, TREATMENT_PLAN
from src.utils.filtering import (
    DEFAULT_SORT_FIELD,
    Query,
    active_filters,
    has_active_filters,
    normalize,
    to_api_params,
    with_sort,
)


class TestNormalize:
    """Test normalize() canonicalization."""

    def test_empty_filters_use_default_sort(self) -> None:
        """No filters means action_date descending with no constraints."""
        query = normalize(None)
        assert query == Query()
        assert query.sort_field == DEFAULT_SORT_FIELD
        assert query.ascending is False
        assert not has_active_filters(query)

    def test_camel_case_keys(self) -> None:
        """Wire-style camelCase keys map onto the canonical fields."""
        query = normalize({"performedBy": "nguyen", "newStatus": "Approved", "treatmentPlanCode": None})
        assert query.performed_by == "nguyen"
        assert query.new_status == "Approved"

    def test_aliases(self) -> None:
        """User-facing aliases resolve to canonical fields."""
        query = normalize({"code": "TP-001", "startActionDate": "2024-01-05", "sortBy": "date"})
        assert query.parent_code == "TP-001"
        assert query.action_date_from == date(2024, 1, 5)
        assert query.sort_field == "action_date"

    def test_blank_values_mean_no_constraint(self) -> None:
        """Whitespace-only and empty values are dropped."""
        query = normalize({"action": "  ", "performed_by": "", "parent_code": None})
        assert not has_active_filters(query)

    def test_action_is_canonicalized(self) -> None:
        """Known actions are matched case- and separator-insensitively."""
        assert normalize({"action": "approved"}).action == "Approved"
        assert normalize({"action": "auto-completed"}).action == "AutoCompleted"

    def test_unknown_action_kept_verbatim(self) -> None:
        """Unknown actions are passed through for the backend to match."""
        assert normalize({"action": "Escalated"}).action == "Escalated"

    def test_inverted_date_range_is_swapped(self) -> None:
        """A from-date after the to-date is swapped rather than rejected."""
        query = normalize({"action_date_from": "2024-02-10", "action_date_to": "2024-02-01"})
        assert query.action_date_from == date(2024, 2, 1)
        assert query.action_date_to == date(2024, 2, 10)

    def test_date_range_pair(self) -> None:
        """A two-element date range fills both bounds."""
        query = normalize({"date_range": ["2024-01-01", "2024-01-31"]})
        assert query.action_date_from == date(2024, 1, 1)
        assert query.action_date_to == date(2024, 1, 31)

    def test_unparseable_date_is_ignored(self) -> None:
        """A bad date means no constraint, not an error."""
        query = normalize({"action_date_from": "not a date"})
        assert query.action_date_from is None

    def test_unknown_sort_field_falls_back(self) -> None:
        """Unknown sort fields fall back to the default."""
        query = normalize({"sort_field": "priority", "ascending": True})
        assert query.sort_field == DEFAULT_SORT_FIELD
        assert query.ascending is True

    def test_sort_direction_string(self) -> None:
        """Direction can be given as a string."""
        assert normalize({"sort_direction": "asc"}).ascending is True
        assert normalize({"ascending": "false"}).ascending is False

    def test_settings_default_sort(self) -> None:
        """Configured sort defaults apply when the filters carry none."""
        settings = {"ui": {"sort": {"default_field": "parent_code", "default_ascending": True}}}
        query = normalize({"action": "Approved"}, settings)
        assert query.sort_field == "parent_code"
        assert query.ascending is True

    def test_query_passes_through(self) -> None:
        """An already canonical Query is returned unchanged."""
        query = Query(action="Approved")
        assert normalize(query) is query

    def test_equal_inputs_give_equal_queries(self) -> None:
        """Equivalent user input compares equal after normalization."""
        a = normalize({"action": "approved", "code": " TP-1 "})
        b = normalize({"action": "Approved", "parentCode": "TP-1"})
        assert a == b


class TestQueryHelpers:
    """Test helpers around Query."""

    def test_sort_does_not_count_as_filter(self) -> None:
        """Changing only the sort leaves the query unfiltered."""
        query = with_sort(Query(), "action", True)
        assert query.sort_field == "action"
        assert not has_active_filters(query)

    def test_active_filters(self) -> None:
        """Only set filters are reported."""
        query = Query(action="Approved", new_status="Completed")
        assert active_filters(query) == {"action": "Approved", "new_status": "Completed"}

    def test_without_filters_keeps_sort(self) -> None:
        """Dropping filters keeps sort field and direction."""
        query = Query(action="Approved", sort_field="action", ascending=True)
        assert query.without_filters() == Query(sort_field="action", ascending=True)

    def test_sorts_by_parent(self) -> None:
        assert Query(sort_field="parent_code").sorts_by_parent
        assert not Query(sort_field="action_date").sorts_by_parent


class TestApiParams:
    """Test rendering of queries as wire parameters."""

    def test_health_check_result_params(self) -> None:
        """Dates render as YYYY-MM-DD under the source's parameter names."""
        query = Query(
            action="Approved",
            action_date_from=date(2024, 1, 1),
            action_date_to=date(2024, 1, 31),
            parent_code="HCR-9",
        )
        params = to_api_params(query, HEALTH_CHECK_RESULT)
        assert params == {
            "action": "Approved",
            "actionStartDate": "2024-01-01",
            "actionEndDate": "2024-01-31",
            "healthCheckResultCode": "HCR-9",
            "sortBy": "ActionDate",
            "ascending": False,
        }

    def test_treatment_plan_date_params(self) -> None:
        """Treatment plans use their own date parameter names."""
        params = to_api_params(Query(action_date_from=date(2024, 5, 2)), TREATMENT_PLAN)
        assert params["startActionDate"] == "2024-05-02"

    def test_unsupported_filter_is_dropped(self) -> None:
        """Filters a source has no parameter for are not sent."""
        params = to_api_params(Query(secondary_code="HCR-1"), HEALTH_CHECK_RESULT)
        assert "healthCheckResultCode" not in params
        assert set(params) == {"sortBy", "ascending"}

    def test_sort_name(self) -> None:
        params = to_api_params(Query(sort_field="parent_code", ascending=True), TREATMENT_PLAN)
        assert params["sortBy"] == "TreatmentPlanCode"
        assert params["ascending"] is True
