"""History sources: where each parent entity's audit events live and how they parse.

Two parent entities carry grouped history screens: health-check results
(flat parent fields on every event) and treatment plans (a nested
``treatmentPlan`` object that links back to its health-check result).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import pandas as pd

from .errors import HistoryApiError
from .models import SYSTEM_PERFORMER, Action, EventRecord, ParentStub, Performer


@dataclass(frozen=True)
class HistorySource:
    """Endpoints and field layout of one parent entity's audit history.

    Attributes:
        name: Short identifier used in settings, logs and file names
        label: Human readable name for messages
        events_path: Record-level history listing endpoint
        parent_history_path: Per-parent history endpoint, formatted with ``parent_id``
        grouped_path: Server-side grouped endpoint, if the backend offers one
        parent_object: Key of the nested parent object, None when parent fields are flat
        parent_id_field: Field holding the parent id
        parent_code_field: Field holding the parent display code
        secondary_object: Key (inside the parent object) of the linked entity
        secondary_id_field: Linked entity id field
        secondary_code_field: Linked entity code field
        patient_object: Key (inside the linked entity) of the patient user
        grouped_total_field: Field of the grouped payload holding the distinct total
        param_names: Query field -> wire parameter name
        sort_names: Query sort field -> wire ``sortBy`` value
    """

    name: str
    label: str
    events_path: str
    parent_history_path: str
    grouped_path: Optional[str] = None
    parent_object: Optional[str] = None
    parent_id_field: str = "id"
    parent_code_field: str = "code"
    secondary_object: Optional[str] = None
    secondary_id_field: str = "id"
    secondary_code_field: str = "code"
    patient_object: Optional[str] = None
    grouped_total_field: str = "totalCount"
    param_names: Mapping[str, str] = field(default_factory=dict, compare=False)
    sort_names: Mapping[str, str] = field(default_factory=dict, compare=False)

    @property
    def supports_grouped(self) -> bool:
        return self.grouped_path is not None

    def history_path_for(self, parent_id: str) -> str:
        return self.parent_history_path.format(parent_id=parent_id)

    def parse_stub(self, payload: Mapping[str, Any]) -> ParentStub:
        """Parse a parent stub from an event payload or a grouped item's parent object.

        Raises:
            HistoryApiError: If the parent or linked entity is missing or not an object
        """
        if not isinstance(payload, Mapping):
            raise HistoryApiError(f"{self.label} history item is not an object")

        parent = payload
        if self.parent_object is not None:
            parent = payload.get(self.parent_object)
            if not isinstance(parent, Mapping):
                raise HistoryApiError(f"{self.label} history item has no {self.parent_object}")

        parent_id = parent.get(self.parent_id_field)
        if parent_id is None:
            raise HistoryApiError(f"{self.label} history item has no {self.parent_id_field}")

        secondary_id = secondary_code = patient = None
        if self.secondary_object is not None:
            secondary = parent.get(self.secondary_object) or {}
            if not isinstance(secondary, Mapping):
                raise HistoryApiError(f"{self.label} {self.secondary_object} is not an object")
            secondary_id = _optional_str(secondary.get(self.secondary_id_field))
            secondary_code = _optional_str(secondary.get(self.secondary_code_field))
            if self.patient_object is not None:
                patient = parse_patient(secondary.get(self.patient_object))

        return ParentStub(
            parent_id=str(parent_id),
            parent_code=str(parent.get(self.parent_code_field) or ""),
            secondary_id=secondary_id,
            secondary_code=secondary_code,
            patient=patient,
        )

    def parse_event(
        self, payload: Mapping[str, Any], stub: Optional[ParentStub] = None
    ) -> EventRecord:
        """Parse one history item into an EventRecord.

        Args:
            payload: History item as returned by the API
            stub: Parent stub to use when the item omits its parent
                (per-parent endpoints sometimes do)

        Raises:
            HistoryApiError: If the item lacks an id or a parseable action date
        """
        try:
            event_id = payload["id"]
            action_date = parse_timestamp(payload["actionDate"])
        except (KeyError, TypeError, ValueError) as e:
            raise HistoryApiError(f"Malformed {self.label} history item: {e}") from e

        if stub is None or self._has_parent(payload):
            stub = self.parse_stub(payload)

        action_label = str(payload.get("action") or "")
        return EventRecord(
            id=str(event_id),
            parent_id=stub.parent_id,
            parent_code=stub.parent_code,
            action=Action.parse(action_label),
            action_date=action_date,
            performed_by=parse_performer(payload.get("performedBy")),
            previous_status=_optional_str(payload.get("previousStatus")),
            new_status=_optional_str(payload.get("newStatus")),
            change_details=_optional_str(payload.get("changeDetails")),
            rejection_reason=_optional_str(payload.get("rejectionReason")),
            secondary_id=stub.secondary_id,
            secondary_code=stub.secondary_code,
            patient=stub.patient,
            action_label=action_label,
        )

    def _has_parent(self, payload: Mapping[str, Any]) -> bool:
        if self.parent_object is not None:
            return bool(payload.get(self.parent_object))
        return payload.get(self.parent_id_field) is not None


def parse_timestamp(value: Any) -> datetime:
    """Parse an API timestamp; naive values are taken as UTC."""
    if value is None or value == "":
        raise ValueError("missing timestamp")
    ts = pd.Timestamp(value)
    if pd.isna(ts):
        raise ValueError(f"invalid timestamp {value!r}")
    if ts.tzinfo is None:
        ts = ts.tz_localize(timezone.utc)
    return ts.to_pydatetime()


def parse_performer(payload: Any) -> Performer:
    """Parse ``performedBy``; missing or id-less performers are the system."""
    if not isinstance(payload, Mapping) or not payload.get("id"):
        return SYSTEM_PERFORMER
    return Performer(
        id=str(payload["id"]),
        name=str(payload.get("fullName") or payload.get("name") or ""),
        email=_optional_str(payload.get("email")),
    )


def parse_patient(payload: Any) -> Optional[str]:
    """Patient display string, "Full Name (email)", from the linked entity's user."""
    if not isinstance(payload, Mapping):
        return None
    name = _optional_str(payload.get("fullName") or payload.get("name"))
    email = _optional_str(payload.get("email"))
    if name and email:
        return f"{name} ({email})"
    return name or email


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


HEALTH_CHECK_RESULT = HistorySource(
    name="health_check_result",
    label="Health check result",
    events_path="/healthcheckresult-management/healthcheckresults/histories",
    parent_history_path="/healthcheckresult-management/healthcheckresults/{parent_id}/histories",
    parent_id_field="healthCheckResultId",
    parent_code_field="healthCheckResultCode",
    param_names={
        "parent_code": "healthCheckResultCode",
        "action": "action",
        "action_date_from": "actionStartDate",
        "action_date_to": "actionEndDate",
        "performed_by": "performedBySearch",
        "previous_status": "previousStatus",
        "new_status": "newStatus",
        "rejection_reason": "rejectionReason",
    },
    sort_names={
        "action_date": "ActionDate",
        "action": "Action",
        "performed_by": "PerformedBy",
        "parent_code": "HealthCheckResultCode",
    },
)

TREATMENT_PLAN = HistorySource(
    name="treatment_plan",
    label="Treatment plan",
    events_path="/treatment-plan-management/treatment-plan-histories",
    parent_history_path="/treatment-plan-management/treatment-plans/{parent_id}/histories",
    grouped_path="/treatment-plan-management/treatment-plan-histories/grouped",
    parent_object="treatmentPlan",
    parent_id_field="id",
    parent_code_field="treatmentPlanCode",
    secondary_object="healthCheckResult",
    secondary_id_field="id",
    secondary_code_field="healthCheckResultCode",
    patient_object="user",
    grouped_total_field="totalTreatmentPlans",
    param_names={
        "parent_code": "treatmentPlanCode",
        "secondary_code": "healthCheckResultCode",
        "action": "action",
        "action_date_from": "startActionDate",
        "action_date_to": "endActionDate",
        "performed_by": "performedBySearch",
        "previous_status": "previousStatus",
        "new_status": "newStatus",
    },
    sort_names={
        "action_date": "ActionDate",
        "action": "Action",
        "performed_by": "PerformedBy",
        "parent_code": "TreatmentPlanCode",
        "secondary_code": "HealthCheckResultCode",
    },
)

SOURCES = {source.name: source for source in (HEALTH_CHECK_RESULT, TREATMENT_PLAN)}


def get_source(name: str) -> HistorySource:
    """Look up a source by name; dashes are accepted in place of underscores.

    Raises:
        KeyError: If no source has that name
    """
    key = name.strip().lower().replace("-", "_")
    if key not in SOURCES:
        raise KeyError(f"Unknown history source '{name}', expected one of {sorted(SOURCES)}")
    return SOURCES[key]
