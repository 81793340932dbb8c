"""Schema utilities for the audit history service.

This module provides canonical column names for history rows and the
display labels used for export.
"""

import pandas as pd

# Parent identification columns
PARENT_ID = "parent_id"
PARENT_CODE = "parent_code"
SECONDARY_CODE = "secondary_code"
PATIENT = "patient"

# Event columns
EVENT_ID = "event_id"
ACTION = "action"
ACTION_DATE = "action_date"
PERFORMED_BY = "performed_by"
PERFORMED_BY_EMAIL = "performed_by_email"
PREVIOUS_STATUS = "previous_status"
NEW_STATUS = "new_status"
REJECTION_REASON = "rejection_reason"
CHANGE_DETAILS = "change_details"

# Summary columns
CATEGORY = "category"
VALUE = "value"
COUNT = "count"
PERCENTAGE = "percentage"

# Export column order; each maps to an include flag on ExportConfig
HISTORY_COLUMNS = [
    PARENT_CODE,
    SECONDARY_CODE,
    PATIENT,
    ACTION,
    ACTION_DATE,
    PERFORMED_BY,
    PREVIOUS_STATUS,
    NEW_STATUS,
    REJECTION_REASON,
    CHANGE_DETAILS,
]

SUMMARY_COLUMNS = [CATEGORY, VALUE, COUNT, PERCENTAGE]

# Display labels for export (Title Case for user-facing content)
DISPLAY_LABELS = {
    "parent_id": "Parent ID",
    "parent_code": "Code",
    "secondary_code": "Linked Code",
    "patient": "Patient",
    "event_id": "Event ID",
    "action": "Action",
    "action_date": "Action Date",
    "performed_by": "Performed By",
    "performed_by_email": "Performer Email",
    "previous_status": "Previous Status",
    "new_status": "New Status",
    "rejection_reason": "Rejection Reason",
    "change_details": "Change Details",
    "category": "Category",
    "value": "Value",
    "count": "Count",
    "percentage": "Percentage",
}


def get_display_label(column: str) -> str:
    """Get the display label for a canonical column name.

    Args:
        column: Canonical column name

    Returns:
        Display label, or the column name itself when unknown

    """
    return DISPLAY_LABELS.get(column, column)


def to_display(df: pd.DataFrame) -> pd.DataFrame:
    """Convert DataFrame columns to display labels for export.

    Args:
        df: DataFrame with canonical column names

    Returns:
        DataFrame with display labels (Title Case)

    """
    return df.rename(columns=DISPLAY_LABELS)
