"""Exception types for the audit history service."""


class HistoryError(Exception):
    """Base class for audit history errors."""


class HistoryApiError(HistoryError):
    """Raised when the backing API fails or returns an unusable payload."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PageFetchError(HistoryError):
    """Raised when the distinct-parent page cannot be built (page-fatal)."""


class GroupFetchError(HistoryError):
    """Raised when one parent's history cannot be loaded (group-partial)."""

    def __init__(self, parent_id: str, message: str):
        super().__init__(message)
        self.parent_id = parent_id


class ExportValidationError(HistoryError):
    """Raised when an export request is refused before any I/O."""
