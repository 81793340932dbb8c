"""Services layer for grouped audit history.

This package provides service classes that coordinate between the presentation
layer and the pagination, hydration and export algorithms.
"""

from .export_service import ExportBuilder, ExportConfig, ExportReport, ExportScope
from .history_service import FilterOptions, HistoryPageController, collect_filter_options

__all__ = [
    "ExportBuilder",
    "ExportConfig",
    "ExportReport",
    "ExportScope",
    "FilterOptions",
    "HistoryPageController",
    "collect_filter_options",
]
