"""Observability metrics for audit history operations.

This module provides Prometheus-style metrics for monitoring pagination,
hydration outcomes, stale discards and exports.
"""

from src.utils.logging_utils import get_logger
from src.utils.opt_deps import PROMETHEUS_AVAILABLE

logger = get_logger(__name__)

# Initialize metrics if Prometheus is available
if PROMETHEUS_AVAILABLE:
    try:
        from prometheus_client import Counter, Histogram  # type: ignore[import-not-found]

        # Request counters
        paginate_req = Counter(
            "history_paginate_requests_total",
            "Distinct-parent page requests",
            ["strategy", "ok"],
        )

        hydrate_req = Counter(
            "history_hydrate_requests_total",
            "Per-parent history fetches",
            ["outcome"],
        )

        # Latency histograms
        paginate_lat = Histogram(
            "history_paginate_latency_seconds",
            "Distinct-parent page latency",
            ["strategy"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
        )

        # Staleness and exports
        stale = Counter(
            "history_stale_responses_total", "Responses dropped for a superseded generation",
        )

        exports = Counter(
            "history_exports_total", "Export requests", ["scope", "ok"],
        )

        truncated = Counter(
            "history_window_truncated_total", "Record windows that came back full",
        )

        # Configuration tracking
        clamped = Counter("history_page_size_clamped_total", "Page size clamping occurrences")

        logger.info("Prometheus metrics initialized successfully")

    except ImportError as e:
        logger.warning(f"Prometheus client not available: {e}")
        paginate_req = hydrate_req = paginate_lat = None
        stale = exports = truncated = clamped = None
        PROMETHEUS_AVAILABLE = False

else:
    # No-op metrics when Prometheus is not available
    paginate_req = hydrate_req = paginate_lat = None
    stale = exports = truncated = clamped = None


def record_paginate_request(strategy: str, success: bool, duration: float) -> None:
    """Record a distinct-parent page request."""
    if not PROMETHEUS_AVAILABLE or paginate_req is None:
        return

    ok_label = "true" if success else "false"
    paginate_req.labels(strategy=strategy, ok=ok_label).inc()
    if paginate_lat is not None:
        paginate_lat.labels(strategy=strategy).observe(duration)


def record_hydration(outcome: str) -> None:
    """Record a per-parent hydration outcome (loaded, failed, stale)."""
    if not PROMETHEUS_AVAILABLE or hydrate_req is None:
        return

    hydrate_req.labels(outcome=outcome).inc()


def record_stale_discard() -> None:
    """Record a response dropped because its generation was superseded."""
    if not PROMETHEUS_AVAILABLE or stale is None:
        return

    stale.inc()


def record_export(scope: str, success: bool) -> None:
    """Record an export request."""
    if not PROMETHEUS_AVAILABLE or exports is None:
        return

    exports.labels(scope=scope, ok="true" if success else "false").inc()


def record_window_truncated() -> None:
    """Record a record window that hit its cap."""
    if not PROMETHEUS_AVAILABLE or truncated is None:
        return

    truncated.inc()


def record_page_size_clamped() -> None:
    """Record a page size clamping occurrence."""
    if not PROMETHEUS_AVAILABLE or clamped is None:
        return

    clamped.inc()
