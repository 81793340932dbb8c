#!/usr/bin/env python3
"""Export grouped audit history to Excel.

Examples:
    # Everything matching an action filter, newest activity first
    python history_export.py --source treatment-plan --action Approved

    # Only the groups of page 2, without the summary sheet
    python history_export.py --source health-check-result --scope page \\
        --page 2 --performed-by nguyen --no-summary

Exit codes:
    0  report written
    1  error (API failure, bad arguments)
    2  export refused by validation
"""

import argparse
import asyncio
import sys
from typing import Any, Optional

from src.history import ExportValidationError, HistoryError, PageFetchError, get_source
from src.history.client import HistoryApiClient
from src.services import ExportBuilder, ExportConfig, ExportScope, HistoryPageController
from src.utils.filtering import normalize
from src.utils.logging_utils import get_logger, setup_logging
from src.utils.schema_utils import HISTORY_COLUMNS
from src.utils.settings import get_settings, validate_settings

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Export grouped audit history to Excel",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--source",
        required=True,
        help="History source: health-check-result or treatment-plan",
    )
    parser.add_argument(
        "--scope",
        choices=["all", "page"],
        default="all",
        help="Export all matching data (default) or only the current page",
    )
    parser.add_argument("--page", type=int, default=1, help="Page to export with --scope page")
    parser.add_argument("--page-size", type=int, default=None, help="Parents per page")

    filters = parser.add_argument_group("filters")
    filters.add_argument("--action", help="Action, e.g. Approved")
    filters.add_argument("--performed-by", help="Performer name or email substring")
    filters.add_argument("--code", help="Parent code substring")
    filters.add_argument("--linked-code", help="Linked entity code substring")
    filters.add_argument("--previous-status", help="Status before the change")
    filters.add_argument("--new-status", help="Status after the change")
    filters.add_argument("--rejection-reason", help="Rejection reason substring")
    filters.add_argument("--from", dest="date_from", help="First action date (YYYY-MM-DD)")
    filters.add_argument("--to", dest="date_to", help="Last action date (YYYY-MM-DD)")
    filters.add_argument("--asc", action="store_true", help="Oldest activity first")

    parser.add_argument(
        "--exclude-column",
        action="append",
        default=[],
        choices=HISTORY_COLUMNS,
        help="Leave a column out of the history sheet (repeatable)",
    )
    parser.add_argument("--no-summary", action="store_true", help="Skip the summary sheet")
    parser.add_argument("--output", help="Output .xlsx path (default: data/exports/)")
    parser.add_argument("--log-level", default=None, help="Logging level (default from settings)")
    return parser


def filters_from_args(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "action": args.action,
        "performed_by": args.performed_by,
        "parent_code": args.code,
        "secondary_code": args.linked_code,
        "previous_status": args.previous_status,
        "new_status": args.new_status,
        "rejection_reason": args.rejection_reason,
        "action_date_from": args.date_from,
        "action_date_to": args.date_to,
        "ascending": args.asc,
    }


def config_from_args(args: argparse.Namespace) -> ExportConfig:
    scope = ExportScope.CURRENT_PAGE_ONLY if args.scope == "page" else ExportScope.ALL_MATCHING_QUERY
    excluded = {f"include_{column}": False for column in args.exclude_column}
    return ExportConfig(scope=scope, include_summary=not args.no_summary, **excluded)


async def run_export(args: argparse.Namespace, settings: dict[str, Any]) -> str:
    source = get_source(args.source)
    config = config_from_args(args)
    filters = filters_from_args(args)

    async with HistoryApiClient.from_settings(settings) as client:
        if config.scope is ExportScope.CURRENT_PAGE_ONLY:
            controller = HistoryPageController(source, client, settings)
            page = await controller.load(filters, args.page, args.page_size)
            if page.error:
                raise PageFetchError(page.error)
            report = await controller.request_export(config)
        else:
            builder = ExportBuilder(source, client, settings)
            report = await builder.build(config, normalize(filters, settings))

    path = report.to_excel(args.output)
    if report.truncated:
        print("Warning: results may be incomplete, the record window was exhausted.")
    if report.failed_groups:
        print(f"Warning: {report.failed_groups} group(s) could not be loaded and were left out.")
    return str(path)


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    log_settings = settings.get("logging", {})
    setup_logging(args.log_level or log_settings.get("level", "INFO"), log_settings.get("file"))
    for warning in validate_settings(settings):
        logger.warning(f"Config validation warning: {warning}")

    try:
        path = asyncio.run(run_export(args, settings))
    except ExportValidationError as e:
        print(f"Export refused: {e}")
        return 2
    except (HistoryError, KeyError, ValueError) as e:
        logger.error(f"Export failed: {e}")
        print(f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.")
        return 130

    print(f"Report written to {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
