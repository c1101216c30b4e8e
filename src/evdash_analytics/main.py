import argparse
import json
import logging
import os
import time
from datetime import date
from pathlib import Path

from .config import AnalyticsConfig
from .data import fetch_snapshot, load_snapshot, snapshot_feeds
from .logging_utils import setup_logging
from .models import DateRange, InvalidFieldError, SortDirection, TableField, to_payload
from .orchestrator import AnalyticsOrchestrator

logger = logging.getLogger(__name__)


def _date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date '{value}', expected YYYY-MM-DD")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Derive dashboard analytics views from a snapshot"
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--file", type=Path, help="Local JSON snapshot bundle")
    source.add_argument(
        "--api-url",
        default=os.getenv("EVDASH_API_URL"),
        help="Dashboard API base URL (default: EVDASH_API_URL)",
    )
    parser.add_argument(
        "--token",
        default=os.getenv("EVDASH_API_TOKEN"),
        help="Bearer token for the dashboard API (default: EVDASH_API_TOKEN)",
    )
    parser.add_argument("--metric", default="energy")
    parser.add_argument("--period", default="monthly")
    parser.add_argument("--from", dest="date_from", type=_date)
    parser.add_argument("--to", dest="date_to", type=_date)
    parser.add_argument("--group-by", default="location")
    parser.add_argument("--sort-by", default="revenue")
    parser.add_argument("--top", type=int, default=5)
    parser.add_argument("--comparison", default="none")
    parser.add_argument("--search", default="", help="Filter detail table rows")
    parser.add_argument(
        "--sort-field",
        help="Detail table column to sort by (default: metric value, descending)",
    )
    parser.add_argument(
        "--ascending",
        action="store_true",
        help="Sort the detail table column ascending",
    )
    parser.add_argument("--page", type=int, default=1)
    parser.add_argument("--page-size", type=int, default=10)
    parser.add_argument("--output", type=Path, help="Write the views as JSON here")
    parser.add_argument("--csv", type=Path, help="Write the visible table rows as CSV here")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def _apply_filters(orchestrator: AnalyticsOrchestrator, args: argparse.Namespace) -> None:
    orchestrator.on_metric_change(args.metric)
    orchestrator.on_time_period_change(args.period)
    orchestrator.on_date_range_change(DateRange(args.date_from, args.date_to))
    orchestrator.on_group_by_change(args.group_by)
    orchestrator.on_sort_by_change(args.sort_by)
    orchestrator.on_top_count_change(args.top)
    orchestrator.on_comparison_mode_change(args.comparison)


def _apply_table(orchestrator: AnalyticsOrchestrator, args: argparse.Namespace) -> None:
    if args.search:
        orchestrator.on_search(args.search)
    if args.sort_field or args.ascending:
        field_name = args.sort_field or TableField.METRIC_VALUE.value
        wanted = SortDirection.ASC if args.ascending else SortDirection.DESC
        # Sorting works like clicking a column header: a second click flips it
        orchestrator.on_sort(field_name)
        if orchestrator.table_state.sort_direction is not wanted:
            orchestrator.on_sort(field_name)
    orchestrator.on_page_change(args.page)


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.debug)

    if not args.file and not args.api_url:
        parser.error("--file or --api-url (EVDASH_API_URL) must be provided")
    if args.page_size <= 0:
        parser.error("--page-size must be positive")

    start = time.monotonic()
    orchestrator = AnalyticsOrchestrator(AnalyticsConfig(page_size=args.page_size))
    try:
        _apply_filters(orchestrator, args)
        _apply_table(orchestrator, args)
    except InvalidFieldError as exc:
        parser.error(str(exc))

    ticket = orchestrator.begin_fetch()
    if args.file:
        logger.info("Reading snapshot from %s", args.file)
        snapshot = load_snapshot(args.file)
    else:
        logger.info("Fetching snapshot from %s", args.api_url)
        snapshot = fetch_snapshot(args.api_url, ticket.filter_state, token=args.token)
    for feed, count in snapshot_feeds(snapshot):
        logger.debug("Feed %s: %d records", feed, count)
    orchestrator.apply_snapshot(ticket, snapshot)

    views = orchestrator.views
    if views.validation_error:
        logger.warning("Views not derived: %s", views.validation_error)

    payload = to_payload(views)
    payload["elapsed"] = time.monotonic() - start
    text = json.dumps(payload, indent=2)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(text, encoding="utf-8")
        logger.info("Wrote views to %s", args.output)
    else:
        print(text)

    if args.csv:
        args.csv.parent.mkdir(parents=True, exist_ok=True)
        args.csv.write_text(orchestrator.export_csv(), encoding="utf-8")
        logger.info(
            "Wrote %d rows to %s", views.table.total_rows, args.csv
        )
    logger.debug("Summary: %s", orchestrator.summary())


if __name__ == "__main__":
    main()
