"""Detail table: projection, search, sort, pagination and CSV export."""
from __future__ import annotations

import csv
import io
import logging
import math
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Iterable, List, Sequence, Tuple

from .models import (
    DetailRow,
    EntityUtilizationRecord,
    InvalidFieldError,
    MetricKind,
    SortDirection,
    TableField,
    UserActivityRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MISSING_LOCATION = "-"

UTILIZATION_METRICS = (
    MetricKind.ENERGY,
    MetricKind.REVENUE,
    MetricKind.SESSIONS,
    MetricKind.CHARGERS,
)

_STRING_FIELDS = (TableField.NAME, TableField.LOCATION, TableField.DATE)

METRIC_COLUMN_TITLES = {
    MetricKind.ENERGY: "Energy (kWh)",
    MetricKind.REVENUE: "Revenue ($)",
    MetricKind.SESSIONS: "Sessions",
    MetricKind.USERS: "Users",
    MetricKind.CHARGERS: "Utilization (%)",
}


def metric_column_title(metric: MetricKind) -> str:
    return METRIC_COLUMN_TITLES[MetricKind.parse(metric)]


def _charger_value(record: EntityUtilizationRecord, metric: MetricKind) -> float:
    if metric is MetricKind.ENERGY:
        return record.energy_delivered
    if metric is MetricKind.REVENUE:
        return record.revenue
    if metric is MetricKind.SESSIONS:
        return record.sessions
    return record.utilization_rate


def _user_value(record: UserActivityRecord, metric: MetricKind) -> float:
    if metric is MetricKind.ENERGY:
        return record.energy_kwh
    if metric is MetricKind.REVENUE:
        return record.revenue
    if metric is MetricKind.SESSIONS:
        return record.sessions
    # every user row counts as one user
    return 1


def project(
    utilization: Iterable[EntityUtilizationRecord] | None,
    users: Iterable[UserActivityRecord] | None,
    metric: MetricKind,
    as_of: date | None = None,
) -> List[DetailRow]:
    """Build the unified table rows for ``metric``.

    Charger metrics draw from ``utilization`` and the users metric draws from
    ``users``; the other collection is ignored. Rows carry ``as_of`` as their
    date since both feeds hold totals over the selected window.
    """
    metric = MetricKind.parse(metric)
    stamp = (as_of or date.today()).isoformat()
    rows: List[DetailRow] = []
    if metric in UTILIZATION_METRICS:
        for i, r in enumerate(utilization or ()):
            rows.append(
                DetailRow(
                    id=r.id or f"id-{i}",
                    name=r.name or f"Charger {i + 1}",
                    location=r.location or MISSING_LOCATION,
                    date=stamp,
                    metric_value=_charger_value(r, metric),
                    sessions=r.sessions,
                    utilization=r.utilization_rate,
                    users=0,
                )
            )
    else:
        for i, u in enumerate(users or ()):
            rows.append(
                DetailRow(
                    id=u.id or f"id-{i}",
                    name=u.username or f"User {i + 1}",
                    location=MISSING_LOCATION,
                    date=stamp,
                    metric_value=_user_value(u, metric),
                    sessions=u.sessions,
                    utilization=0,
                    users=1,
                )
            )
    logger.debug("Projected %d table rows for %s", len(rows), metric.value)
    return rows


def search(rows: Sequence[DetailRow], query: str) -> List[DetailRow]:
    """Case-insensitive substring match on name and location."""
    if not query:
        return list(rows)
    needle = query.casefold()
    return [
        r
        for r in rows
        if needle in (r.name or "").casefold() or needle in (r.location or "").casefold()
    ]


def _string_key(value: Any) -> Tuple[str, str]:
    text = "" if value is None else str(value)
    return (text.casefold(), text)


def _numeric_key(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def sort_rows(
    rows: Sequence[DetailRow],
    field: TableField | str,
    direction: SortDirection | str = SortDirection.DESC,
) -> List[DetailRow]:
    """Stable sort by one column.

    Text columns compare case-insensitively; numeric columns treat missing
    values as zero.
    """
    field = TableField.parse(field)
    direction = SortDirection.parse(direction)
    if field in _STRING_FIELDS:
        key = lambda r: _string_key(getattr(r, field.value))
    else:
        key = lambda r: _numeric_key(getattr(r, field.value))
    return sorted(rows, key=key, reverse=direction is SortDirection.DESC)


def page_count(total_rows: int, page_size: int) -> int:
    if page_size <= 0:
        raise InvalidFieldError("page_size", page_size)
    return math.ceil(total_rows / page_size)


def clamp_page(page: int, total_pages: int) -> int:
    if total_pages <= 0:
        return 1
    return min(max(int(page), 1), total_pages)


def paginate(rows: Sequence[DetailRow], page: int, page_size: int) -> List[DetailRow]:
    """Return one 1-indexed page; out-of-range pages clamp to the nearest one."""
    total_pages = page_count(len(rows), page_size)
    if total_pages == 0:
        return []
    page = clamp_page(page, total_pages)
    start = (page - 1) * page_size
    return list(rows[start:start + page_size])


def _csv_number(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def to_csv(rows: Iterable[DetailRow], metric_label: str) -> str:
    """Serialise rows with a header line; values are quoted when needed."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(
        ["Name", "Location", "Date", metric_label, "Sessions", "Utilization (%)", "Users"]
    )
    for r in rows:
        writer.writerow(
            [
                r.name,
                r.location,
                r.date,
                _csv_number(r.metric_value),
                _csv_number(r.sessions),
                _csv_number(r.utilization),
                _csv_number(r.users),
            ]
        )
    return buffer.getvalue()


def export_filename(metric: MetricKind, as_of: date | None = None) -> str:
    metric = MetricKind.parse(metric)
    return f"{metric.value}-data-{(as_of or date.today()).isoformat()}.csv"


@dataclass(frozen=True)
class TableState:
    """Viewer interaction state of the detail table."""

    query: str = ""
    sort_field: TableField = TableField.METRIC_VALUE
    sort_direction: SortDirection = SortDirection.DESC
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE


def with_search(state: TableState, query: str) -> TableState:
    """A new query always starts from the first page."""
    return replace(state, query=query or "", page=1)


def with_sort(state: TableState, field: TableField | str) -> TableState:
    """Clicking the active column flips direction; a new column starts descending."""
    field = TableField.parse(field)
    if field is state.sort_field:
        flipped = (
            SortDirection.ASC
            if state.sort_direction is SortDirection.DESC
            else SortDirection.DESC
        )
        return replace(state, sort_direction=flipped)
    return replace(state, sort_field=field, sort_direction=SortDirection.DESC)


def with_page(state: TableState, page: int) -> TableState:
    return replace(state, page=int(page))


@dataclass(frozen=True)
class TableView:
    rows: Tuple[DetailRow, ...]
    page: int
    total_pages: int
    total_rows: int
    # Every row matching the search in sort order; this is what gets exported
    visible: Tuple[DetailRow, ...]


def build_table(rows: Sequence[DetailRow], state: TableState) -> TableView:
    filtered = search(rows, state.query)
    ordered = sort_rows(filtered, state.sort_field, state.sort_direction)
    total_pages = page_count(len(ordered), state.page_size)
    page = clamp_page(state.page, total_pages)
    return TableView(
        rows=tuple(paginate(ordered, page, state.page_size)),
        page=page,
        total_pages=total_pages,
        total_rows=len(ordered),
        visible=tuple(ordered),
    )
