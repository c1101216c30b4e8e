"""Owns the viewer's filter selections and derives every dashboard view."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, List, Tuple

from . import aggregate, ranking, table, timeseries
from .config import AnalyticsConfig
from .formatting import format_share
from .models import (
    AnalyticsSnapshot,
    ChartSnapshot,
    ComparisonMode,
    DateRange,
    DateRangeError,
    FilterState,
    GroupKey,
    GroupedAggregate,
    InvalidFieldError,
    MetricKind,
    RankedEntry,
    SortKey,
    TimePeriod,
    TimeSeriesPoint,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DistributionSlice:
    key: str
    value: float
    share_pct: float
    label: str


@dataclass(frozen=True)
class AnalyticsViews:
    """Everything the presentation layer needs for one render."""

    filter_state: FilterState
    metric_label: str
    series: Tuple[TimeSeriesPoint, ...] = ()
    comparison_label: str | None = None
    distribution: Tuple[DistributionSlice, ...] = ()
    top_performers: Tuple[RankedEntry, ...] = ()
    table: table.TableView = field(
        default_factory=lambda: table.TableView((), 1, 0, 0, ())
    )
    validation_error: str | None = None


@dataclass(frozen=True)
class FetchTicket:
    """Identifies the filter state a fetch was issued for."""

    generation: int
    filter_state: FilterState


def _distribution(
    groups: List[GroupedAggregate], metric: MetricKind
) -> Tuple[DistributionSlice, ...]:
    return tuple(
        DistributionSlice(key=k, value=v, share_pct=pct, label=format_share(v, metric, pct))
        for k, v, pct in aggregate.with_shares(groups)
    )


def _top_performers(snapshot: AnalyticsSnapshot, state: FilterState) -> List[RankedEntry]:
    # The top-charger feeds are pre-ranked server side and preferred when they
    # carry the selected key
    if snapshot.top_chargers and ranking.supports_summaries(state.sort_by):
        return ranking.rank_summaries(snapshot.top_chargers, state.sort_by, state.top_count)
    return ranking.rank(snapshot.utilization or (), state.sort_by, state.top_count)


def derive_views(
    snapshot: AnalyticsSnapshot | None,
    state: FilterState,
    table_state: table.TableState | None = None,
    config: AnalyticsConfig | None = None,
    as_of: date | None = None,
) -> AnalyticsViews:
    """Compute all views from one snapshot and one filter state.

    Pure: the same inputs always give equal output. A custom period with an
    unusable date range produces empty views carrying the validation message.
    """
    config = config or AnalyticsConfig()
    table_state = table_state or table.TableState(page_size=config.page_size)
    metric_label = table.metric_column_title(state.metric)

    if state.time_period is TimePeriod.CUSTOM:
        try:
            state.date_range.validate()
        except DateRangeError as exc:
            logger.debug("Skipping derivation: %s", exc)
            return AnalyticsViews(
                filter_state=state,
                metric_label=metric_label,
                validation_error=str(exc),
            )

    snapshot = snapshot or AnalyticsSnapshot()
    series = timeseries.format_series(snapshot.chart, state.metric, state.time_period)
    series = timeseries.synthesize_comparison(
        series, state.comparison_mode, config.comparison_ratio
    )
    utilization = snapshot.utilization or ()
    groups = aggregate.aggregate(utilization, state.group_by, state.metric)
    rows = table.project(utilization, snapshot.users, state.metric, as_of)

    return AnalyticsViews(
        filter_state=state,
        metric_label=metric_label,
        series=tuple(series),
        comparison_label=timeseries.comparison_label(state.comparison_mode),
        distribution=_distribution(groups, state.metric),
        top_performers=tuple(_top_performers(snapshot, state)),
        table=table.build_table(rows, table_state),
    )


class AnalyticsOrchestrator:
    """Single owner of :class:`FilterState` for one viewer session.

    Every setter replaces the state and re-derives the views from the latest
    snapshot. Filter changes also bump a generation counter so that fetches
    issued for an older state can be recognised and dropped on arrival.
    """

    def __init__(
        self,
        config: AnalyticsConfig | None = None,
        state: FilterState | None = None,
        as_of: date | None = None,
    ) -> None:
        self.config = config or AnalyticsConfig()
        self._state = state or FilterState(top_count=self.config.default_top_count)
        self._table_state = table.TableState(page_size=self.config.page_size)
        self._snapshot = AnalyticsSnapshot()
        self._generation = 0
        self._as_of = as_of
        self._views = self._derive()

    @property
    def state(self) -> FilterState:
        return self._state

    @property
    def table_state(self) -> table.TableState:
        return self._table_state

    @property
    def snapshot(self) -> AnalyticsSnapshot:
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def views(self) -> AnalyticsViews:
        return self._views

    def _derive(self) -> AnalyticsViews:
        return derive_views(
            self._snapshot, self._state, self._table_state, self.config, self._as_of
        )

    def refresh(self) -> AnalyticsViews:
        self._views = self._derive()
        return self._views

    def _replace_state(self, **changes: Any) -> AnalyticsViews:
        new_state = replace(self._state, **changes)
        if new_state == self._state:
            return self._views
        self._state = new_state
        self._generation += 1
        logger.debug("Filter state now %s (generation %d)", new_state, self._generation)
        return self.refresh()

    # Filter setters

    def on_metric_change(self, metric: MetricKind | str) -> AnalyticsViews:
        return self._replace_state(metric=MetricKind.parse(metric))

    def on_time_period_change(self, period: TimePeriod | str) -> AnalyticsViews:
        period = TimePeriod.parse(period)
        chart = self._snapshot.chart
        if period is TimePeriod.MONTHLY:
            chart = replace(chart, yearly=None)
        elif period in (TimePeriod.YEARLY, TimePeriod.QUARTERLY):
            chart = replace(chart, monthly=None)
        else:
            chart = ChartSnapshot()
        self._snapshot = replace(self._snapshot, chart=chart)
        return self._replace_state(time_period=period)

    def on_date_range_change(self, date_range: DateRange) -> AnalyticsViews:
        if not isinstance(date_range, DateRange):
            raise InvalidFieldError("date_range", date_range)
        return self._replace_state(date_range=date_range)

    def on_group_by_change(self, group_by: GroupKey | str) -> AnalyticsViews:
        return self._replace_state(group_by=GroupKey.parse(group_by))

    def on_sort_by_change(self, sort_by: SortKey | str) -> AnalyticsViews:
        return self._replace_state(sort_by=SortKey.parse(sort_by))

    def on_top_count_change(self, top_count: int) -> AnalyticsViews:
        return self._replace_state(top_count=ranking.normalize_top_count(top_count))

    def on_comparison_mode_change(self, mode: ComparisonMode | str) -> AnalyticsViews:
        return self._replace_state(comparison_mode=ComparisonMode.parse(mode))

    # Detail table interactions; these never need a refetch

    def on_search(self, query: str) -> AnalyticsViews:
        self._table_state = table.with_search(self._table_state, query)
        return self.refresh()

    def on_sort(self, field_name: str) -> AnalyticsViews:
        self._table_state = table.with_sort(self._table_state, field_name)
        return self.refresh()

    def on_page_change(self, page: int) -> AnalyticsViews:
        self._table_state = table.with_page(self._table_state, page)
        return self.refresh()

    # Snapshot intake

    @property
    def validation_error(self) -> str | None:
        return self._views.validation_error

    def begin_fetch(self) -> FetchTicket:
        """Tag a fetch with the state it is issued for."""
        return FetchTicket(generation=self._generation, filter_state=self._state)

    def apply_snapshot(self, ticket: FetchTicket, snapshot: AnalyticsSnapshot) -> bool:
        """Install ``snapshot`` unless the filters changed since ``ticket`` was issued."""
        if ticket.generation != self._generation:
            logger.warning(
                "Discarding stale snapshot from generation %d (current %d)",
                ticket.generation,
                self._generation,
            )
            return False
        self._snapshot = snapshot
        self.refresh()
        logger.debug("Applied snapshot for generation %d", ticket.generation)
        return True

    def export_csv(self) -> str:
        """CSV of the rows currently visible in the detail table."""
        return table.to_csv(self._views.table.visible, self._views.metric_label)

    def export_filename(self) -> str:
        return table.export_filename(self._state.metric, self._as_of)

    def summary(self) -> Dict[str, Any]:
        views = self._views
        return {
            "generation": self._generation,
            "series_points": len(views.series),
            "groups": len(views.distribution),
            "top_performers": len(views.top_performers),
            "table_rows": views.table.total_rows,
            "validation_error": views.validation_error,
        }
