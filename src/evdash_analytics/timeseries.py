from typing import Dict, Iterable, List, Sequence
import logging

from .models import (
    MAX_SAFE_INTEGER,
    ChartSnapshot,
    ComparisonMode,
    MetricKind,
    PeriodRecord,
    TimePeriod,
    TimeSeriesPoint,
)

logger = logging.getLogger(__name__)

DEFAULT_COMPARISON_RATIO = 0.75

_COMPARISON_LABELS = {
    ComparisonMode.PREVIOUS_PERIOD: "Previous Period",
    ComparisonMode.SAME_PERIOD_LAST_YEAR: "Last Year",
    ComparisonMode.FORECAST: "Forecast",
}


def _bucket_for(
    snapshot: ChartSnapshot | None, time_period: TimePeriod
) -> Sequence[PeriodRecord] | None:
    if snapshot is None:
        return None
    if time_period is TimePeriod.MONTHLY:
        return snapshot.monthly
    # The dashboard API has no quarterly feed; quarters are read off the yearly one.
    if time_period in (TimePeriod.YEARLY, TimePeriod.QUARTERLY):
        return snapshot.yearly
    return None


def metric_value(record: PeriodRecord, metric: MetricKind) -> float:
    """Return the field of a period bucket that backs ``metric``."""
    if metric is MetricKind.ENERGY:
        return record.total_energy
    if metric is MetricKind.REVENUE:
        return record.total_revenue
    # users and chargers have no per-period feed; session count stands in
    return record.session_count


def format_series(
    snapshot: ChartSnapshot | None, metric: MetricKind, time_period: TimePeriod
) -> List[TimeSeriesPoint]:
    """Turn the bucket matching ``time_period`` into a chronological series.

    A missing bucket yields an empty list so the caller can show an empty
    state. Source order is kept as-is; repeated labels are folded into their
    first occurrence.
    """
    metric = MetricKind.parse(metric)
    time_period = TimePeriod.parse(time_period)
    bucket = _bucket_for(snapshot, time_period)
    if not bucket:
        logger.debug(
            "No %s data for metric %s", time_period.value, metric.value
        )
        return []

    totals: Dict[str, float] = {}
    for record in bucket:
        value = metric_value(record, metric)
        if value < 0:
            logger.debug("Clamping negative %s for %s", metric.value, record.label)
            value = 0.0
        if record.label in totals:
            logger.debug("Merging repeated period label %s", record.label)
            totals[record.label] += value
        else:
            totals[record.label] = value

    series = [TimeSeriesPoint(label=label, value=value) for label, value in totals.items()]
    logger.debug("Formatted %d %s points", len(series), time_period.value)
    return series


def synthesize_comparison(
    series: Iterable[TimeSeriesPoint],
    mode: ComparisonMode,
    ratio: float = DEFAULT_COMPARISON_RATIO,
) -> List[TimeSeriesPoint]:
    """Attach a comparison value to each point.

    There is no historical feed available, so the comparison is a fixed
    fraction of the primary value. It is a placeholder, not a forecast.
    """
    mode = ComparisonMode.parse(mode)
    if mode is ComparisonMode.NONE:
        return [
            TimeSeriesPoint(label=p.label, value=p.value, comparison_value=None)
            for p in series
        ]
    return [
        TimeSeriesPoint(
            label=p.label,
            value=p.value,
            comparison_value=min(p.value * ratio, MAX_SAFE_INTEGER),
        )
        for p in series
    ]


def comparison_label(mode: ComparisonMode) -> str | None:
    mode = ComparisonMode.parse(mode)
    return _COMPARISON_LABELS.get(mode)
