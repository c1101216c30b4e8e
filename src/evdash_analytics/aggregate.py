from typing import Callable, Dict, Iterable, List, Tuple
import logging

from .models import EntityUtilizationRecord, GroupedAggregate, GroupKey, MetricKind

logger = logging.getLogger(__name__)

UNKNOWN_LOCATION = "Unknown"


def group_label(record: EntityUtilizationRecord, group_by: GroupKey) -> str:
    """Return the bucket a record falls into for ``group_by``."""
    if group_by is GroupKey.LOCATION:
        location = (record.location or "").strip()
        return location or UNKNOWN_LOCATION
    if group_by is GroupKey.ONLINE_STATUS:
        return "Online" if record.is_online else "Offline"
    count = int(record.connector_count or 0)
    if count <= 0:
        return "None"
    if count == 1:
        return "1 Connector"
    return f"{count} Connectors"


def _reducer(metric: MetricKind) -> Callable[[EntityUtilizationRecord], float]:
    if metric is MetricKind.ENERGY:
        return lambda r: r.energy_delivered
    if metric is MetricKind.REVENUE:
        return lambda r: r.revenue
    if metric in (MetricKind.SESSIONS, MetricKind.USERS):
        # No per-charger user counts exist; sessions are the proxy
        return lambda r: r.sessions
    return lambda r: 1


def metric_total(records: Iterable[EntityUtilizationRecord], metric: MetricKind) -> float:
    """Total of ``metric`` across all records, ungrouped."""
    contribution = _reducer(MetricKind.parse(metric))
    return sum(contribution(r) for r in records)


def aggregate(
    records: Iterable[EntityUtilizationRecord],
    group_by: GroupKey,
    metric: MetricKind,
) -> List[GroupedAggregate]:
    """Bucket ``records`` by ``group_by`` and total ``metric`` per bucket.

    Buckets appear in the order they are first seen. Buckets totalling zero
    are left out so the distribution never shows empty slices.
    """
    group_by = GroupKey.parse(group_by)
    metric = MetricKind.parse(metric)
    contribution = _reducer(metric)

    totals: Dict[str, float] = {}
    count = 0
    for r in records:
        count += 1
        key = group_label(r, group_by)
        totals[key] = totals.get(key, 0) + contribution(r)

    result = [GroupedAggregate(key=k, value=v) for k, v in totals.items() if v > 0]
    logger.debug(
        "Aggregated %d records into %d %s groups (%d dropped as zero)",
        count,
        len(result),
        group_by.value,
        len(totals) - len(result),
    )
    return result


def with_shares(groups: Iterable[GroupedAggregate]) -> List[Tuple[str, float, float]]:
    """Return ``(key, value, percent of total)`` for each group."""
    groups = list(groups)
    total = sum(g.value for g in groups)
    if total <= 0:
        return [(g.key, g.value, 0.0) for g in groups]
    return [(g.key, g.value, g.value / total * 100) for g in groups]
