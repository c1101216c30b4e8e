"""Display helpers for metric values.

Nothing here feeds back into the data model: values stay plain floats and
are only turned into strings when a view is rendered.
"""
from .models import MetricKind, SortKey

CHART_TITLES = {
    MetricKind.ENERGY: "Energy Delivered (kWh)",
    MetricKind.REVENUE: "Revenue ($)",
    MetricKind.SESSIONS: "Charging Sessions",
    MetricKind.USERS: "Active Users",
    MetricKind.CHARGERS: "Active Chargers",
}

AXIS_LABELS = {
    MetricKind.ENERGY: "kWh",
    MetricKind.REVENUE: "$",
    MetricKind.SESSIONS: "Count",
    MetricKind.USERS: "Users",
    MetricKind.CHARGERS: "Chargers",
}

SORT_KEY_LABELS = {
    SortKey.REVENUE: "Revenue ($)",
    SortKey.ENERGY_DELIVERED: "Energy (kWh)",
    SortKey.SESSIONS: "Sessions",
    SortKey.UTILIZATION_RATE: "Utilization (%)",
    SortKey.HOURS_ACTIVE: "Hours Active",
    SortKey.AVAILABILITY_RATE: "Availability (%)",
}


def chart_title(metric: MetricKind) -> str:
    return CHART_TITLES[MetricKind.parse(metric)]


def axis_label(metric: MetricKind) -> str:
    return AXIS_LABELS[MetricKind.parse(metric)]


def _count(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,}"


def format_metric(value: float, metric: MetricKind) -> str:
    """Format a value with the unit of ``metric``, e.g. ``1,250.50 kWh``."""
    metric = MetricKind.parse(metric)
    if metric is MetricKind.ENERGY:
        return f"{value:,.2f} kWh"
    if metric is MetricKind.REVENUE:
        return f"${value:,.2f}"
    return _count(value)


def format_share(value: float, metric: MetricKind, share_pct: float) -> str:
    """Distribution slice label: value plus its share of the whole."""
    return f"{format_metric(value, metric)} ({share_pct:.1f}%)"


def sort_key_label(sort_by: SortKey) -> str:
    return SORT_KEY_LABELS[SortKey.parse(sort_by)]


def format_ranked(value: float, sort_by: SortKey) -> str:
    sort_by = SortKey.parse(sort_by)
    if sort_by is SortKey.REVENUE:
        return f"${value:.2f}"
    if sort_by is SortKey.ENERGY_DELIVERED:
        return f"{value:.2f} kWh"
    if sort_by in (SortKey.UTILIZATION_RATE, SortKey.AVAILABILITY_RATE):
        return f"{value:.1f}%"
    if sort_by is SortKey.HOURS_ACTIVE:
        return f"{value:.1f} hrs"
    return _count(value)


def compact_number(value: float) -> str:
    """Short axis tick: 1.5k, 2.3M."""
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}k"
    return _count(value).replace(",", "")
