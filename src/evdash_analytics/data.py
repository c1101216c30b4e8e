import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple
import requests

from .models import (
    AnalyticsSnapshot,
    ChartSnapshot,
    EntityUtilizationRecord,
    FilterState,
    PeriodRecord,
    TimePeriod,
    TopChargerSummary,
    UserActivityRecord,
)

logger = logging.getLogger(__name__)

# Paths below the dashboard API base URL (e.g. https://host/api/dashboard/)
MONTHLY_PATH = "charts/monthly/"
YEARLY_PATH = "charts/yearly/"
TOP_SESSIONS_PATH = "charts/top-sessions/"
TOP_REVENUE_PATH = "charts/top-revenue/"
UTILIZATION_PATH = "charts/chargers/utilization/"
USERS_PATH = "charts/users/"

# Records requested from the utilization endpoint; groups and the detail
# table need the whole fleet, not just the top entries
UTILIZATION_LIMIT = 100

# The utilization endpoint only understands these periods
_API_PERIODS = {"daily", "weekly", "monthly", "yearly"}

_GROUP_PARAMS = {
    "location": "location",
    "onlineStatus": "is_online",
    "connectorCount": "connector_count",
}


def _number(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        # Amounts may arrive formatted with thousands separators ("1,234.50")
        value = value.strip().replace(",", "")
        if not value:
            return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number or number < 0:
        return 0.0
    return number


def _optional_number(value: Any) -> float | None:
    if value is None:
        return None
    return _number(value)


def _rate(value: Any) -> float:
    return min(_number(value), 100.0)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _entries(data: Any, key: str) -> List[Dict[str, Any]]:
    if isinstance(data, dict):
        items = data.get(key)
    elif isinstance(data, list):
        items = data
    else:
        items = None
    if not isinstance(items, list):
        return []
    entries = []
    for it in items:
        if isinstance(it, dict):
            entries.append(it)
        else:
            logger.debug("Skipping invalid %s entry: %r", key, it)
    return entries


def parse_periods(data: Any, key: str, label_field: str) -> Tuple[PeriodRecord, ...] | None:
    """Parse a monthly or yearly chart payload; ``None`` when the feed is absent."""
    if data is None:
        return None
    records = []
    for it in _entries(data, key):
        label = _text(it.get(label_field))
        if not label:
            logger.debug("Skipping %s entry without %s: %s", key, label_field, it)
            continue
        records.append(
            PeriodRecord(
                label=label,
                key=_text(it.get("month_key") or it.get("year") or label),
                session_count=_number(it.get("session_count")),
                total_energy=_number(it.get("total_energy")),
                total_revenue=_number(it.get("total_revenue")),
            )
        )
    logger.debug("Parsed %d %s records", len(records), key)
    return tuple(records)


def parse_utilization(data: Any) -> Tuple[EntityUtilizationRecord, ...] | None:
    """Parse the charger utilization payload."""
    if data is None:
        return None
    records = []
    for it in _entries(data, "charger_utilization"):
        try:
            connectors = int(_number(it.get("connector_count")))
        except (OverflowError, ValueError):
            connectors = 0
        records.append(
            EntityUtilizationRecord(
                id=_text(it.get("charger_id") or it.get("id")),
                name=_text(it.get("name") or it.get("charger_name")),
                location=_text(it.get("location")),
                is_online=bool(it.get("is_online")),
                sessions=_number(it.get("sessions")),
                energy_delivered=_number(it.get("energy_delivered")),
                revenue=_number(it.get("revenue")),
                hours_active=_number(it.get("hours_active")),
                availability_rate=_rate(it.get("availability_rate")),
                utilization_rate=_rate(it.get("utilization_rate")),
                connector_count=connectors,
            )
        )
    logger.debug("Parsed %d charger utilization records", len(records))
    return tuple(records)


def parse_users(data: Any) -> Tuple[UserActivityRecord, ...] | None:
    """Parse the user activity payload."""
    if data is None:
        return None
    records = [
        UserActivityRecord(
            id=_text(it.get("user_id") or it.get("id")),
            username=_text(it.get("username")),
            email=_text(it.get("email")),
            sessions=_number(it.get("sessions")),
            energy_kwh=_number(it.get("energy_kwh")),
            revenue=_number(it.get("revenue")),
            has_activity=bool(it.get("has_activity")),
        )
        for it in _entries(data, "user_activity")
    ]
    logger.debug("Parsed %d user activity records", len(records))
    return tuple(records)


def parse_top_chargers(*payloads: Any) -> Tuple[TopChargerSummary, ...] | None:
    """Merge the top-sessions and top-revenue payloads by charger id.

    Later payloads fill in totals the earlier ones lack; the first payload
    that mentions a charger decides its position.
    """
    if all(p is None for p in payloads):
        return None
    merged: Dict[str, Dict[str, Any]] = {}
    for payload in payloads:
        for it in _entries(payload, "top_chargers"):
            charger_id = _text(it.get("charger_id"))
            name = _text(it.get("charger_name"))
            key = charger_id or name
            if not key:
                continue
            entry = merged.setdefault(key, {"charger_id": charger_id, "charger_name": name})
            for field in ("total_sessions", "total_energy", "total_revenue"):
                if it.get(field) is not None:
                    entry[field] = _optional_number(it.get(field))
    return tuple(TopChargerSummary(**entry) for entry in merged.values())


def parse_snapshot(data: Dict[str, Any]) -> AnalyticsSnapshot:
    """Build a snapshot from a bundle of API-shaped payloads."""
    if not isinstance(data, dict):
        data = {}
    chart = ChartSnapshot(
        monthly=parse_periods(data.get("monthly"), "monthly_data", "month"),
        yearly=parse_periods(data.get("yearly"), "yearly_data", "year"),
    )
    return AnalyticsSnapshot(
        chart=chart,
        utilization=parse_utilization(data.get("utilization")),
        users=parse_users(data.get("users")),
        top_chargers=parse_top_chargers(data.get("top_sessions"), data.get("top_revenue")),
    )


def load_snapshot(path: Path) -> AnalyticsSnapshot:
    """Load a snapshot bundle from a local JSON file."""
    logger.debug("Loading snapshot from %s", path)
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    return parse_snapshot(data)


def date_params(state: FilterState) -> Dict[str, str]:
    date_range = state.date_range
    if date_range.is_complete:
        return {
            "date_from": date_range.from_date.isoformat(),
            "date_to": date_range.to_date.isoformat(),
        }
    return {}


def utilization_params(state: FilterState) -> Dict[str, Any]:
    params: Dict[str, Any] = dict(date_params(state))
    if state.time_period.value in _API_PERIODS:
        params["period"] = state.time_period.value
    params["sort_by"] = state.sort_by.value
    params["group_by"] = _GROUP_PARAMS[state.group_by.value]
    params["limit"] = max(UTILIZATION_LIMIT, state.top_count)
    params["reverse"] = "true"
    return params


def _get(
    base_url: str,
    path: str,
    params: Dict[str, Any],
    headers: Dict[str, str],
    timeout: float,
) -> Any:
    url = base_url.rstrip("/") + "/" + path
    logger.debug("Fetching %s params=%s", url, params)
    resp = requests.get(url, params=params, headers=headers, timeout=timeout)
    resp.raise_for_status()
    logger.debug("Fetched %d bytes from %s", len(resp.content), url)
    return resp.json()


def fetch_snapshot(
    base_url: str,
    state: FilterState,
    token: str | None = None,
    timeout: float = 30,
) -> AnalyticsSnapshot:
    """Fetch every feed needed for ``state`` from the dashboard API."""
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    params = date_params(state)

    bundle: Dict[str, Any] = {}
    if state.time_period is TimePeriod.MONTHLY:
        bundle["monthly"] = _get(base_url, MONTHLY_PATH, params, headers, timeout)
    elif state.time_period in (TimePeriod.YEARLY, TimePeriod.QUARTERLY):
        bundle["yearly"] = _get(base_url, YEARLY_PATH, params, headers, timeout)
    bundle["top_sessions"] = _get(base_url, TOP_SESSIONS_PATH, params, headers, timeout)
    bundle["top_revenue"] = _get(base_url, TOP_REVENUE_PATH, params, headers, timeout)
    bundle["utilization"] = _get(
        base_url, UTILIZATION_PATH, utilization_params(state), headers, timeout
    )
    bundle["users"] = _get(base_url, USERS_PATH, params, headers, timeout)
    return parse_snapshot(bundle)


def snapshot_feeds(snapshot: AnalyticsSnapshot) -> Iterable[Tuple[str, int]]:
    """Yield ``(feed, record count)`` for the feeds present in ``snapshot``."""
    feeds = (
        ("monthly", snapshot.chart.monthly),
        ("yearly", snapshot.chart.yearly),
        ("utilization", snapshot.utilization),
        ("users", snapshot.users),
        ("top_chargers", snapshot.top_chargers),
    )
    for name, records in feeds:
        if records is not None:
            yield name, len(records)
