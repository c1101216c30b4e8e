"""Value types shared by the analytics engine."""
from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, Tuple

# Largest integer a JavaScript chart client can represent exactly.
MAX_SAFE_INTEGER = 2**53 - 1


class InvalidFieldError(ValueError):
    """Raised when a caller passes an unrecognised value for a named field."""

    def __init__(self, field_name: str, value: Any, allowed: Tuple[str, ...] = ()):
        self.field_name = field_name
        self.value = value
        self.allowed = allowed
        message = f"Invalid {field_name}: {value!r}"
        if allowed:
            message += f" (expected one of: {', '.join(allowed)})"
        super().__init__(message)


class DateRangeError(ValueError):
    """Raised when a custom date range is incomplete or inverted."""


class _ParsableEnum(str, Enum):
    @classmethod
    def field_name(cls) -> str:
        return cls.__name__

    @classmethod
    def _aliases(cls) -> Dict[str, str]:
        return {}

    @classmethod
    def parse(cls, value: Any):
        """Return the member for ``value`` or fail naming the offending field."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            raw = value.strip()
            try:
                return cls(raw)
            except ValueError:
                pass
            alias = cls._aliases().get(raw)
            if alias is not None:
                return cls(alias)
        raise InvalidFieldError(
            cls.field_name(), value, tuple(member.value for member in cls)
        )


class MetricKind(_ParsableEnum):
    ENERGY = "energy"
    REVENUE = "revenue"
    SESSIONS = "sessions"
    USERS = "users"
    CHARGERS = "chargers"

    @classmethod
    def field_name(cls) -> str:
        return "metric"


class TimePeriod(_ParsableEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    CUSTOM = "custom"

    @classmethod
    def field_name(cls) -> str:
        return "time_period"


class ComparisonMode(_ParsableEnum):
    PREVIOUS_PERIOD = "previous-period"
    SAME_PERIOD_LAST_YEAR = "same-period-last-year"
    FORECAST = "forecast"
    NONE = "none"

    @classmethod
    def field_name(cls) -> str:
        return "comparison_mode"


class GroupKey(_ParsableEnum):
    LOCATION = "location"
    ONLINE_STATUS = "onlineStatus"
    CONNECTOR_COUNT = "connectorCount"

    @classmethod
    def field_name(cls) -> str:
        return "group_by"

    @classmethod
    def _aliases(cls) -> Dict[str, str]:
        # Spellings used by the dashboard API query parameters
        return {
            "is_online": "onlineStatus",
            "online_status": "onlineStatus",
            "connector_count": "connectorCount",
        }


class SortKey(_ParsableEnum):
    REVENUE = "revenue"
    ENERGY_DELIVERED = "energy_delivered"
    SESSIONS = "sessions"
    UTILIZATION_RATE = "utilization_rate"
    HOURS_ACTIVE = "hours_active"
    AVAILABILITY_RATE = "availability_rate"

    @classmethod
    def field_name(cls) -> str:
        return "sort_by"

    @classmethod
    def _aliases(cls) -> Dict[str, str]:
        return {
            "energyDelivered": "energy_delivered",
            "utilizationRate": "utilization_rate",
            "hoursActive": "hours_active",
            "availabilityRate": "availability_rate",
        }


class SortDirection(_ParsableEnum):
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def field_name(cls) -> str:
        return "sort_direction"


class TableField(_ParsableEnum):
    """Sortable columns of the detail table."""

    NAME = "name"
    LOCATION = "location"
    DATE = "date"
    METRIC_VALUE = "metric_value"
    SESSIONS = "sessions"
    UTILIZATION = "utilization"
    USERS = "users"

    @classmethod
    def field_name(cls) -> str:
        return "sort_field"

    @classmethod
    def _aliases(cls) -> Dict[str, str]:
        return {"value": "metric_value", "metricValue": "metric_value"}


@dataclass(frozen=True)
class DateRange:
    """Inclusive date window, only enforced for the custom time period."""

    from_date: date | None = None
    to_date: date | None = None

    @property
    def is_complete(self) -> bool:
        return self.from_date is not None and self.to_date is not None

    def validate(self) -> None:
        if not self.is_complete:
            raise DateRangeError("Custom period requires both a start and an end date")
        if self.from_date > self.to_date:
            raise DateRangeError(
                f"Start date {self.from_date.isoformat()} is after end date "
                f"{self.to_date.isoformat()}"
            )


@dataclass(frozen=True)
class TimeSeriesPoint:
    label: str
    value: float
    comparison_value: float | None = None


@dataclass(frozen=True)
class PeriodRecord:
    """One monthly or yearly bucket as delivered by the dashboard API."""

    label: str
    key: str
    session_count: float = 0.0
    total_energy: float = 0.0
    total_revenue: float = 0.0


@dataclass(frozen=True)
class ChartSnapshot:
    monthly: Tuple[PeriodRecord, ...] | None = None
    yearly: Tuple[PeriodRecord, ...] | None = None


@dataclass(frozen=True)
class EntityUtilizationRecord:
    id: str
    name: str
    location: str = ""
    is_online: bool = False
    sessions: float = 0.0
    energy_delivered: float = 0.0
    revenue: float = 0.0
    hours_active: float = 0.0
    availability_rate: float = 0.0
    utilization_rate: float = 0.0
    connector_count: int = 0


@dataclass(frozen=True)
class UserActivityRecord:
    id: str
    username: str
    email: str = ""
    sessions: float = 0.0
    energy_kwh: float = 0.0
    revenue: float = 0.0
    has_activity: bool = False


@dataclass(frozen=True)
class TopChargerSummary:
    """Row of the top-sessions / top-revenue feeds."""

    charger_id: str
    charger_name: str
    total_sessions: float | None = None
    total_energy: float | None = None
    total_revenue: float | None = None


@dataclass(frozen=True)
class GroupedAggregate:
    key: str
    value: float


@dataclass(frozen=True)
class RankedEntry:
    name: str
    value: float


@dataclass(frozen=True)
class DetailRow:
    id: str
    name: str
    location: str
    date: str
    metric_value: float
    sessions: float
    utilization: float
    users: float


@dataclass(frozen=True)
class FilterState:
    """Every selection the viewer can make; replaced on each interaction."""

    metric: MetricKind = MetricKind.ENERGY
    time_period: TimePeriod = TimePeriod.MONTHLY
    date_range: DateRange = field(default_factory=DateRange)
    group_by: GroupKey = GroupKey.LOCATION
    sort_by: SortKey = SortKey.REVENUE
    top_count: int = 5
    comparison_mode: ComparisonMode = ComparisonMode.NONE

    def __post_init__(self) -> None:
        # Plain strings are accepted and stored as members
        object.__setattr__(self, "metric", MetricKind.parse(self.metric))
        object.__setattr__(self, "time_period", TimePeriod.parse(self.time_period))
        object.__setattr__(self, "group_by", GroupKey.parse(self.group_by))
        object.__setattr__(self, "sort_by", SortKey.parse(self.sort_by))
        object.__setattr__(
            self, "comparison_mode", ComparisonMode.parse(self.comparison_mode)
        )
        if not isinstance(self.date_range, DateRange):
            raise InvalidFieldError("date_range", self.date_range)


@dataclass(frozen=True)
class AnalyticsSnapshot:
    """Everything fetched for one filter state."""

    chart: ChartSnapshot = field(default_factory=ChartSnapshot)
    utilization: Tuple[EntityUtilizationRecord, ...] | None = None
    users: Tuple[UserActivityRecord, ...] | None = None
    top_chargers: Tuple[TopChargerSummary, ...] | None = None


def to_payload(value: Any) -> Any:
    """Convert dataclasses, enums and dates into JSON-compatible values."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_payload(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_payload(v) for v in value]
    return value
