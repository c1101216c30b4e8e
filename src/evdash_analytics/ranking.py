from typing import Any, Iterable, List, Sequence, Tuple
import logging

from .models import (
    EntityUtilizationRecord,
    InvalidFieldError,
    RankedEntry,
    SortKey,
    TopChargerSummary,
)

logger = logging.getLogger(__name__)

# Keys the top-sessions / top-revenue feeds carry a total for
SUMMARY_FIELDS = {
    SortKey.REVENUE: "total_revenue",
    SortKey.ENERGY_DELIVERED: "total_energy",
    SortKey.SESSIONS: "total_sessions",
}


def normalize_top_count(top_count: Any) -> int:
    """Coerce a requested entry count; anything below one means no entries."""
    if isinstance(top_count, bool):
        raise InvalidFieldError("top_count", top_count)
    if isinstance(top_count, float) and top_count.is_integer():
        top_count = int(top_count)
    if isinstance(top_count, str):
        try:
            top_count = int(top_count.strip())
        except ValueError:
            raise InvalidFieldError("top_count", top_count) from None
    if not isinstance(top_count, int):
        raise InvalidFieldError("top_count", top_count)
    return max(top_count, 0)


def _top(candidates: Sequence[Tuple[str, float]], top_count: int) -> List[RankedEntry]:
    positive = [(name, value) for name, value in candidates if value > 0]
    # sorted() is stable with reverse=True, so ties keep input order
    positive = sorted(positive, key=lambda item: item[1], reverse=True)
    return [RankedEntry(name=name, value=value) for name, value in positive[:top_count]]


def rank(
    records: Iterable[EntityUtilizationRecord], sort_by: SortKey, top_count: int
) -> List[RankedEntry]:
    """Return the best ``top_count`` records by ``sort_by``, highest first.

    Records whose value is zero or negative are discarded before truncation,
    so fewer than ``top_count`` entries may come back.
    """
    sort_by = SortKey.parse(sort_by)
    top_count = normalize_top_count(top_count)
    if top_count == 0:
        return []
    candidates = [(r.name, getattr(r, sort_by.value)) for r in records]
    result = _top(candidates, top_count)
    logger.debug(
        "Ranked %d of %d records by %s", len(result), len(candidates), sort_by.value
    )
    return result


def supports_summaries(sort_by: SortKey) -> bool:
    return SortKey.parse(sort_by) in SUMMARY_FIELDS


def rank_summaries(
    summaries: Iterable[TopChargerSummary], sort_by: SortKey, top_count: int
) -> List[RankedEntry]:
    """Rank rows of the top-charger feeds.

    Only revenue, energy and session totals exist in those feeds; other keys
    must be ranked from utilization records instead.
    """
    sort_by = SortKey.parse(sort_by)
    if sort_by not in SUMMARY_FIELDS:
        raise InvalidFieldError("sort_by", sort_by.value, tuple(k.value for k in SUMMARY_FIELDS))
    top_count = normalize_top_count(top_count)
    if top_count == 0:
        return []
    attr = SUMMARY_FIELDS[sort_by]
    candidates = [(s.charger_name, getattr(s, attr) or 0) for s in summaries]
    return _top(candidates, top_count)
