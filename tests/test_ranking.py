import pytest

import evdash_analytics.ranking as ranking
from evdash_analytics.models import InvalidFieldError, RankedEntry, TopChargerSummary

from conftest import charger


def test_zero_values_excluded_without_padding():
    records = [charger("A", revenue=100), charger("B", revenue=0), charger("C", revenue=50)]
    assert ranking.rank(records, "revenue", 5) == [RankedEntry("A", 100), RankedEntry("C", 50)]


def test_sorts_before_truncating(fleet):
    result = ranking.rank(fleet, "energy_delivered", 2)
    assert result == [RankedEntry("Alpha", 140.5), RankedEntry("Charlie", 60)]


def test_ties_keep_input_order():
    records = [charger("A", sessions=3), charger("B", sessions=5), charger("C", sessions=3)]
    assert [e.name for e in ranking.rank(records, "sessions", 3)] == ["B", "A", "C"]


@pytest.mark.parametrize("top_count", [0, -3])
def test_non_positive_count_is_empty(fleet, top_count):
    assert ranking.rank(fleet, "revenue", top_count) == []


@pytest.mark.parametrize(
    "sort_by", ["revenue", "energyDelivered", "sessions", "utilization_rate", "hoursActive", "availability_rate"]
)
@pytest.mark.parametrize("top_count", [1, 2, 3, 10])
def test_ranking_invariants(fleet, sort_by, top_count):
    result = ranking.rank(fleet, sort_by, top_count)
    assert len(result) <= top_count
    assert all(e.value > 0 for e in result)
    values = [e.value for e in result]
    assert values == sorted(values, reverse=True)
    assert {e.name for e in result} <= {r.name for r in fleet}


def test_unknown_sort_key(fleet):
    with pytest.raises(InvalidFieldError) as exc:
        ranking.rank(fleet, "power", 3)
    assert exc.value.field_name == "sort_by"


def test_top_count_validation():
    assert ranking.normalize_top_count("4") == 4
    assert ranking.normalize_top_count(3.0) == 3
    with pytest.raises(InvalidFieldError):
        ranking.normalize_top_count("many")
    with pytest.raises(InvalidFieldError):
        ranking.normalize_top_count(2.5)
    with pytest.raises(InvalidFieldError):
        ranking.normalize_top_count(True)


def test_rank_summaries():
    summaries = [
        TopChargerSummary("1", "Plaza", total_sessions=20, total_revenue=150),
        TopChargerSummary("2", "Harbour", total_sessions=40, total_revenue=None),
        TopChargerSummary("3", "Depot", total_sessions=0, total_revenue=75),
    ]
    assert ranking.rank_summaries(summaries, "revenue", 5) == [
        RankedEntry("Plaza", 150),
        RankedEntry("Depot", 75),
    ]
    assert ranking.rank_summaries(summaries, "sessions", 1) == [RankedEntry("Harbour", 40)]


def test_rank_summaries_rejects_unsupported_key():
    assert not ranking.supports_summaries("hours_active")
    with pytest.raises(InvalidFieldError):
        ranking.rank_summaries([], "hours_active", 3)
