import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from evdash_analytics.models import EntityUtilizationRecord


def charger(name, **fields):
    fields.setdefault("id", f"C-{name}")
    return EntityUtilizationRecord(name=name, **fields)


@pytest.fixture
def fleet():
    return [
        charger("Alpha", location="Downtown", is_online=True, sessions=12, energy_delivered=140.5,
                revenue=70.0, hours_active=30, availability_rate=98, utilization_rate=45,
                connector_count=2),
        charger("Bravo", location="Harbour", is_online=False, sessions=0, energy_delivered=0,
                revenue=0, hours_active=0, availability_rate=10, utilization_rate=0,
                connector_count=1),
        charger("Charlie", location="Downtown", is_online=True, sessions=5, energy_delivered=60,
                revenue=25.5, hours_active=12, availability_rate=90, utilization_rate=20,
                connector_count=2),
        charger("Delta", location="", is_online=True, sessions=3, energy_delivered=22,
                revenue=11, hours_active=4, availability_rate=75, utilization_rate=8,
                connector_count=0),
    ]


SNAPSHOT_BUNDLE = {
    "monthly": {
        "months_requested": 3,
        "monthly_data": [
            {"month": "Jan 2024", "month_key": "2024-01", "session_count": 40,
             "total_energy": 520.5, "total_revenue": 260.0},
            {"month": "Feb 2024", "month_key": "2024-02", "session_count": 35,
             "total_energy": 480.0, "total_revenue": 240.0},
            {"month": "Mar 2024", "month_key": "2024-03", "session_count": 52,
             "total_energy": 610.0, "total_revenue": 305.5},
        ],
        "date_filter": {"date_from": None, "date_to": None},
    },
    "yearly": {
        "years_requested": 2,
        "yearly_data": [
            {"year": "2023", "session_count": 400, "total_energy": 5200, "total_revenue": 2600},
            {"year": "2024", "session_count": 127, "total_energy": 1610.5, "total_revenue": 805.5},
        ],
    },
    "utilization": {
        "charger_utilization": [
            {"charger_id": "CP-1", "name": "Plaza North", "location": "Downtown",
             "is_online": True, "sessions": 20, "energy_delivered": 300, "revenue": 150,
             "hours_active": 40, "availability_rate": 99, "utilization_rate": 55,
             "connector_count": 2, "available_connectors": 1},
            {"charger_id": "CP-2", "name": "Harbour Gate", "location": "Harbour",
             "is_online": False, "sessions": 4, "energy_delivered": 60, "revenue": 30,
             "hours_active": 6, "availability_rate": 40, "utilization_rate": 10,
             "connector_count": 1, "available_connectors": 0},
            {"charger_id": "CP-3", "name": "Depot, Bay 3", "location": "Downtown",
             "is_online": True, "sessions": 0, "energy_delivered": 0, "revenue": 0,
             "hours_active": 0, "availability_rate": 100, "utilization_rate": 0,
             "connector_count": 4, "available_connectors": 4},
        ],
        "time_period": "monthly",
        "total_chargers": 3,
        "sort_by": "revenue",
    },
    "users": {
        "user_activity": [
            {"user_id": "U1", "username": "ana", "email": "ana@example.com", "sessions": 9,
             "energy_kwh": 120, "revenue": 60, "has_activity": True},
            {"user_id": "U2", "username": "ben", "email": "ben@example.com", "sessions": 0,
             "energy_kwh": 0, "revenue": 0, "has_activity": False},
        ],
        "total_users": 2,
    },
    "top_sessions": {
        "top_chargers": [
            {"charger_id": "CP-1", "charger_name": "Plaza North", "total_sessions": 20,
             "total_energy": 300},
            {"charger_id": "CP-2", "charger_name": "Harbour Gate", "total_sessions": 4,
             "total_energy": 60},
        ],
    },
    "top_revenue": {
        "top_chargers": [
            {"charger_id": "CP-1", "charger_name": "Plaza North", "total_revenue": 150,
             "total_sessions": 20, "total_energy": 300, "avg_revenue_per_session": 7.5},
            {"charger_id": "CP-2", "charger_name": "Harbour Gate", "total_revenue": 30,
             "total_sessions": 4, "total_energy": 60, "avg_revenue_per_session": 7.5},
        ],
    },
}


@pytest.fixture
def snapshot_bundle():
    return json.loads(json.dumps(SNAPSHOT_BUNDLE))


@pytest.fixture
def snapshot_file(tmp_path, snapshot_bundle):
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(snapshot_bundle), encoding="utf-8")
    return path
