import importlib

import pytest
from fastapi.testclient import TestClient


def _load_api(monkeypatch, snapshot_file, **env):
    monkeypatch.delenv("EVDASH_API_URL", raising=False)
    monkeypatch.setenv("EVDASH_DATA_FILE", str(snapshot_file))
    for key, value in env.items():
        monkeypatch.setenv(key, value)

    import evdash_analytics.api as api  # Import after environment variables are set

    return importlib.reload(api)


@pytest.fixture
def client(monkeypatch, snapshot_file):
    api = _load_api(monkeypatch, snapshot_file)
    with TestClient(api.app) as client:
        yield client


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["source"] == "file"
    assert payload["auto_fetch"] is True
    assert payload["last_fetch"]


def test_analytics_endpoint(client):
    response = client.get("/api/analytics")
    assert response.status_code == 200
    payload = response.json()
    assert payload["filter_state"]["metric"] == "energy"
    assert payload["filter_state"]["time_period"] == "monthly"
    assert [p["label"] for p in payload["series"]] == ["Jan 2024", "Feb 2024", "Mar 2024"]
    assert payload["top_performers"][0] == {"name": "Plaza North", "value": 150.0}
    assert payload["table"]["total_rows"] == 3
    assert payload["validation_error"] is None


def test_filters_endpoint(client):
    generation = client.get("/api/analytics").json()["generation"]
    response = client.post(
        "/api/filters",
        params={"metric": "revenue", "group_by": "onlineStatus", "comparison_mode": "forecast"},
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["generation"] == generation + 3
    assert payload["metric_label"] == "Revenue ($)"
    assert payload["comparison_label"] == "Forecast"
    assert payload["series"][0]["comparison_value"] == pytest.approx(195.0)
    assert [s["key"] for s in payload["distribution"]] == ["Online", "Offline"]


def test_filters_reject_unknown_values(client):
    response = client.post("/api/filters", params={"metric": "watts"})
    assert response.status_code == 422
    assert "watts" in response.json()["detail"]
    assert client.get("/api/analytics").json()["filter_state"]["metric"] == "energy"


def test_custom_period_without_dates(client):
    payload = client.post("/api/filters", params={"time_period": "custom"}).json()
    assert payload["validation_error"]
    assert payload["series"] == []

    response = client.get("/api/export.csv")
    assert response.status_code == 409

    payload = client.post(
        "/api/filters", params={"date_from": "2024-01-01", "date_to": "2024-02-01"}
    ).json()
    assert payload["validation_error"] is None
    assert payload["filter_state"]["date_range"] == {
        "from_date": "2024-01-01",
        "to_date": "2024-02-01",
    }


def test_table_endpoint(client):
    response = client.post("/api/table", params={"search": "harbour"})
    assert response.status_code == 200
    table = response.json()["table"]
    assert [r["name"] for r in table["rows"]] == ["Harbour Gate"]

    table = client.post("/api/table", params={"search": "", "sort": "name"}).json()["table"]
    assert [r["name"] for r in table["rows"]] == ["Plaza North", "Harbour Gate", "Depot, Bay 3"]

    response = client.post("/api/table", params={"sort": "email"})
    assert response.status_code == 422


def test_export_csv(client):
    response = client.get("/api/export.csv")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "energy-data-" in response.headers["content-disposition"]
    lines = response.text.splitlines()
    assert lines[0] == "Name,Location,Date,Energy (kWh),Sessions,Utilization (%),Users"
    assert len(lines) == 4
    assert lines[3].startswith('"Depot, Bay 3",Downtown,')


def test_refresh_endpoint(client):
    response = client.post("/api/refresh")
    assert response.status_code == 202
    assert response.json() == {"status": "applied"}


def test_refresh_reports_unreadable_file(monkeypatch, tmp_path, snapshot_file):
    api = _load_api(monkeypatch, snapshot_file, EVDASH_AUTO_FETCH="0")
    with TestClient(api.app) as client:
        assert client.get("/api/analytics").json()["table"]["total_rows"] == 0
        snapshot_file.write_text("{not json", encoding="utf-8")
        response = client.post("/api/refresh")
        assert response.status_code == 502


def test_settings_from_environment(monkeypatch, snapshot_file):
    api = _load_api(
        monkeypatch,
        snapshot_file,
        EVDASH_PAGE_SIZE="2",
        EVDASH_TOP_COUNT="0",
        EVDASH_COMPARISON_RATIO="0.5",
        EVDASH_CORS_ORIGINS="https://a.test, https://b.test",
    )
    settings = api.load_settings()
    assert settings.analytics.page_size == 2
    assert settings.analytics.default_top_count == 5
    assert settings.analytics.comparison_ratio == 0.5
    assert settings.cors_origins == ["https://a.test", "https://b.test"]

    with TestClient(api.app) as client:
        table = client.get("/api/analytics").json()["table"]
        assert table["total_pages"] == 2
        assert len(table["rows"]) == 2


def test_missing_source_configuration(monkeypatch, snapshot_file):
    api = _load_api(monkeypatch, snapshot_file)
    monkeypatch.delenv("EVDASH_DATA_FILE")
    with pytest.raises(RuntimeError):
        api.load_settings()


def test_filters_with_one_bad_value_change_nothing(monkeypatch, snapshot_file):
    api = _load_api(monkeypatch, snapshot_file)
    loads = []
    real_load = api.load_snapshot

    def counting_load(path):
        loads.append(path)
        return real_load(path)

    monkeypatch.setattr(api, "load_snapshot", counting_load)

    with TestClient(api.app) as client:
        before = client.get("/api/analytics").json()
        loads.clear()

        response = client.post(
            "/api/filters", params={"time_period": "yearly", "group_by": "bogus"}
        )
        assert response.status_code == 422
        assert "group_by" in response.json()["detail"]

        after = client.get("/api/analytics").json()
        assert after["filter_state"] == before["filter_state"]
        assert after["generation"] == before["generation"]
        assert after["series"] == before["series"]
        assert loads == []

        payload = client.post("/api/filters", params={"time_period": "yearly"}).json()
        assert payload["filter_state"]["time_period"] == "yearly"
        assert payload["generation"] == before["generation"] + 1
        assert [p["label"] for p in payload["series"]] == ["2023", "2024"]
        assert len(loads) == 1


def test_filters_reject_bad_top_count_before_other_changes(client):
    before = client.get("/api/analytics").json()
    response = client.post("/api/filters", params={"metric": "revenue", "top_count": "abc"})
    assert response.status_code == 422
    assert client.get("/api/analytics").json()["filter_state"] == before["filter_state"]
