import json

import pytest

from evdash_analytics import main as cli


def test_cli_writes_views_and_csv(tmp_path, snapshot_file):
    output = tmp_path / "out" / "views.json"
    csv_path = tmp_path / "out" / "rows.csv"
    cli.main(
        [
            "--file", str(snapshot_file),
            "--metric", "revenue",
            "--sort-by", "sessions",
            "--top", "1",
            "--output", str(output),
            "--csv", str(csv_path),
        ]
    )

    payload = json.loads(output.read_text(encoding="utf-8"))
    assert payload["filter_state"]["metric"] == "revenue"
    assert payload["top_performers"] == [{"name": "Plaza North", "value": 20.0}]
    assert payload["table"]["total_rows"] == 3
    assert "elapsed" in payload

    lines = csv_path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "Name,Location,Date,Revenue ($),Sessions,Utilization (%),Users"
    assert lines[1].startswith("Plaza North,Downtown,")
    assert len(lines) == 4


def test_cli_prints_to_stdout(capsys, snapshot_file):
    cli.main(
        [
            "--file", str(snapshot_file),
            "--search", "downtown",
            "--sort-field", "name",
            "--ascending",
            "--page-size", "1",
            "--page", "2",
        ]
    )
    payload = json.loads(capsys.readouterr().out)
    table = payload["table"]
    assert table["total_rows"] == 2
    assert table["total_pages"] == 2
    assert [r["name"] for r in table["rows"]] == ["Plaza North"]


def test_cli_custom_period_without_dates(capsys, snapshot_file):
    cli.main(["--file", str(snapshot_file), "--period", "custom", "--from", "2024-01-01"])
    payload = json.loads(capsys.readouterr().out)
    assert payload["validation_error"]
    assert payload["series"] == []


def test_cli_rejects_unknown_metric(snapshot_file):
    with pytest.raises(SystemExit) as exc:
        cli.main(["--file", str(snapshot_file), "--metric", "watts"])
    assert exc.value.code == 2


def test_cli_requires_a_source(monkeypatch):
    monkeypatch.delenv("EVDASH_API_URL", raising=False)
    with pytest.raises(SystemExit):
        cli.main([])
