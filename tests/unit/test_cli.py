"""
Unit tests for the operational CLI.
"""

import json

import pytest
from typer.testing import CliRunner

from behavior_delivery.cli import app
from behavior_delivery.coordinator import get_settings

runner = CliRunner()


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_templates_command():
    result = runner.invoke(app, ["templates"])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["total_available"] == 3


def test_settings_command(monkeypatch):
    monkeypatch.setenv("BDE_ENGINE_ID", "cli-engine")
    result = runner.invoke(app, ["settings"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["engine_id"] == "cli-engine"


def test_deliver_command(tmp_path, make_request):
    path = tmp_path / "requests.ndjson"
    lines = [
        json.dumps(make_request(target_type="system")),
        json.dumps(make_request(target_type="interface", delivery_method="immediate")),
    ]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    result = runner.invoke(
        app, ["deliver", str(path), "--max-retries", "20", "--interval", "0.01", "--timeout", "5"]
    )

    assert result.exit_code == 0
    rows = [json.loads(line) for line in result.stdout.splitlines() if line.startswith("{")]
    assert len(rows) == 2
    assert all(r["status"] in ("delivered", "failed") for r in rows)


def test_deliver_reports_rejected_lines(tmp_path, make_request):
    path = tmp_path / "requests.ndjson"
    path.write_text(
        json.dumps(make_request(target_type="system")) + "\n" + json.dumps({"output_type": "action"}) + "\n",
        encoding="utf-8",
    )

    result = runner.invoke(app, ["deliver", str(path), "--interval", "0.01", "--max-retries", "20"])

    assert result.exit_code == 1
    rows = [json.loads(line) for line in result.stdout.splitlines() if line.startswith("{")]
    assert rows[0]["line"] == 2
    assert "error" in rows[0]
