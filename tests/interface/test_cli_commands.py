"""Tests for CLI commands: analytics queries, error exit codes, and config show."""

import json
from datetime import timedelta

import pytest
from typer.testing import CliRunner

from kairos.application.analytics.service import LearningAnalyticsService
from kairos.interface.cli import app

runner = CliRunner()

NOW = ["--now", "2026-03-18T12:00:00"]


@pytest.fixture
def cli_service(monkeypatch, make_review, make_session, make_repo):
    reviews = [
        make_review(card, card != "b", timedelta(minutes=20 - i))
        for i, card in enumerate(["a", "b"] * 3)
    ]
    service = LearningAnalyticsService(make_repo(reviews, [make_session("s1", live=True)]))
    monkeypatch.setattr("kairos.interface.cli.build_analytics_service", lambda config: service)
    return service


def test_cli_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "learning analytics" in result.stdout
    assert "velocity" in result.stdout
    assert "session-health" in result.stdout


def test_velocity_command(cli_service):
    result = runner.invoke(app, ["velocity", "u1", "--weeks", "4", *NOW])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert len(data["points"]) == 4
    assert data["points"][-1]["week_start"] == "2026-03-16"


def test_struggling_command(cli_service):
    result = runner.invoke(app, ["struggling", "u1", "--threshold", "0.2", *NOW])
    assert result.exit_code == 0
    assert [c["card_id"] for c in json.loads(result.stdout)] == ["b"]


def test_struggling_by_deck_command(cli_service):
    result = runner.invoke(app, ["struggling", "u1", "--by-deck", *NOW])
    assert result.exit_code == 0
    decks = json.loads(result.stdout)
    assert decks[0]["deck_id"] == "d1"
    assert decks[0]["card_count"] == 2


def test_live_session_health_command(cli_service):
    result = runner.invoke(app, ["session-health", "s1", "--live", *NOW])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["is_live"] is True
    assert data["review_count"] == 6


def test_not_found_exit_code(cli_service):
    result = runner.invoke(app, ["hardest", "no-such-deck", *NOW])
    assert result.exit_code == 2


def test_config_show_command(monkeypatch):
    monkeypatch.setattr("kairos.application.config.CONFIG_FILES", [])
    result = runner.invoke(app, ["--backend", "memory", "config", "show"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["backend"] == "memory"
    assert data["policy"]["mastery_interval_days"] == 21.0


def test_serve_passes_global_options_to_server(monkeypatch, tmp_path):
    from kairos.application.config import resolve_config
    from kairos.application.factory import build_analytics_service
    from kairos.infrastructure.adapters.memory import InMemoryEventRepository

    monkeypatch.setattr("kairos.application.config.CONFIG_FILES", [])
    # setenv then delenv so monkeypatch undoes whatever serve exports
    for key in ("BACKEND", "FIXTURE_PATH", "QUERY_TIMEOUT"):
        monkeypatch.setenv(f"KAIROS_{key}", "")
        monkeypatch.delenv(f"KAIROS_{key}")
    fixture = tmp_path / "events.yaml"
    fixture.write_text("reviews: []\nsessions: []\n", encoding="utf-8")

    served = {}

    def fake_run(target, **kwargs):
        served["target"] = target
        served["service"] = build_analytics_service(resolve_config())

    monkeypatch.setattr("uvicorn.run", fake_run)

    result = runner.invoke(
        app, ["--backend", "memory", "--fixture", str(fixture), "--timeout", "7", "serve"]
    )

    assert result.exit_code == 0
    assert served["target"] == "kairos.server:app"
    assert isinstance(served["service"]._repo, InMemoryEventRepository)
    assert served["service"]._timeout == 7.0
