"""Tests for the command-line interface."""

import json
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from click.testing import CliRunner
from rich.console import Console

from parking import cli as cli_module
from parking.cli import cli

CONFIG_PATH = Path(__file__).parent.parent / "config" / "rates.yaml"


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    monkeypatch.setattr(cli_module, "console", Console(width=200))


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def db_args(tmp_path, runner):
    args = ["--db-path", str(tmp_path / "parking.db")]
    assert runner.invoke(cli, args + ["database", "init"]).exit_code == 0
    result = runner.invoke(cli, args + ["rates", "load", "--config", str(CONFIG_PATH)])
    assert result.exit_code == 0
    assert "Loaded 6 rate(s)" in result.output
    return args


def test_stats(runner, db_args):
    result = runner.invoke(cli, db_args + ["database", "stats"])
    assert result.exit_code == 0
    assert "Pricing rules" in result.output


def test_rates_list_and_show(runner, db_args):
    result = runner.invoke(cli, db_args + ["rates", "list"])
    assert result.exit_code == 0
    assert "car-overnight" in result.output

    result = runner.invoke(cli, db_args + ["rates", "show", "car-daily"])
    assert result.exit_code == 0
    assert "car-daily-business" in result.output
    assert "car-weekly" in result.output


def test_fee_json(runner, db_args):
    """Four hour fractions at 5.00 with the first hour at 4.00."""
    result = runner.invoke(
        cli,
        db_args + ["fee", "car-hourly", "--entry", "2026-03-02T10:00", "--exit", "2026-03-02T13:25", "--json"],
    )
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["amount"] == "19.00"
    assert data["applied_rule_ids"] == ["car-hourly-first-hour"]


def test_fee_table(runner, db_args):
    result = runner.invoke(
        cli, db_args + ["fee", "car-daily", "--entry", "2026-03-02T08:00", "--exit", "2026-03-02T19:30"]
    )
    assert result.exit_code == 0
    assert "40.00" in result.output


def test_fee_unknown_rate(runner, db_args):
    result = runner.invoke(
        cli, db_args + ["fee", "bike", "--entry", "2026-03-02T10:00", "--exit", "2026-03-02T11:00"]
    )
    assert result.exit_code == 1
    assert "Error" in result.output


def test_fee_exit_before_entry(runner, db_args):
    result = runner.invoke(
        cli, db_args + ["fee", "car-hourly", "--entry", "2026-03-02T10:00", "--exit", "2026-03-02T09:00"]
    )
    assert result.exit_code == 1
    assert "before entry" in result.output


def test_preview(runner, db_args, tmp_path):
    """A flat doubling ahead of the first hour rule."""
    rule_file = tmp_path / "candidate.yaml"
    rule_file.write_text(
        "- id: double\n"
        "  rule_type: time_range\n"
        "  adjustment: {type: multiplier, value: 2}\n"
    )
    result = runner.invoke(
        cli,
        db_args
        + [
            "preview",
            "car-hourly",
            "--rule",
            str(rule_file),
            "--sample",
            "2026-03-02T10:00/2026-03-02T12:00",
        ],
    )
    assert result.exit_code == 0
    assert "Total difference: +5.00" in result.output


def test_checkout_and_list(runner, db_args):
    entry = (datetime.now() - timedelta(hours=2)).strftime("%Y-%m-%dT%H:%M")
    result = runner.invoke(cli, db_args + ["checkout", "abc1234", "car-hourly", "--entry", entry])
    assert result.exit_code == 0
    assert "Recorded ABC1234" in result.output

    result = runner.invoke(cli, db_args + ["checkouts", "list"])
    assert result.exit_code == 0
    assert "ABC1234" in result.output


def test_checkouts_list_empty(runner, db_args):
    result = runner.invoke(cli, db_args + ["checkouts", "list"])
    assert "No check-outs found" in result.output


def test_pull_without_credentials(runner, db_args, monkeypatch):
    monkeypatch.delenv("PARKING_REST_URL", raising=False)
    result = runner.invoke(cli, db_args + ["rates", "pull"])
    assert "PARKING_REST_URL" in result.output


def test_preview_unknown_rule_type(runner, db_args, tmp_path):
    rule_file = tmp_path / "candidate.yaml"
    rule_file.write_text("- rule_type: happy_hour\n  adjustment: {type: multiplier, value: 2}\n")
    result = runner.invoke(
        cli,
        db_args
        + [
            "preview",
            "car-hourly",
            "--rule",
            str(rule_file),
            "--sample",
            "2026-03-02T10:00/2026-03-02T12:00",
        ],
    )
    assert result.exit_code == 1
    assert "Error: Unknown rule type" in result.output
