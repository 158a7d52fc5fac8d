"""
Unit tests for the command line interface.
"""

import json

import pytest
from click.testing import CliRunner

from ocp.cli.main import cli, run_scenario
from ocp.utils.logger import setup_logging


SCENARIO = {
    "inventory": 100,
    "bids": [
        {"name": "alice", "rate": 10, "quantity": 60},
        {"name": "bob", "rate": 8, "quantity": 50},
        {"name": "carol", "rate": 5, "quantity": 40},
    ],
}


@pytest.fixture(autouse=True)
def quiet(monkeypatch):
    """Keep log lines out of parsed output and rebind the handler afterwards."""
    monkeypatch.setenv("OCP_LOG_LEVEL", "ERROR")
    yield
    setup_logging()


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def scenario_file(tmp_path):
    path = tmp_path / "scenario.json"
    path.write_text(json.dumps(SCENARIO))
    return str(path)


class TestRunScenario:
    def test_result(self):
        result = run_scenario(SCENARIO)
        assert result["clearing_rate"] == 8
        assert result["sold"] == 100
        assert result["unsold"] == 0
        assert result["proceeds"] == 800
        assert [(b["name"], b["filled"], b["paid"], b["refund"]) for b in result["bids"]] == [
            ("alice", 60, 480, 120),
            ("bob", 40, 320, 80),
            ("carol", 0, 0, 200),
        ]

    def test_default_names(self):
        result = run_scenario({"inventory": 5, "bids": [{"rate": 1, "quantity": 1}]})
        assert result["bids"][0]["name"] == "bidder1"
        assert result["unsold"] == 4


class TestCommands:
    def test_simulate_json(self, runner, scenario_file):
        result = runner.invoke(cli, ["simulate", scenario_file, "--json"])
        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["clearing_rate"] == 8

    def test_simulate_table(self, runner, scenario_file):
        result = runner.invoke(cli, ["simulate", scenario_file])
        assert result.exit_code == 0, result.output
        assert "Clearing rate: 8" in result.output
        assert "carol" in result.output

    def test_sort(self, runner):
        result = runner.invoke(cli, ["sort", "3", "9", "5"])
        assert result.exit_code == 0, result.output
        assert "9(#1)  5(#2)  3(#0)" in result.output
        assert "3 oblivious comparisons" in result.output

    def test_config(self, runner, monkeypatch):
        monkeypatch.setenv("OCP_MAX_BIDS_PER_AUCTION", "12")
        result = runner.invoke(cli, ["config"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["max_bids_per_auction"] == 12

    def test_missing_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["simulate", str(tmp_path / "nope.json")])
        assert result.exit_code != 0
