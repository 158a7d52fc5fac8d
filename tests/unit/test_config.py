"""
Unit tests for engine configuration loading.
"""

import logging

import pytest

from ocp.core.config import EngineConfig, load_config
from ocp.core.errors import InvalidAuctionParametersError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in EngineConfig.model_fields:
        monkeypatch.delenv(f"OCP_{name.upper()}", raising=False)


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()
        assert config.min_fraction_percent == 1
        assert config.max_bids_per_auction == 256
        assert config.enforce_schedule is False
        assert config.log_level_value == logging.INFO

    def test_log_level_normalized(self):
        assert EngineConfig(log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level(self):
        with pytest.raises(ValueError):
            EngineConfig(log_level="chatty")

    def test_fraction_bounds(self):
        with pytest.raises(ValueError):
            EngineConfig(min_fraction_percent=101)


class TestLoadConfig:
    def test_no_overrides(self):
        assert load_config() == EngineConfig()

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("OCP_MAX_BIDS_PER_AUCTION", "16")
        monkeypatch.setenv("OCP_ENFORCE_SCHEDULE", "true")
        config = load_config()
        assert config.max_bids_per_auction == 16
        assert config.enforce_schedule is True

    def test_env_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("OCP_MIN_FRACTION_PERCENT=5\nOCP_LOG_LEVEL=warning\n")
        config = load_config(str(env_file))
        # load_dotenv writes into os.environ; let monkeypatch undo it
        monkeypatch.delenv("OCP_MIN_FRACTION_PERCENT")
        monkeypatch.delenv("OCP_LOG_LEVEL")
        assert config.min_fraction_percent == 5
        assert config.log_level == "WARNING"

    def test_environment_wins_over_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("OCP_MAX_BIDS_PER_AUCTION=8\n")
        monkeypatch.setenv("OCP_MAX_BIDS_PER_AUCTION", "32")
        assert load_config(str(env_file)).max_bids_per_auction == 32

    def test_invalid_value(self, monkeypatch):
        monkeypatch.setenv("OCP_MAX_BIDS_PER_AUCTION", "0")
        with pytest.raises(InvalidAuctionParametersError):
            load_config()
