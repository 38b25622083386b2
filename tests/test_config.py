"""Tests for settings and energy configuration loading."""

import json

import pytest
from pydantic import ValidationError

from focusbank.config import EnergyConfig, PriorityWeights, load_settings
from focusbank.errors import ConfigError

ENV_VARS = (
    "FOCUSBANK_DB",
    "FOCUSBANK_SESSION_URL",
    "FOCUSBANK_USER_ID",
    "FOCUSBANK_HOST",
    "FOCUSBANK_PORT",
    "FOCUSBANK_RETAIN_STOPPED",
    "FOCUSBANK_ENERGY_CONFIG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    # Placeholder first so teardown also removes anything load_dotenv sets
    for name in ENV_VARS:
        monkeypatch.setenv(name, "placeholder")
        monkeypatch.delenv(name)
    monkeypatch.setenv("FOCUSBANK_ENERGY_CONFIG", str(tmp_path / "missing.json"))


class TestEnergyConfig:
    def test_defaults(self):
        config = EnergyConfig()
        assert config.priority_weights.for_priority("high") == 30
        assert config.base_completion_reward == 25
        assert config.completion_rewards.for_priority("urgent") == 75
        assert config.focus_session_reward == 10
        assert config.daily_expenditure_soft_limit == 160
        assert config.daily_expenditure_hard_limit == 200

    def test_unknown_priority_weight(self):
        assert PriorityWeights().for_priority("later") == 15
        assert PriorityWeights().for_priority(None) == 15

    def test_hard_limit_below_soft_is_rejected(self):
        with pytest.raises(ValidationError):
            EnergyConfig(daily_expenditure_soft_limit=100, daily_expenditure_hard_limit=50)

    def test_initial_above_max_is_rejected(self):
        with pytest.raises(ValidationError):
            EnergyConfig(initial_energy=300, max_energy=200)

    def test_unknown_column_modifier(self):
        assert EnergyConfig().column_modifier("review") == 0


class TestLoadSettings:
    def test_defaults_without_env(self, tmp_path):
        settings = load_settings(env_file=tmp_path / ".env")
        assert settings.session_url is None
        assert settings.retain_stopped is True

    def test_env_file_and_variables(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "FOCUSBANK_SESSION_URL=http://localhost:3000/\n"
            "FOCUSBANK_USER_ID=user-1\n"
            "FOCUSBANK_PORT=9000\n"
            "FOCUSBANK_RETAIN_STOPPED=false\n"
        )
        settings = load_settings(env_file=env_file)
        assert settings.session_url == "http://localhost:3000"
        assert settings.user_id == "user-1"
        assert settings.port == 9000
        assert settings.retain_stopped is False

    def test_energy_config_file(self, tmp_path, monkeypatch):
        path = tmp_path / "energy.json"
        path.write_text(json.dumps({"base_completion_reward": 40, "priority_weights": {"urgent": 80}}))
        monkeypatch.setenv("FOCUSBANK_ENERGY_CONFIG", str(path))
        settings = load_settings(env_file=tmp_path / ".env")
        assert settings.energy.base_completion_reward == 40
        assert settings.energy.priority_weights.urgent == 80
        assert settings.energy.priority_weights.low == 5

    def test_invalid_energy_config_raises(self, tmp_path, monkeypatch):
        path = tmp_path / "energy.json"
        path.write_text(json.dumps({"recommendation_reserve": 2}))
        monkeypatch.setenv("FOCUSBANK_ENERGY_CONFIG", str(path))
        with pytest.raises(ConfigError):
            load_settings(env_file=tmp_path / ".env")

    def test_invalid_port_raises(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FOCUSBANK_PORT", "not-a-port")
        with pytest.raises(ConfigError):
            load_settings(env_file=tmp_path / ".env")
