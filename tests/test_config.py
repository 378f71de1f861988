"""
Tests for configuration loading.

Run with: pytest tests/test_config.py -v
"""

import sys
from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotion.core.config import (
    CONFIG_DIR,
    DotionConfig,
    EnvSettings,
    check_config,
    get_config,
    load_yaml_config,
)
from dotion.core.errors import ConfigurationError


ENV_VARS = [
    "OPENAI_API_KEY",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_REDIRECT_URI",
    "GOOGLE_CALENDAR_ID",
    "GOOGLE_TIMEZONE",
    "DOTION_ENV",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestYamlConfig:
    """Test structured configuration."""

    def test_missing_file_uses_defaults(self, tmp_path):
        config = get_config(tmp_path / "missing.yaml")

        assert config == DotionConfig()
        assert config.server.port == 3000
        assert config.calendar.window_days == 7
        assert config.desktop.enabled is False

    def test_partial_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("server:\n  port: 8080\ncalendar:\n  week_start: sunday\n", encoding="utf-8")

        config = get_config(path)

        assert config.server.port == 8080
        assert config.server.host == "127.0.0.1"
        assert config.calendar.week_start == "sunday"

    def test_invalid_values_rejected(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("calendar:\n  week_start: friday\n", encoding="utf-8")

        with pytest.raises(PydanticValidationError):
            get_config(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("", encoding="utf-8")

        assert load_yaml_config(path) == {}

    def test_shipped_settings_load(self):
        config = get_config(CONFIG_DIR / "settings.yaml")
        assert config.general.name == "Dotion"


class TestEnvSettings:
    """Test environment settings."""

    def test_reads_aliases(self, clean_env):
        clean_env.setenv("GOOGLE_CALENDAR_ID", "team@group.calendar.google.com")
        clean_env.setenv("GOOGLE_TIMEZONE", "Europe/Berlin")
        clean_env.setenv("DOTION_ENV", "production")

        settings = EnvSettings(_env_file=None)

        assert settings.require_calendar_id() == "team@group.calendar.google.com"
        assert settings.google_timezone == "Europe/Berlin"
        assert settings.is_production

    def test_blank_timezone_is_utc(self, clean_env):
        clean_env.setenv("GOOGLE_TIMEZONE", "  ")
        assert EnvSettings(_env_file=None).google_timezone == "UTC"

    def test_missing_calendar_id(self, clean_env):
        settings = EnvSettings(_env_file=None)

        with pytest.raises(ConfigurationError) as exc_info:
            settings.require_calendar_id()
        assert exc_info.value.config_key == "calendar_id"
        assert "GOOGLE_CALENDAR_ID" in exc_info.value.message

    def test_check_config(self, clean_env):
        clean_env.setenv("OPENAI_API_KEY", "sk-test")
        clean_env.setenv("GOOGLE_CALENDAR_ID", "primary")

        missing = check_config(EnvSettings(_env_file=None))

        assert missing == ["GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "GOOGLE_REDIRECT_URI"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
