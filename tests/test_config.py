"""Tests for YAML settings loading.

Covers:
* load_settings  : settings + secrets files, missing files, bad YAML
* RealtimeSettings : presence limit validation
* get_config / configure_logging
"""
import logging

import pytest
from pydantic import ValidationError

from chatsync import config
from chatsync.config import AppSettings, RealtimeSettings, configure_logging, load_settings
from chatsync.errors import ConfigError


@pytest.fixture
def settings_files(tmp_path):
    settings = tmp_path / "chatsync.settings.yaml"
    secrets = tmp_path / "chatsync.secrets.yaml"
    settings.write_text(
        "api:\n"
        "  base_url: https://chat.example.com\n"
        "  app_id: demo\n"
        "realtime:\n"
        "  broker_url: tcp://localhost:1883\n"
        "  presence_timestamp_max_length: null\n"
        "logging:\n"
        "  level: debug\n",
        encoding="utf-8",
    )
    secrets.write_text("user_token: tok-abc\n", encoding="utf-8")
    return settings, secrets


class TestLoadSettings:
    def test_values_from_files(self, settings_files):
        loaded = load_settings(*settings_files)
        assert loaded.api.base_url == "https://chat.example.com"
        assert loaded.api.app_id == "demo"
        assert loaded.realtime.broker_url == "tcp://localhost:1883"
        assert loaded.realtime.presence_timestamp_max_length is None
        assert loaded.secrets.user_token == "tok-abc"

    def test_missing_files_use_defaults(self, tmp_path):
        loaded = load_settings(tmp_path / "none.yaml", tmp_path / "nope.yaml")
        assert loaded.realtime.presence_timestamp_max_length == 13
        assert loaded.realtime.suppress_self_typing is True
        assert loaded.secrets.user_token is None

    def test_invalid_yaml(self, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text("api: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_settings(bad, tmp_path / "nope.yaml")

    def test_non_mapping_top_level(self, tmp_path):
        bad = tmp_path / "list.yaml"
        bad.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_settings(bad, tmp_path / "nope.yaml")


class TestRealtimeSettings:
    def test_zero_limit_rejected(self):
        with pytest.raises(ValidationError):
            RealtimeSettings(presence_timestamp_max_length=0)

    def test_custom_limit(self):
        assert RealtimeSettings(presence_timestamp_max_length=10).presence_timestamp_max_length == 10


class TestGetConfig:
    def test_cached(self, monkeypatch, settings_files):
        settings, secrets = settings_files
        monkeypatch.setattr(config, "load_settings", lambda: load_settings(settings, secrets))
        first = config.get_config()
        assert config.get_config() is first
        assert first.secrets.user_token == "tok-abc"


class TestConfigureLogging:
    def test_level_applied(self):
        configure_logging(AppSettings(logging={"level": "debug"}))
        assert logging.getLogger("chatsync").level == logging.DEBUG
        assert logging.getLogger("paho").level == logging.WARNING

    def test_unknown_level_ignored(self):
        logging.getLogger("chatsync").setLevel(logging.INFO)
        configure_logging(AppSettings(logging={"level": "loud"}))
        assert logging.getLogger("chatsync").level == logging.INFO
