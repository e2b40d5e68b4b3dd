"""Tests for configuration loading."""

from __future__ import annotations

import pytest

from smartconnect.config import (
    ConfigError,
    SmartConnectConfig,
    config_from_dict,
    load_config,
)


class TestConfigFromDict:
    """Test mapping validation."""

    def test_defaults(self):
        config = config_from_dict({})

        assert config == SmartConnectConfig()
        assert config.no_answer_timeout == 30
        assert config.cleared_display_delay == 2
        assert config.max_reconnect_attempts == 5
        assert config.auto_reject_second_call is True

    def test_none_is_defaults(self):
        assert config_from_dict(None) == SmartConnectConfig()

    def test_values_coerced(self):
        config = config_from_dict(
            {
                "api_url": "https://calls.example.com/api/",
                "websocket_url": "wss://calls.example.com/ws",
                "token": "secret",
                "request_timeout": "5",
                "auto_reject_second_call": "off",
                "default_country_code": "+44",
            }
        )

        assert config.api_url == "https://calls.example.com/api"
        assert config.request_timeout == 5.0
        assert config.auto_reject_second_call is False
        assert config.default_country_code == "44"

    @pytest.mark.parametrize(
        "data",
        [
            {"api_url": "ftp://calls.example.com"},
            {"websocket_url": "http://calls.example.com/ws"},
            {"no_answer_timeout": 0},
            {"max_reconnect_attempts": -1},
            {"unknown_option": True},
            {"reconnect_delay": 10, "max_reconnect_delay": 5},
            ["api_url"],
        ],
    )
    def test_invalid(self, data):
        with pytest.raises(ConfigError):
            config_from_dict(data)


class TestLoadConfig:
    """Test YAML files."""

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "smartconnect.yaml"
        path.write_text(
            "websocket_url: ws://pbx.local:3000/ws\n"
            "no_answer_timeout: 45\n"
            "auto_reject_second_call: false\n",
            encoding="utf-8",
        )

        config = load_config(path)

        assert config.websocket_url == "ws://pbx.local:3000/ws"
        assert config.no_answer_timeout == 45.0
        assert config.auto_reject_second_call is False

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        assert load_config(path) == SmartConnectConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "missing.yaml")

    def test_bad_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("api_url: [unclosed\n", encoding="utf-8")

        with pytest.raises(ConfigError):
            load_config(path)
