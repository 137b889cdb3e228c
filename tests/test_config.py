"""Tests for configuration loading and parsing."""

import json

import pytest

from prompttrace import config as settings
from prompttrace.modes import ExecutionMode


class TestLoadConfig:
    def test_defaults_without_file(self, home):
        config = settings.load_config()
        assert config["max_size_mb"] == 10
        assert config["kill_timeout"] == 3.0
        assert (config["rows"], config["cols"]) == (24, 80)
        assert config["output_dir"] == str(home / "output")

    def test_saved_values_override_defaults(self, home):
        settings.save_config({"max_size_mb": 2, "output_dir": "/tmp/captures"})
        config = settings.load_config()
        assert config["max_size_mb"] == 2
        assert config["output_dir"] == "/tmp/captures"
        assert config["retention_days"] == 30

    def test_unknown_keys_are_ignored(self, home):
        settings.save_config({"api_key": "secret"})
        assert "api_key" not in settings.load_config()

    def test_corrupt_file_falls_back_to_defaults(self, home, caplog):
        home.mkdir(parents=True)
        settings.config_file().write_text("{broken")
        config = settings.load_config()
        assert config["max_size_mb"] == 10
        assert "Ignoring unreadable config" in caplog.text

    def test_non_object_file_is_ignored(self, home):
        home.mkdir(parents=True)
        settings.config_file().write_text(json.dumps([1, 2]))
        assert settings.load_config()["max_size_mb"] == 10


class TestSetValue:
    @pytest.mark.parametrize("key,raw,expected", [
        ("max_size_mb", "2.5", 2.5),
        ("kill_timeout", "1", 1.0),
        ("cols", "120", 120),
        ("retention_days", "7", 7),
        ("strip_ansi", "yes", True),
        ("strip_ansi", "Off", False),
        ("terminal_commands", "claude, aider ,,", ["claude", "aider"]),
    ])
    def test_parses_values(self, key, raw, expected):
        config = {}
        assert settings.set_value(config, key, raw) == expected
        assert config[key] == expected

    @pytest.mark.parametrize("key,raw,message", [
        ("nope", "1", "Invalid key"),
        ("cols", "wide", "must be an integer"),
        ("rows", "0", "must be positive"),
        ("max_size_mb", "big", "must be a number"),
        ("kill_timeout", "-1", "must be positive"),
        ("strip_ansi", "maybe", "use true or false"),
    ])
    def test_rejects_bad_values(self, key, raw, message):
        with pytest.raises(ValueError, match=message):
            settings.set_value({}, key, raw)


class TestDerivedValues:
    def test_command_modes(self):
        modes = settings.command_modes({"terminal_commands": ["claude", "aider"]})
        assert modes == {"claude": ExecutionMode.PTY_DIRECT, "aider": ExecutionMode.PTY_DIRECT}

    def test_max_output_bytes(self):
        assert settings.max_output_bytes({"max_size_mb": 1}) == 1024 * 1024
        assert settings.max_output_bytes({"max_size_mb": 0.5}) == 512 * 1024

    def test_home_override(self, home):
        assert settings.home_dir() == home
        assert settings.config_file() == home / "config.json"
