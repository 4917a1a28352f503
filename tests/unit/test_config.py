"""
Unit tests for ListenerConfig, LogConfig and CLI option merging.
"""

import dataclasses
import logging

import pytest

from sysrelay.__main__ import build_configs, build_parser
from sysrelay.config import ListenerConfig, UnknownCommandPolicy
from sysrelay.logconfig import CommandLog, LogConfig


class TestListenerConfig:
    def test_defaults(self):
        config = ListenerConfig()

        assert config.host == "127.0.0.1"
        assert config.port == 9734
        assert config.backlog == 10
        assert config.read_timeout == 10.0
        assert config.max_command_length == 256
        assert config.unknown_policy is UnknownCommandPolicy.CLOSE
        assert config.isolation == "process"
        config.validate()

    def test_frozen(self):
        config = ListenerConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.port = 80

    def test_from_env(self):
        config = ListenerConfig.from_env({
            "SYSRELAY_HOST": "0.0.0.0",
            "SYSRELAY_PORT": "9000",
            "SYSRELAY_BACKLOG": "64",
            "SYSRELAY_READ_TIMEOUT": "2.5",
            "SYSRELAY_MAX_COMMAND_LENGTH": "128",
            "SYSRELAY_UNKNOWN_POLICY": "STATUS",
            "SYSRELAY_ISOLATION": "thread",
        })

        assert config.host == "0.0.0.0"
        assert config.port == 9000
        assert config.backlog == 64
        assert config.read_timeout == 2.5
        assert config.max_command_length == 128
        assert config.unknown_policy is UnknownCommandPolicy.STATUS
        assert config.isolation == "thread"

    def test_from_env_uses_defaults(self):
        assert ListenerConfig.from_env({}) == ListenerConfig()

    def test_from_env_bad_number(self):
        with pytest.raises(ValueError):
            ListenerConfig.from_env({"SYSRELAY_PORT": "http"})

    @pytest.mark.parametrize("overrides", [
        {"port": -1},
        {"port": 65536},
        {"backlog": 0},
        {"read_timeout": 0},
        {"accept_poll_interval": -1.0},
        {"max_command_length": 1},
        {"max_field_length": 0},
        {"max_body_length": 1},
        {"buffer_size": 16},
        {"isolation": "fiber"},
        {"unknown_policy": "close"},
    ])
    def test_validate_rejects(self, overrides):
        with pytest.raises(ValueError):
            ListenerConfig(**overrides).validate()

    def test_port_zero_is_valid(self):
        ListenerConfig(port=0).validate()


class TestUnknownCommandPolicy:
    @pytest.mark.parametrize("value, expected", [
        ("close", UnknownCommandPolicy.CLOSE),
        ("STATUS", UnknownCommandPolicy.STATUS),
        (" status ", UnknownCommandPolicy.STATUS),
    ])
    def test_parse(self, value, expected):
        assert UnknownCommandPolicy.parse(value) is expected

    def test_parse_invalid(self):
        with pytest.raises(ValueError, match="choose from"):
            UnknownCommandPolicy.parse("reply")


class TestLogConfig:
    def test_defaults(self):
        config = LogConfig()

        assert config.effective_level == logging.INFO
        assert config.log_format == "text"

    def test_debug_forces_debug_level(self):
        assert LogConfig(level="ERROR", debug=True).effective_level == logging.DEBUG

    def test_from_env(self):
        config = LogConfig.from_env({
            "SYSRELAY_LOG_LEVEL": "warning",
            "SYSRELAY_DEBUG": "yes",
            "SYSRELAY_LOG_FORMAT": "JSON",
        })

        assert config == LogConfig(level="WARNING", debug=True, log_format="json")

    @pytest.mark.parametrize("kwargs", [{"level": "LOUD"}, {"log_format": "xml"}])
    def test_validate_rejects(self, kwargs):
        with pytest.raises(ValueError):
            LogConfig(**kwargs).validate()


class TestCommandLog:
    def test_to_text(self):
        record = CommandLog(
            connection_id="abcd1234",
            client_ip="10.0.0.1",
            client_port=5555,
            command="SYSINFO",
            outcome="ok",
            bytes_written=120,
            duration_ms=1.234,
            timestamp="01/Jan/2026:00:00:00 +0000",
        )

        assert record.to_text() == (
            "10.0.0.1:5555 [01/Jan/2026:00:00:00 +0000] SYSINFO ok 120B 1.23ms"
        )

    def test_to_dict(self):
        record = CommandLog("abcd1234", "10.0.0.1", 5555, outcome="oversized", duration_ms=0.126)

        data = record.to_dict()

        assert data["connection_id"] == "abcd1234"
        assert data["command"] == "-"
        assert data["outcome"] == "oversized"
        assert data["duration_ms"] == 0.13


class TestCommandLine:
    """CLI arguments override the environment, which overrides defaults."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in (
            "SYSRELAY_HOST", "SYSRELAY_PORT", "SYSRELAY_BACKLOG", "SYSRELAY_READ_TIMEOUT",
            "SYSRELAY_MAX_COMMAND_LENGTH", "SYSRELAY_UNKNOWN_POLICY", "SYSRELAY_ISOLATION",
            "SYSRELAY_LOG_LEVEL", "SYSRELAY_DEBUG", "SYSRELAY_LOG_FORMAT",
        ):
            monkeypatch.delenv(name, raising=False)

    def test_no_arguments(self):
        config, log_config = build_configs(build_parser().parse_args([]))

        assert config == ListenerConfig()
        assert log_config == LogConfig()

    def test_arguments(self):
        args = build_parser().parse_args([
            "--host", "0.0.0.0",
            "--port", "9001",
            "--timeout", "3",
            "--max-command-length", "64",
            "--unknown-policy", "status",
            "--isolation", "thread",
            "--debug",
            "--log-format", "json",
        ])

        config, log_config = build_configs(args)

        assert config.host == "0.0.0.0"
        assert config.port == 9001
        assert config.read_timeout == 3.0
        assert config.max_command_length == 64
        assert config.unknown_policy is UnknownCommandPolicy.STATUS
        assert config.isolation == "thread"
        assert log_config.debug is True
        assert log_config.log_format == "json"

    def test_cli_beats_environment(self, monkeypatch):
        monkeypatch.setenv("SYSRELAY_PORT", "9100")
        monkeypatch.setenv("SYSRELAY_ISOLATION", "thread")

        config, _ = build_configs(build_parser().parse_args(["--port", "9200"]))

        assert config.port == 9200
        assert config.isolation == "thread"

    def test_invalid_value_raises(self):
        with pytest.raises(ValueError):
            build_configs(build_parser().parse_args(["--port", "70000"]))
