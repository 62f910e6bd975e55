"""
Unit tests for ServerConfig.
"""

import pytest

from onfinished import HTTPServer, ServerConfig


class TestDefaults:

    def test_defaults_are_valid(self):
        config = ServerConfig()
        config.validate()

        assert config.host == "127.0.0.1"
        assert config.port == 8080
        assert config.keep_alive is True
        assert config.max_listeners == 10

    def test_port_zero_allowed(self):
        ServerConfig(port=0).validate()


class TestValidate:

    @pytest.mark.parametrize("overrides", [
        {"port": -1},
        {"port": 70000},
        {"backlog": 0},
        {"keep_alive_timeout": 0},
        {"max_header_size": 10},
        {"max_request_size": -1},
        {"max_listeners": -5},
        {"log_level": "LOUD"},
        {"log_format": "xml"},
    ])
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValueError):
            ServerConfig(**overrides).validate()

    def test_server_validates_at_construction(self):
        with pytest.raises(ValueError):
            HTTPServer(lambda request, response: None, ServerConfig(port=-1))


class TestFromEnv:

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("HTTP_HOST", "0.0.0.0")
        monkeypatch.setenv("HTTP_PORT", "3000")
        monkeypatch.setenv("HTTP_KEEP_ALIVE", "false")
        monkeypatch.setenv("HTTP_MAX_LISTENERS", "0")
        monkeypatch.setenv("HTTP_LOG_LEVEL", "debug")
        monkeypatch.setenv("HTTP_LOG_FORMAT", "JSON")

        config = ServerConfig.from_env()

        assert config.host == "0.0.0.0"
        assert config.port == 3000
        assert config.keep_alive is False
        assert config.max_listeners == 0
        assert config.log_level == "DEBUG"
        assert config.log_format == "json"
        config.validate()

    def test_defaults_without_environment(self, monkeypatch):
        for name in ("HTTP_HOST", "HTTP_PORT", "HTTP_KEEP_ALIVE", "HTTP_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

        config = ServerConfig.from_env()

        assert config.host == "127.0.0.1"
        assert config.port == 8080
        assert config.keep_alive is True
