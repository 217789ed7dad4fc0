"""
Unit tests for ServerConfig.
"""

import pytest
from calcserver import ServerConfig


class TestDefaults:

    def test_defaults(self):
        config = ServerConfig()

        assert config.host == "127.0.0.1"
        assert config.port == 6789
        assert config.queue_capacity == 1024
        assert config.overflow_policy == "reject"
        assert config.shutdown_policy == "drain"
        assert config.max_clients is None
        assert config.max_outstanding == 0
        assert config.idle_timeout is None

    def test_defaults_validate(self):
        ServerConfig().validate()


class TestValidate:
    """Tests for fail-fast validation."""

    @pytest.mark.parametrize("overrides", [
        {"port": -1},
        {"port": 65536},
        {"backlog": 0},
        {"buffer_size": 0},
        {"max_line_length": -1},
        {"idle_timeout": 0},
        {"queue_capacity": -1},
        {"overflow_policy": "drop"},
        {"shutdown_policy": "later"},
        {"max_clients": 0},
        {"max_outstanding": -1},
        {"drain_timeout": 0},
        {"shutdown_timeout": -1},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            ServerConfig(**overrides).validate()

    def test_port_zero_allowed(self):
        """Test port 0 (OS picks) is valid."""
        ServerConfig(port=0).validate()

    def test_unbounded_queue_allowed(self):
        ServerConfig(queue_capacity=0).validate()


class TestFromEnv:
    """Tests for environment variable configuration."""

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("CALC_HOST", "0.0.0.0")
        monkeypatch.setenv("CALC_PORT", "7000")
        monkeypatch.setenv("CALC_QUEUE_CAPACITY", "16")
        monkeypatch.setenv("CALC_OVERFLOW_POLICY", "block")
        monkeypatch.setenv("CALC_SHUTDOWN_POLICY", "discard")
        monkeypatch.setenv("CALC_MAX_CLIENTS", "5")
        monkeypatch.setenv("CALC_IDLE_TIMEOUT", "30")
        monkeypatch.setenv("CALC_LOG_LEVEL", "DEBUG")

        config = ServerConfig.from_env()

        assert config.host == "0.0.0.0"
        assert config.port == 7000
        assert config.queue_capacity == 16
        assert config.overflow_policy == "block"
        assert config.shutdown_policy == "discard"
        assert config.max_clients == 5
        assert config.idle_timeout == 30.0
        assert config.log_level == "DEBUG"

    def test_missing_variables_use_defaults(self, monkeypatch):
        for name in ("CALC_HOST", "CALC_PORT", "CALC_MAX_CLIENTS", "CALC_IDLE_TIMEOUT"):
            monkeypatch.delenv(name, raising=False)

        config = ServerConfig.from_env()

        assert config.host == "127.0.0.1"
        assert config.port == 6789
        assert config.max_clients is None
        assert config.idle_timeout is None
