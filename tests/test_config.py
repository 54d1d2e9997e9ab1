"""Unit tests for config.py - Configuration management."""

import os
import pytest
from unittest.mock import patch

import config
from config import (
    DatabaseConfig,
    ControllerConfig,
    APIConfig,
    SchemeConfig,
    Config,
    load_config,
    get_config,
    reset_config,
)
from scheme import DEFAULT_GROUPS


class TestDatabaseConfig:
    """Tests for DatabaseConfig class."""

    def test_default_values(self):
        cfg = DatabaseConfig()
        assert cfg.host == "localhost"
        assert cfg.port == 5432
        assert cfg.database == "machine_controller"
        assert cfg.user == "machine_controller"
        assert cfg.password == ""
        assert cfg.min_pool_size == 5
        assert cfg.max_pool_size == 20

    def test_from_env(self):
        env_vars = {
            "DB_HOST": "envhost",
            "DB_PORT": "5434",
            "DB_NAME": "envdb",
            "DB_USER": "envuser",
            "DB_PASSWORD": "envpassword",
            "DB_MIN_POOL_SIZE": "3",
            "DB_MAX_POOL_SIZE": "15",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = DatabaseConfig.from_env()
            assert cfg.host == "envhost"
            assert cfg.port == 5434
            assert cfg.database == "envdb"
            assert cfg.user == "envuser"
            assert cfg.password == "envpassword"
            assert cfg.min_pool_size == 3
            assert cfg.max_pool_size == 15

    def test_from_env_missing_password_raises(self):
        with patch.dict(os.environ, {"DB_PASSWORD": ""}, clear=True):
            with pytest.raises(ValueError) as exc_info:
                DatabaseConfig.from_env()
            assert "DB_PASSWORD" in str(exc_info.value)

    def test_password_not_in_repr(self):
        cfg = DatabaseConfig(password="secret123")
        assert "secret123" not in repr(cfg)


class TestControllerConfig:
    """Tests for ControllerConfig class."""

    def test_custom_values(self):
        cfg = ControllerConfig(
            resync_interval=30,
            max_concurrent_reconciles=10,
            call_timeout=2.5,
            not_found_requeue_after=15,
            deletion_requeue_after=5,
        )
        assert cfg.resync_interval == 30
        assert cfg.max_concurrent_reconciles == 10
        assert cfg.call_timeout == 2.5
        assert cfg.not_found_requeue_after == 15
        assert cfg.deletion_requeue_after == 5

    def test_from_env(self):
        env_vars = {
            "RESYNC_INTERVAL": "45",
            "MAX_CONCURRENT_RECONCILES": "8",
            "BACKOFF_BASE_DELAY": "2",
            "BACKOFF_MAX_DELAY": "600",
            "BACKOFF_JITTER_FACTOR": "0.15",
            "CALL_TIMEOUT": "3",
            "NOT_FOUND_REQUEUE_AFTER": "60",
            "DELETION_REQUEUE_AFTER": "10",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = ControllerConfig.from_env()
            assert cfg.resync_interval == 45
            assert cfg.max_concurrent_reconciles == 8
            assert cfg.backoff_base_delay == 2
            assert cfg.backoff_max_delay == 600
            assert cfg.backoff_jitter_factor == 0.15
            assert cfg.call_timeout == 3
            assert cfg.not_found_requeue_after == 60
            assert cfg.deletion_requeue_after == 10

    def test_from_env_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = ControllerConfig.from_env()
            assert cfg.resync_interval == 300
            assert cfg.max_concurrent_reconciles == 5
            assert cfg.call_timeout == 10

    def test_from_env_invalid_value(self):
        with patch.dict(os.environ, {"CALL_TIMEOUT": "0"}, clear=True):
            with pytest.raises(ValueError):
                ControllerConfig.from_env()


class TestAPIConfig:
    """Tests for APIConfig class."""

    def test_default_values(self):
        cfg = APIConfig()
        assert cfg.host == "0.0.0.0"
        assert cfg.port == 8000
        assert cfg.log_level == "INFO"
        assert cfg.cors_enabled is False
        assert cfg.cors_origins == ["*"]

    def test_from_env(self):
        env_vars = {
            "API_HOST": "127.0.0.1",
            "API_PORT": "3000",
            "LOG_LEVEL": "DEBUG",
            "CORS_ENABLED": "true",
            "CORS_ORIGINS": "http://localhost:3000,https://example.com",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = APIConfig.from_env()
            assert cfg.host == "127.0.0.1"
            assert cfg.port == 3000
            assert cfg.log_level == "DEBUG"
            assert cfg.cors_enabled is True
            assert cfg.cors_origins == ["http://localhost:3000", "https://example.com"]

    def test_from_env_no_cors_origins(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = APIConfig.from_env()
            assert cfg.cors_origins == ["*"]


class TestSchemeConfig:
    """Tests for SchemeConfig class."""

    def test_default_groups(self):
        assert SchemeConfig().groups == DEFAULT_GROUPS

    def test_from_env(self):
        env_vars = {
            "SCHEME_GROUPS": (
                " bootstrap.cluster.x-k8s.io , "
                "infrastructure.cluster.x-k8s.io/DockerMachine,"
            ),
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = SchemeConfig.from_env()
            assert cfg.groups == [
                "bootstrap.cluster.x-k8s.io",
                "infrastructure.cluster.x-k8s.io/DockerMachine",
            ]

    def test_from_env_unset(self):
        with patch.dict(os.environ, {}, clear=True):
            assert SchemeConfig.from_env().groups == DEFAULT_GROUPS


class TestConfig:
    """Tests for main Config class."""

    def test_default(self):
        cfg = Config.default()
        assert isinstance(cfg.database, DatabaseConfig)
        assert isinstance(cfg.controller, ControllerConfig)
        assert isinstance(cfg.api, APIConfig)
        assert isinstance(cfg.scheme, SchemeConfig)

    def test_from_env(self):
        env_vars = {
            "DB_HOST": "testhost",
            "DB_PASSWORD": "testpass",
            "RESYNC_INTERVAL": "30",
            "API_PORT": "9000",
            "SCHEME_GROUPS": "infrastructure.cluster.x-k8s.io",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = Config.from_env()
            assert cfg.database.host == "testhost"
            assert cfg.database.password == "testpass"
            assert cfg.controller.resync_interval == 30
            assert cfg.api.port == 9000
            assert cfg.scheme.groups == ["infrastructure.cluster.x-k8s.io"]


class TestConfigSingleton:
    """Tests for config singleton functions."""

    def setup_method(self):
        reset_config()

    def teardown_method(self):
        reset_config()

    def test_load_config(self):
        with patch.dict(os.environ, {"DB_PASSWORD": "testpass"}, clear=False):
            cfg = load_config()
            assert isinstance(cfg, Config)

    def test_singleton_returns_same_instance(self):
        with patch.dict(os.environ, {"DB_PASSWORD": "testpass"}, clear=False):
            cfg1 = load_config()
            cfg2 = get_config()
            assert cfg1 is cfg2

    def test_reset_config(self):
        with patch.dict(os.environ, {"DB_PASSWORD": "testpass"}, clear=False):
            cfg1 = load_config()
            reset_config()
            assert config.config is None
            cfg2 = load_config()
            assert cfg1 is not cfg2
