import logging

import pytest
from pydantic import ValidationError

from appoperator.config import Config, setup_logging


class TestConfig:
    def test_defaults(self, monkeypatch):
        for name in ("APP_OPERATOR_LOG_LEVEL", "APP_OPERATOR_ERROR_POLICY", "APP_OPERATOR_STORE_TYPE"):
            monkeypatch.delenv(name, raising=False)

        config = Config(_env_file=None)

        assert config.api_version == "appoperator.io/v1"
        assert config.requeue_interval_seconds == 300
        assert config.error_requeue_seconds == 300
        assert config.error_policy == "fixed"
        assert config.store_type == "kubernetes"
        assert config.workload_replicas == 2

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("APP_OPERATOR_RESOURCE_GROUP", "example.com")
        monkeypatch.setenv("APP_OPERATOR_ERROR_POLICY", "exponential")
        monkeypatch.setenv("APP_OPERATOR_LOG_LEVEL", "debug")

        config = Config(_env_file=None)

        assert config.api_version == "example.com/v1"
        assert config.error_policy == "exponential"
        assert config.log_level == "DEBUG"

    def test_rejects_unknown_log_level(self):
        with pytest.raises(ValidationError):
            Config(_env_file=None, log_level="chatty")

    def test_rejects_unknown_store(self):
        with pytest.raises(ValidationError):
            Config(_env_file=None, store_type="etcd")

    def test_setup_logging(self, monkeypatch):
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

        setup_logging("WARNING")

        assert calls[0]["level"] == "WARNING"
        assert "%(levelname)s" in calls[0]["format"]
