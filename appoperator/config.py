# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import logging
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Config(BaseSettings):
    """Runtime settings for the application operator.

    Environment variable names are the field names in uppercase with the
    ``APP_OPERATOR_`` prefix, e.g. ``requeue_interval_seconds`` reads from
    ``APP_OPERATOR_REQUEUE_INTERVAL_SECONDS``.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_OPERATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    log_level: str = Field(default="INFO")
    http_host: str = Field(default="0.0.0.0")
    http_port: int = Field(default=8080, ge=1, le=65535)

    # Resource store
    store_type: Literal["kubernetes", "memory"] = Field(default="kubernetes")
    kubeconfig: Optional[str] = Field(default=None)

    # Watched custom resource
    resource_group: str = Field(default="appoperator.io")
    resource_version: str = Field(default="v1")
    resource_plural: str = Field(default="applications")
    resource_kind: str = Field(default="Application")
    finalizer_name: str = Field(default="applications.appoperator.io")
    field_manager: str = Field(default="app-operator")
    reporter: str = Field(default="app-operator-reporter")

    # Scheduling
    requeue_interval_seconds: float = Field(default=300.0, gt=0)
    error_policy: Literal["fixed", "exponential"] = Field(default="fixed")
    error_requeue_seconds: float = Field(default=300.0, gt=0)
    error_backoff_base_seconds: float = Field(default=5.0, gt=0)
    max_concurrent_reconciles: int = Field(default=0, ge=0)
    watch_restart_seconds: float = Field(default=5.0, ge=0)

    # Managed workload
    workload_replicas: int = Field(default=2, ge=1)

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level: {value}")
        return level

    @property
    def api_version(self) -> str:
        return f"{self.resource_group}/{self.resource_version}"


def setup_logging(level: Optional[str] = None):
    """Configure process-wide logging"""
    logging.basicConfig(level=level or settings.log_level, format=LOG_FORMAT)


settings = Config()
