from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from appoperator.app import create_app
from appoperator.config import Config
from appoperator.operator import Operator


@pytest.fixture
def operator(store):
    return Operator(store, Config(reporter="view-reporter"))


@pytest.fixture
def http(operator):
    with TestClient(create_app(operator)) as client:
        yield client


class TestMainViews:
    """HTTP endpoints served next to the controller"""

    def test_health(self, http):
        response = http.get("/health")

        assert response.status_code == 200
        assert response.json() == "healthy"

    def test_index_returns_diagnostics(self, http):
        response = http.get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["reporter"] == "view-reporter"
        assert datetime.fromisoformat(body["last_event"]) <= datetime.now(timezone.utc)

    def test_metrics_exposition(self, http, operator):
        operator.context.metrics.reconciliations.inc()

        response = http.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "app_operator_reconciliations_total 1.0" in response.text
        assert "app_operator_reconcile_duration_seconds_bucket" in response.text
