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

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

RECONCILE_DURATION_BUCKETS = (0.01, 0.1, 0.25, 0.5, 1.0, 5.0, 15.0, 60.0)


class Metrics:
    """Prometheus metrics for the controller, registered on a registry owned by this instance"""

    def __init__(self, registry: Optional[CollectorRegistry] = None, prefix: str = "app_operator"):
        self.registry = registry or CollectorRegistry()
        self.reconciliations = Counter(
            f"{prefix}_reconciliations",
            "reconciliations",
            registry=self.registry,
        )
        self.failures = Counter(
            f"{prefix}_reconciliation_errors",
            "reconciliation errors",
            registry=self.registry,
        )
        self.reconcile_duration = Histogram(
            f"{prefix}_reconcile_duration_seconds",
            "The duration of reconcile to complete in seconds",
            buckets=RECONCILE_DURATION_BUCKETS,
            registry=self.registry,
        )

    def render(self) -> bytes:
        """Text exposition of every sample"""
        return generate_latest(self.registry)
