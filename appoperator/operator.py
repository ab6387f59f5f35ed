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
from typing import Optional

from appoperator.config import Config, settings
from appoperator.diagnostics import Diagnostics, SharedDiagnostics
from appoperator.exceptions import BootstrapError, StoreError
from appoperator.metrics import Metrics
from appoperator.reconcile.context import ReconcileContext
from appoperator.reconcile.controller import Controller
from appoperator.reconcile.error_policy import ErrorPolicy
from appoperator.reconcile.reconciler import ApplicationReconciler
from appoperator.store.base import ResourceStore

logger = logging.getLogger(__name__)


class Operator:
    """
    Wires the reconcile pipeline to a resource store

    Owns the metrics and diagnostics shared with every reconcile and with the
    HTTP layer, and refuses to start when the watched resource type is not
    registered.
    """

    def __init__(self, store: ResourceStore, config: Optional[Config] = None):
        self.config = config or settings
        self.store = store
        self._metrics = Metrics()
        self._diagnostics = SharedDiagnostics(self.config.reporter)
        self.context = ReconcileContext(store=store, diagnostics=self._diagnostics, metrics=self._metrics)
        self.reconciler = ApplicationReconciler(
            finalizer_name=self.config.finalizer_name,
            field_manager=self.config.field_manager,
            api_version=self.config.api_version,
            kind=self.config.resource_kind,
            requeue_interval_seconds=self.config.requeue_interval_seconds,
            replicas=self.config.workload_replicas,
        )
        self.error_policy = ErrorPolicy.from_settings(self.config)
        self.controller = Controller(
            store,
            self.reconciler.reconcile,
            self.error_policy,
            self.context,
            max_concurrent_reconciles=self.config.max_concurrent_reconciles,
            watch_restart_seconds=self.config.watch_restart_seconds,
        )

    @classmethod
    async def create(cls, store: ResourceStore, config: Optional[Config] = None) -> "Operator":
        """Build an operator after checking the watched type is registered"""
        operator = cls(store, config)
        await operator.ensure_resource_type()
        return operator

    async def ensure_resource_type(self):
        config = self.config
        try:
            await self.store.check_resource_type()
        except StoreError as e:
            logger.error(f"{config.resource_plural}.{config.resource_group} is not available: {e}")
            raise BootstrapError(
                f"Is the CRD installed? {config.resource_plural}.{config.resource_group}/"
                f"{config.resource_version} could not be listed: {e}"
            ) from e
        logger.info(f"Watching {config.resource_plural}.{config.resource_group}/{config.resource_version}")

    async def run(self):
        """Run the controller until shutdown(), then release the store"""
        try:
            await self.controller.run()
        finally:
            await self.store.close()

    def shutdown(self):
        self.controller.shutdown()

    async def diagnostics(self) -> Diagnostics:
        return await self._diagnostics.snapshot()

    def metrics(self) -> bytes:
        return self._metrics.render()
