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
import time
from typing import Optional

from appoperator.config import settings
from appoperator.exceptions import store_phase
from appoperator.models import Action, ApplicationResource, ApplicationState, ApplicationStatus, Event
from appoperator.reconcile import events
from appoperator.reconcile.context import ReconcileContext
from appoperator.reconcile.events import EventRecorder
from appoperator.reconcile.finalizer import FinalizerEvent, FinalizerEventType, finalizer
from appoperator.reconcile.status import StatusWriter
from appoperator.reconcile.workload import WorkloadManager

logger = logging.getLogger(__name__)


class ApplicationReconciler:
    """Reconciles Applications against their Deployments"""

    def __init__(
        self,
        finalizer_name: Optional[str] = None,
        field_manager: Optional[str] = None,
        api_version: Optional[str] = None,
        kind: Optional[str] = None,
        requeue_interval_seconds: Optional[float] = None,
        replicas: Optional[int] = None,
    ):
        self.finalizer_name = finalizer_name or settings.finalizer_name
        self.field_manager = field_manager or settings.field_manager
        self.api_version = api_version or settings.api_version
        self.kind = kind or settings.resource_kind
        self.requeue_interval_seconds = requeue_interval_seconds or settings.requeue_interval_seconds
        self.replicas = replicas or settings.workload_replicas

    async def reconcile(self, resource: ApplicationResource, ctx: ReconcileContext) -> Action:
        """Pipeline entry point invoked by the controller for one object"""
        start = time.perf_counter()
        ctx.metrics.reconciliations.inc()

        async def handle(event: FinalizerEvent) -> Action:
            if event.type == FinalizerEventType.APPLY:
                return await self.apply(event.resource, ctx)
            return await self.cleanup(event.resource, ctx)

        try:
            action = await finalizer(ctx.store, self.finalizer_name, resource, handle)
        finally:
            ctx.metrics.reconcile_duration.observe(time.perf_counter() - start)

        logger.info(f'Reconciled {self.kind} "{resource.name}" in {resource.namespace}')
        return action

    async def _recorder(self, resource: ApplicationResource, ctx: ReconcileContext) -> EventRecorder:
        await ctx.diagnostics.record_event()
        reporter = await ctx.diagnostics.reporter()
        return EventRecorder(ctx.store, reporter, resource.object_ref())

    async def apply(self, resource: ApplicationResource, ctx: ReconcileContext) -> Action:
        recorder = await self._recorder(resource, ctx)
        workloads = WorkloadManager(ctx.store, self.replicas)
        spec = resource.spec
        namespace = resource.namespace

        should_deploy = spec.deploy
        # The guard looks at the status we wrote last time, not at the cluster
        was_deployed = resource.was_deployed()

        event: Optional[Event] = None
        if should_deploy and was_deployed:
            with store_phase("create_workload"):
                await workloads.create(spec, namespace)
            with store_phase("read_workload"):
                deployment = await workloads.get(spec, namespace)
            if deployment is not None:
                event = events.running_application(spec.name)
            else:
                event = events.failed_application(spec.name)
        elif not should_deploy and was_deployed:
            with store_phase("delete_workload"):
                await workloads.delete(spec, namespace)
            event = events.deleting_deployment(spec.name)

        # Always overwrite the status with what we saw
        status = ApplicationStatus(state=ApplicationState.RUNNING, deployed=should_deploy)
        writer = StatusWriter(ctx.store, self.api_version, self.kind, self.field_manager)
        await writer.write(resource, status)

        if event is not None:
            await recorder.publish(event)

        # If no events were received, check back every requeue interval
        return Action.requeue(self.requeue_interval_seconds)

    async def cleanup(self, resource: ApplicationResource, ctx: ReconcileContext) -> Action:
        recorder = await self._recorder(resource, ctx)
        workloads = WorkloadManager(ctx.store, self.replicas)

        with store_phase("delete_workload"):
            await workloads.delete(resource.spec, resource.namespace)
        await recorder.publish(events.delete_application(resource.name))

        return Action.await_change()
