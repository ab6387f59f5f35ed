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

import asyncio
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from appoperator.exceptions import AlreadyExistsError, ConflictError, NotFoundError
from appoperator.models import (
    ApplicationResource,
    ApplicationStatus,
    Event,
    ObjectRef,
    WatchEvent,
    WatchEventType,
    WorkloadDescriptor,
)
from appoperator.store.base import ResourceStore

logger = logging.getLogger(__name__)


class InMemoryResourceStore(ResourceStore):
    """Local implementation for testing or single-process runs

    Mimics the parts of the API server the operator relies on: resource
    versions, finalizers blocking deletion, status field ownership, no-op
    patches that do not produce notifications, and a watch stream.
    """

    def __init__(self, registered: bool = True, latency: float = 0.0):
        self.registered = registered
        self.latency = latency
        self.events: List[Tuple[ObjectRef, Event, str]] = []
        self.calls: Dict[str, int] = defaultdict(int)
        self._objects: Dict[ObjectRef, ApplicationResource] = {}
        self._status_managers: Dict[ObjectRef, str] = {}
        self._workloads: Dict[Tuple[str, str], WorkloadDescriptor] = {}
        self._subscribers: List[asyncio.Queue] = []
        self._failures: Dict[str, List[Exception]] = defaultdict(list)
        self._version = 0

    # Client side helpers, the equivalent of kubectl apply / delete

    def submit(self, resource: ApplicationResource) -> ApplicationResource:
        """Create an Application or update the spec of an existing one"""
        ref = resource.object_ref()
        current = self._objects.get(ref)
        if current is None:
            current = resource.model_copy(deep=True)
            current.metadata.uid = current.metadata.uid or str(uuid.uuid4())
            current.metadata.generation = 1
            current.metadata.deletion_timestamp = None
            self._objects[ref] = current
            event_type = WatchEventType.ADDED
        else:
            if current.spec == resource.spec:
                return current.model_copy(deep=True)
            current.spec = resource.spec.model_copy()
            current.metadata.generation += 1
            event_type = WatchEventType.MODIFIED
        self._bump(current)
        self._notify(event_type, current)
        return current.model_copy(deep=True)

    def request_deletion(self, ref: ObjectRef) -> None:
        """Mark an object for deletion; it goes away once its finalizers are gone"""
        current = self._objects.get(ref)
        if current is None:
            raise NotFoundError(f"Application {ref} not found")
        if not current.metadata.finalizers:
            self._remove(ref)
            return
        if current.metadata.deletion_timestamp is None:
            current.metadata.deletion_timestamp = datetime.now(timezone.utc)
            self._bump(current)
            self._notify(WatchEventType.MODIFIED, current)

    def get(self, ref: ObjectRef) -> Optional[ApplicationResource]:
        current = self._objects.get(ref)
        return current.model_copy(deep=True) if current is not None else None

    @property
    def workloads(self) -> Dict[Tuple[str, str], WorkloadDescriptor]:
        return dict(self._workloads)

    def inject_failure(self, operation: str, error: Exception, times: int = 1):
        """Make the next `times` calls of `operation` raise `error`"""
        self._failures[operation].extend([error] * times)

    # ResourceStore implementation

    async def check_resource_type(self) -> None:
        await self._round_trip("check_resource_type")
        if not self.registered:
            raise NotFoundError("the server could not find the requested resource (applications)")

    async def list_resources(self) -> List[ApplicationResource]:
        await self._round_trip("list_resources")
        return [r.model_copy(deep=True) for r in self._objects.values()]

    async def watch(self):
        await self._round_trip("watch")
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        # Snapshot is taken right after subscribing, so nothing falls in between
        snapshot = [r.model_copy(deep=True) for r in self._objects.values()]
        try:
            for resource in snapshot:
                yield WatchEvent(WatchEventType.ADDED, resource)
            yield WatchEvent.synced()
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            self._subscribers.remove(queue)

    async def patch_status(
        self, ref: ObjectRef, status_doc: Dict, field_manager: str, force: bool = False
    ) -> ApplicationResource:
        await self._round_trip("patch_status")
        current = self._objects.get(ref)
        if current is None:
            raise NotFoundError(f"Application {ref} not found")
        owner = self._status_managers.get(ref)
        if owner is not None and owner != field_manager and not force:
            raise ConflictError(f"Apply failed with 1 conflict: status is owned by {owner}")
        status = ApplicationStatus.model_validate(status_doc.get("status") or {})
        self._status_managers[ref] = field_manager
        if current.status != status:
            current.status = status
            self._bump(current)
            self._notify(WatchEventType.MODIFIED, current)
        return current.model_copy(deep=True)

    async def patch_finalizers(
        self, ref: ObjectRef, finalizers: List[str], expected: Optional[List[str]] = None
    ) -> ApplicationResource:
        await self._round_trip("patch_finalizers")
        current = self._objects.get(ref)
        if current is None:
            raise NotFoundError(f"Application {ref} not found")
        if expected is not None and list(expected) != current.metadata.finalizers:
            raise ConflictError(
                f"Finalizers of Application {ref} are {current.metadata.finalizers}, expected {list(expected)}"
            )
        if list(finalizers) == current.metadata.finalizers:
            return current.model_copy(deep=True)
        current.metadata.finalizers = list(finalizers)
        self._bump(current)
        if current.is_deleting() and not current.metadata.finalizers:
            snapshot = current.model_copy(deep=True)
            self._remove(ref)
            return snapshot
        self._notify(WatchEventType.MODIFIED, current)
        return current.model_copy(deep=True)

    async def create_workload(self, descriptor: WorkloadDescriptor) -> WorkloadDescriptor:
        await self._round_trip("create_workload")
        key = (descriptor.namespace, descriptor.name)
        if key in self._workloads:
            raise AlreadyExistsError(f'deployments.apps "{descriptor.name}" already exists')
        self._workloads[key] = descriptor
        return descriptor

    async def get_workload(self, namespace: str, name: str) -> Optional[WorkloadDescriptor]:
        await self._round_trip("get_workload")
        return self._workloads.get((namespace, name))

    async def delete_workload(self, namespace: str, name: str) -> None:
        await self._round_trip("delete_workload")
        if self._workloads.pop((namespace, name), None) is None:
            raise NotFoundError(f'deployments.apps "{name}" not found')

    async def publish_event(self, ref: ObjectRef, event: Event, reporter: str) -> None:
        await self._round_trip("publish_event")
        self.events.append((ref, event, reporter))

    async def close(self) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(None)

    # Internals

    async def _round_trip(self, operation: str):
        self.calls[operation] += 1
        await asyncio.sleep(self.latency)
        if self._failures[operation]:
            raise self._failures[operation].pop(0)

    def _bump(self, resource: ApplicationResource):
        self._version += 1
        resource.metadata.resource_version = str(self._version)

    def _remove(self, ref: ObjectRef):
        removed = self._objects.pop(ref)
        self._status_managers.pop(ref, None)
        logger.debug(f"Application {ref} physically deleted")
        self._notify(WatchEventType.DELETED, removed)

    def _notify(self, event_type: WatchEventType, resource: ApplicationResource):
        for queue in self._subscribers:
            queue.put_nowait(WatchEvent(event_type, resource.model_copy(deep=True)))
