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
from datetime import datetime, timezone
from typing import Dict, List, Optional

import aiohttp
from kubernetes_asyncio import client, config, watch
from kubernetes_asyncio.client.api_client import ApiClient
from kubernetes_asyncio.client.rest import ApiException

from appoperator.config import settings
from appoperator.exceptions import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    SerializationError,
    StoreError,
)
from appoperator.models import (
    ApplicationResource,
    Event,
    ObjectRef,
    WatchEvent,
    WatchEventType,
    WorkloadDescriptor,
)
from appoperator.store.base import ResourceStore

logger = logging.getLogger(__name__)

APPLY_PATCH = "application/apply-patch+yaml"
JSON_PATCH = "application/json-patch+json"
CONNECTION_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


def translate_api_exception(e: ApiException, message: str, on_conflict=ConflictError) -> StoreError:
    """Map an API server error onto the store error taxonomy"""
    if e.status == 404:
        return NotFoundError(message)
    if e.status == 409:
        return on_conflict(message)
    return StoreError(f"{message}: {e.reason}", status=e.status)


class KubernetesResourceStore(ResourceStore):
    """Resource store backed by the Kubernetes API server"""

    def __init__(
        self,
        group: Optional[str] = None,
        version: Optional[str] = None,
        plural: Optional[str] = None,
        kind: Optional[str] = None,
        kubeconfig: Optional[str] = None,
        watch_timeout_seconds: Optional[int] = None,
        api_client: Optional[ApiClient] = None,
    ):
        self.group = group or settings.resource_group
        self.version = version or settings.resource_version
        self.plural = plural or settings.resource_plural
        self.kind = kind or settings.resource_kind
        self.kubeconfig = kubeconfig or settings.kubeconfig
        self.watch_timeout_seconds = watch_timeout_seconds
        self._api_client = api_client

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    async def _client(self) -> ApiClient:
        if self._api_client is None:
            await self._load_config()
            self._api_client = ApiClient()
        return self._api_client

    async def _load_config(self):
        if self.kubeconfig:
            await config.load_kube_config(config_file=self.kubeconfig)
            return
        try:
            config.load_incluster_config()
        except config.ConfigException:
            await config.load_kube_config()

    async def _custom_objects(self) -> client.CustomObjectsApi:
        return client.CustomObjectsApi(await self._client())

    def _parse_items(self, items: List[Dict]) -> List[ApplicationResource]:
        resources = []
        for item in items:
            try:
                resources.append(ApplicationResource.from_manifest(item))
            except SerializationError as e:
                logger.warning(f"Skipping malformed {self.kind}: {e}")
        return resources

    async def check_resource_type(self) -> None:
        api = await self._custom_objects()
        try:
            await api.list_cluster_custom_object(self.group, self.version, self.plural, limit=1)
        except ApiException as e:
            raise translate_api_exception(e, f"{self.plural}.{self.group} is not served by the cluster")
        except CONNECTION_ERRORS as e:
            raise StoreError(f"Cannot reach the API server: {e}") from e

    async def list_resources(self) -> List[ApplicationResource]:
        api = await self._custom_objects()
        try:
            listing = await api.list_cluster_custom_object(self.group, self.version, self.plural)
        except ApiException as e:
            raise translate_api_exception(e, f"list {self.plural}")
        except CONNECTION_ERRORS as e:
            raise StoreError(f"list {self.plural}: {e}") from e
        return self._parse_items(listing.get("items", []))

    async def watch(self):
        api = await self._custom_objects()
        try:
            listing = await api.list_cluster_custom_object(self.group, self.version, self.plural)
        except ApiException as e:
            raise translate_api_exception(e, f"list {self.plural}")
        except CONNECTION_ERRORS as e:
            raise StoreError(f"list {self.plural}: {e}") from e

        for resource in self._parse_items(listing.get("items", [])):
            yield WatchEvent(WatchEventType.ADDED, resource)
        yield WatchEvent.synced()

        kwargs = {"resource_version": listing["metadata"]["resourceVersion"]}
        if self.watch_timeout_seconds:
            kwargs["timeout_seconds"] = self.watch_timeout_seconds

        watcher = watch.Watch()
        try:
            async for notification in watcher.stream(
                api.list_cluster_custom_object, self.group, self.version, self.plural, **kwargs
            ):
                event_type = notification["type"]
                obj = notification["object"]
                if event_type == "ERROR":
                    raise StoreError(f"watch {self.plural}: {obj.get('message')}", status=obj.get("code"))
                if event_type == "BOOKMARK":
                    continue
                try:
                    resource = ApplicationResource.from_manifest(obj)
                except SerializationError as e:
                    logger.warning(f"Skipping malformed {self.kind} notification: {e}")
                    continue
                yield WatchEvent(WatchEventType(event_type), resource)
        except ApiException as e:
            raise translate_api_exception(e, f"watch {self.plural}")
        except CONNECTION_ERRORS as e:
            raise StoreError(f"watch {self.plural}: {e}") from e
        finally:
            watcher.stop()

    async def patch_status(
        self, ref: ObjectRef, status_doc: Dict, field_manager: str, force: bool = False
    ) -> ApplicationResource:
        api = await self._custom_objects()
        try:
            obj = await api.patch_namespaced_custom_object_status(
                self.group,
                self.version,
                ref.namespace,
                self.plural,
                ref.name,
                status_doc,
                field_manager=field_manager,
                force=force,
                _content_type=APPLY_PATCH,
            )
        except ApiException as e:
            raise translate_api_exception(e, f"patch status of {self.kind} {ref}")
        except CONNECTION_ERRORS as e:
            raise StoreError(f"patch status of {self.kind} {ref}: {e}") from e
        return ApplicationResource.from_manifest(obj)

    async def patch_finalizers(
        self, ref: ObjectRef, finalizers: List[str], expected: Optional[List[str]] = None
    ) -> ApplicationResource:
        operations = []
        if expected is not None:
            # A missing list tests equal to null
            operations.append({"op": "test", "path": "/metadata/finalizers", "value": list(expected) or None})
        operations.append({"op": "add", "path": "/metadata/finalizers", "value": list(finalizers)})

        api = await self._custom_objects()
        try:
            obj = await api.patch_namespaced_custom_object(
                self.group,
                self.version,
                ref.namespace,
                self.plural,
                ref.name,
                operations,
                _content_type=JSON_PATCH,
            )
        except ApiException as e:
            # A failed "test" operation is reported as 422
            if e.status == 422:
                raise ConflictError(f"Finalizers of {self.kind} {ref} changed, expected {expected}")
            raise translate_api_exception(e, f"patch finalizers of {self.kind} {ref}")
        except CONNECTION_ERRORS as e:
            raise StoreError(f"patch finalizers of {self.kind} {ref}: {e}") from e
        return ApplicationResource.from_manifest(obj)

    async def create_workload(self, descriptor: WorkloadDescriptor) -> WorkloadDescriptor:
        api = client.AppsV1Api(await self._client())
        try:
            await api.create_namespaced_deployment(descriptor.namespace, descriptor.to_manifest())
        except ApiException as e:
            raise translate_api_exception(
                e, f"create deployment {descriptor.namespace}/{descriptor.name}", on_conflict=AlreadyExistsError
            )
        except CONNECTION_ERRORS as e:
            raise StoreError(f"create deployment {descriptor.name}: {e}") from e
        return descriptor

    async def get_workload(self, namespace: str, name: str) -> Optional[WorkloadDescriptor]:
        api_client = await self._client()
        api = client.AppsV1Api(api_client)
        try:
            deployment = await api.read_namespaced_deployment(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise translate_api_exception(e, f"read deployment {namespace}/{name}")
        except CONNECTION_ERRORS as e:
            raise StoreError(f"read deployment {namespace}/{name}: {e}") from e
        return WorkloadDescriptor.from_manifest(api_client.sanitize_for_serialization(deployment))

    async def delete_workload(self, namespace: str, name: str) -> None:
        api = client.AppsV1Api(await self._client())
        try:
            status = await api.delete_namespaced_deployment(name, namespace)
            logger.info(f"Deleted deployment {namespace}/{name}: {status.status}")
        except ApiException as e:
            raise translate_api_exception(e, f"delete deployment {namespace}/{name}")
        except CONNECTION_ERRORS as e:
            raise StoreError(f"delete deployment {namespace}/{name}: {e}") from e

    async def publish_event(self, ref: ObjectRef, event: Event, reporter: str) -> None:
        related = None
        if event.secondary is not None:
            related = client.V1ObjectReference(name=event.secondary.name, namespace=event.secondary.namespace)
        body = client.EventsV1Event(
            metadata=client.V1ObjectMeta(generate_name=f"{ref.name}.", namespace=ref.namespace),
            event_time=datetime.now(timezone.utc),
            type=event.type.value,
            reason=event.reason,
            note=event.note,
            action=event.action,
            regarding=client.V1ObjectReference(
                api_version=self.api_version, kind=self.kind, name=ref.name, namespace=ref.namespace
            ),
            related=related,
            reporting_controller=reporter,
            reporting_instance=reporter,
        )
        api = client.EventsV1Api(await self._client())
        try:
            await api.create_namespaced_event(ref.namespace, body)
        except ApiException as e:
            raise translate_api_exception(e, f"publish event {event.reason} on {ref}")
        except CONNECTION_ERRORS as e:
            raise StoreError(f"publish event {event.reason} on {ref}: {e}") from e

    async def close(self) -> None:
        if self._api_client is not None:
            await self._api_client.close()
            self._api_client = None
