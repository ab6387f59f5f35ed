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

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from appoperator.exceptions import SerializationError


class ApplicationState(str, Enum):
    RUNNING = "Running"
    STARTING = "Starting"
    FAILED = "Failed"


class EventType(str, Enum):
    NORMAL = "Normal"
    WARNING = "Warning"


class WatchEventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    # End of the initial listing; carries no resource
    SYNCED = "SYNCED"


@dataclass(frozen=True)
class ObjectRef:
    """Identity of a namespaced object"""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class ApplicationSpec(BaseModel):
    name: str
    image: str
    deploy: bool = False


class ApplicationStatus(BaseModel):
    state: ApplicationState = ApplicationState.STARTING
    deployed: bool = False


class ObjectMeta(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    resource_version: Optional[str] = None
    generation: int = 0
    finalizers: List[str] = Field(default_factory=list)
    deletion_timestamp: Optional[datetime] = None


class ApplicationResource(BaseModel):
    """The watched custom resource: metadata, desired spec and remembered status"""

    metadata: ObjectMeta
    spec: ApplicationSpec
    status: Optional[ApplicationStatus] = None

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def object_ref(self) -> ObjectRef:
        return ObjectRef(namespace=self.metadata.namespace, name=self.metadata.name)

    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, finalizer_name: str) -> bool:
        return finalizer_name in self.metadata.finalizers

    def was_deployed(self) -> bool:
        return self.status.deployed if self.status is not None else False

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any]) -> "ApplicationResource":
        try:
            return cls.model_validate(manifest)
        except ValidationError as e:
            name = (manifest.get("metadata") or {}).get("name", "<unknown>")
            raise SerializationError(f"Invalid Application manifest {name}: {e}") from e

    def to_manifest(self, api_version: str, kind: str) -> Dict[str, Any]:
        manifest = {"apiVersion": api_version, "kind": kind}
        manifest.update(self.model_dump(mode="json", by_alias=True, exclude_none=True))
        return manifest


class Event(BaseModel):
    """An event published on a watched object for operator visibility"""

    type: EventType
    reason: str
    note: Optional[str] = None
    action: str
    secondary: Optional[ObjectRef] = None


@dataclass
class WatchEvent:
    type: WatchEventType
    resource: Optional[ApplicationResource] = None

    @classmethod
    def synced(cls) -> "WatchEvent":
        return cls(WatchEventType.SYNCED)


@dataclass(frozen=True)
class Action:
    """Scheduling directive returned by a reconcile"""

    requeue_after: Optional[float] = None

    @classmethod
    def requeue(cls, seconds: float) -> "Action":
        return cls(requeue_after=seconds)

    @classmethod
    def await_change(cls) -> "Action":
        return cls(requeue_after=None)


DNS_LABEL_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"


class ContainerDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(pattern=DNS_LABEL_PATTERN, max_length=63)
    image: str = Field(min_length=1)


class WorkloadDescriptor(BaseModel):
    """Validated description of the Deployment backing an Application"""

    model_config = ConfigDict(frozen=True)

    name: str = Field(pattern=DNS_LABEL_PATTERN, max_length=63)
    namespace: str = Field(pattern=DNS_LABEL_PATTERN, max_length=63)
    replicas: int = Field(default=2, ge=1)
    labels: Dict[str, str] = Field(default_factory=dict)
    containers: List[ContainerDescriptor] = Field(min_length=1, max_length=1)

    def to_manifest(self) -> Dict[str, Any]:
        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "labels": dict(self.labels),
            },
            "spec": {
                "replicas": self.replicas,
                "selector": {"matchLabels": dict(self.labels)},
                "template": {
                    "metadata": {"labels": dict(self.labels)},
                    "spec": {
                        "containers": [{"name": c.name, "image": c.image} for c in self.containers],
                    },
                },
            },
        }

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any]) -> "WorkloadDescriptor":
        try:
            metadata = manifest.get("metadata") or {}
            spec = manifest.get("spec") or {}
            pod_spec = ((spec.get("template") or {}).get("spec")) or {}
            return cls(
                name=metadata.get("name"),
                namespace=metadata.get("namespace"),
                replicas=spec.get("replicas") or 1,
                labels=metadata.get("labels") or {},
                containers=[
                    ContainerDescriptor(name=c.get("name"), image=c.get("image"))
                    for c in pod_spec.get("containers") or []
                ],
            )
        except ValidationError as e:
            raise SerializationError(f"Invalid Deployment manifest: {e}") from e
