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

from pydantic import ValidationError

from appoperator.exceptions import AlreadyExistsError, NotFoundError, SerializationError
from appoperator.models import ApplicationSpec, ContainerDescriptor, WorkloadDescriptor
from appoperator.store.base import ResourceStore

logger = logging.getLogger(__name__)

DEFAULT_REPLICAS = 2


def build_workload(spec: ApplicationSpec, namespace: str, replicas: int = DEFAULT_REPLICAS) -> WorkloadDescriptor:
    """
    Build the Deployment descriptor backing an Application

    Args:
        spec: Application spec providing the name and container image
        namespace: Namespace of the Application
        replicas: Desired replica count

    Returns:
        A validated WorkloadDescriptor

    Raises:
        SerializationError: The spec cannot produce a valid Deployment
    """
    try:
        return WorkloadDescriptor(
            name=spec.name,
            namespace=namespace,
            replicas=replicas,
            labels={"app": spec.name},
            containers=[ContainerDescriptor(name=spec.name, image=spec.image)],
        )
    except ValidationError as e:
        raise SerializationError(f"Cannot build deployment for `{spec.name}`: {e}") from e


class WorkloadManager:
    """Idempotent create/delete of the Deployment owned by an Application"""

    def __init__(self, store: ResourceStore, replicas: int = DEFAULT_REPLICAS):
        self.store = store
        self.replicas = replicas

    async def create(self, spec: ApplicationSpec, namespace: str) -> bool:
        """
        Create the deployment for spec

        Returns:
            True if it was created, False if it already existed
        """
        descriptor = build_workload(spec, namespace, self.replicas)
        logger.info(f"Creating deployment for {spec.name}")
        try:
            await self.store.create_workload(descriptor)
        except AlreadyExistsError:
            logger.debug(f"Deployment {namespace}/{spec.name} already exists")
            return False
        logger.info(f"Created deployment {spec.name}")
        return True

    async def delete(self, spec: ApplicationSpec, namespace: str) -> bool:
        """
        Delete the deployment for spec

        Returns:
            True if it was deleted, False if it was already gone
        """
        logger.info(f"Cleaning up deployment for {spec.name}")
        try:
            await self.store.delete_workload(namespace, spec.name)
        except NotFoundError:
            logger.debug(f"Deployment {namespace}/{spec.name} already absent")
            return False
        return True

    async def get(self, spec: ApplicationSpec, namespace: str) -> Optional[WorkloadDescriptor]:
        return await self.store.get_workload(namespace, spec.name)
