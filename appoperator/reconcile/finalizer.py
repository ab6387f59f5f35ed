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

"""
Finalizer protocol for Applications.

Lifecycle of one object as seen by this controller:

    NoFinalizer --(apply; add finalizer)--> FinalizerPresent
    FinalizerPresent --(deletion marker set)--> Deleting
    Deleting --(cleanup succeeds; remove finalizer)--> Removed

Each invocation hands exactly one Apply or Cleanup event to the handler.
Cleanup only runs while our finalizer is still on the object, so the store
cannot physically delete the object before cleanup succeeded.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from appoperator.exceptions import FinalizerProtocolError, NotFoundError, StoreError
from appoperator.models import Action, ApplicationResource
from appoperator.store.base import ResourceStore

logger = logging.getLogger(__name__)


class FinalizerEventType(str, Enum):
    APPLY = "apply"
    CLEANUP = "cleanup"


@dataclass
class FinalizerEvent:
    type: FinalizerEventType
    resource: ApplicationResource


FinalizerHandler = Callable[[FinalizerEvent], Awaitable[Action]]


async def add_finalizer(
    store: ResourceStore, resource: ApplicationResource, finalizer_name: str
) -> ApplicationResource:
    """Add finalizer_name to the object; a no-op when it is already there"""
    if resource.has_finalizer(finalizer_name):
        return resource
    finalizers = resource.metadata.finalizers + [finalizer_name]
    try:
        patched = await store.patch_finalizers(
            resource.object_ref(), finalizers, expected=resource.metadata.finalizers
        )
    except StoreError as e:
        raise FinalizerProtocolError("add_finalizer", e) from e
    logger.debug(f"Added finalizer {finalizer_name} to {resource.object_ref()}")
    return patched


async def remove_finalizer(store: ResourceStore, resource: ApplicationResource, finalizer_name: str):
    """Remove finalizer_name from the object; a no-op when it is absent or the object is gone"""
    if not resource.has_finalizer(finalizer_name):
        return
    finalizers = [f for f in resource.metadata.finalizers if f != finalizer_name]
    try:
        await store.patch_finalizers(
            resource.object_ref(), finalizers, expected=resource.metadata.finalizers
        )
    except NotFoundError:
        logger.debug(f"{resource.object_ref()} already gone while removing finalizer")
        return
    except StoreError as e:
        raise FinalizerProtocolError("remove_finalizer", e) from e
    logger.debug(f"Removed finalizer {finalizer_name} from {resource.object_ref()}")


async def finalizer(
    store: ResourceStore, finalizer_name: str, resource: ApplicationResource, handler: FinalizerHandler
) -> Action:
    """
    Drive one lifecycle step of resource through handler

    Args:
        store: Store used for the finalizer patches
        finalizer_name: Marker owned by this controller
        resource: Latest observed object
        handler: Called with exactly one Apply or Cleanup event

    Returns:
        The Action returned by the handler, or await_change when there is nothing to do

    Raises:
        FinalizerProtocolError: The finalizer could not be added or removed
    """
    if resource.is_deleting():
        if not resource.has_finalizer(finalizer_name):
            # Someone else's finalizer is holding the object; nothing left for us
            return Action.await_change()
        action = await handler(FinalizerEvent(FinalizerEventType.CLEANUP, resource))
        await remove_finalizer(store, resource, finalizer_name)
        return action

    resource = await add_finalizer(store, resource, finalizer_name)
    return await handler(FinalizerEvent(FinalizerEventType.APPLY, resource))
