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

from appoperator.exceptions import store_phase
from appoperator.models import Event, EventType, ObjectRef
from appoperator.store.base import ResourceStore

logger = logging.getLogger(__name__)

RECONCILING = "Reconciling"


class EventRecorder:
    """Publishes events regarding one object under a reporter identity"""

    def __init__(self, store: ResourceStore, reporter: str, ref: ObjectRef):
        self.store = store
        self.reporter = reporter
        self.ref = ref

    async def publish(self, event: Event):
        logger.debug(f"Publishing {event.type.value} event {event.reason} on {self.ref}")
        with store_phase("publish_event"):
            await self.store.publish_event(self.ref, event, self.reporter)


def running_application(name: str) -> Event:
    return Event(
        type=EventType.NORMAL,
        reason="RunningApplication",
        note=f"Deployment complete `{name}`",
        action=RECONCILING,
    )


def failed_application(name: str) -> Event:
    return Event(
        type=EventType.WARNING,
        reason="FailedApplication",
        note=f"Deployment not starting `{name}`",
        action=RECONCILING,
    )


def deleting_deployment(name: str) -> Event:
    return Event(
        type=EventType.NORMAL,
        reason="DeletingDeployment",
        note=f"Deleting deployment `{name}`",
        action=RECONCILING,
    )


def delete_application(name: str) -> Event:
    return Event(
        type=EventType.NORMAL,
        reason="DeleteApplication",
        note=f"Delete `{name}`",
        action=RECONCILING,
    )


def reconcile_failed(error: Exception) -> Event:
    return Event(
        type=EventType.WARNING,
        reason="ReconcileFailed",
        note=str(error),
        action=RECONCILING,
    )
