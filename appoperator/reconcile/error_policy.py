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
from typing import Dict, Optional

from appoperator.config import Config, settings
from appoperator.exceptions import SerializationError, StoreError
from appoperator.models import Action, ApplicationResource, ObjectRef
from appoperator.reconcile import events
from appoperator.reconcile.context import ReconcileContext
from appoperator.reconcile.events import EventRecorder

logger = logging.getLogger(__name__)


class ErrorPolicy:
    """
    Turns a failed reconcile into a retry directive

    In "fixed" mode every failure, transient or permanent, is retried after
    the same delay. "exponential" mode doubles the delay per consecutive
    failure of the same object, capped at requeue_seconds.
    """

    def __init__(self, mode: str = "fixed", requeue_seconds: float = 300.0, backoff_base_seconds: float = 5.0):
        if mode not in ("fixed", "exponential"):
            raise ValueError(f"Unsupported error policy: {mode}")
        self.mode = mode
        self.requeue_seconds = requeue_seconds
        self.backoff_base_seconds = backoff_base_seconds
        self._consecutive_failures: Dict[ObjectRef, int] = {}

    @classmethod
    def from_settings(cls, config: Optional[Config] = None) -> "ErrorPolicy":
        config = config or settings
        return cls(
            mode=config.error_policy,
            requeue_seconds=config.error_requeue_seconds,
            backoff_base_seconds=config.error_backoff_base_seconds,
        )

    def reset(self, ref: ObjectRef):
        """Forget the failure streak of ref after a success or deletion"""
        self._consecutive_failures.pop(ref, None)

    def next_delay(self, ref: ObjectRef) -> float:
        if self.mode == "fixed":
            return self.requeue_seconds
        failures = self._consecutive_failures.get(ref, 1)
        return min(self.backoff_base_seconds * 2 ** (failures - 1), self.requeue_seconds)

    async def __call__(self, error: Exception, resource: ApplicationResource, ctx: ReconcileContext) -> Action:
        ref = resource.object_ref()
        logger.warning(f"reconcile failed for {ref}: {error!r}")
        ctx.metrics.failures.inc()
        self._consecutive_failures[ref] = self._consecutive_failures.get(ref, 0) + 1

        await self._report(error, resource, ctx)

        if isinstance(error, SerializationError):
            logger.error(f"{ref} cannot be reconciled until its spec changes: {error}")
            return Action.await_change()
        return Action.requeue(self.next_delay(ref))

    async def _report(self, error: Exception, resource: ApplicationResource, ctx: ReconcileContext):
        reporter = await ctx.diagnostics.reporter()
        recorder = EventRecorder(ctx.store, reporter, resource.object_ref())
        try:
            await recorder.publish(events.reconcile_failed(error))
        except StoreError as e:
            logger.warning(f"Failed to publish failure event for {resource.object_ref()}: {e}")
