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
from typing import Awaitable, Callable, Dict, Optional, Set

from appoperator.exceptions import StoreError
from appoperator.models import Action, ApplicationResource, ObjectRef, WatchEvent, WatchEventType
from appoperator.reconcile.context import ReconcileContext
from appoperator.reconcile.error_policy import ErrorPolicy

logger = logging.getLogger(__name__)

ReconcileFn = Callable[[ApplicationResource, ReconcileContext], Awaitable[Action]]


class Controller:
    """
    Drives reconciles of every watched Application

    The controller keeps the latest notified version of each object and runs
    `reconcile` for it whenever it is triggered: by a new notification, by the
    requeue delay returned from the last reconcile, or by the retry delay the
    error policy returned after a failure. Only the earliest pending trigger
    per object is kept. Reconciles of the same object never overlap; triggers
    arriving while it runs collapse into one re-run after it finishes.
    Different objects are reconciled concurrently.
    """

    def __init__(
        self,
        store,
        reconcile: ReconcileFn,
        error_policy: ErrorPolicy,
        context: ReconcileContext,
        max_concurrent_reconciles: int = 0,
        watch_restart_seconds: float = 5.0,
    ):
        self.store = store
        self.reconcile = reconcile
        self.error_policy = error_policy
        self.context = context
        self.watch_restart_seconds = watch_restart_seconds
        self._semaphore = asyncio.Semaphore(max_concurrent_reconciles) if max_concurrent_reconciles > 0 else None

        self._cache: Dict[ObjectRef, ApplicationResource] = {}
        self._timers: Dict[ObjectRef, asyncio.TimerHandle] = {}
        self._deadlines: Dict[ObjectRef, float] = {}
        self._running: Dict[ObjectRef, asyncio.Task] = {}
        self._rerun: Set[ObjectRef] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stopping = asyncio.Event()
        self._watching = asyncio.Event()
        self._watch_task: Optional[asyncio.Task] = None

    # Introspection

    def is_running(self, ref: ObjectRef) -> bool:
        return ref in self._running

    def tracked(self) -> Set[ObjectRef]:
        return set(self._cache)

    def pending_delay(self, ref: ObjectRef) -> Optional[float]:
        """Seconds until the next scheduled reconcile of ref, None if nothing is scheduled"""
        deadline = self._deadlines.get(ref)
        if deadline is None or self._loop is None:
            return None
        return max(deadline - self._loop.time(), 0.0)

    async def wait_until_watching(self):
        """Wait until the current watch has delivered its initial listing"""
        await self._watching.wait()

    # Main loop

    async def run(self):
        """Watch the store and reconcile until shutdown() is called"""
        self._loop = asyncio.get_running_loop()
        logger.info("Starting controller")
        try:
            while not self._stopping.is_set():
                self._watch_task = self._loop.create_task(self._consume_watch(), name="watch applications")
                try:
                    await self._watch_task
                    logger.info("Watch stream ended, restarting")
                except asyncio.CancelledError:
                    if not self._stopping.is_set():
                        raise
                    break
                except StoreError as e:
                    logger.warning(f"Watch stream failed: {e}, restarting in {self.watch_restart_seconds}s")
                finally:
                    self._watch_task = None
                    self._watching.clear()
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.watch_restart_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self._drain()
            logger.info("Controller stopped")

    def shutdown(self):
        """Stop watching; run() returns once in-flight reconciles are cancelled"""
        self._stopping.set()
        if self._watch_task is not None:
            self._watch_task.cancel()

    async def _consume_watch(self):
        stream = self.store.watch()
        listed: Set[ObjectRef] = set()
        synced = False
        try:
            async for event in stream:
                if event.type == WatchEventType.SYNCED:
                    self._prune(listed)
                    synced = True
                    self._watching.set()
                    continue
                if not synced:
                    listed.add(event.resource.object_ref())
                self.observe(event)
        finally:
            await stream.aclose()

    def observe(self, event: WatchEvent):
        """Record a notification and trigger a reconcile of its object"""
        ref = event.resource.object_ref()
        if event.type == WatchEventType.DELETED:
            logger.debug(f"{ref} deleted, no longer tracked")
            self._forget(ref)
            return
        self._cache[ref] = event.resource
        self.schedule(ref, 0)

    def _prune(self, listed: Set[ObjectRef]):
        # Deletions that happened while the stream was down never arrive as DELETED
        for ref in set(self._cache) - listed:
            logger.info(f"{ref} missing from the relist, no longer tracked")
            self._forget(ref)

    def _forget(self, ref: ObjectRef):
        self._cache.pop(ref, None)
        self._rerun.discard(ref)
        self._cancel_timer(ref)
        self.error_policy.reset(ref)

    # Scheduling

    def schedule(self, ref: ObjectRef, delay: float):
        """Reconcile ref after delay seconds, unless something earlier is already pending"""
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        deadline = loop.time() + delay
        current = self._deadlines.get(ref)
        if current is not None and current <= deadline:
            return
        self._cancel_timer(ref)
        self._deadlines[ref] = deadline
        self._timers[ref] = loop.call_later(delay, self._fire, ref)

    def _cancel_timer(self, ref: ObjectRef):
        timer = self._timers.pop(ref, None)
        if timer is not None:
            timer.cancel()
        self._deadlines.pop(ref, None)

    def _fire(self, ref: ObjectRef):
        self._timers.pop(ref, None)
        self._deadlines.pop(ref, None)
        if self._stopping.is_set():
            return
        if ref in self._running:
            self._rerun.add(ref)
            return
        self._running[ref] = self._loop.create_task(self._run_one(ref), name=f"reconcile {ref}")

    async def _run_one(self, ref: ObjectRef):
        try:
            resource = self._cache.get(ref)
            if resource is None:
                return
            action = await self._invoke(ref, resource)
            if action.requeue_after is not None and ref in self._cache:
                self.schedule(ref, action.requeue_after)
        finally:
            self._running.pop(ref, None)
            if ref in self._rerun:
                self._rerun.discard(ref)
                if ref in self._cache and not self._stopping.is_set():
                    self.schedule(ref, 0)

    async def _invoke(self, ref: ObjectRef, resource: ApplicationResource) -> Action:
        if self._semaphore is not None:
            async with self._semaphore:
                return await self._reconcile_or_handle(ref, resource)
        return await self._reconcile_or_handle(ref, resource)

    async def _reconcile_or_handle(self, ref: ObjectRef, resource: ApplicationResource) -> Action:
        try:
            action = await self.reconcile(resource, self.context)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return await self._handle_failure(e, resource)
        self.error_policy.reset(ref)
        return action

    async def _handle_failure(self, error: Exception, resource: ApplicationResource) -> Action:
        try:
            return await self.error_policy(error, resource, self.context)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Error policy failed for {resource.object_ref()}")
            return Action.requeue(self.error_policy.requeue_seconds)

    async def _drain(self):
        for ref in list(self._timers):
            self._cancel_timer(ref)
        tasks = list(self._running.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._running.clear()
        self._rerun.clear()
