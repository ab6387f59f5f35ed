"""
Unit tests for the finalizer protocol.

Covers the Apply/Cleanup dispatch, idempotent add/remove of the finalizer
and the mapping of store failures onto FinalizerProtocolError.
"""

from unittest.mock import AsyncMock

import pytest

from appoperator.exceptions import ConflictError, FinalizerProtocolError, NotFoundError, StoreError
from appoperator.models import Action
from appoperator.reconcile.finalizer import (
    FinalizerEventType,
    add_finalizer,
    finalizer,
    remove_finalizer,
)

FINALIZER = "applications.appoperator.io"


def recording_handler(action: Action = Action.requeue(300)):
    seen = []

    async def handler(event):
        seen.append(event)
        return action

    return handler, seen


class TestApply:
    """Objects that are not being deleted"""

    @pytest.mark.asyncio
    async def test_adds_finalizer_then_applies(self, store, application):
        created = store.submit(application())
        handler, seen = recording_handler()

        action = await finalizer(store, FINALIZER, created, handler)

        assert action == Action.requeue(300)
        assert len(seen) == 1
        assert seen[0].type == FinalizerEventType.APPLY
        assert seen[0].resource.has_finalizer(FINALIZER)
        assert store.get(created.object_ref()).metadata.finalizers == [FINALIZER]

    @pytest.mark.asyncio
    async def test_finalizer_already_present_skips_patch(self, store, application):
        created = store.submit(application())
        patched = await add_finalizer(store, created, FINALIZER)
        calls = store.calls["patch_finalizers"]
        handler, seen = recording_handler()

        await finalizer(store, FINALIZER, patched, handler)

        assert store.calls["patch_finalizers"] == calls
        assert [e.type for e in seen] == [FinalizerEventType.APPLY]

    @pytest.mark.asyncio
    async def test_keeps_foreign_finalizers(self, store, application):
        resource = application()
        resource.metadata.finalizers = ["other.io/keep"]
        created = store.submit(resource)

        await add_finalizer(store, created, FINALIZER)

        assert store.get(created.object_ref()).metadata.finalizers == ["other.io/keep", FINALIZER]

    @pytest.mark.asyncio
    async def test_concurrent_finalizer_change_is_a_protocol_error(self, store, application):
        created = store.submit(application())
        await store.patch_finalizers(created.object_ref(), ["other.io/keep"])
        handler, seen = recording_handler()

        with pytest.raises(FinalizerProtocolError) as exc_info:
            await finalizer(store, FINALIZER, created, handler)

        assert exc_info.value.phase == "add_finalizer"
        assert isinstance(exc_info.value.cause, ConflictError)
        assert seen == []
        assert store.get(created.object_ref()).metadata.finalizers == ["other.io/keep"]

    @pytest.mark.asyncio
    async def test_unrelated_writes_do_not_conflict(self, store, application):
        created = store.submit(application())
        store.submit(application(image="nginx:2"))
        await store.patch_status(created.object_ref(), {"status": {"deployed": False}}, field_manager="someone-else")
        handler, seen = recording_handler()

        await finalizer(store, FINALIZER, created, handler)

        assert [e.type for e in seen] == [FinalizerEventType.APPLY]
        assert store.get(created.object_ref()).metadata.finalizers == [FINALIZER]


class TestCleanup:
    """Objects carrying a deletion timestamp"""

    @pytest.mark.asyncio
    async def test_cleanup_then_remove_finalizer(self, store, application):
        created = await add_finalizer(store, store.submit(application()), FINALIZER)
        store.request_deletion(created.object_ref())
        deleting = store.get(created.object_ref())
        handler, seen = recording_handler(Action.await_change())

        action = await finalizer(store, FINALIZER, deleting, handler)

        assert action == Action.await_change()
        assert [e.type for e in seen] == [FinalizerEventType.CLEANUP]
        assert store.get(created.object_ref()) is None

    @pytest.mark.asyncio
    async def test_deleting_without_our_finalizer_does_nothing(self, store, application):
        resource = application()
        resource.metadata.finalizers = ["other.io/keep"]
        created = store.submit(resource)
        store.request_deletion(created.object_ref())
        handler, seen = recording_handler()

        action = await finalizer(store, FINALIZER, store.get(created.object_ref()), handler)

        assert action == Action.await_change()
        assert seen == []
        assert store.get(created.object_ref()).metadata.finalizers == ["other.io/keep"]

    @pytest.mark.asyncio
    async def test_failed_cleanup_keeps_finalizer(self, store, application):
        created = await add_finalizer(store, store.submit(application()), FINALIZER)
        store.request_deletion(created.object_ref())
        handler = AsyncMock(side_effect=StoreError("boom", status=500))

        with pytest.raises(StoreError):
            await finalizer(store, FINALIZER, store.get(created.object_ref()), handler)

        assert store.get(created.object_ref()).has_finalizer(FINALIZER)

    @pytest.mark.asyncio
    async def test_remove_tolerates_vanished_object(self, application):
        store = AsyncMock()
        store.patch_finalizers.side_effect = NotFoundError("gone")
        resource = application()
        resource.metadata.finalizers = [FINALIZER]

        await remove_finalizer(store, resource, FINALIZER)

        store.patch_finalizers.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_remove_failure_is_a_protocol_error(self, application):
        store = AsyncMock()
        store.patch_finalizers.side_effect = StoreError("unavailable", status=503)
        resource = application()
        resource.metadata.finalizers = [FINALIZER]

        with pytest.raises(FinalizerProtocolError) as exc_info:
            await remove_finalizer(store, resource, FINALIZER)

        assert exc_info.value.phase == "remove_finalizer"
