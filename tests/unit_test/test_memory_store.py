import asyncio

import pytest

from appoperator.exceptions import AlreadyExistsError, ConflictError, NotFoundError, StoreError
from appoperator.models import ApplicationSpec, WatchEventType
from appoperator.reconcile.workload import build_workload
from appoperator.store import InMemoryResourceStore, create_resource_store

FINALIZER = "applications.appoperator.io"


async def next_event(stream):
    return await asyncio.wait_for(stream.__anext__(), timeout=1)


class TestSubmitAndDelete:
    """Client side helpers"""

    def test_submit_assigns_identity(self, store, application):
        created = store.submit(application())

        assert created.metadata.uid
        assert created.metadata.generation == 1
        assert created.metadata.resource_version == "1"

    def test_unchanged_spec_is_a_noop(self, store, application):
        store.submit(application())
        again = store.submit(application())

        assert again.metadata.resource_version == "1"

    def test_spec_change_bumps_generation(self, store, application):
        store.submit(application())
        updated = store.submit(application(deploy=True))

        assert updated.metadata.generation == 2
        assert updated.spec.deploy is True

    def test_deletion_without_finalizers_is_immediate(self, store, application):
        ref = store.submit(application()).object_ref()

        store.request_deletion(ref)

        assert store.get(ref) is None

    @pytest.mark.asyncio
    async def test_finalizer_blocks_deletion(self, store, application):
        created = store.submit(application())
        await store.patch_finalizers(created.object_ref(), [FINALIZER])

        store.request_deletion(created.object_ref())

        assert store.get(created.object_ref()).is_deleting()

    def test_delete_unknown_object(self, store, application):
        with pytest.raises(NotFoundError):
            store.request_deletion(application().object_ref())


class TestPatches:
    """Status and finalizer patches"""

    @pytest.mark.asyncio
    async def test_status_ownership(self, store, application):
        ref = store.submit(application()).object_ref()
        doc = {"status": {"state": "Running", "deployed": True}}
        await store.patch_status(ref, doc, field_manager="first")

        with pytest.raises(ConflictError):
            await store.patch_status(ref, {"status": {"deployed": False}}, field_manager="second")
        patched = await store.patch_status(ref, {"status": {"deployed": False}}, field_manager="second", force=True)

        assert patched.status.deployed is False

    @pytest.mark.asyncio
    async def test_finalizer_guard(self, store, application):
        ref = store.submit(application()).object_ref()
        await store.patch_status(ref, {"status": {"deployed": True}}, field_manager="m")

        with pytest.raises(ConflictError):
            await store.patch_finalizers(ref, [FINALIZER], expected=["other.io/keep"])
        patched = await store.patch_finalizers(ref, [FINALIZER], expected=[])

        assert patched.metadata.finalizers == [FINALIZER]

    @pytest.mark.asyncio
    async def test_removing_last_finalizer_deletes(self, store, application):
        ref = store.submit(application()).object_ref()
        await store.patch_finalizers(ref, [FINALIZER])
        store.request_deletion(ref)

        await store.patch_finalizers(ref, [])

        assert store.get(ref) is None

    @pytest.mark.asyncio
    async def test_injected_failure_is_raised_once(self, store):
        store.inject_failure("list_resources", StoreError("unavailable", status=503))

        with pytest.raises(StoreError):
            await store.list_resources()
        assert await store.list_resources() == []
        assert store.calls["list_resources"] == 2


class TestWatch:
    """Notification stream"""

    @pytest.mark.asyncio
    async def test_snapshot_then_changes(self, store, application):
        ref = store.submit(application(name="a")).object_ref()
        stream = store.watch()

        first = await next_event(stream)
        marker = await next_event(stream)
        store.submit(application(name="a", deploy=True))
        second = await next_event(stream)
        await store.patch_finalizers(ref, [FINALIZER])
        store.request_deletion(ref)
        await store.patch_finalizers(ref, [])
        types = [(await next_event(stream)).type for _ in range(3)]

        assert first.type == WatchEventType.ADDED
        assert marker.type == WatchEventType.SYNCED
        assert marker.resource is None
        assert second.type == WatchEventType.MODIFIED
        assert second.resource.spec.deploy is True
        assert types == [WatchEventType.MODIFIED, WatchEventType.MODIFIED, WatchEventType.DELETED]
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_noop_status_patch_is_silent(self, store, application):
        ref = store.submit(application()).object_ref()
        doc = {"status": {"state": "Running", "deployed": False}}
        await store.patch_status(ref, doc, field_manager="m")
        stream = store.watch()
        await next_event(stream)
        await next_event(stream)

        await store.patch_status(ref, doc, field_manager="m")

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(stream.__anext__(), timeout=0.05)

    @pytest.mark.asyncio
    async def test_close_ends_stream(self, store, application):
        stream = store.watch()
        assert (await next_event(stream)).type == WatchEventType.SYNCED
        pending = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0.01)

        await store.close()

        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(pending, timeout=1)


class TestWorkloads:
    @pytest.mark.asyncio
    async def test_create_get_delete(self, store):
        descriptor = build_workload(ApplicationSpec(name="a", image="nginx:1"), "default")

        await store.create_workload(descriptor)
        with pytest.raises(AlreadyExistsError):
            await store.create_workload(descriptor)
        assert await store.get_workload("default", "a") == descriptor

        await store.delete_workload("default", "a")
        with pytest.raises(NotFoundError):
            await store.delete_workload("default", "a")


class TestFactory:
    def test_memory_store(self):
        assert isinstance(create_resource_store("memory"), InMemoryResourceStore)

    def test_unknown_store(self):
        with pytest.raises(ValueError, match="Unknown store type"):
            create_resource_store("etcd")

    @pytest.mark.asyncio
    async def test_unregistered_type(self):
        store = InMemoryResourceStore(registered=False)

        with pytest.raises(NotFoundError):
            await store.check_resource_type()
