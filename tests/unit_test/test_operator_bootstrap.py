import asyncio
from unittest.mock import AsyncMock

import pytest

from appoperator.config import Config
from appoperator.exceptions import BootstrapError, StoreError
from appoperator.operator import Operator
from appoperator.store.memory import InMemoryResourceStore


class TestBootstrap:
    """Startup precondition on the watched resource type"""

    @pytest.mark.asyncio
    async def test_unregistered_type_halts_startup(self):
        store = InMemoryResourceStore(registered=False)

        with pytest.raises(BootstrapError, match="Is the CRD installed"):
            await Operator.create(store)

    @pytest.mark.asyncio
    async def test_unreachable_server_halts_startup(self):
        store = AsyncMock()
        store.check_resource_type.side_effect = StoreError("connection refused")

        with pytest.raises(BootstrapError):
            await Operator.create(store)

        store.watch.assert_not_called()

    @pytest.mark.asyncio
    async def test_settings_flow_into_components(self, store):
        config = Config(
            reporter="custom-reporter",
            finalizer_name="custom.io/finalizer",
            requeue_interval_seconds=60,
            error_policy="exponential",
            workload_replicas=3,
        )

        operator = await Operator.create(store, config)

        assert operator.reconciler.finalizer_name == "custom.io/finalizer"
        assert operator.reconciler.requeue_interval_seconds == 60
        assert operator.reconciler.replicas == 3
        assert operator.error_policy.mode == "exponential"
        assert (await operator.diagnostics()).reporter == "custom-reporter"


class TestRun:
    @pytest.mark.asyncio
    async def test_run_reconciles_until_shutdown(self, application, eventually):
        store = InMemoryResourceStore()
        operator = await Operator.create(store, Config(finalizer_name="applications.appoperator.io"))
        task = asyncio.create_task(operator.run())

        ref = store.submit(application(deploy=True)).object_ref()
        await eventually(lambda: ("default", "a") in store.workloads)

        operator.shutdown()
        await asyncio.wait_for(task, timeout=2)

        assert store.get(ref).status.deployed is True
        assert b"app_operator_reconciliations_total" in operator.metrics()
