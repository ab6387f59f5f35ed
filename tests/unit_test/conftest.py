import asyncio

import pytest

from appoperator.diagnostics import SharedDiagnostics
from appoperator.metrics import Metrics
from appoperator.models import ApplicationResource, ApplicationSpec, ObjectMeta
from appoperator.reconcile.context import ReconcileContext
from appoperator.store.memory import InMemoryResourceStore

REPORTER = "test-reporter"


def make_application(
    name: str = "a", image: str = "nginx:1", deploy: bool = False, namespace: str = "default"
) -> ApplicationResource:
    return ApplicationResource(
        metadata=ObjectMeta(name=name, namespace=namespace),
        spec=ApplicationSpec(name=name, image=image, deploy=deploy),
    )


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll predicate until it is true or fail after timeout seconds"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def store():
    return InMemoryResourceStore()


@pytest.fixture
def metrics():
    return Metrics()


@pytest.fixture
def ctx(store, metrics):
    return ReconcileContext(store=store, diagnostics=SharedDiagnostics(REPORTER), metrics=metrics)


@pytest.fixture
def application():
    return make_application


@pytest.fixture
def eventually():
    return wait_for
