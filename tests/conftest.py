from __future__ import annotations

from collections.abc import Callable, Iterator

import pytest

from nimbus.api import ClusterSpec, InstanceTemplate
from nimbus.controller import ClusterController
from nimbus.providers.stub import StubProvider
from nimbus.service.handler import HandlerRegistry
from nimbus.state.memory import MemoryClusterStateStore

type SpecFactory = Callable[..., ClusterSpec]
type ControllerFactory = Callable[..., ClusterController]


@pytest.fixture(autouse=True)
def _clear_memory_store() -> Iterator[None]:
    MemoryClusterStateStore.clear()
    yield
    MemoryClusterStateStore.clear()


@pytest.fixture
def make_spec() -> SpecFactory:
    def _make(templates: str = "1 namenode+jobtracker, 1 datanode+tasktracker", **overrides) -> ClusterSpec:
        settings = {
            "cluster_name": "hadoop",
            "instance_templates": InstanceTemplate.parse_all(templates),
            "provider": "stub",
            "state_store": "memory",
            "cluster_user": "nimbus",
            "private_key": "-----BEGIN KEY-----",
        }
        settings.update(overrides)
        return ClusterSpec(**settings)

    return _make


@pytest.fixture
def spec(make_spec: SpecFactory) -> ClusterSpec:
    return make_spec()


@pytest.fixture
def stub() -> StubProvider:
    return StubProvider()


@pytest.fixture
def make_controller(stub: StubProvider) -> ControllerFactory:
    """Controller wired to the ``stub`` fixture and the memory store."""

    def _make(handlers: HandlerRegistry | None = None) -> ClusterController:
        async def get_compute(spec: ClusterSpec) -> StubProvider:
            return stub

        return ClusterController(get_compute=get_compute, handlers=handlers)

    return _make
