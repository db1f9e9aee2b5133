"""Provider lookup and caching.

Provider SDKs are imported lazily, so a stub-only run never loads boto.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from loguru import logger

from nimbus.api import ClusterSpec
from nimbus.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from nimbus.providers.provider import ComputeProvider

log = logger.bind(component="registry")

type ComputeFactory = Callable[[ClusterSpec], Awaitable[ComputeProvider]]


async def create_provider(spec: ClusterSpec) -> ComputeProvider:
    """Create the provider named by ``spec.provider``."""
    log.debug("Creating provider {name}", name=spec.provider)

    match spec.provider:
        case "stub":
            from .stub import StubProvider
            return await StubProvider.create(spec)
        case "container":
            from .container.provider import ContainerProvider
            return await ContainerProvider.create(spec)
        case "aws":
            from .aws.provider import AWSProvider
            return await AWSProvider.create(spec)
        case other:
            raise ConfigurationError(
                f"No provider registered for '{other}'. Available providers: stub, container, aws"
            )


class ComputeCache:
    """One provider per (provider, identity, endpoint, location).

    Callable with a spec, so it can be handed to the controller as its
    compute factory.
    """

    def __init__(self, factory: ComputeFactory = create_provider) -> None:
        self._factory = factory
        self._providers: dict[tuple[str, str | None, str | None, str | None], ComputeProvider] = {}

    @staticmethod
    def key(spec: ClusterSpec) -> tuple[str, str | None, str | None, str | None]:
        return spec.provider, spec.identity, spec.endpoint, spec.location

    async def __call__(self, spec: ClusterSpec) -> ComputeProvider:
        key = self.key(spec)
        provider = self._providers.get(key)
        if provider is None:
            provider = self._providers[key] = await self._factory(spec)
        return provider

    async def close_all(self) -> None:
        providers = list(self._providers.values())
        self._providers.clear()
        for provider in providers:
            await provider.close()
