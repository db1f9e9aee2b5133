from .provider import ContainerProvider as ContainerProvider
