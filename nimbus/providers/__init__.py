"""Compute providers."""

from .provider import ComputeProvider as ComputeProvider
from .registry import ComputeCache as ComputeCache
from .registry import create_provider as create_provider
from .stub import StubProvider as StubProvider
