"""Nimbus - launch and manage role-based compute clusters.

Example:

    from nimbus import ClusterController, ClusterSpec, InstanceTemplate, build_handlers, load_config

    spec = ClusterSpec(
        cluster_name="hadoop",
        instance_templates=InstanceTemplate.parse_all("1 namenode+jobtracker, 3 datanode+tasktracker"),
        provider="aws",
    )

    controller = ClusterController(handlers=build_handlers(load_config()))
    cluster = await controller.launch_cluster(spec)
"""

# Cluster model
from nimbus.api import (
    Ambiguous,
    Cluster,
    ClusterSpec,
    Credentials,
    ExecResponse,
    FirewallRule,
    Found,
    Instance,
    InstanceTemplate,
    NodeMetadata,
    NodeState,
    NotFound,
    RunScriptOptions,
)

# Predicates
from nimbus.api.predicate import (
    AnyRoleIn,
    InGroup,
    Predicate,
    RunningInGroup,
    WithIds,
    WithRole,
)

# Configuration
from nimbus.config import build_handlers, load_config, resolve_cluster

# Orchestration
from nimbus.controller import ClusterController

# Errors
from nimbus.core.exceptions import (
    ConfigurationError,
    ErrorKind,
    HandlerError,
    InterruptedError,
    LookupError,
    NimbusError,
    OrchestrationError,
    ProviderError,
    StorageError,
)

# Logging
from nimbus.logging import LogConfig, setup_logging, teardown_logging

# Providers
from nimbus.providers import ComputeCache, ComputeProvider, StubProvider

# Role handlers
from nimbus.service import ClusterActionEvent, ClusterActionHandler, HandlerRegistry, ScriptRoleHandler

# State
from nimbus.state import ClusterStateStore, ClusterStateStoreFactory

__all__ = [
    "Ambiguous",
    "AnyRoleIn",
    "Cluster",
    "ClusterActionEvent",
    "ClusterActionHandler",
    "ClusterController",
    "ClusterSpec",
    "ClusterStateStore",
    "ClusterStateStoreFactory",
    "ComputeCache",
    "ComputeProvider",
    "ConfigurationError",
    "Credentials",
    "ErrorKind",
    "ExecResponse",
    "FirewallRule",
    "Found",
    "HandlerError",
    "HandlerRegistry",
    "InGroup",
    "Instance",
    "InstanceTemplate",
    "InterruptedError",
    "LogConfig",
    "LookupError",
    "NimbusError",
    "NodeMetadata",
    "NodeState",
    "NotFound",
    "OrchestrationError",
    "Predicate",
    "ProviderError",
    "RunScriptOptions",
    "RunningInGroup",
    "ScriptRoleHandler",
    "StorageError",
    "StubProvider",
    "WithIds",
    "WithRole",
    "build_handlers",
    "load_config",
    "resolve_cluster",
    "setup_logging",
    "teardown_logging",
]
