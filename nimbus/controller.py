"""Cluster controller: sequences lifecycle phases and keeps state in sync.

Only bootstrap and destroy touch the state store, since they are the
phases that change which hardware exists. Both run under the cluster
lock. The other phases work on a cluster reconciled from the provider.

Example:
    >>> controller = ClusterController(handlers=build_handlers(config))
    >>> cluster = await controller.launch_cluster(spec)
    >>> await controller.destroy_cluster(spec)
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

from loguru import logger

from nimbus.actions import (
    BootstrapClusterAction,
    CleanupClusterAction,
    ClusterAction,
    ConfigureClusterAction,
    DestroyClusterAction,
    StartClusterAction,
    StopClusterAction,
)
from nimbus.api import (
    Cluster,
    ClusterSpec,
    ExecResponse,
    Found,
    Instance,
    NodeMetadata,
    RunScriptOptions,
)
from nimbus.api.predicate import Predicate, RunningInGroup, WithIds
from nimbus.core.exceptions import InterruptedError, OrchestrationError
from nimbus.providers.registry import ComputeCache, ComputeFactory
from nimbus.service.handler import HandlerRegistry
from nimbus.state import ClusterStateStore, ClusterStateStoreFactory, cluster_lock

log = logger.bind(component="controller")


class ClusterController:

    def __init__(
        self,
        get_compute: ComputeFactory | None = None,
        state_store_factory: ClusterStateStoreFactory | None = None,
        handlers: HandlerRegistry | None = None,
    ) -> None:
        self.get_compute = get_compute or ComputeCache()
        self.state_store_factory = state_store_factory or ClusterStateStoreFactory()
        self.handlers = handlers if handlers is not None else HandlerRegistry()

    def _action[A: ClusterAction](self, cls: type[A]) -> A:
        return cls(self.get_compute, self.handlers)

    @asynccontextmanager
    async def _phase(self, name: str, spec: ClusterSpec) -> AsyncIterator[None]:
        """Tag failures inside a phase with the phase and cluster name."""
        try:
            yield
        except (OrchestrationError, InterruptedError):
            raise
        except asyncio.CancelledError as e:
            log.warning("{phase} of cluster {name} interrupted", phase=name, name=spec.cluster_name)
            raise InterruptedError(name) from e
        except Exception as e:
            raise OrchestrationError(name, spec.cluster_name, e) from e

    def get_cluster_state_store(self, spec: ClusterSpec) -> ClusterStateStore:
        return self.state_store_factory.create(spec)

    @staticmethod
    def default_run_script_options(spec: ClusterSpec) -> RunScriptOptions:
        return RunScriptOptions(credentials=spec.credentials)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def launch_cluster(self, spec: ClusterSpec) -> Cluster:
        """Bootstrap, configure and start a cluster.

        On failure the cluster is destroyed when
        ``spec.terminate_all_on_launch_failure`` is set; either way the
        failure is re-raised. An interruption skips the rollback.

        Raises:
            OrchestrationError: Phase ``launch``, wrapping the failed phase.
            InterruptedError: If the launch was cancelled.
        """
        log.info("Launching cluster {name}", name=spec.cluster_name)
        try:
            cluster = await self.bootstrap_cluster(spec)
            cluster = await self.configure_services(spec, cluster)
            cluster = await self.start_services(spec, cluster)
        except InterruptedError:
            raise
        except asyncio.CancelledError as e:
            raise InterruptedError("launch") from e
        except Exception as e:
            await self._rollback(spec)
            raise OrchestrationError("launch", spec.cluster_name, e) from e

        log.info("Cluster {name} launched with {n} instances", name=spec.cluster_name, n=len(cluster))
        return cluster

    async def _rollback(self, spec: ClusterSpec) -> None:
        if not spec.terminate_all_on_launch_failure:
            log.critical(
                "*CRITICAL* the cluster failed to launch and the automated node "
                "termination option was not selected, there might be orphaned nodes."
            )
            return

        log.error("Unable to start the cluster. Terminating all nodes.")
        try:
            await self.destroy_cluster(spec)
        except InterruptedError:
            raise
        except Exception as e:
            log.warning(
                "Failed to terminate the nodes of cluster {name}, there might be orphaned nodes: {err}",
                name=spec.cluster_name, err=e,
            )

    async def bootstrap_cluster(self, spec: ClusterSpec) -> Cluster:
        """Create the nodes and save the new membership before returning."""
        async with self._phase("bootstrap", spec), cluster_lock(spec):
            store = self.get_cluster_state_store(spec)
            cluster = await self._action(BootstrapClusterAction).execute(spec, Cluster.empty())
            await store.save(cluster)
            return cluster

    async def _run(
        self,
        name: str,
        action: type[ClusterAction],
        spec: ClusterSpec,
        cluster: Cluster | None,
    ) -> Cluster:
        async with self._phase(name, spec):
            if cluster is None:
                store = self.get_cluster_state_store(spec)
                cluster = Cluster(await self.get_instances(spec, store))
            return await self._action(action).execute(spec, cluster)

    async def configure_services(self, spec: ClusterSpec, cluster: Cluster | None = None) -> Cluster:
        return await self._run("configure", ConfigureClusterAction, spec, cluster)

    async def start_services(self, spec: ClusterSpec, cluster: Cluster | None = None) -> Cluster:
        return await self._run("start", StartClusterAction, spec, cluster)

    async def stop_services(self, spec: ClusterSpec, cluster: Cluster | None = None) -> Cluster:
        return await self._run("stop", StopClusterAction, spec, cluster)

    async def cleanup_cluster(self, spec: ClusterSpec, cluster: Cluster | None = None) -> Cluster:
        return await self._run("cleanup", CleanupClusterAction, spec, cluster)

    async def destroy_cluster(self, spec: ClusterSpec, cluster: Cluster | None = None) -> None:
        """Destroy every node of the cluster.

        Without an explicit ``cluster`` the saved membership is used (or an
        empty one if it cannot be loaded) and the saved record is removed.
        """
        async with self._phase("destroy", spec):
            if cluster is not None:
                await self._action(DestroyClusterAction).execute(spec, cluster)
                return

            async with cluster_lock(spec):
                store = self.get_cluster_state_store(spec)
                cluster = await store.try_load_or_empty()
                await self._action(DestroyClusterAction).execute(spec, cluster)
                await store.destroy()
        log.info("Cluster {name} destroyed", name=spec.cluster_name)

    async def destroy_instance(self, spec: ClusterSpec, instance_id: str) -> None:
        """Destroy one node and drop it from the saved membership."""
        async with self._phase("destroy-instance", spec):
            compute = await self.get_compute(spec)
            log.info("Destroying instance {id} of {name}", id=instance_id, name=spec.cluster_name)
            await compute.destroy_node(instance_id)

            async with cluster_lock(spec):
                store = self.get_cluster_state_store(spec)
                cluster = await store.load()
                await store.save(cluster.without_instances_matching(WithIds(instance_id)))

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_nodes(self, spec: ClusterSpec) -> Sequence[NodeMetadata]:
        async with self._phase("list-nodes", spec):
            compute = await self.get_compute(spec)
            return await compute.list_nodes(RunningInGroup(spec.cluster_name))

    async def get_instances(
        self,
        spec: ClusterSpec,
        store: ClusterStateStore | None = None,
    ) -> tuple[Instance, ...]:
        """Running nodes of the cluster, with the roles last saved for them.

        Addresses come from the provider. A node missing from the saved
        membership gets no roles.

        Raises:
            StorageError: If ``store`` is given and its record cannot be loaded.
        """
        async with self._phase("list-instances", spec):
            compute = await self.get_compute(spec)
            nodes = await compute.list_nodes(RunningInGroup(spec.cluster_name))
            prior = await store.load() if store is not None else Cluster.empty()

            instances = []
            for node in nodes:
                match prior.find_instance(WithIds(node.id)):
                    case Found(instance):
                        roles = instance.roles
                    case _:
                        log.debug("No saved roles for node {id}", id=node.id)
                        roles = frozenset()
                instances.append(
                    Instance(
                        id=node.id,
                        roles=roles,
                        public_ip=node.public_ip,
                        private_ip=node.private_ip,
                        credentials=spec.credentials,
                        node=node,
                    )
                )
            return tuple(instances)

    async def run_script_on_nodes_matching(
        self,
        spec: ClusterSpec,
        predicate: Predicate[NodeMetadata],
        script: str,
        options: RunScriptOptions | None = None,
    ) -> dict[str, ExecResponse]:
        """Run ``script`` on the running nodes of the cluster matching ``predicate``.

        Returns:
            Responses keyed by node id.
        """
        if options is None:
            options = self.default_run_script_options(spec)
        elif options.credentials is None:
            options = options.override_credentials_with(spec.credentials)

        async with self._phase("run-script", spec):
            compute = await self.get_compute(spec)
            return await compute.run_script_on_nodes_matching(
                RunningInGroup(spec.cluster_name) & predicate, script, options,
            )
