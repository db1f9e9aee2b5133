"""Bootstrap: create the nodes of every template and add them to the cluster."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

from loguru import logger

from nimbus.actions.base import ScriptBasedClusterAction
from nimbus.api import Cluster, ClusterSpec, Instance, InstanceTemplate, NodeMetadata
from nimbus.api.predicate import WithIds
from nimbus.core.exceptions import NimbusError, ProviderError
from nimbus.infra.aio import gather_or_cancel
from nimbus.providers.provider import ComputeProvider
from nimbus.service.handler import ClusterActionEvent, ClusterActionName

log = logger.bind(component="bootstrap")


class BootstrapClusterAction(ScriptBasedClusterAction):

    action = ClusterActionName.BOOTSTRAP

    async def do_action(
        self,
        spec: ClusterSpec,
        cluster: Cluster,
        compute: ComputeProvider,
        events: Mapping[str, ClusterActionEvent],
    ) -> Cluster:
        results = await asyncio.gather(
            *(self._create_template(spec, compute, t) for t in spec.instance_templates),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, asyncio.CancelledError):
                raise result
        if failures := [r for r in results if isinstance(r, BaseException)]:
            # Nodes of templates that succeeded stay in the group; the
            # caller's rollback destroys them by group.
            raise failures[0]

        created = [i for instances in results for i in instances]  # type: ignore[union-attr]
        cluster = cluster.with_instances(*created)
        log.info(
            "Cluster {name} has {n} instances after bootstrap ({want} requested)",
            name=spec.cluster_name, n=len(cluster), want=spec.node_count,
        )

        new_ids = {i.id for i in created}
        await gather_or_cancel(*(
            self.run_statements(spec, compute, _with_cluster(event, cluster), only=new_ids)
            for event in events.values()
            if event.statements
        ))
        return cluster

    async def _create_template(
        self,
        spec: ClusterSpec,
        compute: ComputeProvider,
        template: InstanceTemplate,
    ) -> list[Instance]:
        """Create ``template.count`` nodes, retrying the shortfall.

        Raises:
            ProviderError: If fewer than ``template.minimum`` nodes could be
                created. The nodes that were created are destroyed first.
        """
        nodes: list[NodeMetadata] = []
        last_error: NimbusError | None = None
        attempts = 1 + spec.max_startup_retries

        for attempt in range(1, attempts + 1):
            missing = template.count - len(nodes)
            if missing <= 0:
                break
            if attempt > 1:
                log.info(
                    "Got {got}/{need} nodes for {label}, retrying (attempt {n}/{max})",
                    got=len(nodes), need=template.count, label=template.label,
                    n=attempt, max=attempts,
                )
            try:
                nodes.extend(await compute.create_nodes(spec.cluster_name, missing, template, spec))
            except ProviderError as e:
                log.warning("Node creation for {label} failed: {err}", label=template.label, err=e)
                last_error = e

        if len(nodes) < template.minimum:
            log.error(
                "Only {got} of at least {need} nodes started for {label}, destroying them",
                got=len(nodes), need=template.minimum, label=template.label,
            )
            if nodes:
                await compute.destroy_nodes_matching(WithIds(*(n.id for n in nodes)))
            raise ProviderError(
                f"Too many instance failures for {template.label}: "
                f"{len(nodes)} started, at least {template.minimum} required"
            ) from last_error

        if len(nodes) < template.count:
            log.warning(
                "Started {got} of {need} nodes for {label}, continuing with fewer",
                got=len(nodes), need=template.count, label=template.label,
            )

        return [
            Instance(
                id=node.id,
                roles=template.roles,
                public_ip=node.public_ip,
                private_ip=node.private_ip,
                credentials=spec.credentials,
                node=node,
            )
            for node in nodes
        ]


def _with_cluster(event: ClusterActionEvent, cluster: Cluster) -> ClusterActionEvent:
    event.cluster = cluster
    return event
