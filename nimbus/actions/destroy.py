from __future__ import annotations

from collections.abc import Mapping

from loguru import logger

from nimbus.actions.base import ScriptBasedClusterAction
from nimbus.api import Cluster, ClusterSpec
from nimbus.api.predicate import InGroup, WithIds
from nimbus.providers.provider import ComputeProvider
from nimbus.service.handler import ClusterActionEvent, ClusterActionName

log = logger.bind(component="destroy")


class DestroyClusterAction(ScriptBasedClusterAction):
    """Run destroy hooks, then destroy every node in the cluster's group.

    Destroy must be able to tear down a cluster whose roles are no longer
    configured, so roles without a handler are skipped with a warning.
    """

    action = ClusterActionName.DESTROY
    strict_roles = False

    def target_roles(self, spec: ClusterSpec, cluster: Cluster) -> list[str]:
        return sorted(spec.roles | cluster.roles)

    async def do_action(
        self,
        spec: ClusterSpec,
        cluster: Cluster,
        compute: ComputeProvider,
        events: Mapping[str, ClusterActionEvent],
    ) -> Cluster:
        await super().do_action(spec, cluster, compute, events)

        log.info("Destroying nodes in group {group}", group=spec.cluster_name)
        destroyed = {n.id for n in await compute.destroy_nodes_matching(InGroup(spec.cluster_name))}

        for instance_id in cluster.ids:
            if instance_id not in destroyed:
                await compute.destroy_node(instance_id)
                destroyed.add(instance_id)

        log.info("Destroyed {n} nodes of cluster {name}", n=len(destroyed), name=spec.cluster_name)
        return cluster.without_instances_matching(WithIds(*destroyed))
