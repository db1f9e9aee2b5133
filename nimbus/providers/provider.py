from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from nimbus.api import ClusterSpec, ExecResponse, InstanceTemplate, NodeMetadata, RunScriptOptions
from nimbus.api.predicate import Predicate


@runtime_checkable
class ComputeProvider(Protocol):
    """Interface the controller and actions need from a compute provider.

    Implementations wrap one account/region of one cloud. Nodes belong to
    a group (the cluster name), which is how a cluster's nodes are found
    again after the controller restarts.
    """

    async def create_nodes(
        self,
        group: str,
        count: int,
        template: InstanceTemplate,
        spec: ClusterSpec,
    ) -> Sequence[NodeMetadata]:
        """Create up to ``count`` nodes in ``group``.

        Returns the nodes that reached the running state; fewer than
        ``count`` means partial success, not an error.

        Raises
        ------
        ProviderError
            If the provider refused the request outright.
        """
        ...

    async def list_nodes(
        self,
        predicate: Predicate[NodeMetadata] | None = None,
    ) -> Sequence[NodeMetadata]:
        """List nodes, optionally filtered by ``predicate``."""
        ...

    async def destroy_node(self, node_id: str) -> None:
        """Destroy one node. Destroying an absent node is not an error."""
        ...

    async def destroy_nodes_matching(
        self,
        predicate: Predicate[NodeMetadata],
    ) -> Sequence[NodeMetadata]:
        """Destroy every node matching ``predicate`` and return them."""
        ...

    async def run_script_on_nodes_matching(
        self,
        predicate: Predicate[NodeMetadata],
        script: str,
        options: RunScriptOptions,
    ) -> dict[str, ExecResponse]:
        """Run ``script`` on every matching node, keyed by node id."""
        ...

    async def close(self) -> None:
        """Release clients and connections."""
        ...
