"""In-memory provider.

Nodes exist only inside the provider object: ids are sequential,
addresses come from documentation ranges and scripts are recorded
instead of executed. Useful for dry runs and tests.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace

from loguru import logger

from nimbus.api import ClusterSpec, ExecResponse, InstanceTemplate, NodeMetadata, NodeState
from nimbus.api.node import RunScriptOptions
from nimbus.api.predicate import Predicate

log = logger.bind(provider="stub", component="stub")

type ScriptResponder = Callable[[NodeMetadata, str], ExecResponse]


@dataclass(frozen=True, slots=True)
class ScriptRun:
    node_id: str
    script: str
    options: RunScriptOptions


def _ok(node: NodeMetadata, script: str) -> ExecResponse:
    return ExecResponse(exit_status=0)


class StubProvider:

    def __init__(
        self,
        *,
        capacity: int | None = None,
        responder: ScriptResponder = _ok,
    ) -> None:
        """
        Args:
            capacity: Most live nodes the stub will hold; creation beyond it
                returns fewer nodes than requested.
            responder: Produces the result of each script run.
        """
        self.capacity = capacity
        self.responder = responder
        self.nodes: dict[str, NodeMetadata] = {}
        self.script_runs: list[ScriptRun] = []
        self.destroyed: list[str] = []
        self._seq = itertools.count(1)

    @classmethod
    async def create(cls, spec: ClusterSpec) -> StubProvider:
        return cls(capacity=spec.provider_options.get("capacity"))

    def _live(self) -> int:
        return sum(1 for n in self.nodes.values() if n.state is not NodeState.TERMINATED)

    def add_node(
        self,
        group: str,
        *,
        node_id: str | None = None,
        state: NodeState = NodeState.RUNNING,
    ) -> NodeMetadata:
        n = next(self._seq)
        node = NodeMetadata(
            id=node_id or f"stub-{n}",
            group=group,
            state=state,
            public_addresses=(f"203.0.113.{n}",),
            private_addresses=(f"10.0.0.{n}",),
            hostname=f"{group}-{n}",
        )
        self.nodes[node.id] = node
        return node

    def set_state(self, node_id: str, state: NodeState) -> None:
        self.nodes[node_id] = replace(self.nodes[node_id], state=state)

    async def create_nodes(
        self,
        group: str,
        count: int,
        template: InstanceTemplate,
        spec: ClusterSpec,
    ) -> Sequence[NodeMetadata]:
        if self.capacity is not None:
            count = max(0, min(count, self.capacity - self._live()))
        created = [self.add_node(group) for _ in range(count)]
        log.info(
            "Created {n} nodes for {label} in group {group}",
            n=len(created), label=template.label, group=group,
        )
        return created

    async def list_nodes(
        self,
        predicate: Predicate[NodeMetadata] | None = None,
    ) -> Sequence[NodeMetadata]:
        return [n for n in self.nodes.values() if predicate is None or predicate(n)]

    async def destroy_node(self, node_id: str) -> None:
        if node_id in self.nodes:
            del self.nodes[node_id]
            self.destroyed.append(node_id)

    async def destroy_nodes_matching(
        self,
        predicate: Predicate[NodeMetadata],
    ) -> Sequence[NodeMetadata]:
        victims = [n for n in self.nodes.values() if predicate(n)]
        for node in victims:
            await self.destroy_node(node.id)
        return victims

    async def run_script_on_nodes_matching(
        self,
        predicate: Predicate[NodeMetadata],
        script: str,
        options: RunScriptOptions,
    ) -> dict[str, ExecResponse]:
        results: dict[str, ExecResponse] = {}
        for node in await self.list_nodes(predicate):
            self.script_runs.append(ScriptRun(node.id, script, options))
            results[node.id] = self.responder(node, script)
        return results

    async def close(self) -> None:
        pass
