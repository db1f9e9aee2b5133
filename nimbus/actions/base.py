"""Shared shape of every lifecycle phase.

A phase resolves one event per role, runs all ``before`` hooks, acts on
the nodes, then runs all ``after`` hooks. The two hook rounds are hard
barriers around the node work.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from graphlib import CycleError, TopologicalSorter

from loguru import logger

from nimbus.api import Cluster, ClusterSpec, ExecResponse, RunScriptOptions
from nimbus.api.predicate import RunningInGroup, WithIds
from nimbus.core.exceptions import ConfigurationError, HandlerError, InterruptedError
from nimbus.infra.aio import gather_or_cancel
from nimbus.providers.provider import ComputeProvider
from nimbus.providers.registry import ComputeFactory
from nimbus.service.handler import (
    ClusterActionEvent,
    ClusterActionHandler,
    ClusterActionName,
    HandlerRegistry,
    environment,
)

log = logger.bind(component="action")


class ClusterAction(ABC):

    action: ClusterActionName

    def __init__(self, get_compute: ComputeFactory, handlers: HandlerRegistry) -> None:
        self.get_compute = get_compute
        self.handlers = handlers

    @abstractmethod
    async def execute(self, spec: ClusterSpec, cluster: Cluster) -> Cluster:
        """Run the phase against ``cluster`` and return the resulting snapshot."""


class ScriptBasedClusterAction(ClusterAction):
    """Phase that runs role scripts on the instances holding each role."""

    # Roles without a handler fail the phase unless allow_unregistered_roles is set.
    strict_roles: bool = True

    async def execute(self, spec: ClusterSpec, cluster: Cluster) -> Cluster:
        compute = await self.get_compute(spec)
        ordered = self.ordered_handlers(spec, self.target_roles(spec, cluster))
        log.info(
            "Running {action} on cluster {name} for roles {roles}",
            action=self.action, name=spec.cluster_name, roles=[r for r, _ in ordered],
        )

        events = {
            role: ClusterActionEvent(
                action=self.action,
                role=role,
                spec=spec,
                template=spec.template_for(role),
                cluster=cluster,
                compute=compute,
            )
            for role, _ in ordered
        }

        cluster = await self._run_hooks("before", ordered, events, cluster)
        cluster = await self.do_action(spec, cluster, compute, events)
        cluster = await self._run_hooks("after", ordered, events, cluster)
        return cluster

    def target_roles(self, spec: ClusterSpec, cluster: Cluster) -> list[str]:
        return sorted(spec.roles)

    def ordered_handlers(
        self,
        spec: ClusterSpec,
        roles: list[str],
    ) -> list[tuple[str, ClusterActionHandler]]:
        """Handlers for ``roles``, each after the roles it depends on.

        Raises:
            ConfigurationError: For a role without a handler (unless allowed)
                or a dependency cycle.
        """
        resolved: dict[str, ClusterActionHandler] = {}
        for role in roles:
            handler = self.handlers.get(role)
            if handler is not None:
                resolved[role] = handler
            elif self.strict_roles and not spec.allow_unregistered_roles:
                raise ConfigurationError(
                    f"No handler registered for role '{role}'. "
                    f"Registered: {', '.join(sorted(self.handlers)) or 'none'}"
                )
            else:
                log.warning("No handler for role {role}, skipping it", role=role)

        graph = {
            role: [d for d in handler.depends_on if d in resolved]
            for role, handler in resolved.items()
        }
        try:
            order = list(TopologicalSorter(graph).static_order())
        except CycleError as e:
            raise ConfigurationError(f"Role dependency cycle: {' -> '.join(e.args[1])}") from e
        return [(role, resolved[role]) for role in order]

    async def _run_hooks(
        self,
        when: str,
        ordered: list[tuple[str, ClusterActionHandler]],
        events: Mapping[str, ClusterActionEvent],
        cluster: Cluster,
    ) -> Cluster:
        for role, handler in ordered:
            event = events[role]
            event.cluster = cluster
            hook = handler.before_action if when == "before" else handler.after_action
            try:
                await hook(event)
            except (HandlerError, InterruptedError):
                raise
            except Exception as e:
                raise HandlerError(role, f"{when}_{self.action}", str(e) or type(e).__name__) from e
            cluster = event.cluster
        return cluster

    async def do_action(
        self,
        spec: ClusterSpec,
        cluster: Cluster,
        compute: ComputeProvider,
        events: Mapping[str, ClusterActionEvent],
    ) -> Cluster:
        await gather_or_cancel(*(
            self.run_statements(spec, compute, event)
            for event in events.values()
            if event.statements
        ))
        return cluster

    async def run_statements(
        self,
        spec: ClusterSpec,
        compute: ComputeProvider,
        event: ClusterActionEvent,
        only: set[str] | None = None,
    ) -> dict[str, ExecResponse]:
        """Run the statements queued for ``event.role`` on its instances.

        ``only`` narrows the targets to those ids; the exported environment
        still describes the whole of ``event.cluster``.

        Raises:
            HandlerError: If the script exits non-zero on any instance.
        """
        targets = event.targets
        if only is not None:
            targets = tuple(i for i in targets if i.id in only)
        if not targets:
            log.debug("No instances with role {role}, nothing to run", role=event.role)
            return {}

        options = RunScriptOptions(credentials=spec.credentials, run_as_root=True)
        predicate = RunningInGroup(spec.cluster_name) & WithIds(*(i.id for i in targets))
        log.info(
            "Running {action} script for {role} on {n} instances",
            action=self.action, role=event.role, n=len(targets),
        )
        responses = await compute.run_script_on_nodes_matching(
            predicate, event.statements.render(environment(event)), options,
        )

        if missing := sorted({i.id for i in targets} - responses.keys()):
            log.warning("Instances {ids} with role {role} are not running", ids=missing, role=event.role)
        failed = {node_id: r for node_id, r in responses.items() if not r.ok}
        if failed:
            detail = "; ".join(
                f"{node_id} exited {r.exit_status}: {r.error.strip()[:200]}"
                for node_id, r in sorted(failed.items())
            )
            raise HandlerError(event.role, str(self.action), f"script failed on {detail}")
        return responses
